"""EIP-1193 wallet provider interface."""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Protocol, runtime_checkable

from ..errors import DISCONNECTED, USER_REJECTED_REQUEST


EventHandler = Callable[..., Any]


@runtime_checkable
class WalletProvider(Protocol):
    """
    An injected signing capability.

    Vendor flags (``isMetaMask``, ``isCoinbaseWallet``, ...) and a
    ``providers`` list are optional attributes read with ``getattr``.
    """

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        ...

    def on(self, event: str, handler: EventHandler) -> None:
        ...

    def remove_listener(self, event: str, handler: EventHandler) -> None:
        ...


class ProviderRpcError(Exception):
    """Error raised by a wallet provider, carrying its EIP-1193 code."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    @property
    def is_user_rejection(self) -> bool:
        return self.code == USER_REJECTED_REQUEST

    @property
    def is_disconnected(self) -> bool:
        return self.code == DISCONNECTED


def subscribe(provider: Any, event: str, handler: EventHandler) -> Callable[[], None]:
    """Attach ``handler`` if the provider supports events; returns a detach callable."""

    on = getattr(provider, "on", None)
    if not callable(on):
        return lambda: None
    on(event, handler)

    def detach() -> None:
        remove = getattr(provider, "remove_listener", None)
        if callable(remove):
            remove(event, handler)

    return detach
