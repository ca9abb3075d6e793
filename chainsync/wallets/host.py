"""
Host environment boundary.

Stands in for the browser window: a named-event bus plus the single
injected provider that legacy wallets expose.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

REQUEST_PROVIDER_EVENT = "eip6963:requestProvider"
ANNOUNCE_PROVIDER_EVENT = "eip6963:announceProvider"


@dataclass(frozen=True)
class ProviderInfo:
    """Descriptor carried by an announce event."""

    uuid: str
    name: str
    icon: str
    rdns: str


@dataclass(frozen=True)
class ProviderDetail:
    info: ProviderInfo
    provider: Any


HostListener = Callable[[Any], None]


class LocalHost:
    """
    In-process host with synchronous event dispatch.

    Wallets registered with ``register_wallet`` answer discovery requests by
    announcing themselves, the way browser extensions do.
    """

    def __init__(self, injected_provider: Any = None):
        self.injected_provider = injected_provider
        self._listeners: Dict[str, List[HostListener]] = {}

    def add_event_listener(self, event: str, listener: HostListener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def remove_event_listener(self, event: str, listener: HostListener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def dispatch_event(self, event: str, detail: Any = None) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(detail)
            except Exception:
                logger.exception("Host listener for %s failed", event)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def register_wallet(self, info: ProviderInfo, provider: Any) -> Callable[[], None]:
        """Announce ``provider`` now and whenever discovery is requested."""
        detail = ProviderDetail(info=info, provider=provider)

        def announce(_: Any = None) -> None:
            self.dispatch_event(ANNOUNCE_PROVIDER_EVENT, detail)

        self.add_event_listener(REQUEST_PROVIDER_EVENT, announce)
        announce()
        return lambda: self.remove_event_listener(REQUEST_PROVIDER_EVENT, announce)
