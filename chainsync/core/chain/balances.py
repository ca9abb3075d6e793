"""Periodic native balance reads for the session address."""

import asyncio
import logging
from typing import Any, Callable, List, Optional, Tuple

from ...config import settings
from ...constants import CHAIN_METADATA
from .units import format_units

BalanceListener = Callable[[Optional[int]], None]


class BalancePoller:
    """
    Keeps ``balance`` current for the authenticated address.

    The polling task is restarted whenever the session address or chain
    changes and cancelled when the session ends. Read failures are logged
    and the previous balance is kept.
    """

    def __init__(
        self,
        chain: Any,
        interval_seconds: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.chain = chain
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.balance_poll_interval_seconds
        )
        self.logger = logger or logging.getLogger(__name__)
        self.balance: Optional[int] = None
        self._target: Optional[Tuple[str, int]] = None
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[BalanceListener] = []

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def formatted_balance(self) -> Optional[str]:
        if self.balance is None or self._target is None:
            return None
        chain = CHAIN_METADATA.get(self._target[1], {})
        return format_units(self.balance, chain.get("native_decimals", 18))

    def subscribe(self, listener: BalanceListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def bind_session(self, session_manager: Any) -> Callable[[], None]:
        return session_manager.subscribe(self.on_session_change)

    def on_session_change(self, session: Any) -> None:
        if session is None or not session.is_authenticated:
            self.stop()
            return

        target = (session.address, session.chain_id)
        if target == self._target and self.is_running:
            return
        self.start(*target)

    def start(self, address: str, chain_id: int) -> None:
        self._cancel_task()
        self._target = (address, chain_id)
        self.balance = None
        self._task = asyncio.create_task(self._poll(address))

    def stop(self) -> None:
        self._cancel_task()
        self._target = None
        if self.balance is not None:
            self.balance = None
            self._emit()

    def _cancel_task(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    async def refresh_now(self) -> Optional[int]:
        if self._target is None:
            return None
        await self._read(self._target[0])
        return self.balance

    async def _poll(self, address: str) -> None:
        try:
            while True:
                await self._read(address)
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            return

    async def _read(self, address: str) -> None:
        try:
            balance = await self.chain.get_native_balance(address)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.warning("Balance read for %s failed: %s", address, exc)
            return
        if self._target is None or self._target[0] != address:
            # Session moved on while the read was in flight
            return
        self.balance = balance
        self._emit()

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.balance)
            except Exception:
                self.logger.exception("Balance listener failed")
