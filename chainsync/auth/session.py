"""
Wallet Session Manager

Challenge-response sign-in against the ChainSync backend:

1. Ask the wallet for its account (``eth_requestAccounts``) and chain
2. POST /auth/challenge with the address and chain id
3. Have the wallet sign the challenge message (``personal_sign``)
4. POST /auth/verify with the signature and nonce
5. Keep the returned access/refresh tokens, persist them, and refresh the
   access token shortly before it expires

The Session value is owned here. Other components read it through
``subscribe`` or ``get_auth_header`` and never write it.
"""

import asyncio
import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from ..config import settings
from ..errors import (
    AuthError,
    BackendError,
    ChainError,
    ChainSyncError,
    classify_error,
)
from ..providers.backend import ChainSyncApiClient
from ..storage import FileStore, KeyValueStore
from ..wallets.base import subscribe as subscribe_provider_event
from ..wallets.discovery import DetectedProvider
from .models import InvalidSessionTransitionError, Session, SessionState, User

SessionListener = Callable[[Optional[Session]], None]


def _parse_chain_id(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.lower().startswith("0x") else int(value)
    raise ChainError(f"Wallet returned an invalid chain id: {value!r}")


class SessionManager:
    """
    Owns the authenticated wallet session.

    Features:
    - Validates state changes against an explicit transition table
    - Shares one in-flight connect/refresh between concurrent callers
    - Persists the session under a single storage key
    - Auto-refreshes the access token ahead of expiry
    """

    TRANSITIONS: Dict[SessionState, Set[SessionState]] = {
        SessionState.DISCONNECTED: {
            SessionState.AUTHENTICATING,
            SessionState.AUTHENTICATED,   # Restored from storage
        },
        SessionState.AUTHENTICATING: {
            SessionState.AUTHENTICATED,
            SessionState.DISCONNECTED,
        },
        SessionState.AUTHENTICATED: {
            SessionState.REFRESHING,
            SessionState.AUTHENTICATING,  # Re-connect with another wallet
            SessionState.DISCONNECTED,
        },
        SessionState.REFRESHING: {
            SessionState.AUTHENTICATED,
            SessionState.DISCONNECTED,
        },
    }

    def __init__(
        self,
        api: Optional[ChainSyncApiClient] = None,
        storage: Optional[KeyValueStore] = None,
        *,
        storage_key: Optional[str] = None,
        auto_refresh: Optional[bool] = None,
        refresh_threshold_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.api = api or ChainSyncApiClient()
        self.api.set_auth_header_source(self.get_auth_header)
        self.storage = storage if storage is not None else FileStore()
        self.storage_key = storage_key or settings.session_storage_key
        self.auto_refresh = settings.auto_refresh if auto_refresh is None else auto_refresh
        self.refresh_threshold_seconds = (
            refresh_threshold_seconds
            if refresh_threshold_seconds is not None
            else settings.refresh_threshold_seconds
        )
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

        self._state = SessionState.DISCONNECTED
        self._session: Optional[Session] = None
        self.user: Optional[User] = None
        self.last_error: Optional[str] = None

        self._listeners: List[SessionListener] = []
        self._connect_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._refresh_timer: Optional[asyncio.Task] = None
        self._provider: Any = None
        self._provider_detach: List[Callable[[], None]] = []
        # Bumped on disconnect so late results from in-flight calls are dropped
        self._generation = 0

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None and self._session.is_authenticated

    @property
    def address(self) -> Optional[str]:
        return self._session.address if self._session else None

    @property
    def chain_id(self) -> Optional[int]:
        return self._session.chain_id if self._session else None

    @property
    def provider(self) -> Any:
        return self._provider

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    # =========================================================================
    # State machine
    # =========================================================================

    def can_transition_to(self, to_state: SessionState) -> bool:
        return to_state in self.TRANSITIONS.get(self._state, set())

    def _transition(self, to_state: SessionState) -> None:
        if not self.can_transition_to(to_state):
            raise InvalidSessionTransitionError(self._state, to_state)
        self.logger.debug("Session %s -> %s", self._state.value, to_state.value)
        self._state = to_state

    def _fail(self, error: ChainSyncError) -> ChainSyncError:
        self.last_error = error.message
        return error

    # =========================================================================
    # Observers
    # =========================================================================

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register for session changes. The listener is called with the current value immediately."""
        self._listeners.append(listener)
        listener(self._session)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._session)
            except Exception:
                self.logger.exception("Session listener failed")

    # =========================================================================
    # Persistence
    # =========================================================================

    def _persist(self) -> None:
        if self._session is None:
            self.storage.delete(self.storage_key)
        else:
            self.storage.set_json(self.storage_key, self._session.to_storage())

    def load_persisted(self) -> Optional[Session]:
        """Read the stored session; a corrupt or malformed value is cleared."""
        data = self.storage.get_json(self.storage_key)
        if data is None:
            return None
        try:
            session = Session.model_validate(data)
        except PydanticValidationError:
            self.logger.warning("Discarding malformed session stored under %s", self.storage_key)
            self.storage.delete(self.storage_key)
            return None
        if not session.is_authenticated:
            self.storage.delete(self.storage_key)
            return None
        return session

    async def restore(self) -> Optional[Session]:
        """Load the persisted session at start-up and re-arm auto-refresh."""
        if self._state != SessionState.DISCONNECTED:
            return self._session

        session = self.load_persisted()
        if session is None:
            return None

        self._session = session
        self._transition(SessionState.AUTHENTICATED)
        self.logger.info("Restored session for %s on chain %s", session.address, session.chain_id)
        self._schedule_refresh()
        self._notify()
        return session

    # =========================================================================
    # Connect
    # =========================================================================

    async def connect(self, provider: Any) -> Session:
        """
        Sign in with ``provider``.

        A second call while one is in flight awaits the same operation. On
        failure the previous state and session are left exactly as they were.
        """
        if self._connect_task is not None and not self._connect_task.done():
            return await asyncio.shield(self._connect_task)

        if self._refresh_task is not None and not self._refresh_task.done():
            await asyncio.gather(self._refresh_task, return_exceptions=True)

        self._connect_task = asyncio.create_task(self._connect(provider))
        return await asyncio.shield(self._connect_task)

    async def _connect(self, provider: Any) -> Session:
        wallet = provider.provider if isinstance(provider, DetectedProvider) else provider
        previous_state = self._state
        previous_session = self._session
        generation = self._generation

        self._transition(SessionState.AUTHENTICATING)
        self.last_error = None

        try:
            accounts = await self._wallet_request(wallet, "eth_requestAccounts")
            if not accounts:
                raise ChainError("Failed to get wallet address")
            address = accounts[0]
            chain_id = _parse_chain_id(await self._wallet_request(wallet, "eth_chainId"))

            challenge = await self._auth_call(self.api.request_challenge(address, chain_id))
            signature = await self._wallet_request(wallet, "personal_sign", [challenge.message, address])
            tokens = await self._auth_call(self.api.verify_signature(
                address=address,
                signature=signature,
                message=challenge.message,
                nonce=challenge.nonce,
                chain_id=chain_id,
            ))
        except Exception as exc:
            error = classify_error(exc)
            if generation == self._generation:
                self._session = previous_session
                self._transition(previous_state)
            self.logger.info("Wallet connection failed: %s", error.message)
            raise self._fail(error) from exc

        if generation != self._generation:
            raise self._fail(AuthError("Session was disconnected during sign-in"))

        self._session = Session(
            address=tokens.address or address,
            chain_id=chain_id,
            access_token=tokens.token,
            refresh_token=tokens.refresh_token,
            expires_at_ms=self._now_ms() + tokens.expires_in * 1000,
        )
        self.user = None
        self._persist()
        self._transition(SessionState.AUTHENTICATED)
        self.bind_provider(wallet)
        self._schedule_refresh()
        self.logger.info("Authenticated %s on chain %s", self._session.address, chain_id)
        self._notify()
        return self._session

    async def _wallet_request(self, wallet: Any, method: str, params: Optional[List[Any]] = None) -> Any:
        try:
            return await wallet.request(method, params or [])
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise classify_error(exc) from exc

    async def _auth_call(self, call: Any) -> Any:
        """Await a backend auth call; rejections become AuthError."""
        try:
            return await call
        except BackendError as exc:
            if not exc.retryable:
                raise AuthError(exc.message, status_code=exc.status_code) from exc
            raise

    # =========================================================================
    # Provider events
    # =========================================================================

    def bind_provider(self, wallet: Any) -> None:
        """Follow ``accountsChanged``/``chainChanged`` on the signing wallet."""
        self._detach_provider()
        self._provider = wallet
        self._provider_detach = [
            subscribe_provider_event(wallet, "accountsChanged", self._on_accounts_changed),
            subscribe_provider_event(wallet, "chainChanged", self._on_chain_changed),
        ]

    def _detach_provider(self) -> None:
        for detach in self._provider_detach:
            detach()
        self._provider_detach = []
        self._provider = None

    def _on_accounts_changed(self, accounts: Any) -> None:
        if self._session is None:
            return
        current = accounts[0] if accounts else None
        if not current or current.lower() != self._session.address.lower():
            self.logger.info("Wallet account changed; ending session")
            self.disconnect()

    def _on_chain_changed(self, chain_id: Any) -> None:
        if self._session is None:
            return
        try:
            new_chain = _parse_chain_id(chain_id)
        except (ChainError, ValueError):
            self.logger.warning("Ignoring invalid chainChanged payload: %r", chain_id)
            return
        if new_chain == self._session.chain_id:
            return
        self._session = self._session.model_copy(update={"chain_id": new_chain})
        self._persist()
        self.logger.info("Wallet switched to chain %s", new_chain)
        self._notify()

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh(self) -> Session:
        """
        Exchange the refresh token for a new pair.

        A rejection from the backend ends the session. Nothing is retried.
        """
        if self._refresh_task is not None and not self._refresh_task.done():
            return await asyncio.shield(self._refresh_task)
        self._refresh_task = asyncio.create_task(self._refresh())
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self) -> Session:
        session = self._session
        if session is None or not session.refresh_token:
            raise self._fail(AuthError("No refresh token available"))
        if self._state != SessionState.AUTHENTICATED:
            raise self._fail(AuthError(f"Cannot refresh while {self._state.value}"))

        generation = self._generation
        self._transition(SessionState.REFRESHING)

        try:
            tokens = await self._auth_call(self.api.refresh_token(session.refresh_token))
        except AuthError as exc:
            if generation == self._generation:
                self.logger.warning("Token refresh rejected; ending session")
                self.disconnect()
            raise self._fail(exc)
        except ChainSyncError as exc:
            if generation == self._generation:
                self._transition(SessionState.AUTHENTICATED)
            self.logger.warning("Token refresh failed: %s", exc.message)
            raise self._fail(exc)

        if generation != self._generation:
            raise self._fail(AuthError("Session was disconnected during refresh"))

        # Expiry never moves backwards across refreshes
        expires_at = self._now_ms() + tokens.expires_in * 1000
        if session.expires_at_ms is not None:
            expires_at = max(expires_at, session.expires_at_ms)

        self._session = session.model_copy(update={
            "access_token": tokens.token,
            "refresh_token": tokens.refresh_token,
            "expires_at_ms": expires_at,
        })
        self._persist()
        self._transition(SessionState.AUTHENTICATED)
        self._schedule_refresh()
        self.logger.info("Access token refreshed for %s", self._session.address)
        self._notify()
        return self._session

    def _schedule_refresh(self) -> None:
        self._cancel_refresh_timer()
        session = self._session
        if not self.auto_refresh or session is None or not session.refresh_token or session.expires_at_ms is None:
            return

        delay = (session.expires_at_ms - self._now_ms()) / 1000 - self.refresh_threshold_seconds
        self._refresh_timer = asyncio.create_task(self._auto_refresh(max(delay, 0.0)))

    def _cancel_refresh_timer(self) -> None:
        if self._refresh_timer is not None and not self._refresh_timer.done():
            self._refresh_timer.cancel()
        self._refresh_timer = None

    async def _auto_refresh(self, delay: float) -> None:
        try:
            if delay > 0:
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        # Detach so the refresh can schedule the next timer without cancelling this task
        self._refresh_timer = None
        try:
            await self.refresh()
        except ChainSyncError as exc:
            self.logger.warning("Automatic token refresh failed: %s", exc.message)

    # =========================================================================
    # Disconnect
    # =========================================================================

    def disconnect(self) -> None:
        """Clear the session in memory and storage. Safe to call repeatedly."""
        self._generation += 1
        # In-flight calls finish against the old generation; new calls start fresh
        self._connect_task = None
        self._refresh_task = None
        self._cancel_refresh_timer()
        self._detach_provider()

        had_session = self._session is not None
        self._session = None
        self.user = None
        self.storage.delete(self.storage_key)

        if self._state != SessionState.DISCONNECTED:
            self._transition(SessionState.DISCONNECTED)
        if had_session:
            self.logger.info("Session ended")
            self._notify()

    def close(self) -> None:
        """Stop timers and provider listeners without ending the stored session."""
        self._cancel_refresh_timer()
        self._detach_provider()

    # =========================================================================
    # Accessors
    # =========================================================================

    def get_auth_header(self) -> Dict[str, str]:
        session = self._session
        if session is None or not session.access_token:
            return {}
        return {"Authorization": f"Bearer {session.access_token}"}

    def is_token_expired(self) -> bool:
        session = self._session
        if session is None or session.expires_at_ms is None:
            return True
        return self._now_ms() >= session.expires_at_ms

    def time_until_expiry(self) -> int:
        """Whole seconds until the access token expires, never negative."""
        session = self._session
        if session is None or session.expires_at_ms is None:
            return 0
        return max(0, math.floor((session.expires_at_ms - self._now_ms()) / 1000))

    async def fetch_current_user(self) -> User:
        if not self.is_authenticated:
            raise self._fail(AuthError("Not authenticated"))
        try:
            user = await self._auth_call(self.api.get_current_user())
        except ChainSyncError as exc:
            raise self._fail(exc)
        self.user = user
        return user
