"""
Tests for the Wallet Session Manager

Tests for the challenge-response handshake, persistence, refresh and
the session state machine.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from chainsync.auth.models import AuthTokens, Challenge, Session, SessionState, User
from chainsync.auth.session import SessionManager
from chainsync.errors import AuthError, BackendError, UserRejection
from chainsync.storage import MemoryStore
from chainsync.wallets.base import ProviderRpcError

ADDRESS = "0xAbC0000000000000000000000000000000000001"
OTHER_ADDRESS = "0xDef0000000000000000000000000000000000002"
NOW = 1_700_000_000.0
NOW_MS = int(NOW * 1000)


class FakeWallet:
    """Scripted EIP-1193 provider. Values that are exceptions are raised."""

    def __init__(self, responses=None):
        self.responses = {
            "eth_requestAccounts": [ADDRESS],
            "eth_chainId": "0x1",
            "personal_sign": "0xsignature",
        }
        self.responses.update(responses or {})
        self.calls = []
        self.listeners = {}
        self.gate = None

    async def request(self, method, params=None):
        self.calls.append((method, params))
        if method == "personal_sign" and self.gate is not None:
            await self.gate.wait()
        value = self.responses[method]
        if isinstance(value, Exception):
            raise value
        return value

    def on(self, event, handler):
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event, handler):
        self.listeners.get(event, []).remove(handler)

    def emit(self, event, payload):
        for handler in list(self.listeners.get(event, [])):
            handler(payload)


async def _drain(times: int = 10) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def api():
    """Backend client double with the happy-path auth responses."""
    client = MagicMock()
    client.request_challenge = AsyncMock(
        return_value=Challenge(message="Sign to log in", nonce="abc123", expires_in=300)
    )
    client.verify_signature = AsyncMock(
        return_value=AuthTokens(token="access-1", refresh_token="refresh-1", expires_in=300)
    )
    client.refresh_token = AsyncMock(
        return_value=AuthTokens(token="access-2", refresh_token="refresh-2", expires_in=3600)
    )
    client.get_current_user = AsyncMock()
    return client


@pytest.fixture
def storage() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def manager(api, storage) -> SessionManager:
    return SessionManager(api, storage, auto_refresh=False, clock=lambda: NOW)


def _stored_session(**overrides) -> dict:
    data = {
        "address": ADDRESS,
        "chainId": 1,
        "token": "stored-access",
        "refreshToken": "stored-refresh",
        "expiresAt": NOW_MS + 3_600_000,
    }
    data.update(overrides)
    return data


# =============================================================================
# State Machine Tests
# =============================================================================

class TestSessionStateMachine:
    """Tests for the transition table."""

    def test_initial_state_is_disconnected(self, manager: SessionManager):
        """Test that a new manager has no session."""
        assert manager.state == SessionState.DISCONNECTED
        assert manager.session is None
        assert manager.is_authenticated is False
        assert manager.get_auth_header() == {}

    def test_allowed_transitions_from_disconnected(self, manager: SessionManager):
        assert manager.can_transition_to(SessionState.AUTHENTICATING) is True
        assert manager.can_transition_to(SessionState.AUTHENTICATED) is True
        assert manager.can_transition_to(SessionState.REFRESHING) is False

    def test_api_reads_auth_header_from_manager(self, api, manager: SessionManager):
        """Test that the backend client is wired to the session's bearer header."""
        api.set_auth_header_source.assert_called_once_with(manager.get_auth_header)


# =============================================================================
# Connect Tests
# =============================================================================

class TestConnect:
    """Tests for the sign-in handshake."""

    @pytest.mark.asyncio
    async def test_successful_handshake(self, api, storage, manager: SessionManager):
        """Test the full challenge, sign and verify sequence."""
        wallet = FakeWallet()

        session = await manager.connect(wallet)

        assert [method for method, _ in wallet.calls] == ["eth_requestAccounts", "eth_chainId", "personal_sign"]
        assert wallet.calls[2][1] == ["Sign to log in", ADDRESS]
        api.request_challenge.assert_awaited_once_with(ADDRESS, 1)
        api.verify_signature.assert_awaited_once_with(
            address=ADDRESS,
            signature="0xsignature",
            message="Sign to log in",
            nonce="abc123",
            chain_id=1,
        )

        assert session.address == ADDRESS
        assert session.chain_id == 1
        assert session.access_token == "access-1"
        assert session.expires_at_ms == NOW_MS + 300_000
        assert manager.state == SessionState.AUTHENTICATED
        assert manager.provider is wallet
        assert manager.get_auth_header() == {"Authorization": "Bearer access-1"}
        assert storage.get_json("chainsync_auth") == {
            "address": ADDRESS,
            "chainId": 1,
            "token": "access-1",
            "refreshToken": "refresh-1",
            "expiresAt": NOW_MS + 300_000,
        }

    @pytest.mark.asyncio
    async def test_decimal_chain_id_is_accepted(self, manager: SessionManager):
        session = await manager.connect(FakeWallet({"eth_chainId": "137"}))
        assert session.chain_id == 137

    @pytest.mark.asyncio
    async def test_signature_rejected_leaves_state_untouched(self, api, storage, manager: SessionManager):
        """Test that declining the signature aborts without side effects."""
        wallet = FakeWallet({"personal_sign": ProviderRpcError(4001, "User rejected the request.")})

        with pytest.raises(UserRejection):
            await manager.connect(wallet)

        assert manager.state == SessionState.DISCONNECTED
        assert manager.session is None
        assert manager.last_error == "User rejected the request."
        assert storage.get("chainsync_auth") is None
        api.verify_signature.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_reconnect_keeps_previous_session(self, api, manager: SessionManager):
        """Test that a failed connect restores the prior authenticated session."""
        first = await manager.connect(FakeWallet())
        api.request_challenge.side_effect = BackendError("Service unavailable", status_code=503)

        with pytest.raises(BackendError):
            await manager.connect(FakeWallet({"eth_requestAccounts": [OTHER_ADDRESS]}))

        assert manager.state == SessionState.AUTHENTICATED
        assert manager.session == first

    @pytest.mark.asyncio
    async def test_verify_rejection_becomes_auth_error(self, api, manager: SessionManager):
        api.verify_signature.side_effect = BackendError("Invalid signature", status_code=401)

        with pytest.raises(AuthError) as exc_info:
            await manager.connect(FakeWallet())

        assert exc_info.value.message == "Invalid signature"
        assert exc_info.value.status_code == 401
        assert manager.state == SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_empty_accounts(self, manager: SessionManager):
        with pytest.raises(Exception, match="Failed to get wallet address"):
            await manager.connect(FakeWallet({"eth_requestAccounts": []}))
        assert manager.state == SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_concurrent_connects_share_one_handshake(self, api, manager: SessionManager):
        """Test that a second connect awaits the in-flight one."""
        wallet = FakeWallet()

        first, second = await asyncio.gather(manager.connect(wallet), manager.connect(wallet))

        assert first is second
        assert api.request_challenge.await_count == 1
        assert api.verify_signature.await_count == 1

    @pytest.mark.asyncio
    async def test_disconnect_during_sign_in(self, manager: SessionManager, storage):
        """Test that a sign-in finishing after disconnect does not resurrect the session."""
        wallet = FakeWallet()
        wallet.gate = asyncio.Event()

        task = asyncio.create_task(manager.connect(wallet))
        await _drain()
        assert manager.state == SessionState.AUTHENTICATING

        manager.disconnect()
        wallet.gate.set()

        with pytest.raises(AuthError):
            await task
        assert manager.state == SessionState.DISCONNECTED
        assert manager.session is None
        assert storage.get("chainsync_auth") is None

    @pytest.mark.asyncio
    async def test_connect_after_abandoned_sign_in_uses_new_wallet(self, manager: SessionManager, storage):
        """Test that a connect after disconnect runs its own handshake instead of joining the stale one."""
        stuck = FakeWallet()
        stuck.gate = asyncio.Event()
        other = FakeWallet({"eth_requestAccounts": [OTHER_ADDRESS]})

        abandoned = asyncio.create_task(manager.connect(stuck))
        await _drain()
        manager.disconnect()

        session = await manager.connect(other)

        assert [method for method, _ in other.calls] == ["eth_requestAccounts", "eth_chainId", "personal_sign"]
        assert session.address == OTHER_ADDRESS
        assert manager.state == SessionState.AUTHENTICATED

        stuck.gate.set()
        with pytest.raises(AuthError, match="disconnected during sign-in"):
            await abandoned
        assert manager.session.address == OTHER_ADDRESS
        assert manager.provider is other
        assert storage.get_json("chainsync_auth")["address"] == OTHER_ADDRESS


# =============================================================================
# Refresh Tests
# =============================================================================

class TestRefresh:
    """Tests for token refresh."""

    @pytest.mark.asyncio
    async def test_refresh_replaces_tokens(self, api, storage, manager: SessionManager):
        await manager.connect(FakeWallet())

        session = await manager.refresh()

        api.refresh_token.assert_awaited_once_with("refresh-1")
        assert session.access_token == "access-2"
        assert session.refresh_token == "refresh-2"
        assert session.expires_at_ms == NOW_MS + 3_600_000
        assert manager.state == SessionState.AUTHENTICATED
        assert storage.get_json("chainsync_auth")["token"] == "access-2"

    @pytest.mark.asyncio
    async def test_expiry_never_moves_backwards(self, api, manager: SessionManager):
        await manager.connect(FakeWallet())
        api.refresh_token.return_value = AuthTokens(token="a", refresh_token="r", expires_in=10)

        session = await manager.refresh()

        assert session.expires_at_ms == NOW_MS + 300_000

    @pytest.mark.asyncio
    async def test_refresh_rejected_disconnects(self, api, storage, manager: SessionManager):
        """Test that a 401 from refresh ends the session."""
        await manager.connect(FakeWallet())
        api.refresh_token.side_effect = BackendError("Invalid refresh token", status_code=401)

        with pytest.raises(AuthError):
            await manager.refresh()

        assert manager.state == SessionState.DISCONNECTED
        assert manager.session is None
        assert manager.get_auth_header() == {}
        assert storage.get("chainsync_auth") is None

    @pytest.mark.asyncio
    async def test_refresh_server_error_keeps_session(self, api, manager: SessionManager):
        """Test that a 5xx leaves the session in place without retrying."""
        session = await manager.connect(FakeWallet())
        api.refresh_token.side_effect = BackendError("Bad gateway", status_code=502)

        with pytest.raises(BackendError):
            await manager.refresh()

        assert manager.state == SessionState.AUTHENTICATED
        assert manager.session == session
        assert api.refresh_token.await_count == 1

    @pytest.mark.asyncio
    async def test_refresh_without_session(self, manager: SessionManager):
        with pytest.raises(AuthError, match="No refresh token"):
            await manager.refresh()

    @pytest.mark.asyncio
    async def test_auto_refresh_fires_before_expiry(self, api, storage):
        """Test that the timer refreshes once the threshold is reached."""
        manager = SessionManager(
            api, storage, auto_refresh=True, refresh_threshold_seconds=300, clock=lambda: NOW
        )

        await manager.connect(FakeWallet())
        await _drain()

        api.refresh_token.assert_awaited_once_with("refresh-1")
        assert manager.session.access_token == "access-2"
        # Next refresh is far away, so the timer is sleeping again
        assert manager._refresh_timer is not None and not manager._refresh_timer.done()
        manager.disconnect()


# =============================================================================
# Persistence Tests
# =============================================================================

class TestPersistence:
    """Tests for restoring the stored session."""

    @pytest.mark.asyncio
    async def test_restore_from_storage(self, storage, manager: SessionManager):
        storage.set_json("chainsync_auth", _stored_session())
        seen = []
        manager.subscribe(seen.append)

        session = await manager.restore()

        assert session.address == ADDRESS
        assert session.refresh_token == "stored-refresh"
        assert manager.state == SessionState.AUTHENTICATED
        assert seen == [None, session]

    @pytest.mark.asyncio
    async def test_corrupt_storage_is_cleared(self, storage, manager: SessionManager):
        storage.set("chainsync_auth", "{not json")

        assert await manager.restore() is None
        assert storage.get("chainsync_auth") is None
        assert manager.state == SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_malformed_session_is_cleared(self, storage, manager: SessionManager):
        storage.set_json("chainsync_auth", {"chainId": "not-a-number"})

        assert await manager.restore() is None
        assert storage.get("chainsync_auth") is None

    @pytest.mark.asyncio
    async def test_session_without_token_is_cleared(self, storage, manager: SessionManager):
        storage.set_json("chainsync_auth", _stored_session(token=None))

        assert await manager.restore() is None
        assert storage.get("chainsync_auth") is None

    def test_storage_shape_round_trips(self):
        session = Session.model_validate(_stored_session())
        assert Session.model_validate(session.to_storage()) == session


# =============================================================================
# Disconnect and Provider Event Tests
# =============================================================================

class TestDisconnect:
    """Tests for ending the session."""

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, storage, manager: SessionManager):
        await manager.connect(FakeWallet())
        seen = []
        manager.subscribe(seen.append)

        manager.disconnect()
        manager.disconnect()

        assert manager.state == SessionState.DISCONNECTED
        assert storage.get("chainsync_auth") is None
        assert seen[1:] == [None]

    @pytest.mark.asyncio
    async def test_account_change_disconnects(self, manager: SessionManager):
        wallet = FakeWallet()
        await manager.connect(wallet)

        wallet.emit("accountsChanged", [OTHER_ADDRESS])

        assert manager.state == SessionState.DISCONNECTED
        assert wallet.listeners["accountsChanged"] == []

    @pytest.mark.asyncio
    async def test_same_account_in_other_case_keeps_session(self, manager: SessionManager):
        wallet = FakeWallet()
        await manager.connect(wallet)

        wallet.emit("accountsChanged", [ADDRESS.lower()])

        assert manager.state == SessionState.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_chain_change_updates_session(self, storage, manager: SessionManager):
        wallet = FakeWallet()
        await manager.connect(wallet)

        wallet.emit("chainChanged", "0x89")

        assert manager.chain_id == 137
        assert storage.get_json("chainsync_auth")["chainId"] == 137


class TestExpiryHelpers:

    @pytest.mark.asyncio
    async def test_time_until_expiry(self, api, storage):
        now = [NOW]
        manager = SessionManager(api, storage, auto_refresh=False, clock=lambda: now[0])
        await manager.connect(FakeWallet())

        assert manager.time_until_expiry() == 300
        assert manager.is_token_expired() is False

        now[0] = NOW + 299.5
        assert manager.time_until_expiry() == 0
        now[0] = NOW + 301
        assert manager.time_until_expiry() == 0
        assert manager.is_token_expired() is True


class TestCurrentUser:

    @pytest.mark.asyncio
    async def test_fetch_current_user_caches_profile(self, api, manager: SessionManager):
        api.get_current_user.return_value = User(id="u1", address=ADDRESS)
        await manager.connect(FakeWallet())

        user = await manager.fetch_current_user()

        assert manager.user is user
        manager.disconnect()
        assert manager.user is None

    @pytest.mark.asyncio
    async def test_fetch_current_user_requires_session(self, api, manager: SessionManager):
        with pytest.raises(AuthError, match="Not authenticated"):
            await manager.fetch_current_user()
        api.get_current_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_restore_rearms_auto_refresh(self, api, storage):
        storage.set_json("chainsync_auth", _stored_session(expiresAt=NOW_MS + 60_000))
        manager = SessionManager(api, storage, auto_refresh=True, clock=lambda: NOW)

        await manager.restore()
        await _drain()

        api.refresh_token.assert_awaited_once_with("stored-refresh")
        manager.disconnect()
