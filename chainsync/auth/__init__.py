"""
Wallet authentication.

Models only; the session manager lives in ``chainsync.auth.session``.
"""

from .models import (
    AuthTokens,
    Challenge,
    InvalidSessionTransitionError,
    Session,
    SessionState,
    User,
)

__all__ = [
    "Session",
    "SessionState",
    "Challenge",
    "AuthTokens",
    "User",
    "InvalidSessionTransitionError",
]
