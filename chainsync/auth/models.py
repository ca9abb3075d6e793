"""
Authentication models.

Wire shapes use camelCase on the backend and in persisted storage; the
Python side uses snake_case attribute names.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    """Lifecycle states of the wallet session."""
    DISCONNECTED = "disconnected"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


class Challenge(BaseModel):
    """Response for challenge generation."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message: str
    nonce: str
    expires_in: Optional[int] = Field(default=None, alias="expiresIn")


class AuthTokens(BaseModel):
    """Token pair issued by /auth/verify and /auth/refresh."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    address: Optional[str] = None
    token: str
    refresh_token: str = Field(alias="refreshToken")
    expires_in: int = Field(alias="expiresIn")


class User(BaseModel):
    """Authenticated user profile. The backend may add fields freely."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[str] = None
    address: Optional[str] = None


class Session(BaseModel):
    """
    Authenticated wallet session.

    Persisted as JSON under a single key, e.g.
    ``{"address": "0x..", "chainId": 1, "token": "..", "refreshToken": "..",
    "expiresAt": 1700000000000}``.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    address: str
    chain_id: int = Field(alias="chainId")
    access_token: Optional[str] = Field(default=None, alias="token")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    expires_at_ms: Optional[int] = Field(default=None, alias="expiresAt")

    @property
    def is_authenticated(self) -> bool:
        return self.access_token is not None

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True)


class InvalidSessionTransitionError(Exception):
    """Raised when a session state change is not allowed from the current state."""

    def __init__(self, from_state: SessionState, to_state: SessionState, message: Optional[str] = None):
        self.from_state = from_state
        self.to_state = to_state
        self.message = message or f"Cannot transition session from {from_state.value} to {to_state.value}"
        super().__init__(self.message)
