"""
Error Classification

Defines the error taxonomy shared by the session and transfer engines.
Every error carries an ErrorContext describing its category and whether a
fresh, user-initiated attempt can be expected to succeed. Nothing in this
package retries automatically.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


# EIP-1193 provider error codes
USER_REJECTED_REQUEST = 4001
UNAUTHORIZED = 4100
UNSUPPORTED_METHOD = 4200
DISCONNECTED = 4900
UNRECOGNIZED_CHAIN = 4902


class ErrorCategory(str, Enum):
    """Categories of errors surfaced to the user."""

    USER_REJECTED = "user_rejected"              # Signature or approval declined
    VALIDATION = "validation"                    # Malformed local input
    AUTHENTICATION = "authentication"            # Challenge/verify/refresh rejected
    TRANSACTION_REVERTED = "transaction_reverted"  # On-chain revert
    TIMEOUT = "timeout"                          # Confirmation or request timed out
    CHAIN = "chain"                              # Other provider/RPC failure
    BACKEND = "backend"                          # Non-2xx from the REST API
    NETWORK = "network"                          # REST API unreachable
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    retryable: bool = False
    status_code: Optional[int] = None
    suggested_action: Optional[str] = None
    chain_id: Optional[int] = None
    tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class ChainSyncError(Exception):
    """Base class for every error raised by the engine."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.context = context or ErrorContext(category=category)

    @property
    def retryable(self) -> bool:
        return self.context.retryable


class UserRejection(ChainSyncError):
    """The user declined a signature, approval or transaction in their wallet."""

    def __init__(self, message: str = "Request rejected by user"):
        super().__init__(
            message,
            category=ErrorCategory.USER_REJECTED,
            context=ErrorContext(category=ErrorCategory.USER_REJECTED, retryable=False),
        )


class ValidationError(ChainSyncError):
    """Malformed local input. Never sent over the network."""

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            context=ErrorContext(
                category=ErrorCategory.VALIDATION,
                retryable=False,
                suggested_action="Correct the highlighted input",
                details={"field": field_name} if field_name else {},
            ),
        )
        self.field_name = field_name


class AuthError(ChainSyncError):
    """The backend rejected a challenge, verification or refresh."""

    def __init__(self, message: str = "Authentication failed", status_code: Optional[int] = None):
        super().__init__(
            message,
            category=ErrorCategory.AUTHENTICATION,
            context=ErrorContext(
                category=ErrorCategory.AUTHENTICATION,
                retryable=False,
                status_code=status_code,
                suggested_action="Reconnect your wallet",
            ),
        )
        self.status_code = status_code


class ChainError(ChainSyncError):
    """A chain read or write failed. A fresh attempt may succeed."""

    def __init__(
        self,
        message: str = "Chain request failed",
        category: ErrorCategory = ErrorCategory.CHAIN,
        tx_hash: Optional[str] = None,
        chain_id: Optional[int] = None,
        code: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=category,
            context=ErrorContext(
                category=category,
                retryable=True,
                tx_hash=tx_hash,
                chain_id=chain_id,
                details={"code": code} if code is not None else {},
            ),
        )
        self.code = code
        self.tx_hash = tx_hash


class TransactionRevertedError(ChainError):
    """Transaction was mined with a failed status."""

    def __init__(self, message: str = "Transaction reverted", tx_hash: Optional[str] = None):
        super().__init__(message, category=ErrorCategory.TRANSACTION_REVERTED, tx_hash=tx_hash)


class ConfirmationTimeoutError(ChainError):
    """No receipt arrived within the confirmation timeout."""

    def __init__(self, message: str = "Timed out waiting for confirmation", tx_hash: Optional[str] = None):
        super().__init__(message, category=ErrorCategory.TIMEOUT, tx_hash=tx_hash)


class BackendError(ChainSyncError):
    """
    Non-2xx response (or no response at all) from the REST API.

    4xx responses are not retryable and their message is shown verbatim.
    5xx responses and network failures are retryable. A response that
    arrived but broke the API contract passes ``retryable=False``.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, *, retryable: Optional[bool] = None):
        reached_backend = status_code is not None or retryable is not None
        category = ErrorCategory.BACKEND if reached_backend else ErrorCategory.NETWORK
        if retryable is None:
            retryable = status_code is None or status_code >= 500
        super().__init__(
            message,
            category=category,
            context=ErrorContext(
                category=category,
                retryable=retryable,
                status_code=status_code,
                suggested_action="Try again" if retryable else None,
            ),
        )
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500


def response_message(response: httpx.Response) -> str:
    """Pull the human-readable message out of an error response body."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        nested = body.get("data")
        if isinstance(nested, dict) and isinstance(nested.get("message"), str):
            return nested["message"]

    return response.reason_phrase or f"HTTP {response.status_code}"


def classify_error(error: Exception) -> ChainSyncError:
    """
    Convert an arbitrary exception into the nearest taxonomy kind.

    Already-classified errors are returned unchanged. Provider errors are
    recognised by their EIP-1193 ``code`` attribute, everything else by
    its type or message.
    """
    if isinstance(error, ChainSyncError):
        return error

    if isinstance(error, httpx.HTTPStatusError):
        return BackendError(response_message(error.response), status_code=error.response.status_code)
    if isinstance(error, httpx.TimeoutException):
        return BackendError("Request to the ChainSync API timed out")
    if isinstance(error, httpx.RequestError):
        return BackendError(f"Could not reach the ChainSync API: {error}")

    message = str(error) or error.__class__.__name__
    lowered = message.lower()
    code = getattr(error, "code", None)

    if code == USER_REJECTED_REQUEST or "user rejected" in lowered or "user denied" in lowered:
        return UserRejection(message)

    if code == UNRECOGNIZED_CHAIN:
        return ChainError(message, code=code)

    revert_patterns = ["revert", "execution reverted", "transaction failed", "out of gas"]
    if any(p in lowered for p in revert_patterns):
        return TransactionRevertedError(message)

    timeout_patterns = ["timeout", "timed out", "deadline"]
    if any(p in lowered for p in timeout_patterns):
        return ConfirmationTimeoutError(message)

    return ChainError(message, code=code if isinstance(code, int) else None)
