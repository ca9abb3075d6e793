"""
Tests for Error Classification

Tests for the error taxonomy and classify_error.
"""

import httpx
import pytest

from chainsync.errors import (
    AuthError,
    BackendError,
    ChainError,
    ChainSyncError,
    ConfirmationTimeoutError,
    ErrorCategory,
    TransactionRevertedError,
    UserRejection,
    ValidationError,
    classify_error,
    response_message,
)
from chainsync.wallets.base import ProviderRpcError


def _status_error(status: int, body=None) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://localhost:3001/api/v1/transfers/same-chain")
    response = httpx.Response(status, json=body, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


# =============================================================================
# Taxonomy Tests
# =============================================================================

class TestTaxonomy:
    """Tests for retryability of each error kind."""

    def test_every_kind_derives_from_base(self):
        """Test that all kinds share the ChainSyncError base."""
        for error in (
            UserRejection(),
            ValidationError("bad"),
            AuthError(),
            ChainError(),
            BackendError("x", status_code=400),
        ):
            assert isinstance(error, ChainSyncError)

    def test_chain_errors_are_retryable(self):
        """Test that chain failures allow a fresh attempt."""
        assert ChainError("rpc down").retryable is True
        assert TransactionRevertedError().retryable is True
        assert ConfirmationTimeoutError().retryable is True

    def test_backend_4xx_not_retryable(self):
        """Test that client errors are final."""
        error = BackendError("Insufficient liquidity", status_code=422)
        assert error.retryable is False
        assert error.is_client_error is True
        assert error.category == ErrorCategory.BACKEND

    def test_backend_5xx_and_network_retryable(self):
        """Test that server and network errors are retryable."""
        assert BackendError("oops", status_code=503).retryable is True
        network = BackendError("unreachable")
        assert network.retryable is True
        assert network.category == ErrorCategory.NETWORK

    def test_backend_contract_error_not_retryable(self):
        """Test that a malformed response is a final backend error."""
        error = BackendError("Invalid transfer response format", retryable=False)
        assert error.retryable is False
        assert error.category == ErrorCategory.BACKEND
        assert error.is_client_error is False

    def test_user_rejection_and_validation_not_retryable(self):
        assert UserRejection().retryable is False
        assert ValidationError("bad", field_name="amount").context.details == {"field": "amount"}


# =============================================================================
# classify_error Tests
# =============================================================================

class TestClassifyError:
    """Tests for converting arbitrary exceptions."""

    def test_classified_errors_pass_through(self):
        """Test that taxonomy errors are returned unchanged."""
        error = AuthError("nope", status_code=401)
        assert classify_error(error) is error

    def test_eip1193_rejection_code(self):
        """Test that code 4001 becomes UserRejection."""
        result = classify_error(ProviderRpcError(4001, "User rejected the request."))
        assert isinstance(result, UserRejection)

    def test_rejection_by_message(self):
        """Test that rejection wording without a code is still recognised."""
        assert isinstance(classify_error(RuntimeError("User denied transaction signature")), UserRejection)

    def test_unrecognized_chain_code(self):
        result = classify_error(ProviderRpcError(4902, "Unrecognized chain ID"))
        assert isinstance(result, ChainError)
        assert result.code == 4902

    def test_revert_patterns(self):
        result = classify_error(RuntimeError("execution reverted: ERC20: insufficient allowance"))
        assert isinstance(result, TransactionRevertedError)

    def test_timeout_patterns(self):
        assert isinstance(classify_error(RuntimeError("request timed out")), ConfirmationTimeoutError)

    def test_http_status_error(self):
        """Test that httpx status errors keep the body message and status."""
        result = classify_error(_status_error(400, {"message": "Amount too small"}))
        assert isinstance(result, BackendError)
        assert result.message == "Amount too small"
        assert result.status_code == 400
        assert result.retryable is False

    def test_httpx_network_error(self):
        request = httpx.Request("GET", "http://localhost:3001/api/v1/health")
        result = classify_error(httpx.ConnectError("refused", request=request))
        assert isinstance(result, BackendError)
        assert result.status_code is None
        assert result.retryable is True

    def test_unknown_errors_become_chain_errors(self):
        result = classify_error(RuntimeError("something odd"))
        assert type(result) is ChainError
        assert result.message == "something odd"


class TestResponseMessage:

    @pytest.mark.parametrize(
        "body, expected",
        [
            ({"message": "Invalid signature"}, "Invalid signature"),
            ({"error": "Nonce expired"}, "Nonce expired"),
            ({"success": False, "data": {"message": "Not found"}}, "Not found"),
        ],
    )
    def test_message_fields(self, body, expected):
        assert response_message(_status_error(400, body).response) == expected

    def test_falls_back_to_reason_phrase(self):
        request = httpx.Request("GET", "http://localhost")
        response = httpx.Response(502, content=b"<html>", request=request)
        assert response_message(response) == "Bad Gateway"
