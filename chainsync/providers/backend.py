"""Async client for the ChainSync REST API."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..auth.models import AuthTokens, Challenge, User
from ..config import settings
from ..core.transfer.models import TransferIntent, TransferQuote, TransferRecord
from ..errors import BackendError, response_message

logger = logging.getLogger(__name__)

AuthHeaderSource = Callable[[], Dict[str, str]]


def unwrap_envelope(body: Any, status_code: Optional[int] = None) -> Any:
    """
    Accept both direct bodies and ``{success, data}`` envelopes.

    ``{"success": false, ...}`` is turned into a BackendError carrying the
    envelope's message.
    """
    if isinstance(body, dict) and "success" in body:
        if body.get("success") is False:
            message = body.get("message") or body.get("error") or "Request failed"
            raise BackendError(str(message), status_code=status_code)
        if "data" in body:
            return body["data"]
    return body


class ChainSyncApiClient:
    """Thin wrapper around the versioned ChainSync backend endpoints."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        auth_header: Optional[AuthHeaderSource] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout_s = timeout_s if timeout_s is not None else settings.request_timeout_seconds
        self._auth_header = auth_header
        self._transport = transport

    def set_auth_header_source(self, source: Optional[AuthHeaderSource]) -> None:
        self._auth_header = source

    def _headers(self, authenticated: bool) -> Dict[str, str]:
        headers = {
            "accept": "application/json",
            "content-type": "application/json",
        }
        if authenticated and self._auth_header is not None:
            headers.update(self._auth_header() or {})
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    path,
                    json=json,
                    params=params,
                    headers=self._headers(authenticated),
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            message = response_message(exc.response)
            logger.warning("ChainSync API %s %s failed with %s: %s", method, path, status, message)
            raise BackendError(message, status_code=status) from exc
        except httpx.TimeoutException as exc:
            logger.warning("ChainSync API %s %s timed out", method, path)
            raise BackendError("Request to the ChainSync API timed out") from exc
        except httpx.RequestError as exc:
            logger.warning("ChainSync API %s %s unreachable: %s", method, path, exc)
            raise BackendError(f"Could not reach the ChainSync API: {exc}") from exc

        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise BackendError("Invalid JSON in ChainSync API response", status_code=response.status_code) from exc
        return unwrap_envelope(body, status_code=response.status_code)

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def request_challenge(self, address: str, chain_id: int) -> Challenge:
        data = await self._request(
            "POST",
            "/auth/challenge",
            json={"address": address, "chainId": chain_id},
            authenticated=False,
        )
        return self._parse(Challenge, data, "challenge")

    async def verify_signature(
        self,
        *,
        address: str,
        signature: str,
        message: str,
        nonce: str,
        chain_id: int,
    ) -> AuthTokens:
        data = await self._request(
            "POST",
            "/auth/verify",
            json={
                "address": address,
                "signature": signature,
                "message": message,
                "nonce": nonce,
                "chainId": chain_id,
            },
            authenticated=False,
        )
        return self._parse(AuthTokens, data, "authentication")

    async def refresh_token(self, refresh_token: str) -> AuthTokens:
        data = await self._request(
            "POST",
            "/auth/refresh",
            json={"refreshToken": refresh_token},
            authenticated=False,
        )
        return self._parse(AuthTokens, data, "refresh")

    async def get_current_user(self) -> User:
        data = await self._request("GET", "/auth/me")
        # Some deployments nest the profile under "user"
        if isinstance(data, dict) and isinstance(data.get("user"), dict):
            data = data["user"]
        return self._parse(User, data, "user")

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def create_transfer(self, intent: TransferIntent) -> TransferRecord:
        """Register an intent; the endpoint depends on whether it crosses chains."""
        path = "/transfers/cross-chain" if intent.is_cross_chain else "/transfers/same-chain"
        data = await self._request("POST", path, json=intent.to_payload())
        if not isinstance(data, dict):
            raise BackendError("Invalid transfer response format", retryable=False)
        if isinstance(data.get("transfer"), dict):
            data = data["transfer"]
        return TransferRecord.from_wire(data, intent)

    async def list_transfers(self) -> List[TransferRecord]:
        data = await self._request("GET", "/transfers")
        if isinstance(data, dict):
            data = data.get("transfers") or data.get("items") or []
        return [TransferRecord.from_wire(item) for item in data or [] if isinstance(item, dict)]

    async def get_transfer(self, transfer_id: str) -> TransferRecord:
        data = await self._request("GET", f"/transfers/{transfer_id}")
        if not isinstance(data, dict):
            raise BackendError("Invalid transfer response format", retryable=False)
        return TransferRecord.from_wire(data)

    async def update_transfer_status(self, transfer_id: str, status: str, tx_hash: str) -> Any:
        return await self._request(
            "PATCH",
            f"/transfers/{transfer_id}/status",
            json={"status": status, "txHash": tx_hash},
        )

    async def get_quote(
        self,
        *,
        source_chain_id: int,
        destination_chain_id: int,
        contract_address: str,
        amount: str,
    ) -> TransferQuote:
        data = await self._request(
            "GET",
            "/transfers/quote",
            params={
                "sourceChainId": source_chain_id,
                "destinationChainId": destination_chain_id,
                "contractAddress": contract_address,
                "amount": amount,
            },
        )
        return TransferQuote.from_wire(data if isinstance(data, dict) else {})

    async def health(self) -> Dict[str, Any]:
        data = await self._request("GET", "/health", authenticated=False)
        return data if isinstance(data, dict) else {"status": data}

    @staticmethod
    def _parse(model: Any, data: Any, what: str) -> Any:
        if not isinstance(data, dict):
            raise BackendError(f"Invalid {what} response format", retryable=False)
        try:
            return model.model_validate(data)
        except ValueError as exc:
            raise BackendError(f"Invalid {what} response format", retryable=False) from exc
