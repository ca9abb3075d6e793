"""
Chain Interface Adapter

Balance and allowance reads, approvals and ChainSync transfer submission
over the selected EIP-1193 wallet provider. Writes are submitted with
``eth_sendTransaction`` and then polled until a receipt arrives.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

from ...config import settings
from ...errors import (
    UNRECOGNIZED_CHAIN,
    ChainError,
    ConfirmationTimeoutError,
    TransactionRevertedError,
    UserRejection,
    ValidationError,
    classify_error,
)
from ...services.address import is_valid_evm_address, is_valid_tx_hash
from . import encoding


class ChainInterface(Protocol):
    """What the transfer orchestrator needs from a chain."""

    async def get_native_balance(self, owner: str) -> int:
        ...

    async def get_token_balance(self, token: str, owner: str) -> int:
        ...

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        ...

    async def approve(self, token: str, spender: str, amount: int) -> str:
        ...

    async def transfer_same_chain(self, contract: str, token: str, recipient: str, amount: int) -> str:
        ...

    async def transfer_cross_chain(
        self,
        contract: str,
        token: str,
        recipient: str,
        amount: int,
        destination_chain_id: int,
    ) -> str:
        ...

    async def wait_for_confirmation(self, tx_hash: str) -> Dict[str, Any]:
        ...


def _require_address(value: str, field_name: str) -> None:
    if not is_valid_evm_address(value):
        raise ValidationError(f"Invalid {field_name} address: {value!r}", field_name=field_name)


def _require_amount(value: int, field_name: str = "amount") -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValidationError(f"Invalid {field_name}: expected non-negative integer base units", field_name=field_name)


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ChainError(f"Unexpected quantity in RPC response: {value!r}")


class ProviderChainAdapter:
    """
    ChainInterface implementation backed by a wallet provider.

    The sending account follows the session: call ``bind_session`` with the
    SessionManager, or set ``account`` directly.
    """

    def __init__(
        self,
        provider: Any,
        *,
        account: Optional[str] = None,
        chain_id: Optional[int] = None,
        poll_interval_seconds: Optional[float] = None,
        confirmation_timeout_seconds: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.provider = provider
        self.account = account
        self.chain_id = chain_id
        self.poll_interval_seconds = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else settings.confirmation_poll_interval_seconds
        )
        self.confirmation_timeout_seconds = (
            confirmation_timeout_seconds
            if confirmation_timeout_seconds is not None
            else settings.confirmation_timeout_seconds
        )
        self.logger = logger or logging.getLogger(__name__)

    # =========================================================================
    # Session binding
    # =========================================================================

    def bind_session(self, session_manager: Any) -> Any:
        """Track the active address and chain; returns the unsubscribe callable."""
        return session_manager.subscribe(self._on_session_change)

    def _on_session_change(self, session: Any) -> None:
        if session is None:
            self.account = None
            self.chain_id = None
        else:
            self.account = session.address
            self.chain_id = session.chain_id

    # =========================================================================
    # RPC
    # =========================================================================

    async def _rpc(self, method: str, params: Optional[List[Any]] = None) -> Any:
        try:
            return await self.provider.request(method, params or [])
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = classify_error(exc)
            if isinstance(error, UserRejection):
                self.logger.info("User rejected %s", method)
            else:
                self.logger.warning("RPC %s failed: %s", method, error.message)
            raise error from exc

    async def _eth_call(self, to: str, data: str) -> str:
        return await self._rpc("eth_call", [{"to": to, "data": data}, "latest"])

    async def _sender(self) -> str:
        if self.account:
            return self.account
        accounts = await self._rpc("eth_accounts")
        if not accounts:
            raise ChainError("No connected account")
        self.account = accounts[0]
        return self.account

    async def _send(self, to: str, data: str) -> str:
        sender = await self._sender()
        tx_hash = await self._rpc("eth_sendTransaction", [{"from": sender, "to": to, "data": data}])
        if not isinstance(tx_hash, str) or not is_valid_tx_hash(tx_hash):
            raise ChainError(f"Provider returned an invalid transaction hash: {tx_hash!r}")
        self.logger.info("Submitted transaction %s to %s", tx_hash, to)
        return tx_hash

    async def _send_and_confirm(self, to: str, data: str) -> str:
        tx_hash = await self._send(to, data)
        await self.wait_for_confirmation(tx_hash)
        return tx_hash

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_chain_id(self) -> int:
        chain_id = _to_int(await self._rpc("eth_chainId"))
        self.chain_id = chain_id
        return chain_id

    async def get_native_balance(self, owner: str) -> int:
        _require_address(owner, "owner")
        return _to_int(await self._rpc("eth_getBalance", [owner, "latest"]))

    async def get_token_balance(self, token: str, owner: str) -> int:
        _require_address(token, "token")
        _require_address(owner, "owner")
        return encoding.decode_uint(await self._eth_call(token, encoding.encode_balance_of(owner)))

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        _require_address(token, "token")
        _require_address(owner, "owner")
        _require_address(spender, "spender")
        result = await self._eth_call(token, encoding.encode_allowance(owner, spender))
        return encoding.decode_uint(result)

    async def calculate_fee(self, contract: str, amount: int) -> int:
        _require_address(contract, "contract")
        _require_amount(amount)
        return encoding.decode_uint(await self._eth_call(contract, encoding.encode_calculate_fee(amount)))

    # =========================================================================
    # Writes
    # =========================================================================

    async def approve(self, token: str, spender: str, amount: int) -> str:
        _require_address(token, "token")
        _require_address(spender, "spender")
        _require_amount(amount)
        return await self._send_and_confirm(token, encoding.encode_approve(spender, amount))

    async def transfer_same_chain(self, contract: str, token: str, recipient: str, amount: int) -> str:
        _require_address(contract, "contract")
        _require_address(token, "token")
        _require_address(recipient, "recipient")
        _require_amount(amount)
        data = encoding.encode_transfer_same_chain(token, recipient, amount)
        return await self._send_and_confirm(contract, data)

    async def transfer_cross_chain(
        self,
        contract: str,
        token: str,
        recipient: str,
        amount: int,
        destination_chain_id: int,
    ) -> str:
        _require_address(contract, "contract")
        _require_address(token, "token")
        _require_address(recipient, "recipient")
        _require_amount(amount)
        _require_amount(destination_chain_id, "destination chain id")
        data = encoding.encode_initiate_transfer(token, amount, destination_chain_id, recipient)
        return await self._send_and_confirm(contract, data)

    async def wait_for_confirmation(self, tx_hash: str) -> Dict[str, Any]:
        """Poll for a receipt. A ``0x0`` status is a revert."""
        if not is_valid_tx_hash(tx_hash):
            raise ValidationError(f"Invalid transaction hash: {tx_hash!r}", field_name="tx_hash")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirmation_timeout_seconds

        while True:
            receipt = await self._rpc("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                status = receipt.get("status")
                if status is not None and _to_int(status) == 0:
                    raise TransactionRevertedError(f"Transaction {tx_hash} reverted", tx_hash=tx_hash)
                self.logger.info("Transaction %s confirmed", tx_hash)
                return receipt

            if loop.time() >= deadline:
                raise ConfirmationTimeoutError(
                    f"Transaction {tx_hash} not confirmed after {self.confirmation_timeout_seconds}s",
                    tx_hash=tx_hash,
                )
            await asyncio.sleep(self.poll_interval_seconds)

    async def switch_chain(self, chain_id: int) -> None:
        try:
            await self._rpc("wallet_switchEthereumChain", [{"chainId": hex(chain_id)}])
        except ChainError as exc:
            if exc.code == UNRECOGNIZED_CHAIN:
                raise ChainError(
                    f"Chain {chain_id} is not added to your wallet. Please add it manually.",
                    chain_id=chain_id,
                    code=UNRECOGNIZED_CHAIN,
                ) from exc
            raise
        self.chain_id = chain_id
