"""
Transfer Orchestrator

Drives one transfer through the pipeline:

1. Validate the intent locally
2. Register it with the backend (same-chain or cross-chain endpoint)
3. Read the token allowance for the ChainSync contract
4. Approve an unlimited allowance if the current one is too small
5. Submit the transfer transaction and wait for confirmation
6. Report the transaction hash back to the backend record
7. Start progress tracking

``execute`` is not re-entrant: a call made while another is running is
dropped, so a double-submitted form never registers two transfers.
"""

import logging
from decimal import Decimal
from typing import Any, Callable, Optional, Tuple

from ...config import settings
from ...constants import DISPLAY_FEE_RATE, MAX_UINT256
from ...errors import (
    ChainSyncError,
    UserRejection,
    ValidationError,
    classify_error,
)
from ...notifications import NotificationCenter
from ...services.address import is_valid_evm_address, is_zero_address
from ..chain.adapter import ProviderChainAdapter
from ..chain.units import format_units, parse_amount, resolve_decimals, to_base_units
from .history import TransferHistory
from .models import TransferIntent, TransferProgress, TransferQuote, TransferRecord, TransferStatus
from .progress import ProgressTracker

# Status sent to the backend once the source transaction is mined
RECONCILE_STATUS = "CONFIRMED"


class TransferOrchestrator:
    """
    Runs transfers for the authenticated session.

    Errors after registration are reported once through the notification
    center and re-raised. A wallet rejection is reported as a warning and
    ``execute`` returns None instead of raising.
    """

    def __init__(
        self,
        session_manager: Any,
        *,
        api: Any = None,
        chain: Any = None,
        history: Optional[TransferHistory] = None,
        progress: Optional[ProgressTracker] = None,
        notifications: Optional[NotificationCenter] = None,
        check_balance_before_submit: Optional[bool] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.session_manager = session_manager
        self.api = api or session_manager.api
        self._injected_chain = chain
        self._chain: Optional[ProviderChainAdapter] = None
        self._chain_unsubscribe: Optional[Callable[[], None]] = None
        self.history = history or TransferHistory(storage=session_manager.storage)
        self.progress = progress or ProgressTracker()
        if self.progress.on_complete is None:
            self.progress.on_complete = self._on_progress_complete
        self.notifications = notifications or NotificationCenter()
        self.check_balance_before_submit = (
            settings.check_balance_before_submit
            if check_balance_before_submit is None
            else check_balance_before_submit
        )
        self.logger = logger or logging.getLogger(__name__)
        self.current_transfer: Optional[TransferRecord] = None
        self._in_progress = False

    @property
    def is_executing(self) -> bool:
        return self._in_progress

    @property
    def chain(self) -> Any:
        """
        The injected chain adapter, or one built over the session's wallet.

        A built adapter is replaced as soon as the session signs in through
        a different wallet.
        """
        if self._injected_chain is not None:
            return self._injected_chain
        provider = self.session_manager.provider
        if provider is None:
            self._release_chain()
            raise ValidationError("No wallet provider connected")
        if self._chain is None or self._chain.provider is not provider:
            self._release_chain()
            self._chain = ProviderChainAdapter(provider)
            self._chain_unsubscribe = self._chain.bind_session(self.session_manager)
        return self._chain

    def _release_chain(self) -> None:
        if self._chain_unsubscribe is not None:
            self._chain_unsubscribe()
        self._chain_unsubscribe = None
        self._chain = None

    # =========================================================================
    # Execute
    # =========================================================================

    async def execute(self, intent: TransferIntent) -> Optional[TransferRecord]:
        if self._in_progress:
            self.logger.info("Transfer already in progress; duplicate submit ignored")
            return None
        self._in_progress = True
        try:
            return await self._execute(intent)
        finally:
            self._in_progress = False

    async def _execute(self, intent: TransferIntent) -> Optional[TransferRecord]:
        owner, amount = self._validate(intent)
        chain = self.chain
        record: Optional[TransferRecord] = None
        submitting = False

        try:
            # Register
            self.notifications.info("Creating transfer record...")
            record = await self.api.create_transfer(intent)
            record.status = TransferStatus.PENDING
            self.history.add(record)
            self.current_transfer = record
            self.logger.info(
                "Registered transfer %s (%s -> %s)",
                record.id,
                intent.source_chain_id,
                intent.destination_chain_id,
            )

            # Allowance
            self.notifications.info("Checking token allowance...")
            allowance = await chain.get_allowance(intent.token_address, owner, intent.contract_address)

            if self.check_balance_before_submit:
                balance = await chain.get_token_balance(intent.token_address, owner)
                if balance < amount:
                    raise ValidationError("Insufficient token balance", field_name="amount")

            # Approve
            if allowance < amount:
                self.notifications.info("Please approve token spending in your wallet...")
                approval_hash = await chain.approve(intent.token_address, intent.contract_address, MAX_UINT256)
                self.logger.info("Approval %s confirmed for transfer %s", approval_hash, record.id)
                self.notifications.success("Token approval confirmed")

            # Submit
            submitting = True
            self.notifications.info("Please confirm the transfer in your wallet...")
            if intent.is_cross_chain:
                tx_hash = await chain.transfer_cross_chain(
                    intent.contract_address,
                    intent.token_address,
                    intent.recipient_address,
                    amount,
                    intent.destination_chain_id,
                )
            else:
                tx_hash = await chain.transfer_same_chain(
                    intent.contract_address,
                    intent.token_address,
                    intent.recipient_address,
                    amount,
                )
            submitting = False
            record.source_hash = tx_hash
            self.history.update_status(record.id, TransferStatus.PENDING, source_hash=tx_hash)

            # Reconcile
            await self.api.update_transfer_status(record.id, RECONCILE_STATUS, tx_hash)
            self.history.update_status(record.id, TransferStatus.PROCESSING, source_hash=tx_hash)
            self.notifications.success("Transfer submitted")

        except Exception as exc:
            error = classify_error(exc)
            if isinstance(error, UserRejection):
                self.logger.info("Transfer %s rejected in wallet", record.id if record else "(unregistered)")
                self.notifications.warning("Transaction was rejected in your wallet")
                return None
            if record is not None and submitting:
                self.history.update_status(record.id, TransferStatus.FAILED)
            self.logger.warning(
                "Transfer %s failed: %s",
                record.id if record else "(unregistered)",
                error.message,
            )
            self.notifications.error(error.message)
            if error is exc:
                raise
            raise error from exc

        self.progress.start(
            record.id,
            {
                "chain_id": intent.source_chain_id,
                "destination_chain_id": intent.destination_chain_id,
                "tx_hash": tx_hash,
            },
        )
        return record

    def _validate(self, intent: TransferIntent) -> Tuple[str, int]:
        """Local checks only. Returns the owner address and amount in base units."""
        if not self.session_manager.is_authenticated:
            raise ValidationError("Connect your wallet before transferring", field_name="session")

        parse_amount(intent.amount)
        for field_name, value in (
            ("recipient", intent.recipient_address),
            ("token", intent.token_address),
            ("contract", intent.contract_address),
        ):
            if not is_valid_evm_address(value):
                raise ValidationError(f"Invalid {field_name} address", field_name=field_name)
        if is_zero_address(intent.recipient_address):
            raise ValidationError("Recipient cannot be the zero address", field_name="recipient")

        decimals = resolve_decimals(intent.token_address, intent.token_symbol, intent.decimals)
        amount = to_base_units(intent.amount, decimals)
        return self.session_manager.address, amount

    def _on_progress_complete(self, progress: TransferProgress) -> None:
        self.history.mark_completed(progress.transfer_id)
        self.notifications.success("Transfer completed successfully!")

    # =========================================================================
    # Quotes and history
    # =========================================================================

    async def quote(self, intent: TransferIntent) -> TransferQuote:
        parse_amount(intent.amount)
        return await self.api.get_quote(
            source_chain_id=intent.source_chain_id,
            destination_chain_id=intent.destination_chain_id,
            contract_address=intent.contract_address,
            amount=intent.amount,
        )

    @staticmethod
    def estimate_display_fee(amount: str) -> str:
        """0.1% fee shown on the form before a backend quote is available."""
        try:
            value = parse_amount(amount)
        except ChainSyncError:
            return "0"
        fee = value * Decimal(DISPLAY_FEE_RATE)
        return format_units(int(fee.scaleb(18).to_integral_value()), 18)

    async def sync_history(self):
        return await self.history.sync(self.api)
