"""
Transfer Models

Intents, records, quotes and the progress step template.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # Epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TransferStatus(str, Enum):
    """Local lifecycle of a transfer record."""

    PENDING = "pending"          # Registered, not yet submitted on-chain
    PROCESSING = "processing"    # Source transaction confirmed, settlement under way
    COMPLETED = "completed"      # Delivered on the destination chain
    FAILED = "failed"            # Submission failed

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "TransferStatus":
        """Map a backend status string onto the local lifecycle."""
        if not value:
            return cls.PENDING
        normalized = str(value).strip().lower()
        mapping = {
            "pending": cls.PENDING,
            "initiated": cls.PENDING,
            "created": cls.PENDING,
            "confirmed": cls.PROCESSING,
            "submitted": cls.PROCESSING,
            "processing": cls.PROCESSING,
            "completed": cls.COMPLETED,
            "delivered": cls.COMPLETED,
            "failed": cls.FAILED,
            "reverted": cls.FAILED,
        }
        return mapping.get(normalized, cls.PENDING)


@dataclass(frozen=True)
class TransferIntent:
    """A single user transfer attempt. Constructed fresh per attempt."""

    source_chain_id: int
    destination_chain_id: int
    token_address: str
    amount: str  # Decimal string in display units, e.g. "12.5"
    recipient_address: str
    contract_address: str
    token_symbol: Optional[str] = None
    decimals: Optional[int] = None

    @property
    def is_cross_chain(self) -> bool:
        return self.source_chain_id != self.destination_chain_id

    def to_payload(self) -> Dict[str, Any]:
        """Request body for the same-chain/cross-chain registration endpoints."""
        payload: Dict[str, Any] = {
            "tokenAddress": self.token_address,
            "recipientAddress": self.recipient_address,
            "amount": self.amount,
            "sourceChainId": self.source_chain_id,
            "contractAddress": self.contract_address,
        }
        if self.is_cross_chain:
            payload["destinationChainId"] = self.destination_chain_id
        return payload


@dataclass
class TransferRecord:
    """A transfer as acknowledged by the backend and tracked locally."""

    id: str
    source_chain_id: int
    destination_chain_id: int
    token_address: str
    amount: str
    recipient_address: str
    contract_address: str = ""
    fee: str = "0"
    estimated_time_seconds: int = 60
    status: TransferStatus = TransferStatus.PENDING
    source_hash: Optional[str] = None
    destination_hash: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_cross_chain(self) -> bool:
        return self.source_chain_id != self.destination_chain_id

    @classmethod
    def from_wire(cls, payload: Dict[str, Any], intent: Optional[TransferIntent] = None) -> "TransferRecord":
        """
        Build a record from a backend body.

        Fields the backend omits are filled from the intent that produced
        the record, when one is given.
        """
        data = payload or {}

        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                value = data.get(key)
                if value is not None and value != "":
                    return value
            return default

        source_chain = pick("sourceChainId", "sourceChain", default=intent.source_chain_id if intent else 0)
        destination_chain = pick(
            "destinationChainId",
            "destinationChain",
            default=intent.destination_chain_id if intent else source_chain,
        )
        cross_chain = int(source_chain) != int(destination_chain)
        now = _utcnow()

        return cls(
            id=str(pick("id", "transferId", "_id", default=f"transfer_{uuid4().hex[:12]}")),
            source_chain_id=int(source_chain),
            destination_chain_id=int(destination_chain),
            token_address=pick("tokenAddress", "asset", default=intent.token_address if intent else ""),
            amount=str(pick("amount", default=intent.amount if intent else "0")),
            recipient_address=pick(
                "recipientAddress",
                "recipient",
                default=intent.recipient_address if intent else "",
            ),
            contract_address=pick("contractAddress", default=intent.contract_address if intent else ""),
            fee=str(pick("fee", default="0")),
            estimated_time_seconds=int(pick("estimatedTime", "estimatedTimeSeconds", default=120 if cross_chain else 60)),
            status=TransferStatus.from_wire(pick("status")),
            source_hash=pick("sourceHash", "txHash"),
            destination_hash=pick("destinationHash"),
            created_at=_parse_timestamp(pick("createdAt")) or now,
            updated_at=_parse_timestamp(pick("updatedAt")) or now,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferRecord":
        """Inverse of ``to_dict``, used when loading local history."""
        record = cls.from_wire(data)
        # Local history stores the local status verbatim
        record.status = TransferStatus(data.get("status", TransferStatus.PENDING.value))
        return record

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sourceChainId": self.source_chain_id,
            "destinationChainId": self.destination_chain_id,
            "tokenAddress": self.token_address,
            "amount": self.amount,
            "recipientAddress": self.recipient_address,
            "contractAddress": self.contract_address,
            "fee": self.fee,
            "estimatedTime": self.estimated_time_seconds,
            "status": self.status.value,
            "sourceHash": self.source_hash,
            "destinationHash": self.destination_hash,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class TransferQuote:
    """Fee and timing estimate from ``GET /transfers/quote``."""

    fee: str
    estimated_time_seconds: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> "TransferQuote":
        data = payload or {}
        fee = data.get("fee", data.get("totalFee", "0"))
        estimated = data.get("estimatedTime", data.get("estimatedTimeSeconds"))
        return cls(
            fee=str(fee),
            estimated_time_seconds=int(estimated) if estimated is not None else None,
            raw=dict(data),
        )


# =============================================================================
# Progress
# =============================================================================


class StepStatus(str, Enum):
    """Status of a single progress step."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ProgressStatus(str, Enum):
    """Overall status of a tracked transfer."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# Fixed, non-skippable step order
STEP_TEMPLATE = (
    ("intent-initiated", "Intent Initiated"),
    ("source-chain-confirmed", "Source Chain Confirmed"),
    ("validator-verified", "Validator Verified"),
    ("settlement-in-progress", "Settlement In Progress"),
    ("destination-delivery", "Destination Delivery"),
)

# Steps that link to the source transaction on the block explorer
EXPLORER_STEP_IDS = frozenset({"intent-initiated", "source-chain-confirmed"})


@dataclass
class ProgressStep:
    """A single observable stage of a transfer."""

    id: str
    label: str
    status: StepStatus = StepStatus.PENDING
    timestamp: Optional[datetime] = None        # When the step went in_progress
    completed_at: Optional[datetime] = None
    duration_label: Optional[str] = None
    explorer_url: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "duration": self.duration_label,
            "explorerUrl": self.explorer_url,
            "errorMessage": self.error_message,
        }


@dataclass
class TransferProgress:
    """Ordered progress steps for one transfer."""

    transfer_id: str
    steps: List[ProgressStep] = field(default_factory=list)
    overall_status: ProgressStatus = ProgressStatus.PENDING
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_template(cls, transfer_id: str, metadata: Optional[Dict[str, Any]] = None) -> "TransferProgress":
        return cls(
            transfer_id=transfer_id,
            steps=[ProgressStep(id=step_id, label=label) for step_id, label in STEP_TEMPLATE],
            metadata=dict(metadata or {}),
        )

    @property
    def current_index(self) -> Optional[int]:
        """Index of the first step that is not completed."""
        for index, step in enumerate(self.steps):
            if step.status != StepStatus.COMPLETED:
                return index
        return None

    @property
    def current_step(self) -> Optional[ProgressStep]:
        index = self.current_index
        return self.steps[index] if index is not None else None

    @property
    def completed_count(self) -> int:
        return len([s for s in self.steps if s.status == StepStatus.COMPLETED])

    @property
    def progress_percent(self) -> float:
        if not self.steps:
            return 0.0
        return (self.completed_count / len(self.steps)) * 100

    @property
    def is_terminal(self) -> bool:
        return self.overall_status in (ProgressStatus.COMPLETED, ProgressStatus.FAILED)

    def get_step(self, step_id: str) -> Optional[ProgressStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transferId": self.transfer_id,
            "steps": [s.to_dict() for s in self.steps],
            "overallStatus": self.overall_status.value,
            "completed": self.completed_count,
            "total": len(self.steps),
            "progressPercent": self.progress_percent,
            "metadata": self.metadata,
        }


class InvalidStepTransitionError(Exception):
    """Raised when a progress step is moved along an edge the template forbids."""

    def __init__(self, step_id: str, from_status: StepStatus, to_status: StepStatus, message: Optional[str] = None):
        self.step_id = step_id
        self.from_status = from_status
        self.to_status = to_status
        self.message = message or (
            f"Cannot move step {step_id} from {from_status.value} to {to_status.value}"
        )
        super().__init__(self.message)
