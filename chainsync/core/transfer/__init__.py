"""
Transfer Module

Transfer intents and records, local history, progress tracking and the
orchestrator that drives a transfer from registration to settlement.
"""

from .history import TransferHistory
from .models import (
    EXPLORER_STEP_IDS,
    STEP_TEMPLATE,
    InvalidStepTransitionError,
    ProgressStatus,
    ProgressStep,
    StepStatus,
    TransferIntent,
    TransferProgress,
    TransferQuote,
    TransferRecord,
    TransferStatus,
)
from .orchestrator import TransferOrchestrator
from .progress import ProgressTracker, format_duration

__all__ = [
    # Models
    "TransferIntent",
    "TransferRecord",
    "TransferQuote",
    "TransferStatus",
    # Progress
    "StepStatus",
    "ProgressStatus",
    "ProgressStep",
    "TransferProgress",
    "InvalidStepTransitionError",
    "STEP_TEMPLATE",
    "EXPLORER_STEP_IDS",
    "ProgressTracker",
    "format_duration",
    # Orchestration
    "TransferOrchestrator",
    # History
    "TransferHistory",
]
