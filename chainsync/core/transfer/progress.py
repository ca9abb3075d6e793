"""
Transfer Progress Tracker

Walks a transfer through the fixed five-step template. The transition
table is the part that matters; the timer driver stands in for
confirmations the backend does not push yet, and ``apply_event`` accepts
them when it does.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from ...config import settings
from ...constants import explorer_tx_url
from .models import (
    EXPLORER_STEP_IDS,
    InvalidStepTransitionError,
    ProgressStatus,
    ProgressStep,
    StepStatus,
    TransferProgress,
)

ProgressListener = Callable[[TransferProgress], None]
CompletionCallback = Callable[[TransferProgress], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_duration(seconds: float) -> str:
    seconds = max(0, int(round(seconds)))
    if seconds < 60:
        return f"{seconds}s"
    minutes, remainder = divmod(seconds, 60)
    return f"{minutes}m {remainder}s" if remainder else f"{minutes}m"


class ProgressTracker:
    """
    Observable progress of the most recent transfer.

    Only one step is in progress at a time and completed steps are never
    re-opened. ``close()`` hides the view without stopping progression.
    """

    TRANSITIONS: Dict[StepStatus, Set[StepStatus]] = {
        StepStatus.PENDING: {StepStatus.IN_PROGRESS},
        StepStatus.IN_PROGRESS: {StepStatus.COMPLETED, StepStatus.FAILED},
        StepStatus.COMPLETED: set(),
        StepStatus.FAILED: set(),
    }

    def __init__(
        self,
        dwell_seconds: Optional[Sequence[float]] = None,
        on_complete: Optional[CompletionCallback] = None,
        clock: Callable[[], datetime] = _utcnow,
        logger: Optional[logging.Logger] = None,
    ):
        self.dwell_seconds: List[float] = list(
            dwell_seconds if dwell_seconds is not None else settings.progress_step_dwell_seconds
        )
        self.on_complete = on_complete
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.progress: Optional[TransferProgress] = None
        self.is_open = False
        self._listeners: List[ProgressListener] = []
        self._driver: Optional[asyncio.Task] = None

    # =========================================================================
    # Observers
    # =========================================================================

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        if self.progress is None:
            return
        for listener in list(self._listeners):
            try:
                listener(self.progress)
            except Exception:
                self.logger.exception("Progress listener failed")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, transfer_id: str, meta: Optional[Dict[str, Any]] = None, *, auto_advance: bool = True) -> TransferProgress:
        """
        Reset to all-pending for ``transfer_id`` and open the view.

        ``meta`` may carry ``chain_id`` and ``tx_hash`` for explorer links.
        With ``auto_advance`` the timer driver walks the steps; otherwise
        steps move only through ``apply_event``.
        """
        self.cancel()
        self.progress = TransferProgress.from_template(transfer_id, meta)
        self.is_open = True
        self.logger.info("Tracking progress for transfer %s", transfer_id)
        self._emit()
        if auto_advance:
            self._driver = asyncio.create_task(self.advance())
        return self.progress

    async def advance(self) -> None:
        """Timer driver: begin the current step, dwell, complete it, repeat."""
        progress = self.progress
        if progress is None:
            return
        try:
            while progress is self.progress and not progress.is_terminal:
                index = progress.current_index
                if index is None:
                    break
                step = progress.steps[index]
                if step.status == StepStatus.PENDING:
                    self._move(step, StepStatus.IN_PROGRESS)
                await asyncio.sleep(self._dwell_for(index))
                if progress is not self.progress or step.status != StepStatus.IN_PROGRESS:
                    break
                self._move(step, StepStatus.COMPLETED)
        except asyncio.CancelledError:
            return

    def _dwell_for(self, index: int) -> float:
        if index < len(self.dwell_seconds):
            return self.dwell_seconds[index]
        return self.dwell_seconds[-1] if self.dwell_seconds else 0.0

    def apply_event(self, step_id: str, status: StepStatus) -> ProgressStep:
        """
        Apply a pushed step update.

        Only the current step can move. A ``completed`` event for a pending
        current step begins and completes it in one go.
        """
        if self.progress is None:
            raise ValueError("No transfer is being tracked")
        status = StepStatus(status)
        step = self.progress.get_step(step_id)
        if step is None:
            raise ValueError(f"Unknown progress step: {step_id}")

        current = self.progress.current_step
        if step is not current:
            raise InvalidStepTransitionError(
                step_id,
                step.status,
                status,
                message=f"Step {step_id} is not the current step",
            )

        if status == StepStatus.FAILED:
            self.fail(step.error_message or "Step failed")
            return step
        if step.status == StepStatus.PENDING and status == StepStatus.COMPLETED:
            self._move(step, StepStatus.IN_PROGRESS)
        self._move(step, status)
        return step

    def fail(self, reason: str) -> None:
        """Fail the current step and the transfer, stopping the timer driver."""
        self.cancel()
        progress = self.progress
        if progress is None or progress.is_terminal:
            return
        step = progress.current_step
        if step is not None:
            if step.status == StepStatus.PENDING:
                self._move(step, StepStatus.IN_PROGRESS, emit=False)
            step.error_message = reason
            self._move(step, StepStatus.FAILED, emit=False)
        progress.overall_status = ProgressStatus.FAILED
        self.logger.warning("Transfer %s progress failed: %s", progress.transfer_id, reason)
        self._emit()

    def cancel(self) -> None:
        """Stop the timer driver. Step state is left as it is."""
        if self._driver is not None and not self._driver.done():
            self._driver.cancel()
        self._driver = None

    def open(self) -> None:
        self.is_open = True
        self._emit()

    def close(self) -> None:
        self.is_open = False
        self._emit()

    async def wait_until_done(self) -> Optional[TransferProgress]:
        if self._driver is not None:
            await asyncio.gather(self._driver, return_exceptions=True)
        return self.progress

    # =========================================================================
    # Transitions
    # =========================================================================

    def _move(self, step: ProgressStep, to_status: StepStatus, emit: bool = True) -> None:
        if to_status not in self.TRANSITIONS[step.status]:
            raise InvalidStepTransitionError(step.id, step.status, to_status)

        progress = self.progress
        now = self.clock()
        step.status = to_status

        if to_status == StepStatus.IN_PROGRESS:
            step.timestamp = now
            if progress is not None and progress.overall_status == ProgressStatus.PENDING:
                progress.overall_status = ProgressStatus.IN_PROGRESS
        elif to_status == StepStatus.COMPLETED:
            step.completed_at = now
            if step.timestamp is not None:
                step.duration_label = format_duration((now - step.timestamp).total_seconds())
            if step.id in EXPLORER_STEP_IDS and progress is not None:
                step.explorer_url = explorer_tx_url(
                    progress.metadata.get("chain_id"),
                    progress.metadata.get("tx_hash"),
                )
        elif to_status == StepStatus.FAILED:
            step.completed_at = now

        if progress is not None and progress.current_index is None:
            progress.overall_status = ProgressStatus.COMPLETED
            self.logger.info("Transfer %s progress completed", progress.transfer_id)
            if emit:
                self._emit()
            if self.on_complete is not None:
                try:
                    self.on_complete(progress)
                except Exception:
                    self.logger.exception("Progress completion callback failed")
            return

        if emit:
            self._emit()
