"""
Recovery execution state machine.

COLLECTING -> READY -> EXECUTING -> COMPLETED
                 ^          |
                 +----------+  (snapshot / submission failure)

EXECUTING is entered only by an explicit ``execute()`` call. An attempt
reads a frozen copy of the record, snapshots balances, builds the
recover() call and submits it exactly once. Expected failures return the
executor to READY so the user can try again with fresh balances.
Anything outside the error taxonomy moves it to FAILED for good.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from . import quorum
from .balances import BalanceSnapshotter
from .contracts import RecoveryReceipt, RecoverySubmitter
from .errors import (
    ExecutionInProgressError,
    PreconditionError,
    QuorumNotReachedError,
    RecoveryAlreadyCompletedError,
    RescueError,
)
from .logging_utils import OperationType, RescueLogger, get_rescue_logger
from .permit import build_recovery_call
from .records import RecoveryRecord, missing_execution_fields

logger = logging.getLogger(__name__)


class ExecutionState(str, Enum):
    """Lifecycle state of a recovery execution."""
    COLLECTING = "collecting"
    READY = "ready"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ExecutionAttempt:
    """One user-triggered execution attempt."""
    attempt_number: int
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    success: bool = False
    error: Optional[str] = None
    tx_hash: Optional[str] = None
    balances: Dict[str, int] = field(default_factory=dict)

    def finish(self, success: bool, error: Optional[str] = None) -> None:
        self.completed_at = datetime.now(timezone.utc)
        self.success = success
        self.error = error


class RecoveryExecutor:
    """Drives one recovery from quorum to a mined recover() transaction."""

    def __init__(
        self,
        record: RecoveryRecord,
        snapshotter: BalanceSnapshotter,
        submitter: RecoverySubmitter,
        rescue_logger: Optional[RescueLogger] = None,
    ):
        self._record = record
        self._snapshotter = snapshotter
        self._submitter = submitter
        self._rescue_logger = rescue_logger
        self._lock = asyncio.Lock()
        # None while idle; state then follows quorum
        self._phase: Optional[ExecutionState] = None
        self._receipt: Optional[RecoveryReceipt] = None
        self._last_error: Optional[Exception] = None
        self._attempts: List[ExecutionAttempt] = []

    @property
    def record(self) -> RecoveryRecord:
        return self._record

    @property
    def state(self) -> ExecutionState:
        if self._phase is not None:
            return self._phase
        if quorum.is_ready(self._record):
            return ExecutionState.READY
        return ExecutionState.COLLECTING

    @property
    def receipt(self) -> Optional[RecoveryReceipt]:
        return self._receipt

    @property
    def last_error(self) -> Optional[Exception]:
        """Error of the most recent refused or failed trigger."""
        return self._last_error

    @property
    def attempts(self) -> List[ExecutionAttempt]:
        return list(self._attempts)

    def can_execute(self) -> bool:
        return self.state == ExecutionState.READY

    def _check_can_start(self) -> None:
        if self._phase == ExecutionState.COMPLETED:
            raise RecoveryAlreadyCompletedError(
                self._record.identifier, self._receipt.tx_hash if self._receipt else ""
            )
        if self._phase == ExecutionState.FAILED:
            raise RuntimeError(
                f"Recovery {self._record.identifier} executor failed: {self._last_error}"
            )
        if self._phase == ExecutionState.EXECUTING or self._lock.locked():
            raise ExecutionInProgressError(self._record.identifier)

        status = quorum.evaluate(self._record)
        if not status.ready:
            raise QuorumNotReachedError(status.signatures_left, status.signatures_needed)

        missing = missing_execution_fields(self._record)
        if missing:
            raise PreconditionError(missing)

    async def execute(self) -> RecoveryReceipt:
        """
        Run one execution attempt.

        Raises:
            QuorumNotReachedError: still collecting signatures
            PreconditionError: a required field is missing, state stays READY
            ExecutionInProgressError: another attempt is running
            RecoveryAlreadyCompletedError: the recovery already succeeded
            SnapshotError: a balance read failed, nothing was submitted
            SubmissionError: the transaction failed or reverted
        """
        try:
            self._check_can_start()
        except (PreconditionError, QuorumNotReachedError) as e:
            self._last_error = e
            logger.warning(f"Recovery {self._record.identifier} not executed: {e}")
            raise

        # No await between the checks above and taking the phase
        self._phase = ExecutionState.EXECUTING
        attempt = ExecutionAttempt(attempt_number=len(self._attempts) + 1)
        self._attempts.append(attempt)
        rescue_logger = self._rescue_logger or get_rescue_logger()

        async with self._lock:
            try:
                frozen = self._record.freeze()
                balances = await self._snapshotter.snapshot(
                    frozen.permitted_tokens,
                    frozen.original_address,
                    identifier=frozen.identifier,
                )
                attempt.balances = {b.token: b.balance for b in balances}

                async with rescue_logger.operation_context(
                    OperationType.PERMIT_BUILD,
                    frozen.identifier,
                    pal_count=len(frozen.signatures),
                ):
                    call = build_recovery_call(frozen, balances)

                async with rescue_logger.operation_context(
                    OperationType.SUBMISSION,
                    frozen.identifier,
                ) as ctx:
                    receipt = await self._submitter.submit_recovery(call)
                    ctx.metadata["tx_hash"] = receipt.tx_hash

            except RescueError as e:
                self._phase = None
                self._last_error = e
                attempt.tx_hash = getattr(e, "tx_hash", None)
                attempt.finish(success=False, error=str(e))
                logger.warning(
                    f"Recovery {self._record.identifier} attempt "
                    f"{attempt.attempt_number} failed, back to ready: {e}"
                )
                raise
            except asyncio.CancelledError:
                self._phase = None
                attempt.finish(success=False, error="cancelled")
                raise
            except Exception as e:
                self._phase = ExecutionState.FAILED
                self._last_error = e
                attempt.finish(success=False, error=str(e))
                logger.error(f"Recovery {self._record.identifier} execution failed: {e}")
                raise

        self._phase = ExecutionState.COMPLETED
        self._receipt = receipt
        self._last_error = None
        attempt.tx_hash = receipt.tx_hash
        attempt.finish(success=True)
        logger.info(f"Recovery {self._record.identifier} completed in {receipt.tx_hash}")
        return receipt


__all__ = ["ExecutionState", "ExecutionAttempt", "RecoveryExecutor"]
