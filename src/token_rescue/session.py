"""
Recovery session: owns one record, its poller and its executor.

Usage:
    async with RecoverySession(record, source, snapshotter, submitter) as session:
        ...
        if session.status().state == ExecutionState.READY:
            receipt = await session.recover()

Leaving the ``async with`` block always stops polling, so no update can
land on the record after the session is gone.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from . import quorum
from .backend import RecoveryDataSource
from .balances import BalanceSnapshotter
from .config import RescueConfig, get_config
from .contracts import RecoveryReceipt, RecoverySubmitter
from .executor import ExecutionState, RecoveryExecutor
from .links import build_rescue_link
from .logging_utils import RescueLogger
from .poller import RecordObserver, SignaturePoller
from .records import RecoveryRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionStatus:
    """What a user should see about a recovery right now."""
    identifier: str
    state: ExecutionState
    signatures_needed: Optional[int]
    collected: int
    signatures_left: int
    deadline: Optional[int]
    rescue_link: str
    last_error: Optional[str] = None
    tx_hash: Optional[str] = None

    @property
    def message(self) -> str:
        if self.state == ExecutionState.COMPLETED:
            return f"Recovered in {self.tx_hash}"
        if self.state == ExecutionState.FAILED:
            return f"Recovery failed: {self.last_error}"
        if self.state == ExecutionState.EXECUTING:
            return "Recovering..."
        if self.state == ExecutionState.READY:
            if self.last_error:
                return f"Ready to recover (last attempt failed: {self.last_error})"
            return "Ready to recover"
        if self.signatures_needed is None:
            return "Recovery in progress..."
        noun = "signer" if self.signatures_left == 1 else "signers"
        return f"Waiting for {self.signatures_left} {noun}"


class RecoverySession:
    """Scoped lifetime for polling plus the one-shot execution."""

    def __init__(
        self,
        record: RecoveryRecord,
        data_source: RecoveryDataSource,
        snapshotter: BalanceSnapshotter,
        submitter: RecoverySubmitter,
        config: Optional[RescueConfig] = None,
        rescue_logger: Optional[RescueLogger] = None,
    ):
        self._config = config or get_config()
        self._record = record
        self._poller = SignaturePoller(
            record,
            data_source,
            config=self._config.polling,
            rescue_logger=rescue_logger,
        )
        self._executor = RecoveryExecutor(
            record,
            snapshotter,
            submitter,
            rescue_logger=rescue_logger,
        )
        self._open = False

    @property
    def record(self) -> RecoveryRecord:
        return self._record

    @property
    def poller(self) -> SignaturePoller:
        return self._poller

    @property
    def executor(self) -> RecoveryExecutor:
        return self._executor

    @property
    def rescue_link(self) -> str:
        return build_rescue_link(self._record.identifier, self._config.rescue_base_url)

    def add_observer(self, observer: RecordObserver) -> None:
        self._poller.add_observer(observer)

    async def open(self) -> None:
        """Fetch the current signatures and deadline once, then start polling."""
        if self._open:
            return
        self._open = True
        await self._poller.poll_once()
        await self._poller.start()

    async def close(self) -> None:
        if not self._open:
            return
        self._open = False
        await self._poller.stop()

    async def __aenter__(self) -> "RecoverySession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def status(self) -> SessionStatus:
        result = quorum.evaluate(self._record)
        last_error = self._executor.last_error
        receipt = self._executor.receipt
        return SessionStatus(
            identifier=self._record.identifier,
            state=self._executor.state,
            signatures_needed=result.signatures_needed,
            collected=result.collected,
            signatures_left=result.signatures_left,
            deadline=self._record.deadline,
            rescue_link=self.rescue_link,
            last_error=str(last_error) if last_error else None,
            tx_hash=receipt.tx_hash if receipt else None,
        )

    async def recover(self) -> RecoveryReceipt:
        """Trigger execution, with polling paused for the attempt."""
        # A rejected concurrent trigger must not resume the running attempt's pause
        pause = self._config.polling.pause_during_execution and not self._poller.is_paused
        if pause:
            self._poller.pause()
        try:
            return await self._executor.execute()
        finally:
            if pause:
                self._poller.resume()


__all__ = ["SessionStatus", "RecoverySession"]
