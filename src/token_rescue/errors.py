"""Error taxonomy for recovery finalization."""
from __future__ import annotations

from typing import Optional, Sequence


class RescueError(Exception):
    """Base class for all recovery errors."""


class TransientFetchError(RescueError):
    """Raised when the signature service or a chain read cannot be reached."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Fetch from {source} failed: {reason}")


class PreconditionError(RescueError):
    """Raised when execution is triggered with required fields missing."""

    def __init__(self, missing: Sequence[str]):
        self.missing = list(missing)
        super().__init__(
            f"Cannot execute recovery, missing: {', '.join(self.missing)}"
        )


class QuorumNotReachedError(RescueError):
    """Raised when execution is triggered before guardian quorum."""

    def __init__(self, signatures_left: int, signatures_needed: Optional[int]):
        self.signatures_left = signatures_left
        self.signatures_needed = signatures_needed
        if signatures_needed is None:
            message = "Quorum unknown: number of required signatures not yet received"
        else:
            message = f"Quorum not reached: waiting for {signatures_left} more signature(s)"
        super().__init__(message)


class ExecutionInProgressError(RescueError):
    """Raised when a second execution is triggered while one is running."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Recovery {identifier} is already executing")


class RecoveryAlreadyCompletedError(RescueError):
    """Raised when execution is triggered after a successful recovery."""

    def __init__(self, identifier: str, tx_hash: str):
        self.identifier = identifier
        self.tx_hash = tx_hash
        super().__init__(f"Recovery {identifier} already completed in {tx_hash}")


class SnapshotError(RescueError):
    """Raised when any balance read of a snapshot fails."""

    def __init__(self, token: str, reason: str):
        self.token = token
        self.reason = reason
        super().__init__(f"Balance snapshot failed for token {token}: {reason}")


class SubmissionError(RescueError):
    """Raised when the recovery transaction fails or reverts."""

    def __init__(
        self,
        reason: str,
        tx_hash: Optional[str] = None,
        revert_reason: Optional[str] = None,
    ):
        self.reason = reason
        self.tx_hash = tx_hash
        self.revert_reason = revert_reason
        message = f"Recovery submission failed: {reason}"
        if tx_hash:
            message += f" (tx {tx_hash})"
        if revert_reason:
            message += f": {revert_reason}"
        super().__init__(message)


__all__ = [
    "RescueError",
    "TransientFetchError",
    "PreconditionError",
    "QuorumNotReachedError",
    "ExecutionInProgressError",
    "RecoveryAlreadyCompletedError",
    "SnapshotError",
    "SubmissionError",
]
