"""Guardian quorum evaluation."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .records import RecordSnapshot, RecoveryRecord

RecordLike = Union[RecoveryRecord, RecordSnapshot]


@dataclass(frozen=True)
class QuorumStatus:
    """Quorum state of a record at one point in time."""
    signatures_needed: Optional[int]
    collected: int
    signatures_left: int
    ready: bool

    @property
    def needed_known(self) -> bool:
        return self.signatures_needed is not None


def _collected(record: RecordLike) -> int:
    if isinstance(record, RecordSnapshot):
        return len(record.signatures)
    return record.signature_count


def signatures_left(record: RecordLike) -> int:
    """Number of guardian signatures still missing, never negative.

    An unknown ``signatures_needed`` counts as zero needed.
    """
    return max(0, (record.signatures_needed or 0) - _collected(record))


def is_ready(record: RecordLike) -> bool:
    """True once the required signature count is known and met."""
    return record.signatures_needed is not None and signatures_left(record) == 0


def evaluate(record: RecordLike) -> QuorumStatus:
    return QuorumStatus(
        signatures_needed=record.signatures_needed,
        collected=_collected(record),
        signatures_left=signatures_left(record),
        ready=is_ready(record),
    )


__all__ = ["QuorumStatus", "signatures_left", "is_ready", "evaluate"]
