"""
Recovery record: aggregate state of one in-progress recovery.

The record is owned by a single session. The signature poller merges
updates into it, the executor reads it through an immutable snapshot
taken with ``freeze()``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


def normalize_address(address: str) -> str:
    """Key form of an address (case-insensitive hex)."""
    return address.strip().lower()


@dataclass(frozen=True)
class GuardianSignature:
    """A guardian's approval of the recovery."""
    address: str
    signature: str  # 0x-prefixed hex

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GuardianSignature":
        return cls(address=data["address"], signature=data["signature"])

    def to_dict(self) -> Dict[str, str]:
        return {"address": self.address, "signature": self.signature}


@dataclass(frozen=True)
class RecoveryUpdate:
    """One poll result from the signature service."""
    signatures: Tuple[GuardianSignature, ...] = ()
    deadline: Optional[int] = None
    signatures_needed: Optional[int] = None


@dataclass(frozen=True)
class RecordSnapshot:
    """Immutable view of a RecoveryRecord used for a single execution attempt."""
    identifier: str
    original_address: Optional[str]
    recipient_address: Optional[str]
    squad: Tuple[str, ...]
    threshold: int
    permitted_tokens: Tuple[str, ...]
    nonce: Optional[int]
    backup_signature: Optional[str]
    signatures: Tuple[GuardianSignature, ...]
    signatures_needed: Optional[int]
    deadline: Optional[int]


@dataclass
class RecoveryRecord:
    """
    Mutable state of one recovery attempt.

    Identity fields (addresses, squad, threshold, tokens, nonce) are fixed
    at initiation. ``signatures`` and ``deadline`` are filled in over time
    by ``apply_update``.
    """
    identifier: str
    original_address: Optional[str] = None
    recipient_address: Optional[str] = None
    # Guardian addresses in registration order
    squad: Tuple[str, ...] = ()
    threshold: int = 0
    permitted_tokens: Tuple[str, ...] = ()
    nonce: Optional[int] = None
    backup_signature: Optional[str] = None
    signatures_needed: Optional[int] = None
    deadline: Optional[int] = None

    # normalized guardian address -> signature
    _signatures: Dict[str, GuardianSignature] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self.squad = _dedupe_addresses(self.squad)
        self.permitted_tokens = tuple(self.permitted_tokens)

    @property
    def squad_keys(self) -> FrozenSet[str]:
        """Normalized squad addresses, for membership checks."""
        return frozenset(normalize_address(a) for a in self.squad)

    @property
    def signatures(self) -> List[GuardianSignature]:
        """Collected guardian signatures, one per guardian."""
        return list(self._signatures.values())

    @property
    def signature_count(self) -> int:
        return len(self._signatures)

    def has_signed(self, address: str) -> bool:
        return normalize_address(address) in self._signatures

    def upsert_signature(self, signature: GuardianSignature) -> bool:
        """
        Insert or replace a guardian's signature.

        Returns True if the guardian had not signed before.
        """
        key = normalize_address(signature.address)
        is_new = key not in self._signatures
        if self.squad and key not in self.squad_keys:
            logger.warning(
                f"Recovery {self.identifier}: signature from {signature.address} "
                f"who is not in the guardian squad"
            )
        self._signatures[key] = signature
        return is_new

    def apply_update(self, update: RecoveryUpdate) -> bool:
        """
        Merge a poll result into the record.

        Signatures are upserted by guardian address and never removed.
        The deadline is set when first observed and refreshed by later
        values, never cleared. Returns True if anything changed.
        """
        changed = False

        for signature in update.signatures:
            key = normalize_address(signature.address)
            if self._signatures.get(key) != signature:
                self.upsert_signature(signature)
                changed = True

        if update.deadline is not None and update.deadline != self.deadline:
            if self.deadline is not None and update.deadline < self.deadline:
                logger.info(
                    f"Recovery {self.identifier}: deadline moved earlier "
                    f"{self.deadline} -> {update.deadline}"
                )
            self.deadline = update.deadline
            changed = True

        if (
            update.signatures_needed is not None
            and update.signatures_needed != self.signatures_needed
        ):
            self.signatures_needed = update.signatures_needed
            changed = True

        return changed

    def freeze(self) -> RecordSnapshot:
        """Take an immutable copy for use during execution."""
        return RecordSnapshot(
            identifier=self.identifier,
            original_address=self.original_address,
            recipient_address=self.recipient_address,
            squad=self.squad,
            threshold=self.threshold,
            permitted_tokens=tuple(self.permitted_tokens),
            nonce=self.nonce,
            backup_signature=self.backup_signature,
            signatures=tuple(self._signatures.values()),
            signatures_needed=self.signatures_needed,
            deadline=self.deadline,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecoveryRecord":
        """Build a record from its JSON form (camelCase keys)."""
        record = cls(
            identifier=data["identifier"],
            original_address=data.get("originalAddress"),
            recipient_address=data.get("recipientAddress"),
            squad=tuple(data.get("squad") or ()),
            threshold=int(data.get("threshold") or 0),
            permitted_tokens=tuple(data.get("permittedTokens") or ()),
            nonce=_optional_int(data.get("nonce")),
            backup_signature=data.get("backupSignature"),
            signatures_needed=_optional_int(data.get("signaturesNeeded")),
            deadline=_optional_int(data.get("deadline")),
        )
        for item in _signature_items(data.get("signatures")):
            record.upsert_signature(GuardianSignature.from_dict(item))
        return record

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON form (camelCase keys)."""
        return {
            "identifier": self.identifier,
            "originalAddress": self.original_address,
            "recipientAddress": self.recipient_address,
            "squad": list(self.squad),
            "threshold": self.threshold,
            "permittedTokens": list(self.permitted_tokens),
            "nonce": self.nonce,
            "backupSignature": self.backup_signature,
            "signatures": [s.to_dict() for s in self._signatures.values()],
            "signaturesNeeded": self.signatures_needed,
            "deadline": self.deadline,
        }


EXECUTION_FIELDS = (
    "backup_signature",
    "deadline",
    "original_address",
    "recipient_address",
    "nonce",
)


def missing_execution_fields(record: "RecoveryRecord | RecordSnapshot") -> List[str]:
    """Names of the fields that must be present before execution but are not."""
    missing = []
    for name in EXECUTION_FIELDS:
        value = getattr(record, name)
        if value is None or value == "":
            missing.append(name)
    return missing


def _dedupe_addresses(addresses: Sequence[str]) -> Tuple[str, ...]:
    """Keep the first occurrence of each address, preserving order."""
    seen = set()
    result = []
    for address in addresses:
        key = normalize_address(address)
        if key not in seen:
            seen.add(key)
            result.append(address)
    return tuple(result)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def _signature_items(value: Any) -> Sequence[Dict[str, Any]]:
    # Stored either as a list or as an address-keyed mapping
    if not value:
        return []
    if isinstance(value, dict):
        return list(value.values())
    return list(value)


__all__ = [
    "GuardianSignature",
    "RecoveryUpdate",
    "RecordSnapshot",
    "RecoveryRecord",
    "EXECUTION_FIELDS",
    "missing_execution_fields",
    "normalize_address",
]
