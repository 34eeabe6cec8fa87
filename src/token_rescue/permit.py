"""Permit2 batch permit assembly for the TokenBackups recover() call.

The verifier consumes a Permit2 ``PermitBatchTransferFrom`` signed by the
account's backup key, plus one signature per guardian ("pal"), the
recovery target and the guardian set to re-check quorum against.

Two deadlines are involved and are deliberately kept apart:
- the permit deadline is MAX_UINT256, so the permit itself never expires
- each pal carries the recovery deadline from the signature service,
  which the verifier checks against the guardian signatures

References:
- https://github.com/Uniswap/permit2 (ISignatureTransfer)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Sequence, Tuple

from eth_abi import encode
from web3 import Web3

from .balances import TokenBalance
from .errors import PreconditionError
from .records import RecordSnapshot, missing_execution_fields, normalize_address


# Canonical Permit2 address, same on all EVM chains (CREATE2)
PERMIT2_ADDRESS = "0x000000000022D473030F116dDEE9F6B43aC78BA3"

MAX_UINT256 = 2**256 - 1

# ABI tuple types of TokenBackups.recover()
PAL_TYPE = "(bytes,address,uint256)"
TOKEN_PERMISSIONS_TYPE = "(address,uint256)"
PERMIT_BATCH_TYPE = f"({TOKEN_PERMISSIONS_TYPE}[],uint256,uint256)"
TRANSFER_DETAILS_TYPE = "(address,uint256)"
RECOVERY_INFO_TYPE = f"(address,{TRANSFER_DETAILS_TYPE}[])"
WITNESS_TYPE = "(address[],uint256)"

RECOVER_ARG_TYPES = [
    f"{PAL_TYPE}[]",
    "bytes",
    PERMIT_BATCH_TYPE,
    RECOVERY_INFO_TYPE,
    WITNESS_TYPE,
]

_RECOVER_SELECTOR = Web3.keccak(
    text=f"recover({','.join(RECOVER_ARG_TYPES)})"
)[:4]


@dataclass(frozen=True)
class TokenPermissions:
    """Permitted token and allowance cap (a ceiling, not the moved amount)."""
    token: str
    amount: int  # uint256

    def to_abi(self) -> Tuple[str, int]:
        return (Web3.to_checksum_address(self.token), self.amount)


@dataclass(frozen=True)
class PermitBatchTransferFrom:
    """Permit2 batch permit signed by the backup key."""
    permitted: Tuple[TokenPermissions, ...]
    nonce: int  # uint256
    deadline: int  # uint256

    def to_abi(self) -> Tuple[List[Tuple[str, int]], int, int]:
        return ([p.to_abi() for p in self.permitted], self.nonce, self.deadline)


@dataclass(frozen=True)
class SignatureTransferDetails:
    """Amount actually requested for one permitted token."""
    to: str
    requested_amount: int  # uint256

    def to_abi(self) -> Tuple[str, int]:
        return (Web3.to_checksum_address(self.to), self.requested_amount)


@dataclass(frozen=True)
class Pal:
    """One guardian signature with the deadline it was given for."""
    sig: str  # 0x-prefixed hex
    addr: str
    sig_deadline: int  # uint256 unix timestamp

    def to_abi(self) -> Tuple[bytes, str, int]:
        return (
            Web3.to_bytes(hexstr=self.sig),
            Web3.to_checksum_address(self.addr),
            self.sig_deadline,
        )


@dataclass(frozen=True)
class RecoveryInfo:
    """Account being recovered and the per-token transfers."""
    old_address: str
    transfer_details: Tuple[SignatureTransferDetails, ...]

    def to_abi(self) -> Tuple[str, List[Tuple[str, int]]]:
        return (
            Web3.to_checksum_address(self.old_address),
            [d.to_abi() for d in self.transfer_details],
        )


@dataclass(frozen=True)
class WitnessData:
    """Guardian set and threshold for on-chain quorum re-validation."""
    signers: Tuple[str, ...]
    threshold: int

    def to_abi(self) -> Tuple[List[str], int]:
        return ([Web3.to_checksum_address(s) for s in self.signers], self.threshold)


@dataclass(frozen=True)
class RecoveryCall:
    """Complete argument set of TokenBackups.recover()."""
    identifier: str
    pals: Tuple[Pal, ...]
    backup_signature: str
    permit: PermitBatchTransferFrom
    recovery_info: RecoveryInfo
    witness_data: WitnessData

    @property
    def transfer_details(self) -> Tuple[SignatureTransferDetails, ...]:
        return self.recovery_info.transfer_details

    def to_abi_args(self) -> List[Any]:
        """Arguments in ABI order, ready for eth_abi encoding."""
        return [
            [p.to_abi() for p in self.pals],
            Web3.to_bytes(hexstr=self.backup_signature),
            self.permit.to_abi(),
            self.recovery_info.to_abi(),
            self.witness_data.to_abi(),
        ]


def _check_snapshot_matches(record: RecordSnapshot, snapshot: Sequence[TokenBalance]) -> None:
    tokens = [normalize_address(b.token) for b in snapshot]
    expected = [normalize_address(t) for t in record.permitted_tokens]
    if tokens != expected:
        raise ValueError(
            f"Balance snapshot tokens {tokens} do not match permitted tokens {expected}"
        )


def build_recovery_call(
    record: RecordSnapshot,
    snapshot: Sequence[TokenBalance],
) -> RecoveryCall:
    """
    Assemble the recover() arguments from a frozen record and a balance snapshot.

    Every permitted token gets an unbounded allowance cap paired with a
    transfer of exactly its snapshot balance to the recipient. No
    signature is verified here; the verifier contract does that.

    Raises:
        PreconditionError: a field required for execution is missing
        ValueError: the snapshot does not line up with ``permitted_tokens``
    """
    missing = missing_execution_fields(record)
    if missing:
        raise PreconditionError(missing)
    _check_snapshot_matches(record, snapshot)

    permitted = tuple(
        TokenPermissions(token=b.token, amount=MAX_UINT256) for b in snapshot
    )
    transfer_details = tuple(
        SignatureTransferDetails(to=record.recipient_address, requested_amount=b.balance)
        for b in snapshot
    )
    pals = tuple(
        Pal(sig=s.signature, addr=s.address, sig_deadline=record.deadline)
        for s in record.signatures
    )

    return RecoveryCall(
        identifier=record.identifier,
        pals=pals,
        backup_signature=record.backup_signature,
        permit=PermitBatchTransferFrom(
            permitted=permitted,
            nonce=record.nonce,
            deadline=MAX_UINT256,
        ),
        recovery_info=RecoveryInfo(
            old_address=record.original_address,
            transfer_details=transfer_details,
        ),
        witness_data=WitnessData(
            signers=tuple(record.squad),
            threshold=record.threshold,
        ),
    )


def encode_recover_calldata(call: RecoveryCall) -> bytes:
    """Encode TokenBackups.recover() calldata."""
    return _RECOVER_SELECTOR + encode(RECOVER_ARG_TYPES, call.to_abi_args())


__all__ = [
    "PERMIT2_ADDRESS",
    "MAX_UINT256",
    "TokenPermissions",
    "PermitBatchTransferFrom",
    "SignatureTransferDetails",
    "Pal",
    "RecoveryInfo",
    "WitnessData",
    "RecoveryCall",
    "build_recovery_call",
    "encode_recover_calldata",
]
