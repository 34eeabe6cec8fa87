"""TokenBackups verifier client and transaction signers."""
from __future__ import annotations

import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import httpx
from eth_abi.exceptions import EncodingError
from eth_account import Account
from web3 import Web3

from .config import CHAIN_ID_MAP, ChainConfig, validate_chain_id
from .errors import SubmissionError
from .logging_utils import RescueLogger, get_rescue_logger
from .permit import RecoveryCall, encode_recover_calldata
from .rpc_client import ChainRPCClient, ReceiptTimeoutError, RPCError

logger = logging.getLogger(__name__)


@dataclass
class TransactionRequest:
    """A transaction to be signed and submitted."""
    chain_id: int
    to_address: str
    nonce: int
    gas_limit: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    data: bytes = b""
    value: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """EIP-1559 transaction dict as accepted by eth-account."""
        return {
            "type": 2,
            "chainId": self.chain_id,
            "to": Web3.to_checksum_address(self.to_address),
            "value": self.value,
            "data": Web3.to_hex(self.data),
            "nonce": self.nonce,
            "gas": self.gas_limit,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }


class TransactionSigner(ABC):
    """Abstract interface for the key that sends the recovery transaction."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Sender address."""

    @abstractmethod
    async def sign_transaction(self, tx: TransactionRequest) -> str:
        """Sign a transaction and return the raw signed tx hex."""


class LocalAccountSigner(TransactionSigner):
    """Signs with a local private key via eth-account."""

    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_transaction(self, tx: TransactionRequest) -> str:
        signed = self._account.sign_transaction(tx.to_dict())
        return Web3.to_hex(signed.raw_transaction)


class SimulatedSigner(TransactionSigner):
    """Simulated signer for development. Produces unbroadcastable bytes."""

    def __init__(self, address: Optional[str] = None):
        self._address = address or Web3.to_checksum_address("0x" + secrets.token_hex(20))

    @property
    def address(self) -> str:
        return self._address

    async def sign_transaction(self, tx: TransactionRequest) -> str:
        return "0x" + secrets.token_hex(32)


@dataclass
class RecoveryReceipt:
    """Outcome of a mined recovery transaction."""
    tx_hash: str
    chain: str
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    explorer_url: str = ""
    confirmed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RecoverySubmitter(Protocol):
    """Chain write client: submits one recover() call."""

    async def submit_recovery(self, call: RecoveryCall) -> RecoveryReceipt:
        ...


def _hex_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, str):
        return int(value, 16)
    return int(value)


class TokenBackupsClient:
    """
    Submits recover() to the TokenBackups verifier contract.

    The verifier checks guardian and backup signatures, the nonce and
    the deadline, then moves all tokens atomically. Any failure reverts
    the whole call, so a failed submission consumes nothing.
    """

    def __init__(
        self,
        rpc: ChainRPCClient,
        signer: TransactionSigner,
        chain_config: ChainConfig,
        contract_address: Optional[str] = None,
        rescue_logger: Optional[RescueLogger] = None,
    ):
        self._rpc = rpc
        self._signer = signer
        self._chain = chain_config
        self._contract_address = contract_address or chain_config.token_backups_address
        self._rescue_logger = rescue_logger
        self._chain_id_verified = False

    @property
    def contract_address(self) -> str:
        return self._contract_address

    async def _verify_chain_id(self) -> None:
        if self._chain_id_verified:
            return
        received = await self._rpc.get_chain_id()
        mismatch = received != self._chain.chain_id
        if self._chain.name in CHAIN_ID_MAP:
            mismatch = mismatch or not validate_chain_id(self._chain.name, received)
        if mismatch:
            raise SubmissionError(
                f"chain id mismatch for {self._chain.name}: "
                f"expected {self._chain.chain_id}, got {received}"
            )
        self._chain_id_verified = True

    async def _build_transaction(self, data: bytes) -> TransactionRequest:
        sender = self._signer.address
        nonce = await self._rpc.get_nonce(sender)

        try:
            estimated = await self._rpc.estimate_gas({
                "from": sender,
                "to": Web3.to_checksum_address(self._contract_address),
                "data": Web3.to_hex(data),
            })
            gas_limit = estimated * (100 + self._chain.gas_limit_buffer_percent) // 100
        except RPCError as e:
            # Estimation runs the call; an error here is the verifier rejecting it
            raise SubmissionError("recover() would revert", revert_reason=e.message) from e

        gas_price = await self._rpc.get_gas_price()
        priority_fee = await self._rpc.get_max_priority_fee()

        return TransactionRequest(
            chain_id=self._chain.chain_id,
            to_address=self._contract_address,
            nonce=nonce,
            gas_limit=gas_limit or self._chain.default_gas_limit,
            max_fee_per_gas=gas_price * 2 + priority_fee,
            max_priority_fee_per_gas=priority_fee,
            data=data,
        )

    async def submit_recovery(self, call: RecoveryCall) -> RecoveryReceipt:
        """
        Sign, broadcast and wait for one recover() transaction.

        Raises:
            SubmissionError: not deployed, wrong chain, simulation revert,
                broadcast failure, on-chain revert or receipt timeout
        """
        if not self._contract_address:
            raise SubmissionError(f"TokenBackups not deployed on {self._chain.name}")

        rescue_logger = self._rescue_logger or get_rescue_logger()
        tx_hash: Optional[str] = None

        try:
            data = encode_recover_calldata(call)
        except (ValueError, EncodingError) as e:
            # Malformed signature hex or address in the record
            rescue_logger.log_submission_failed(call.identifier, str(e))
            raise SubmissionError(f"invalid recover() arguments: {e}") from e

        try:
            await self._verify_chain_id()
            tx = await self._build_transaction(data)
            signed = await self._signer.sign_transaction(tx)
            tx_hash = await self._rpc.send_raw_transaction(signed)

            rescue_logger.log_submission(
                identifier=call.identifier,
                tx_hash=tx_hash,
                chain=self._chain.name,
                old_address=call.recovery_info.old_address,
                recipient=(
                    call.transfer_details[0].to if call.transfer_details else None
                ),
                token_count=len(call.permit.permitted),
                pal_count=len(call.pals),
            )

            receipt = await self._rpc.wait_for_receipt(
                tx_hash,
                timeout_seconds=self._chain.confirmation_timeout_seconds,
                poll_interval_seconds=self._chain.receipt_poll_interval_seconds,
            )
        except SubmissionError as e:
            rescue_logger.log_submission_failed(call.identifier, str(e), tx_hash)
            raise
        except ReceiptTimeoutError as e:
            rescue_logger.log_submission_failed(call.identifier, str(e), tx_hash)
            raise SubmissionError("receipt timeout", tx_hash=tx_hash) from e
        except (RPCError, httpx.HTTPError) as e:
            rescue_logger.log_submission_failed(call.identifier, str(e), tx_hash)
            raise SubmissionError(str(e) or type(e).__name__, tx_hash=tx_hash) from e

        status = _hex_int(receipt.get("status"))
        if status != 1:
            rescue_logger.log_submission_failed(call.identifier, "reverted", tx_hash)
            raise SubmissionError("transaction reverted", tx_hash=tx_hash)

        return RecoveryReceipt(
            tx_hash=tx_hash,
            chain=self._chain.name,
            block_number=_hex_int(receipt.get("blockNumber")),
            gas_used=_hex_int(receipt.get("gasUsed")),
            explorer_url=self._chain.tx_url(tx_hash),
        )


__all__ = [
    "TransactionRequest",
    "TransactionSigner",
    "LocalAccountSigner",
    "SimulatedSigner",
    "RecoveryReceipt",
    "RecoverySubmitter",
    "TokenBackupsClient",
]
