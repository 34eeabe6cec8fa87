"""
Pytest configuration for token-rescue tests.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Dict, Optional, Sequence
from unittest.mock import AsyncMock

import pytest

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(package_src))

os.environ.setdefault("TOKEN_RESCUE_API_BASE_URL", "http://backend.test/api")

from token_rescue import logging_utils
from token_rescue.config import set_config
from token_rescue.contracts import RecoveryReceipt
from token_rescue.records import GuardianSignature, RecoveryRecord


OWNER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"
TOKEN_A = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
TOKEN_B = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
GUARDIANS = [
    "0x00000000000000000000000000000000000000a1",
    "0x00000000000000000000000000000000000000a2",
    "0x00000000000000000000000000000000000000a3",
    "0x00000000000000000000000000000000000000a4",
]
BACKUP_SIG = "0x" + "bb" * 65
DEADLINE = 1_900_000_000


def sig(n: int) -> str:
    """Distinct 65-byte signature hex."""
    return "0x" + f"{n:02x}" * 65


def guardian_sig(index: int, n: Optional[int] = None) -> GuardianSignature:
    return GuardianSignature(address=GUARDIANS[index], signature=sig(n if n is not None else index + 1))


def make_record(
    signed: Sequence[int] = (),
    signatures_needed: Optional[int] = 3,
    tokens: Sequence[str] = (TOKEN_A, TOKEN_B),
    **overrides,
) -> RecoveryRecord:
    fields: Dict = dict(
        identifier="rec-123",
        original_address=OWNER,
        recipient_address=RECIPIENT,
        squad=tuple(GUARDIANS[:3]),
        threshold=3,
        permitted_tokens=tuple(tokens),
        nonce=7,
        backup_signature=BACKUP_SIG,
        signatures_needed=signatures_needed,
        deadline=DEADLINE,
    )
    fields.update(overrides)
    record = RecoveryRecord(**fields)
    for index in signed:
        record.upsert_signature(guardian_sig(index))
    return record


def make_receipt(tx_hash: str = "0x" + "ab" * 32) -> RecoveryReceipt:
    return RecoveryReceipt(tx_hash=tx_hash, chain="sepolia", block_number=100, gas_used=250_000)


@pytest.fixture(autouse=True)
def reset_globals():
    """Fresh configuration and logger for every test."""
    set_config(None)
    logging_utils._rescue_logger = None
    yield
    set_config(None)
    logging_utils._rescue_logger = None


@pytest.fixture
def balance_reader():
    """Balance reader returning fixed balances per token."""
    balances = {TOKEN_A: 100, TOKEN_B: 0}
    reader = AsyncMock()
    reader.balances = balances

    async def balance_of(token, owner):
        return balances[token]

    reader.balance_of = AsyncMock(side_effect=balance_of)
    return reader


@pytest.fixture
def submitter():
    """Chain write client that always succeeds."""
    client = AsyncMock()
    client.submit_recovery = AsyncMock(return_value=make_receipt())
    return client
