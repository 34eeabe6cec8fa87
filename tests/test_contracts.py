"""
Tests for token_rescue.contracts.

Tests cover:
- Transaction construction and signing
- Chain id verification
- recover() submission, revert and timeout handling
"""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from eth_account import Account

from token_rescue.balances import TokenBalance
from token_rescue.config import ChainConfig
from token_rescue.contracts import (
    LocalAccountSigner,
    SimulatedSigner,
    TokenBackupsClient,
    TransactionRequest,
)
from token_rescue.errors import SubmissionError
from token_rescue.permit import build_recovery_call, encode_recover_calldata
from token_rescue.records import GuardianSignature
from token_rescue.rpc_client import ReceiptTimeoutError, RPCError

from conftest import GUARDIANS, TOKEN_A, TOKEN_B, make_record

TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
BACKUPS = "0x000000000000000000000000000000000000b4c4"
TX_HASH = "0x" + "cd" * 32


@pytest.fixture
def chain():
    return ChainConfig(
        chain_id=11155111,
        name="sepolia",
        display_name="Ethereum Sepolia",
        rpc_url="http://node.test",
        token_backups_address=BACKUPS,
        explorer_url="https://sepolia.etherscan.io",
    )


@pytest.fixture
def rpc():
    client = AsyncMock()
    client.get_chain_id = AsyncMock(return_value=11155111)
    client.get_nonce = AsyncMock(return_value=4)
    client.estimate_gas = AsyncMock(return_value=200_000)
    client.get_gas_price = AsyncMock(return_value=10)
    client.get_max_priority_fee = AsyncMock(return_value=2)
    client.send_raw_transaction = AsyncMock(return_value=TX_HASH)
    client.wait_for_receipt = AsyncMock(
        return_value={"status": "0x1", "blockNumber": "0x10", "gasUsed": "0x30d40"}
    )
    return client


@pytest.fixture
def call():
    record = make_record(signed=[0, 1, 2])
    return build_recovery_call(record.freeze(), [TokenBalance(TOKEN_A, 100), TokenBalance(TOKEN_B, 0)])


class TestSigners:
    """Tests for transaction signers."""

    @pytest.mark.asyncio
    async def test_local_account_signer(self):
        """Should produce a raw EIP-1559 transaction from the key's address."""
        signer = LocalAccountSigner(TEST_KEY)
        tx = TransactionRequest(
            chain_id=11155111,
            to_address=BACKUPS,
            nonce=0,
            gas_limit=21_000,
            max_fee_per_gas=10,
            max_priority_fee_per_gas=2,
            data=b"\x01\x02",
        )

        raw = await signer.sign_transaction(tx)

        assert signer.address == Account.from_key(TEST_KEY).address
        assert raw.startswith("0x02")

    @pytest.mark.asyncio
    async def test_simulated_signer(self):
        signer = SimulatedSigner()

        raw = await signer.sign_transaction(AsyncMock())

        assert signer.address.startswith("0x")
        assert len(raw) == 66


class TestTokenBackupsClient:
    """Tests for TokenBackupsClient.submit_recovery."""

    @pytest.mark.asyncio
    async def test_submits_recover_call(self, rpc, chain, call):
        """Should sign and broadcast the encoded recover() call."""
        signer = SimulatedSigner()
        signer.sign_transaction = AsyncMock(return_value="0xsigned")
        client = TokenBackupsClient(rpc, signer, chain)

        receipt = await client.submit_recovery(call)

        tx = signer.sign_transaction.await_args.args[0]
        assert tx.to_address == BACKUPS
        assert tx.data == encode_recover_calldata(call)
        assert tx.nonce == 4
        assert tx.gas_limit == 240_000
        assert tx.max_fee_per_gas == 22
        rpc.send_raw_transaction.assert_awaited_once_with("0xsigned")
        assert receipt.tx_hash == TX_HASH
        assert receipt.block_number == 16
        assert receipt.gas_used == 200_000
        assert receipt.explorer_url == f"https://sepolia.etherscan.io/tx/{TX_HASH}"

    @pytest.mark.asyncio
    async def test_not_deployed(self, rpc, chain, call):
        chain.token_backups_address = ""
        client = TokenBackupsClient(rpc, SimulatedSigner(), chain)

        with pytest.raises(SubmissionError):
            await client.submit_recovery(call)

        rpc.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wrong_chain_refused(self, rpc, chain, call):
        """Should refuse to broadcast to a node on another network."""
        rpc.get_chain_id = AsyncMock(return_value=1)
        client = TokenBackupsClient(rpc, SimulatedSigner(), chain)

        with pytest.raises(SubmissionError) as exc_info:
            await client.submit_recovery(call)

        assert "chain id mismatch" in str(exc_info.value)
        rpc.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_estimate_revert(self, rpc, chain, call):
        """Should surface a simulated revert without broadcasting."""
        rpc.estimate_gas = AsyncMock(side_effect=RPCError("eth_estimateGas", 3, "InvalidSignature"))
        client = TokenBackupsClient(rpc, SimulatedSigner(), chain)

        with pytest.raises(SubmissionError) as exc_info:
            await client.submit_recovery(call)

        assert exc_info.value.revert_reason == "InvalidSignature"
        assert exc_info.value.tx_hash is None
        rpc.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_pal_signature(self, rpc, chain):
        """Should raise SubmissionError for a signature that is not hex."""
        record = make_record(signed=[1, 2])
        record.upsert_signature(GuardianSignature(address=GUARDIANS[0], signature="0xzz"))
        call = build_recovery_call(record.freeze(), [TokenBalance(TOKEN_A, 1), TokenBalance(TOKEN_B, 0)])
        client = TokenBackupsClient(rpc, SimulatedSigner(), chain)

        with pytest.raises(SubmissionError) as exc_info:
            await client.submit_recovery(call)

        assert "invalid recover() arguments" in str(exc_info.value)
        rpc.send_raw_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_on_chain_revert(self, rpc, chain, call):
        rpc.wait_for_receipt = AsyncMock(return_value={"status": "0x0"})
        client = TokenBackupsClient(rpc, SimulatedSigner(), chain)

        with pytest.raises(SubmissionError) as exc_info:
            await client.submit_recovery(call)

        assert exc_info.value.reason == "transaction reverted"
        assert exc_info.value.tx_hash == TX_HASH

    @pytest.mark.asyncio
    async def test_receipt_timeout_keeps_hash(self, rpc, chain, call):
        """Should report the broadcast hash when no receipt arrives."""
        rpc.wait_for_receipt = AsyncMock(side_effect=ReceiptTimeoutError(TX_HASH, 120))
        client = TokenBackupsClient(rpc, SimulatedSigner(), chain)

        with pytest.raises(SubmissionError) as exc_info:
            await client.submit_recovery(call)

        assert exc_info.value.tx_hash == TX_HASH

    @pytest.mark.asyncio
    async def test_chain_id_checked_once(self, rpc, chain, call):
        client = TokenBackupsClient(rpc, SimulatedSigner(), chain)

        await client.submit_recovery(call)
        await client.submit_recovery(call)

        assert rpc.get_chain_id.await_count == 1
        assert rpc.send_raw_transaction.await_count == 2
