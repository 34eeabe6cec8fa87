"""
Balance snapshots for recovery execution.

Balances are read as late as possible, only when execution is triggered,
because funds may move in or out of the account after guardians approve.
A snapshot is never cached or reused across attempts.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from .errors import SnapshotError
from .logging_utils import OperationType, RescueLogger, get_rescue_logger
from .rpc_client import ChainRPCClient, erc20_balance_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenBalance:
    """Owner balance of one token at snapshot time."""
    token: str
    balance: int


class BalanceReader(Protocol):
    """Chain read client used by the snapshotter."""

    async def balance_of(self, token: str, owner: str) -> int:
        ...


class RPCBalanceReader:
    """BalanceReader backed by ERC20 balanceOf eth_calls."""

    def __init__(self, rpc: ChainRPCClient):
        self._rpc = rpc

    async def balance_of(self, token: str, owner: str) -> int:
        return await erc20_balance_of(self._rpc, token, owner)


class BalanceSnapshotter:
    """Reads the owner's balance of every token concurrently."""

    def __init__(
        self,
        reader: BalanceReader,
        rescue_logger: Optional[RescueLogger] = None,
    ):
        self._reader = reader
        self._rescue_logger = rescue_logger

    async def _read(self, token: str, owner: str) -> TokenBalance:
        try:
            balance = await self._reader.balance_of(token, owner)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise SnapshotError(token, str(e) or type(e).__name__) from e
        if balance < 0:
            raise SnapshotError(token, f"negative balance {balance}")
        return TokenBalance(token=token, balance=int(balance))

    async def snapshot(
        self,
        tokens: Sequence[str],
        owner: str,
        identifier: str = "",
    ) -> List[TokenBalance]:
        """
        Fetch one balance per token, in the order of ``tokens``.

        The first failed read cancels the remaining reads and raises
        SnapshotError; no partial snapshot is returned.
        """
        rescue_logger = self._rescue_logger or get_rescue_logger()
        async with rescue_logger.operation_context(
            OperationType.BALANCE_SNAPSHOT,
            identifier,
            token_count=len(tokens),
        ) as ctx:
            if not tokens:
                return []

            tasks = [asyncio.ensure_future(self._read(token, owner)) for token in tokens]
            try:
                done, pending = await asyncio.wait(
                    tasks, return_when=asyncio.FIRST_EXCEPTION
                )
            except asyncio.CancelledError:
                for task in tasks:
                    task.cancel()
                raise

            failed = [t for t in tasks if t in done and t.exception() is not None]
            if failed:
                for task in pending:
                    task.cancel()
                if pending:
                    await asyncio.gather(*pending, return_exceptions=True)
                # Report the earliest token in input order that failed
                raise failed[0].exception()

            balances = [task.result() for task in tasks]
            ctx.metadata["balances"] = {b.token: b.balance for b in balances}
            return balances


__all__ = [
    "TokenBalance",
    "BalanceReader",
    "RPCBalanceReader",
    "BalanceSnapshotter",
]
