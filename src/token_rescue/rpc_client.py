"""JSON-RPC client for chain reads and transaction broadcast."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from eth_abi import decode, encode
from web3 import Web3

logger = logging.getLogger(__name__)


_BALANCE_OF_SELECTOR = Web3.keccak(text="balanceOf(address)")[:4]


class RPCError(Exception):
    """Raised when a node returns a JSON-RPC error object."""

    def __init__(self, method: str, code: Optional[int], message: str, data: Any = None):
        self.method = method
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC {method} failed [{code}]: {message}")


class ReceiptTimeoutError(Exception):
    """Raised when a receipt does not appear within the timeout."""

    def __init__(self, tx_hash: str, timeout_seconds: float):
        self.tx_hash = tx_hash
        self.timeout_seconds = timeout_seconds
        super().__init__(f"No receipt for {tx_hash} after {timeout_seconds:.0f}s")


class ChainRPCClient:
    """JSON-RPC client for blockchain interaction."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None
        self._request_id = 0

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Make JSON-RPC call."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        client = await self._get_client()
        response = await client.post(
            self._rpc_url,
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        result = response.json()

        if "error" in result:
            error = result["error"] or {}
            raise RPCError(
                method,
                error.get("code"),
                error.get("message", "unknown error"),
                error.get("data"),
            )

        return result.get("result")

    async def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        """Execute a read-only contract call and return the raw hex result."""
        return await self._call("eth_call", [{"to": to, "data": data}, block])

    async def get_chain_id(self) -> int:
        result = await self._call("eth_chainId")
        return int(result, 16)

    async def get_gas_price(self) -> int:
        """Get current gas price in wei."""
        result = await self._call("eth_gasPrice")
        return int(result, 16)

    async def get_max_priority_fee(self) -> int:
        """Get max priority fee for EIP-1559."""
        try:
            result = await self._call("eth_maxPriorityFeePerGas")
            return int(result, 16)
        except RPCError:
            # Not supported on every chain
            return 1_000_000_000  # 1 gwei

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        """Estimate gas for a transaction."""
        result = await self._call("eth_estimateGas", [tx])
        return int(result, 16)

    async def get_nonce(self, address: str) -> int:
        """Get transaction count (nonce) for address."""
        result = await self._call("eth_getTransactionCount", [address, "pending"])
        return int(result, 16)

    async def send_raw_transaction(self, signed_tx: str) -> str:
        """Broadcast signed transaction."""
        return await self._call("eth_sendRawTransaction", [signed_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self._call("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout_seconds: float = 120.0,
        poll_interval_seconds: float = 2.0,
    ) -> Dict[str, Any]:
        """Poll until the transaction receipt is available."""
        started = time.monotonic()
        while True:
            receipt = await self.get_transaction_receipt(tx_hash)
            if receipt:
                return receipt
            if time.monotonic() - started >= timeout_seconds:
                raise ReceiptTimeoutError(tx_hash, timeout_seconds)
            await asyncio.sleep(poll_interval_seconds)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None


def encode_balance_of(owner: str) -> str:
    """Encode ERC20 balanceOf(address) calldata."""
    params = encode(["address"], [Web3.to_checksum_address(owner)])
    return "0x" + (_BALANCE_OF_SELECTOR + params).hex()


def decode_uint256(result: str) -> int:
    """Decode a single uint256 return value."""
    raw = bytes.fromhex(result[2:] if result.startswith("0x") else result)
    if len(raw) < 32:
        raise ValueError(f"Malformed uint256 return data: {result!r}")
    (value,) = decode(["uint256"], raw[:32])
    return value


async def erc20_balance_of(rpc: ChainRPCClient, token: str, owner: str) -> int:
    """Read ``token.balanceOf(owner)`` at the latest block."""
    result = await rpc.eth_call(Web3.to_checksum_address(token), encode_balance_of(owner))
    return decode_uint256(result)
