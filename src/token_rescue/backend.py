"""Client for the recovery signature service.

The service stores guardian signatures and the recovery deadline keyed by
the recovery identifier. It returns the full current signature set on
every call, so polling it repeatedly is idempotent.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from web3 import Web3

from .config import BackendConfig, get_config
from .errors import TransientFetchError
from .records import GuardianSignature, RecoveryUpdate

logger = logging.getLogger(__name__)


class SignaturePayload(BaseModel):
    """A guardian signature as served by the backend."""

    model_config = ConfigDict(extra="ignore")

    address: str
    signature: str

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        if not Web3.is_address(v):
            raise ValueError(f"not an address: {v!r}")
        return v

    @field_validator("signature")
    @classmethod
    def validate_signature(cls, v: str) -> str:
        """Signatures must be 0x-prefixed hex so they can be ABI-encoded."""
        if not v.startswith("0x") or len(v) <= 2:
            raise ValueError("signature must be 0x-prefixed hex")
        try:
            bytes.fromhex(v[2:])
        except ValueError as e:
            raise ValueError(f"signature is not valid hex: {e}") from e
        return v


class RecoveryDataPayload(BaseModel):
    """The ``data`` object of a recovery lookup."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    signatures: List[SignaturePayload] = Field(default_factory=list)
    deadline: Optional[int] = None
    signatures_needed: Optional[int] = Field(default=None, alias="signaturesNeeded")

    def to_update(self) -> RecoveryUpdate:
        return RecoveryUpdate(
            signatures=tuple(
                GuardianSignature(address=s.address, signature=s.signature)
                for s in self.signatures
            ),
            deadline=self.deadline,
            signatures_needed=self.signatures_needed,
        )


class RecoveryDataResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: RecoveryDataPayload


class RecoveryDataSource(Protocol):
    """Anything that can fetch the current signatures and deadline."""

    async def fetch_recovery(self, identifier: str) -> RecoveryUpdate:
        ...


class HttpRecoveryDataSource:
    """HTTP client for ``GET {api_base_url}/recovery/{identifier}``."""

    def __init__(
        self,
        config: Optional[BackendConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config or get_config().backend
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            headers = {"Accept": "application/json"}
            if self._config.api_key:
                headers["Authorization"] = f"Bearer {self._config.api_key}"
            self._http_client = httpx.AsyncClient(
                headers=headers,
                timeout=self._config.timeout_seconds,
            )
        return self._http_client

    def _url(self, identifier: str) -> str:
        return f"{self._config.api_base_url.rstrip('/')}/recovery/{identifier}"

    async def fetch_recovery(self, identifier: str) -> RecoveryUpdate:
        """
        Fetch the current signatures and deadline of a recovery.

        Raises:
            TransientFetchError: transport failure, non-2xx status or a
                payload that does not match the expected shape
        """
        if not identifier:
            raise ValueError("identifier is required")

        url = self._url(identifier)
        client = await self._get_client()
        try:
            response = await client.get(url)
            response.raise_for_status()
            body: Dict[str, Any] = response.json()
        except httpx.HTTPStatusError as e:
            raise TransientFetchError(url, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise TransientFetchError(url, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise TransientFetchError(url, f"invalid JSON: {e}") from e

        try:
            parsed = RecoveryDataResponse.model_validate(body)
        except ValidationError as e:
            raise TransientFetchError(url, f"unexpected payload: {e.error_count()} error(s)") from e

        return parsed.data.to_update()

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None


__all__ = [
    "SignaturePayload",
    "RecoveryDataPayload",
    "RecoveryDataResponse",
    "RecoveryDataSource",
    "HttpRecoveryDataSource",
]
