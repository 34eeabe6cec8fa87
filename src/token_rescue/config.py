"""
Configuration management for token-rescue.

Provides centralized configuration for:
- Recovery backend (signature/deadline service) endpoint
- Signature polling cadence
- Chain RPC endpoints and TokenBackups verifier addresses
- Chain ID validation
- Logging configuration
"""
from __future__ import annotations

import os
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


DEFAULT_RESCUE_BASE_URL = "https://token-backup-interface.vercel.app"


@dataclass
class BackendConfig:
    """Configuration for the recovery signature service."""
    api_base_url: str = "http://localhost:3000/api"
    timeout_seconds: float = 10.0
    api_key: Optional[str] = None


@dataclass
class PollingConfig:
    """Configuration for guardian signature polling."""
    poll_interval_seconds: float = 3.0

    # Pause polling while an execution attempt reads the record
    pause_during_execution: bool = True


@dataclass
class ChainConfig:
    """Configuration for a blockchain network."""
    chain_id: int
    name: str
    display_name: str
    rpc_url: str

    # TokenBackups verifier contract (empty until deployed)
    token_backups_address: str = ""

    # Receipt tracking
    confirmation_timeout_seconds: float = 120.0
    receipt_poll_interval_seconds: float = 2.0

    # Gas settings
    gas_limit_buffer_percent: int = 20
    default_gas_limit: int = 1_500_000

    is_testnet: bool = False
    explorer_url: str = ""

    def tx_url(self, tx_hash: str) -> str:
        """Explorer link for a transaction hash."""
        if not self.explorer_url:
            return tx_hash
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"


@dataclass
class LoggingConfig:
    """Configuration for recovery operation logging."""
    operation_level: str = "INFO"
    poll_level: str = "DEBUG"
    error_level: str = "ERROR"

    # Sensitive data handling
    mask_addresses: bool = False

    # Audit logging
    audit_log_enabled: bool = True
    audit_log_path: Optional[str] = None  # None = use default logger


@dataclass
class RescueConfig:
    """
    Master configuration for token-rescue.

    Supports loading from environment variables with prefix TOKEN_RESCUE_.
    """
    chains: Dict[str, ChainConfig] = field(default_factory=dict)

    backend: BackendConfig = field(default_factory=BackendConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    rescue_base_url: str = DEFAULT_RESCUE_BASE_URL
    default_chain: str = "sepolia"
    http_timeout_seconds: float = 30.0

    def get_chain_config(self, chain: str) -> ChainConfig:
        """Get configuration for a specific chain."""
        if chain not in self.chains:
            raise ValueError(f"Unknown chain: {chain}")
        return self.chains[chain]

    def is_chain_supported(self, chain: str) -> bool:
        """Check if a chain is supported."""
        return chain in self.chains


def _get_env(key: str, default: Any = None, prefix: str = "TOKEN_RESCUE_") -> Any:
    """Get environment variable with prefix."""
    return os.getenv(f"{prefix}{key}", default)


def _get_env_list(key: str, default: List[str] = None, prefix: str = "TOKEN_RESCUE_") -> List[str]:
    """Get list environment variable (comma-separated)."""
    value = os.getenv(f"{prefix}{key}")
    if value:
        return [v.strip() for v in value.split(",") if v.strip()]
    return default or []


def _build_chain_config(
    chain_id: int,
    name: str,
    display_name: str,
    default_rpc: str,
    explorer_url: str,
    is_testnet: bool = False,
) -> ChainConfig:
    """Build a ChainConfig with environment variable overrides."""
    rpc_url = _get_env(f"{name.upper()}_RPC_URL") or default_rpc
    backups_address = _get_env(f"{name.upper()}_TOKEN_BACKUPS_ADDRESS", "")

    return ChainConfig(
        chain_id=chain_id,
        name=name,
        display_name=display_name,
        rpc_url=rpc_url,
        token_backups_address=backups_address,
        is_testnet=is_testnet,
        explorer_url=explorer_url,
    )


def build_default_config() -> RescueConfig:
    """Build default configuration from built-in chains and environment."""
    chains = {}

    chains["ethereum"] = _build_chain_config(
        chain_id=1,
        name="ethereum",
        display_name="Ethereum",
        default_rpc="https://eth.llamarpc.com",
        explorer_url="https://etherscan.io",
    )

    chains["sepolia"] = _build_chain_config(
        chain_id=11155111,
        name="sepolia",
        display_name="Ethereum Sepolia",
        default_rpc="https://rpc.sepolia.org",
        explorer_url="https://sepolia.etherscan.io",
        is_testnet=True,
    )

    chains["base"] = _build_chain_config(
        chain_id=8453,
        name="base",
        display_name="Base",
        default_rpc="https://mainnet.base.org",
        explorer_url="https://basescan.org",
    )

    chains["base_sepolia"] = _build_chain_config(
        chain_id=84532,
        name="base_sepolia",
        display_name="Base Sepolia",
        default_rpc="https://sepolia.base.org",
        explorer_url="https://sepolia.basescan.org",
        is_testnet=True,
    )

    backend = BackendConfig(
        api_base_url=_get_env("API_BASE_URL", BackendConfig.api_base_url),
        timeout_seconds=float(_get_env("API_TIMEOUT_SECONDS", BackendConfig.timeout_seconds)),
        api_key=_get_env("API_KEY"),
    )

    polling = PollingConfig(
        poll_interval_seconds=float(
            _get_env("POLL_INTERVAL_SECONDS", PollingConfig.poll_interval_seconds)
        ),
    )

    enabled = _get_env_list("CHAINS")
    if enabled:
        unknown = [c for c in enabled if c not in chains]
        if unknown:
            logger.warning(f"Ignoring unknown chains in TOKEN_RESCUE_CHAINS: {unknown}")
        chains = {name: cfg for name, cfg in chains.items() if name in enabled}

    return RescueConfig(
        chains=chains,
        backend=backend,
        polling=polling,
        rescue_base_url=_get_env("RESCUE_BASE_URL", DEFAULT_RESCUE_BASE_URL),
        default_chain=_get_env("DEFAULT_CHAIN", "sepolia"),
    )


# Global configuration instance
_global_config: Optional[RescueConfig] = None


def get_config() -> RescueConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = build_default_config()
    return _global_config


def set_config(config: Optional[RescueConfig]) -> None:
    """Set (or with None, reset) the global configuration instance."""
    global _global_config
    _global_config = config


def get_chain_config(chain: str) -> ChainConfig:
    """Convenience function to get chain configuration."""
    return get_config().get_chain_config(chain)


CHAIN_ID_MAP: Dict[str, int] = {
    "ethereum": 1,
    "sepolia": 11155111,
    "base": 8453,
    "base_sepolia": 84532,
}


def validate_chain_id(chain: str, received_chain_id: int) -> bool:
    """
    Validate that the received chain ID matches expected.

    SECURITY: a recovery signed for one network must never be broadcast
    to another.
    """
    expected = CHAIN_ID_MAP.get(chain)
    if expected is None:
        logger.warning(f"Unknown chain for validation: {chain}")
        return False

    if received_chain_id != expected:
        logger.error(
            f"SECURITY: Chain ID mismatch for {chain}! "
            f"Expected {expected}, got {received_chain_id}."
        )
        return False

    return True
