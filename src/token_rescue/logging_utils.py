"""
Logging utilities for recovery operations.

Features:
- Structured logging of polling, snapshot, build and submission steps
- Operation timing via an async context manager
- Audit trail for submissions
- Address masking
"""
from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .config import LoggingConfig, get_config

logger = logging.getLogger(__name__)


class OperationType(str, Enum):
    """Types of recovery operations."""
    POLL = "poll"
    BALANCE_SNAPSHOT = "balance_snapshot"
    PERMIT_BUILD = "permit_build"
    SUBMISSION = "submission"


@dataclass
class OperationContext:
    """Context for a recovery operation."""
    operation_id: str
    operation_type: OperationType
    identifier: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    success: bool = False
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        """Mark operation as complete."""
        self.completed_at = datetime.now(timezone.utc)
        self.duration_ms = (
            (self.completed_at - self.started_at).total_seconds() * 1000
        )
        self.success = success
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "operation_type": self.operation_type.value,
            "identifier": self.identifier,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "metadata": self.metadata,
        }


class RescueLogger:
    """
    Logger for recovery operations.

    Wraps a standard library logger with operation tracking, masking
    and an audit trail for transaction submissions.
    """

    def __init__(
        self,
        name: str = "token_rescue",
        config: Optional[LoggingConfig] = None,
    ):
        self._logger = logging.getLogger(name)
        self._config = config or get_config().logging
        self._operation_counter = 0

    def _generate_operation_id(self) -> str:
        self._operation_counter += 1
        timestamp = int(time.time() * 1000)
        return f"op_{timestamp}_{self._operation_counter}"

    def _get_level(self, level_str: str) -> int:
        """Convert level string to logging level."""
        return getattr(logging, level_str.upper(), logging.INFO)

    def _address(self, address: Optional[str]) -> Optional[str]:
        if address and self._config.mask_addresses:
            return self.mask_address(address)
        return address

    @asynccontextmanager
    async def operation_context(
        self,
        operation_type: OperationType,
        identifier: str,
        **metadata,
    ):
        """
        Context manager for tracking an operation.

        Usage:
            async with rescue_logger.operation_context(OperationType.SUBMISSION, rid) as ctx:
                ctx.metadata["tx_hash"] = tx_hash
        """
        ctx = OperationContext(
            operation_id=self._generate_operation_id(),
            operation_type=operation_type,
            identifier=identifier,
            metadata=metadata,
        )

        self._logger.debug(
            f"Starting {operation_type.value} for recovery {identifier}",
            extra={"operation": ctx.to_dict()},
        )

        try:
            yield ctx
            ctx.complete(success=True)

        except BaseException as e:
            ctx.complete(success=False, error=str(e) or type(e).__name__)
            raise

        finally:
            if not ctx.success:
                level = self._get_level(self._config.error_level)
            elif operation_type == OperationType.POLL:
                level = self._get_level(self._config.poll_level)
            else:
                level = self._get_level(self._config.operation_level)
            self._logger.log(
                level,
                f"Completed {operation_type.value} for recovery {identifier} "
                f"in {ctx.duration_ms:.0f}ms (success={ctx.success})",
                extra={"operation": ctx.to_dict()},
            )

    def log_poll_failure(self, identifier: str, error: str) -> None:
        """Log a failed poll; polling retries on the next tick."""
        self._logger.warning(
            f"Signature poll for recovery {identifier} failed, retrying next tick: {error}"
        )

    def log_submission(
        self,
        identifier: str,
        tx_hash: str,
        chain: str,
        old_address: Optional[str],
        recipient: Optional[str],
        token_count: int,
        pal_count: int,
    ) -> None:
        """Log recovery transaction submission."""
        data = {
            "identifier": identifier,
            "tx_hash": tx_hash,
            "chain": chain,
            "old_address": self._address(old_address),
            "recipient": self._address(recipient),
            "token_count": token_count,
            "pal_count": pal_count,
        }
        self._logger.log(
            self._get_level(self._config.operation_level),
            f"Recovery {identifier} submitted: {tx_hash} on {chain}",
            extra={"submission": data},
        )
        if self._config.audit_log_enabled:
            self._write_audit_log("recovery_submitted", data)

    def log_submission_failed(
        self,
        identifier: str,
        error: str,
        tx_hash: Optional[str] = None,
    ) -> None:
        """Log recovery submission failure."""
        self._logger.log(
            self._get_level(self._config.error_level),
            f"Recovery {identifier} submission failed: {error}"
            + (f" (tx {tx_hash})" if tx_hash else ""),
        )
        if self._config.audit_log_enabled:
            self._write_audit_log("recovery_failed", {
                "identifier": identifier,
                "tx_hash": tx_hash,
                "error": error,
            })

    @staticmethod
    def mask_address(address: str) -> str:
        """Mask middle portion of address for privacy."""
        if len(address) < 10:
            return address
        return f"{address[:6]}...{address[-4:]}"

    def _write_audit_log(self, event_type: str, data: Dict[str, Any]) -> None:
        audit_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "data": data,
        }

        if self._config.audit_log_path:
            try:
                with open(self._config.audit_log_path, "a") as f:
                    f.write(json.dumps(audit_entry, default=str) + "\n")
            except OSError as e:
                self._logger.error(f"Failed to write audit log: {e}")
        else:
            self._logger.info(
                f"AUDIT: {event_type}",
                extra={"audit": audit_entry},
            )


# Global logger instance
_rescue_logger: Optional[RescueLogger] = None


def get_rescue_logger(
    name: str = "token_rescue",
    config: Optional[LoggingConfig] = None,
) -> RescueLogger:
    """Get the global rescue logger instance."""
    global _rescue_logger
    if _rescue_logger is None:
        _rescue_logger = RescueLogger(name, config)
    return _rescue_logger


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Set up logging configuration.

    Args:
        level: Log level
        format_string: Custom format string
        json_format: Use JSON formatting
    """
    if format_string is None:
        if json_format:
            format_string = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
        else:
            format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=format_string,
    )

    logging.getLogger("token_rescue").setLevel(getattr(logging, level.upper()))
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
