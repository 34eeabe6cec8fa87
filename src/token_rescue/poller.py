"""
Guardian signature polling.

Periodically fetches the signature set and deadline of a recovery and
merges them into its RecoveryRecord. The poll task is owned by the
session and must be stopped before the record is discarded.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Union

from .backend import RecoveryDataSource
from .config import PollingConfig, get_config
from .logging_utils import OperationType, RescueLogger, get_rescue_logger
from .records import RecoveryRecord, RecoveryUpdate

logger = logging.getLogger(__name__)

RecordObserver = Callable[[RecoveryRecord], Union[None, Awaitable[None]]]


class SignaturePoller:
    """
    Polls the signature service for one recovery.

    Features:
    - Fixed cadence, no backoff
    - Failed polls are logged and retried next tick, the record is untouched
    - Observer callbacks after every merge
    - Pause/resume while an execution reads the record
    - Scoped lifetime via ``async with``
    """

    def __init__(
        self,
        record: RecoveryRecord,
        data_source: RecoveryDataSource,
        config: Optional[PollingConfig] = None,
        rescue_logger: Optional[RescueLogger] = None,
    ):
        self._record = record
        self._data_source = data_source
        self._config = config or get_config().polling
        self._rescue_logger = rescue_logger
        self._observers: List[RecordObserver] = []
        self._running = False
        self._stopped = False
        self._paused = False
        self._task: Optional[asyncio.Task] = None
        self._poll_count = 0
        self._failure_count = 0

    @property
    def record(self) -> RecoveryRecord:
        return self._record

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def poll_count(self) -> int:
        return self._poll_count

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def add_observer(self, observer: RecordObserver) -> None:
        """Register a callback invoked with the record after each merge."""
        self._observers.append(observer)

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    async def poll_once(self) -> Optional[RecoveryUpdate]:
        """
        Fetch and merge one update.

        Returns the merged update, or None if the fetch failed.
        """
        if self._stopped:
            return None

        rescue_logger = self._rescue_logger or get_rescue_logger()
        identifier = self._record.identifier
        self._poll_count += 1
        try:
            async with rescue_logger.operation_context(OperationType.POLL, identifier):
                update = await self._data_source.fetch_recovery(identifier)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failure_count += 1
            rescue_logger.log_poll_failure(identifier, str(e) or type(e).__name__)
            return None

        if self._stopped:
            # Stopped while the fetch was in flight
            return None

        self._record.apply_update(update)
        await self._notify_observers()
        return update

    async def _notify_observers(self) -> None:
        for observer in self._observers:
            try:
                result = observer(self._record)
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in recovery observer: {e}")

    async def start(self) -> None:
        """Start the poll loop."""
        if self._running:
            return
        if self._stopped:
            raise RuntimeError("A stopped poller cannot be restarted")

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(
            f"Signature poller started for recovery {self._record.identifier} "
            f"(every {self._config.poll_interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the poll loop and wait for it to exit.

        A stopped poller never touches the record again.
        """
        self._running = False
        self._stopped = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"Signature poller stopped for recovery {self._record.identifier}")

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._config.poll_interval_seconds)
            if not self._running:
                break
            if self._paused:
                logger.debug(f"Poll skipped for recovery {self._record.identifier} (paused)")
                continue
            await self.poll_once()

    async def __aenter__(self) -> "SignaturePoller":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


__all__ = ["SignaturePoller", "RecordObserver"]
