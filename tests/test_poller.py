"""
Tests for token_rescue.poller.

Tests cover:
- Merging fetched updates into the record
- Failed polls leaving the record untouched
- Observer notification
- Pause/resume and the background loop
- Stopping, including while a fetch is in flight
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from token_rescue.config import PollingConfig
from token_rescue.errors import TransientFetchError
from token_rescue.poller import SignaturePoller
from token_rescue.records import RecoveryUpdate

from conftest import DEADLINE, guardian_sig, make_record


def make_source(*updates):
    source = AsyncMock()
    source.fetch_recovery = AsyncMock(side_effect=list(updates))
    return source


@pytest.fixture
def fast_config():
    return PollingConfig(poll_interval_seconds=0.01)


class TestPollOnce:
    """Tests for SignaturePoller.poll_once."""

    @pytest.mark.asyncio
    async def test_merges_update(self, fast_config):
        """Should merge signatures and deadline into the record."""
        record = make_record(deadline=None)
        update = RecoveryUpdate(signatures=(guardian_sig(0), guardian_sig(1)), deadline=DEADLINE)
        poller = SignaturePoller(record, make_source(update), fast_config)

        result = await poller.poll_once()

        assert result is update
        assert record.signature_count == 2
        assert record.deadline == DEADLINE
        assert poller.poll_count == 1

    @pytest.mark.asyncio
    async def test_failure_leaves_record_untouched(self, fast_config, caplog):
        """Should log and return None when the fetch fails."""
        record = make_record(signed=[0])
        before = record.to_dict()
        source = make_source(TransientFetchError("http://backend.test", "HTTP 503"))
        poller = SignaturePoller(record, source, fast_config)

        assert await poller.poll_once() is None

        assert record.to_dict() == before
        assert poller.failure_count == 1
        assert "HTTP 503" in caplog.text

    @pytest.mark.asyncio
    async def test_observers_called_after_merge(self, fast_config):
        """Should call sync and async observers with the updated record."""
        record = make_record()
        sync_observer = MagicMock()
        async_observer = AsyncMock()
        poller = SignaturePoller(
            record, make_source(RecoveryUpdate(signatures=(guardian_sig(0),))), fast_config
        )
        poller.add_observer(sync_observer)
        poller.add_observer(async_observer)

        await poller.poll_once()

        sync_observer.assert_called_once_with(record)
        async_observer.assert_awaited_once_with(record)

    @pytest.mark.asyncio
    async def test_observer_error_does_not_break_poll(self, fast_config):
        record = make_record()
        poller = SignaturePoller(
            record, make_source(RecoveryUpdate(signatures=(guardian_sig(0),))), fast_config
        )
        poller.add_observer(MagicMock(side_effect=RuntimeError("ui gone")))

        assert await poller.poll_once() is not None
        assert record.signature_count == 1


class TestPollLoop:
    """Tests for start/stop/pause."""

    @pytest.mark.asyncio
    async def test_loop_polls_until_stopped(self, fast_config):
        """Should keep polling at the configured interval."""
        record = make_record()
        source = AsyncMock()
        source.fetch_recovery = AsyncMock(return_value=RecoveryUpdate(signatures=(guardian_sig(0),)))

        async with SignaturePoller(record, source, fast_config) as poller:
            assert poller.is_running
            await asyncio.sleep(0.05)

        assert not poller.is_running
        assert source.fetch_recovery.await_count >= 2
        calls = source.fetch_recovery.await_count
        await asyncio.sleep(0.03)
        assert source.fetch_recovery.await_count == calls

    @pytest.mark.asyncio
    async def test_paused_poller_skips_fetches(self, fast_config):
        """Should not fetch while paused and pick up again on resume."""
        source = AsyncMock()
        source.fetch_recovery = AsyncMock(return_value=RecoveryUpdate())
        poller = SignaturePoller(make_record(), source, fast_config)
        poller.pause()

        await poller.start()
        await asyncio.sleep(0.04)
        assert source.fetch_recovery.await_count == 0

        poller.resume()
        await asyncio.sleep(0.04)
        await poller.stop()

        assert source.fetch_recovery.await_count >= 1

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_the_loop(self, fast_config):
        """Should keep polling after errors without backoff."""
        source = AsyncMock()
        source.fetch_recovery = AsyncMock(side_effect=TransientFetchError("x", "down"))
        poller = SignaturePoller(make_record(), source, fast_config)

        await poller.start()
        await asyncio.sleep(0.05)
        await poller.stop()

        assert poller.failure_count >= 2

    @pytest.mark.asyncio
    async def test_update_arriving_after_stop_is_dropped(self, fast_config):
        """Should never touch the record once stopped."""
        record = make_record()
        release = asyncio.Event()

        async def slow_fetch(identifier):
            await release.wait()
            return RecoveryUpdate(signatures=(guardian_sig(0),))

        source = AsyncMock()
        source.fetch_recovery = AsyncMock(side_effect=slow_fetch)
        poller = SignaturePoller(record, source, fast_config)

        pending = asyncio.create_task(poller.poll_once())
        await asyncio.sleep(0)
        await poller.stop()
        release.set()

        assert await pending is None
        assert record.signature_count == 0

    @pytest.mark.asyncio
    async def test_stopped_poller_cannot_restart(self, fast_config):
        poller = SignaturePoller(make_record(), make_source(), fast_config)
        await poller.start()
        await poller.stop()

        with pytest.raises(RuntimeError):
            await poller.start()
        assert await poller.poll_once() is None
