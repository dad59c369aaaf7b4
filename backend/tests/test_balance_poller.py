"""Tests for the balance poller."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import MONITORED, FakeLedger
from forwarder.exceptions import LedgerError
from forwarder.services.balance_poller import BalancePoller
from forwarder_core.models import LogLevel


class TestBalancePoller:
    """Tests for BalancePoller."""

    @pytest.fixture
    def handler(self):
        return AsyncMock()

    @pytest.fixture
    def poller(self, ledger, handler, activity):
        return BalancePoller(ledger, MONITORED, 60.0, handler, activity, heartbeat_every=3)

    @pytest.mark.asyncio
    async def test_poll_once_emits_observation(self, poller, ledger, handler):
        observation = await poller.poll_once()

        assert observation.amount == ledger.balance
        handler.assert_awaited_once_with(observation)

    @pytest.mark.asyncio
    async def test_query_failure_skips_tick(self, poller, ledger, handler, activity):
        ledger.balance_error = LedgerError("timeout")

        assert await poller.poll_once() is None

        handler.assert_not_awaited()
        entry = activity.list()[0]
        assert entry.level == LogLevel.ERROR
        assert entry.details == {"error": "timeout"}

    @pytest.mark.asyncio
    async def test_heartbeat_every_n_ticks(self, poller, activity):
        for _ in range(7):
            await poller.poll_once()

        heartbeats = [e for e in activity.list() if e.message.startswith("Monitoring active")]
        assert len(heartbeats) == 2
        assert heartbeats[0].message == "Monitoring active - Balance: 100 TRX"

    @pytest.mark.asyncio
    async def test_handler_error_is_logged(self, poller, handler, activity):
        handler.side_effect = RuntimeError("handler bug")

        observation = await poller.poll_once()

        assert observation is not None
        assert activity.list()[0].message == "Failed to process balance observation"

    @pytest.mark.asyncio
    async def test_start_polls_immediately_and_stop(self, poller, handler):
        poller.start()
        assert poller.is_running

        for _ in range(20):
            if handler.await_count:
                break
            await asyncio.sleep(0.01)

        await poller.stop()

        assert not poller.is_running
        assert handler.await_count == 1

    @pytest.mark.asyncio
    async def test_no_query_after_stop(self, handler, activity):
        ledger = FakeLedger(balance=1)
        poller = BalancePoller(ledger, MONITORED, 0.01, handler, activity)

        poller.start()
        await asyncio.sleep(0.05)
        await poller.stop()
        calls = ledger.balance_calls
        await asyncio.sleep(0.05)

        assert calls >= 1
        assert ledger.balance_calls == calls

    @pytest.mark.asyncio
    async def test_double_start_ignored(self, poller):
        poller.start()
        task = poller._task
        poller.start()

        assert poller._task is task
        await poller.stop()
