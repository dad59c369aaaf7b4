"""Periodic balance poller for the monitored account."""

import asyncio
import logging
from typing import Awaitable, Callable

from forwarder.exceptions import LedgerError
from forwarder_core.activity import ActivityRecorder
from forwarder_core.amounts import format_trx
from forwarder_core.models import BalanceObservation
from forwarder_core.ports import LedgerClient

logger = logging.getLogger(__name__)

ObservationCallback = Callable[[BalanceObservation], Awaitable[None]]


class BalancePoller:
    """
    Query the monitored balance once per interval and emit observations.

    - The first query happens immediately on start
    - Ticks are serialized: the next query is only issued after the previous
      observation has been handled, so observations arrive in poll order
    - Query failures are logged and skipped (no retry inside the poller)
    - A heartbeat entry is logged every ``heartbeat_every`` successful ticks
    """

    def __init__(
        self,
        ledger: LedgerClient,
        address: str,
        interval: float,
        on_observation: ObservationCallback,
        activity: ActivityRecorder,
        heartbeat_every: int = 20,
    ):
        self._ledger = ledger
        self._address = address
        self.interval = interval
        self._on_observation = on_observation
        self._activity = activity
        self._heartbeat_every = heartbeat_every

        self._task: asyncio.Task | None = None
        self._ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling. A second start while running is ignored."""
        if self.is_running:
            return
        self._ticks = 0
        self._task = asyncio.create_task(self._run(), name="balance-poller")

    async def stop(self) -> None:
        """Stop polling; no query is issued after this returns."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            await self.poll_once()
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self.interval - elapsed))

    async def poll_once(self) -> BalanceObservation | None:
        """Run a single tick: query, heartbeat, hand the observation over."""
        try:
            amount = await self._ledger.get_balance(self._address)
        except LedgerError as e:
            self._activity.error("Balance query failed", {"error": str(e)})
            return None

        observation = BalanceObservation(amount=amount)

        self._ticks += 1
        if self._ticks >= self._heartbeat_every:
            self._activity.info(f"Monitoring active - Balance: {format_trx(amount)}")
            self._ticks = 0

        try:
            await self._on_observation(observation)
        except Exception as e:
            logger.exception("Balance observation handler failed")
            self._activity.error("Failed to process balance observation", {"error": str(e)})
        return observation
