"""Forwarding monitor: owns the shared monitoring state and wires the components.

Flow: BalancePoller -> DeltaDetector -> (increase) ForwardingPipeline.

The monitor is the single owner of the mutable state shared between polling
and forwarding (baseline balance, run-in-progress flag, deferred deposit).
Only one ForwardingRun may exist at a time; a deposit detected while a run is
active goes into a single deferred slot and becomes a fresh run once the
active one reaches a terminal outcome.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from forwarder.config import ForwardingConfig
from forwarder.exceptions import LedgerError
from forwarder.services.approval_signer import ApprovalQueueSigner
from forwarder.services.balance_poller import BalancePoller
from forwarder.services.forwarding_pipeline import ForwardingPipeline
from forwarder.services.multisig_verifier import MultisigVerifier
from forwarder_core.activity import ActivityRecorder
from forwarder_core.amounts import format_trx
from forwarder_core.delta import DeltaDetector, DeltaKind
from forwarder_core.models import BalanceObservation, ForwardingRun, LogLevel, MultisigStatus
from forwarder_core.ports import ExternalSigner, LedgerClient

logger = logging.getLogger(__name__)


@dataclass
class MonitorState:
    """Mutable monitoring state, written only by ForwardingMonitor."""

    detector: DeltaDetector = field(default_factory=DeltaDetector)
    current_balance: int | None = None
    run_in_progress: bool = False
    active_run: ForwardingRun | None = None
    last_run: ForwardingRun | None = None
    deferred_amount: int = 0
    run_task: asyncio.Task | None = None

    @property
    def last_balance(self) -> int | None:
        return self.detector.previous


class ForwardingMonitor:
    """Coordinate polling, delta detection, multisig gating and forwarding."""

    def __init__(
        self,
        config: ForwardingConfig,
        ledger: LedgerClient,
        signer: ExternalSigner,
        activity: ActivityRecorder | None = None,
    ):
        self.config = config
        self.ledger = ledger
        self.signer = signer
        self.activity = activity if activity is not None else ActivityRecorder()
        self.state = MonitorState()

        self.verifier = MultisigVerifier(ledger, config.monitored_address, self.activity)
        self.pipeline = ForwardingPipeline(ledger, signer, config, self.activity)
        self.poller = BalancePoller(
            ledger,
            config.monitored_address,
            config.poll_interval,
            self.handle_observation,
            self.activity,
            heartbeat_every=config.heartbeat_every,
        )

        if isinstance(signer, ApprovalQueueSigner):
            signer.on_address_change(self._on_signer_address)

    @property
    def is_running(self) -> bool:
        return self.poller.is_running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Initial balance read and multisig check (failures are logged, not fatal)."""
        self.activity.success(
            "Forwarder initialized",
            {
                "network": self.config.ledger_endpoint,
                "monitoredAddress": self.config.monitored_address,
            },
        )
        await self.refresh_balance()
        await self.verify_multisig()

    async def refresh_balance(self) -> int | None:
        """Read the current balance for display; does not touch the delta baseline."""
        try:
            balance = await self.ledger.get_balance(self.config.monitored_address)
        except LedgerError as e:
            logger.warning(f"Failed to update monitored balance: {e}")
            return None
        self.state.current_balance = balance
        return balance

    async def verify_multisig(self) -> MultisigStatus:
        return await self.verifier.verify(self.signer.address)

    async def _on_signer_address(self, address: str | None) -> None:
        await self.verifier.verify(address)

    def start(self) -> bool:
        """Start monitoring. The next observation becomes the new baseline."""
        if self.is_running:
            return False

        if not self.signer.address:
            self.activity.warning("Approving wallet not connected; forwards will wait for it")
        if not self.verifier.status.is_configured:
            self.activity.warning("Multisig not properly configured")

        self.state.detector.reset()
        self.poller.start()
        self.activity.success(
            "Multisig auto-forwarder started",
            {
                "network": self.config.ledger_endpoint,
                "monitoredWallet": self.config.monitored_address,
                "approvingWallet": self.signer.address,
                "destination": self.config.destination_address,
                "interval": f"{self.config.poll_interval:g}s",
            },
        )
        return True

    async def stop(self) -> bool:
        """Stop polling. An in-flight forwarding run keeps going."""
        if not self.is_running:
            return False
        await self.poller.stop()
        self.activity.info("Monitoring stopped")
        return True

    async def wait_for_run(self, timeout: float | None = None) -> ForwardingRun | None:
        """Wait until no forwarding run (including deferred ones) is in flight."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self.state.run_task is not None:
            task = self.state.run_task
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            done, _ = await asyncio.wait({task}, timeout=remaining)
            if not done:
                raise asyncio.TimeoutError(f"Forwarding run still in flight after {timeout}s")
            # Let the done-callbacks hand over to a deferred run
            await asyncio.sleep(0)
        return self.state.last_run

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Stop polling and give an in-flight run a bounded time to finish."""
        await self.stop()
        if self.state.run_task is None:
            return
        try:
            await self.wait_for_run(timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Forwarding run still in flight at shutdown, cancelling")
            task = self.state.run_task
            if task is not None:
                task.cancel()
                await asyncio.wait({task})

    # ------------------------------------------------------------------
    # Observation handling
    # ------------------------------------------------------------------

    async def handle_observation(self, observation: BalanceObservation) -> None:
        """Classify a balance observation and trigger forwarding on an increase."""
        state = self.state
        # Baseline moves before any forwarding is triggered
        delta = state.detector.observe(observation.amount)
        state.current_balance = observation.amount

        if delta.kind == DeltaKind.INITIAL:
            self.activity.info(f"Initial balance set: {format_trx(delta.current)}")
        elif delta.kind == DeltaKind.INCREASE:
            self.activity.append(
                LogLevel.BALANCE,
                f"Balance increased by {format_trx(delta.amount)}",
                {
                    "previousBalance": format_trx(delta.previous),
                    "currentBalance": format_trx(delta.current),
                },
            )
            self.request_forward(delta.amount)
        elif delta.kind == DeltaKind.DECREASE:
            self.activity.append(
                LogLevel.BALANCE,
                f"Balance decreased by {format_trx(delta.amount)}",
                {
                    "previousBalance": format_trx(delta.previous),
                    "currentBalance": format_trx(delta.current),
                },
            )

    # ------------------------------------------------------------------
    # Forwarding
    # ------------------------------------------------------------------

    def request_forward(self, amount: int) -> bool:
        """Start a forwarding run for ``amount``, or defer it behind the active run.

        Returns True if a run was started.
        """
        state = self.state
        if state.run_in_progress:
            state.deferred_amount += amount
            self.activity.warning(
                "Forward in progress; new deposit deferred",
                {
                    "deferredAmount": format_trx(amount),
                    "totalDeferred": format_trx(state.deferred_amount),
                },
            )
            return False

        if not self.verifier.status.is_configured:
            self.activity.error(
                "Multisig not configured; deposit will not be forwarded",
                {"amount": format_trx(amount)},
            )
            return False

        run = ForwardingRun(detected_amount=amount)
        state.run_in_progress = True
        state.active_run = run
        state.run_task = asyncio.create_task(self._run_forward(run), name=f"forward-{run.run_id}")
        state.run_task.add_done_callback(self._on_run_done)
        return True

    async def _run_forward(self, run: ForwardingRun) -> ForwardingRun:
        if self.config.forward_delay > 0:
            await asyncio.sleep(self.config.forward_delay)
        try:
            return await self.pipeline.execute(run)
        except Exception as e:
            logger.exception("Forwarding run %s crashed", run.run_id)
            self.activity.error("Multisig forwarding failed", {"runId": run.run_id, "error": str(e)})
            raise

    def _on_run_done(self, task: asyncio.Task) -> None:
        state = self.state
        state.last_run = state.active_run
        state.active_run = None
        state.run_in_progress = False
        state.run_task = None

        if task.cancelled():
            # Shutting down: the deferred amount stays recorded but is not forwarded
            if state.deferred_amount > 0:
                logger.warning(
                    "Forwarding run cancelled, %s deferred deposit left unforwarded",
                    format_trx(state.deferred_amount),
                )
            return
        if task.exception() is not None:
            logger.error("Forwarding task ended with error: %s", task.exception())

        if state.deferred_amount > 0:
            amount, state.deferred_amount = state.deferred_amount, 0
            self.activity.info(
                "Starting deferred forward", {"amount": format_trx(amount)}
            )
            self.request_forward(amount)
