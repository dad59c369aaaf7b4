"""Forwarding pipeline: build, co-sign, validate, broadcast and confirm a forward.

One attempt walks create -> sign-local -> sign-external -> validate ->
broadcast -> confirm. Any failure before the broadcast is accepted restarts
the whole attempt from create (fresh balance, fresh transaction), up to
``max_attempts``. Once the ledger has accepted a transaction the run is never
retried: a second attempt would build a new transaction and spend the
deposit twice. A broadcast whose outcome is unknown (transport failure)
is resent as the same signed transaction and looked up by id; if acceptance
still cannot be established the run ends in error instead of rebuilding.
"""

import asyncio
import logging
from typing import Callable

from forwarder.config import ForwardingConfig
from forwarder.exceptions import (
    AttemptFailed,
    BroadcastUnconfirmed,
    LedgerError,
    SigningCancelled,
)
from forwarder_core.activity import ActivityRecorder
from forwarder_core.amounts import compute_forward_amount, format_trx, sun_to_trx
from forwarder_core.models import (
    AccountPermission,
    ForwardingRun,
    LogLevel,
    RunOutcome,
    StepId,
    Transaction,
)
from forwarder_core.multisig import REQUIRED_THRESHOLD, signature_count
from forwarder_core.ports import ExternalSigner, LedgerClient

logger = logging.getLogger(__name__)

StepCallback = Callable[[ForwardingRun], None]

# Failures that consume one attempt
ATTEMPT_ERRORS = (AttemptFailed, LedgerError, SigningCancelled)

# Sends of one signed transaction when the node's answer is lost
BROADCAST_TRIES = 3

# Node reply for a transaction id it has already seen
DUPLICATE_CODE = "DUP_TRANSACTION_ERROR"


class ForwardingPipeline:
    """Drive one ForwardingRun to a terminal outcome."""

    def __init__(
        self,
        ledger: LedgerClient,
        signer: ExternalSigner,
        config: ForwardingConfig,
        activity: ActivityRecorder,
    ):
        self._ledger = ledger
        self._signer = signer
        self._config = config
        self._activity = activity
        self._step_callbacks: list[StepCallback] = []

    def on_step(self, callback: StepCallback) -> None:
        """Register callback invoked after every step transition."""
        if callback not in self._step_callbacks:
            self._step_callbacks.append(callback)

    def _notify(self, run: ForwardingRun) -> None:
        for callback in self._step_callbacks:
            try:
                callback(run)
            except Exception as e:
                logger.warning(f"Step callback failed: {e}")

    def _start(self, run: ForwardingRun, step: StepId) -> None:
        run.start_step(step)
        self._notify(run)

    def _complete(self, run: ForwardingRun, step: StepId, detail: str | None = None) -> None:
        run.complete_step(step, detail)
        self._notify(run)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def execute(self, run: ForwardingRun) -> ForwardingRun:
        """Execute ``run`` until it completes, is skipped or exhausts its attempts."""
        config = self._config

        self._start(run, StepId.DETECT)
        self._complete(run, StepId.DETECT, f"{format_trx(run.detected_amount)} received")
        self._activity.append(
            LogLevel.DETECTION,
            "TRX PAYMENT DETECTED!",
            {
                "receivedAmount": format_trx(run.detected_amount),
                "destination": config.destination_address,
                "strategy": "INCOMING AMOUNT ONLY",
                "process": "2-of-2 multisig forwarding",
            },
        )

        try:
            return await self._run_attempts(run)
        except (Exception, asyncio.CancelledError) as e:
            # Anything else ends the run here so it never stays in flight
            self._abort(run, str(e) or type(e).__name__)
            raise

    async def _run_attempts(self, run: ForwardingRun) -> ForwardingRun:
        config = self._config
        while True:
            attempt = run.begin_attempt()
            self._notify(run)
            try:
                await self._attempt(run)
                return run
            except BroadcastUnconfirmed as e:
                self._abort(run, str(e))
                self._activity.error(
                    "Forward outcome unknown, not retrying",
                    {
                        "runId": run.run_id,
                        "txId": run.tx_id,
                        "amount": format_trx(run.forward_amount or 0),
                        "error": str(e),
                    },
                )
                return run
            except ATTEMPT_ERRORS as e:
                failed = run.fail_active_step(str(e))
                self._notify(run)
                self._activity.error(
                    f"Forwarding attempt {attempt}/{config.max_attempts} failed",
                    {
                        "runId": run.run_id,
                        "attempt": attempt,
                        "step": failed.step.value if failed else None,
                        "error": str(e),
                    },
                )

                if attempt >= config.max_attempts:
                    run.finish(RunOutcome.ERROR, str(e))
                    self._notify(run)
                    self._activity.error(
                        "Multisig forwarding failed",
                        {
                            "runId": run.run_id,
                            "attempts": attempt,
                            "amount": format_trx(run.detected_amount),
                            "error": str(e),
                        },
                    )
                    return run

                self._activity.info(
                    f"Retrying forward in {config.retry_delay:g}s",
                    {"runId": run.run_id, "nextAttempt": attempt + 1},
                )
                await asyncio.sleep(config.retry_delay)

    def _abort(self, run: ForwardingRun, error: str) -> None:
        if run.is_terminal:
            return
        run.fail_active_step(error)
        run.finish(RunOutcome.ERROR, error)
        self._notify(run)

    async def _attempt(self, run: ForwardingRun) -> None:
        """One create -> confirm traversal. Raises an ATTEMPT_ERRORS member on failure."""
        config = self._config

        # Create: always against a fresh balance, never the detected one
        self._start(run, StepId.CREATE)
        balance_before = await self._ledger.get_balance(config.monitored_address)
        forward_amount = compute_forward_amount(
            run.detected_amount, balance_before, config.fee_reserve
        )
        if forward_amount <= 0:
            self._complete(run, StepId.CREATE, "Nothing to forward after fee reserve")
            run.finish(RunOutcome.SKIPPED)
            self._notify(run)
            self._activity.warning(
                "Insufficient balance after fee reserve",
                {
                    "runId": run.run_id,
                    "balance": format_trx(balance_before),
                    "feeReserve": format_trx(config.fee_reserve),
                    "available": format_trx(max(0, balance_before - config.fee_reserve)),
                },
            )
            return

        permission = await self._ledger.get_account_permissions(config.monitored_address)
        if permission is None:
            raise AttemptFailed("Monitored account has no active permission")

        tx = await self._ledger.build_transfer(
            config.destination_address,
            forward_amount,
            config.monitored_address,
            permission_id=permission.permission_id,
        )
        run.forward_amount = forward_amount
        run.tx_id = tx.tx_id
        self._complete(run, StepId.CREATE, f"Transaction {tx.short_id} created")
        self._activity.info(
            "Multisig transaction created",
            {
                "txId": tx.tx_id,
                "amount": format_trx(forward_amount),
                "destination": config.destination_address,
            },
        )

        partially_signed = await self._sign_local(run, tx, permission)
        fully_signed = await self._sign_external(run, partially_signed)
        count = self._validate(run, fully_signed, permission)

        # Broadcast
        self._start(run, StepId.BROADCAST)
        run.tx_id = await self._broadcast(run, fully_signed)
        self._complete(run, StepId.BROADCAST, f"TX: {run.tx_id[:8]}...")
        self._activity.append(
            LogLevel.BROADCAST,
            "Multisig transaction broadcast successful",
            {"txId": run.tx_id, "signatures": count},
        )

        await self._confirm(run, balance_before, forward_amount)

    async def _sign_local(
        self, run: ForwardingRun, tx: Transaction, permission: AccountPermission
    ) -> Transaction:
        config = self._config
        self._start(run, StepId.SIGN_LOCAL)
        key_index = permission.key_index(config.monitored_address)
        if key_index is None:
            raise AttemptFailed("Monitored address is not a key of the active permission")

        signed = await self._ledger.apply_local_signature(tx, config.private_key, key_index)
        self._complete(run, StepId.SIGN_LOCAL, "Auto-signed with monitored wallet")
        self._activity.append(
            LogLevel.SIGNATURE,
            "First signature completed (monitored wallet)",
            {"signer": config.monitored_address, "status": "Partially signed (1/2)"},
        )
        return signed

    async def _sign_external(self, run: ForwardingRun, tx: Transaction) -> Transaction:
        self._start(run, StepId.SIGN_EXTERNAL)
        self._activity.append(
            LogLevel.SIGNATURE,
            "Requesting second signature from approving wallet...",
            {"signer": self._signer.address, "txId": tx.tx_id},
        )

        signed = await self._signer.sign(tx)
        if not isinstance(signed, Transaction) or signed.tx_id != tx.tx_id:
            raise AttemptFailed("Approving wallet returned a malformed transaction")

        self._complete(run, StepId.SIGN_EXTERNAL, "Signed by approving wallet")
        self._activity.append(
            LogLevel.SIGNATURE,
            "Second signature completed (approving wallet)",
            {"signer": self._signer.address, "status": "Fully signed (2/2)"},
        )
        return signed

    def _validate(
        self, run: ForwardingRun, tx: Transaction, permission: AccountPermission
    ) -> int:
        self._start(run, StepId.VALIDATE)
        required = max(permission.threshold, REQUIRED_THRESHOLD)
        count = signature_count(tx)
        if count < required:
            raise AttemptFailed(f"Insufficient signatures: {count}/{required}")
        self._complete(run, StepId.VALIDATE, f"{count}/{required} signatures")
        return count

    async def _broadcast(self, run: ForwardingRun, tx: Transaction) -> str:
        """Submit ``tx`` and return its id once the node has it.

        A clean rejection raises AttemptFailed, so the attempt may be rebuilt.
        After a transport failure only the same signed transaction is resent,
        and anything short of proof of acceptance raises BroadcastUnconfirmed.
        """
        lost: LedgerError | None = None
        for _ in range(BROADCAST_TRIES):
            try:
                result = await self._ledger.broadcast(tx)
            except LedgerError as e:
                lost = e
                if await self._is_on_chain(tx.tx_id):
                    return tx.tx_id
                self._activity.warning(
                    "Broadcast outcome unknown, resending the same transaction",
                    {"runId": run.run_id, "txId": tx.tx_id, "error": str(e)},
                )
                await asyncio.sleep(self._config.retry_delay)
                continue

            if result.accepted:
                return result.tx_id or tx.tx_id
            reason = result.message or result.code or "Unknown error"
            if lost is None:
                raise AttemptFailed(f"Broadcast failed: {reason}")
            # An earlier send may have landed; a duplicate reply proves it
            if result.code == DUPLICATE_CODE or await self._is_on_chain(tx.tx_id):
                return tx.tx_id
            raise BroadcastUnconfirmed(
                f"Broadcast of {tx.short_id} rejected after a lost reply: {reason}"
            )

        if await self._is_on_chain(tx.tx_id):
            return tx.tx_id
        raise BroadcastUnconfirmed(f"Broadcast of {tx.short_id} unconfirmed: {lost}")

    async def _is_on_chain(self, tx_id: str) -> bool:
        try:
            return await self._ledger.get_transaction(tx_id) is not None
        except LedgerError as e:
            logger.warning("Transaction lookup for %s failed: %s", tx_id, e)
            return False

    async def _confirm(self, run: ForwardingRun, balance_before: int, forward_amount: int) -> None:
        """Wait for settlement and record the realized fee.

        Runs after the ledger accepted the transaction, so nothing here may
        fail the attempt.
        """
        self._start(run, StepId.CONFIRM)
        await asyncio.sleep(self._config.settlement_delay)

        detail = "Transaction confirmed"
        try:
            balance_after = await self._ledger.get_balance(self._config.monitored_address)
        except LedgerError as e:
            balance_after = None
            detail = "Broadcast accepted, balance not re-checked"
            self._activity.warning(
                "Could not confirm forward via balance", {"txId": run.tx_id, "error": str(e)}
            )

        if balance_after is not None:
            fee = (balance_before - balance_after) - forward_amount
            if fee >= 0:
                run.network_fee = fee
            else:
                detail = "Broadcast accepted, balance change not yet visible"
                self._activity.warning(
                    "Forwarded funds not yet reflected in balance",
                    {
                        "txId": run.tx_id,
                        "balanceBefore": format_trx(balance_before),
                        "balanceAfter": format_trx(balance_after),
                    },
                )

        self._complete(run, StepId.CONFIRM, detail)
        run.finish(RunOutcome.COMPLETED)
        self._notify(run)
        self._activity.success(
            "Multisig forward completed successfully!",
            {
                "txId": run.tx_id,
                "amount": format_trx(forward_amount),
                "networkFee": (
                    f"{sun_to_trx(run.network_fee)} TRX" if run.network_fee is not None else None
                ),
                "attempts": run.attempts,
                "status": "Confirmed",
            },
        )
