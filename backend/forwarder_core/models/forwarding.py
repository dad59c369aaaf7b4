"""Forwarding run state machine models.

A run walks the fixed step sequence
detect -> create -> sign-local -> sign-external -> validate -> broadcast -> confirm.
Transitions are enforced on the model itself:

- A step can only become ACTIVE when every earlier step is COMPLETED
- Only an ACTIVE step can become COMPLETED or ERROR
- A retry resets every step after ``detect`` back to PENDING
- Terminal outcomes (COMPLETED, ERROR, SKIPPED) are final
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested run or step transition is not valid."""


class StepId(str, Enum):
    """Forwarding steps, declared in execution order."""

    DETECT = "detect"
    CREATE = "create"
    SIGN_LOCAL = "sign-local"
    SIGN_EXTERNAL = "sign-external"
    VALIDATE = "validate"
    BROADCAST = "broadcast"
    CONFIRM = "confirm"


STEP_ORDER: tuple[StepId, ...] = tuple(StepId)

STEP_LABELS: dict[StepId, str] = {
    StepId.DETECT: "Payment Detected",
    StepId.CREATE: "Transaction Created",
    StepId.SIGN_LOCAL: "Signed by Monitored Wallet",
    StepId.SIGN_EXTERNAL: "Signed by Approving Wallet",
    StepId.VALIDATE: "Signatures Validated",
    StepId.BROADCAST: "Broadcasted",
    StepId.CONFIRM: "Confirmed",
}


class StepStatus(str, Enum):
    """Status of a single forwarding step."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    ERROR = "error"


class RunOutcome(str, Enum):
    """Lifecycle outcome of a forwarding run."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"
    SKIPPED = "skipped"  # insufficient balance after fee reserve

    @property
    def is_terminal(self) -> bool:
        return self is not RunOutcome.IN_PROGRESS


class MultisigStatus(BaseModel):
    """Result of checking the monitored account's 2-of-2 permission."""

    model_config = ConfigDict(frozen=True)

    is_configured: bool = False
    threshold: int = 0
    key_count: int = 0
    has_local_key: bool = False
    has_external_key: bool = False


class ForwardingStep(BaseModel):
    """One step of a forwarding run."""

    step: StepId
    label: str
    status: StepStatus = StepStatus.PENDING
    timestamp: datetime | None = None
    detail: str | None = None


def _initial_steps() -> list[ForwardingStep]:
    return [ForwardingStep(step=s, label=STEP_LABELS[s]) for s in STEP_ORDER]


class ForwardingRun(BaseModel):
    """Complete lifecycle of forwarding one detected deposit."""

    run_id: str = Field(default_factory=lambda: uuid4().hex[:16])
    detected_amount: int
    steps: list[ForwardingStep] = Field(default_factory=_initial_steps)
    attempts: int = 0
    outcome: RunOutcome = RunOutcome.IN_PROGRESS
    forward_amount: int | None = None
    tx_id: str | None = None
    network_fee: int | None = None
    error: str | None = None
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_step(self, step_id: StepId) -> ForwardingStep:
        return self.steps[STEP_ORDER.index(step_id)]

    @property
    def active_step(self) -> ForwardingStep | None:
        for step in self.steps:
            if step.status == StepStatus.ACTIVE:
                return step
        return None

    @property
    def is_terminal(self) -> bool:
        return self.outcome.is_terminal

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _require_open(self) -> None:
        if self.is_terminal:
            raise InvalidTransitionError(
                f"Run {self.run_id} already finished as {self.outcome.value}"
            )

    def start_step(self, step_id: StepId) -> ForwardingStep:
        """Mark a step ACTIVE; every earlier step must be COMPLETED."""
        self._require_open()
        index = STEP_ORDER.index(step_id)
        for earlier in self.steps[:index]:
            if earlier.status != StepStatus.COMPLETED:
                raise InvalidTransitionError(
                    f"Cannot start {step_id.value}: {earlier.step.value} is {earlier.status.value}"
                )
        step = self.steps[index]
        if step.status != StepStatus.PENDING:
            raise InvalidTransitionError(
                f"Cannot start {step_id.value} from {step.status.value}"
            )
        step.status = StepStatus.ACTIVE
        step.timestamp = _utcnow()
        step.detail = None
        return step

    def complete_step(self, step_id: StepId, detail: str | None = None) -> ForwardingStep:
        """Mark an ACTIVE step COMPLETED."""
        self._require_open()
        step = self.get_step(step_id)
        if step.status != StepStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Cannot complete {step_id.value} from {step.status.value}"
            )
        step.status = StepStatus.COMPLETED
        step.timestamp = _utcnow()
        step.detail = detail
        return step

    def fail_active_step(self, detail: str) -> ForwardingStep | None:
        """Mark the currently ACTIVE step (if any) as ERROR."""
        self._require_open()
        step = self.active_step
        if step is not None:
            step.status = StepStatus.ERROR
            step.timestamp = _utcnow()
            step.detail = detail
        return step

    def begin_attempt(self) -> int:
        """Start a new create->confirm attempt, resetting the steps after detect."""
        self._require_open()
        if self.get_step(StepId.DETECT).status != StepStatus.COMPLETED:
            raise InvalidTransitionError("Cannot begin an attempt before detect completes")
        for step in self.steps[1:]:
            step.status = StepStatus.PENDING
            step.timestamp = None
            step.detail = None
        self.attempts += 1
        return self.attempts

    def finish(self, outcome: RunOutcome, error: str | None = None) -> None:
        """Move the run into a terminal outcome."""
        self._require_open()
        if not outcome.is_terminal:
            raise InvalidTransitionError("Cannot finish a run as in_progress")
        if outcome == RunOutcome.COMPLETED and any(
            s.status != StepStatus.COMPLETED for s in self.steps
        ):
            raise InvalidTransitionError("Cannot complete a run with unfinished steps")
        self.outcome = outcome
        self.error = error
        self.finished_at = _utcnow()
