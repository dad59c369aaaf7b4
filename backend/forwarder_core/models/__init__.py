"""Core data models."""

from forwarder_core.models.activity import NOTIFY_LEVELS, LogEntry, LogLevel
from forwarder_core.models.forwarding import (
    STEP_LABELS,
    STEP_ORDER,
    ForwardingRun,
    ForwardingStep,
    InvalidTransitionError,
    MultisigStatus,
    RunOutcome,
    StepId,
    StepStatus,
)
from forwarder_core.models.ledger import (
    AccountPermission,
    BalanceObservation,
    BroadcastResult,
    PermissionKey,
    Transaction,
)

__all__ = [
    # Ledger
    "AccountPermission",
    "BalanceObservation",
    "BroadcastResult",
    "PermissionKey",
    "Transaction",
    # Forwarding
    "STEP_LABELS",
    "STEP_ORDER",
    "ForwardingRun",
    "ForwardingStep",
    "InvalidTransitionError",
    "MultisigStatus",
    "RunOutcome",
    "StepId",
    "StepStatus",
    # Activity
    "NOTIFY_LEVELS",
    "LogEntry",
    "LogLevel",
]
