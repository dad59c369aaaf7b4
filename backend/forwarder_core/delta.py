"""Balance delta detection.

The detector keeps the last observed balance and classifies each new
observation against it. The stored balance is replaced *before* the
classification is returned, so a caller that reacts to an INCREASE always
leaves the baseline at the post-detection balance and a later deposit is
never measured against a stale value.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class DeltaKind(str, Enum):
    """Classification of a balance observation."""

    INITIAL = "initial"
    INCREASE = "increase"
    DECREASE = "decrease"
    UNCHANGED = "unchanged"


class BalanceDelta(BaseModel):
    """Result of comparing a new balance with the previous one."""

    model_config = ConfigDict(frozen=True)

    kind: DeltaKind
    amount: int = 0  # absolute difference in sun, 0 for INITIAL/UNCHANGED
    previous: int | None = None
    current: int


def classify_delta(previous: int | None, current: int) -> BalanceDelta:
    """Pure classification of (previous, current) balances."""
    if previous is None:
        return BalanceDelta(kind=DeltaKind.INITIAL, current=current)
    if current > previous:
        return BalanceDelta(
            kind=DeltaKind.INCREASE,
            amount=current - previous,
            previous=previous,
            current=current,
        )
    if current < previous:
        return BalanceDelta(
            kind=DeltaKind.DECREASE,
            amount=previous - current,
            previous=previous,
            current=current,
        )
    return BalanceDelta(kind=DeltaKind.UNCHANGED, previous=previous, current=current)


class DeltaDetector:
    """Stateful comparator holding the last observed balance."""

    def __init__(self) -> None:
        self._previous: int | None = None

    @property
    def previous(self) -> int | None:
        return self._previous

    def observe(self, amount: int) -> BalanceDelta:
        """Classify ``amount`` and make it the new baseline."""
        delta = classify_delta(self._previous, amount)
        self._previous = amount
        return delta

    def reset(self) -> None:
        """Forget the baseline; the next observation is INITIAL again."""
        self._previous = None
