"""Ledger-side data models (balances, permissions, transactions)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BalanceObservation(BaseModel):
    """Balance of the monitored account at one poll tick (in sun)."""

    model_config = ConfigDict(frozen=True)

    amount: int
    observed_at: datetime = Field(default_factory=_utcnow)


class PermissionKey(BaseModel):
    """One key entry of an account permission."""

    model_config = ConfigDict(frozen=True)

    address: str
    weight: int = 1


class AccountPermission(BaseModel):
    """Active permission of an account: threshold plus the ordered key list."""

    model_config = ConfigDict(frozen=True)

    permission_id: int = 2
    threshold: int
    keys: list[PermissionKey] = []

    def key_index(self, address: str) -> int | None:
        """Return the position of ``address`` in the key list, or None."""
        for index, key in enumerate(self.keys):
            if key.address == address:
                return index
        return None

    def has_key(self, address: str | None) -> bool:
        return bool(address) and self.key_index(address) is not None


class Transaction(BaseModel):
    """A ledger transaction in any signing stage.

    ``signature`` holds hex-encoded signatures; an unsigned transaction has
    an empty list.
    """

    tx_id: str
    raw_data: dict[str, Any] = {}
    raw_data_hex: str = ""
    signature: list[str] = []

    @property
    def short_id(self) -> str:
        return f"{self.tx_id[:8]}..."


class BroadcastResult(BaseModel):
    """Outcome of submitting a signed transaction."""

    model_config = ConfigDict(frozen=True)

    accepted: bool
    tx_id: str = ""
    message: str | None = None
    code: str | None = None
