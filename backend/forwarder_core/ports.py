"""Ports (interfaces) used by the forwarding core.

The ledger client and the external co-signer are external collaborators;
these protocols are the only contract the monitor and the pipeline rely on.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from forwarder_core.models import (
    AccountPermission,
    BroadcastResult,
    LogEntry,
    LogLevel,
    Transaction,
)


@runtime_checkable
class LedgerClient(Protocol):
    """Ledger RPC operations required by the forwarder."""

    async def get_balance(self, address: str) -> int:
        """Balance of ``address`` in sun."""
        ...

    async def get_account_permissions(self, address: str) -> AccountPermission | None:
        """Active permission of ``address`` (None if the account has none)."""
        ...

    async def build_transfer(
        self,
        to: str,
        amount: int,
        from_address: str,
        permission_id: int | None = None,
    ) -> Transaction:
        """Build an unsigned transfer of ``amount`` sun."""
        ...

    async def apply_local_signature(
        self, tx: Transaction, private_key: str, key_index: int
    ) -> Transaction:
        """Return ``tx`` with a signature from ``private_key`` added."""
        ...

    async def broadcast(self, tx: Transaction) -> BroadcastResult:
        """Submit a signed transaction."""
        ...

    async def get_transaction(self, tx_id: str) -> dict[str, Any] | None:
        """Transaction known to the node by id, or None."""
        ...


@runtime_checkable
class ExternalSigner(Protocol):
    """Second signer of the 2-of-2 permission.

    ``sign`` may wait an unbounded time for interactive approval and raises
    ``SigningCancelled`` when the request is rejected or times out.
    """

    @property
    def address(self) -> str | None:
        ...

    async def sign(self, tx: Transaction) -> Transaction:
        ...


class ActivitySink(Protocol):
    """Append-only activity log."""

    def append(
        self,
        level: LogLevel,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> LogEntry:
        ...

    def clear(self) -> None:
        ...

    def list(self, limit: int | None = None) -> list[LogEntry]:
        ...
