"""Interactive co-signer backed by an approval queue.

The approving wallet lives with the operator, not in this process. When the
pipeline needs the second signature, the partially-signed transaction is
parked here and exposed through the API; the operator's wallet signs it and
posts it back (or rejects it). ``sign`` simply awaits that answer.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from pydantic import BaseModel, Field

from forwarder.exceptions import SigningCancelled
from forwarder_core.models import Transaction

logger = logging.getLogger(__name__)

AddressCallback = Callable[[str | None], Awaitable[None]]


class SigningRequest(BaseModel):
    """A transaction waiting for the approving wallet's signature."""

    tx: Transaction
    signer: str
    requested_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ApprovalQueueSigner:
    """ExternalSigner that waits for the operator to co-sign via the API.

    Holds at most one pending request, matching the one-run-at-a-time rule of
    the forwarder.
    """

    def __init__(self, timeout: float | None = None):
        """
        Args:
            timeout: Seconds to wait for the operator before the request is
                cancelled. None waits indefinitely.
        """
        self.timeout = timeout
        self._address: str | None = None
        self._pending: SigningRequest | None = None
        self._future: asyncio.Future | None = None
        self._address_callbacks: list[AddressCallback] = []

    # ------------------------------------------------------------------
    # Approving wallet
    # ------------------------------------------------------------------

    @property
    def address(self) -> str | None:
        return self._address

    def on_address_change(self, callback: AddressCallback) -> None:
        """Register callback for approving wallet changes."""
        if callback not in self._address_callbacks:
            self._address_callbacks.append(callback)

    async def set_address(self, address: str | None) -> bool:
        """Connect (or switch) the approving wallet. Returns True if it changed."""
        if address == self._address:
            return False
        self._address = address
        logger.info("Approving wallet %s", f"connected: {address}" if address else "disconnected")
        for callback in list(self._address_callbacks):
            await callback(address)
        return True

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    @property
    def pending(self) -> SigningRequest | None:
        return self._pending

    async def sign(self, tx: Transaction) -> Transaction:
        """Park ``tx`` for approval and wait for the co-signed transaction."""
        if not self._address:
            raise SigningCancelled("Approving wallet not connected")
        if self._pending is not None:
            raise SigningCancelled(f"Signing request {self._pending.tx.short_id} already pending")

        self._future = asyncio.get_running_loop().create_future()
        self._pending = SigningRequest(tx=tx, signer=self._address)
        try:
            return await asyncio.wait_for(self._future, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise SigningCancelled(
                f"No approval within {self.timeout:g}s for {tx.short_id}"
            ) from e
        finally:
            self._pending = None
            self._future = None

    def _resolve(self, tx_id: str) -> asyncio.Future:
        if self._pending is None or self._future is None:
            raise LookupError("No signing request pending")
        if self._pending.tx.tx_id != tx_id:
            raise LookupError(f"Pending request is {self._pending.tx.tx_id}, not {tx_id}")
        if self._future.done():
            raise LookupError(f"Signing request {tx_id} already answered")
        return self._future

    def submit(self, tx_id: str, signed: Transaction) -> None:
        """Deliver the co-signed transaction for the pending request."""
        self._resolve(tx_id).set_result(signed)

    def reject(self, tx_id: str, reason: str = "Rejected by operator") -> None:
        """Cancel the pending request."""
        self._resolve(tx_id).set_exception(SigningCancelled(reason))
