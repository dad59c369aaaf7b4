"""Multisig permission verification for the monitored account."""

import logging

from forwarder.exceptions import LedgerError
from forwarder_core.activity import ActivityRecorder
from forwarder_core.models import MultisigStatus
from forwarder_core.multisig import evaluate_multisig
from forwarder_core.ports import LedgerClient

logger = logging.getLogger(__name__)


class MultisigVerifier:
    """Check that the monitored account is guarded by a 2-of-2 permission.

    The last computed status is cached; the monitor reads it to decide whether
    a forwarding run may start. Run once after initialization and again
    whenever the approving wallet's address changes.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        monitored_address: str,
        activity: ActivityRecorder,
    ):
        self._ledger = ledger
        self._monitored_address = monitored_address
        self._activity = activity
        self._status = MultisigStatus()

    @property
    def status(self) -> MultisigStatus:
        return self._status

    async def verify(self, external_address: str | None) -> MultisigStatus:
        """Query the account permission and recompute the status.

        A failed query is logged and leaves the previous status in place.
        """
        try:
            permission = await self._ledger.get_account_permissions(self._monitored_address)
        except LedgerError as e:
            self._activity.error("Failed to verify multisig setup", {"error": str(e)})
            return self._status

        status = evaluate_multisig(permission, self._monitored_address, external_address)
        self._status = status

        details = {
            "threshold": status.threshold,
            "keyCount": status.key_count,
            "monitoredKey": status.has_local_key,
            "approvingKey": status.has_external_key,
        }
        if status.is_configured:
            self._activity.success("2-of-2 multisig verification passed", details)
        else:
            details["suggestion"] = "Please setup 2-of-2 multisig permissions"
            if not external_address:
                details["approvingWallet"] = "not connected"
            self._activity.warning("Multisig not properly configured", details)
        return status
