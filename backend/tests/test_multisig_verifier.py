"""Tests for multisig verification."""

import pytest

from conftest import APPROVER, MONITORED
from forwarder.exceptions import LedgerError
from forwarder.services.multisig_verifier import MultisigVerifier
from forwarder_core.models import AccountPermission, LogLevel, PermissionKey


class FailingLedger:
    async def get_account_permissions(self, address):
        raise LedgerError("node down")


class TestMultisigVerifier:
    """Tests for MultisigVerifier."""

    @pytest.fixture
    def verifier(self, ledger, activity):
        return MultisigVerifier(ledger, MONITORED, activity)

    def test_not_configured_before_verify(self, verifier):
        assert not verifier.status.is_configured

    @pytest.mark.asyncio
    async def test_verification_passed(self, verifier, activity):
        status = await verifier.verify(APPROVER)

        assert status.is_configured
        assert verifier.status is status
        entry = activity.list()[0]
        assert entry.level == LogLevel.SUCCESS
        assert entry.message == "2-of-2 multisig verification passed"

    @pytest.mark.asyncio
    async def test_approver_not_connected(self, verifier, activity):
        status = await verifier.verify(None)

        assert not status.is_configured
        assert status.has_local_key
        entry = activity.list()[0]
        assert entry.level == LogLevel.WARNING
        assert entry.details["approvingWallet"] == "not connected"

    @pytest.mark.asyncio
    async def test_single_signature_permission(self, verifier, ledger, activity):
        ledger.permission = AccountPermission(
            threshold=1, keys=[PermissionKey(address=MONITORED)]
        )

        status = await verifier.verify(APPROVER)

        assert not status.is_configured
        assert status.threshold == 1
        assert activity.list()[0].message == "Multisig not properly configured"

    @pytest.mark.asyncio
    async def test_query_failure_keeps_previous_status(self, ledger, activity):
        verifier = MultisigVerifier(ledger, MONITORED, activity)
        await verifier.verify(APPROVER)

        verifier._ledger = FailingLedger()
        status = await verifier.verify(APPROVER)

        assert status.is_configured
        assert activity.list()[0].message == "Failed to verify multisig setup"
