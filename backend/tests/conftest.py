"""Shared fixtures: in-memory ledger and co-signer fakes."""

import asyncio

import pytest

from forwarder.config import ForwardingConfig
from forwarder.exceptions import LedgerError
from forwarder_core.activity import ActivityRecorder
from forwarder_core.amounts import trx_to_sun
from forwarder_core.models import (
    AccountPermission,
    BroadcastResult,
    PermissionKey,
    Transaction,
)

MONITORED = "TMonitoredWa11etAddressxxxxxxxxxx"
APPROVER = "TApprovingWa11etAddressxxxxxxxxxx"
DESTINATION = "TDestinationWa11etAddressxxxxxxxx"

# 65-byte signatures as hex
LOCAL_SIG = "aa" * 65
EXTERNAL_SIG = "bb" * 65


class FakeLedger:
    """In-memory ledger. Accepted broadcasts debit amount + fee from the balance."""

    def __init__(self, balance: int = 0, fee: int = 1_100_000):
        self.balance = balance
        self.fee = fee
        self.permission: AccountPermission | None = AccountPermission(
            permission_id=2,
            threshold=2,
            keys=[PermissionKey(address=MONITORED), PermissionKey(address=APPROVER)],
        )
        self.broadcast_results: list[BroadcastResult] = []
        self.balance_error: LedgerError | None = None
        self.fail_balance_after_broadcast = False
        # Broadcast replies dropped after the node has processed the send
        self.lost_replies = 0
        # Accepted transactions stay invisible to lookups while set
        self.hide_transactions = False

        self.accepted: set[str] = set()
        self.lookups = 0

        self.balance_calls = 0
        self.built: list[int] = []
        self.broadcasts: list[Transaction] = []
        self._amounts: dict[str, int] = {}

    async def get_balance(self, address: str) -> int:
        self.balance_calls += 1
        if self.balance_error is not None:
            raise self.balance_error
        if self.fail_balance_after_broadcast and self.broadcasts:
            raise LedgerError("node unavailable")
        return self.balance

    async def get_account_permissions(self, address: str) -> AccountPermission | None:
        return self.permission

    async def build_transfer(self, to, amount, from_address, permission_id=None) -> Transaction:
        self.built.append(amount)
        tx_id = f"{len(self.built):064x}"
        self._amounts[tx_id] = amount
        return Transaction(tx_id=tx_id, raw_data={"contract": []}, raw_data_hex="0a02")

    async def apply_local_signature(self, tx, private_key, key_index) -> Transaction:
        signatures = list(tx.signature)
        signatures.insert(min(key_index, len(signatures)), LOCAL_SIG)
        return tx.model_copy(update={"signature": signatures})

    async def broadcast(self, tx: Transaction) -> BroadcastResult:
        self.broadcasts.append(tx)
        if tx.tx_id in self.accepted:
            result = BroadcastResult(
                accepted=False, tx_id=tx.tx_id, code="DUP_TRANSACTION_ERROR", message="Dup transaction."
            )
        else:
            result = (
                self.broadcast_results.pop(0)
                if self.broadcast_results
                else BroadcastResult(accepted=True, tx_id=tx.tx_id)
            )
            if result.accepted:
                self.accepted.add(tx.tx_id)
                self.balance -= self._amounts[tx.tx_id] + self.fee

        if self.lost_replies > 0:
            self.lost_replies -= 1
            raise LedgerError("/wallet/broadcasttransaction failed: ReadTimeout")
        return result

    async def get_transaction(self, tx_id: str) -> dict | None:
        self.lookups += 1
        if self.hide_transactions or tx_id not in self.accepted:
            return None
        return {"txID": tx_id}


class FakeSigner:
    """External co-signer; optionally held back by a gate until released."""

    def __init__(self, address: str | None = APPROVER, gated: bool = False):
        self.address = address
        self.error: Exception | None = None
        self.add_signature = True
        self.tamper_tx_id = False
        self.calls = 0
        self.requested = asyncio.Event()
        self._gate = asyncio.Event()
        if not gated:
            self._gate.set()

    def release(self) -> None:
        self._gate.set()

    async def sign(self, tx: Transaction) -> Transaction:
        self.calls += 1
        self.requested.set()
        await self._gate.wait()
        if self.error is not None:
            raise self.error
        update = {}
        if self.add_signature:
            update["signature"] = [*tx.signature, EXTERNAL_SIG]
        if self.tamper_tx_id:
            update["tx_id"] = "f" * 64
        return tx.model_copy(update=update)


def make_config(**overrides) -> ForwardingConfig:
    values = dict(
        private_key="11" * 32,
        monitored_address=MONITORED,
        destination_address=DESTINATION,
        fee_reserve=trx_to_sun(5),
        poll_interval=60.0,
        ledger_endpoint="https://api.shasta.trongrid.io",
        forward_delay=0,
        settlement_delay=0,
        retry_delay=0,
        max_attempts=3,
    )
    values.update(overrides)
    return ForwardingConfig(**values)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def ledger():
    return FakeLedger(balance=trx_to_sun(100))


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def activity():
    return ActivityRecorder()


def messages(activity: ActivityRecorder) -> list[str]:
    """Activity messages in append order."""
    return [entry.message for entry in reversed(activity.list())]


