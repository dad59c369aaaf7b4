"""TRON full-node HTTP API client (balance, permissions, transfers, broadcast)."""

import asyncio
import logging
from typing import Any

import httpx
from tronpy.exceptions import BadKey
from tronpy.keys import PrivateKey

from forwarder.exceptions import LedgerError
from forwarder_core.models import (
    AccountPermission,
    BroadcastResult,
    PermissionKey,
    Transaction,
)

logger = logging.getLogger(__name__)


class RateLimiter:
    """Simple rate limiter for API calls."""

    def __init__(self, calls_per_minute: int = 600):
        self.calls_per_minute = calls_per_minute
        self.interval = 60.0 / calls_per_minute
        self.last_call = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limit."""
        async with self._lock:
            now = asyncio.get_running_loop().time()
            wait_time = self.last_call + self.interval - now
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self.last_call = asyncio.get_running_loop().time()


def _decode_message(message: str | None) -> str | None:
    """Node error messages are hex encoded; fall back to the raw text."""
    if not message:
        return message
    try:
        return bytes.fromhex(message).decode("utf-8")
    except ValueError:
        return message


class TronRestClient:
    """TRON HTTP API client.

    All addresses are exchanged in base58 form (``visible=true``) and all
    amounts are integers in sun.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.rate_limiter = RateLimiter()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {}
            if self.api_key:
                headers["TRON-PRO-API-KEY"] = self.api_key
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST to the node with rate limiting; node errors raise LedgerError."""
        await self.rate_limiter.acquire()
        client = await self._get_client()
        try:
            response = await client.post(endpoint, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LedgerError(f"{endpoint} failed: {e}") from e

        if not isinstance(data, dict):
            raise LedgerError(f"{endpoint} returned unexpected payload: {data!r}")
        if "Error" in data:
            raise LedgerError(f"{endpoint} failed: {data['Error']}")
        return data

    async def get_account(self, address: str) -> dict[str, Any]:
        """Raw account record ({} when the account does not exist yet)."""
        return await self._post("/wallet/getaccount", {"address": address, "visible": True})

    async def get_balance(self, address: str) -> int:
        """Account balance in sun."""
        account = await self.get_account(address)
        return int(account.get("balance", 0))

    async def get_account_permissions(self, address: str) -> AccountPermission | None:
        """Active permission of the account, or None if it has none.

        An account may carry several active permissions; the first one with a
        threshold of at least 2 that lists ``address`` as a key is preferred,
        otherwise the first one is returned.
        """
        account = await self.get_account(address)
        permissions = [
            AccountPermission(
                permission_id=int(active.get("id", 2)),
                threshold=int(active.get("threshold", 1)),
                keys=[
                    PermissionKey(address=key["address"], weight=int(key.get("weight", 1)))
                    for key in active.get("keys", [])
                ],
            )
            for active in account.get("active_permission") or []
        ]
        if not permissions:
            return None

        return next(
            (p for p in permissions if p.threshold >= 2 and p.has_key(address)),
            permissions[0],
        )

    async def build_transfer(
        self,
        to: str,
        amount: int,
        from_address: str,
        permission_id: int | None = None,
    ) -> Transaction:
        """Build an unsigned TRX transfer.

        Args:
            to: Destination address
            amount: Amount in sun
            from_address: Owner (sending) address
            permission_id: Permission the transaction is signed under
                (the multisig active permission)
        """
        payload: dict[str, Any] = {
            "owner_address": from_address,
            "to_address": to,
            "amount": amount,
            "visible": True,
        }
        if permission_id is not None:
            payload["Permission_id"] = permission_id

        data = await self._post("/wallet/createtransaction", payload)
        if "txID" not in data:
            raise LedgerError(f"createtransaction returned no txID: {data!r}")
        return Transaction(
            tx_id=data["txID"],
            raw_data=data.get("raw_data", {}),
            raw_data_hex=data.get("raw_data_hex", ""),
            signature=list(data.get("signature", [])),
        )

    async def apply_local_signature(
        self, tx: Transaction, private_key: str, key_index: int
    ) -> Transaction:
        """Sign the transaction id with ``private_key``.

        Signatures are kept ordered by the signer's index in the permission key
        list; signing twice with the same key is a no-op.
        """
        try:
            key = PrivateKey(bytes.fromhex(private_key))
        except (ValueError, TypeError, BadKey) as e:
            raise LedgerError(f"Cannot sign with local key: {e}") from e

        try:
            signature = key.sign_msg_hash(bytes.fromhex(tx.tx_id)).hex()
        except (ValueError, TypeError, BadKey) as e:
            raise LedgerError(f"Cannot sign transaction {tx.tx_id!r}: {e}") from e
        signatures = list(tx.signature)
        if signature not in signatures:
            signatures.insert(min(key_index, len(signatures)), signature)
        return tx.model_copy(update={"signature": signatures})

    async def broadcast(self, tx: Transaction) -> BroadcastResult:
        """Submit a signed transaction; node rejections are returned, not raised."""
        payload = {
            "txID": tx.tx_id,
            "raw_data": tx.raw_data,
            "raw_data_hex": tx.raw_data_hex,
            "signature": tx.signature,
            "visible": True,
        }
        data = await self._post("/wallet/broadcasttransaction", payload)
        accepted = data.get("result") is True
        if not accepted:
            logger.warning("Broadcast rejected: %s", data)
        return BroadcastResult(
            accepted=accepted,
            tx_id=data.get("txid", tx.tx_id),
            message=_decode_message(data.get("message")),
            code=data.get("code"),
        )

    async def get_transaction(self, tx_id: str) -> dict[str, Any] | None:
        """Transaction by id, or None if the node has not seen it.

        The node answers an unknown id with an empty object.
        """
        data = await self._post(
            "/wallet/gettransactionbyid", {"value": tx_id, "visible": True}
        )
        return data or None
