"""2-of-2 multisig rules."""

from __future__ import annotations

from forwarder_core.models import AccountPermission, MultisigStatus, Transaction

REQUIRED_THRESHOLD = 2
REQUIRED_KEYS = 2

# One secp256k1 signature is 65 bytes (r, s, v) = 130 hex characters
SIGNATURE_HEX_LENGTH = 130


def evaluate_multisig(
    permission: AccountPermission | None,
    local_address: str,
    external_address: str | None,
) -> MultisigStatus:
    """Compute the multisig status of an account permission.

    ``is_configured`` holds only when the threshold and key count are both at
    least 2 and both the local and the external signer keys are present.
    """
    if permission is None:
        return MultisigStatus()

    has_local = permission.has_key(local_address)
    has_external = permission.has_key(external_address)
    return MultisigStatus(
        is_configured=(
            permission.threshold >= REQUIRED_THRESHOLD
            and len(permission.keys) >= REQUIRED_KEYS
            and has_local
            and has_external
        ),
        threshold=permission.threshold,
        key_count=len(permission.keys),
        has_local_key=has_local,
        has_external_key=has_external,
    )


def signature_count(tx: Transaction) -> int:
    """Number of signatures carried by ``tx``.

    Derived from the total payload length so that a malformed (short)
    signature never counts as a whole one.
    """
    payload = sum(len(sig) for sig in tx.signature)
    return payload // SIGNATURE_HEX_LENGTH


def meets_threshold(tx: Transaction, threshold: int = REQUIRED_THRESHOLD) -> bool:
    return signature_count(tx) >= max(threshold, REQUIRED_THRESHOLD)
