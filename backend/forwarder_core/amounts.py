"""Amount helpers: sun/TRX conversion and forward amount calculation."""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal

SUN_PER_TRX = 1_000_000


def trx_to_sun(trx: Decimal | int | str) -> int:
    """Convert a TRX amount to integer sun (truncating sub-sun precision)."""
    value = Decimal(str(trx)) * SUN_PER_TRX
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def sun_to_trx(sun: int | None) -> Decimal:
    """Convert integer sun to a TRX Decimal."""
    return Decimal(sun or 0) / SUN_PER_TRX


def format_trx(sun: int | None) -> str:
    """Human readable TRX amount, e.g. ``'12.5 TRX'``."""
    return f"{sun_to_trx(sun).normalize():f} TRX"


def compute_forward_amount(detected: int, current_balance: int, fee_reserve: int) -> int:
    """Amount to forward for a detected deposit.

    forward = min(detected, max(0, current_balance - fee_reserve))

    Only the incoming amount is ever forwarded, never pre-existing funds, and
    ``fee_reserve`` always stays behind to pay network fees.
    """
    available = max(0, current_balance - fee_reserve)
    return min(detected, available)
