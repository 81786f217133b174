"""
Payment amount validation and currency unit conversion.

Amounts are expressed in the currency's standard unit (yen for JPY). Stripe
expects the smallest unit, which for zero-decimal currencies is the same
number.
"""

import math
from dataclasses import dataclass, field
from numbers import Integral, Real
from typing import List

from alumni_payments.errors import AmountError

# Stripe minimum charge for JPY
STRIPE_MIN_AMOUNT_JPY = 50
# Platform ceiling (10 million yen)
MAX_PAYMENT_AMOUNT = 10_000_000

ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "jpy",
        "krw",
        "vnd",
        "bif",
        "clp",
        "djf",
        "gnf",
        "kmf",
        "mga",
        "pyg",
        "rwf",
        "ugx",
        "vuv",
        "xaf",
        "xof",
        "xpf",
    }
)


@dataclass(frozen=True)
class DonationSettings:
    min_amount: int
    max_amount: int
    presets: List[int] = field(default_factory=list)


def is_whole_number(value) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, Integral):
        return True
    if isinstance(value, Real):
        return float(value).is_integer()
    return False


def validate_payment_amount(amount) -> bool:
    """
    Validate a payment amount.

    Rules are checked in order and the first one that fails determines the
    message: whole number, positive, at least the Stripe minimum, at most the
    platform maximum.

    :raises AmountError: if the amount is invalid
    """
    if not is_whole_number(amount):
        raise AmountError("Amount must be an integer")

    if amount <= 0:
        raise AmountError("Amount must be positive")

    if amount < STRIPE_MIN_AMOUNT_JPY:
        raise AmountError(f"Amount must be at least {STRIPE_MIN_AMOUNT_JPY} yen")

    if amount > MAX_PAYMENT_AMOUNT:
        raise AmountError(f"Amount cannot exceed {MAX_PAYMENT_AMOUNT:,} yen")

    return True


def validate_donation_amount(amount, settings: DonationSettings) -> bool:
    """
    Validate a donation against the tenant's donation range.

    Presets are not checked here; they are validated when settings are saved.
    """
    validate_payment_amount(amount)

    if amount < settings.min_amount:
        raise AmountError(f"Donation amount must be at least {settings.min_amount:,} yen")

    if amount > settings.max_amount:
        raise AmountError(f"Donation amount cannot exceed {settings.max_amount:,} yen")

    return True


def round_half_up(value) -> int:
    """Round to the nearest integer, halves towards +infinity."""
    return math.floor(value + 0.5)


def is_zero_decimal(currency: str) -> bool:
    return currency.lower() in ZERO_DECIMAL_CURRENCIES


def format_amount_for_stripe(amount, currency: str) -> int:
    """Standard units -> Stripe's smallest unit (cents for USD, yen for JPY)."""
    if is_zero_decimal(currency):
        return amount
    return round_half_up(amount * 100)


def format_amount_from_stripe(amount, currency: str):
    """Stripe's smallest unit -> standard units."""
    if is_zero_decimal(currency):
        return amount
    return amount / 100
