"""
billing.py — Billing-cycle normalization

Turns a subscription's price and billing cycle into comparable monthly and
yearly figures. Nothing here rounds; callers round at presentation time.
"""

import math
from datetime import date
from typing import Optional

import config

BILLING_CYCLES = ["Weekly", "Biweekly", "Monthly", "Quarterly", "Yearly"]

# Average number of charges per month for each cycle.
MONTHLY_FACTORS: dict[str, float] = {
    "weekly":    4.33,
    "biweekly":  2.17,
    "monthly":   1.0,
    "quarterly": 1 / 3,
    "yearly":    1 / 12,
}

# Number of charges per year for each cycle.
ANNUAL_FACTORS: dict[str, float] = {
    "weekly":    52,
    "biweekly":  26,
    "monthly":   12,
    "quarterly": 4,
    "yearly":    1,
}

DEFAULT_CATEGORY = "Uncategorized"


class InvalidSubscription(ValueError):
    """A subscription record whose price or dates cannot be used."""


def normalize_cycle(cycle: Optional[str]) -> str:
    """Lower-case, stripped cycle name ("" when missing)."""
    return (cycle or "").strip().lower()


def is_known_cycle(cycle: Optional[str]) -> bool:
    return normalize_cycle(cycle) in MONTHLY_FACTORS


def parse_price(value) -> float:
    """Parse a stored price ("15.99", 15.99) into a positive float."""
    if isinstance(value, bool) or value is None:
        raise InvalidSubscription(f"Invalid price: {value!r}")
    try:
        price = float(str(value).strip())
    except ValueError:
        raise InvalidSubscription(f"Invalid price: {value!r}") from None
    if math.isnan(price) or math.isinf(price) or price <= 0:
        raise InvalidSubscription(f"Invalid price: {value!r}")
    return price


def parse_date(value) -> date:
    """Parse an ISO date ("2024-03-15" or a full ISO timestamp)."""
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        raise InvalidSubscription(f"Invalid date: {value!r}")
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        raise InvalidSubscription(f"Invalid date: {value!r}") from None


def monthly_equivalent(price, cycle: Optional[str]) -> float:
    """
    Price normalized to a monthly rate.

    Unknown cycles ("Custom", "Daily", typos) are not an error: the price is
    multiplied by CUSTOM_CYCLE_MONTHLY_FACTOR, which defaults to 1.0
    (the price is treated as already monthly).
    """
    amount = parse_price(price)
    factor = MONTHLY_FACTORS.get(normalize_cycle(cycle), config.CUSTOM_CYCLE_MONTHLY_FACTOR)
    return amount * factor


def annual_equivalent(price, cycle: Optional[str]) -> float:
    """Price normalized to a yearly total."""
    amount = parse_price(price)
    key = normalize_cycle(cycle)
    if key in ANNUAL_FACTORS:
        return amount * ANNUAL_FACTORS[key]
    return amount * config.CUSTOM_CYCLE_MONTHLY_FACTOR * 12


def subscription_monthly_cost(sub: dict) -> float:
    return monthly_equivalent(sub.get("price"), sub.get("billingCycle"))


def category_of(sub: dict) -> str:
    category = (sub.get("category") or "").strip()
    return category or DEFAULT_CATEGORY


def money(amount: float) -> float:
    """Round for display."""
    return round(amount, 2)
