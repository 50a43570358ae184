"""
recurrence.py — Next-payment date arithmetic

Rolls a last-known payment date forward by whole billing cycles until it is
strictly after `today`. Month-based cycles use calendar months; see
`add_months` for the two supported month-end behaviours.
"""

import calendar
from datetime import date, timedelta
from typing import Optional

import config
from billing import normalize_cycle, parse_date


# (days, months) added per cycle.
CYCLE_STEPS: dict[str, tuple[int, int]] = {
    "weekly":    (7, 0),
    "biweekly":  (14, 0),
    "monthly":   (0, 1),
    "quarterly": (0, 3),
    "yearly":    (0, 12),
}

MAX_ADVANCE_STEPS = 10_000
ROLLOVER_MODES = ("clamp", "overflow")


class RecurrenceError(ValueError):
    """The cycle step never moves the date forward."""


def add_months(source: date, months: int, rollover: str = "clamp") -> date:
    """
    Add calendar months to a date.

    clamp:    the day is capped at the target month's length
              (2024-01-31 + 1 → 2024-02-29).
    overflow: excess days spill into the next month, like JavaScript's
              Date.setMonth (2023-01-31 + 1 → 2023-03-03).
    """
    if rollover not in ROLLOVER_MODES:
        raise ValueError(f"Unknown month rollover mode: {rollover!r}")
    month_index = source.month - 1 + months
    year = source.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    if rollover == "clamp":
        return source.replace(year=year, month=month, day=min(source.day, last_day))
    return date(year, month, 1) + timedelta(days=source.day - 1)


def cycle_step(cycle: Optional[str], steps: Optional[dict] = None) -> tuple[int, int]:
    """The (days, months) increment for a cycle; unknown cycles use UNKNOWN_CYCLE_ADVANCE."""
    table = CYCLE_STEPS if steps is None else steps
    key = normalize_cycle(cycle)
    if key in table:
        return table[key]
    fallback = normalize_cycle(config.UNKNOWN_CYCLE_ADVANCE)
    return table.get(fallback, CYCLE_STEPS["monthly"])


def shift(source: date, cycle: Optional[str], count: int = 1,
          rollover: Optional[str] = None, steps: Optional[dict] = None) -> date:
    """Move `source` forward by `count` whole cycles."""
    days, months = cycle_step(cycle, steps)
    result = source
    if months:
        result = add_months(result, months * count, rollover or config.MONTH_ROLLOVER)
    if days:
        result = result + timedelta(days=days * count)
    return result


def next_occurrence(last_date: date, cycle: Optional[str], today: Optional[date] = None,
                    rollover: Optional[str] = None, steps: Optional[dict] = None) -> date:
    """
    First date in the series last_date, last_date + 1 cycle, ... that is
    strictly after `today`. A `last_date` already in the future is returned
    unchanged.

    In clamp mode the k-th occurrence is computed from `last_date` directly so
    month-end dates do not drift; in overflow mode each step is applied to the
    previous result.
    """
    today = today or date.today()
    if last_date > today:
        return last_date

    mode = rollover or config.MONTH_ROLLOVER
    days, months = cycle_step(cycle, steps)

    # Day-only cycles can jump straight to the answer.
    if days > 0 and months == 0:
        count = (today - last_date).days // days + 1
        return last_date + timedelta(days=days * count)

    current = last_date
    for count in range(1, MAX_ADVANCE_STEPS + 1):
        if mode == "overflow":
            current = shift(current, cycle, 1, mode, steps)
        else:
            current = shift(last_date, cycle, count, mode, steps)
        if current > today:
            return current

    raise RecurrenceError(
        f"Could not advance {last_date.isoformat()} past {today.isoformat()} "
        f"for cycle {cycle!r} within {MAX_ADVANCE_STEPS} steps"
    )


def next_payment_for(sub: dict, today: Optional[date] = None) -> date:
    """
    The next payment of a subscription record as of `today`.

    A start date in the future is the first payment. A stored nextPayment
    still in the future is kept. Otherwise, in clamp mode the series is
    recomputed from the start date, so a clamped Feb 29 written back earlier
    does not pull later months off the 31st. In overflow mode the stored
    nextPayment (or the start date when none is stored) is rolled forward.
    """
    today = today or date.today()
    start = parse_date(sub.get("startDate"))
    if start > today:
        return start
    stored = sub.get("nextPayment")
    if config.MONTH_ROLLOVER != "overflow":
        if stored and parse_date(stored) > today:
            return parse_date(stored)
        return next_occurrence(start, sub.get("billingCycle"), today)
    return next_occurrence(parse_date(stored or start), sub.get("billingCycle"), today)


def initial_next_payment(start_date, cycle: Optional[str], today: Optional[date] = None) -> date:
    """nextPayment to store for a newly created subscription."""
    return next_occurrence(parse_date(start_date), cycle, today)


def days_until(target: date, today: Optional[date] = None) -> int:
    """Whole days from today to target (negative when target is past)."""
    today = today or date.today()
    return (target - today).days
