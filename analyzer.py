"""
analyzer.py — Subscription spending analyzer

Groups a user's subscriptions by category, ranks the most expensive ones,
finds renewals due soon, and shapes the monthly-report and dashboard
payloads. A record with an unusable price or date is logged and left out;
it never aborts the rest of the analysis.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Optional

import config
from billing import (
    InvalidSubscription,
    annual_equivalent,
    category_of,
    money,
    normalize_cycle,
    parse_price,
    subscription_monthly_cost,
)
from recurrence import RecurrenceError, days_until, next_payment_for

log = logging.getLogger(__name__)

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]


# ── Record preparation ────────────────────────────────────────────────────────
def prepare(subscriptions: list[dict], today: date) -> list[dict]:
    """
    Compute the figures every output needs, once per record.

    Returns one dict per usable record:
        {"sub", "name", "category", "price", "monthly", "next_payment", "days_until"}
    """
    rows = []
    for sub in subscriptions:
        try:
            price = parse_price(sub.get("price"))
            monthly = subscription_monthly_cost(sub)
            next_payment = next_payment_for(sub, today)
        except (InvalidSubscription, RecurrenceError) as exc:
            log.warning(f"Skipping subscription {sub.get('_id', '?')} ({sub.get('name', '?')}): {exc}")
            continue
        rows.append({
            "sub": sub,
            "name": sub.get("name", ""),
            "category": category_of(sub),
            "price": price,
            "monthly": monthly,
            "next_payment": next_payment,
            "days_until": days_until(next_payment, today),
        })
    return rows


# ── Aggregations ──────────────────────────────────────────────────────────────
def category_breakdown(rows: list[dict], total_monthly: float) -> list[dict]:
    """Monthly spend per category, largest first."""
    by_category: dict[str, float] = defaultdict(float)
    for row in rows:
        by_category[row["category"]] += row["monthly"]
    categories = [
        {
            "name": name,
            "amount": amount,
            "percentage": (amount / total_monthly * 100) if total_monthly else 0.0,
        }
        for name, amount in by_category.items()
    ]
    categories.sort(key=lambda c: (-c["amount"], c["name"]))
    return categories


def top_subscriptions(rows: list[dict], limit: int) -> list[dict]:
    """The `limit` subscriptions with the highest monthly cost."""
    ranked = sorted(rows, key=lambda r: r["monthly"], reverse=True)
    return [
        {"name": r["name"], "amount": r["monthly"], "category": r["category"]}
        for r in ranked[:limit]
    ]


def upcoming_renewals(rows: list[dict], today: date, window_days: int, limit: int) -> list[dict]:
    """Payments falling within [today, today + window_days], soonest first."""
    horizon = today + timedelta(days=window_days)
    upcoming = [r for r in rows if today <= r["next_payment"] <= horizon]
    upcoming.sort(key=lambda r: (r["days_until"], r["name"]))
    return [
        {
            "name": r["name"],
            "date": r["next_payment"].isoformat(),
            "amount": r["price"],
            "daysUntil": r["days_until"],
        }
        for r in upcoming[:limit]
    ]


def aggregate(
    subscriptions: list[dict],
    today: Optional[date] = None,
    top_n: Optional[int] = None,
    window_days: Optional[int] = None,
    max_renewals: Optional[int] = None,
) -> dict:
    """
    Aggregate one user's subscriptions.

    Result structure (amounts unrounded):
    {
        "categories":        [{"name", "amount", "percentage"}],
        "topSubscriptions":  [{"name", "amount", "category"}],
        "upcomingRenewals":  [{"name", "date", "amount", "daysUntil"}],
        "totalMonthly":      X,
    }
    """
    today = today or date.today()
    return summarize(prepare(subscriptions, today), today, top_n, window_days, max_renewals)


def summarize(
    rows: list[dict],
    today: date,
    top_n: Optional[int] = None,
    window_days: Optional[int] = None,
    max_renewals: Optional[int] = None,
) -> dict:
    """`aggregate` over rows already produced by `prepare`."""
    top_n = config.REPORT_TOP_N if top_n is None else top_n
    window_days = config.RENEWAL_WINDOW_DAYS if window_days is None else window_days
    max_renewals = config.MAX_UPCOMING_RENEWALS if max_renewals is None else max_renewals

    total_monthly = sum(r["monthly"] for r in rows)
    return {
        "categories": category_breakdown(rows, total_monthly),
        "topSubscriptions": top_subscriptions(rows, top_n),
        "upcomingRenewals": upcoming_renewals(rows, today, window_days, max_renewals),
        "totalMonthly": total_monthly,
    }


# ── Monthly report ────────────────────────────────────────────────────────────
def report_period(today: date) -> tuple[int, int]:
    """(year, month) being reported on: the month before `today`."""
    if today.month == 1:
        return today.year - 1, 12
    return today.year, today.month - 1


def previous_period(year: int, month: int) -> tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def period_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def build_monthly_report(
    subscriptions: list[dict],
    today: Optional[date] = None,
    previous_month_spent: Optional[float] = None,
    top_n: Optional[int] = None,
) -> dict:
    """
    Monthly spending report payload for the email sender.

    `previous_month_spent` is the recorded total of the month before the
    reported one; without a record the total is reported as unchanged.
    """
    today = today or date.today()
    year, month = report_period(today)
    summary = aggregate(subscriptions, today=today, top_n=top_n)
    total = summary["totalMonthly"]
    return {
        "monthName": MONTH_NAMES[month - 1],
        "year": year,
        "totalSpent": total,
        "previousMonthSpent": total if previous_month_spent is None else previous_month_spent,
        "categories": summary["categories"],
        "topSubscriptions": summary["topSubscriptions"],
        "upcomingRenewals": summary["upcomingRenewals"],
    }


# ── Dashboard ─────────────────────────────────────────────────────────────────
def present(summary: dict) -> dict:
    """Copy of an aggregate with every amount rounded to cents."""
    return {
        "categories": [
            {**c, "amount": money(c["amount"]), "percentage": round(c["percentage"], 1)}
            for c in summary["categories"]
        ],
        "topSubscriptions": [{**t, "amount": money(t["amount"])} for t in summary["topSubscriptions"]],
        "upcomingRenewals": [{**u, "amount": money(u["amount"])} for u in summary["upcomingRenewals"]],
        "totalMonthly": money(summary["totalMonthly"]),
    }


def dashboard_summary(subscriptions: list[dict], today: Optional[date] = None) -> dict:
    """Figures for the analytics dashboard, rounded for display."""
    today = today or date.today()
    rows = prepare(subscriptions, today)
    summary = summarize(rows, today, top_n=config.DASHBOARD_TOP_N)

    total_yearly = sum(annual_equivalent(r["price"], r["sub"].get("billingCycle")) for r in rows)
    cycle_counts: dict[str, int] = defaultdict(int)
    for r in rows:
        cycle = normalize_cycle(r["sub"].get("billingCycle")) or "unknown"
        cycle_counts[cycle.capitalize()] += 1

    most_expensive = max(rows, key=lambda r: r["monthly"], default=None)
    soonest = min(rows, key=lambda r: (r["next_payment"], r["name"]), default=None)
    due_this_week = [r for r in rows if 0 <= r["days_until"] <= 7]

    result = present(summary)
    result.update({
        "activeCount": len(rows),
        "skippedCount": len(subscriptions) - len(rows),
        "totalYearly": money(total_yearly),
        "averageMonthly": money(summary["totalMonthly"] / len(rows)) if rows else 0.0,
        "billingCycles": dict(cycle_counts),
        "mostExpensive": (
            {"name": most_expensive["name"], "monthlyCost": money(most_expensive["monthly"])}
            if most_expensive else None
        ),
        "nextPayment": (
            {"name": soonest["name"], "date": soonest["next_payment"].isoformat(),
             "daysUntil": soonest["days_until"]}
            if soonest else None
        ),
        "dueThisWeek": len(due_this_week),
        "dueThisWeekAmount": money(sum(r["price"] for r in due_this_week)),
    })

    log.info(
        f"Dashboard: {len(rows)} subscriptions | ${result['totalMonthly']}/mo | "
        f"{len(result['upcomingRenewals'])} renewals in {config.RENEWAL_WINDOW_DAYS}d"
    )
    return result
