"""
scheduler.py — SubTrack notification dispatcher

Two jobs, each a sequential pass over all users:
  payment reminders   Email users whose subscriptions renew soon, according
                      to their reminder frequency. Run DAILY.
  monthly reports     Email last month's spending report. Runs on the 1st.

One user's failure is logged and counted; the batch carries on. Both jobs
return a summary {"total", "emailsSent", "errors", "skipped"}.

The same jobs are exposed over HTTP in api.py for an external cron. This
module can also drive them locally:

Usage:
    python scheduler.py           # daily reminders + monthly report loop
    python scheduler.py --remind  # send due reminders once, then exit
    python scheduler.py --report  # send monthly reports once, then exit
"""

import logging
import sys
import time
from datetime import date
from typing import Callable, Optional

import schedule

import config
import mailer
from analyzer import build_monthly_report, period_key, previous_period, report_period
from billing import InvalidSubscription
from models import ReminderFrequency, default_notification_preferences
from recurrence import RecurrenceError, days_until, next_payment_for
from store import DocumentStore

log = logging.getLogger(__name__)


def new_summary() -> dict:
    return {"total": 0, "emailsSent": 0, "errors": 0, "skipped": 0}


def preferences_of(user: dict) -> dict:
    return {**default_notification_preferences(), **(user.get("notificationPreferences") or {})}


# ── Reminder eligibility ──────────────────────────────────────────────────────
def reminder_due(frequency: Optional[str], days: int) -> bool:
    """
    daily  → every day from 7 days out to 1 day out
    weekly → exactly 7 days out
    3days  → exactly 3 days out (also the default for unknown values)
    """
    if frequency == ReminderFrequency.DAILY.value:
        return 1 <= days <= 7
    if frequency == ReminderFrequency.WEEKLY.value:
        return days == 7
    return days == 3


def advance_stored_payment(store: DocumentStore, sub: dict, today: date) -> date:
    """Next payment as of today, written back when the stored value lags."""
    next_payment = next_payment_for(sub, today)
    if sub.get("nextPayment") != next_payment.isoformat():
        store.update("subscriptions", sub["_id"], {"nextPayment": next_payment.isoformat()})
        sub["nextPayment"] = next_payment.isoformat()
    return next_payment


def reminder_payload(sub: dict, next_payment: date, days: int) -> dict:
    return {
        "name": sub["name"],
        "price": sub["price"],
        "billingCycle": sub["billingCycle"],
        "nextPayment": next_payment.isoformat(),
        "daysUntilPayment": days,
    }


def remind_user(store: DocumentStore, user: dict, today: date, send: Callable) -> tuple[int, int]:
    """
    Send every reminder due today for one user; returns (sent, failed).

    A failed send is logged and counted, and the remaining subscriptions are
    still processed. A failed subscription's lastReminderSent is left
    unchanged so a later run retries it.
    """
    frequency = preferences_of(user)["reminderFrequency"]
    sent = failed = 0
    for sub in store.find("subscriptions", userId=user["_id"]):
        try:
            next_payment = advance_stored_payment(store, sub, today)
        except (InvalidSubscription, RecurrenceError) as exc:
            log.warning(f"Skipping subscription {sub['_id']} for reminders: {exc}")
            continue

        days = days_until(next_payment, today)
        if not reminder_due(frequency, days):
            continue
        # One reminder per subscription per day, however often the job fires.
        if sub.get("lastReminderSent") == today.isoformat():
            continue

        try:
            send(user, reminder_payload(sub, next_payment, days))
        except Exception as exc:
            failed += 1
            log.error(f"Error sending reminder to {user['email']} for {sub['name']}: {exc}")
            continue
        store.update("subscriptions", sub["_id"], {"lastReminderSent": today.isoformat()})
        sent += 1
        log.info(f"Reminder sent to {user['email']} for {sub['name']} ({days}d)")
    return sent, failed


def run_payment_reminders(store: DocumentStore, today: Optional[date] = None,
                          send: Optional[Callable] = None) -> dict:
    today = today or date.today()
    send = send or mailer.send_payment_reminder
    summary = new_summary()
    log.info(f"Payment reminder job started for {today.isoformat()}")

    for user in store.find("users"):
        summary["total"] += 1
        try:
            if not preferences_of(user)["paymentReminders"]:
                summary["skipped"] += 1
                continue
            sent, failed = remind_user(store, user, today, send)
        except Exception as exc:
            summary["errors"] += 1
            log.error(f"Error sending reminders for user {user.get('_id')}: {exc}")
            continue
        summary["emailsSent"] += sent
        summary["errors"] += failed
        if not sent and not failed:
            summary["skipped"] += 1

    log.info(
        f"Payment reminders done — {summary['total']} users, {summary['emailsSent']} emails, "
        f"{summary['errors']} errors, {summary['skipped']} skipped"
    )
    return summary


# ── Monthly reports ───────────────────────────────────────────────────────────
def spend_snapshot(store: DocumentStore, user_id: str, period: str) -> Optional[dict]:
    return store.find_one("spend_history", userId=user_id, period=period)


def record_spend(store: DocumentStore, user_id: str, period: str, total: float, today: date) -> dict:
    return store.upsert("spend_history", {"userId": user_id, "period": period}, {
        "totalSpent": total,
        "reportSentOn": today.isoformat(),
    })


def report_user(store: DocumentStore, user: dict, today: date, send: Callable) -> bool:
    """Send one user's monthly report; False when there is nothing to send."""
    subscriptions = store.find("subscriptions", userId=user["_id"])
    if not subscriptions:
        log.info(f"Skipping monthly report for {user['email']} — no subscriptions found")
        return False

    year, month = report_period(today)
    period = period_key(year, month)
    if spend_snapshot(store, user["_id"], period) is not None:
        log.info(f"Monthly report for {period} already sent to {user['email']}")
        return False

    for sub in subscriptions:
        try:
            advance_stored_payment(store, sub, today)
        except (InvalidSubscription, RecurrenceError):
            pass  # reported and skipped by the analyzer

    previous = spend_snapshot(store, user["_id"], period_key(*previous_period(year, month)))
    report = build_monthly_report(
        subscriptions,
        today=today,
        previous_month_spent=previous["totalSpent"] if previous else None,
    )
    send(user, report)
    record_spend(store, user["_id"], period, report["totalSpent"], today)
    log.info(f"Monthly report sent to {user['email']} for {report['monthName']} {report['year']}")
    return True


def run_monthly_reports(store: DocumentStore, today: Optional[date] = None,
                        send: Optional[Callable] = None) -> dict:
    today = today or date.today()
    send = send or mailer.send_monthly_report
    summary = new_summary()
    log.info(f"Monthly report job started for {today.isoformat()}")

    for user in store.find("users"):
        summary["total"] += 1
        try:
            if not preferences_of(user)["monthlyReports"]:
                summary["skipped"] += 1
                continue
            if report_user(store, user, today, send):
                summary["emailsSent"] += 1
            else:
                summary["skipped"] += 1
        except Exception as exc:
            summary["errors"] += 1
            log.error(f"Error processing monthly report for user {user.get('_id')}: {exc}")

    log.info(
        f"Monthly reports done — {summary['total']} users, {summary['emailsSent']} sent, "
        f"{summary['errors']} errors, {summary['skipped']} skipped"
    )
    return summary


# ── Local schedule ────────────────────────────────────────────────────────────
def scheduled_reminders():
    run_payment_reminders(DocumentStore())


def scheduled_monthly_reports():
    """Runs daily; only does work on the 1st of the month."""
    if date.today().day != 1:
        return
    run_monthly_reports(DocumentStore())


def run_scheduler():
    schedule.every().day.at(config.REMINDER_TIME).do(scheduled_reminders)
    schedule.every().day.at(config.REPORT_TIME).do(scheduled_monthly_reports)
    log.info(
        f"Scheduler started — reminders daily {config.REMINDER_TIME}, "
        f"monthly reports on the 1st at {config.REPORT_TIME}"
    )
    while True:
        schedule.run_pending()
        time.sleep(30)


# ── Entry point ────────────────────────────────────────────────────────────────
if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    args = sys.argv[1:]

    if "--remind" in args:
        print(run_payment_reminders(DocumentStore()))
    elif "--report" in args:
        print(run_monthly_reports(DocumentStore()))
    else:
        run_scheduler()
