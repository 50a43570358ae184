import tempfile
import unittest
from datetime import date
from pathlib import Path
from unittest.mock import MagicMock

import scheduler
from store import DocumentStore

TODAY = date(2024, 3, 1)


class ReminderDueTests(unittest.TestCase):
    def test_three_day_frequency(self) -> None:
        self.assertTrue(scheduler.reminder_due("3days", 3))
        self.assertFalse(scheduler.reminder_due("3days", 2))
        self.assertFalse(scheduler.reminder_due("3days", 4))

    def test_weekly_frequency(self) -> None:
        self.assertTrue(scheduler.reminder_due("weekly", 7))
        self.assertFalse(scheduler.reminder_due("weekly", 6))

    def test_daily_frequency(self) -> None:
        for days in range(1, 8):
            self.assertTrue(scheduler.reminder_due("daily", days))
        self.assertFalse(scheduler.reminder_due("daily", 0))
        self.assertFalse(scheduler.reminder_due("daily", 8))

    def test_unknown_frequency_behaves_like_three_days(self) -> None:
        self.assertTrue(scheduler.reminder_due("fortnightly", 3))
        self.assertFalse(scheduler.reminder_due(None, 7))


class JobTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.store = DocumentStore(Path(self._tmpdir.name))

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def add_user(self, email, **prefs):
        notification = {"paymentReminders": True, "reminderFrequency": "3days", "monthlyReports": True, **prefs}
        return self.store.insert("users", {
            "name": email.split("@")[0], "email": email, "notificationPreferences": notification,
        })

    def add_sub(self, user, name, next_payment, price="10.00", cycle="Monthly", start="2023-01-01"):
        return self.store.insert("subscriptions", {
            "userId": user["_id"], "name": name, "price": price, "billingCycle": cycle,
            "startDate": start, "category": "Entertainment", "nextPayment": next_payment,
        })


class PaymentReminderJobTests(JobTests):
    def test_sends_due_reminder_once_per_day(self) -> None:
        user = self.add_user("jane@example.com")
        sub = self.add_sub(user, "Netflix", "2024-03-04")
        self.add_sub(user, "Spotify", "2024-03-10")
        send = MagicMock()

        summary = scheduler.run_payment_reminders(self.store, today=TODAY, send=send)
        self.assertEqual(summary, {"total": 1, "emailsSent": 1, "errors": 0, "skipped": 0})
        sent_user, reminder = send.call_args[0]
        self.assertEqual(sent_user["email"], "jane@example.com")
        self.assertEqual(reminder["name"], "Netflix")
        self.assertEqual(reminder["daysUntilPayment"], 3)
        self.assertEqual(self.store.get("subscriptions", sub["_id"])["lastReminderSent"], "2024-03-01")

        summary = scheduler.run_payment_reminders(self.store, today=TODAY, send=send)
        self.assertEqual(summary["emailsSent"], 0)
        self.assertEqual(send.call_count, 1)

    def test_disabled_reminders_are_skipped(self) -> None:
        user = self.add_user("jane@example.com", paymentReminders=False)
        self.add_sub(user, "Netflix", "2024-03-04")
        send = MagicMock()
        summary = scheduler.run_payment_reminders(self.store, today=TODAY, send=send)
        self.assertEqual(summary, {"total": 1, "emailsSent": 0, "errors": 0, "skipped": 1})
        send.assert_not_called()

    def test_one_failure_does_not_stop_the_batch(self) -> None:
        failing = self.add_user("fail@example.com")
        working = self.add_user("ok@example.com")
        self.add_sub(failing, "Netflix", "2024-03-04")
        self.add_sub(working, "Spotify", "2024-03-04")

        def send(user, reminder):
            if user["email"] == "fail@example.com":
                raise RuntimeError("provider down")

        with self.assertLogs("scheduler", level="ERROR"):
            summary = scheduler.run_payment_reminders(self.store, today=TODAY, send=send)
        self.assertEqual(summary, {"total": 2, "emailsSent": 1, "errors": 1, "skipped": 0})

    def test_failed_send_does_not_stop_other_subscriptions(self) -> None:
        user = self.add_user("jane@example.com")
        subs = {name: self.add_sub(user, name, "2024-03-04") for name in ("A", "B", "C")}
        calls = []

        def send(user, reminder):
            calls.append(reminder["name"])
            if reminder["name"] == "B":
                raise RuntimeError("provider down")

        with self.assertLogs("scheduler", level="ERROR"):
            summary = scheduler.run_payment_reminders(self.store, today=TODAY, send=send)
        self.assertEqual(calls, ["A", "B", "C"])
        self.assertEqual(summary, {"total": 1, "emailsSent": 2, "errors": 1, "skipped": 0})
        sent_on = {name: self.store.get("subscriptions", s["_id"]).get("lastReminderSent") for name, s in subs.items()}
        self.assertEqual(sent_on, {"A": "2024-03-01", "B": None, "C": "2024-03-01"})

    def test_stale_next_payment_is_advanced_and_stored(self) -> None:
        user = self.add_user("jane@example.com", reminderFrequency="weekly")
        sub = self.add_sub(user, "Netflix", "2024-01-08", start="2023-01-08")
        send = MagicMock()
        scheduler.run_payment_reminders(self.store, today=TODAY, send=send)
        self.assertEqual(self.store.get("subscriptions", sub["_id"])["nextPayment"], "2024-03-08")
        self.assertEqual(send.call_args[0][1]["daysUntilPayment"], 7)

    def test_month_end_dates_survive_write_back(self) -> None:
        user = self.add_user("jane@example.com")
        sub = self.add_sub(user, "Gym", "2024-01-31", start="2024-01-31")

        stored = self.store.get("subscriptions", sub["_id"])
        self.assertEqual(scheduler.advance_stored_payment(self.store, stored, date(2024, 2, 10)), date(2024, 2, 29))
        self.assertEqual(self.store.get("subscriptions", sub["_id"])["nextPayment"], "2024-02-29")

        stored = self.store.get("subscriptions", sub["_id"])
        self.assertEqual(scheduler.advance_stored_payment(self.store, stored, date(2024, 3, 1)), date(2024, 3, 31))
        self.assertEqual(self.store.get("subscriptions", sub["_id"])["nextPayment"], "2024-03-31")

        stored = self.store.get("subscriptions", sub["_id"])
        self.assertEqual(scheduler.advance_stored_payment(self.store, stored, date(2024, 3, 5)), date(2024, 3, 31))

    def test_malformed_subscription_is_ignored(self) -> None:
        user = self.add_user("jane@example.com")
        self.add_sub(user, "Broken", "never", start="never")
        self.add_sub(user, "Netflix", "2024-03-04")
        send = MagicMock()
        summary = scheduler.run_payment_reminders(self.store, today=TODAY, send=send)
        self.assertEqual(summary["emailsSent"], 1)
        self.assertEqual(summary["errors"], 0)


class MonthlyReportJobTests(JobTests):
    def test_report_sent_once_per_period(self) -> None:
        user = self.add_user("jane@example.com")
        self.add_sub(user, "Netflix", "2024-03-15", price="15.99")
        send = MagicMock()

        summary = scheduler.run_monthly_reports(self.store, today=TODAY, send=send)
        self.assertEqual(summary, {"total": 1, "emailsSent": 1, "errors": 0, "skipped": 0})
        report = send.call_args[0][1]
        self.assertEqual((report["monthName"], report["year"]), ("February", 2024))
        self.assertAlmostEqual(report["previousMonthSpent"], 15.99)
        snapshot = self.store.find_one("spend_history", userId=user["_id"], period="2024-02")
        self.assertAlmostEqual(snapshot["totalSpent"], 15.99)

        summary = scheduler.run_monthly_reports(self.store, today=TODAY, send=send)
        self.assertEqual(summary["skipped"], 1)
        self.assertEqual(send.call_count, 1)

    def test_previous_snapshot_feeds_month_over_month(self) -> None:
        user = self.add_user("jane@example.com")
        self.add_sub(user, "Netflix", "2024-03-15", price="15.99")
        scheduler.record_spend(self.store, user["_id"], "2024-01", 10.0, date(2024, 2, 1))
        send = MagicMock()
        scheduler.run_monthly_reports(self.store, today=TODAY, send=send)
        self.assertEqual(send.call_args[0][1]["previousMonthSpent"], 10.0)

    def test_users_without_subscriptions_or_opted_out_are_skipped(self) -> None:
        self.add_user("empty@example.com")
        opted_out = self.add_user("quiet@example.com", monthlyReports=False)
        self.add_sub(opted_out, "Netflix", "2024-03-15")
        send = MagicMock()
        summary = scheduler.run_monthly_reports(self.store, today=TODAY, send=send)
        self.assertEqual(summary, {"total": 2, "emailsSent": 0, "errors": 0, "skipped": 2})
        send.assert_not_called()

    def test_send_failure_is_counted_and_not_recorded(self) -> None:
        user = self.add_user("jane@example.com")
        self.add_sub(user, "Netflix", "2024-03-15")
        send = MagicMock(side_effect=RuntimeError("provider down"))
        with self.assertLogs("scheduler", level="ERROR"):
            summary = scheduler.run_monthly_reports(self.store, today=TODAY, send=send)
        self.assertEqual(summary["errors"], 1)
        self.assertIsNone(self.store.find_one("spend_history", userId=user["_id"]))


if __name__ == "__main__":
    unittest.main()
