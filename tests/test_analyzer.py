import unittest
from datetime import date

import analyzer

TODAY = date(2024, 3, 1)


def sub(name, price, cycle="Monthly", category="Entertainment", start="2024-01-15", **extra):
    return {"_id": name.lower(), "name": name, "price": price, "billingCycle": cycle,
            "category": category, "startDate": start, **extra}


class AggregateTests(unittest.TestCase):
    def test_empty_input(self) -> None:
        result = analyzer.aggregate([], today=TODAY)
        self.assertEqual(result, {
            "categories": [],
            "topSubscriptions": [],
            "upcomingRenewals": [],
            "totalMonthly": 0,
        })

    def test_single_category(self) -> None:
        result = analyzer.aggregate(
            [sub("Netflix", "15.99"), sub("Spotify", "13.99")], today=TODAY,
        )
        self.assertAlmostEqual(result["totalMonthly"], 29.98)
        self.assertEqual(len(result["categories"]), 1)
        category = result["categories"][0]
        self.assertEqual(category["name"], "Entertainment")
        self.assertAlmostEqual(category["amount"], 29.98)
        self.assertAlmostEqual(category["percentage"], 100.0)
        self.assertEqual([t["name"] for t in result["topSubscriptions"]], ["Netflix", "Spotify"])

    def test_percentages_sum_to_one_hundred(self) -> None:
        result = analyzer.aggregate([
            sub("Netflix", "15.99"),
            sub("GitHub", "48", cycle="Yearly", category="Development"),
            sub("Gym", "10", cycle="Weekly", category="Health"),
        ], today=TODAY)
        self.assertAlmostEqual(sum(c["percentage"] for c in result["categories"]), 100.0)
        amounts = [c["amount"] for c in result["categories"]]
        self.assertEqual(amounts, sorted(amounts, reverse=True))

    def test_top_subscriptions_are_limited(self) -> None:
        subs = [sub(f"S{i}", str(i + 1)) for i in range(6)]
        result = analyzer.aggregate(subs, today=TODAY, top_n=3)
        self.assertEqual([t["name"] for t in result["topSubscriptions"]], ["S5", "S4", "S3"])

    def test_upcoming_renewals_window(self) -> None:
        result = analyzer.aggregate([
            sub("Soon", "5", start="2024-02-04"),
            sub("Later", "5", cycle="Yearly", start="2023-06-01"),
            sub("Sooner", "7", start="2024-02-02"),
        ], today=TODAY)
        renewals = result["upcomingRenewals"]
        self.assertEqual([r["name"] for r in renewals], ["Sooner", "Soon"])
        self.assertEqual(renewals[0], {"name": "Sooner", "date": "2024-03-02", "amount": 7.0, "daysUntil": 1})

    def test_renewals_are_capped(self) -> None:
        subs = [sub(f"S{i}", "1", start=f"2024-02-{i + 2:02d}") for i in range(8)]
        result = analyzer.aggregate(subs, today=TODAY)
        self.assertEqual(len(result["upcomingRenewals"]), 5)

    def test_malformed_record_is_skipped_everywhere(self) -> None:
        result = analyzer.aggregate([
            sub("Netflix", "15.99"),
            sub("Broken", "abc"),
            sub("NoDate", "3", start="someday"),
        ], today=TODAY)
        self.assertAlmostEqual(result["totalMonthly"], 15.99)
        names = [t["name"] for t in result["topSubscriptions"]] + [r["name"] for r in result["upcomingRenewals"]]
        self.assertNotIn("Broken", names)
        self.assertNotIn("NoDate", names)

    def test_blank_category_groups_as_uncategorized(self) -> None:
        result = analyzer.aggregate([sub("Thing", "4", category="")], today=TODAY)
        self.assertEqual(result["categories"][0]["name"], "Uncategorized")


class MonthlyReportTests(unittest.TestCase):
    def test_report_covers_previous_month(self) -> None:
        report = analyzer.build_monthly_report([sub("Netflix", "15.99")], today=date(2024, 1, 1))
        self.assertEqual(report["monthName"], "December")
        self.assertEqual(report["year"], 2023)
        self.assertAlmostEqual(report["previousMonthSpent"], report["totalSpent"])

    def test_previous_month_spent_is_used_when_known(self) -> None:
        report = analyzer.build_monthly_report(
            [sub("Netflix", "15.99")], today=TODAY, previous_month_spent=12.5,
        )
        self.assertEqual(report["monthName"], "February")
        self.assertEqual(report["previousMonthSpent"], 12.5)
        self.assertEqual(len(report["topSubscriptions"]), 1)

    def test_period_helpers(self) -> None:
        self.assertEqual(analyzer.report_period(date(2024, 3, 1)), (2024, 2))
        self.assertEqual(analyzer.previous_period(2024, 1), (2023, 12))
        self.assertEqual(analyzer.period_key(2024, 2), "2024-02")


class DashboardTests(unittest.TestCase):
    def test_dashboard_summary(self) -> None:
        result = analyzer.dashboard_summary([
            sub("Netflix", "15.99", start="2024-02-03"),
            sub("GitHub", "48", cycle="Yearly", category="Development", start="2023-05-01"),
            sub("Broken", "-1"),
        ], today=TODAY)
        self.assertEqual(result["activeCount"], 2)
        self.assertEqual(result["skippedCount"], 1)
        self.assertEqual(result["totalMonthly"], 19.99)
        self.assertEqual(result["totalYearly"], 239.88)
        self.assertEqual(result["billingCycles"], {"Monthly": 1, "Yearly": 1})
        self.assertEqual(result["mostExpensive"], {"name": "Netflix", "monthlyCost": 15.99})
        self.assertEqual(result["nextPayment"], {"name": "Netflix", "date": "2024-03-03", "daysUntil": 2})
        self.assertEqual(result["dueThisWeek"], 1)
        self.assertEqual(result["dueThisWeekAmount"], 15.99)

    def test_dashboard_of_nothing(self) -> None:
        result = analyzer.dashboard_summary([], today=TODAY)
        self.assertEqual(result["activeCount"], 0)
        self.assertEqual(result["averageMonthly"], 0.0)
        self.assertIsNone(result["mostExpensive"])
        self.assertIsNone(result["nextPayment"])


if __name__ == "__main__":
    unittest.main()
