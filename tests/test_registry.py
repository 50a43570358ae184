import tempfile
import unittest
from pathlib import Path

import registry
from store import DocumentStore


class RegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.store = DocumentStore(Path(self._tmpdir.name))
        self.user = self.store.insert("users", {"name": "Jane", "email": "jane@example.com"})

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def add(self, name, price, cycle="Monthly"):
        return self.store.insert("subscriptions", {
            "userId": self.user["_id"], "name": name, "price": price,
            "billingCycle": cycle, "startDate": "2024-01-01",
        })

    def test_rebuild_summarizes_subscriptions(self) -> None:
        self.add("Netflix", "15.99")
        self.add("GitHub", "48.00", cycle="Yearly")
        self.add("Broken", "abc")
        doc = registry.rebuild_registry(self.store, self.user["_id"])
        self.assertEqual(doc["currentEmail"], "jane@example.com")
        self.assertEqual(len(doc["subscriptions"]), 3)
        self.assertEqual(doc["totalMonthlySpend"], 19.99)
        self.assertEqual(doc["emailHistory"][0]["source"], "signup")
        self.assertTrue(doc["emailHistory"][0]["isPrimary"])

    def test_rebuild_replaces_previous_document(self) -> None:
        registry.rebuild_registry(self.store, self.user["_id"])
        self.add("Netflix", "15.99")
        registry.rebuild_registry(self.store, self.user["_id"])
        docs = self.store.find("user_registry", userId=self.user["_id"])
        self.assertEqual(len(docs), 1)
        self.assertEqual(len(docs[0]["subscriptions"]), 1)

    def test_email_change_history(self) -> None:
        self.store.update("users", self.user["_id"], {"email": "jane@new.com"})
        registry.record_email_change(self.store, self.user["_id"], "jane@example.com", "jane@new.com")
        doc = registry.get_registry(self.store, self.user["_id"])
        emails = [(e["email"], e["isPrimary"], e["source"]) for e in doc["emailHistory"]]
        self.assertEqual(emails, [
            ("jane@example.com", False, "signup"),
            ("jane@new.com", True, "change"),
        ])
        self.assertEqual(doc["currentEmail"], "jane@new.com")

    def test_switching_back_marks_latest_entry_primary(self) -> None:
        self.store.update("users", self.user["_id"], {"email": "jane@new.com"})
        registry.record_email_change(self.store, self.user["_id"], "jane@example.com", "jane@new.com")
        self.store.update("users", self.user["_id"], {"email": "jane@example.com"})
        registry.record_email_change(self.store, self.user["_id"], "jane@new.com", "jane@example.com")
        doc = registry.get_registry(self.store, self.user["_id"])
        self.assertEqual([e["isPrimary"] for e in doc["emailHistory"]], [False, False, True])

    def test_get_registry_builds_when_missing(self) -> None:
        self.assertIsNone(self.store.find_one("user_registry", userId=self.user["_id"]))
        self.assertIsNotNone(registry.get_registry(self.store, self.user["_id"]))
        self.assertIsNone(registry.get_registry(self.store, "ghost"))

    def test_archive_subscription(self) -> None:
        sub = self.add("Netflix", "15.99")
        archived = registry.archive_subscription(self.store, sub, "individual")
        self.assertEqual(archived["originalId"], sub["_id"])
        self.assertEqual(archived["deletionMethod"], "individual")
        self.assertEqual(self.store.find("subscriptions"), [])


if __name__ == "__main__":
    unittest.main()
