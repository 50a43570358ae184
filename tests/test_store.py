import json
import tempfile
import unittest
from pathlib import Path

from store import DocumentNotFound, DocumentStore


class DocumentStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.store = DocumentStore(Path(self._tmpdir.name))

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def test_insert_assigns_id_and_timestamps(self) -> None:
        doc = self.store.insert("users", {"name": "Jane", "email": "jane@example.com"})
        self.assertTrue(doc["_id"])
        self.assertEqual(doc["createdAt"], doc["updatedAt"])
        self.assertEqual(self.store.get("users", doc["_id"])["email"], "jane@example.com")

    def test_find_filters_by_field(self) -> None:
        self.store.insert("subscriptions", {"userId": "a", "name": "Netflix"})
        self.store.insert("subscriptions", {"userId": "b", "name": "Spotify"})
        self.store.insert("subscriptions", {"userId": "a", "name": "Hulu"})
        names = [d["name"] for d in self.store.find("subscriptions", userId="a")]
        self.assertEqual(names, ["Netflix", "Hulu"])
        self.assertIsNone(self.store.find_one("subscriptions", userId="c"))

    def test_update_and_missing_document(self) -> None:
        doc = self.store.insert("users", {"name": "Jane"})
        updated = self.store.update("users", doc["_id"], {"bio": "hi"})
        self.assertEqual(updated["bio"], "hi")
        self.assertEqual(updated["name"], "Jane")
        with self.assertRaises(DocumentNotFound):
            self.store.update("users", "missing", {"bio": "x"})
        with self.assertRaises(DocumentNotFound):
            self.store.get("users", "missing")

    def test_upsert_inserts_then_replaces(self) -> None:
        first = self.store.upsert("spend_history", {"userId": "a", "period": "2024-02"}, {"totalSpent": 10})
        second = self.store.upsert("spend_history", {"userId": "a", "period": "2024-02"}, {"totalSpent": 12})
        self.assertEqual(first["_id"], second["_id"])
        self.assertEqual(len(self.store.find("spend_history")), 1)
        self.assertEqual(self.store.find_one("spend_history", userId="a")["totalSpent"], 12)

    def test_delete(self) -> None:
        doc = self.store.insert("sessions", {"userId": "a"})
        self.store.insert("sessions", {"userId": "a"})
        self.assertTrue(self.store.delete("sessions", doc["_id"]))
        self.assertFalse(self.store.delete("sessions", doc["_id"]))
        self.assertEqual(self.store.delete_many("sessions", userId="a"), 1)
        self.assertEqual(self.store.find("sessions"), [])

    def test_unknown_collection_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.store.find("nope")

    def test_corrupt_file_reads_as_empty(self) -> None:
        (Path(self._tmpdir.name) / "users.json").write_text("{not json")
        with self.assertLogs("store", level="WARNING"):
            self.assertEqual(self.store.find("users"), [])

    def test_documents_persist_as_json(self) -> None:
        self.store.insert("users", {"name": "Jane"})
        data = json.loads((Path(self._tmpdir.name) / "users.json").read_text())
        self.assertEqual(data[0]["name"], "Jane")
        self.assertEqual(DocumentStore(Path(self._tmpdir.name)).find("users")[0]["name"], "Jane")


if __name__ == "__main__":
    unittest.main()
