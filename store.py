"""
store.py — JSON document store

One JSON file per collection under a data directory. Every document is a
dict with an `_id` plus `createdAt` / `updatedAt` timestamps. Writes replace
the whole file atomically; reads of a missing or corrupt file return an
empty collection.
"""

import json
import logging
import os
import secrets
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import config

log = logging.getLogger(__name__)

COLLECTIONS = [
    "users",
    "subscriptions",
    "email_history",
    "user_registry",
    "deleted_subscriptions",
    "deleted_users",
    "two_factor_codes",
    "sessions",
    "spend_history",
]


class DocumentNotFound(KeyError):
    """No document with the requested id."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return secrets.token_hex(12)


def _matches(doc: dict, filters: dict) -> bool:
    return all(doc.get(k) == v for k, v in filters.items())


class DocumentStore:
    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir or config.DATA_DIR)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    # ── File I/O ──────────────────────────────────────────────────────────────
    def _path(self, collection: str) -> Path:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        return self.data_dir / f"{collection}.json"

    def _load(self, collection: str) -> list[dict]:
        path = self._path(collection)
        if not path.exists():
            return []
        try:
            docs = json.loads(path.read_text())
        except json.JSONDecodeError as exc:
            log.warning(f"Unreadable collection file {path}: {exc}")
            return []
        return docs if isinstance(docs, list) else []

    def _save(self, collection: str, docs: list[dict]):
        path = self._path(collection)
        fd, tmp = tempfile.mkstemp(dir=str(self.data_dir), prefix=f".{collection}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(docs, f, indent=2)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    # ── Queries ───────────────────────────────────────────────────────────────
    def find(self, collection: str, **filters) -> list[dict]:
        with self._lock:
            return [d for d in self._load(collection) if _matches(d, filters)]

    def find_one(self, collection: str, **filters) -> Optional[dict]:
        with self._lock:
            for doc in self._load(collection):
                if _matches(doc, filters):
                    return doc
        return None

    def get(self, collection: str, doc_id: str) -> dict:
        doc = self.find_one(collection, _id=doc_id)
        if doc is None:
            raise DocumentNotFound(f"{collection}/{doc_id}")
        return doc

    # ── Mutations ─────────────────────────────────────────────────────────────
    def insert(self, collection: str, doc: dict) -> dict:
        now = utc_now_iso()
        record = {"_id": new_id(), "createdAt": now, "updatedAt": now, **doc}
        with self._lock:
            docs = self._load(collection)
            docs.append(record)
            self._save(collection, docs)
        return record

    def update(self, collection: str, doc_id: str, fields: dict) -> dict:
        """Patch one document and return the updated copy."""
        with self._lock:
            docs = self._load(collection)
            for doc in docs:
                if doc.get("_id") == doc_id:
                    doc.update(fields)
                    doc["updatedAt"] = utc_now_iso()
                    self._save(collection, docs)
                    return doc
        raise DocumentNotFound(f"{collection}/{doc_id}")

    def upsert(self, collection: str, filters: dict, fields: dict) -> dict:
        """Replace the fields of the first document matching `filters`, or insert one."""
        with self._lock:
            docs = self._load(collection)
            for doc in docs:
                if _matches(doc, filters):
                    doc.update(fields)
                    doc["updatedAt"] = utc_now_iso()
                    self._save(collection, docs)
                    return doc
            now = utc_now_iso()
            record = {"_id": new_id(), "createdAt": now, "updatedAt": now, **filters, **fields}
            docs.append(record)
            self._save(collection, docs)
            return record

    def delete(self, collection: str, doc_id: str) -> bool:
        return self.delete_many(collection, _id=doc_id) > 0

    def delete_many(self, collection: str, **filters) -> int:
        with self._lock:
            docs = self._load(collection)
            kept = [d for d in docs if not _matches(d, filters)]
            removed = len(docs) - len(kept)
            if removed:
                self._save(collection, kept)
        return removed
