"""
security.py — Passwords, sessions and one-time codes

Session tokens and 2FA codes live in the document store rather than in
process memory, so several API workers see the same state.
"""

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import config
from store import DocumentStore

log = logging.getLogger(__name__)

PASSWORD_HASH_ITERATIONS = 200_000


# ── Passwords ─────────────────────────────────────────────────────────────────
def hash_password(password: str, salt: Optional[bytes] = None) -> str:
    if salt is None:
        salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PASSWORD_HASH_ITERATIONS)
    return f"{salt.hex()}:{digest.hex()}"


def verify_password(password: str, encoded_hash: str) -> bool:
    try:
        salt_hex, digest_hex = encoded_hash.split(":", maxsplit=1)
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(digest_hex)
    except (AttributeError, ValueError):
        return False
    candidate = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PASSWORD_HASH_ITERATIONS)
    return hmac.compare_digest(candidate, expected)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def bearer_matches(header: Optional[str], secret: str) -> bool:
    """Constant-time check of an `Authorization: Bearer <secret>` header."""
    if not secret or not header:
        return False
    return hmac.compare_digest(header.encode("utf-8"), f"Bearer {secret}".encode("utf-8"))


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Sessions ──────────────────────────────────────────────────────────────────
def issue_session(store: DocumentStore, user_id: str, now: Optional[datetime] = None) -> str:
    now = now or _now()
    purge_expired(store, "sessions", now)
    token = secrets.token_urlsafe(32)
    store.insert("sessions", {
        "userId": user_id,
        "tokenHash": hash_token(token),
        "expiresAt": (now + timedelta(hours=config.SESSION_TTL_HOURS)).isoformat(),
    })
    return token


def session_user_id(store: DocumentStore, token: str, now: Optional[datetime] = None) -> Optional[str]:
    """User id for a live session token, or None."""
    if not token:
        return None
    session = store.find_one("sessions", tokenHash=hash_token(token))
    if session is None:
        return None
    if datetime.fromisoformat(session["expiresAt"]) <= (now or _now()):
        store.delete("sessions", session["_id"])
        return None
    return session["userId"]


def revoke_session(store: DocumentStore, token: str) -> bool:
    return store.delete_many("sessions", tokenHash=hash_token(token)) > 0


def purge_expired(store: DocumentStore, collection: str, now: Optional[datetime] = None) -> int:
    now = now or _now()
    removed = 0
    for doc in store.find(collection):
        if datetime.fromisoformat(doc["expiresAt"]) <= now:
            removed += store.delete(collection, doc["_id"])
    return removed


# ── One-time codes ────────────────────────────────────────────────────────────
class CodeStore:
    """
    Short-lived 6-digit codes keyed by email.

    Issuing a code replaces any earlier one for the same email. A code is
    consumed by the first successful verification, rejected once expired, and
    discarded after TWO_FACTOR_MAX_ATTEMPTS wrong guesses.
    """

    COLLECTION = "two_factor_codes"

    def __init__(self, store: DocumentStore, ttl_minutes: Optional[int] = None):
        self.store = store
        self.ttl = timedelta(minutes=ttl_minutes or config.TWO_FACTOR_CODE_TTL_MINUTES)

    def issue(self, email: str, now: Optional[datetime] = None) -> tuple[str, datetime]:
        now = now or _now()
        code = f"{secrets.randbelow(900000) + 100000}"
        expires_at = now + self.ttl
        self.store.upsert(self.COLLECTION, {"email": email}, {
            "codeHash": hash_token(code),
            "expiresAt": expires_at.isoformat(),
            "attempts": 0,
        })
        return code, expires_at

    def verify(self, email: str, code: str, now: Optional[datetime] = None) -> tuple[bool, str]:
        """(ok, message)."""
        now = now or _now()
        entry = self.store.find_one(self.COLLECTION, email=email)
        if entry is None:
            return False, "No 2FA code found or code expired"
        if datetime.fromisoformat(entry["expiresAt"]) <= now:
            self.store.delete(self.COLLECTION, entry["_id"])
            return False, "Code expired. Please request a new code"
        if not hmac.compare_digest(entry["codeHash"], hash_token(code.strip())):
            attempts = entry.get("attempts", 0) + 1
            if attempts >= config.TWO_FACTOR_MAX_ATTEMPTS:
                self.store.delete(self.COLLECTION, entry["_id"])
                log.warning(f"Too many invalid 2FA codes for {email}; code discarded")
                return False, "Too many attempts. Please request a new code"
            self.store.update(self.COLLECTION, entry["_id"], {"attempts": attempts})
            log.info(f"Invalid 2FA code for {email}")
            return False, "Invalid code"
        self.store.delete(self.COLLECTION, entry["_id"])
        return True, "2FA verification successful"

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        return purge_expired(self.store, self.COLLECTION, now)
