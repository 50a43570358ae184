"""
accounts.py — Account and subscription operations

Both front ends (api.py and the Streamlit app.py) go through these
functions, so signup, login with 2FA, password recovery and subscription
creation behave the same wherever they are triggered. Refusals raise
AccountError carrying the HTTP status api.py reports.
"""

import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import config
import mailer
from models import SubscriptionIn, default_notification_preferences, default_security_preferences
from recurrence import initial_next_payment
from registry import rebuild_registry
from security import CodeStore, hash_password, hash_token, issue_session, verify_password
from store import DocumentStore

log = logging.getLogger(__name__)


class AccountError(ValueError):
    """An account operation was refused."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def find_user(store: DocumentStore, email: str) -> Optional[dict]:
    return store.find_one("users", email=email.strip().lower())


# ── Signup & login ────────────────────────────────────────────────────────────
def create_user(store: DocumentStore, name: str, email: str, password: str) -> dict:
    """Create an account, build its registry and send the welcome email."""
    email = email.strip().lower()
    if find_user(store, email):
        raise AccountError("An account with this email already exists")
    user = store.insert("users", {
        "name": name.strip(),
        "email": email,
        "passwordHash": hash_password(password),
        "bio": "",
        "notificationPreferences": default_notification_preferences(),
        "securityPreferences": default_security_preferences(),
    })
    rebuild_registry(store, user["_id"])
    mailer.notify(user, mailer.render_welcome(user))
    log.info(f"New account created for {email}")
    return user


def authenticate(store: DocumentStore, email: str, password: str) -> dict:
    user = find_user(store, email)
    if user is None or not verify_password(password, user.get("passwordHash", "")):
        raise AccountError("Invalid email or password", 401)
    return user


def requires_two_factor(user: dict) -> bool:
    prefs = user.get("securityPreferences") or default_security_preferences()
    return bool(prefs.get("twoFactorEnabled") or prefs.get("alwaysRequire2FA"))


def send_login_code(store: DocumentStore, user: dict) -> datetime:
    """Email a fresh 2FA code; returns when it expires."""
    code, expires_at = CodeStore(store).issue(user["email"])
    mailer.notify(user, mailer.render_two_factor_code(user, code, config.TWO_FACTOR_CODE_TTL_MINUTES))
    return expires_at


def verify_login_code(store: DocumentStore, email: str, code: str) -> dict:
    email = email.strip().lower()
    ok, message = CodeStore(store).verify(email, code)
    if not ok:
        raise AccountError(message)
    user = find_user(store, email)
    if user is None:
        raise AccountError("User not found", 404)
    return user


def complete_login(store: DocumentStore, user: dict) -> str:
    """Open a session and send the login notice when the user wants one."""
    token = issue_session(store, user["_id"])
    prefs = user.get("securityPreferences") or default_security_preferences()
    if prefs.get("loginNotifications"):
        when = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        mailer.notify(user, mailer.render_login_notification(user, when))
    return token


# ── Password recovery ─────────────────────────────────────────────────────────
def request_password_reset(store: DocumentStore, email: str, now: Optional[datetime] = None) -> str:
    """
    Store a hashed one-hour reset token on the user and email the raw token.
    Returns the raw token.
    """
    now = now or datetime.now(timezone.utc)
    user = find_user(store, email)
    if user is None:
        if store.find_one("deleted_users", email=email.strip().lower()):
            raise AccountError(
                "This account has been deleted. If you wish to use this email again, "
                "please sign up for a new account.", 404,
            )
        raise AccountError("No account found with this email address", 404)

    token = secrets.token_hex(32)
    store.update("users", user["_id"], {
        "resetPasswordTokenHash": hash_token(token),
        "resetPasswordExpires": (now + timedelta(minutes=config.PASSWORD_RESET_TTL_MINUTES)).isoformat(),
    })
    message = mailer.render_password_reset(user, token, config.PASSWORD_RESET_TTL_MINUTES)
    if not mailer.notify(user, message):
        raise AccountError("Failed to send the password reset email. Please try again later.", 502)
    log.info(f"Password reset requested for {user['email']}")
    return token


def reset_password(store: DocumentStore, email: str, token: str, new_password: str,
                   now: Optional[datetime] = None) -> dict:
    """Set a new password with a reset token; the token and all sessions are dropped."""
    now = now or datetime.now(timezone.utc)
    user = find_user(store, email)
    stored_hash = (user or {}).get("resetPasswordTokenHash") or ""
    expires = (user or {}).get("resetPasswordExpires")
    if (
        user is None
        or not stored_hash
        or not hmac.compare_digest(stored_hash, hash_token(token.strip()))
        or expires is None
        or datetime.fromisoformat(expires) <= now
    ):
        raise AccountError("Invalid or expired password reset token")

    updated = store.update("users", user["_id"], {
        "passwordHash": hash_password(new_password),
        "resetPasswordTokenHash": None,
        "resetPasswordExpires": None,
    })
    store.delete_many("sessions", userId=user["_id"])
    mailer.notify(updated, mailer.render_password_changed(updated))
    log.info(f"Password reset completed for {updated['email']}")
    return updated


# ── Subscriptions ─────────────────────────────────────────────────────────────
def create_subscription(store: DocumentStore, user_id: str, sub: SubscriptionIn) -> dict:
    """Insert a validated subscription with its first nextPayment."""
    data = sub.model_dump(by_alias=True)
    data["nextPayment"] = initial_next_payment(data["startDate"], data["billingCycle"]).isoformat()
    record = store.insert("subscriptions", {"userId": user_id, **data})
    rebuild_registry(store, user_id)
    log.info(f"Subscription {record['name']} added for user {user_id}")
    return record
