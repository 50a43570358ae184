"""
registry.py — Per-user registry projection

The registry is a derived summary (current email, email history,
subscription summaries, total monthly spend). It is always rebuilt from
users, subscriptions and email_history; it is never patched in place, so
discarding it loses nothing.
"""

import logging
from typing import Optional

from billing import InvalidSubscription, money, subscription_monthly_cost
from store import DocumentNotFound, DocumentStore, utc_now_iso

log = logging.getLogger(__name__)


def subscription_summary(sub: dict) -> dict:
    return {
        "subscriptionId": sub["_id"],
        "name": sub.get("name", ""),
        "provider": sub.get("description", ""),
        "price": sub.get("price"),
        "billingCycle": sub.get("billingCycle"),
        "addedAt": sub.get("createdAt"),
        "lastUpdatedAt": sub.get("updatedAt"),
        "status": "active",
    }


def email_entries(user: dict, changes: list[dict]) -> list[dict]:
    """Signup address followed by every change, the current address primary."""
    changes = sorted(changes, key=lambda c: c["changedAt"])
    signup_email = changes[0]["previousEmail"] if changes else user["email"]
    entries = [{
        "email": signup_email,
        "isPrimary": not changes,
        "isVerified": True,
        "addedAt": user.get("createdAt"),
        "source": "signup",
    }]
    for change in changes:
        entries.append({
            "email": change["newEmail"],
            "isPrimary": False,
            "isVerified": True,
            "addedAt": change["changedAt"],
            "source": "change",
        })
    if changes:
        # Only the latest entry for the current address is primary.
        for entry in reversed(entries):
            if entry["email"] == user["email"]:
                entry["isPrimary"] = True
                break
    return entries


def total_monthly_spend(subscriptions: list[dict]) -> float:
    total = 0.0
    for sub in subscriptions:
        try:
            total += subscription_monthly_cost(sub)
        except InvalidSubscription as exc:
            log.warning(f"Registry: skipping subscription {sub.get('_id')}: {exc}")
    return total


def rebuild_registry(store: DocumentStore, user_id: str) -> dict:
    """Recompute and store a user's registry document."""
    user = store.get("users", user_id)
    subscriptions = store.find("subscriptions", userId=user_id)
    changes = store.find("email_history", userId=user_id)

    registry = store.upsert("user_registry", {"userId": user_id}, {
        "name": user["name"],
        "currentEmail": user["email"],
        "emailHistory": email_entries(user, changes),
        "subscriptions": [subscription_summary(s) for s in subscriptions],
        "totalMonthlySpend": money(total_monthly_spend(subscriptions)),
        "accountCreatedAt": user.get("createdAt"),
        "lastActive": utc_now_iso(),
    })
    log.info(f"User registry rebuilt for user {user_id}")
    return registry


def get_registry(store: DocumentStore, user_id: str) -> Optional[dict]:
    """Stored registry, building it first when missing."""
    registry = store.find_one("user_registry", userId=user_id)
    if registry is not None:
        return registry
    try:
        return rebuild_registry(store, user_id)
    except DocumentNotFound:
        return None


def record_email_change(store: DocumentStore, user_id: str, previous: str, new: str,
                        ip_address: str = "", user_agent: str = "") -> dict:
    change = store.insert("email_history", {
        "userId": user_id,
        "previousEmail": previous,
        "newEmail": new,
        "changedAt": utc_now_iso(),
        "ipAddress": ip_address,
        "userAgent": user_agent,
    })
    rebuild_registry(store, user_id)
    return change


def archive_subscription(store: DocumentStore, sub: dict, method: str, reason: str = "") -> dict:
    """Copy a subscription to deleted_subscriptions, then remove it."""
    archived = store.insert("deleted_subscriptions", {
        "userId": sub["userId"],
        "originalId": sub["_id"],
        "name": sub.get("name", ""),
        "price": sub.get("price"),
        "category": sub.get("category"),
        "billingCycle": sub.get("billingCycle"),
        "startDate": sub.get("startDate"),
        "description": sub.get("description", ""),
        "nextPayment": sub.get("nextPayment"),
        "deletedAt": utc_now_iso(),
        "deletedBy": "user",
        "deletionMethod": method,
        "deletionReason": reason,
    })
    store.delete("subscriptions", sub["_id"])
    return archived
