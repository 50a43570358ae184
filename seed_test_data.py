"""
seed_test_data.py — writes a demo account with realistic subscriptions.
Run this to try the dashboard, API and notification jobs without signing up.

    demo@subtrack.local / demo123
"""
from datetime import date, timedelta

from models import default_notification_preferences, default_security_preferences
from recurrence import initial_next_payment
from registry import rebuild_registry
from security import hash_password
from store import DocumentStore

DEMO_EMAIL = "demo@subtrack.local"
DEMO_PASSWORD = "demo123"

SUBSCRIPTIONS = [
    # (name, price, billing cycle, category, days since start)
    ("Netflix",        "15.49", "Monthly",   "Entertainment", 320),
    ("Spotify",         "9.99", "Monthly",   "Music",         290),
    ("Apple Music",    "10.99", "Monthly",   "Music",         200),
    ("ChatGPT Plus",   "20.00", "Monthly",   "Productivity",  150),
    ("GitHub Pro",     "48.00", "Yearly",    "Development",   340),
    ("Adobe CC",       "54.99", "Monthly",   "Design",         88),
    ("Notion",         "16.00", "Monthly",   "Productivity",   61),
    ("NordVPN",        "59.88", "Yearly",    "Security",      359),
    ("Duolingo",       "29.99", "Quarterly", "Education",      85),
    ("Gym",            "12.50", "Weekly",    "Health",         40),
    ("Meal Kit",       "59.99", "Biweekly",  "Food",           25),
    ("Cloud Backup",    "3.00", "Monthly",   "",               27),
]


def make_subscriptions(user_id: str, today: date) -> list[dict]:
    records = []
    for name, price, cycle, category, days_back in SUBSCRIPTIONS:
        start = today - timedelta(days=days_back)
        records.append({
            "userId": user_id,
            "name": name,
            "price": price,
            "billingCycle": cycle,
            "startDate": start.isoformat(),
            "category": category or "Uncategorized",
            "description": "",
            "nextPayment": initial_next_payment(start, cycle, today).isoformat(),
        })
    return records


def seed(store: DocumentStore, today: date = None) -> dict:
    """Create (or reset) the demo account and its subscriptions."""
    today = today or date.today()
    user = store.find_one("users", email=DEMO_EMAIL)
    if user is None:
        user = store.insert("users", {
            "name": "Demo User",
            "email": DEMO_EMAIL,
            "passwordHash": hash_password(DEMO_PASSWORD),
            "bio": "",
            "notificationPreferences": default_notification_preferences(),
            "securityPreferences": default_security_preferences(),
        })
    store.delete_many("subscriptions", userId=user["_id"])
    for record in make_subscriptions(user["_id"], today):
        store.insert("subscriptions", record)
    rebuild_registry(store, user["_id"])
    return user


if __name__ == "__main__":
    store = DocumentStore()
    user = seed(store)
    count = len(store.find("subscriptions", userId=user["_id"]))
    print(f"Seeded {count} subscriptions for {DEMO_EMAIL} (password: {DEMO_PASSWORD}) in {store.data_dir}")
