"""
config.py — SubTrack configuration

All settings come from the environment (a local .env file is loaded first).
Modules read these as `config.NAME` at call time so tests can patch them.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ── Storage ───────────────────────────────────────────────────────────────────
DATA_DIR = Path(os.getenv("DATA_DIR", "data"))

# ── Cron trigger ──────────────────────────────────────────────────────────────
# Empty means every trigger call is rejected.
CRON_SECRET_KEY = os.getenv("CRON_SECRET_KEY", "")

# ── Email (Resend) ────────────────────────────────────────────────────────────
RESEND_API_KEY           = os.getenv("RESEND_API_KEY", "")
RESEND_API_URL           = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
EMAIL_FROM               = os.getenv("EMAIL_FROM", "Subscription Tracker <onboarding@resend.dev>")
EMAIL_OVERRIDE_RECIPIENT = os.getenv("EMAIL_OVERRIDE_RECIPIENT", "")
EMAIL_TIMEOUT_SECONDS    = float(os.getenv("EMAIL_TIMEOUT_SECONDS", "10"))
APP_URL                  = os.getenv("APP_URL", "http://localhost:8000")

# ── Billing cycles ────────────────────────────────────────────────────────────
# "clamp": Jan 31 + 1 month = Feb 28.  "overflow": Jan 31 + 1 month = Mar 3.
MONTH_ROLLOVER              = os.getenv("MONTH_ROLLOVER", "clamp")
CUSTOM_CYCLE_MONTHLY_FACTOR = float(os.getenv("CUSTOM_CYCLE_MONTHLY_FACTOR", "1.0"))
UNKNOWN_CYCLE_ADVANCE       = os.getenv("UNKNOWN_CYCLE_ADVANCE", "Monthly")

# ── Aggregation ───────────────────────────────────────────────────────────────
REPORT_TOP_N          = int(os.getenv("REPORT_TOP_N", "3"))
DASHBOARD_TOP_N       = int(os.getenv("DASHBOARD_TOP_N", "5"))
RENEWAL_WINDOW_DAYS   = int(os.getenv("RENEWAL_WINDOW_DAYS", "30"))
MAX_UPCOMING_RENEWALS = int(os.getenv("MAX_UPCOMING_RENEWALS", "5"))

# ── Auth ──────────────────────────────────────────────────────────────────────
TWO_FACTOR_CODE_TTL_MINUTES = int(os.getenv("TWO_FACTOR_CODE_TTL_MINUTES", "10"))
TWO_FACTOR_MAX_ATTEMPTS     = int(os.getenv("TWO_FACTOR_MAX_ATTEMPTS", "5"))
SESSION_TTL_HOURS           = int(os.getenv("SESSION_TTL_HOURS", "168"))
PASSWORD_RESET_TTL_MINUTES  = int(os.getenv("PASSWORD_RESET_TTL_MINUTES", "60"))

# ── Local scheduler ───────────────────────────────────────────────────────────
REMINDER_TIME = os.getenv("REMINDER_TIME", "09:00")
REPORT_TIME   = os.getenv("REPORT_TIME", "08:00")
# Run the `schedule` loop in a thread of the API process.
RUN_LOCAL_SCHEDULER = os.getenv("RUN_LOCAL_SCHEDULER", "0") == "1"
