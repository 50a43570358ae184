"""
models.py — Request bodies and record defaults

Wire and stored field names are camelCase; Python attribute names are
snake_case with aliases.
"""

import re
from enum import Enum
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field

from billing import BILLING_CYCLES, DEFAULT_CATEGORY, parse_date, parse_price

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


class ReminderFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    THREE_DAYS = "3days"


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def _valid_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_RE.match(value):
        raise ValueError("Please provide a valid email")
    return value


def _check_cycle(value: str) -> str:
    for cycle in BILLING_CYCLES + ["Custom"]:
        if value.strip().lower() == cycle.lower():
            return cycle
    raise ValueError(f"Billing cycle must be one of: {', '.join(BILLING_CYCLES + ['Custom'])}")


def _check_price(value) -> str:
    return f"{parse_price(value):.2f}"


def _check_date(value: str) -> str:
    return parse_date(value).isoformat()


def _check_category(value: str) -> str:
    return value.strip() or DEFAULT_CATEGORY


Email = Annotated[str, AfterValidator(_valid_email)]
CycleName = Annotated[str, AfterValidator(_check_cycle)]
Price = Annotated[str, BeforeValidator(_check_price)]
IsoDate = Annotated[str, AfterValidator(_check_date)]
Category = Annotated[str, AfterValidator(_check_category)]


# ── Preferences ───────────────────────────────────────────────────────────────
class NotificationPreferences(CamelModel):
    payment_reminders: bool = Field(True, alias="paymentReminders")
    reminder_frequency: ReminderFrequency = Field(ReminderFrequency.THREE_DAYS, alias="reminderFrequency")
    monthly_reports: bool = Field(True, alias="monthlyReports")


class SecurityPreferences(CamelModel):
    two_factor_enabled: bool = Field(False, alias="twoFactorEnabled")
    always_require_2fa: bool = Field(False, alias="alwaysRequire2FA")
    login_notifications: bool = Field(True, alias="loginNotifications")


def default_notification_preferences() -> dict:
    return NotificationPreferences().model_dump(by_alias=True, mode="json")


def default_security_preferences() -> dict:
    return SecurityPreferences().model_dump(by_alias=True, mode="json")


# ── Auth ──────────────────────────────────────────────────────────────────────
class SignupRequest(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    email: Email
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    email: str
    password: str


class TwoFactorRequest(BaseModel):
    email: str


class TwoFactorVerify(BaseModel):
    email: str
    code: str


class ForgotPassword(BaseModel):
    email: str


class ResetPassword(BaseModel):
    email: str
    token: str
    password: str = Field(min_length=6)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    bio: Optional[str] = Field(None, max_length=500)


class ChangePassword(CamelModel):
    current_password: str = Field(alias="currentPassword")
    new_password: str = Field(min_length=6, alias="newPassword")


class ChangeEmail(CamelModel):
    new_email: Email = Field(alias="newEmail")
    password: str


class DeleteAccount(BaseModel):
    password: str
    reason: Optional[str] = None


# ── Subscriptions ─────────────────────────────────────────────────────────────
class SubscriptionIn(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    price: Price
    billing_cycle: CycleName = Field(alias="billingCycle")
    start_date: IsoDate = Field(alias="startDate")
    category: Category = DEFAULT_CATEGORY
    description: str = ""


class SubscriptionUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    price: Optional[Price] = None
    billing_cycle: Optional[CycleName] = Field(None, alias="billingCycle")
    start_date: Optional[IsoDate] = Field(None, alias="startDate")
    category: Optional[Category] = None
    description: Optional[str] = None
