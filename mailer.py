"""
mailer.py — Transactional email through the Resend HTTP API

`send_email` raises EmailDeliveryError when the message was not accepted.
The `render_*` helpers return (subject, html) pairs; `notify` is the
fire-and-forget wrapper used for account notices.
"""

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from datetime import date
from html import escape

import config

log = logging.getLogger(__name__)

CELL = 'style="padding: 8px; border-bottom: 1px solid #eaeaea;"'
HEAD = 'style="text-align: left; padding: 10px; border-bottom: 2px solid #eaeaea;"'
SIGNATURE = "<p>Best regards,<br>The Subscription Tracker Team</p>"


class EmailDeliveryError(RuntimeError):
    """The email provider did not accept a message."""


def format_currency(amount: float) -> str:
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_long_date(value: str) -> str:
    """2024-03-15 → Friday, March 15, 2024"""
    try:
        d = date.fromisoformat(value[:10])
    except (TypeError, ValueError):
        return str(value)
    return f"{d.strftime('%A')}, {d.strftime('%B')} {d.day}, {d.year}"


def format_short_date(value: str) -> str:
    """2024-03-15 → Mar 15, 2024"""
    try:
        d = date.fromisoformat(value[:10])
    except (TypeError, ValueError):
        return str(value)
    return f"{d.strftime('%b')} {d.day}, {d.year}"


# ── Transport ─────────────────────────────────────────────────────────────────
def send_email(to: str, subject: str, html: str) -> str:
    """Send one message and return the provider's message id."""
    if not config.RESEND_API_KEY:
        raise EmailDeliveryError("RESEND_API_KEY is not configured")

    recipient = config.EMAIL_OVERRIDE_RECIPIENT or to
    payload = json.dumps({
        "from": config.EMAIL_FROM,
        "to": [recipient],
        "subject": subject,
        "html": html,
    }).encode()
    req = urllib.request.Request(
        config.RESEND_API_URL,
        data=payload,
        headers={
            "Authorization": f"Bearer {config.RESEND_API_KEY}",
            "Content-Type": "application/json",
        },
    )
    try:
        with urllib.request.urlopen(req, timeout=config.EMAIL_TIMEOUT_SECONDS) as resp:
            body = json.loads(resp.read() or b"{}")
    except urllib.error.HTTPError as exc:
        raise EmailDeliveryError(f"Resend rejected '{subject}' ({exc.code})") from exc
    except (urllib.error.URLError, TimeoutError, ValueError) as exc:
        raise EmailDeliveryError(f"Could not reach Resend: {exc}") from exc

    message_id = body.get("id", "")
    log.info(f"Email '{subject}' sent to {recipient} ({message_id})")
    return message_id


def notify(user: dict, message: tuple[str, str]) -> bool:
    """Send an account notice; delivery problems are logged, not raised."""
    subject, html = message
    try:
        send_email(user["email"], subject, html)
        return True
    except EmailDeliveryError as exc:
        log.warning(f"Failed to send '{subject}' to {user['email']}: {exc}")
        return False


# ── Account notices ───────────────────────────────────────────────────────────
def render_welcome(user: dict) -> tuple[str, str]:
    return "Welcome to Subscription Tracker", f"""
        <h1>Welcome to Subscription Tracker!</h1>
        <p>Hello {escape(user['name'])},</p>
        <p>Thank you for joining Subscription Tracker. We're excited to help you manage your subscriptions.</p>
        <p>Get started by adding your first subscription on your dashboard.</p>
        {SIGNATURE}
    """


def render_password_changed(user: dict) -> tuple[str, str]:
    return "Your Password Has Been Changed", f"""
        <h1>Password Changed</h1>
        <p>Hello {escape(user['name'])},</p>
        <p>Your password was recently changed. If you did not make this change, please contact support immediately.</p>
        {SIGNATURE}
    """


def render_password_reset(user: dict, token: str, minutes: int) -> tuple[str, str]:
    query = urllib.parse.urlencode({"token": token, "email": user["email"]})
    reset_url = f"{config.APP_URL}/reset-password?{query}"
    return "Reset Your Password - Subscription Tracker", f"""
        <h1>Password Reset Request</h1>
        <p>Hello {escape(user['name'])},</p>
        <p>We received a request to reset your password for your Subscription Tracker account.</p>
        <p><a href="{escape(reset_url)}" style="background-color: #5c6ac4; color: white; padding: 12px 24px; border-radius: 4px; text-decoration: none; display: inline-block; font-weight: bold;">Reset Password</a></p>
        <p>Or copy this link into your browser:<br>{escape(reset_url)}</p>
        <p>This reset link will expire in {minutes} minutes.</p>
        <p>If you did not request a password reset, you can ignore this email. Your password will not be changed.</p>
        {SIGNATURE}
    """


def render_two_factor_code(user: dict, code: str, minutes: int) -> tuple[str, str]:
    return "Your Verification Code", f"""
        <h1>Verification Code</h1>
        <p>Hello {escape(user['name'])},</p>
        <p>Use this code to finish signing in:</p>
        <p style="font-size: 28px; font-weight: bold; letter-spacing: 6px;">{code}</p>
        <p>The code expires in {minutes} minutes. If you did not try to sign in, change your password.</p>
        {SIGNATURE}
    """


def render_login_notification(user: dict, when: str) -> tuple[str, str]:
    return "New Sign-in to Your Account", f"""
        <h1>New Sign-in</h1>
        <p>Hello {escape(user['name'])},</p>
        <p>Your account was signed in to at {escape(when)}.</p>
        <p>If this wasn't you, change your password right away.</p>
        {SIGNATURE}
    """


def render_email_changed_old(user: dict, new_email: str) -> tuple[str, str]:
    return "Your Email Address Has Been Changed", f"""
        <h1>Email Address Changed</h1>
        <p>Hello {escape(user['name'])},</p>
        <p>The email address on your account was changed to <strong>{escape(new_email)}</strong>.</p>
        <p>If you did not make this change, please contact support immediately.</p>
        {SIGNATURE}
    """


def render_email_changed_new(user: dict, old_email: str) -> tuple[str, str]:
    return "Email Address Change Confirmation", f"""
        <h1>Email Address Confirmed</h1>
        <p>Hello {escape(user['name'])},</p>
        <p>This address now replaces <strong>{escape(old_email)}</strong> on your Subscription Tracker account.</p>
        {SIGNATURE}
    """


# ── Payment reminder ──────────────────────────────────────────────────────────
def render_payment_reminder(user: dict, reminder: dict) -> tuple[str, str]:
    """`reminder` is {name, price, billingCycle, nextPayment, daysUntilPayment}."""
    days = reminder["daysUntilPayment"]
    when = "tomorrow" if days == 1 else f"in {days} days"
    subject = f"Reminder: {reminder['name']} payment due soon"
    html = f"""
        <h1>Payment Reminder</h1>
        <p>Hello {escape(user['name'])},</p>
        <p>This is a friendly reminder that your subscription payment is coming up soon:</p>
        <div style="background-color: #f8f9fa; padding: 15px; border-radius: 4px; margin: 15px 0;">
          <p><strong>Subscription:</strong> {escape(reminder['name'])}</p>
          <p><strong>Amount:</strong> {format_currency(float(reminder['price']))}</p>
          <p><strong>Due Date:</strong> {format_long_date(reminder['nextPayment'])} ({when})</p>
          <p><strong>Billing Cycle:</strong> {escape(reminder['billingCycle'])}</p>
        </div>
        <p>You're receiving this reminder to help you avoid any unexpected charges.</p>
        {SIGNATURE}
    """
    return subject, html


def send_payment_reminder(user: dict, reminder: dict) -> str:
    subject, html = render_payment_reminder(user, reminder)
    return send_email(user["email"], subject, html)


# ── Monthly report ────────────────────────────────────────────────────────────
def describe_change(total: float, previous: float) -> str:
    change = total - previous
    percent = abs(change / previous * 100) if previous > 0 else 0.0
    if round(change, 2) > 0:
        return f"increased by {format_currency(abs(change))} ({percent:.1f}%)"
    if round(change, 2) < 0:
        return f"decreased by {format_currency(abs(change))} ({percent:.1f}%)"
    return "remained the same"


def _table(headers: list[str], rows: list[list[str]]) -> str:
    head = "".join(f"<th {HEAD}>{h}</th>" for h in headers)
    body = "".join(
        "<tr>" + "".join(f"<td {CELL}>{cell}</td>" for cell in row) + "</tr>"
        for row in rows
    )
    return (
        '<table style="width: 100%; border-collapse: collapse;">'
        f'<thead><tr style="background-color: #f8f9fa;">{head}</tr></thead>'
        f"<tbody>{body}</tbody></table>"
    )


def render_monthly_report(user: dict, report: dict) -> tuple[str, str]:
    """`report` is the payload built by analyzer.build_monthly_report."""
    subject = f"Your {report['monthName']} {report['year']} Spending Report"
    categories = _table(
        ["Category", "Amount", "% of Total"],
        [[escape(c["name"]), format_currency(c["amount"]), f"{c['percentage']:.1f}%"]
         for c in report["categories"]],
    )
    top = _table(
        ["Subscription", "Amount", "Category"],
        [[escape(s["name"]), format_currency(s["amount"]), escape(s["category"])]
         for s in report["topSubscriptions"]],
    )
    renewals = _table(
        ["Subscription", "Date", "Amount", "Days Until"],
        [[escape(r["name"]), format_short_date(r["date"]), format_currency(r["amount"]), f"{r['daysUntil']} days"]
         for r in report["upcomingRenewals"]],
    )
    html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
          <h1 style="color: #333; border-bottom: 2px solid #5c6ac4; padding-bottom: 10px;">Monthly Spending Report</h1>
          <p>Hello {escape(user['name'])},</p>
          <p>Here's your subscription spending report for <strong>{report['monthName']} {report['year']}</strong>.</p>
          <div style="background-color: #f8f9fa; padding: 20px; border-radius: 4px; margin: 20px 0; border-left: 4px solid #5c6ac4;">
            <h2 style="margin-top: 0; color: #333;">Monthly Overview</h2>
            <p style="font-size: 24px; font-weight: bold; margin: 10px 0;">{format_currency(report['totalSpent'])}</p>
            <p>Your spending has {describe_change(report['totalSpent'], report['previousMonthSpent'])} compared to last month.</p>
          </div>
          <h2 style="color: #333;">Category Breakdown</h2>
          {categories}
          <h2 style="color: #333; margin-top: 30px;">Top Subscriptions</h2>
          {top}
          <h2 style="color: #333; margin-top: 30px;">Upcoming Renewals</h2>
          {renewals}
          <div style="margin-top: 30px; padding-top: 20px; border-top: 1px solid #eaeaea; font-size: 14px; color: #666;">
            <p><a href="{config.APP_URL}/dashboard/analytics" style="color: #5c6ac4;">View Detailed Analytics →</a></p>
            <p>You're receiving this email because you subscribed to monthly spending reports.<br>
              <a href="{config.APP_URL}/dashboard/settings" style="color: #5c6ac4;">Update your email preferences</a></p>
          </div>
        </div>
    """
    return subject, html


def send_monthly_report(user: dict, report: dict) -> str:
    subject, html = render_monthly_report(user, report)
    return send_email(user["email"], subject, html)
