from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional
import logging
import threading
from datetime import date

import accounts
import config
import mailer
from accounts import AccountError
from analyzer import dashboard_summary
from billing import InvalidSubscription, money, subscription_monthly_cost
from models import (
    ChangeEmail,
    ChangePassword,
    DeleteAccount,
    ForgotPassword,
    LoginRequest,
    NotificationPreferences,
    ProfileUpdate,
    ResetPassword,
    SecurityPreferences,
    SignupRequest,
    SubscriptionIn,
    SubscriptionUpdate,
    TwoFactorRequest,
    TwoFactorVerify,
    default_notification_preferences,
    default_security_preferences,
)
from recurrence import RecurrenceError, days_until, initial_next_payment
from registry import (
    archive_subscription,
    get_registry,
    rebuild_registry,
    record_email_change,
    total_monthly_spend,
)
from scheduler import advance_stored_payment, run_monthly_reports, run_payment_reminders, run_scheduler
from security import (
    bearer_matches,
    hash_password,
    issue_session,
    revoke_session,
    session_user_id,
    verify_password,
)
from store import DocumentNotFound, DocumentStore, utc_now_iso

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
log = logging.getLogger("api")

app = FastAPI(title="SubTrack API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AccountError)
async def account_error(request: Request, exc: AccountError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# ── Dependencies ──────────────────────────────────────────────────────────────
_store: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
    global _store
    if _store is None:
        _store = DocumentStore(config.DATA_DIR)
    return _store


def bearer_token(request: Request) -> str:
    return request.headers.get("Authorization", "").strip().removeprefix("Bearer ").strip()


def current_user(request: Request, store: DocumentStore = Depends(get_store)) -> dict:
    user_id = session_user_id(store, bearer_token(request))
    if user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return store.get("users", user_id)
    except DocumentNotFound:
        raise HTTPException(status_code=401, detail="Not authenticated")


def public_user(user: dict) -> dict:
    return {
        "id": user["_id"],
        "name": user["name"],
        "email": user["email"],
        "bio": user.get("bio", ""),
        "createdAt": user.get("createdAt"),
        "notificationPreferences": user.get("notificationPreferences") or default_notification_preferences(),
        "securityPreferences": user.get("securityPreferences") or default_security_preferences(),
    }


def owned_subscription(store: DocumentStore, user: dict, sub_id: str) -> dict:
    try:
        sub = store.get("subscriptions", sub_id)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Subscription not found")
    if sub.get("userId") != user["_id"]:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return sub


def subscription_view(store: DocumentStore, sub: dict, today: date) -> dict:
    """Stored record plus derived figures; the stored nextPayment is advanced on read."""
    view = dict(sub)
    try:
        next_payment = advance_stored_payment(store, sub, today)
        view["nextPayment"] = next_payment.isoformat()
        view["daysUntil"] = days_until(next_payment, today)
        view["monthlyCost"] = money(subscription_monthly_cost(sub))
    except (InvalidSubscription, RecurrenceError) as exc:
        log.warning(f"Subscription {sub['_id']} has unusable data: {exc}")
        view["daysUntil"] = None
        view["monthlyCost"] = None
    return view


def require_password(user: dict, password: str):
    if not verify_password(password, user.get("passwordHash", "")):
        raise HTTPException(status_code=400, detail="Password is incorrect")


# ── Auth ──────────────────────────────────────────────────────────────────────
@app.post("/auth/signup")
def signup(req: SignupRequest, store: DocumentStore = Depends(get_store)):
    user = accounts.create_user(store, req.name, req.email, req.password)
    return {"success": True, "token": issue_session(store, user["_id"]), "user": public_user(user)}


def _logged_in(store: DocumentStore, user: dict) -> dict:
    return {"success": True, "token": accounts.complete_login(store, user), "user": public_user(user)}


@app.post("/auth/login")
def login(req: LoginRequest, store: DocumentStore = Depends(get_store)):
    user = accounts.authenticate(store, req.email, req.password)
    if accounts.requires_two_factor(user):
        accounts.send_login_code(store, user)
        return {"success": True, "requires2FA": True, "message": "2FA code sent to your email"}
    return _logged_in(store, user)


@app.post("/auth/2fa/send")
def send_two_factor_code(req: TwoFactorRequest, store: DocumentStore = Depends(get_store)):
    user = accounts.find_user(store, req.email)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    expires_at = accounts.send_login_code(store, user)
    return {"success": True, "message": "2FA code sent to your email", "expiresAt": expires_at.isoformat()}


@app.post("/auth/2fa/verify")
def verify_two_factor_code(req: TwoFactorVerify, store: DocumentStore = Depends(get_store)):
    user = accounts.verify_login_code(store, req.email, req.code)
    return _logged_in(store, user)


@app.post("/auth/forgot-password")
def forgot_password(req: ForgotPassword, store: DocumentStore = Depends(get_store)):
    accounts.request_password_reset(store, req.email)
    return {"success": True, "message": "A password reset link has been sent to your email address."}


@app.post("/auth/reset-password")
def reset_password(req: ResetPassword, store: DocumentStore = Depends(get_store)):
    accounts.reset_password(store, req.email, req.token, req.password)
    return {
        "success": True,
        "message": "Your password has been reset successfully. You can now login with your new password.",
    }


@app.post("/auth/logout")
def logout(request: Request, store: DocumentStore = Depends(get_store)):
    revoke_session(store, bearer_token(request))
    return {"success": True}


@app.get("/auth/me")
def me(user: dict = Depends(current_user)):
    return {"success": True, "user": public_user(user)}


@app.put("/auth/profile")
def update_profile(req: ProfileUpdate, user: dict = Depends(current_user),
                   store: DocumentStore = Depends(get_store)):
    fields = req.model_dump(exclude_none=True)
    if "name" in fields:
        fields["name"] = fields["name"].strip()
    updated = store.update("users", user["_id"], fields)
    if "name" in fields:
        rebuild_registry(store, user["_id"])
    return {"success": True, "user": public_user(updated)}


@app.post("/auth/change-password")
def change_password(req: ChangePassword, user: dict = Depends(current_user),
                    store: DocumentStore = Depends(get_store)):
    require_password(user, req.current_password)
    store.update("users", user["_id"], {"passwordHash": hash_password(req.new_password)})
    mailer.notify(user, mailer.render_password_changed(user))
    return {"success": True, "message": "Password updated"}


@app.post("/auth/change-email")
def change_email(req: ChangeEmail, request: Request, user: dict = Depends(current_user),
                 store: DocumentStore = Depends(get_store)):
    require_password(user, req.password)
    if req.new_email == user["email"]:
        raise HTTPException(status_code=400, detail="New email is the same as the current email")
    if store.find_one("users", email=req.new_email):
        raise HTTPException(status_code=400, detail="An account with this email already exists")

    previous = user["email"]
    updated = store.update("users", user["_id"], {"email": req.new_email})
    record_email_change(
        store, user["_id"], previous, req.new_email,
        ip_address=request.client.host if request.client else "",
        user_agent=request.headers.get("User-Agent", ""),
    )
    mailer.notify({**user, "email": previous}, mailer.render_email_changed_old(user, req.new_email))
    mailer.notify(updated, mailer.render_email_changed_new(updated, previous))
    log.info(f"Email changed for user {user['_id']}: {previous} → {req.new_email}")
    return {"success": True, "user": public_user(updated)}


@app.post("/auth/delete-account")
def delete_account(req: DeleteAccount, request: Request, user: dict = Depends(current_user),
                   store: DocumentStore = Depends(get_store)):
    require_password(user, req.password)
    subscriptions = store.find("subscriptions", userId=user["_id"])
    store.insert("deleted_users", {
        "originalId": user["_id"],
        "name": user["name"],
        "email": user["email"],
        "bio": user.get("bio", ""),
        "accountCreatedAt": user.get("createdAt"),
        "deletedAt": utc_now_iso(),
        "subscriptionCount": len(subscriptions),
        "totalSpent": money(total_monthly_spend(subscriptions)),
        "reason": req.reason or "",
        "deletedBy": "user",
    })
    for sub in subscriptions:
        archive_subscription(store, sub, "bulk", "account deleted")
    store.delete_many("sessions", userId=user["_id"])
    store.delete_many("user_registry", userId=user["_id"])
    store.delete_many("two_factor_codes", email=user["email"])
    store.delete_many("spend_history", userId=user["_id"])
    store.delete("users", user["_id"])
    log.info(f"Account deleted for {user['email']} ({len(subscriptions)} subscriptions archived)")
    return {"success": True, "message": "Account deleted"}


# ── Preferences ───────────────────────────────────────────────────────────────
@app.get("/auth/notification-preferences")
def get_notification_preferences(user: dict = Depends(current_user)):
    return {"success": True, "notificationPreferences": public_user(user)["notificationPreferences"]}


@app.put("/auth/notification-preferences")
def update_notification_preferences(prefs: NotificationPreferences, user: dict = Depends(current_user),
                                    store: DocumentStore = Depends(get_store)):
    data = prefs.model_dump(by_alias=True, mode="json")
    store.update("users", user["_id"], {"notificationPreferences": data})
    return {"success": True, "notificationPreferences": data}


@app.get("/auth/security-preferences")
def get_security_preferences(user: dict = Depends(current_user)):
    return {"success": True, "securityPreferences": public_user(user)["securityPreferences"]}


@app.put("/auth/security-preferences")
def update_security_preferences(prefs: SecurityPreferences, user: dict = Depends(current_user),
                                store: DocumentStore = Depends(get_store)):
    data = prefs.model_dump(by_alias=True, mode="json")
    store.update("users", user["_id"], {"securityPreferences": data})
    return {"success": True, "securityPreferences": data}


# ── Subscriptions ─────────────────────────────────────────────────────────────
@app.get("/api/subscriptions")
def list_subscriptions(user: dict = Depends(current_user), store: DocumentStore = Depends(get_store)):
    today = date.today()
    subs = store.find("subscriptions", userId=user["_id"])
    return {"success": True, "subscriptions": [subscription_view(store, s, today) for s in subs]}


@app.post("/api/subscriptions")
def create_subscription(sub: SubscriptionIn, user: dict = Depends(current_user),
                        store: DocumentStore = Depends(get_store)):
    record = accounts.create_subscription(store, user["_id"], sub)
    return {"success": True, "subscription": subscription_view(store, record, date.today())}


@app.delete("/api/subscriptions/delete-all")
def delete_all_subscriptions(user: dict = Depends(current_user), store: DocumentStore = Depends(get_store)):
    subs = store.find("subscriptions", userId=user["_id"])
    for sub in subs:
        archive_subscription(store, sub, "bulk")
    rebuild_registry(store, user["_id"])
    return {"success": True, "deletedCount": len(subs)}


@app.get("/api/subscriptions/{sub_id}")
def get_subscription(sub_id: str, user: dict = Depends(current_user), store: DocumentStore = Depends(get_store)):
    sub = owned_subscription(store, user, sub_id)
    return {"success": True, "subscription": subscription_view(store, sub, date.today())}


@app.put("/api/subscriptions/{sub_id}")
def update_subscription(sub_id: str, changes: SubscriptionUpdate, user: dict = Depends(current_user),
                        store: DocumentStore = Depends(get_store)):
    sub = owned_subscription(store, user, sub_id)
    fields = changes.model_dump(by_alias=True, exclude_none=True)
    if "startDate" in fields or "billingCycle" in fields:
        fields["nextPayment"] = initial_next_payment(
            fields.get("startDate", sub["startDate"]),
            fields.get("billingCycle", sub["billingCycle"]),
        ).isoformat()
        fields["lastReminderSent"] = None
    updated = store.update("subscriptions", sub["_id"], fields)
    rebuild_registry(store, user["_id"])
    return {"success": True, "subscription": subscription_view(store, updated, date.today())}


@app.delete("/api/subscriptions/{sub_id}")
def delete_subscription(sub_id: str, user: dict = Depends(current_user), store: DocumentStore = Depends(get_store)):
    sub = owned_subscription(store, user, sub_id)
    archive_subscription(store, sub, "individual")
    rebuild_registry(store, user["_id"])
    return {"success": True, "message": f"Deleted {sub['name']}"}


# ── Dashboard & registry ──────────────────────────────────────────────────────
@app.get("/api/dashboard")
def get_dashboard(user: dict = Depends(current_user), store: DocumentStore = Depends(get_store)):
    subs = store.find("subscriptions", userId=user["_id"])
    return {"success": True, "dashboard": dashboard_summary(subs)}


@app.get("/api/user/registry")
def get_user_registry(user: dict = Depends(current_user), store: DocumentStore = Depends(get_store)):
    return {"success": True, "registry": get_registry(store, user["_id"])}


@app.get("/api/user/email-history")
def get_email_history(user: dict = Depends(current_user), store: DocumentStore = Depends(get_store)):
    history = sorted(store.find("email_history", userId=user["_id"]), key=lambda h: h["changedAt"], reverse=True)
    return {"success": True, "emailHistory": history}


# ── Cron triggers ─────────────────────────────────────────────────────────────
def require_cron_secret(request: Request):
    if not bearer_matches(request.headers.get("Authorization"), config.CRON_SECRET_KEY):
        log.warning(f"Unauthorized access attempt to {request.url.path}")
        raise HTTPException(status_code=401, detail="Unauthorized")


def _run_job(job, store: DocumentStore, noun: str):
    try:
        summary = job(store)
    except Exception as exc:
        log.error(f"Error processing {noun}: {exc}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})
    return {
        "success": True,
        "summary": summary,
        "message": (
            f"Processed {summary['total']} users, sent {summary['emailsSent']} {noun}, "
            f"encountered {summary['errors']} errors"
        ),
    }


@app.get("/api/cron/payment-reminders", dependencies=[Depends(require_cron_secret)])
def cron_payment_reminders(store: DocumentStore = Depends(get_store)):
    return _run_job(run_payment_reminders, store, "payment reminders")


@app.get("/api/cron/monthly-reports", dependencies=[Depends(require_cron_secret)])
def cron_monthly_reports(store: DocumentStore = Depends(get_store)):
    return _run_job(run_monthly_reports, store, "monthly reports")


@app.on_event("startup")
def on_startup():
    """Start the scheduler thread when RUN_LOCAL_SCHEDULER is set."""
    if not config.RUN_LOCAL_SCHEDULER:
        return
    t = threading.Thread(target=run_scheduler, daemon=True)
    t.start()
    log.info("Background scheduler thread launched.")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
