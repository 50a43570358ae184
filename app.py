"""
app.py — Streamlit dashboard for SubTrack

Reads and writes the same document store as api.py, so the dashboard and
the HTTP API always agree.

Design system: Stripe-inspired
  Background:      #f6f9fc
  Surface:         #ffffff
  Border:          #e3e8ee
  Text primary:    #32325d
  Text secondary:  #525f7f
  Text muted:      #8898aa
  Accent:          #635bff
  Success:         #2dce89
  Warning:         #fb6340
  Danger:          #f5365c
"""

from datetime import date
from html import escape

import plotly.graph_objects as go
import streamlit as st
from pydantic import ValidationError

import accounts
from accounts import AccountError
from analyzer import dashboard_summary
from billing import BILLING_CYCLES, InvalidSubscription, money, parse_price, subscription_monthly_cost
from mailer import format_currency, format_short_date
from models import SignupRequest, SubscriptionIn
from registry import archive_subscription, rebuild_registry
from security import issue_session, revoke_session, session_user_id
from store import DocumentStore

st.set_page_config(
    page_title="SubTrack — Subscription Manager",
    page_icon="💳",
    layout="centered",
    initial_sidebar_state="collapsed",
)

st.markdown("""
<style>
/* ── Hide Streamlit chrome ── */
#MainMenu, header, footer { display: none !important; }
.stDeployButton, [data-testid="stToolbar"] { display: none !important; }

/* ── Base ── */
html, body, [data-testid="stAppViewContainer"], [data-testid="stMain"] {
    background: #f6f9fc !important;
    color: #32325d;
    font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, "Helvetica Neue", sans-serif;
}
.block-container {
    padding-top: 2.5rem !important;
    padding-bottom: 3rem !important;
    max-width: 860px !important;
}

/* ── Header ── */
.app-logo { display: flex; align-items: center; gap: 0.6rem; margin-bottom: 0.2rem; }
.app-logo-icon {
    width: 36px; height: 36px;
    background: #635bff;
    border-radius: 10px;
    display: flex; align-items: center; justify-content: center;
    font-size: 1.1rem;
    box-shadow: 0 4px 12px rgba(99,91,255,0.35);
}
.app-title { font-size: 1.6rem; font-weight: 700; color: #32325d; letter-spacing: -0.3px; }
.app-subtitle { color: #8898aa; font-size: 0.88rem; margin-bottom: 2rem; }

/* ── Cards ── */
.card {
    background: #ffffff;
    border: 1px solid #e3e8ee;
    border-radius: 12px;
    padding: 1.75rem;
    margin-bottom: 1.25rem;
    box-shadow: 0 2px 5px rgba(50,50,93,.07), 0 1px 2px rgba(0,0,0,.05);
}
.card-title { font-size: 1.05rem; font-weight: 600; color: #32325d; margin-bottom: 0.35rem; }
.card-desc { color: #8898aa; font-size: 0.85rem; margin-bottom: 1.5rem; line-height: 1.5; }

/* ── Stat grid ── */
.stat-grid {
    display: grid;
    grid-template-columns: repeat(3, 1fr);
    gap: 1rem;
    margin-bottom: 1.75rem;
}
@media (max-width: 600px) { .stat-grid { grid-template-columns: 1fr; } }
.stat-card {
    background: #ffffff;
    border: 1px solid #e3e8ee;
    border-radius: 12px;
    padding: 1.25rem 1.4rem;
    box-shadow: 0 2px 5px rgba(50,50,93,.07), 0 1px 2px rgba(0,0,0,.04);
    border-top: 3px solid #635bff;
}
.stat-card.green  { border-top-color: #2dce89; }
.stat-card.orange { border-top-color: #fb6340; }
.stat-label {
    font-size: 0.72rem;
    font-weight: 600;
    color: #8898aa;
    text-transform: uppercase;
    letter-spacing: 0.06em;
    margin-bottom: 0.5rem;
}
.stat-value { font-size: 1.55rem; font-weight: 700; color: #32325d; line-height: 1; }
.stat-value.purple { color: #635bff; }
.stat-value.green  { color: #2dce89; }
.stat-value.orange { color: #fb6340; }
.stat-sub { font-size: 0.75rem; color: #8898aa; margin-top: 0.3rem; }

/* ── Section headers ── */
.section-header {
    font-size: 0.72rem;
    font-weight: 700;
    color: #8898aa;
    text-transform: uppercase;
    letter-spacing: 0.08em;
    margin: 2rem 0 0.85rem;
}

/* ── Subscription rows ── */
.sub-row {
    display: flex;
    align-items: center;
    justify-content: space-between;
    padding: 1rem 1.2rem;
    background: #ffffff;
    border: 1px solid #e3e8ee;
    border-radius: 10px;
    margin-bottom: 0.5rem;
    gap: 1rem;
    box-shadow: 0 1px 3px rgba(50,50,93,.05);
}
.sub-merchant { font-weight: 600; font-size: 0.95rem; color: #32325d; }
.sub-category  { font-size: 0.72rem; color: #8898aa; margin-top: 2px; }
.sub-amount    { font-size: 1rem; font-weight: 700; color: #32325d; white-space: nowrap; }
.sub-freq      { font-size: 0.72rem; color: #8898aa; text-align: right; margin-top: 2px; }

/* ── Renewal pill ── */
.renewal-pill {
    display: inline-block;
    background: rgba(251,99,64,.1);
    color: #fb6340;
    border-radius: 999px;
    padding: 2px 10px;
    font-size: 0.7rem;
    font-weight: 600;
}

/* ── Buttons ── */
.stButton > button {
    background: #635bff !important;
    color: #ffffff !important;
    border: none !important;
    border-radius: 8px !important;
    padding: 0.6rem 1.4rem !important;
    font-weight: 600 !important;
    font-size: 0.88rem !important;
    width: 100% !important;
    box-shadow: 0 4px 6px rgba(99,91,255,.25) !important;
}
[data-testid="stBaseButton-secondary"] {
    background: #ffffff !important;
    color: #635bff !important;
    border: 1.5px solid #635bff !important;
    box-shadow: none !important;
}
</style>
""", unsafe_allow_html=True)

CHART_COLORS = [
    "#635bff", "#2dce89", "#fb6340", "#f5365c", "#11cdef",
    "#ffd600", "#8898aa", "#344675", "#adb5bd", "#0c6dfd",
]


# ── Session state defaults ────────────────────────────────────────────────────
DEFAULTS = {
    "token": None,
    "auth_mode": "login",
    "pending_2fa_email": None,
}
for k, v in DEFAULTS.items():
    if k not in st.session_state:
        st.session_state[k] = v


@st.cache_resource
def get_store() -> DocumentStore:
    return DocumentStore()


def current_user():
    if not st.session_state.token:
        return None
    store = get_store()
    user_id = session_user_id(store, st.session_state.token)
    if user_id is None:
        st.session_state.token = None
        return None
    return store.find_one("users", _id=user_id)


def sign_in(token: str):
    st.session_state.token = token
    st.session_state.pending_2fa_email = None
    st.rerun()


# ── Helpers ───────────────────────────────────────────────────────────────────
def render_header():
    st.markdown(
        '<div class="app-logo">'
        '<div class="app-logo-icon">💳</div>'
        '<span class="app-title">SubTrack</span>'
        '</div>'
        '<div class="app-subtitle">Every subscription, every renewal, one place</div>',
        unsafe_allow_html=True,
    )


def renewal_label(days: int) -> str:
    if days == 0:
        return "today"
    if days == 1:
        return "tomorrow"
    return f"in {days} days"


# ── Dialogs (modals) ──────────────────────────────────────────────────────────
@st.dialog("➕ Add Subscription", width="large")
def dialog_add_subscription(user: dict):
    c1, c2 = st.columns(2)
    with c1:
        name  = st.text_input("Service name", placeholder="e.g. Netflix")
        price = st.number_input("Price", min_value=0.01, value=9.99, step=0.01, format="%.2f")
    with c2:
        cycle    = st.selectbox("Billing cycle", BILLING_CYCLES, index=BILLING_CYCLES.index("Monthly"))
        category = st.text_input("Category", placeholder="e.g. Entertainment")
    start = st.date_input("Start date", value=date.today())
    description = st.text_input("Notes", placeholder="Optional")

    save_col, cancel_col = st.columns(2)
    with save_col:
        if st.button("Add Subscription", type="primary", use_container_width=True):
            try:
                sub = SubscriptionIn(
                    name=name.strip(), price=price, billingCycle=cycle,
                    startDate=start.isoformat(), category=category, description=description,
                )
            except ValidationError as exc:
                st.error(exc.errors()[0]["msg"])
                return
            accounts.create_subscription(get_store(), user["_id"], sub)
            st.rerun()
    with cancel_col:
        if st.button("Cancel", type="secondary", use_container_width=True):
            st.rerun()


# ── Sign in ───────────────────────────────────────────────────────────────────
def render_code_entry(email: str):
    st.markdown(
        '<div class="card"><div class="card-title">Enter your verification code</div>'
        f'<div class="card-desc">We emailed a 6-digit code to {escape(email)}.</div>',
        unsafe_allow_html=True,
    )
    code = st.text_input("Verification code", max_chars=6)
    store = get_store()
    if st.button("Verify"):
        try:
            user = accounts.verify_login_code(store, email, code)
        except AccountError as exc:
            st.error(str(exc))
        else:
            sign_in(accounts.complete_login(store, user))
    st.markdown("</div>", unsafe_allow_html=True)

    resend_col, back_col = st.columns(2)
    with resend_col:
        if st.button("Send a new code", type="secondary"):
            user = accounts.find_user(store, email)
            if user is not None:
                accounts.send_login_code(store, user)
                st.success("A new code is on its way.")
    with back_col:
        if st.button("Back to sign in", type="secondary"):
            st.session_state.pending_2fa_email = None
            st.rerun()


def render_auth():
    if st.session_state.pending_2fa_email:
        render_code_entry(st.session_state.pending_2fa_email)
        return

    signing_up = st.session_state.auth_mode == "signup"
    title = "Create your account" if signing_up else "Sign in"
    st.markdown(
        f'<div class="card"><div class="card-title">{title}</div>'
        '<div class="card-desc">Track what you pay for and when it renews.</div>',
        unsafe_allow_html=True,
    )
    name = st.text_input("Name") if signing_up else ""
    email = st.text_input("Email", placeholder="you@example.com")
    password = st.text_input("Password", type="password")

    store = get_store()
    if st.button("Create account" if signing_up else "Sign in"):
        try:
            if signing_up:
                req = SignupRequest(name=name.strip(), email=email, password=password)
                user = accounts.create_user(store, req.name, req.email, req.password)
                sign_in(issue_session(store, user["_id"]))
            else:
                user = accounts.authenticate(store, email, password)
                if accounts.requires_two_factor(user):
                    accounts.send_login_code(store, user)
                    st.session_state.pending_2fa_email = user["email"]
                    st.rerun()
                sign_in(accounts.complete_login(store, user))
        except ValidationError as exc:
            st.error(exc.errors()[0]["msg"])
        except AccountError as exc:
            st.error(str(exc))
    st.markdown("</div>", unsafe_allow_html=True)

    other = "login" if signing_up else "signup"
    label = "Already have an account? Sign in" if signing_up else "New here? Create an account"
    if st.button(label, type="secondary"):
        st.session_state.auth_mode = other
        st.rerun()


# ── Dashboard ─────────────────────────────────────────────────────────────────
def render_stats(summary: dict):
    next_payment = summary["nextPayment"]
    next_sub = (
        f"{escape(next_payment['name'])} · {renewal_label(next_payment['daysUntil'])}"
        if next_payment else "nothing scheduled"
    )
    st.markdown(f"""
<div class="stat-grid">
  <div class="stat-card">
    <div class="stat-label">Monthly spend</div>
    <div class="stat-value purple">{format_currency(summary['totalMonthly'])}</div>
    <div class="stat-sub">{format_currency(summary['totalYearly'])} / yr</div>
  </div>
  <div class="stat-card green">
    <div class="stat-label">Active subscriptions</div>
    <div class="stat-value green">{summary['activeCount']}</div>
    <div class="stat-sub">avg {format_currency(summary['averageMonthly'])}/mo</div>
  </div>
  <div class="stat-card orange">
    <div class="stat-label">Due this week</div>
    <div class="stat-value orange">{summary['dueThisWeek']}</div>
    <div class="stat-sub">{format_currency(summary['dueThisWeekAmount'])} · next: {next_sub}</div>
  </div>
</div>
""", unsafe_allow_html=True)
    if summary["skippedCount"]:
        st.warning(f"{summary['skippedCount']} subscription(s) have invalid data and are left out of these totals.")


def render_charts(summary: dict):
    categories = [c for c in summary["categories"] if c["amount"] > 0]
    cycles = summary["billingCycles"]
    if not categories:
        return
    st.markdown('<div class="section-header">📈 Spending Analytics</div>', unsafe_allow_html=True)
    ch_left, ch_right = st.columns([3, 2])

    with ch_left:
        fig = go.Figure(go.Bar(
            x=list(cycles.keys()), y=list(cycles.values()),
            marker_color="#635bff",
            hovertemplate="<b>%{x}</b><br>%{y} subscriptions<extra></extra>",
        ))
        fig.update_layout(
            title=dict(text="By Billing Cycle", font=dict(size=12, color="#525f7f")),
            plot_bgcolor="#ffffff", paper_bgcolor="#ffffff",
            margin=dict(l=0, r=0, t=36, b=0), height=220,
            font=dict(family="sans-serif", color="#525f7f", size=11),
            yaxis=dict(gridcolor="#e3e8ee", zeroline=False, dtick=1),
            xaxis=dict(gridcolor="rgba(0,0,0,0)"),
            bargap=0.35,
        )
        st.plotly_chart(fig, use_container_width=True, config={"displayModeBar": False})

    with ch_right:
        fig2 = go.Figure(go.Pie(
            labels=[c["name"] for c in categories],
            values=[c["amount"] for c in categories],
            hole=0.58,
            marker=dict(colors=CHART_COLORS[:len(categories)], line=dict(color="#ffffff", width=2)),
            textinfo="percent",
            hovertemplate="<b>%{label}</b><br>$%{value:,.2f}/mo<extra></extra>",
        ))
        fig2.update_layout(
            title=dict(text="By Category", font=dict(size=12, color="#525f7f")),
            plot_bgcolor="#ffffff", paper_bgcolor="#ffffff",
            margin=dict(l=0, r=0, t=36, b=0), height=220,
            font=dict(family="sans-serif", color="#525f7f", size=10),
            showlegend=False,
        )
        st.plotly_chart(fig2, use_container_width=True, config={"displayModeBar": False})


def render_renewals(summary: dict):
    st.markdown('<div class="section-header">⏰ Upcoming Renewals</div>', unsafe_allow_html=True)
    if not summary["upcomingRenewals"]:
        st.markdown('<p style="color:#8898aa;font-size:0.85rem;">No renewals in the next 30 days.</p>',
                    unsafe_allow_html=True)
        return
    for r in summary["upcomingRenewals"]:
        st.markdown(f"""
<div class="sub-row">
  <div>
    <div class="sub-merchant">{escape(r['name'])}</div>
    <div class="sub-category">{format_short_date(r['date'])}</div>
  </div>
  <div>
    <div class="sub-amount">{format_currency(r['amount'])}</div>
    <div class="sub-freq"><span class="renewal-pill">{renewal_label(r['daysUntil'])}</span></div>
  </div>
</div>
""", unsafe_allow_html=True)


def render_subscriptions(user: dict, subscriptions: list[dict]):
    st.markdown('<div class="section-header">💳 Your Subscriptions</div>', unsafe_allow_html=True)
    store = get_store()
    for sub in sorted(subscriptions, key=lambda s: s.get("name", "").lower()):
        try:
            price = format_currency(parse_price(sub.get("price")))
            monthly = f"{format_currency(money(subscription_monthly_cost(sub)))}/mo"
        except InvalidSubscription:
            price, monthly = "—", "invalid price"
        row, action = st.columns([6, 1])
        with row:
            st.markdown(f"""
<div class="sub-row">
  <div>
    <div class="sub-merchant">{escape(sub.get('name', ''))}</div>
    <div class="sub-category">{escape(sub.get('category') or '')} · next {format_short_date(sub.get('nextPayment') or '')}</div>
  </div>
  <div>
    <div class="sub-amount">{price}</div>
    <div class="sub-freq">{escape(sub.get('billingCycle') or '')} · {monthly}</div>
  </div>
</div>
""", unsafe_allow_html=True)
        with action:
            if st.button("🗑", key=f"del_{sub['_id']}", type="secondary"):
                archive_subscription(store, sub, "individual")
                rebuild_registry(store, user["_id"])
                st.rerun()


def render_dashboard(user: dict):
    store = get_store()
    subscriptions = store.find("subscriptions", userId=user["_id"])
    summary = dashboard_summary(subscriptions)

    nav_l, nav_r = st.columns([3, 1])
    with nav_l:
        st.markdown(f"<p style='color:#525f7f;'>Signed in as <strong>{escape(user['email'])}</strong></p>",
                    unsafe_allow_html=True)
    with nav_r:
        if st.button("Sign out", type="secondary"):
            revoke_session(get_store(), st.session_state.token)
            st.session_state.token = None
            st.rerun()

    render_stats(summary)
    if st.button("➕ Add subscription", use_container_width=True):
        dialog_add_subscription(user)
    render_charts(summary)
    render_renewals(summary)
    if subscriptions:
        render_subscriptions(user, subscriptions)


# ── Router ────────────────────────────────────────────────────────────────────
render_header()
user = current_user()
if user is None:
    render_auth()
else:
    render_dashboard(user)
