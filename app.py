"""
app.py
Streamlit point-of-sale for memberships (gyms, studios, clubs).
Run: streamlit run app.py
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

import pandas as pd
import streamlit as st

import actions
import auth
import db
import membership
import repository
import utils
from config import settings, setup_logging
from membership import MembershipError
from models import CASH, DEBT, PACKAGE, PAYMENT_METHODS, PLAN_TYPES, SINGLE, SUBSCRIPTION, UNLIMITED_DAYS

logger = logging.getLogger(__name__)

st.set_page_config(page_title=settings.APP_NAME, layout="wide")

PAGES = ["POS", "New member", "Sales", "Dashboard", "Credit", "Plans", "Services", "Settings"]

STATUS_LABELS = {
    "active": "🟢 Active",
    "expiring_soon": "🟡 Expiring soon",
    "expired": "🔴 Expired",
    "frozen": "❄️ Frozen",
    "single_available": "⚡ Session available",
    "single_used": "⚡ Session used",
    "no_plan": "⚪ No plan",
}


@dataclass
class AppState:
    """Per-browser-session state, kept in st.session_state["app"]."""
    business_id: int | None = None
    username: str | None = None
    page: str = "POS"
    selected_member_id: int | None = None

    @property
    def logged_in(self) -> bool:
        return self.business_id is not None


def init_once():
    setup_logging()
    # Initialize DB + default business account if needed
    db.init_db(auth.hash_password(settings.DEFAULT_ADMIN_PASSWORD))


def state() -> AppState:
    if "app" not in st.session_state:
        st.session_state.app = AppState()
    return st.session_state.app


def run_action(label: str, fn, *args, **kwargs) -> bool:
    """Run one member operation; any failure becomes an error banner."""
    try:
        fn(*args, **kwargs)
    except (MembershipError, actions.NotFoundError) as exc:
        st.error(str(exc))
        return False
    except sqlite3.Error as exc:
        logger.exception("%s failed", label)
        st.error(f"{label} failed: {exc}")
        return False
    st.success(f"{label} done.")
    return True


def show_errors(errors: list[str]) -> bool:
    for e in errors:
        st.error(e)
    return bool(errors)


# ---------- Auth screens ----------

def login_screen():
    st.title(f"🔐 {settings.APP_NAME}")

    tab_login, tab_register = st.tabs(["Login", "Register business"])
    with tab_login:
        username = st.text_input("Username", value=settings.DEFAULT_ADMIN_USERNAME)
        password = st.text_input("Password", type="password")
        if st.button("Login", type="primary"):
            business = auth.login(username.strip(), password)
            if business:
                app = state()
                app.business_id = business["id"]
                app.username = business["username"]
                st.rerun()
            else:
                st.error("Invalid username or password.")

    with tab_register:
        new_user = st.text_input("New username")
        business_name = st.text_input("Business name")
        p1 = st.text_input("Password ", type="password")
        p2 = st.text_input("Confirm password", type="password")
        if st.button("Create account"):
            if show_errors(auth.validate_new_password(p1, p2)):
                return
            try:
                auth.register_business(new_user, business_name, p1)
            except ValueError as exc:
                st.error(str(exc))
            else:
                st.success("Account created. You can log in now.")


def force_change_password_screen():
    st.title("⚠️ Change Password (Required)")

    st.warning("You must change the default password before using the app.")
    new1 = st.text_input("New password", type="password")
    new2 = st.text_input("Confirm new password", type="password")

    if st.button("Update password", type="primary"):
        if show_errors(auth.validate_new_password(new1, new2)):
            return
        auth.change_password(state().business_id, new1)
        st.success("Password updated. You can continue.")
        st.rerun()


# ---------- POS ----------

def plan_label(plan) -> str:
    if plan.plan_type == SUBSCRIPTION:
        term = "unlimited" if plan.is_unlimited else f"{plan.duration_days:g} days"
    elif plan.plan_type == PACKAGE:
        term = f"{plan.sessions} sessions"
    else:
        term = "single session"
    return f"{plan.name} ({term}) - {utils.format_money(plan.price, settings.CURRENCY)}"


def pos_page():
    app = state()
    st.header("🧾 Point of Sale")

    members = repository.fetch_members(app.business_id)
    with st.sidebar:
        st.subheader("Search & Filters")
        search = st.text_input("Search (name/phone)")
        filter_key = st.selectbox(
            "Show", options=list(utils.MEMBER_FILTERS), format_func=utils.MEMBER_FILTERS.get
        )

    if search.strip():
        members = repository.fetch_members(app.business_id, search=search)
    members = utils.filter_members(members, filter_key)

    st.caption(f"{len(members)} members")
    df = utils.members_frame(members)
    df["status"] = df["status"].map(STATUS_LABELS)
    st.dataframe(df, use_container_width=True, hide_index=True)

    if not members:
        return

    options = {f"{m.name} ({m.phone}) - ID {m.id}": m.id for m in members}
    ids = list(options.values())
    index = ids.index(app.selected_member_id) if app.selected_member_id in ids else 0
    chosen = st.selectbox("Member", list(options.keys()), index=index)
    app.selected_member_id = options[chosen]

    st.divider()
    member_panel(app.business_id, app.selected_member_id)


def member_panel(business_id: int, member_id: int):
    member = repository.get_member(business_id, member_id)
    if member is None:
        st.warning("Member no longer exists.")
        return

    status = membership.member_status(member)
    plan_type = membership.plan_type_of(member)

    st.subheader(f"{member.name}  ·  {STATUS_LABELS[status]}")
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Plan", member.plan_name or "-")
    if plan_type == SUBSCRIPTION:
        if member.expires_at:
            c2.metric("Expires", utils.format_date(member.expires_at))
            c3.metric("Days left", max(0, membership.days_left(member.expires_at)))
        else:
            c2.metric("Expires", "∞ unlimited")
    elif plan_type in (PACKAGE, SINGLE):
        c2.metric("Sessions left", f"{max(0, membership.sessions_remaining(member))} / {member.sessions_total}")
    if member.debt > 0:
        c4.metric("Debt", utils.format_money(member.debt, settings.CURRENCY))

    tab_actions, tab_plan, tab_history, tab_contact = st.tabs(
        ["Actions", "Change plan / renew", "History", "Contact"]
    )

    with tab_actions:
        col1, col2 = st.columns(2)
        with col1:
            if membership.can_use_session(member) and st.button("✅ Use session", type="primary"):
                if run_action("Use session", actions.use_session, business_id, member.id):
                    st.rerun()
            if plan_type in (PACKAGE, SINGLE):
                count = st.number_input("Sessions to add", min_value=1, value=1, step=1)
                if st.button("➕ Add sessions"):
                    if run_action("Add sessions", actions.add_sessions, business_id, member.id, int(count)):
                        st.rerun()

            services = repository.fetch_services(business_id, active_only=True)
            if services:
                svc = {f"{s.name} - {utils.format_money(s.price, settings.CURRENCY)}": s.id for s in services}
                chosen = st.selectbox("Service", list(svc.keys()))
                if st.button("✨ Add service"):
                    if run_action("Add service", actions.add_service, business_id, member.id, svc[chosen]):
                        st.rerun()

        with col2:
            if plan_type == SUBSCRIPTION:
                if member.is_frozen:
                    if st.button("▶️ Unfreeze"):
                        if run_action("Unfreeze", actions.unfreeze, business_id, member.id):
                            st.rerun()
                else:
                    reason = st.text_input("Freeze reason (optional)")
                    if st.button("❄️ Freeze"):
                        if run_action("Freeze", actions.freeze, business_id, member.id, reason):
                            st.rerun()

            if member.has_plan and status not in ("expired", "single_used"):
                confirm = st.checkbox("Confirm cancellation", value=False, key=f"cancel_{member.id}")
                if st.button("❌ Cancel subscription", disabled=not confirm):
                    if run_action("Cancel", actions.cancel, business_id, member.id):
                        st.rerun()

            if member.debt > 0:
                amount = st.text_input("Repay amount", value=f"{member.debt:.3f}", key=f"repay_{member.id}")
                if st.button("💵 Pay debt"):
                    try:
                        value = utils.parse_amount(amount)
                    except ValueError as exc:
                        st.error(str(exc))
                    else:
                        if run_action("Debt payment", actions.pay_debt, business_id, member.id, value):
                            st.rerun()

    with tab_plan:
        if member.has_plan and membership.needs_renewal(member):
            st.info(f"Renew **{member.plan_name}**")
            r1, r2 = st.columns(2)
            if r1.button("🔁 Renew (cash)"):
                if run_action("Renewal", actions.renew, business_id, member.id, CASH):
                    st.rerun()
            if r2.button("🔁 Renew (add to debt)"):
                if run_action("Renewal", actions.renew, business_id, member.id, DEBT):
                    st.rerun()

        plans = repository.fetch_plans(business_id, active_only=True)
        if not plans:
            st.caption("No active plans. Create one on the Plans page.")
        else:
            labels = {plan_label(p): p.id for p in plans}
            chosen = st.radio("Plan", list(labels.keys()))
            p1, p2 = st.columns(2)
            if p1.button("Confirm (cash)", type="primary"):
                if run_action("Plan change", actions.change_plan, business_id, member.id, labels[chosen], CASH):
                    st.rerun()
            if p2.button("Confirm (add to debt)"):
                if run_action("Plan change", actions.change_plan, business_id, member.id, labels[chosen], DEBT):
                    st.rerun()

    with tab_history:
        entries = repository.fetch_history(business_id, member.id, limit=settings.HISTORY_LIMIT)
        if entries:
            st.dataframe(utils.history_frame(entries), use_container_width=True, hide_index=True)
        else:
            st.caption("No history yet.")

    with tab_contact:
        name = st.text_input("Name", value=member.name, key=f"name_{member.id}")
        phone = st.text_input("Phone", value=member.phone, key=f"phone_{member.id}")
        email = st.text_input("Email", value=member.email or "", key=f"email_{member.id}")
        notes = st.text_area("Notes", value=member.notes or "", key=f"notes_{member.id}")
        if st.button("Save contact"):
            if show_errors(utils.validate_member_inputs(name, phone, email)):
                return
            repository.update_member_contact(
                business_id, member.id, name.strip(), phone.strip(), email.strip() or None, notes.strip() or None
            )
            st.success("Member updated.")
            st.rerun()


def new_member_page():
    app = state()
    st.header("➕ New member")

    name = st.text_input("Name *")
    phone = st.text_input("Phone *")
    email = st.text_input("Email")
    notes = st.text_area("Notes")

    plans = repository.fetch_plans(app.business_id, active_only=True)
    labels = {"(no plan)": None}
    labels.update({plan_label(p): p.id for p in plans})
    chosen = st.selectbox("Plan", list(labels.keys()))
    method = st.radio("Payment", [CASH, DEBT], horizontal=True, disabled=labels[chosen] is None)

    if st.button("Create", type="primary"):
        if show_errors(utils.validate_member_inputs(name, phone, email)):
            return
        ok = run_action(
            "Create member",
            actions.create_member,
            app.business_id,
            name.strip(),
            phone.strip(),
            email=email.strip() or None,
            notes=notes.strip() or None,
            plan_id=labels[chosen],
            payment_method=method,
        )
        if ok:
            app.page = "POS"
            st.rerun()


# ---------- Back office ----------

def dashboard_page():
    app = state()
    st.header("📊 Dashboard")

    members = repository.fetch_members(app.business_id)
    counts = utils.status_counts(members)

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Active", counts["active"])
    c2.metric(f"Expiring in {settings.EXPIRING_SOON_DAYS} days", counts["expiring_soon"])
    c3.metric("Expired", counts["expired"])
    c4.metric("Frozen", counts["frozen"])

    c5, c6 = st.columns(2)
    c5.metric("Revenue (current month)", utils.format_money(utils.current_month_revenue(app.business_id), settings.CURRENCY))
    c6.metric("Outstanding debt", utils.format_money(utils.total_debt(members), settings.CURRENCY))

    st.divider()

    st.subheader("Expiring soon")
    soon = utils.filter_members(members, "expiring")
    if soon:
        st.dataframe(utils.members_frame(soon), use_container_width=True, hide_index=True)
    else:
        st.caption(f"No members expiring in the next {settings.EXPIRING_SOON_DAYS} days.")

    st.subheader("Revenue by month")
    st.dataframe(utils.revenue_summary_by_month(app.business_id), use_container_width=True, hide_index=True)


def credit_page():
    app = state()
    st.header("💳 Credit")

    debtors = repository.fetch_debtors(app.business_id)
    st.metric("Total outstanding", utils.format_money(utils.total_debt(debtors), settings.CURRENCY))
    if not debtors:
        st.caption("Nobody owes anything.")
        return

    st.dataframe(utils.members_frame(debtors)[["id", "name", "phone", "plan_name", "debt"]],
                 use_container_width=True, hide_index=True)

    options = {f"{m.name} ({m.phone}) - {m.debt:.3f}": m for m in debtors}
    chosen = options[st.selectbox("Member", list(options.keys()))]
    full = st.toggle("Full payment", value=True)
    amount = st.text_input("Amount", value=f"{chosen.debt:.3f}", disabled=full)
    if st.button("Record payment", type="primary"):
        try:
            value = chosen.debt if full else utils.parse_amount(amount)
        except ValueError as exc:
            st.error(str(exc))
            return
        if run_action("Debt payment", actions.pay_debt, app.business_id, chosen.id, value):
            st.rerun()


def sales_page():
    app = state()
    st.header("🛒 Sales")

    st.subheader("New sale")
    cart = st.data_editor(
        pd.DataFrame([{"name": "", "quantity": 1, "price": 0.0}]),
        num_rows="dynamic",
        use_container_width=True,
        key="sale_cart",
    )
    customers = {"(walk-in)": None}
    customers.update({f"{m.name} ({m.phone}) #{m.id}": m.id for m in repository.fetch_members(app.business_id)})
    c1, c2, c3 = st.columns(3)
    customer = c1.selectbox("Customer", list(customers.keys()), key="sale_customer")
    payment_method = c2.selectbox("Payment method", PAYMENT_METHODS, key="sale_payment")
    discount = c3.number_input("Discount", min_value=0.0, value=0.0, step=0.5, key="sale_discount")
    if payment_method == DEBT:
        st.caption("Sales on credit are added to the customer's debt.")
    notes = st.text_input("Notes", key="sale_notes")

    if st.button("Record sale"):
        try:
            items = utils.sale_items_from_frame(cart)
            repository.record_sale(app.business_id, items, payment_method, discount, notes.strip() or None,
                                  member_id=customers[customer])
        except (ValueError, LookupError) as exc:
            st.error(str(exc))
        else:
            st.success("Sale recorded.")
            st.rerun()

    st.divider()
    st.subheader("Recent transactions")
    transactions = repository.fetch_transactions(app.business_id)[: settings.HISTORY_LIMIT]
    st.dataframe(utils.transactions_frame(transactions), use_container_width=True, hide_index=True)


def plans_page():
    app = state()
    st.header("📋 Plans")

    plans = repository.fetch_plans(app.business_id)
    for plan in plans:
        c1, c2, c3 = st.columns([4, 1, 1])
        c1.write(f"{'✅' if plan.is_active else '⏸️'} {plan_label(plan)}")
        if c2.button("Deactivate" if plan.is_active else "Activate", key=f"toggle_{plan.id}"):
            repository.set_plan_active(app.business_id, plan.id, not plan.is_active)
            st.rerun()
        if c3.button("Delete", key=f"delete_{plan.id}"):
            repository.delete_plan(app.business_id, plan.id)
            st.rerun()

    st.divider()

    st.subheader("Add / edit plan")
    editing = {"(new plan)": None}
    editing.update({p.name: p for p in plans})
    existing = editing[st.selectbox("Plan", list(editing.keys()))]

    name = st.text_input("Name", value=existing.name if existing else "")
    plan_type = st.selectbox(
        "Type", PLAN_TYPES, index=PLAN_TYPES.index(existing.plan_type) if existing else 0
    )
    duration = st.number_input(
        f"Duration in days ({UNLIMITED_DAYS} = unlimited, fractions allowed)",
        value=float(existing.duration_days) if existing and plan_type == SUBSCRIPTION else 30.0,
        disabled=plan_type != SUBSCRIPTION,
    )
    sessions = st.number_input(
        "Sessions", min_value=0, step=1,
        value=int(existing.sessions) if existing and plan_type == PACKAGE else 10,
        disabled=plan_type != PACKAGE,
    )
    price = st.text_input("Price", value=str(existing.price) if existing else "0")
    is_active = st.checkbox("Active", value=existing.is_active if existing else True)

    if st.button("Save plan", type="primary"):
        if show_errors(utils.validate_plan_inputs(name, plan_type, duration, sessions, price)):
            return
        duration_days, session_count = utils.normalize_plan(plan_type, duration, sessions)
        repository.save_plan(
            app.business_id, name.strip(), plan_type, duration_days, session_count,
            float(price), is_active, plan_id=existing.id if existing else None,
        )
        st.success("Plan saved.")
        st.rerun()


def services_page():
    app = state()
    st.header("✨ Services")

    for svc in repository.fetch_services(app.business_id):
        c1, c2 = st.columns([5, 1])
        c1.write(f"{'✅' if svc.is_active else '⏸️'} {svc.name} - {utils.format_money(svc.price, settings.CURRENCY)}")
        if c2.button("Deactivate" if svc.is_active else "Activate", key=f"svc_{svc.id}"):
            repository.set_service_active(app.business_id, svc.id, not svc.is_active)
            st.rerun()

    st.divider()
    name = st.text_input("Name")
    price = st.text_input("Price", value="0")
    minutes = st.number_input("Duration (minutes)", min_value=0, step=5, value=30)
    if st.button("Add service", type="primary"):
        if show_errors(utils.validate_service_inputs(name, price)):
            return
        repository.save_service(app.business_id, name.strip(), float(price), int(minutes))
        st.rerun()


def settings_page():
    app = state()
    st.header("⚙️ Settings")

    st.subheader("Change password")
    p1 = st.text_input("New password", type="password")
    p2 = st.text_input("Confirm new password", type="password")
    if st.button("Update password", type="primary"):
        if not show_errors(auth.validate_new_password(p1, p2)):
            auth.change_password(app.business_id, p1)
            st.success("Password updated.")

    st.divider()

    st.subheader("Sample data")
    st.caption("Insert sample plans, a service and members of every plan type (adds new rows each run).")
    if st.button("Insert sample data"):
        utils.insert_sample_data(app.business_id)
        st.success("Sample data inserted.")
        st.rerun()


def main_app():
    app = state()
    st.sidebar.title(f"🏋️ {settings.APP_NAME}")
    st.sidebar.caption(f"Logged in as: {app.username}")

    app.page = st.sidebar.radio("Navigate", PAGES, index=PAGES.index(app.page))

    if st.sidebar.button("Logout"):
        st.session_state.app = AppState()
        st.rerun()

    {
        "POS": pos_page,
        "New member": new_member_page,
        "Sales": sales_page,
        "Dashboard": dashboard_page,
        "Credit": credit_page,
        "Plans": plans_page,
        "Services": services_page,
        "Settings": settings_page,
    }[app.page]()


# --------- App entry ---------

def run():
    init_once()

    app = state()
    if not app.logged_in:
        login_screen()
        return

    # Force password change on first login of the default account
    if db.is_force_password_change(app.business_id):
        force_change_password_screen()
        return

    main_app()


if __name__ == "__main__":
    run()
