"""
utils.py
Validation, dates, member tables / revenue summaries (pandas), sample data.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pandas as pd

import actions
import db
import membership
import repository
from models import (
    ACTIVE,
    DEBT,
    EXPIRED,
    EXPIRING_SOON,
    FROZEN,
    MEMBER_STATUSES,
    NO_PLAN,
    PACKAGE,
    PLAN_TYPES,
    SINGLE,
    SUBSCRIPTION,
    UNLIMITED_DAYS,
    Member,
    TransactionItem,
)

MEMBER_FILTERS = {
    "all": "All",
    "active": "Active",
    "expiring": "Expiring soon",
    "expired": "Expired",
    "frozen": "Frozen",
    "single": "Single session",
    "package": "Package",
    "no_plan": "No plan",
}

MEMBER_COLUMNS = [
    "id", "name", "phone", "plan_name", "plan_type", "status",
    "plan_start_at", "expires_at", "days_left", "sessions", "debt",
]


def format_date(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%d/%m/%Y")


def format_money(amount: float, currency: str = "DT") -> str:
    return f"{amount:.3f} {currency}"


def parse_amount(value) -> float:
    """float() with a readable error; rejects negatives."""
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValueError("Amount must be numeric.") from None
    if amount < 0:
        raise ValueError("Amount must be >= 0.")
    return amount


# ---------- Validation ----------

def validate_member_inputs(name: str, phone: str, email: str = "") -> list[str]:
    errors: list[str] = []
    if not name.strip():
        errors.append("Name is required.")
    if not phone.strip():
        errors.append("Phone is required.")
    if email.strip() and "@" not in email:
        errors.append("Email address is not valid.")
    return errors


def normalize_plan(plan_type: str, duration_days: float, sessions: int) -> tuple[float, int]:
    """(duration_days, sessions) as stored for each plan type."""
    if plan_type == SINGLE:
        return 0, 1
    if plan_type == PACKAGE:
        return 0, int(sessions)
    return float(duration_days), 0


def validate_plan_inputs(name: str, plan_type: str, duration_days, sessions, price) -> list[str]:
    errors: list[str] = []
    if not name.strip():
        errors.append("Plan name is required.")
    if plan_type not in PLAN_TYPES:
        errors.append(f"Plan type must be one of: {', '.join(PLAN_TYPES)}.")
    try:
        parse_amount(price)
    except ValueError:
        errors.append("Price must be a number >= 0.")
    try:
        duration = float(duration_days)
        if plan_type == SUBSCRIPTION and duration <= 0 and duration != UNLIMITED_DAYS:
            errors.append("Duration must be > 0 days (or -1 for unlimited).")
    except (TypeError, ValueError):
        errors.append("Duration must be numeric.")
    try:
        count = int(sessions)
        if plan_type == PACKAGE and count < 2:
            errors.append("A package needs at least 2 sessions.")
    except (TypeError, ValueError):
        errors.append("Sessions must be a whole number.")
    return errors


def validate_service_inputs(name: str, price) -> list[str]:
    errors: list[str] = []
    if not name.strip():
        errors.append("Service name is required.")
    try:
        parse_amount(price)
    except ValueError:
        errors.append("Price must be a number >= 0.")
    return errors


# ---------- Member tables ----------

def matches_filter(member: Member, filter_key: str, now: datetime | None = None) -> bool:
    status = membership.member_status(member, now)
    plan_type = membership.plan_type_of(member)
    if filter_key == "active":
        return status == ACTIVE
    if filter_key == "expiring":
        return status == EXPIRING_SOON
    if filter_key == "expired":
        return status == EXPIRED
    if filter_key == "frozen":
        return status == FROZEN
    if filter_key == "single":
        return plan_type == SINGLE
    if filter_key == "package":
        return plan_type == PACKAGE
    if filter_key == "no_plan":
        return status == NO_PLAN
    return True


def filter_members(members: list[Member], filter_key: str = "all", now: datetime | None = None) -> list[Member]:
    return [m for m in members if matches_filter(m, filter_key, now)]


def members_frame(members: list[Member], now: datetime | None = None) -> pd.DataFrame:
    now = now or datetime.now(timezone.utc)
    rows = []
    for m in members:
        plan_type = membership.plan_type_of(m)
        sessions = ""
        if plan_type in (PACKAGE, SINGLE):
            sessions = f"{membership.sessions_remaining(m)} / {m.sessions_total}"
        days = None
        if plan_type == SUBSCRIPTION and m.expires_at is not None:
            days = max(0, membership.days_left(m.expires_at, now))
        rows.append({
            "id": m.id,
            "name": m.name,
            "phone": m.phone,
            "plan_name": m.plan_name or "",
            "plan_type": plan_type or "",
            "status": membership.member_status(m, now),
            "plan_start_at": format_date(m.plan_start_at) if m.plan_start_at else "-",
            "expires_at": format_date(m.expires_at) if m.expires_at else "-",
            "days_left": days,
            "sessions": sessions,
            "debt": round(m.debt, 3),
        })
    return pd.DataFrame(rows, columns=MEMBER_COLUMNS)


def status_counts(members: list[Member], now: datetime | None = None) -> dict[str, int]:
    counts = {s: 0 for s in MEMBER_STATUSES}
    for m in members:
        counts[membership.member_status(m, now)] += 1
    return counts


def history_frame(entries) -> pd.DataFrame:
    df = pd.DataFrame([
        {
            "date": e.created_at.astimezone().strftime("%d/%m/%Y %H:%M"),
            "type": e.type,
            "plan": e.plan_name or "",
            "amount": e.amount,
            "payment": e.payment_method or "",
            "sessions": (
                f"{e.sessions_before} -> {e.sessions_after}"
                if e.sessions_before is not None and e.sessions_after is not None else ""
            ),
            "notes": e.notes or "",
        }
        for e in entries
    ])
    if df.empty:
        return pd.DataFrame(columns=["date", "type", "plan", "amount", "payment", "sessions", "notes"])
    return df


def transactions_frame(transactions) -> pd.DataFrame:
    columns = ["date", "type", "member_id", "payment", "amount", "discount", "items", "notes"]
    rows = [
        {
            "date": t.created_at.astimezone().strftime("%d/%m/%Y %H:%M"),
            "type": t.type,
            "member_id": t.member_id,
            "payment": t.payment_method,
            "amount": t.amount,
            "discount": t.discount,
            "items": ", ".join(f"{i.quantity} x {i.name}" for i in t.items),
            "notes": t.notes or "",
        }
        for t in transactions
    ]
    return pd.DataFrame(rows, columns=columns)


def sale_items_from_frame(df: pd.DataFrame) -> list[TransactionItem]:
    """Cart rows (name, quantity, price) edited in the UI; blank names are skipped."""
    items: list[TransactionItem] = []
    for row in df.to_dict("records"):
        row = {k: (None if pd.isna(v) else v) for k, v in row.items()}
        name = str(row.get("name") or "").strip()
        if not name:
            continue
        items.append(TransactionItem(
            product_id=None,
            name=name,
            quantity=int(row.get("quantity") or 0),
            price=parse_amount(row.get("price") or 0),
        ))
    return items


# ---------- Revenue ----------

def revenue_summary_by_month(business_id: int) -> pd.DataFrame:
    """Money actually received per month: credit (debt) sales excluded, repayments included."""
    rows = db.fetch_all(
        """
        SELECT substr(created_at, 1, 7) AS month, SUM(amount) AS revenue
        FROM transactions
        WHERE business_id = ? AND payment_method != ?
        GROUP BY substr(created_at, 1, 7)
        ORDER BY month DESC
        """,
        (business_id, DEBT),
    )
    df = pd.DataFrame([dict(r) for r in rows])
    if df.empty:
        return pd.DataFrame(columns=["month", "revenue"])
    df["revenue"] = df["revenue"].round(3)
    return df


def current_month_revenue(business_id: int, today: date | None = None) -> float:
    today = today or datetime.now(timezone.utc).date()
    df = revenue_summary_by_month(business_id)
    match = df[df["month"] == today.strftime("%Y-%m")]
    if match.empty:
        return 0.0
    return float(match["revenue"].iloc[0])


def total_debt(members: list[Member]) -> float:
    return round(sum(m.debt for m in members), 3)


# ---------- Sample data ----------

def insert_sample_data(business_id: int) -> None:
    """
    Insert sample plans, a service and a few members covering each plan type
    (safe to run multiple times: adds new rows each time).
    """
    monthly = repository.save_plan(business_id, "Monthly", SUBSCRIPTION, 30, 0, 50.0)
    weekly = repository.save_plan(business_id, "Weekly", SUBSCRIPTION, 7, 0, 15.0)
    ten_pack = repository.save_plan(business_id, "10 sessions", PACKAGE, 0, 10, 80.0)
    single = repository.save_plan(business_id, "Single session", SINGLE, 0, 1, 10.0)
    repository.save_plan(business_id, "Unlimited", SUBSCRIPTION, UNLIMITED_DAYS, 0, 400.0)
    repository.save_service(business_id, "Massage", 25.0, duration_minutes=30)

    now = datetime.now(timezone.utc)
    actions.create_member(business_id, "Ahmed Hassan", "55000001", plan_id=monthly)
    # Expiring in ~5 days
    actions.create_member(business_id, "Mona Ali", "55000002", plan_id=weekly, now=now - timedelta(days=2))
    # Expired
    actions.create_member(business_id, "Omar Samy", "55000003", plan_id=weekly, now=now - timedelta(days=20))
    actions.create_member(business_id, "Sara Ben Salah", "55000004", plan_id=ten_pack, payment_method=DEBT)
    actions.create_member(business_id, "Youssef Trabelsi", "55000005", plan_id=single)
    actions.create_member(business_id, "Lina Gharbi", "55000006")
