"""
repository.py
Tenant-scoped reads/writes. Every query filters on business_id.
"""

from __future__ import annotations

import json
import logging
import sqlite3

import db
from membership import Change
from models import (
    DEBT,
    PAYMENT_METHODS,
    TX_RETAIL,
    HistoryEntry,
    Member,
    Service,
    SubscriptionPlan,
    Transaction,
    TransactionItem,
)

logger = logging.getLogger(__name__)

_MEMBER_COLUMNS = (
    "plan_id", "plan_name", "plan_type", "plan_start_at", "expires_at",
    "sessions_total", "sessions_used", "is_frozen", "frozen_at", "debt",
)
_HISTORY_COLUMNS = (
    "plan_id", "plan_name", "type", "amount", "payment_method", "sessions_added",
    "sessions_before", "sessions_after", "expires_before", "expires_after",
    "old_plan_id", "old_plan_name", "new_plan_id", "new_plan_name", "notes",
)
_TRANSACTION_COLUMNS = ("type", "payment_method", "amount", "discount", "notes", "items")


def _insert(conn: sqlite3.Connection, table: str, values: dict) -> int:
    cols = ", ".join(values)
    marks = ", ".join("?" for _ in values)
    cur = conn.execute(f"INSERT INTO {table}({cols}) VALUES({marks})", tuple(values.values()))
    return cur.lastrowid


def _checked(values: dict, allowed: tuple[str, ...]) -> dict:
    unknown = set(values) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown columns: {sorted(unknown)}")
    return values


# ---------- Members ----------

def fetch_members(business_id: int, search: str = "") -> list[Member]:
    sql = "SELECT * FROM members WHERE business_id = ?"
    params: list = [business_id]
    if search.strip():
        sql += " AND (LOWER(name) LIKE ? OR phone LIKE ?)"
        like = f"%{search.strip().lower()}%"
        params.extend([like, f"%{search.strip()}%"])
    sql += " ORDER BY name COLLATE NOCASE ASC, id ASC"
    return [Member.from_row(r) for r in db.fetch_all(sql, tuple(params))]


def get_member(business_id: int, member_id: int) -> Member | None:
    row = db.fetch_one("SELECT * FROM members WHERE id = ? AND business_id = ?", (member_id, business_id))
    return Member.from_row(row) if row else None


def fetch_debtors(business_id: int) -> list[Member]:
    rows = db.fetch_all(
        "SELECT * FROM members WHERE business_id = ? AND debt > 0 ORDER BY debt DESC, id ASC",
        (business_id,),
    )
    return [Member.from_row(r) for r in rows]


def _write_change(conn: sqlite3.Connection, business_id: int, member_id: int, change: Change) -> None:
    if change.member_updates:
        updates = _checked(dict(change.member_updates), _MEMBER_COLUMNS)
        assignments = ", ".join(f"{c} = ?" for c in updates)
        cur = conn.execute(
            f"UPDATE members SET {assignments}, updated_at = {db.NOW_SQL} WHERE id = ? AND business_id = ?",
            (*updates.values(), member_id, business_id),
        )
        if cur.rowcount != 1:
            raise LookupError(f"Member {member_id} not found")

    history = _checked(dict(change.history), _HISTORY_COLUMNS)
    _insert(conn, "subscription_history", {"business_id": business_id, "member_id": member_id, **history})

    if change.transaction is not None:
        tx = _checked(dict(change.transaction), _TRANSACTION_COLUMNS)
        _insert(conn, "transactions", {"business_id": business_id, "member_id": member_id, **tx})


def apply_change(business_id: int, member_id: int, change: Change) -> None:
    """Member update + ledger row + transaction row, committed together or not at all."""
    with db.get_conn() as conn:
        _write_change(conn, business_id, member_id, change)


def create_member(
    business_id: int,
    name: str,
    phone: str,
    email: str | None = None,
    notes: str | None = None,
    change: Change | None = None,
) -> int:
    with db.get_conn() as conn:
        member_id = _insert(
            conn,
            "members",
            {"business_id": business_id, "name": name, "phone": phone, "email": email, "notes": notes},
        )
        if change is not None:
            _write_change(conn, business_id, member_id, change)
    return member_id


def update_member_contact(business_id: int, member_id: int, name: str, phone: str,
                          email: str | None, notes: str | None) -> None:
    db.execute(
        f"""
        UPDATE members SET name=?, phone=?, email=?, notes=?, updated_at={db.NOW_SQL}
        WHERE id=? AND business_id=?
        """,
        (name, phone, email, notes, member_id, business_id),
    )


# ---------- Plans ----------

def fetch_plans(business_id: int, active_only: bool = False) -> list[SubscriptionPlan]:
    sql = "SELECT * FROM subscription_plans WHERE business_id = ?"
    if active_only:
        sql += " AND is_active = 1"
    sql += " ORDER BY plan_type, price ASC, id ASC"
    return [SubscriptionPlan.from_row(r) for r in db.fetch_all(sql, (business_id,))]


def get_plan(business_id: int, plan_id: int) -> SubscriptionPlan | None:
    row = db.fetch_one(
        "SELECT * FROM subscription_plans WHERE id = ? AND business_id = ?", (plan_id, business_id)
    )
    return SubscriptionPlan.from_row(row) if row else None


def save_plan(
    business_id: int,
    name: str,
    plan_type: str,
    duration_days: float,
    sessions: int,
    price: float,
    is_active: bool = True,
    plan_id: int | None = None,
) -> int:
    params = (name, plan_type, duration_days, sessions, price, int(is_active))
    if plan_id is None:
        return db.execute(
            """
            INSERT INTO subscription_plans(name, plan_type, duration_days, sessions, price, is_active, business_id)
            VALUES(?,?,?,?,?,?,?)
            """,
            (*params, business_id),
        )
    db.execute(
        """
        UPDATE subscription_plans SET name=?, plan_type=?, duration_days=?, sessions=?, price=?, is_active=?
        WHERE id=? AND business_id=?
        """,
        (*params, plan_id, business_id),
    )
    return plan_id


def set_plan_active(business_id: int, plan_id: int, is_active: bool) -> None:
    db.execute(
        "UPDATE subscription_plans SET is_active = ? WHERE id = ? AND business_id = ?",
        (int(is_active), plan_id, business_id),
    )


def delete_plan(business_id: int, plan_id: int) -> None:
    db.execute("DELETE FROM subscription_plans WHERE id = ? AND business_id = ?", (plan_id, business_id))


# ---------- Services ----------

def fetch_services(business_id: int, active_only: bool = False) -> list[Service]:
    sql = "SELECT * FROM services WHERE business_id = ?"
    if active_only:
        sql += " AND is_active = 1"
    sql += " ORDER BY name COLLATE NOCASE ASC"
    return [Service.from_row(r) for r in db.fetch_all(sql, (business_id,))]


def get_service(business_id: int, service_id: int) -> Service | None:
    row = db.fetch_one("SELECT * FROM services WHERE id = ? AND business_id = ?", (service_id, business_id))
    return Service.from_row(row) if row else None


def save_service(business_id: int, name: str, price: float, duration_minutes: int = 0,
                 description: str | None = None) -> int:
    return db.execute(
        """
        INSERT INTO services(business_id, name, price, duration_minutes, description)
        VALUES(?,?,?,?,?)
        """,
        (business_id, name, price, duration_minutes, description),
    )


def set_service_active(business_id: int, service_id: int, is_active: bool) -> None:
    db.execute(
        "UPDATE services SET is_active = ? WHERE id = ? AND business_id = ?",
        (int(is_active), service_id, business_id),
    )


# ---------- Ledger / transactions ----------

def fetch_history(business_id: int, member_id: int, limit: int = 50) -> list[HistoryEntry]:
    rows = db.fetch_all(
        """
        SELECT * FROM subscription_history
        WHERE business_id = ? AND member_id = ?
        ORDER BY created_at DESC, id DESC
        LIMIT ?
        """,
        (business_id, member_id, limit),
    )
    return [HistoryEntry.from_row(r) for r in rows]


def fetch_transactions(business_id: int, member_id: int | None = None) -> list[Transaction]:
    sql = "SELECT * FROM transactions WHERE business_id = ?"
    params: list = [business_id]
    if member_id is not None:
        sql += " AND member_id = ?"
        params.append(member_id)
    sql += " ORDER BY created_at DESC, id DESC"
    return [Transaction.from_row(r) for r in db.fetch_all(sql, tuple(params))]


def record_sale(business_id: int, items: list[TransactionItem], payment_method: str,
                discount: float = 0.0, notes: str | None = None, member_id: int | None = None) -> int:
    """
    Retail transaction (no ledger row). A sale on credit needs a member of this
    business, whose debt grows by the sale amount in the same transaction.
    """
    if not items:
        raise ValueError("A sale needs at least one item.")
    if payment_method not in PAYMENT_METHODS:
        raise ValueError(f"Unknown payment method {payment_method!r}.")
    if any(i.quantity < 1 or i.price < 0 for i in items):
        raise ValueError("Item quantities must be >= 1 and prices >= 0.")
    amount = round(sum(i.total_price for i in items) - discount, 3)
    if discount < 0 or amount < 0:
        raise ValueError("Discount must be between 0 and the sale total.")
    if payment_method == DEBT and member_id is None:
        raise ValueError("A sale on credit needs a member.")
    payload = json.dumps([
        {"product_id": i.product_id, "name": i.name, "quantity": i.quantity,
         "price": i.price, "total_price": i.total_price}
        for i in items
    ])
    with db.get_conn() as conn:
        if member_id is not None:
            debt_added = amount if payment_method == DEBT else 0.0
            cur = conn.execute(
                f"UPDATE members SET debt = ROUND(debt + ?, 3), updated_at = {db.NOW_SQL} WHERE id = ? AND business_id = ?",
                (debt_added, member_id, business_id),
            )
            if cur.rowcount != 1:
                raise LookupError(f"Member {member_id} not found")
        tx_id = _insert(conn, "transactions", {
            "business_id": business_id,
            "member_id": member_id,
            "type": TX_RETAIL,
            "payment_method": payment_method,
            "amount": amount,
            "discount": discount,
            "notes": notes,
            "items": payload,
        })
    logger.info("Recorded retail sale %s for business %s (%.3f)", tx_id, business_id, amount)
    return tx_id
