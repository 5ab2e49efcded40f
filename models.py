"""
models.py
Lightweight domain types (plan types, statuses, dataclasses built from DB rows).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone

# Plan types
SUBSCRIPTION = "subscription"  # time-based (duration_days)
PACKAGE = "package"  # N prepaid sessions
SINGLE = "single"  # one session; consumed when bought at member creation
PLAN_TYPES = (SUBSCRIPTION, PACKAGE, SINGLE)

# duration_days value for a subscription that never expires
UNLIMITED_DAYS = -1

# Derived member statuses (never stored)
NO_PLAN = "no_plan"
FROZEN = "frozen"
SINGLE_USED = "single_used"
SINGLE_AVAILABLE = "single_available"
EXPIRED = "expired"
EXPIRING_SOON = "expiring_soon"
ACTIVE = "active"
MEMBER_STATUSES = (ACTIVE, EXPIRING_SOON, EXPIRED, FROZEN, SINGLE_AVAILABLE, SINGLE_USED, NO_PLAN)

# Ledger (subscription_history.type)
HISTORY_SUBSCRIPTION = "subscription"
HISTORY_PLAN_CHANGE = "plan_change"
HISTORY_SESSION_ADD = "session_add"
HISTORY_SESSION_USE = "session_use"
HISTORY_SERVICE = "service"
HISTORY_FREEZE = "freeze"
HISTORY_UNFREEZE = "unfreeze"
HISTORY_CANCELLATION = "cancellation"
HISTORY_DEBT_PAYMENT = "debt_payment"
HISTORY_TYPES = (
    HISTORY_SUBSCRIPTION,
    HISTORY_PLAN_CHANGE,
    HISTORY_SESSION_ADD,
    HISTORY_SESSION_USE,
    HISTORY_SERVICE,
    HISTORY_FREEZE,
    HISTORY_UNFREEZE,
    HISTORY_CANCELLATION,
    HISTORY_DEBT_PAYMENT,
)

# Payments
CASH = "cash"
DEBT = "debt"
MEMBER_PAYMENT_METHODS = (CASH, DEBT)
PAYMENT_METHODS = (CASH, "card", "transfer", DEBT)

TX_SUBSCRIPTION = "subscription"
TX_SERVICE = "service"
TX_DEBT_PAYMENT = "debt_payment"
TX_RETAIL = "retail"
TRANSACTION_TYPES = (TX_SUBSCRIPTION, TX_SERVICE, TX_DEBT_PAYMENT, TX_RETAIL)


def parse_ts(value) -> datetime | None:
    """ISO text from SQLite -> aware UTC datetime (naive values are taken as UTC)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def infer_plan_type(sessions_total: int) -> str:
    """Legacy rows carry no plan_type; the session counter decides."""
    if sessions_total == 1:
        return SINGLE
    if sessions_total > 1:
        return PACKAGE
    return SUBSCRIPTION


def _keys(row) -> set[str]:
    return set(row.keys()) if hasattr(row, "keys") else set()


@dataclass(frozen=True)
class Member:
    id: int | None
    business_id: int
    name: str
    phone: str
    email: str | None = None
    notes: str | None = None
    plan_id: int | None = None
    plan_name: str | None = None
    plan_type: str | None = None
    plan_start_at: datetime | None = None
    expires_at: datetime | None = None  # None = unlimited (subscription type only)
    sessions_total: int = 0
    sessions_used: int = 0
    is_frozen: bool = False
    frozen_at: datetime | None = None
    debt: float = 0.0
    created_at: datetime | None = None

    @property
    def has_plan(self) -> bool:
        return self.plan_id is not None

    @classmethod
    def from_row(cls, row) -> "Member":
        sessions_total = int(row["sessions_total"] or 0)
        plan_type = row["plan_type"]
        # Normalise once here so nothing downstream re-derives the tag
        if row["plan_id"] is not None and not plan_type:
            plan_type = infer_plan_type(sessions_total)
        return cls(
            id=row["id"],
            business_id=row["business_id"],
            name=row["name"],
            phone=row["phone"],
            email=row["email"],
            notes=row["notes"],
            plan_id=row["plan_id"],
            plan_name=row["plan_name"],
            plan_type=plan_type,
            plan_start_at=parse_ts(row["plan_start_at"]),
            expires_at=parse_ts(row["expires_at"]),
            sessions_total=sessions_total,
            sessions_used=int(row["sessions_used"] or 0),
            is_frozen=bool(row["is_frozen"]),
            frozen_at=parse_ts(row["frozen_at"]),
            debt=float(row["debt"] or 0),
            created_at=parse_ts(row["created_at"]) if "created_at" in _keys(row) else None,
        )


@dataclass(frozen=True)
class SubscriptionPlan:
    id: int | None
    business_id: int
    name: str
    plan_type: str
    duration_days: float = 0  # fractional for sub-day plans, -1 = unlimited, 0 = count-based
    sessions: int = 0  # 0 for time-based plans
    price: float = 0.0
    is_active: bool = True

    @property
    def is_unlimited(self) -> bool:
        return self.plan_type == SUBSCRIPTION and self.duration_days <= 0

    @classmethod
    def from_row(cls, row) -> "SubscriptionPlan":
        duration_days = float(row["duration_days"] or 0)
        sessions = int(row["sessions"] or 0)
        plan_type = row["plan_type"]
        if not plan_type:
            if duration_days == 0 and sessions == 1:
                plan_type = SINGLE
            elif duration_days == 0 and sessions > 1:
                plan_type = PACKAGE
            else:
                plan_type = SUBSCRIPTION
        return cls(
            id=row["id"],
            business_id=row["business_id"],
            name=row["name"],
            plan_type=plan_type,
            duration_days=duration_days,
            sessions=sessions,
            price=float(row["price"] or 0),
            is_active=bool(row["is_active"]),
        )


@dataclass(frozen=True)
class Service:
    id: int | None
    business_id: int
    name: str
    price: float
    description: str | None = None
    duration_minutes: int = 0
    is_active: bool = True

    @classmethod
    def from_row(cls, row) -> "Service":
        return cls(
            id=row["id"],
            business_id=row["business_id"],
            name=row["name"],
            price=float(row["price"] or 0),
            description=row["description"],
            duration_minutes=int(row["duration_minutes"] or 0),
            is_active=bool(row["is_active"]),
        )


@dataclass(frozen=True)
class HistoryEntry:
    id: int
    member_id: int
    type: str
    created_at: datetime
    plan_id: int | None = None
    plan_name: str | None = None
    amount: float = 0.0
    payment_method: str | None = None
    sessions_added: int = 0
    sessions_before: int | None = None
    sessions_after: int | None = None
    expires_before: datetime | None = None
    expires_after: datetime | None = None
    old_plan_name: str | None = None
    new_plan_name: str | None = None
    notes: str | None = None

    @classmethod
    def from_row(cls, row) -> "HistoryEntry":
        return cls(
            id=row["id"],
            member_id=row["member_id"],
            type=row["type"],
            created_at=parse_ts(row["created_at"]),
            plan_id=row["plan_id"],
            plan_name=row["plan_name"],
            amount=float(row["amount"] or 0),
            payment_method=row["payment_method"],
            sessions_added=int(row["sessions_added"] or 0),
            sessions_before=row["sessions_before"],
            sessions_after=row["sessions_after"],
            expires_before=parse_ts(row["expires_before"]),
            expires_after=parse_ts(row["expires_after"]),
            old_plan_name=row["old_plan_name"],
            new_plan_name=row["new_plan_name"],
            notes=row["notes"],
        )


@dataclass(frozen=True)
class TransactionItem:
    product_id: int | None
    name: str
    quantity: int
    price: float

    @property
    def total_price(self) -> float:
        return round(self.quantity * self.price, 3)


@dataclass(frozen=True)
class Transaction:
    id: int
    business_id: int
    type: str
    payment_method: str
    amount: float
    created_at: datetime
    member_id: int | None = None
    discount: float = 0.0
    notes: str | None = None
    items: tuple[TransactionItem, ...] = ()

    @classmethod
    def from_row(cls, row) -> "Transaction":
        items = ()
        if row["items"]:
            items = tuple(
                TransactionItem(
                    product_id=i.get("product_id"),
                    name=i["name"],
                    quantity=int(i["quantity"]),
                    price=float(i["price"]),
                )
                for i in json.loads(row["items"])
            )
        return cls(
            id=row["id"],
            business_id=row["business_id"],
            type=row["type"],
            payment_method=row["payment_method"],
            amount=float(row["amount"]),
            created_at=parse_ts(row["created_at"]),
            member_id=row["member_id"],
            discount=float(row["discount"] or 0),
            notes=row["notes"],
            items=items,
        )
