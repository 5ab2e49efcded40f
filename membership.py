"""
membership.py
Membership state engine: status derivation + mutation planning.

Everything here is pure. A mutation function reads a Member (and whatever it
needs: a plan, a service, an amount), checks its preconditions and returns a
Change describing the member update, the one ledger row to append and the
optional transaction row. Persisting a Change is repository.apply_change's job.

Status is derived on every read and never stored.

A single-session plan bought while creating the member (enroll) is consumed
on the spot: sessions_used = sessions_total = 1, so the member reads as
single_used right away. Switching to a single later (change_plan, renew)
leaves the session available for a check-in.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from config import settings
from models import (
    ACTIVE,
    CASH,
    DEBT,
    EXPIRED,
    EXPIRING_SOON,
    FROZEN,
    HISTORY_CANCELLATION,
    HISTORY_DEBT_PAYMENT,
    HISTORY_FREEZE,
    HISTORY_PLAN_CHANGE,
    HISTORY_SERVICE,
    HISTORY_SESSION_ADD,
    HISTORY_SESSION_USE,
    HISTORY_SUBSCRIPTION,
    HISTORY_UNFREEZE,
    MEMBER_PAYMENT_METHODS,
    NO_PLAN,
    PACKAGE,
    SINGLE,
    SINGLE_AVAILABLE,
    SINGLE_USED,
    SUBSCRIPTION,
    TX_DEBT_PAYMENT,
    TX_SERVICE,
    TX_SUBSCRIPTION,
    Member,
    Service,
    SubscriptionPlan,
    format_ts,
    infer_plan_type,
)

DAY = timedelta(days=1)


class MembershipError(ValueError):
    """A mutation's precondition does not hold; nothing should be written."""


@dataclass(frozen=True)
class Change:
    operation: str
    member_updates: dict = field(default_factory=dict)
    history: dict = field(default_factory=dict)
    transaction: dict | None = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- Derivation ----------

def plan_type_of(member: Member) -> str | None:
    if member.plan_id is None:
        return None
    return member.plan_type or infer_plan_type(member.sessions_total)


def is_session_based(member: Member) -> bool:
    return plan_type_of(member) in (PACKAGE, SINGLE)


def sessions_remaining(member: Member) -> int:
    """Raw difference; may be <= 0 for a used-up package."""
    if not is_session_based(member):
        return 0
    return member.sessions_total - member.sessions_used


def days_left(expires_at: datetime, now: datetime | None = None) -> int:
    now = now or utcnow()
    return math.ceil((expires_at - now).total_seconds() / DAY.total_seconds())


def member_status(member: Member, now: datetime | None = None, soon_days: int | None = None) -> str:
    if member.plan_id is None:
        return NO_PLAN
    if member.is_frozen:
        return FROZEN

    plan_type = plan_type_of(member)
    if plan_type == SINGLE:
        return SINGLE_AVAILABLE if sessions_remaining(member) > 0 else SINGLE_USED
    if plan_type == PACKAGE:
        return EXPIRED if sessions_remaining(member) <= 0 else ACTIVE

    if member.expires_at is None:
        return ACTIVE
    left = days_left(member.expires_at, now)
    if left <= 0:
        return EXPIRED
    if left <= (settings.EXPIRING_SOON_DAYS if soon_days is None else soon_days):
        return EXPIRING_SOON
    return ACTIVE


def can_use_session(member: Member) -> bool:
    return is_session_based(member) and sessions_remaining(member) > 0


def needs_renewal(member: Member, now: datetime | None = None) -> bool:
    return member_status(member, now) in (EXPIRED, SINGLE_USED)


def plan_terms(plan: SubscriptionPlan, now: datetime) -> dict:
    """Member fields granted by buying `plan` at `now`."""
    if plan.plan_type == SUBSCRIPTION:
        expires_at = None
        if not plan.is_unlimited:
            expires_at = now + timedelta(days=plan.duration_days)
        sessions_total = 0
    else:
        expires_at = None
        sessions_total = plan.sessions or 1
    return {
        "plan_id": plan.id,
        "plan_name": plan.name,
        "plan_type": plan.plan_type,
        "plan_start_at": format_ts(now),
        "expires_at": format_ts(expires_at),
        "sessions_total": sessions_total,
        "sessions_used": 0,
    }


# ---------- Mutations ----------

def use_session(member: Member, plan: SubscriptionPlan | None = None) -> Change:
    if not is_session_based(member):
        raise MembershipError("Only package or single-session plans have sessions to use.")
    if sessions_remaining(member) <= 0:
        raise MembershipError("No sessions remaining.")

    # Per-session value of the current plan, for reporting
    amount = 0.0
    if plan is not None and plan.id == member.plan_id and plan.sessions > 0:
        amount = round(plan.price / plan.sessions, 3)

    return Change(
        operation="use_session",
        member_updates={"sessions_used": member.sessions_used + 1},
        history={
            "type": HISTORY_SESSION_USE,
            "plan_id": member.plan_id,
            "plan_name": member.plan_name,
            "amount": amount,
            "sessions_before": member.sessions_used,
            "sessions_after": member.sessions_used + 1,
        },
    )


def add_sessions(member: Member, count: int = 1) -> Change:
    if not is_session_based(member):
        raise MembershipError("Sessions can only be added to package or single-session plans.")
    if count < 1:
        raise MembershipError("Session count must be at least 1.")

    return Change(
        operation="add_sessions",
        member_updates={"sessions_total": member.sessions_total + count},
        history={
            "type": HISTORY_SESSION_ADD,
            "plan_id": member.plan_id,
            "plan_name": member.plan_name,
            "sessions_added": count,
            "sessions_before": member.sessions_total,
            "sessions_after": member.sessions_total + count,
        },
    )


def change_plan(
    member: Member,
    plan: SubscriptionPlan,
    payment_method: str = CASH,
    now: datetime | None = None,
) -> Change:
    if not plan.is_active:
        raise MembershipError(f"Plan {plan.name!r} is not active.")
    if payment_method not in MEMBER_PAYMENT_METHODS:
        raise MembershipError(f"Unsupported payment method: {payment_method!r}")

    now = now or utcnow()
    updates = plan_terms(plan, now)
    if payment_method == DEBT:
        updates["debt"] = round(member.debt + plan.price, 3)

    first_plan = member.plan_id is None
    history = {
        "type": HISTORY_SUBSCRIPTION if first_plan else HISTORY_PLAN_CHANGE,
        "plan_id": plan.id,
        "plan_name": plan.name,
        "amount": plan.price,
        "payment_method": payment_method,
        "sessions_before": member.sessions_total,
        "sessions_after": updates["sessions_total"],
        "expires_before": format_ts(member.expires_at),
        "expires_after": updates["expires_at"],
        "old_plan_id": member.plan_id,
        "old_plan_name": member.plan_name,
        "new_plan_id": plan.id,
        "new_plan_name": plan.name,
    }

    transaction = None
    if plan.price > 0:
        label = f"New subscription: {plan.name}" if first_plan else f"{member.plan_name} -> {plan.name}"
        transaction = {
            "type": TX_SUBSCRIPTION,
            "payment_method": payment_method,
            "amount": plan.price,
            "notes": label,
        }

    return Change(
        operation="subscribe" if first_plan else "change_plan",
        member_updates=updates,
        history=history,
        transaction=transaction,
    )


def enroll(
    member: Member,
    plan: SubscriptionPlan,
    payment_method: str = CASH,
    now: datetime | None = None,
) -> Change:
    """First plan of a member created at the counter; a single is consumed on the spot."""
    change = change_plan(member, plan, payment_method, now)
    if plan.plan_type == SINGLE:
        change.member_updates["sessions_used"] = 1
    return change


def renew(
    member: Member,
    plan: SubscriptionPlan,
    payment_method: str = CASH,
    now: datetime | None = None,
) -> Change:
    """Buy the member's current plan again; the period restarts at `now`."""
    if member.plan_id is None:
        raise MembershipError("Member has no plan to renew.")
    if plan.id != member.plan_id:
        raise MembershipError("Renewal must use the member's current plan.")

    change = change_plan(member, plan, payment_method, now)
    history = dict(change.history, type=HISTORY_SUBSCRIPTION, notes="Renewal")
    transaction = change.transaction
    if transaction is not None:
        transaction = dict(transaction, notes=f"Renewal: {plan.name}")
    return Change(
        operation="renew",
        member_updates=change.member_updates,
        history=history,
        transaction=transaction,
    )


def freeze(member: Member, reason: str | None = None, now: datetime | None = None) -> Change:
    if member.plan_id is None:
        raise MembershipError("Member has no plan to freeze.")
    if member.is_frozen:
        raise MembershipError("Membership is already frozen.")

    now = now or utcnow()
    return Change(
        operation="freeze",
        member_updates={"is_frozen": 1, "frozen_at": format_ts(now)},
        history={
            "type": HISTORY_FREEZE,
            "plan_id": member.plan_id,
            "plan_name": member.plan_name,
            "expires_before": format_ts(member.expires_at),
            "notes": (reason or "").strip() or "Frozen",
        },
    )


def frozen_days(frozen_at: datetime, now: datetime) -> int:
    # Partial days count as whole days, in the member's favour
    return max(0, math.ceil((now - frozen_at).total_seconds() / DAY.total_seconds()))


def unfreeze(member: Member, now: datetime | None = None) -> Change:
    if not member.is_frozen:
        raise MembershipError("Membership is not frozen.")

    now = now or utcnow()
    new_expiry = member.expires_at
    if member.frozen_at is not None and member.expires_at is not None:
        new_expiry = member.expires_at + frozen_days(member.frozen_at, now) * DAY

    return Change(
        operation="unfreeze",
        member_updates={"is_frozen": 0, "frozen_at": None, "expires_at": format_ts(new_expiry)},
        history={
            "type": HISTORY_UNFREEZE,
            "plan_id": member.plan_id,
            "plan_name": member.plan_name,
            "expires_before": format_ts(member.expires_at),
            "expires_after": format_ts(new_expiry),
            "notes": "Unfrozen",
        },
    )


def cancel(member: Member) -> Change:
    if member.plan_id is None:
        raise MembershipError("Member has no plan to cancel.")

    return Change(
        operation="cancel",
        member_updates={
            "plan_id": None,
            "plan_name": None,
            "plan_type": None,
            "expires_at": None,
            "sessions_total": 0,
            "sessions_used": 0,
        },
        history={
            "type": HISTORY_CANCELLATION,
            "plan_id": member.plan_id,
            "plan_name": member.plan_name,
            "sessions_before": member.sessions_total,
            "sessions_after": 0,
            "expires_before": format_ts(member.expires_at),
            "notes": "Subscription cancelled",
        },
    )


def add_service(member: Member, service: Service) -> Change:
    if not service.is_active:
        raise MembershipError(f"Service {service.name!r} is not active.")

    return Change(
        operation="add_service",
        history={
            "type": HISTORY_SERVICE,
            "plan_name": service.name,
            "amount": service.price,
            "payment_method": CASH,
            "notes": f"Service: {service.name}",
        },
        transaction={
            "type": TX_SERVICE,
            "payment_method": CASH,
            "amount": service.price,
            "notes": service.name,
        },
    )


def pay_debt(member: Member, amount: float) -> Change:
    if amount <= 0:
        raise MembershipError("Amount must be > 0.")
    if member.debt <= 0:
        raise MembershipError("Member has no outstanding debt.")
    # Tolerate float noise on a "pay everything" click
    if amount > member.debt + 0.0005:
        raise MembershipError(f"Amount exceeds the outstanding debt ({member.debt:.3f}).")

    amount = min(amount, member.debt)
    remaining = round(max(0.0, member.debt - amount), 3)
    return Change(
        operation="pay_debt",
        member_updates={"debt": remaining},
        history={
            "type": HISTORY_DEBT_PAYMENT,
            "plan_name": member.plan_name,
            "amount": amount,
            "payment_method": CASH,
            "notes": "Full payment" if remaining == 0 else "Partial payment",
        },
        transaction={
            "type": TX_DEBT_PAYMENT,
            "payment_method": CASH,
            "amount": amount,
            "notes": f"Debt payment - {member.name}",
        },
    )
