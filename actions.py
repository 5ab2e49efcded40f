"""
actions.py
Member operations as the UI calls them: load -> plan the change -> persist.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

import membership
import repository
from membership import Change, MembershipError
from models import CASH, Member, SubscriptionPlan

logger = logging.getLogger(__name__)


class NotFoundError(LookupError):
    pass


def _member(business_id: int, member_id: int) -> Member:
    member = repository.get_member(business_id, member_id)
    if member is None:
        raise NotFoundError(f"Member {member_id} not found.")
    return member


def _plan(business_id: int, plan_id: int) -> SubscriptionPlan:
    plan = repository.get_plan(business_id, plan_id)
    if plan is None:
        raise NotFoundError(f"Plan {plan_id} not found.")
    return plan


def _commit(business_id: int, member: Member, change: Change) -> Member:
    try:
        repository.apply_change(business_id, member.id, change)
    except sqlite3.Error:
        logger.exception("%s failed for member %s (business %s)", change.operation, member.id, business_id)
        raise
    logger.info("%s: member %s (business %s)", change.operation, member.id, business_id)
    return _member(business_id, member.id)


def _plan_change(builder, *args, **kwargs) -> Change:
    try:
        return builder(*args, **kwargs)
    except MembershipError as exc:
        logger.warning("%s rejected: %s", builder.__name__, exc)
        raise


def create_member(
    business_id: int,
    name: str,
    phone: str,
    email: str | None = None,
    notes: str | None = None,
    plan_id: int | None = None,
    payment_method: str = CASH,
    now: datetime | None = None,
) -> Member:
    change = None
    if plan_id is not None:
        placeholder = Member(id=None, business_id=business_id, name=name, phone=phone)
        change = _plan_change(membership.enroll, placeholder, _plan(business_id, plan_id), payment_method, now)
    try:
        member_id = repository.create_member(business_id, name, phone, email, notes, change)
    except sqlite3.Error:
        logger.exception("create_member failed (business %s)", business_id)
        raise
    logger.info("create_member: member %s (business %s, plan=%s)", member_id, business_id, plan_id)
    return _member(business_id, member_id)


def use_session(business_id: int, member_id: int) -> Member:
    member = _member(business_id, member_id)
    plan = repository.get_plan(business_id, member.plan_id) if member.plan_id is not None else None
    return _commit(business_id, member, _plan_change(membership.use_session, member, plan))


def add_sessions(business_id: int, member_id: int, count: int = 1) -> Member:
    member = _member(business_id, member_id)
    return _commit(business_id, member, _plan_change(membership.add_sessions, member, count))


def change_plan(business_id: int, member_id: int, plan_id: int, payment_method: str = CASH,
                now: datetime | None = None) -> Member:
    member = _member(business_id, member_id)
    plan = _plan(business_id, plan_id)
    return _commit(business_id, member, _plan_change(membership.change_plan, member, plan, payment_method, now))


def renew(business_id: int, member_id: int, payment_method: str = CASH, now: datetime | None = None) -> Member:
    member = _member(business_id, member_id)
    if member.plan_id is None:
        raise MembershipError("Member has no plan to renew.")
    plan = _plan(business_id, member.plan_id)
    return _commit(business_id, member, _plan_change(membership.renew, member, plan, payment_method, now))


def freeze(business_id: int, member_id: int, reason: str | None = None, now: datetime | None = None) -> Member:
    member = _member(business_id, member_id)
    return _commit(business_id, member, _plan_change(membership.freeze, member, reason, now))


def unfreeze(business_id: int, member_id: int, now: datetime | None = None) -> Member:
    member = _member(business_id, member_id)
    return _commit(business_id, member, _plan_change(membership.unfreeze, member, now))


def cancel(business_id: int, member_id: int) -> Member:
    member = _member(business_id, member_id)
    return _commit(business_id, member, _plan_change(membership.cancel, member))


def add_service(business_id: int, member_id: int, service_id: int) -> Member:
    member = _member(business_id, member_id)
    service = repository.get_service(business_id, service_id)
    if service is None:
        raise NotFoundError(f"Service {service_id} not found.")
    return _commit(business_id, member, _plan_change(membership.add_service, member, service))


def pay_debt(business_id: int, member_id: int, amount: float) -> Member:
    member = _member(business_id, member_id)
    return _commit(business_id, member, _plan_change(membership.pay_debt, member, amount))
