import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

import actions
import db
import membership
import repository
from membership import MembershipError

DAY = timedelta(days=1)


def history_types(business_id, member_id):
    return [e.type for e in repository.fetch_history(business_id, member_id)]


def count(table):
    return db.fetch_one(f"SELECT COUNT(*) AS c FROM {table}")["c"]


class TestNewMember:
    def test_without_plan(self, business_id):
        member = actions.create_member(business_id, "Lina", "55000006", email="lina@example.com")
        assert member.plan_id is None
        assert membership.member_status(member) == "no_plan"
        assert history_types(business_id, member.id) == []
        assert repository.fetch_transactions(business_id) == []

    def test_end_to_end_first_plan(self, business_id, plans):
        member = actions.create_member(business_id, "Ahmed", "55000001")
        now = datetime.now(timezone.utc)
        member = actions.change_plan(business_id, member.id, plans["monthly"], "cash", now=now)

        assert membership.member_status(member) == "active"
        assert abs(member.expires_at - (now + 30 * DAY)) < timedelta(seconds=1)

        history = repository.fetch_history(business_id, member.id)
        assert len(history) == 1
        assert history[0].type == "subscription"
        assert history[0].amount == 50.0

        txs = repository.fetch_transactions(business_id, member.id)
        assert len(txs) == 1
        assert (txs[0].amount, txs[0].payment_method, txs[0].type) == (50.0, "cash", "subscription")

    def test_with_plan_in_one_step(self, business_id, plans):
        member = actions.create_member(business_id, "Sara", "55000004", plan_id=plans["pack"], payment_method="debt")
        assert member.plan_type == "package"
        assert member.sessions_total == 10
        assert member.debt == 80.0
        assert history_types(business_id, member.id) == ["subscription"]
        assert repository.fetch_transactions(business_id, member.id)[0].payment_method == "debt"

    def test_single_session_used_from_first_read(self, business_id, plans):
        member = actions.create_member(business_id, "Youssef", "55000005", plan_id=plans["single"])
        assert member.sessions_used == 1
        assert membership.member_status(member) == "single_used"

    def test_unknown_plan(self, business_id):
        with pytest.raises(actions.NotFoundError):
            actions.create_member(business_id, "Ghost", "1", plan_id=999)
        assert count("members") == 0


class TestSessions:
    def test_use_until_empty(self, business_id, plans):
        member = actions.create_member(business_id, "Sara", "1", plan_id=plans["pack"])
        for _ in range(10):
            member = actions.use_session(business_id, member.id)
        assert member.sessions_used == 10
        assert membership.member_status(member) == "expired"
        with pytest.raises(MembershipError):
            actions.use_session(business_id, member.id)

        entries = [e for e in repository.fetch_history(business_id, member.id) if e.type == "session_use"]
        assert len(entries) == 10
        assert all(e.sessions_after == e.sessions_before + 1 for e in entries)
        assert entries[0].amount == 8.0

    def test_top_up_single(self, business_id, plans):
        member = actions.create_member(business_id, "Youssef", "1", plan_id=plans["single"])
        member = actions.add_sessions(business_id, member.id, 1)
        assert membership.member_status(member) == "single_available"
        member = actions.use_session(business_id, member.id)
        assert membership.member_status(member) == "single_used"
        assert history_types(business_id, member.id) == ["session_use", "session_add", "subscription"]


class TestLifecycle:
    def test_freeze_unfreeze_extends_expiry(self, business_id, plans):
        start = (datetime.now(timezone.utc) - 10 * DAY).replace(microsecond=0)
        member = actions.create_member(business_id, "Omar", "1", plan_id=plans["monthly"], now=start)
        expires = member.expires_at

        member = actions.freeze(business_id, member.id, "Injury", now=start + DAY)
        assert membership.member_status(member) == "frozen"
        with pytest.raises(MembershipError):
            actions.freeze(business_id, member.id)

        member = actions.unfreeze(business_id, member.id, now=start + 5 * DAY)
        assert member.is_frozen is False
        assert member.frozen_at is None
        assert member.expires_at == expires + 4 * DAY
        assert history_types(business_id, member.id) == ["unfreeze", "freeze", "subscription"]

    def test_change_plan_then_cancel(self, business_id, plans):
        member = actions.create_member(business_id, "Mona", "1", plan_id=plans["monthly"])
        member = actions.change_plan(business_id, member.id, plans["pack"], "debt")
        assert member.plan_name == "10 sessions"
        assert member.expires_at is None
        assert member.debt == 80.0

        member = actions.cancel(business_id, member.id)
        assert membership.member_status(member) == "no_plan"
        assert member.sessions_total == 0
        assert history_types(business_id, member.id) == ["cancellation", "plan_change", "subscription"]
        change = repository.fetch_history(business_id, member.id)[1]
        assert (change.old_plan_name, change.new_plan_name) == ("Monthly", "10 sessions")

    def test_switch_to_single_then_check_in(self, business_id, plans):
        member = actions.create_member(business_id, "Ahmed", "1", plan_id=plans["monthly"])
        member = actions.change_plan(business_id, member.id, plans["single"], "cash")
        assert (member.sessions_total, member.sessions_used) == (1, 0)
        assert membership.member_status(member) == "single_available"

        member = actions.use_session(business_id, member.id)
        assert membership.member_status(member) == "single_used"
        with pytest.raises(MembershipError):
            actions.use_session(business_id, member.id)

    def test_freeze_without_plan_writes_nothing(self, business_id):
        member = actions.create_member(business_id, "Lina", "1")
        with pytest.raises(MembershipError):
            actions.freeze(business_id, member.id)
        assert history_types(business_id, member.id) == []

    def test_renew_expired(self, business_id, plans):
        long_ago = datetime.now(timezone.utc) - 60 * DAY
        member = actions.create_member(business_id, "Omar", "1", plan_id=plans["monthly"], now=long_ago)
        assert membership.member_status(member) == "expired"
        member = actions.renew(business_id, member.id)
        assert membership.member_status(member) == "active"
        assert len(repository.fetch_transactions(business_id, member.id)) == 2

    def test_renew_deactivated_plan_rejected(self, business_id, plans):
        member = actions.create_member(business_id, "Omar", "1", plan_id=plans["monthly"])
        repository.set_plan_active(business_id, plans["monthly"], False)
        with pytest.raises(MembershipError):
            actions.renew(business_id, member.id)

    def test_member_keeps_deleted_plan(self, business_id, plans):
        member = actions.create_member(business_id, "Omar", "1", plan_id=plans["monthly"])
        repository.delete_plan(business_id, plans["monthly"])
        member = repository.get_member(business_id, member.id)
        assert membership.member_status(member) == "active"
        with pytest.raises(actions.NotFoundError):
            actions.renew(business_id, member.id)

    def test_service(self, business_id, service_id):
        member = actions.create_member(business_id, "Lina", "1")
        after = actions.add_service(business_id, member.id, service_id)
        assert after == member
        assert history_types(business_id, member.id) == ["service"]
        assert repository.fetch_transactions(business_id, member.id)[0].type == "service"

    def test_inactive_service(self, business_id, service_id):
        member = actions.create_member(business_id, "Lina", "1")
        repository.set_service_active(business_id, service_id, False)
        with pytest.raises(MembershipError):
            actions.add_service(business_id, member.id, service_id)

    def test_debt_repayment(self, business_id, plans):
        member = actions.create_member(business_id, "Sara", "1", plan_id=plans["pack"], payment_method="debt")
        member = actions.pay_debt(business_id, member.id, 30.0)
        assert member.debt == 50.0
        assert [m.id for m in repository.fetch_debtors(business_id)] == [member.id]
        member = actions.pay_debt(business_id, member.id, 50.0)
        assert member.debt == 0.0
        assert repository.fetch_debtors(business_id) == []
        assert history_types(business_id, member.id)[:2] == ["debt_payment", "debt_payment"]


class TestAtomicity:
    def test_failed_transaction_insert_rolls_back_everything(self, business_id, plans, monkeypatch):
        member = actions.create_member(business_id, "Ahmed", "1")
        real_insert = repository._insert

        def failing_insert(conn, table, values):
            if table == "transactions":
                raise sqlite3.OperationalError("disk I/O error")
            return real_insert(conn, table, values)

        monkeypatch.setattr(repository, "_insert", failing_insert)
        with pytest.raises(sqlite3.OperationalError):
            actions.change_plan(business_id, member.id, plans["monthly"], "cash")

        reloaded = repository.get_member(business_id, member.id)
        assert reloaded.plan_id is None
        assert count("subscription_history") == 0
        assert count("transactions") == 0

    def test_rejected_precondition_writes_nothing(self, business_id):
        member = actions.create_member(business_id, "Lina", "1")
        with pytest.raises(MembershipError):
            actions.cancel(business_id, member.id)
        assert count("subscription_history") == 0


class TestTenantScope:
    def test_other_business_cannot_touch_member(self, business_id, other_business_id, plans):
        member = actions.create_member(business_id, "Ahmed", "1", plan_id=plans["pack"])
        with pytest.raises(actions.NotFoundError):
            actions.use_session(other_business_id, member.id)
        with pytest.raises(actions.NotFoundError):
            actions.change_plan(other_business_id, member.id, plans["monthly"])
        assert repository.fetch_members(other_business_id) == []
        assert repository.fetch_history(other_business_id, member.id) == []

    def test_other_business_plan_not_usable(self, business_id, other_business_id, plans):
        member = actions.create_member(other_business_id, "Omar", "1")
        with pytest.raises(actions.NotFoundError):
            actions.change_plan(other_business_id, member.id, plans["monthly"])
