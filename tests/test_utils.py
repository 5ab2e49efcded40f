from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

import actions
import repository
import utils
from models import PACKAGE, SINGLE, SUBSCRIPTION, Member

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_validate_member_inputs():
    assert utils.validate_member_inputs("Ahmed", "55000001") == []
    assert utils.validate_member_inputs(" ", "") == ["Name is required.", "Phone is required."]
    assert utils.validate_member_inputs("Ahmed", "1", "not-an-email") == ["Email address is not valid."]


@pytest.mark.parametrize("plan_type,duration,sessions,expected", [
    (SINGLE, 30, 7, (0, 1)),
    (PACKAGE, 30, 7, (0, 7)),
    (SUBSCRIPTION, 30, 7, (30.0, 0)),
    (SUBSCRIPTION, -1, 0, (-1.0, 0)),
])
def test_normalize_plan(plan_type, duration, sessions, expected):
    assert utils.normalize_plan(plan_type, duration, sessions) == expected


def test_validate_plan_inputs():
    assert utils.validate_plan_inputs("Monthly", SUBSCRIPTION, 30, 0, "50") == []
    assert utils.validate_plan_inputs("Forever", SUBSCRIPTION, -1, 0, "400") == []
    assert utils.validate_plan_inputs("Minute", SUBSCRIPTION, 0.0007, 0, "1") == []
    assert utils.validate_plan_inputs("Pack", PACKAGE, 0, 10, "80") == []
    assert utils.validate_plan_inputs("One", SINGLE, 0, 0, "10") == []

    assert "Duration must be > 0 days (or -1 for unlimited)." in utils.validate_plan_inputs("x", SUBSCRIPTION, 0, 0, "1")
    assert "A package needs at least 2 sessions." in utils.validate_plan_inputs("x", PACKAGE, 0, 1, "1")
    assert "Price must be a number >= 0." in utils.validate_plan_inputs("x", SINGLE, 0, 1, "-3")
    assert "Plan name is required." in utils.validate_plan_inputs("", SINGLE, 0, 1, "3")
    assert len(utils.validate_plan_inputs("x", "yearly", 0, 1, "3")) == 1


def test_parse_amount():
    assert utils.parse_amount("12.500") == 12.5
    with pytest.raises(ValueError):
        utils.parse_amount("abc")
    with pytest.raises(ValueError):
        utils.parse_amount(-1)


def _members():
    def m(i, **kw):
        return Member(id=i, business_id=1, name=f"m{i}", phone=str(i), **kw)
    return [
        m(1),
        m(2, plan_id=1, plan_type=SUBSCRIPTION, expires_at=NOW + timedelta(days=20)),
        m(3, plan_id=1, plan_type=SUBSCRIPTION, expires_at=NOW + timedelta(days=3)),
        m(4, plan_id=1, plan_type=SUBSCRIPTION, expires_at=NOW - timedelta(days=3), debt=12.0),
        m(5, plan_id=2, plan_type=PACKAGE, sessions_total=10, sessions_used=4, debt=8.5),
        m(6, plan_id=3, plan_type=SINGLE, sessions_total=1, sessions_used=1),
        m(7, plan_id=1, plan_type=SUBSCRIPTION, is_frozen=True),
    ]


@pytest.mark.parametrize("key,ids", [
    ("all", [1, 2, 3, 4, 5, 6, 7]),
    ("active", [2, 5]),
    ("expiring", [3]),
    ("expired", [4]),
    ("frozen", [7]),
    ("single", [6]),
    ("package", [5]),
    ("no_plan", [1]),
])
def test_filter_members(key, ids):
    assert [m.id for m in utils.filter_members(_members(), key, NOW)] == ids


def test_status_counts_and_debt():
    counts = utils.status_counts(_members(), NOW)
    assert counts["active"] == 2
    assert counts["single_used"] == 1
    assert sum(counts.values()) == 7
    assert utils.total_debt(_members()) == 20.5


def test_members_frame():
    df = utils.members_frame(_members(), NOW)
    assert list(df.columns) == utils.MEMBER_COLUMNS
    row = df[df["id"] == 5].iloc[0]
    assert row["sessions"] == "6 / 10"
    assert row["status"] == "active"
    assert df[df["id"] == 3].iloc[0]["days_left"] == 3
    assert utils.members_frame([], NOW).empty


def test_revenue_excludes_credit_sales(business_id, plans):
    actions.create_member(business_id, "Ahmed", "1", plan_id=plans["monthly"])
    debtor = actions.create_member(business_id, "Sara", "2", plan_id=plans["pack"], payment_method="debt")
    actions.pay_debt(business_id, debtor.id, 30.0)

    df = utils.revenue_summary_by_month(business_id)
    assert len(df) == 1
    assert df.iloc[0]["revenue"] == 80.0
    assert utils.current_month_revenue(business_id) == 80.0


def test_revenue_empty(business_id):
    assert list(utils.revenue_summary_by_month(business_id).columns) == ["month", "revenue"]
    assert utils.current_month_revenue(business_id) == 0.0


def test_history_frame(business_id, plans):
    member = actions.create_member(business_id, "Sara", "2", plan_id=plans["pack"])
    actions.use_session(business_id, member.id)
    df = utils.history_frame(repository.fetch_history(business_id, member.id))
    assert list(df["type"]) == ["session_use", "subscription"]
    assert df.iloc[0]["sessions"] == "0 -> 1"


def test_sample_data(business_id):
    utils.insert_sample_data(business_id)
    members = repository.fetch_members(business_id)
    assert len(members) == 6
    counts = utils.status_counts(members)
    assert counts["expiring_soon"] == 1
    assert counts["expired"] == 1
    assert counts["single_used"] == 1
    assert counts["no_plan"] == 1


def test_sale_cart_and_transactions_frame(business_id):
    cart = pd.DataFrame([
        {"name": "Water", "quantity": 2, "price": 1.5},
        {"name": None, "quantity": None, "price": None},
        {"name": " Towel ", "quantity": 1, "price": 5},
    ])
    items = utils.sale_items_from_frame(cart)
    assert [(i.name, i.quantity, i.price) for i in items] == [("Water", 2, 1.5), ("Towel", 1, 5.0)]

    repository.record_sale(business_id, items, "cash")
    df = utils.transactions_frame(repository.fetch_transactions(business_id))
    assert len(df) == 1
    assert df.iloc[0]["amount"] == pytest.approx(8.0)
    assert df.iloc[0]["items"] == "2 x Water, 1 x Towel"


def test_transactions_frame_empty():
    assert utils.transactions_frame([]).empty
