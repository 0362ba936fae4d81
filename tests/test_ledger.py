from datetime import datetime, timedelta

import pytest

from conftest import BUYER_ID, make_subscription, make_user, utc
from agroclub.models import Subscription, User
from agroclub.services import ledger
from agroclub.services.ledger import TransitionOutcome, one_month_after


@pytest.mark.parametrize(
    "start, expected",
    [
        (datetime(2026, 3, 15, 8, 0), datetime(2026, 4, 15, 8, 0)),
        (datetime(2027, 1, 31), datetime(2027, 3, 3)),
        (datetime(2028, 1, 31), datetime(2028, 3, 2)),
        (datetime(2028, 1, 29), datetime(2028, 2, 29)),
        (datetime(2026, 3, 31), datetime(2026, 5, 1)),
        (datetime(2026, 12, 31), datetime(2027, 1, 31)),
        (datetime(2026, 12, 20), datetime(2027, 1, 20)),
    ],
)
def test_one_month_after(start, expected):
    assert one_month_after(start) == expected


def test_one_month_after_keeps_timezone():
    assert one_month_after(utc(2026, 5, 31, 23, 59)) == utc(2026, 7, 1, 23, 59)


def test_open_subscription_creates_user(db):
    subscription = ledger.open_subscription(db, BUYER_ID, "+77010000000", 3000)

    assert subscription.status == "pending"
    user = db.query(User).filter(User.user_id == BUYER_ID).one()
    assert user.sub_status == "pending"
    assert user.nickname == "user"


def test_open_subscription_downgrades_active_user_to_pending(db):
    """Test a renewal request marks the user pending, as the request is recorded."""
    make_user(db, sub_status="active", sub_until=datetime(2030, 1, 1))

    ledger.open_subscription(db, BUYER_ID, "+77010000000", 3000)

    db.expire_all()
    assert db.query(User).filter(User.user_id == BUYER_ID).one().sub_status == "pending"


def test_activate_subscription_not_found(db):
    outcome, valid_until = ledger.activate_subscription(db, 404, utc(2026, 1, 1))

    assert outcome == TransitionOutcome.NOT_FOUND
    assert valid_until is None


def test_reject_cancelled_subscription_is_already_handled(db):
    subscription = make_subscription(db, status="cancelled")

    assert ledger.reject_subscription(db, subscription.id) == TransitionOutcome.ALREADY_HANDLED
    db.expire_all()
    assert db.get(Subscription, subscription.id).status == "cancelled"


def test_project_user_subscription_picks_latest_end(db):
    now = utc(2026, 6, 1)
    make_user(db, sub_status="pending")
    make_subscription(db, status="active", valid_until=datetime(2026, 6, 10))
    make_subscription(db, status="active", valid_until=datetime(2026, 7, 10))

    assert ledger.project_user_subscription(db, BUYER_ID, now) is True
    db.commit()

    user = db.query(User).filter(User.user_id == BUYER_ID).one()
    assert ledger.as_utc(user.sub_until) == utc(2026, 7, 10)
    assert ledger.project_user_subscription(db, BUYER_ID, now) is False


def test_project_user_subscription_unknown_user(db):
    assert ledger.project_user_subscription(db, 31337, utc(2026, 6, 1)) is False


def test_latest_active_subscription_skips_expired_rows(db):
    now = utc(2026, 6, 1)
    make_subscription(db, status="active", valid_until=datetime(2026, 5, 1))
    make_subscription(db, status="expired", valid_until=datetime(2026, 9, 1))

    assert ledger.latest_active_subscription(db, BUYER_ID, now) is None
    current = make_subscription(db, status="active", valid_until=datetime(2026, 6, 1) + timedelta(days=5))
    assert ledger.latest_active_subscription(db, BUYER_ID, now).id == current.id


def test_find_store_by_code_or_name(db, store):
    assert ledger.find_store(db, "samal3").id == store.id
    assert ledger.find_store(db, "Samal-3").id == store.id
    assert ledger.find_store(db, "aksai") is None
