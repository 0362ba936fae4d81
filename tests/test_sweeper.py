import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from conftest import BUYER_ID, make_subscription, make_user, run, utc
from agroclub.models import Subscription, User
from agroclub.services import ledger
from agroclub.services.sweeper import run_expiry_sweeper, sweep_expired_subscriptions

NOW = utc(2026, 6, 1, 12, 0)


def _naive(value):
    return value.replace(tzinfo=None)


def test_sweep_expires_past_due_subscription_and_user(db):
    make_user(db, sub_status="active", sub_until=_naive(NOW - timedelta(days=1)))
    subscription = make_subscription(db, status="active", valid_until=_naive(NOW - timedelta(days=1)))

    result = sweep_expired_subscriptions(db, NOW)

    assert result.subscriptions_expired == 1
    assert result.users_expired == 1
    assert result.failed_steps == 0
    db.expire_all()
    assert db.get(Subscription, subscription.id).status == "expired"
    user = db.query(User).filter(User.user_id == BUYER_ID).one()
    assert user.sub_status == "expired"
    assert user.sub_until is None


def test_sweep_keeps_current_subscriptions(db):
    make_user(db, sub_status="active", sub_until=_naive(NOW + timedelta(days=3)))
    subscription = make_subscription(db, status="active", valid_until=_naive(NOW + timedelta(days=3)))

    result = sweep_expired_subscriptions(db, NOW)

    assert (result.subscriptions_expired, result.users_expired, result.users_reconciled) == (0, 0, 0)
    db.expire_all()
    assert db.get(Subscription, subscription.id).status == "active"
    assert db.query(User).filter(User.user_id == BUYER_ID).one().sub_status == "active"


def test_sweep_is_idempotent(db):
    make_user(db, sub_status="active", sub_until=_naive(NOW - timedelta(hours=1)))
    make_subscription(db, status="active", valid_until=_naive(NOW - timedelta(hours=1)))
    sweep_expired_subscriptions(db, NOW)

    second = sweep_expired_subscriptions(db, NOW)

    assert (second.subscriptions_expired, second.users_expired, second.users_reconciled) == (0, 0, 0)


def test_sweep_heals_user_left_pending_after_activation(db):
    """Test an active subscription whose users row never caught up."""
    make_user(db, sub_status="pending")
    make_subscription(db, status="active", valid_until=_naive(NOW + timedelta(days=10)))

    result = sweep_expired_subscriptions(db, NOW)

    assert result.users_reconciled == 1
    db.expire_all()
    user = db.query(User).filter(User.user_id == BUYER_ID).one()
    assert user.sub_status == "active"
    assert ledger.as_utc(user.sub_until) == NOW + timedelta(days=10)


def test_sweep_heals_active_user_without_subscription(db):
    make_user(db, sub_status="active")

    result = sweep_expired_subscriptions(db, NOW)

    assert result.users_reconciled == 1
    db.expire_all()
    assert db.query(User).filter(User.user_id == BUYER_ID).one().sub_status == "expired"


def test_sweep_does_not_touch_pending_without_subscription(db):
    make_user(db, sub_status="pending")
    make_subscription(db, status="pending")

    result = sweep_expired_subscriptions(db, NOW)

    assert result.users_reconciled == 0
    db.expire_all()
    assert db.query(User).filter(User.user_id == BUYER_ID).one().sub_status == "pending"


def test_sweep_steps_are_independent(db, monkeypatch):
    make_user(db, sub_status="active", sub_until=_naive(NOW - timedelta(days=1)))

    def broken(*args, **kwargs):
        raise OperationalError("UPDATE subscriptions", {}, Exception("database is locked"))

    monkeypatch.setattr("agroclub.services.ledger.expire_subscriptions", broken)

    result = sweep_expired_subscriptions(db, NOW)

    assert result.failed_steps == 1
    assert result.users_expired == 1


def test_sweeper_runs_immediately_and_stops_on_event(monkeypatch):
    """Test the loop does not wait out its interval once asked to stop."""
    calls = []
    monkeypatch.setattr("agroclub.services.sweeper.sweep_expired_subscriptions", lambda db: calls.append(db))
    session = MagicMock()

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(run_expiry_sweeper(stop, 3600, lambda: session))
        await asyncio.sleep(0.05)
        stop.set()
        return await asyncio.wait_for(task, timeout=1)

    runs = run(scenario())

    assert runs == 1
    assert calls == [session]
    session.close.assert_called_once()


def test_sweeper_repeats_every_interval(monkeypatch):
    calls = []
    monkeypatch.setattr("agroclub.services.sweeper.sweep_expired_subscriptions", lambda db: calls.append(db))

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(run_expiry_sweeper(stop, 0.01, MagicMock))
        await asyncio.sleep(0.2)
        stop.set()
        return await asyncio.wait_for(task, timeout=1)

    runs = run(scenario())

    assert runs >= 2
    assert len(calls) == runs


def test_sweeper_survives_a_crashing_sweep(monkeypatch):
    def crash(db):
        raise RuntimeError("boom")

    monkeypatch.setattr("agroclub.services.sweeper.sweep_expired_subscriptions", crash)
    session = MagicMock()

    async def scenario():
        stop = asyncio.Event()
        task = asyncio.create_task(run_expiry_sweeper(stop, 3600, lambda: session))
        await asyncio.sleep(0.05)
        stop.set()
        return await asyncio.wait_for(task, timeout=1)

    assert run(scenario()) == 1
    session.close.assert_called_once()
