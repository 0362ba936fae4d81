"""Durable side of the payment workflow.

Every function here takes the caller's SQLAlchemy session. Functions that
change more than one row commit or roll back as a unit; callers translate
SQLAlchemyError into their own error type.
"""
import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agroclub.models import Order, OrderItem, Store, Subscription, User
from agroclub.models.order import ORDER_STATUS_NEW, ORDER_STATUS_PAID
from agroclub.models.subscription import (
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_EXPIRED,
    SUBSCRIPTION_PENDING,
    SUBSCRIPTION_REJECTED,
)
from agroclub.models.user import SUB_STATUS_ACTIVE, SUB_STATUS_EXPIRED, SUB_STATUS_PENDING


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_HANDLED = "already_handled"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class LineItem:
    product_id: int
    name: str
    unit: str
    qty: Decimal
    price: int

    @property
    def amount(self) -> int:
        return line_amount(self.qty, self.price)


def line_amount(qty: Decimal | float | int, price: int) -> int:
    """qty * price truncated to whole currency units."""
    return int(Decimal(str(qty)) * Decimal(price))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _db_datetime(db: Session, value: datetime) -> datetime:
    bind = db.get_bind()
    if bind and bind.dialect.name == "sqlite":
        return as_utc(value).replace(tzinfo=None)
    return value


def one_month_after(value: datetime) -> datetime:
    """Same day next month; days past the end of a shorter month roll over.

    Jan 31 -> Mar 3 (Mar 2 in a leap year), Mar 31 -> May 1.
    """
    year = value.year + value.month // 12
    month = value.month % 12 + 1
    overflow = max(value.day - calendar.monthrange(year, month)[1], 0)
    return value.replace(year=year, month=month, day=value.day - overflow) + timedelta(days=overflow)


# --- users and stores ---


def get_user(db: Session, buyer_id: int) -> User | None:
    return db.query(User).filter(User.user_id == buyer_id).first()


def get_selected_store(db: Session, buyer_id: int) -> str | None:
    user = get_user(db, buyer_id)
    if user is None or not (user.selected_store or "").strip():
        return None
    return user.selected_store


def get_store(db: Session, code: str | None) -> Store | None:
    if not code:
        return None
    return db.query(Store).filter(Store.code == code).first()


def find_store(db: Session, code_or_name: str) -> Store | None:
    return (
        db.query(Store)
        .filter(or_(Store.code == code_or_name, Store.name == code_or_name))
        .order_by(Store.id)
        .first()
    )


def list_stores(db: Session) -> list[Store]:
    return db.query(Store).order_by(Store.name).all()


def upsert_store(db: Session, code: str, name: str, address: str | None) -> Store:
    try:
        store = get_store(db, code)
        if store is None:
            store = Store(code=code)
            db.add(store)
        store.name = name
        store.address = address or None
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(store)
    return store


def _ensure_user(db: Session, buyer_id: int) -> User:
    user = get_user(db, buyer_id)
    if user is None:
        user = User(user_id=buyer_id, nickname="user")
        db.add(user)
    return user


def select_store(db: Session, buyer_id: int, store_code: str) -> User:
    try:
        user = _ensure_user(db, buyer_id)
        user.selected_store = store_code
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(user)
    return user


# --- orders ---


def create_order(
    db: Session,
    buyer_id: int,
    store_code: str | None,
    items: list[LineItem],
    payment_method: str,
) -> Order:
    """Insert the order and all of its lines in one transaction."""
    order = Order(
        user_id=buyer_id,
        store_code=store_code,
        total_amount=sum(item.amount for item in items),
        payment_method=payment_method,
        status=ORDER_STATUS_NEW,
    )
    try:
        db.add(order)
        db.flush()
        for item in items:
            db.add(
                OrderItem(
                    order_id=order.id,
                    product_id=item.product_id,
                    name=item.name,
                    unit=item.unit,
                    qty=Decimal(str(item.qty)),
                    price=item.price,
                    amount=item.amount,
                )
            )
        db.flush()
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(order)
    return order


def get_order(db: Session, order_id: int) -> Order | None:
    return db.query(Order).filter(Order.id == order_id).first()


def latest_order(db: Session, buyer_id: int) -> Order | None:
    return db.query(Order).filter(Order.user_id == buyer_id).order_by(Order.id.desc()).first()


def order_items(db: Session, order_id: int) -> list[OrderItem]:
    return db.query(OrderItem).filter(OrderItem.order_id == order_id).order_by(OrderItem.id).all()


def mark_order_paid(db: Session, order_id: int, now: datetime | None = None) -> TransitionOutcome:
    now = now or utcnow()
    try:
        updated = (
            db.query(Order)
            .filter(Order.id == order_id, Order.status != ORDER_STATUS_PAID)
            .update(
                {Order.status: ORDER_STATUS_PAID, Order.updated_at: _db_datetime(db, now)},
                synchronize_session="fetch",
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    if updated == 1:
        return TransitionOutcome.APPLIED
    if get_order(db, order_id) is None:
        return TransitionOutcome.NOT_FOUND
    return TransitionOutcome.ALREADY_HANDLED


def check_order_rejectable(db: Session, order_id: int) -> TransitionOutcome:
    """A rejection records nothing; it only applies while the order is unpaid."""
    order = get_order(db, order_id)
    if order is None:
        return TransitionOutcome.NOT_FOUND
    if order.status == ORDER_STATUS_PAID:
        return TransitionOutcome.ALREADY_HANDLED
    return TransitionOutcome.APPLIED


# --- subscriptions ---


def get_subscription(db: Session, subscription_id: int) -> Subscription | None:
    return db.query(Subscription).filter(Subscription.id == subscription_id).first()


def latest_pending_subscription(db: Session, buyer_id: int) -> Subscription | None:
    return (
        db.query(Subscription)
        .filter(Subscription.user_id == buyer_id, Subscription.status == SUBSCRIPTION_PENDING)
        .order_by(Subscription.id.desc())
        .first()
    )


def latest_active_subscription(db: Session, buyer_id: int, now: datetime | None = None) -> Subscription | None:
    now = now or utcnow()
    return (
        db.query(Subscription)
        .filter(
            Subscription.user_id == buyer_id,
            Subscription.status == SUBSCRIPTION_ACTIVE,
            Subscription.valid_until.isnot(None),
            Subscription.valid_until > _db_datetime(db, now),
        )
        .order_by(Subscription.valid_until.desc())
        .first()
    )


def open_subscription(db: Session, buyer_id: int, phone: str, fee: int) -> Subscription:
    """Mark the user pending, cancel older pending requests and insert a new one."""
    try:
        user = _ensure_user(db, buyer_id)
        user.phone = phone
        user.sub_status = SUB_STATUS_PENDING

        (
            db.query(Subscription)
            .filter(Subscription.user_id == buyer_id, Subscription.status == SUBSCRIPTION_PENDING)
            .update({Subscription.status: SUBSCRIPTION_CANCELLED}, synchronize_session="fetch")
        )

        subscription = Subscription(
            user_id=buyer_id,
            phone=phone,
            status=SUBSCRIPTION_PENDING,
            amount=fee,
        )
        db.add(subscription)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(subscription)
    return subscription


def activate_subscription(
    db: Session,
    subscription_id: int,
    now: datetime | None = None,
) -> tuple[TransitionOutcome, datetime | None]:
    """pending -> active for one calendar month, then refresh the user's mirror."""
    now = now or utcnow()
    valid_until = one_month_after(now)
    try:
        updated = (
            db.query(Subscription)
            .filter(Subscription.id == subscription_id, Subscription.status == SUBSCRIPTION_PENDING)
            .update(
                {
                    Subscription.status: SUBSCRIPTION_ACTIVE,
                    Subscription.paid_at: _db_datetime(db, now),
                    Subscription.valid_until: _db_datetime(db, valid_until),
                },
                synchronize_session="fetch",
            )
        )
        if updated == 1:
            subscription = get_subscription(db, subscription_id)
            project_user_subscription(db, subscription.user_id, now)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    if updated == 1:
        return TransitionOutcome.APPLIED, valid_until
    if get_subscription(db, subscription_id) is None:
        return TransitionOutcome.NOT_FOUND, None
    return TransitionOutcome.ALREADY_HANDLED, None


def reject_subscription(db: Session, subscription_id: int) -> TransitionOutcome:
    try:
        updated = (
            db.query(Subscription)
            .filter(Subscription.id == subscription_id, Subscription.status == SUBSCRIPTION_PENDING)
            .update({Subscription.status: SUBSCRIPTION_REJECTED}, synchronize_session="fetch")
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    if updated == 1:
        return TransitionOutcome.APPLIED
    if get_subscription(db, subscription_id) is None:
        return TransitionOutcome.NOT_FOUND
    return TransitionOutcome.ALREADY_HANDLED


# --- users.sub_status projection ---


def project_user_subscription(db: Session, buyer_id: int, now: datetime | None = None) -> bool:
    """Re-derive users.sub_status/sub_until from the subscriptions table.

    Only the active/expired dimension is derived: a user with a valid active
    subscription is active until its end, a user marked active without one is
    expired. Any other status (pending, inactive) is left as recorded.
    Does not commit. Returns True when the user row changed.
    """
    now = now or utcnow()
    user = get_user(db, buyer_id)
    if user is None:
        return False

    current = latest_active_subscription(db, buyer_id, now)
    if current is not None:
        status, until = SUB_STATUS_ACTIVE, as_utc(current.valid_until)
    elif user.sub_status == SUB_STATUS_ACTIVE:
        status, until = SUB_STATUS_EXPIRED, None
    else:
        return False

    recorded_until = as_utc(user.sub_until) if user.sub_until is not None else None
    if user.sub_status == status and recorded_until == until:
        return False

    user.sub_status = status
    user.sub_until = _db_datetime(db, until) if until is not None else None
    db.flush()
    return True


def reconcile_user_subscriptions(db: Session, now: datetime | None = None) -> int:
    now = now or utcnow()
    active_users = {row[0] for row in db.query(User.user_id).filter(User.sub_status == SUB_STATUS_ACTIVE)}
    subscribed = {
        row[0]
        for row in db.query(Subscription.user_id).filter(
            Subscription.status == SUBSCRIPTION_ACTIVE,
            Subscription.valid_until.isnot(None),
            Subscription.valid_until > _db_datetime(db, now),
        )
    }
    changed = 0
    try:
        for buyer_id in sorted(active_users | subscribed):
            if project_user_subscription(db, buyer_id, now):
                changed += 1
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return changed


# --- expiry ---


def expire_subscriptions(db: Session, now: datetime | None = None) -> int:
    now = now or utcnow()
    try:
        updated = (
            db.query(Subscription)
            .filter(
                Subscription.status == SUBSCRIPTION_ACTIVE,
                Subscription.valid_until.isnot(None),
                Subscription.valid_until < _db_datetime(db, now),
            )
            .update({Subscription.status: SUBSCRIPTION_EXPIRED}, synchronize_session="fetch")
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return updated


def expire_users(db: Session, now: datetime | None = None) -> int:
    now = now or utcnow()
    try:
        updated = (
            db.query(User)
            .filter(
                User.sub_status == SUB_STATUS_ACTIVE,
                User.sub_until.isnot(None),
                User.sub_until < _db_datetime(db, now),
            )
            .update(
                {User.sub_status: SUB_STATUS_EXPIRED, User.sub_until: None},
                synchronize_session="fetch",
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return updated
