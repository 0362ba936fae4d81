import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agroclub.services import ledger

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    subscriptions_expired: int = 0
    users_expired: int = 0
    users_reconciled: int = 0
    failed_steps: int = 0


def sweep_expired_subscriptions(db: Session, now: datetime | None = None) -> SweepResult:
    """Expire past-due subscriptions and users, then heal users.sub_status drift.

    The three steps are independent; a failing step is logged and the rest
    still run.
    """
    now = now or ledger.utcnow()
    result = SweepResult()

    try:
        result.subscriptions_expired = ledger.expire_subscriptions(db, now)
    except SQLAlchemyError as e:
        result.failed_steps += 1
        logger.error("Failed to expire subscriptions: %s", e)

    try:
        result.users_expired = ledger.expire_users(db, now)
    except SQLAlchemyError as e:
        result.failed_steps += 1
        logger.error("Failed to expire users: %s", e)

    try:
        result.users_reconciled = ledger.reconcile_user_subscriptions(db, now)
    except SQLAlchemyError as e:
        result.failed_steps += 1
        logger.error("Failed to reconcile user subscription status: %s", e)

    if result.subscriptions_expired or result.users_expired or result.users_reconciled:
        logger.info(
            "Expiry sweep: %s subscriptions expired, %s users expired, %s users reconciled",
            result.subscriptions_expired,
            result.users_expired,
            result.users_reconciled,
        )
    return result


async def run_expiry_sweeper(
    stop: asyncio.Event,
    interval_seconds: float,
    session_factory: Callable[[], Session],
) -> int:
    """Sweep right away, then once per interval until `stop` is set.

    Returns the number of sweeps performed.
    """
    logger.info("Expiry sweeper started (interval=%ss)", interval_seconds)
    runs = 0
    while not stop.is_set():
        db = session_factory()
        try:
            await asyncio.to_thread(sweep_expired_subscriptions, db)
        except Exception:
            logger.exception("Expiry sweep crashed")
        finally:
            db.close()
        runs += 1

        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue
    logger.info("Expiry sweeper stopped after %s runs", runs)
    return runs
