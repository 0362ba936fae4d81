import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agroclub.dependencies import get_workflow
from agroclub.models import get_db
from agroclub.models.user import SUB_STATUS_ACTIVE
from agroclub.schemas.subscriptions import (
    StatusResponse,
    SubscriptionInvoiceRequest,
    SubscriptionStatusResponse,
)
from agroclub.services import ledger
from agroclub.services.workflow import (
    OrderValidationError,
    PersistenceError,
    WorkflowEngine,
    normalize_buyer_id,
)

logger = logging.getLogger(__name__)

router = APIRouter()
user_router = APIRouter()


@router.post(
    "/request-invoice",
    response_model=StatusResponse,
    summary="Request a subscription invoice",
)
async def request_invoice(
    body: SubscriptionInvoiceRequest,
    db: Annotated[Session, Depends(get_db)],
    engine: Annotated[WorkflowEngine, Depends(get_workflow)],
):
    """
    Record a pending subscription for the buyer and send them the Kaspi Pay
    link. The buyer then uploads a receipt to the bot for the admin to review.
    """
    try:
        await engine.request_subscription_invoice(db, body.telegram_id, body.phone)
    except OrderValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="db error")
    return StatusResponse()


@user_router.get(
    "/subscription-status",
    response_model=SubscriptionStatusResponse,
    summary="Subscription and selected store of a buyer",
)
def subscription_status(
    db: Annotated[Session, Depends(get_db)],
    telegram_id: Annotated[str | None, Query()] = None,
    x_telegram_id: Annotated[str | None, Header()] = None,
):
    buyer_id = normalize_buyer_id(telegram_id or x_telegram_id)
    if buyer_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="telegram_id is required")

    now = ledger.utcnow()
    try:
        user = ledger.get_user(db, buyer_id)
        until = None
        if user is not None and user.sub_status == SUB_STATUS_ACTIVE and user.sub_until is not None:
            if ledger.as_utc(user.sub_until) > now:
                until = ledger.as_utc(user.sub_until)
        if until is None:
            # users row can lag behind; the subscriptions table is authoritative
            current = ledger.latest_active_subscription(db, buyer_id, now)
            if current is not None:
                until = ledger.as_utc(current.valid_until)
        store = ledger.get_store(db, user.selected_store if user is not None else None)
    except SQLAlchemyError as e:
        logger.error("Failed to read subscription status for buyer %s: %s", buyer_id, e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="db error")

    return SubscriptionStatusResponse(
        active=until is not None,
        until=until.strftime("%Y-%m-%d") if until is not None else None,
        store_code=user.selected_store if user is not None else None,
        store_name=store.name if store is not None else None,
        store_address=store.address if store is not None else None,
    )
