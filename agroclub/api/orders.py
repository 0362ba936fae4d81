from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from agroclub.config import settings
from agroclub.dependencies import get_buyer_id, get_workflow
from agroclub.models import Order, get_db
from agroclub.schemas.orders import (
    DeliveryPriceResponse,
    OrderConfirmRequest,
    OrderConfirmResponse,
    OrderCreateRequest,
    OrderCreateResponse,
    OrderItemResponse,
    OrderResponse,
    OrderStatusResponse,
)
from agroclub.services import ledger
from agroclub.services.workflow import (
    DeliveryRequest,
    OrderValidationError,
    PersistenceError,
    WorkflowEngine,
)

router = APIRouter()
delivery_router = APIRouter()


@router.post(
    "/confirm",
    response_model=OrderConfirmResponse,
    summary="Confirm the cart and create an order",
)
async def confirm_order(
    body: OrderConfirmRequest,
    db: Annotated[Session, Depends(get_db)],
    engine: Annotated[WorkflowEngine, Depends(get_workflow)],
):
    """
    Persist the order with its lines (plus a delivery line when requested),
    move the buyer to awaiting payment and send the receipt with payment
    instructions for the chosen method.
    """
    delivery = None
    if body.delivery is not None:
        delivery = DeliveryRequest(
            type=body.delivery.type,
            address=body.delivery.address,
            phone=body.delivery.phone,
        )
    try:
        result = await engine.create_order(
            db,
            body.telegram_id,
            [item.model_dump() for item in body.items],
            delivery=delivery,
            payment_method=body.payment_method,
        )
    except OrderValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="db error")

    return OrderConfirmResponse(
        order_id=result.order_id,
        goods_total=result.goods_total,
        delivery_price=result.delivery_price,
        total=result.total,
    )


@router.post(
    "/create",
    response_model=OrderCreateResponse,
    summary="Create an order (pickup, Kaspi Pay link)",
)
async def create_order(
    body: OrderCreateRequest,
    db: Annotated[Session, Depends(get_db)],
    engine: Annotated[WorkflowEngine, Depends(get_workflow)],
):
    try:
        result = await engine.create_order(
            db,
            body.telegram_id,
            [item.model_dump() for item in body.items],
            confirmed=False,
        )
    except OrderValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="db error")

    return OrderCreateResponse(order_id=result.order_id, total=result.total)


@router.get(
    "/me",
    response_model=list[OrderResponse],
    summary="List my orders",
)
def my_orders(
    buyer_id: Annotated[int, Depends(get_buyer_id)],
    db: Annotated[Session, Depends(get_db)],
):
    """Returns the buyer's orders, newest first, with their lines."""
    orders = db.query(Order).filter(Order.user_id == buyer_id).order_by(Order.id.desc()).all()
    return [
        OrderResponse(
            id=o.id,
            store_code=o.store_code,
            total_amount=o.total_amount,
            payment_method=o.payment_method,
            status=o.status,
            created_at=o.created_at.isoformat() if o.created_at else "",
            items=[OrderItemResponse.model_validate(item) for item in ledger.order_items(db, o.id)],
        )
        for o in orders
    ]


@router.get(
    "/{order_id}/status",
    response_model=OrderStatusResponse,
    summary="Get order status",
)
def order_status(
    order_id: int,
    buyer_id: Annotated[int, Depends(get_buyer_id)],
    db: Annotated[Session, Depends(get_db)],
):
    """Returns status of an order (only for the buyer's own orders)."""
    order = db.query(Order).filter(Order.id == order_id, Order.user_id == buyer_id).first()
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return OrderStatusResponse(id=order.id, status=order.status, total_amount=order.total_amount)


@delivery_router.get(
    "/price",
    response_model=DeliveryPriceResponse,
    summary="Flat home delivery price",
)
def delivery_price():
    return DeliveryPriceResponse(price=settings.DELIVERY_PRICE)
