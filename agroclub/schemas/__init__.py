from agroclub.schemas.orders import (
    DeliveryPriceResponse,
    OrderConfirmRequest,
    OrderConfirmResponse,
    OrderCreateRequest,
    OrderCreateResponse,
    OrderResponse,
    OrderStatusResponse,
)
from agroclub.schemas.stores import SetStoreRequest, StoreCreateRequest, StoreResponse
from agroclub.schemas.subscriptions import (
    StatusResponse,
    SubscriptionInvoiceRequest,
    SubscriptionStatusResponse,
)

__all__ = [
    "DeliveryPriceResponse",
    "OrderConfirmRequest",
    "OrderConfirmResponse",
    "OrderCreateRequest",
    "OrderCreateResponse",
    "OrderResponse",
    "OrderStatusResponse",
    "SetStoreRequest",
    "StoreCreateRequest",
    "StoreResponse",
    "StatusResponse",
    "SubscriptionInvoiceRequest",
    "SubscriptionStatusResponse",
]
