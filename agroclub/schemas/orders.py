from decimal import Decimal

from pydantic import BaseModel, Field, field_serializer, field_validator

from agroclub.services.sessions import PaymentMethod


class OrderItemIn(BaseModel):
    product_id: int = 0
    name: str = ""
    unit: str = ""
    qty: Decimal
    price: int


class DeliveryIn(BaseModel):
    type: str = ""
    address: str = ""
    phone: str = ""


class OrderConfirmRequest(BaseModel):
    telegram_id: str | int | None = None
    items: list[OrderItemIn] = Field(default_factory=list)
    delivery: DeliveryIn | None = None
    payment_method: PaymentMethod | None = None

    @field_validator("payment_method", mode="before")
    @classmethod
    def blank_payment_method_is_default(cls, value):
        # "" or whitespace means kaspi_link
        if isinstance(value, str):
            return value.strip() or None
        return value

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "telegram_id": "123456789",
                    "items": [{"product_id": 7, "name": "Potatoes", "unit": "kg", "qty": 2, "price": 500}],
                    "delivery": {"type": "delivery", "address": "Abay ave 10", "phone": "+77010000000"},
                    "payment_method": "kaspi_transfer",
                }
            ]
        }
    }


class OrderCreateRequest(BaseModel):
    telegram_id: str | int | None = None
    items: list[OrderItemIn] = Field(default_factory=list)


class OrderConfirmResponse(BaseModel):
    status: str = "ok"
    order_id: int
    goods_total: int
    delivery_price: int
    total: int


class OrderCreateResponse(BaseModel):
    status: str = "ok"
    order_id: int
    total: int


class OrderItemResponse(BaseModel):
    product_id: int
    name: str
    unit: str
    qty: Decimal
    price: int
    amount: int

    model_config = {"from_attributes": True}

    @field_serializer("qty")
    def serialize_qty(self, value: Decimal) -> str:
        normalized = value.normalize()
        return format(normalized, "f")


class OrderResponse(BaseModel):
    id: int
    store_code: str | None = None
    total_amount: int
    payment_method: str
    status: str
    created_at: str
    items: list[OrderItemResponse] = Field(default_factory=list)


class OrderStatusResponse(BaseModel):
    id: int
    status: str
    total_amount: int


class DeliveryPriceResponse(BaseModel):
    price: int
    currency: str = "KZT"
