from pydantic import BaseModel


class SubscriptionInvoiceRequest(BaseModel):
    telegram_id: str | int | None = None
    phone: str | None = None

    model_config = {
        "json_schema_extra": {"examples": [{"telegram_id": "123456789", "phone": "+77010000000"}]}
    }


class StatusResponse(BaseModel):
    status: str = "ok"


class SubscriptionStatusResponse(BaseModel):
    active: bool
    until: str | None = None
    store_code: str | None = None
    store_name: str | None = None
    store_address: str | None = None
