from pydantic import BaseModel


class StoreResponse(BaseModel):
    code: str
    name: str
    address: str | None = None

    model_config = {"from_attributes": True}


class StoreCreateRequest(BaseModel):
    code: str
    name: str
    address: str | None = None


class SetStoreRequest(BaseModel):
    telegram_id: str | int | None = None
    store: str | None = None
