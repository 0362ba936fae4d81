import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agroclub.dependencies import require_admin
from agroclub.models import get_db
from agroclub.schemas.stores import SetStoreRequest, StoreCreateRequest, StoreResponse
from agroclub.schemas.subscriptions import StatusResponse
from agroclub.services import ledger
from agroclub.services.workflow import normalize_buyer_id

logger = logging.getLogger(__name__)

router = APIRouter()
admin_router = APIRouter()
user_router = APIRouter()


@router.get(
    "",
    response_model=list[StoreResponse],
    summary="List stores",
)
def list_stores(
    db: Annotated[Session, Depends(get_db)],
):
    return [StoreResponse.model_validate(store) for store in ledger.list_stores(db)]


@admin_router.post(
    "",
    response_model=StatusResponse,
    summary="Add or update a store",
)
def add_store(
    body: StoreCreateRequest,
    _admin_id: Annotated[int, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
):
    code = body.code.strip()
    name = body.name.strip()
    if not code or not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="code and name are required")
    try:
        ledger.upsert_store(db, code, name, (body.address or "").strip())
    except SQLAlchemyError as e:
        logger.error("Failed to save store %s: %s", code, e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="db error")
    logger.info("Store %s saved", code)
    return StatusResponse()


@user_router.post(
    "/set-store",
    response_model=StatusResponse,
    summary="Select the buyer's store",
)
def set_store(
    body: SetStoreRequest,
    db: Annotated[Session, Depends(get_db)],
):
    """Accepts a store code or name; orders placed afterwards are tagged with it."""
    buyer_id = normalize_buyer_id(body.telegram_id)
    wanted = (body.store or "").strip()
    if buyer_id is None or not wanted:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="telegram_id and store are required")

    store = ledger.find_store(db, wanted)
    if store is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="store not found")
    try:
        ledger.select_store(db, buyer_id, store.code)
    except SQLAlchemyError as e:
        logger.error("Failed to select store for buyer %s: %s", buyer_id, e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="db error")
    return StatusResponse()
