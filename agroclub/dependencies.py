from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from agroclub.config import settings
from agroclub.services.notifier import NotifierHandle
from agroclub.services.sessions import SessionStore, bot_id_from_token, build_storage
from agroclub.services.workflow import WorkflowEngine, normalize_buyer_id

# Process-wide collaborators. The lifespan binds the notifier once the bot exists.
notifier_handle = NotifierHandle()
session_store = SessionStore(
    build_storage(settings.REDIS_URL, settings.SESSION_TTL_SECONDS),
    bot_id=bot_id_from_token(settings.BOT_TOKEN),
)
workflow = WorkflowEngine(session_store, notifier_handle, settings)


def get_workflow() -> WorkflowEngine:
    return workflow


def get_buyer_id(
    x_telegram_id: Annotated[str | None, Header()] = None,
) -> int:
    buyer_id = normalize_buyer_id(x_telegram_id)
    if buyer_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Telegram-Id header is required",
        )
    return buyer_id


def require_admin(
    buyer_id: Annotated[int, Depends(get_buyer_id)],
) -> int:
    if not settings.ADMIN_ID or buyer_id != settings.ADMIN_ID:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    return buyer_id
