import asyncio
import logging
from typing import Callable

from aiogram import F, Router
from aiogram.types import CallbackQuery, Message
from sqlalchemy.orm import Session

from agroclub.bot.keyboards import mini_app_kb
from agroclub.config import settings
from agroclub.services import messages
from agroclub.services.notifier import NotifierUnavailable
from agroclub.services.workflow import DocumentRef, NotificationError, PersistenceError, WorkflowEngine

logger = logging.getLogger(__name__)


async def send_welcome(message: Message) -> None:
    is_admin = message.from_user is not None and message.from_user.id == settings.ADMIN_ID
    admin_url = settings.MINI_APP_ADMIN_URL if is_admin else None
    await message.answer(messages.WELCOME, reply_markup=mini_app_kb(settings.MINI_APP_URL, admin_url))


async def on_payment_document(
    message: Message,
    workflow: WorkflowEngine,
    session_factory: Callable[[], Session],
):
    """A file from a buyer who owes a payment is treated as the receipt."""
    document = DocumentRef(
        chat_id=message.chat.id,
        message_id=message.message_id,
        username=message.from_user.username if message.from_user else None,
    )
    db = session_factory()
    try:
        routed = await workflow.confirm_payment_document(db, message.from_user.id, document)
    except (NotificationError, NotifierUnavailable):
        await message.answer("⚠️ Could not pass the receipt to the administrator. Please try again a bit later.")
        return
    finally:
        await asyncio.to_thread(db.close)

    if routed is None:
        await send_welcome(message)


async def on_admin_decision(
    callback: CallbackQuery,
    workflow: WorkflowEngine,
    session_factory: Callable[[], Session],
):
    if callback.from_user.id != settings.ADMIN_ID:
        logger.warning("Ignoring payment decision from non-admin %s", callback.from_user.id)
        await callback.answer("Not allowed")
        return

    db = session_factory()
    try:
        await workflow.handle_admin_decision(db, callback.data, callback_id=callback.id)
    except PersistenceError:
        # admin already got the "try again" answer
        return
    finally:
        await asyncio.to_thread(db.close)


async def on_any_message(message: Message):
    await send_welcome(message)


def build_router() -> Router:
    router = Router(name="payments")
    router.message.register(on_payment_document, F.document | F.photo)
    router.callback_query.register(on_admin_decision, F.data.startswith("pay_") | F.data.startswith("sub_"))
    router.message.register(on_any_message)
    return router
