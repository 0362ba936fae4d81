import html
import logging
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import CallbackQuery, Message, User

logger = logging.getLogger("agroclub.bot")


def user_tag(u: User | None) -> str:
    if u is None:
        return "id=?"
    if u.username:
        return f"@{u.username} ({u.id})"
    if u.full_name:
        return f"{u.full_name} ({u.id})"
    return f"id={u.id}"


class LoggingMiddleware(BaseMiddleware):
    async def __call__(
        self,
        handler: Callable[[Any, Dict[str, Any]], Awaitable[Any]],
        event: Any,
        data: Dict[str, Any],
    ) -> Any:
        if isinstance(event, Message):
            text = html.escape(event.text or event.caption or "")
            kind = "document" if event.document else "photo" if event.photo else "text"
            logger.info("[MSG] %s | chat=%s | %s | %s", user_tag(event.from_user), event.chat.id, kind, text)

        elif isinstance(event, CallbackQuery):
            chat_id = event.message.chat.id if event.message else None
            logger.info("[CB ] %s | chat=%s | %s", user_tag(event.from_user), chat_id, event.data or "")

        return await handler(event, data)


class ErrorShieldMiddleware(BaseMiddleware):
    async def __call__(
        self,
        handler: Callable[[Any, Dict[str, Any]], Awaitable[Any]],
        event: Any,
        data: Dict[str, Any],
    ) -> Any:
        try:
            return await handler(event, data)
        except Exception as e:
            logger.exception("Handler error: %s", e)
            try:
                if isinstance(event, CallbackQuery):
                    await event.answer("Something went wrong. Please try again.")
                elif isinstance(event, Message):
                    await event.answer("Something went wrong. Please try again.")
            except Exception as reply_error:
                logger.warning("Failed to report handler error to the user: %s", reply_error)
