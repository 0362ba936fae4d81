import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest
from aiogram.utils.keyboard import InlineKeyboardBuilder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkButton:
    text: str
    url: str


@dataclass(frozen=True)
class ActionButton:
    text: str
    callback_data: str


class Notifier(Protocol):
    admin_id: int

    async def send_message(self, chat_id: int, text: str, link: LinkButton | None = None) -> None: ...

    async def copy_to_admin(
        self,
        from_chat_id: int,
        message_id: int,
        caption: str,
        actions: Sequence[ActionButton],
    ) -> None: ...

    async def answer_callback(self, callback_id: str, text: str) -> None: ...


class NotifierUnavailable(RuntimeError):
    pass


class NotifierHandle:
    """Single-assignment slot for the outbound channel.

    The bot client is created in the application lifespan, after the workflow
    engine already exists; until then every send fails with NotifierUnavailable.
    """

    def __init__(self) -> None:
        self._notifier: Notifier | None = None

    @property
    def bound(self) -> bool:
        return self._notifier is not None

    def bind(self, notifier: Notifier) -> None:
        if self._notifier is not None:
            raise RuntimeError("Notifier is already bound")
        self._notifier = notifier

    def get(self) -> Notifier:
        if self._notifier is None:
            raise NotifierUnavailable("Messaging client is not initialized yet")
        return self._notifier


class TelegramNotifier:
    def __init__(self, bot: Bot, admin_id: int):
        self.bot = bot
        self.admin_id = admin_id

    async def send_message(self, chat_id: int, text: str, link: LinkButton | None = None) -> None:
        markup = None
        if link is not None:
            kb = InlineKeyboardBuilder()
            kb.button(text=link.text, url=link.url)
            markup = kb.as_markup()
        await self.bot.send_message(chat_id=chat_id, text=text, reply_markup=markup)

    async def copy_to_admin(
        self,
        from_chat_id: int,
        message_id: int,
        caption: str,
        actions: Sequence[ActionButton],
    ) -> None:
        if not self.admin_id:
            raise NotifierUnavailable("ADMIN_ID is not configured")
        kb = InlineKeyboardBuilder()
        for action in actions:
            kb.button(text=action.text, callback_data=action.callback_data)
        kb.adjust(2)
        await self.bot.copy_message(
            chat_id=self.admin_id,
            from_chat_id=from_chat_id,
            message_id=message_id,
            caption=caption,
            reply_markup=kb.as_markup(),
        )

    async def answer_callback(self, callback_id: str, text: str) -> None:
        try:
            await self.bot.answer_callback_query(callback_query_id=callback_id, text=text)
        except TelegramBadRequest as e:
            msg = str(e)
            if "query is too old" in msg or "query ID is invalid" in msg:
                logger.info("Callback %s expired before it was answered", callback_id)
                return
            raise
