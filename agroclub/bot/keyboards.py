from aiogram.types import InlineKeyboardMarkup, WebAppInfo
from aiogram.utils.keyboard import InlineKeyboardBuilder


def mini_app_kb(mini_app_url: str, admin_url: str | None = None) -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.button(text="🚀 Open the mini app", web_app=WebAppInfo(url=mini_app_url))
    if admin_url:
        kb.button(text="🛠 Admin", web_app=WebAppInfo(url=admin_url))
    kb.adjust(2)
    return kb.as_markup()
