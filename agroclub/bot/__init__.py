from typing import Callable

from aiogram import Bot, Dispatcher
from aiogram.fsm.storage.base import BaseStorage
from sqlalchemy.orm import Session

from agroclub.bot.handlers import build_router
from agroclub.bot.middlewares import ErrorShieldMiddleware, LoggingMiddleware
from agroclub.services.workflow import WorkflowEngine


def build_bot(token: str) -> Bot:
    return Bot(token=token)


def build_dispatcher(
    storage: BaseStorage,
    workflow: WorkflowEngine,
    session_factory: Callable[[], Session],
) -> Dispatcher:
    """Dispatcher sharing the buyer session storage; handlers get the engine injected."""
    dp = Dispatcher(storage=storage, workflow=workflow, session_factory=session_factory)

    dp.message.middleware(LoggingMiddleware())
    dp.message.middleware(ErrorShieldMiddleware())
    dp.callback_query.middleware(LoggingMiddleware())
    dp.callback_query.middleware(ErrorShieldMiddleware())

    dp.include_router(build_router())
    return dp
