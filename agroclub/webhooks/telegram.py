import hmac
import logging

from aiogram.types import Update
from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError

from agroclub.config import settings

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/telegram",
    summary="Telegram webhook",
)
async def telegram_webhook(request: Request):
    """
    Telegram delivers bot updates here when BOT_MODE=webhook. The request is
    accepted only with the configured X-Telegram-Bot-Api-Secret-Token.
    """
    secret = settings.TELEGRAM_WEBHOOK_SECRET
    if secret:
        received = request.headers.get("x-telegram-bot-api-secret-token", "")
        if not hmac.compare_digest(received, secret):
            logger.warning("Rejected Telegram webhook call with a bad secret token")
            raise HTTPException(status_code=401, detail="Invalid secret token")
    else:
        logger.warning("TELEGRAM_WEBHOOK_SECRET is not set, skipping webhook verification")

    bot = getattr(request.app.state, "bot", None)
    dp = getattr(request.app.state, "dispatcher", None)
    if bot is None or dp is None:
        raise HTTPException(status_code=503, detail="Bot is not running")

    try:
        update = Update.model_validate(await request.json(), context={"bot": bot})
    except (ValueError, ValidationError) as e:
        logger.error(f"Invalid Telegram update: {e}")
        raise HTTPException(status_code=400, detail="Invalid payload")

    await dp.feed_update(bot, update)
    return {"received": True}
