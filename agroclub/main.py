import asyncio
import logging
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agroclub.api import orders, stores, subscriptions
from agroclub.config import settings
from agroclub.db_init import init_db, seed_stores
from agroclub.dependencies import notifier_handle, session_store, workflow
from agroclub.models import SessionLocal
from agroclub.services.sweeper import run_expiry_sweeper
from agroclub.webhooks import telegram

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("agroclub.startup")

BOT_MODES = {"polling", "webhook", "disabled"}


def _is_localhost(host: str | None) -> bool:
    return host in {"localhost", "127.0.0.1"}


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.hostname)


def _strip_wrapping_quotes(value: str) -> str:
    stripped = value.strip()
    if len(stripped) >= 2 and stripped[0] == stripped[-1] and stripped[0] in {"'", '"'}:
        return stripped[1:-1].strip()
    return stripped


def _parse_cors_origins(cors_raw: str) -> list[str]:
    return [_strip_wrapping_quotes(origin) for origin in cors_raw.split(",") if origin.strip()]


def _validate_database_url_for_runtime(database_url: str) -> None:
    parsed = urlparse(database_url)
    scheme = parsed.scheme
    host = parsed.hostname
    db_name = parsed.path.lstrip("/")
    postgres_schemes = {"postgres", "postgresql", "postgresql+psycopg"}

    if not scheme:
        raise RuntimeError("DATABASE_URL is missing URL scheme (expected postgresql:// or postgresql+psycopg://).")
    if scheme == "sqlite":
        return
    if scheme not in postgres_schemes:
        raise RuntimeError(
            f"DATABASE_URL has unsupported scheme '{scheme}' "
            "(expected postgresql:// or postgresql+psycopg://)."
        )
    if not host:
        raise RuntimeError("DATABASE_URL is missing host.")
    if not db_name:
        raise RuntimeError("DATABASE_URL is missing database name in path.")


def _db_url_diagnostics(database_url: str) -> str:
    parsed = urlparse(database_url)
    host = parsed.hostname or "<missing>"
    port = parsed.port or "<missing>"
    db_name = parsed.path.lstrip("/") or "<missing>"
    scheme = parsed.scheme or "<missing>"
    query = parsed.query or "<empty>"

    tips = []
    if _is_localhost(host):
        tips.append("Host points to localhost; inside a container use the database service name instead.")
    if scheme in {"postgres", "postgresql"}:
        tips.append("URL scheme is fine; app normalizes it to postgresql+psycopg internally.")
    if "sslmode" not in query:
        tips.append("No sslmode in URL query; external managed DBs often require sslmode=require.")
    if not tips:
        tips.append("URL structure looks valid; check network access, DB credentials, and DB service status.")

    return (
        f"scheme={scheme}, host={host}, port={port}, database={db_name}, query={query}; "
        f"tips={' | '.join(tips)}"
    )


def _validate_required_env_for_runtime() -> None:
    errors = []

    bot_mode = settings.BOT_MODE
    if bot_mode not in BOT_MODES:
        errors.append(f"BOT_MODE must be one of: {', '.join(sorted(BOT_MODES))}.")
    elif bot_mode != "disabled":
        if not settings.BOT_TOKEN:
            errors.append("BOT_TOKEN is required unless BOT_MODE=disabled.")
        try:
            if not settings.ADMIN_ID:
                errors.append("ADMIN_ID is required unless BOT_MODE=disabled.")
        except ValueError as exc:
            errors.append(str(exc))

    if bot_mode == "webhook":
        if not settings.TELEGRAM_WEBHOOK_SECRET:
            errors.append("TELEGRAM_WEBHOOK_SECRET is required when BOT_MODE=webhook.")
        base_url = _strip_wrapping_quotes(settings.BASE_URL)
        if not _is_http_url(base_url):
            errors.append("BASE_URL must be an absolute http(s) URL, e.g. https://agro.example.com")
        elif _is_localhost(urlparse(base_url).hostname):
            errors.append("BASE_URL points to localhost; Telegram cannot deliver webhooks there.")

    if not _is_http_url(settings.KASPI_PAY_URL):
        errors.append("KASPI_PAY_URL must be an absolute http(s) URL.")

    origins = _parse_cors_origins(settings.CORS_ORIGINS)
    if not origins:
        errors.append("CORS_ORIGINS must contain at least one comma-separated origin URL.")
    else:
        invalid_origins = [origin for origin in origins if not _is_http_url(origin)]
        if invalid_origins:
            errors.append(f"CORS_ORIGINS contains invalid URL(s): {', '.join(invalid_origins)}")

    if errors:
        raise RuntimeError("Startup environment validation failed: " + " | ".join(errors))


async def _run_polling(dp, bot) -> None:
    try:
        await dp.start_polling(bot, handle_signals=False, close_bot_session=False)
    except Exception:
        logger.exception("Bot polling stopped with an error")


async def _start_bot(app: FastAPI, tasks: list[asyncio.Task]) -> None:
    from agroclub.bot import build_bot, build_dispatcher
    from agroclub.services.notifier import TelegramNotifier

    bot = build_bot(settings.BOT_TOKEN)
    dp = build_dispatcher(session_store.storage, workflow, SessionLocal)
    notifier_handle.bind(TelegramNotifier(bot, settings.ADMIN_ID))
    app.state.bot = bot
    app.state.dispatcher = dp

    if settings.BOT_MODE == "webhook":
        webhook_url = f"{settings.BASE_URL.rstrip('/')}/webhooks/telegram"
        await bot.set_webhook(webhook_url, secret_token=settings.TELEGRAM_WEBHOOK_SECRET, drop_pending_updates=False)
        logger.info("Telegram webhook registered at %s", webhook_url)
    else:
        await bot.delete_webhook(drop_pending_updates=False)
        tasks.append(asyncio.create_task(_run_polling(dp, bot), name="bot-polling"))
        logger.info("Telegram bot polling started.")


async def _shutdown(app: FastAPI, stop: asyncio.Event, tasks: list[asyncio.Task]) -> None:
    stop.set()
    dp = getattr(app.state, "dispatcher", None)
    if dp is not None and settings.BOT_MODE == "polling":
        try:
            await dp.stop_polling()
        except RuntimeError:
            # polling never got going
            pass

    if tasks:
        _, pending = await asyncio.wait(tasks, timeout=settings.SHUTDOWN_GRACE_SECONDS)
        for task in pending:
            logger.warning("Background task %s did not stop in time, cancelling", task.get_name())
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    bot = getattr(app.state, "bot", None)
    if bot is not None:
        await bot.session.close()
    await session_store.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    database_url = "<unavailable>"
    logger.info("Application startup initiated.")
    try:
        database_url = settings.DATABASE_URL
        logger.info("DATABASE_URL diagnostics at startup: %s", _db_url_diagnostics(database_url))
        _validate_database_url_for_runtime(database_url)
        _validate_required_env_for_runtime()
        init_db()
    except Exception as exc:
        diagnostics = (
            _db_url_diagnostics(database_url)
            if database_url != "<unavailable>"
            else "DATABASE_URL unavailable (missing or unreadable)."
        )
        logger.exception(
            "Database initialization failed: %s. DATABASE_URL diagnostics: %s",
            str(exc),
            diagnostics,
        )
        raise
    db = SessionLocal()
    try:
        seed_stores(db, settings.STORES_SEED)
    finally:
        db.close()

    stop = asyncio.Event()
    app.state.shutdown_event = stop
    tasks: list[asyncio.Task] = [
        asyncio.create_task(
            run_expiry_sweeper(stop, settings.SWEEP_INTERVAL_SECONDS, SessionLocal),
            name="expiry-sweeper",
        )
    ]
    if settings.BOT_MODE != "disabled":
        await _start_bot(app, tasks)
    else:
        logger.warning("BOT_MODE=disabled: buyer and admin messages will not be delivered.")

    logger.info("Application startup completed successfully.")
    try:
        yield
    finally:
        logger.info("Application shutdown initiated.")
        await _shutdown(app, stop, tasks)
        logger.info("Application shutdown completed.")


app = FastAPI(
    title="AGRO Club API",
    description=(
        "Backend for the AGRO Club wholesale mini app: orders, subscriptions and stores. "
        "Payments are manual (Kaspi Pay link, Kaspi Gold transfer or cash) and confirmed by the "
        "administrator through the Telegram bot."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Orders", "description": "Confirm a cart, list my orders, delivery price."},
        {"name": "Subscriptions", "description": "Request a subscription invoice and read its status."},
        {"name": "Stores", "description": "Store directory and the buyer's selected store."},
        {"name": "Admin", "description": "Requires X-Telegram-Id of the administrator."},
        {"name": "Webhooks", "description": "Called by Telegram."},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_cors_origins(settings.CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(orders.router, prefix="/api/orders", tags=["Orders"])
app.include_router(orders.delivery_router, prefix="/api/delivery", tags=["Orders"])
app.include_router(subscriptions.router, prefix="/api/subscribe", tags=["Subscriptions"])
app.include_router(subscriptions.user_router, prefix="/api/user", tags=["Subscriptions"])
app.include_router(stores.user_router, prefix="/api/user", tags=["Stores"])
app.include_router(stores.router, prefix="/api/stores", tags=["Stores"])
app.include_router(stores.admin_router, prefix="/api/admin/stores", tags=["Admin"])
app.include_router(telegram.router, prefix="/webhooks", tags=["Webhooks"])


@app.get("/")
def root():
    return {"status": "ok", "service": "AGRO Club API"}


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/admin-id")
def admin_id():
    return {"adminId": settings.ADMIN_ID}
