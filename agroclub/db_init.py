import logging
import time
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from agroclub.config import settings
from agroclub.models.database import Base, _normalize_database_url, engine
from agroclub.models import Order, OrderItem, Store, Subscription, User  # noqa: F401 - register models

logger = logging.getLogger(__name__)


def wait_for_db(retries: int, retry_delay_seconds: int) -> None:
    """Wait for database to accept connections before running migrations."""
    last_error = None
    for attempt in range(1, retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database connection established on attempt %s", attempt)
            return
        except OperationalError as exc:
            last_error = exc
            logger.warning(
                "Database not reachable yet (attempt %s/%s): %s",
                attempt,
                retries,
                exc,
            )
            if attempt < retries:
                time.sleep(retry_delay_seconds)

    raise RuntimeError(
        "Database is unreachable after "
        f"{retries} attempts. Check DATABASE_URL and ensure the DB server is running."
    ) from last_error


def init_db():
    wait_for_db(
        retries=settings.DB_CONNECT_RETRIES,
        retry_delay_seconds=settings.DB_CONNECT_RETRY_DELAY_SECONDS,
    )
    if settings.DATABASE_URL.startswith("sqlite://"):
        Base.metadata.create_all(bind=engine)
        return

    run_migrations()
    Base.metadata.create_all(bind=engine)


def run_migrations() -> None:
    """Apply Alembic migrations to the latest revision."""
    try:
        from alembic import command
        from alembic.config import Config
    except Exception as exc:  # pragma: no cover - environment/setup failure
        raise RuntimeError(
            "Alembic is required for non-sqlite runtime. Install the project with `pip install -e .`."
        ) from exc

    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    script_location = project_root / "alembic"
    if not alembic_ini.exists() or not script_location.exists():
        raise RuntimeError("Alembic configuration is missing (alembic.ini or alembic/ directory not found).")

    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(script_location))
    config.set_main_option("sqlalchemy.url", _normalize_database_url(settings.DATABASE_URL))
    command.upgrade(config, "head")


def parse_store_seed(raw: str) -> list[tuple[str, str, str]]:
    """`code|name|address;code|name` -> [(code, name, address)]. Malformed entries are skipped."""
    stores = []
    for entry in raw.split(";"):
        parts = [part.strip() for part in entry.split("|")]
        if len(parts) < 2 or not parts[0] or not parts[1]:
            if entry.strip():
                logger.warning("Skipping malformed STORES_SEED entry: %r", entry)
            continue
        address = parts[2] if len(parts) > 2 else ""
        stores.append((parts[0], parts[1], address))
    return stores


def seed_stores(db_session, raw: str) -> int:
    """Insert stores listed in STORES_SEED that do not exist yet; existing rows are left alone."""
    created = 0
    for code, name, address in parse_store_seed(raw):
        if db_session.query(Store).filter(Store.code == code).first():
            continue
        db_session.add(Store(code=code, name=name, address=address or None))
        created += 1
    if created:
        db_session.commit()
        logger.info("Seeded %s store(s)", created)
    return created
