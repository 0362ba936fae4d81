import asyncio
import os
from datetime import datetime, timezone
from typing import Generator

# Override settings for tests before importing app modules
TEST_DATABASE_URL = "sqlite:///:memory:"
ADMIN_ID = 1000
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["BOT_MODE"] = "disabled"
os.environ["BOT_TOKEN"] = ""
os.environ["ADMIN_ID"] = str(ADMIN_ID)
os.environ["TELEGRAM_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["REDIS_URL"] = ""
os.environ["KASPI_PAY_URL"] = "https://pay.kaspi.kz/pay/test"
os.environ["KASPI_CARD_NUMBER"] = "4400 0000 0000 0001"
os.environ["KASPI_CARD_HOLDER"] = "AGRO TEST"

import pytest
from aiogram.fsm.storage.memory import MemoryStorage
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agroclub.config import settings
from agroclub.dependencies import get_workflow
from agroclub.main import app
from agroclub.models import Store, Subscription, User
from agroclub.models.database import Base, get_db
from agroclub.services.notifier import NotifierHandle
from agroclub.services.sessions import SessionStore
from agroclub.services.workflow import WorkflowEngine

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

BUYER_ID = 555


def run(coro):
    return asyncio.run(coro)


class FakeNotifier:
    """Records everything the workflow tries to send."""

    def __init__(self, admin_id: int = ADMIN_ID):
        self.admin_id = admin_id
        self.messages = []
        self.copies = []
        self.answers = []
        self.fail_send = False
        self.fail_copy = False

    async def send_message(self, chat_id, text, link=None):
        if self.fail_send:
            raise RuntimeError("telegram is down")
        self.messages.append((chat_id, text, link))

    async def copy_to_admin(self, from_chat_id, message_id, caption, actions):
        if self.fail_copy:
            raise RuntimeError("telegram is down")
        self.copies.append((from_chat_id, message_id, caption, list(actions)))

    async def answer_callback(self, callback_id, text):
        self.answers.append((callback_id, text))

    def sent_to(self, chat_id):
        return [text for cid, text, _ in self.messages if cid == chat_id]


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db_session = TestSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def sessions() -> SessionStore:
    return SessionStore(MemoryStorage())


@pytest.fixture
def engine(notifier: FakeNotifier, sessions: SessionStore) -> WorkflowEngine:
    handle = NotifierHandle()
    handle.bind(notifier)
    return WorkflowEngine(sessions, handle, settings)


@pytest.fixture(scope="function")
def client(db: Session, engine: WorkflowEngine) -> Generator[TestClient, None, None]:
    """Create a test client with database and workflow overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_workflow] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def store(db: Session) -> Store:
    store = Store(code="samal3", name="Samal-3", address="Samal-3 microdistrict, 12")
    db.add(store)
    db.commit()
    db.refresh(store)
    return store


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Telegram-Id": str(ADMIN_ID)}


@pytest.fixture
def buyer_headers() -> dict[str, str]:
    return {"X-Telegram-Id": str(BUYER_ID)}


def make_user(db: Session, buyer_id: int = BUYER_ID, **fields) -> User:
    fields.setdefault("nickname", "user")
    user = User(user_id=buyer_id, **fields)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_subscription(db: Session, buyer_id: int = BUYER_ID, **fields) -> Subscription:
    fields.setdefault("status", "pending")
    fields.setdefault("amount", 3000)
    subscription = Subscription(user_id=buyer_id, phone="+77010000000", **fields)
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    return subscription


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
