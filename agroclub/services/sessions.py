import logging
from enum import Enum

from aiogram.fsm.storage.base import BaseStorage, StorageKey
from aiogram.fsm.storage.memory import MemoryStorage
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class BuyerState(str, Enum):
    START = "start"
    AWAITING_PAYMENT = "awaiting_payment"


class PaymentMethod(str, Enum):
    KASPI_LINK = "kaspi_link"
    KASPI_TRANSFER = "kaspi_transfer"
    CASH = "cash"


class RequestKind(str, Enum):
    ORDER = "order"
    SUBSCRIPTION = "subscription"


class BuyerSession(BaseModel):
    """What the bot is currently waiting for from a buyer.

    A disposable cache: the ledger rows stay authoritative and a lost record
    only means an uploaded receipt is no longer routed automatically.
    """

    state: BuyerState = BuyerState.START
    payment_method: PaymentMethod = PaymentMethod.KASPI_LINK
    contact: str = ""
    is_paid: bool = False
    # the payment request a receipt should be bound to
    request_kind: RequestKind | None = None
    request_id: int | None = None

    @classmethod
    def awaiting(
        cls,
        kind: RequestKind,
        request_id: int,
        payment_method: PaymentMethod,
        contact: str,
    ) -> "BuyerSession":
        return cls(
            state=BuyerState.AWAITING_PAYMENT,
            payment_method=payment_method,
            contact=contact,
            is_paid=False,
            request_kind=kind,
            request_id=request_id,
        )


def bot_id_from_token(token: str) -> int:
    head = (token or "").split(":", 1)[0]
    return int(head) if head.isdigit() else 0


def build_storage(redis_url: str = "", ttl_seconds: int | None = None) -> BaseStorage:
    """Pick the aiogram FSM storage backing buyer sessions."""
    if not redis_url:
        return MemoryStorage()

    from aiogram.fsm.storage.redis import RedisStorage

    return RedisStorage.from_url(redis_url, state_ttl=ttl_seconds, data_ttl=ttl_seconds)


class SessionStore:
    """Buyer id -> BuyerSession on top of an aiogram FSM storage.

    The dispatcher shares the same storage, so keys follow aiogram's
    private-chat convention (chat id == user id).
    """

    def __init__(self, storage: BaseStorage, bot_id: int = 0):
        self._storage = storage
        self._bot_id = bot_id

    @property
    def storage(self) -> BaseStorage:
        return self._storage

    def _key(self, buyer_id: int) -> StorageKey:
        return StorageKey(bot_id=self._bot_id, chat_id=buyer_id, user_id=buyer_id)

    async def get(self, buyer_id: int) -> BuyerSession | None:
        data = await self._storage.get_data(self._key(buyer_id))
        if not data:
            return None
        try:
            return BuyerSession.model_validate(data)
        except ValidationError as e:
            logger.warning("Discarding unreadable session for buyer %s: %s", buyer_id, e)
            return None

    async def set(self, buyer_id: int, session: BuyerSession) -> None:
        key = self._key(buyer_id)
        await self._storage.set_state(key, session.state.value)
        await self._storage.set_data(key, session.model_dump(mode="json"))

    async def close(self) -> None:
        await self._storage.close()
