"""Order and subscription payment workflow.

create order / request subscription -> awaiting payment -> buyer sends a
receipt -> admin approves or rejects. The ledger write always happens first;
session updates and messages are attempted afterwards and are never rolled
back.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agroclub.config import Settings, settings as default_settings
from agroclub.models import Order, Store, Subscription
from agroclub.models.order import ORDER_STATUS_PAID
from agroclub.models.subscription import SUBSCRIPTION_PENDING
from agroclub.services import ledger, messages
from agroclub.services.ledger import LineItem, TransitionOutcome
from agroclub.services.notifier import ActionButton, LinkButton, NotifierHandle
from agroclub.services.sessions import (
    BuyerSession,
    BuyerState,
    PaymentMethod,
    RequestKind,
    SessionStore,
)

logger = logging.getLogger(__name__)

DELIVERY_TYPE = "delivery"
DELIVERY_ITEM_NAME = "Delivery"
DELIVERY_ITEM_UNIT = "service"
# order_items.qty is NUMERIC(12, 3)
QTY_STEP = Decimal("0.001")

VERB_PAY_OK = "pay_ok"
VERB_PAY_REJECT = "pay_reject"
VERB_SUB_OK = "sub_ok"
VERB_SUB_REJECT = "sub_reject"
DECISION_VERBS = {VERB_PAY_OK, VERB_PAY_REJECT, VERB_SUB_OK, VERB_SUB_REJECT}


class OrderValidationError(ValueError):
    pass


class PersistenceError(RuntimeError):
    pass


class NotificationError(RuntimeError):
    pass


class DecisionOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_HANDLED = "already_handled"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"


@dataclass(frozen=True)
class DeliveryRequest:
    type: str = ""
    address: str = ""
    phone: str = ""

    @property
    def is_delivery(self) -> bool:
        return self.type.strip().lower() == DELIVERY_TYPE


@dataclass(frozen=True)
class OrderResult:
    order_id: int
    goods_total: int
    delivery_price: int
    total: int


@dataclass(frozen=True)
class DocumentRef:
    """A buyer message carrying a file, addressed by chat and message id."""

    chat_id: int
    message_id: int
    username: str | None = None


@dataclass(frozen=True)
class RoutedReceipt:
    kind: RequestKind
    entity_id: int


@dataclass(frozen=True)
class AdminDecision:
    verb: str
    entity_id: int
    buyer_id: int

    @property
    def token(self) -> str:
        return decision_token(self.verb, self.entity_id, self.buyer_id)


def decision_token(verb: str, entity_id: int, buyer_id: int) -> str:
    return f"{verb}:{entity_id}:{buyer_id}"


def parse_decision_token(token: str | None) -> AdminDecision | None:
    """Parse `{verb}:{entity_id}:{buyer_id}`; anything else yields None."""
    parts = (token or "").strip().split(":")
    if len(parts) != 3:
        return None
    verb, raw_entity, raw_buyer = parts
    if verb not in DECISION_VERBS:
        return None
    try:
        entity_id = int(raw_entity)
        buyer_id = int(raw_buyer)
    except ValueError:
        return None
    if entity_id <= 0 or buyer_id <= 0:
        return None
    return AdminDecision(verb=verb, entity_id=entity_id, buyer_id=buyer_id)


def normalize_buyer_id(raw: str | int | None) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    text = str(raw).strip()
    if not text.isdigit():
        return None
    value = int(text)
    return value if value > 0 else None


def build_line_items(raw_items: list[dict]) -> list[LineItem]:
    items = []
    for raw in raw_items:
        try:
            qty = Decimal(str(raw.get("qty")))
            price = int(raw.get("price"))
        except (InvalidOperation, TypeError, ValueError):
            raise OrderValidationError("bad item qty/price")
        if not qty.is_finite():
            raise OrderValidationError("bad item qty/price")
        try:
            # amount is computed from the qty as stored
            qty = qty.quantize(QTY_STEP, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            raise OrderValidationError("bad item qty/price")
        if qty <= 0 or price < 0:
            raise OrderValidationError("bad item qty/price")
        items.append(
            LineItem(
                product_id=int(raw.get("product_id") or 0),
                name=str(raw.get("name") or ""),
                unit=str(raw.get("unit") or ""),
                qty=qty,
                price=price,
            )
        )
    return items


class WorkflowEngine:
    def __init__(
        self,
        sessions: SessionStore,
        notifier: NotifierHandle,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] = ledger.utcnow,
    ):
        self.sessions = sessions
        self.notifier = notifier
        self.settings = settings
        self.clock = clock

    # --- best-effort side channels ---

    async def _save_session(self, buyer_id: int, session: BuyerSession, context: str) -> None:
        try:
            await self.sessions.set(buyer_id, session)
        except Exception as e:
            logger.warning("Failed to save session (%s) for buyer %s: %s", context, buyer_id, e)

    async def _reset_session_paid(self, buyer_id: int, context: str) -> None:
        try:
            session = await self.sessions.get(buyer_id)
        except Exception as e:
            logger.warning("Failed to read session (%s) for buyer %s: %s", context, buyer_id, e)
            session = None
        if session is None:
            session = BuyerSession()
        session.state = BuyerState.START
        session.is_paid = True
        session.request_kind = None
        session.request_id = None
        await self._save_session(buyer_id, session, context)

    async def _send(self, chat_id: int, text: str, context: str, link: LinkButton | None = None) -> bool:
        try:
            await self.notifier.get().send_message(chat_id, text, link=link)
            return True
        except Exception as e:
            logger.warning("Failed to send %s to %s: %s", context, chat_id, e)
            return False

    async def _notify_admin(self, text: str, context: str) -> bool:
        try:
            notifier = self.notifier.get()
        except Exception as e:
            logger.warning("Failed to send %s to admin: %s", context, e)
            return False
        if not notifier.admin_id:
            logger.warning("ADMIN_ID is not configured, dropping %s", context)
            return False
        return await self._send(notifier.admin_id, text, context)

    async def _acknowledge(self, callback_id: str | None, text: str) -> None:
        if not callback_id:
            return
        try:
            await self.notifier.get().answer_callback(callback_id, text)
        except Exception as e:
            logger.warning("Failed to answer admin callback %s: %s", callback_id, e)

    def _pay_link(self, text: str) -> LinkButton:
        return LinkButton(text=text, url=self.settings.KASPI_PAY_URL)

    async def _lookup_store(self, db: Session, store_code: str | None, context: str) -> Store | None:
        """Store details for messages only; a failed read just leaves them out."""
        try:
            return await asyncio.to_thread(ledger.get_store, db, store_code)
        except SQLAlchemyError as e:
            logger.warning("Failed to load store %s for %s: %s", store_code, context, e)
            return None

    # --- order creation ---

    @staticmethod
    def _persist_order(db: Session, buyer: int, items: list[LineItem], method: PaymentMethod) -> Order:
        store_code = ledger.get_selected_store(db, buyer)
        return ledger.create_order(db, buyer, store_code, items, method.value)

    async def create_order(
        self,
        db: Session,
        buyer_id: str | int | None,
        raw_items: list[dict],
        delivery: DeliveryRequest | None = None,
        payment_method: PaymentMethod | str | None = None,
        confirmed: bool = True,
    ) -> OrderResult:
        """Persist an order with its lines and start waiting for the payment."""
        buyer = normalize_buyer_id(buyer_id)
        if buyer is None or not raw_items:
            raise OrderValidationError("telegram_id and items are required")
        items = build_line_items(raw_items)
        delivery = delivery or DeliveryRequest()
        try:
            method = PaymentMethod(payment_method or PaymentMethod.KASPI_LINK)
        except ValueError:
            raise OrderValidationError("unsupported payment_method")

        goods_total = sum(item.amount for item in items)
        delivery_price = 0
        if delivery.is_delivery:
            delivery_price = self.settings.DELIVERY_PRICE
            items.append(
                LineItem(
                    product_id=0,
                    name=DELIVERY_ITEM_NAME,
                    unit=DELIVERY_ITEM_UNIT,
                    qty=Decimal(1),
                    price=delivery_price,
                )
            )
        total = goods_total + delivery_price

        try:
            order = await asyncio.to_thread(self._persist_order, db, buyer, items, method)
        except SQLAlchemyError as e:
            logger.error("Failed to persist order for buyer %s: %s", buyer, e, exc_info=True)
            raise PersistenceError("db error") from e
        logger.info("Order %s created for buyer %s, total=%s", order.id, buyer, total)

        await self._save_session(
            buyer,
            BuyerSession.awaiting(RequestKind.ORDER, order.id, method, delivery.phone.strip()),
            "order awaiting payment",
        )

        store = await self._lookup_store(db, order.store_code, f"order {order.id}")
        await self._notify_admin(
            messages.new_order_admin_notice(
                buyer_id=buyer,
                items=items,
                total=total,
                payment_method=method,
                store=store,
                delivery_type=delivery.type,
                delivery_address=delivery.address,
                contact=delivery.phone,
                confirmed=confirmed,
            ),
            f"order {order.id} notice",
        )

        receipt = messages.order_receipt(
            order_id=order.id,
            items=items,
            total=total,
            payment_method=method,
            store=store,
            card_number=self.settings.KASPI_CARD_NUMBER,
            card_holder=self.settings.KASPI_CARD_HOLDER,
        )
        link = self._pay_link("💳 Pay with Kaspi") if method == PaymentMethod.KASPI_LINK else None
        await self._send(buyer, receipt, f"order {order.id} receipt", link=link)

        return OrderResult(
            order_id=order.id,
            goods_total=goods_total,
            delivery_price=delivery_price,
            total=total,
        )

    # --- subscription request ---

    async def request_subscription_invoice(self, db: Session, buyer_id: str | int | None, phone: str | None) -> Subscription:
        buyer = normalize_buyer_id(buyer_id)
        phone = (phone or "").strip()
        if buyer is None or not phone:
            raise OrderValidationError("telegram_id and phone are required")

        fee = self.settings.SUBSCRIPTION_FEE
        try:
            subscription = await asyncio.to_thread(ledger.open_subscription, db, buyer, phone, fee)
        except SQLAlchemyError as e:
            logger.error("Failed to persist subscription request for buyer %s: %s", buyer, e, exc_info=True)
            raise PersistenceError("db error") from e
        logger.info("Subscription %s requested by buyer %s", subscription.id, buyer)

        await self._save_session(
            buyer,
            BuyerSession.awaiting(RequestKind.SUBSCRIPTION, subscription.id, PaymentMethod.KASPI_LINK, phone),
            "subscription awaiting payment",
        )
        await self._notify_admin(
            messages.subscription_admin_notice(buyer, phone, fee),
            f"subscription {subscription.id} notice",
        )
        await self._send(
            buyer,
            messages.subscription_invoice(fee),
            f"subscription {subscription.id} invoice",
            link=self._pay_link("💳 Pay for the subscription"),
        )
        return subscription

    # --- receipt routing ---

    def _resolve_request(self, db: Session, buyer: int, session: BuyerSession) -> Subscription | Order | None:
        if session.request_kind == RequestKind.SUBSCRIPTION and session.request_id:
            subscription = ledger.get_subscription(db, session.request_id)
            if subscription and subscription.user_id == buyer and subscription.status == SUBSCRIPTION_PENDING:
                return subscription
        elif session.request_kind == RequestKind.ORDER and session.request_id:
            order = ledger.get_order(db, session.request_id)
            if order and order.user_id == buyer and order.status != ORDER_STATUS_PAID:
                return order

        subscription = ledger.latest_pending_subscription(db, buyer)
        if subscription is not None:
            return subscription
        return ledger.latest_order(db, buyer)

    async def confirm_payment_document(
        self,
        db: Session,
        buyer_id: int,
        document: DocumentRef | None,
    ) -> RoutedReceipt | None:
        """Forward a buyer's receipt to the admin with approve/reject controls.

        Returns None when the buyer is not waiting for a payment, has no open
        request to attach the receipt to, or sent no file, so the caller can
        fall back to its default reply. Raises NotificationError when the
        admin could not be reached.
        """
        if document is None:
            return None
        try:
            session = await self.sessions.get(buyer_id)
        except Exception as e:
            logger.warning("Failed to read session for buyer %s: %s", buyer_id, e)
            return None
        if session is None or session.state != BuyerState.AWAITING_PAYMENT:
            return None

        target = await asyncio.to_thread(self._resolve_request, db, buyer_id, session)
        if target is None:
            logger.info("Receipt from buyer %s has no open request to attach to", buyer_id)
            return None

        if isinstance(target, Subscription):
            routed = RoutedReceipt(RequestKind.SUBSCRIPTION, target.id)
            caption = messages.subscription_proof_caption(
                document.username, buyer_id, target.phone, target.amount, target.status
            )
            actions = [
                ActionButton("✅ Activate subscription", decision_token(VERB_SUB_OK, target.id, buyer_id)),
                ActionButton("❌ Reject", decision_token(VERB_SUB_REJECT, target.id, buyer_id)),
            ]
            buyer_text = messages.SUBSCRIPTION_RECEIPT_FORWARDED
        else:
            items = await asyncio.to_thread(ledger.order_items, db, target.id)
            routed = RoutedReceipt(RequestKind.ORDER, target.id)
            caption = messages.order_proof_caption(
                order_id=target.id,
                username=document.username,
                buyer_id=buyer_id,
                contact=session.contact,
                total_amount=target.total_amount,
                payment_method=session.payment_method,
                items=items,
            )
            actions = [
                ActionButton("✅ Confirm payment", decision_token(VERB_PAY_OK, target.id, buyer_id)),
                ActionButton("❌ Reject", decision_token(VERB_PAY_REJECT, target.id, buyer_id)),
            ]
            buyer_text = messages.RECEIPT_FORWARDED

        try:
            await self.notifier.get().copy_to_admin(document.chat_id, document.message_id, caption, actions)
        except Exception as e:
            logger.error("Failed to forward %s receipt %s to admin: %s", routed.kind.value, routed.entity_id, e)
            raise NotificationError("failed to forward receipt to admin") from e
        logger.info("Receipt from buyer %s routed to %s %s", buyer_id, routed.kind.value, routed.entity_id)

        await self._send(document.chat_id, buyer_text, "receipt forwarded notice")
        return routed

    # --- admin decisions ---

    async def handle_admin_decision(self, db: Session, token: str | None, callback_id: str | None = None) -> DecisionOutcome:
        decision = parse_decision_token(token)
        if decision is None:
            return DecisionOutcome.IGNORED

        handlers = {
            VERB_PAY_OK: self._approve_order,
            VERB_PAY_REJECT: self._reject_order,
            VERB_SUB_OK: self._approve_subscription,
            VERB_SUB_REJECT: self._reject_subscription,
        }
        try:
            outcome = await handlers[decision.verb](db, decision, callback_id)
        except SQLAlchemyError as e:
            logger.error("Failed to apply %s: %s", decision.token, e, exc_info=True)
            await self._acknowledge(callback_id, "Database error, try again ⚠️")
            raise PersistenceError("db error") from e
        logger.info("Admin decision %s -> %s", decision.token, outcome.value)
        return outcome

    async def _unapplied(self, outcome: TransitionOutcome, callback_id: str | None) -> DecisionOutcome:
        if outcome == TransitionOutcome.NOT_FOUND:
            await self._acknowledge(callback_id, "Request not found")
            return DecisionOutcome.NOT_FOUND
        await self._acknowledge(callback_id, "Already handled")
        return DecisionOutcome.ALREADY_HANDLED

    async def _approve_order(self, db: Session, decision: AdminDecision, callback_id: str | None) -> DecisionOutcome:
        outcome = await asyncio.to_thread(ledger.mark_order_paid, db, decision.entity_id, self.clock())
        if outcome != TransitionOutcome.APPLIED:
            return await self._unapplied(outcome, callback_id)

        await self._reset_session_paid(decision.buyer_id, "order paid")
        await self._acknowledge(callback_id, "Order payment confirmed ✅")
        await self._send(decision.buyer_id, messages.order_paid(decision.entity_id), "payment confirmation")
        return DecisionOutcome.APPLIED

    async def _reject_order(self, db: Session, decision: AdminDecision, callback_id: str | None) -> DecisionOutcome:
        outcome = await asyncio.to_thread(ledger.check_order_rejectable, db, decision.entity_id)
        if outcome != TransitionOutcome.APPLIED:
            return await self._unapplied(outcome, callback_id)

        await self._acknowledge(callback_id, "Order payment rejected ❌")
        await self._send(decision.buyer_id, messages.order_payment_rejected(decision.entity_id), "payment rejection")
        return DecisionOutcome.APPLIED

    async def _approve_subscription(self, db: Session, decision: AdminDecision, callback_id: str | None) -> DecisionOutcome:
        outcome, valid_until = await asyncio.to_thread(
            ledger.activate_subscription, db, decision.entity_id, self.clock()
        )
        if outcome != TransitionOutcome.APPLIED:
            return await self._unapplied(outcome, callback_id)

        await self._reset_session_paid(decision.buyer_id, "subscription active")
        await self._acknowledge(callback_id, "Subscription activated ✅")
        await self._send(decision.buyer_id, messages.subscription_activated(valid_until), "subscription activation")
        return DecisionOutcome.APPLIED

    async def _reject_subscription(self, db: Session, decision: AdminDecision, callback_id: str | None) -> DecisionOutcome:
        outcome = await asyncio.to_thread(ledger.reject_subscription, db, decision.entity_id)
        if outcome != TransitionOutcome.APPLIED:
            return await self._unapplied(outcome, callback_id)

        await self._acknowledge(callback_id, "Subscription payment rejected ❌")
        await self._send(decision.buyer_id, messages.SUBSCRIPTION_REJECTED, "subscription rejection")
        return DecisionOutcome.APPLIED
