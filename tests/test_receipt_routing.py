import pytest

from conftest import BUYER_ID, make_subscription, run
from agroclub.services.sessions import BuyerSession, BuyerState, PaymentMethod, RequestKind
from agroclub.services.workflow import DocumentRef, NotificationError

ITEMS = [{"product_id": 1, "name": "Potatoes", "unit": "kg", "qty": 2, "price": 500}]
RECEIPT = DocumentRef(chat_id=BUYER_ID, message_id=42, username="buyer")


def test_receipt_for_order(engine, db, notifier):
    order = run(engine.create_order(db, BUYER_ID, ITEMS, payment_method="kaspi_transfer"))

    routed = run(engine.confirm_payment_document(db, BUYER_ID, RECEIPT))

    assert routed.kind == RequestKind.ORDER
    assert routed.entity_id == order.order_id
    from_chat, message_id, caption, actions = notifier.copies[-1]
    assert (from_chat, message_id) == (BUYER_ID, 42)
    assert f"order #{order.order_id}" in caption
    assert "Kaspi Gold (transfer)" in caption
    assert "Potatoes" in caption
    assert [a.callback_data for a in actions] == [
        f"pay_ok:{order.order_id}:{BUYER_ID}",
        f"pay_reject:{order.order_id}:{BUYER_ID}",
    ]
    assert "sent to the administrator" in notifier.sent_to(BUYER_ID)[-1]


def test_pending_subscription_wins_over_prior_orders(engine, db, notifier):
    """Test a receipt after a subscription request is routed as subscription proof."""
    run(engine.create_order(db, BUYER_ID, ITEMS))
    run(engine.create_order(db, BUYER_ID, ITEMS))
    subscription = run(engine.request_subscription_invoice(db, BUYER_ID, "+77010000000"))

    routed = run(engine.confirm_payment_document(db, BUYER_ID, RECEIPT))

    assert routed.kind == RequestKind.SUBSCRIPTION
    assert routed.entity_id == subscription.id
    _, _, caption, actions = notifier.copies[-1]
    assert "SUBSCRIPTION" in caption
    assert "+77010000000" in caption
    assert [a.callback_data for a in actions] == [
        f"sub_ok:{subscription.id}:{BUYER_ID}",
        f"sub_reject:{subscription.id}:{BUYER_ID}",
    ]


def test_session_reference_selects_the_order(engine, db, notifier):
    """Test an order placed after a subscription request is what the receipt pays for."""
    run(engine.request_subscription_invoice(db, BUYER_ID, "+77010000000"))
    order = run(engine.create_order(db, BUYER_ID, ITEMS))

    routed = run(engine.confirm_payment_document(db, BUYER_ID, RECEIPT))

    assert routed.kind == RequestKind.ORDER
    assert routed.entity_id == order.order_id


def test_without_reference_falls_back_to_pending_subscription(engine, db, sessions):
    run(engine.create_order(db, BUYER_ID, ITEMS))
    subscription = make_subscription(db)
    run(
        sessions.set(
            BUYER_ID,
            BuyerSession(state=BuyerState.AWAITING_PAYMENT, payment_method=PaymentMethod.KASPI_LINK),
        )
    )

    routed = run(engine.confirm_payment_document(db, BUYER_ID, RECEIPT))

    assert routed.kind == RequestKind.SUBSCRIPTION
    assert routed.entity_id == subscription.id


def test_stale_reference_falls_back(engine, db, sessions):
    """Test a reference to an already paid order is not reused."""
    first = run(engine.create_order(db, BUYER_ID, ITEMS))
    second = run(engine.create_order(db, BUYER_ID, ITEMS))
    run(engine.handle_admin_decision(db, f"pay_ok:{first.order_id}:{BUYER_ID}"))
    run(sessions.set(BUYER_ID, BuyerSession.awaiting(RequestKind.ORDER, first.order_id, PaymentMethod.CASH, "")))

    routed = run(engine.confirm_payment_document(db, BUYER_ID, RECEIPT))

    assert routed.entity_id == second.order_id


def test_receipt_ignored_without_session(engine, db, notifier):
    run(engine.create_order(db, BUYER_ID, ITEMS))

    assert run(engine.confirm_payment_document(db, 777, DocumentRef(chat_id=777, message_id=1))) is None
    assert notifier.copies == []


def test_receipt_ignored_after_payment_confirmed(engine, db, notifier):
    order = run(engine.create_order(db, BUYER_ID, ITEMS))
    run(engine.handle_admin_decision(db, f"pay_ok:{order.order_id}:{BUYER_ID}"))

    assert run(engine.confirm_payment_document(db, BUYER_ID, RECEIPT)) is None
    assert notifier.copies == []


def test_receipt_ignored_without_document(engine, db, notifier):
    run(engine.create_order(db, BUYER_ID, ITEMS))

    assert run(engine.confirm_payment_document(db, BUYER_ID, None)) is None
    assert notifier.copies == []


def test_admin_unreachable_raises(engine, db, notifier):
    run(engine.create_order(db, BUYER_ID, ITEMS))
    notifier.fail_copy = True
    before = len(notifier.messages)

    with pytest.raises(NotificationError):
        run(engine.confirm_payment_document(db, BUYER_ID, RECEIPT))

    assert len(notifier.messages) == before


def test_buyer_ack_failure_is_not_raised(engine, db, notifier):
    run(engine.create_order(db, BUYER_ID, ITEMS))
    notifier.fail_send = True

    routed = run(engine.confirm_payment_document(db, BUYER_ID, RECEIPT))

    assert routed.kind == RequestKind.ORDER
    assert len(notifier.copies) == 1


def test_receipt_without_any_open_request_is_not_forwarded(engine, db, notifier, sessions):
    """Test a buyer awaiting payment with nothing in the ledger gets no dead admin buttons."""
    run(
        sessions.set(
            BUYER_ID,
            BuyerSession(state=BuyerState.AWAITING_PAYMENT, payment_method=PaymentMethod.CASH),
        )
    )

    assert run(engine.confirm_payment_document(db, BUYER_ID, RECEIPT)) is None
    assert notifier.copies == []
    assert notifier.sent_to(BUYER_ID) == []


def test_forwarded_buttons_are_actionable(engine, db, notifier):
    from agroclub.services.workflow import parse_decision_token

    run(engine.create_order(db, BUYER_ID, ITEMS))
    run(engine.confirm_payment_document(db, BUYER_ID, RECEIPT))

    _, _, _, actions = notifier.copies[-1]
    assert all(parse_decision_token(action.callback_data) is not None for action in actions)
