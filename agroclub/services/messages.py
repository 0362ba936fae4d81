"""Texts sent to buyers and to the administrator."""
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from agroclub.models import Store
from agroclub.services.ledger import LineItem, line_amount
from agroclub.services.sessions import PaymentMethod

CURRENCY = "₸"


def human_payment_method(method: PaymentMethod | str | None) -> str:
    value = method.value if isinstance(method, PaymentMethod) else (method or "")
    if value == PaymentMethod.KASPI_TRANSFER.value:
        return "Kaspi Gold (transfer)"
    if value == PaymentMethod.CASH.value:
        return "Cash"
    return "Kaspi Pay (link)"


def _qty(value: Decimal | float) -> str:
    return f"{float(value):.2f}"


def _store_lines(store: Store | None, label: str = "Store") -> list[str]:
    if store is None:
        return []
    lines = [f"🏪 {label}: {store.name}"]
    if store.address:
        lines.append(f"📍 Address: {store.address}")
    return lines


def new_order_admin_notice(
    buyer_id: int,
    items: Iterable[LineItem],
    total: int,
    payment_method: PaymentMethod,
    store: Store | None,
    delivery_type: str = "",
    delivery_address: str = "",
    contact: str = "",
    confirmed: bool = True,
) -> str:
    lines = ["🧾 New order (confirmed)" if confirmed else "🧾 New order", "", f"👤 Telegram ID: {buyer_id}"]
    lines.extend(_store_lines(store))
    if confirmed:
        lines.append(f"💳 Payment method: {human_payment_method(payment_method)}")
        if delivery_type.lower() == "delivery":
            lines.append("🚚 Home delivery")
            if delivery_address.strip():
                lines.append(f"📬 Delivery address: {delivery_address.strip()}")
        else:
            lines.append("🏃 Pickup")
        if contact.strip():
            lines.append(f"📞 Phone: {contact.strip()}")
    lines.append("")
    lines.append("🛒 Items:")
    for item in items:
        lines.append(f"• {item.name} — {_qty(item.qty)} ({item.unit}) × {item.price} {CURRENCY}")
    lines.append(f"💰 Total (delivery included): {total} {CURRENCY}")
    return "\n".join(lines)


def order_receipt(
    order_id: int,
    items: Iterable[LineItem],
    total: int,
    payment_method: PaymentMethod,
    store: Store | None,
    card_number: str,
    card_holder: str,
) -> str:
    """Buyer-facing receipt; the sum is recomputed from the lines."""
    lines = [f"✅ Order #{order_id} accepted!", ""]
    lines.extend(_store_lines(store))
    lines.append(f"💳 Payment method: {human_payment_method(payment_method)}")
    lines.append("")
    lines.append("🛒 Items:")

    calc_total = 0
    for item in items:
        if item.qty <= 0 or item.price < 0:
            continue
        amount = line_amount(item.qty, item.price)
        calc_total += amount
        lines.append(f"• {item.name} — {_qty(item.qty)} {item.unit} × {item.price} {CURRENCY} = {amount} {CURRENCY}")
    if calc_total == 0 and total > 0:
        calc_total = total

    lines.append("")
    lines.append(f"💰 Amount due: {calc_total} {CURRENCY}")

    if payment_method == PaymentMethod.KASPI_TRANSFER:
        lines.append("")
        lines.append("📌 Kaspi Gold transfer details:")
        lines.append(f"Card number: {card_number}")
        lines.append(f"Recipient: {card_holder}")
        lines.append("")
        lines.append("After paying, send the PDF or a screenshot of the receipt here so we can confirm the payment ✅.")
    elif payment_method == PaymentMethod.CASH:
        lines.append("")
        lines.append("💵 Cash payment on receipt of the order.")
    return "\n".join(lines)


def subscription_admin_notice(buyer_id: int, phone: str, fee: int) -> str:
    return (
        "🧾 Subscription request\n\n"
        f"👤 Telegram ID: {buyer_id}\n"
        f"📞 Phone: {phone}\n"
        f"Amount: {fee} {CURRENCY}\n\n"
        "The buyer got the Kaspi Pay link and should send a receipt. Confirm the subscription once it arrives."
    )


def subscription_invoice(fee: int) -> str:
    return (
        f"💳 AGRO Club subscription — {fee} {CURRENCY}/month.\n\n"
        "Open the Kaspi Pay link and pay for the subscription, then send the receipt here "
        "(PDF or screenshot) so the administrator can confirm the payment.\n"
    )


def subscription_proof_caption(username: str | None, buyer_id: int, phone: str | None, amount: int, status: str) -> str:
    return (
        "💳 SUBSCRIPTION payment confirmation\n\n"
        f"👤 Buyer: @{username or '-'} (ID: {buyer_id})\n"
        f"📞 Phone (from the subscription): {phone or '-'}\n"
        f"💰 Amount: {amount} {CURRENCY}\n"
        f"📌 Status: {status}\n\n"
        "Check the receipt and activate or reject the subscription.\n"
    )


def order_proof_caption(
    order_id: int,
    username: str | None,
    buyer_id: int,
    contact: str,
    total_amount: int,
    payment_method: PaymentMethod | str | None,
    items: Iterable,
) -> str:
    lines = [
        f"💳 Payment confirmation for order #{order_id}",
        "",
        f"👤 Buyer: @{username or '-'} (ID: {buyer_id})",
        f"📞 Phone: {contact or '-'}",
        f"💰 Order total: {total_amount} {CURRENCY}",
        f"💳 Payment method: {human_payment_method(payment_method)}",
        "",
        "Check the receipt and confirm or reject the payment.",
    ]
    item_lines = []
    items_sum = 0
    for item in items:
        items_sum += item.amount
        item_lines.append(
            f"• {item.name} — {_qty(item.qty)} {item.unit} × {item.price} {CURRENCY} = {item.amount} {CURRENCY}"
        )
    if item_lines:
        lines.append("")
        lines.append("🛒 Order items:")
        lines.extend(item_lines)
        lines.append(f"💰 Sum of items: {items_sum} {CURRENCY}")
    return "\n".join(lines)


RECEIPT_FORWARDED = "✅ The receipt was sent to the administrator. We will check the payment and let you know."
SUBSCRIPTION_RECEIPT_FORWARDED = (
    "✅ The subscription receipt was sent to the administrator. We will check the payment and let you know."
)


def order_paid(order_id: int) -> str:
    return f"✅ Your payment for order #{order_id} is confirmed! Thank you for your order."


def order_payment_rejected(order_id: int) -> str:
    return (
        f"❌ The payment for order #{order_id} did not pass review.\n"
        "Please contact the administrator or send a correct receipt again."
    )


def subscription_activated(valid_until: datetime) -> str:
    return (
        "✅ Your AGRO Club wholesale subscription is active!\n"
        f"Wholesale prices are available until: {valid_until.strftime('%Y-%m-%d')}."
    )


SUBSCRIPTION_REJECTED = (
    "❌ The subscription payment did not pass review.\n"
    "Please contact the administrator or send a correct receipt again."
)

WELCOME = (
    "👋 Hi! Welcome to AGRO Club wholesale prices.\n"
    "Tap the button below to open the mini app, see wholesale prices, subscribe and place an order."
)
