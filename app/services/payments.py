"""
Payments: hosted checkout start, gateway webhooks (HyperPay, ClickPay) and refund bookkeeping.

Webhook bodies are signed with a lowercase hex HMAC-SHA256 of the raw body (X-Signature).
A completed payment marks the order paid and enqueues enrollment creation in one transaction.
"""
import hashlib
import hmac
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from urllib.parse import urlencode

from sqlmodel import Session, col, select

from app.core.config import get_default_gateway, get_payment_gateways, settings
from app.core.errors import ConflictError, NotConfigured, NotFoundError, ValidationFailed
from app.core.status import EnrollmentStatus, OrderStatus, PaymentStatus, is_terminal, transition
from app.models import AuditLog, Enrollment, Order, Payment
from app.services.enrollment import release_seat
from app.services.fulfillment import enqueue
from app.services.orders import get_order

log = logging.getLogger("academy.payments")

HYPERPAY = "HyperPay"
CLICKPAY = "ClickPay"

PAYABLE_ORDER_STATUSES = (
    OrderStatus.NEW.value,
    OrderStatus.PENDING_PAYMENT.value,
    OrderStatus.FAILED.value,
)


@dataclass
class WebhookEvent:
    order_id: int
    status: PaymentStatus
    transaction_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    message: str | None = None


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    if not signature or not secret:
        return False
    return hmac.compare_digest(sign(body, secret), signature.strip().lower())


def _secret_for(provider: str) -> str:
    if provider == HYPERPAY:
        return settings.hyperpay_webhook_secret
    if provider == CLICKPAY:
        return settings.clickpay_webhook_secret
    return ""


def _to_decimal(value) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except InvalidOperation:
        raise ValidationFailed("Invalid amount.")


def _to_order_id(value) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationFailed("Invalid order id.")


def parse_hyperpay(payload: dict) -> WebhookEvent:
    if "OrderId" not in payload or "Status" not in payload:
        raise ValidationFailed("Missing OrderId or Status.")
    raw = str(payload.get("Status") or "").strip().lower()
    if raw in ("paid", "success"):
        status = PaymentStatus.COMPLETED
    elif raw == "failed":
        status = PaymentStatus.FAILED
    elif raw == "cancelled":
        status = PaymentStatus.CANCELLED
    else:
        status = PaymentStatus.PROCESSING
    return WebhookEvent(
        order_id=_to_order_id(payload.get("OrderId")),
        status=status,
        transaction_id=payload.get("TransactionId") or None,
        amount=_to_decimal(payload.get("Amount")),
        currency=(payload.get("Currency") or None),
        message=raw,
    )


def parse_clickpay(payload: dict) -> WebhookEvent:
    if "cart_id" not in payload or "respCode" not in payload:
        raise ValidationFailed("Missing cart_id or respCode.")
    code = str(payload.get("respCode") or "").strip()
    return WebhookEvent(
        order_id=_to_order_id(payload.get("cart_id")),
        status=PaymentStatus.COMPLETED if code in ("00", "000") else PaymentStatus.FAILED,
        transaction_id=payload.get("tran_ref") or None,
        amount=_to_decimal(payload.get("cart_amount")),
        currency=(payload.get("cart_currency") or None),
        message=payload.get("respMessage"),
    )


_PARSERS = {HYPERPAY: parse_hyperpay, CLICKPAY: parse_clickpay}


def payment_config() -> dict:
    gateways = get_payment_gateways()
    return {
        "gateways": gateways,
        "default_gateway": get_default_gateway(),
        "show_selector": len(gateways) > 1,
    }


def _resolve_provider(provider: str | None) -> str:
    if not provider:
        return get_default_gateway()
    for g in get_payment_gateways():
        if g.lower() == provider.strip().lower():
            return g
    raise ValidationFailed("Unsupported payment provider.")


def _checkout_url(provider: str) -> str:
    return settings.clickpay_checkout_url if provider == CLICKPAY else settings.hyperpay_checkout_url


def start_checkout(
    db: Session,
    order_id: int,
    user_id: int,
    provider: str | None = None,
    return_url: str | None = None,
) -> tuple[Payment, str]:
    """Open a pending Payment for the order. Returns (payment, redirect_url)."""
    order = get_order(db, order_id, user_id)
    if order.status not in PAYABLE_ORDER_STATUSES:
        raise ConflictError(f"Order cannot be paid in status {order.status}.")
    provider = _resolve_provider(provider)
    if order.status != OrderStatus.PENDING_PAYMENT:
        transition(order, OrderStatus.PENDING_PAYMENT)
        db.add(order)
    payment = Payment(
        order_id=order.id,
        provider=provider,
        provider_ref=uuid.uuid4().hex,
        amount=Decimal(order.amount),
        currency=order.currency,
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    params = {"checkoutId": payment.provider_ref, "orderId": order.id}
    if return_url:
        params["returnUrl"] = return_url
    redirect_url = f"{_checkout_url(provider)}?{urlencode(params)}"
    log.info("Checkout %s opened for order %s via %s", payment.provider_ref, order.id, provider)
    return payment, redirect_url


def _find_payment(db: Session, order: Order, provider: str, event: WebhookEvent) -> Payment | None:
    if event.transaction_id:
        by_tx = db.exec(
            select(Payment).where(Payment.order_id == order.id, Payment.transaction_id == event.transaction_id)
        ).first()
        if by_tx:
            return by_tx
    payments = db.exec(
        select(Payment)
        .where(Payment.order_id == order.id, Payment.provider == provider)
        .order_by(col(Payment.created_at).desc(), col(Payment.id).desc())
    ).all()
    for p in payments:
        if not is_terminal(PaymentStatus(p.status)):
            return p
    return payments[0] if payments else None


def handle_webhook(db: Session, provider: str, body: bytes, signature: str | None) -> tuple[dict, bool]:
    """
    Verify, parse and apply one gateway notification.
    Returns (ack, order_became_paid). Replays of an already settled payment change nothing.
    """
    secret = _secret_for(provider)
    if not secret:
        log.error("%s webhook secret not configured; rejecting webhook", provider)
        raise NotConfigured("Webhook not configured.")
    if not verify_signature(body, signature, secret):
        log.warning("%s webhook: invalid signature", provider)
        raise ValidationFailed("Invalid signature.")
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise ValidationFailed("Invalid payload.")
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid payload.")
    event = _PARSERS[provider](payload)

    order = db.get(Order, event.order_id)
    if not order:
        raise NotFoundError("Order not found.")
    payment = _find_payment(db, order, provider, event)
    if not payment:
        raise NotFoundError("Payment not found.")

    ack = {"ok": True, "order_id": order.id, "replay": False}
    current = PaymentStatus(payment.status)
    if current == event.status or is_terminal(current):
        if current != event.status:
            log.warning(
                "%s webhook for settled payment %s ignored (%s reported, %s stored)",
                provider, payment.id, event.status.value, current.value,
            )
        ack.update(order_status=order.status, payment_status=payment.status, replay=True)
        return ack, False

    payment.raw_payload = body.decode("utf-8")[:10000]
    if event.transaction_id:
        payment.transaction_id = event.transaction_id
    became_paid = False
    if event.status == PaymentStatus.COMPLETED:
        if event.amount is not None and event.amount != Decimal(order.amount):
            raise ValidationFailed("Amount mismatch.")
        if event.currency and event.currency.strip().upper() != order.currency:
            log.warning("%s webhook: order %s currency %s, gateway reported %s", provider, order.id, order.currency, event.currency)
            raise ValidationFailed("Currency mismatch.")
        transition(payment, PaymentStatus.COMPLETED)
        payment.captured_at = datetime.utcnow()
        if order.status == OrderStatus.FAILED:
            transition(order, OrderStatus.PENDING_PAYMENT)
        if order.status in (OrderStatus.NEW, OrderStatus.PENDING_PAYMENT):
            transition(order, OrderStatus.PAID)
            enqueue(db, order.id)
            became_paid = True
        else:
            # a second payment captured for an order that was already paid
            log.warning("%s webhook: payment %s captured but order %s is already %s", provider, payment.id, order.id, order.status)
            db.add(
                AuditLog(
                    event="payment_double_capture",
                    user_id=order.user_id,
                    subject=f"order:{order.id}",
                    detail=f"payment:{payment.id} {provider} tx={event.transaction_id or '-'} order_status={order.status}",
                )
            )
    elif event.status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
        transition(payment, event.status)
        if order.status == OrderStatus.PENDING_PAYMENT:
            transition(order, OrderStatus.FAILED)
    else:
        transition(payment, PaymentStatus.PROCESSING)
    db.add(payment)
    db.add(order)
    db.add(
        AuditLog(
            event="payment_webhook",
            user_id=order.user_id,
            subject=f"payment:{payment.id}",
            detail=f"{provider} {event.status.value} tx={event.transaction_id or '-'}",
        )
    )
    db.commit()
    log.info("%s webhook: order %s -> %s, payment %s -> %s", provider, order.id, order.status, payment.id, payment.status)
    ack.update(order_status=order.status, payment_status=payment.status)
    return ack, became_paid


def refund_payment(db: Session, payment_id: int, note: str | None = None) -> Payment:
    """Bookkeeping only: the gateway refund itself happens outside this service."""
    payment = db.get(Payment, payment_id)
    if not payment:
        raise NotFoundError("Payment not found.")
    order = db.get(Order, payment.order_id)
    transition(payment, PaymentStatus.REFUNDED)
    transition(order, OrderStatus.REFUNDED)
    if note:
        payment.admin_note = note
    enrollments = db.exec(select(Enrollment).where(Enrollment.order_id == order.id)).all()
    for e in enrollments:
        if e.status in (EnrollmentStatus.PENDING, EnrollmentStatus.PAID, EnrollmentStatus.NOTIFIED):
            transition(e, EnrollmentStatus.CANCELLED)
            if e.session_id:
                release_seat(db, e.session_id)
            db.add(e)
    db.add(payment)
    db.add(order)
    db.add(AuditLog(event="payment_refund", user_id=order.user_id, subject=f"payment:{payment.id}", detail=note))
    db.commit()
    db.refresh(payment)
    log.info("Payment %s refunded (order %s)", payment.id, order.id)
    return payment


def return_redirect_url(order_id: int, status: str | None) -> str:
    frontend = (settings.frontend_url or "").rstrip("/")
    outcome = "success" if (status or "").lower() in ("success", "paid", "completed", "00", "000") else "failed"
    return f"{frontend}/en/checkout/{outcome}?orderId={order_id}"
