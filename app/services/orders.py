"""Orders: snapshot a cart into an Order with OrderItems, listings and guarded status changes."""
import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlmodel import Session, select

from app.core.errors import AccessDenied, NotFoundError, ValidationFailed
from app.core.status import OrderStatus, transition
from app.models import AuditLog, Cart, Course, Order, OrderItem
from app.schemas.orders import OrderItemResponse, OrderResponse
from app.services.cart import (
    cart_items,
    check_session,
    delete_cart,
    ensure_cart_access,
    ensure_not_enrolled,
    get_active_course,
)

log = logging.getLogger("academy.orders")


def create_from_cart(db: Session, cart_id: int, user_id: int, anonymous_id: str | None = None) -> Order:
    cart = db.get(Cart, cart_id)
    if not cart:
        raise NotFoundError("Cart not found.")
    if cart.user_id is not None and cart.user_id != user_id:
        raise AccessDenied("This cart belongs to another user.")
    if cart.user_id is None:
        ensure_cart_access(cart, None, anonymous_id)
    items = cart_items(db, cart.id)
    if not items:
        raise ValidationFailed("Cart is empty.")

    lines: list[tuple[Course, int | None, int]] = []
    for item in items:
        course = get_active_course(db, item.course_id)
        check_session(db, course.id, item.session_id)
        ensure_not_enrolled(db, user_id, course.id, item.session_id)
        lines.append((course, item.session_id, item.qty))

    currencies = {course.currency for course, _, _ in lines}
    if len(currencies) > 1:
        raise ValidationFailed("Cart contains courses in different currencies.")
    currency = lines[0][0].currency
    amount = sum((Decimal(course.price) * qty for course, _, qty in lines), Decimal("0.00"))

    order = Order(user_id=user_id, amount=amount.quantize(Decimal("0.01")), currency=currency)
    db.add(order)
    db.flush()
    for course, session_id, qty in lines:
        db.add(
            OrderItem(
                order_id=order.id,
                course_id=course.id,
                session_id=session_id,
                course_title_en=course.title_en,
                course_title_ar=course.title_ar,
                price=Decimal(course.price),
                currency=course.currency,
                qty=qty,
            )
        )
    delete_cart(db, cart)
    db.commit()
    db.refresh(order)
    log.info("Order %s created for user %s: %s %s (%s items)", order.id, user_id, order.amount, currency, len(lines))
    return order


def order_items(db: Session, order_id: int) -> list[OrderItem]:
    return list(db.exec(select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)).all())


def order_view(db: Session, order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        user_id=order.user_id,
        amount=Decimal(order.amount),
        currency=order.currency,
        status=order.status,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=[
            OrderItemResponse(
                id=i.id,
                course_id=i.course_id,
                session_id=i.session_id,
                course_title_en=i.course_title_en,
                course_title_ar=i.course_title_ar,
                price=Decimal(i.price),
                currency=i.currency,
                qty=i.qty,
            )
            for i in order_items(db, order.id)
        ],
    )


def list_orders(db: Session, user_id: int) -> list[Order]:
    stmt = select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
    return list(db.exec(stmt).all())


def get_order(db: Session, order_id: int, user_id: int | None = None) -> Order:
    """user_id given: the order must belong to that user."""
    order = db.get(Order, order_id)
    if not order or (user_id is not None and order.user_id != user_id):
        raise NotFoundError("Order not found.")
    return order


def admin_list_orders(
    db: Session,
    status: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Order], int]:
    stmt = select(Order)
    count_stmt = select(func.count()).select_from(Order)
    if status:
        stmt = stmt.where(Order.status == status)
        count_stmt = count_stmt.where(Order.status == status)
    if date_from:
        stmt = stmt.where(Order.created_at >= date_from)
        count_stmt = count_stmt.where(Order.created_at >= date_from)
    if date_to:
        stmt = stmt.where(Order.created_at <= date_to)
        count_stmt = count_stmt.where(Order.created_at <= date_to)
    total = db.exec(count_stmt).one()
    page = max(page, 1)
    page_size = min(max(page_size, 1), 100)
    stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * page_size).limit(page_size)
    return list(db.exec(stmt).all()), int(total)


def set_order_status(db: Session, order_id: int, new_status: OrderStatus, note: str | None = None) -> Order:
    order = get_order(db, order_id)
    previous = order.status
    transition(order, new_status)
    db.add(order)
    db.add(AuditLog(event="order_status", subject=f"order:{order.id}", detail=f"{previous} -> {order.status}" + (f" ({note})" if note else "")))
    db.commit()
    db.refresh(order)
    log.info("Order %s status %s -> %s", order.id, previous, order.status)
    return order
