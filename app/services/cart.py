"""
Cart workflow: init, add/remove items, view, merge an anonymous cart into a user's cart.

Duplicates are rejected by the uq_cart_item constraint on insert, never by a prior read.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.core.config import settings
from app.core.errors import AccessDenied, NotFoundError, SessionFullError, ValidationFailed
from app.core.status import ACTIVE_ENROLLMENT_STATUSES
from app.models import Cart, CartItem, Course, CourseSession, Enrollment
from app.schemas.cart import CartItemResponse, CartResponse, CartSessionInfo

log = logging.getLogger("academy.cart")


def session_key(session_id: int | None) -> int:
    return session_id or 0


def is_session_full(session: CourseSession) -> bool:
    return session.capacity is not None and session.seats_taken >= session.capacity


def get_active_course(db: Session, course_id: int) -> Course:
    course = db.get(Course, course_id)
    if not course or not course.is_active:
        raise ValidationFailed("Course not found or inactive.")
    return course


def check_session(db: Session, course_id: int, session_id: int | None) -> CourseSession | None:
    """Session must belong to the course and have a free seat."""
    if session_id is None:
        return None
    session = db.get(CourseSession, session_id)
    if not session or session.course_id != course_id:
        raise ValidationFailed("Invalid session.")
    if is_session_full(session):
        raise SessionFullError("Session is full.")
    return session


def is_enrolled(db: Session, user_id: int, course_id: int, session_id: int | None) -> bool:
    """True when the user already holds this course (and session) as paid, notified or completed."""
    stmt = select(Enrollment.id).where(
        Enrollment.user_id == user_id,
        Enrollment.course_id == course_id,
        Enrollment.session_key == session_key(session_id),
        col(Enrollment.status).in_([s.value for s in ACTIVE_ENROLLMENT_STATUSES]),
    )
    return db.exec(stmt).first() is not None


def ensure_not_enrolled(db: Session, user_id: int | None, course_id: int, session_id: int | None) -> None:
    if user_id is not None and is_enrolled(db, user_id, course_id, session_id):
        raise ValidationFailed("Already enrolled in this course.")


def _user_cart(db: Session, user_id: int) -> Cart:
    cart = db.exec(select(Cart).where(Cart.user_id == user_id)).first()
    if cart:
        return cart
    cart = Cart(user_id=user_id)
    db.add(cart)
    db.commit()
    db.refresh(cart)
    log.info("Created cart %s for user %s", cart.id, user_id)
    return cart


def init_cart(db: Session, user_id: int | None = None, anonymous_id: str | None = None) -> Cart:
    if user_id is not None:
        return _user_cart(db, user_id)
    anonymous_id = (anonymous_id or "").strip() or uuid.uuid4().hex
    cart = db.exec(select(Cart).where(Cart.anonymous_id == anonymous_id)).first()
    if cart:
        return cart
    cart = Cart(anonymous_id=anonymous_id)
    db.add(cart)
    db.commit()
    db.refresh(cart)
    log.info("Created anonymous cart %s", cart.id)
    return cart


def ensure_cart_access(cart: Cart, user_id: int | None, anonymous_id: str | None) -> None:
    if cart.user_id is not None:
        if cart.user_id != user_id:
            raise AccessDenied("This cart belongs to another user.")
        return
    if not anonymous_id or anonymous_id != cart.anonymous_id:
        raise AccessDenied("Cart access denied.")


def get_cart_for(db: Session, cart_id: int, user_id: int | None, anonymous_id: str | None) -> Cart:
    cart = db.get(Cart, cart_id)
    if not cart:
        raise NotFoundError("Cart not found.")
    ensure_cart_access(cart, user_id, anonymous_id)
    return cart


def add_item(db: Session, cart: Cart, course_id: int, session_id: int | None = None) -> CartItem:
    get_active_course(db, course_id)
    check_session(db, course_id, session_id)
    ensure_not_enrolled(db, cart.user_id, course_id, session_id)
    item = CartItem(
        cart_id=cart.id,
        course_id=course_id,
        session_id=session_id,
        session_key=session_key(session_id),
        qty=1,
    )
    db.add(item)
    cart.updated_at = datetime.utcnow()
    db.add(cart)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationFailed("Item already in cart.")
    db.refresh(item)
    log.info("Cart %s: added course %s session %s", cart.id, course_id, session_id)
    return item


def remove_item(db: Session, item_id: int, user_id: int | None, anonymous_id: str | None) -> None:
    item = db.get(CartItem, item_id)
    if not item:
        raise NotFoundError("Cart item not found.")
    cart = get_cart_for(db, item.cart_id, user_id, anonymous_id)
    db.delete(item)
    cart.updated_at = datetime.utcnow()
    db.add(cart)
    db.commit()
    log.info("Cart %s: removed item %s", cart.id, item_id)


def cart_items(db: Session, cart_id: int) -> list[CartItem]:
    return list(db.exec(select(CartItem).where(CartItem.cart_id == cart_id).order_by(CartItem.id)).all())


def cart_view(db: Session, cart: Cart) -> CartResponse:
    rows: list[CartItemResponse] = []
    total = Decimal("0.00")
    currency = None
    for item in cart_items(db, cart.id):
        course = db.get(Course, item.course_id)
        if not course:
            continue
        session_info = None
        if item.session_id:
            s = db.get(CourseSession, item.session_id)
            if s:
                session_info = CartSessionInfo(
                    id=s.id,
                    title_en=s.title_en,
                    title_ar=s.title_ar,
                    start_at=s.start_at,
                    end_at=s.end_at,
                    capacity=s.capacity,
                    seats_left=max(s.capacity - s.seats_taken, 0) if s.capacity is not None else None,
                )
        price = Decimal(course.price)
        rows.append(
            CartItemResponse(
                id=item.id,
                course_id=course.id,
                course_title_en=course.title_en,
                course_title_ar=course.title_ar,
                price=price,
                currency=course.currency,
                qty=item.qty,
                session=session_info,
            )
        )
        total += price * item.qty
        currency = currency or course.currency
    return CartResponse(
        id=cart.id,
        user_id=cart.user_id,
        anonymous_id=cart.anonymous_id,
        items=rows,
        total=total.quantize(Decimal("0.01")),
        currency=currency or settings.default_currency,
    )


def delete_cart(db: Session, cart: Cart) -> None:
    """Removes items and the cart; caller commits."""
    for item in cart_items(db, cart.id):
        db.delete(item)
    db.flush()
    db.delete(cart)


def merge(db: Session, anonymous_id: str, user_id: int) -> Cart:
    """Move an anonymous cart's items into the user's cart. Running it again is a no-op."""
    user_cart = _user_cart(db, user_id)
    anon = db.exec(select(Cart).where(Cart.anonymous_id == anonymous_id)).first()
    if not anon or anon.id == user_cart.id:
        return user_cart
    existing = {(i.course_id, i.session_key) for i in cart_items(db, user_cart.id)}
    moved = 0
    for item in cart_items(db, anon.id):
        key = (item.course_id, item.session_key)
        if key in existing or is_enrolled(db, user_id, item.course_id, item.session_id):
            continue
        existing.add(key)
        db.add(
            CartItem(
                cart_id=user_cart.id,
                course_id=item.course_id,
                session_id=item.session_id,
                session_key=item.session_key,
                qty=item.qty,
            )
        )
        moved += 1
    delete_cart(db, anon)
    user_cart.updated_at = datetime.utcnow()
    db.add(user_cart)
    db.commit()
    db.refresh(user_cart)
    log.info("Merged anonymous cart %s into cart %s (%s items moved)", anon.id, user_cart.id, moved)
    return user_cart
