"""
Enrollment creation for paid orders, the manual repair tool and the learner's enrollment views.

Creation is idempotent: an existing (user, course, session_key) row is reused, and the
unique constraint turns a concurrent duplicate into a ConflictError the queue retries.
"""
import logging

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.core.errors import ConflictError, NotFoundError, SessionFullError
from app.core.status import (
    ACTIVE_ENROLLMENT_STATUSES,
    FINISHED_ENROLLMENT_STATUSES,
    EnrollmentStatus,
    OrderStatus,
    transition,
)
from app.models import Course, CourseSession, Enrollment, FulfillmentJob, Order
from app.schemas.enrollment import MyEnrollmentResponse, SessionInfo
from app.services.orders import order_items

log = logging.getLogger("academy.enrollment")

FULFILLABLE_ORDER_STATUSES = (OrderStatus.PAID.value, OrderStatus.UNDER_PROCESS.value)

_DISPLAY_STATUS = {
    EnrollmentStatus.PENDING.value: "pending",
    EnrollmentStatus.PAID.value: "active",
    EnrollmentStatus.NOTIFIED.value: "active",
    EnrollmentStatus.COMPLETED.value: "completed",
    EnrollmentStatus.CANCELLED.value: "cancelled",
}


def _expire_session_row(db: Session, session_id: int) -> None:
    cached = db.get(CourseSession, session_id)
    if cached is not None:
        db.expire(cached)


def claim_seat(db: Session, session_id: int, enforce: bool = True) -> bool:
    """
    Take one seat with a single conditional UPDATE.
    enforce=False always takes the seat (a paid buyer is never refused) and logs overbooking.
    """
    db.flush()
    stmt = update(CourseSession).where(col(CourseSession.id) == session_id)
    if enforce:
        stmt = stmt.where(
            or_(
                col(CourseSession.capacity).is_(None),
                col(CourseSession.seats_taken) < col(CourseSession.capacity),
            )
        )
    stmt = stmt.values(seats_taken=col(CourseSession.seats_taken) + 1)
    claimed = db.connection().execute(stmt).rowcount > 0
    _expire_session_row(db, session_id)
    if enforce and not claimed:
        raise SessionFullError("Session is full.")
    session = db.get(CourseSession, session_id)
    if session is not None and session.capacity is not None and session.seats_taken > session.capacity:
        log.warning("Session %s overbooked: %s/%s", session_id, session.seats_taken, session.capacity)
    return claimed


def release_seat(db: Session, session_id: int) -> None:
    db.flush()
    stmt = (
        update(CourseSession)
        .where(col(CourseSession.id) == session_id, col(CourseSession.seats_taken) > 0)
        .values(seats_taken=col(CourseSession.seats_taken) - 1)
    )
    db.connection().execute(stmt)
    _expire_session_row(db, session_id)


def find_enrollment(db: Session, user_id: int, course_id: int, session_key: int) -> Enrollment | None:
    stmt = select(Enrollment).where(
        Enrollment.user_id == user_id,
        Enrollment.course_id == course_id,
        Enrollment.session_key == session_key,
    )
    return db.exec(stmt).first()


def _needs_enrollment(enrollment: Enrollment | None, order: Order) -> bool:
    if enrollment is None:
        return True
    # a cancelled seat bought again by a later order
    return enrollment.status == EnrollmentStatus.CANCELLED and enrollment.order_id != order.id


def item_enrollments(db: Session, order: Order) -> list[tuple]:
    """(item, enrollment or None) for every order item, matched by (user, course, session_key)."""
    return [
        (item, find_enrollment(db, order.user_id, item.course_id, item.session_id or 0))
        for item in order_items(db, order.id)
    ]


def missing_items(db: Session, order: Order) -> list:
    return [item for item, enrollment in item_enrollments(db, order) if _needs_enrollment(enrollment, order)]


def create_enrollments_for_order(db: Session, order: Order) -> int:
    """
    Create one paid enrollment per order item that has none yet, or reactivate a cancelled
    one for this order. Returns how many were created or reactivated.
    """
    if order.status not in FULFILLABLE_ORDER_STATUSES:
        raise ConflictError(f"Order {order.id} is not paid (status {order.status}).")
    created = 0
    try:
        for item, enrollment in item_enrollments(db, order):
            if not _needs_enrollment(enrollment, order):
                if enrollment.order_id != order.id:
                    log.warning(
                        "Order %s: course %s already held by enrollment %s (order %s)",
                        order.id, item.course_id, enrollment.id, enrollment.order_id,
                    )
                continue
            if enrollment is None:
                enrollment = Enrollment(
                    user_id=order.user_id,
                    course_id=item.course_id,
                    session_id=item.session_id,
                    session_key=item.session_id or 0,
                    order_id=order.id,
                    status=EnrollmentStatus.PAID.value,
                )
            else:
                log.info("Enrollment %s reactivated for order %s", enrollment.id, order.id)
                transition(enrollment, EnrollmentStatus.PAID)
                enrollment.order_id = order.id
                enrollment.session_id = item.session_id
            db.add(enrollment)
            if item.session_id:
                claim_seat(db, item.session_id, enforce=False)
            created += 1
        complete_order_if_done(db, order.id)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Enrollment for order {order.id} was created concurrently.")
    if created:
        log.info("Order %s: created %s enrollment(s)", order.id, created)
    return created


def complete_order_if_done(db: Session, order_id: int | None) -> bool:
    """
    paid/under_process -> processed once every item has an enrollment and all of them
    are completed or cancelled. Caller commits.
    """
    if order_id is None:
        return False
    order = db.get(Order, order_id)
    if not order or order.status not in FULFILLABLE_ORDER_STATUSES:
        return False
    db.flush()
    pairs = item_enrollments(db, order)
    if not pairs or any(_needs_enrollment(enrollment, order) for _, enrollment in pairs):
        return False
    if any(enrollment.status not in FINISHED_ENROLLMENT_STATUSES for _, enrollment in pairs):
        return False
    transition(order, OrderStatus.PROCESSED)
    db.add(order)
    log.info("Order %s processed", order.id)
    return True


def fix_missing_enrollments(db: Session) -> dict:
    """Backfill enrollments for paid orders. One failing order does not stop the scan."""
    orders = db.exec(
        select(Order).where(col(Order.status).in_(FULFILLABLE_ORDER_STATUSES)).order_by(Order.id)
    ).all()
    result = {"orders_checked": 0, "orders_fixed": 0, "enrollments_created": 0, "failures": []}
    for order in orders:
        result["orders_checked"] += 1
        if not missing_items(db, order):
            continue
        try:
            created = create_enrollments_for_order(db, order)
        except Exception as e:
            db.rollback()
            log.exception("fix-missing-enrollments failed for order %s", order.id)
            result["failures"].append({"order_id": order.id, "error": str(e)[:500]})
            continue
        if created:
            result["orders_fixed"] += 1
            result["enrollments_created"] += created
    log.info(
        "fix-missing-enrollments: checked=%s fixed=%s created=%s failures=%s",
        result["orders_checked"],
        result["orders_fixed"],
        result["enrollments_created"],
        len(result["failures"]),
    )
    return result


def enrollment_diagnostics(db: Session) -> dict:
    paid_orders = db.exec(select(Order).where(col(Order.status).in_(FULFILLABLE_ORDER_STATUSES))).all()
    by_status = db.exec(select(Enrollment.status, func.count()).group_by(Enrollment.status)).all()
    jobs = db.exec(select(FulfillmentJob.status, func.count()).group_by(FulfillmentJob.status)).all()
    return {
        "paid_orders": len(paid_orders),
        "orders_missing_enrollments": [o.id for o in paid_orders if missing_items(db, o)],
        "enrollments_by_status": {status: count for status, count in by_status},
        "jobs_by_status": {status: count for status, count in jobs},
    }


def _my_view(db: Session, enrollment: Enrollment) -> MyEnrollmentResponse:
    course = db.get(Course, enrollment.course_id)
    session_info = None
    if enrollment.session_id:
        s = db.get(CourseSession, enrollment.session_id)
        if s:
            session_info = SessionInfo(
                id=s.id,
                title_en=s.title_en,
                title_ar=s.title_ar,
                start_at=s.start_at,
                end_at=s.end_at,
                teams_link=s.teams_link,
            )
    completed = enrollment.status == EnrollmentStatus.COMPLETED
    return MyEnrollmentResponse(
        id=enrollment.id,
        course_id=enrollment.course_id,
        course_slug=course.slug if course else "",
        course_title_en=course.title_en if course else "",
        course_title_ar=course.title_ar if course else "",
        course_type=course.type if course else "",
        status=_DISPLAY_STATUS.get(enrollment.status, enrollment.status),
        progress=100 if completed else 0,
        enrolled_at=enrollment.enrolled_at,
        session=session_info,
    )


def my_enrollments(db: Session, user_id: int) -> list[MyEnrollmentResponse]:
    stmt = (
        select(Enrollment)
        .where(
            Enrollment.user_id == user_id,
            col(Enrollment.status).in_([s.value for s in ACTIVE_ENROLLMENT_STATUSES]),
        )
        .order_by(col(Enrollment.enrolled_at).desc(), col(Enrollment.id).desc())
    )
    return [_my_view(db, e) for e in db.exec(stmt).all()]


def my_enrollment(db: Session, user_id: int, enrollment_id: int) -> MyEnrollmentResponse:
    enrollment = db.get(Enrollment, enrollment_id)
    if not enrollment or enrollment.user_id != user_id:
        raise NotFoundError("Enrollment not found.")
    return _my_view(db, enrollment)
