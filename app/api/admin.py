"""Operator API (X-Admin-Secret): orders, fulfillment, live sessions, refunds, catalog maintenance."""
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlmodel import Session, select

from app.api.catalog import course_detail
from app.api.deps import require_admin
from app.core.database import get_db
from app.models import Attachment, Enrollment, Order, Payment, SecureLink
from app.schemas.admin import (
    AdminEnrollmentResponse,
    AdminOrderDetail,
    EnrollmentCancelRequest,
    EnrollmentDiagnostics,
    FixMissingEnrollmentsResponse,
    FulfillmentAttachment,
    FulfillmentEnrollment,
    FulfillmentJobResponse,
    FulfillmentRunResponse,
    LiveSessionRequest,
    LiveSessionUpdate,
    OrderEnrollmentsResponse,
    OrderListResponse,
    OrderStatusUpdate,
    ReminderRunResponse,
    SessionCancelRequest,
)
from app.schemas.catalog import (
    AttachmentResponse,
    CategoryCreate,
    CategoryResponse,
    CourseCreate,
    CourseDetailResponse,
    CourseUpdate,
    InstructorCreate,
    InstructorResponse,
    SessionCreate,
    SessionResponse,
    SubCategoryCreate,
    SubCategoryResponse,
)
from app.schemas.enrollment import SecureLinkResponse, SecureLinksRequest, SecureLinksResponse
from app.schemas.orders import OrderResponse
from app.schemas.payment import PaymentResponse, RefundRequest
from app.services import catalog as catalog_service
from app.services import delivery
from app.services import enrollment as enrollment_service
from app.services import fulfillment
from app.services import orders as order_service
from app.services import payments as payment_service
from app.services import reminders

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _enrollment(e: Enrollment) -> AdminEnrollmentResponse:
    return AdminEnrollmentResponse(**e.model_dump())


def _payment(p: Payment) -> PaymentResponse:
    return PaymentResponse(**p.model_dump())


def _link(db: Session, link: SecureLink) -> SecureLinkResponse:
    attachment = db.get(Attachment, link.attachment_id)
    return SecureLinkResponse(
        id=link.id,
        attachment_id=link.attachment_id,
        file_name=attachment.file_name if attachment else "",
        token=link.token,
        url=delivery.download_url(link.token),
        is_revoked=link.is_revoked,
        download_count=link.download_count,
        last_downloaded_at=link.last_downloaded_at,
        created_at=link.created_at,
    )


# --- orders -------------------------------------------------------------------------


@router.get("/orders", response_model=OrderListResponse)
def list_orders(
    status: str | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    orders, total = order_service.admin_list_orders(db, status, date_from, date_to, page, page_size)
    return OrderListResponse(
        items=[order_service.order_view(db, o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/orders/{order_id}", response_model=AdminOrderDetail)
def order_detail(order_id: int, db: Session = Depends(get_db)):
    order = order_service.get_order(db, order_id)
    payments = db.exec(select(Payment).where(Payment.order_id == order.id).order_by(Payment.id)).all()
    enrollments = db.exec(select(Enrollment).where(Enrollment.order_id == order.id).order_by(Enrollment.id)).all()
    return AdminOrderDetail(
        **order_service.order_view(db, order).model_dump(),
        payments=[_payment(p) for p in payments],
        enrollments=[_enrollment(e) for e in enrollments],
    )


@router.put("/orders/{order_id}/status", response_model=OrderResponse)
def update_order_status(order_id: int, body: OrderStatusUpdate, db: Session = Depends(get_db)):
    order = order_service.set_order_status(db, order_id, body.status, body.note)
    return order_service.order_view(db, order)


@router.get("/orders/{order_id}/enrollments", response_model=OrderEnrollmentsResponse)
def order_enrollments(order_id: int, db: Session = Depends(get_db)):
    order, rows = delivery.order_enrollments(db, order_id)
    return OrderEnrollmentsResponse(
        order_id=order.id,
        order_status=order.status,
        enrollments=[
            FulfillmentEnrollment(
                **row["enrollment"].model_dump(),
                course_title_en=row["course"].title_en if row["course"] else "",
                course_type=row["course"].type if row["course"] else "",
                attachments=[FulfillmentAttachment(**a.model_dump()) for a in row["attachments"]],
                secure_links=[_link(db, link) for link in row["links"]],
                session=SessionResponse(**row["session"].model_dump()) if row["session"] else None,
            )
            for row in rows
        ],
    )


# --- fulfillment --------------------------------------------------------------------


@router.post("/fix-missing-enrollments", response_model=FixMissingEnrollmentsResponse)
def fix_missing_enrollments(db: Session = Depends(get_db)):
    return enrollment_service.fix_missing_enrollments(db)


@router.get("/enrollment-diagnostics", response_model=EnrollmentDiagnostics)
def enrollment_diagnostics(db: Session = Depends(get_db)):
    return enrollment_service.enrollment_diagnostics(db)


@router.get("/fulfillment/jobs", response_model=list[FulfillmentJobResponse])
def fulfillment_jobs(status: str | None = Query(None), db: Session = Depends(get_db)):
    return [FulfillmentJobResponse(**j.model_dump()) for j in fulfillment.list_jobs(db, status)]


@router.post("/fulfillment/run", response_model=FulfillmentRunResponse)
def fulfillment_run(db: Session = Depends(get_db)):
    return fulfillment.process_due_jobs(db)


@router.post("/reminders/run", response_model=ReminderRunResponse)
def reminders_run(db: Session = Depends(get_db)):
    return reminders.send_due_reminders(db)


@router.post("/enrollments/{enrollment_id}/secure-links", response_model=SecureLinksResponse)
def create_secure_links(enrollment_id: int, body: SecureLinksRequest, db: Session = Depends(get_db)):
    enrollment, links = delivery.create_secure_links(db, enrollment_id, body.attachment_ids)
    order = db.get(Order, enrollment.order_id) if enrollment.order_id else None
    return SecureLinksResponse(
        enrollment_id=enrollment.id,
        enrollment_status=enrollment.status,
        order_id=order.id if order else None,
        order_status=order.status if order else None,
        links=[_link(db, link) for link in links],
    )


@router.post("/secure-links/{link_id}/revoke", response_model=SecureLinkResponse)
def revoke_secure_link(link_id: int, db: Session = Depends(get_db)):
    return _link(db, delivery.revoke_secure_link(db, link_id))


@router.post("/enrollments/{enrollment_id}/session")
def create_live_session(enrollment_id: int, body: LiveSessionRequest, db: Session = Depends(get_db)):
    enrollment, session = delivery.create_live_session(
        db,
        enrollment_id,
        session_id=body.session_id,
        session_data=body.session.model_dump() if body.session else None,
    )
    return {"enrollment": _enrollment(enrollment), "session": SessionResponse(**session.model_dump())}


@router.put("/enrollments/{enrollment_id}/session")
def update_live_session(enrollment_id: int, body: LiveSessionUpdate, db: Session = Depends(get_db)):
    enrollment, session = delivery.update_live_session(db, enrollment_id, body.model_dump(exclude_unset=True))
    return {"enrollment": _enrollment(enrollment), "session": SessionResponse(**session.model_dump())}


@router.post("/enrollments/{enrollment_id}/session/cancel", response_model=AdminEnrollmentResponse)
def cancel_live_session(enrollment_id: int, body: SessionCancelRequest | None = None, db: Session = Depends(get_db)):
    return _enrollment(delivery.cancel_live_session(db, enrollment_id, body.reason if body else None))


@router.post("/enrollments/{enrollment_id}/session/resend")
def resend_live_session(enrollment_id: int, db: Session = Depends(get_db)):
    return {"ok": True, "sent": delivery.resend_live_session(db, enrollment_id)}


@router.post("/enrollments/{enrollment_id}/cancel", response_model=AdminEnrollmentResponse)
def cancel_enrollment(enrollment_id: int, body: EnrollmentCancelRequest | None = None, db: Session = Depends(get_db)):
    return _enrollment(delivery.cancel_enrollment(db, enrollment_id, body.reason if body else None))


@router.post("/payments/{payment_id}/refund", response_model=PaymentResponse)
def refund_payment(payment_id: int, body: RefundRequest | None = None, db: Session = Depends(get_db)):
    return _payment(payment_service.refund_payment(db, payment_id, body.note if body else None))


# --- catalog ------------------------------------------------------------------------


@router.post("/categories", response_model=CategoryResponse, status_code=201)
def create_category(body: CategoryCreate, db: Session = Depends(get_db)):
    return CategoryResponse(**catalog_service.create_category(db, body.model_dump()).model_dump())


@router.post("/subcategories", response_model=SubCategoryResponse, status_code=201)
def create_sub_category(body: SubCategoryCreate, db: Session = Depends(get_db)):
    return SubCategoryResponse(**catalog_service.create_sub_category(db, body.model_dump()).model_dump())


@router.post("/instructors", response_model=InstructorResponse, status_code=201)
def create_instructor(body: InstructorCreate, db: Session = Depends(get_db)):
    return InstructorResponse(**catalog_service.create_instructor(db, body.model_dump()).model_dump())


@router.post("/courses", response_model=CourseDetailResponse, status_code=201)
def create_course(body: CourseCreate, db: Session = Depends(get_db)):
    course = catalog_service.create_course(db, body.model_dump(mode="json") | {"price": body.price})
    return course_detail(db, course)


@router.put("/courses/{course_id}", response_model=CourseDetailResponse)
def update_course(course_id: int, body: CourseUpdate, db: Session = Depends(get_db)):
    changes = body.model_dump(exclude_unset=True, mode="json")
    if body.price is not None:
        changes["price"] = Decimal(body.price)
    return course_detail(db, catalog_service.update_course(db, course_id, changes))


@router.post("/courses/{course_id}/sessions", response_model=SessionResponse, status_code=201)
def add_session(course_id: int, body: SessionCreate, db: Session = Depends(get_db)):
    return SessionResponse(**catalog_service.add_session(db, course_id, body.model_dump()).model_dump())


@router.post("/courses/{course_id}/attachments", response_model=AttachmentResponse, status_code=201)
def upload_attachment(
    course_id: int,
    file: UploadFile = File(...),
    type: str | None = Form(None),
    db: Session = Depends(get_db),
):
    attachment = catalog_service.add_attachment(db, course_id, file.filename or "", file.file, type)
    return AttachmentResponse(**attachment.model_dump())


@router.post("/attachments/{attachment_id}/revoke", response_model=AttachmentResponse)
def revoke_attachment(attachment_id: int, db: Session = Depends(get_db)):
    return AttachmentResponse(**catalog_service.revoke_attachment(db, attachment_id).model_dump())
