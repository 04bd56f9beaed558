from datetime import datetime

from pydantic import BaseModel

from app.core.status import OrderStatus
from .catalog import SessionCreate, SessionResponse
from .enrollment import SecureLinkResponse
from .orders import OrderResponse
from .payment import PaymentResponse


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    note: str | None = None


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int
    page: int
    page_size: int


class AdminEnrollmentResponse(BaseModel):
    id: int
    user_id: int
    course_id: int
    session_id: int | None = None
    order_id: int | None = None
    status: str
    enrolled_at: datetime
    updated_at: datetime | None = None


class AdminOrderDetail(OrderResponse):
    payments: list[PaymentResponse] = []
    enrollments: list[AdminEnrollmentResponse] = []


class FixFailure(BaseModel):
    order_id: int
    error: str


class FixMissingEnrollmentsResponse(BaseModel):
    orders_checked: int
    orders_fixed: int
    enrollments_created: int
    failures: list[FixFailure] = []


class EnrollmentDiagnostics(BaseModel):
    paid_orders: int
    orders_missing_enrollments: list[int]
    enrollments_by_status: dict[str, int]
    jobs_by_status: dict[str, int]


class FulfillmentAttachment(BaseModel):
    id: int
    file_name: str
    type: str
    is_revoked: bool


class FulfillmentEnrollment(AdminEnrollmentResponse):
    course_title_en: str
    course_type: str
    attachments: list[FulfillmentAttachment] = []
    secure_links: list[SecureLinkResponse] = []
    session: SessionResponse | None = None


class OrderEnrollmentsResponse(BaseModel):
    order_id: int
    order_status: str
    enrollments: list[FulfillmentEnrollment]


class LiveSessionRequest(BaseModel):
    """Attach an existing course session (session_id) or create one from the remaining fields."""
    session_id: int | None = None
    session: SessionCreate | None = None


class LiveSessionUpdate(BaseModel):
    title_en: str | None = None
    title_ar: str | None = None
    description_en: str | None = None
    description_ar: str | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    teams_link: str | None = None


class SessionCancelRequest(BaseModel):
    reason: str | None = None


class EnrollmentCancelRequest(BaseModel):
    reason: str | None = None


class FulfillmentJobResponse(BaseModel):
    id: int
    order_id: int
    kind: str
    status: str
    attempts: int
    next_attempt_at: datetime
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class FulfillmentRunResponse(BaseModel):
    processed: int
    done: int
    retried: int
    failed: int


class ReminderRunResponse(BaseModel):
    sessions: int
    sent: int
    skipped: int
    failed: int
