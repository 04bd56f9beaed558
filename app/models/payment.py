from datetime import datetime
from decimal import Decimal

from sqlmodel import Field, SQLModel

from app.core.status import PaymentStatus


class Payment(SQLModel, table=True):
    """Gateway attempt for an order; provider_ref is the checkout id echoed back by the webhook."""

    __tablename__ = "payments"
    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    provider: str  # HyperPay | ClickPay
    provider_ref: str | None = Field(default=None, index=True)
    transaction_id: str | None = Field(default=None, index=True)
    status: str = PaymentStatus.PENDING.value
    amount: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    currency: str = "SAR"
    captured_at: datetime | None = None
    raw_payload: str | None = None  # last webhook body
    admin_note: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime | None = Field(default_factory=datetime.utcnow)
