from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class PaymentConfigResponse(BaseModel):
    gateways: list[str]
    default_gateway: str
    show_selector: bool


class CheckoutRequest(BaseModel):
    """Opens a hosted checkout for an order; the gateway webhook settles it later."""
    order_id: int
    provider: str | None = None
    return_url: str | None = None


class CheckoutResponse(BaseModel):
    payment_id: int
    order_id: int
    provider: str
    checkout_id: str
    redirect_url: str
    amount: Decimal
    currency: str


class WebhookAck(BaseModel):
    ok: bool = True
    order_id: int | None = None
    order_status: str | None = None
    payment_status: str | None = None
    replay: bool = False


class PaymentResponse(BaseModel):
    id: int
    order_id: int
    provider: str
    provider_ref: str | None = None
    transaction_id: str | None = None
    status: str
    amount: Decimal
    currency: str
    captured_at: datetime | None = None
    created_at: datetime


class RefundRequest(BaseModel):
    note: str | None = None
