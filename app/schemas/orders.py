from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class CreateOrderRequest(BaseModel):
    cart_id: int


class OrderItemResponse(BaseModel):
    id: int
    course_id: int
    session_id: int | None = None
    course_title_en: str
    course_title_ar: str
    price: Decimal
    currency: str
    qty: int


class OrderResponse(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    currency: str
    status: str
    created_at: datetime
    updated_at: datetime | None = None
    items: list[OrderItemResponse] = []
