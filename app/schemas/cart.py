from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class CartInitRequest(BaseModel):
    anonymous_id: str | None = None


class AddItemRequest(BaseModel):
    cart_id: int
    course_id: int
    session_id: int | None = None


class MergeCartRequest(BaseModel):
    anonymous_id: str


class CartSessionInfo(BaseModel):
    id: int
    title_en: str
    title_ar: str
    start_at: datetime
    end_at: datetime
    capacity: int | None = None
    seats_left: int | None = None


class CartItemResponse(BaseModel):
    id: int
    course_id: int
    course_title_en: str
    course_title_ar: str
    price: Decimal
    currency: str
    qty: int
    session: CartSessionInfo | None = None


class CartResponse(BaseModel):
    id: int
    user_id: int | None = None
    anonymous_id: str | None = None
    items: list[CartItemResponse] = []
    total: Decimal = Decimal("0.00")
    currency: str
