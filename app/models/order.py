from datetime import datetime
from decimal import Decimal

from sqlmodel import Field, SQLModel

from app.core.status import OrderStatus


class Order(SQLModel, table=True):
    """Purchase snapshot taken from a cart. amount is the sum of its items at creation time."""

    __tablename__ = "orders"
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    amount: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    currency: str = "SAR"
    status: str = Field(default=OrderStatus.NEW.value, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime | None = Field(default_factory=datetime.utcnow)


class OrderItem(SQLModel, table=True):
    __tablename__ = "order_items"
    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    course_id: int = Field(foreign_key="courses.id")
    session_id: int | None = Field(default=None, foreign_key="course_sessions.id")
    course_title_en: str = ""
    course_title_ar: str = ""
    price: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    currency: str = "SAR"
    qty: int = 1
    created_at: datetime = Field(default_factory=datetime.utcnow)
