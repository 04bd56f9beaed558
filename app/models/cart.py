"""Shopping cart: owned by a user or by an anonymous browser id, never both."""
from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class Cart(SQLModel, table=True):
    __tablename__ = "carts"
    id: int | None = Field(default=None, primary_key=True)
    user_id: int | None = Field(default=None, foreign_key="user.id", unique=True, index=True)
    anonymous_id: str | None = Field(default=None, unique=True, index=True, max_length=64)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime | None = Field(default_factory=datetime.utcnow)


class CartItem(SQLModel, table=True):
    __tablename__ = "cart_items"
    # A course (and session) may appear in a cart once; the insert itself enforces it
    __table_args__ = (UniqueConstraint("cart_id", "course_id", "session_key", name="uq_cart_item"),)

    id: int | None = Field(default=None, primary_key=True)
    cart_id: int = Field(foreign_key="carts.id", index=True)
    course_id: int = Field(foreign_key="courses.id")
    session_id: int | None = Field(default=None, foreign_key="course_sessions.id")
    session_key: int = 0  # session_id or 0
    qty: int = 1
    created_at: datetime = Field(default_factory=datetime.utcnow)
