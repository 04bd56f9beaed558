"""Fulfillment queue: pending -> processing -> done | failed (retried with backoff until max attempts)."""
from datetime import datetime

from sqlmodel import Field, SQLModel

JOB_CREATE_ENROLLMENTS = "create_enrollments"


class FulfillmentJob(SQLModel, table=True):
    __tablename__ = "fulfillment_jobs"
    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    kind: str = JOB_CREATE_ENROLLMENTS
    status: str = Field(default="pending", index=True)  # pending | processing | done | failed
    attempts: int = 0
    next_attempt_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    last_error: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime | None = Field(default_factory=datetime.utcnow)
