from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from app.core.status import EnrollmentStatus


class Enrollment(SQLModel, table=True):
    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", "session_key", name="uq_enrollment_user_course_session"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    course_id: int = Field(foreign_key="courses.id", index=True)
    session_id: int | None = Field(default=None, foreign_key="course_sessions.id")
    # Key of the unique constraint: the session the enrollment was bought for, or 0.
    # A session attached later by an operator does not change it.
    session_key: int = 0
    order_id: int | None = Field(default=None, foreign_key="orders.id", index=True)
    status: str = Field(default=EnrollmentStatus.PENDING.value, index=True)
    enrolled_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime | None = Field(default_factory=datetime.utcnow)


class SecureLink(SQLModel, table=True):
    """Download token for one attachment of an enrolled course."""

    __tablename__ = "secure_links"
    __table_args__ = (UniqueConstraint("enrollment_id", "attachment_id", name="uq_secure_link"),)

    id: int | None = Field(default=None, primary_key=True)
    enrollment_id: int = Field(foreign_key="enrollments.id", index=True)
    attachment_id: int = Field(foreign_key="attachments.id")
    token: str = Field(unique=True, index=True)
    is_revoked: bool = False
    download_count: int = 0
    last_downloaded_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
