"""Catalog: categories, instructors, courses, live sessions and downloadable attachments."""
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlmodel import Field, SQLModel


class CourseType(str, Enum):
    LIVE = "live"
    PDF = "pdf"


class CourseLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class AttachmentType(str, Enum):
    PDF = "pdf"
    VIDEO = "video"
    DOCUMENT = "document"


class Category(SQLModel, table=True):
    __tablename__ = "categories"
    id: int | None = Field(default=None, primary_key=True)
    title_en: str
    title_ar: str = ""
    slug: str = Field(unique=True, index=True)
    is_active: bool = True
    display_order: int = 0


class SubCategory(SQLModel, table=True):
    __tablename__ = "sub_categories"
    id: int | None = Field(default=None, primary_key=True)
    category_id: int | None = Field(default=None, foreign_key="categories.id", index=True)
    title_en: str
    title_ar: str = ""
    slug: str = Field(unique=True, index=True)


class Instructor(SQLModel, table=True):
    __tablename__ = "instructors"
    id: int | None = Field(default=None, primary_key=True)
    name_en: str
    name_ar: str = ""
    bio_en: str | None = None
    bio_ar: str | None = None


class Course(SQLModel, table=True):
    __tablename__ = "courses"
    id: int | None = Field(default=None, primary_key=True)
    slug: str = Field(unique=True, index=True)
    title_en: str
    title_ar: str = ""
    summary_en: str | None = None
    summary_ar: str | None = None
    price: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    currency: str = "SAR"
    type: str = CourseType.PDF.value  # live | pdf
    level: str = CourseLevel.BEGINNER.value
    category_id: int | None = Field(default=None, foreign_key="categories.id", index=True)
    is_active: bool = True
    is_featured: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime | None = Field(default_factory=datetime.utcnow)


class CourseSubCategory(SQLModel, table=True):
    __tablename__ = "course_sub_categories"
    course_id: int = Field(foreign_key="courses.id", primary_key=True)
    sub_category_id: int = Field(foreign_key="sub_categories.id", primary_key=True)


class CourseInstructor(SQLModel, table=True):
    __tablename__ = "course_instructors"
    course_id: int = Field(foreign_key="courses.id", primary_key=True)
    instructor_id: int = Field(foreign_key="instructors.id", primary_key=True)


class CourseSession(SQLModel, table=True):
    """Scheduled live meeting of a course. seats_taken is only changed with conditional UPDATEs."""

    __tablename__ = "course_sessions"
    id: int | None = Field(default=None, primary_key=True)
    course_id: int = Field(foreign_key="courses.id", index=True)
    title_en: str = ""
    title_ar: str = ""
    description_en: str | None = None
    description_ar: str | None = None
    start_at: datetime
    end_at: datetime
    capacity: int | None = None  # None = unlimited
    seats_taken: int = 0
    teams_link: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Attachment(SQLModel, table=True):
    __tablename__ = "attachments"
    id: int | None = Field(default=None, primary_key=True)
    course_id: int = Field(foreign_key="courses.id", index=True)
    file_name: str
    blob_path: str  # relative to settings.storage_dir
    type: str = AttachmentType.PDF.value
    is_revoked: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
