from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, field_validator

from app.models.catalog import CourseLevel, CourseType


class CategoryCreate(BaseModel):
    title_en: str
    title_ar: str = ""
    slug: str
    is_active: bool = True
    display_order: int = 0


class CategoryResponse(BaseModel):
    id: int
    title_en: str
    title_ar: str
    slug: str
    is_active: bool
    display_order: int


class SubCategoryCreate(BaseModel):
    category_id: int | None = None
    title_en: str
    title_ar: str = ""
    slug: str


class SubCategoryResponse(BaseModel):
    id: int
    category_id: int | None = None
    title_en: str
    title_ar: str
    slug: str


class InstructorCreate(BaseModel):
    name_en: str
    name_ar: str = ""
    bio_en: str | None = None
    bio_ar: str | None = None


class InstructorResponse(BaseModel):
    id: int
    name_en: str
    name_ar: str
    bio_en: str | None = None
    bio_ar: str | None = None


class CourseCreate(BaseModel):
    slug: str
    title_en: str
    title_ar: str = ""
    summary_en: str | None = None
    summary_ar: str | None = None
    price: Decimal
    currency: str | None = None
    type: CourseType = CourseType.PDF
    level: CourseLevel = CourseLevel.BEGINNER
    category_id: int | None = None
    is_active: bool = True
    is_featured: bool = False
    instructor_ids: list[int] = []
    sub_category_ids: list[int] = []

    @field_validator("price")
    @classmethod
    def price_not_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Price cannot be negative.")
        return v.quantize(Decimal("0.01"))


class CourseUpdate(BaseModel):
    title_en: str | None = None
    title_ar: str | None = None
    summary_en: str | None = None
    summary_ar: str | None = None
    price: Decimal | None = None
    currency: str | None = None
    level: CourseLevel | None = None
    category_id: int | None = None
    is_active: bool | None = None
    is_featured: bool | None = None

    @field_validator("price")
    @classmethod
    def price_not_negative(cls, v: Decimal | None) -> Decimal | None:
        if v is not None and v < 0:
            raise ValueError("Price cannot be negative.")
        return v.quantize(Decimal("0.01")) if v is not None else v


class SessionCreate(BaseModel):
    title_en: str = ""
    title_ar: str = ""
    description_en: str | None = None
    description_ar: str | None = None
    start_at: datetime
    end_at: datetime
    capacity: int | None = None
    teams_link: str | None = None

    @field_validator("capacity")
    @classmethod
    def capacity_positive(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("Capacity must be at least 1.")
        return v


class SessionResponse(BaseModel):
    id: int
    course_id: int
    title_en: str
    title_ar: str
    description_en: str | None = None
    description_ar: str | None = None
    start_at: datetime
    end_at: datetime
    capacity: int | None = None
    seats_taken: int
    teams_link: str | None = None


class AttachmentResponse(BaseModel):
    id: int
    course_id: int
    file_name: str
    type: str
    is_revoked: bool
    created_at: datetime


class CourseResponse(BaseModel):
    id: int
    slug: str
    title_en: str
    title_ar: str
    summary_en: str | None = None
    summary_ar: str | None = None
    price: Decimal
    currency: str
    type: str
    level: str
    category_id: int | None = None
    is_active: bool
    is_featured: bool


class CourseDetailResponse(CourseResponse):
    sessions: list[SessionResponse] = []
    instructors: list[InstructorResponse] = []
    sub_categories: list[SubCategoryResponse] = []
