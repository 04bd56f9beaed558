from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from app.core.database import get_db
from app.schemas.catalog import (
    CategoryResponse,
    CourseDetailResponse,
    CourseResponse,
    InstructorResponse,
    SessionResponse,
    SubCategoryResponse,
)
from app.services import catalog as catalog_service

router = APIRouter(prefix="/api", tags=["catalog"])


def course_detail(db: Session, course) -> CourseDetailResponse:
    return CourseDetailResponse(
        **course.model_dump(),
        sessions=[SessionResponse(**s.model_dump()) for s in catalog_service.course_sessions(db, course.id)],
        instructors=[InstructorResponse(**i.model_dump()) for i in catalog_service.course_instructors(db, course.id)],
        sub_categories=[
            SubCategoryResponse(**s.model_dump()) for s in catalog_service.course_sub_categories(db, course.id)
        ],
    )


@router.get("/courses", response_model=list[CourseResponse])
def list_courses(
    category_id: int | None = Query(None),
    type: str | None = Query(None),
    featured: bool | None = Query(None),
    db: Session = Depends(get_db),
):
    courses = catalog_service.list_courses(db, category_id=category_id, course_type=type, featured=featured)
    return [CourseResponse(**c.model_dump()) for c in courses]


@router.get("/courses/{id_or_slug}", response_model=CourseDetailResponse)
def get_course(id_or_slug: str, db: Session = Depends(get_db)):
    return course_detail(db, catalog_service.get_course(db, id_or_slug))


@router.get("/categories", response_model=list[CategoryResponse])
def list_categories(db: Session = Depends(get_db)):
    return [CategoryResponse(**c.model_dump()) for c in catalog_service.list_categories(db)]
