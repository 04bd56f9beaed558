"""Public catalog reads and the operator's catalog maintenance."""
import logging
from datetime import datetime
from typing import BinaryIO

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.core.config import settings
from app.core.errors import ConflictError, NotFoundError, ValidationFailed
from app.models import (
    Attachment,
    Category,
    Course,
    CourseInstructor,
    CourseSession,
    CourseSubCategory,
    Instructor,
    SubCategory,
)
from app.services.storage import attachment_type_for, get_storage

log = logging.getLogger("academy.catalog")


def _commit_unique(db: Session, message: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(message)


def list_courses(
    db: Session,
    category_id: int | None = None,
    course_type: str | None = None,
    featured: bool | None = None,
) -> list[Course]:
    stmt = select(Course).where(Course.is_active == True)  # noqa: E712
    if category_id is not None:
        stmt = stmt.where(Course.category_id == category_id)
    if course_type:
        stmt = stmt.where(Course.type == course_type)
    if featured is not None:
        stmt = stmt.where(Course.is_featured == featured)
    return list(db.exec(stmt.order_by(col(Course.created_at).desc(), col(Course.id).desc())).all())


def get_course(db: Session, id_or_slug: str, include_inactive: bool = False) -> Course:
    course = None
    if id_or_slug.isdigit():
        course = db.get(Course, int(id_or_slug))
    if course is None:
        course = db.exec(select(Course).where(Course.slug == id_or_slug)).first()
    if not course or (not course.is_active and not include_inactive):
        raise NotFoundError("Course not found.")
    return course


def course_sessions(db: Session, course_id: int, upcoming_only: bool = False) -> list[CourseSession]:
    stmt = select(CourseSession).where(CourseSession.course_id == course_id)
    if upcoming_only:
        stmt = stmt.where(CourseSession.start_at >= datetime.utcnow())
    return list(db.exec(stmt.order_by(CourseSession.start_at)).all())


def course_instructors(db: Session, course_id: int) -> list[Instructor]:
    stmt = (
        select(Instructor)
        .join(CourseInstructor, col(CourseInstructor.instructor_id) == col(Instructor.id))
        .where(CourseInstructor.course_id == course_id)
        .order_by(Instructor.id)
    )
    return list(db.exec(stmt).all())


def course_sub_categories(db: Session, course_id: int) -> list[SubCategory]:
    stmt = (
        select(SubCategory)
        .join(CourseSubCategory, col(CourseSubCategory.sub_category_id) == col(SubCategory.id))
        .where(CourseSubCategory.course_id == course_id)
        .order_by(SubCategory.id)
    )
    return list(db.exec(stmt).all())


def list_categories(db: Session, active_only: bool = True) -> list[Category]:
    stmt = select(Category)
    if active_only:
        stmt = stmt.where(Category.is_active == True)  # noqa: E712
    return list(db.exec(stmt.order_by(Category.display_order, Category.id)).all())


def create_category(db: Session, data: dict) -> Category:
    category = Category(**data)
    db.add(category)
    _commit_unique(db, "Category slug already exists.")
    db.refresh(category)
    return category


def create_sub_category(db: Session, data: dict) -> SubCategory:
    if data.get("category_id") is not None and not db.get(Category, data["category_id"]):
        raise ValidationFailed("Category not found.")
    sub = SubCategory(**data)
    db.add(sub)
    _commit_unique(db, "Sub-category slug already exists.")
    db.refresh(sub)
    return sub


def create_instructor(db: Session, data: dict) -> Instructor:
    instructor = Instructor(**data)
    db.add(instructor)
    db.commit()
    db.refresh(instructor)
    return instructor


def create_course(db: Session, data: dict) -> Course:
    instructor_ids = data.pop("instructor_ids", []) or []
    sub_category_ids = data.pop("sub_category_ids", []) or []
    if data.get("category_id") is not None and not db.get(Category, data["category_id"]):
        raise ValidationFailed("Category not found.")
    for instructor_id in instructor_ids:
        if not db.get(Instructor, instructor_id):
            raise ValidationFailed(f"Instructor {instructor_id} not found.")
    for sub_id in sub_category_ids:
        if not db.get(SubCategory, sub_id):
            raise ValidationFailed(f"Sub-category {sub_id} not found.")
    data["currency"] = (data.get("currency") or settings.default_currency).strip().upper()[:3]
    course = Course(**data)
    db.add(course)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Course slug already exists.")
    for instructor_id in dict.fromkeys(instructor_ids):
        db.add(CourseInstructor(course_id=course.id, instructor_id=instructor_id))
    for sub_id in dict.fromkeys(sub_category_ids):
        db.add(CourseSubCategory(course_id=course.id, sub_category_id=sub_id))
    db.commit()
    db.refresh(course)
    log.info("Course %s (%s) created", course.id, course.slug)
    return course


def update_course(db: Session, course_id: int, changes: dict) -> Course:
    course = db.get(Course, course_id)
    if not course:
        raise NotFoundError("Course not found.")
    if changes.get("category_id") is not None and not db.get(Category, changes["category_id"]):
        raise ValidationFailed("Category not found.")
    if changes.get("currency"):
        changes["currency"] = changes["currency"].strip().upper()[:3]
    for key, value in changes.items():
        setattr(course, key, value)
    course.updated_at = datetime.utcnow()
    db.add(course)
    db.commit()
    db.refresh(course)
    return course


def add_session(db: Session, course_id: int, data: dict) -> CourseSession:
    course = db.get(Course, course_id)
    if not course:
        raise NotFoundError("Course not found.")
    if data["end_at"] <= data["start_at"]:
        raise ValidationFailed("Session must end after it starts.")
    session = CourseSession(course_id=course.id, **data)
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def add_attachment(db: Session, course_id: int, file_name: str, stream: BinaryIO, attachment_type: str | None = None) -> Attachment:
    course = db.get(Course, course_id)
    if not course:
        raise NotFoundError("Course not found.")
    if not file_name:
        raise ValidationFailed("File name is required.")
    blob_path = get_storage().save(stream, file_name, prefix=f"courses/{course.id}")
    attachment = Attachment(
        course_id=course.id,
        file_name=file_name,
        blob_path=blob_path,
        type=attachment_type or attachment_type_for(file_name),
    )
    db.add(attachment)
    db.commit()
    db.refresh(attachment)
    log.info("Attachment %s uploaded for course %s", attachment.id, course.id)
    return attachment


def revoke_attachment(db: Session, attachment_id: int) -> Attachment:
    attachment = db.get(Attachment, attachment_id)
    if not attachment:
        raise NotFoundError("Attachment not found.")
    attachment.is_revoked = True
    db.add(attachment)
    db.commit()
    db.refresh(attachment)
    log.info("Attachment %s revoked", attachment.id)
    return attachment
