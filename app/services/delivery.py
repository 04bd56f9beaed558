"""
Fulfillment delivery: secure download links for PDF courses, live session scheduling for
live courses, administrative cancellation and the order "processed" roll-up.
"""
import logging
import secrets
from datetime import datetime
from pathlib import Path

from sqlalchemy import update
from sqlmodel import Session, col, select

from app.core.config import settings
from app.core.errors import AccessDenied, ConflictError, NotFoundError, ValidationFailed
from app.core.status import (
    ACTIVE_ENROLLMENT_STATUSES,
    FINISHED_ENROLLMENT_STATUSES,
    EnrollmentStatus,
    transition,
)
from app.models import (
    Attachment,
    AuditLog,
    Course,
    CourseSession,
    CourseType,
    Enrollment,
    Order,
    SecureLink,
    User,
)
from app.services import email_sender
from app.services.enrollment import claim_seat, complete_order_if_done, release_seat
from app.services.storage import content_type_for, get_storage

log = logging.getLogger("academy.delivery")

TOKEN_BYTES = 32


def new_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def download_url(token: str) -> str:
    return f"{settings.api_base_url.rstrip('/')}/api/secure-download/{token}"


def get_enrollment(db: Session, enrollment_id: int) -> Enrollment:
    enrollment = db.get(Enrollment, enrollment_id)
    if not enrollment:
        raise NotFoundError("Enrollment not found.")
    return enrollment


def _course_title(course: Course, lang: str | None) -> str:
    if lang == "ar" and course.title_ar:
        return course.title_ar
    return course.title_en


def _session_title(session: CourseSession, lang: str | None) -> str:
    if lang == "ar" and session.title_ar:
        return session.title_ar
    return session.title_en or session.title_ar


# --- secure links -------------------------------------------------------------------


def deliverable_attachments(db: Session, course_id: int) -> list[Attachment]:
    return list(
        db.exec(
            select(Attachment)
            .where(Attachment.course_id == course_id, Attachment.is_revoked == False)  # noqa: E712
            .order_by(Attachment.id)
        ).all()
    )


def _attachments_for(db: Session, course: Course, attachment_ids: list[int]) -> list[Attachment]:
    if not attachment_ids:
        found = deliverable_attachments(db, course.id)
        if not found:
            raise ValidationFailed("Course has no attachments to deliver.")
        return found
    attachments = []
    for attachment_id in dict.fromkeys(attachment_ids):
        attachment = db.get(Attachment, attachment_id)
        if not attachment or attachment.course_id != course.id:
            raise ValidationFailed("All attachments must belong to the enrolled course.")
        if attachment.is_revoked:
            raise ValidationFailed(f"Attachment {attachment.id} is revoked.")
        attachments.append(attachment)
    return attachments


def create_secure_links(
    db: Session, enrollment_id: int, attachment_ids: list[int]
) -> tuple[Enrollment, list[SecureLink]]:
    enrollment = get_enrollment(db, enrollment_id)
    if enrollment.status == EnrollmentStatus.CANCELLED:
        raise ConflictError("Enrollment is cancelled.")
    course = db.get(Course, enrollment.course_id)
    if not course or course.type != CourseType.PDF:
        raise ValidationFailed("Secure links are only available for PDF courses.")
    attachments = _attachments_for(db, course, attachment_ids)

    links: list[SecureLink] = []
    for attachment in attachments:
        link = db.exec(
            select(SecureLink).where(
                SecureLink.enrollment_id == enrollment.id,
                SecureLink.attachment_id == attachment.id,
            )
        ).first()
        if link is None:
            link = SecureLink(enrollment_id=enrollment.id, attachment_id=attachment.id, token=new_token())
        elif link.is_revoked:
            link.token = new_token()
            link.is_revoked = False
        db.add(link)
        links.append(link)

    already_completed = enrollment.status == EnrollmentStatus.COMPLETED
    if not already_completed:
        transition(enrollment, EnrollmentStatus.COMPLETED)
        db.add(enrollment)
        complete_order_if_done(db, enrollment.order_id)
    db.commit()
    for link in links:
        db.refresh(link)
    db.refresh(enrollment)
    log.info("Enrollment %s: %s secure link(s) issued", enrollment.id, len(links))

    if not already_completed:
        user = db.get(User, enrollment.user_id)
        if user:
            email_sender.send_materials_delivered(
                user.email,
                user.locale,
                user.full_name,
                _course_title(course, user.locale),
                [
                    {"file_name": a.file_name, "url": download_url(link.token)}
                    for a, link in zip(attachments, links)
                ],
            )
    return enrollment, links


def revoke_secure_link(db: Session, link_id: int) -> SecureLink:
    link = db.get(SecureLink, link_id)
    if not link:
        raise NotFoundError("Secure link not found.")
    link.is_revoked = True
    db.add(link)
    db.add(AuditLog(event="secure_link_revoked", subject=f"secure_link:{link.id}"))
    db.commit()
    db.refresh(link)
    log.info("Secure link %s revoked", link.id)
    return link


def links_for_enrollment(db: Session, enrollment_id: int) -> list[SecureLink]:
    return list(
        db.exec(select(SecureLink).where(SecureLink.enrollment_id == enrollment_id).order_by(SecureLink.id)).all()
    )


def _check_token(db: Session, token: str) -> tuple[SecureLink, Attachment, Enrollment]:
    link = db.exec(select(SecureLink).where(SecureLink.token == token)).first()
    if not link:
        raise NotFoundError("Download link not found.")
    if link.is_revoked:
        raise ValidationFailed("Download link has been revoked.")
    attachment = db.get(Attachment, link.attachment_id)
    if not attachment:
        raise NotFoundError("File not found.")
    if attachment.is_revoked:
        raise ValidationFailed("This file is no longer available.")
    enrollment = db.get(Enrollment, link.enrollment_id)
    if not enrollment or enrollment.status not in ACTIVE_ENROLLMENT_STATUSES:
        raise AccessDenied("Enrollment does not grant access to this file.")
    return link, attachment, enrollment


def download_material(db: Session, token: str, ip: str | None = None) -> tuple[Attachment, Path]:
    """
    Validate a download token and count the download.
    The counter is bumped with one UPDATE guarded on the link still being live.
    """
    link, attachment, enrollment = _check_token(db, token)
    storage = get_storage()
    if not storage.exists(attachment.blob_path):
        log.error("Attachment %s blob missing: %s", attachment.id, attachment.blob_path)
        raise NotFoundError("File not found.")
    stmt = (
        update(SecureLink)
        .where(col(SecureLink.id) == link.id, col(SecureLink.is_revoked) == False)  # noqa: E712
        .values(
            download_count=col(SecureLink.download_count) + 1,
            last_downloaded_at=datetime.utcnow(),
        )
    )
    if db.connection().execute(stmt).rowcount == 0:
        db.rollback()
        raise ValidationFailed("Download link has been revoked.")
    db.add(
        AuditLog(
            event="material_download",
            user_id=enrollment.user_id,
            ip=ip,
            subject=f"secure_link:{link.id}",
            detail=attachment.file_name,
        )
    )
    db.commit()
    return attachment, storage.resolve(attachment.blob_path)


def material_info(db: Session, token: str) -> dict:
    link, attachment, enrollment = _check_token(db, token)
    storage = get_storage()
    course = db.get(Course, attachment.course_id)
    return {
        "file_name": attachment.file_name,
        "file_size": storage.size(attachment.blob_path),
        "content_type": content_type_for(attachment.file_name),
        "attachment_type": attachment.type,
        "course_id": attachment.course_id,
        "course_title_en": course.title_en if course else "",
        "course_title_ar": course.title_ar if course else "",
        "download_count": link.download_count,
        "last_downloaded_at": link.last_downloaded_at,
    }


# --- live sessions ------------------------------------------------------------------


def _live_enrollment(db: Session, enrollment_id: int) -> tuple[Enrollment, Course]:
    enrollment = get_enrollment(db, enrollment_id)
    course = db.get(Course, enrollment.course_id)
    if not course or course.type != CourseType.LIVE:
        raise ValidationFailed("Live sessions are only available for live courses.")
    if enrollment.status in FINISHED_ENROLLMENT_STATUSES:
        raise ConflictError(f"Enrollment is already {enrollment.status}.")
    return enrollment, course


def _attached_session(db: Session, enrollment: Enrollment) -> CourseSession:
    if not enrollment.session_id:
        raise ValidationFailed("No session attached to this enrollment.")
    session = db.get(CourseSession, enrollment.session_id)
    if not session:
        raise NotFoundError("Session not found.")
    return session


def _send_session_mail(db: Session, enrollment: Enrollment, course: Course, session: CourseSession, updated: bool) -> bool:
    user = db.get(User, enrollment.user_id)
    if not user:
        return False
    return email_sender.send_live_session(
        user.email,
        user.locale,
        user.full_name,
        _course_title(course, user.locale),
        _session_title(session, user.locale),
        session.start_at,
        session.end_at,
        session.teams_link,
        updated=updated,
    )


def create_live_session(
    db: Session,
    enrollment_id: int,
    session_id: int | None = None,
    session_data: dict | None = None,
) -> tuple[Enrollment, CourseSession]:
    """Attach an existing course session, or one built from session_data, and notify the learner."""
    enrollment, course = _live_enrollment(db, enrollment_id)
    if session_id is not None:
        session = db.get(CourseSession, session_id)
        if not session or session.course_id != course.id:
            raise ValidationFailed("Invalid session.")
    elif session_data:
        if session_data["end_at"] <= session_data["start_at"]:
            raise ValidationFailed("Session must end after it starts.")
        session = CourseSession(course_id=course.id, **session_data)
        db.add(session)
        db.flush()
    else:
        raise ValidationFailed("Provide session_id or session details.")

    if enrollment.session_id != session.id:
        claim_seat(db, session.id)
        if enrollment.session_id:
            release_seat(db, enrollment.session_id)
        enrollment.session_id = session.id
    if enrollment.status != EnrollmentStatus.NOTIFIED:
        transition(enrollment, EnrollmentStatus.NOTIFIED)
    db.add(enrollment)
    db.commit()
    db.refresh(enrollment)
    db.refresh(session)
    log.info("Enrollment %s: live session %s attached", enrollment.id, session.id)
    _send_session_mail(db, enrollment, course, session, updated=False)
    return enrollment, session


def update_live_session(db: Session, enrollment_id: int, changes: dict) -> tuple[Enrollment, CourseSession]:
    enrollment, course = _live_enrollment(db, enrollment_id)
    session = _attached_session(db, enrollment)
    for key, value in changes.items():
        setattr(session, key, value)
    if session.end_at <= session.start_at:
        raise ValidationFailed("Session must end after it starts.")
    db.add(session)
    db.commit()
    db.refresh(session)
    log.info("Enrollment %s: live session %s updated", enrollment.id, session.id)
    _send_session_mail(db, enrollment, course, session, updated=True)
    return enrollment, session


def cancel_live_session(db: Session, enrollment_id: int, reason: str | None = None) -> Enrollment:
    enrollment, course = _live_enrollment(db, enrollment_id)
    session = _attached_session(db, enrollment)
    release_seat(db, session.id)
    enrollment.session_id = None
    if enrollment.status == EnrollmentStatus.NOTIFIED:
        transition(enrollment, EnrollmentStatus.PAID)
    db.add(enrollment)
    db.add(AuditLog(event="session_cancelled", user_id=enrollment.user_id, subject=f"enrollment:{enrollment.id}", detail=reason))
    db.commit()
    db.refresh(enrollment)
    db.refresh(session)
    log.info("Enrollment %s: live session %s cancelled", enrollment.id, session.id)
    user = db.get(User, enrollment.user_id)
    if user:
        email_sender.send_session_cancelled(
            user.email,
            user.locale,
            user.full_name,
            _course_title(course, user.locale),
            _session_title(session, user.locale),
            session.start_at,
            reason,
        )
    return enrollment


def resend_live_session(db: Session, enrollment_id: int) -> bool:
    enrollment, course = _live_enrollment(db, enrollment_id)
    session = _attached_session(db, enrollment)
    return _send_session_mail(db, enrollment, course, session, updated=False)


def send_live_details(db: Session, enrollment_id: int) -> bool:
    """Mail the attached session; the enrollment becomes notified only once the mail went out."""
    enrollment, course = _live_enrollment(db, enrollment_id)
    session = _attached_session(db, enrollment)
    sent = _send_session_mail(db, enrollment, course, session, updated=False)
    if sent and enrollment.status != EnrollmentStatus.NOTIFIED:
        transition(enrollment, EnrollmentStatus.NOTIFIED)
        db.add(enrollment)
        db.commit()
        log.info("Enrollment %s: live details sent", enrollment.id)
    return sent


# --- automatic delivery -------------------------------------------------------------


def deliver_order(db: Session, order_id: int) -> int:
    """
    Post-payment delivery for the order's paid enrollments: PDF courses get links to every
    live attachment, live courses with a session get the joining details.
    A failing enrollment is logged and left paid for the operator. Returns how many were delivered.
    """
    enrollments = db.exec(
        select(Enrollment)
        .where(Enrollment.order_id == order_id, Enrollment.status == EnrollmentStatus.PAID.value)
        .order_by(Enrollment.id)
    ).all()
    delivered = 0
    for enrollment_id, course_id, session_id in [(e.id, e.course_id, e.session_id) for e in enrollments]:
        course = db.get(Course, course_id)
        if course is None:
            continue
        try:
            if course.type == CourseType.PDF and deliverable_attachments(db, course.id):
                create_secure_links(db, enrollment_id, [])
                delivered += 1
            elif course.type == CourseType.LIVE and session_id and send_live_details(db, enrollment_id):
                delivered += 1
        except Exception:
            db.rollback()
            log.exception("Automatic delivery failed for enrollment %s (order %s)", enrollment_id, order_id)
    if delivered:
        log.info("Order %s: %s enrollment(s) delivered automatically", order_id, delivered)
    return delivered


# --- cancellation / views -----------------------------------------------------------


def cancel_enrollment(db: Session, enrollment_id: int, reason: str | None = None) -> Enrollment:
    enrollment = get_enrollment(db, enrollment_id)
    transition(enrollment, EnrollmentStatus.CANCELLED)
    if enrollment.session_id:
        release_seat(db, enrollment.session_id)
    db.add(enrollment)
    db.add(AuditLog(event="enrollment_cancelled", user_id=enrollment.user_id, subject=f"enrollment:{enrollment.id}", detail=reason))
    complete_order_if_done(db, enrollment.order_id)
    db.commit()
    db.refresh(enrollment)
    log.info("Enrollment %s cancelled", enrollment.id)
    return enrollment


def order_enrollments(db: Session, order_id: int) -> tuple[Order, list[dict]]:
    order = db.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found.")
    rows = []
    for e in db.exec(select(Enrollment).where(Enrollment.order_id == order.id).order_by(Enrollment.id)).all():
        course = db.get(Course, e.course_id)
        attachments = db.exec(select(Attachment).where(Attachment.course_id == e.course_id).order_by(Attachment.id)).all()
        rows.append(
            {
                "enrollment": e,
                "course": course,
                "attachments": list(attachments),
                "links": links_for_enrollment(db, e.id),
                "session": db.get(CourseSession, e.session_id) if e.session_id else None,
            }
        )
    return order, rows
