"""
Live session reminders.

Every poll the worker looks for sessions starting reminder_lead_minutes from now (give or
take reminder_window_minutes) and mails each paid or notified enrollment once. A sent
reminder is recorded as an AuditLog row, so overlapping windows never send twice and a
failed send is retried on the next poll.
"""
import asyncio
import logging
from datetime import datetime, timedelta

from sqlmodel import Session, col, select

from app.core.config import settings
from app.core.database import engine
from app.core.status import EnrollmentStatus
from app.models import AuditLog, Course, CourseSession, Enrollment, User
from app.services import email_sender

log = logging.getLogger("academy.reminders")

REMINDER_EVENT = "live_reminder_1h"
REMINDABLE_STATUSES = (EnrollmentStatus.PAID.value, EnrollmentStatus.NOTIFIED.value)


def due_sessions(db: Session, now: datetime) -> list[CourseSession]:
    lead = timedelta(minutes=settings.reminder_lead_minutes)
    window = timedelta(minutes=settings.reminder_window_minutes)
    return list(
        db.exec(
            select(CourseSession)
            .where(CourseSession.start_at >= now + lead - window, CourseSession.start_at <= now + lead + window)
            .order_by(CourseSession.start_at, CourseSession.id)
        ).all()
    )


def _already_reminded(db: Session, enrollment: Enrollment, session: CourseSession) -> bool:
    stmt = select(AuditLog.id).where(
        AuditLog.event == REMINDER_EVENT,
        AuditLog.subject == f"enrollment:{enrollment.id}",
        AuditLog.detail == f"session:{session.id}",
    )
    return db.exec(stmt).first() is not None


def _title(lang: str | None, en: str, ar: str) -> str:
    return ar if lang == "ar" and ar else (en or ar)


def send_due_reminders(db: Session, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    stats = {"sessions": 0, "sent": 0, "skipped": 0, "failed": 0}
    for session in due_sessions(db, now):
        stats["sessions"] += 1
        course = db.get(Course, session.course_id)
        if course is None:
            continue
        enrollments = db.exec(
            select(Enrollment)
            .where(Enrollment.session_id == session.id, col(Enrollment.status).in_(REMINDABLE_STATUSES))
            .order_by(Enrollment.id)
        ).all()
        hours_before = max(round((session.start_at - now).total_seconds() / 3600), 1)
        for enrollment in enrollments:
            if _already_reminded(db, enrollment, session):
                stats["skipped"] += 1
                continue
            user = db.get(User, enrollment.user_id)
            if user is None:
                continue
            sent = email_sender.send_live_reminder(
                user.email,
                user.locale,
                user.full_name,
                _title(user.locale, course.title_en, course.title_ar),
                _title(user.locale, session.title_en, session.title_ar),
                session.start_at,
                session.teams_link,
                hours_before,
            )
            if not sent:
                stats["failed"] += 1
                log.warning("Reminder for enrollment %s (session %s) not sent", enrollment.id, session.id)
                continue
            db.add(
                AuditLog(
                    event=REMINDER_EVENT,
                    user_id=enrollment.user_id,
                    subject=f"enrollment:{enrollment.id}",
                    detail=f"session:{session.id}",
                )
            )
            db.commit()
            stats["sent"] += 1
    if stats["sessions"]:
        log.info("Live reminders: %s", stats)
    return stats


def run_reminders() -> dict:
    with Session(engine) as db:
        return send_due_reminders(db)


async def reminder_loop(stop: asyncio.Event) -> None:
    log.info("Reminder worker started (poll %ss)", settings.reminder_poll_seconds)
    while not stop.is_set():
        try:
            await asyncio.to_thread(run_reminders)
        except Exception:
            log.exception("Reminder worker iteration failed")
        try:
            await asyncio.wait_for(stop.wait(), timeout=settings.reminder_poll_seconds)
        except asyncio.TimeoutError:
            pass
    log.info("Reminder worker stopped")
