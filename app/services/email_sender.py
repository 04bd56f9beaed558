"""E-mail notifications for fulfillment: delivered materials, live session changes and reminders (en/ar)."""
import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from app.core.config import settings

log = logging.getLogger("academy.email")

_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
_ENV = Environment(loader=FileSystemLoader(str(_TEMPLATES_DIR)), autoescape=True)

DEFAULT_LANG = "en"

_SUBJECTS = {
    "materials_delivered": {
        "en": "Your course materials are ready",
        "ar": "مواد الدورة جاهزة",
    },
    "live_session": {
        "en": "Your live session details",
        "ar": "تفاصيل الجلسة المباشرة",
    },
    "session_updated": {
        "en": "Your live session has been updated",
        "ar": "تم تحديث الجلسة المباشرة",
    },
    "session_cancelled": {
        "en": "Your live session has been cancelled",
        "ar": "تم إلغاء الجلسة المباشرة",
    },
    "live_reminder": {
        "en": "Reminder: your live session starts soon",
        "ar": "تذكير: جلستك المباشرة تبدأ قريبا",
    },
}

_TEXT = {
    "en": {
        "greeting": "Hello",
        "materials_intro": "Thank you for your purchase. Your download links for",
        "materials_footer": "Links are personal; please do not share them.",
        "live_intro": "You are booked for a live session of",
        "updated_intro": "The schedule of your live session has changed for",
        "cancelled_intro": "We are sorry, the live session has been cancelled for",
        "cancelled_footer": "Our team will contact you about a new date.",
        "session": "Session",
        "starts": "Starts",
        "ends": "Ends",
        "join": "Join the session",
        "reason": "Reason",
        "reminder_intro": "Your live session starts in about {hours} hour(s) for",
        "reminder_footer": "Please join a few minutes early.",
    },
    "ar": {
        "greeting": "مرحبا",
        "materials_intro": "شكرا لشرائك. روابط التحميل الخاصة بدورة",
        "materials_footer": "الروابط شخصية، يرجى عدم مشاركتها.",
        "live_intro": "تم حجز جلسة مباشرة لك في دورة",
        "updated_intro": "تم تغيير موعد الجلسة المباشرة لدورة",
        "cancelled_intro": "نعتذر، تم إلغاء الجلسة المباشرة لدورة",
        "cancelled_footer": "سيتواصل معك فريقنا بخصوص موعد جديد.",
        "session": "الجلسة",
        "starts": "البداية",
        "ends": "النهاية",
        "join": "انضم إلى الجلسة",
        "reason": "السبب",
        "reminder_intro": "تبدأ جلستك المباشرة خلال {hours} ساعة تقريبا في دورة",
        "reminder_footer": "يرجى الانضمام قبل الموعد ببضع دقائق.",
    },
}


def normalize_lang(lang: str | None) -> str:
    lang = (lang or "").strip().lower()[:2]
    return lang if lang in _TEXT else DEFAULT_LANG


def subject_for(kind: str, lang: str | None) -> str:
    return _SUBJECTS[kind][normalize_lang(lang)]


def _format_dt(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC")


def render_email(template: str, kind: str, lang: str | None, **context) -> tuple[str, str]:
    """Render templates/email/<template> in the recipient's language. Returns (subject, html_body)."""
    lang = normalize_lang(lang)
    subject = subject_for(kind, lang)
    html = _ENV.get_template(f"email/{template}").render(
        lang=lang,
        subject=subject,
        t=_TEXT[lang],
        from_name=settings.smtp_from_name or "Academy",
        **context,
    )
    return subject, html


def is_mail_configured() -> bool:
    return bool((settings.smtp_host or "").strip())


def send_email(to: str, subject: str, html_body: str) -> bool:
    """Send one HTML e-mail. Never raises; False when SMTP is missing or the send fails."""
    if not is_mail_configured():
        log.warning("SMTP not configured; email not sent to %s", to)
        return False
    host = settings.smtp_host.strip()
    port = int(settings.smtp_port or 587)
    user = (settings.smtp_user or "").strip()
    password = (settings.smtp_password or "").strip()
    from_addr = (settings.smtp_from or "noreply@academy.local").strip()
    from_name = (settings.smtp_from_name or "").strip()
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_addr}>" if from_name else from_addr
    msg["To"] = to
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    try:
        with smtplib.SMTP(host, port, timeout=15) as smtp:
            if settings.smtp_use_tls:
                smtp.starttls()
            if user and password:
                smtp.login(user, password)
            smtp.sendmail(from_addr, [to], msg.as_string())
        log.info("Email sent to %s subject=%s", to, subject[:50])
        return True
    except Exception as e:
        log.exception("Failed to send email to %s: %s", to, e)
        return False


def send_materials_delivered(
    to_email: str,
    lang: str | None,
    full_name: str,
    course_title: str,
    links: list[dict],
) -> bool:
    """links: [{"file_name": ..., "url": ...}]"""
    subject, html = render_email(
        "materials_delivered.html",
        "materials_delivered",
        lang,
        full_name=full_name,
        course_title=course_title,
        links=links,
    )
    return send_email(to_email, subject, html)


def send_live_session(
    to_email: str,
    lang: str | None,
    full_name: str,
    course_title: str,
    session_title: str,
    start_at: datetime,
    end_at: datetime,
    teams_link: str | None,
    updated: bool = False,
) -> bool:
    kind = "session_updated" if updated else "live_session"
    text = _TEXT[normalize_lang(lang)]
    subject, html = render_email(
        "live_session.html",
        kind,
        lang,
        intro=text["updated_intro"] if updated else text["live_intro"],
        full_name=full_name,
        course_title=course_title,
        session_title=session_title,
        start_at=_format_dt(start_at),
        end_at=_format_dt(end_at),
        teams_link=teams_link,
    )
    return send_email(to_email, subject, html)


def send_session_cancelled(
    to_email: str,
    lang: str | None,
    full_name: str,
    course_title: str,
    session_title: str,
    start_at: datetime,
    reason: str | None,
) -> bool:
    subject, html = render_email(
        "session_cancelled.html",
        "session_cancelled",
        lang,
        full_name=full_name,
        course_title=course_title,
        session_title=session_title,
        start_at=_format_dt(start_at),
        reason=reason,
    )
    return send_email(to_email, subject, html)


def send_live_reminder(
    to_email: str,
    lang: str | None,
    full_name: str,
    course_title: str,
    session_title: str,
    start_at: datetime,
    teams_link: str | None,
    hours_before: int,
) -> bool:
    text = _TEXT[normalize_lang(lang)]
    subject, html = render_email(
        "live_reminder.html",
        "live_reminder",
        lang,
        intro=text["reminder_intro"].format(hours=hours_before),
        full_name=full_name,
        course_title=course_title,
        session_title=session_title,
        start_at=_format_dt(start_at),
        teams_link=teams_link,
    )
    return send_email(to_email, subject, html)
