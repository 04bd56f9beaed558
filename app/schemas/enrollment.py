from datetime import datetime

from pydantic import BaseModel


class SessionInfo(BaseModel):
    id: int
    title_en: str
    title_ar: str
    start_at: datetime
    end_at: datetime
    teams_link: str | None = None


class MyEnrollmentResponse(BaseModel):
    id: int
    course_id: int
    course_slug: str
    course_title_en: str
    course_title_ar: str
    course_type: str
    status: str  # display status: pending | active | completed | cancelled
    progress: int
    enrolled_at: datetime
    session: SessionInfo | None = None


class SecureLinkResponse(BaseModel):
    id: int
    attachment_id: int
    file_name: str
    token: str
    url: str
    is_revoked: bool
    download_count: int
    last_downloaded_at: datetime | None = None
    created_at: datetime


class SecureLinksRequest(BaseModel):
    attachment_ids: list[int]


class SecureLinksResponse(BaseModel):
    enrollment_id: int
    enrollment_status: str
    order_id: int | None = None
    order_status: str | None = None
    links: list[SecureLinkResponse]


class MaterialInfoResponse(BaseModel):
    file_name: str
    file_size: int
    content_type: str
    attachment_type: str
    course_id: int
    course_title_en: str
    course_title_ar: str
    download_count: int
    last_downloaded_at: datetime | None = None
