from datetime import datetime

from sqlmodel import Field, SQLModel


class AuditLog(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    event: str = Field(index=True)  # register, login, material_download, order_status, ...
    user_id: int | None = Field(default=None, index=True)
    ip: str | None = None
    subject: str | None = None  # e.g. "secure_link:12", "order:5"
    detail: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
