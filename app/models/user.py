from datetime import datetime

from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    full_name: str = ""
    phone: str | None = None
    locale: str = "en"  # "en" | "ar"; picks e-mail language and course titles
    country: str | None = None
    created_at: datetime | None = Field(default_factory=datetime.utcnow)
    last_login_at: datetime | None = None
