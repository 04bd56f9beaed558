from typing import Literal

from pydantic import BaseModel, EmailStr, field_validator


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    full_name: str = ""
    phone: str | None = None
    locale: Literal["en", "ar"] = "en"
    country: str | None = None

    @field_validator("password")
    @classmethod
    def password_min_length(cls, v: str) -> str:
        if len(v) < 6:
            raise ValueError("Password must be at least 6 characters.")
        return v

    @field_validator("country")
    @classmethod
    def country_code(cls, v: str | None) -> str | None:
        v = (v or "").strip().upper()
        return v[:2] or None


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    full_name: str
    phone: str | None = None
    locale: str = "en"
    country: str | None = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
