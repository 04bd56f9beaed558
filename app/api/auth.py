from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session, select

from app.api.deps import get_current_user
from app.core.config import settings
from app.core.database import get_db
from app.core.rate_limit import client_ip, limiter
from app.core.security import create_access_token, hash_password, verify_password
from app.models import AuditLog, User
from app.schemas import Token, UserCreate, UserLogin, UserResponse

router = APIRouter(prefix="/auth", tags=["auth"])
_LOGIN_LIMIT = f"{settings.rate_limit_per_minute}/minute"
_REGISTER_LIMIT = f"{settings.rate_limit_register_per_minute}/minute;{settings.rate_limit_register_per_minute * 20}/hour"


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id or 0,
        email=user.email,
        full_name=user.full_name or "",
        phone=user.phone,
        locale=user.locale or "en",
        country=user.country,
    )


@router.post("/register", response_model=UserResponse, status_code=201)
@limiter.limit(_REGISTER_LIMIT)
def register(request: Request, body: UserCreate, db: Session = Depends(get_db)):
    email = body.email.strip().lower()
    if db.exec(select(User).where(User.email == email)).first():
        raise HTTPException(status_code=400, detail="This e-mail address is already registered.")
    user = User(
        email=email,
        hashed_password=hash_password(body.password),
        full_name=body.full_name.strip(),
        phone=(body.phone or "").strip() or None,
        locale=body.locale,
        country=body.country,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    db.add(AuditLog(event="register", user_id=user.id, ip=client_ip(request)))
    db.commit()
    return _user_response(user)


@router.post("/login", response_model=Token)
@limiter.limit(_LOGIN_LIMIT)
def login(request: Request, body: UserLogin, db: Session = Depends(get_db)):
    user = db.exec(select(User).where(User.email == body.email.strip().lower())).first()
    if not user or not verify_password(body.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Incorrect e-mail or password.")
    user.last_login_at = datetime.utcnow()
    db.add(user)
    db.add(AuditLog(event="login", user_id=user.id, ip=client_ip(request)))
    db.commit()
    return Token(access_token=create_access_token(user.id))


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return _user_response(user)
