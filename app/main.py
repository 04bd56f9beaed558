import asyncio
import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# .env from the project root no matter where uvicorn is started
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlmodel import Session

from app.api.admin import router as admin_router
from app.api.auth import router as auth_router
from app.api.cart import router as cart_router
from app.api.catalog import router as catalog_router
from app.api.enrollments import router as enrollments_router
from app.api.orders import router as orders_router
from app.api.payments import router as payments_router
from app.api.secure import router as secure_router
from app.core.config import settings
from app.core.database import engine, init_db
from app.core.errors import DomainError
from app.core.rate_limit import client_ip, limiter
from app.logging import setup_logging
from app.models import AuditLog, ErrorLog
from app.services.email_sender import is_mail_configured
from app.services.fulfillment import worker_loop
from app.services.reminders import reminder_loop

setup_logging(level=logging.INFO)
log = logging.getLogger("academy")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    Path(settings.storage_dir).mkdir(parents=True, exist_ok=True)
    log.info("SMTP configured: %s", "yes" if is_mail_configured() else "no (e-mails are skipped)")
    stop = asyncio.Event()
    workers = []
    if settings.fulfillment_worker_enabled:
        workers.append(asyncio.create_task(worker_loop(stop)))
    if settings.reminder_worker_enabled:
        workers.append(asyncio.create_task(reminder_loop(stop)))
    yield
    stop.set()
    for worker in workers:
        await worker


app = FastAPI(
    title="Academy API",
    description="Course sales, payments and fulfillment",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    try:
        with Session(engine) as db:
            db.add(AuditLog(event="rate_limit", ip=client_ip(request), subject=request.url.path))
            db.commit()
    except Exception as e:
        log.warning("AuditLog rate_limit write failed: %s", e)
    return _error_response(request, 429, "Too many requests. Please wait a minute.")


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


@app.exception_handler(DomainError)
def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("%s %s: %s", request.method, request.url.path, exc.message)
    return _error_response(request, exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.warning("Request validation error (422): path=%s method=%s", request.url.path, request.method)
    first = errs[0] if errs else {}
    loc = ".".join(str(p) for p in (first.get("loc") or []) if p != "body")
    msg = first.get("msg") or "Invalid request."
    body = {
        "error": f"{loc}: {msg}" if loc else msg,
        "status_code": 422,
        "detail": [{"loc": list(e.get("loc") or []), "msg": e.get("msg"), "type": e.get("type")} for e in errs],
    }
    rid = getattr(request.state, "request_id", None)
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=422, content=body)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    response = _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc)
    try:
        with Session(engine) as db:
            db.add(
                ErrorLog(
                    request_id=getattr(request.state, "request_id", None),
                    endpoint=request.url.path,
                    method=request.method,
                    error_message=str(exc)[:2000],
                    stack_trace=traceback.format_exc()[:10000],
                )
            )
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    return JSONResponse(status_code=500, content={"error": "Unexpected server error."})


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(catalog_router)
app.include_router(cart_router)
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(enrollments_router)
app.include_router(secure_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "environment": settings.environment,
        "mail_configured": is_mail_configured(),
        "fulfillment_worker": settings.fulfillment_worker_enabled,
        "reminder_worker": settings.reminder_worker_enabled,
    }
