"""
Material downloads by secure token.
A successful GET counts as a download; responses are marked no-store so caches never replay it.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse
from sqlmodel import Session

from app.core.database import get_db
from app.core.rate_limit import client_ip
from app.schemas.enrollment import MaterialInfoResponse
from app.services import delivery
from app.services.storage import content_type_for

router = APIRouter(tags=["secure"])

_NO_STORE = {"Cache-Control": "no-store, private", "X-Content-Type-Options": "nosniff"}


def _download(token: str, request: Request, db: Session) -> FileResponse:
    attachment, path = delivery.download_material(db, token, ip=client_ip(request))
    return FileResponse(
        path,
        media_type=content_type_for(attachment.file_name),
        filename=attachment.file_name,
        headers=_NO_STORE,
    )


@router.get("/api/secure/materials/{token}/info", response_model=MaterialInfoResponse)
def material_info(token: str, db: Session = Depends(get_db)):
    return delivery.material_info(db, token)


@router.get("/api/secure/materials/{token}")
def download_material(token: str, request: Request, db: Session = Depends(get_db)):
    return _download(token, request, db)


@router.get("/api/secure-download/{token}")
def secure_download(token: str, request: Request, db: Session = Depends(get_db)):
    return _download(token, request, db)
