"""
Course material storage on local disk.
blob_path values stored on Attachment rows are relative to the storage root.
"""
import logging
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO

from app.core.config import settings
from app.core.errors import NotFoundError, ValidationFailed

log = logging.getLogger("academy.storage")

CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".zip": "application/zip",
    ".txt": "text/plain",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def content_type_for(file_name: str) -> str:
    return CONTENT_TYPES.get(Path(file_name).suffix.lower(), DEFAULT_CONTENT_TYPE)


def attachment_type_for(file_name: str) -> str:
    suffix = Path(file_name).suffix.lower()
    if suffix == ".pdf":
        return "pdf"
    if suffix in (".mp4", ".webm", ".mov"):
        return "video"
    return "document"


class LocalFileStorage:
    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir).resolve()

    def resolve(self, blob_path: str) -> Path:
        """Absolute path of a blob; anything escaping the storage root is rejected."""
        if not blob_path:
            raise ValidationFailed("Empty blob path.")
        path = (self.base_dir / blob_path).resolve()
        if path != self.base_dir and self.base_dir not in path.parents:
            raise ValidationFailed("Invalid blob path.")
        return path

    def save(self, stream: BinaryIO, file_name: str, prefix: str = "") -> str:
        suffix = Path(file_name).suffix.lower()
        name = f"{uuid.uuid4().hex}{suffix}"
        blob_path = f"{prefix.strip('/')}/{name}" if prefix else name
        target = self.resolve(blob_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as out:
            shutil.copyfileobj(stream, out)
        log.info("Stored %s as %s", file_name, blob_path)
        return blob_path

    def exists(self, blob_path: str) -> bool:
        try:
            return self.resolve(blob_path).is_file()
        except ValidationFailed:
            return False

    def size(self, blob_path: str) -> int:
        if not self.exists(blob_path):
            raise NotFoundError("File not found.")
        return self.resolve(blob_path).stat().st_size


def get_storage() -> LocalFileStorage:
    return LocalFileStorage(settings.storage_dir)
