# storage.py — Upload validation and local object storage
import os
import uuid
import asyncio
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from fastapi import UploadFile

from errors import ValidationFailed

logger = logging.getLogger("workhub.storage")

STORAGE_ROOT = os.getenv("STORAGE_ROOT", "./uploads")
STORAGE_PUBLIC_URL = os.getenv("STORAGE_PUBLIC_URL", "/uploads").rstrip("/")
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MAX_FILES_PER_REQUEST = 10

ALLOWED_CONTENT_TYPES = {
    "image/jpeg",
    "image/png",
    "image/webp",
    "application/pdf",
    "video/mp4",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


@dataclass
class StoredFile:
    name: str
    url: str
    content_type: str
    size: int


def _extension(upload: UploadFile) -> str:
    suffix = Path(upload.filename or "").suffix.lower()
    if suffix and len(suffix) <= 10 and suffix[1:].isalnum():
        return suffix
    return mimetypes.guess_extension(upload.content_type or "") or ""


def _path_for_url(url: str) -> Optional[Path]:
    prefix = f"{STORAGE_PUBLIC_URL}/"
    if not url or not url.startswith(prefix):
        return None
    root = Path(STORAGE_ROOT).resolve()
    path = (root / url[len(prefix):]).resolve()
    if root not in path.parents:
        return None
    return path


def check_file_count(uploads: List[UploadFile], minimum: int = 0) -> None:
    if len(uploads) < minimum:
        raise ValidationFailed(f"At least {minimum} file(s) required")
    if len(uploads) > MAX_FILES_PER_REQUEST:
        raise ValidationFailed(f"At most {MAX_FILES_PER_REQUEST} files per request")


async def store_upload(upload: UploadFile, folder: str) -> StoredFile:
    """Validate an upload and write it under STORAGE_ROOT/folder; return its public URL."""
    content_type = (upload.content_type or "").split(";")[0].strip().lower()
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ValidationFailed(
            f"File type not permitted: {content_type or 'unknown'}",
            details={"file": upload.filename},
        )

    content = await upload.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise ValidationFailed(
            f"File exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)} MB limit",
            details={"file": upload.filename},
        )

    key = f"{folder}/{uuid.uuid4()}{_extension(upload)}"
    path = Path(STORAGE_ROOT) / key
    path.parent.mkdir(parents=True, exist_ok=True)
    await asyncio.to_thread(path.write_bytes, content)
    logger.info(f"Stored upload {upload.filename!r} as {key} ({len(content)} bytes)")

    return StoredFile(
        name=upload.filename or key,
        url=f"{STORAGE_PUBLIC_URL}/{key}",
        content_type=content_type,
        size=len(content),
    )


async def store_uploads(uploads: List[UploadFile], folder: str) -> List[StoredFile]:
    """Store every upload or none of them."""
    check_file_count(uploads)
    stored: List[StoredFile] = []
    try:
        for upload in uploads:
            stored.append(await store_upload(upload, folder))
    except Exception:
        for f in stored:
            delete_stored(f.url)
        raise
    return stored


def delete_stored(url: Optional[str]) -> None:
    """Remove a stored file by its public URL; unknown or missing files are ignored."""
    path = _path_for_url(url or "")
    if path is None:
        return
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not delete stored file {url}: {e}")
