"""
User-content object storage.

Objects live in a filesystem bucket laid out as
``{root}/{bucket}/{avatars|covers|content}/{user_id}-{uuid}.{ext}`` and are
served from ``{public_base_url}/{bucket}/{path}``. Files are stored exactly as
uploaded so animated GIF/WEBP images stay animated.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from urllib.parse import urlparse

import structlog

from luxicle.config import Settings, get_settings
from luxicle.errors import InvalidInputError, StoreError

logger = structlog.get_logger()

ALLOWED_MIME_TYPES: dict[str, str] = {
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
}

ALLOWED_EXTENSIONS = frozenset({"png", "gif", "webp", "jpg", "jpeg"})

AVATARS = "avatars"
COVERS = "covers"
CONTENT = "content"


class ObjectStorage:
    """A single public bucket on the local filesystem."""

    def __init__(self, root: str | Path, bucket: str, public_base_url: str, max_bytes: int) -> None:
        self.bucket = bucket
        self.bucket_root = (Path(root) / bucket).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self.max_bytes = max_bytes

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ObjectStorage:
        settings = settings or get_settings()
        return cls(
            root=settings.storage_root,
            bucket=settings.storage_bucket,
            public_base_url=settings.storage_public_base_url,
            max_bytes=settings.storage_max_upload_bytes,
        )

    def _resolve(self, object_path: str) -> Path:
        target = (self.bucket_root / object_path).resolve()
        if not target.is_relative_to(self.bucket_root):
            msg = "Object path escapes the bucket"
            raise InvalidInputError(msg)
        return target

    def upload(self, object_path: str, content: bytes) -> str:
        """Write an object. Never overwrites. Returns the object path."""
        target = self._resolve(object_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "xb") as f:
                f.write(content)
        except FileExistsError as e:
            msg = f"Object already exists: {object_path}"
            raise StoreError(msg) from e
        except OSError as e:
            msg = f"Upload failed: {object_path}"
            raise StoreError(msg) from e
        logger.info("object_uploaded", bucket=self.bucket, path=object_path, size=len(content))
        return object_path

    def get_public_url(self, object_path: str) -> str:
        return f"{self.public_base_url}/{self.bucket}/{object_path}"

    def path_from_url(self, url: str) -> str | None:
        """Extract the object path that follows ``/{bucket}/`` in a public URL."""
        path = urlparse(url).path if "://" in url else url
        marker = f"/{self.bucket}/"
        index = path.find(marker)
        if index < 0:
            return None
        object_path = path[index + len(marker) :]
        return object_path or None

    def remove(self, object_path: str) -> bool:
        """Delete an object. Returns False when it did not exist."""
        target = self._resolve(object_path)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            msg = f"Delete failed: {object_path}"
            raise StoreError(msg) from e
        logger.info("object_deleted", bucket=self.bucket, path=object_path)
        return True


def _extension(filename: str, content_type: str) -> str:
    """Take the extension from the filename, falling back to the MIME type."""
    mime = (content_type or "").lower()
    if mime not in ALLOWED_MIME_TYPES:
        msg = f"MIME type '{content_type}' is not allowed. Allowed types: {sorted(ALLOWED_MIME_TYPES)}"
        raise InvalidInputError(msg)
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ALLOWED_MIME_TYPES[mime]
    if ext not in ALLOWED_EXTENSIONS:
        msg = f"File extension '.{ext}' is not allowed"
        raise InvalidInputError(msg)
    return ext


def _upload(
    storage: ObjectStorage,
    folder: str,
    user_id: str,
    filename: str,
    content: bytes,
    content_type: str,
) -> str:
    if not user_id:
        msg = "user_id must be provided"
        raise InvalidInputError(msg)
    if not content:
        msg = "File is empty"
        raise InvalidInputError(msg)
    if len(content) > storage.max_bytes:
        max_mb = storage.max_bytes / (1024 * 1024)
        actual_mb = len(content) / (1024 * 1024)
        msg = f"File size ({actual_mb:.2f} MB) exceeds maximum of {max_mb} MB"
        raise InvalidInputError(msg)
    ext = _extension(filename, content_type)
    object_path = storage.upload(f"{folder}/{user_id}-{uuid.uuid4()}.{ext}", content)
    return storage.get_public_url(object_path)


def upload_avatar(storage: ObjectStorage, user_id: str, filename: str, content: bytes, content_type: str) -> str:
    """Store a profile avatar and return its public URL."""
    return _upload(storage, AVATARS, user_id, filename, content, content_type)


def upload_cover_image(
    storage: ObjectStorage, user_id: str, filename: str, content: bytes, content_type: str
) -> str:
    """Store a profile cover image and return its public URL."""
    return _upload(storage, COVERS, user_id, filename, content, content_type)


def upload_content_image(
    storage: ObjectStorage, user_id: str, filename: str, content: bytes, content_type: str
) -> str:
    """Store an image used inside a luxicle and return its public URL."""
    return _upload(storage, CONTENT, user_id, filename, content, content_type)


def delete_file(storage: ObjectStorage, url: str) -> bool:
    """
    Delete the object a public URL points at.

    Returns False for URLs outside the bucket or objects that no longer exist.
    """
    object_path = storage.path_from_url(url) if url else None
    if object_path is None:
        logger.warning("delete_file_invalid_url", url=url)
        return False
    try:
        return storage.remove(object_path)
    except InvalidInputError:
        logger.warning("delete_file_invalid_url", url=url)
        return False
