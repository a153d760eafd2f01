"""
Snapgram Backend — File Storage Service
=========================================

What:  The file half of the Backend Gateway: upload, preview URL, resolve
       and delete for post images.
How:   Validates extension, size and MIME type, then writes the bytes under
       an opaque file id. The id alone locates the file:

           storage/
           └── 3f/
               └── 3f9a0c...e1.jpg      (id = "3f9a0c...e1.jpg")

       Ids are `uuid4().hex` + extension, so no user input ever reaches a
       path and ids are checked against a strict pattern before use.
Who:   Called by the Backend Gateway (upload/delete) and the files route.
"""

import logging
import re
import uuid
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from snapgram.config import settings
from snapgram.exceptions import FileStorageError, NotFoundError, ValidationError
from snapgram.schemas.documents import StoredFile

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp"}

MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

FILE_ID_PATTERN = re.compile(r"^[0-9a-f]{32}\.(png|jpg|jpeg|gif|webp)$")


class StorageService:
    """
    Manages the lifecycle of uploaded post images.

    Lifecycle of an upload:
        1. validate_extension() — cheap rejection before touching bytes
        2. validate_size()      — Content-Length header, then actual size
        3. validate_mime_type() — magic bytes must agree it is an image
        4. store()              — write under a fresh file id
        5. preview_url()        — public URL stored on the post document
        6. delete()             — on post deletion, or as compensation when
                                  the post document could not be written
    """

    def __init__(self, storage_root: Optional[str] = None, public_base_url: Optional[str] = None):
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        logger.info("StorageService initialized with storage_root=%s", self.storage_root)

    # ── Validation ────────────────────────────────────────────────────────

    def validate_extension(self, filename: str) -> str:
        ext = Path(filename).suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                message=(
                    f"File type '{ext}' is not supported. "
                    f"Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
                ),
                field="file",
                context={"extension": ext},
            )
        return ext

    def validate_size(self, content_length: Optional[int], actual_size: int) -> None:
        max_mb = settings.max_file_size / (1024 * 1024)

        if actual_size == 0:
            raise ValidationError(message="The uploaded file is empty.", field="file")

        if content_length and content_length > settings.max_file_size:
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB. Please upload a smaller image.",
                field="file",
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )

        if actual_size > settings.max_file_size:
            raise ValidationError(
                message=f"File size ({actual_size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field="file",
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

    def validate_mime_type(self, content: bytes, filename: str) -> str:
        """
        Detect the real content type from magic bytes.

        Falls back to the extension when libmagic is not installed.
        """
        try:
            import magic
            mime_type = magic.from_buffer(content, mime=True)
        except ImportError:
            logger.warning(
                "python-magic not available — falling back to extension-based type detection."
            )
            mime_type = MEDIA_TYPES.get(Path(filename).suffix.lower(), "application/octet-stream")
        except Exception as e:
            logger.error("MIME type detection failed: %s", str(e))
            raise FileStorageError(
                message="Could not verify file type. Please try again.",
                context={"error": str(e)},
            )

        if mime_type not in ALLOWED_MIME_TYPES:
            raise ValidationError(
                message=f"File content type '{mime_type}' is not supported. The file must be an image.",
                field="file",
                context={"detected_mime": mime_type},
            )
        return mime_type

    # ── Paths & URLs ──────────────────────────────────────────────────────

    def _path_for(self, file_id: str) -> Path:
        if not FILE_ID_PATTERN.match(file_id):
            raise NotFoundError(resource="file", resource_id=file_id)
        return self.storage_root / file_id[:2] / file_id

    def preview_url(self, file_id: str) -> str:
        self._path_for(file_id)
        return f"{self.public_base_url}/api/files/{file_id}/preview"

    async def resolve(self, file_id: str) -> Path:
        """Absolute path of an existing file; NotFoundError otherwise."""
        path = self._path_for(file_id)
        if not await aiofiles.os.path.exists(path):
            raise NotFoundError(resource="file", resource_id=file_id)
        return path

    @staticmethod
    def media_type(file_id: str) -> str:
        return MEDIA_TYPES.get(Path(file_id).suffix.lower(), "application/octet-stream")

    # ── Write / Delete ────────────────────────────────────────────────────

    async def store(self, content: bytes, extension: str, mime_type: str) -> StoredFile:
        file_id = f"{uuid.uuid4().hex}{extension}"
        path = self._path_for(file_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store file at %s: %s", path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded image. Please try again.",
                context={"file_id": file_id, "os_error": str(e)},
            )

        logger.info("File stored: %s (%d bytes)", file_id, len(content))
        return StoredFile(id=file_id, size=len(content), mime_type=mime_type)

    async def upload(
        self,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> StoredFile:
        """Validate then store; the cheapest checks run first."""
        ext = self.validate_extension(filename)
        self.validate_size(content_length, len(content))
        mime_type = self.validate_mime_type(content, filename)
        return await self.store(content, ext, mime_type)

    async def delete(self, file_id: str) -> None:
        """
        Remove a stored file.

        Raises NotFoundError when there is no such file and FileStorageError
        when the file exists but cannot be removed.
        """
        path = await self.resolve(file_id)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            raise NotFoundError(resource="file", resource_id=file_id)
        except OSError as e:
            logger.error("Failed to delete file %s: %s", file_id, str(e))
            raise FileStorageError(
                message="Failed to delete stored image.",
                context={"file_id": file_id, "os_error": str(e)},
            )
        logger.info("File deleted: %s", file_id)


storage_service = StorageService()
