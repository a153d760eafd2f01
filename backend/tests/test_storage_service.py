"""
Snapgram Backend — Storage Service Unit Tests
===============================================

What:  Tests for StorageService validation and file lifecycle.
How:   Each test gets its own temporary storage root.

Test Strategy:
    ✅ Allowed / rejected extensions (case-insensitive)
    ✅ Size limits: empty, Content-Length, actual size
    ✅ Non-image content rejected by magic-byte detection
    ✅ store → resolve → delete, then NotFound
    ✅ Ids that are not storage ids never reach the filesystem
"""

from unittest.mock import patch

import pytest

from snapgram.config import settings
from snapgram.exceptions import NotFoundError, ValidationError
from snapgram.services.storage_service import StorageService


@pytest.fixture
def storage(temp_storage):
    return StorageService(storage_root=temp_storage, public_base_url="http://test/")


class TestValidation:
    @pytest.mark.parametrize("name", ["photo.jpg", "photo.JPEG", "a.png", "b.gif", "c.webp"])
    def test_allowed_extensions(self, storage, name):
        assert storage.validate_extension(name).startswith(".")

    @pytest.mark.parametrize("name", ["doc.pdf", "run.exe", "noextension", "image.bmp"])
    def test_rejected_extensions(self, storage, name):
        with pytest.raises(ValidationError, match="not supported"):
            storage.validate_extension(name)

    def test_empty_file_rejected(self, storage):
        with pytest.raises(ValidationError, match="empty"):
            storage.validate_size(None, 0)

    def test_reported_size_over_limit(self, storage):
        with pytest.raises(ValidationError, match="exceeds"):
            storage.validate_size(settings.max_file_size + 1, 10)

    def test_actual_size_over_limit(self, storage):
        with pytest.raises(ValidationError, match="exceeds"):
            storage.validate_size(None, settings.max_file_size + 1)

    def test_size_at_limit_passes(self, storage):
        storage.validate_size(settings.max_file_size, settings.max_file_size)

    def test_text_disguised_as_image_rejected(self, storage):
        pytest.importorskip("magic")
        with patch("magic.from_buffer", return_value="text/plain"):
            with pytest.raises(ValidationError, match="must be an image"):
                storage.validate_mime_type(b"hello", "photo.jpg")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_upload_resolve_delete(self, storage, sample_image_bytes):
        stored = await storage.upload("photo.JPG", sample_image_bytes)

        assert stored.id.endswith(".jpg")
        assert stored.size == len(sample_image_bytes)
        path = await storage.resolve(stored.id)
        assert path.read_bytes() == sample_image_bytes
        assert storage.preview_url(stored.id) == f"http://test/api/files/{stored.id}/preview"
        assert storage.media_type(stored.id) == "image/jpeg"

        await storage.delete(stored.id)

        with pytest.raises(NotFoundError):
            await storage.resolve(stored.id)
        with pytest.raises(NotFoundError):
            await storage.delete(stored.id)

    @pytest.mark.asyncio
    async def test_rejected_upload_writes_nothing(self, storage, temp_storage):
        from pathlib import Path

        with pytest.raises(ValidationError):
            await storage.upload("photo.jpg", b"")

        assert [p for p in Path(temp_storage).rglob("*") if p.is_file()] == []

    @pytest.mark.parametrize("file_id", ["../../etc/passwd", "abc.jpg", "0" * 32 + ".exe", ""])
    @pytest.mark.asyncio
    async def test_foreign_ids_are_not_found(self, storage, file_id):
        with pytest.raises(NotFoundError):
            await storage.resolve(file_id)
        with pytest.raises(NotFoundError):
            storage.preview_url(file_id)
