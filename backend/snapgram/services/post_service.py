"""
Snapgram Backend — Post Service
=================================

What:  Post creation, update, deletion, likes and saves, plus the post reads
       that are not the geo feed (recent, by id, search, per-user lists).
How:   Multi-step writes follow upload → preview URL → document. A failure
       after the upload deletes the uploaded file before PartialWriteError
       is raised, so no orphaned image survives a failed post.
Who:   Called by the query layer facade.

Compensation Matrix:
    create_post  document write fails     → delete new file
    update_post  document write fails     → delete new file (old kept)
    update_post  old file delete fails    → logged; post already points
                                            at the new file
    delete_post  file delete fails        → logged; document already gone
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from snapgram.exceptions import NotFoundError, PartialWriteError, SnapgramError, ValidationError
from snapgram.schemas.documents import PostDTO, SaveDTO, StoredFile
from snapgram.services.backend_gateway import BackendGateway, backend_gateway

logger = logging.getLogger(__name__)

RECENT_POSTS_LIMIT = 20
SEARCH_LIMIT = 20
MAX_CAPTION_LENGTH = 2200


@dataclass
class Upload:
    """An image received from the client, not yet stored."""

    filename: str
    content: bytes
    content_length: Optional[int] = None


def split_tags(raw: Optional[str]) -> List[str]:
    """
    "art, travel ,  food" → ["art", "travel", "food"]

    Spaces are removed entirely (not just trimmed) and empty tags dropped.
    """
    if not raw:
        return []
    return [tag for tag in raw.replace(" ", "").split(",") if tag]


def validate_caption(caption: Optional[str]) -> str:
    caption = (caption or "").strip()
    if not caption:
        raise ValidationError(message="Caption must not be empty.", field="caption")
    if len(caption) > MAX_CAPTION_LENGTH:
        raise ValidationError(
            message=f"Caption must be at most {MAX_CAPTION_LENGTH} characters.",
            field="caption",
        )
    return caption


def validate_likes(likes: List[str]) -> List[str]:
    if not all(isinstance(user_id, str) and user_id for user_id in likes):
        raise ValidationError(message="Likes must be a list of user ids.", field="likes")
    # Order kept, duplicates dropped
    return list(dict.fromkeys(likes))


class PostService:
    def __init__(self, gateway: BackendGateway = backend_gateway):
        self.gateway = gateway

    # ── Compensation ──────────────────────────────────────────────────────

    async def _discard_file(self, file_id: str) -> bool:
        """Delete an uploaded file that no document references. True on success."""
        try:
            await self.gateway.delete_file(file_id)
        except NotFoundError:
            return True
        except SnapgramError as e:
            logger.error("Orphaned file %s could not be removed: %s", file_id, e.message)
            return False
        logger.info("Compensating delete of uploaded file %s", file_id)
        return True

    async def _upload(self, upload: Upload) -> StoredFile:
        return await self.gateway.upload_file(
            upload.filename, upload.content, upload.content_length
        )

    # ── Writes ────────────────────────────────────────────────────────────

    async def create_post(
        self,
        creator_id: str,
        caption: str,
        upload: Upload,
        location: Optional[str] = None,
        tags: Optional[str] = None,
    ) -> PostDTO:
        """
        Upload the image, then register the post document.

        Raises:
            ValidationError: bad caption or image (nothing stored).
            TransportError: the upload itself failed (nothing stored).
            PartialWriteError: the image was stored but the document was not;
                the image has already been deleted.
        """
        caption = validate_caption(caption)
        stored = await self._upload(upload)

        try:
            image_url = self.gateway.get_file_preview(stored.id)
            post = await self.gateway.create_post_document(
                creator_id=creator_id,
                caption=caption,
                image_id=stored.id,
                image_url=image_url,
                location=location or None,
                tags=split_tags(tags),
            )
        except SnapgramError as e:
            logger.error("Post document for file %s failed: %s", stored.id, e.message)
            cleaned_up = await self._discard_file(stored.id)
            raise PartialWriteError(
                message="Your post could not be created. Please try again.",
                cleaned_up=cleaned_up,
                context={"file_id": stored.id, "cause": type(e).__name__},
            ) from e

        logger.info("Post created: %s by %s", post.id, creator_id)
        return post

    async def update_post(
        self,
        post_id: str,
        caption: Optional[str] = None,
        location: Optional[str] = None,
        tags: Optional[str] = None,
        upload: Optional[Upload] = None,
    ) -> PostDTO:
        existing = await self.gateway.get_post(post_id)

        fields = {}
        if caption is not None:
            fields["caption"] = validate_caption(caption)
        if location is not None:
            fields["location"] = location or None
        if tags is not None:
            fields["tags"] = split_tags(tags)

        if upload is None:
            if not fields:
                return existing
            return await self.gateway.update_post_document(post_id, **fields)

        stored = await self._upload(upload)
        try:
            fields["image_id"] = stored.id
            fields["image_url"] = self.gateway.get_file_preview(stored.id)
            post = await self.gateway.update_post_document(post_id, **fields)
        except SnapgramError as e:
            logger.error("Update of post %s with file %s failed: %s", post_id, stored.id, e.message)
            cleaned_up = await self._discard_file(stored.id)
            if isinstance(e, NotFoundError):
                raise
            raise PartialWriteError(
                message="Your post could not be updated. Please try again.",
                cleaned_up=cleaned_up,
                context={"post_id": post_id, "file_id": stored.id, "cause": type(e).__name__},
            ) from e

        # The post now points at the new image; the old one is unreferenced
        await self._discard_file(existing.image_id)
        return post

    async def delete_post(self, post_id: str) -> None:
        post = await self.gateway.get_post(post_id)
        await self.gateway.delete_post_document(post_id)
        await self._discard_file(post.image_id)
        logger.info("Post deleted: %s", post_id)

    async def like_post(self, post_id: str, likes: List[str]) -> PostDTO:
        """Replace the post's likes with `likes` (the full list, not a delta)."""
        return await self.gateway.update_post_document(post_id, likes=validate_likes(likes))

    async def save_post(self, post_id: str, user_id: str) -> SaveDTO:
        return await self.gateway.create_save(user_id=user_id, post_id=post_id)

    async def delete_saved_post(self, save_id: str) -> None:
        await self.gateway.delete_save(save_id)

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_recent_posts(self) -> List[PostDTO]:
        batch = await self.gateway.list_posts(limit=RECENT_POSTS_LIMIT)
        return batch.documents

    async def get_post_by_id(self, post_id: str) -> PostDTO:
        return await self.gateway.get_post(post_id)

    async def search_posts(self, term: str) -> List[PostDTO]:
        term = (term or "").strip()
        if not term:
            raise ValidationError(message="Search term must not be empty.", field="q")
        return await self.gateway.search_posts(term, limit=SEARCH_LIMIT)

    async def get_user_posts(self, user_id: str) -> List[PostDTO]:
        return await self.gateway.list_posts_by_creator(user_id)

    async def get_liked_posts(self, user_id: str) -> List[PostDTO]:
        return await self.gateway.list_posts_liked_by(user_id)

    async def get_saved_posts(self, user_id: str) -> List[SaveDTO]:
        return await self.gateway.list_saves(user_id)


post_service = PostService()
