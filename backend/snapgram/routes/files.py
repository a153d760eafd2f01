"""
Snapgram Backend — File Preview Route
=======================================

What:  Serves stored post images at the preview URL written on each post.
How:   The file id is checked against the storage id pattern before any
       path is built, so a request can never name a file outside storage.
"""

from fastapi import APIRouter
from fastapi.responses import FileResponse

from snapgram.schemas.api import ErrorResponse
from snapgram.services.storage_service import storage_service

router = APIRouter(prefix="/api/files", tags=["Files"])


@router.get(
    "/{file_id}/preview",
    responses={
        200: {"description": "Image file"},
        404: {"description": "File not found", "model": ErrorResponse},
    },
    summary="Serve a stored image",
)
async def preview_file(file_id: str) -> FileResponse:
    path = await storage_service.resolve(file_id)
    return FileResponse(
        path=str(path),
        media_type=storage_service.media_type(file_id),
        # File ids are never reused, so the content behind one never changes
        headers={"Cache-Control": "public, max-age=86400, immutable"},
    )
