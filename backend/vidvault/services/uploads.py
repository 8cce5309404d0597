from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable
from uuid import uuid4

from vidvault.core.errors import AuthorizationError, BackendError, UploadInitiationError, ValidationError
from vidvault.core.security import create_share_token
from vidvault.core.settings import Settings
from vidvault.db.models.video import STATUS_COMPLETED, STATUS_FAILED, STATUS_UPLOADING, Video
from vidvault.importer.filenames import sanitize_filename
from vidvault.repositories.videos import VideoRepository
from vidvault.schemas.video import CompletedPart, InitiateUpload, InitiateUploadResponse
from vidvault.storage.s3 import ObjectStorage

logger = logging.getLogger(__name__)

MIN_PART_NUMBER = 1
MAX_PART_NUMBER = 10_000
MAX_TITLE_LENGTH = 255
MAX_FILENAME_LENGTH = 255
MAX_MIMETYPE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 1000


def _require_text(value: str | None, *, field: str, max_length: int) -> str:
    v = (value or "").strip()
    if not v:
        raise ValidationError(f"{field} is required", field=field)
    if len(v) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", field=field)
    return v


def _optional_description(value: str | None) -> str | None:
    if value is None:
        return None
    if len(value) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"description must be at most {MAX_DESCRIPTION_LENGTH} characters", field="description"
        )
    return value or None


def build_upload_key(owner_id: int, filename: str) -> str:
    safe = sanitize_filename(filename) or "video"
    return f"videos/{owner_id}/{uuid4()}/{safe}"


class MultipartUploadCoordinator:
    """
    Drives the direct-to-storage multipart upload of one video.

    States: uploading -> completed, uploading -> failed (completion error),
    uploading -> deleted (abort). Every operation on an existing video checks
    ownership before touching storage or the database.
    """

    def __init__(self, storage: ObjectStorage, repository: VideoRepository, settings: Settings) -> None:
        self.storage = storage
        self.repository = repository
        self.settings = settings

    async def _owned_video(self, *, owner_id: int, video_id: int) -> Video:
        # Same error for "missing" and "someone else's" so ids can't be enumerated.
        video = await self.repository.get_owned(video_id, owner_id)
        if video is None:
            raise AuthorizationError()
        return video

    async def _owned_session(self, *, owner_id: int, video_id: int, upload_id: str, key: str) -> Video:
        video = await self._owned_video(owner_id=owner_id, video_id=video_id)
        if not upload_id or not key:
            raise ValidationError("upload_id and key are required")
        # completed and failed are terminal.
        if video.status != STATUS_UPLOADING:
            raise ValidationError(f"Upload is not in progress (status: {video.status})", field="status")
        # The session must be the one opened for this video.
        if key != video.s3_key or upload_id != video.upload_id:
            raise AuthorizationError()
        return video

    async def initiate_upload(self, request: InitiateUpload, owner_id: int) -> InitiateUploadResponse:
        filename = _require_text(request.filename, field="filename", max_length=MAX_FILENAME_LENGTH)
        mimetype = _require_text(request.mimetype, field="mimetype", max_length=MAX_MIMETYPE_LENGTH)
        title = _require_text(request.title, field="title", max_length=MAX_TITLE_LENGTH)
        description = _optional_description(request.description)

        ceiling = int(self.settings.upload_max_size_bytes)
        if request.filesize < 1 or request.filesize > ceiling:
            raise ValidationError(f"filesize must be between 1 and {ceiling} bytes", field="filesize")
        if request.duration is not None and request.duration < 0:
            raise ValidationError("duration must be >= 0", field="duration")

        key = build_upload_key(owner_id, filename)
        try:
            upload_id = await asyncio.to_thread(
                self.storage.create_multipart_upload, key=key, content_type=mimetype
            )
        except BackendError as e:
            raise UploadInitiationError("Failed to initiate upload", metadata=e.metadata) from e

        video = Video(
            user_id=owner_id,
            title=title,
            description=description,
            original_filename=filename,
            s3_key=key,
            s3_bucket=self.storage.bucket,
            s3_region=self.storage.region,
            size=int(request.filesize),
            mime_type=mimetype,
            duration=request.duration,
            status=STATUS_UPLOADING,
            upload_id=upload_id,
            is_public=False,
        )
        try:
            video = await self.repository.create(video)
        except Exception:
            # Don't leave an orphaned multipart session behind.
            try:
                await asyncio.to_thread(self.storage.abort_multipart_upload, key=key, upload_id=upload_id)
            except BackendError:
                logger.warning("Could not abort orphaned multipart upload", extra={"extra_data": {"key": key}})
            raise

        logger.info(
            "Multipart upload initiated",
            extra={"extra_data": {"video_id": video.id, "owner_id": owner_id, "size": video.size}},
        )
        return InitiateUploadResponse(video_id=video.id, upload_id=upload_id, key=key)

    async def authorize_part(
        self, *, owner_id: int, video_id: int, upload_id: str, key: str, part_number: int
    ) -> str:
        if part_number < MIN_PART_NUMBER or part_number > MAX_PART_NUMBER:
            raise ValidationError(
                f"part_number must be between {MIN_PART_NUMBER} and {MAX_PART_NUMBER}", field="part_number"
            )
        await self._owned_session(owner_id=owner_id, video_id=video_id, upload_id=upload_id, key=key)
        return await asyncio.to_thread(
            self.storage.presign_upload_part,
            key=key,
            upload_id=upload_id,
            part_number=part_number,
            expires_in=self.settings.s3_part_url_expires_seconds,
        )

    async def complete_upload(
        self,
        *,
        owner_id: int,
        video_id: int,
        upload_id: str,
        key: str,
        parts: Iterable[CompletedPart],
    ) -> str:
        video = await self._owned_session(owner_id=owner_id, video_id=video_id, upload_id=upload_id, key=key)
        manifest = [{"PartNumber": p.part_number, "ETag": p.etag} for p in parts]
        if not manifest:
            raise ValidationError("parts must not be empty", field="parts")

        try:
            location = await asyncio.to_thread(
                self.storage.complete_multipart_upload, key=key, upload_id=upload_id, parts=manifest
            )
        except BackendError:
            video.status = STATUS_FAILED
            await self.repository.save(video)
            logger.error("Multipart completion failed", extra={"extra_data": {"video_id": video.id}})
            raise

        video.status = STATUS_COMPLETED
        video.uploaded_at = datetime.now(timezone.utc)
        video.upload_id = None
        await self.repository.save(video)
        logger.info("Multipart upload completed", extra={"extra_data": {"video_id": video.id}})
        return location

    async def abort_upload(self, *, owner_id: int, video_id: int, upload_id: str, key: str) -> None:
        video = await self._owned_session(owner_id=owner_id, video_id=video_id, upload_id=upload_id, key=key)
        # A failed abort leaves the record in place for manual cleanup.
        await asyncio.to_thread(self.storage.abort_multipart_upload, key=key, upload_id=upload_id)
        await self.repository.delete(video)
        logger.info("Multipart upload aborted", extra={"extra_data": {"video_id": video_id}})

    async def get_video(self, *, owner_id: int, video_id: int) -> Video:
        return await self._owned_video(owner_id=owner_id, video_id=video_id)

    async def delete_video(self, *, owner_id: int, video_id: int) -> None:
        video = await self._owned_video(owner_id=owner_id, video_id=video_id)
        await asyncio.to_thread(self.storage.delete_object, key=video.s3_key)
        await self.repository.delete(video)

    async def update_details(
        self, *, owner_id: int, video_id: int, title: str, description: str | None
    ) -> Video:
        video = await self._owned_video(owner_id=owner_id, video_id=video_id)
        video.title = _require_text(title, field="title", max_length=MAX_TITLE_LENGTH)
        video.description = _optional_description(description)
        return await self.repository.save(video)

    async def toggle_sharing(self, *, owner_id: int, video_id: int) -> Video:
        video = await self._owned_video(owner_id=owner_id, video_id=video_id)
        if video.is_public:
            # Token is kept so re-enabling restores the same link.
            video.is_public = False
        else:
            if not video.share_token:
                video.share_token = create_share_token()
            video.is_public = True
            video.shared_at = datetime.now(timezone.utc)
        return await self.repository.save(video)

    def public_url(self, video: Video) -> str | None:
        if not video.is_public or not video.share_token:
            return None
        return f"{self.settings.public_base_url.rstrip('/')}/share/{video.share_token}"

    async def presigned_playback_url(self, video: Video) -> str | None:
        if video.status != STATUS_COMPLETED:
            return None
        return await asyncio.to_thread(
            self.storage.presign_get, key=video.s3_key, expires_in=self.settings.s3_download_expires_seconds
        )
