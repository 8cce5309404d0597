from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from vidvault.db.models.video import PROVENANCE_KEY


class VideoMetadata(BaseModel):
    """Provenance bag stored in `videos.metadata`. Unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    vimeo_id: str | None = None
    imported_from: Literal["vimeo", "local"] | None = None
    import_date: datetime | None = None
    original_quality: str | None = None
    original_path: str | None = None
    created_at_vimeo: str | None = None
    modified_at_vimeo: str | None = None

    @property
    def provenance_id(self) -> str | None:
        return getattr(self, PROVENANCE_KEY, None)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# Range checks (size ceiling, part bounds) are done by the upload coordinator so
# the same rules apply to API and non-API callers.
class InitiateUpload(BaseModel):
    filename: str
    filesize: int
    mimetype: str
    title: str
    description: str | None = None
    duration: int | None = None


class InitiateUploadResponse(BaseModel):
    video_id: int
    upload_id: str
    key: str


class UploadPartRequest(BaseModel):
    video_id: int
    upload_id: str
    key: str
    part_number: int


class UploadPartResponse(BaseModel):
    url: str


class CompletedPart(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    part_number: int = Field(validation_alias="PartNumber", serialization_alias="PartNumber")
    etag: str = Field(validation_alias="ETag", serialization_alias="ETag")


class CompleteUploadRequest(BaseModel):
    video_id: int
    upload_id: str
    key: str
    parts: list[CompletedPart] = Field(min_length=1)


class AbortUploadRequest(BaseModel):
    video_id: int
    upload_id: str
    key: str


class VideoUpdate(BaseModel):
    title: str
    description: str | None = None


class TagsUpdate(BaseModel):
    tags: list[str] = Field(default_factory=list)


class TagPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str


class VideoPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None
    original_filename: str
    size: int
    formatted_size: str
    duration: int | None
    formatted_duration: str | None
    status: str
    mime_type: str
    is_public: bool
    shared_at: datetime | None
    uploaded_at: datetime | None
    created_at: datetime | None
    tags: list[TagPublic] = Field(default_factory=list)

    # Filled in by the route for completed videos.
    s3_url: str | None = None
    public_url: str | None = None


class VideoPage(BaseModel):
    items: list[VideoPublic]
    page: int
    per_page: int
    total: int


class RecentVideo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    formatted_size: str
    formatted_duration: str | None
    status: str
    is_public: bool
    created_at: datetime | None


class VideoStats(BaseModel):
    total_videos: int
    total_storage: int
    formatted_storage: str
    total_duration: int
    formatted_duration: str
    public_videos: int
    videos_by_status: dict[str, int]
    recent_videos: list[RecentVideo]


class SharingResponse(BaseModel):
    is_public: bool
    public_url: str | None


class PublicVideo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    title: str
    description: str | None
    duration: int | None
    formatted_duration: str | None
    formatted_size: str
    shared_at: datetime | None
    s3_url: str | None = None


class ShareEmailRequest(BaseModel):
    # Comma-separated list; each address is validated by the sharing service.
    emails: str
    sender_name: str | None = None
    message: str | None = None
