from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from vidvault.api.deps import get_coordinator, get_current_user, get_repository
from vidvault.db.models.user import User
from vidvault.db.models.video import Video
from vidvault.importer.filenames import format_bytes, format_duration
from vidvault.repositories.videos import VideoRepository
from vidvault.schemas.video import (
    AbortUploadRequest,
    CompleteUploadRequest,
    InitiateUpload,
    InitiateUploadResponse,
    RecentVideo,
    SharingResponse,
    TagPublic,
    TagsUpdate,
    UploadPartRequest,
    UploadPartResponse,
    VideoPage,
    VideoPublic,
    VideoStats,
    VideoUpdate,
)
from vidvault.services.tags import sync_tags
from vidvault.services.uploads import MultipartUploadCoordinator

router = APIRouter(prefix="/videos", tags=["videos"])

PER_PAGE = 12
RECENT_LIMIT = 5


async def _to_public(video: Video, coordinator: MultipartUploadCoordinator) -> VideoPublic:
    out = VideoPublic.model_validate(video)
    out.s3_url = await coordinator.presigned_playback_url(video)
    out.public_url = coordinator.public_url(video)
    return out


@router.get("", response_model=VideoPage)
async def list_videos(
    page: int = Query(default=1, ge=1),
    repository: VideoRepository = Depends(get_repository),
    coordinator: MultipartUploadCoordinator = Depends(get_coordinator),
    current_user: User = Depends(get_current_user),
) -> VideoPage:
    videos, total = await repository.list_for_user(current_user.id, page=page, per_page=PER_PAGE)
    items = [await _to_public(v, coordinator) for v in videos]
    return VideoPage(items=items, page=page, per_page=PER_PAGE, total=total)


@router.get("/stats", response_model=VideoStats)
async def video_stats(
    repository: VideoRepository = Depends(get_repository),
    current_user: User = Depends(get_current_user),
) -> VideoStats:
    totals = await repository.totals_for_user(current_user.id)
    recent = await repository.recent_for_user(current_user.id, limit=RECENT_LIMIT)
    return VideoStats(
        total_videos=totals.total_videos,
        total_storage=totals.total_storage,
        formatted_storage=format_bytes(totals.total_storage),
        total_duration=totals.total_duration,
        formatted_duration=format_duration(totals.total_duration) or "00:00",
        public_videos=totals.public_videos,
        videos_by_status=totals.by_status,
        recent_videos=[RecentVideo.model_validate(v) for v in recent],
    )


@router.post("/initiate-upload", response_model=InitiateUploadResponse)
async def initiate_upload(
    body: InitiateUpload,
    coordinator: MultipartUploadCoordinator = Depends(get_coordinator),
    current_user: User = Depends(get_current_user),
) -> InitiateUploadResponse:
    return await coordinator.initiate_upload(body, current_user.id)


@router.post("/get-upload-url", response_model=UploadPartResponse)
async def get_upload_url(
    body: UploadPartRequest,
    coordinator: MultipartUploadCoordinator = Depends(get_coordinator),
    current_user: User = Depends(get_current_user),
) -> UploadPartResponse:
    url = await coordinator.authorize_part(
        owner_id=current_user.id,
        video_id=body.video_id,
        upload_id=body.upload_id,
        key=body.key,
        part_number=body.part_number,
    )
    return UploadPartResponse(url=url)


@router.post("/complete-upload")
async def complete_upload(
    body: CompleteUploadRequest,
    coordinator: MultipartUploadCoordinator = Depends(get_coordinator),
    current_user: User = Depends(get_current_user),
) -> dict:
    location = await coordinator.complete_upload(
        owner_id=current_user.id,
        video_id=body.video_id,
        upload_id=body.upload_id,
        key=body.key,
        parts=body.parts,
    )
    return {"success": True, "location": location}


@router.post("/abort-upload")
async def abort_upload(
    body: AbortUploadRequest,
    coordinator: MultipartUploadCoordinator = Depends(get_coordinator),
    current_user: User = Depends(get_current_user),
) -> dict:
    await coordinator.abort_upload(
        owner_id=current_user.id,
        video_id=body.video_id,
        upload_id=body.upload_id,
        key=body.key,
    )
    return {"success": True}


@router.get("/{video_id}", response_model=VideoPublic)
async def get_video(
    video_id: int,
    coordinator: MultipartUploadCoordinator = Depends(get_coordinator),
    current_user: User = Depends(get_current_user),
) -> VideoPublic:
    video = await coordinator.get_video(owner_id=current_user.id, video_id=video_id)
    return await _to_public(video, coordinator)


@router.patch("/{video_id}", response_model=VideoPublic)
async def update_video(
    video_id: int,
    body: VideoUpdate,
    coordinator: MultipartUploadCoordinator = Depends(get_coordinator),
    current_user: User = Depends(get_current_user),
) -> VideoPublic:
    video = await coordinator.update_details(
        owner_id=current_user.id,
        video_id=video_id,
        title=body.title,
        description=body.description,
    )
    return await _to_public(video, coordinator)


@router.delete("/{video_id}")
async def delete_video(
    video_id: int,
    coordinator: MultipartUploadCoordinator = Depends(get_coordinator),
    current_user: User = Depends(get_current_user),
) -> dict:
    await coordinator.delete_video(owner_id=current_user.id, video_id=video_id)
    return {"success": True}


@router.post("/{video_id}/sharing", response_model=SharingResponse)
async def toggle_sharing(
    video_id: int,
    coordinator: MultipartUploadCoordinator = Depends(get_coordinator),
    current_user: User = Depends(get_current_user),
) -> SharingResponse:
    video = await coordinator.toggle_sharing(owner_id=current_user.id, video_id=video_id)
    return SharingResponse(is_public=bool(video.is_public), public_url=coordinator.public_url(video))


@router.put("/{video_id}/tags", response_model=list[TagPublic])
async def update_tags(
    video_id: int,
    body: TagsUpdate,
    repository: VideoRepository = Depends(get_repository),
    coordinator: MultipartUploadCoordinator = Depends(get_coordinator),
    current_user: User = Depends(get_current_user),
) -> list[TagPublic]:
    video = await coordinator.get_video(owner_id=current_user.id, video_id=video_id)
    tags = await sync_tags(repository.session, video, body.tags)
    return [TagPublic.model_validate(t) for t in tags]
