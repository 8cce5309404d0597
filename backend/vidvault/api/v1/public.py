from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from vidvault.api.deps import get_coordinator, get_mailer, get_repository, get_share_email_limiter
from vidvault.core.errors import NotFoundError, RateLimitedError
from vidvault.core.rate_limit import AttemptLimiter
from vidvault.core.settings import Settings, get_settings
from vidvault.db.models.video import STATUS_COMPLETED, Video
from vidvault.repositories.videos import VideoRepository
from vidvault.schemas.video import PublicVideo, ShareEmailRequest
from vidvault.services.sharing import Mailer, parse_recipients, send_share_email, validate_share_note
from vidvault.services.uploads import MultipartUploadCoordinator

router = APIRouter(prefix="/share", tags=["share"])


async def _shared_video(repository: VideoRepository, token: str) -> Video:
    video = await repository.find_by_share_token(token)
    if video is None or not video.is_public or video.status != STATUS_COMPLETED:
        raise NotFoundError("Video not found")
    return video


@router.get("/{token}", response_model=PublicVideo)
async def show_shared_video(
    token: str,
    repository: VideoRepository = Depends(get_repository),
    coordinator: MultipartUploadCoordinator = Depends(get_coordinator),
) -> PublicVideo:
    video = await _shared_video(repository, token)
    out = PublicVideo.model_validate(video)
    out.s3_url = await coordinator.presigned_playback_url(video)
    return out


@router.post("/{token}/email")
async def send_shared_video_email(
    token: str,
    body: ShareEmailRequest,
    request: Request,
    repository: VideoRepository = Depends(get_repository),
    coordinator: MultipartUploadCoordinator = Depends(get_coordinator),
    mailer: Mailer = Depends(get_mailer),
    limiter: AttemptLimiter = Depends(get_share_email_limiter),
    settings: Settings = Depends(get_settings),
) -> dict:
    video = await _shared_video(repository, token)

    validate_share_note(sender_name=body.sender_name, message=body.message)
    recipients = parse_recipients(body.emails, max_recipients=settings.share_email_max_recipients)

    client_ip = request.client.host if request.client else "unknown"
    result = await limiter.attempt(f"share-email:{client_ip}")
    if not result.allowed:
        raise RateLimitedError(
            f"Too many emails sent. Please try again in {result.retry_after} seconds.",
            metadata={"retry_after": result.retry_after},
        )

    sent = await send_share_email(
        mailer=mailer,
        video=video,
        share_url=coordinator.public_url(video) or "",
        recipients=recipients,
        mail_from=settings.mail_from,
        sender_name=body.sender_name,
        personal_message=body.message,
    )
    return {"success": True, "message": f"Email(s) sent successfully to {sent} recipient(s)"}
