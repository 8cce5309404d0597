from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vidvault.core.rate_limit import AttemptLimiter
from vidvault.core.security import decode_access_token
from vidvault.core.settings import Settings, get_settings
from vidvault.db.models.user import User
from vidvault.db.session import get_db
from vidvault.repositories.videos import VideoRepository
from vidvault.services.sharing import Mailer
from vidvault.services.uploads import MultipartUploadCoordinator
from vidvault.storage.s3 import ObjectStorage, storage_from_settings


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    token = request.cookies.get(settings.access_cookie_name)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        payload = decode_access_token(token, settings.jwt_secret)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    res = await db.execute(select(User).where(User.id == user_id))
    user = res.scalar_one_or_none()
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    return user


def get_storage(settings: Settings = Depends(get_settings)) -> ObjectStorage:
    return storage_from_settings(settings)


def get_repository(db: AsyncSession = Depends(get_db)) -> VideoRepository:
    return VideoRepository(db)


def get_coordinator(
    storage: ObjectStorage = Depends(get_storage),
    repository: VideoRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> MultipartUploadCoordinator:
    return MultipartUploadCoordinator(storage, repository, settings)


def get_mailer(settings: Settings = Depends(get_settings)) -> Mailer:
    return Mailer(settings)


SHARE_EMAIL_DECAY_SECONDS = 60


@lru_cache(maxsize=1)
def get_share_email_limiter() -> AttemptLimiter:
    # Process-wide; state must survive across requests.
    return AttemptLimiter(
        max_attempts=get_settings().share_email_rate_limit, decay_seconds=SHARE_EMAIL_DECAY_SECONDS
    )
