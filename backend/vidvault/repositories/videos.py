from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vidvault.db.models.video import PROVENANCE_KEY, VIDEO_STATUSES, Video
from vidvault.db.session import session_scope

logger = logging.getLogger(__name__)


@dataclass
class VideoTotals:
    total_videos: int = 0
    total_storage: int = 0
    total_duration: int = 0
    public_videos: int = 0
    by_status: dict[str, int] = field(default_factory=lambda: {s: 0 for s in VIDEO_STATUSES})


class VideoRepository:
    """Persistence handle for `Video` rows; commits on every mutation."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, video_id: int) -> Video | None:
        res = await self.session.execute(select(Video).where(Video.id == video_id))
        return res.scalar_one_or_none()

    async def get_owned(self, video_id: int, owner_id: int) -> Video | None:
        res = await self.session.execute(
            select(Video).where(Video.id == video_id, Video.user_id == owner_id)
        )
        return res.scalar_one_or_none()

    async def create(self, video: Video) -> Video:
        self.session.add(video)
        await self.session.commit()
        await self.session.refresh(video)
        return video

    async def save(self, video: Video) -> Video:
        self.session.add(video)
        await self.session.commit()
        await self.session.refresh(video)
        return video

    async def delete(self, video: Video) -> None:
        await self.session.delete(video)
        await self.session.commit()

    async def list_for_user(
        self, owner_id: int, *, page: int = 1, per_page: int = 12
    ) -> tuple[list[Video], int]:
        page = max(1, int(page))
        total_res = await self.session.execute(
            select(func.count()).select_from(Video).where(Video.user_id == owner_id)
        )
        total = int(total_res.scalar_one())
        res = await self.session.execute(
            select(Video)
            .where(Video.user_id == owner_id)
            .order_by(Video.created_at.desc(), Video.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(res.scalars().all()), total

    async def totals_for_user(self, owner_id: int) -> VideoTotals:
        res = await self.session.execute(
            select(
                func.count(Video.id),
                func.coalesce(func.sum(Video.size), 0),
                func.coalesce(func.sum(Video.duration), 0),
                func.count(Video.id).filter(Video.is_public.is_(True)),
            ).where(Video.user_id == owner_id)
        )
        count, storage, duration, public = res.one()
        totals = VideoTotals(
            total_videos=int(count),
            total_storage=int(storage),
            total_duration=int(duration),
            public_videos=int(public),
        )
        res = await self.session.execute(
            select(Video.status, func.count(Video.id)).where(Video.user_id == owner_id).group_by(Video.status)
        )
        for status, n in res.all():
            totals.by_status[status] = int(n)
        return totals

    async def recent_for_user(self, owner_id: int, *, limit: int = 5) -> list[Video]:
        res = await self.session.execute(
            select(Video)
            .where(Video.user_id == owner_id)
            .order_by(Video.created_at.desc(), Video.id.desc())
            .limit(limit)
        )
        return list(res.scalars().all())

    async def find_by_share_token(self, token: str) -> Video | None:
        res = await self.session.execute(select(Video).where(Video.share_token == token))
        return res.scalar_one_or_none()

    async def exists_by_provenance_id(self, provenance_id: str) -> bool:
        res = await self.session.execute(
            select(Video.id).where(Video.metadata_[PROVENANCE_KEY].astext == str(provenance_id)).limit(1)
        )
        return res.scalar_one_or_none() is not None

    async def create_imported(self, video: Video) -> Video | None:
        """
        Insert an imported video. Returns None when another row already holds the
        same provenance id (the unique index rejected the insert).
        """
        self.session.add(video)
        try:
            await self.session.commit()
        except IntegrityError:
            # Race-safe duplicate guard: a concurrent import inserted the same source id.
            await self.session.rollback()
            provenance_id = video.provenance_id
            if provenance_id and await self.exists_by_provenance_id(provenance_id):
                logger.info(
                    "Import skipped by unique provenance index",
                    extra={"extra_data": {"provenance_id": provenance_id}},
                )
                return None
            raise
        await self.session.refresh(video)
        return video


@asynccontextmanager
async def repository_scope() -> AsyncGenerator[VideoRepository, None]:
    """One repository over its own session, for work outside a request."""
    async with session_scope() as session:
        yield VideoRepository(session)
