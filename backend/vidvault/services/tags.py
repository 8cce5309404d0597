from __future__ import annotations

import re
import unicodedata
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vidvault.core.errors import ValidationError
from vidvault.db.models.tag import Tag
from vidvault.db.models.video import Video

MAX_TAG_NAME_LENGTH = 100

_SLUG_DROP_RE = re.compile(r"[^a-z0-9\s-]")
_SLUG_SEP_RE = re.compile(r"[\s-]+")


def slugify(name: str) -> str:
    """'Vue.js Framework' -> 'vuejs-framework', 'React & Redux' -> 'react-redux'."""
    ascii_name = unicodedata.normalize("NFKD", name or "").encode("ascii", "ignore").decode("ascii")
    s = _SLUG_DROP_RE.sub("", ascii_name.lower().replace("_", "-"))
    return _SLUG_SEP_RE.sub("-", s).strip("-")


def _normalize_names(names: Iterable[str]) -> dict[str, str]:
    # slug -> display name; first spelling wins.
    out: dict[str, str] = {}
    for raw in names:
        name = (raw or "").strip()
        if not name:
            continue
        if len(name) > MAX_TAG_NAME_LENGTH:
            raise ValidationError(f"tag must be at most {MAX_TAG_NAME_LENGTH} characters", field="tags")
        slug = slugify(name)
        if slug and slug not in out:
            out[slug] = name
    return out


async def _get_or_create_tags(db: AsyncSession, wanted: dict[str, str]) -> list[Tag]:
    if not wanted:
        return []
    res = await db.execute(select(Tag).where(Tag.slug.in_(list(wanted))))
    by_slug = {t.slug: t for t in res.scalars().all()}
    for slug, name in wanted.items():
        if slug in by_slug:
            continue
        tag = Tag(name=name, slug=slug)
        try:
            async with db.begin_nested():
                db.add(tag)
        except IntegrityError:
            # Created concurrently by another request.
            res = await db.execute(select(Tag).where(Tag.slug == slug))
            tag = res.scalar_one()
        by_slug[slug] = tag
    return [by_slug[s] for s in wanted]


async def _load_tags(db: AsyncSession, video: Video) -> list[Tag]:
    await db.refresh(video, attribute_names=["tags"])
    return list(video.tags)


async def attach_tags(db: AsyncSession, video: Video, names: Iterable[str]) -> list[Tag]:
    """Add tags to a video. Attaching an already-attached tag (any case) is a no-op."""
    current = await _load_tags(db, video)
    have = {t.slug for t in current}
    for tag in await _get_or_create_tags(db, _normalize_names(names)):
        if tag.slug not in have:
            video.tags.append(tag)
            have.add(tag.slug)
    await db.commit()
    return await _load_tags(db, video)


async def detach_tags(db: AsyncSession, video: Video, names: Iterable[str]) -> list[Tag]:
    drop = set(_normalize_names(names))
    await _load_tags(db, video)
    video.tags = [t for t in video.tags if t.slug not in drop]
    await db.commit()
    return await _load_tags(db, video)


async def sync_tags(db: AsyncSession, video: Video, names: Iterable[str]) -> list[Tag]:
    """Replace the video's tag set; an empty list clears it."""
    await _load_tags(db, video)
    video.tags = await _get_or_create_tags(db, _normalize_names(names))
    await db.commit()
    return await _load_tags(db, video)


async def has_tag(db: AsyncSession, video: Video, name: str) -> bool:
    slug = slugify(name)
    return any(t.slug == slug for t in await _load_tags(db, video))
