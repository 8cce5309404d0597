from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import pytest

from vidvault.core.errors import BackendError
from vidvault.db.models.video import Video
from vidvault.repositories.videos import VideoTotals


class StubStorage:
    """In-memory stand-in for `ObjectStorage`; records every call."""

    bucket = "vidvault-test"
    region = "us-east-1"

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.objects: dict[str, str] = {}
        self.fail: set[str] = set()
        self._next_upload = 0

    def _record(self, op: str, **kwargs: Any) -> None:
        self.calls.append((op, kwargs))
        if op in self.fail:
            raise BackendError(f"Storage {op} failed", code="STORAGE_ERROR", metadata={"operation": op})

    def ops(self) -> list[str]:
        return [op for op, _ in self.calls]

    def create_multipart_upload(self, *, key: str, content_type: str) -> str:
        self._record("create_multipart_upload", key=key, content_type=content_type)
        self._next_upload += 1
        return f"upload-{self._next_upload}"

    def presign_upload_part(self, *, key: str, upload_id: str, part_number: int, expires_in: int = 3600) -> str:
        self._record("presign_upload_part", key=key, upload_id=upload_id, part_number=part_number)
        return f"https://s3.test/{key}?uploadId={upload_id}&partNumber={part_number}"

    def complete_multipart_upload(self, *, key: str, upload_id: str, parts) -> str:
        self._record("complete_multipart_upload", key=key, upload_id=upload_id, parts=list(parts))
        return f"https://s3.test/{key}"

    def abort_multipart_upload(self, *, key: str, upload_id: str) -> None:
        self._record("abort_multipart_upload", key=key, upload_id=upload_id)

    def upload_file(self, *, path: str, key: str, content_type: str) -> None:
        self._record("upload_file", path=path, key=key, content_type=content_type)
        self.objects[key] = path

    def delete_object(self, *, key: str) -> None:
        self._record("delete_object", key=key)
        self.objects.pop(key, None)

    def presign_get(self, *, key: str, expires_in: int = 3600) -> str:
        self._record("presign_get", key=key)
        return f"https://s3.test/{key}?signed=1"

    def put_bucket_cors(self, *, origins, max_age_seconds: int = 3000) -> dict[str, Any]:
        self._record("put_bucket_cors", origins=list(origins), max_age_seconds=max_age_seconds)
        return {"AllowedOrigins": list(origins), "MaxAgeSeconds": max_age_seconds}


class StubRepository:
    """Dict-backed stand-in for `VideoRepository`, including the provenance unique index."""

    def __init__(self) -> None:
        self.rows: dict[int, Video] = {}
        self.fail_create = False
        self._next_id = 0

    def _assign_id(self, video: Video) -> Video:
        self._next_id += 1
        video.id = self._next_id
        self.rows[video.id] = video
        return video

    async def get_owned(self, video_id: int, owner_id: int) -> Video | None:
        v = self.rows.get(video_id)
        return v if v is not None and v.user_id == owner_id else None

    async def create(self, video: Video) -> Video:
        if self.fail_create:
            raise RuntimeError("database unavailable")
        return self._assign_id(video)

    async def save(self, video: Video) -> Video:
        self.rows[video.id] = video
        return video

    async def delete(self, video: Video) -> None:
        self.rows.pop(video.id, None)

    async def list_for_user(self, owner_id: int, *, page: int = 1, per_page: int = 12):
        mine = [v for v in self.rows.values() if v.user_id == owner_id]
        start = (max(1, page) - 1) * per_page
        return mine[start : start + per_page], len(mine)

    async def totals_for_user(self, owner_id: int) -> VideoTotals:
        totals = VideoTotals()
        for v in self.rows.values():
            if v.user_id != owner_id:
                continue
            totals.total_videos += 1
            totals.total_storage += v.size or 0
            totals.total_duration += v.duration or 0
            totals.public_videos += 1 if v.is_public else 0
            totals.by_status[v.status] = totals.by_status.get(v.status, 0) + 1
        return totals

    async def recent_for_user(self, owner_id: int, *, limit: int = 5) -> list[Video]:
        mine = [v for v in self.rows.values() if v.user_id == owner_id]
        return sorted(mine, key=lambda v: v.id, reverse=True)[:limit]

    async def find_by_share_token(self, token: str) -> Video | None:
        for v in self.rows.values():
            if v.share_token == token:
                return v
        return None

    async def exists_by_provenance_id(self, provenance_id: str) -> bool:
        return any(v.provenance_id == str(provenance_id) for v in self.rows.values())

    async def create_imported(self, video: Video) -> Video | None:
        if video.provenance_id and await self.exists_by_provenance_id(video.provenance_id):
            return None
        return self._assign_id(video)


@pytest.fixture
def storage() -> StubStorage:
    return StubStorage()


@pytest.fixture
def repo() -> StubRepository:
    return StubRepository()


@pytest.fixture
def repository_factory(repo: StubRepository):
    @asynccontextmanager
    async def _factory():
        yield repo

    return _factory
