from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import httpx

from vidvault.core.errors import BackendError
from vidvault.core.settings import Settings
from vidvault.importer.records import MetadataRecord, RemoteVideo

logger = logging.getLogger(__name__)

VIMEO_ACCEPT = "application/vnd.vimeo.*+json;version=3.4"
LIST_FIELDS = "uri,name,description,duration,created_time,modified_time,download,files,size"


class VimeoClient:
    """Thin async client for the parts of the Vimeo API the importer uses."""

    def __init__(
        self,
        *,
        access_token: str,
        base_url: str = "https://api.vimeo.com",
        per_page: int = 100,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not access_token:
            raise ValueError("Vimeo access token is required")
        self.per_page = int(per_page)
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": VIMEO_ACCEPT,
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "VimeoClient":
        return cls(
            access_token=settings.vimeo_access_token or "",
            base_url=settings.vimeo_base_url,
            per_page=settings.vimeo_per_page,
            timeout=settings.vimeo_timeout_seconds,
            **kwargs,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "VimeoClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _get_json(self, path: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            res = await self._client.get(path, params=params)
            res.raise_for_status()
            data = res.json()
        except httpx.HTTPStatusError as e:
            raise BackendError(
                f"Vimeo API request failed with HTTP {e.response.status_code}",
                code="VIMEO_API_ERROR",
                metadata={"path": path, "status": e.response.status_code},
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise BackendError(
                f"Vimeo API request failed: {e}",
                code="VIMEO_API_ERROR",
                metadata={"path": path},
            ) from e
        if not isinstance(data, dict):
            raise BackendError("Unexpected Vimeo API response", code="VIMEO_API_ERROR", metadata={"path": path})
        return data

    async def get_videos(self, page: int = 1) -> dict[str, Any]:
        """One raw page of ``/me/videos`` (``data`` + ``paging``)."""
        try:
            return await self._get_json(
                "/me/videos",
                params={"page": page, "per_page": self.per_page, "fields": LIST_FIELDS},
            )
        except BackendError:
            logger.error("Failed to fetch Vimeo videos", extra={"extra_data": {"page": page}})
            raise

    async def iter_all_videos(self) -> AsyncIterator[RemoteVideo]:
        page = 1
        while True:
            body = await self.get_videos(page)
            items = body.get("data") or []
            logger.info("Fetched Vimeo page %s with %s videos", page, len(items))
            for item in items:
                if isinstance(item, dict) and item.get("uri"):
                    yield RemoteVideo.from_api(item)
            if not (body.get("paging") or {}).get("next"):
                return
            page += 1

    async def get_all_videos(self, *, limit: int | None = None) -> list[RemoteVideo]:
        out: list[RemoteVideo] = []
        async for video in self.iter_all_videos():
            out.append(video)
            if limit is not None and len(out) >= limit:
                break
        return out

    async def get_video(self, vimeo_id: str) -> RemoteVideo:
        body = await self._get_json(f"/videos/{vimeo_id}", params={"fields": LIST_FIELDS})
        return RemoteVideo.from_api(body)


def extract_metadata(video: RemoteVideo) -> MetadataRecord:
    payload = video.payload
    best = video.best_download()
    duration = payload.get("duration")
    return MetadataRecord(
        title=str(payload.get("name") or "Untitled"),
        vimeo_id=video.vimeo_id,
        description=str(payload.get("description") or ""),
        duration=int(duration) if isinstance(duration, (int, float)) else None,
        created_at_vimeo=payload.get("created_time"),
        modified_at_vimeo=payload.get("modified_time"),
        quality=(best.quality if best and best.quality else "source"),
        size=best.size if best else 0,
    )
