from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class MetadataRecord:
    """Authoritative descriptive data for one video (from Vimeo or a sidecar file)."""

    title: str
    vimeo_id: str | None = None
    description: str = ""
    duration: int | None = None
    created_at_vimeo: str | None = None
    modified_at_vimeo: str | None = None
    quality: str | None = None
    size: int = 0
    # Filename stem this record was loaded from / should be matched against.
    stem: str | None = None

    @classmethod
    def from_sidecar(cls, data: dict[str, Any], *, stem: str | None = None) -> "MetadataRecord":
        vimeo_id = data.get("vimeo_id")
        duration = data.get("duration")
        try:
            duration = int(round(float(duration))) if duration is not None else None
        except (TypeError, ValueError):
            duration = None
        try:
            size = int(data.get("size") or 0)
        except (TypeError, ValueError):
            size = 0
        return cls(
            title=str(data.get("title") or stem or "Untitled"),
            vimeo_id=str(vimeo_id) if vimeo_id not in (None, "") else None,
            description=str(data.get("description") or ""),
            duration=duration,
            created_at_vimeo=data.get("created_at_vimeo"),
            modified_at_vimeo=data.get("modified_at_vimeo"),
            quality=data.get("quality"),
            size=size,
            stem=stem,
        )

    def to_sidecar(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("stem", None)
        return data


@dataclass(frozen=True)
class DownloadLink:
    link: str
    size: int = 0
    quality: str | None = None


@dataclass(frozen=True)
class RemoteVideo:
    """One entry of the remote host's video listing."""

    uri: str
    payload: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)
    downloads: tuple[DownloadLink, ...] = ()

    @property
    def vimeo_id(self) -> str:
        return self.uri.replace("/videos/", "").strip("/")

    @property
    def name(self) -> str:
        return str(self.payload.get("name") or "Untitled")

    def best_download(self) -> DownloadLink | None:
        # Max by size; a missing size counts as 0 and the first seen wins ties.
        best: DownloadLink | None = None
        for d in self.downloads:
            if best is None or d.size > best.size:
                best = d
        return best

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "RemoteVideo":
        links: list[DownloadLink] = []
        for d in payload.get("download") or []:
            if not isinstance(d, dict) or not d.get("link"):
                continue
            try:
                size = int(d.get("size") or 0)
            except (TypeError, ValueError):
                size = 0
            links.append(DownloadLink(link=str(d["link"]), size=size, quality=d.get("quality")))
        return cls(uri=str(payload.get("uri") or ""), payload=payload, downloads=tuple(links))
