from __future__ import annotations

import math
import re
from pathlib import Path

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_.\-]")
_UNDERSCORE_RUN_RE = re.compile(r"_+")
_QUALITY_SUFFIX_RE = re.compile(r"\s*\(\d+p\)\s*$", re.IGNORECASE)
# "Title_1234567890.mp4" -> ("Title", "1234567890", "mp4")
_IMPORT_NAME_RE = re.compile(r"^(.+)_(\d{7,12})\.([A-Za-z0-9]+)$", re.IGNORECASE)
# A trailing ".ext" only counts as an extension if it looks like one ("v1.2" keeps its ".2").
_EXTENSION_RE = re.compile(r"\.(?=[A-Za-z0-9]*[A-Za-z])[A-Za-z0-9]{1,5}$")

_BYTE_UNITS = ["B", "KB", "MB", "GB", "TB"]


def sanitize_filename(name: str) -> str:
    """Make an externally-sourced name safe for storage keys and local paths.

    Every character outside ``[A-Za-z0-9_.-]`` becomes ``_``, runs of ``_`` collapse
    to one, and leading/trailing underscores are trimmed. Idempotent.
    """
    out = _UNSAFE_RE.sub("_", name or "")
    out = _UNDERSCORE_RUN_RE.sub("_", out)
    return out.strip("_")


def split_extension(filename: str) -> tuple[str, str]:
    """Return ``(stem, ext)``; ``ext`` is lowercase without the dot, or ``""``."""
    base = Path(filename or "").name
    m = _EXTENSION_RE.search(base)
    if not m:
        return base, ""
    return base[: m.start()], m.group(0)[1:].lower()


def strip_extension(filename: str) -> str:
    return split_extension(filename)[0]


def strip_quality_suffix(name: str) -> str:
    """Drop a trailing quality annotation such as ``(1080p)`` and trim whitespace."""
    return _QUALITY_SUFFIX_RE.sub("", name or "").strip()


def parse_import_filename(filename: str) -> tuple[str, str] | None:
    """Parse ``<Title>_<7-12 digit id>.<ext>`` into ``(title, source_id)``."""
    m = _IMPORT_NAME_RE.match(Path(filename or "").name)
    if not m:
        return None
    return m.group(1).replace("_", " "), m.group(2)


def build_import_stem(title: str, source_id: str, *, max_title_length: int | None = None) -> str:
    safe = sanitize_filename(title) or "video"
    if max_title_length is not None and len(safe) > max_title_length:
        safe = safe[:max_title_length].rstrip("_") or "video"
    return f"{safe}_{source_id}"


def build_import_filename(
    title: str, source_id: str, *, ext: str = "mp4", max_title_length: int | None = None
) -> str:
    return f"{build_import_stem(title, source_id, max_title_length=max_title_length)}.{ext}"


def format_bytes(num_bytes: int) -> str:
    power = math.floor(math.log(num_bytes) / math.log(1024)) if num_bytes > 0 else 0
    power = min(power, len(_BYTE_UNITS) - 1)
    value = num_bytes / (1024**power)
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_BYTE_UNITS[power]}"


def format_duration(seconds: int | None) -> str | None:
    if not seconds:
        return None
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"
