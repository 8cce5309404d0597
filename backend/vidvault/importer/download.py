from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Callable, Optional
from uuid import uuid4

import httpx

logger = logging.getLogger(__name__)

# (percentage, bytes_so_far, total_bytes)
ProgressCallback = Callable[[float, int, int], None]

PARTIAL_SUFFIX = ".download"


def partial_path_for(destination: str | Path) -> Path:
    return Path(f"{destination}{PARTIAL_SUFFIX}")


class DownloadResumeEngine:
    """
    Stream a remote file to local disk.

    - plain mode: write to ``<temp_dir>/<uuid>.part`` and rename into place; a
      failed transfer removes the temp file.
    - resume mode: append to ``<destination>.download`` starting at its current
      length (``Range: bytes=<offset>-``); a failed transfer keeps the partial
      file so the next attempt continues from where this one stopped.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        temp_dir: str | Path,
        chunk_size: int = 1024 * 1024,
    ) -> None:
        self._client = client
        self.temp_dir = Path(temp_dir)
        self.chunk_size = int(chunk_size)

    async def download(
        self,
        source_url: str,
        destination: str | Path,
        *,
        resume: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> bool:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        if self._client is not None:
            return await self._dispatch(self._client, source_url, destination, resume, on_progress)

        # Large files: no overall timeout, only connect/read stalls.
        timeout = httpx.Timeout(connect=30.0, read=300.0, write=None, pool=None)
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            return await self._dispatch(client, source_url, destination, resume, on_progress)

    async def _dispatch(
        self,
        client: httpx.AsyncClient,
        source_url: str,
        destination: Path,
        resume: bool,
        on_progress: Optional[ProgressCallback],
    ) -> bool:
        if resume:
            return await self._download_resumable(client, source_url, destination, on_progress)
        return await self._download_fresh(client, source_url, destination, on_progress)

    async def _download_fresh(
        self,
        client: httpx.AsyncClient,
        source_url: str,
        destination: Path,
        on_progress: Optional[ProgressCallback],
    ) -> bool:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.temp_dir / f"{uuid4().hex}.part"
        try:
            async with client.stream("GET", source_url) as res:
                res.raise_for_status()
                total = _content_length(res)
                await self._write_body(res, tmp, mode="wb", offset=0, total=total, on_progress=on_progress)
            os.replace(tmp, destination)
            return True
        except (httpx.HTTPError, OSError) as e:
            logger.error(
                "Download failed",
                extra={"extra_data": {"url": _redact(source_url), "error": str(e)}},
            )
            tmp.unlink(missing_ok=True)
            return False

    async def _download_resumable(
        self,
        client: httpx.AsyncClient,
        source_url: str,
        destination: Path,
        on_progress: Optional[ProgressCallback],
    ) -> bool:
        partial = partial_path_for(destination)
        offset = partial.stat().st_size if partial.exists() else 0
        headers = {"Range": f"bytes={offset}-"} if offset > 0 else {}

        try:
            async with client.stream("GET", source_url, headers=headers) as res:
                if res.status_code == 416 and offset > 0:
                    # Nothing left past our offset: the partial file already holds everything.
                    logger.info("Range not satisfiable; treating partial download as complete")
                    os.replace(partial, destination)
                    if on_progress is not None:
                        on_progress(100.0, offset, offset)
                    return True

                res.raise_for_status()

                if offset > 0 and res.status_code != 206:
                    # Server ignored the range and is sending the whole body.
                    logger.info("Server ignored Range header; restarting download from zero")
                    offset = 0

                total = _content_range_total(res) if offset > 0 else 0
                if not total:
                    length = _content_length(res)
                    total = offset + length if length else 0
                await self._write_body(
                    res,
                    partial,
                    mode="ab" if offset > 0 else "wb",
                    offset=offset,
                    total=total,
                    on_progress=on_progress,
                )
            os.replace(partial, destination)
            return True
        except (httpx.HTTPError, OSError) as e:
            logger.error(
                "Resumable download failed; keeping partial file",
                extra={
                    "extra_data": {
                        "url": _redact(source_url),
                        "partial": str(partial),
                        "error": str(e),
                    }
                },
            )
            return False

    async def _write_body(
        self,
        res: httpx.Response,
        path: Path,
        *,
        mode: str,
        offset: int,
        total: int,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        written = offset
        f = await asyncio.to_thread(open, path, mode)
        try:
            async for chunk in res.aiter_bytes(self.chunk_size):
                if not chunk:
                    continue
                await asyncio.to_thread(f.write, chunk)
                written += len(chunk)
                if on_progress is not None and total > 0:
                    on_progress(written / total * 100.0, written, total)
        finally:
            await asyncio.to_thread(f.close)

        # Unknown size (chunked body): the only point we know the total is the end.
        if on_progress is not None and total <= 0:
            on_progress(100.0, written, written)


_CONTENT_RANGE = re.compile(r"^bytes\s+\d+-\d+/(\d+)$")


def _content_length(res: httpx.Response) -> int:
    try:
        return int(res.headers.get("content-length") or 0)
    except ValueError:
        return 0


def _content_range_total(res: httpx.Response) -> int:
    # "bytes 40-99/100" -> 100; "bytes 40-99/*" means unknown.
    m = _CONTENT_RANGE.match((res.headers.get("content-range") or "").strip())
    return int(m.group(1)) if m else 0


def _redact(url: str) -> str:
    # Signed download links carry credentials in the query string.
    return url.split("?", 1)[0]
