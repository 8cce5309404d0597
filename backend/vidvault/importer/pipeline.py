from __future__ import annotations

import asyncio
import json
import logging
import mimetypes
import shutil
import subprocess
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Sequence

from vidvault.core.errors import RetryableTaskError, VidVaultError
from vidvault.core.settings import Settings
from vidvault.db.models.video import STATUS_COMPLETED, Video
from vidvault.importer.download import DownloadResumeEngine, ProgressCallback
from vidvault.importer.filenames import (
    build_import_filename,
    format_bytes,
    parse_import_filename,
    sanitize_filename,
    strip_extension,
)
from vidvault.importer.index import MetadataIndex
from vidvault.importer.matcher import FilenameMatcher
from vidvault.importer.records import MetadataRecord, RemoteVideo
from vidvault.importer.tasks import TaskDescriptor
from vidvault.importer.vimeo import extract_metadata
from vidvault.repositories.videos import VideoRepository, repository_scope
from vidvault.schemas.video import VideoMetadata
from vidvault.storage.s3 import ObjectStorage, storage_from_settings

logger = logging.getLogger(__name__)

IMPORTED = "imported"
SKIPPED = "skipped"
FAILED = "failed"

DEFAULT_MIME_TYPE = "video/mp4"

RepositoryFactory = Callable[[], AbstractAsyncContextManager[VideoRepository]]


@dataclass(frozen=True)
class ImportOutcome:
    status: str
    name: str
    reason: str | None = None
    video_id: int | None = None
    vimeo_id: str | None = None
    # How local metadata was resolved: sidecar, filename, a matcher strategy, or None.
    metadata_source: str | None = None
    unmatched: bool = False
    # Transient failure (download/storage); a queued task may retry it.
    retryable: bool = False


@dataclass
class ImportReport:
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    failed_items: list[str] = field(default_factory=list)
    unmatched_items: list[str] = field(default_factory=list)
    outcomes: list[ImportOutcome] = field(default_factory=list)

    def add(self, outcome: ImportOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == IMPORTED:
            self.imported += 1
        elif outcome.status == SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            self.failed_items.append(outcome.name)
        if outcome.unmatched:
            self.unmatched_items.append(outcome.name)

    @property
    def total(self) -> int:
        return self.imported + self.skipped + self.failed


@dataclass
class LocalImportOptions:
    with_metadata: bool = False
    move_processed: bool = False
    metadata_dir: Path | None = None
    processed_dir: Path | None = None
    # Set when sidecars/filenames should also be reconciled against a preloaded index.
    matcher: FilenameMatcher | None = None

    @classmethod
    def for_directory(
        cls,
        import_dir: Path,
        *,
        with_metadata: bool = False,
        move_processed: bool = False,
        match_metadata: bool = False,
        threshold: float = 70.0,
    ) -> "LocalImportOptions":
        """Options for the standard layout: metadata/ and processed/ beside the import directory."""
        metadata_dir = import_dir.parent / "metadata"
        options = cls(
            with_metadata=with_metadata,
            move_processed=move_processed,
            metadata_dir=metadata_dir,
            processed_dir=import_dir.parent / "processed",
        )
        if match_metadata:
            index = MetadataIndex.from_directory(metadata_dir)
            logger.info(
                "Loaded metadata index",
                extra={"extra_data": {"keys": len(index), "metadata_dir": str(metadata_dir)}},
            )
            options.matcher = FilenameMatcher(index, threshold=threshold)
        return options


@dataclass(frozen=True)
class PlanRow:
    name: str
    size: int
    vimeo_id: str | None
    already_imported: bool

    @property
    def formatted_size(self) -> str:
        return format_bytes(self.size)


def probe_duration(path: Path, *, ffprobe_bin: str = "ffprobe") -> int | None:
    """Media duration in whole seconds, or None if ffprobe is missing or fails."""
    exe = shutil.which(ffprobe_bin)
    if exe is None:
        return None
    cmd = [
        exe,
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=60, check=False)
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning("ffprobe failed for %s: %s", path.name, e)
        return None
    out = (proc.stdout or "").strip()
    if proc.returncode != 0 or not out:
        return None
    try:
        return int(round(float(out)))
    except ValueError:
        return None


def _log_progress(name: str) -> ProgressCallback:
    last = {"pct": -1}

    def _cb(percentage: float, downloaded: int, total: int) -> None:
        pct = int(percentage)
        if pct == last["pct"] or pct % 10:
            return
        last["pct"] = pct
        logger.debug(
            "Download progress",
            extra={
                "extra_data": {
                    "video": name,
                    "percentage": round(percentage, 2),
                    "downloaded": format_bytes(downloaded),
                    "total": format_bytes(total),
                }
            },
        )

    return _cb


class ImportPipeline:
    """
    Bulk import into storage + database, from Vimeo or from a local directory.

    Every item is independent: failures are reported per item and never abort
    a batch. The unique index on the provenance id makes concurrent imports of
    the same source video safe (one row wins, the other reports "skipped").
    """

    def __init__(
        self,
        *,
        storage: ObjectStorage,
        repository_factory: RepositoryFactory,
        downloader: DownloadResumeEngine,
        settings: Settings,
        work_dir: str | Path | None = None,
    ) -> None:
        self.storage = storage
        self.repository_factory = repository_factory
        self.downloader = downloader
        self.settings = settings
        self.work_dir = Path(work_dir or settings.import_work_dir)

    async def already_imported(self, vimeo_id: str | None) -> bool:
        if not vimeo_id:
            return False
        async with self.repository_factory() as repo:
            return await repo.exists_by_provenance_id(vimeo_id)

    async def _persist(self, video: Video) -> Video | None:
        async with self.repository_factory() as repo:
            return await repo.create_imported(video)

    def _new_video(
        self,
        *,
        owner_id: int,
        record: MetadataRecord,
        original_filename: str,
        key: str,
        size: int,
        mime_type: str,
        metadata: VideoMetadata,
    ) -> Video:
        now = datetime.now(timezone.utc)
        return Video(
            user_id=owner_id,
            title=(record.title or strip_extension(original_filename))[:255],
            description=record.description or "",
            original_filename=original_filename,
            s3_key=key,
            s3_bucket=self.storage.bucket,
            s3_region=self.storage.region,
            size=size,
            mime_type=mime_type,
            duration=record.duration,
            status=STATUS_COMPLETED,
            is_public=False,
            metadata_=metadata.to_json(),
            uploaded_at=now,
        )

    # Remote (Vimeo)

    async def import_remote(self, video: RemoteVideo, owner_id: int, *, resume: bool = True) -> ImportOutcome:
        record = extract_metadata(video)
        name = record.title
        vimeo_id = record.vimeo_id

        if await self.already_imported(vimeo_id):
            logger.info("Video already imported", extra={"extra_data": {"vimeo_id": vimeo_id}})
            return ImportOutcome(SKIPPED, name, reason="already imported", vimeo_id=vimeo_id)

        best = video.best_download()
        if best is None:
            logger.warning("No download link available", extra={"extra_data": {"vimeo_id": vimeo_id}})
            return ImportOutcome(FAILED, name, reason="no download link", vimeo_id=vimeo_id)

        filename = build_import_filename(record.title, vimeo_id or "unknown")
        local_path = self.work_dir / filename
        logger.info(
            "Starting download",
            extra={"extra_data": {"vimeo_id": vimeo_id, "title": name, "size": best.size}},
        )

        ok = await self.downloader.download(
            best.link, local_path, resume=resume, on_progress=_log_progress(name)
        )
        if not ok:
            return ImportOutcome(FAILED, name, reason="download failed", vimeo_id=vimeo_id, retryable=True)

        key = f"videos/{owner_id}/{filename}"
        try:
            size = local_path.stat().st_size
            await asyncio.to_thread(
                self.storage.upload_file, path=str(local_path), key=key, content_type=DEFAULT_MIME_TYPE
            )
            metadata = VideoMetadata(
                vimeo_id=vimeo_id,
                imported_from="vimeo",
                import_date=datetime.now(timezone.utc),
                original_quality=record.quality,
                created_at_vimeo=record.created_at_vimeo,
                modified_at_vimeo=record.modified_at_vimeo,
            )
            row = self._new_video(
                owner_id=owner_id,
                record=record,
                original_filename=filename,
                key=key,
                size=size,
                mime_type=DEFAULT_MIME_TYPE,
                metadata=metadata,
            )
            created = await self._persist(row)
        except (VidVaultError, OSError) as e:
            logger.error(
                "Failed to upload imported video",
                extra={"extra_data": {"vimeo_id": vimeo_id, "key": key, "error": str(e)}},
            )
            return ImportOutcome(FAILED, name, reason=str(e), vimeo_id=vimeo_id, retryable=True)
        finally:
            local_path.unlink(missing_ok=True)

        if created is None:
            return ImportOutcome(SKIPPED, name, reason="already imported", vimeo_id=vimeo_id)
        logger.info(
            "Video imported",
            extra={"extra_data": {"vimeo_id": vimeo_id, "video_id": created.id, "size": format_bytes(size)}},
        )
        return ImportOutcome(IMPORTED, name, video_id=created.id, vimeo_id=vimeo_id)

    # Local directory

    def discover_local(self, directory: str | Path, pattern: str | None = None) -> list[Path]:
        root = Path(directory)
        if not root.is_dir():
            return []
        return sorted(p for p in root.glob(pattern or self.settings.import_pattern) if p.is_file())

    def _sidecar_path(self, path: Path, options: LocalImportOptions) -> Path:
        metadata_dir = options.metadata_dir or Path(self.settings.metadata_dir)
        return metadata_dir / f"{path.stem}.json"

    def resolve_local_metadata(
        self, path: Path, options: LocalImportOptions
    ) -> tuple[MetadataRecord, str | None]:
        """Sidecar JSON > filename pattern > matcher > bare stem."""
        if options.with_metadata:
            sidecar = self._sidecar_path(path, options)
            if sidecar.is_file():
                try:
                    data = json.loads(sidecar.read_text(encoding="utf-8"))
                except (OSError, ValueError) as e:
                    logger.warning("Ignoring unreadable sidecar %s: %s", sidecar.name, e)
                    data = None
                if isinstance(data, dict) and data:
                    return MetadataRecord.from_sidecar(data, stem=path.stem), "sidecar"

        parsed = parse_import_filename(path.name)
        if parsed is not None:
            title, vimeo_id = parsed
            return MetadataRecord(title=title, vimeo_id=vimeo_id, stem=path.stem), "filename"

        if options.matcher is not None:
            match = options.matcher.match(path.name)
            if match is not None:
                return replace(match.record, stem=path.stem), match.strategy

        return MetadataRecord(title=path.stem, stem=path.stem), None

    def _move_to_processed(self, path: Path, options: LocalImportOptions) -> None:
        processed_dir = options.processed_dir or Path(self.settings.processed_dir)
        processed_dir.mkdir(parents=True, exist_ok=True)
        if path.exists():
            target = processed_dir / path.name
            shutil.move(str(path), str(target))
            logger.info("Moved file to processed", extra={"extra_data": {"from": str(path), "to": str(target)}})
        if options.with_metadata:
            sidecar = self._sidecar_path(path, options)
            if sidecar.exists():
                shutil.move(str(sidecar), str(processed_dir / sidecar.name))

    async def import_local(
        self, path: str | Path, owner_id: int, options: LocalImportOptions | None = None
    ) -> ImportOutcome:
        path = Path(path)
        options = options or LocalImportOptions()
        name = path.name

        try:
            record, source = self.resolve_local_metadata(path, options)
            unmatched = source is None
            if record.duration is None:
                duration = await asyncio.to_thread(probe_duration, path, ffprobe_bin=self.settings.ffprobe_bin)
                if duration is not None:
                    record = replace(record, duration=duration)

            if await self.already_imported(record.vimeo_id):
                logger.info(
                    "Video already imported",
                    extra={"extra_data": {"filename": name, "vimeo_id": record.vimeo_id}},
                )
                if options.move_processed:
                    self._move_to_processed(path, options)
                return ImportOutcome(
                    SKIPPED,
                    name,
                    reason="already imported",
                    vimeo_id=record.vimeo_id,
                    metadata_source=source,
                    unmatched=unmatched,
                )

            mime_type = mimetypes.guess_type(name)[0] or DEFAULT_MIME_TYPE
            key = f"videos/{owner_id}/{sanitize_filename(name) or 'video'}"
            size = path.stat().st_size
            await asyncio.to_thread(self.storage.upload_file, path=str(path), key=key, content_type=mime_type)

            metadata = VideoMetadata(
                vimeo_id=record.vimeo_id,
                imported_from="local",
                import_date=datetime.now(timezone.utc),
                original_path=str(path),
                original_quality=record.quality,
                created_at_vimeo=record.created_at_vimeo,
                modified_at_vimeo=record.modified_at_vimeo,
            )
            row = self._new_video(
                owner_id=owner_id,
                record=record,
                original_filename=name,
                key=key,
                size=size,
                mime_type=mime_type,
                metadata=metadata,
            )
            created = await self._persist(row)
            if options.move_processed:
                self._move_to_processed(path, options)
        except (VidVaultError, OSError) as e:
            logger.error("Failed to import local video", extra={"extra_data": {"filename": name, "error": str(e)}})
            return ImportOutcome(FAILED, name, reason=str(e), retryable=True)

        if created is None:
            return ImportOutcome(
                SKIPPED, name, reason="already imported", vimeo_id=record.vimeo_id, metadata_source=source
            )
        logger.info(
            "Imported local video",
            extra={"extra_data": {"filename": name, "key": key, "vimeo_id": record.vimeo_id}},
        )
        return ImportOutcome(
            IMPORTED,
            name,
            video_id=created.id,
            vimeo_id=record.vimeo_id,
            metadata_source=source,
            unmatched=unmatched,
        )

    # Batches

    async def _run_bounded(
        self, items: Sequence[Any], worker: Callable[[Any], Awaitable[ImportOutcome]], parallel: int | None
    ) -> ImportReport:
        sem = asyncio.Semaphore(max(1, int(parallel or self.settings.import_parallel)))

        async def _one(item: Any) -> ImportOutcome:
            async with sem:
                try:
                    return await worker(item)
                except Exception as e:
                    # Per-item failures never abort the batch.
                    logger.exception("Unexpected import failure")
                    return ImportOutcome(FAILED, _item_name(item), reason=str(e))

        report = ImportReport()
        for outcome in await asyncio.gather(*(_one(i) for i in items)):
            report.add(outcome)
        return report

    async def run_remote(
        self,
        videos: Sequence[RemoteVideo],
        owner_id: int,
        *,
        resume: bool = True,
        parallel: int | None = None,
    ) -> ImportReport:
        return await self._run_bounded(
            videos, lambda v: self.import_remote(v, owner_id, resume=resume), parallel
        )

    async def run_local(
        self,
        paths: Sequence[Path],
        owner_id: int,
        options: LocalImportOptions | None = None,
        *,
        parallel: int | None = None,
    ) -> ImportReport:
        return await self._run_bounded(paths, lambda p: self.import_local(p, owner_id, options), parallel)

    # Dry runs

    async def plan_remote(self, videos: Iterable[RemoteVideo]) -> list[PlanRow]:
        rows: list[PlanRow] = []
        for v in videos:
            best = v.best_download()
            rows.append(
                PlanRow(
                    name=v.name,
                    size=best.size if best else 0,
                    vimeo_id=v.vimeo_id,
                    already_imported=await self.already_imported(v.vimeo_id),
                )
            )
        return rows

    async def plan_local(self, paths: Iterable[Path], options: LocalImportOptions | None = None) -> list[PlanRow]:
        options = options or LocalImportOptions()
        rows: list[PlanRow] = []
        for p in paths:
            record, _ = self.resolve_local_metadata(p, options)
            rows.append(
                PlanRow(
                    name=p.name,
                    size=p.stat().st_size,
                    vimeo_id=record.vimeo_id,
                    already_imported=await self.already_imported(record.vimeo_id),
                )
            )
        return rows

    # Queued tasks

    def _descriptor(
        self, name: str, payload: dict[str, Any], *, priority: int, delay_seconds: float, queue: str
    ) -> TaskDescriptor:
        return TaskDescriptor(
            name=name,
            payload=payload,
            tries=self.settings.task_tries,
            timeout_seconds=self.settings.task_timeout_seconds,
            max_exceptions=self.settings.task_max_exceptions,
            delay_seconds=delay_seconds,
            priority=priority,
            queue=queue,
        )

    def remote_descriptor(
        self,
        video: RemoteVideo,
        owner_id: int,
        *,
        resume: bool = True,
        priority: int = 0,
        delay_seconds: float = 0,
        queue: str = "default",
    ) -> TaskDescriptor:
        # The worker refetches the video: Vimeo download links expire.
        return self._descriptor(
            f"import-vimeo:{video.vimeo_id}",
            {"vimeo_id": video.vimeo_id, "user_id": owner_id, "resume": resume},
            priority=priority,
            delay_seconds=delay_seconds,
            queue=queue,
        )

    def local_descriptor(
        self,
        path: Path,
        owner_id: int,
        *,
        with_metadata: bool = False,
        move_processed: bool = False,
        match_metadata: bool = False,
        priority: int = 0,
        delay_seconds: float = 0,
        queue: str = "default",
    ) -> TaskDescriptor:
        return self._descriptor(
            f"import-local:{path.name}",
            {
                "path": str(path),
                "user_id": owner_id,
                "with_metadata": with_metadata,
                "move_processed": move_processed,
                "match_metadata": match_metadata,
            },
            priority=priority,
            delay_seconds=delay_seconds,
            queue=queue,
        )

    async def import_remote_or_raise(
        self, video: RemoteVideo, owner_id: int, *, resume: bool = True
    ) -> ImportOutcome:
        """`import_remote` for queued tasks: transient failures raise `RetryableTaskError`."""
        return _raise_if_retryable(await self.import_remote(video, owner_id, resume=resume))

    async def import_local_or_raise(
        self, path: str | Path, owner_id: int, options: LocalImportOptions | None = None
    ) -> ImportOutcome:
        return _raise_if_retryable(await self.import_local(path, owner_id, options))


def pipeline_from_settings(settings: Settings) -> ImportPipeline:
    return ImportPipeline(
        storage=storage_from_settings(settings),
        repository_factory=repository_scope,
        downloader=DownloadResumeEngine(temp_dir=settings.import_temp_dir, chunk_size=settings.download_chunk_size),
        settings=settings,
    )


def _raise_if_retryable(outcome: ImportOutcome) -> ImportOutcome:
    if outcome.status == FAILED and outcome.retryable:
        raise RetryableTaskError(outcome.reason or "import failed", metadata={"item": outcome.name})
    return outcome


def _item_name(item: Any) -> str:
    if isinstance(item, RemoteVideo):
        return item.name
    if isinstance(item, Path):
        return item.name
    return str(item)

