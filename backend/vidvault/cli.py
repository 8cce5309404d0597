from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Sequence

from vidvault.core.errors import VidVaultError
from vidvault.core.logging import configure_logging
from vidvault.core.settings import Settings, get_settings
from vidvault.db.session import dispose_engine
from vidvault.importer.filenames import format_bytes
from vidvault.importer.index import MetadataIndex
from vidvault.importer.matcher import FilenameMatcher
from vidvault.importer.pipeline import (
    ImportPipeline,
    ImportReport,
    LocalImportOptions,
    PlanRow,
    pipeline_from_settings,
)
from vidvault.importer.records import RemoteVideo
from vidvault.importer.sidecars import generate_sidecars
from vidvault.importer.tasks import enqueue
from vidvault.importer.vimeo import VimeoClient, extract_metadata
from vidvault.storage.s3 import CORS_MAX_AGE_SECONDS, storage_from_settings
from vidvault.worker.tasks import import_local_video, import_vimeo_video

logger = logging.getLogger(__name__)


def _print_report(report: ImportReport) -> None:
    print("")
    print("Import completed")
    print(f"  Imported: {report.imported}")
    print(f"  Skipped:  {report.skipped}")
    print(f"  Failed:   {report.failed}")
    for name in report.failed_items:
        print(f"    failed: {name}")
    if report.unmatched_items:
        print(f"  Unmatched: {len(report.unmatched_items)}")
        for name in report.unmatched_items:
            print(f"    unmatched: {name}")


def _print_plan(rows: Sequence[PlanRow]) -> None:
    print("DRY RUN - videos to be imported:")
    total = 0
    for i, row in enumerate(rows, start=1):
        total += row.size
        state = "imported" if row.already_imported else "pending"
        print(f"{i:>4}  {row.name}  {row.formatted_size}  {row.vimeo_id or 'N/A'}  {state}")
    print(f"Total: {len(rows)} videos, {format_bytes(total)}")


async def _fetch_remote(settings: Settings, limit: int | None) -> list[RemoteVideo] | None:
    if not settings.vimeo_access_token:
        print("Vimeo access token not configured. Set VIMEO_ACCESS_TOKEN.")
        return None
    async with VimeoClient.from_settings(settings) as client:
        print("Fetching videos from Vimeo...")
        videos = await client.get_all_videos(limit=limit)
    print(f"Found {len(videos)} videos")
    return videos


async def cmd_import_vimeo(args: argparse.Namespace, settings: Settings) -> int:
    videos = await _fetch_remote(settings, args.limit)
    if videos is None:
        return 1
    pipeline = pipeline_from_settings(settings)
    if args.dry_run:
        _print_plan(await pipeline.plan_remote(videos))
        return 0
    report = await pipeline.run_remote(
        videos, args.user_id or settings.import_user_id, resume=not args.no_resume, parallel=args.parallel
    )
    _print_report(report)
    return 0


async def cmd_import_vimeo_queue(args: argparse.Namespace, settings: Settings) -> int:
    videos = await _fetch_remote(settings, args.limit)
    if videos is None:
        return 1
    pipeline = pipeline_from_settings(settings)
    owner_id = args.user_id or settings.import_user_id
    queued = skipped = 0
    for video in videos:
        if await pipeline.already_imported(video.vimeo_id):
            skipped += 1
            continue
        descriptor = pipeline.remote_descriptor(
            video,
            owner_id,
            resume=not args.no_resume,
            priority=args.priority,
            delay_seconds=args.delay,
            queue=args.queue,
        )
        enqueue(import_vimeo_video, descriptor)
        queued += 1
    print(f"Queued: {queued}  Skipped (already imported): {skipped}")
    print(f"Queue: {args.queue}. Start a worker with: celery -A vidvault.worker.celery_app worker -Q {args.queue}")
    return 0


def _local_options(args: argparse.Namespace, settings: Settings, import_dir: Path) -> LocalImportOptions:
    options = LocalImportOptions.for_directory(
        import_dir,
        with_metadata=args.with_metadata,
        move_processed=args.move_processed,
        match_metadata=args.match_metadata,
        threshold=settings.match_threshold,
    )
    if options.matcher is not None:
        print(f"Loaded {len(options.matcher.index)} metadata keys from {options.metadata_dir}")
    return options


def _discover(args: argparse.Namespace, settings: Settings, pipeline: ImportPipeline) -> tuple[Path, list[Path]]:
    import_dir = Path(args.path or settings.import_dir)
    for d in (import_dir, import_dir.parent / "processed", import_dir.parent / "metadata"):
        d.mkdir(parents=True, exist_ok=True)
    files = pipeline.discover_local(import_dir, args.pattern)
    if args.limit:
        files = files[: args.limit]
    return import_dir, files


async def cmd_import_local(args: argparse.Namespace, settings: Settings) -> int:
    pipeline = pipeline_from_settings(settings)
    import_dir, files = _discover(args, settings, pipeline)
    if not files:
        print(f"No video files found in {import_dir}")
        return 0
    print(f"Found {len(files)} video files")
    options = _local_options(args, settings, import_dir)
    if args.dry_run:
        _print_plan(await pipeline.plan_local(files, options))
        return 0
    report = await pipeline.run_local(
        files, args.user_id or settings.import_user_id, options, parallel=args.parallel
    )
    _print_report(report)
    return 0


async def cmd_import_local_queue(args: argparse.Namespace, settings: Settings) -> int:
    pipeline = pipeline_from_settings(settings)
    import_dir, files = _discover(args, settings, pipeline)
    if not files:
        print(f"No video files found in {import_dir}")
        return 0
    if args.dry_run:
        _print_plan(await pipeline.plan_local(files, _local_options(args, settings, import_dir)))
        return 0
    owner_id = args.user_id or settings.import_user_id
    for path in files:
        descriptor = pipeline.local_descriptor(
            path.resolve(),
            owner_id,
            with_metadata=args.with_metadata,
            move_processed=args.move_processed,
            match_metadata=args.match_metadata,
            priority=args.priority,
            delay_seconds=args.delay,
            queue=args.queue,
        )
        enqueue(import_local_video, descriptor)
    print(f"Queued: {len(files)}")
    print(f"Queue: {args.queue}. Start a worker with: celery -A vidvault.worker.celery_app worker -Q {args.queue}")
    return 0


async def cmd_generate_metadata(args: argparse.Namespace, settings: Settings) -> int:
    if not settings.vimeo_access_token:
        print("Vimeo access token not configured. Set VIMEO_ACCESS_TOKEN.")
        return 1
    if not args.all and not args.id:
        print("Use --all to fetch all videos or --id VIDEO_ID for specific videos")
        return 0

    videos: list[RemoteVideo] = []
    async with VimeoClient.from_settings(settings) as client:
        if args.all:
            videos = await client.get_all_videos(limit=args.limit)
        else:
            for vimeo_id in args.id:
                try:
                    videos.append(await client.get_video(vimeo_id))
                except VidVaultError as e:
                    print(f"Failed to fetch video {vimeo_id}: {e.message}")

    if not videos:
        print("No videos to process")
        return 0

    output = Path(args.output or settings.metadata_dir)
    result = generate_sidecars((extract_metadata(v) for v in videos), output)
    for path in result.generated:
        print(f"  generated: {path.name}")
    print(f"Generated: {len(result.generated)} files")
    print(f"Skipped:   {len(result.skipped)} files (already exist)")
    print(f"Output directory: {output}")
    return 0


async def cmd_match_files(args: argparse.Namespace, settings: Settings) -> int:
    import_dir = Path(args.path or settings.import_dir)
    metadata_dir = Path(args.metadata or (import_dir.parent / "metadata"))
    index = MetadataIndex.from_directory(metadata_dir)
    matcher = FilenameMatcher(index, threshold=settings.match_threshold)

    files = sorted(p for p in import_dir.glob(args.pattern or settings.import_pattern) if p.is_file())
    matched = 0
    unmatched: list[str] = []
    for path in files:
        result = matcher.match(path.name)
        if result is None:
            unmatched.append(path.name)
            print(f"  {path.name} -> no match")
            continue
        matched += 1
        print(
            f"  {path.name} -> {result.record.title} "
            f"[{result.strategy}, {result.score:.1f}%, id={result.record.vimeo_id or 'N/A'}]"
        )
    print(f"Matched: {matched}  Unmatched: {len(unmatched)}")
    return 0


async def cmd_configure_cors(args: argparse.Namespace, settings: Settings) -> int:
    origins = list(args.origin) or [*settings.cors_origins, settings.public_base_url]
    storage = storage_from_settings(settings)
    print(f"Configuring CORS for bucket: {storage.bucket} in region: {storage.region}")
    rule = await asyncio.to_thread(storage.put_bucket_cors, origins=origins, max_age_seconds=args.max_age)
    print("CORS configuration applied")
    print("Allowed origins:")
    for origin in rule["AllowedOrigins"]:
        print(f"  - {origin}")
    return 0


def _add_queue_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--queue", default="default")
    p.add_argument("--priority", type=int, default=0)
    p.add_argument("--delay", type=float, default=0.0, help="Seconds to wait before each task starts")


def _add_local_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--path", default=None, help="Directory containing video files")
    p.add_argument("--pattern", default=None, help="Glob pattern (default: *.mp4)")
    p.add_argument("--with-metadata", action="store_true", help="Use JSON sidecars from the metadata directory")
    p.add_argument("--move-processed", action="store_true", help="Move imported files to the processed directory")
    p.add_argument("--match-metadata", action="store_true", help="Fuzzy-match filenames against sidecar titles")
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--user-id", type=int, default=None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vidvault", description="VidVault import tooling.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import-vimeo", help="Download videos from Vimeo and import them")
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--parallel", type=int, default=None)
    p.add_argument("--no-resume", action="store_true")
    p.add_argument("--dry-run", action="store_true")
    p.add_argument("--user-id", type=int, default=None)
    p.set_defaults(handler=cmd_import_vimeo)

    p = sub.add_parser("import-vimeo-queue", help="Import Vimeo videos as retryable tasks")
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--no-resume", action="store_true")
    p.add_argument("--user-id", type=int, default=None)
    _add_queue_options(p)
    p.set_defaults(handler=cmd_import_vimeo_queue)

    p = sub.add_parser("import-local", help="Import video files from a local directory")
    _add_local_options(p)
    p.add_argument("--parallel", type=int, default=None)
    p.set_defaults(handler=cmd_import_local)

    p = sub.add_parser("import-local-queue", help="Import local video files as retryable tasks")
    _add_local_options(p)
    _add_queue_options(p)
    p.set_defaults(handler=cmd_import_local_queue)

    p = sub.add_parser("generate-metadata", help="Write JSON sidecar files from Vimeo metadata")
    p.add_argument("--all", action="store_true")
    p.add_argument("--id", action="append", default=[])
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--output", default=None)
    p.set_defaults(handler=cmd_generate_metadata)

    p = sub.add_parser("match-files", help="Show how local files match sidecar metadata")
    p.add_argument("--path", default=None)
    p.add_argument("--metadata", default=None)
    p.add_argument("--pattern", default=None)
    p.set_defaults(handler=cmd_match_files)

    p = sub.add_parser("configure-cors", help="Apply the browser upload CORS rule to the storage bucket")
    p.add_argument("--origin", action="append", default=[], help="Allowed origin (default: CORS_ORIGINS + PUBLIC_BASE_URL)")
    p.add_argument("--max-age", type=int, default=CORS_MAX_AGE_SECONDS)
    p.set_defaults(handler=cmd_configure_cors)

    return parser


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    try:
        return await args.handler(args, settings)
    finally:
        await dispose_engine()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    try:
        return asyncio.run(_run(args, settings))
    except VidVaultError as e:
        logger.error("Command failed: %s", e.message)
        print(f"Error: {e.message}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
