"""
Celery tasks for queued imports.

Workers run the async import pipeline with `asyncio.run`, one event loop per
attempt. Transient failures (`RetryableTaskError`, soft time limit) go through
``autoretry_for`` until the per-call attempt cap turns them into
`TaskExhaustedError`; any other error fails the task at once. Permanent
failures are logged by `ImportTask.on_failure`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Awaitable, Callable

from celery import Task

from vidvault.core.settings import get_settings
from vidvault.db.session import dispose_engine
from vidvault.importer.pipeline import ImportOutcome, LocalImportOptions, pipeline_from_settings
from vidvault.importer.tasks import RETRYABLE_ERRORS, check_attempt_cap, log_task_failure
from vidvault.importer.vimeo import VimeoClient
from vidvault.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


class ImportTask(Task):
    # Attempts are capped per call from the task kwargs (see check_attempt_cap).
    max_retries = None

    def on_failure(self, exc, task_id, args, kwargs, einfo) -> None:
        payload = {k: v for k, v in (kwargs or {}).items() if k not in ("tries", "max_exceptions")}
        log_task_failure(self.name, task_id, payload, self.request.retries + 1, exc)


def run_attempt(
    task: Task, factory: Callable[[], Awaitable[ImportOutcome]], *, tries: int, max_exceptions: int
) -> dict[str, Any]:
    async def _attempt() -> ImportOutcome:
        try:
            return await factory()
        finally:
            # asyncpg connections belong to this attempt's loop.
            await dispose_engine()

    try:
        outcome = asyncio.run(_attempt())
    except RETRYABLE_ERRORS as e:
        check_attempt_cap(retries=task.request.retries, tries=tries, max_exceptions=max_exceptions, exc=e)
        logger.warning(
            "Import attempt failed; retrying",
            extra={"extra_data": {"task": task.name, "attempt": task.request.retries + 1, "error": str(e)}},
        )
        raise
    return asdict(outcome)


async def _import_vimeo(vimeo_id: str, user_id: int, resume: bool) -> ImportOutcome:
    settings = get_settings()
    async with VimeoClient.from_settings(settings) as client:
        video = await client.get_video(vimeo_id)
    pipeline = pipeline_from_settings(settings)
    return await pipeline.import_remote_or_raise(video, user_id, resume=resume)


async def _import_local(
    path: str, user_id: int, with_metadata: bool, move_processed: bool, match_metadata: bool
) -> ImportOutcome:
    settings = get_settings()
    file_path = Path(path)
    options = LocalImportOptions.for_directory(
        file_path.parent,
        with_metadata=with_metadata,
        move_processed=move_processed,
        match_metadata=match_metadata,
        threshold=settings.match_threshold,
    )
    pipeline = pipeline_from_settings(settings)
    return await pipeline.import_local_or_raise(file_path, user_id, options)


@celery_app.task(
    bind=True,
    base=ImportTask,
    name="vidvault.import_vimeo_video",
    autoretry_for=RETRYABLE_ERRORS,
    retry_kwargs={"countdown": get_settings().task_retry_countdown_seconds},
)
def import_vimeo_video(
    self,
    vimeo_id: str,
    user_id: int,
    resume: bool = True,
    tries: int = 3,
    max_exceptions: int = 2,
) -> dict[str, Any]:
    return run_attempt(
        self,
        lambda: _import_vimeo(vimeo_id, user_id, resume),
        tries=tries,
        max_exceptions=max_exceptions,
    )


@celery_app.task(
    bind=True,
    base=ImportTask,
    name="vidvault.import_local_video",
    autoretry_for=RETRYABLE_ERRORS,
    retry_kwargs={"countdown": get_settings().task_retry_countdown_seconds},
)
def import_local_video(
    self,
    path: str,
    user_id: int,
    with_metadata: bool = False,
    move_processed: bool = False,
    match_metadata: bool = False,
    tries: int = 3,
    max_exceptions: int = 2,
) -> dict[str, Any]:
    return run_attempt(
        self,
        lambda: _import_local(path, user_id, with_metadata, move_processed, match_metadata),
        tries=tries,
        max_exceptions=max_exceptions,
    )
