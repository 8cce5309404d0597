from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest
from celery.exceptions import SoftTimeLimitExceeded

from vidvault.core.errors import RetryableTaskError, ValidationError
from vidvault.importer.pipeline import IMPORTED, ImportOutcome
from vidvault.importer.tasks import TaskDescriptor, TaskExhaustedError, check_attempt_cap, enqueue
from vidvault.worker.tasks import import_local_video, import_vimeo_video, run_attempt


def _task(retries: int = 0):
    return SimpleNamespace(name="vidvault.test", request=SimpleNamespace(retries=retries))


class _FakeTask:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    def apply_async(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(id="task-1")


def test_descriptor_maps_onto_celery_options() -> None:
    d = TaskDescriptor(
        "import-vimeo:1",
        payload={"vimeo_id": "1", "user_id": 3},
        tries=4,
        timeout_seconds=600,
        max_exceptions=2,
        delay_seconds=15,
        priority=7,
        queue="bulk",
    )

    assert d.apply_options() == {
        "queue": "bulk",
        "priority": 7,
        "soft_time_limit": 600,
        "time_limit": 630,
        "countdown": 15,
    }
    assert d.task_kwargs() == {"vimeo_id": "1", "user_id": 3, "tries": 4, "max_exceptions": 2}
    assert d.attempt_cap == 2


def test_no_countdown_without_delay() -> None:
    assert "countdown" not in TaskDescriptor("job").apply_options()


def test_enqueue_calls_apply_async() -> None:
    task = _FakeTask()
    d = TaskDescriptor("job", payload={"path": "/videos/a.mp4"}, queue="imports", priority=3)

    assert enqueue(task, d) == "task-1"
    [call] = task.calls
    assert call["kwargs"]["path"] == "/videos/a.mp4"
    assert call["queue"] == "imports"
    assert call["priority"] == 3


@pytest.mark.parametrize(
    "retries, tries, max_exceptions, exhausted",
    [
        (0, 3, 2, False),
        (1, 3, 2, True),
        (1, 5, 5, False),
        (2, 3, 5, True),
        (0, 1, 3, True),
    ],
)
def test_attempt_cap(retries, tries, max_exceptions, exhausted) -> None:
    exc = RetryableTaskError("download failed")
    if exhausted:
        with pytest.raises(TaskExhaustedError) as info:
            check_attempt_cap(retries=retries, tries=tries, max_exceptions=max_exceptions, exc=exc)
        assert info.value.metadata["attempts"] == retries + 1
        assert info.value.__cause__ is exc
    else:
        check_attempt_cap(retries=retries, tries=tries, max_exceptions=max_exceptions, exc=exc)


def test_run_attempt_returns_outcome_dict() -> None:
    async def _ok() -> ImportOutcome:
        return ImportOutcome(IMPORTED, "clip.mp4", video_id=9)

    out = run_attempt(_task(), _ok, tries=3, max_exceptions=2)

    assert out["status"] == IMPORTED
    assert out["video_id"] == 9


def test_run_attempt_reraises_transient_failure_for_retry() -> None:
    async def _flaky() -> ImportOutcome:
        raise RetryableTaskError("storage unavailable")

    with pytest.raises(RetryableTaskError):
        run_attempt(_task(retries=0), _flaky, tries=3, max_exceptions=2)
    with pytest.raises(TaskExhaustedError):
        run_attempt(_task(retries=1), _flaky, tries=3, max_exceptions=2)


def test_timeout_counts_towards_cap() -> None:
    async def _slow() -> ImportOutcome:
        raise SoftTimeLimitExceeded()

    with pytest.raises(TaskExhaustedError) as info:
        run_attempt(_task(retries=0), _slow, tries=3, max_exceptions=1)
    assert info.value.metadata["error"].startswith("SoftTimeLimitExceeded")


def test_other_errors_are_not_retried() -> None:
    async def _bad() -> ImportOutcome:
        raise ValidationError("bad input")

    with pytest.raises(ValidationError):
        run_attempt(_task(retries=0), _bad, tries=3, max_exceptions=3)


def test_tasks_are_registered_with_autoretry() -> None:
    assert import_vimeo_video.name == "vidvault.import_vimeo_video"
    assert import_local_video.name == "vidvault.import_local_video"
    for task in (import_vimeo_video, import_local_video):
        assert RetryableTaskError in task.autoretry_for
        assert SoftTimeLimitExceeded in task.autoretry_for
        assert TaskExhaustedError not in task.autoretry_for


def test_failure_hook_logs_permanent_failure(caplog) -> None:
    caplog.set_level(logging.ERROR, logger="vidvault.importer.tasks")
    exc = TaskExhaustedError("Gave up after 2 attempt(s): storage unavailable")

    import_local_video.on_failure(
        exc, "task-42", (), {"path": "/videos/a.mp4", "user_id": 1, "tries": 3, "max_exceptions": 2}, None
    )

    [record] = [r for r in caplog.records if r.getMessage() == "Task failed permanently"]
    assert record.extra_data["task"] == "vidvault.import_local_video"
    assert record.extra_data["task_id"] == "task-42"
    assert record.extra_data["payload"] == {"path": "/videos/a.mp4", "user_id": 1}
    assert record.extra_data["attempts"] == 1
