from __future__ import annotations

import json
from pathlib import Path

import pytest

import vidvault.cli as cli
from vidvault.core.settings import get_settings
from vidvault.db.models.video import Video
from vidvault.importer.pipeline import ImportPipeline
from vidvault.importer.records import RemoteVideo


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class _StubVimeo:
    videos = [
        RemoteVideo.from_api({"uri": "/videos/1234567", "name": "All Hands", "duration": 300}),
        RemoteVideo.from_api({"uri": "/videos/7654321", "name": "Demo Day"}),
    ]

    @classmethod
    def from_settings(cls, settings):
        return cls()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def get_all_videos(self, *, limit=None):
        return self.videos[:limit] if limit else list(self.videos)


def test_match_files_reports_each_file(tmp_path: Path, capsys) -> None:
    import_dir = tmp_path / "import" / "videos"
    metadata_dir = tmp_path / "import" / "metadata"
    import_dir.mkdir(parents=True)
    metadata_dir.mkdir(parents=True)
    (metadata_dir / "All_Hands_1234567.json").write_text(
        json.dumps({"title": "All Hands", "vimeo_id": "1234567"}), encoding="utf-8"
    )
    (import_dir / "All Hands (720p).mp4").write_bytes(b"x")
    (import_dir / "unrelated.mp4").write_bytes(b"x")

    code = cli.main(["match-files", "--path", str(import_dir)])

    out = capsys.readouterr().out
    assert code == 0
    assert "All Hands (720p).mp4 -> All Hands [quality_stripped, 100.0%, id=1234567]" in out
    assert "unrelated.mp4 -> no match" in out
    assert "Matched: 1  Unmatched: 1" in out


def test_generate_metadata_writes_sidecars(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("VIMEO_ACCESS_TOKEN", "tok")
    monkeypatch.setattr(cli, "VimeoClient", _StubVimeo)
    output = tmp_path / "metadata"

    code = cli.main(["generate-metadata", "--all", "--output", str(output)])

    assert code == 0
    assert sorted(p.name for p in output.iterdir()) == ["All_Hands_1234567.json", "Demo_Day_7654321.json"]
    assert "Generated: 2 files" in capsys.readouterr().out


def test_import_without_token_exits_nonzero(monkeypatch, capsys) -> None:
    monkeypatch.delenv("VIMEO_ACCESS_TOKEN", raising=False)
    monkeypatch.setattr(cli, "get_settings", lambda: get_settings().model_copy(update={"vimeo_access_token": None}))

    assert cli.main(["import-vimeo", "--dry-run"]) == 1
    assert "VIMEO_ACCESS_TOKEN" in capsys.readouterr().out


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


@pytest.fixture
def queued(monkeypatch, storage, repository_factory):
    sent: list = []

    def _pipeline(settings):
        return ImportPipeline(storage=storage, repository_factory=repository_factory, downloader=None, settings=settings)

    monkeypatch.setattr(cli, "pipeline_from_settings", _pipeline)
    monkeypatch.setattr(cli, "enqueue", lambda task, descriptor: sent.append((task, descriptor)) or "task-id")
    return sent


def test_vimeo_queue_enqueues_only_new_videos(monkeypatch, queued, repo, capsys) -> None:
    monkeypatch.setenv("VIMEO_ACCESS_TOKEN", "tok")
    monkeypatch.setattr(cli, "VimeoClient", _StubVimeo)
    repo.rows[1] = Video(id=1, user_id=1, metadata_={"vimeo_id": "1234567"})

    code = cli.main(["import-vimeo-queue", "--queue", "bulk", "--priority", "5", "--user-id", "3"])

    assert code == 0
    [(task, descriptor)] = queued
    assert task is cli.import_vimeo_video
    assert descriptor.payload == {"vimeo_id": "7654321", "user_id": 3, "resume": True}
    assert descriptor.apply_options()["queue"] == "bulk"
    assert descriptor.apply_options()["priority"] == 5
    assert "Queued: 1  Skipped (already imported): 1" in capsys.readouterr().out


def test_local_queue_enqueues_each_file(tmp_path: Path, queued, capsys) -> None:
    import_dir = tmp_path / "import" / "videos"
    import_dir.mkdir(parents=True)
    for name in ("b.mp4", "a.mp4", "notes.txt"):
        (import_dir / name).write_bytes(b"x")

    code = cli.main(["import-local-queue", "--path", str(import_dir), "--with-metadata", "--delay", "5"])

    assert code == 0
    assert [t for t, _ in queued] == [cli.import_local_video, cli.import_local_video]
    assert [Path(d.payload["path"]).name for _, d in queued] == ["a.mp4", "b.mp4"]
    assert all(d.payload["with_metadata"] is True for _, d in queued)
    assert all(d.apply_options()["countdown"] == 5 for _, d in queued)
    assert "Queued: 2" in capsys.readouterr().out


def test_configure_cors_uses_settings_origins(monkeypatch, storage, capsys) -> None:
    monkeypatch.setenv("CORS_ORIGINS", '["http://localhost:5173"]')
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://vids.example.com")
    monkeypatch.setattr(cli, "storage_from_settings", lambda settings: storage)

    code = cli.main(["configure-cors"])

    assert code == 0
    op, kwargs = storage.calls[-1]
    assert op == "put_bucket_cors"
    assert kwargs["origins"] == ["http://localhost:5173", "https://vids.example.com"]
    assert kwargs["max_age_seconds"] == 3000
    assert "  - https://vids.example.com" in capsys.readouterr().out


def test_configure_cors_explicit_origins(monkeypatch, storage) -> None:
    monkeypatch.setattr(cli, "storage_from_settings", lambda settings: storage)

    assert cli.main(["configure-cors", "--origin", "https://a.test", "--max-age", "60"]) == 0

    _, kwargs = storage.calls[-1]
    assert kwargs == {"origins": ["https://a.test"], "max_age_seconds": 60}
