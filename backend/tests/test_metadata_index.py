from __future__ import annotations

import json
from pathlib import Path

from vidvault.importer.index import MetadataIndex
from vidvault.importer.records import MetadataRecord


def test_record_resolves_under_both_keys() -> None:
    rec = MetadataRecord(title="My_Great_Talk", vimeo_id="123456789")
    index = MetadataIndex.build([rec])

    assert index.lookup("my_great_talk") is rec
    assert index.lookup("my great talk") is rec
    assert index.lookup("MY GREAT TALK") is rec
    assert "My Great Talk" in index
    assert len(index) == 2


def test_later_records_win_on_collision() -> None:
    first = MetadataRecord(title="Intro", vimeo_id="1111111")
    second = MetadataRecord(title="intro", vimeo_id="2222222")
    index = MetadataIndex.build([first, second])

    assert index.lookup("intro") is second
    assert index.keys() == ["intro"]


def test_from_directory_skips_bad_files(tmp_path: Path) -> None:
    (tmp_path / "Good_1234567.json").write_text(
        json.dumps({"title": "Good", "vimeo_id": 1234567, "duration": 90.4}), encoding="utf-8"
    )
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "untitled.json").write_text(json.dumps({"vimeo_id": "7654321"}), encoding="utf-8")

    index = MetadataIndex.from_directory(tmp_path)

    rec = index.lookup("good")
    assert rec is not None
    assert rec.vimeo_id == "1234567"
    assert rec.duration == 90
    assert rec.stem == "Good_1234567"
    assert index.keys() == ["good"]


def test_from_missing_directory_is_empty(tmp_path: Path) -> None:
    assert len(MetadataIndex.from_directory(tmp_path / "nope")) == 0
