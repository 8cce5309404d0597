from __future__ import annotations

import pytest

from vidvault.importer.filenames import (
    build_import_filename,
    format_bytes,
    format_duration,
    parse_import_filename,
    sanitize_filename,
    split_extension,
    strip_quality_suffix,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("My Talk: Part 1.mp4", "My_Talk_Part_1.mp4"),
        ("  spaces  everywhere ", "spaces_everywhere"),
        ("__already_safe__", "already_safe"),
        ("é accent.mov", "accent.mov"),
    ],
)
def test_sanitize_filename(raw: str, expected: str) -> None:
    assert sanitize_filename(raw) == expected


def test_sanitize_filename_is_idempotent() -> None:
    once = sanitize_filename("Weird / name ?? (1080p).mp4")
    assert sanitize_filename(once) == once
    assert "__" not in once


def test_parse_import_filename() -> None:
    assert parse_import_filename("My_Great_Talk_123456789.mp4") == ("My Great Talk", "123456789")
    assert parse_import_filename("/some/dir/Intro_1234567.MOV") == ("Intro", "1234567")
    # Too short / too long ids and missing extensions don't match.
    assert parse_import_filename("Intro_123456.mp4") is None
    assert parse_import_filename("Intro_1234567890123.mp4") is None
    assert parse_import_filename("Intro_123456789") is None


def test_build_import_filename_round_trips_through_parser() -> None:
    name = build_import_filename("Keynote: Day 2", "987654321")
    assert name == "Keynote_Day_2_987654321.mp4"
    assert parse_import_filename(name) == ("Keynote Day 2", "987654321")


def test_build_import_filename_caps_title() -> None:
    name = build_import_filename("x" * 80, "1234567", max_title_length=50)
    assert name == ("x" * 50) + "_1234567.mp4"


def test_split_extension_ignores_numeric_suffixes() -> None:
    assert split_extension("clip.MP4") == ("clip", "mp4")
    assert split_extension("release v1.2") == ("release v1.2", "")
    assert split_extension("noext") == ("noext", "")


def test_strip_quality_suffix() -> None:
    assert strip_quality_suffix("My Talk (1080p)") == "My Talk"
    assert strip_quality_suffix("My Talk (720P)  ") == "My Talk"
    assert strip_quality_suffix("My (1080p) Talk") == "My (1080p) Talk"


def test_format_bytes() -> None:
    assert format_bytes(0) == "0 B"
    assert format_bytes(512) == "512 B"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(10 * 1024**3) == "10 GB"


def test_format_duration() -> None:
    assert format_duration(None) is None
    assert format_duration(0) is None
    assert format_duration(65) == "01:05"
    assert format_duration(3725) == "01:02:05"
