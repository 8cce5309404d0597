from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from vidvault.importer.filenames import build_import_stem
from vidvault.importer.records import MetadataRecord

logger = logging.getLogger(__name__)

MAX_SIDECAR_TITLE_LENGTH = 50


@dataclass
class SidecarReport:
    generated: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)


def sidecar_filename(record: MetadataRecord) -> str:
    # Dots are dropped too so the stem never looks like it carries an extension.
    stem = build_import_stem(
        record.title.replace(".", "_"), record.vimeo_id or "unknown", max_title_length=MAX_SIDECAR_TITLE_LENGTH
    )
    return f"{stem}.json"


def generate_sidecars(records: Iterable[MetadataRecord], output_dir: str | Path) -> SidecarReport:
    """Write one ``<title>_<id>.json`` per record; existing files are left alone."""
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    report = SidecarReport()
    for record in records:
        path = out / sidecar_filename(record)
        if path.exists():
            report.skipped.append(path)
            continue
        path.write_text(json.dumps(record.to_sidecar(), indent=4, ensure_ascii=False), encoding="utf-8")
        report.generated.append(path)
        logger.info(
            "Generated metadata file",
            extra={"extra_data": {"file": str(path), "vimeo_id": record.vimeo_id, "title": record.title}},
        )
    return report
