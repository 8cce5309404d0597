from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Iterator

from vidvault.importer.records import MetadataRecord

logger = logging.getLogger(__name__)


class MetadataIndex:
    """Case-insensitive lookup of metadata records by normalized title.

    Each record is registered under two keys: the lowercased title and the
    lowercased title with underscores replaced by spaces. Colliding keys are
    overwritten by later records without error (last write wins).
    """

    def __init__(self) -> None:
        self._by_key: dict[str, MetadataRecord] = {}

    @classmethod
    def build(cls, records: Iterable[MetadataRecord]) -> "MetadataIndex":
        index = cls()
        for record in records:
            index.add(record)
        return index

    @classmethod
    def from_directory(cls, directory: str | Path) -> "MetadataIndex":
        """Build an index from every ``*.json`` sidecar file in ``directory``."""
        records: list[MetadataRecord] = []
        root = Path(directory)
        if not root.is_dir():
            return cls()
        for path in sorted(root.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable metadata file %s: %s", path.name, e)
                continue
            if not isinstance(data, dict) or not data.get("title"):
                logger.warning("Skipping metadata file without a title: %s", path.name)
                continue
            records.append(MetadataRecord.from_sidecar(data, stem=path.stem))
        return cls.build(records)

    def add(self, record: MetadataRecord) -> None:
        title = record.title or ""
        self._by_key[title.lower()] = record
        self._by_key[title.replace("_", " ").lower()] = record

    def lookup(self, key: str) -> MetadataRecord | None:
        return self._by_key.get((key or "").lower())

    def keys(self) -> list[str]:
        # Sorted so fuzzy scans (and their tie-breaks) are deterministic.
        return sorted(self._by_key)

    def items(self) -> Iterator[tuple[str, MetadataRecord]]:
        for key in self.keys():
            yield key, self._by_key[key]

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._by_key
