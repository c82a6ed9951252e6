from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from .s3 import ListResult

PLACEHOLDER_NAME = ".vortex_placeholder"
DELIMITER = "/"

ENTRY_FILE = "file"
ENTRY_FOLDER = "folder"

# Folders carry no timestamp of their own.
FOLDER_TIMESTAMP = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass(frozen=True)
class Entry:
    key: str
    type: str = ENTRY_FILE
    size: Optional[int] = None
    last_modified: Optional[datetime] = None

    @property
    def is_folder(self) -> bool:
        return self.type == ENTRY_FOLDER


def normalize_path(value: str) -> str:
    trimmed = (value or "").strip().strip(DELIMITER)
    if not trimmed:
        return ""
    return f"{trimmed}{DELIMITER}"


def parent_path(path: str) -> str:
    trimmed = path.rstrip(DELIMITER)
    if DELIMITER not in trimmed:
        return ""
    return trimmed.rsplit(DELIMITER, 1)[0] + DELIMITER


def folder_prefix(base_path: str, key: str) -> str:
    return f"{base_path}{key}{DELIMITER}"


def build_entries(path: str, listing: ListResult) -> list[Entry]:
    entries: list[Entry] = []
    for prefix in listing.prefixes:
        name = prefix[len(path) :].rstrip(DELIMITER)
        if not name:
            continue
        entries.append(
            Entry(key=name, type=ENTRY_FOLDER, last_modified=FOLDER_TIMESTAMP)
        )
    for info in listing.objects:
        name = info.key[len(path) :]
        if not name or name == PLACEHOLDER_NAME:
            continue
        entries.append(
            Entry(
                key=name,
                type=ENTRY_FILE,
                size=info.size,
                last_modified=info.last_modified,
            )
        )
    return entries


class ListingCache:
    """Last known listing per path.

    A cached listing is only a hint: it is correct until the next mutation
    under that path, and callers invalidate explicitly when they mutate.
    """

    def __init__(self) -> None:
        self._listings: dict[str, list[Entry]] = {}

    def get(self, path: str) -> Optional[list[Entry]]:
        entries = self._listings.get(path)
        if entries is None:
            return None
        return list(entries)

    def store(self, path: str, entries: Iterable[Entry]) -> None:
        self._listings[path] = list(entries)

    def invalidate(self, path: str) -> None:
        self._listings.pop(path, None)

    def invalidate_tree(self, prefix: str) -> None:
        for path in [path for path in self._listings if path.startswith(prefix)]:
            del self._listings[path]

    def clear(self) -> None:
        self._listings.clear()

    def __contains__(self, path: object) -> bool:
        return path in self._listings

    def __len__(self) -> int:
        return len(self._listings)
