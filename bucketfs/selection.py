from __future__ import annotations

from typing import Optional, Sequence

from .listing import Entry


def _index_of(entries: Sequence[Entry], key: Optional[str]) -> Optional[int]:
    if key is None:
        return None
    for index, entry in enumerate(entries):
        if entry.key == key:
            return index
    return None


class SelectionModel:
    """Anchor plus shift-extended range over the displayed listing.

    Only keys are stored. Membership is recomputed against whatever listing
    is passed in, so re-sorting the listing redefines the range until the
    next selection change.
    """

    def __init__(self) -> None:
        self.anchor_key: Optional[str] = None
        self.extent_key: Optional[str] = None

    def select_single(self, entry: Entry) -> None:
        self.anchor_key = entry.key
        self.extent_key = None

    def extend_range(self, entry: Entry, entries: Sequence[Entry]) -> bool:
        if self.anchor_key is None:
            self.select_single(entry)
            return True
        if _index_of(entries, self.anchor_key) is None:
            return False
        if _index_of(entries, entry.key) is None:
            return False
        self.extent_key = entry.key
        return True

    def clear(self) -> None:
        self.anchor_key = None
        self.extent_key = None

    @property
    def is_empty(self) -> bool:
        return self.anchor_key is None

    def anchor(self, entries: Sequence[Entry]) -> Optional[Entry]:
        index = _index_of(entries, self.anchor_key)
        if index is None:
            return None
        return entries[index]

    def range(self, entries: Sequence[Entry]) -> list[Entry]:
        start = _index_of(entries, self.anchor_key)
        end = _index_of(entries, self.extent_key)
        if start is None or end is None:
            return []
        if start > end:
            start, end = end, start
        return list(entries[start : end + 1])

    def selected(self, entries: Sequence[Entry]) -> list[Entry]:
        """Anchor and range, in listing order, without duplicates."""
        members = self.range(entries)
        if members:
            return members
        anchor = self.anchor(entries)
        return [anchor] if anchor is not None else []

    def is_selected(self, entry: Entry, entries: Sequence[Entry]) -> bool:
        return any(member.key == entry.key for member in self.selected(entries))
