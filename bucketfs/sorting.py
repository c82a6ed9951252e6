from __future__ import annotations

import locale
from datetime import timezone
from typing import Iterable

from .listing import FOLDER_TIMESTAMP, Entry

SORT_NAME = "name"
SORT_SIZE = "size"
SORT_DATE = "date"
SORT_FIELDS = (SORT_NAME, SORT_SIZE, SORT_DATE)

ORDER_ASC = "asc"
ORDER_DESC = "desc"
SORT_ORDERS = (ORDER_ASC, ORDER_DESC)


def _name_key(entry: Entry):
    # strxfrm follows LC_COLLATE once the application has called setlocale.
    return (locale.strxfrm(entry.key.casefold()), entry.key)


def _size_key(entry: Entry) -> int:
    return entry.size or 0


def _date_key(entry: Entry):
    value = entry.last_modified or FOLDER_TIMESTAMP
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


_SORT_KEYS = {
    SORT_NAME: _name_key,
    SORT_SIZE: _size_key,
    SORT_DATE: _date_key,
}


def sort_entries(
    entries: Iterable[Entry], field: str, order: str = ORDER_ASC
) -> list[Entry]:
    """Order ``entries`` by ``field`` with every folder ahead of every file.

    ``order`` only affects the ordering inside the folder and file groups.
    """
    key = _SORT_KEYS.get(field)
    if key is None:
        raise ValueError(f"unknown sort field: {field!r}")
    if order not in SORT_ORDERS:
        raise ValueError(f"unknown sort order: {order!r}")
    ordered = sorted(entries, key=key, reverse=order == ORDER_DESC)
    folders = [entry for entry in ordered if entry.is_folder]
    files = [entry for entry in ordered if not entry.is_folder]
    return folders + files
