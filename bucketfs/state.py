from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from .config import BrowserConfig
from .deletes import DEFAULT_DELETE_CONCURRENCY, DeleteOrchestrator, PendingDeletions
from .listing import (
    DELIMITER,
    PLACEHOLDER_NAME,
    Entry,
    ListingCache,
    build_entries,
    normalize_path,
    parent_path,
)
from .s3 import ObjectStore
from .selection import SelectionModel
from .sorting import ORDER_ASC, sort_entries
from .uploads import LocalFile, UploadOrchestrator, UploadRecord

logger = logging.getLogger(__name__)

Listener = Callable[["BrowserState"], None]


class BrowserState:
    """Session object behind the browser UI.

    Owns the store handle, the listing cache, the selection, the pending
    deletion set and the upload records, and exposes the commands the
    presentation layer calls. Listeners registered with ``subscribe`` are
    called after every visible change.
    """

    def __init__(
        self,
        store: ObjectStore,
        browser_root: str = "",
        delete_concurrency: int = DEFAULT_DELETE_CONCURRENCY,
        upload_concurrency: int = 0,
    ) -> None:
        self.store = store
        self.root = normalize_path(browser_root)
        self.path = self.root
        self.entries: list[Entry] = []
        self.cache = ListingCache()
        self.selection = SelectionModel()
        self.pending = PendingDeletions()
        self.sort_field: Optional[str] = None
        self.sort_order = ORDER_ASC
        self.uploads = UploadOrchestrator(
            store,
            self.cache,
            self.refresh,
            self._changed,
            max_concurrency=upload_concurrency,
        )
        self.deletes = DeleteOrchestrator(
            store,
            self.cache,
            self.pending,
            self.refresh,
            concurrency=delete_concurrency,
        )
        self._listeners: list[Listener] = []
        self._batch_depth = 0
        self._refresh_deferred = False
        self._list_token = 0

    @classmethod
    def from_config(cls, config: BrowserConfig) -> "BrowserState":
        store = ObjectStore(
            bucket=config.bucket,
            access_key=config.access_key,
            secret_key=config.secret_key,
            endpoint=config.endpoint,
            region=config.region,
        )
        return cls(
            store,
            browser_root=config.browser_root,
            delete_concurrency=config.delete_concurrency,
            upload_concurrency=config.upload_concurrency,
        )

    async def __aenter__(self) -> "BrowserState":
        return self

    async def __aexit__(self, *_exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._listeners.clear()
        self.cache.clear()
        self.store.close()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    @property
    def prevent_refresh(self) -> bool:
        return self._batch_depth > 0

    # Listing

    def _show(self, path: str, entries: list[Entry]) -> None:
        if path != self.path:
            self.selection.clear()
        self.path = path
        if self.sort_field:
            entries = sort_entries(entries, self.sort_field, self.sort_order)
        self.entries = list(entries)
        self._changed()

    async def list(self, path: Optional[str] = None) -> list[Entry]:
        if path is None:
            path = self.path
        self._list_token += 1
        token = self._list_token
        cached = self.cache.get(path)
        if cached is not None:
            self._show(path, cached)
        listing = await self.store.list_objects(path, DELIMITER)
        entries = build_entries(path, listing)
        self.cache.store(path, entries)
        if token == self._list_token:
            self._show(path, entries)
        else:
            logger.debug("dropping stale listing for %s", path)
        return entries

    def _within_root(self, path: str) -> str:
        if path.startswith(self.root):
            return path
        return self.root

    async def navigate(self, path: str) -> list[Entry]:
        return await self.list(self._within_root(normalize_path(path)))

    async def navigate_up(self) -> list[Entry]:
        return await self.list(self._within_root(parent_path(self.path)))

    async def refresh(self) -> None:
        if self.prevent_refresh:
            self.cache.invalidate(self.path)
            self._refresh_deferred = True
            return
        await self.list()

    # Uploads and folders

    async def upload(
        self, files: Iterable[Union[LocalFile, str, Path]]
    ) -> list[tuple[LocalFile, Exception]]:
        sources = [
            item if isinstance(item, LocalFile) else LocalFile.from_path(item)
            for item in files
        ]
        existing = [entry.key for entry in self.entries]
        return await self.uploads.upload(sources, self.path, existing)

    @property
    def upload_records(self) -> list[UploadRecord]:
        return list(self.uploads.records.values())

    async def retry_upload(self, key: str) -> Optional[Exception]:
        return await self.uploads.retry(key)

    def dismiss_upload(self, key: str) -> bool:
        return self.uploads.dismiss(key)

    async def create_folder(self, name: str) -> None:
        cleaned = name.strip().strip(DELIMITER)
        if not cleaned:
            raise ValueError("folder name must not be empty")
        key = f"{self.path}{cleaned}{DELIMITER}{PLACEHOLDER_NAME}"
        handle = self.store.put_object(key, io.BytesIO(b""), 0)
        await handle.wait()
        self.cache.invalidate(self.path)
        await self.refresh()

    # Selection and sorting

    def select_entry(self, entry: Entry) -> None:
        self.selection.select_single(entry)
        self._changed()

    def extend_selection(self, entry: Entry) -> bool:
        changed = self.selection.extend_range(entry, self.entries)
        if changed:
            self._changed()
        return changed

    def clear_selection(self) -> None:
        self.selection.clear()
        self._changed()

    @property
    def selected_entries(self) -> list[Entry]:
        return self.selection.selected(self.entries)

    def sort_by(self, field: str, order: str = ORDER_ASC) -> list[Entry]:
        ordered = sort_entries(self.entries, field, order)
        self.sort_field = field
        self.sort_order = order
        self.selection.clear()
        self.entries = ordered
        self._changed()
        return ordered

    # Deletion

    @property
    def marked(self) -> list[Entry]:
        return list(self.pending)

    def mark_for_deletion(self, entries: Iterable[Entry]) -> None:
        self.pending.add(entries)
        self._changed()

    def mark_selected(self) -> list[Entry]:
        selected = self.selected_entries
        self.mark_for_deletion(selected)
        return selected

    def cancel_marked(self, entry: Entry) -> None:
        self.pending.discard(entry)
        self._changed()

    def cancel_all_marked(self) -> None:
        self.pending.clear()
        self._changed()

    async def delete_marked(self) -> list[tuple[Entry, Exception]]:
        return await self._delete_batch(list(self.pending))

    async def delete_selected(self) -> list[tuple[Entry, Exception]]:
        return await self._delete_batch(self.mark_selected())

    async def _delete_batch(
        self, targets: list[Entry]
    ) -> list[tuple[Entry, Exception]]:
        if not targets:
            return []
        path = self.path
        self._batch_depth += 1
        self._changed()
        try:
            failures = await self.deletes.delete_many(targets, path)
        finally:
            self._batch_depth -= 1
        self.selection.clear()
        if not self.prevent_refresh and self._refresh_deferred:
            self._refresh_deferred = False
            try:
                await self.refresh()
            except Exception as exc:
                logger.warning("refresh after deleting from %s failed: %s", path, exc)
        self._changed()
        return failures
