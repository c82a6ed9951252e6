from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Iterator, TypeVar, Union

from .listing import DELIMITER, Entry, ListingCache, folder_prefix
from .s3 import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_DELETE_CONCURRENCY = 3

T = TypeVar("T")


class FolderDeleteError(Exception):
    def __init__(self, prefix: str, keys: list[str]) -> None:
        super().__init__(f"failed to delete {len(keys)} object(s) under {prefix}")
        self.prefix = prefix
        self.keys = keys


async def drain(
    queue: list[T],
    worker: Callable[[T], Awaitable[None]],
    concurrency: int = DEFAULT_DELETE_CONCURRENCY,
) -> list[tuple[T, Exception]]:
    """Empty ``queue`` with ``concurrency`` workers popping one item at a time.

    Each popped item belongs to the worker that popped it. A failing item is
    recorded and the worker moves on; the call returns once the queue is
    empty and every worker has finished its last item.
    """
    failures: list[tuple[T, Exception]] = []

    async def run() -> None:
        while queue:
            item = queue.pop()
            try:
                await worker(item)
            except Exception as exc:
                failures.append((item, exc))

    await asyncio.gather(*(run() for _ in range(max(1, concurrency))))
    return failures


class PendingDeletions:
    def __init__(self) -> None:
        self._entries: dict[str, Entry] = {}

    def add(self, entries: Iterable[Entry]) -> None:
        for entry in entries:
            self._entries[entry.key] = entry

    def discard(self, entry: Entry) -> bool:
        return self._entries.pop(entry.key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, item: Union[Entry, str]) -> bool:
        key = item.key if isinstance(item, Entry) else item
        return key in self._entries

    def __iter__(self) -> Iterator[Entry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)


class DeleteOrchestrator:
    def __init__(
        self,
        store: ObjectStore,
        cache: ListingCache,
        pending: PendingDeletions,
        refresh: Callable[[], Awaitable[None]],
        concurrency: int = DEFAULT_DELETE_CONCURRENCY,
    ) -> None:
        self.store = store
        self.cache = cache
        self.pending = pending
        self.concurrency = max(1, concurrency)
        self._refresh = refresh

    async def delete(self, entry: Entry, path: str, folder: bool = False) -> None:
        """Delete a single object.

        With ``folder`` set the call is one step of a folder delete, and the
        refresh and pending-set cleanup are left to the folder operation.
        """
        await self.store.delete_object(path + entry.key)
        if folder:
            return
        self.cache.invalidate(path)
        self.pending.discard(entry)
        await self._refresh()

    async def delete_folder(self, entry: Entry, base_path: str) -> None:
        prefix = folder_prefix(base_path, entry.key)
        try:
            await self._delete_tree(prefix)
        except Exception as exc:
            logger.warning("deleting folder %s failed: %s", prefix, exc)
            self._forget(base_path, prefix)
            await self._refresh_after_failure()
            raise
        self._forget(base_path, prefix)
        self.pending.discard(entry)
        await self._refresh()

    async def delete_many(
        self, entries: Iterable[Entry], path: str
    ) -> list[tuple[Entry, Exception]]:
        targets = list(entries)

        async def run(entry: Entry) -> None:
            if entry.is_folder:
                await self.delete_folder(entry, path)
            else:
                await self.delete(entry, path)

        results = await asyncio.gather(
            *(run(entry) for entry in targets), return_exceptions=True
        )
        failures: list[tuple[Entry, Exception]] = []
        for entry, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("deleting %s%s failed: %s", path, entry.key, result)
                failures.append((entry, result))
        return failures

    async def _delete_tree(self, prefix: str) -> None:
        listing = await self.store.list_objects(prefix, DELIMITER)
        queue = [Entry(key=info.key, size=info.size) for info in listing.objects]
        logger.debug("deleting %d objects under %s", len(queue), prefix)

        async def worker(item: Entry) -> None:
            await self.delete(item, "", folder=True)

        failures = await drain(queue, worker, self.concurrency)
        if failures:
            raise FolderDeleteError(prefix, sorted(item.key for item, _ in failures))
        for child in listing.prefixes:
            await self._delete_tree(child)

    async def _refresh_after_failure(self) -> None:
        try:
            await self._refresh()
        except Exception as exc:
            logger.warning("refresh after failed delete also failed: %s", exc)

    def _forget(self, base_path: str, prefix: str) -> None:
        self.cache.invalidate(base_path)
        self.cache.invalidate_tree(prefix)
