from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, BinaryIO, Callable, Iterable, Optional, Union

from .listing import ListingCache, parent_path
from .s3 import ObjectStore

logger = logging.getLogger(__name__)

UPLOAD_ACTIVE = "uploading"
UPLOAD_FAILED = "failed"


@dataclass(frozen=True)
class LocalFile:
    name: str
    path: Optional[Path] = None
    data: Optional[bytes] = None

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "LocalFile":
        resolved = Path(path).expanduser()
        return cls(name=resolved.name, path=resolved)

    @property
    def size(self) -> int:
        if self.data is not None:
            return len(self.data)
        if self.path is not None:
            return self.path.stat().st_size
        return 0

    def open(self) -> BinaryIO:
        if self.data is not None:
            return io.BytesIO(self.data)
        if self.path is not None:
            return self.path.open("rb")
        return io.BytesIO(b"")


@dataclass
class UploadRecord:
    key: str
    source: LocalFile
    progress: int = 0
    status: str = UPLOAD_ACTIVE
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status == UPLOAD_FAILED


def _split_suffix(name: str) -> tuple[str, str]:
    # Everything from the first dot is the suffix, so "a.tar.gz" keeps ".tar.gz".
    dot = name.find(".", 1)
    if dot < 0:
        return name, ""
    return name[:dot], name[dot:]


def unique_name(name: str, existing: Iterable[str]) -> str:
    """Return ``name``, or ``name`` with `` (n)`` before its suffix if taken."""
    taken = set(existing)
    if name not in taken:
        return name
    stem, suffix = _split_suffix(name)
    count = 1
    while True:
        candidate = f"{stem} ({count}){suffix}"
        if candidate not in taken:
            return candidate
        count += 1


class UploadOrchestrator:
    """Runs one transfer task per local file and tracks their progress.

    Collision renaming looks only at the names listed when the batch starts;
    files in the same batch do not see each other's renamed keys, so two
    identical names in one batch map to the same key. Their records share
    that key too. A failed record always ends up in the slot, so a sibling
    that finishes never hides a failure from the same batch.
    """

    def __init__(
        self,
        store: ObjectStore,
        cache: ListingCache,
        refresh: Callable[[], Awaitable[None]],
        notify: Callable[[], None],
        max_concurrency: int = 0,
    ) -> None:
        self.store = store
        self.cache = cache
        self.records: dict[str, UploadRecord] = {}
        self._refresh = refresh
        self._notify = notify
        self._limit = (
            asyncio.Semaphore(max_concurrency) if max_concurrency > 0 else None
        )

    async def upload(
        self, files: Iterable[LocalFile], path: str, existing: Iterable[str]
    ) -> list[tuple[LocalFile, Exception]]:
        names = list(existing)
        batch = [(source, path + unique_name(source.name, names)) for source in files]
        results = await asyncio.gather(
            *(self._run(source, key) for source, key in batch)
        )
        return [(source, exc) for (source, _), exc in zip(batch, results) if exc]

    async def retry(self, key: str) -> Optional[Exception]:
        record = self.records.get(key)
        if record is None or not record.failed:
            return None
        del self.records[key]
        return await self._run(record.source, key)

    def dismiss(self, key: str) -> bool:
        record = self.records.get(key)
        if record is None or not record.failed:
            return False
        del self.records[key]
        self._notify()
        return True

    async def _run(self, source: LocalFile, key: str) -> Optional[Exception]:
        record = UploadRecord(key=key, source=source)
        displaced = self.records.get(key)
        self.records[key] = record
        self._notify()
        try:
            if self._limit is None:
                await self._transfer(record)
            else:
                async with self._limit:
                    await self._transfer(record)
        except Exception as exc:
            logger.warning("upload of %s failed: %s", key, exc)
            record.status = UPLOAD_FAILED
            record.error = str(exc)
            self.records[key] = record
            self._notify()
            return exc
        self.cache.invalidate(parent_path(key))
        try:
            await self._refresh()
        except Exception as exc:
            logger.warning("refresh after uploading %s failed: %s", key, exc)
        if self.records.get(key) is record:
            if displaced is not None and displaced.failed:
                self.records[key] = displaced
            else:
                del self.records[key]
        self._notify()
        return None

    async def _transfer(self, record: UploadRecord) -> None:
        body = record.source.open()
        try:
            handle = self.store.put_object(record.key, body, record.source.size)
            async for percent in handle.progress():
                record.progress = percent
                self._notify()
        finally:
            body.close()
