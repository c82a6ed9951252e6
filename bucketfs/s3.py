from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, BinaryIO, Optional

import boto3
from botocore.config import Config

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://gateway.tardigradeshare.io"


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size: int
    last_modified: Optional[datetime]


@dataclass(frozen=True)
class ListResult:
    objects: list[ObjectInfo] = field(default_factory=list)
    prefixes: list[str] = field(default_factory=list)


class UploadHandle:
    """Progress channel for a single object transfer.

    Byte counts are fed from whichever thread performs the transfer; the
    handle turns them into integer percentages on the event loop. Iterating
    ``progress()`` yields every update and ends when the transfer finishes,
    re-raising the transfer's exception if it failed.
    """

    def __init__(self, key: str, total: int) -> None:
        self.key = key
        self.total = max(0, int(total))
        self.loaded = 0
        self._loop = asyncio.get_running_loop()
        self._updates: asyncio.Queue[Optional[int]] = asyncio.Queue()
        self._task: Optional[asyncio.Future] = None

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100 if self.done else 0
        return min(100, round(self.loaded / self.total * 100))

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def start(self, operation) -> None:
        self._task = asyncio.ensure_future(operation)
        self._task.add_done_callback(self._finish)

    def feed(self, amount: int) -> None:
        self._loop.call_soon_threadsafe(self._advance, amount)

    def _advance(self, amount: int) -> None:
        self.loaded += int(amount)
        self._updates.put_nowait(self.percent)

    def _finish(self, task: asyncio.Future) -> None:
        if not task.cancelled() and task.exception() is None and self.total <= 0:
            self._updates.put_nowait(100)
        self._updates.put_nowait(None)

    async def progress(self) -> AsyncIterator[int]:
        while True:
            value = await self._updates.get()
            if value is None:
                break
            yield value
        await self.wait()

    async def wait(self) -> None:
        if self._task is None:
            raise RuntimeError(f"upload for {self.key} was never started")
        await self._task


class ObjectStore:
    def __init__(
        self,
        bucket: str,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        endpoint: Optional[str] = DEFAULT_ENDPOINT,
        region: Optional[str] = None,
        client=None,
    ) -> None:
        self.bucket = bucket
        self.endpoint = endpoint
        self._access_key = access_key
        self._secret_key = secret_key
        self._region = region
        self._s3_client = client

    def _client(self):
        if self._s3_client is not None:
            return self._s3_client
        session = boto3.session.Session(
            aws_access_key_id=self._access_key,
            aws_secret_access_key=self._secret_key,
        )
        config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
        )
        kwargs = {"config": config}
        if self.endpoint:
            kwargs["endpoint_url"] = self.endpoint
        if self._region:
            kwargs["region_name"] = self._region
        self._s3_client = session.client("s3", **kwargs)
        return self._s3_client

    def close(self) -> None:
        client = self._s3_client
        self._s3_client = None
        if client is None:
            return
        close = getattr(client, "close", None)
        if close is not None:
            close()

    async def list_objects(self, prefix: str, delimiter: str = "/") -> ListResult:
        return await asyncio.to_thread(self._list_objects, prefix, delimiter)

    def _list_objects(self, prefix: str, delimiter: str) -> ListResult:
        client = self._client()
        objects: list[ObjectInfo] = []
        prefixes: list[str] = []
        continuation: Optional[str] = None
        while True:
            kwargs = {
                "Bucket": self.bucket,
                "Prefix": prefix,
                "MaxKeys": 1000,
            }
            if delimiter:
                kwargs["Delimiter"] = delimiter
            if continuation:
                kwargs["ContinuationToken"] = continuation
            response = client.list_objects_v2(**kwargs)
            for entry in response.get("CommonPrefixes", []):
                value = entry.get("Prefix")
                if value:
                    prefixes.append(value)
            for entry in response.get("Contents", []):
                key = entry.get("Key")
                if not key:
                    continue
                objects.append(
                    ObjectInfo(
                        key=key,
                        size=int(entry.get("Size", 0)),
                        last_modified=entry.get("LastModified"),
                    )
                )
            if response.get("IsTruncated"):
                continuation = response.get("NextContinuationToken")
            else:
                break
        logger.debug(
            "listed %s: %d objects, %d prefixes", prefix, len(objects), len(prefixes)
        )
        return ListResult(objects=objects, prefixes=prefixes)

    def put_object(self, key: str, body: BinaryIO, size: int) -> UploadHandle:
        handle = UploadHandle(key, size)
        handle.start(asyncio.to_thread(self._put_object, key, body, handle))
        return handle

    def _put_object(self, key: str, body: BinaryIO, handle: UploadHandle) -> None:
        client = self._client()
        client.upload_fileobj(body, self.bucket, key, Callback=handle.feed)
        logger.debug("uploaded %s (%d bytes)", key, handle.total)

    async def delete_object(self, key: str) -> None:
        await asyncio.to_thread(self._delete_object, key)

    def _delete_object(self, key: str) -> None:
        client = self._client()
        client.delete_object(Bucket=self.bucket, Key=key)
        logger.debug("deleted %s", key)
