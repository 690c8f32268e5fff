"""Object storage for uploaded images, kept in a GridFS bucket."""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional, Protocol
from urllib.parse import quote, unquote
from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorGridFSBucket
from pymongo.errors import PyMongoError

from .errors import DeleteFailure, NotFound, RemoteUnavailable, UploadFailure

logger = logging.getLogger(__name__)

FILES_PREFIX = "/files/"


@dataclass
class FileBlob:
    """A locally selected file that has not been uploaded yet."""
    filename: str
    content: bytes
    content_type: Optional[str] = None


@dataclass
class StoredObject:
    path: str
    content: bytes
    content_type: Optional[str] = None


class ObjectStore(Protocol):
    async def upload(self, path: str, blob: FileBlob) -> str: ...

    async def delete(self, ref: str) -> None: ...


def path_from_ref(ref: str) -> str:
    """Turn a durable URL back into its storage path."""
    _, sep, path = ref.partition(FILES_PREFIX)
    if not sep or not path:
        raise DeleteFailure(f"Not a stored object reference: {ref}")
    return unquote(path)


class GridFSObjectStore:
    """Stores objects under ``<namespace>/<file name>`` and hands out URLs served by ``GET /files``."""

    def __init__(self, db: AsyncIOMotorDatabase, public_base_url: str, bucket_name: str = "uploads"):
        self.bucket = AsyncIOMotorGridFSBucket(db, bucket_name=bucket_name)
        self.public_base_url = public_base_url.rstrip("/")

    def url_for(self, path: str) -> str:
        return f"{self.public_base_url}{FILES_PREFIX}{quote(path)}"

    async def upload(self, path: str, blob: FileBlob) -> str:
        try:
            await self.bucket.upload_from_stream(
                path, blob.content, metadata={"content_type": blob.content_type}
            )
        except PyMongoError as e:
            logger.error(f"Upload of {path} failed: {e}")
            raise UploadFailure(f"{path}: {e}") from e
        logger.info(f"Uploaded {path} ({len(blob.content)} bytes)")
        return self.url_for(path)

    async def delete(self, ref: str) -> None:
        """Remove every revision stored under the path of ``ref``.

        Paths are not made unique, so records that uploaded a file of the same
        name share one reference and lose the image together.
        """
        path = path_from_ref(ref)
        deleted = 0
        try:
            async for grid_out in self.bucket.find({"filename": path}):
                await self.bucket.delete(grid_out._id)
                deleted += 1
        except (PyMongoError, NoFile) as e:
            raise DeleteFailure(f"{path}: {e}") from e
        if not deleted:
            raise DeleteFailure(f"{path}: no such object")
        logger.info(f"Deleted {path}")

    async def open(self, path: str) -> StoredObject:
        try:
            grid_out = await self.bucket.open_download_stream_by_name(path)
            content = await grid_out.read()
        except NoFile:
            raise NotFound(path)
        except PyMongoError as e:
            logger.error(f"Reading {path} failed: {e}")
            raise RemoteUnavailable(str(e)) from e
        metadata = grid_out.metadata or {}
        return StoredObject(path=path, content=content, content_type=metadata.get("content_type"))
