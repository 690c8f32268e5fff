"""Shared fixtures: in-memory stand-ins for the database, object store and email service."""

from __future__ import annotations

import copy
import re
from datetime import datetime, timezone
from typing import Any

import pytest
from bson import ObjectId

from capture_shop.config import Settings
from capture_shop.errors import (
    DeleteFailure,
    DuplicateKey,
    NotFound,
    NotificationFailure,
    RemoteUnavailable,
    UploadFailure,
)
from capture_shop.storage import FileBlob, StoredObject, path_from_ref


def _matches(doc: dict[str, Any], filter_dict: dict[str, Any]) -> bool:
    for key, expected in filter_dict.items():
        value = doc.get(key)
        if isinstance(expected, dict) and "$regex" in expected:
            flags = re.IGNORECASE if "i" in expected.get("$options", "") else 0
            if not isinstance(value, str) or not re.search(expected["$regex"], value, flags):
                return False
        elif value != expected:
            return False
    return True


class FakeGateway:
    """Dict-backed ``CollectionGateway`` that records every call."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []
        self.failing: set[str] = set()

    def _check(self, op: str, collection_name: str) -> dict[str, dict[str, Any]]:
        self.calls.append((op, collection_name))
        if op in self.failing:
            raise RemoteUnavailable(f"{op} {collection_name}")
        return self.collections.setdefault(collection_name, {})

    def seed(self, collection_name: str, doc_id: str, data: dict[str, Any]) -> None:
        self.collections.setdefault(collection_name, {})[doc_id] = copy.deepcopy(data)

    def writes(self, collection_name: str) -> list[str]:
        return [op for op, name in self.calls if name == collection_name and op in ("create", "set", "insert", "update", "delete")]

    async def list(self, collection_name: str, filter_dict: dict[str, Any] | None = None, limit: int = 0) -> list[dict[str, Any]]:
        coll = self._check("list", collection_name)
        docs = [{**copy.deepcopy(d), "id": k} for k, d in coll.items() if _matches(d, filter_dict or {})]
        return docs[:limit] if limit else docs

    async def get(self, collection_name: str, doc_id: str) -> dict[str, Any]:
        coll = self._check("get", collection_name)
        if doc_id not in coll:
            raise NotFound(f"{collection_name}/{doc_id}")
        return {**copy.deepcopy(coll[doc_id]), "id": doc_id}

    async def create(self, collection_name: str, data: dict[str, Any]) -> str:
        coll = self._check("create", collection_name)
        doc_id = str(ObjectId())
        now = datetime.now(timezone.utc)
        coll[doc_id] = {**copy.deepcopy(data), "created_at": now, "updated_at": now}
        return doc_id

    async def set(self, collection_name: str, doc_id: str, data: dict[str, Any]) -> str:
        coll = self._check("set", collection_name)
        now = datetime.now(timezone.utc)
        coll[doc_id] = {"created_at": now, **copy.deepcopy(data), "updated_at": now}
        return doc_id

    async def insert(self, collection_name: str, doc_id: str, data: dict[str, Any]) -> str:
        coll = self._check("insert", collection_name)
        if doc_id in coll:
            raise DuplicateKey(f"{collection_name}/{doc_id}")
        now = datetime.now(timezone.utc)
        coll[doc_id] = {**copy.deepcopy(data), "created_at": now, "updated_at": now}
        return doc_id

    async def update(self, collection_name: str, doc_id: str, data: dict[str, Any]) -> None:
        coll = self._check("update", collection_name)
        if doc_id not in coll:
            raise NotFound(f"{collection_name}/{doc_id}")
        coll[doc_id].update(copy.deepcopy(data), updated_at=datetime.now(timezone.utc))

    async def delete(self, collection_name: str, doc_id: str) -> None:
        coll = self._check("delete", collection_name)
        if coll.pop(doc_id, None) is None:
            raise NotFound(f"{collection_name}/{doc_id}")


class FakeStore:
    """Object store keeping blobs in a dict, with switchable failures."""

    base_url = "http://testserver"

    def __init__(self) -> None:
        self.objects: dict[str, FileBlob] = {}
        self.uploads: list[str] = []
        self.deletes: list[str] = []
        self.fail_uploads: set[str] = set()

    def ref(self, path: str) -> str:
        return f"{self.base_url}/files/{path}"

    def put(self, path: str, content: bytes = b"x") -> str:
        self.objects[path] = FileBlob(filename=path.rsplit("/", 1)[-1], content=content)
        return self.ref(path)

    async def upload(self, path: str, blob: FileBlob) -> str:
        if blob.filename in self.fail_uploads:
            raise UploadFailure(path)
        self.objects[path] = blob
        self.uploads.append(path)
        return self.ref(path)

    async def delete(self, ref: str) -> None:
        path = path_from_ref(ref)
        self.deletes.append(path)
        if self.objects.pop(path, None) is None:
            raise DeleteFailure(f"{path}: no such object")

    async def open(self, path: str) -> StoredObject:
        blob = self.objects.get(path)
        if blob is None:
            raise NotFound(path)
        return StoredObject(path=path, content=blob.content, content_type=blob.content_type)


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = False

    async def send(self, template_params: dict[str, Any]) -> None:
        if self.fail:
            raise NotificationFailure("Email service returned 503")
        self.sent.append(template_params)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def settings() -> Settings:
    return Settings(CHECKOUT_DISPLAY_DELAY=0, SHOP_NAME="Capture Shop", SHOP_EMAIL="shop@example.com")


def blob(name: str, content: bytes = b"img") -> FileBlob:
    return FileBlob(filename=name, content=content, content_type="image/jpeg")
