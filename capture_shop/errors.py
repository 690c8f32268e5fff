"""Capture Shop exceptions."""

from __future__ import annotations
from typing import Any, Optional


class ShopError(Exception):
    """Base for every error raised by the shop backend."""


class ValidationError(ShopError):
    """Field-level validation failure. Never reaches the database."""

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))

    @classmethod
    def from_pydantic(cls, exc: Any) -> "ValidationError":
        errors: dict[str, str] = {}
        for err in exc.errors():
            field = ".".join(str(p) for p in err["loc"]) or "form"
            errors.setdefault(field, err["msg"].removeprefix("Value error, "))
        return cls(errors)


class RemoteError(ShopError):
    """Document database failure."""


class RemoteUnavailable(RemoteError):
    pass


class NotFound(RemoteError):
    pass


class DuplicateKey(RemoteError):
    """A record already exists under the requested key."""


class StorageError(ShopError):
    """Object storage failure."""


class UploadFailure(StorageError):
    pass


class DeleteFailure(StorageError):
    pass


class NotificationFailure(ShopError):
    """Email dispatch failed. ``order_id`` is set when the order was already saved."""

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id


class AuthFailure(ShopError):
    pass


class AlreadyExists(AuthFailure):
    pass


class InvalidCredentials(AuthFailure):
    pass
