from __future__ import annotations
import logging
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ValidationError as SchemaError

from .database import CollectionGateway
from .errors import RemoteError, ValidationError
from .storage import FileBlob, ObjectStore
from .uploads import reconcile

logger = logging.getLogger(__name__)


class EditState(str, Enum):
    CLOSED = "closed"
    OPEN_CREATE = "open_create"
    OPEN_EDIT = "open_edit"


class EditController:
    """Open an empty or pre-filled form, validate, write, re-list, close.

    Shared by the admin screens. When ``image_field`` is set the controller
    also owns that field's images: staged files and staged removals are
    resolved through ``reconcile`` right before the record is written.
    ``single_image`` stores one reference (or None) instead of a list.
    """

    def __init__(
        self,
        gateway: CollectionGateway,
        collection_name: str,
        schema: type[BaseModel],
        *,
        store: Optional[ObjectStore] = None,
        namespace: Optional[str] = None,
        image_field: Optional[str] = None,
        single_image: bool = False,
        context: Optional[dict[str, Any]] = None,
    ):
        self.gateway = gateway
        self.collection_name = collection_name
        self.schema = schema
        self.store = store
        self.namespace = namespace or collection_name
        self.image_field = image_field
        self.single_image = single_image
        self.context = context

        self.state = EditState.CLOSED
        self.editing_id: Optional[str] = None
        self.form: dict[str, Any] = {}
        self.errors: dict[str, str] = {}
        self.records: list[dict[str, Any]] = []
        self.staged_files: list[FileBlob] = []
        self.staged_removals: list[str] = []

    @property
    def is_open(self) -> bool:
        return self.state is not EditState.CLOSED

    def _defaults(self) -> dict[str, Any]:
        defaults = {}
        for name, field in self.schema.model_fields.items():
            if not field.is_required():
                defaults[name] = field.get_default(call_default_factory=True)
        return defaults

    def _reset(self) -> None:
        self.editing_id = None
        self.form = {}
        self.errors = {}
        self.staged_files = []
        self.staged_removals = []

    async def refresh(self) -> list[dict[str, Any]]:
        self.records = await self.gateway.list(self.collection_name)
        return self.records

    def open_create(self) -> None:
        self._reset()
        self.form = self._defaults()
        self.state = EditState.OPEN_CREATE

    def open_edit(self, record: dict[str, Any]) -> None:
        self._reset()
        self.editing_id = record["id"]
        self.form = {name: record.get(name) for name in self.schema.model_fields if name in record}
        self.state = EditState.OPEN_EDIT

    def cancel(self) -> None:
        self._reset()
        self.state = EditState.CLOSED

    def stage_files(self, files: list[FileBlob]) -> None:
        if self.single_image:
            # A new image replaces the current one
            self.staged_files = files[-1:]
        else:
            self.staged_files.extend(files)

    def stage_removal(self, ref: str) -> None:
        if ref not in self.staged_removals:
            self.staged_removals.append(ref)

    def _existing_refs(self) -> list[str]:
        current = self.form.get(self.image_field)
        if not current:
            return []
        return [current] if isinstance(current, str) else list(current)

    async def _resolve_images(self) -> Any:
        existing = self._existing_refs()
        removed = list(self.staged_removals)
        if self.single_image and self.staged_files:
            removed.extend(existing)
        refs = await reconcile(self.store, self.namespace, existing, removed, self.staged_files)
        if self.single_image:
            return refs[0] if refs else None
        return refs

    def validate(self, data: dict[str, Any]) -> dict[str, Any]:
        try:
            validated = self.schema.model_validate(data, context=self.context)
        except SchemaError as e:
            self.errors = ValidationError.from_pydantic(e).errors
            raise ValidationError(self.errors) from e
        self.errors = {}
        return validated.model_dump()

    async def submit(self, data: dict[str, Any]) -> list[dict[str, Any]]:
        if not self.is_open:
            raise RuntimeError("No form is open")

        payload = {**self.form, **data}
        if self.image_field:
            # Images are owned by the controller, not the submitted data
            payload[self.image_field] = self.form.get(self.image_field)
        fields = self.validate(payload)

        if self.image_field and self.store is not None:
            fields[self.image_field] = await self._resolve_images()

        if self.state is EditState.OPEN_EDIT:
            await self.gateway.update(self.collection_name, self.editing_id, fields)
        else:
            new_id = await self.gateway.create(self.collection_name, fields)
            logger.info(f"New {self.collection_name} record {new_id}")

        records = await self.refresh()
        self.cancel()
        return records

    async def delete(self, record: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            await self.gateway.delete(self.collection_name, record["id"])
        except RemoteError:
            # The list may be stale, e.g. the record was removed elsewhere
            await self.refresh()
            raise
        if self.image_field and self.store is not None:
            current = record.get(self.image_field)
            refs = [current] if isinstance(current, str) else list(current or [])
            await reconcile(self.store, self.namespace, refs, refs, [])
        return await self.refresh()
