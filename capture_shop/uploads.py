from __future__ import annotations
import logging
from collections.abc import Iterable, Sequence

from .errors import DeleteFailure
from .storage import FileBlob, ObjectStore

logger = logging.getLogger(__name__)


async def reconcile(
    store: ObjectStore,
    namespace: str,
    existing_refs: Sequence[str],
    removed_refs: Iterable[str],
    new_files: Sequence[FileBlob],
) -> list[str]:
    """Resolve an image gallery edit into the references to persist.

    Surviving ``existing_refs`` keep their order and are followed by the new
    uploads in input order. Removed references that were persisted are deleted
    from storage best-effort. Uploads run one at a time; the first
    ``UploadFailure`` aborts and propagates, leaving earlier uploads of this
    call in storage.
    """
    removed = set(removed_refs)
    refs = [ref for ref in existing_refs if ref not in removed]

    # Staged-only refs never reached storage, so only persisted ones are deleted
    for ref in dict.fromkeys(r for r in existing_refs if r in removed):
        try:
            await store.delete(ref)
        except DeleteFailure as e:
            logger.warning(f"Could not delete {ref}: {e}")

    for blob in new_files:
        refs.append(await store.upload(f"{namespace}/{blob.filename}", blob))

    return refs
