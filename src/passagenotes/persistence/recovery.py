"""Recovery mirror for uncommitted annotation state.

Copies transient document state into a separate recovery storage shortly
after each mutation (debounced), so a crash or reload before submission does
not lose the reader's work.  The durable store is never touched: committed
state still changes only at commit points.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from passagenotes.persistence.records import RecoveryRecord

if TYPE_CHECKING:
    from passagenotes.annotation.store import AnnotationStore
    from passagenotes.persistence.storage import KeyValueStorage

logger = logging.getLogger(__name__)

DEFAULT_RECOVERY_PREFIX = "rc_passage_recovery_"


class RecoveryMirror:
    """Manages debounced mirroring of store entries to recovery storage.

    Attributes:
        debounce_seconds: Delay before persisting (class attr, override in tests).
        _pending_saves: Dict of doc_id -> asyncio.Task for pending debounced saves.
        _dirty_docs: Set of doc_ids with changes not yet mirrored.
    """

    debounce_seconds: float = 2.0

    def __init__(
        self,
        store: AnnotationStore,
        storage: KeyValueStorage,
        *,
        key_prefix: str = DEFAULT_RECOVERY_PREFIX,
        debounce_seconds: float | None = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.key_prefix = key_prefix
        if debounce_seconds is not None:
            self.debounce_seconds = debounce_seconds
        self._pending_saves: dict[str, asyncio.Task[None]] = {}
        self._dirty_docs: set[str] = set()

    def storage_key(self, doc_id: str) -> str:
        return f"{self.key_prefix}{doc_id}"

    @property
    def dirty(self) -> frozenset[str]:
        return frozenset(self._dirty_docs)

    def mark_dirty(self, doc_id: str) -> None:
        """Mark a document as changed and schedule a debounced save.

        Outside a running event loop the document stays dirty until the next
        ``force_persist`` or ``persist_all_dirty``.
        """
        self._dirty_docs.add(doc_id)
        self._schedule_debounced_save(doc_id)

    def _schedule_debounced_save(self, doc_id: str) -> None:
        """Schedule or reschedule a debounced save."""
        self._cancel_pending_save(doc_id)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; %s stays dirty until flushed", doc_id)
            return

        async def debounced_save() -> None:
            await asyncio.sleep(self.debounce_seconds)
            await self._persist_document(doc_id)

        self._pending_saves[doc_id] = loop.create_task(debounced_save())

    def _cancel_pending_save(self, doc_id: str) -> None:
        """Cancel a pending debounced save if exists."""
        task = self._pending_saves.pop(doc_id, None)
        if task and not task.done():
            task.cancel()

    async def _persist_document(self, doc_id: str) -> None:
        """Actually write the recovery record."""
        state = self.store.get(doc_id)
        if state is None:
            logger.warning("Document %s not in store, skipping recovery save", doc_id)
            self._dirty_docs.discard(doc_id)
            self._pending_saves.pop(doc_id, None)
            return

        try:
            await self.storage.set(
                self.storage_key(doc_id), RecoveryRecord.from_state(state).to_json()
            )
        except Exception:
            logger.exception("Failed to mirror document %s", doc_id)
            return

        self._pending_saves.pop(doc_id, None)
        # A mutation during the write makes the record stale again
        current = self.store.get(doc_id)
        if current is None or current.last_modified <= state.last_modified:
            self._dirty_docs.discard(doc_id)
        logger.debug("Mirrored document %s at %d", doc_id, state.last_modified)

    async def force_persist(self, doc_id: str) -> None:
        """Immediately mirror a document if it is dirty."""
        self._cancel_pending_save(doc_id)
        if doc_id in self._dirty_docs:
            await self._persist_document(doc_id)

    async def persist_all_dirty(self) -> None:
        """Mirror all dirty documents (e.g., on shutdown)."""
        for doc_id in list(self._dirty_docs):
            await self.force_persist(doc_id)

    async def recover(self, doc_id: str) -> bool:
        """Restore a mirrored document into the store if it is newer.

        A record is only applied when the store has no entry for the id, or
        holds the same passage with an older timestamp.

        Returns:
            True if the store was updated.
        """
        try:
            raw = await self.storage.get(self.storage_key(doc_id))
        except Exception:
            logger.exception("Failed to read recovery record for %s", doc_id)
            return False
        if raw is None:
            return False

        try:
            record = RecoveryRecord.from_json(raw)
        except ValidationError as exc:
            logger.warning(
                "Ignoring corrupt recovery record for %s: %d errors",
                doc_id,
                exc.error_count(),
            )
            return False

        current = self.store.get(doc_id)
        if current is not None:
            if current.original != record.original:
                logger.warning(
                    "Ignoring recovery record for %s: passage differs", doc_id
                )
                return False
            if current.last_modified >= record.last_modified:
                return False

        self.store.upsert(doc_id, record.to_state())
        logger.info("Recovered uncommitted annotations for %s", doc_id)
        return True

    async def recover_all(self) -> list[str]:
        """Restore every mirrored document. Returns the recovered ids."""
        try:
            keys = await self.storage.keys(self.key_prefix)
        except Exception:
            logger.exception("Failed to list recovery records")
            return []

        recovered: list[str] = []
        for key in keys:
            doc_id = key.removeprefix(self.key_prefix)
            if await self.recover(doc_id):
                recovered.append(doc_id)
        return recovered

    async def discard_all(self) -> int:
        """Cancel pending saves and delete every recovery record."""
        for doc_id in list(self._pending_saves):
            self._cancel_pending_save(doc_id)
        self._dirty_docs.clear()

        try:
            keys = await self.storage.keys(self.key_prefix)
        except Exception:
            logger.exception("Failed to list recovery records")
            return 0

        removed = 0
        for key in keys:
            try:
                if await self.storage.remove(key):
                    removed += 1
            except Exception:
                logger.exception("Failed to discard recovery record %s", key)
        logger.debug("Discarded %d recovery records", removed)
        return removed
