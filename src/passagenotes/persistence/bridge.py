"""Persistence bridge between the annotation store and durable storage.

The store is written through only at commit points (``commit_all``), never on
individual mutations.  Each write is tagged with the document's
``last_modified`` and is dropped if something newer got there first: a newer
durable record, a newer state in the store, or a reset/clear that happened
while the commit was awaiting storage.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pydantic import ValidationError

from passagenotes.errors import StorageQuotaError
from passagenotes.markup.paragraphs import paragraph_snapshots
from passagenotes.markup.tree import parse_markup, serialize_children, text_content
from passagenotes.persistence.records import PersistedRecord

if TYPE_CHECKING:
    from passagenotes.annotation.store import AnnotationStore, DocumentState
    from passagenotes.persistence.storage import KeyValueStorage

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "rc_passage_highlights_"


@dataclass
class CommitReport:
    """Outcome of one ``commit_all`` call, by document id."""

    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class _CommitGuard:
    """What must still hold for a commit's write to be kept."""

    generation: int
    clear_epoch: int


class PersistenceBridge:
    """Commits store state to a ``KeyValueStorage`` and loads it back.

    Attributes:
        store: The in-memory annotation store.
        storage: Durable backend.
        key_prefix: Prefix of every storage key written by this bridge.
    """

    def __init__(
        self,
        store: AnnotationStore,
        storage: KeyValueStorage,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ) -> None:
        self.store = store
        self.storage = storage
        self.key_prefix = key_prefix
        self._clear_epoch = 0
        self._commit_tasks: set[asyncio.Task[CommitReport]] = set()

    def storage_key(self, document_id: str) -> str:
        return f"{self.key_prefix}{document_id}"

    def _guard(self) -> _CommitGuard:
        return _CommitGuard(self.store.generation, self._clear_epoch)

    def _superseded(
        self, document_id: str, state: DocumentState, guard: _CommitGuard
    ) -> str | None:
        """Return why a pending write of *state* must be dropped, if it must."""
        if guard != self._guard():
            return "reset or clear during commit"
        current = self.store.get(document_id)
        if current is None:
            return "document no longer in store"
        if current.last_modified > state.last_modified:
            return "newer state in store"
        return None

    # --- Commit ---

    async def commit_all(self) -> CommitReport:
        """Write every document in the store to durable storage.

        Failures are isolated per document and logged.

        Returns:
            Which documents were written, skipped as stale, or failed.
        """
        report = CommitReport()
        guard = self._guard()
        snapshot = [
            (document_id, state)
            for document_id in self.store.ids()
            if (state := self.store.get(document_id)) is not None
        ]

        for document_id, state in snapshot:
            try:
                written = await self._write_if_newer(document_id, state, guard)
            except StorageQuotaError:
                logger.error("Storage quota exceeded persisting %s", document_id)
                report.failed.append(document_id)
                continue
            except Exception:
                logger.exception("Failed to persist document %s", document_id)
                report.failed.append(document_id)
                continue
            (report.written if written else report.skipped).append(document_id)

        logger.info(
            "Commit finished: %d written, %d skipped, %d failed",
            len(report.written),
            len(report.skipped),
            len(report.failed),
        )
        return report

    async def _durable_is_newer(self, document_id: str, last_modified: int) -> bool:
        existing = await self.storage.get(self.storage_key(document_id))
        if existing is None:
            return False
        durable = _durable_timestamp(existing)
        if durable is not None and durable > last_modified:
            logger.info(
                "Skipping %s: durable record is newer (%d > %d)",
                document_id,
                durable,
                last_modified,
            )
            return True
        return False

    async def _write_if_newer(
        self, document_id: str, state: DocumentState, guard: _CommitGuard
    ) -> bool:
        if await self._durable_is_newer(document_id, state.last_modified):
            return False

        # Re-check after the read: the store may have moved on meanwhile
        reason = self._superseded(document_id, state, guard)
        if reason is not None:
            logger.info("Skipping %s: %s", document_id, reason)
            return False

        await self.storage.set(
            self.storage_key(document_id), PersistedRecord.from_state(state).to_json()
        )
        logger.debug("Persisted %s at %d", document_id, state.last_modified)
        return True

    def schedule_commit(self) -> asyncio.Task[CommitReport]:
        """Start ``commit_all`` in the background and return its task.

        Must be called from a running event loop.
        """
        task = asyncio.create_task(self.commit_all())
        # Keep a reference so the task is not garbage collected mid-flight
        self._commit_tasks.add(task)
        task.add_done_callback(self._commit_tasks.discard)
        return task

    async def restore(self, document_id: str, record: PersistedRecord) -> bool:
        """Write an exported record directly, unless the durable one is newer.

        Used to restore a bundle without a session; the store is not involved.
        """
        if await self._durable_is_newer(document_id, record.last_modified):
            return False
        await self.storage.set(self.storage_key(document_id), record.to_json())
        logger.info("Restored %s at %d", document_id, record.last_modified)
        return True

    # --- Load ---

    async def read(self, document_id: str) -> PersistedRecord | None:
        """Read a persisted record, or ``None`` if absent or corrupt."""
        raw = await self.storage.get(self.storage_key(document_id))
        if raw is None:
            return None
        try:
            return PersistedRecord.from_json(raw)
        except ValidationError as exc:
            logger.warning(
                "Ignoring corrupt persisted record for %s: %d errors",
                document_id,
                exc.error_count(),
            )
            return None

    async def load_one(self, document_id: str) -> bool:
        """Overlay the persisted record on a freshly loaded document.

        Only a pristine document (no annotations yet) is overlaid, so this
        never discards work done in the current session.  A record whose text
        differs from the document's is ignored: the passage has changed.

        Returns:
            True if the store was updated.
        """
        state = self.store.get(document_id)
        if state is None:
            logger.warning("Cannot load %s: document not in store", document_id)
            return False
        if not state.pristine:
            logger.debug("Not overlaying %s: already annotated", document_id)
            return False

        try:
            record = await self.read(document_id)
        except Exception:
            logger.exception("Failed to read persisted record for %s", document_id)
            return False
        if record is None:
            return False

        if self.store.get(document_id) is not state:
            logger.info("Not overlaying %s: changed while loading", document_id)
            return False

        tree = parse_markup(record.annotated)
        if text_content(tree) != text_content(parse_markup(state.original)):
            logger.warning(
                "Ignoring persisted record for %s: passage text differs", document_id
            )
            return False

        self.store.upsert(
            document_id,
            state.model_copy(
                update={
                    "annotated": serialize_children(tree),
                    "paragraphs": tuple(paragraph_snapshots(tree)),
                    "last_modified": max(record.last_modified, state.last_modified),
                }
            ),
        )
        logger.info("Restored persisted annotations for %s", document_id)
        return True

    async def stored_ids(self) -> list[str]:
        """Ids of every document with a persisted record."""
        keys = await self.storage.keys(self.key_prefix)
        return [key.removeprefix(self.key_prefix) for key in keys]

    # --- Clear ---

    async def clear_one(self, document_id: str) -> bool:
        """Delete one persisted record. Returns True if one existed."""
        self._clear_epoch += 1
        try:
            removed = await self.storage.remove(self.storage_key(document_id))
        except Exception:
            logger.exception("Failed to clear persisted record for %s", document_id)
            return False
        logger.info(
            "Cleared persisted record for %s (existed=%s)", document_id, removed
        )
        return removed

    async def clear_all(self) -> int:
        """Delete every record under this bridge's prefix. Returns the count."""
        self._clear_epoch += 1
        try:
            keys = await self.storage.keys(self.key_prefix)
        except Exception:
            logger.exception("Failed to list persisted records")
            return 0

        removed = 0
        for key in keys:
            try:
                if await self.storage.remove(key):
                    removed += 1
            except Exception:
                logger.exception("Failed to clear persisted record %s", key)
        logger.info("Cleared %d persisted records", removed)
        return removed


def _durable_timestamp(raw: str) -> int | None:
    try:
        return PersistedRecord.from_json(raw).last_modified
    except ValidationError:
        # Corrupt records carry no timestamp; overwriting them is fine
        return None
