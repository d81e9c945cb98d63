"""Annotation session: one exam attempt's worth of passage state.

The session owns every stateful component (store, registry, document model,
engine, persistence bridge and the optional recovery mirror) so that two
sessions never share state through module globals.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from passagenotes.annotation.documents import DocumentModel
from passagenotes.annotation.engine import AnnotationEngine
from passagenotes.annotation.registry import ConsumerRegistry
from passagenotes.annotation.store import AnnotationStore, epoch_millis
from passagenotes.config import DEFAULT_SUBJECT, get_settings
from passagenotes.markup.marker_constants import DEFAULT_HIGHLIGHT_COLOR
from passagenotes.persistence.bridge import DEFAULT_KEY_PREFIX, PersistenceBridge
from passagenotes.persistence.recovery import DEFAULT_RECOVERY_PREFIX, RecoveryMirror
from passagenotes.persistence.storage import create_storage

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from passagenotes.annotation.registry import ConsumerKey
    from passagenotes.config import Settings
    from passagenotes.persistence.bridge import CommitReport
    from passagenotes.persistence.storage import KeyValueStorage

logger = logging.getLogger(__name__)


class AnnotationSession:
    """Entry point for a host application.

    Attributes:
        store: In-memory document states.
        registry: Consumer-to-document bindings.
        documents: Lazy document creation and reads.
        engine: Span mutations.
        bridge: Commit and load against durable storage.
        recovery: Debounced crash-recovery mirror, if enabled.
        current_subject: Subject of the most recently opened consumer.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        recovery_storage: KeyValueStorage | None = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        recovery_key_prefix: str = DEFAULT_RECOVERY_PREFIX,
        debounce_seconds: float | None = None,
        annotation_subjects: Iterable[str] = (DEFAULT_SUBJECT,),
        highlight_color: str = DEFAULT_HIGHLIGHT_COLOR,
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        self.store = AnnotationStore()
        self.registry = ConsumerRegistry()
        self.documents = DocumentModel(self.store, clock)
        self.engine = AnnotationEngine(
            self.store, highlight_color=highlight_color, clock=clock
        )
        self.bridge = PersistenceBridge(self.store, storage, key_prefix=key_prefix)
        self.recovery: RecoveryMirror | None = None
        if recovery_storage is not None:
            self.recovery = RecoveryMirror(
                self.store,
                recovery_storage,
                key_prefix=recovery_key_prefix,
                debounce_seconds=debounce_seconds,
            )
            self.engine.add_listener(self.recovery.mark_dirty)
        self.annotation_subjects = frozenset(annotation_subjects)
        self.current_subject: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> AnnotationSession:
        """Build a session whose storages come from configuration."""
        if settings is None:
            settings = get_settings()

        recovery_storage = None
        if settings.recovery.enabled:
            recovery_storage = create_storage(settings.recovery.url)
        return cls(
            create_storage(settings.storage.url),
            recovery_storage=recovery_storage,
            key_prefix=settings.storage.key_prefix,
            recovery_key_prefix=settings.recovery.key_prefix,
            debounce_seconds=settings.recovery.debounce_seconds,
            annotation_subjects=settings.annotation.subjects,
            highlight_color=settings.annotation.highlight_color,
        )

    @property
    def annotation_enabled(self) -> bool:
        """True if the current subject allows annotation."""
        return self.current_subject in self.annotation_subjects

    async def open_document(
        self, consumer: ConsumerKey, document_id: str, markup: str
    ) -> str:
        """Bind *consumer* to a passage and return its annotated markup.

        The first consumer to open a passage creates it; persisted and then
        recovered annotations are overlaid on the fresh document.  A consumer
        already bound elsewhere keeps its original passage.  A missing id or
        markup leaves the registry untouched and yields ``""``.
        """
        if not document_id or not markup:
            logger.warning(
                "Cannot open passage for %s: id and markup are required", consumer
            )
            return ""
        self.current_subject = consumer.subject
        if not self.registry.bind(consumer, document_id):
            document_id = self.registry.resolve(consumer) or document_id
        elif self.documents.load(document_id, markup):
            await self.bridge.load_one(document_id)
            if self.recovery is not None:
                await self.recovery.recover(document_id)
        return self.documents.get_annotated_form(document_id)

    def document_for(self, consumer: ConsumerKey) -> str | None:
        return self.registry.resolve(consumer)

    def annotated_for(self, consumer: ConsumerKey) -> str:
        """Annotated markup of the passage bound to *consumer* (``""`` if none)."""
        document_id = self.registry.resolve(consumer)
        if document_id is None:
            return ""
        return self.documents.get_annotated_form(document_id)

    async def recover(self) -> list[str]:
        """Restore uncommitted state left by a previous run, if mirrored."""
        if self.recovery is None:
            return []
        return await self.recovery.recover_all()

    async def submit(self) -> CommitReport:
        """Commit point: write every document to durable storage.

        Recovery records are discarded once everything has been written.
        """
        if self.recovery is not None:
            await self.recovery.persist_all_dirty()
        report = await self.bridge.commit_all()
        if self.recovery is not None and report.ok:
            await self.recovery.discard_all()
        return report

    async def reset(self) -> None:
        """Start a new test: forget all transient state and bindings.

        Durable records are kept.
        """
        if self.recovery is not None:
            await self.recovery.discard_all()
        dropped = self.store.reset()
        self.registry.reset()
        self.current_subject = None
        logger.info("Session reset (%d documents dropped)", dropped)

    def export_all(self) -> dict[str, dict[str, Any]]:
        return self.store.export_all()

    def import_all(self, snapshot: Mapping[str, Any]) -> list[str]:
        """Merge an exported snapshot into the store.

        Imported documents are committed with the next ``submit``.
        """
        imported = self.store.import_all(snapshot)
        if self.recovery is not None:
            for document_id in imported:
                self.recovery.mark_dirty(document_id)
        return imported

    async def close(self) -> None:
        """Flush recovery state and release storage connections."""
        if self.recovery is not None:
            await self.recovery.persist_all_dirty()
            await self.recovery.storage.close()
        await self.bridge.storage.close()
