"""In-memory annotation store.

Holds one ``DocumentState`` per document id.  States are immutable; every
mutation replaces the entry.  The store is the single source of truth during
a session and is written to durable storage only at commit points.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

logger = logging.getLogger(__name__)


def epoch_millis() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


class DocumentState(BaseModel):
    """Annotated state of one passage.

    ``original`` is the canonical markup captured at first load and is never
    changed.  ``annotated`` starts equal to it and accumulates spans.
    ``raw`` and ``highlighted`` are accepted on input for older snapshots.
    """

    model_config = ConfigDict(frozen=True)

    original: str = Field(validation_alias=AliasChoices("original", "raw"))
    annotated: str = Field(validation_alias=AliasChoices("annotated", "highlighted"))
    paragraphs: tuple[str, ...] = ()
    last_modified: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("lastModified", "last_modified"),
        serialization_alias="lastModified",
    )

    @property
    def pristine(self) -> bool:
        """True while no annotation has been applied."""
        return self.annotated == self.original


class AnnotationStore:
    """Keyed collection of document states."""

    def __init__(self) -> None:
        self._documents: dict[str, DocumentState] = {}
        # Bumped by reset/remove so in-flight commits can detect them
        self.generation = 0

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._documents

    def __len__(self) -> int:
        return len(self._documents)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._documents))

    def get(self, document_id: str) -> DocumentState | None:
        return self._documents.get(document_id)

    def upsert(self, document_id: str, state: DocumentState) -> None:
        self._documents[document_id] = state

    def remove(self, document_id: str) -> bool:
        removed = self._documents.pop(document_id, None) is not None
        if removed:
            self.generation += 1
        return removed

    def reset(self) -> int:
        """Drop every document. Returns how many were dropped."""
        count = len(self._documents)
        self._documents.clear()
        self.generation += 1
        logger.debug("Annotation store reset (%d documents dropped)", count)
        return count

    def ids(self) -> list[str]:
        return list(self._documents)

    def export_all(self) -> dict[str, dict[str, Any]]:
        """Deep copy of every state as plain dicts (``lastModified`` key)."""
        return {
            document_id: state.model_dump(mode="json", by_alias=True)
            for document_id, state in self._documents.items()
        }

    def import_all(self, snapshot: Mapping[str, Any]) -> list[str]:
        """Merge a snapshot into the store, overwriting matching ids.

        Invalid entries are logged and skipped.

        Returns:
            Ids that were imported.
        """
        imported: list[str] = []
        for document_id, payload in snapshot.items():
            if not isinstance(document_id, str) or not document_id:
                logger.warning(
                    "Skipping snapshot entry with invalid id %r", document_id
                )
                continue
            try:
                state = DocumentState.model_validate(payload)
            except ValidationError as exc:
                logger.warning(
                    "Skipping invalid snapshot entry %s: %d errors",
                    document_id,
                    exc.error_count(),
                )
                continue
            self._documents[document_id] = state
            imported.append(document_id)
        logger.info("Imported %d of %d documents", len(imported), len(snapshot))
        return imported
