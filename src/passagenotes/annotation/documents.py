"""Document model: lazy creation and read access for passage states."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from passagenotes.annotation.store import DocumentState, epoch_millis
from passagenotes.markup.paragraphs import paragraph_snapshots
from passagenotes.markup.tree import parse_markup, serialize_children

if TYPE_CHECKING:
    from collections.abc import Callable

    from passagenotes.annotation.store import AnnotationStore

logger = logging.getLogger(__name__)


class DocumentModel:
    """Creates document states on first sight and serves their markup."""

    def __init__(
        self,
        store: AnnotationStore,
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        self.store = store
        self._clock = clock

    def load(self, document_id: str, raw_markup: str) -> bool:
        """Create the document from *raw_markup* unless it already exists.

        The markup is canonicalised so stored forms re-parse to the same tree.

        Returns:
            True if a new document was created.
        """
        if not document_id or not raw_markup:
            logger.warning(
                "Cannot load document %r: id and markup are required", document_id
            )
            return False
        if document_id in self.store:
            return False

        root = parse_markup(raw_markup)
        canonical = serialize_children(root)
        self.store.upsert(
            document_id,
            DocumentState(
                original=canonical,
                annotated=canonical,
                paragraphs=tuple(paragraph_snapshots(root)),
                last_modified=self._clock(),
            ),
        )
        logger.info("Loaded document %s (%d chars)", document_id, len(canonical))
        return True

    def get(self, document_id: str) -> DocumentState | None:
        return self.store.get(document_id)

    def get_annotated_form(self, document_id: str) -> str:
        state = self.store.get(document_id)
        return state.annotated if state is not None else ""

    def get_original_form(self, document_id: str) -> str:
        state = self.store.get(document_id)
        return state.original if state is not None else ""

    def get_paragraphs(self, document_id: str) -> list[str]:
        state = self.store.get(document_id)
        return list(state.paragraphs) if state is not None else []
