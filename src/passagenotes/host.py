"""Host-tree adapter.

A host page is a markup tree containing one passage container, the element
marked ``data-passage-container="true"``.  ``PassageView`` renders annotated
markup into that container; ``SelectionController`` turns the host's pointer
events into engine calls.  Paths reported by the host are relative to the
page root and are rebased onto the container before reaching the engine.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from passagenotes.annotation.engine import Gesture
from passagenotes.annotation.ranges import resolve_selection
from passagenotes.annotation.wrapping import AnnotationStyle
from passagenotes.markup.marker_constants import CONTAINER_ATTRIBUTE
from passagenotes.markup.tree import (
    Element,
    iter_nodes,
    node_at,
    parse_markup,
    serialize_children,
)

if TYPE_CHECKING:
    from passagenotes.annotation.ranges import Range, Selection
    from passagenotes.annotation.registry import ConsumerKey
    from passagenotes.markup.tree import NodePath
    from passagenotes.session import AnnotationSession

logger = logging.getLogger(__name__)


class PassageView:
    """A host page with a passage container."""

    def __init__(self, page: Element | str) -> None:
        self.root = parse_markup(page) if isinstance(page, str) else page

    @property
    def container_path(self) -> NodePath | None:
        for path, node in iter_nodes(self.root):
            if not isinstance(node, Element):
                continue
            if node.attrs.get(CONTAINER_ATTRIBUTE) == "true":
                return path
        return None

    @property
    def container(self) -> Element | None:
        path = self.container_path
        if path is None:
            return None
        node = node_at(self.root, path)
        return node if isinstance(node, Element) else None

    def render(self, markup: str) -> bool:
        """Replace the container's content with *markup*."""
        container = self.container
        if container is None:
            logger.warning("No passage container in host page")
            return False
        container.children = parse_markup(markup).children
        return True

    def passage_markup(self) -> str:
        container = self.container
        return serialize_children(container) if container is not None else ""

    def page_markup(self) -> str:
        return serialize_children(self.root)


class SelectionController:
    """Routes host pointer events to the annotation engine.

    A released selection becomes the pending range; ``confirm`` applies it
    (the host typically shows a highlight button in between).
    """

    def __init__(self, session: AnnotationSession, view: PassageView) -> None:
        self.session = session
        self.view = view
        self.document_id: str | None = None
        self.pending: Range | None = None

    def show(self, consumer: ConsumerKey) -> bool:
        """Render the passage bound to *consumer* into the view."""
        self.pending = None
        document_id = self.session.document_for(consumer)
        if document_id is None:
            logger.warning("Consumer %s is not bound to a passage", consumer)
            self.document_id = None
            return False
        self.document_id = document_id
        return self.view.render(self.session.documents.get_annotated_form(document_id))

    def _refresh(self) -> None:
        if self.document_id is not None:
            documents = self.session.documents
            self.view.render(documents.get_annotated_form(self.document_id))

    def on_pointer_release(self, selection: Selection) -> Range | None:
        """Record the released selection as the pending range, if acceptable."""
        self.pending = None
        if not self.session.annotation_enabled:
            logger.debug("Annotation disabled for %s", self.session.current_subject)
            return None
        if self.document_id is None:
            return None
        container = self.view.container_path
        if container is None:
            logger.warning("No passage container in host page")
            return None
        self.pending = resolve_selection(self.view.root, selection, container)
        return self.pending

    def cancel(self) -> None:
        self.pending = None

    def confirm(
        self, style: AnnotationStyle = AnnotationStyle.HIGHLIGHT
    ) -> list[NodePath]:
        """Apply the pending range as a new annotation and re-render."""
        rng, self.pending = self.pending, None
        if rng is None or self.document_id is None:
            return []
        paths = self.session.engine.create_annotation(self.document_id, rng, style)
        if paths:
            self._refresh()
        return paths

    def _rebase(self, page_path: NodePath) -> NodePath | None:
        container = self.view.container_path
        if container is None or page_path[: len(container)] != container:
            return None
        return page_path[len(container) :]

    def _activate(self, page_path: NodePath, gesture: Gesture) -> bool:
        if self.document_id is None:
            return False
        span_path = self._rebase(page_path)
        if span_path is None:
            logger.debug("Ignoring gesture outside passage container")
            return False
        self.pending = None
        changed = self.session.engine.activate(self.document_id, span_path, gesture)
        if changed:
            self._refresh()
        return changed

    def on_double_activate(self, page_path: NodePath) -> bool:
        """Double activation on a span removes it."""
        return self._activate(page_path, Gesture.DOUBLE_ACTIVATE)

    def on_secondary_activate(self, page_path: NodePath) -> bool:
        """Secondary activation on a span toggles strike-through."""
        return self._activate(page_path, Gesture.SECONDARY_ACTIVATE)
