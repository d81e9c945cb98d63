"""Stateful annotation engine.

Applies the pure transformations in ``wrapping`` to a document's annotated
markup and writes the result back into the store.  Every public operation is
safe to call from a host event handler: bad input is logged and ignored, and
an unexpected failure leaves the stored state exactly as it was.

The engine never writes durable storage.  Listeners registered with
``add_listener`` are told about each successful mutation (the recovery mirror
uses this).
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from passagenotes.annotation import wrapping
from passagenotes.annotation.store import epoch_millis
from passagenotes.annotation.wrapping import AnnotationStyle
from passagenotes.errors import (
    InvalidPathError,
    InvalidRangeError,
    NotAnAnnotationError,
)
from passagenotes.markup.marker_constants import DEFAULT_HIGHLIGHT_COLOR
from passagenotes.markup.paragraphs import paragraph_snapshots
from passagenotes.markup.tree import parse_markup, serialize_children

if TYPE_CHECKING:
    from collections.abc import Callable

    from passagenotes.annotation.ranges import Range
    from passagenotes.annotation.store import AnnotationStore
    from passagenotes.annotation.wrapping import AnnotationInfo
    from passagenotes.markup.tree import Element, NodePath

logger = logging.getLogger(__name__)

type MutationListener = Callable[[str], None]

# Rejected input: logged at WARNING, no traceback
_INPUT_ERRORS = (InvalidPathError, InvalidRangeError, NotAnAnnotationError)


class Gesture(Enum):
    """Pointer gestures on an existing span."""

    DOUBLE_ACTIVATE = "double"
    SECONDARY_ACTIVATE = "secondary"


class AnnotationEngine:
    """Creates, removes and restyles annotation spans in stored documents."""

    def __init__(
        self,
        store: AnnotationStore,
        *,
        highlight_color: str = DEFAULT_HIGHLIGHT_COLOR,
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        self.store = store
        self.highlight_color = highlight_color
        self._clock = clock
        self._listeners: list[MutationListener] = []

    def add_listener(self, listener: MutationListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MutationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, document_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(document_id)
            except Exception:
                logger.exception("Mutation listener failed for %s", document_id)

    def _mutate[T](
        self,
        document_id: str,
        action: str,
        transform: Callable[[Element], tuple[Element, T]],
    ) -> tuple[bool, T | None]:
        """Run *transform* on a parsed copy of the annotated markup.

        The new state is only stored if the transform returns normally.
        """
        state = self.store.get(document_id)
        if state is None:
            logger.warning("Cannot %s: unknown document %s", action, document_id)
            return False, None

        try:
            tree, result = transform(parse_markup(state.annotated))
        except _INPUT_ERRORS as exc:
            logger.warning("Cannot %s in %s: %s", action, document_id, exc)
            return False, None
        except Exception:
            logger.exception("Failed to %s in %s", action, document_id)
            return False, None

        self.store.upsert(
            document_id,
            state.model_copy(
                update={
                    "annotated": serialize_children(tree),
                    "paragraphs": tuple(paragraph_snapshots(tree)),
                    "last_modified": max(self._clock(), state.last_modified + 1),
                }
            ),
        )
        logger.debug("%s applied to %s", action, document_id)
        self._notify(document_id)
        return True, result

    def create_annotation(
        self,
        document_id: str,
        rng: Range,
        style: AnnotationStyle = AnnotationStyle.HIGHLIGHT,
    ) -> list[NodePath]:
        """Wrap *rng* in span(s) of *style*.

        Returns:
            Paths of the new spans, or ``[]`` if nothing was created.
        """

        def transform(root: Element) -> tuple[Element, list[NodePath]]:
            return wrapping.wrap(root, rng, style, color=self.highlight_color)

        applied, paths = self._mutate(document_id, "create annotation", transform)
        return paths if applied and paths else []

    def remove_annotation(self, document_id: str, span_path: NodePath) -> bool:
        applied, _ = self._mutate(
            document_id,
            "remove annotation",
            lambda root: (wrapping.unwrap(root, span_path), None),
        )
        return applied

    def toggle_strike(self, document_id: str, span_path: NodePath) -> bool:
        applied, _ = self._mutate(
            document_id,
            "toggle strike-through",
            lambda root: (wrapping.toggle_strike(root, span_path), None),
        )
        return applied

    def set_style(
        self, document_id: str, span_path: NodePath, style: AnnotationStyle
    ) -> bool:
        applied, _ = self._mutate(
            document_id,
            "restyle annotation",
            lambda root: (wrapping.restyle(root, span_path, style), None),
        )
        return applied

    def clear_annotations(self, document_id: str) -> bool:
        """Remove every span from a document, keeping its text."""
        applied, _ = self._mutate(
            document_id,
            "clear annotations",
            lambda root: (wrapping.clear_annotations(root), None),
        )
        return applied

    def activate(self, document_id: str, span_path: NodePath, gesture: Gesture) -> bool:
        """Map a gesture on a span to its intent."""
        match gesture:
            case Gesture.DOUBLE_ACTIVATE:
                return self.remove_annotation(document_id, span_path)
            case Gesture.SECONDARY_ACTIVATE:
                return self.toggle_strike(document_id, span_path)
        logger.warning("Ignoring unknown gesture %r", gesture)
        return False

    def annotations(self, document_id: str) -> list[AnnotationInfo]:
        state = self.store.get(document_id)
        if state is None:
            return []
        return wrapping.list_annotations(parse_markup(state.annotated))
