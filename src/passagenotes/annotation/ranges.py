"""Selection-to-range resolution.

A host reports a selection as two boundary points inside its rendered tree.
This module checks that the selection lies inside the passage container and
is not collapsed, then produces a ``Range`` in document coordinates that the
annotation engine can apply.  A ``Range`` is only meaningful for the markup
it was resolved against and is never stored.

Boundary points follow DOM conventions: for a text node the offset counts
characters, for an element it counts children.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from passagenotes.errors import InvalidPathError, InvalidRangeError
from passagenotes.markup.tree import Element, Text, iter_text_nodes, node_at

if TYPE_CHECKING:
    from passagenotes.markup.tree import NodePath

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Point:
    """A boundary point: a node path plus an offset within that node."""

    path: NodePath
    offset: int


@dataclass(frozen=True, slots=True)
class Selection:
    """A live selection as reported by the host (may run backwards)."""

    anchor: Point
    focus: Point

    @property
    def is_collapsed(self) -> bool:
        return self.anchor == self.focus


@dataclass(frozen=True, slots=True)
class Range:
    """A forward range in document coordinates.

    Attributes:
        common_ancestor: Path of the deepest node containing both points.
        start: Start boundary (inclusive).
        end: End boundary (exclusive).
    """

    common_ancestor: NodePath
    start: Point
    end: Point


class OffsetIndex:
    """Character extents of every node, in document order.

    Offsets are positions in the concatenation of all text nodes under the
    root, which is also the coordinate space of ``range_from_text_offsets``.
    """

    def __init__(self, root: Element) -> None:
        self.root = root
        self.extents: dict[NodePath, tuple[int, int]] = {}
        self.text_nodes: list[tuple[NodePath, Text, int]] = []
        self.length = self._measure(root, ())
        self.extents[()] = (0, self.length)

    def _measure(self, element: Element, prefix: NodePath, start: int = 0) -> int:
        cursor = start
        for i, child in enumerate(element.children):
            path = (*prefix, i)
            child_start = cursor
            if isinstance(child, Text):
                self.text_nodes.append((path, child, cursor))
                cursor += len(child.data)
            else:
                cursor = self._measure(child, path, cursor)
            self.extents[path] = (child_start, cursor)
        return cursor

    def to_offset(self, point: Point) -> int:
        """Convert a boundary point to a character offset.

        Raises:
            InvalidPathError: If the point's path does not resolve.
            InvalidRangeError: If the offset is outside the node.
        """
        node = node_at(self.root, point.path)
        if isinstance(node, Text):
            if not 0 <= point.offset <= len(node.data):
                msg = f"Offset {point.offset} outside text node at {point.path!r}"
                raise InvalidRangeError(msg)
            return self.extents[point.path][0] + point.offset

        if not 0 <= point.offset <= len(node.children):
            msg = f"Offset {point.offset} outside element at {point.path!r}"
            raise InvalidRangeError(msg)
        if point.offset < len(node.children):
            return self.extents[(*point.path, point.offset)][0]
        return self.extents[point.path][1]


def _common_prefix(a: NodePath, b: NodePath) -> NodePath:
    shared: list[int] = []
    for x, y in zip(a, b, strict=False):
        if x != y:
            break
        shared.append(x)
    return tuple(shared)


def make_range(root: Element, start: Point, end: Point) -> Range:
    """Build a forward ``Range`` from two points, ordering them if needed.

    Raises:
        InvalidPathError: If either point does not resolve.
        InvalidRangeError: If the points cover no characters.
    """
    index = OffsetIndex(root)
    start_offset = index.to_offset(start)
    end_offset = index.to_offset(end)
    if start_offset == end_offset:
        msg = "Range is collapsed"
        raise InvalidRangeError(msg)
    if end_offset < start_offset:
        start, end = end, start
    return Range(_common_prefix(start.path, end.path), start, end)


def resolve_selection(
    root: Element,
    selection: Selection,
    container: NodePath = (),
) -> Range | None:
    """Resolve a host selection into a document ``Range``.

    Args:
        root: The host tree the selection points into.
        selection: Anchor and focus points, paths relative to *root*.
        container: Path of the element that holds the passage.  Both points
            must lie inside it; the returned range is relative to it.

    Returns:
        The range, or ``None`` if the selection is collapsed, crosses the
        container boundary, or does not resolve.
    """
    if selection.is_collapsed:
        logger.debug("Ignoring collapsed selection")
        return None

    depth = len(container)
    for point in (selection.anchor, selection.focus):
        if point.path[:depth] != container:
            logger.debug("Ignoring selection outside passage container")
            return None

    try:
        passage = node_at(root, container)
    except InvalidPathError:
        logger.warning("Passage container %r does not resolve", container)
        return None
    if not isinstance(passage, Element):
        logger.warning("Passage container %r is a text node", container)
        return None

    anchor = Point(selection.anchor.path[depth:], selection.anchor.offset)
    focus = Point(selection.focus.path[depth:], selection.focus.offset)
    try:
        return make_range(passage, anchor, focus)
    except InvalidPathError as exc:
        logger.warning("Selection does not resolve: %s", exc)
    except InvalidRangeError as exc:
        logger.debug("Ignoring selection: %s", exc)
    return None


def range_from_text_offsets(root: Element, start: int, end: int) -> Range | None:
    """Build a range from character offsets over the document's text.

    The start point lands in the first text node containing character
    *start*; the end point lands in the text node containing character
    ``end - 1``.  Returns ``None`` for empty or out-of-bounds spans.
    """
    if start < 0 or end <= start:
        return None

    index = OffsetIndex(root)
    if end > index.length:
        return None

    start_point: Point | None = None
    end_point: Point | None = None
    for path, text, offset in index.text_nodes:
        node_end = offset + len(text.data)
        if start_point is None and offset <= start < node_end:
            start_point = Point(path, start - offset)
        if offset < end <= node_end:
            end_point = Point(path, end - offset)
            break

    if start_point is None or end_point is None:
        return None
    return Range(
        _common_prefix(start_point.path, end_point.path), start_point, end_point
    )


def find_text_range(root: Element, needle: str, occurrence: int = 0) -> Range | None:
    """Build a range covering the *occurrence*-th match of *needle*."""
    if not needle:
        return None
    haystack = "".join(text.data for _, text in iter_text_nodes(root))
    position = -1
    for _ in range(occurrence + 1):
        position = haystack.find(needle, position + 1)
        if position == -1:
            return None
    return range_from_text_offsets(root, position, position + len(needle))
