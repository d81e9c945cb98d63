"""Pure tree transformations for annotation spans.

``wrap`` inserts highlight spans for a range, ``unwrap`` removes one span and
splices its children back, ``toggle_strike`` flips a span's strike-through.
Each returns a new tree and leaves its input untouched, so a failure midway
can never corrupt the caller's state.

Wrapping never encloses block elements: a range crossing paragraph (or other
block) boundaries becomes one span per consecutive run of text sharing the
same nearest block ancestor.  Inside a run, inline elements that are only
partially covered are split in two (the DOM ``extractContents`` behaviour),
which is also how a new span nests inside or around existing spans.
"""

# Pattern: Functional Core (tree in, tree out)

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import StrEnum
from itertools import groupby
from typing import TYPE_CHECKING

from passagenotes.annotation.ranges import OffsetIndex
from passagenotes.errors import (
    InvalidPathError,
    InvalidRangeError,
    NotAnAnnotationError,
)
from passagenotes.markup.marker_constants import (
    DEFAULT_HIGHLIGHT_COLOR,
    HIGHLIGHT_CSS_TEMPLATE,
    MARKER_ATTRIBUTE,
    MARKER_CLASS,
    MARKER_TAG,
    STRIKE_CSS,
    STRIKE_PATTERN,
    TEXT_DECORATION_PATTERN,
)
from passagenotes.markup.paragraphs import block_ancestor
from passagenotes.markup.tree import (
    Element,
    Text,
    element_at,
    iter_nodes,
    node_at,
    normalize,
    path_of,
    text_content,
)

if TYPE_CHECKING:
    from passagenotes.annotation.ranges import Range
    from passagenotes.markup.tree import Node, NodePath

# Insertion position: (parent, node the position precedes, or None for the end)
type _Boundary = tuple[Element, Node | None]

# A covered piece of one text node: (path, node, local start, local end)
type _Piece = tuple[NodePath, Text, int, int]


class AnnotationStyle(StrEnum):
    """Visual style of an annotation span."""

    HIGHLIGHT = "highlight"
    HIGHLIGHT_STRIKE = "highlight+strikethrough"

    @property
    def strikethrough(self) -> bool:
        return self is AnnotationStyle.HIGHLIGHT_STRIKE

    def toggled(self) -> AnnotationStyle:
        if self.strikethrough:
            return AnnotationStyle.HIGHLIGHT
        return AnnotationStyle.HIGHLIGHT_STRIKE


@dataclass(frozen=True, slots=True)
class AnnotationInfo:
    """Read-only description of one span, as listed for a host."""

    path: NodePath
    text: str
    style: AnnotationStyle


# ---------------------------------------------------------------------------
# Span markers
# ---------------------------------------------------------------------------


def is_annotation(node: Node) -> bool:
    """Return True if *node* is an annotation span."""
    if not isinstance(node, Element) or node.tag != MARKER_TAG:
        return False
    if MARKER_ATTRIBUTE in node.attrs:
        return True
    return MARKER_CLASS in (node.attrs.get("class") or "").split()


def span_style(span: Element) -> AnnotationStyle:
    """Read the style of an annotation span from its inline CSS."""
    if STRIKE_PATTERN.search(span.attrs.get("style") or ""):
        return AnnotationStyle.HIGHLIGHT_STRIKE
    return AnnotationStyle.HIGHLIGHT


def _apply_style(span: Element, style: AnnotationStyle) -> None:
    css = TEXT_DECORATION_PATTERN.sub("", span.attrs.get("style") or "").strip()
    if style.strikethrough:
        css = f"{css} {STRIKE_CSS}".strip()
    span.attrs["style"] = css


def make_span(
    style: AnnotationStyle = AnnotationStyle.HIGHLIGHT,
    color: str = DEFAULT_HIGHLIGHT_COLOR,
) -> Element:
    """Create an empty annotation span element."""
    span = Element(
        MARKER_TAG,
        {
            "class": MARKER_CLASS,
            MARKER_ATTRIBUTE: "true",
            "style": HIGHLIGHT_CSS_TEMPLATE.format(color=color),
        },
    )
    _apply_style(span, style)
    return span


# ---------------------------------------------------------------------------
# Wrapping internals (operate on object references, not paths)
# ---------------------------------------------------------------------------


def _parent_map(root: Element) -> dict[int, Element]:
    parents: dict[int, Element] = {}
    for path, node in iter_nodes(root):
        parent = element_at(root, path[:-1]) if len(path) > 1 else root
        parents[id(node)] = parent
    return parents


def _next_sibling(parent: Element, node: Node) -> Node | None:
    index = parent.child_index(node) + 1
    return parent.children[index] if index < len(parent.children) else None


def _text_boundary(parents: dict[int, Element], text: Text, offset: int) -> _Boundary:
    """Turn a text offset into a boundary between siblings, splitting if needed."""
    parent = parents[id(text)]
    if offset <= 0:
        return parent, text
    if offset >= len(text.data):
        return parent, _next_sibling(parent, text)

    tail = Text(text.data[offset:])
    text.data = text.data[:offset]
    parent.children.insert(parent.child_index(text) + 1, tail)
    parents[id(tail)] = parent
    return parent, tail


def _deepest_common(
    parents: dict[int, Element], first: Element, second: Element
) -> Element:
    seen: set[int] = set()
    node: Element | None = first
    while node is not None:
        seen.add(id(node))
        node = parents.get(id(node))

    node = second
    while node is not None:
        if id(node) in seen:
            return node
        node = parents.get(id(node))
    msg = "Boundaries do not share a common ancestor"
    raise InvalidRangeError(msg)


def _lift(
    parents: dict[int, Element], boundary: _Boundary, target: Element
) -> _Boundary:
    """Move a boundary up to *target*, splitting partially covered elements."""
    parent, ref = boundary
    while parent is not target:
        grand = parents[id(parent)]
        if ref is None:
            ref = _next_sibling(grand, parent)
        elif ref is parent.children[0]:
            ref = parent
        else:
            index = parent.child_index(ref)
            clone = parent.shallow_clone()
            clone.children = parent.children[index:]
            parent.children = parent.children[:index]
            for moved in clone.children:
                parents[id(moved)] = clone
            grand.children.insert(grand.child_index(parent) + 1, clone)
            parents[id(clone)] = grand
            ref = clone
        parent = grand
    return parent, ref


def _boundary_index(boundary: _Boundary) -> int:
    parent, ref = boundary
    return len(parent.children) if ref is None else parent.child_index(ref)


def _wrap_run(parents: dict[int, Element], run: list[_Piece], span: Element) -> bool:
    """Wrap one block-local run of covered text in *span*."""
    _, first_text, first_start, _ = run[0]
    _, last_text, _, last_end = run[-1]

    # End first: splitting the end node never moves the start node
    end = _text_boundary(parents, last_text, last_end)
    start = _text_boundary(parents, first_text, first_start)

    common = _deepest_common(parents, start[0], end[0])
    end = _lift(parents, end, common)
    start = _lift(parents, start, common)

    lo = _boundary_index(start)
    hi = _boundary_index(end)
    if lo >= hi:
        return False

    span.children = common.children[lo:hi]
    common.children[lo:hi] = [span]
    for moved in span.children:
        parents[id(moved)] = span
    parents[id(span)] = common
    return True


def _covered_runs(
    root: Element, index: OffsetIndex, start: int, end: int
) -> list[list[_Piece]]:
    covered: list[_Piece] = []
    for path, text, offset in index.text_nodes:
        node_end = offset + len(text.data)
        if offset < end and node_end > start:
            covered.append(
                (path, text, max(start, offset) - offset, min(end, node_end) - offset)
            )

    runs = [
        list(group)
        for _, group in groupby(
            covered, key=lambda piece: block_ancestor(root, piece[0])
        )
    ]
    if len(runs) > 1:
        # Whitespace between blocks is formatting, not content
        runs = [
            run
            for run in runs
            if any(text.data[lo:hi].strip() for _, text, lo, hi in run)
        ]
    return runs


# ---------------------------------------------------------------------------
# Public transformations
# ---------------------------------------------------------------------------


def wrap(
    root: Element,
    rng: Range,
    style: AnnotationStyle = AnnotationStyle.HIGHLIGHT,
    *,
    color: str = DEFAULT_HIGHLIGHT_COLOR,
) -> tuple[Element, list[NodePath]]:
    """Wrap the content covered by *rng* in annotation spans.

    Args:
        root: Document root (not modified).
        rng: Range resolved against *root*.
        style: Style of the new span(s).
        color: Highlight background colour.

    Returns:
        The new tree and the paths of the created spans in document order.

    Raises:
        InvalidPathError: If the range does not resolve against *root*.
        InvalidRangeError: If the range covers no text.
    """
    tree = copy.deepcopy(root)
    index = OffsetIndex(tree)
    start = index.to_offset(rng.start)
    end = index.to_offset(rng.end)
    if end < start:
        start, end = end, start
    if start == end:
        msg = "Range is collapsed"
        raise InvalidRangeError(msg)

    runs = _covered_runs(tree, index, start, end)
    if not runs:
        msg = "Range covers no text"
        raise InvalidRangeError(msg)

    parents = _parent_map(tree)
    spans: list[Element] = []
    # Last run first, so earlier runs are untouched when they are wrapped
    for run in reversed(runs):
        span = make_span(style, color)
        if _wrap_run(parents, run, span):
            spans.append(span)
    spans.reverse()

    normalize(tree, drop_empty=is_annotation)
    paths = [path for span in spans if (path := path_of(tree, span)) is not None]
    return tree, paths


def _require_span(tree: Element, span_path: NodePath) -> Element:
    if not span_path:
        msg = "The document root is not an annotation span"
        raise InvalidPathError(msg)
    node = node_at(tree, span_path)
    if not isinstance(node, Element) or not is_annotation(node):
        msg = f"Node at {span_path!r} is not an annotation span"
        raise NotAnAnnotationError(msg)
    return node


def unwrap(root: Element, span_path: NodePath) -> Element:
    """Remove the span at *span_path*, splicing its children into place.

    Raises:
        InvalidPathError: If the path does not resolve.
        NotAnAnnotationError: If the node there is not a span.
    """
    tree = copy.deepcopy(root)
    span = _require_span(tree, span_path)
    parent = element_at(tree, span_path[:-1])
    index = span_path[-1]
    parent.children[index : index + 1] = span.children
    normalize(tree, drop_empty=is_annotation)
    return tree


def restyle(root: Element, span_path: NodePath, style: AnnotationStyle) -> Element:
    """Set the style of the span at *span_path* without moving its boundaries."""
    tree = copy.deepcopy(root)
    _apply_style(_require_span(tree, span_path), style)
    return tree


def toggle_strike(root: Element, span_path: NodePath) -> Element:
    """Flip strike-through on the span at *span_path*."""
    tree = copy.deepcopy(root)
    span = _require_span(tree, span_path)
    _apply_style(span, span_style(span).toggled())
    return tree


def _strip_spans(element: Element) -> None:
    children: list[Node] = []
    for child in element.children:
        if isinstance(child, Element):
            _strip_spans(child)
            if is_annotation(child):
                children.extend(child.children)
                continue
        children.append(child)
    element.children = children


def clear_annotations(root: Element) -> Element:
    """Remove every annotation span, keeping the content."""
    tree = copy.deepcopy(root)
    _strip_spans(tree)
    normalize(tree, drop_empty=is_annotation)
    return tree


def list_annotations(root: Element) -> list[AnnotationInfo]:
    """Describe every span under *root* in document order."""
    return [
        AnnotationInfo(path, text_content(node), span_style(node))
        for path, node in iter_nodes(root)
        if isinstance(node, Element) and is_annotation(node)
    ]
