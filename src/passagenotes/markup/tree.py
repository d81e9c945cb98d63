"""Passage markup tree: parsing, serialisation, and structural helpers.

Passages arrive as HTML fragments. They are parsed once with selectolax into
a small mutable node tree (``Element`` / ``Text``) that the annotation engine
transforms without a browser DOM.  Serialising a parsed tree and parsing the
result again yields an equal tree, so node paths computed against one parse
of a canonical string stay valid against any other parse of it.
"""

# Pattern: Functional Core (pure parsing and tree helpers)

from __future__ import annotations

import html as html_module
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from selectolax.lexbor import LexborHTMLParser

from passagenotes.errors import InvalidPathError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

logger = logging.getLogger(__name__)

# Synthetic tag for the container that holds a passage's top-level nodes.
ROOT_TAG = "#root"

# Tags dropped entirely during parsing (never part of readable content)
_STRIP_TAGS = frozenset(("script", "style", "noscript", "template"))

# The parser drops one newline right after these start tags
_NEWLINE_DROPPING_TAGS = frozenset(("pre", "textarea", "listing"))

# Void elements serialise without a closing tag
VOID_TAGS = frozenset(
    (
        "area",
        "base",
        "br",
        "col",
        "embed",
        "hr",
        "img",
        "input",
        "link",
        "meta",
        "source",
        "track",
        "wbr",
    )
)

type NodePath = tuple[int, ...]


@dataclass
class Text:
    """A run of character data."""

    data: str


@dataclass
class Element:
    """An element node with ordered children.

    Equality is structural (tag, attributes and children), which is what
    tests compare.  Code that needs identity must use ``is``.
    """

    tag: str
    attrs: dict[str, str | None] = field(default_factory=dict)
    children: list[Node] = field(default_factory=list)

    def shallow_clone(self) -> Element:
        """Copy tag and attributes, without children."""
        return Element(self.tag, dict(self.attrs), [])

    def child_index(self, child: Node) -> int:
        """Return the position of *child* in this element, by identity."""
        for i, candidate in enumerate(self.children):
            if candidate is child:
                return i
        msg = f"{child!r} is not a child of <{self.tag}>"
        raise InvalidPathError(msg)


type Node = Text | Element


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _convert(node: Any) -> Node | None:
    """Convert a selectolax node into a tree node, or ``None`` to skip it."""
    tag = node.tag

    # selectolax reports text nodes with the tag "-text"
    if tag == "-text":
        text = node.text_content
        return Text(text) if text else None

    # Comments, doctype and stripped tags carry no readable content
    if not tag or tag[0] in "-_!" or tag in _STRIP_TAGS:
        return None

    element = Element(tag, dict(node.attributes))
    child = node.child
    while child is not None:
        converted = _convert(child)
        if converted is not None:
            element.children.append(converted)
        child = child.next
    return element


def parse_markup(markup: str) -> Element:
    """Parse an HTML fragment into a normalised tree under a ``#root`` element.

    Args:
        markup: Passage HTML (fragment or full document).

    Returns:
        Root element whose children are the fragment's top-level nodes.
    """
    root = Element(ROOT_TAG)
    if not markup:
        return root

    tree = LexborHTMLParser(markup)
    body = tree.body
    source = body if body is not None else tree.root
    if source is None:
        return root

    child = source.child
    while child is not None:
        converted = _convert(child)
        if converted is not None:
            root.children.append(converted)
        child = child.next

    normalize(root)
    return root


def canonicalize(markup: str) -> str:
    """Return the canonical serialisation of *markup*."""
    return serialize_children(parse_markup(markup))


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def _serialize_attrs(attrs: dict[str, str | None]) -> str:
    parts: list[str] = []
    for name, value in attrs.items():
        if value is None:
            parts.append(f" {name}")
        else:
            parts.append(f' {name}="{html_module.escape(value, quote=True)}"')
    return "".join(parts)


def _serialize_into(node: Node, out: list[str]) -> None:
    if isinstance(node, Text):
        out.append(html_module.escape(node.data, quote=False))
        return

    out.append(f"<{node.tag}{_serialize_attrs(node.attrs)}>")
    if node.tag in VOID_TAGS:
        return
    if node.tag in _NEWLINE_DROPPING_TAGS and node.children:
        first = node.children[0]
        if isinstance(first, Text) and first.data.startswith("\n"):
            out.append("\n")
    for child in node.children:
        _serialize_into(child, out)
    out.append(f"</{node.tag}>")


def serialize(node: Node) -> str:
    """Serialise a node including its own tag (outer markup)."""
    if isinstance(node, Element) and node.tag == ROOT_TAG:
        return serialize_children(node)
    out: list[str] = []
    _serialize_into(node, out)
    return "".join(out)


def serialize_children(element: Element) -> str:
    """Serialise the children of *element* (inner markup)."""
    out: list[str] = []
    for child in element.children:
        _serialize_into(child, out)
    return "".join(out)


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def normalize(
    element: Element,
    *,
    drop_empty: Callable[[Element], bool] | None = None,
) -> None:
    """Merge adjacent text runs and drop empty ones, recursively and in place.

    Element objects are kept (identity is preserved), so callers holding
    references to elements can still locate them afterwards.

    Args:
        element: Subtree root to normalise.
        drop_empty: Optional predicate; childless elements matching it are
            removed (used to discard empty annotation spans).
    """
    kept: list[Node] = []
    for child in element.children:
        if isinstance(child, Text):
            if child.data:
                kept.append(child)
            continue
        normalize(child, drop_empty=drop_empty)
        if drop_empty is not None and not child.children and drop_empty(child):
            continue
        kept.append(child)
    # Dropping an element can leave two text runs side by side
    element.children = _merge_text_runs(kept)


def _merge_text_runs(nodes: list[Node]) -> list[Node]:
    result: list[Node] = []
    for node in nodes:
        previous = result[-1] if result else None
        if isinstance(node, Text) and isinstance(previous, Text):
            previous.data += node.data
            continue
        result.append(node)
    return result


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def node_at(root: Element, path: NodePath) -> Node:
    """Resolve a child-index path from *root*.

    Raises:
        InvalidPathError: If any step is out of range or descends into text.
    """
    node: Node = root
    for depth, index in enumerate(path):
        if not isinstance(node, Element):
            msg = f"Path {path!r} descends into a text node at depth {depth}"
            raise InvalidPathError(msg)
        if index < 0 or index >= len(node.children):
            msg = f"Path {path!r} is out of range at depth {depth}"
            raise InvalidPathError(msg)
        node = node.children[index]
    return node


def element_at(root: Element, path: NodePath) -> Element:
    """Resolve *path* and require the result to be an element."""
    node = node_at(root, path)
    if not isinstance(node, Element):
        msg = f"Path {path!r} addresses a text node, not an element"
        raise InvalidPathError(msg)
    return node


def iter_nodes(root: Element) -> Iterator[tuple[NodePath, Node]]:
    """Yield ``(path, node)`` for every descendant of *root* in document order."""

    def _walk(element: Element, prefix: NodePath) -> Iterator[tuple[NodePath, Node]]:
        for i, child in enumerate(element.children):
            path = (*prefix, i)
            yield path, child
            if isinstance(child, Element):
                yield from _walk(child, path)

    return _walk(root, ())


def iter_text_nodes(root: Element) -> Iterator[tuple[NodePath, Text]]:
    """Yield ``(path, text_node)`` for every text node in document order."""
    for path, node in iter_nodes(root):
        if isinstance(node, Text):
            yield path, node


def path_of(root: Element, target: Node) -> NodePath | None:
    """Find the path of *target* (by identity), or ``None`` if detached."""
    for path, node in iter_nodes(root):
        if node is target:
            return path
    return None


def text_content(node: Node) -> str:
    """Concatenate all character data under *node*."""
    if isinstance(node, Text):
        return node.data
    return "".join(text.data for _, text in iter_text_nodes(node))
