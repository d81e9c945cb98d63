"""Paragraph snapshots and block structure of a passage tree.

Each document keeps a list of its paragraphs' serialised outer markup,
recomputed after every mutation and persisted alongside the annotated
markup.  Block detection also decides where an annotation range is split so
that spans never enclose paragraph-level elements.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from passagenotes.markup.tree import Element, iter_nodes, parse_markup, serialize

if TYPE_CHECKING:
    from passagenotes.markup.tree import NodePath

PARAGRAPH_TAG = "p"

# Elements that a highlight span must never enclose.  A selection crossing
# one of these boundaries is split into one span per block run.
BLOCK_TAGS: frozenset[str] = frozenset(
    (
        "p",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "blockquote",
        "div",
        "li",
        "ul",
        "ol",
        "table",
        "thead",
        "tbody",
        "tfoot",
        "tr",
        "td",
        "th",
        "section",
        "article",
        "aside",
        "header",
        "footer",
        "nav",
        "main",
        "figure",
        "figcaption",
        "pre",
        "dl",
        "dt",
        "dd",
    )
)


def paragraph_snapshots(root: Element) -> list[str]:
    """Serialise every ``<p>`` element under *root*, in document order."""
    return [
        serialize(node)
        for _, node in iter_nodes(root)
        if isinstance(node, Element) and node.tag == PARAGRAPH_TAG
    ]


def paragraph_snapshots_from_markup(markup: str) -> list[str]:
    """Parse *markup* and return its paragraph snapshots."""
    return paragraph_snapshots(parse_markup(markup))


def block_ancestor(root: Element, path: NodePath) -> NodePath:
    """Return the path of the nearest block element enclosing *path*.

    The node at *path* itself is not considered.  Returns ``()`` (the
    document root) when no block element encloses it.
    """
    node: Element = root
    nearest: NodePath = ()
    for depth, index in enumerate(path[:-1]):
        child = node.children[index]
        if not isinstance(child, Element):
            break
        if child.tag in BLOCK_TAGS:
            nearest = path[: depth + 1]
        node = child
    return nearest
