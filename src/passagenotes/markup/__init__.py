"""Passage markup: parsing, serialisation, and paragraph structure."""

from passagenotes.markup.paragraphs import (
    BLOCK_TAGS,
    paragraph_snapshots,
    paragraph_snapshots_from_markup,
)
from passagenotes.markup.tree import (
    Element,
    Text,
    canonicalize,
    node_at,
    parse_markup,
    path_of,
    serialize,
    serialize_children,
)

__all__ = [
    "BLOCK_TAGS",
    "Element",
    "Text",
    "canonicalize",
    "node_at",
    "paragraph_snapshots",
    "paragraph_snapshots_from_markup",
    "parse_markup",
    "path_of",
    "serialize",
    "serialize_children",
]
