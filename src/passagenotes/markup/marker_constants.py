"""Annotation marker format constants.

An annotation span is a ``<mark>`` element carrying a class, a data attribute
and inline CSS.  The same format is produced by the engine, recognised when
markup is re-parsed, and written to storage, so it must stay stable.
"""

from __future__ import annotations

import re

MARKER_TAG = "mark"
MARKER_CLASS = "passage-highlight"
MARKER_ATTRIBUTE = "data-passage-highlight"

DEFAULT_HIGHLIGHT_COLOR = "#ffff66"

HIGHLIGHT_CSS_TEMPLATE = (
    "background-color: {color}; color: inherit; padding: 0 2px; "
    "display: inline; cursor: pointer;"
)
STRIKE_CSS = "text-decoration: line-through;"

# Any text-decoration declaration, so toggling replaces rather than appends
TEXT_DECORATION_PATTERN = re.compile(r"\s*text-decoration\s*:[^;]*;?", re.IGNORECASE)
STRIKE_PATTERN = re.compile(r"text-decoration\s*:[^;]*line-through", re.IGNORECASE)

# Attribute the host page puts on the element holding the rendered passage
CONTAINER_ATTRIBUTE = "data-passage-container"
