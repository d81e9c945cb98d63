"""Annotation engine: ranges, span transforms, store and consumer registry."""

from passagenotes.annotation.documents import DocumentModel
from passagenotes.annotation.engine import AnnotationEngine, Gesture
from passagenotes.annotation.ranges import (
    Point,
    Range,
    Selection,
    find_text_range,
    range_from_text_offsets,
    resolve_selection,
)
from passagenotes.annotation.registry import ConsumerKey, ConsumerRegistry
from passagenotes.annotation.store import AnnotationStore, DocumentState
from passagenotes.annotation.wrapping import AnnotationInfo, AnnotationStyle

__all__ = [
    "AnnotationEngine",
    "AnnotationInfo",
    "AnnotationStore",
    "AnnotationStyle",
    "ConsumerKey",
    "ConsumerRegistry",
    "DocumentModel",
    "DocumentState",
    "Gesture",
    "Point",
    "Range",
    "Selection",
    "find_text_range",
    "range_from_text_offsets",
    "resolve_selection",
]
