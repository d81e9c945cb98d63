"""Shared pytest fixtures for passage-notes tests."""

from __future__ import annotations

import pytest

from passagenotes.annotation.registry import ConsumerKey
from passagenotes.persistence.storage import MemoryStorage
from passagenotes.session import AnnotationSession

# The two-paragraph passage used throughout the suite
PASSAGE_ID = "pt1,passage1"
PASSAGE = "<p>Alpha bravo.</p><p>Charlie delta.</p>"

HIGHLIGHT_STYLE = (
    "background-color: #ffff66; color: inherit; padding: 0 2px; "
    "display: inline; cursor: pointer;"
)
MARK_OPEN = (
    '<mark class="passage-highlight" data-passage-highlight="true" '
    f'style="{HIGHLIGHT_STYLE}">'
)
STRIKE_MARK_OPEN = (
    '<mark class="passage-highlight" data-passage-highlight="true" '
    f'style="{HIGHLIGHT_STYLE} text-decoration: line-through;">'
)


class StepClock:
    """Deterministic millisecond clock: each call advances by *step*."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 1000) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> int:
        self.now += self.step
        return self.now


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def session(storage: MemoryStorage, clock: StepClock) -> AnnotationSession:
    return AnnotationSession(storage, clock=clock)


@pytest.fixture
def consumer() -> ConsumerKey:
    return ConsumerKey("Reading Comprehension", 0, 1)
