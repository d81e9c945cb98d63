"""Tests for the stateful annotation engine."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

import pytest

from passagenotes.annotation.documents import DocumentModel
from passagenotes.annotation.engine import AnnotationEngine, Gesture
from passagenotes.annotation.ranges import Point, Range, find_text_range
from passagenotes.annotation.store import AnnotationStore
from passagenotes.annotation.wrapping import AnnotationStyle
from passagenotes.markup.tree import parse_markup
from tests.conftest import MARK_OPEN, PASSAGE, PASSAGE_ID, STRIKE_MARK_OPEN, StepClock


@pytest.fixture
def store() -> AnnotationStore:
    return AnnotationStore()


@pytest.fixture
def engine(store: AnnotationStore, clock: StepClock) -> AnnotationEngine:
    DocumentModel(store, clock).load(PASSAGE_ID, PASSAGE)
    return AnnotationEngine(store, clock=clock)


def _range(store: AnnotationStore, needle: str) -> Range:
    state = store.get(PASSAGE_ID)
    assert state is not None
    rng = find_text_range(parse_markup(state.annotated), needle)
    assert rng is not None
    return rng


class TestCreateAnnotation:
    def test_creates_span_and_updates_store(
        self, engine: AnnotationEngine, store: AnnotationStore
    ) -> None:
        paths = engine.create_annotation(PASSAGE_ID, _range(store, "bravo"))

        state = store.get(PASSAGE_ID)
        assert state is not None
        assert paths == [(0, 1)]
        assert state.annotated == (
            f"<p>Alpha {MARK_OPEN}bravo</mark>.</p><p>Charlie delta.</p>"
        )
        assert state.original == PASSAGE

    def test_paragraphs_are_recomputed(
        self, engine: AnnotationEngine, store: AnnotationStore
    ) -> None:
        engine.create_annotation(PASSAGE_ID, _range(store, "delta"))

        state = store.get(PASSAGE_ID)
        assert state is not None
        assert state.paragraphs == (
            "<p>Alpha bravo.</p>",
            f"<p>Charlie {MARK_OPEN}delta</mark>.</p>",
        )

    def test_last_modified_strictly_increases(self, store: AnnotationStore) -> None:
        # A frozen clock must still yield increasing timestamps
        DocumentModel(store, lambda: 5).load(PASSAGE_ID, PASSAGE)
        engine = AnnotationEngine(store, clock=lambda: 5)

        engine.create_annotation(PASSAGE_ID, _range(store, "Alpha"))
        first = store.get(PASSAGE_ID)
        engine.create_annotation(PASSAGE_ID, _range(store, "delta"))
        second = store.get(PASSAGE_ID)

        assert first is not None and second is not None
        assert first.last_modified == 6
        assert second.last_modified == 7

    def test_strike_style(
        self, engine: AnnotationEngine, store: AnnotationStore
    ) -> None:
        engine.create_annotation(
            PASSAGE_ID, _range(store, "bravo"), AnnotationStyle.HIGHLIGHT_STRIKE
        )

        state = store.get(PASSAGE_ID)
        assert state is not None
        assert STRIKE_MARK_OPEN in state.annotated

    def test_unknown_document_is_a_no_op(
        self, engine: AnnotationEngine, store: AnnotationStore
    ) -> None:
        rng = _range(store, "bravo")

        assert engine.create_annotation("missing", rng) == []
        assert "missing" not in store

    def test_stale_range_is_logged_and_ignored(
        self,
        engine: AnnotationEngine,
        store: AnnotationStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        before = store.get(PASSAGE_ID)
        stale = Range((), Point((0, 0), 1), Point((9, 9), 1))

        with caplog.at_level(logging.WARNING):
            assert engine.create_annotation(PASSAGE_ID, stale) == []

        assert store.get(PASSAGE_ID) is before
        assert "Cannot create annotation" in caplog.text

    def test_unexpected_failure_leaves_store_untouched(
        self,
        engine: AnnotationEngine,
        store: AnnotationStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        before = store.get(PASSAGE_ID)
        rng = _range(store, "bravo")

        with (
            patch(
                "passagenotes.annotation.wrapping.wrap",
                side_effect=RuntimeError("boom"),
            ),
            caplog.at_level(logging.ERROR),
        ):
            assert engine.create_annotation(PASSAGE_ID, rng) == []

        assert store.get(PASSAGE_ID) is before
        assert "Failed to create annotation" in caplog.text
        assert "RuntimeError" in caplog.text


class TestRemoveAndToggle:
    def test_remove_restores_original(
        self, engine: AnnotationEngine, store: AnnotationStore
    ) -> None:
        paths = engine.create_annotation(PASSAGE_ID, _range(store, "bravo"))

        assert engine.remove_annotation(PASSAGE_ID, paths[0])
        assert store.get(PASSAGE_ID).annotated == PASSAGE  # type: ignore[union-attr]

    def test_remove_non_span_is_refused(
        self, engine: AnnotationEngine, store: AnnotationStore
    ) -> None:
        before = store.get(PASSAGE_ID)

        assert not engine.remove_annotation(PASSAGE_ID, (0, 0))
        assert store.get(PASSAGE_ID) is before

    def test_toggle_strike(
        self, engine: AnnotationEngine, store: AnnotationStore
    ) -> None:
        paths = engine.create_annotation(PASSAGE_ID, _range(store, "bravo"))

        assert engine.toggle_strike(PASSAGE_ID, paths[0])
        [info] = engine.annotations(PASSAGE_ID)
        assert info.style is AnnotationStyle.HIGHLIGHT_STRIKE

    def test_set_style(self, engine: AnnotationEngine, store: AnnotationStore) -> None:
        paths = engine.create_annotation(PASSAGE_ID, _range(store, "bravo"))

        assert engine.set_style(PASSAGE_ID, paths[0], AnnotationStyle.HIGHLIGHT_STRIKE)
        assert engine.set_style(PASSAGE_ID, paths[0], AnnotationStyle.HIGHLIGHT)
        assert engine.annotations(PASSAGE_ID)[0].style is AnnotationStyle.HIGHLIGHT

    def test_clear_annotations(
        self, engine: AnnotationEngine, store: AnnotationStore
    ) -> None:
        engine.create_annotation(PASSAGE_ID, _range(store, "bravo.Charlie"))

        assert engine.clear_annotations(PASSAGE_ID)
        assert store.get(PASSAGE_ID).annotated == PASSAGE  # type: ignore[union-attr]
        assert engine.annotations(PASSAGE_ID) == []


class TestGestures:
    """Gestures map to intents: double removes, secondary toggles."""

    def test_double_activate_removes(
        self, engine: AnnotationEngine, store: AnnotationStore
    ) -> None:
        paths = engine.create_annotation(PASSAGE_ID, _range(store, "bravo"))

        assert engine.activate(PASSAGE_ID, paths[0], Gesture.DOUBLE_ACTIVATE)
        assert engine.annotations(PASSAGE_ID) == []

    def test_secondary_activate_toggles(
        self, engine: AnnotationEngine, store: AnnotationStore
    ) -> None:
        paths = engine.create_annotation(PASSAGE_ID, _range(store, "bravo"))

        engine.activate(PASSAGE_ID, paths[0], Gesture.SECONDARY_ACTIVATE)
        engine.activate(PASSAGE_ID, paths[0], Gesture.SECONDARY_ACTIVATE)

        assert engine.annotations(PASSAGE_ID)[0].style is AnnotationStyle.HIGHLIGHT


class TestListeners:
    def test_listener_called_after_mutation(
        self, engine: AnnotationEngine, store: AnnotationStore
    ) -> None:
        listener = MagicMock()
        engine.add_listener(listener)

        engine.create_annotation(PASSAGE_ID, _range(store, "bravo"))

        listener.assert_called_once_with(PASSAGE_ID)

    def test_listener_not_called_on_rejected_input(
        self, engine: AnnotationEngine
    ) -> None:
        listener = MagicMock()
        engine.add_listener(listener)

        engine.remove_annotation(PASSAGE_ID, (5,))

        listener.assert_not_called()

    def test_failing_listener_does_not_break_mutation(
        self,
        engine: AnnotationEngine,
        store: AnnotationStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        engine.add_listener(MagicMock(side_effect=ValueError("listener bug")))
        after = MagicMock()
        engine.add_listener(after)

        with caplog.at_level(logging.ERROR):
            paths = engine.create_annotation(PASSAGE_ID, _range(store, "bravo"))

        assert paths == [(0, 1)]
        after.assert_called_once_with(PASSAGE_ID)
        assert "Mutation listener failed" in caplog.text

    def test_removed_listener_is_not_called(
        self, engine: AnnotationEngine, store: AnnotationStore
    ) -> None:
        listener = MagicMock()
        engine.add_listener(listener)
        engine.remove_listener(listener)

        engine.create_annotation(PASSAGE_ID, _range(store, "bravo"))

        listener.assert_not_called()
