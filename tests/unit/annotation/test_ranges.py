"""Tests for selection-to-range resolution."""

from __future__ import annotations

import logging

import pytest

from passagenotes.annotation.ranges import (
    OffsetIndex,
    Point,
    Range,
    Selection,
    find_text_range,
    make_range,
    range_from_text_offsets,
    resolve_selection,
)
from passagenotes.errors import InvalidPathError, InvalidRangeError
from passagenotes.markup.tree import parse_markup
from tests.conftest import PASSAGE

# Host page: the passage container sits at (0, 1)
PAGE = (
    '<div class="question"><h3>Q1</h3>'
    '<div data-passage-container="true"><p>Alpha bravo.</p><p>Charlie delta.</p></div>'
    "</div>"
)


class TestOffsetIndex:
    """Boundary points map to offsets in the concatenated text."""

    def test_text_point(self) -> None:
        index = OffsetIndex(parse_markup(PASSAGE))

        assert index.to_offset(Point((1, 0), 3)) == 15

    def test_element_point_before_child(self) -> None:
        index = OffsetIndex(parse_markup(PASSAGE))

        assert index.to_offset(Point((), 1)) == 12

    def test_element_point_after_last_child(self) -> None:
        index = OffsetIndex(parse_markup(PASSAGE))

        assert index.to_offset(Point((), 2)) == index.length == 26

    def test_offset_outside_text_raises(self) -> None:
        index = OffsetIndex(parse_markup(PASSAGE))

        with pytest.raises(InvalidRangeError):
            index.to_offset(Point((0, 0), 13))

    def test_unresolvable_path_raises(self) -> None:
        index = OffsetIndex(parse_markup(PASSAGE))

        with pytest.raises(InvalidPathError):
            index.to_offset(Point((5, 0), 0))


class TestMakeRange:
    def test_orders_backwards_points(self) -> None:
        root = parse_markup(PASSAGE)

        rng = make_range(root, Point((1, 0), 7), Point((0, 0), 6))

        assert rng == Range((), Point((0, 0), 6), Point((1, 0), 7))

    def test_collapsed_raises(self) -> None:
        root = parse_markup(PASSAGE)

        with pytest.raises(InvalidRangeError):
            make_range(root, Point((0,), 1), Point((0, 0), 12))


class TestResolveSelection:
    """resolve_selection accepts only non-empty selections inside the container."""

    def test_selection_inside_container_is_rebased(self) -> None:
        root = parse_markup(PAGE)
        selection = Selection(Point((0, 1, 0, 0), 6), Point((0, 1, 0, 0), 11))

        rng = resolve_selection(root, selection, container=(0, 1))

        assert rng == Range((0, 0), Point((0, 0), 6), Point((0, 0), 11))

    def test_backwards_selection_is_ordered(self) -> None:
        root = parse_markup(PASSAGE)
        selection = Selection(Point((1, 0), 7), Point((0, 0), 6))

        rng = resolve_selection(root, selection)

        assert rng is not None
        assert rng.start == Point((0, 0), 6)
        assert rng.end == Point((1, 0), 7)

    def test_collapsed_selection_is_ignored(self) -> None:
        root = parse_markup(PASSAGE)
        point = Point((0, 0), 3)

        assert resolve_selection(root, Selection(point, point)) is None

    def test_selection_crossing_container_is_ignored(self) -> None:
        root = parse_markup(PAGE)
        # Anchor in the <h3> heading, outside the container
        selection = Selection(Point((0, 0, 0), 0), Point((0, 1, 0, 0), 5))

        assert resolve_selection(root, selection, container=(0, 1)) is None

    def test_unresolvable_selection_logs_warning(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        root = parse_markup(PASSAGE)
        selection = Selection(Point((7, 0), 0), Point((0, 0), 2))

        with caplog.at_level(logging.WARNING):
            assert resolve_selection(root, selection) is None

        assert "does not resolve" in caplog.text

    def test_out_of_bounds_offset_is_ignored(self) -> None:
        root = parse_markup(PASSAGE)
        selection = Selection(Point((0, 0), 0), Point((0, 0), 99))

        assert resolve_selection(root, selection) is None


class TestTextOffsets:
    """Ranges built from character offsets over the document text."""

    def test_within_one_paragraph(self) -> None:
        root = parse_markup(PASSAGE)

        rng = range_from_text_offsets(root, 0, 5)

        assert rng == Range((0, 0), Point((0, 0), 0), Point((0, 0), 5))

    def test_across_paragraphs(self) -> None:
        root = parse_markup(PASSAGE)

        rng = range_from_text_offsets(root, 6, 19)

        assert rng == Range((), Point((0, 0), 6), Point((1, 0), 7))

    def test_end_at_node_boundary_stays_in_first_node(self) -> None:
        root = parse_markup(PASSAGE)

        rng = range_from_text_offsets(root, 6, 12)

        assert rng is not None
        assert rng.end == Point((0, 0), 12)

    @pytest.mark.parametrize(("start", "end"), [(3, 3), (5, 2), (-1, 4), (0, 27)])
    def test_invalid_offsets(self, start: int, end: int) -> None:
        assert range_from_text_offsets(parse_markup(PASSAGE), start, end) is None

    def test_find_text_range(self) -> None:
        rng = find_text_range(parse_markup(PASSAGE), "bravo")

        assert rng == Range((0, 0), Point((0, 0), 6), Point((0, 0), 11))

    def test_find_later_occurrence(self) -> None:
        root = parse_markup("<p>la la</p><p>la</p>")

        rng = find_text_range(root, "la", occurrence=2)

        assert rng == Range((1, 0), Point((1, 0), 0), Point((1, 0), 2))

    def test_find_missing_text(self) -> None:
        assert find_text_range(parse_markup(PASSAGE), "echo") is None
