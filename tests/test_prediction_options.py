"""Tests for the per-type prediction option payloads."""
from __future__ import annotations

from datetime import date

import pytest

from narrative_engine.errors import InvalidInputError
from narrative_engine.prediction_options import (
    BinaryOptions,
    CompoundOptions,
    MultipleOptions,
    PredictionType,
    RangeOptions,
    TimeOptions,
    parse_options,
)


def test_binary_accepts_index_or_bool():
    options = BinaryOptions("The strike ends this week")
    assert options.normalize_selection(0) == 0
    assert options.normalize_selection(True) == 0
    assert options.normalize_selection(False) == 1
    assert options.labels() == ["Yes", "No"]
    with pytest.raises(InvalidInputError):
        options.normalize_selection(2)
    with pytest.raises(InvalidInputError):
        options.normalize_selection("yes")


def test_multiple_choice_bounds():
    options = parse_options("multiple", {"choices": [{"text": "A"}, {"text": "B"}, "C"]})
    assert isinstance(options, MultipleOptions)
    assert options.labels() == ["A", "B", "C"]
    assert options.normalize_selection(2) == 2
    with pytest.raises(InvalidInputError):
        options.normalize_selection(3)
    with pytest.raises(InvalidInputError):
        options.normalize_selection(-1)


def test_multiple_choice_needs_two_choices():
    with pytest.raises(InvalidInputError):
        parse_options(PredictionType.MULTIPLE, {"choices": [{"text": "Only"}]})


def test_range_selection_and_tolerance():
    options = RangeOptions(min=0, max=100, unit="percent")
    assert options.normalize_selection(42) == 42.0
    with pytest.raises(InvalidInputError):
        options.normalize_selection(101)
    with pytest.raises(InvalidInputError):
        options.normalize_selection("42")
    assert options.matches(40.0, 40.0)
    assert not options.matches(40.0, 41.0)
    assert options.matches(40.0, 44.0, range_tolerance=0.05)
    assert options.labels() is None


def test_range_requires_min_below_max():
    with pytest.raises(InvalidInputError):
        parse_options("range", {"min": 5, "max": 5})


def test_time_selection_and_tolerance():
    options = parse_options("time", {"earliestDate": "2026-03-04", "latestDate": "2026-03-15"})
    assert isinstance(options, TimeOptions)
    assert options.normalize_selection("2026-03-10") == date(2026, 3, 10)
    with pytest.raises(InvalidInputError):
        options.normalize_selection("2026-04-01")
    assert not options.matches(date(2026, 3, 10), date(2026, 3, 11))
    assert options.matches(date(2026, 3, 10), date(2026, 3, 11), time_tolerance_days=1)
    assert options.selection_to_json(date(2026, 3, 10)) == "2026-03-10"


def test_compound_selection_is_an_index_set():
    options = parse_options(
        "compound",
        {
            "conditions": [
                {"description": "Talks resume", "required": True},
                {"description": "Wages rise"},
            ]
        },
    )
    assert isinstance(options, CompoundOptions)
    assert options.normalize_selection([1, 0]) == frozenset({0, 1})
    assert options.matches(options.normalize_selection([0, 1]), options.normalize_selection([1, 0]))
    assert options.selection_to_json(frozenset({1, 0})) == [0, 1]
    with pytest.raises(InvalidInputError):
        options.normalize_selection([0, 0])
    with pytest.raises(InvalidInputError):
        options.normalize_selection(0)


def test_compound_needs_a_required_condition():
    with pytest.raises(InvalidInputError):
        parse_options("compound", {"conditions": [{"description": "a"}, {"description": "b"}]})


@pytest.mark.parametrize(
    "kind, payload",
    [
        ("multiple", {"choices": [1, 2]}),
        ("multiple", {"choices": [{"text": "A", "probability": "likely"}, "B"]}),
        ("multiple", {"choices": [{"text": "A", "probability": None}, "B"]}),
        ("multiple", {"choices": 3}),
        ("compound", {"conditions": ["a", "b"]}),
        ("compound", {"conditions": {"description": "a"}}),
    ],
)
def test_malformed_entries_are_invalid_input(kind, payload):
    with pytest.raises(InvalidInputError):
        parse_options(kind, payload)


def test_parse_options_accepts_nested_payload():
    options = parse_options("binary", {"binary": {"statement": "Rates rise"}})
    assert options == BinaryOptions("Rates rise")


def test_parse_options_rejects_mismatched_instance():
    with pytest.raises(InvalidInputError):
        parse_options("range", BinaryOptions("Rates rise"))


def test_unknown_type_is_invalid_input():
    with pytest.raises(InvalidInputError):
        parse_options("ternary", {})
