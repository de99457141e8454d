"""Tests for outcome aggregation and effect application."""
from __future__ import annotations

import itertools

from narrative_engine.models import AggregatedEffect, Outcome, OutcomeEffects, RelationshipEffect
from narrative_engine.outcomes import aggregate, apply_effect


def _outcomes():
    return [
        Outcome(
            "Press picks it up",
            OutcomeEffects(
                influence=5,
                experience=10,
                resources={"money": -40},
                reputation={"media": 4, "public": 2},
                relationships=[RelationshipEffect("Mayor", trust=-5, influence=1)],
            ),
        ),
        Outcome("Union notices", OutcomeEffects(influence=-2, experience=5, resources={"connections": 3})),
        Outcome(
            "Quiet week",
            OutcomeEffects(
                experience=1,
                reputation={"government": -3},
                relationships=[RelationshipEffect("Editor", trust=4)],
            ),
        ),
    ]


def test_empty_sequence_yields_zero_effect():
    effect = aggregate([])
    assert effect.influence == 0
    assert effect.experience == 0
    assert effect.resources == {"money": 0, "connections": 0, "information": 0}
    assert effect.reputation == {"public": 0, "government": 0, "business": 0, "academic": 0, "media": 0}
    assert effect.relationships == []


def test_aggregate_sums_every_field():
    effect = aggregate(_outcomes())
    assert effect.influence == 3
    assert effect.experience == 16
    assert effect.resources == {"money": -40, "connections": 3, "information": 0}
    assert effect.reputation["media"] == 4
    assert effect.reputation["public"] == 2
    assert effect.reputation["government"] == -3
    assert [r.character for r in effect.relationships] == ["Editor", "Mayor"]


def test_aggregate_is_order_independent():
    """Every permutation of the outcomes should produce the same effect."""

    expected = aggregate(_outcomes()).to_dict()
    for ordering in itertools.permutations(_outcomes()):
        assert aggregate(list(ordering)).to_dict() == expected


def test_apply_effect_floors_resources_and_clamps_reputation(make_character):
    character = make_character(
        resources={"money": 30, "connections": 1, "information": 0},
        reputation={"public": 98, "media": -99},
        influence=3,
        experience=7,
    )
    effect = AggregatedEffect(
        influence=-10,
        experience=20,
        resources={"money": -100, "connections": 2, "information": 5},
        reputation={"public": 5, "government": 0, "business": 0, "academic": 0, "media": -5},
    )

    updated = apply_effect(character, effect, decision_id="d1")

    assert updated.influence == 0
    assert updated.experience == 27
    assert updated.resources == {"money": 0, "connections": 3, "information": 5}
    assert updated.reputation["public"] == 100
    assert updated.reputation["media"] == -100
    assert updated.decisions == ["d1"]
    # The original snapshot is untouched.
    assert character.resources["money"] == 30
    assert character.decisions == []


def test_apply_effect_respects_configured_bounds(make_character):
    character = make_character(reputation={"public": 10})
    effect = AggregatedEffect(reputation={"public": 50, "government": 0, "business": 0, "academic": 0, "media": 0})
    updated = apply_effect(character, effect, reputation_bounds={"min": -20, "max": 20})
    assert updated.reputation["public"] == 20
