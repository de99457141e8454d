"""Tests for model validation and serialization."""
from __future__ import annotations

import pytest

from narrative_engine.errors import InvalidInputError
from narrative_engine.models import CharacterSnapshot, DecisionOption, Outcome, Specialty


@pytest.mark.parametrize(
    "overrides",
    [
        {"traits": {"rational": 11}},
        {"traits": {"charisma": 3}},
        {"specialties": [Specialty("law", 2), Specialty("law", 3)]},
        {"specialties": [Specialty("law", 0)]},
        {"resources": {"money": -1}},
        {"influence": -5},
        {"reputation": {"public": 101}},
        {"reputation": {"press": 5}},
    ],
)
def test_character_validation(make_character, overrides):
    with pytest.raises(InvalidInputError):
        make_character(**overrides)


def test_character_defaults_fill_vocabularies(make_character):
    character = make_character(resources={"money": 5}, reputation={})
    assert character.resources == {"money": 5, "connections": 0, "information": 0}
    assert set(character.reputation) == {"public", "government", "business", "academic", "media"}
    assert character.trait("planned") == 0
    assert character.specialty_level("law") is None
    assert not character.is_active_in("elsewhere")


def test_character_round_trip(character):
    assert CharacterSnapshot.from_dict(character.to_dict()) == character


def test_option_serializes_camel_case():
    option = DecisionOption(
        text="Lobby",
        id="opt-1",
        required_traits={"collective": 3},
        required_specialties=[Specialty("negotiation", 2)],
        influence_required=10,
        resource_cost={"connections": 4},
    )
    data = option.to_dict()
    assert data["requiredTraits"] == {"collective": 3}
    assert data["requiredSpecialties"] == [{"name": "negotiation", "level": 2}]
    assert data["influenceRequired"] == 10
    assert DecisionOption.from_dict(data) == option


def test_option_needs_text():
    with pytest.raises(InvalidInputError):
        DecisionOption.from_dict({"text": "  "})


def test_outcome_rejects_unknown_audience():
    with pytest.raises(InvalidInputError):
        Outcome.from_dict({"description": "x", "effects": {"reputation": {"press": 2}}})


@pytest.mark.parametrize(
    "effects",
    [
        {"influence": "plenty"},
        {"relationships": [{"character": "Mayor", "trust": "high"}]},
        {"relationships": [{"trust": 3}]},
        {"relationships": ["Mayor"]},
        {"resources": ["money"]},
    ],
)
def test_outcome_effects_reject_malformed_values(effects):
    with pytest.raises(InvalidInputError):
        Outcome.from_dict({"description": "x", "effects": effects})
