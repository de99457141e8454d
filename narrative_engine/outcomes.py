"""Outcome aggregation and application of the net effect to a character."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, Optional

from .models import (
    AUDIENCES,
    RESOURCES,
    AggregatedEffect,
    CharacterSnapshot,
    Outcome,
    RelationshipEffect,
)

logger = logging.getLogger(__name__)


def aggregate(outcomes: Iterable[Outcome]) -> AggregatedEffect:
    """Sum the numeric effects of ``outcomes`` into one delta.

    Relationship effects are not summed. They are passed through sorted by
    target so the result does not depend on outcome order.
    """

    effect = AggregatedEffect()
    relationships = []
    for outcome in outcomes:
        effects = outcome.effects
        effect.influence += effects.influence or 0
        effect.experience += effects.experience or 0
        if effects.resources:
            for resource in RESOURCES:
                effect.resources[resource] += effects.resources.get(resource, 0)
        if effects.reputation:
            for audience in AUDIENCES:
                effect.reputation[audience] += effects.reputation.get(audience, 0)
        relationships.extend(effects.relationships)
    effect.relationships = sorted(
        (RelationshipEffect(entry.character, entry.trust, entry.influence) for entry in relationships),
        key=lambda entry: (entry.character, entry.trust, entry.influence),
    )
    return effect


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def apply_effect(
    character: CharacterSnapshot,
    effect: AggregatedEffect,
    *,
    reputation_bounds: Optional[Dict[str, int]] = None,
    decision_id: Optional[str] = None,
) -> CharacterSnapshot:
    """Return a copy of ``character`` with ``effect`` applied.

    Resources and influence never drop below zero and reputation stays
    inside ``reputation_bounds``. Relationship deltas are left to the caller.
    """

    bounds = reputation_bounds or {"min": -100, "max": 100}
    resources = {
        name: max(0, character.resources.get(name, 0) + effect.resources.get(name, 0))
        for name in RESOURCES
    }
    reputation = {
        name: _clamp(
            character.reputation.get(name, 0) + effect.reputation.get(name, 0),
            bounds["min"],
            bounds["max"],
        )
        for name in AUDIENCES
    }
    history = list(character.decisions)
    if decision_id and decision_id not in history:
        history.append(decision_id)
    updated = replace(
        character,
        influence=max(0, character.influence + effect.influence),
        experience=character.experience + effect.experience,
        resources=resources,
        reputation=reputation,
        decisions=history,
        traits=dict(character.traits),
        specialties=list(character.specialties),
        narratives=dict(character.narratives),
    )
    logger.debug("Applied effect to character %s: %s", character.id, effect.to_dict())
    return updated


__all__ = ["aggregate", "apply_effect"]
