"""Eligibility checks for decision options."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from .models import CharacterSnapshot, DecisionOption


@dataclass
class EligibilityResult:
    eligible: bool
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"eligible": self.eligible, "reasons": list(self.reasons)}


def evaluate(character: CharacterSnapshot, option: DecisionOption) -> EligibilityResult:
    """Check every requirement of ``option`` against ``character``.

    A requirement of 0 means no requirement. All failures are collected so
    the caller can show the full list rather than the first miss.
    """

    reasons: List[str] = []

    for trait, required in option.required_traits.items():
        if required <= 0:
            continue
        if character.trait(trait) < required:
            reasons.append(f"Requires {trait} level {required}")

    for specialty in option.required_specialties:
        level = character.specialty_level(specialty.name)
        if level is None or level < specialty.level:
            reasons.append(f"Requires {specialty.name} specialty level {specialty.level}")

    if option.influence_required > 0 and character.influence < option.influence_required:
        reasons.append(f"Requires {option.influence_required} influence")

    for resource, cost in option.resource_cost.items():
        if cost <= 0:
            continue
        if character.resources.get(resource, 0) < cost:
            reasons.append(f"Requires {cost} {resource}")

    return EligibilityResult(eligible=not reasons, reasons=reasons)


__all__ = ["EligibilityResult", "evaluate"]
