"""Schemas for JSON returned by content generation.

Generated payloads use camelCase keys; every model accepts either spelling.
Validation failures are treated by callers exactly like a failed call.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Generated(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SpecialtySchema(_Generated):
    name: str = Field(min_length=1)
    level: int = Field(default=0, ge=0, le=10)


class OptionSchema(_Generated):
    text: str = Field(min_length=1)
    description: str = ""
    consequences: str = ""
    required_traits: Dict[str, int] = Field(default_factory=dict, alias="requiredTraits")
    required_specialties: List[SpecialtySchema] = Field(default_factory=list, alias="requiredSpecialties")
    influence_required: int = Field(default=0, ge=0, alias="influenceRequired")
    resource_cost: Dict[str, int] = Field(default_factory=dict, alias="resourceCost")
    reputation_impact: Dict[str, int] = Field(default_factory=dict, alias="reputationImpact")

    @field_validator("required_specialties")
    @classmethod
    def _drop_empty_specialties(cls, value: List[SpecialtySchema]) -> List[SpecialtySchema]:
        # Templates ask for {"name": ..., "level": 0}; level 0 means none.
        return [entry for entry in value if entry.level > 0]


class DecisionSchema(_Generated):
    title: str = Field(min_length=1)
    description: str = ""
    options: List[OptionSchema] = Field(min_length=1)


class RelationshipSchema(_Generated):
    character: str = Field(min_length=1)
    trust: int = 0
    influence: int = 0

    @model_validator(mode="before")
    @classmethod
    def _flatten_change(cls, data: Any) -> Any:
        # Accept {"character": ..., "change": {"trust": ..., "influence": ...}}.
        if isinstance(data, dict) and isinstance(data.get("change"), dict):
            merged = {k: v for k, v in data.items() if k != "change"}
            merged.update(data["change"])
            return merged
        return data


class EffectsSchema(_Generated):
    influence: int = 0
    experience: int = 0
    resources: Dict[str, int] = Field(default_factory=dict)
    reputation: Dict[str, int] = Field(default_factory=dict)
    relationships: List[RelationshipSchema] = Field(default_factory=list)


class UnlockSchema(_Generated):
    type: str
    description: str = ""


class OutcomeSchema(_Generated):
    description: str = Field(min_length=1)
    effects: EffectsSchema = Field(default_factory=EffectsSchema)
    unlocks: List[UnlockSchema] = Field(default_factory=list)


class OutcomeListSchema(BaseModel):
    outcomes: List[OutcomeSchema] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _wrap_list(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"outcomes": data}
        return data


class PredictionSchema(_Generated):
    title: str = Field(min_length=1)
    description: str = ""
    type: Optional[str] = None
    options: Dict[str, Any]
    tags: List[str] = Field(default_factory=list)
    confidence: int = Field(default=50, ge=0, le=100)


class NewsEventSchema(_Generated):
    title: str = ""
    description: str = ""
    source: str = ""
    date: Optional[str] = None
    relevance_score: Optional[float] = Field(default=None, alias="relevanceScore")


class ResolutionSchema(_Generated):
    correct_selection: Any = Field(alias="correctSelection")
    explanation: str = Field(min_length=1)
    accuracy: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    events: List[NewsEventSchema] = Field(default_factory=list)

    @field_validator("correct_selection")
    @classmethod
    def _present(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("correctSelection is required")
        return value


__all__ = [
    "OptionSchema",
    "DecisionSchema",
    "OutcomeSchema",
    "OutcomeListSchema",
    "PredictionSchema",
    "ResolutionSchema",
    "NewsEventSchema",
]
