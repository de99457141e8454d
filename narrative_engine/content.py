"""Content generation adapter with deterministic fallbacks.

Every call site asks the client for JSON, validates it against its schema
and, on any failure, returns the documented template instead. Only
``resolution`` reports failure to the caller, since no safe default answer
exists for what actually happened.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .config import Settings, get_settings
from .errors import EngineError
from .llm_client import GenerationResult
from .models import (
    CharacterSnapshot,
    Decision,
    DecisionOption,
    Difficulty,
    Importance,
    Narrative,
    Outcome,
    OutcomeEffects,
    Prediction,
    utcnow,
)
from .news import NewsArticle
from .prediction_options import (
    BinaryOptions,
    Choice,
    CompoundOptions,
    Condition,
    MultipleOptions,
    PredictionOptions,
    PredictionType,
    RangeOptions,
    TimeOptions,
    parse_options,
)
from .schemas import DecisionSchema, OutcomeListSchema, PredictionSchema, ResolutionSchema

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You generate content for a political and social narrative game. "
    "Respond with a single valid JSON document and nothing else."
)


@dataclass
class GeneratedDecision:
    title: str
    description: str
    options: List[DecisionOption]
    from_fallback: bool = False


@dataclass
class GeneratedOutcomes:
    outcomes: List[Outcome]
    from_fallback: bool = False


@dataclass
class GeneratedPrediction:
    title: str
    description: str
    options: PredictionOptions
    tags: List[str] = field(default_factory=list)
    confidence: int = 50
    from_fallback: bool = False


@dataclass
class GeneratedResolution:
    correct_selection: Any
    explanation: str
    accuracy: Optional[float] = None
    events: List[Dict[str, Any]] = field(default_factory=list)


def fallback_decision(
    narrative: Narrative,
    character: CharacterSnapshot,
    importance: Importance,
    settings: Settings,
) -> GeneratedDecision:
    return GeneratedDecision(
        title=f"Decision for {character.name} in {narrative.title}",
        description="A decision point has been reached in the narrative.",
        options=[
            DecisionOption(
                text="Take the cautious approach",
                description="Proceed with caution, gathering more information before committing.",
                consequences="Minimal risk but potentially missed opportunities.",
            ),
            DecisionOption(
                text="Take decisive action",
                description="Act quickly and decisively to address the situation.",
                consequences="Could lead to significant advantages but also risks.",
                influence_required=settings.decision_influence_requirements.get(importance.value, 25),
                resource_cost={"money": 100, "connections": 5},
                reputation_impact={"public": 5},
            ),
        ],
        from_fallback=True,
    )


def fallback_outcomes() -> GeneratedOutcomes:
    return GeneratedOutcomes(
        outcomes=[
            Outcome(
                description="Your decision has consequences that affect your standing in the narrative.",
                effects=OutcomeEffects(
                    influence=5,
                    experience=20,
                    resources={"money": 0, "connections": 2, "information": 5},
                    reputation={"public": 3, "media": 2},
                ),
            )
        ],
        from_fallback=True,
    )


def fallback_prediction_options(kind: PredictionType, category: str, now: datetime) -> PredictionOptions:
    if kind == PredictionType.MULTIPLE:
        return MultipleOptions(
            choices=[
                Choice("Outcome A will occur", 0.5),
                Choice("Outcome B will occur", 0.3),
                Choice("Outcome C will occur", 0.2),
            ]
        )
    if kind == PredictionType.RANGE:
        return RangeOptions(min=10.0, max=30.0, unit="percent")
    if kind == PredictionType.TIME:
        return TimeOptions(
            earliest_date=(now + timedelta(days=3)).date(),
            latest_date=(now + timedelta(days=14)).date(),
        )
    if kind == PredictionType.COMPOUND:
        return CompoundOptions(
            conditions=[
                Condition("Condition 1 will be met", True),
                Condition("Condition 2 will be met", False),
                Condition("Condition 3 will be met", False),
            ]
        )
    return BinaryOptions(
        statement=f"A significant event related to {category} will occur within the next two weeks."
    )


def fallback_prediction(
    narrative: Narrative,
    character: CharacterSnapshot,
    kind: PredictionType,
    category: str,
    now: datetime,
) -> GeneratedPrediction:
    return GeneratedPrediction(
        title=f"Prediction about {category} in {narrative.title}",
        description=f"A prediction related to {character.name}'s role in the evolving narrative.",
        options=fallback_prediction_options(kind, category, now),
        tags=[category, narrative.tags[0] if narrative.tags else "prediction"],
        confidence=50,
        from_fallback=True,
    )


def _character_context(character: CharacterSnapshot) -> str:
    specialties = ", ".join(f"{s.name} ({s.level})" for s in character.specialties) or "none"
    return (
        f"Character: {character.name} ({character.type or 'unknown type'})\n"
        f"Background: {character.background or 'n/a'}\n"
        f"Traits: {json.dumps(character.traits)}\n"
        f"Specialties: {specialties}\n"
        f"Influence: {character.influence}\n"
        f"Resources: {json.dumps(character.resources)}\n"
        f"Reputation: {json.dumps(character.reputation)}"
    )


def _articles_context(articles: Sequence[NewsArticle]) -> str:
    if not articles:
        return "No recent news available."
    lines = []
    for article in articles:
        published = article.published_at.date().isoformat() if article.published_at else "unknown date"
        lines.append(f"- {article.title} ({article.source}, {published}): {article.description}")
    return "\n".join(lines)


class ContentGenerator:
    """Builds prompts per call site and turns responses into domain values."""

    def __init__(self, client=None, *, settings: Optional[Settings] = None, telemetry=None) -> None:
        self._client = client
        self._settings = settings or get_settings()
        self._telemetry = telemetry

    def _generate(self, call_site: str, prompt: str) -> GenerationResult:
        if self._client is None:
            return GenerationResult.failure("no client configured")
        result = self._client.generate_json_sync(
            prompt,
            system=SYSTEM_PROMPT,
            timeout=self._settings.generation_timeout_seconds,
        )
        if self._telemetry is not None:
            self._telemetry.track_llm_activity(call_site, result.ok, result.duration_ms, result.error)
        return result

    def decision_content(
        self,
        narrative: Narrative,
        character: CharacterSnapshot,
        importance: Importance,
        context: str = "",
    ) -> GeneratedDecision:
        requirement = self._settings.decision_influence_requirements.get(importance.value, 25)
        prompt = (
            f"Narrative: {narrative.title}\nSummary: {narrative.summary}\n"
            f"Category: {narrative.category}\n\n{_character_context(character)}\n\n"
            f"Additional context: {context or 'none'}\n\n"
            f"Create a {importance.value} importance decision with 2-4 options. "
            f"Options that demand real commitment should require about {requirement} influence.\n"
            'Return {"title", "description", "options": [{"text", "description", "consequences", '
            '"requiredTraits", "requiredSpecialties", "influenceRequired", "resourceCost", '
            '"reputationImpact"}]}.'
        )
        result = self._generate("decision", prompt)
        if result.ok:
            try:
                parsed = DecisionSchema.model_validate(result.data)
                options = [
                    DecisionOption.from_dict(option.model_dump(by_alias=True))
                    for option in parsed.options
                ]
                return GeneratedDecision(parsed.title, parsed.description, options)
            except (ValidationError, EngineError) as exc:
                logger.warning("Generated decision rejected: %s", exc)
        else:
            logger.warning("Decision generation failed: %s", result.error)
        return fallback_decision(narrative, character, importance, self._settings)

    def decision_outcomes(
        self,
        decision: Decision,
        character: CharacterSnapshot,
        option: DecisionOption,
    ) -> GeneratedOutcomes:
        prompt = (
            f"Decision: {decision.title}\n{decision.description}\n\n"
            f"{_character_context(character)}\n\n"
            f"Chosen option: {option.text}\n{option.description}\n"
            f"Expected consequences: {option.consequences}\n\n"
            "Describe 1-3 outcomes of this choice. Return a JSON array of "
            '{"description", "effects": {"influence", "experience", "resources", "reputation", '
            '"relationships": [{"character", "trust", "influence"}]}, "unlocks": [{"type", "description"}]}.'
        )
        result = self._generate("outcomes", prompt)
        if result.ok:
            try:
                parsed = OutcomeListSchema.model_validate(result.data)
                return GeneratedOutcomes(
                    [Outcome.from_dict(entry.model_dump()) for entry in parsed.outcomes]
                )
            except (ValidationError, EngineError) as exc:
                logger.warning("Generated outcomes rejected: %s", exc)
        else:
            logger.warning("Outcome generation failed: %s", result.error)
        return fallback_outcomes()

    def prediction_content(
        self,
        narrative: Narrative,
        character: CharacterSnapshot,
        kind: PredictionType,
        category: str,
        difficulty: Difficulty,
        articles: Sequence[NewsArticle] = (),
        now: Optional[datetime] = None,
    ) -> GeneratedPrediction:
        now = now or utcnow()
        prompt = (
            f"Narrative: {narrative.title}\nSummary: {narrative.summary}\n\n"
            f"{_character_context(character)}\n\nRecent news:\n{_articles_context(articles)}\n\n"
            f"Create a {difficulty.value} {kind.value} prediction about {category}. "
            f"Today is {now.date().isoformat()}.\n"
            'Return {"title", "description", "type", "options": {"' + kind.value + '": {...}}, '
            '"tags", "confidence"}.'
        )
        result = self._generate("prediction", prompt)
        if result.ok:
            try:
                parsed = PredictionSchema.model_validate(result.data)
                options = parse_options(kind, parsed.options)
                return GeneratedPrediction(
                    title=parsed.title,
                    description=parsed.description,
                    options=options,
                    tags=list(parsed.tags),
                    confidence=parsed.confidence,
                )
            except (ValidationError, EngineError) as exc:
                logger.warning("Generated prediction rejected: %s", exc)
        else:
            logger.warning("Prediction generation failed: %s", result.error)
        return fallback_prediction(narrative, character, kind, category, now)

    def resolution(
        self,
        prediction: Prediction,
        articles: Sequence[NewsArticle] = (),
    ) -> Optional[GeneratedResolution]:
        """Ask for the correct selection given recent news, or ``None`` on failure."""
        prompt = (
            f"Prediction: {prediction.title}\n{prediction.description}\n"
            f"Type: {prediction.type.value}\n{prediction.options.describe()}\n\n"
            f"Recent news:\n{_articles_context(articles)}\n\n"
            "Decide what actually happened. Return {\"correctSelection\", \"explanation\", "
            "\"accuracy\", \"events\": [{\"title\", \"description\", \"source\", \"date\", "
            "\"relevanceScore\"}]}. correctSelection uses the same shape as a vote: an option "
            "index, a number, a YYYY-MM-DD date or a list of condition indices."
        )
        result = self._generate("resolution", prompt)
        if not result.ok:
            logger.warning("Resolution generation failed: %s", result.error)
            return None
        try:
            parsed = ResolutionSchema.model_validate(result.data)
            selection = prediction.options.normalize_selection(parsed.correct_selection)
        except (ValidationError, EngineError) as exc:
            logger.warning("Generated resolution rejected: %s", exc)
            return None
        return GeneratedResolution(
            correct_selection=selection,
            explanation=parsed.explanation,
            accuracy=parsed.accuracy,
            events=[event.model_dump(by_alias=True) for event in parsed.events],
        )


__all__ = [
    "ContentGenerator",
    "GeneratedDecision",
    "GeneratedOutcomes",
    "GeneratedPrediction",
    "GeneratedResolution",
    "fallback_decision",
    "fallback_outcomes",
    "fallback_prediction",
    "fallback_prediction_options",
]
