"""Decision lifecycle: creation, option selection, cancellation and extension."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from .config import Settings, get_settings
from .content import ContentGenerator
from .eligibility import EligibilityResult, evaluate
from .errors import (
    ExpiredError,
    ForbiddenError,
    IneligibleError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from .models import (
    AggregatedEffect,
    CharacterSnapshot,
    Decision,
    DecisionOption,
    DecisionStatus,
    Importance,
    Narrative,
    Outcome,
    new_id,
    parse_enum,
    utcnow,
)
from .outcomes import aggregate

logger = logging.getLogger(__name__)


@dataclass
class ChoiceResult:
    decision: Decision
    outcomes: List[Outcome]
    aggregated_effect: AggregatedEffect
    used_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": self.decision.to_dict(),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "aggregatedEffect": self.aggregated_effect.to_dict(),
        }


@dataclass
class DecisionDraft:
    """Validated creation parameters, before a decision exists."""

    title: str
    description: str
    options: List[DecisionOption] = field(default_factory=list)


def check_participation(
    narrative: Optional[Narrative],
    character: Optional[CharacterSnapshot],
    user_id: str,
    *,
    narrative_id: str = "",
    character_id: str = "",
) -> None:
    """Shared creation precondition for decisions and predictions."""

    if narrative is None:
        raise NotFoundError(f"Narrative {narrative_id} not found", {"narrativeId": narrative_id})
    if character is None:
        raise NotFoundError(f"Character {character_id} not found", {"characterId": character_id})
    if character.user_id != user_id:
        raise ForbiddenError("Character does not belong to this user", {"characterId": character.id})
    if not character.is_active_in(narrative.id):
        raise InvalidStateError(
            "Character is not active in this narrative",
            {"characterId": character.id, "narrativeId": narrative.id},
        )


class DecisionStateMachine:
    """Applies decision transitions in memory.

    Every operation reads the decision it is given, validates against that
    exact state and mutates it; persisting the result is the caller's job.
    An open decision found past its deadline is flipped to ``expired``
    before ``ExpiredError`` is raised, so the caller must still save it.
    """

    def __init__(self, content: Optional[ContentGenerator] = None, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._content = content or ContentGenerator(settings=self._settings)

    # Policy ------------------------------------------------------------
    def default_time_limit(self, importance: Importance | str) -> int:
        """Seconds until expiry for a decision of ``importance``."""
        key = parse_enum(Importance, importance, "importance").value
        hours = self._settings.decision_time_limits_hours.get(key, 48)
        return int(hours * 3600)

    def influence_requirement(self, importance: Importance | str) -> int:
        key = parse_enum(Importance, importance, "importance").value
        return self._settings.decision_influence_requirements.get(key, 25)

    # Expiry ------------------------------------------------------------
    def check_expiry(self, decision: Decision, now: Optional[datetime] = None) -> bool:
        """Flip an open decision past its deadline to expired. Returns True if it flipped."""
        now = now or utcnow()
        if decision.is_open() and decision.is_past_deadline(now):
            previous = decision.status
            decision.status = DecisionStatus.EXPIRED
            logger.info("Decision %s expired (%s -> expired)", decision.id, previous.value)
            return True
        return False

    def _guard_expiry(self, decision: Decision, now: datetime) -> None:
        self.check_expiry(decision, now)
        if decision.status == DecisionStatus.EXPIRED:
            raise ExpiredError(
                "Decision has expired",
                {"decisionId": decision.id, "expiredAt": decision.expires_at.isoformat()},
            )

    # Creation ----------------------------------------------------------
    def _draft(self, title: str, description: str, options: Iterable[Any]) -> DecisionDraft:
        title = (title or "").strip()
        if not title:
            raise InvalidInputError("Decision title is required")
        parsed: List[DecisionOption] = []
        for option in options or []:
            if isinstance(option, DecisionOption):
                parsed.append(option)
            elif isinstance(option, dict):
                parsed.append(DecisionOption.from_dict(option))
            else:
                raise InvalidInputError("Every option must be an object", {"option": option})
        if not parsed:
            raise InvalidInputError("A decision needs at least one option")
        ids = [option.id for option in parsed]
        if len(set(ids)) != len(ids):
            raise InvalidInputError("Option ids must be unique", {"optionIds": ids})
        return DecisionDraft(title=title, description=description or "", options=parsed)

    def _build(
        self,
        *,
        narrative: Narrative,
        character: CharacterSnapshot,
        user_id: str,
        draft: DecisionDraft,
        importance: Importance,
        status: DecisionStatus,
        time_limit: Optional[int],
        now: datetime,
        scene_id: Optional[str] = None,
        prompt: str = "",
        generated: bool = False,
    ) -> Decision:
        if time_limit is None:
            seconds = self.default_time_limit(importance)
        else:
            seconds = int(time_limit)
            if seconds <= 0:
                raise InvalidInputError("timeLimit must be positive", {"timeLimit": time_limit})
        decision = Decision(
            id=new_id(),
            narrative_id=narrative.id,
            character_id=character.id,
            user_id=user_id,
            scene_id=scene_id,
            title=draft.title,
            description=draft.description,
            prompt=prompt,
            options=draft.options,
            status=status,
            importance=importance,
            created_at=now,
            time_limit=seconds,
            expires_at=now + timedelta(seconds=seconds),
            generated=generated,
        )
        logger.info(
            "Decision %s created for character %s in narrative %s (%s, %s)",
            decision.id,
            character.id,
            narrative.id,
            status.value,
            importance.value,
        )
        return decision

    def create(
        self,
        *,
        narrative: Optional[Narrative],
        character: Optional[CharacterSnapshot],
        user_id: str,
        title: str,
        description: str = "",
        options: Iterable[Any] = (),
        importance: Importance | str = Importance.MEDIUM,
        time_limit: Optional[int] = None,
        scene_id: Optional[str] = None,
        narrative_id: str = "",
        character_id: str = "",
        now: Optional[datetime] = None,
    ) -> Decision:
        """Manually create a decision. It starts ``pending`` until activated."""

        check_participation(
            narrative, character, user_id, narrative_id=narrative_id, character_id=character_id
        )
        level = parse_enum(Importance, importance, "importance")
        draft = self._draft(title, description, options)
        return self._build(
            narrative=narrative,
            character=character,
            user_id=user_id,
            draft=draft,
            importance=level,
            status=DecisionStatus.PENDING,
            time_limit=time_limit,
            now=now or utcnow(),
            scene_id=scene_id,
        )

    def generate(
        self,
        *,
        narrative: Optional[Narrative],
        character: Optional[CharacterSnapshot],
        user_id: str,
        importance: Importance | str = Importance.MEDIUM,
        context: str = "",
        time_limit: Optional[int] = None,
        scene_id: Optional[str] = None,
        narrative_id: str = "",
        character_id: str = "",
        now: Optional[datetime] = None,
    ) -> Decision:
        """Create a decision from generated content. It starts ``active``."""

        check_participation(
            narrative, character, user_id, narrative_id=narrative_id, character_id=character_id
        )
        level = parse_enum(Importance, importance, "importance")
        generated = self._content.decision_content(narrative, character, level, context)
        draft = self._draft(generated.title, generated.description, generated.options)
        return self._build(
            narrative=narrative,
            character=character,
            user_id=user_id,
            draft=draft,
            importance=level,
            status=DecisionStatus.ACTIVE,
            time_limit=time_limit,
            now=now or utcnow(),
            scene_id=scene_id,
            prompt=context,
            generated=True,
        )

    # Transitions -------------------------------------------------------
    def activate(self, decision: Decision, now: Optional[datetime] = None) -> Decision:
        now = now or utcnow()
        self._guard_expiry(decision, now)
        if decision.status != DecisionStatus.PENDING:
            raise InvalidStateError(
                f"Cannot activate a {decision.status.value} decision",
                {"status": decision.status.value},
            )
        decision.status = DecisionStatus.ACTIVE
        logger.info("Decision %s activated", decision.id)
        return decision

    def eligibility(self, decision: Decision, option_id: str, character: CharacterSnapshot) -> EligibilityResult:
        option = decision.option(option_id)
        if option is None:
            raise NotFoundError(f"Option {option_id} not found", {"optionId": option_id})
        return evaluate(character, option)

    def choose_option(
        self,
        decision: Decision,
        option_id: str,
        character: CharacterSnapshot,
        now: Optional[datetime] = None,
    ) -> ChoiceResult:
        now = now or utcnow()
        self._guard_expiry(decision, now)
        if decision.status != DecisionStatus.ACTIVE:
            raise InvalidStateError(
                f"Cannot choose an option on a {decision.status.value} decision",
                {"status": decision.status.value},
            )
        option = decision.option(option_id)
        if option is None:
            raise NotFoundError(f"Option {option_id} not found", {"optionId": option_id})
        result = evaluate(character, option)
        if not result.eligible:
            raise IneligibleError("Character does not meet the option requirements", result.reasons)

        decision.chosen_option_id = option.id
        decision.status = DecisionStatus.RESOLVED
        decision.resolved_at = now
        logger.info("Decision %s resolved with option %s", decision.id, option.id)

        generated = self._content.decision_outcomes(decision, character, option)
        decision.outcomes = list(generated.outcomes)
        return ChoiceResult(
            decision=decision,
            outcomes=decision.outcomes,
            aggregated_effect=aggregate(decision.outcomes),
            used_fallback=generated.from_fallback,
        )

    def outcomes(self, decision: Decision) -> List[Outcome]:
        if decision.status != DecisionStatus.RESOLVED:
            raise InvalidStateError(
                "Outcomes are only available for resolved decisions",
                {"status": decision.status.value},
            )
        return list(decision.outcomes)

    def cancel(self, decision: Decision, now: Optional[datetime] = None) -> Decision:
        now = now or utcnow()
        self._guard_expiry(decision, now)
        if not decision.is_open():
            raise InvalidStateError(
                f"Cannot cancel a {decision.status.value} decision",
                {"status": decision.status.value},
            )
        decision.status = DecisionStatus.CANCELLED
        decision.resolved_at = now
        logger.info("Decision %s cancelled", decision.id)
        return decision

    def extend_deadline(self, decision: Decision, hours: float, now: Optional[datetime] = None) -> Decision:
        now = now or utcnow()
        limit = self._settings.decision_max_extension_hours
        if isinstance(hours, bool) or not isinstance(hours, (int, float)):
            raise InvalidInputError("hours must be a number", {"hours": hours})
        if hours <= 0 or hours > limit:
            raise InvalidInputError(
                f"Extension must be more than 0 and at most {limit:g} hours",
                {"hours": hours, "maxHours": limit},
            )
        self._guard_expiry(decision, now)
        if decision.status != DecisionStatus.ACTIVE:
            raise InvalidStateError(
                f"Cannot extend a {decision.status.value} decision",
                {"status": decision.status.value},
            )
        seconds = int(round(hours * 3600))
        decision.time_limit += seconds
        decision.expires_at = decision.expires_at + timedelta(seconds=seconds)
        logger.info("Decision %s extended by %s hours", decision.id, hours)
        return decision


__all__ = ["ChoiceResult", "DecisionStateMachine", "check_participation"]
