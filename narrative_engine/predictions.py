"""Prediction lifecycle: creation, voting, resolution, cancellation and refunds."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .config import Settings, get_settings
from .content import ContentGenerator, fallback_prediction_options
from .decisions import check_participation
from .errors import (
    ExpiredError,
    InvalidInputError,
    InvalidStateError,
    ResolutionUnavailableError,
)
from .models import (
    PREDICTION_CATEGORIES,
    CharacterSnapshot,
    Difficulty,
    LedgerEntry,
    Narrative,
    Prediction,
    PredictionResolution,
    PredictionStatus,
    PredictionVote,
    new_id,
    parse_enum,
    utcnow,
)
from .news import NewsArticle
from .prediction_options import PredictionType, parse_options, parse_prediction_type
from .rewards import estimated_reward, vote_reward

logger = logging.getLogger(__name__)


@dataclass
class ResolutionResult:
    prediction: Prediction
    rewards: List[LedgerEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prediction": self.prediction.to_dict(),
            "rewards": [entry.to_dict() for entry in self.rewards],
        }


@dataclass
class CancellationResult:
    prediction: Prediction
    refunds: List[LedgerEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prediction": self.prediction.to_dict(),
            "refunds": [entry.to_dict() for entry in self.refunds],
        }


def _require_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"{label} must be an integer", {label: value})
    return value


def vote_distribution(prediction: Prediction) -> Optional[List[Dict[str, Any]]]:
    """Vote counts and rounded percentages per option, for discrete types only."""

    labels = prediction.options.labels()
    if labels is None:
        return None
    counts = [0] * len(labels)
    for vote in prediction.votes:
        counts[vote.selection] += 1
    total = len(prediction.votes)
    return [
        {
            "option": label,
            "count": count,
            "percentage": int(math.floor(count / total * 100 + 0.5)) if total else 0,
        }
        for label, count in zip(labels, counts)
    ]


class PredictionStateMachine:
    """Applies prediction transitions in memory; the caller persists.

    Like decisions, an open prediction found past its deadline is flipped to
    ``expired`` before ``ExpiredError`` is raised.
    """

    def __init__(self, content: Optional[ContentGenerator] = None, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._content = content or ContentGenerator(settings=self._settings)

    # Expiry ------------------------------------------------------------
    def check_expiry(self, prediction: Prediction, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        if prediction.is_open() and prediction.is_past_deadline(now):
            previous = prediction.status
            prediction.status = PredictionStatus.EXPIRED
            logger.info("Prediction %s expired (%s -> expired)", prediction.id, previous.value)
            return True
        return False

    def _guard(self, prediction: Prediction, now: datetime, action: str) -> None:
        self.check_expiry(prediction, now)
        if prediction.status == PredictionStatus.EXPIRED:
            raise ExpiredError(
                "Prediction has expired",
                {"predictionId": prediction.id, "expiredAt": prediction.deadline.isoformat()},
            )
        if prediction.status != PredictionStatus.ACTIVE:
            raise InvalidStateError(
                f"Cannot {action} a {prediction.status.value} prediction",
                {"status": prediction.status.value},
            )

    # Creation ----------------------------------------------------------
    def _validate_common(
        self,
        category: str,
        difficulty: Difficulty | str,
        confidence: Any,
        stake_amount: Any,
        days_to_resolve: Any,
    ) -> Difficulty:
        if category not in PREDICTION_CATEGORIES:
            raise InvalidInputError(
                f"Invalid category: {category}", {"allowed": list(PREDICTION_CATEGORIES)}
            )
        level = parse_enum(Difficulty, difficulty, "difficulty")
        confidence = _require_int(confidence, "confidence")
        if confidence < 0 or confidence > 100:
            raise InvalidInputError("confidence must be between 0 and 100", {"confidence": confidence})
        stake = _require_int(stake_amount, "stakeAmount")
        if stake < 0:
            raise InvalidInputError("stakeAmount cannot be negative", {"stakeAmount": stake})
        days = _require_int(days_to_resolve, "daysToResolve")
        if days <= 0:
            raise InvalidInputError("daysToResolve must be positive", {"daysToResolve": days})
        return level

    def _build(
        self,
        *,
        narrative: Narrative,
        character: CharacterSnapshot,
        user_id: str,
        title: str,
        description: str,
        kind: PredictionType,
        options,
        category: str,
        difficulty: Difficulty,
        confidence: int,
        stake_amount: int,
        days_to_resolve: int,
        now: datetime,
        decision_id: Optional[str],
        tags: Iterable[str],
        is_ai_generated: bool = False,
    ) -> Prediction:
        title = (title or "").strip()
        if not title:
            raise InvalidInputError("Prediction title is required")
        prediction = Prediction(
            id=new_id(),
            user_id=user_id,
            character_id=character.id,
            narrative_id=narrative.id,
            decision_id=decision_id,
            title=title,
            description=description or "",
            type=kind,
            options=options,
            category=category,
            tags=list(tags),
            difficulty=difficulty,
            confidence=confidence,
            stake_amount=stake_amount,
            status=PredictionStatus.ACTIVE,
            created_at=now,
            deadline=now + timedelta(days=days_to_resolve),
            is_ai_generated=is_ai_generated,
        )
        logger.info(
            "Prediction %s created (%s, %s) in narrative %s",
            prediction.id,
            kind.value,
            difficulty.value,
            narrative.id,
        )
        return prediction

    def create(
        self,
        *,
        narrative: Optional[Narrative],
        character: Optional[CharacterSnapshot],
        user_id: str,
        title: str,
        type: PredictionType | str,
        options: Any = None,
        description: str = "",
        category: str = "other",
        difficulty: Difficulty | str = Difficulty.MEDIUM,
        confidence: int = 50,
        stake_amount: int = 0,
        days_to_resolve: Optional[int] = None,
        decision_id: Optional[str] = None,
        tags: Iterable[str] = (),
        narrative_id: str = "",
        character_id: str = "",
        now: Optional[datetime] = None,
    ) -> Prediction:
        """Create a prediction from caller-supplied content.

        Without ``options`` the fixed template for ``type`` is used.
        """

        check_participation(
            narrative, character, user_id, narrative_id=narrative_id, character_id=character_id
        )
        now = now or utcnow()
        kind = parse_prediction_type(type)
        days = self._settings.manual_days_to_resolve if days_to_resolve is None else days_to_resolve
        level = self._validate_common(category, difficulty, confidence, stake_amount, days)
        payload = (
            fallback_prediction_options(kind, category, now)
            if options is None
            else parse_options(kind, options)
        )
        return self._build(
            narrative=narrative,
            character=character,
            user_id=user_id,
            title=title,
            description=description,
            kind=kind,
            options=payload,
            category=category,
            difficulty=level,
            confidence=confidence,
            stake_amount=stake_amount,
            days_to_resolve=days,
            now=now,
            decision_id=decision_id,
            tags=tags,
        )

    def generate(
        self,
        *,
        narrative: Optional[Narrative],
        character: Optional[CharacterSnapshot],
        user_id: str,
        type: PredictionType | str = PredictionType.BINARY,
        category: str = "other",
        difficulty: Difficulty | str = Difficulty.MEDIUM,
        stake_amount: int = 0,
        days_to_resolve: Optional[int] = None,
        decision_id: Optional[str] = None,
        articles: Sequence[NewsArticle] = (),
        narrative_id: str = "",
        character_id: str = "",
        now: Optional[datetime] = None,
    ) -> Prediction:
        """Create a prediction from generated content, with an estimated reward attached."""

        check_participation(
            narrative, character, user_id, narrative_id=narrative_id, character_id=character_id
        )
        now = now or utcnow()
        kind = parse_prediction_type(type)
        days = self._settings.generated_days_to_resolve if days_to_resolve is None else days_to_resolve
        level = self._validate_common(category, difficulty, 50, stake_amount, days)
        generated = self._content.prediction_content(
            narrative, character, kind, category, level, articles, now
        )
        prediction = self._build(
            narrative=narrative,
            character=character,
            user_id=user_id,
            title=generated.title,
            description=generated.description,
            kind=kind,
            options=generated.options,
            category=category,
            difficulty=level,
            confidence=max(0, min(100, generated.confidence)),
            stake_amount=stake_amount,
            days_to_resolve=days,
            now=now,
            decision_id=decision_id,
            tags=generated.tags,
            is_ai_generated=True,
        )
        prediction.estimated_reward = estimated_reward(
            prediction.stake_amount,
            prediction.difficulty,
            prediction.confidence,
            1.0,
            self._settings.estimate_multipliers,
        )
        return prediction

    # Voting ------------------------------------------------------------
    def vote(
        self,
        prediction: Prediction,
        user_id: str,
        selection: Any,
        amount: Any,
        *,
        character_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PredictionVote:
        """Record or replace ``user_id``'s vote. One vote per user."""
        now = now or utcnow()
        self._guard(prediction, now, "vote on")
        amount = _require_int(amount, "amount")
        low, high = self._settings.vote_amount_min, self._settings.vote_amount_max
        if amount < low or amount > high:
            raise InvalidInputError(
                f"amount must be between {low} and {high}", {"amount": amount, "min": low, "max": high}
            )
        normalized = prediction.options.normalize_selection(selection)
        vote = PredictionVote(
            user_id=user_id,
            character_id=character_id,
            selection=normalized,
            amount=amount,
            voted_at=now,
        )
        for index, existing in enumerate(prediction.votes):
            if existing.user_id == user_id:
                prediction.votes[index] = vote
                logger.info("Vote replaced on prediction %s by %s", prediction.id, user_id)
                break
        else:
            prediction.votes.append(vote)
            logger.info("Vote recorded on prediction %s by %s", prediction.id, user_id)
        return vote

    # Resolution --------------------------------------------------------
    def _is_correct(self, prediction: Prediction, selection: Any, correct: Any) -> bool:
        return prediction.options.matches(
            selection,
            correct,
            range_tolerance=self._settings.range_tolerance_ratio,
            time_tolerance_days=self._settings.time_tolerance_days,
        )

    def resolve(
        self,
        prediction: Prediction,
        correct_selection: Any,
        explanation: str,
        resolver_id: str,
        *,
        accuracy: Optional[float] = None,
        auto_resolved: bool = False,
        events: Optional[List[Dict[str, Any]]] = None,
        now: Optional[datetime] = None,
    ) -> ResolutionResult:
        now = now or utcnow()
        self._guard(prediction, now, "resolve")
        correct = prediction.options.normalize_selection(correct_selection)

        prediction.status = PredictionStatus.RESOLVED
        prediction.resolution = PredictionResolution(
            correct_selection=correct,
            explanation=explanation or "",
            resolved_at=now,
            resolved_by=resolver_id,
            accuracy=accuracy,
            auto_resolved=auto_resolved,
            events=list(events or []),
        )
        rewards = []
        for vote in prediction.votes:
            if not self._is_correct(prediction, vote.selection, correct):
                continue
            amount = vote_reward(vote.amount, prediction.difficulty, self._settings.vote_multipliers)
            if amount > 0:
                rewards.append(LedgerEntry(user_id=vote.user_id, amount=amount, kind="reward"))
        logger.info(
            "Prediction %s resolved by %s; %s of %s votes rewarded",
            prediction.id,
            resolver_id,
            len(rewards),
            len(prediction.votes),
        )
        return ResolutionResult(prediction=prediction, rewards=rewards)

    def auto_resolve(
        self,
        prediction: Prediction,
        resolver_id: str,
        articles: Sequence[NewsArticle] = (),
        now: Optional[datetime] = None,
    ) -> ResolutionResult:
        """Resolve from the adapter's reading of recent news.

        Raises ``ResolutionUnavailableError`` without touching the prediction
        when no usable answer comes back.
        """
        now = now or utcnow()
        self._guard(prediction, now, "resolve")
        generated = self._content.resolution(prediction, articles)
        if generated is None:
            raise ResolutionUnavailableError(
                "Automatic resolution is unavailable; retry later or resolve manually",
                {"predictionId": prediction.id},
            )
        return self.resolve(
            prediction,
            generated.correct_selection,
            generated.explanation,
            resolver_id,
            accuracy=generated.accuracy,
            auto_resolved=True,
            events=generated.events,
            now=now,
        )

    def cancel(
        self,
        prediction: Prediction,
        reason: str = "",
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        now = now or utcnow()
        self.check_expiry(prediction, now)
        if prediction.status == PredictionStatus.EXPIRED:
            raise ExpiredError(
                "Prediction has expired",
                {"predictionId": prediction.id, "expiredAt": prediction.deadline.isoformat()},
            )
        if not prediction.is_open():
            raise InvalidStateError(
                f"Cannot cancel a {prediction.status.value} prediction",
                {"status": prediction.status.value},
            )
        prediction.status = PredictionStatus.CANCELLED
        prediction.cancellation_reason = reason or None
        prediction.cancelled_at = now
        refunds = [
            LedgerEntry(user_id=vote.user_id, amount=vote.amount, kind="refund")
            for vote in prediction.votes
            if vote.amount > 0
        ]
        logger.info("Prediction %s cancelled; refunding %s votes", prediction.id, len(refunds))
        return CancellationResult(prediction=prediction, refunds=refunds)


__all__ = [
    "PredictionStateMachine",
    "ResolutionResult",
    "CancellationResult",
    "vote_distribution",
]
