"""High-level engine service orchestrating decision and prediction commands."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from .config import Settings, get_settings
from .content import ContentGenerator
from .decisions import ChoiceResult, DecisionStateMachine
from .eligibility import EligibilityResult, evaluate
from .errors import ForbiddenError, InvalidStateError, NotFoundError
from .llm_client import LLMClient
from .models import (
    CharacterSnapshot,
    Decision,
    Event,
    Narrative,
    Outcome,
    Prediction,
    PredictionVote,
    utcnow,
)
from .news import NewsAPISource, NewsSource, recent_articles
from .outcomes import apply_effect
from .predictions import (
    CancellationResult,
    PredictionStateMachine,
    ResolutionResult,
    vote_distribution,
)
from .state import EngineState
from .telemetry import TelemetryCollector, get_telemetry
from .telemetry_decorator import track_command

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
ORACLE_ROLE = "oracle"


class EngineService:
    """Entry point for the HTTP layer.

    Loads entities, applies lazy expiry (persisting it), checks ownership,
    runs the state machines and writes results with version-checked saves.
    Collaborators are passed in; defaults are built from the environment.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        settings: Optional[Settings] = None,
        content: Optional[ContentGenerator] = None,
        news: Optional[NewsSource] = None,
        telemetry: Optional[TelemetryCollector] = None,
        roles: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.state = EngineState(db_path)
        self.telemetry = telemetry or get_telemetry(Path(db_path).parent / "telemetry.db")
        # Only a client built here is closed by close().
        self._owned_client: Optional[LLMClient] = None
        if content is None:
            self._owned_client = LLMClient()
            content = ContentGenerator(self._owned_client, settings=self.settings, telemetry=self.telemetry)
        self.content = content
        self.news = news if news is not None else NewsAPISource.from_env()
        self.decisions = DecisionStateMachine(self.content, self.settings)
        self.predictions = PredictionStateMachine(self.content, self.settings)
        self._roles: Dict[str, Set[str]] = {user: set(granted) for user, granted in (roles or {}).items()}

    # Helpers -----------------------------------------------------------
    def _has_role(self, user_id: str, *roles: str) -> bool:
        return bool(self._roles.get(user_id, set()) & set(roles))

    def _require_owner(self, owner_id: str, user_id: str, entity: str, *roles: str) -> None:
        if owner_id == user_id or self._has_role(user_id, *roles):
            return
        raise ForbiddenError(f"You do not own this {entity}", {"userId": user_id})

    def _record(self, action: str, payload: Dict[str, object], now: datetime) -> None:
        self.state.append_event(Event(timestamp=now, action=action, payload=payload))

    def _transition(self, entity: str, entity_id: str, old: str, new: str) -> None:
        if old != new:
            self.telemetry.track_transition(entity, entity_id, old, new)

    def _commit_decision(self, decision: Decision, expected_version: int, old_status: str) -> None:
        if not self.state.save_decision(decision, expected_version):
            current = self.state.get_decision(decision.id)
            observed = current.status.value if current else "missing"
            raise InvalidStateError(
                "Decision was modified by another request",
                {"decisionId": decision.id, "status": observed},
            )
        self._transition("decision", decision.id, old_status, decision.status.value)

    def _commit_prediction(self, prediction: Prediction, expected_version: int, old_status: str) -> None:
        if not self.state.save_prediction(prediction, expected_version):
            current = self.state.get_prediction(prediction.id)
            observed = current.status.value if current else "missing"
            raise InvalidStateError(
                "Prediction was modified by another request",
                {"predictionId": prediction.id, "status": observed},
            )
        self._transition("prediction", prediction.id, old_status, prediction.status.value)

    def _load_decision(self, decision_id: str, now: datetime) -> Decision:
        decision = self.state.get_decision(decision_id)
        if decision is None:
            raise NotFoundError(f"Decision {decision_id} not found", {"decisionId": decision_id})
        old = decision.status.value
        if self.decisions.check_expiry(decision, now):
            logger.warning("Decision %s observed past its deadline; marking expired", decision.id)
            self._commit_decision(decision, decision.version, old)
            self._record("decision_expired", {"decision_id": decision.id}, now)
        return decision

    def _load_prediction(self, prediction_id: str, now: datetime) -> Prediction:
        prediction = self.state.get_prediction(prediction_id)
        if prediction is None:
            raise NotFoundError(f"Prediction {prediction_id} not found", {"predictionId": prediction_id})
        old = prediction.status.value
        if self.predictions.check_expiry(prediction, now):
            logger.warning("Prediction %s observed past its deadline; marking expired", prediction.id)
            self._commit_prediction(prediction, prediction.version, old)
            self._record("prediction_expired", {"prediction_id": prediction.id}, now)
        return prediction

    def _require_character(self, character_id: str) -> CharacterSnapshot:
        character = self.state.get_character(character_id)
        if character is None:
            raise NotFoundError(f"Character {character_id} not found", {"characterId": character_id})
        return character

    # Characters and narratives -----------------------------------------
    def register_narrative(self, narrative: Narrative) -> Narrative:
        self.state.upsert_narrative(narrative)
        return narrative

    def register_character(self, character: CharacterSnapshot) -> CharacterSnapshot:
        self.state.upsert_character(character)
        return character

    # Decisions ---------------------------------------------------------
    @track_command
    def create_decision(
        self,
        user_id: str,
        narrative_id: str,
        character_id: str,
        *,
        title: str,
        description: str = "",
        options: Iterable[Any] = (),
        importance: str = "medium",
        time_limit: Optional[int] = None,
        scene_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Decision:
        now = now or utcnow()
        decision = self.decisions.create(
            narrative=self.state.get_narrative(narrative_id),
            character=self.state.get_character(character_id),
            user_id=user_id,
            title=title,
            description=description,
            options=options,
            importance=importance,
            time_limit=time_limit,
            scene_id=scene_id,
            narrative_id=narrative_id,
            character_id=character_id,
            now=now,
        )
        self.state.insert_decision(decision)
        self._record("decision_created", {"decision_id": decision.id, "user_id": user_id}, now)
        return decision

    @track_command
    def generate_decision(
        self,
        user_id: str,
        narrative_id: str,
        character_id: str,
        *,
        importance: str = "medium",
        context: str = "",
        time_limit: Optional[int] = None,
        scene_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Decision:
        now = now or utcnow()
        decision = self.decisions.generate(
            narrative=self.state.get_narrative(narrative_id),
            character=self.state.get_character(character_id),
            user_id=user_id,
            importance=importance,
            context=context,
            time_limit=time_limit,
            scene_id=scene_id,
            narrative_id=narrative_id,
            character_id=character_id,
            now=now,
        )
        self.state.insert_decision(decision)
        self._record(
            "decision_created",
            {"decision_id": decision.id, "user_id": user_id, "generated": True},
            now,
        )
        return decision

    def get_decision(self, decision_id: str, now: Optional[datetime] = None) -> Decision:
        return self._load_decision(decision_id, now or utcnow())

    def list_decisions(self, now: Optional[datetime] = None, **filters: Optional[str]) -> List[Decision]:
        now = now or utcnow()
        return [self._load_decision(entry.id, now) for entry in self.state.list_decisions(**filters)]

    @track_command
    def activate_decision(self, user_id: str, decision_id: str, now: Optional[datetime] = None) -> Decision:
        now = now or utcnow()
        decision = self._load_decision(decision_id, now)
        self._require_owner(decision.user_id, user_id, "decision")
        expected, old = decision.version, decision.status.value
        self.decisions.activate(decision, now)
        self._commit_decision(decision, expected, old)
        self._record("decision_activated", {"decision_id": decision.id}, now)
        return decision

    @track_command
    def check_eligibility(
        self,
        decision_id: str,
        character_id: str,
        now: Optional[datetime] = None,
    ) -> Dict[str, EligibilityResult]:
        """Eligibility of ``character_id`` for every option, keyed by option id."""
        decision = self._load_decision(decision_id, now or utcnow())
        character = self._require_character(character_id)
        return {option.id: evaluate(character, option) for option in decision.options}

    @track_command
    def choose_option(
        self,
        user_id: str,
        decision_id: str,
        option_id: str,
        now: Optional[datetime] = None,
    ) -> ChoiceResult:
        now = now or utcnow()
        decision = self._load_decision(decision_id, now)
        self._require_owner(decision.user_id, user_id, "decision")
        character = self._require_character(decision.character_id)
        expected, old = decision.version, decision.status.value
        result = self.decisions.choose_option(decision, option_id, character, now)
        # The decision row is the serialization point; the effect is applied only by the winner.
        self._commit_decision(decision, expected, old)
        updated = apply_effect(
            character,
            result.aggregated_effect,
            reputation_bounds=self.settings.reputation_bounds,
            decision_id=decision.id,
        )
        self.state.upsert_character(updated)
        self._record(
            "decision_resolved",
            {
                "decision_id": decision.id,
                "option_id": option_id,
                "character_id": character.id,
                "fallback_outcomes": result.used_fallback,
            },
            now,
        )
        return result

    @track_command
    def decision_outcomes(self, decision_id: str, now: Optional[datetime] = None) -> List[Outcome]:
        decision = self._load_decision(decision_id, now or utcnow())
        return self.decisions.outcomes(decision)

    @track_command
    def cancel_decision(self, user_id: str, decision_id: str, now: Optional[datetime] = None) -> Decision:
        now = now or utcnow()
        decision = self._load_decision(decision_id, now)
        self._require_owner(decision.user_id, user_id, "decision", ADMIN_ROLE)
        expected, old = decision.version, decision.status.value
        self.decisions.cancel(decision, now)
        self._commit_decision(decision, expected, old)
        self._record("decision_cancelled", {"decision_id": decision.id, "by": user_id}, now)
        return decision

    @track_command
    def extend_decision(
        self,
        user_id: str,
        decision_id: str,
        hours: float,
        now: Optional[datetime] = None,
    ) -> Decision:
        now = now or utcnow()
        decision = self._load_decision(decision_id, now)
        self._require_owner(decision.user_id, user_id, "decision", ADMIN_ROLE)
        expected, old = decision.version, decision.status.value
        self.decisions.extend_deadline(decision, hours, now)
        self._commit_decision(decision, expected, old)
        self._record("decision_extended", {"decision_id": decision.id, "hours": hours}, now)
        return decision

    # Predictions -------------------------------------------------------
    @track_command
    def create_prediction(
        self,
        user_id: str,
        narrative_id: str,
        character_id: str,
        *,
        now: Optional[datetime] = None,
        **params: Any,
    ) -> Prediction:
        now = now or utcnow()
        prediction = self.predictions.create(
            narrative=self.state.get_narrative(narrative_id),
            character=self.state.get_character(character_id),
            user_id=user_id,
            narrative_id=narrative_id,
            character_id=character_id,
            now=now,
            **params,
        )
        self.state.insert_prediction(prediction)
        self._record("prediction_created", {"prediction_id": prediction.id, "user_id": user_id}, now)
        return prediction

    @track_command
    def generate_prediction(
        self,
        user_id: str,
        narrative_id: str,
        character_id: str,
        *,
        type: str = "binary",
        category: str = "other",
        difficulty: str = "medium",
        stake_amount: int = 0,
        days_to_resolve: Optional[int] = None,
        decision_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Prediction:
        now = now or utcnow()
        narrative = self.state.get_narrative(narrative_id)
        articles = []
        if narrative is not None:
            articles = recent_articles(
                self.news,
                f"{narrative.title} {category}",
                now=now,
                window_days=self.settings.news_window_days,
                limit=self.settings.news_article_limit,
            )
        prediction = self.predictions.generate(
            narrative=narrative,
            character=self.state.get_character(character_id),
            user_id=user_id,
            type=type,
            category=category,
            difficulty=difficulty,
            stake_amount=stake_amount,
            days_to_resolve=days_to_resolve,
            decision_id=decision_id,
            articles=articles,
            narrative_id=narrative_id,
            character_id=character_id,
            now=now,
        )
        self.state.insert_prediction(prediction)
        self._record(
            "prediction_created",
            {"prediction_id": prediction.id, "user_id": user_id, "generated": True},
            now,
        )
        return prediction

    def get_prediction(self, prediction_id: str, now: Optional[datetime] = None) -> Prediction:
        return self._load_prediction(prediction_id, now or utcnow())

    def list_predictions(self, now: Optional[datetime] = None, **filters: Optional[str]) -> List[Prediction]:
        now = now or utcnow()
        return [self._load_prediction(entry.id, now) for entry in self.state.list_predictions(**filters)]

    @track_command
    def vote(
        self,
        user_id: str,
        prediction_id: str,
        selection: Any,
        amount: Any,
        *,
        character_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PredictionVote:
        now = now or utcnow()
        prediction = self._load_prediction(prediction_id, now)
        expected, old = prediction.version, prediction.status.value
        vote = self.predictions.vote(
            prediction, user_id, selection, amount, character_id=character_id, now=now
        )
        self._commit_prediction(prediction, expected, old)
        self._record(
            "prediction_vote",
            {"prediction_id": prediction.id, "user_id": user_id, "amount": vote.amount},
            now,
        )
        return vote

    def vote_distribution(self, prediction_id: str, now: Optional[datetime] = None):
        return vote_distribution(self._load_prediction(prediction_id, now or utcnow()))

    @track_command
    def resolve_prediction(
        self,
        user_id: str,
        prediction_id: str,
        correct_selection: Any,
        explanation: str,
        now: Optional[datetime] = None,
    ) -> ResolutionResult:
        now = now or utcnow()
        prediction = self._load_prediction(prediction_id, now)
        self._require_owner(prediction.user_id, user_id, "prediction", ADMIN_ROLE)
        expected, old = prediction.version, prediction.status.value
        result = self.predictions.resolve(prediction, correct_selection, explanation, user_id, now=now)
        self._finish_resolution(result, expected, old, now)
        return result

    @track_command
    def auto_resolve_prediction(
        self,
        user_id: str,
        prediction_id: str,
        now: Optional[datetime] = None,
    ) -> ResolutionResult:
        now = now or utcnow()
        prediction = self._load_prediction(prediction_id, now)
        self._require_owner(prediction.user_id, user_id, "prediction", ADMIN_ROLE, ORACLE_ROLE)
        articles = recent_articles(
            self.news,
            f"{prediction.title} {prediction.category}",
            now=now,
            window_days=self.settings.news_window_days,
            limit=self.settings.news_article_limit,
        )
        expected, old = prediction.version, prediction.status.value
        result = self.predictions.auto_resolve(prediction, user_id, articles, now)
        self._finish_resolution(result, expected, old, now)
        return result

    def _finish_resolution(
        self, result: ResolutionResult, expected: int, old: str, now: datetime
    ) -> None:
        prediction = result.prediction
        self._commit_prediction(prediction, expected, old)
        self.state.record_ledger(result.rewards, prediction_id=prediction.id, at=now)
        self._record(
            "prediction_resolved",
            {
                "prediction_id": prediction.id,
                "auto": prediction.resolution.auto_resolved,
                "rewards": [entry.to_dict() for entry in result.rewards],
            },
            now,
        )

    @track_command
    def cancel_prediction(
        self,
        user_id: str,
        prediction_id: str,
        reason: str = "",
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        now = now or utcnow()
        prediction = self._load_prediction(prediction_id, now)
        self._require_owner(prediction.user_id, user_id, "prediction", ADMIN_ROLE)
        expected, old = prediction.version, prediction.status.value
        result = self.predictions.cancel(prediction, reason, now)
        self._commit_prediction(prediction, expected, old)
        self.state.record_ledger(result.refunds, prediction_id=prediction.id, at=now)
        self._record(
            "prediction_cancelled",
            {
                "prediction_id": prediction.id,
                "reason": reason,
                "refunds": [entry.to_dict() for entry in result.refunds],
            },
            now,
        )
        return result

    # Housekeeping ------------------------------------------------------
    def sweep_expired(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Flip every stale open decision and prediction to expired."""
        now = now or utcnow()
        counts = {"decisions": 0, "predictions": 0}
        for decision in self.state.stale_decisions(now):
            try:
                self._load_decision(decision.id, now)
            except InvalidStateError:
                logger.info("Decision %s changed during sweep; skipping", decision.id)
                continue
            counts["decisions"] += 1
        for prediction in self.state.stale_predictions(now):
            try:
                self._load_prediction(prediction.id, now)
            except InvalidStateError:
                logger.info("Prediction %s changed during sweep; skipping", prediction.id)
                continue
            counts["predictions"] += 1
        self.telemetry.track_system_event(
            "expiry_sweep",
            source="sweep",
            reason=f"{counts['decisions']} decisions, {counts['predictions']} predictions",
        )
        if counts["decisions"] or counts["predictions"]:
            logger.info("Expiry sweep flipped %s", counts)
        return counts

    def recent_events(self, limit: int = 50) -> List[Event]:
        return self.state.export_events(limit=limit)

    def close(self) -> None:
        self.telemetry.flush()
        if self._owned_client is not None:
            self._owned_client.close()
            self._owned_client = None


__all__ = ["EngineService", "ADMIN_ROLE", "ORACLE_ROLE"]
