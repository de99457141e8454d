"""End-to-end tests for EngineService over a temporary database."""
from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest

from narrative_engine.content import ContentGenerator
from narrative_engine.errors import (
    ExpiredError,
    ForbiddenError,
    IneligibleError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    ResolutionUnavailableError,
)
from narrative_engine.models import DecisionStatus, PredictionStatus
from narrative_engine.news import NewsArticle, StaticNewsSource
from narrative_engine.service import EngineService
from narrative_engine.telemetry import TelemetryCollector


@pytest.fixture
def build_service(tmp_path, settings, fallback_content, narrative, make_character):
    def factory(content=None, news=None):
        service = EngineService(
            tmp_path / "engine.db",
            settings=settings,
            content=content or fallback_content,
            news=news or StaticNewsSource(),
            telemetry=TelemetryCollector(tmp_path / "telemetry.db"),
            roles={"admin-1": ["admin"], "oracle-1": ["oracle"]},
        )
        service.register_narrative(narrative)
        service.register_character(make_character())
        service.register_character(make_character(id="c2", user_id="u2", name="Bram"))
        return service

    return factory


@pytest.fixture
def service(build_service):
    return build_service()


@pytest.fixture
def decision(service, now):
    return service.generate_decision("u1", "n1", "c1", importance="high", now=now)


@pytest.fixture
def prediction(service, now):
    return service.create_prediction(
        "u1",
        "n1",
        "c1",
        title="Will the strike end?",
        type="binary",
        options={"statement": "The strike ends this month"},
        category="economics",
        now=now,
    )


def _actions(service):
    return [event.action for event in service.recent_events()]


# Decisions ---------------------------------------------------------------


def test_choose_option_applies_effect_to_character(service, decision, now):
    """Resolving a decision persists it and updates the character snapshot."""

    cautious = decision.options[0].id

    result = service.choose_option("u1", decision.id, cautious, now=now + timedelta(hours=2))

    stored = service.get_decision(decision.id, now=now + timedelta(hours=2))
    assert stored.status == DecisionStatus.RESOLVED
    assert stored.chosen_option_id == cautious
    assert stored.version == 1
    assert service.decision_outcomes(decision.id, now=now) == result.outcomes

    character = service.state.get_character("c1")
    assert character.influence == 15
    assert character.experience == 20
    assert character.resources == {"money": 200, "connections": 12, "information": 10}
    assert character.reputation["public"] == 3
    assert character.reputation["media"] == 2
    assert character.decisions == [decision.id]
    assert "decision_resolved" in _actions(service)
    assert service.telemetry.get_transition_counts().get("decision:resolved") == 1


def test_ineligible_choice_changes_nothing(service, decision, now):
    decisive = decision.options[1].id

    with pytest.raises(IneligibleError) as excinfo:
        service.choose_option("u1", decision.id, decisive, now=now)

    assert excinfo.value.reasons == ["Requires 50 influence"]
    stored = service.state.get_decision(decision.id)
    assert stored.status == DecisionStatus.ACTIVE
    assert stored.version == 0
    assert service.state.get_character("c1").influence == 10


def test_check_eligibility_covers_every_option(service, decision, now):
    results = service.check_eligibility(decision.id, "c1", now=now)
    assert [results[option.id].eligible for option in decision.options] == [True, False]


def test_only_owner_may_choose(service, decision, now):
    with pytest.raises(ForbiddenError):
        service.choose_option("u2", decision.id, decision.options[0].id, now=now)


def test_unknown_decision(service, now):
    with pytest.raises(NotFoundError):
        service.get_decision("missing", now=now)


def test_lazy_expiry_is_persisted(service, decision):
    later = decision.expires_at + timedelta(minutes=1)

    with pytest.raises(ExpiredError):
        service.choose_option("u1", decision.id, decision.options[0].id, now=later)

    stored = service.state.get_decision(decision.id)
    assert stored.status == DecisionStatus.EXPIRED
    assert "decision_expired" in _actions(service)


def test_losing_writer_gets_invalid_state(service, decision, now, monkeypatch):
    """A choice computed from a stale read is rejected and has no effect."""

    stale = service.state.get_decision(decision.id)
    service.cancel_decision("u1", decision.id, now=now)

    real_get = service.state.get_decision
    reads = iter([stale])
    monkeypatch.setattr(service.state, "get_decision", lambda decision_id: next(reads, None) or real_get(decision_id))

    with pytest.raises(InvalidStateError) as excinfo:
        service.choose_option("u1", decision.id, decision.options[0].id, now=now)

    assert excinfo.value.detail["status"] == "cancelled"
    assert service.state.get_character("c1").influence == 10


def test_manual_decision_activation(service, now):
    decision = service.create_decision(
        "u1", "n1", "c1", title="Meet the union", options=[{"text": "Go"}], now=now
    )
    assert decision.status == DecisionStatus.PENDING
    with pytest.raises(InvalidStateError):
        service.choose_option("u1", decision.id, decision.options[0].id, now=now)

    service.activate_decision("u1", decision.id, now=now)
    service.choose_option("u1", decision.id, decision.options[0].id, now=now)
    assert service.state.get_decision(decision.id).status == DecisionStatus.RESOLVED


def test_extension_permissions_and_limits(service, decision, now):
    with pytest.raises(ForbiddenError):
        service.extend_decision("u2", decision.id, 1, now=now)
    with pytest.raises(InvalidInputError):
        service.extend_decision("u1", decision.id, 73, now=now)

    extended = service.extend_decision("admin-1", decision.id, 24, now=now)

    assert extended.expires_at == decision.expires_at + timedelta(seconds=86400)
    assert service.state.get_decision(decision.id).expires_at == extended.expires_at


def test_list_decisions_filters(service, decision, now):
    service.generate_decision("u2", "n1", "c2", now=now)
    assert [d.id for d in service.list_decisions(now=now, user_id="u1")] == [decision.id]
    assert len(service.list_decisions(now=now, narrative_id="n1")) == 2


# Predictions -------------------------------------------------------------


def test_resolution_records_rewards(service, prediction, now):
    service.vote("u1", prediction.id, 0, 20, now=now)
    service.vote("u2", prediction.id, 1, 10, now=now)

    result = service.resolve_prediction("u1", prediction.id, 0, "It ended.", now=now)

    assert [entry.to_dict() for entry in result.rewards] == [{"userId": "u1", "amount": 30}]
    assert service.state.balance("u1") == 30
    assert service.state.balance("u2") == 0
    assert service.get_prediction(prediction.id, now=now).status == PredictionStatus.RESOLVED
    assert "prediction_resolved" in _actions(service)


def test_only_owner_or_admin_resolves(service, prediction, now):
    with pytest.raises(ForbiddenError):
        service.resolve_prediction("u2", prediction.id, 0, "Guess", now=now)
    service.resolve_prediction("admin-1", prediction.id, 1, "Admin call", now=now)


def test_cancellation_refunds_stakes(service, prediction, now):
    service.vote("u1", prediction.id, 0, 30, now=now)
    service.vote("u2", prediction.id, 1, 10, now=now)

    result = service.cancel_prediction("u1", prediction.id, "Called off", now=now)

    assert [entry.to_dict() for entry in result.refunds] == [
        {"userId": "u1", "amount": 30},
        {"userId": "u2", "amount": 10},
    ]
    refunds = service.state.ledger_entries(kind="refund")
    assert [(entry["userId"], entry["amount"]) for entry in refunds] == [("u1", 30), ("u2", 10)]


def test_auto_resolve_unavailable(service, prediction, now):
    service.vote("u2", prediction.id, 0, 10, now=now)

    with pytest.raises(ResolutionUnavailableError):
        service.auto_resolve_prediction("oracle-1", prediction.id, now=now)

    stored = service.state.get_prediction(prediction.id)
    assert stored.status == PredictionStatus.ACTIVE
    assert stored.version == 1
    assert service.state.ledger_entries() == []


def test_auto_resolve_requires_role(service, prediction, now):
    with pytest.raises(ForbiddenError):
        service.auto_resolve_prediction("u2", prediction.id, now=now)


def test_vote_replacement_is_persisted(service, prediction, now):
    service.vote("u2", prediction.id, 0, 10, now=now)
    service.vote("u2", prediction.id, 1, 40, now=now)

    stored = service.state.get_prediction(prediction.id)
    assert len(stored.votes) == 1
    assert stored.votes[0].amount == 40
    assert service.vote_distribution(prediction.id, now=now) == [
        {"option": "Yes", "count": 0, "percentage": 0},
        {"option": "No", "count": 1, "percentage": 100},
    ]


def test_vote_after_deadline(service, prediction):
    with pytest.raises(ExpiredError):
        service.vote("u2", prediction.id, 0, 10, now=prediction.deadline + timedelta(hours=1))
    assert service.state.get_prediction(prediction.id).status == PredictionStatus.EXPIRED


@pytest.mark.parametrize(
    "action",
    [
        lambda service, prediction_id, at: service.resolve_prediction("u1", prediction_id, 0, "Late", now=at),
        lambda service, prediction_id, at: service.auto_resolve_prediction("oracle-1", prediction_id, now=at),
        lambda service, prediction_id, at: service.cancel_prediction("admin-1", prediction_id, "Late", now=at),
    ],
    ids=["resolve", "auto_resolve", "cancel"],
)
def test_late_commands_persist_expiry(service, prediction, now, action):
    service.vote("u2", prediction.id, 0, 10, now=now)

    with pytest.raises(ExpiredError):
        action(service, prediction.id, prediction.deadline + timedelta(seconds=1))

    stored = service.state.get_prediction(prediction.id)
    assert stored.status == PredictionStatus.EXPIRED
    assert stored.resolution is None
    assert service.state.ledger_entries() == []
    assert "prediction_expired" in _actions(service)


def test_generated_prediction_sees_recent_news(build_service, fake_client, settings, now):
    client = fake_client(None)
    news = StaticNewsSource(
        [
            NewsArticle("Harbor talks collapse", "Negotiators walk out", "Wire", published_at=now - timedelta(days=1)),
            NewsArticle("Harbor history", "Old story", "Wire", published_at=now - timedelta(days=30)),
        ]
    )
    service = build_service(content=ContentGenerator(client, settings=settings), news=news)

    prediction = service.generate_prediction(
        "u1", "n1", "c1", type="binary", category="economics", stake_amount=10, now=now
    )

    assert prediction.is_ai_generated is True
    assert prediction.estimated_reward == 30
    assert "Harbor talks collapse" in client.prompts[0]
    assert "Harbor history" not in client.prompts[0]


# Housekeeping ------------------------------------------------------------


def test_sweep_expired(service, decision, prediction, now):
    far = now + timedelta(days=30)

    assert service.sweep_expired(far) == {"decisions": 1, "predictions": 1}
    assert service.sweep_expired(far) == {"decisions": 0, "predictions": 0}
    assert service.state.get_decision(decision.id).status == DecisionStatus.EXPIRED
    assert service.state.get_prediction(prediction.id).status == PredictionStatus.EXPIRED


def test_command_errors_are_tracked(service, decision, now):
    with pytest.raises(IneligibleError):
        service.choose_option("u1", decision.id, decision.options[1].id, now=now)
    with pytest.raises(ForbiddenError):
        service.cancel_decision("u2", decision.id, now=now)
    with pytest.raises(NotFoundError):
        service.vote("u2", "missing", 0, 10, now=now)

    assert service.telemetry.get_error_counts() == {"Ineligible": 1, "Forbidden": 1, "NotFound": 1}


def test_close_shuts_down_default_llm_client(tmp_path, settings):
    with patch("narrative_engine.service.LLMClient") as client_cls:
        service = EngineService(
            tmp_path / "engine.db",
            settings=settings,
            news=StaticNewsSource(),
            telemetry=TelemetryCollector(tmp_path / "telemetry.db"),
        )
        service.close()
        service.close()

    client_cls.return_value.close.assert_called_once_with()
