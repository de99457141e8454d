"""Tests for the prediction state machine."""
from __future__ import annotations

from datetime import date, timedelta

import pytest

from narrative_engine.content import ContentGenerator
from narrative_engine.errors import (
    ExpiredError,
    InvalidInputError,
    InvalidStateError,
    ResolutionUnavailableError,
)
from narrative_engine.models import Difficulty, PredictionStatus
from narrative_engine.prediction_options import PredictionType
from narrative_engine.predictions import PredictionStateMachine, vote_distribution


@pytest.fixture
def machine(fallback_content, settings):
    return PredictionStateMachine(fallback_content, settings)


@pytest.fixture
def make_prediction(machine, narrative, character, now):
    def factory(**overrides):
        params = dict(
            narrative=narrative,
            character=character,
            user_id="u1",
            title="Will the strike end?",
            type="binary",
            options={"statement": "The strike ends this month"},
            category="economics",
            difficulty="medium",
            now=now,
        )
        params.update(overrides)
        return machine.create(**params)

    return factory


def test_create_defaults(make_prediction, now):
    prediction = make_prediction()
    assert prediction.status == PredictionStatus.ACTIVE
    assert prediction.deadline == now + timedelta(days=7)
    assert prediction.type == PredictionType.BINARY
    assert prediction.is_ai_generated is False
    assert prediction.votes == []


def test_create_without_options_uses_template(make_prediction, now):
    prediction = make_prediction(type="time", options=None)
    assert prediction.options.to_dict() == {
        "earliestDate": (now + timedelta(days=3)).date().isoformat(),
        "latestDate": (now + timedelta(days=14)).date().isoformat(),
    }


@pytest.mark.parametrize(
    "overrides",
    [
        {"category": "sports"},
        {"difficulty": "impossible"},
        {"confidence": 101},
        {"stake_amount": -1},
        {"days_to_resolve": 0},
        {"type": "ternary"},
        {"title": "  "},
    ],
)
def test_create_rejects_invalid_input(make_prediction, overrides):
    with pytest.raises(InvalidInputError):
        make_prediction(**overrides)


def test_generate_attaches_estimated_reward(machine, narrative, character, now):
    prediction = machine.generate(
        narrative=narrative,
        character=character,
        user_id="u1",
        type="multiple",
        category="politics",
        difficulty="hard",
        stake_amount=10,
        now=now,
    )
    assert prediction.is_ai_generated is True
    assert prediction.deadline == now + timedelta(days=14)
    assert prediction.confidence == 50
    assert prediction.estimated_reward == 60
    assert prediction.options.labels() == [
        "Outcome A will occur",
        "Outcome B will occur",
        "Outcome C will occur",
    ]
    assert prediction.tags == ["politics", "labor"]


def test_vote_is_replaced_not_duplicated(machine, make_prediction, now):
    """Voting twice keeps only the latest vote for that user."""

    prediction = make_prediction()
    machine.vote(prediction, "u2", 0, 10, now=now)
    machine.vote(prediction, "u2", 1, 25, now=now + timedelta(minutes=1))

    assert len(prediction.votes) == 1
    vote = prediction.vote_for("u2")
    assert vote.selection == 1
    assert vote.amount == 25
    assert prediction.participant_count == 1
    assert prediction.total_staked == 25


@pytest.mark.parametrize("amount", [0, 101, 2.5, "10", True])
def test_vote_amount_bounds(machine, make_prediction, now, amount):
    prediction = make_prediction()
    with pytest.raises(InvalidInputError):
        machine.vote(prediction, "u2", 0, amount, now=now)
    assert prediction.votes == []


def test_vote_selection_is_validated(machine, make_prediction, now):
    prediction = make_prediction()
    with pytest.raises(InvalidInputError):
        machine.vote(prediction, "u2", 5, 10, now=now)


def test_vote_after_deadline_expires(machine, make_prediction):
    prediction = make_prediction()
    with pytest.raises(ExpiredError):
        machine.vote(prediction, "u2", 0, 10, now=prediction.deadline + timedelta(seconds=1))
    assert prediction.status == PredictionStatus.EXPIRED


@pytest.mark.parametrize(
    "action",
    [
        lambda machine, prediction, at: machine.resolve(prediction, 0, "Late", "u1", now=at),
        lambda machine, prediction, at: machine.auto_resolve(prediction, "u1", now=at),
        lambda machine, prediction, at: machine.cancel(prediction, "Too late", now=at),
    ],
    ids=["resolve", "auto_resolve", "cancel"],
)
def test_commands_after_deadline_expire(machine, make_prediction, now, action):
    prediction = make_prediction()
    machine.vote(prediction, "u2", 0, 10, now=now)

    with pytest.raises(ExpiredError):
        action(machine, prediction, prediction.deadline + timedelta(seconds=1))

    assert prediction.status == PredictionStatus.EXPIRED
    assert prediction.resolution is None
    assert prediction.cancelled_at is None


def test_binary_resolution_rewards_correct_votes(machine, make_prediction, now):
    prediction = make_prediction(difficulty=Difficulty.MEDIUM)
    machine.vote(prediction, "u1", 0, 20, now=now)
    machine.vote(prediction, "u2", 1, 10, now=now)

    result = machine.resolve(prediction, 0, "It ended.", "u1", now=now + timedelta(days=1))

    assert [entry.to_dict() for entry in result.rewards] == [{"userId": "u1", "amount": 30}]
    assert prediction.status == PredictionStatus.RESOLVED
    assert prediction.resolution.correct_selection == 0
    assert prediction.resolution.resolved_by == "u1"
    assert prediction.resolution.auto_resolved is False


def test_resolution_is_final(machine, make_prediction, now):
    prediction = make_prediction()
    machine.resolve(prediction, 1, "No.", "u1", now=now)
    with pytest.raises(InvalidStateError):
        machine.resolve(prediction, 0, "Yes after all.", "u1", now=now)
    with pytest.raises(InvalidStateError):
        machine.vote(prediction, "u2", 0, 5, now=now)


def test_compound_resolution_uses_set_equality(machine, make_prediction, now):
    prediction = make_prediction(
        type="compound",
        options={
            "conditions": [
                {"description": "Talks resume", "required": True},
                {"description": "Wages rise", "required": False},
                {"description": "Port reopens", "required": False},
            ]
        },
        difficulty="extreme",
    )
    machine.vote(prediction, "u1", [2, 0], 10, now=now)
    machine.vote(prediction, "u2", [0], 10, now=now)

    result = machine.resolve(prediction, [0, 2], "Both happened.", "u1", now=now)

    assert [entry.to_dict() for entry in result.rewards] == [{"userId": "u1", "amount": 30}]


def test_time_resolution_with_exact_match(machine, make_prediction, now):
    prediction = make_prediction(type="time", options=None)
    target = (now + timedelta(days=5)).date()
    machine.vote(prediction, "u1", target.isoformat(), 10, now=now)
    machine.vote(prediction, "u2", (target + timedelta(days=1)).isoformat(), 10, now=now)

    result = machine.resolve(prediction, target, "Happened on the day.", "u1", now=now)

    assert [entry.user_id for entry in result.rewards] == ["u1"]
    assert isinstance(prediction.resolution.correct_selection, date)


def test_cancel_refunds_every_stake(machine, make_prediction, now):
    prediction = make_prediction()
    machine.vote(prediction, "u1", 0, 30, now=now)
    machine.vote(prediction, "u2", 1, 10, now=now)

    result = machine.cancel(prediction, "Event called off", now)

    assert [entry.to_dict() for entry in result.refunds] == [
        {"userId": "u1", "amount": 30},
        {"userId": "u2", "amount": 10},
    ]
    assert all(entry.kind == "refund" for entry in result.refunds)
    assert prediction.status == PredictionStatus.CANCELLED
    assert prediction.cancellation_reason == "Event called off"
    with pytest.raises(InvalidStateError):
        machine.cancel(prediction, "again", now)


def test_auto_resolve_unavailable_leaves_prediction_active(machine, make_prediction, now):
    prediction = make_prediction()
    machine.vote(prediction, "u2", 0, 10, now=now)
    before = prediction.to_dict()

    with pytest.raises(ResolutionUnavailableError):
        machine.auto_resolve(prediction, "oracle-bot", now=now)

    assert prediction.to_dict() == before


def test_auto_resolve_with_generated_answer(fake_client, settings, make_character, narrative, now):
    client = fake_client(
        {
            "correctSelection": 0,
            "explanation": "Reported settled.",
            "accuracy": 0.9,
            "events": [{"title": "Deal signed", "source": "Wire", "relevanceScore": 0.8}],
        }
    )
    machine = PredictionStateMachine(ContentGenerator(client, settings=settings), settings)
    prediction = machine.create(
        narrative=narrative,
        character=make_character(),
        user_id="u1",
        title="Strike ends?",
        type="binary",
        options={"statement": "The strike ends"},
        now=now,
    )
    machine.vote(prediction, "u3", 0, 10, now=now)

    result = machine.auto_resolve(prediction, "oracle-bot", now=now)

    assert prediction.resolution.auto_resolved is True
    assert prediction.resolution.accuracy == 0.9
    assert prediction.resolution.events[0]["title"] == "Deal signed"
    assert [entry.to_dict() for entry in result.rewards] == [{"userId": "u3", "amount": 15}]


def test_vote_distribution(machine, make_prediction, now):
    prediction = make_prediction()
    machine.vote(prediction, "u1", 0, 5, now=now)
    machine.vote(prediction, "u2", 0, 5, now=now)
    machine.vote(prediction, "u3", 1, 5, now=now)

    assert vote_distribution(prediction) == [
        {"option": "Yes", "count": 2, "percentage": 67},
        {"option": "No", "count": 1, "percentage": 33},
    ]


def test_vote_distribution_skips_continuous_types(make_prediction):
    prediction = make_prediction(type="range", options={"min": 0, "max": 10})
    assert vote_distribution(prediction) is None
