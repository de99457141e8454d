"""Decision and prediction analytics, and the predictor leaderboard."""
from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .config import Settings, get_settings
from .errors import InvalidInputError
from .models import DecisionStatus, PredictionStatus, utcnow
from .rewards import vote_reward
from .state import EngineState

TIMEFRAMES: Dict[str, Optional[timedelta]] = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
    "all": None,
}


def decision_summary(
    state: EngineState,
    *,
    narrative_id: Optional[str] = None,
    top: int = 5,
) -> Dict[str, Any]:
    decisions = state.list_decisions(narrative_id=narrative_id)
    by_status = Counter(decision.status.value for decision in decisions)
    by_importance = Counter(decision.importance.value for decision in decisions)
    per_narrative = Counter(decision.narrative_id for decision in decisions)

    durations = [
        (decision.resolved_at - decision.created_at).total_seconds()
        for decision in decisions
        if decision.status == DecisionStatus.RESOLVED and decision.resolved_at is not None
    ]
    most_active = []
    for narrative, count in per_narrative.most_common(top):
        record = state.get_narrative(narrative)
        most_active.append(
            {"narrativeId": narrative, "title": record.title if record else None, "decisions": count}
        )
    return {
        "total": len(decisions),
        "byStatus": dict(by_status),
        "byImportance": dict(by_importance),
        "mostActiveNarratives": most_active,
        "averageDecisionSeconds": sum(durations) / len(durations) if durations else 0.0,
    }


def prediction_summary(
    state: EngineState,
    *,
    narrative_id: Optional[str] = None,
    settings: Optional[Settings] = None,
    top: int = 5,
) -> Dict[str, Any]:
    settings = settings or get_settings()
    predictions = state.list_predictions(narrative_id=narrative_id)
    popular = sorted(predictions, key=lambda p: (-p.participant_count, -p.total_staked, p.title))

    correct_votes = 0
    judged_votes = 0
    for prediction in predictions:
        if prediction.status != PredictionStatus.RESOLVED or prediction.resolution is None:
            continue
        for vote in prediction.votes:
            judged_votes += 1
            if prediction.options.matches(
                vote.selection,
                prediction.resolution.correct_selection,
                range_tolerance=settings.range_tolerance_ratio,
                time_tolerance_days=settings.time_tolerance_days,
            ):
                correct_votes += 1

    return {
        "total": len(predictions),
        "byStatus": dict(Counter(p.status.value for p in predictions)),
        "byType": dict(Counter(p.type.value for p in predictions)),
        "byDifficulty": dict(Counter(p.difficulty.value for p in predictions)),
        "mostPopular": [
            {
                "predictionId": p.id,
                "title": p.title,
                "participantCount": p.participant_count,
                "totalStaked": p.total_staked,
            }
            for p in popular[:top]
        ],
        "voterAccuracy": correct_votes / judged_votes if judged_votes else 0.0,
    }


def leaderboard(
    state: EngineState,
    *,
    timeframe: str = "all",
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
    limit: int = 10,
) -> List[Dict[str, Any]]:
    """Rank voters by total reward earned on predictions resolved in ``timeframe``."""

    if timeframe not in TIMEFRAMES:
        raise InvalidInputError(
            f"Invalid timeframe: {timeframe}", {"allowed": sorted(TIMEFRAMES)}
        )
    settings = settings or get_settings()
    now = now or utcnow()
    window = TIMEFRAMES[timeframe]
    since = now - window if window is not None else None

    stats: Dict[str, Dict[str, int]] = defaultdict(lambda: {"correct": 0, "total": 0, "reward": 0})
    for prediction in state.list_predictions(status=PredictionStatus.RESOLVED.value):
        resolution = prediction.resolution
        if resolution is None:
            continue
        if since is not None and resolution.resolved_at < since:
            continue
        for vote in prediction.votes:
            entry = stats[vote.user_id]
            entry["total"] += 1
            if prediction.options.matches(
                vote.selection,
                resolution.correct_selection,
                range_tolerance=settings.range_tolerance_ratio,
                time_tolerance_days=settings.time_tolerance_days,
            ):
                entry["correct"] += 1
                entry["reward"] += vote_reward(
                    vote.amount, prediction.difficulty, settings.vote_multipliers
                )

    ranked = sorted(
        stats.items(),
        key=lambda item: (-item[1]["reward"], -item[1]["correct"], item[0]),
    )
    return [
        {
            "rank": position,
            "userId": user_id,
            "correctPredictions": entry["correct"],
            "totalPredictions": entry["total"],
            "accuracy": entry["correct"] / entry["total"] if entry["total"] else 0.0,
            "totalReward": entry["reward"],
        }
        for position, (user_id, entry) in enumerate(ranked[:limit], start=1)
    ]


__all__ = ["TIMEFRAMES", "decision_summary", "prediction_summary", "leaderboard"]
