"""Configuration loading utilities for the narrative engine."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml


DEFAULT_SETTINGS_PATH = Path(__file__).parent / "data" / "settings.yaml"


@dataclass(frozen=True)
class Settings:
    """Typed view over the settings YAML file."""

    decision_time_limits_hours: Dict[str, float]
    decision_influence_requirements: Dict[str, int]
    decision_max_extension_hours: float
    vote_amount_min: int
    vote_amount_max: int
    manual_days_to_resolve: int
    generated_days_to_resolve: int
    range_tolerance_ratio: float
    time_tolerance_days: int
    vote_multipliers: Dict[str, float]
    estimate_multipliers: Dict[str, float]
    reputation_bounds: Dict[str, int]
    generation_timeout_seconds: float
    news_window_days: int
    news_article_limit: int

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Settings":
        decisions = data.get("decisions", {})
        predictions = data.get("predictions", {})
        rewards = data.get("rewards", {})
        reputation = data.get("reputation", {}).get("bounds", {})
        generation = data.get("generation", {})
        news = data.get("news", {})
        vote_amount = predictions.get("vote_amount", {})
        days_to_resolve = predictions.get("default_days_to_resolve", {})
        return Settings(
            decision_time_limits_hours={
                k: float(v) for k, v in decisions["time_limits_hours"].items()
            },
            decision_influence_requirements={
                k: int(v) for k, v in decisions["influence_requirements"].items()
            },
            decision_max_extension_hours=float(decisions.get("max_extension_hours", 72)),
            vote_amount_min=int(vote_amount.get("min", 1)),
            vote_amount_max=int(vote_amount.get("max", 100)),
            manual_days_to_resolve=int(days_to_resolve.get("manual", 7)),
            generated_days_to_resolve=int(days_to_resolve.get("generated", 14)),
            range_tolerance_ratio=float(predictions.get("range_tolerance_ratio", 0.0)),
            time_tolerance_days=int(predictions.get("time_tolerance_days", 0)),
            vote_multipliers={k: float(v) for k, v in rewards["vote_multipliers"].items()},
            estimate_multipliers={k: float(v) for k, v in rewards["estimate_multipliers"].items()},
            reputation_bounds={
                "min": int(reputation.get("min", -100)),
                "max": int(reputation.get("max", 100)),
            },
            generation_timeout_seconds=float(generation.get("timeout_seconds", 30)),
            news_window_days=int(news.get("window_days", 7)),
            news_article_limit=int(news.get("article_limit", 3)),
        )


class SettingsLoader:
    """Loads and caches settings from YAML configuration files."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or DEFAULT_SETTINGS_PATH
        self._cache: Settings | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> Settings:
        if self._cache is not None and not force:
            return self._cache
        with self._path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        self._cache = Settings.from_dict(data)
        return self._cache


def get_settings() -> Settings:
    """Convenience accessor for default settings."""

    return SettingsLoader().load()


__all__ = ["Settings", "SettingsLoader", "get_settings", "DEFAULT_SETTINGS_PATH"]
