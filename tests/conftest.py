"""Shared fixtures for the narrative engine tests."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, List, Optional

import pytest

os.environ.setdefault("LLM_MODE", "mock")

from narrative_engine.config import get_settings
from narrative_engine.content import ContentGenerator
from narrative_engine.llm_client import GenerationResult
from narrative_engine.models import CharacterSnapshot, Narrative, Specialty


class FakeClient:
    """Returns queued payloads in order; ``None`` means the call failed."""

    def __init__(self, *payloads: Any) -> None:
        self._payloads: List[Any] = list(payloads)
        self.prompts: List[str] = []

    def generate_json_sync(self, prompt: str, *, system: str = "", timeout: Optional[float] = None):
        self.prompts.append(prompt)
        if not self._payloads:
            return GenerationResult.failure("no payload queued", 1.0)
        payload = self._payloads.pop(0)
        if payload is None:
            return GenerationResult.failure("upstream error", 1.0)
        return GenerationResult.success(payload, 1.0)


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def narrative() -> Narrative:
    return Narrative(id="n1", title="The Harbor Strike", summary="Dock workers walk out.", tags=["labor"])


@pytest.fixture
def make_character():
    def factory(**overrides: Any) -> CharacterSnapshot:
        data = dict(
            id="c1",
            user_id="u1",
            name="Ada Moreno",
            traits={"rational": 6, "emotional": 3},
            specialties=[Specialty("investigation", 5)],
            resources={"money": 200, "connections": 10, "information": 5},
            influence=10,
            reputation={"public": 0},
            narratives={"n1": True},
        )
        data.update(overrides)
        return CharacterSnapshot(**data)

    return factory


@pytest.fixture
def character(make_character) -> CharacterSnapshot:
    return make_character()


@pytest.fixture
def fallback_content(settings) -> ContentGenerator:
    """Adapter with no client: every call takes its deterministic fallback."""
    return ContentGenerator(None, settings=settings)


@pytest.fixture
def fake_client():
    return FakeClient
