"""JSON content generation over an OpenAI-compatible API."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass
class GenerationResult:
    """Outcome of one generation call: either parsed JSON or a failure reason."""

    ok: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    @classmethod
    def success(cls, data: Any, duration_ms: float = 0.0) -> "GenerationResult":
        return cls(ok=True, data=data, duration_ms=duration_ms)

    @classmethod
    def failure(cls, error: str, duration_ms: float = 0.0) -> "GenerationResult":
        return cls(ok=False, error=error, duration_ms=duration_ms)


@dataclass
class LLMConfig:
    """Configuration for LLM client."""
    api_base: str = "http://localhost:5000/v1"  # Default to local server
    api_key: str = "not-needed-for-local"
    model_name: str = "local-model"
    temperature: float = 0.7
    max_tokens: int = 1000
    timeout: int = 30
    retry_attempts: int = 3
    mock_mode: bool = False
    retry_schedule: Optional[List[float]] = None

    @classmethod
    def from_env(cls) -> 'LLMConfig':
        """Load configuration from environment variables."""
        mock_mode = os.getenv("LLM_MODE", "").lower() == "mock"
        schedule_env = os.getenv("LLM_RETRY_SCHEDULE")
        retry_schedule: Optional[List[float]] = None
        if schedule_env:
            try:
                retry_schedule = [float(item.strip()) for item in schedule_env.split(",") if item.strip()]
            except ValueError:
                logger.warning("Invalid LLM_RETRY_SCHEDULE value: %s", schedule_env)
                retry_schedule = None

        return cls(
            api_base=os.getenv("LLM_API_BASE", "http://localhost:5000/v1"),
            api_key=os.getenv("LLM_API_KEY", "not-needed-for-local"),
            model_name=os.getenv("LLM_MODEL_NAME", "local-model"),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.7")),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS", "1000")),
            timeout=int(os.getenv("LLM_TIMEOUT", "30")),
            retry_attempts=int(os.getenv("LLM_RETRY_ATTEMPTS", "3")),
            mock_mode=mock_mode,
            retry_schedule=retry_schedule,
        )


def extract_json(text: str) -> Any:
    """Parse a JSON document out of a completion, tolerating code fences."""

    cleaned = _FENCE_RE.sub("", text.strip())
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        start = min((i for i in (cleaned.find("{"), cleaned.find("[")) if i >= 0), default=-1)
        end = max(cleaned.rfind("}"), cleaned.rfind("]"))
        if start < 0 or end <= start:
            raise
        return json.loads(cleaned[start : end + 1])


class LLMClient:
    """OpenAI-compatible client that asks for JSON and never raises on failure."""

    def __init__(self, config: Optional[LLMConfig] = None):
        self.config = config or LLMConfig.from_env()
        self._executor = ThreadPoolExecutor(max_workers=4)
        self._retry_schedule = self.config.retry_schedule or [1.0, 3.0, 10.0]

        if self.config.mock_mode:
            self.client = None
            logger.info("LLM client initialised in mock mode")
            return

        self.client = openai.OpenAI(
            api_key=self.config.api_key,
            base_url=self.config.api_base,
            timeout=self.config.timeout,
        )
        logger.info("LLM client initialized with base URL: %s", self.config.api_base)

    async def generate_json(
        self,
        prompt: str,
        *,
        system: str = "You are a narrative generator. Respond with valid JSON only.",
        timeout: Optional[float] = None,
    ) -> GenerationResult:
        """Request a JSON completion; transport, timeout and parse errors become failures."""
        started = time.perf_counter()

        def elapsed() -> float:
            return (time.perf_counter() - started) * 1000

        if self.config.mock_mode:
            return GenerationResult.failure("mock mode", elapsed())

        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]
        try:
            response = await asyncio.wait_for(
                self._call_with_retry(messages),
                timeout=timeout or self.config.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("LLM generation timed out after %.1fs", timeout or self.config.timeout)
            return GenerationResult.failure("timeout", elapsed())

        if response is None:
            return GenerationResult.failure("retries exhausted", elapsed())

        try:
            content = response.choices[0].message.content or ""
            data = extract_json(content)
        except (AttributeError, IndexError, ValueError) as exc:
            logger.warning("LLM returned unparseable content: %s", exc)
            return GenerationResult.failure(f"invalid JSON: {exc}", elapsed())
        return GenerationResult.success(data, elapsed())

    async def _call_with_retry(self, messages: List[Dict[str, str]]) -> Optional[Any]:
        """Make API call with retry logic."""
        attempts = max(1, self.config.retry_attempts)
        loop = asyncio.get_running_loop()
        for attempt in range(attempts):
            try:
                return await loop.run_in_executor(
                    self._executor,
                    lambda: self.client.chat.completions.create(
                        model=self.config.model_name,
                        messages=messages,
                        temperature=self.config.temperature,
                        max_tokens=self.config.max_tokens,
                    ),
                )
            except openai.OpenAIError as e:
                logger.warning("LLM API call attempt %s failed: %s", attempt + 1, e)
                if attempt < attempts - 1:
                    delay = self._retry_schedule[min(attempt, len(self._retry_schedule) - 1)]
                    await asyncio.sleep(delay)
                else:
                    logger.error("All retry attempts exhausted for LLM call")
        return None

    def generate_json_sync(
        self,
        prompt: str,
        *,
        system: str = "You are a narrative generator. Respond with valid JSON only.",
        timeout: Optional[float] = None,
    ) -> GenerationResult:
        """Blocking helper for synchronous callers."""
        coro = self.generate_json(prompt, system=system, timeout=timeout)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(coro)

        result_container: Dict[str, GenerationResult] = {}

        def runner() -> None:
            new_loop = asyncio.new_event_loop()
            asyncio.set_event_loop(new_loop)
            try:
                result_container["value"] = new_loop.run_until_complete(coro)
            finally:
                new_loop.close()

        thread = threading.Thread(target=runner)
        thread.start()
        thread.join()
        return result_container.get("value") or GenerationResult.failure("generation thread failed")

    def close(self):
        """Clean up resources."""
        self._executor.shutdown(wait=True)


__all__ = ["GenerationResult", "LLMConfig", "LLMClient", "extract_json"]
