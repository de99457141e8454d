"""Error telemetry for engine service commands."""
from __future__ import annotations

import functools
from typing import Any, Callable

from .errors import EngineError


def track_command(func: Callable) -> Callable:
    """Record any error a service command raises, then re-raise it."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs) -> Any:
        try:
            return func(self, *args, **kwargs)
        except EngineError as exc:
            self.telemetry.track_error(exc.kind, func.__name__, exc.message)
            raise
        except Exception as exc:
            self.telemetry.track_error(type(exc).__name__, func.__name__, str(exc))
            raise

    return wrapper


__all__ = ["track_command"]
