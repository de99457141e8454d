"""Telemetry for generation calls and entity state transitions."""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class MetricType(Enum):
    """Types of metrics tracked."""
    LLM_ACTIVITY = "llm_activity"
    STATE_TRANSITION = "state_transition"
    ERROR_RATE = "error_rate"
    SYSTEM_EVENT = "system_event"


@dataclass
class MetricEvent:
    """Individual metric event."""
    timestamp: float
    metric_type: MetricType
    name: str
    value: float
    tags: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


class TelemetryCollector:
    """Buffers metric events and writes them to SQLite."""

    def __init__(self, db_path: Optional[Path] = None, *, flush_interval: float = 60.0):
        self.db_path = Path(db_path) if db_path else Path("telemetry.db")
        self._init_database()
        self._metrics_buffer: List[MetricEvent] = []
        self._flush_interval = flush_interval
        self._last_flush = time.time()

    def _init_database(self):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS metrics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL NOT NULL,
                    metric_type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    value REAL NOT NULL,
                    tags TEXT,
                    metadata TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_metrics_type_name
                ON metrics(metric_type, name)
            """)
            conn.commit()

    def track_llm_activity(
        self,
        call_site: str,
        success: bool,
        duration_ms: float,
        error: Optional[str] = None,
    ) -> None:
        """Record latency/outcome information for one generation attempt."""

        metadata: Dict[str, Any] = {"duration_ms": duration_ms}
        if error:
            metadata["error"] = error
        self.record(
            MetricType.LLM_ACTIVITY,
            call_site,
            duration_ms,
            tags={"call_site": call_site, "success": "true" if success else "false"},
            metadata=metadata,
        )

    def track_transition(self, entity: str, entity_id: str, old: str, new: str) -> None:
        self.record(
            MetricType.STATE_TRANSITION,
            f"{entity}:{new}",
            1.0,
            tags={"entity": entity, "from": old, "to": new},
            metadata={"id": entity_id},
        )

    def track_error(self, kind: str, operation: str, details: Optional[str] = None) -> None:
        self.record(
            MetricType.ERROR_RATE,
            kind,
            1.0,
            tags={"operation": operation},
            metadata={"details": details} if details else {},
        )

    def track_system_event(
        self,
        event: str,
        *,
        source: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        """Record sweep runs and similar housekeeping events."""

        tags = {"source": source} if source else {}
        metadata = {"reason": reason} if reason else {}
        self.record(MetricType.SYSTEM_EVENT, event, 1.0, tags=tags, metadata=metadata)

    def record(
        self,
        metric_type: MetricType,
        name: str,
        value: float,
        tags: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        self._metrics_buffer.append(
            MetricEvent(
                timestamp=time.time(),
                metric_type=metric_type,
                name=name,
                value=value,
                tags=tags or {},
                metadata=metadata or {},
            )
        )
        if len(self._metrics_buffer) >= 100 or \
           time.time() - self._last_flush > self._flush_interval:
            self.flush()

    def flush(self):
        """Flush buffered metrics to database."""
        if not self._metrics_buffer:
            return

        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.executemany(
                    """
                    INSERT INTO metrics (timestamp, metric_type, name, value, tags, metadata)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            event.timestamp,
                            event.metric_type.value,
                            event.name,
                            event.value,
                            json.dumps(event.tags),
                            json.dumps(event.metadata),
                        )
                        for event in self._metrics_buffer
                    ],
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.debug("Failed to flush metrics: %s", e)
            return

        logger.debug("Flushed %s metrics to database", len(self._metrics_buffer))
        self._metrics_buffer.clear()
        self._last_flush = time.time()

    def get_llm_activity_summary(self, hours: int = 24) -> Dict[str, Dict[str, Any]]:
        """Summarise generation calls per call site over the given window."""

        self.flush()
        start_time = time.time() - (hours * 3600)
        query = """
            SELECT
                name,
                SUM(CASE WHEN json_extract(tags, '$.success') = 'true' THEN 1 ELSE 0 END),
                SUM(CASE WHEN json_extract(tags, '$.success') = 'false' THEN 1 ELSE 0 END),
                COUNT(*),
                AVG(value)
            FROM metrics
            WHERE metric_type = ? AND timestamp >= ?
            GROUP BY name
        """
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(query, [MetricType.LLM_ACTIVITY.value, start_time]).fetchall()
        summary: Dict[str, Dict[str, Any]] = {}
        for name, successes, failures, total, avg_duration in rows:
            summary[name] = {
                "total_calls": total,
                "successes": successes or 0,
                "failures": failures or 0,
                "success_rate": (successes or 0) / total if total else 0.0,
                "avg_duration_ms": avg_duration or 0.0,
            }
        return summary

    def _counts_by_name(self, metric_type: MetricType, hours: int) -> Dict[str, int]:
        self.flush()
        start_time = time.time() - (hours * 3600)
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT name, COUNT(*) FROM metrics
                WHERE metric_type = ? AND timestamp >= ?
                GROUP BY name
                """,
                [metric_type.value, start_time],
            ).fetchall()
        return {name: count for name, count in rows}

    def get_transition_counts(self, hours: int = 24) -> Dict[str, int]:
        return self._counts_by_name(MetricType.STATE_TRANSITION, hours)

    def get_error_counts(self, hours: int = 24) -> Dict[str, int]:
        """Errors raised by engine commands, keyed by error kind."""
        return self._counts_by_name(MetricType.ERROR_RATE, hours)

    def cleanup_old_data(self, days_to_keep: int = 30) -> int:
        cutoff_time = time.time() - (days_to_keep * 86400)
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM metrics WHERE timestamp < ?", (cutoff_time,))
            deleted = cursor.rowcount
            conn.commit()
        logger.info("Cleaned up %s old metric events", deleted)
        return deleted


def get_telemetry(db_path: Optional[Path] = None) -> TelemetryCollector:
    """Build a collector from ``NARRATIVE_ENGINE_TELEMETRY_DB`` or ``db_path``."""

    env_path = os.getenv("NARRATIVE_ENGINE_TELEMETRY_DB")
    return TelemetryCollector(Path(env_path) if env_path else db_path)


__all__ = ["MetricType", "MetricEvent", "TelemetryCollector", "get_telemetry"]
