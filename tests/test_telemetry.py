"""Tests for telemetry and metrics tracking."""
import time

from narrative_engine.telemetry import MetricEvent, MetricType, TelemetryCollector, get_telemetry


def test_metric_event_creation():
    """Test MetricEvent dataclass creation."""
    event = MetricEvent(
        timestamp=time.time(),
        metric_type=MetricType.STATE_TRANSITION,
        name="decision:resolved",
        value=1.0,
        tags={"entity": "decision"},
        metadata={"id": "d1"},
    )

    assert event.metric_type == MetricType.STATE_TRANSITION
    assert event.tags["entity"] == "decision"
    assert event.metadata["id"] == "d1"


def test_telemetry_collector_init(tmp_path):
    db_path = tmp_path / "telemetry.db"
    collector = TelemetryCollector(db_path)

    assert collector.db_path == db_path
    assert db_path.exists()
    assert len(collector._metrics_buffer) == 0


def test_llm_activity_summary(tmp_path):
    """Successes and failures are counted per call site."""
    collector = TelemetryCollector(tmp_path / "telemetry.db")
    collector.track_llm_activity("decision", True, 120.0)
    collector.track_llm_activity("decision", False, 80.0, error="timeout")
    collector.track_llm_activity("resolution", True, 40.0)

    summary = collector.get_llm_activity_summary()

    assert summary["decision"]["total_calls"] == 2
    assert summary["decision"]["successes"] == 1
    assert summary["decision"]["failures"] == 1
    assert summary["decision"]["success_rate"] == 0.5
    assert summary["decision"]["avg_duration_ms"] == 100.0
    assert summary["resolution"]["total_calls"] == 1


def test_transition_counts(tmp_path):
    collector = TelemetryCollector(tmp_path / "telemetry.db")
    collector.track_transition("decision", "d1", "active", "resolved")
    collector.track_transition("decision", "d2", "active", "resolved")
    collector.track_transition("prediction", "p1", "active", "expired")

    assert collector.get_transition_counts() == {"decision:resolved": 2, "prediction:expired": 1}


def test_error_counts(tmp_path):
    collector = TelemetryCollector(tmp_path / "telemetry.db")
    collector.track_error("Expired", "vote", "Prediction has expired")
    collector.track_error("Expired", "resolve_prediction")
    collector.track_error("Forbidden", "cancel_decision")
    collector.track_transition("decision", "d1", "active", "resolved")

    assert collector.get_error_counts() == {"Expired": 2, "Forbidden": 1}


def test_buffer_flushes_at_capacity(tmp_path):
    collector = TelemetryCollector(tmp_path / "telemetry.db")
    for _ in range(100):
        collector.track_error("InvalidInput", "vote")
    assert collector._metrics_buffer == []


def test_cleanup_old_data(tmp_path):
    collector = TelemetryCollector(tmp_path / "telemetry.db")
    collector.record(MetricType.SYSTEM_EVENT, "expiry_sweep", 1.0)
    collector._metrics_buffer[0].timestamp = time.time() - 40 * 86400
    collector.track_system_event("expiry_sweep", source="sweep")
    collector.flush()

    assert collector.cleanup_old_data(days_to_keep=30) == 1


def test_get_telemetry_honours_environment(tmp_path, monkeypatch):
    target = tmp_path / "from_env.db"
    monkeypatch.setenv("NARRATIVE_ENGINE_TELEMETRY_DB", str(target))
    assert get_telemetry(tmp_path / "ignored.db").db_path == target
