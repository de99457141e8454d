"""Engine state management and persistence."""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from .models import (
    CharacterSnapshot,
    Decision,
    Event,
    LedgerEntry,
    Narrative,
    Prediction,
    utcnow,
)

logger = logging.getLogger(__name__)

_DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS characters (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS narratives (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS decisions (
    id TEXT PRIMARY KEY,
    narrative_id TEXT NOT NULL,
    character_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    status TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    version INTEGER NOT NULL,
    updated_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_decisions_status_expiry
    ON decisions (status, expires_at);
CREATE TABLE IF NOT EXISTS predictions (
    id TEXT PRIMARY KEY,
    narrative_id TEXT NOT NULL,
    character_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    status TEXT NOT NULL,
    deadline TEXT NOT NULL,
    version INTEGER NOT NULL,
    updated_at TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_predictions_status_deadline
    ON predictions (status, deadline);
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    action TEXT NOT NULL,
    payload TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS token_ledger (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    amount INTEGER NOT NULL,
    kind TEXT NOT NULL,
    prediction_id TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_token_ledger_user
    ON token_ledger (user_id);
"""

_OPEN = ("pending", "active")


def _utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


class EngineState:
    """SQLite persistence for characters, decisions, predictions and their logs.

    Decisions and predictions carry a ``version`` column. ``save_*`` only
    writes when the stored version still matches the one the caller read,
    so two writers racing on the same row cannot both succeed.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._ensure_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _ensure_schema(self) -> None:
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.executescript(_DB_SCHEMA)
            conn.commit()

    # Characters and narratives -----------------------------------------
    def upsert_character(self, character: CharacterSnapshot) -> None:
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.execute(
                "REPLACE INTO characters (id, user_id, data) VALUES (?, ?, ?)",
                (character.id, character.user_id, json.dumps(character.to_dict())),
            )
            conn.commit()

    def get_character(self, character_id: str) -> Optional[CharacterSnapshot]:
        with closing(sqlite3.connect(self._db_path)) as conn:
            row = conn.execute("SELECT data FROM characters WHERE id = ?", (character_id,)).fetchone()
        if not row:
            return None
        return CharacterSnapshot.from_dict(json.loads(row[0]))

    def all_characters(self) -> Iterable[CharacterSnapshot]:
        with closing(sqlite3.connect(self._db_path)) as conn:
            rows = conn.execute("SELECT data FROM characters").fetchall()
        for row in rows:
            yield CharacterSnapshot.from_dict(json.loads(row[0]))

    def upsert_narrative(self, narrative: Narrative) -> None:
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.execute(
                "REPLACE INTO narratives (id, data) VALUES (?, ?)",
                (narrative.id, json.dumps(narrative.to_dict())),
            )
            conn.commit()

    def get_narrative(self, narrative_id: str) -> Optional[Narrative]:
        with closing(sqlite3.connect(self._db_path)) as conn:
            row = conn.execute("SELECT data FROM narratives WHERE id = ?", (narrative_id,)).fetchone()
        if not row:
            return None
        return Narrative.from_dict(json.loads(row[0]))

    def all_narratives(self) -> List[Narrative]:
        with closing(sqlite3.connect(self._db_path)) as conn:
            rows = conn.execute("SELECT data FROM narratives").fetchall()
        return [Narrative.from_dict(json.loads(row[0])) for row in rows]

    # Decisions ---------------------------------------------------------
    def insert_decision(self, decision: Decision) -> None:
        decision.updated_at = decision.updated_at or decision.created_at
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.execute(
                "INSERT INTO decisions (id, narrative_id, character_id, user_id, status, "
                "expires_at, version, updated_at, data) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    decision.id,
                    decision.narrative_id,
                    decision.character_id,
                    decision.user_id,
                    decision.status.value,
                    _utc(decision.expires_at),
                    decision.version,
                    _utc(decision.updated_at),
                    json.dumps(decision.to_dict()),
                ),
            )
            conn.commit()

    def save_decision(self, decision: Decision, expected_version: int) -> bool:
        """Write ``decision`` if the stored version is still ``expected_version``."""
        decision.version = expected_version + 1
        decision.updated_at = utcnow()
        with closing(sqlite3.connect(self._db_path)) as conn:
            cursor = conn.execute(
                "UPDATE decisions SET status = ?, expires_at = ?, version = ?, updated_at = ?, data = ? "
                "WHERE id = ? AND version = ?",
                (
                    decision.status.value,
                    _utc(decision.expires_at),
                    decision.version,
                    _utc(decision.updated_at),
                    json.dumps(decision.to_dict()),
                    decision.id,
                    expected_version,
                ),
            )
            conn.commit()
            written = cursor.rowcount == 1
        if not written:
            decision.version = expected_version
            logger.warning("Stale write rejected for decision %s at version %s", decision.id, expected_version)
        return written

    def get_decision(self, decision_id: str) -> Optional[Decision]:
        with closing(sqlite3.connect(self._db_path)) as conn:
            row = conn.execute("SELECT data FROM decisions WHERE id = ?", (decision_id,)).fetchone()
        if not row:
            return None
        return Decision.from_dict(json.loads(row[0]))

    def list_decisions(
        self,
        *,
        narrative_id: Optional[str] = None,
        character_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Decision]:
        clauses, params = [], []
        for column, value in (
            ("narrative_id", narrative_id),
            ("character_id", character_id),
            ("user_id", user_id),
            ("status", status),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        query = "SELECT data FROM decisions"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY rowid ASC"
        with closing(sqlite3.connect(self._db_path)) as conn:
            rows = conn.execute(query, params).fetchall()
        return [Decision.from_dict(json.loads(row[0])) for row in rows]

    def stale_decisions(self, now: datetime) -> List[Decision]:
        """Open decisions whose deadline has passed."""
        with closing(sqlite3.connect(self._db_path)) as conn:
            rows = conn.execute(
                "SELECT data FROM decisions WHERE status IN (?, ?) AND expires_at < ?",
                (*_OPEN, _utc(now)),
            ).fetchall()
        return [Decision.from_dict(json.loads(row[0])) for row in rows]

    # Predictions -------------------------------------------------------
    def insert_prediction(self, prediction: Prediction) -> None:
        prediction.updated_at = prediction.updated_at or prediction.created_at
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.execute(
                "INSERT INTO predictions (id, narrative_id, character_id, user_id, status, "
                "deadline, version, updated_at, data) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    prediction.id,
                    prediction.narrative_id,
                    prediction.character_id,
                    prediction.user_id,
                    prediction.status.value,
                    _utc(prediction.deadline),
                    prediction.version,
                    _utc(prediction.updated_at),
                    json.dumps(prediction.to_dict()),
                ),
            )
            conn.commit()

    def save_prediction(self, prediction: Prediction, expected_version: int) -> bool:
        prediction.version = expected_version + 1
        prediction.updated_at = utcnow()
        with closing(sqlite3.connect(self._db_path)) as conn:
            cursor = conn.execute(
                "UPDATE predictions SET status = ?, deadline = ?, version = ?, updated_at = ?, data = ? "
                "WHERE id = ? AND version = ?",
                (
                    prediction.status.value,
                    _utc(prediction.deadline),
                    prediction.version,
                    _utc(prediction.updated_at),
                    json.dumps(prediction.to_dict()),
                    prediction.id,
                    expected_version,
                ),
            )
            conn.commit()
            written = cursor.rowcount == 1
        if not written:
            prediction.version = expected_version
            logger.warning(
                "Stale write rejected for prediction %s at version %s", prediction.id, expected_version
            )
        return written

    def get_prediction(self, prediction_id: str) -> Optional[Prediction]:
        with closing(sqlite3.connect(self._db_path)) as conn:
            row = conn.execute("SELECT data FROM predictions WHERE id = ?", (prediction_id,)).fetchone()
        if not row:
            return None
        return Prediction.from_dict(json.loads(row[0]))

    def list_predictions(
        self,
        *,
        narrative_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Prediction]:
        clauses, params = [], []
        for column, value in (("narrative_id", narrative_id), ("user_id", user_id), ("status", status)):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        query = "SELECT data FROM predictions"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY rowid ASC"
        with closing(sqlite3.connect(self._db_path)) as conn:
            rows = conn.execute(query, params).fetchall()
        return [Prediction.from_dict(json.loads(row[0])) for row in rows]

    def stale_predictions(self, now: datetime) -> List[Prediction]:
        with closing(sqlite3.connect(self._db_path)) as conn:
            rows = conn.execute(
                "SELECT data FROM predictions WHERE status IN (?, ?) AND deadline < ?",
                (*_OPEN, _utc(now)),
            ).fetchall()
        return [Prediction.from_dict(json.loads(row[0])) for row in rows]

    # Token ledger ------------------------------------------------------
    def record_ledger(
        self,
        entries: Iterable[LedgerEntry],
        *,
        prediction_id: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> None:
        stamp = _utc(at or utcnow())
        rows = [(entry.user_id, entry.amount, entry.kind, prediction_id, stamp) for entry in entries]
        if not rows:
            return
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.executemany(
                "INSERT INTO token_ledger (user_id, amount, kind, prediction_id, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                rows,
            )
            conn.commit()

    def ledger_entries(
        self,
        *,
        user_id: Optional[str] = None,
        kind: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[dict]:
        clauses, params = [], []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if kind is not None:
            clauses.append("kind = ?")
            params.append(kind)
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(_utc(since))
        query = "SELECT user_id, amount, kind, prediction_id, created_at FROM token_ledger"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id ASC"
        with closing(sqlite3.connect(self._db_path)) as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            {
                "userId": row[0],
                "amount": row[1],
                "kind": row[2],
                "predictionId": row[3],
                "createdAt": datetime.fromisoformat(row[4]),
            }
            for row in rows
        ]

    def balance(self, user_id: str) -> int:
        with closing(sqlite3.connect(self._db_path)) as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(amount), 0) FROM token_ledger WHERE user_id = ?", (user_id,)
            ).fetchone()
        return int(row[0])

    # Event log ---------------------------------------------------------
    def append_event(self, event: Event) -> None:
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.execute(
                "INSERT INTO events (timestamp, action, payload) VALUES (?, ?, ?)",
                (event.timestamp.isoformat(), event.action, json.dumps(event.payload)),
            )
            conn.commit()

    def export_events(self, limit: Optional[int] = None) -> List[Event]:
        query = "SELECT timestamp, action, payload FROM events ORDER BY id ASC"
        params: list = []
        if limit is not None:
            query = (
                "SELECT timestamp, action, payload FROM "
                "(SELECT id, timestamp, action, payload FROM events ORDER BY id DESC LIMIT ?) "
                "ORDER BY id ASC"
            )
            params.append(limit)
        with closing(sqlite3.connect(self._db_path)) as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            Event(timestamp=datetime.fromisoformat(ts), action=action, payload=json.loads(payload))
            for ts, action, payload in rows
        ]


__all__ = ["EngineState"]
