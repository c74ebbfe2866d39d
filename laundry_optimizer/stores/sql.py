"""SQLAlchemy-backed learning store (sqlite by default, any SQLAlchemy URL works).

Tables are created on first use:

- user_weights(user_id PK, weights JSON text, updated_at)
- feedback_events((user_id, event_id) PK, window_id, rating, note, features, predicted_score, created_at)
- user_prefs(user_id PK, prefs JSON text, updated_at)
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from laundry_optimizer.domain import DryingPreferences, FeatureVector, FeedbackEvent, WeightVector
from laundry_optimizer.stores.base import LearningStore
from utils.logging_utils import get_tagged_logger, mask_db_url

logger = get_tagged_logger(__name__, tag="stores/sql_learning_store")

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS user_weights (
        user_id TEXT PRIMARY KEY,
        weights TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS feedback_events (
        event_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        window_id TEXT NOT NULL,
        rating INTEGER NOT NULL,
        note TEXT,
        features TEXT NOT NULL,
        predicted_score REAL,
        created_at TEXT NOT NULL,
        PRIMARY KEY (user_id, event_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_feedback_events_user ON feedback_events(user_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS user_prefs (
        user_id TEXT PRIMARY KEY,
        prefs TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqlLearningStore(LearningStore):
    """Persist weights, feedback and prefs with plain SQL through SQLAlchemy Core."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._create_schema()

    @classmethod
    def from_url(cls, database_url: str) -> "SqlLearningStore":
        """Create an engine from a URL; in-memory sqlite shares one connection across threads."""
        logger.info("Using SqlLearningStore", extra={"db_url": mask_db_url(database_url)})
        in_memory = database_url == "sqlite://" or (database_url.startswith("sqlite") and ":memory:" in database_url)
        if in_memory:
            engine = create_engine(
                database_url,
                future=True,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        elif database_url.startswith("sqlite"):
            engine = create_engine(database_url, future=True, connect_args={"check_same_thread": False})
        else:
            engine = create_engine(database_url, future=True, pool_pre_ping=True)
        return cls(engine)

    def _create_schema(self) -> None:
        with self.engine.begin() as conn:
            for statement in _SCHEMA:
                conn.execute(text(statement))

    def get_weights(self, user_id: str) -> Optional[WeightVector]:
        with self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT weights FROM user_weights WHERE user_id = :user_id"),
                {"user_id": user_id},
            ).mappings().first()
        if not row:
            return None
        return WeightVector.model_validate_json(row["weights"])

    def save_weights(self, user_id: str, weights: WeightVector) -> None:
        params = {"user_id": user_id, "weights": weights.model_dump_json(), "updated_at": _now_iso()}
        with self.engine.begin() as conn:
            updated = conn.execute(
                text("UPDATE user_weights SET weights = :weights, updated_at = :updated_at WHERE user_id = :user_id"),
                params,
            ).rowcount
            if not updated:
                conn.execute(
                    text("INSERT INTO user_weights (user_id, weights, updated_at) VALUES (:user_id, :weights, :updated_at)"),
                    params,
                )

    def delete_weights(self, user_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(text("DELETE FROM user_weights WHERE user_id = :user_id"), {"user_id": user_id})

    def append_feedback(self, event: FeedbackEvent) -> bool:
        params = {
            "event_id": event.event_id,
            "user_id": event.user_id,
            "window_id": event.window_id,
            "rating": int(event.rating),
            "note": event.note,
            "features": event.features.model_dump_json(),
            "predicted_score": event.predicted_score,
            "created_at": event.timestamp.isoformat(),
        }
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    text(
                        """
                        INSERT INTO feedback_events
                            (event_id, user_id, window_id, rating, note, features, predicted_score, created_at)
                        VALUES
                            (:event_id, :user_id, :window_id, :rating, :note, :features, :predicted_score, :created_at)
                        """
                    ),
                    params,
                )
        except IntegrityError:
            return False
        return True

    def list_feedback(self, user_id: str, limit: int = 20) -> List[FeedbackEvent]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    """
                    SELECT event_id, user_id, window_id, rating, note, features, predicted_score, created_at
                    FROM feedback_events
                    WHERE user_id = :user_id
                    ORDER BY created_at DESC
                    LIMIT :limit
                    """
                ),
                {"user_id": user_id, "limit": int(limit)},
            ).mappings().all()
        return [
            FeedbackEvent(
                event_id=row["event_id"],
                user_id=row["user_id"],
                window_id=row["window_id"],
                rating=int(row["rating"]),
                note=row["note"],
                features=FeatureVector.model_validate(json.loads(row["features"])),
                predicted_score=row["predicted_score"],
                timestamp=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    def get_prefs(self, user_id: str) -> Optional[DryingPreferences]:
        with self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT prefs FROM user_prefs WHERE user_id = :user_id"),
                {"user_id": user_id},
            ).mappings().first()
        if not row:
            return None
        return DryingPreferences.model_validate_json(row["prefs"])

    def save_prefs(self, user_id: str, prefs: DryingPreferences) -> None:
        params = {"user_id": user_id, "prefs": prefs.model_dump_json(), "updated_at": _now_iso()}
        with self.engine.begin() as conn:
            updated = conn.execute(
                text("UPDATE user_prefs SET prefs = :prefs, updated_at = :updated_at WHERE user_id = :user_id"),
                params,
            ).rowcount
            if not updated:
                conn.execute(
                    text("INSERT INTO user_prefs (user_id, prefs, updated_at) VALUES (:user_id, :prefs, :updated_at)"),
                    params,
                )

    def clear(self) -> None:
        with self.engine.begin() as conn:
            for table in ("user_weights", "feedback_events", "user_prefs"):
                conn.execute(text(f"DELETE FROM {table}"))
