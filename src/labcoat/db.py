"""SQLite observation store with WAL mode."""

import sqlite3
from pathlib import Path
from typing import Any, Optional

from labcoat.models.observation import ExperimentStats, Observation, ObservationRecord

# SQL schema for labcoat database
SCHEMA = """
CREATE TABLE IF NOT EXISTS observations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    matched INTEGER NOT NULL,
    control_duration REAL NOT NULL,
    candidate_duration REAL NOT NULL,
    control_first INTEGER,  -- NULL when the order was not recorded
    control_error TEXT,
    candidate_error TEXT,
    timestamp TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_observations_name ON observations(name);
CREATE INDEX IF NOT EXISTS idx_observations_matched ON observations(matched);
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """
    Get a database connection with proper settings for concurrent access.

    - isolation_level=None for explicit transaction control
    - WAL mode for concurrent readers/writers
    - busy_timeout to wait for locks instead of failing immediately
    - Row factory for dict-like access
    """
    conn = sqlite3.connect(str(db_path), timeout=5.0, isolation_level=None)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path) -> None:
    """Initialize the database with the schema."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
    finally:
        conn.close()


def insert_observation(conn: sqlite3.Connection, observation: Observation) -> int:
    """Store an observation and return its row ID."""
    cursor = conn.execute(
        """
        INSERT INTO observations (
            name, matched, control_duration, candidate_duration,
            control_first, control_error, candidate_error, timestamp
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            observation.name,
            int(observation.matched),
            observation.control_duration,
            observation.candidate_duration,
            None if observation.control_first is None else int(observation.control_first),
            observation.control_error,
            observation.candidate_error,
            observation.timestamp,
        ),
    )
    return cursor.lastrowid


def get_observations(
    conn: sqlite3.Connection,
    name: Optional[str] = None,
    matched: Optional[bool] = None,
    limit: int = 50,
) -> list[ObservationRecord]:
    """Get the most recent observations with optional filtering."""
    query = "SELECT * FROM observations WHERE 1=1"
    params: list[Any] = []

    if name:
        query += " AND name = ?"
        params.append(name)

    if matched is not None:
        query += " AND matched = ?"
        params.append(int(matched))

    query += " ORDER BY id DESC LIMIT ?"
    params.append(limit)

    rows = conn.execute(query, params).fetchall()
    return [ObservationRecord.model_validate(dict(row)) for row in rows]


def get_experiment_stats(
    conn: sqlite3.Connection,
    name: Optional[str] = None,
) -> list[ExperimentStats]:
    """Aggregate observations per experiment name."""
    query = """
        SELECT
            name,
            COUNT(*) AS runs,
            SUM(matched) AS matched,
            SUM(1 - matched) AS mismatched,
            SUM(candidate_error IS NOT NULL) AS candidate_errors,
            SUM(control_error IS NOT NULL) AS control_errors,
            AVG(control_duration) AS mean_control_duration,
            AVG(candidate_duration) AS mean_candidate_duration
        FROM observations
    """
    params: list[Any] = []

    if name:
        query += " WHERE name = ?"
        params.append(name)

    query += " GROUP BY name ORDER BY name"

    rows = conn.execute(query, params).fetchall()
    return [ExperimentStats.model_validate(dict(row)) for row in rows]


def summarize(observations: list[Observation]) -> list[ExperimentStats]:
    """Aggregate in-memory observations the same way get_experiment_stats does."""
    grouped: dict[str, list[Observation]] = {}
    for observation in observations:
        grouped.setdefault(observation.name, []).append(observation)

    stats: list[ExperimentStats] = []
    for name in sorted(grouped):
        group = grouped[name]
        matched = sum(1 for o in group if o.matched)
        stats.append(
            ExperimentStats(
                name=name,
                runs=len(group),
                matched=matched,
                mismatched=len(group) - matched,
                candidate_errors=sum(1 for o in group if o.candidate_error is not None),
                control_errors=sum(1 for o in group if o.control_error is not None),
                mean_control_duration=sum(o.control_duration for o in group) / len(group),
                mean_candidate_duration=sum(o.candidate_duration for o in group) / len(group),
            )
        )
    return stats
