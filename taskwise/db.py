"""
db.py: SQLite helpers for chat sessions

This module provides:
  - Database path resolution (TASKWISE_DB_PATH)
  - Connection helper
  - Initialization of the sessions table
  - CRUD helpers used by the HTTP routers and by the dispatcher's
    previous-session lookup
"""

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import load_settings
from .models.chat import PriorSession
from .models.task import Task


def db_path() -> Path:
    return Path(load_settings().db_path).expanduser().resolve()


def get_connection() -> sqlite3.Connection:
    """
    Open a SQLite connection to the DB file.
    Rows come back as tuples; helpers convert them to dicts.
    """
    path = db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(str(path))


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def initialize_db() -> None:
    """
    Create tables if they don't exist.
    Idempotent and safe to call on startup.
    """
    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id         TEXT PRIMARY KEY,
                title      TEXT NOT NULL,
                summary    TEXT,
                tasks_json TEXT NOT NULL DEFAULT '[]',
                started_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_sessions_updated_at
            ON sessions(updated_at DESC);
            """
        )
        conn.commit()


def _row_to_dict(row) -> Dict[str, Any]:
    return {
        "id": row[0],
        "title": row[1],
        "summary": row[2],
        "tasks": json.loads(row[3] or "[]"),
        "started_at": row[4],
        "updated_at": row[5],
    }


def new_session(title: str = "Untitled") -> Dict[str, Any]:
    """Insert an empty session and return it."""
    session_id = uuid.uuid4().hex
    now = _utc_now()
    with get_connection() as conn:
        conn.execute(
            "INSERT INTO sessions (id, title, summary, tasks_json, started_at, updated_at) VALUES (?, ?, NULL, '[]', ?, ?)",
            (session_id, title, now, now),
        )
    return {"id": session_id, "title": title, "summary": None, "tasks": [], "started_at": now, "updated_at": now}


def get_session(session_id: str) -> Optional[Dict[str, Any]]:
    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute(
            "SELECT id, title, summary, tasks_json, started_at, updated_at FROM sessions WHERE id = ?",
            (session_id,),
        )
        row = cur.fetchone()
    return _row_to_dict(row) if row else None


def save_session(
    session_id: str,
    tasks: List[Task],
    title: Optional[str] = None,
    summary: Optional[str] = None,
) -> bool:
    """Replace the session's forest; title and summary only change when given."""
    tasks_json = json.dumps([t.model_dump(by_alias=True, exclude_none=True) for t in tasks], ensure_ascii=False)
    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE sessions
            SET tasks_json = ?,
                title      = COALESCE(?, title),
                summary    = COALESCE(?, summary),
                updated_at = ?
            WHERE id = ?
            """,
            (tasks_json, title, summary, _utc_now(), session_id),
        )
        return cur.rowcount > 0


def delete_session(session_id: str) -> int:
    """Delete a session by ID; returns the number of rows removed."""
    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        return cur.rowcount


def list_sessions(limit: int = 200) -> List[Dict[str, Any]]:
    """Return recent sessions (most recently updated first), without their tasks."""
    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute(
            "SELECT id, title, summary, started_at, updated_at FROM sessions ORDER BY updated_at DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        rows = cur.fetchall()
    return [
        {"id": r[0], "title": r[1], "summary": r[2], "started_at": r[3], "updated_at": r[4]}
        for r in rows
    ]


def load_prior_session(session_id: str) -> Optional[PriorSession]:
    """Session-store lookup handed to the dispatcher."""
    row = get_session(session_id)
    if row is None:
        return None
    return PriorSession(
        id=row["id"],
        title=row["title"],
        summary=row["summary"],
        started_at=row["started_at"],
        tasks=row["tasks"],
    )
