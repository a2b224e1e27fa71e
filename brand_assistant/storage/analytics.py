"""SQLite analytics sink: chat logs and knowledge gaps."""

from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..chat.gaps import normalize_question
from ..errors import StoreError
from ..models import GapStatus, KnowledgeGap

MAX_SAMPLE_SESSIONS = 5
MAX_GAP_LIST_LIMIT = 200

_SCHEMA = """
CREATE TABLE IF NOT EXISTS chat_logs (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  session_id TEXT NOT NULL,
  message TEXT NOT NULL,
  response TEXT,
  response_time_ms INTEGER,
  context_chunks INTEGER DEFAULT 0,
  origin TEXT,
  user_agent TEXT,
  created_at TEXT DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_chat_logs_session ON chat_logs(session_id);
CREATE INDEX IF NOT EXISTS idx_chat_logs_created ON chat_logs(created_at);

CREATE TABLE IF NOT EXISTS knowledge_gaps (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  question TEXT NOT NULL,
  question_normalized TEXT NOT NULL,
  best_score REAL DEFAULT 0,
  occurrence_count INTEGER DEFAULT 1,
  first_seen_at TEXT DEFAULT (datetime('now')),
  last_seen_at TEXT DEFAULT (datetime('now')),
  sample_sessions TEXT,
  status TEXT DEFAULT 'active' CHECK(status IN ('active', 'resolved')),
  resolved_at TEXT,
  resolution_note TEXT
);
CREATE INDEX IF NOT EXISTS idx_knowledge_gaps_normalized ON knowledge_gaps(question_normalized);
CREATE INDEX IF NOT EXISTS idx_knowledge_gaps_status ON knowledge_gaps(status);
"""

_GAP_COLUMNS = (
    "id, question, question_normalized, best_score, occurrence_count, first_seen_at, "
    "last_seen_at, sample_sessions, status, resolved_at, resolution_note"
)


@dataclass
class ChatLogEntry:
    session_id: str
    message: str
    response: str
    response_time_ms: int
    context_chunks: int
    origin: Optional[str] = None
    user_agent: Optional[str] = None


def _row_to_gap(row: sqlite3.Row) -> KnowledgeGap:
    return KnowledgeGap(
        id=row["id"],
        question=row["question"],
        question_normalized=row["question_normalized"],
        best_score=row["best_score"],
        occurrence_count=row["occurrence_count"],
        first_seen_at=row["first_seen_at"],
        last_seen_at=row["last_seen_at"],
        sample_sessions=json.loads(row["sample_sessions"] or "[]"),
        status=GapStatus(row["status"]),
        resolved_at=row["resolved_at"],
        resolution_note=row["resolution_note"],
    )


class AnalyticsStore:
    """Data access for chat logs and knowledge gaps.

    One connection is shared between threads and serialised with a lock, so
    the store can be called from ``asyncio.to_thread`` and FastAPI's worker
    threads alike. Every sqlite failure is raised as :class:`StoreError`.
    """

    def __init__(self, db_path: Path | str = "data/analytics.db") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise StoreError(f"Analytics query failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Chat logs
    # ------------------------------------------------------------------

    def log_chat(self, entry: ChatLogEntry) -> None:
        """Insert one chat interaction; long texts are truncated."""
        with self._lock:
            self._execute(
                """
                INSERT INTO chat_logs (session_id, message, response, response_time_ms,
                                       context_chunks, origin, user_agent)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.session_id,
                    entry.message[:500],
                    entry.response[:1000],
                    entry.response_time_ms,
                    entry.context_chunks,
                    entry.origin,
                    entry.user_agent,
                ),
            )
            self._conn.commit()

    def chat_summary(self, days: int = 7) -> Dict[str, Any]:
        """Totals, daily breakdown, top questions and recent chats."""
        window = (f"-{int(days)} days",)
        with self._lock:
            summary = self._execute(
                """
                SELECT COUNT(*) AS total_chats,
                       COUNT(DISTINCT session_id) AS unique_sessions,
                       ROUND(AVG(response_time_ms), 0) AS avg_response_time,
                       MIN(created_at) AS first_chat,
                       MAX(created_at) AS last_chat
                FROM chat_logs
                WHERE created_at >= datetime('now', ?)
                """,
                window,
            ).fetchone()
            daily = self._execute(
                """
                SELECT date(created_at) AS date, COUNT(*) AS chats,
                       COUNT(DISTINCT session_id) AS sessions,
                       ROUND(AVG(response_time_ms), 0) AS avg_response_time
                FROM chat_logs
                WHERE created_at >= datetime('now', ?)
                GROUP BY date(created_at)
                ORDER BY date DESC
                """,
                window,
            ).fetchall()
            top_questions = self._execute(
                """
                SELECT message, COUNT(*) AS count
                FROM chat_logs
                WHERE created_at >= datetime('now', ?)
                GROUP BY message
                ORDER BY count DESC
                LIMIT 10
                """,
                window,
            ).fetchall()
            recent = self._execute(
                """
                SELECT session_id, message, response, response_time_ms, created_at
                FROM chat_logs
                ORDER BY created_at DESC, id DESC
                LIMIT 20
                """
            ).fetchall()
            gaps = self._execute(
                """
                SELECT COUNT(CASE WHEN status = 'active' THEN 1 END) AS active_gaps,
                       COALESCE(SUM(CASE WHEN status = 'active' THEN occurrence_count ELSE 0 END), 0)
                           AS total_gap_occurrences
                FROM knowledge_gaps
                """
            ).fetchone()

        return {
            "period": f"{int(days)} days",
            "summary": dict(summary),
            "knowledgeGaps": dict(gaps),
            "daily": [dict(row) for row in daily],
            "topQuestions": [dict(row) for row in top_questions],
            "recentChats": [dict(row) for row in recent],
        }

    # ------------------------------------------------------------------
    # Knowledge gaps
    # ------------------------------------------------------------------

    def record_knowledge_gap(self, question: str, best_score: float, session_id: str) -> KnowledgeGap:
        """Record one occurrence of an unanswered question.

        Occurrences are deduplicated on the normalised question among active
        gaps: the counter is bumped, the best score raised and the session
        added to a sample list of at most five sessions.
        """
        normalized = normalize_question(question)
        with self._lock:
            existing = self._execute(
                f"SELECT {_GAP_COLUMNS} FROM knowledge_gaps "
                "WHERE question_normalized = ? AND status = 'active'",
                (normalized,),
            ).fetchone()

            if existing is not None:
                sessions: List[str] = json.loads(existing["sample_sessions"] or "[]")
                if session_id not in sessions and len(sessions) < MAX_SAMPLE_SESSIONS:
                    sessions.append(session_id)
                self._execute(
                    """
                    UPDATE knowledge_gaps
                    SET occurrence_count = occurrence_count + 1,
                        last_seen_at = datetime('now'),
                        sample_sessions = ?,
                        best_score = MAX(best_score, ?)
                    WHERE id = ?
                    """,
                    (json.dumps(sessions), best_score, existing["id"]),
                )
                gap_id = existing["id"]
            else:
                cursor = self._execute(
                    """
                    INSERT INTO knowledge_gaps (question, question_normalized, best_score, sample_sessions)
                    VALUES (?, ?, ?, ?)
                    """,
                    (question[:500], normalized, best_score, json.dumps([session_id])),
                )
                gap_id = cursor.lastrowid
            self._conn.commit()

            row = self._execute(
                f"SELECT {_GAP_COLUMNS} FROM knowledge_gaps WHERE id = ?", (gap_id,)
            ).fetchone()
        return _row_to_gap(row)

    def list_knowledge_gaps(self, status: str = "active", limit: int = 50) -> List[KnowledgeGap]:
        """Gaps with ``status``, most frequent first (``limit`` capped at 200)."""
        GapStatus(status)
        limit = max(0, min(int(limit), MAX_GAP_LIST_LIMIT))
        with self._lock:
            rows = self._execute(
                f"""
                SELECT {_GAP_COLUMNS} FROM knowledge_gaps
                WHERE status = ?
                ORDER BY occurrence_count DESC, last_seen_at DESC, id DESC
                LIMIT ?
                """,
                (status, limit),
            ).fetchall()
        return [_row_to_gap(row) for row in rows]

    def knowledge_gap_summary(self) -> Dict[str, Any]:
        with self._lock:
            summary = self._execute(
                """
                SELECT COUNT(*) AS total_gaps,
                       COUNT(CASE WHEN status = 'active' THEN 1 END) AS active_gaps,
                       COUNT(CASE WHEN status = 'resolved' THEN 1 END) AS resolved_gaps,
                       COALESCE(SUM(occurrence_count), 0) AS total_occurrences,
                       ROUND(AVG(best_score), 3) AS avg_score
                FROM knowledge_gaps
                """
            ).fetchone()
            top = self._execute(
                """
                SELECT question, occurrence_count, best_score, last_seen_at
                FROM knowledge_gaps
                WHERE status = 'active'
                ORDER BY occurrence_count DESC
                LIMIT 5
                """
            ).fetchall()
        return {"summary": dict(summary), "topGaps": [dict(row) for row in top]}

    def resolve_knowledge_gap(self, gap_id: int, note: Optional[str] = None) -> bool:
        """Mark a gap resolved. Returns False when no gap has that id.

        Resolving an already resolved gap keeps its first resolution.
        """
        with self._lock:
            cursor = self._execute(
                """
                UPDATE knowledge_gaps
                SET status = 'resolved', resolved_at = datetime('now'), resolution_note = ?
                WHERE id = ? AND status = 'active'
                """,
                (note, gap_id),
            )
            self._conn.commit()
            if cursor.rowcount > 0:
                return True
            row = self._execute("SELECT 1 FROM knowledge_gaps WHERE id = ?", (gap_id,)).fetchone()
        return row is not None
