import json
import time
from typing import Any

from repositories.sqlite_repository import SqliteRepository


class ActivityRepository(SqliteRepository):
    """Traza de actividad por sesión (lo que ve el usuario en el panel)."""

    def _ensure_table(self):
        with self._conn() as conn:
            self._ensure_wal(conn)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS activity_logs(
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT,
                    message    TEXT NOT NULL,
                    log_level  TEXT NOT NULL DEFAULT 'info',
                    metadata   TEXT,
                    created_at INTEGER
                )
            """)

    def insert(self, session_id: str | None, message: str, level: str = "info",
               metadata: dict[str, Any] | None = None) -> None:
        with self._conn() as conn:
            conn.execute("""
                INSERT INTO activity_logs (session_id, message, log_level, metadata, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (session_id, message, level, json.dumps(metadata or {}, default=str), int(time.time())))

    def list_recent(self, session_id: str | None = None, limit: int = 50) -> list[dict]:
        q = "SELECT id, session_id, message, log_level, metadata, created_at FROM activity_logs"
        p: list = []
        if session_id:
            q += " WHERE session_id=?"
            p.append(session_id)
        q += " ORDER BY id DESC LIMIT ?"
        p.append(limit)
        with self._conn() as conn:
            cur = conn.execute(q, tuple(p))
            cols = [d[0] for d in cur.description]
            return [dict(zip(cols, r)) for r in cur.fetchall()]
