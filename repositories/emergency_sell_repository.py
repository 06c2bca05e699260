# repositories/emergency_sell_repository.py
from __future__ import annotations
import time
import uuid

from models.emergency_sell import EmergencySell
from repositories.sqlite_repository import SqliteRepository
from utils.log_config import log_function


class EmergencySellRepository(SqliteRepository):
    """Órdenes de venta de emergencia (suelo de precio) por sesión."""

    def _ensure_table(self) -> None:
        with self._conn() as c:
            self._ensure_wal(c)
            c.execute("""
                CREATE TABLE IF NOT EXISTS emergency_sells (
                    id           TEXT PRIMARY KEY,
                    session_id   TEXT NOT NULL,
                    limit_price  REAL NOT NULL,
                    is_active    INTEGER NOT NULL DEFAULT 1,
                    created_at   INTEGER,
                    triggered_at INTEGER
                )
            """)
            c.execute("CREATE INDEX IF NOT EXISTS idx_emergency_session ON emergency_sells(session_id, is_active)")

    @log_function
    def create(self, session_id: str, limit_price: float) -> EmergencySell:
        if not limit_price or limit_price <= 0:
            raise ValueError("limit_price debe ser > 0")
        order = EmergencySell(id=uuid.uuid4().hex, session_id=session_id,
                              limit_price=float(limit_price), created_at=int(time.time()))
        with self._conn() as c:
            c.execute("""
                INSERT INTO emergency_sells (id, session_id, limit_price, is_active, created_at)
                VALUES (?, ?, ?, 1, ?)
            """, (order.id, order.session_id, order.limit_price, order.created_at))
        return order

    @log_function
    def list_active(self, session_id: str) -> list[EmergencySell]:
        with self._conn() as c:
            rows = c.execute(
                "SELECT * FROM emergency_sells WHERE session_id = ? AND is_active = 1 ORDER BY limit_price DESC",
                (session_id,),
            ).fetchall()
        return [EmergencySell.from_row(dict(r)) for r in rows]

    @log_function
    def consume(self, order_id: str, now: int | None = None) -> bool:
        """Desactiva la orden una sola vez (CAS sobre is_active)."""
        with self._conn() as c:
            cur = c.execute("""
                UPDATE emergency_sells
                   SET is_active = 0, triggered_at = ?
                 WHERE id = ? AND is_active = 1
            """, (int(now if now is not None else time.time()), order_id))
            return cur.rowcount == 1
