# repositories/price_tick_repository.py
from __future__ import annotations

from models.price_sample import PriceSample
from repositories.sqlite_repository import SqliteRepository
from utils.log_config import log_function


class PriceTickRepository(SqliteRepository):
    """
    Ventana de precios por sesión. El scheduler es sin estado: la historia
    que necesitan el anchor, el ROC y el big-dip vive aquí.
    """

    def _ensure_table(self) -> None:
        with self._conn() as c:
            self._ensure_wal(c)
            c.execute("""
                CREATE TABLE IF NOT EXISTS price_ticks (
                    session_id TEXT NOT NULL,
                    ts         REAL NOT NULL,
                    price      REAL NOT NULL
                )
            """)
            c.execute("CREATE INDEX IF NOT EXISTS idx_ticks_session_ts ON price_ticks(session_id, ts)")

    @log_function
    def append(self, session_id: str, ts: float, price: float) -> None:
        with self._conn() as c:
            c.execute("INSERT INTO price_ticks (session_id, ts, price) VALUES (?, ?, ?)",
                      (session_id, float(ts), float(price)))

    @log_function
    def window(self, session_id: str, since_ts: float) -> list[PriceSample]:
        with self._conn() as c:
            rows = c.execute("""
                SELECT ts, price FROM price_ticks
                 WHERE session_id = ? AND ts >= ?
                 ORDER BY ts ASC, rowid ASC
            """, (session_id, float(since_ts))).fetchall()
        return [PriceSample(ts=r["ts"], price=r["price"]) for r in rows]

    @log_function
    def prune(self, session_id: str, before_ts: float) -> int:
        with self._conn() as c:
            cur = c.execute("DELETE FROM price_ticks WHERE session_id = ? AND ts < ?",
                            (session_id, float(before_ts)))
            return cur.rowcount
