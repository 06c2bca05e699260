# repositories/position_repository.py
from __future__ import annotations
import time
from typing import Optional

from enums.position_status import PositionStatus
from models.position import Position
from repositories.sqlite_repository import SqliteRepository
from utils.log_config import log_function


class PositionRepository(SqliteRepository):
    """
    Posiciones (lotes). El estado solo cambia mediante update_status_if(),
    un compare-and-swap sobre la columna status: dos actores que intentan
    cerrar la misma posición no pueden ganar los dos.
    """

    def _ensure_table(self) -> None:
        with self._conn() as c:
            self._ensure_wal(c)
            c.execute("""
                CREATE TABLE IF NOT EXISTS trading_positions (
                    id              TEXT PRIMARY KEY,
                    session_id      TEXT NOT NULL,
                    lot_id          TEXT NOT NULL,
                    token_mint      TEXT NOT NULL,
                    entry_price     REAL NOT NULL,
                    high_price      REAL NOT NULL,
                    quantity_raw    INTEGER NOT NULL,
                    quantity_ui     REAL NOT NULL,
                    entry_timestamp INTEGER NOT NULL,
                    owner_pubkey    TEXT NOT NULL,
                    signer_ref      TEXT NOT NULL,
                    status          TEXT NOT NULL DEFAULT 'active',
                    error_message   TEXT,
                    closing_since   INTEGER,
                    closed_at       INTEGER
                )
            """)
            c.execute("CREATE INDEX IF NOT EXISTS idx_positions_session_status ON trading_positions(session_id, status)")

    @log_function
    def insert(self, position: Position) -> Position:
        with self._conn() as c:
            c.execute("""
                INSERT INTO trading_positions (
                    id, session_id, lot_id, token_mint, entry_price, high_price,
                    quantity_raw, quantity_ui, entry_timestamp, owner_pubkey, signer_ref, status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                position.id, position.session_id, position.lot_id, position.token_mint,
                position.entry_price, position.high_price,
                int(position.quantity_raw), float(position.quantity_ui),
                position.entry_timestamp, position.owner_pubkey, position.signer_ref,
                position.status.value,
            ))
        return position

    @log_function
    def get(self, position_id: str) -> Optional[Position]:
        with self._conn() as c:
            row = c.execute("SELECT * FROM trading_positions WHERE id = ?", (position_id,)).fetchone()
        return Position.from_row(dict(row)) if row else None

    @log_function
    def list_by_status(self, status: PositionStatus, session_id: Optional[str] = None) -> list[Position]:
        q = "SELECT * FROM trading_positions WHERE status = ?"
        p: list = [status.value]
        if session_id:
            q += " AND session_id = ?"
            p.append(session_id)
        q += " ORDER BY entry_timestamp ASC, rowid ASC"
        with self._conn() as c:
            rows = c.execute(q, tuple(p)).fetchall()
        return [Position.from_row(dict(r)) for r in rows]

    @log_function
    def update_status_if(self, position_id: str, expected: PositionStatus, new: PositionStatus,
                         error_message: Optional[str] = None, now: Optional[int] = None) -> bool:
        """
        Compare-and-swap del estado. Devuelve True solo si esta llamada hizo la
        transición; False significa que otro actor ya la resolvió.
        """
        ts = int(now if now is not None else time.time())
        closing_since = ts if new == PositionStatus.CLOSING else None
        closed_at = ts if new in (PositionStatus.SOLD, PositionStatus.STOPPED) else None
        with self._conn() as c:
            cur = c.execute("""
                UPDATE trading_positions
                   SET status = ?,
                       error_message = COALESCE(?, error_message),
                       closing_since = ?,
                       closed_at = COALESCE(?, closed_at)
                 WHERE id = ? AND status = ?
            """, (new.value, error_message, closing_since, closed_at, position_id, expected.value))
            return cur.rowcount == 1

    @log_function
    def raise_high_water(self, session_id: str, price: float) -> int:
        """Sube high_price de las posiciones activas de la sesión (nunca lo baja)."""
        with self._conn() as c:
            cur = c.execute("""
                UPDATE trading_positions
                   SET high_price = ?
                 WHERE session_id = ? AND status = 'active' AND high_price < ?
            """, (float(price), session_id, float(price)))
            return cur.rowcount

    @log_function
    def list_stale_closing(self, older_than: int) -> list[Position]:
        with self._conn() as c:
            rows = c.execute(
                "SELECT * FROM trading_positions WHERE status = 'closing' AND closing_since < ?",
                (older_than,),
            ).fetchall()
        return [Position.from_row(dict(r)) for r in rows]
