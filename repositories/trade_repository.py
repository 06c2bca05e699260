# repositories/trade_repository.py
from __future__ import annotations
import json
import time
from typing import Any, Optional

from enums.session_enums import TradeType
from models.trade_record import TradeRecord
from repositories.sqlite_repository import SqliteRepository
from utils.log_config import log_function


class TradeRepository(SqliteRepository):
    """
    Historial de operaciones (append-only): UNA fila por compra o venta
    ejecutada. No hay métodos de actualización ni borrado.
    """

    def _ensure_table(self) -> None:
        with self._conn() as c:
            self._ensure_wal(c)
            c.execute("""
            CREATE TABLE IF NOT EXISTS trade_history (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id   TEXT NOT NULL,
                position_id  TEXT,
                trade_type   TEXT NOT NULL,
                token_mint   TEXT NOT NULL,
                price_usd    REAL,
                usd_amount   REAL,
                quantity_ui  REAL,
                quantity_raw INTEGER,
                signatures   TEXT,
                owner_pubkey TEXT,
                status       TEXT,
                reason       TEXT,
                created_at   INTEGER NOT NULL
            )
            """)
            c.execute("CREATE INDEX IF NOT EXISTS idx_trades_session ON trade_history(session_id, created_at)")

    @log_function
    def insert(self, trade: TradeRecord) -> int:
        created_at = trade.created_at or int(time.time())
        with self._conn() as c:
            cur = c.execute("""
                INSERT INTO trade_history (
                    session_id, position_id, trade_type, token_mint, price_usd, usd_amount,
                    quantity_ui, quantity_raw, signatures, owner_pubkey, status, reason, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                trade.session_id, trade.position_id, trade.trade_type.value, trade.token_mint,
                trade.price_usd, trade.usd_amount, trade.quantity_ui, int(trade.quantity_raw),
                json.dumps(trade.signatures), trade.owner_pubkey, trade.status, trade.reason,
                created_at,
            ))
            return int(cur.lastrowid)

    # -------------------- CONSULTAS --------------------

    @log_function
    def last_trade_ts(self, session_id: str, trade_type: Optional[TradeType] = None) -> Optional[int]:
        q = "SELECT MAX(created_at) FROM trade_history WHERE session_id = ?"
        p: list[Any] = [session_id]
        if trade_type:
            q += " AND trade_type = ?"
            p.append(trade_type.value)
        with self._conn() as c:
            row = c.execute(q, tuple(p)).fetchone()
        return int(row[0]) if row and row[0] is not None else None

    @log_function
    def list_by_session(self, session_id: str, limit: int = 200) -> list[TradeRecord]:
        with self._conn() as c:
            rows = c.execute(
                "SELECT * FROM trade_history WHERE session_id = ? ORDER BY id ASC LIMIT ?",
                (session_id, limit),
            ).fetchall()
        return [TradeRecord.from_row(dict(r)) for r in rows]

    @log_function
    def count_by_position(self, position_id: str) -> int:
        with self._conn() as c:
            row = c.execute("SELECT COUNT(*) FROM trade_history WHERE position_id = ?", (position_id,)).fetchone()
        return int(row[0])

    def summary(self, session_id: str) -> dict[str, Any]:
        """Resumen rápido por sesión: nº de compras/ventas y USD movidos."""
        with self._conn() as c:
            rows = c.execute("""
                SELECT trade_type, COUNT(*), COALESCE(SUM(usd_amount), 0)
                  FROM trade_history
                 WHERE session_id = ?
                 GROUP BY trade_type
            """, (session_id,)).fetchall()
        out = {"buys": 0, "sells": 0, "buy_usd": 0.0, "sell_usd": 0.0}
        for trade_type, n, usd in rows:
            if trade_type == TradeType.BUY.value:
                out["buys"], out["buy_usd"] = int(n), float(usd)
            elif trade_type == TradeType.SELL.value:
                out["sells"], out["sell_usd"] = int(n), float(usd)
        return out
