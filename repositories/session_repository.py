# repositories/session_repository.py
from __future__ import annotations
import time
import uuid
from typing import Optional

from pydantic import ValidationError

from enums.session_enums import StartMode
from models.runner_config import RunnerConfig
from models.trade_session import TradingSession
from repositories.sqlite_repository import SqliteRepository
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)


class SessionRepository(SqliteRepository):
    """
    Sesiones de trading. Todas las mutaciones concurrentes son UPDATE
    condicionales de una sola sentencia (sin leer-y-escribir):
      - claim_tick / release_tick: lease de procesamiento por sesión
      - roll_daily_key / add_daily_spend: acumulador de gasto diario
      - deactivate / mark_holdings_adopted
    """

    def _ensure_table(self) -> None:
        with self._conn() as c:
            self._ensure_wal(c)
            c.execute("""
                CREATE TABLE IF NOT EXISTS trading_sessions (
                    id                 TEXT PRIMARY KEY,
                    user_id            TEXT NOT NULL,
                    token_mint         TEXT NOT NULL,
                    config             TEXT NOT NULL,
                    is_active          INTEGER NOT NULL DEFAULT 1,
                    start_mode         TEXT NOT NULL DEFAULT 'buying',
                    session_start_time INTEGER,
                    last_activity      INTEGER,
                    daily_buy_usd      REAL NOT NULL DEFAULT 0,
                    daily_key          TEXT NOT NULL DEFAULT '',
                    processing_until   INTEGER,
                    holdings_adopted   INTEGER NOT NULL DEFAULT 0,
                    created_at         INTEGER
                )
            """)
            c.execute("CREATE INDEX IF NOT EXISTS idx_sessions_active ON trading_sessions(is_active)")

    @log_function
    def create(self, user_id: str, token_mint: str, config: RunnerConfig,
               start_mode: StartMode = StartMode.BUYING, now: Optional[int] = None) -> TradingSession:
        ts = int(now if now is not None else time.time())
        session_id = uuid.uuid4().hex
        with self._conn() as c:
            c.execute("""
                INSERT INTO trading_sessions (
                    id, user_id, token_mint, config, is_active, start_mode,
                    session_start_time, last_activity, daily_buy_usd, daily_key, created_at
                ) VALUES (?, ?, ?, ?, 1, ?, ?, ?, 0, ?, ?)
            """, (session_id, user_id, token_mint, config.to_json(), start_mode.value,
                  ts, ts, daily_key_for(ts), ts))
        return self.get(session_id)  # type: ignore[return-value]

    @log_function
    def get(self, session_id: str) -> Optional[TradingSession]:
        with self._conn() as c:
            row = c.execute("SELECT * FROM trading_sessions WHERE id = ?", (session_id,)).fetchone()
        return TradingSession.from_row(dict(row)) if row else None

    @log_function
    def list_active(self) -> list[TradingSession]:
        """Sesiones activas con config válida; las mal formadas se registran y se saltan."""
        with self._conn() as c:
            rows = c.execute(
                "SELECT * FROM trading_sessions WHERE is_active = 1 ORDER BY created_at ASC"
            ).fetchall()
        sessions: list[TradingSession] = []
        for r in rows:
            try:
                sessions.append(TradingSession.from_row(dict(r)))
            except (ValidationError, ValueError) as e:
                logger.error(f"[session {r['id']}] config inválida, se salta: {e}")
        return sessions

    @log_function
    def claim_tick(self, session_id: str, now: int, lease_sec: int) -> bool:
        """Toma el lease del tick; False si la sesión está parada o otro tick la procesa."""
        with self._conn() as c:
            cur = c.execute("""
                UPDATE trading_sessions
                   SET processing_until = ?, last_activity = ?
                 WHERE id = ?
                   AND is_active = 1
                   AND (processing_until IS NULL OR processing_until < ?)
            """, (now + lease_sec, now, session_id, now))
            return cur.rowcount == 1

    @log_function
    def release_tick(self, session_id: str, lease_until: int) -> bool:
        """Suelta el lease solo si sigue siendo el que tomó este tick."""
        with self._conn() as c:
            cur = c.execute(
                "UPDATE trading_sessions SET processing_until = NULL WHERE id = ? AND processing_until = ?",
                (session_id, lease_until),
            )
            return cur.rowcount == 1

    @log_function
    def roll_daily_key(self, session_id: str, today_key: str) -> bool:
        """Resetea el acumulador diario si cambió el día. True si hubo reset."""
        with self._conn() as c:
            cur = c.execute("""
                UPDATE trading_sessions
                   SET daily_key = ?, daily_buy_usd = 0
                 WHERE id = ? AND daily_key <> ?
            """, (today_key, session_id, today_key))
            return cur.rowcount == 1

    @log_function
    def add_daily_spend(self, session_id: str, usd: float) -> None:
        with self._conn() as c:
            c.execute(
                "UPDATE trading_sessions SET daily_buy_usd = daily_buy_usd + ? WHERE id = ?",
                (float(usd), session_id),
            )

    @log_function
    def deactivate(self, session_id: str) -> bool:
        with self._conn() as c:
            cur = c.execute(
                "UPDATE trading_sessions SET is_active = 0 WHERE id = ? AND is_active = 1",
                (session_id,),
            )
            return cur.rowcount == 1

    @log_function
    def mark_holdings_adopted(self, session_id: str) -> bool:
        with self._conn() as c:
            cur = c.execute(
                "UPDATE trading_sessions SET holdings_adopted = 1 WHERE id = ? AND holdings_adopted = 0",
                (session_id,),
            )
            return cur.rowcount == 1


def daily_key_for(ts: float) -> str:
    """Cubo diario (UTC) del acumulador de gasto."""
    return time.strftime("%Y-%m-%d", time.gmtime(ts))
