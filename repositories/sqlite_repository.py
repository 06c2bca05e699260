from __future__ import annotations
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

# segundos que una conexión espera a que otra libere el lock de escritura
BUSY_TIMEOUT_SECS = float(os.getenv("DB_BUSY_TIMEOUT_SECS", "30"))

def _resolve_db_path() -> str:
    env_path = os.getenv("DB_PATH")
    if env_path:
        return str(Path(env_path).expanduser().resolve())
    root = Path(__file__).resolve().parents[1]
    default = root / "data" / "trading.db"
    default.parent.mkdir(parents=True, exist_ok=True)
    return str(default)


class SqliteRepository:
    """
    Base de los repositorios: una conexión por operación (seguro entre hilos),
    WAL para lecturas concurrentes y commit/close en el context manager.
    Las subclases crean su tabla en _ensure_table().
    """

    def __init__(self, db_path: str | None = None) -> None:
        self.db_path = str(Path(db_path).expanduser().resolve()) if db_path else _resolve_db_path()
        self._ensure_table()

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        # autocommit: cada UPDATE condicional es su propia transacción atómica
        conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT_SECS, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_table(self) -> None:
        raise NotImplementedError

    def _ensure_wal(self, conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode=WAL")
