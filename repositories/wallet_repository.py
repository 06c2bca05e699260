# repositories/wallet_repository.py
from __future__ import annotations
from typing import Optional

from models.wallet import SessionWallet
from repositories.sqlite_repository import SqliteRepository
from utils.log_config import log_function


class WalletRepository(SqliteRepository):
    """
    Pool de wallets por sesión. Solo pubkey + signer_ref: la custodia de
    claves es cosa del servicio de secretos externo.
    """

    def _ensure_table(self) -> None:
        with self._conn() as c:
            self._ensure_wal(c)
            c.execute("""
                CREATE TABLE IF NOT EXISTS session_wallets (
                    session_id   TEXT NOT NULL,
                    pubkey       TEXT NOT NULL,
                    signer_ref   TEXT NOT NULL,
                    last_used_at INTEGER,
                    PRIMARY KEY (session_id, pubkey)
                )
            """)

    @log_function
    def add(self, session_id: str, pubkey: str, signer_ref: str) -> SessionWallet:
        with self._conn() as c:
            c.execute("""
                INSERT INTO session_wallets (session_id, pubkey, signer_ref)
                VALUES (?, ?, ?)
                ON CONFLICT(session_id, pubkey) DO UPDATE SET signer_ref = excluded.signer_ref
            """, (session_id, pubkey, signer_ref))
        return SessionWallet(session_id=session_id, pubkey=pubkey, signer_ref=signer_ref)

    @log_function
    def list_for_session(self, session_id: str) -> list[SessionWallet]:
        with self._conn() as c:
            rows = c.execute(
                "SELECT * FROM session_wallets WHERE session_id = ? ORDER BY rowid ASC", (session_id,)
            ).fetchall()
        return [SessionWallet.model_validate(dict(r)) for r in rows]

    @log_function
    def pick_next(self, session_id: str) -> Optional[SessionWallet]:
        """Round-robin: la wallet usada hace más tiempo (o nunca)."""
        with self._conn() as c:
            row = c.execute("""
                SELECT * FROM session_wallets
                 WHERE session_id = ?
                 ORDER BY COALESCE(last_used_at, 0) ASC, rowid ASC
                 LIMIT 1
            """, (session_id,)).fetchone()
        return SessionWallet.model_validate(dict(row)) if row else None

    @log_function
    def mark_used(self, session_id: str, pubkey: str, now: int) -> None:
        with self._conn() as c:
            c.execute("UPDATE session_wallets SET last_used_at = ? WHERE session_id = ? AND pubkey = ?",
                      (now, session_id, pubkey))
