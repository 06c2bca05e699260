from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class SessionWallet(BaseModel):
    """Wallet del pool de una sesión. Solo la pubkey y la referencia al firmante."""

    session_id: str
    pubkey: str
    signer_ref: str
    last_used_at: Optional[int] = None
