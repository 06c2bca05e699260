"""
Append-only audit entry for every executed buy or sell.

Trade records are never updated; they are also the only source used to
compute the cooldown since the session's last trade.
"""

from __future__ import annotations

import json
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from enums.session_enums import TradeType


class TradeRecord(BaseModel):
    session_id: str
    position_id: Optional[str]
    trade_type: TradeType
    token_mint: str
    price_usd: float
    usd_amount: float
    quantity_ui: float
    quantity_raw: int = 0
    signatures: List[str] = Field(default_factory=list)
    owner_pubkey: str
    status: str = "confirmed"
    reason: Optional[str] = None
    id: Optional[int] = None
    created_at: int = 0

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "TradeRecord":
        data = dict(row)
        data["signatures"] = json.loads(data.get("signatures") or "[]")
        data["trade_type"] = TradeType(data["trade_type"])
        return cls.model_validate(data)
