"""
Represents a user's automated trading campaign on one token mint.

The session row carries the strategy config, the daily spend accumulator
(``daily_buy_usd`` bucketed by ``daily_key``) and the tick lease
(``processing_until``) that keeps two scheduler runs from processing the
same session at once.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import BaseModel

from enums.session_enums import StartMode
from models.runner_config import RunnerConfig


class TradingSession(BaseModel):
    id: str
    user_id: str
    token_mint: str
    config: RunnerConfig
    is_active: bool = True
    start_mode: StartMode = StartMode.BUYING
    session_start_time: int = 0
    last_activity: int = 0
    daily_buy_usd: float = 0.0
    daily_key: str = ""
    processing_until: Optional[int] = None
    holdings_adopted: bool = False
    created_at: int = 0

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "TradingSession":
        raw_cfg = row.get("config") or "{}"
        cfg = json.loads(raw_cfg) if isinstance(raw_cfg, str) else raw_cfg
        return cls(
            id=row["id"],
            user_id=row.get("user_id") or "",
            token_mint=row["token_mint"],
            config=RunnerConfig.model_validate(cfg),
            is_active=bool(row.get("is_active")),
            start_mode=StartMode(row.get("start_mode") or StartMode.BUYING.value),
            session_start_time=int(row.get("session_start_time") or 0),
            last_activity=int(row.get("last_activity") or 0),
            daily_buy_usd=float(row.get("daily_buy_usd") or 0.0),
            daily_key=row.get("daily_key") or "",
            processing_until=row.get("processing_until"),
            holdings_adopted=bool(row.get("holdings_adopted")),
            created_at=int(row.get("created_at") or 0),
        )
