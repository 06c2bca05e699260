"""
Intents produced by the decision engine and results of carrying them out.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from enums.intent_type import IntentReason, IntentType
from models.position import Position


class Intent(BaseModel):
    type: IntentType
    session_id: str
    reason: IntentReason
    price: Optional[float] = None
    usd_amount: float = 0.0
    position: Optional[Position] = None
    slippage_bps: Optional[int] = None
    note: str = ""

    @property
    def position_id(self) -> Optional[str]:
        return self.position.id if self.position else None


class ExecutionResult(BaseModel):
    success: bool
    signature: Optional[str] = None
    error: Optional[str] = None
    # True cuando otro actor ya resolvió la posición (CAS sin filas)
    skipped: bool = False
    position_id: Optional[str] = None
