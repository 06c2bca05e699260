"""
A position ("lot") held by one owner wallet inside a trading session.

``high_price`` is the running high-water mark used by the trailing stop.
The owner's key is never stored: ``signer_ref`` is an opaque reference the
signer provider resolves into a signing capability.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel

from enums.position_status import PositionStatus


class Position(BaseModel):
    id: str
    session_id: str
    lot_id: str
    token_mint: str
    entry_price: float
    high_price: float
    quantity_raw: int
    quantity_ui: float
    entry_timestamp: int
    owner_pubkey: str
    signer_ref: str
    status: PositionStatus = PositionStatus.ACTIVE
    error_message: Optional[str] = None
    closing_since: Optional[int] = None
    closed_at: Optional[int] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Position":
        data = dict(row)
        data["status"] = PositionStatus(data.get("status") or PositionStatus.ACTIVE.value)
        return cls.model_validate(data)
