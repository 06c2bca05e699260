"""
User-set hard price floor: when the price touches ``limit_price`` every
position of the session is liquidated and the order is consumed.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class EmergencySell(BaseModel):
    id: str
    session_id: str
    limit_price: float
    is_active: bool = True
    created_at: int = 0
    triggered_at: int | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "EmergencySell":
        data = dict(row)
        data["is_active"] = bool(data.get("is_active"))
        return cls.model_validate(data)
