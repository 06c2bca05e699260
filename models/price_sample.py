from __future__ import annotations

from pydantic import BaseModel


class PriceSample(BaseModel):
    """Precio USD observado para una sesión en un tick (ts en segundos)."""

    ts: float
    price: float
