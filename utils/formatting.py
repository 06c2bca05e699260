from __future__ import annotations
import math


def fmt(value: float | None, decimals: int = 4) -> str:
    """Número legible para logs/notificaciones; '-' si no es finito."""
    if value is None:
        return "-"
    try:
        v = float(value)
    except (TypeError, ValueError):
        return "-"
    if not math.isfinite(v):
        return "-"
    txt = f"{v:,.{decimals}f}"
    return txt.rstrip("0").rstrip(".") if "." in txt else txt


def short_key(pubkey: str | None, n: int = 4) -> str:
    if not pubkey:
        return "N/D"
    return pubkey if len(pubkey) <= 2 * n + 1 else f"{pubkey[:n]}…{pubkey[-n:]}"
