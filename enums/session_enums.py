"""
Enumerations shared by trading sessions, their configuration and the trade log.
"""

from __future__ import annotations

from enum import Enum


class StartMode(str, Enum):
    """``buying`` waits for a dip; ``selling`` adopts existing holdings first."""

    BUYING = "buying"
    SELLING = "selling"


class QuoteAsset(str, Enum):
    SOL = "SOL"
    USDC = "USDC"


class ConfirmPolicy(str, Enum):
    CONFIRMED = "confirmed"
    PROCESSED = "processed"
    NONE = "none"


class TradeType(str, Enum):
    BUY = "buy"
    SELL = "sell"
