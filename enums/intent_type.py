"""
Intents emitted by the decision engine and the reasons behind them.
"""

from __future__ import annotations

from enum import Enum


class IntentType(str, Enum):
    OPEN = "open"
    CLOSE = "close"
    HOLD = "hold"


class IntentReason(str, Enum):
    DIP = "dip"
    BIG_DIP = "big_dip"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    TRAIL = "trail"
    EMERGENCY = "emergency"
    WATCHING = "watching"
