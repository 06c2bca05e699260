"""
Enumerations for the lifecycle of a trading position ("lot").

A position is created ``active`` after a successful buy. The execution
dispatcher claims it as ``closing`` before sending a sell, so two actors can
never send the same sell twice. Every exit, including an emergency liquidation
or a reconciled phantom, ends ``sold`` (the reason lives in the trade record).
``stopped`` stays a valid stored status, but the monitor never writes it.
"""

from __future__ import annotations

from enum import Enum


class PositionStatus(str, Enum):
    """Possible states of a position row."""

    ACTIVE = "active"
    CLOSING = "closing"
    SOLD = "sold"
    STOPPED = "stopped"


class TrailState(str, Enum):
    """Exit state of an active position, recomputed every tick."""

    ARMED = "armed"
    TRAIL_ARMED = "trail_armed"
    EXIT_TRIGGERED = "exit_triggered"
