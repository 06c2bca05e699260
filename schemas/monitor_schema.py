"""
Data schema definitions for scheduler ticks.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class TickSummary:
    """Summary returned by one scheduler invocation."""

    timestamp: int
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    failed_sessions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "failedSessions": list(self.failed_sessions),
            "timestamp": self.timestamp,
        }
