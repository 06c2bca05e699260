"""
Data schema definitions for reconciliation runs.

Dataclasses returned by the reconciliation entry point. ``to_dict`` renders
the camelCase shape consumed by the web client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

# veredictos por posición
VALID = "valid"
PHANTOM = "phantom"
UNKNOWN = "unknown"


@dataclass
class PositionCheck:
    """Verdict for one active position."""

    position_id: str
    session_id: str
    owner_pubkey: str
    token_mint: str
    quantity_ui: float
    verdict: str
    on_chain_ui: Optional[float] = None
    cleaned: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "positionId": self.position_id,
            "sessionId": self.session_id,
            "ownerPubkey": self.owner_pubkey,
            "tokenMint": self.token_mint,
            "quantityUi": self.quantity_ui,
            "verdict": self.verdict,
            "onChainUi": self.on_chain_ui,
            "cleaned": self.cleaned,
            "error": self.error,
        }


@dataclass
class ReconciliationReport:
    """Outcome of a reconciliation pass (one session or all of them)."""

    dry_run: bool = True
    results: list[PositionCheck] = field(default_factory=list)
    released_claims: int = 0

    @property
    def total_holding(self) -> int:
        return len(self.results)

    @property
    def phantom_count(self) -> int:
        return sum(1 for r in self.results if r.verdict == PHANTOM)

    @property
    def valid_count(self) -> int:
        return sum(1 for r in self.results if r.verdict == VALID)

    @property
    def unknown_count(self) -> int:
        return sum(1 for r in self.results if r.verdict == UNKNOWN)

    @property
    def cleaned_count(self) -> int:
        return sum(1 for r in self.results if r.cleaned)

    @property
    def phantom_position_ids(self) -> list[str]:
        return [r.position_id for r in self.results if r.verdict == PHANTOM]

    def to_dict(self) -> dict:
        return {
            "dryRun": self.dry_run,
            "totalHolding": self.total_holding,
            "phantomCount": self.phantom_count,
            "validCount": self.valid_count,
            "unknownCount": self.unknown_count,
            "cleanedCount": self.cleaned_count,
            "releasedClaims": self.released_claims,
            "phantomPositionIds": self.phantom_position_ids,
            "results": [r.to_dict() for r in self.results],
        }
