"""
On-chain balance of one mint for one wallet, aggregated over every token
account the wallet owns for that mint (legacy SPL and Token-2022 programs).
"""

from __future__ import annotations

from pydantic import BaseModel


class TokenBalance(BaseModel):
    mint: str
    amount_raw: int = 0
    ui_amount: float = 0.0
    decimals: int = 0

    def add(self, amount_raw: int, ui_amount: float) -> "TokenBalance":
        return TokenBalance(
            mint=self.mint,
            amount_raw=self.amount_raw + amount_raw,
            ui_amount=self.ui_amount + ui_amount,
            decimals=self.decimals,
        )

    @property
    def is_zero(self) -> bool:
        return self.amount_raw <= 0 and self.ui_amount <= 0
