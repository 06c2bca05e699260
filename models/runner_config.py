"""
Strategy configuration embedded in every trading session.

Ranges are validated when the session is created (``RunnerConfig(**raw)``),
never at tick time. Both the snake_case field names and the camelCase keys
used by the web client (``tradeSizeUsd``, ``trailArmPct``...) are accepted;
rows are stored with the camelCase aliases.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from enums.session_enums import ConfirmPolicy, QuoteAsset
from utils.config import default_runner_config


class RunnerConfig(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    trade_size_usd: float = Field(20.0, gt=0)
    interval_sec: int = Field(3, ge=1)
    anchor_window_sec: int = Field(60, gt=0)
    dip_pct: float = Field(1.0, gt=0, lt=100)
    take_profit_pct: float = Field(10.0, gt=0)
    stop_loss_pct: float = Field(35.0, gt=0, lt=100)
    cooldown_sec: int = Field(15, ge=0)
    daily_cap_usd: float = Field(300.0, gt=0)
    slippage_bps: int = Field(800, ge=1, le=10_000)
    quote_asset: QuoteAsset = QuoteAsset.SOL

    # trailing / salida
    trail_arm_pct: float = Field(5.0, ge=0)
    trailing_drop_pct: float = Field(3.0, gt=0, lt=100)
    slowdown_confirm_ticks: int = Field(2, ge=1)

    # trailing adaptativo (ROC)
    adaptive_trails: bool = False
    roc_window_sec: int = Field(30, gt=0)
    up_sensitivity_bps_per_pct: float = Field(0.0, ge=0)
    max_up_bias_bps: float = Field(0.0, ge=0)
    down_sensitivity_bps_per_pct: float = Field(0.0, ge=0)
    max_down_bias_bps: float = Field(0.0, ge=0)

    # lotes
    separate_lots: bool = False
    max_concurrent_lots: int = Field(1, ge=1)
    big_dip_floor_drop_pct: float = Field(25.0, gt=0, lt=100)
    big_dip_hold_minutes: float = Field(6.0, ge=0)
    second_lot_trade_size_usd: Optional[float] = Field(None, gt=0)

    # ejecución
    confirm_policy: ConfirmPolicy = ConfirmPolicy.PROCESSED
    fee_override_micro_lamports: Optional[int] = Field(None, ge=0)
    emergency_slippage_bps: int = Field(2000, ge=1, le=10_000)

    @model_validator(mode="after")
    def _check_budget(self) -> "RunnerConfig":
        if self.trade_size_usd > self.daily_cap_usd:
            raise ValueError("tradeSizeUsd no puede superar dailyCapUsd")
        if self.second_lot_trade_size_usd is not None and self.second_lot_trade_size_usd > self.daily_cap_usd:
            raise ValueError("secondLotTradeSizeUsd no puede superar dailyCapUsd")
        return self

    @property
    def allowed_lots(self) -> int:
        return self.max_concurrent_lots if self.separate_lots else 1

    @property
    def second_lot_size_usd(self) -> float:
        return self.second_lot_trade_size_usd or self.trade_size_usd

    @property
    def history_retention_sec(self) -> int:
        """Ventana de precios que necesita el motor de decisión."""
        hold = int(self.big_dip_hold_minutes * 60) if self.separate_lots else 0
        return max(self.anchor_window_sec, self.roc_window_sec, hold) + 2 * self.interval_sec

    @classmethod
    def from_user(cls, raw: dict[str, Any] | None) -> "RunnerConfig":
        """Config de usuario fusionada sobre los defaults de config.yaml."""
        defaults = cls.model_validate(default_runner_config()).model_dump(by_alias=True)
        # claves snake_case -> camelCase para que no convivan las dos formas
        user = {(to_camel(k) if "_" in k else k): v for k, v in (raw or {}).items()}
        return cls.model_validate({**defaults, **user})

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
