# controllers/decision_controller.py
"""
Decision engine: pure functions from (session, positions, price window,
current price, clock, last trades) to intents. Nothing here touches the
store or the network; the orchestrator feeds it and the execution
controller carries the intents out.

Per position the exit state is recomputed every tick from entry price and
high-water price:

    ARMED --(high >= entry*(1+arm%))--> TRAIL_ARMED
    any   --(price <= entry*(1-sl%))--> EXIT_TRIGGERED   (stop-loss, always first)
    any   --(price >= entry*(1+tp%))--> EXIT_TRIGGERED   (take-profit)
    TRAIL_ARMED --(price <= high*(1-drop%) after N slowing ticks)--> EXIT_TRIGGERED

All thresholds are closed intervals.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from enums.intent_type import IntentReason, IntentType
from enums.position_status import TrailState
from enums.session_enums import StartMode
from models.intent import Intent
from models.position import Position
from models.price_sample import PriceSample
from models.runner_config import RunnerConfig
from models.trade_session import TradingSession
from utils.formatting import fmt


def pct_below(ref: float, pct: float) -> float:
    return ref * (100.0 - pct) / 100.0


def pct_above(ref: float, pct: float) -> float:
    return ref * (100.0 + pct) / 100.0


# ---------------- señales sobre la ventana de precios ----------------

def window_roc(history: Sequence[PriceSample], now: float, roc_window_sec: float) -> Optional[float]:
    """Rate of change (%) entre la primera muestra dentro de la ventana y la última."""
    if not history:
        return None
    cut = now - roc_window_sec
    start = next((s for s in history if s.ts >= cut), history[0])
    if start.price <= 0:
        return None
    return (history[-1].price - start.price) / start.price * 100.0


def up_bias_bps(cfg: RunnerConfig, roc: Optional[float]) -> float:
    if not cfg.adaptive_trails or roc is None or roc <= 0:
        return 0.0
    return min(cfg.max_up_bias_bps, roc * cfg.up_sensitivity_bps_per_pct)


def down_bias_bps(cfg: RunnerConfig, roc: Optional[float]) -> float:
    if not cfg.adaptive_trails or roc is None or roc >= 0:
        return 0.0
    return min(cfg.max_down_bias_bps, -roc * cfg.down_sensitivity_bps_per_pct)


def effective_trailing_drop_pct(cfg: RunnerConfig, roc: Optional[float]) -> float:
    """Subidas rápidas dan más margen al trailing; caídas lo estrechan."""
    return max(0.0, cfg.trailing_drop_pct + up_bias_bps(cfg, roc) / 100.0 - down_bias_bps(cfg, roc) / 100.0)


def effective_dip_pct(cfg: RunnerConfig, roc: Optional[float]) -> float:
    return cfg.dip_pct + down_bias_bps(cfg, roc) / 100.0


def slowdown_count(history: Sequence[PriceSample]) -> int:
    """Ticks consecutivos (al final de la ventana) sin subida de precio."""
    count = 0
    for i in range(len(history) - 1, 0, -1):
        if history[i].price <= history[i - 1].price:
            count += 1
        else:
            break
    return count


def dip_target(history: Sequence[PriceSample], now: float, cfg: RunnerConfig,
               dip_pct: float) -> Optional[float]:
    """
    Precio de entrada: mínimo del anchor window sin contar la muestra
    actual, rebajado dip_pct.
    """
    if len(history) < 2:
        return None
    cut = now - cfg.anchor_window_sec
    before = [s.price for s in history[:-1] if s.ts >= cut]
    if not before:
        return None
    return pct_below(min(before), dip_pct)


def dip_confirmed(history: Sequence[PriceSample], now: float, cfg: RunnerConfig, dip_pct: float) -> bool:
    """Precio actual en o bajo el objetivo y N ticks seguidos sin subida."""
    target = dip_target(history, now, cfg, dip_pct)
    if target is None:
        return False
    return history[-1].price <= target and slowdown_count(history) >= cfg.slowdown_confirm_ticks


def below_floor_since(history: Sequence[PriceSample], floor: float) -> Optional[float]:
    """ts desde el que el precio sigue sin interrupción <= floor (None si ahora no lo está)."""
    start = None
    for s in reversed(history):
        if s.price <= floor:
            start = s.ts
        else:
            break
    return start


# ---------------- estado por posición ----------------

@dataclass(frozen=True)
class PositionView:
    state: TrailState
    reason: Optional[IntentReason]
    high_water: float
    stop_price: float
    take_profit_price: float
    trail_trigger: Optional[float]


def evaluate_position(position: Position, price: float, cfg: RunnerConfig,
                      trailing_drop_pct: Optional[float] = None,
                      slowing_ticks: Optional[int] = None) -> PositionView:
    """
    Estado de salida de una posición a este precio. slowing_ticks=None
    da la desaceleración por confirmada (evaluación sin ventana).
    """
    entry = position.entry_price
    high = max(position.high_price, price)
    stop = pct_below(entry, cfg.stop_loss_pct)
    tp = pct_above(entry, cfg.take_profit_pct)
    armed = high >= pct_above(entry, cfg.trail_arm_pct)
    drop = cfg.trailing_drop_pct if trailing_drop_pct is None else trailing_drop_pct
    trigger = pct_below(high, drop) if armed else None

    def view(state: TrailState, reason: Optional[IntentReason] = None) -> PositionView:
        return PositionView(state, reason, high, stop, tp, trigger)

    if price <= stop:
        return view(TrailState.EXIT_TRIGGERED, IntentReason.STOP_LOSS)
    if price >= tp:
        return view(TrailState.EXIT_TRIGGERED, IntentReason.TAKE_PROFIT)
    if armed:
        slowed = slowing_ticks is None or slowing_ticks >= cfg.slowdown_confirm_ticks
        if slowed and trigger is not None and price <= trigger:
            return view(TrailState.EXIT_TRIGGERED, IntentReason.TRAIL)
        return view(TrailState.TRAIL_ARMED)
    return view(TrailState.ARMED)


# ---------------- entrada ----------------

@dataclass
class TickContext:
    session: TradingSession
    positions: list[Position]
    history: list[PriceSample]
    price: Optional[float]
    now: float
    last_trade_ts: Optional[float] = None
    last_sell_ts: Optional[float] = None


def entry_blocker(ctx: TickContext, size_usd: float) -> Optional[str]:
    """Motivo por el que no se puede abrir un lote ahora (None = se puede)."""
    session, cfg = ctx.session, ctx.session.config
    if len(ctx.positions) >= cfg.allowed_lots:
        return "max_lots"
    if session.daily_buy_usd + size_usd > cfg.daily_cap_usd:
        return "daily_cap"
    if ctx.last_trade_ts is not None and ctx.now - ctx.last_trade_ts < cfg.cooldown_sec:
        return "cooldown"
    if session.start_mode == StartMode.SELLING and ctx.last_sell_ts is None and ctx.positions:
        return "selling_first"
    return None


def _open(ctx: TickContext, reason: IntentReason, size_usd: float, note: str) -> Intent:
    return Intent(type=IntentType.OPEN, session_id=ctx.session.id, reason=reason,
                  price=ctx.price, usd_amount=size_usd, note=note)


def entry_intent(ctx: TickContext, history: Sequence[PriceSample], dip_pct: float) -> Optional[Intent]:
    cfg, price = ctx.session.config, ctx.price
    assert price is not None

    # lote adicional por big dip bajo el primer lote
    if cfg.separate_lots and 0 < len(ctx.positions) < cfg.allowed_lots:
        first = ctx.positions[0]
        floor = pct_below(first.entry_price, cfg.big_dip_floor_drop_pct)
        since = below_floor_since(history, floor)
        if since is not None:
            held = ctx.now - max(since, first.entry_timestamp)
            size = cfg.second_lot_size_usd
            if held >= cfg.big_dip_hold_minutes * 60 and entry_blocker(ctx, size) is None:
                return _open(ctx, IntentReason.BIG_DIP, size,
                             f"big dip ${fmt(price, 6)} <= floor ${fmt(floor, 6)} ({int(held)}s)")

    size = cfg.trade_size_usd
    if dip_confirmed(history, ctx.now, cfg, dip_pct) and entry_blocker(ctx, size) is None:
        return _open(ctx, IntentReason.DIP, size, f"dip {fmt(dip_pct, 2)}% confirmado a ${fmt(price, 6)}")
    return None


def _hold_note(ctx: TickContext, views: list[tuple[Position, PositionView]], target: Optional[float]) -> str:
    if views:
        parts = []
        for i, (p, v) in enumerate(views, start=1):
            trail = (f"trigger ~${fmt(v.trail_trigger, 6)}" if v.state == TrailState.TRAIL_ARMED
                     else f"arm at +{fmt(ctx.session.config.trail_arm_pct, 2)}%")
            parts.append(f"#{i} @ ${fmt(p.entry_price, 6)} • {trail} • SL ~${fmt(v.stop_price, 6)}")
        return "Holding: " + "  ".join(parts)
    return f"Watching: price ${fmt(ctx.price, 6)} • targetBuy ~${fmt(target, 6)}"


def decide(ctx: TickContext) -> list[Intent]:
    """
    Intents de un tick para una sesión. Sin precio no hay evaluación.
    Prioridad: cierres (todos los lotes que disparen) > una apertura > HOLD.
    """
    if ctx.price is None or ctx.price <= 0:
        return []
    cfg = ctx.session.config
    history = list(ctx.history) or [PriceSample(ts=ctx.now, price=ctx.price)]

    roc = window_roc(history, ctx.now, cfg.roc_window_sec)
    drop = effective_trailing_drop_pct(cfg, roc)
    dip = effective_dip_pct(cfg, roc)
    slowing = slowdown_count(history)

    closes: list[Intent] = []
    views: list[tuple[Position, PositionView]] = []
    for p in ctx.positions:
        v = evaluate_position(p, ctx.price, cfg, drop, slowing)
        views.append((p, v))
        if v.state == TrailState.EXIT_TRIGGERED and v.reason is not None:
            closes.append(Intent(
                type=IntentType.CLOSE, session_id=ctx.session.id, reason=v.reason, price=ctx.price,
                usd_amount=p.quantity_ui * ctx.price, position=p,
                note=f"{v.reason.value} @ ${fmt(ctx.price, 6)} (peak ${fmt(v.high_water, 6)})",
            ))
    if closes:
        return closes

    opening = entry_intent(ctx, history, dip)
    if opening:
        return [opening]

    return [Intent(type=IntentType.HOLD, session_id=ctx.session.id, reason=IntentReason.WATCHING,
                   price=ctx.price, note=_hold_note(ctx, views, dip_target(history, ctx.now, cfg, dip)))]


class DecisionController:
    """Punto de inyección del motor de decisión (permite sustituirlo en tests)."""

    def decide(self, ctx: TickContext) -> list[Intent]:
        return decide(ctx)
