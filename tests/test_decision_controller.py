import pytest

from controllers.decision_controller import (
    TickContext,
    decide,
    effective_dip_pct,
    effective_trailing_drop_pct,
    evaluate_position,
    slowdown_count,
    window_roc,
)
from enums.intent_type import IntentReason, IntentType
from enums.position_status import TrailState
from enums.session_enums import StartMode
from models.position import Position
from models.price_sample import PriceSample
from models.runner_config import RunnerConfig
from models.trade_session import TradingSession

from conftest import MINT, OWNER_A, T0


def cfg(**overrides) -> RunnerConfig:
    return RunnerConfig(**overrides)


def session(config: RunnerConfig, **fields) -> TradingSession:
    return TradingSession(id="s-1", user_id="u-1", token_mint=MINT, config=config, **fields)


def position(entry: float = 100.0, high: float | None = None, ts: int = T0, pid: str = "p-1") -> Position:
    return Position(id=pid, session_id="s-1", lot_id="main", token_mint=MINT, entry_price=entry,
                    high_price=high if high is not None else entry, quantity_raw=1_000_000, quantity_ui=1.0,
                    entry_timestamp=ts, owner_pubkey=OWNER_A, signer_ref="ref-a")


def series(prices, start: int = T0, step: int = 20) -> list[PriceSample]:
    return [PriceSample(ts=start + i * step, price=p) for i, p in enumerate(prices)]


def tick(config, prices, positions=(), step=20, **ctx_fields):
    sess = ctx_fields.pop("sess", None) or session(config)
    history = series(prices, step=step)
    return decide(TickContext(session=sess, positions=list(positions), history=history,
                              price=history[-1].price, now=history[-1].ts, **ctx_fields))


def types(intents):
    return [i.type for i in intents]


# ---------------- entrada ----------------

def test_dip_within_anchor_window_opens_on_third_tick():
    config = cfg(dip_pct=5, anchor_window_sec=60)
    assert types(tick(config, [100, 100])) == [IntentType.HOLD]

    intents = tick(config, [100, 100, 94])
    assert types(intents) == [IntentType.OPEN]
    assert intents[0].reason == IntentReason.DIP
    assert intents[0].usd_amount == config.trade_size_usd
    assert intents[0].price == 94


def test_dip_below_threshold_only_holds():
    intents = tick(cfg(dip_pct=5, anchor_window_sec=60), [100, 100, 95.5])
    assert types(intents) == [IntentType.HOLD]
    assert "Watching" in intents[0].note


def test_anchor_outside_window_is_ignored():
    # el 100 inicial queda fuera de la ventana de 60s
    intents = tick(cfg(dip_pct=5, anchor_window_sec=60), [100, 97, 96.5, 94], step=30)
    assert types(intents) == [IntentType.HOLD]


def test_dip_needs_slowdown_confirmation():
    config = cfg(dip_pct=5, anchor_window_sec=120, slowdown_confirm_ticks=3)
    assert types(tick(config, [100, 100, 94])) == [IntentType.HOLD]
    assert types(tick(config, [100, 100, 100, 94])) == [IntentType.OPEN]


def test_no_price_means_no_intents():
    config = cfg()
    ctx = TickContext(session=session(config), positions=[position()], history=series([100, 90]),
                      price=None, now=T0 + 20)
    assert decide(ctx) == []


def test_cooldown_blocks_entry():
    config = cfg(dip_pct=5, anchor_window_sec=60, cooldown_sec=15)
    now = T0 + 40
    assert types(tick(config, [100, 100, 94], last_trade_ts=now - 5)) == [IntentType.HOLD]
    assert types(tick(config, [100, 100, 94], last_trade_ts=now - 15)) == [IntentType.OPEN]


def test_daily_cap_blocks_entry():
    config = cfg(dip_pct=5, anchor_window_sec=60, trade_size_usd=20, daily_cap_usd=300)
    blocked = session(config, daily_buy_usd=290.0)
    allowed = session(config, daily_buy_usd=280.0)
    assert types(tick(config, [100, 100, 94], sess=blocked)) == [IntentType.HOLD]
    assert types(tick(config, [100, 100, 94], sess=allowed)) == [IntentType.OPEN]


def test_single_lot_mode_does_not_stack_entries():
    config = cfg(dip_pct=5, anchor_window_sec=60)
    intents = tick(config, [100, 100, 94], positions=[position(entry=95.0)])
    assert types(intents) == [IntentType.HOLD]
    assert "Holding" in intents[0].note


def test_close_suppresses_open_in_same_tick():
    config = cfg(dip_pct=5, anchor_window_sec=60, separate_lots=True, max_concurrent_lots=3)
    intents = tick(config, [100, 100, 94], positions=[position(entry=200.0)])
    assert types(intents) == [IntentType.CLOSE]
    assert intents[0].reason == IntentReason.STOP_LOSS


def test_selling_first_session_waits_for_first_exit():
    config = cfg(dip_pct=5, anchor_window_sec=60, separate_lots=True, max_concurrent_lots=2)
    sess = session(config, start_mode=StartMode.SELLING)
    held = [position(entry=95.0)]
    assert types(tick(config, [100, 100, 94], positions=held, sess=sess)) == [IntentType.HOLD]
    assert types(tick(config, [100, 100, 94], positions=held, sess=sess,
                      last_sell_ts=T0 - 600)) == [IntentType.OPEN]


# ---------------- salidas ----------------

def test_stop_loss_triggers_close():
    intents = tick(cfg(stop_loss_pct=10), [100, 89], positions=[position(entry=100.0)])
    assert types(intents) == [IntentType.CLOSE]
    assert intents[0].reason == IntentReason.STOP_LOSS
    assert intents[0].position_id == "p-1"


def test_stop_loss_boundary_is_inclusive():
    config = cfg(stop_loss_pct=10)
    at = tick(config, [100, 90.0], positions=[position(entry=100.0)])
    assert types(at) == [IntentType.CLOSE]
    assert at[0].reason == IntentReason.STOP_LOSS

    above = tick(config, [100, 90.01], positions=[position(entry=100.0)])
    assert types(above) == [IntentType.HOLD]


def test_take_profit_triggers_close():
    intents = tick(cfg(take_profit_pct=10), [100, 110.0], positions=[position(entry=100.0)])
    assert types(intents) == [IntentType.CLOSE]
    assert intents[0].reason == IntentReason.TAKE_PROFIT


def test_trailing_stop_closes_above_entry():
    config = cfg(trail_arm_pct=5, trailing_drop_pct=3, take_profit_pct=50, slowdown_confirm_ticks=1)
    intents = tick(config, [100, 110, 106.5], positions=[position(entry=100.0, high=110.0)])
    assert types(intents) == [IntentType.CLOSE]
    assert intents[0].reason == IntentReason.TRAIL
    assert intents[0].price > 100.0


def test_trailing_stop_waits_for_slowdown():
    config = cfg(trail_arm_pct=5, trailing_drop_pct=3, take_profit_pct=50, slowdown_confirm_ticks=2)
    lot = position(entry=100.0, high=110.0)
    assert types(tick(config, [100, 110, 106.5], positions=[lot])) == [IntentType.HOLD]
    assert types(tick(config, [100, 110, 106.6, 106.5], positions=[lot])) == [IntentType.CLOSE]


def test_trail_not_armed_below_arm_threshold():
    config = cfg(trail_arm_pct=5, trailing_drop_pct=3, slowdown_confirm_ticks=1)
    # pico 104 (< 105): una caída del 3.4% no dispara el trailing
    assert types(tick(config, [100, 104, 100.5], positions=[position(entry=100.0, high=104.0)])) == [IntentType.HOLD]


def test_every_triggered_lot_gets_a_close():
    config = cfg(stop_loss_pct=10, separate_lots=True, max_concurrent_lots=3)
    lots = [position(entry=100.0, pid="a"), position(entry=120.0, pid="b"), position(entry=85.0, pid="c")]
    intents = tick(config, [100, 89], positions=lots)
    assert {i.position_id for i in intents} == {"a", "b"}
    assert all(i.type == IntentType.CLOSE for i in intents)


def test_position_state_machine():
    config = cfg(trail_arm_pct=5, trailing_drop_pct=3, take_profit_pct=50, stop_loss_pct=10)
    lot = position(entry=100.0)
    assert evaluate_position(lot, 103.0, config).state == TrailState.ARMED
    armed = evaluate_position(lot, 106.0, config)
    assert armed.state == TrailState.TRAIL_ARMED
    assert armed.high_water == 106.0

    peaked = position(entry=100.0, high=110.0)
    view = evaluate_position(peaked, 106.7, config)
    assert view.state == TrailState.EXIT_TRIGGERED
    assert view.reason == IntentReason.TRAIL

    # el stop-loss manda aunque el trailing esté armado
    assert evaluate_position(peaked, 90.0, config).reason == IntentReason.STOP_LOSS


# ---------------- trailing adaptativo ----------------

def test_adaptive_trail_bias_is_bounded():
    config = cfg(adaptive_trails=True, trailing_drop_pct=3, dip_pct=1,
                 up_sensitivity_bps_per_pct=100, max_up_bias_bps=300,
                 down_sensitivity_bps_per_pct=50, max_down_bias_bps=1000)
    assert effective_trailing_drop_pct(config, 10.0) == pytest.approx(6.0)
    assert effective_trailing_drop_pct(config, 1.0) == pytest.approx(4.0)
    assert effective_trailing_drop_pct(config, -2.0) == pytest.approx(2.0)
    assert effective_dip_pct(config, -2.0) == pytest.approx(2.0)
    # nunca por debajo de cero
    assert effective_trailing_drop_pct(config, -50.0) == 0.0
    assert effective_trailing_drop_pct(cfg(trailing_drop_pct=3), 10.0) == 3.0


def test_fast_pump_gets_more_room_before_trail_exit():
    base = dict(trail_arm_pct=5, trailing_drop_pct=3, take_profit_pct=80, slowdown_confirm_ticks=1,
                roc_window_sec=60)
    prices = [100, 115, 120, 116]
    lot = position(entry=100.0, high=120.0)
    assert types(tick(cfg(**base), prices, positions=[lot])) == [IntentType.CLOSE]
    adaptive = cfg(**base, adaptive_trails=True, up_sensitivity_bps_per_pct=50, max_up_bias_bps=300)
    assert types(tick(adaptive, prices, positions=[lot])) == [IntentType.HOLD]


def test_window_helpers():
    history = series([100, 100, 110, 105, 105])
    assert slowdown_count(history) == 2
    assert window_roc(history, T0 + 80, 40) == pytest.approx(-4.545454, rel=1e-4)
    assert window_roc([], T0, 30) is None


# ---------------- lotes ----------------

def big_dip_config(**overrides) -> RunnerConfig:
    base = dict(separate_lots=True, max_concurrent_lots=2, big_dip_floor_drop_pct=25,
                big_dip_hold_minutes=6, second_lot_trade_size_usd=10, trade_size_usd=20)
    base.update(overrides)
    return cfg(**base)


def test_big_dip_opens_second_lot_after_hold_time():
    config = big_dip_config()
    lot = position(entry=100.0, ts=T0)
    history = [PriceSample(ts=T0 + 60 * i, price=74.0) for i in range(1, 8)]  # T0+60 .. T0+420
    intents = decide(TickContext(session=session(config), positions=[lot], history=history,
                                 price=74.0, now=T0 + 420))
    assert types(intents) == [IntentType.OPEN]
    assert intents[0].reason == IntentReason.BIG_DIP
    assert intents[0].usd_amount == 10


def test_big_dip_hold_not_reached_or_interrupted():
    config = big_dip_config()
    lot = position(entry=100.0, ts=T0)
    short = [PriceSample(ts=T0 + 60 * i, price=74.0) for i in range(1, 7)]  # 300s bajo el suelo
    assert types(decide(TickContext(session=session(config), positions=[lot], history=short,
                                    price=74.0, now=T0 + 360))) == [IntentType.HOLD]

    interrupted = [PriceSample(ts=T0 + 60 * i, price=80.0 if i == 4 else 74.0) for i in range(1, 9)]
    assert types(decide(TickContext(session=session(config), positions=[lot], history=interrupted,
                                    price=74.0, now=T0 + 480))) == [IntentType.HOLD]


def test_big_dip_respects_lot_limit():
    config = big_dip_config(max_concurrent_lots=2)
    lots = [position(entry=100.0, pid="a"), position(entry=90.0, pid="b")]
    history = [PriceSample(ts=T0 + 60 * i, price=74.0) for i in range(1, 8)]
    intents = decide(TickContext(session=session(config), positions=lots, history=history,
                                 price=74.0, now=T0 + 420))
    assert IntentType.OPEN not in types(intents)
