from unittest.mock import MagicMock

import pytest

from controllers.execution_controller import ExecutionController
from enums.intent_type import IntentReason, IntentType
from enums.position_status import PositionStatus
from enums.session_enums import TradeType
from models.intent import Intent
from services.swap_service import SwapService

from conftest import OWNER_A, OWNER_B, T0, FakeSignerProvider, FakeSwap, balance


@pytest.fixture
def swap():
    return FakeSwap()


@pytest.fixture
def executor(store, swap, clock):
    return ExecutionController(store, swap, FakeSignerProvider(), clock=clock)


def open_intent(session, price=1.0, usd=20.0):
    return Intent(type=IntentType.OPEN, session_id=session.id, reason=IntentReason.DIP, price=price, usd_amount=usd)


def close_intent(session, position, price=1.2, reason=IntentReason.TAKE_PROFIT, slippage=None):
    return Intent(type=IntentType.CLOSE, session_id=session.id, reason=reason, price=price,
                  position=position, slippage_bps=slippage)


def test_round_trip_produces_one_position_and_two_trades(store, executor, make_session, swap):
    session = make_session()

    opened = executor.execute(session, open_intent(session))
    assert opened.success
    positions = store.read_active_positions(session.id)
    assert len(positions) == 1
    lot = positions[0]
    assert lot.id == opened.position_id
    assert (lot.quantity_raw, lot.quantity_ui) == (20_000_000, 20.0)
    assert lot.entry_price == lot.high_price == 1.0
    assert lot.owner_pubkey == OWNER_A
    assert lot.lot_id == "main"
    assert store.trades.count_by_position(lot.id) == 1
    assert store.get_session(session.id).daily_buy_usd == 20.0

    closed = executor.execute(session, close_intent(session, lot))
    assert closed.success
    assert closed.signature == "sell-1"
    assert store.positions.get(lot.id).status == PositionStatus.SOLD
    trades = store.trades.list_by_session(session.id)
    assert [t.trade_type for t in trades] == [TradeType.BUY, TradeType.SELL]
    assert trades[1].quantity_raw == 20_000_000
    assert swap.sells[0]["amount_raw"] == 20_000_000


def test_failed_open_leaves_no_state(store, executor, make_session, swap):
    session = make_session()
    swap.buy_error = "slippage exceeded"

    result = executor.execute(session, open_intent(session))

    assert not result.success
    assert result.error == "slippage exceeded"
    assert store.read_active_positions(session.id) == []
    assert store.trades.list_by_session(session.id) == []
    assert store.get_session(session.id).daily_buy_usd == 0.0


def test_failed_close_keeps_position_active(store, executor, make_session, make_position, swap):
    session = make_session()
    lot = make_position(session)
    swap.sell_error = "blockhash expired"

    result = executor.execute(session, close_intent(session, lot))

    assert not result.success
    row = store.positions.get(lot.id)
    assert row.status == PositionStatus.ACTIVE
    assert row.error_message == "blockhash expired"
    assert store.trades.list_by_session(session.id) == []


def test_close_of_already_resolved_position_is_skipped(store, executor, make_session, make_position, swap):
    session = make_session()
    lot = make_position(session)
    store.conditional_update_status(lot.id, PositionStatus.ACTIVE, PositionStatus.SOLD)

    result = executor.execute(session, close_intent(session, lot))

    assert result.skipped
    assert not result.success
    assert swap.sells == []


def test_emergency_close_sells_position_with_emergency_slippage(store, executor, make_session, make_position, swap):
    session = make_session(emergency_slippage_bps=2500)
    lot = make_position(session)

    result = executor.execute(session, close_intent(session, lot, price=49.0, reason=IntentReason.EMERGENCY,
                                                     slippage=2500))

    assert result.success
    assert store.positions.get(lot.id).status == PositionStatus.SOLD
    assert [t.reason for t in store.trades.list_by_session(session.id)] == ["emergency"]
    assert swap.sells[0]["slippage"] == 2500


def test_unresolvable_signer_fails_without_swap(store, make_session, make_position, swap, clock):
    session = make_session()
    lot = make_position(session)
    executor = ExecutionController(store, swap, FakeSignerProvider(missing={f"ref-{OWNER_A}"}), clock=clock)

    assert not executor.execute(session, open_intent(session)).success
    assert not executor.execute(session, close_intent(session, lot)).success
    assert swap.buys == [] and swap.sells == []
    assert store.positions.get(lot.id).status == PositionStatus.ACTIVE


def test_open_without_wallets_fails(store, executor, make_session, swap):
    session = make_session(wallets=[])
    result = executor.execute(session, open_intent(session))
    assert not result.success
    assert swap.buys == []


def test_open_rotates_wallets_and_splits_lots(store, executor, make_session, swap, clock):
    session = make_session(wallets=[(OWNER_A, f"ref-{OWNER_A}"), (OWNER_B, f"ref-{OWNER_B}")],
                           separate_lots=True, max_concurrent_lots=2)
    executor.execute(session, open_intent(session))
    clock.advance(30)
    executor.execute(session, open_intent(session))

    owners = [b["owner"] for b in swap.buys]
    assert sorted(owners) == sorted([OWNER_A, OWNER_B])
    lots = store.read_active_positions(session.id)
    assert len({p.lot_id for p in lots}) == 2
    assert "main" not in {p.lot_id for p in lots}


def test_fill_measured_from_balance_delta(store, make_session, clock):
    session = make_session()
    swap = FakeSwap(out_amount_raw=None, out_amount_ui=None)
    balances = MagicMock()
    balances.get_token_balance.side_effect = [balance(1_000_000, 1.0), balance(6_000_000, 6.0)]
    executor = ExecutionController(store, swap, FakeSignerProvider(), balance_reader=balances, clock=clock)

    assert executor.execute(session, open_intent(session)).success
    lot = store.read_active_positions(session.id)[0]
    assert (lot.quantity_raw, lot.quantity_ui) == (5_000_000, 5.0)


def test_unmeasured_fill_records_spend_but_no_position(store, make_session, clock):
    session = make_session()
    swap = FakeSwap(out_amount_raw=None, out_amount_ui=None)
    executor = ExecutionController(store, swap, FakeSignerProvider(), clock=clock)

    result = executor.execute(session, open_intent(session))

    assert not result.success
    assert store.read_active_positions(session.id) == []
    assert store.get_session(session.id).daily_buy_usd == 20.0
    trades = store.trades.list_by_session(session.id)
    assert [t.status for t in trades] == ["unmeasured"]


def test_failure_is_notified(store, make_session, swap, clock):
    session = make_session()
    swap.buy_error = "rejected"
    notifier = MagicMock()
    executor = ExecutionController(store, swap, FakeSignerProvider(), notifier=notifier, clock=clock)

    executor.execute(session, open_intent(session))

    notifier.notificar_fallo_ejecucion.assert_called_once_with(session.id, "buy", OWNER_A, "rejected")


def test_hold_intents_are_not_dispatched(store, executor, make_session, swap):
    session = make_session()
    hold = Intent(type=IntentType.HOLD, session_id=session.id, reason=IntentReason.WATCHING, note="Watching")
    assert executor.execute_all(session, [hold]) == []
    assert swap.buys == [] and swap.sells == []


def test_trade_timestamps_follow_clock(store, executor, make_session, clock):
    session = make_session()
    clock.now = T0 + 123
    executor.execute(session, open_intent(session))
    assert store.last_trade_ts(session.id, TradeType.BUY) == T0 + 123


def _service_returning(body):
    http = MagicMock()
    reply = MagicMock()
    reply.status_code = 200
    reply.content = b"{}"
    reply.json.return_value = body
    http.post.return_value = reply
    return SwapService(base_url="https://swap.test", function_token="tok", http=http, dry_run=False)


def test_close_with_unreadable_out_amount_still_settles(store, make_session, make_position, clock):
    session = make_session()
    lot = make_position(session)
    swap = _service_returning({"signatures": ["sig-1"], "status": "confirmed", "outAmountRaw": "1500.5"})
    executor = ExecutionController(store, swap, FakeSignerProvider(), clock=clock)

    result = executor.execute(session, close_intent(session, lot))

    assert result.success
    assert result.signature == "sig-1"
    assert store.positions.get(lot.id).status == PositionStatus.SOLD
    assert store.trades.count_by_position(lot.id) == 1


def test_open_with_unreadable_out_amount_falls_back_to_balance_delta(store, make_session, clock):
    session = make_session()
    swap = _service_returning({"signatures": ["sig-1"], "outAmountRaw": "n/a", "outAmountUi": "?"})
    reader = MagicMock()
    reader.get_token_balance.side_effect = [balance(0, 0.0), balance(4_000_000, 4.0)]
    executor = ExecutionController(store, swap, FakeSignerProvider(), balance_reader=reader, clock=clock)

    assert executor.execute(session, open_intent(session)).success

    lots = store.read_active_positions(session.id)
    assert (lots[0].quantity_raw, lots[0].quantity_ui) == (4_000_000, 4.0)
    assert store.get_session(session.id).daily_buy_usd == 20.0


def test_swap_exception_releases_the_claim(store, make_session, make_position, clock):
    session = make_session()
    lot = make_position(session)
    swap = MagicMock()
    swap.sell.side_effect = RuntimeError("socket closed")
    executor = ExecutionController(store, swap, FakeSignerProvider(), clock=clock)

    result = executor.execute(session, close_intent(session, lot))

    assert not result.success
    row = store.positions.get(lot.id)
    assert row.status == PositionStatus.ACTIVE
    assert "socket closed" in row.error_message
    assert store.trades.count_by_position(lot.id) == 0
