"""
PositionStore: the single shared mutable resource of the trading core.

Facade over the SQLite repositories (sessions, positions, trade log,
emergency orders, wallet pool, price window). Controllers receive one
PositionStore instance per scheduler invocation instead of reaching for
module-level connections. Every state transition of a position goes through
``conditional_update_status`` (compare-and-swap); there are no global locks.
"""

from __future__ import annotations

from typing import Optional

from enums.position_status import PositionStatus
from enums.session_enums import StartMode, TradeType
from models.emergency_sell import EmergencySell
from models.position import Position
from models.price_sample import PriceSample
from models.runner_config import RunnerConfig
from models.trade_record import TradeRecord
from models.trade_session import TradingSession
from models.wallet import SessionWallet
from repositories.emergency_sell_repository import EmergencySellRepository
from repositories.position_repository import PositionRepository
from repositories.price_tick_repository import PriceTickRepository
from repositories.session_repository import SessionRepository
from repositories.trade_repository import TradeRepository
from repositories.wallet_repository import WalletRepository


class PositionStore:
    def __init__(self, db_path: str | None = None) -> None:
        self.sessions = SessionRepository(db_path=db_path)
        self.positions = PositionRepository(db_path=db_path)
        self.trades = TradeRepository(db_path=db_path)
        self.emergency = EmergencySellRepository(db_path=db_path)
        self.wallets = WalletRepository(db_path=db_path)
        self.ticks = PriceTickRepository(db_path=db_path)
        self.db_path = self.sessions.db_path

    # ---------------- sesiones ----------------
    def create_session(self, user_id: str, token_mint: str, config: RunnerConfig,
                       start_mode: StartMode = StartMode.BUYING,
                       wallets: Optional[list[tuple[str, str]]] = None,
                       now: Optional[int] = None) -> TradingSession:
        """Crea la sesión (config ya validada) y registra su pool de wallets (pubkey, signer_ref)."""
        session = self.sessions.create(user_id, token_mint, config, start_mode, now=now)
        for pubkey, signer_ref in wallets or []:
            self.wallets.add(session.id, pubkey, signer_ref)
        return session

    def read_active_sessions(self) -> list[TradingSession]:
        return self.sessions.list_active()

    def get_session(self, session_id: str) -> Optional[TradingSession]:
        return self.sessions.get(session_id)

    def stop_session(self, session_id: str) -> bool:
        """Efecto en la siguiente carga del scheduler; el tick en curso termina."""
        return self.sessions.deactivate(session_id)

    def claim_tick(self, session_id: str, now: int, lease_sec: int) -> bool:
        return self.sessions.claim_tick(session_id, now, lease_sec)

    def release_tick(self, session_id: str, lease_until: int) -> bool:
        return self.sessions.release_tick(session_id, lease_until)

    def roll_daily_key(self, session_id: str, today_key: str) -> bool:
        return self.sessions.roll_daily_key(session_id, today_key)

    def add_daily_spend(self, session_id: str, usd: float) -> None:
        self.sessions.add_daily_spend(session_id, usd)

    # ---------------- posiciones ----------------
    def read_active_positions(self, session_id: str) -> list[Position]:
        return self.positions.list_by_status(PositionStatus.ACTIVE, session_id=session_id)

    def read_all_active_positions(self) -> list[Position]:
        return self.positions.list_by_status(PositionStatus.ACTIVE)

    def insert_position(self, position: Position) -> Position:
        return self.positions.insert(position)

    def conditional_update_status(self, position_id: str, expected: PositionStatus, new: PositionStatus,
                                  error_message: Optional[str] = None, now: Optional[int] = None) -> bool:
        return self.positions.update_status_if(position_id, expected, new, error_message=error_message, now=now)

    def raise_high_water(self, session_id: str, price: float) -> int:
        return self.positions.raise_high_water(session_id, price)

    # ---------------- trades ----------------
    def insert_trade(self, trade: TradeRecord) -> int:
        return self.trades.insert(trade)

    def last_trade_ts(self, session_id: str, trade_type: Optional[TradeType] = None) -> Optional[int]:
        return self.trades.last_trade_ts(session_id, trade_type)

    # ---------------- emergencia ----------------
    def create_emergency_sell(self, session_id: str, limit_price: float) -> EmergencySell:
        return self.emergency.create(session_id, limit_price)

    def read_active_emergency_sells(self, session_id: str) -> list[EmergencySell]:
        return self.emergency.list_active(session_id)

    # ---------------- wallets ----------------
    def pick_wallet(self, session_id: str) -> Optional[SessionWallet]:
        return self.wallets.pick_next(session_id)

    def mark_wallet_used(self, session_id: str, pubkey: str, now: int) -> None:
        self.wallets.mark_used(session_id, pubkey, now)

    # ---------------- ventana de precios ----------------
    def record_price(self, session_id: str, ts: float, price: float, retention_sec: int) -> list[PriceSample]:
        """Guarda la muestra, poda lo que sale de la retención y devuelve la ventana."""
        self.ticks.append(session_id, ts, price)
        self.ticks.prune(session_id, ts - retention_sec)
        return self.ticks.window(session_id, ts - retention_sec)
