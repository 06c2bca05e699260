# orchestrators/monitor_orchestrator.py
from __future__ import annotations
import os
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional

from controllers.decision_controller import DecisionController, TickContext
from controllers.emergency_controller import EmergencyController
from controllers.execution_controller import ExecutionController
from enums.session_enums import StartMode, TradeType
from models.position import Position
from models.trade_session import TradingSession
from repositories.position_store import PositionStore
from repositories.session_repository import daily_key_for
from schemas.monitor_schema import TickSummary
from services.activity_service import ActivityService
from services.price_service import CachedPriceService, PriceService
from services.solana_rpc_service import RpcError
from utils.formatting import fmt, short_key
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

MONITOR_INTERVAL_SEC = float(os.getenv("MONITOR_INTERVAL_SEC", "5"))
SESSION_LEASE_SEC = int(os.getenv("SESSION_LEASE_SEC", "120"))
MAX_PARALLEL_SESSIONS = int(os.getenv("MAX_PARALLEL_SESSIONS", "8"))


class MonitorOrchestrator:
    """
    Driver de ticks. Cada invocación (run_once):
      - carga las sesiones activas
      - las procesa en paralelo (independientes entre sí)
      - por sesión: lease -> día -> precio -> muestra -> emergencia ->
        adopción de saldo (selling) -> high-water -> decisión -> ejecución
    Un error inesperado en una sesión se registra y no afecta al resto.
    """

    def __init__(self, store: PositionStore, price_service: PriceService, executor: ExecutionController,
                 emergency: EmergencyController, decision: Optional[DecisionController] = None,
                 balance_reader=None, activity: Optional[ActivityService] = None,
                 clock: Callable[[], float] = time.time, lease_sec: int = SESSION_LEASE_SEC,
                 max_workers: int = MAX_PARALLEL_SESSIONS, interval_sec: float = MONITOR_INTERVAL_SEC) -> None:
        self.store = store
        self.price_service = price_service
        self.executor = executor
        self.emergency = emergency
        self.decision = decision or DecisionController()
        self.balances = balance_reader
        self.activity = activity or ActivityService()
        self.clock = clock
        self.lease_sec = lease_sec
        self.max_workers = max(1, max_workers)
        self.interval_sec = interval_sec

        self._stop_evt = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # --------- bucle ----------
    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_evt.clear()
        self._thread = threading.Thread(target=self._run_loop, name="Monitor", daemon=True)
        self._thread.start()
        logger.info("MonitorOrchestrator iniciado.")

    def stop(self) -> None:
        self._stop_evt.set()
        logger.info("MonitorOrchestrator detenido (orden enviada).")

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread:
            self._thread.join(timeout)

    def _run_loop(self) -> None:
        while not self._stop_evt.is_set():
            try:
                summary = self.run_once()
                logger.debug(f"[monitor] tick {summary.to_dict()}")
            except Exception as e:
                logger.exception(f"Error en tick del monitor: {e}")
            self._stop_evt.wait(self.interval_sec)

    # --------- core ----------
    @log_function
    def run_once(self) -> TickSummary:
        summary = TickSummary(timestamp=int(self.clock()))
        sessions = self.store.read_active_sessions()
        if not sessions:
            return summary

        # caché de precios con vida de esta invocación
        prices = CachedPriceService(self.price_service)
        workers = min(self.max_workers, len(sessions))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tick") as pool:
            futures = {pool.submit(self._process_session, s, prices): s for s in sessions}
            for fut in as_completed(futures):
                session = futures[fut]
                try:
                    handled = fut.result()
                except Exception as e:
                    logger.exception(f"[{session.id}] error en el tick: {e}")
                    self.activity.error(session.id, f"tick fallido: {e}")
                    summary.failed += 1
                    summary.failed_sessions.append(session.id)
                    continue
                if handled:
                    summary.processed += 1
                else:
                    summary.skipped += 1

        logger.info(f"[monitor] procesadas={summary.processed} saltadas={summary.skipped} "
                    f"fallidas={summary.failed}")
        return summary

    def _process_session(self, session: TradingSession, prices: CachedPriceService) -> bool:
        """False si otra invocación tiene el lease (o la sesión ya no está activa)."""
        now = int(self.clock())
        if not self.store.claim_tick(session.id, now, self.lease_sec):
            logger.debug(f"[{session.id}] lease ocupado; se salta")
            return False
        try:
            self._tick(session, prices, now)
        finally:
            self.store.release_tick(session.id, now + self.lease_sec)
        return True

    def _tick(self, session: TradingSession, prices: CachedPriceService, now: int) -> None:
        today = daily_key_for(now)
        if self.store.roll_daily_key(session.id, today):
            session = session.model_copy(update={"daily_buy_usd": 0.0, "daily_key": today})
            logger.info(f"[{session.id}] nuevo día {today}: acumulador diario a 0")

        price = prices.get_price(session.token_mint)
        if price is None:
            logger.info(f"[{session.id}] sin precio para {short_key(session.token_mint)}; tick omitido")
            return

        cfg = session.config
        history = self.store.record_price(session.id, now, price, cfg.history_retention_sec)

        # la emergencia va siempre antes que la decisión
        if self.emergency.check(session, price):
            return

        if session.start_mode == StartMode.SELLING and not session.holdings_adopted:
            self._adopt_holdings(session, price, now)

        self.store.raise_high_water(session.id, price)
        ctx = TickContext(
            session=session,
            positions=self.store.read_active_positions(session.id),
            history=history,
            price=price,
            now=now,
            last_trade_ts=self.store.last_trade_ts(session.id),
            last_sell_ts=self.store.last_trade_ts(session.id, TradeType.SELL),
        )
        intents = self.decision.decide(ctx)
        self.executor.execute_all(session, intents)

    def _adopt_holdings(self, session: TradingSession, price: float, now: int) -> int:
        """
        Sesiones selling-first: el saldo que ya tienen las wallets del pool
        pasa a ser un lote activo con entrada al precio actual. Una sola vez;
        si el RPC falla se reintenta en el siguiente tick.
        """
        if self.balances is None:
            self.store.sessions.mark_holdings_adopted(session.id)
            return 0
        held = []
        for wallet in self.store.wallets.list_for_session(session.id):
            try:
                balance = self.balances.get_token_balance(wallet.pubkey, session.token_mint)
            except RpcError as e:
                logger.warning(f"[{session.id}] adopción aplazada, RPC falló para {short_key(wallet.pubkey)}: {e}")
                return 0
            if not balance.is_zero:
                held.append((wallet, balance))

        adopted = 0
        for wallet, balance in held:
            self.store.insert_position(Position(
                id=uuid.uuid4().hex,
                session_id=session.id,
                lot_id=uuid.uuid4().hex if session.config.separate_lots else "main",
                token_mint=session.token_mint,
                entry_price=price,
                high_price=price,
                quantity_raw=balance.amount_raw,
                quantity_ui=balance.ui_amount,
                entry_timestamp=now,
                owner_pubkey=wallet.pubkey,
                signer_ref=wallet.signer_ref,
            ))
            adopted += 1
            self.activity.info(session.id, f"saldo adoptado: {fmt(balance.ui_amount)} tokens en "
                                           f"{short_key(wallet.pubkey)} @ ${fmt(price, 6)}")
        self.store.sessions.mark_holdings_adopted(session.id)
        return adopted
