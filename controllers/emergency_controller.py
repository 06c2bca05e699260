# controllers/emergency_controller.py
from __future__ import annotations
import time
from typing import Callable, Optional

from enums.intent_type import IntentReason, IntentType
from models.intent import Intent
from models.trade_session import TradingSession
from repositories.position_store import PositionStore
from services.activity_service import ActivityService
from controllers.execution_controller import ExecutionController
from utils.formatting import fmt
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)


class EmergencyController:
    """
    Órdenes de venta de emergencia: si el precio cae a o por debajo del
    límite, liquida todos los lotes activos de la sesión (slippage de
    emergencia), consume la orden y para la sesión.
    Si algún lote no se pudo cerrar la orden sigue activa y se reintenta
    en el siguiente tick.
    """

    def __init__(self, store: PositionStore, executor: ExecutionController,
                 activity: Optional[ActivityService] = None, notifier=None,
                 clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.executor = executor
        self.activity = activity or ActivityService()
        self.notifier = notifier
        self.clock = clock

    @log_function
    def check(self, session: TradingSession, price: Optional[float]) -> bool:
        """True si hubo emergencia este tick (el motor de decisión no corre)."""
        if price is None or price <= 0:
            return False
        triggered = [o for o in self.store.read_active_emergency_sells(session.id) if price <= o.limit_price]
        if not triggered:
            return False

        limit = triggered[0].limit_price
        self.activity.warn(session.id, f"🚨 emergencia: ${fmt(price, 6)} <= límite ${fmt(limit, 6)}")

        closed = failed = 0
        for position in self.store.read_active_positions(session.id):
            intent = Intent(
                type=IntentType.CLOSE, session_id=session.id, reason=IntentReason.EMERGENCY, price=price,
                usd_amount=position.quantity_ui * price, position=position,
                slippage_bps=session.config.emergency_slippage_bps,
                note=f"emergency <= ${fmt(limit, 6)}",
            )
            result = self.executor.execute(session, intent)
            if result.success or result.skipped:
                closed += 1
            else:
                failed += 1

        if failed or self.store.read_active_positions(session.id):
            self.activity.warn(session.id, f"emergencia incompleta ({closed} cerrados, {failed} fallidos); "
                                           f"se reintenta en el siguiente tick")
            return True

        now = int(self.clock())
        for order in triggered:
            self.store.emergency.consume(order.id, now)
        self.store.stop_session(session.id)
        self.activity.info(session.id, f"emergencia completada: {closed} lotes cerrados, sesión parada")
        if self.notifier is not None:
            self.notifier.notificar_emergencia(session.id, session.token_mint, price, limit, closed, failed)
        return True
