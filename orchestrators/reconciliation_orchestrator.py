# orchestrators/reconciliation_orchestrator.py
from __future__ import annotations
import os
import threading
from typing import Optional

from controllers.reconciliation_controller import ReconciliationController
from schemas.reconciliation_schema import ReconciliationReport
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

RECONCILE_INTERVAL_SEC = float(os.getenv("RECONCILE_INTERVAL_SEC", "300"))
# por defecto solo informa; cerrar fantasmas requiere activarlo explícitamente
RECONCILE_APPLY = os.getenv("RECONCILE_APPLY", "false").lower() == "true"


class ReconciliationOrchestrator:
    """
    Reconciliación con su propio calendario, independiente de los ticks.
    Puede solaparse con un tick: los cierres por CAS no se pisan.
    """

    def __init__(self, controller: ReconciliationController, interval_sec: float = RECONCILE_INTERVAL_SEC,
                 apply: bool = RECONCILE_APPLY) -> None:
        self.controller = controller
        self.interval_sec = interval_sec
        self.apply = apply

        self._stop_evt = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @log_function
    def run(self, dry_run: bool = True) -> ReconciliationReport:
        report = self.controller.reconcile_all(dry_run=dry_run)
        logger.info(f"[reconcile] total={report.total_holding} válidas={report.valid_count} "
                    f"fantasma={report.phantom_count} desconocidas={report.unknown_count} "
                    f"cerradas={report.cleaned_count} dry_run={dry_run}")
        return report

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_evt.clear()
        self._thread = threading.Thread(target=self._run_loop, name="Reconcile", daemon=True)
        self._thread.start()
        logger.info(f"ReconciliationOrchestrator iniciado (apply={self.apply}).")

    def stop(self) -> None:
        self._stop_evt.set()
        logger.info("ReconciliationOrchestrator detenido (orden enviada).")

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread:
            self._thread.join(timeout)

    def _run_loop(self) -> None:
        while not self._stop_evt.wait(self.interval_sec):
            try:
                self.run(dry_run=not self.apply)
            except Exception as e:
                logger.exception(f"Error en reconciliación: {e}")
