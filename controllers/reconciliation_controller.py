# controllers/reconciliation_controller.py
from __future__ import annotations
import os
import time
from collections import defaultdict
from typing import Callable, Optional, Protocol

from enums.position_status import PositionStatus
from models.position import Position
from models.token_balance import TokenBalance
from models.trade_session import TradingSession
from repositories.position_store import PositionStore
from schemas.reconciliation_schema import PHANTOM, UNKNOWN, VALID, PositionCheck, ReconciliationReport
from services.activity_service import ActivityService
from services.solana_rpc_service import RpcError
from utils.formatting import fmt, short_key
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

PHANTOM_MESSAGE = "no on-chain balance found"
# un 'closing' más viejo que esto es un cierre que murió a medias
CLOSING_CLAIM_TIMEOUT_SECS = int(os.getenv("CLOSING_CLAIM_TIMEOUT_SECS", "300"))


class WalletBalanceReader(Protocol):
    def get_token_balances(self, owner: str) -> dict[str, TokenBalance]: ...


class ReconciliationController:
    """
    Compara las posiciones activas con los saldos on-chain de cada owner.

    Por (wallet, mint): saldo agregado cero -> todos los lotes son fantasma;
    saldo distinto de cero -> ninguno (no se reparte un saldo parcial entre
    lotes). Una wallet cuyo RPC falla deja sus posiciones como 'unknown'
    y la pasada continúa. En dry-run solo informa; en apply cierra cada
    fantasma con CAS active -> sold.
    """

    def __init__(self, store: PositionStore, balance_reader: WalletBalanceReader,
                 activity: Optional[ActivityService] = None, notifier=None,
                 clock: Callable[[], float] = time.time,
                 claim_timeout_sec: int = CLOSING_CLAIM_TIMEOUT_SECS) -> None:
        self.store = store
        self.balances = balance_reader
        self.activity = activity or ActivityService()
        self.notifier = notifier
        self.clock = clock
        self.claim_timeout_sec = claim_timeout_sec

    @log_function
    def reconcile(self, session: TradingSession, dry_run: bool = True) -> ReconciliationReport:
        return self.reconcile_positions(self.store.read_active_positions(session.id), dry_run)

    @log_function
    def reconcile_all(self, dry_run: bool = True) -> ReconciliationReport:
        """Pasada global: una consulta por wallet aunque tenga lotes en varias sesiones."""
        report = self.reconcile_positions(self.store.read_all_active_positions(), dry_run)
        if not dry_run:
            report.released_claims = self.release_stale_claims()
        if self.notifier is not None:
            self.notifier.notificar_fantasmas(report.phantom_count, report.cleaned_count, dry_run)
        return report

    def reconcile_positions(self, positions: list[Position], dry_run: bool = True) -> ReconciliationReport:
        report = ReconciliationReport(dry_run=dry_run)
        by_owner: dict[str, list[Position]] = defaultdict(list)
        for p in positions:
            by_owner[p.owner_pubkey].append(p)

        for owner, owned in by_owner.items():
            try:
                balances = self.balances.get_token_balances(owner)
            except RpcError as e:
                logger.warning(f"[reconcile] {short_key(owner)}: RPC falló, {len(owned)} posiciones sin veredicto: {e}")
                report.results.extend(self._check(p, UNKNOWN, error=str(e)) for p in owned)
                continue

            by_mint: dict[str, list[Position]] = defaultdict(list)
            for p in owned:
                by_mint[p.token_mint].append(p)
            for mint, lots in by_mint.items():
                balance = balances.get(mint)
                phantom = balance is None or balance.is_zero
                on_chain = balance.ui_amount if balance else 0.0
                for p in lots:
                    check = self._check(p, PHANTOM if phantom else VALID, on_chain_ui=on_chain)
                    if phantom and not dry_run:
                        check.cleaned = self._clean(p)
                    report.results.append(check)

        if report.phantom_count:
            logger.info(f"[reconcile] {report.phantom_count} fantasmas, {report.cleaned_count} cerrados "
                        f"({'dry-run' if dry_run else 'apply'})")
        return report

    def _check(self, p: Position, verdict: str, on_chain_ui: Optional[float] = None,
               error: Optional[str] = None) -> PositionCheck:
        return PositionCheck(position_id=p.id, session_id=p.session_id, owner_pubkey=p.owner_pubkey,
                             token_mint=p.token_mint, quantity_ui=p.quantity_ui, verdict=verdict,
                             on_chain_ui=on_chain_ui, error=error)

    def _clean(self, p: Position) -> bool:
        # CAS: si una venta normal ya la cerró, no hace nada
        done = self.store.conditional_update_status(p.id, PositionStatus.ACTIVE, PositionStatus.SOLD,
                                                    error_message=PHANTOM_MESSAGE, now=int(self.clock()))
        if done:
            self.activity.warn(p.session_id, f"posición fantasma {p.id} cerrada "
                                             f"({fmt(p.quantity_ui)} tokens, {short_key(p.owner_pubkey)})")
        return done

    @log_function
    def release_stale_claims(self) -> int:
        """Devuelve a 'active' los cierres reclamados hace más de claim_timeout_sec."""
        cutoff = int(self.clock()) - self.claim_timeout_sec
        released = 0
        for p in self.store.positions.list_stale_closing(cutoff):
            if self.store.conditional_update_status(p.id, PositionStatus.CLOSING, PositionStatus.ACTIVE,
                                                    error_message="closing claim expired"):
                released += 1
                self.activity.warn(p.session_id, f"claim de cierre caducado en {p.id}; vuelve a active")
        return released
