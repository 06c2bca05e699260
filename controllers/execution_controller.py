# controllers/execution_controller.py
from __future__ import annotations
import time
import uuid
from typing import Callable, Optional, Protocol

from enums.intent_type import IntentType
from enums.position_status import PositionStatus
from enums.session_enums import TradeType
from models.intent import ExecutionResult, Intent
from models.position import Position
from models.token_balance import TokenBalance
from models.trade_record import TradeRecord
from models.trade_session import TradingSession
from repositories.position_store import PositionStore
from services.activity_service import ActivityService
from services.signer_service import SignerError
from services.solana_rpc_service import RpcError
from services.swap_service import SwapResult, SwapService
from utils.formatting import fmt, short_key
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

# decimales por defecto si no hay saldo previo del que leerlos
DEFAULT_TOKEN_DECIMALS = 6


class ExecutionError(Exception):
    """Wallet o firmante no resolubles para un intent."""


class SignerProvider(Protocol):
    def signer_for(self, signer_ref: str): ...


class BalanceReader(Protocol):
    def get_token_balance(self, owner: str, mint: str) -> TokenBalance: ...


class ExecutionController:
    """
    Lleva a cabo los intents de un tick:
      - OPEN: compra con la siguiente wallet del pool, mide la cantidad
        recibida (respuesta del swap o delta pre/post de saldo) y crea el lote
      - CLOSE: reclama la posición (active -> closing, CAS), vende y la cierra
        como sold (también en emergencia); si falla vuelve a active
    Nunca lanza por un fallo de swap/firma: devuelve ExecutionResult.
    """

    def __init__(self, store: PositionStore, swap_service: SwapService, signer_provider: SignerProvider,
                 balance_reader: Optional[BalanceReader] = None, activity: Optional[ActivityService] = None,
                 notifier=None, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.swap = swap_service
        self.signers = signer_provider
        self.balances = balance_reader
        self.activity = activity or ActivityService()
        self.notifier = notifier
        self.clock = clock

    @log_function
    def execute(self, session: TradingSession, intent: Intent) -> ExecutionResult:
        if intent.type == IntentType.OPEN:
            return self._open(session, intent)
        if intent.type == IntentType.CLOSE:
            return self._close(session, intent)
        return ExecutionResult(success=True, skipped=True)

    def execute_all(self, session: TradingSession, intents: list[Intent]) -> list[ExecutionResult]:
        """En orden y de uno en uno: dentro de una sesión no hay paralelismo."""
        results = []
        for intent in intents:
            if intent.type == IntentType.HOLD:
                if intent.note:
                    logger.info(f"[{session.id}] {intent.note}")
                continue
            results.append(self.execute(session, intent))
        return results

    # -------- utilidades --------
    def _now(self) -> int:
        return int(self.clock())

    def _signer(self, signer_ref: str):
        try:
            return self.signers.signer_for(signer_ref)
        except SignerError as e:
            raise ExecutionError(f"firmante no disponible: {e}") from e

    def _balance(self, owner: str, mint: str) -> Optional[TokenBalance]:
        if self.balances is None:
            return None
        try:
            return self.balances.get_token_balance(owner, mint)
        except RpcError as e:
            logger.warning(f"Saldo de {short_key(owner)} no disponible: {e}")
            return None

    def _fail(self, session: TradingSession, side: str, owner: Optional[str], error: str,
              position_id: Optional[str] = None) -> ExecutionResult:
        self.activity.error(session.id, f"{side} falló ({short_key(owner)}): {error}")
        if self.notifier is not None:
            self.notifier.notificar_fallo_ejecucion(session.id, side, owner, error)
        return ExecutionResult(success=False, error=error, position_id=position_id)

    def _filled(self, intent: Intent, result: SwapResult, pre: Optional[TokenBalance],
                owner: str, mint: str) -> tuple[int, float]:
        """Cantidad comprada: la que reporta el swap, o el delta de saldo pre/post."""
        decimals = pre.decimals if pre and pre.decimals else DEFAULT_TOKEN_DECIMALS
        if result.out_amount_raw:
            ui = result.out_amount_ui if result.out_amount_ui is not None else result.out_amount_raw / 10 ** decimals
            return int(result.out_amount_raw), float(ui)
        if result.status == "simulated" and intent.price:
            ui = intent.usd_amount / intent.price
            return int(round(ui * 10 ** decimals)), ui
        if pre is None:
            return 0, 0.0
        post = self._balance(owner, mint)
        if post is None or post.amount_raw <= pre.amount_raw:
            return 0, 0.0
        return post.amount_raw - pre.amount_raw, max(post.ui_amount - pre.ui_amount, 0.0)

    # -------- OPEN --------
    def _open(self, session: TradingSession, intent: Intent) -> ExecutionResult:
        cfg = session.config
        mint = session.token_mint
        wallet = self.store.pick_wallet(session.id)
        try:
            if wallet is None:
                raise ExecutionError("la sesión no tiene wallets")
            signer = self._signer(wallet.signer_ref)
        except ExecutionError as e:
            return self._fail(session, "buy", wallet.pubkey if wallet else None, str(e))

        pre = self._balance(wallet.pubkey, mint)
        result = self.swap.buy(mint, intent.usd_amount, intent.slippage_bps or cfg.slippage_bps,
                               cfg.confirm_policy, cfg.fee_override_micro_lamports, signer)
        now = self._now()
        self.store.mark_wallet_used(session.id, wallet.pubkey, now)
        if not result.ok:
            return self._fail(session, "buy", wallet.pubkey, result.error or "swap rechazado")

        # el USD ya salió de la wallet: cuenta para el tope diario aunque no se mida el fill
        self.store.add_daily_spend(session.id, intent.usd_amount)
        qty_raw, qty_ui = self._filled(intent, result, pre, wallet.pubkey, mint)
        if qty_raw <= 0:
            self.store.insert_trade(TradeRecord(
                session_id=session.id, position_id=None, trade_type=TradeType.BUY, token_mint=mint,
                price_usd=intent.price or 0.0, usd_amount=intent.usd_amount, quantity_ui=0.0,
                signatures=result.signatures, owner_pubkey=wallet.pubkey, status="unmeasured",
                reason=intent.reason.value, created_at=now,
            ))
            return self._fail(session, "buy", wallet.pubkey, "compra enviada pero fill no medido")

        position = Position(
            id=uuid.uuid4().hex,
            session_id=session.id,
            lot_id=uuid.uuid4().hex if cfg.separate_lots else "main",
            token_mint=mint,
            entry_price=float(intent.price),
            high_price=float(intent.price),
            quantity_raw=qty_raw,
            quantity_ui=qty_ui,
            entry_timestamp=now,
            owner_pubkey=wallet.pubkey,
            signer_ref=wallet.signer_ref,
        )
        self.store.insert_position(position)
        self.store.insert_trade(TradeRecord(
            session_id=session.id, position_id=position.id, trade_type=TradeType.BUY, token_mint=mint,
            price_usd=position.entry_price, usd_amount=intent.usd_amount, quantity_ui=qty_ui,
            quantity_raw=qty_raw, signatures=result.signatures, owner_pubkey=wallet.pubkey,
            status=result.status or "confirmed", reason=intent.reason.value, created_at=now,
        ))
        self.activity.info(session.id,
                           f"BUY {intent.reason.value} ${fmt(intent.usd_amount, 2)} @ ${fmt(intent.price, 6)} "
                           f"-> {fmt(qty_ui)} tokens ({short_key(wallet.pubkey)})",
                           position_id=position.id, signature=result.signature)
        return ExecutionResult(success=True, signature=result.signature, position_id=position.id)

    # -------- CLOSE --------
    def _close(self, session: TradingSession, intent: Intent) -> ExecutionResult:
        position = intent.position
        if position is None:
            return ExecutionResult(success=False, error="CLOSE sin posición")
        cfg = session.config

        if not self.store.conditional_update_status(position.id, PositionStatus.ACTIVE,
                                                    PositionStatus.CLOSING, now=self._now()):
            logger.info(f"[{session.id}] posición {position.id} ya resuelta por otro actor; se omite")
            return ExecutionResult(success=False, skipped=True, position_id=position.id)

        try:
            signer = self._signer(position.signer_ref)
        except ExecutionError as e:
            self.store.conditional_update_status(position.id, PositionStatus.CLOSING, PositionStatus.ACTIVE,
                                                 error_message=str(e))
            return self._fail(session, "sell", position.owner_pubkey, str(e), position.id)

        try:
            result = self.swap.sell(position.token_mint, position.quantity_raw,
                                    intent.slippage_bps or cfg.slippage_bps,
                                    cfg.confirm_policy, cfg.fee_override_micro_lamports, signer)
        except Exception as e:
            # la posición no puede quedarse reclamada: se libera y el error se devuelve
            logger.exception(f"[{session.id}] venta de {position.id} lanzó {type(e).__name__}")
            result = SwapResult(error=f"error inesperado en el swap: {e}")
        now = self._now()
        if not result.ok:
            # sigue activa: el siguiente tick la reevalúa
            self.store.conditional_update_status(position.id, PositionStatus.CLOSING, PositionStatus.ACTIVE,
                                                 error_message=result.error, now=now)
            return self._fail(session, "sell", position.owner_pubkey, result.error or "swap rechazado", position.id)

        self.store.conditional_update_status(position.id, PositionStatus.CLOSING, PositionStatus.SOLD, now=now)
        price = intent.price or 0.0
        self.store.insert_trade(TradeRecord(
            session_id=session.id, position_id=position.id, trade_type=TradeType.SELL,
            token_mint=position.token_mint, price_usd=price, usd_amount=position.quantity_ui * price,
            quantity_ui=position.quantity_ui, quantity_raw=position.quantity_raw,
            signatures=result.signatures, owner_pubkey=position.owner_pubkey,
            status=result.status or "confirmed", reason=intent.reason.value, created_at=now,
        ))
        pnl = (price - position.entry_price) / position.entry_price * 100.0 if position.entry_price else 0.0
        self.activity.info(session.id,
                           f"SELL {intent.reason.value} {fmt(position.quantity_ui)} @ ${fmt(price, 6)} "
                           f"(PnL {fmt(pnl, 2)}%)",
                           position_id=position.id, signature=result.signature)
        return ExecutionResult(success=True, signature=result.signature, position_id=position.id)
