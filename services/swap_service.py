# services/swap_service.py
from __future__ import annotations
import json
import os
from typing import List, Optional

import requests
from pydantic import BaseModel, Field

from enums.session_enums import ConfirmPolicy
from services.signer_service import Signer, SignerError
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

SWAP_SERVICE_URL = os.getenv("SWAP_SERVICE_URL", "")
FUNCTION_TOKEN = os.getenv("FUNCTION_TOKEN", "")
SWAP_TIMEOUT_SECS = float(os.getenv("SWAP_TIMEOUT_SECS", "45"))
DRY_RUN = os.getenv("DRY_RUN", "false").lower() == "true"


def _amount(value, cast, field: str):
    if value is None:
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        logger.warning(f"[swap] {field} ilegible en la respuesta: {value!r}")
        return None


class SwapResult(BaseModel):
    signatures: List[str] = Field(default_factory=list)
    status: str = ""
    out_amount_raw: Optional[int] = None
    out_amount_ui: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def signature(self) -> Optional[str]:
        return self.signatures[0] if self.signatures else None


class SwapService:
    """
    Cliente del servicio externo de swap/broadcast.
      - buy: usdcAmount (USD) -> tokens
      - sell: sellAmountRaw (unidades raw) -> quote
    El cuerpo va firmado por el firmante del owner (cabecera x-owner-signature);
    la clave nunca pasa por aquí. Un timeout es un fallo del tick, sin reintento.
    """

    def __init__(self, base_url: str = SWAP_SERVICE_URL, function_token: str = FUNCTION_TOKEN,
                 timeout: float = SWAP_TIMEOUT_SECS, http: requests.Session | None = None,
                 dry_run: bool = DRY_RUN) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.function_token = function_token
        self.timeout = timeout
        self.http = http or requests.Session()
        self.dry_run = dry_run

    @log_function
    def buy(self, mint: str, usd_amount: float, slippage_bps: int, confirm_policy: ConfirmPolicy,
            fee_override_micro_lamports: Optional[int], signer: Signer) -> SwapResult:
        return self._execute({
            "side": "buy",
            "tokenMint": mint,
            "usdcAmount": round(float(usd_amount), 6),
        }, slippage_bps, confirm_policy, fee_override_micro_lamports, signer)

    @log_function
    def sell(self, mint: str, amount_raw: int, slippage_bps: int, confirm_policy: ConfirmPolicy,
             fee_override_micro_lamports: Optional[int], signer: Signer) -> SwapResult:
        if amount_raw <= 0:
            return SwapResult(error="sellAmountRaw inválido")
        return self._execute({
            "side": "sell",
            "tokenMint": mint,
            "sellAmountRaw": str(int(amount_raw)),
        }, slippage_bps, confirm_policy, fee_override_micro_lamports, signer)

    def _execute(self, body: dict, slippage_bps: int, confirm_policy: ConfirmPolicy,
                 fee_override: Optional[int], signer: Signer) -> SwapResult:
        body = {
            **body,
            "slippageBps": int(slippage_bps),
            "confirmPolicy": ConfirmPolicy(confirm_policy).value,
            "ownerPubkey": signer.pubkey,
        }
        if fee_override:
            body["feeOverrideMicroLamports"] = int(fee_override)

        if self.dry_run:
            logger.info(f"[DRY-RUN] swap simulado: {body}")
            return SwapResult(signatures=[], status="simulated")
        if not self.base_url:
            return SwapResult(error="SWAP_SERVICE_URL no configurada")

        raw = json.dumps(body, separators=(",", ":"), sort_keys=True)
        try:
            signature = signer.sign(raw.encode("utf-8"))
        except SignerError as e:
            return SwapResult(error=f"firma rechazada: {e}")

        headers = {
            "Content-Type": "application/json",
            "x-function-token": self.function_token,
            "x-owner-pubkey": signer.pubkey,
            "x-owner-signature": signature,
        }
        try:
            r = self.http.post(self.base_url, data=raw, headers=headers, timeout=self.timeout)
            data = r.json() if r.content else {}
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[swap] {body['side']} {body['tokenMint']} falló: {e}")
            return SwapResult(error=str(e))
        if not isinstance(data, dict):
            logger.error(f"[swap] {body['side']} respuesta inesperada: {data!r}")
            return SwapResult(error=f"respuesta inesperada (HTTP {r.status_code})")

        if r.status_code != 200 or data.get("error"):
            err = data.get("error") or f"HTTP {r.status_code}"
            logger.warning(f"[swap] {body['side']} rechazado: {err}")
            return SwapResult(error=str(err))

        # el swap ya se ejecutó: un outAmount ilegible no lo convierte en fallo,
        # el dispatcher mide el fill por delta de saldo
        return SwapResult(
            signatures=[str(s) for s in data.get("signatures") or []],
            status=str(data.get("status") or "confirmed"),
            out_amount_raw=_amount(data.get("outAmountRaw"), int, "outAmountRaw"),
            out_amount_ui=_amount(data.get("outAmountUi"), float, "outAmountUi"),
        )
