from __future__ import annotations
import os
from typing import Any, List, Optional

import requests

from models.token_balance import TokenBalance
from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

# ---------- ENV ----------
# RPCs: admite coma-separado. Si una falla se rota al siguiente para la
# próxima llamada; dentro de una llamada no se reintenta.
_HELIUS_KEY = os.getenv("HELIUS_API_KEY")
_RPC_ENV = (
    os.getenv("SOLANA_RPC_URLS")
    or os.getenv("SOLANA_RPC_URL")
    or (f"https://mainnet.helius-rpc.com/?api-key={_HELIUS_KEY}" if _HELIUS_KEY else None)
    or "https://api.mainnet-beta.solana.com"
)
DEFAULT_RPC_URLS = [u.strip() for u in _RPC_ENV.split(",") if u.strip()]
RPC_TIMEOUT_SECS = float(os.getenv("RPC_TIMEOUT_SECS", "15"))
RPC_COMMITMENT = os.getenv("RPC_COMMITMENT", "confirmed")

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"


class RpcError(Exception):
    """Fallo de transporte o error JSON-RPC devuelto por el nodo."""


class SolanaRpcService:
    """
    Lector de saldos on-chain: dado un owner, devuelve mint -> TokenBalance
    sumando todas sus token accounts de ambos programas (SPL y Token-2022).
    """

    def __init__(self, rpc_urls: Optional[List[str]] = None, timeout: float = RPC_TIMEOUT_SECS,
                 http: requests.Session | None = None) -> None:
        self._rpc_urls: List[str] = list(rpc_urls) if rpc_urls else list(DEFAULT_RPC_URLS)
        if not self._rpc_urls:
            self._rpc_urls = ["https://api.mainnet-beta.solana.com"]
        self._current_rpc_idx = 0
        self.timeout = timeout
        self.http = http or requests.Session()

    @property
    def active_rpc(self) -> str:
        return self._rpc_urls[self._current_rpc_idx]

    def _rotate(self) -> None:
        if len(self._rpc_urls) > 1:
            self._current_rpc_idx = (self._current_rpc_idx + 1) % len(self._rpc_urls)
            logger.info(f"Cambiando a RPC: {self._redact(self.active_rpc)}")

    @staticmethod
    def _redact(url: str) -> str:
        return url.split("?", 1)[0]

    def _rpc_call(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        url = self.active_rpc
        try:
            r = self.http.post(url, json=payload, timeout=self.timeout)
            r.raise_for_status()
            body = r.json()
        except (requests.RequestException, ValueError) as e:
            self._rotate()
            raise RpcError(f"{method} en {self._redact(url)}: {e}") from e
        if not isinstance(body, dict):
            raise RpcError(f"{method}: respuesta inesperada")
        if "error" in body:
            raise RpcError(f"{method}: {body['error']}")
        return body.get("result")

    def _accounts_by_owner(self, owner: str, program_id: str) -> list[dict]:
        result = self._rpc_call("getTokenAccountsByOwner", [
            owner,
            {"programId": program_id},
            {"encoding": "jsonParsed", "commitment": RPC_COMMITMENT},
        ])
        value = result.get("value") if isinstance(result, dict) else None
        # un resultado sin lista de cuentas no es "saldo cero": se trata como fallo
        if not isinstance(value, list):
            raise RpcError(f"getTokenAccountsByOwner sin 'value' para {owner}")
        return value

    @log_function
    def get_token_balances(self, owner: str) -> dict[str, TokenBalance]:
        """
        Una consulta por programa (batch por wallet, no por posición).
        Cualquier fallo se propaga como RpcError: el llamador decide si la
        wallet queda como 'desconocida'.
        """
        balances: dict[str, TokenBalance] = {}
        for program_id in (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID):
            for account in self._accounts_by_owner(owner, program_id):
                try:
                    info = (((account.get("account") or {}).get("data") or {}).get("parsed") or {}).get("info") or {}
                    mint = info.get("mint")
                    amount = info.get("tokenAmount") or {}
                    if not mint:
                        continue
                    raw = int(amount.get("amount") or 0)
                    ui = float(amount.get("uiAmount") or 0.0)
                    decimals = int(amount.get("decimals") or 0)
                except (AttributeError, TypeError, ValueError) as e:
                    raise RpcError(f"cuenta ilegible de {owner}: {e}") from e
                current = balances.get(mint) or TokenBalance(mint=mint, decimals=decimals)
                balances[mint] = current.add(raw, ui)
        logger.debug(f"[rpc] {owner}: {len(balances)} mints on-chain")
        return balances

    def get_token_balance(self, owner: str, mint: str) -> TokenBalance:
        return self.get_token_balances(owner).get(mint) or TokenBalance(mint=mint)
