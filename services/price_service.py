# services/price_service.py
from __future__ import annotations
import math
import os
import threading
from typing import Optional

import requests

from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

DEXSCREENER_BASE_URL = os.getenv("DEXSCREENER_BASE_URL", "https://api.dexscreener.com/latest/dex").rstrip("/")
JUPITER_PRICE_URL = os.getenv("JUPITER_PRICE_URL", "https://price.jup.ag/v6/price")
PRICE_TIMEOUT_SECS = float(os.getenv("PRICE_TIMEOUT_SECS", "8"))


def _positive(value) -> Optional[float]:
    try:
        p = float(value)
    except (TypeError, ValueError):
        return None
    return p if math.isfinite(p) and p > 0 else None


def _field(node, key: str):
    # cuerpos con otra forma (listas, strings) cuentan como respuesta sin precio
    return node.get(key) if isinstance(node, dict) else None


class PriceService:
    """
    Precio USD actual de un mint de Solana.
      1) DexScreener (primer par, priceUsd)
      2) Jupiter price API (vsToken=USDC) como respaldo
    Sin reintentos: el siguiente tick del scheduler es el reintento.
    Devuelve None (nunca 0 ni excepción) si ningún proveedor da un precio > 0.
    """

    def __init__(self, http: requests.Session | None = None, timeout: float = PRICE_TIMEOUT_SECS,
                 dexscreener_url: str = DEXSCREENER_BASE_URL, jupiter_url: str = JUPITER_PRICE_URL) -> None:
        self.http = http or requests.Session()
        self.timeout = timeout
        self.dexscreener_url = dexscreener_url.rstrip("/")
        self.jupiter_url = jupiter_url

    @log_function
    def get_price(self, mint: str) -> Optional[float]:
        for provider in (self._from_dexscreener, self._from_jupiter):
            try:
                price = provider(mint)
            except (requests.RequestException, ValueError) as e:
                logger.warning(f"[price] {provider.__name__} falló para {mint}: {e}")
                continue
            if price is not None:
                return price
        logger.warning(f"[price] sin precio para {mint}")
        return None

    def _from_dexscreener(self, mint: str) -> Optional[float]:
        r = self.http.get(f"{self.dexscreener_url}/tokens/{mint}", timeout=self.timeout)
        if r.status_code != 200:
            return None
        pairs = _field(r.json(), "pairs")
        if not isinstance(pairs, list) or not pairs:
            return None
        return _positive(_field(pairs[0], "priceUsd"))

    def _from_jupiter(self, mint: str) -> Optional[float]:
        r = self.http.get(self.jupiter_url, params={"ids": mint, "vsToken": "USDC"}, timeout=self.timeout)
        if r.status_code != 200:
            return None
        return _positive(_field(_field(_field(r.json(), "data"), mint), "price"))


class CachedPriceService:
    """
    Caché mint -> precio con vida de una invocación del scheduler: sesiones
    concurrentes sobre el mismo mint comparten una sola consulta.
    """

    def __init__(self, oracle: PriceService) -> None:
        self.oracle = oracle
        self._prices: dict[str, Optional[float]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get_price(self, mint: str) -> Optional[float]:
        with self._guard:
            lock = self._locks.setdefault(mint, threading.Lock())
        with lock:
            if mint not in self._prices:
                self._prices[mint] = self.oracle.get_price(mint)
            return self._prices[mint]
