"""
Signer capability for position owners.

The trading core never sees key material: it asks a provider for
"the signer of owner reference X" and gets back an object that can sign a
payload. The default provider delegates both the lookup and the signing to
the external secret-management service over HTTP.
"""

from __future__ import annotations

import base64
import os
from typing import Protocol

import requests

from utils.log_config import logger_manager, log_function

logger = logger_manager.setup_logger(__name__)

SIGNER_SERVICE_URL = os.getenv("SIGNER_SERVICE_URL", "")
SIGNER_SERVICE_TOKEN = os.getenv("SIGNER_SERVICE_TOKEN") or os.getenv("FUNCTION_TOKEN") or ""
SIGNER_TIMEOUT_SECS = float(os.getenv("SIGNER_TIMEOUT_SECS", "10"))


class SignerError(Exception):
    """El servicio de secretos no pudo resolver o firmar."""


class Signer(Protocol):
    pubkey: str

    def sign(self, payload: bytes) -> str:
        ...


class RemoteSigner:
    def __init__(self, provider: "RemoteSignerProvider", signer_ref: str, pubkey: str) -> None:
        self._provider = provider
        self._signer_ref = signer_ref
        self.pubkey = pubkey

    def sign(self, payload: bytes) -> str:
        body = self._provider._post("/sign", {
            "signerRef": self._signer_ref,
            "payload": base64.b64encode(payload).decode("ascii"),
        })
        signature = body.get("signature")
        if not signature:
            raise SignerError(f"firma vacía para {self.pubkey}")
        return str(signature)

    def __repr__(self) -> str:
        return f"RemoteSigner(pubkey={self.pubkey!r})"


class RemoteSignerProvider:
    def __init__(self, base_url: str = SIGNER_SERVICE_URL, token: str = SIGNER_SERVICE_TOKEN,
                 timeout: float = SIGNER_TIMEOUT_SECS, http: requests.Session | None = None) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.token = token
        self.timeout = timeout
        self.http = http or requests.Session()

    def _post(self, path: str, payload: dict) -> dict:
        if not self.base_url:
            raise SignerError("SIGNER_SERVICE_URL no configurada")
        try:
            r = self.http.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout,
                               headers={"x-function-token": self.token})
            r.raise_for_status()
            body = r.json()
        except (requests.RequestException, ValueError) as e:
            raise SignerError(f"{path}: {e}") from e
        if not isinstance(body, dict):
            raise SignerError(f"{path}: respuesta inesperada {body!r}")
        return body

    @log_function
    def signer_for(self, signer_ref: str) -> Signer:
        body = self._post("/resolve", {"signerRef": signer_ref})
        pubkey = body.get("pubkey")
        if not pubkey:
            raise SignerError(f"signer_ref desconocido: {signer_ref}")
        return RemoteSigner(self, signer_ref, pubkey)
