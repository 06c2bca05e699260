from __future__ import annotations
import os, requests
from utils.formatting import fmt, short_key
from utils.log_config import logger_manager, log_function, ENABLE_TELEGRAM

logger = logger_manager.setup_logger(__name__)

TELEGRAM_TOKEN = os.getenv("TELEGRAM_TOKEN")
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID")
TELEGRAM_TIMEOUT_SECS = float(os.getenv("TELEGRAM_TIMEOUT_SECS", "10"))

def _esc(s: str) -> str:
    # escapado mínimo para Markdown
    return (s or "").replace("\\", "\\\\").replace("_", "\\_").replace("*", "\\*").replace("`", "\\`").replace("[","\\[").replace("]","\\]")

class TelegramService:
    """
    Sumidero de notificaciones del monitor. Sin TOKEN o CHAT_ID no envía nada.
    Un fallo de Telegram nunca interrumpe el tick: se registra y sigue.
    """
    def __init__(self, token: str | None = None, chat_id: str | None = None,
                 http: requests.Session | None = None) -> None:
        self.token = token or TELEGRAM_TOKEN
        self.chat_id = int(chat_id or TELEGRAM_CHAT_ID) if (chat_id or TELEGRAM_CHAT_ID) else None
        self.http = http or requests.Session()
        if not self.token or not self.chat_id:
            logger.warning("TelegramService sin TOKEN o CHAT_ID; se desactivan envíos.")

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.chat_id)

    def _send(self, text: str) -> None:
        if not self.enabled:
            return
        payload = {"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"}
        try:
            self.http.post(f"https://api.telegram.org/bot{self.token}/sendMessage",
                           json=payload, timeout=TELEGRAM_TIMEOUT_SECS).raise_for_status()
        except requests.RequestException as e:
            logger.error(f"❌ Error enviando Telegram: {e}")

    @log_function
    def notificar_emergencia(self, session_id: str, token_mint: str, price: float, limit_price: float,
                             closed: int, failed: int) -> None:
        msg = (
            f"🚨 *Venta de emergencia*\n\n"
            f"*Sesión:* `{session_id}`\n"
            f"*Mint:* `{token_mint}`\n"
            f"*Precio:* ${fmt(price, 6)} ≤ límite ${fmt(limit_price, 6)}\n"
            f"*Lotes cerrados:* {closed}" + (f" | *fallidos:* {failed}" if failed else "")
        )
        self._send(msg)

    @log_function
    def notificar_fantasmas(self, phantom_count: int, cleaned_count: int, dry_run: bool) -> None:
        if not phantom_count:
            return
        modo = "simulación" if dry_run else "aplicado"
        self._send(f"👻 *Posiciones fantasma:* {phantom_count} detectadas, {cleaned_count} cerradas ({_esc(modo)})")

    @log_function
    def notificar_fallo_ejecucion(self, session_id: str, side: str, owner_pubkey: str | None, error: str) -> None:
        if not ENABLE_TELEGRAM:
            return
        self._send(
            f"⚠️ *{_esc(side.upper())} fallida*\n"
            f"*Sesión:* `{session_id}` | *Owner:* `{short_key(owner_pubkey)}`\n"
            f"*Motivo:* {_esc(error)}"
        )
