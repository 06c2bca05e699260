import logging
import os

from utils.logger import logger_manager, log_function

# Avisos por Telegram de cada compra/venta fallida (las emergencias se avisan siempre)
ENABLE_TELEGRAM = os.getenv("LOG_TELEGRAM_ERRORS", "False").lower() == "true"

# requests/urllib3 loguean cada conexión a DEBUG; con ticks cada pocos segundos ahogan el log
for _noisy in ("urllib3", "requests"):
    logging.getLogger(_noisy).setLevel(os.getenv("HTTP_LOG_LEVEL", "WARNING").upper())

__all__ = ["logger_manager", "log_function", "ENABLE_TELEGRAM"]
