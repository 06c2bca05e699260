from __future__ import annotations
import logging
import sqlite3
from typing import Any

from repositories.activity_repository import ActivityRepository
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)

_LEVELS = {"debug": logging.DEBUG, "info": logging.INFO, "warn": logging.WARNING,
           "warning": logging.WARNING, "error": logging.ERROR}


class ActivityService:
    """Actividad por sesión: fila en activity_logs + línea en el log del módulo."""

    def __init__(self, repo: ActivityRepository | None = None) -> None:
        self.repo = repo

    def log(self, session_id: str | None, message: str, level: str = "info",
            metadata: dict[str, Any] | None = None) -> None:
        logger.log(_LEVELS.get(level, logging.INFO), f"[{session_id or '-'}] {message}")
        if self.repo is None:
            return
        try:
            self.repo.insert(session_id, message, level, metadata)
        except sqlite3.Error as e:
            # la traza de actividad no debe tumbar el tick
            logger.error(f"No se pudo guardar actividad de {session_id}: {e}")

    def info(self, session_id: str | None, message: str, **metadata: Any) -> None:
        self.log(session_id, message, "info", metadata or None)

    def warn(self, session_id: str | None, message: str, **metadata: Any) -> None:
        self.log(session_id, message, "warn", metadata or None)

    def error(self, session_id: str | None, message: str, **metadata: Any) -> None:
        self.log(session_id, message, "error", metadata or None)
