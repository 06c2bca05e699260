# main.py
from __future__ import annotations
import argparse
import json
import signal
import sys
import threading

# ---- carga .env antes de los imports del proyecto (leen ENV al importarse) ----
from dotenv import load_dotenv

load_dotenv()

# ---- imports del proyecto ----
from pydantic import ValidationError

from controllers.emergency_controller import EmergencyController
from controllers.execution_controller import ExecutionController
from controllers.reconciliation_controller import ReconciliationController
from enums.session_enums import StartMode
from models.runner_config import RunnerConfig
from orchestrators.monitor_orchestrator import MonitorOrchestrator
from orchestrators.reconciliation_orchestrator import ReconciliationOrchestrator
from repositories.activity_repository import ActivityRepository
from repositories.position_store import PositionStore
from services.activity_service import ActivityService
from services.price_service import PriceService
from services.signer_service import RemoteSignerProvider
from services.solana_rpc_service import SolanaRpcService
from services.swap_service import SwapService
from services.telegram_service import TelegramService
from utils.log_config import logger_manager

logger = logger_manager.setup_logger(__name__)


# ------------------------------
# Cableado
# ------------------------------
class App:
    """Construye el grafo de objetos una vez por proceso."""

    def __init__(self, db_path: str | None = None) -> None:
        self.store = PositionStore(db_path=db_path)
        self.activity = ActivityService(ActivityRepository(db_path=self.store.db_path))
        self.notifier = TelegramService()
        self.rpc = SolanaRpcService()
        self.prices = PriceService()
        self.executor = ExecutionController(
            store=self.store,
            swap_service=SwapService(),
            signer_provider=RemoteSignerProvider(),
            balance_reader=self.rpc,
            activity=self.activity,
            notifier=self.notifier,
        )
        self.emergency = EmergencyController(self.store, self.executor, activity=self.activity,
                                             notifier=self.notifier)
        self.monitor = MonitorOrchestrator(self.store, self.prices, self.executor, self.emergency,
                                           balance_reader=self.rpc, activity=self.activity)
        self.reconciler = ReconciliationOrchestrator(
            ReconciliationController(self.store, self.rpc, activity=self.activity, notifier=self.notifier)
        )


# ------------------------------
# Comandos
# ------------------------------
def cmd_tick(app: App, args: argparse.Namespace) -> int:
    print(json.dumps(app.monitor.run_once().to_dict()))
    return 0


def cmd_reconcile(app: App, args: argparse.Namespace) -> int:
    if args.session:
        session = app.store.get_session(args.session)
        if session is None:
            logger.error(f"Sesión {args.session} no encontrada")
            return 1
        report = app.reconciler.controller.reconcile(session, dry_run=not args.apply)
    else:
        report = app.reconciler.run(dry_run=not args.apply)
    print(json.dumps(report.to_dict(), indent=2))
    return 0


def cmd_create_session(app: App, args: argparse.Namespace) -> int:
    try:
        raw = json.loads(args.config) if args.config else {}
        config = RunnerConfig.from_user(raw)
    except (ValueError, ValidationError) as e:
        logger.error(f"Config inválida: {e}")
        return 2
    wallets = []
    for item in args.wallet:
        pubkey, _, ref = item.partition(":")
        wallets.append((pubkey, ref or pubkey))
    session = app.store.create_session(args.user, args.mint, config, StartMode(args.mode), wallets=wallets)
    print(json.dumps({"sessionId": session.id, "config": json.loads(config.to_json())}))
    return 0


def cmd_stop_session(app: App, args: argparse.Namespace) -> int:
    stopped = app.store.stop_session(args.session)
    print(json.dumps({"sessionId": args.session, "stopped": stopped}))
    return 0


def cmd_emergency(app: App, args: argparse.Namespace) -> int:
    try:
        order = app.store.create_emergency_sell(args.session, args.limit)
    except ValueError as e:
        logger.error(str(e))
        return 2
    print(json.dumps({"orderId": order.id, "sessionId": order.session_id, "limitPrice": order.limit_price}))
    return 0


def cmd_serve(app: App, args: argparse.Namespace) -> int:
    stop_evt = threading.Event()

    def shutdown(*_):
        logger.info("🛑 Señal de apagado recibida, deteniendo servicios...")
        stop_evt.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    logger.info("🚀 Iniciando monitor + reconciliación...")
    app.monitor.start()
    app.reconciler.start()
    stop_evt.wait()
    # el tick en curso termina; no se corta un swap a medias
    app.monitor.stop()
    app.reconciler.stop()
    app.monitor.join(timeout=30)
    app.reconciler.join(timeout=30)
    logger.info("✅ Apagado completado.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sol-bump-monitor", description="Monitor de posiciones y ejecución")
    p.add_argument("--db", default=None, help="ruta SQLite (por defecto DB_PATH)")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("tick", help="una invocación del scheduler").set_defaults(func=cmd_tick)

    r = sub.add_parser("reconcile", help="detecta posiciones fantasma")
    r.add_argument("--apply", action="store_true", help="cierra los fantasmas (por defecto solo informa)")
    r.add_argument("--session", default=None)
    r.set_defaults(func=cmd_reconcile)

    c = sub.add_parser("create-session", help="crea una sesión de trading")
    c.add_argument("--user", required=True)
    c.add_argument("--mint", required=True)
    c.add_argument("--wallet", action="append", default=[], help="pubkey[:signer_ref], repetible")
    c.add_argument("--mode", choices=[m.value for m in StartMode], default=StartMode.BUYING.value)
    c.add_argument("--config", default=None, help="JSON con la config (camelCase o snake_case)")
    c.set_defaults(func=cmd_create_session)

    s = sub.add_parser("stop-session")
    s.add_argument("session")
    s.set_defaults(func=cmd_stop_session)

    e = sub.add_parser("emergency", help="orden de venta de emergencia")
    e.add_argument("session")
    e.add_argument("--limit", type=float, required=True)
    e.set_defaults(func=cmd_emergency)

    sub.add_parser("serve", help="bucles de monitor y reconciliación").set_defaults(func=cmd_serve)
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    app = App(db_path=args.db)
    return args.func(app, args)


if __name__ == "__main__":
    sys.exit(main())
