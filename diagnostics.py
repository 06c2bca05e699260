# diagnostics.py
import os
import sys

from dotenv import load_dotenv

load_dotenv()

from enums.position_status import PositionStatus
from repositories.activity_repository import ActivityRepository
from repositories.position_store import PositionStore
from services.price_service import PriceService
from services.solana_rpc_service import RpcError, SolanaRpcService
from utils.log_config import logger_manager

logger = logger_manager.setup_logger("diagnostics")

store = PositionStore(db_path=os.getenv("DB_PATH") or None)
activity = ActivityRepository(db_path=store.db_path)


def ok(b, msg): print(("✅" if b else "❌"), msg)


print("== DIAGNÓSTICO SOL BUMP MONITOR ==")
ok(True, f"DB_PATH: {store.db_path}")

# Tablas básicas (simplemente intentamos listados)
try:
    sessions = store.read_active_sessions(); ok(True, f"Sesiones activas: {len(sessions)}")
except Exception as e:
    sessions = []
    ok(False, f"SessionRepository fallo: {e}")

for status in PositionStatus:
    try:
        n = len(store.positions.list_by_status(status)); ok(True, f"Posiciones {status.value}: {n}")
    except Exception as e:
        ok(False, f"PositionRepository ({status.value}) fallo: {e}")

for s in sessions[:5]:
    orders = store.read_active_emergency_sells(s.id)
    summary = store.trades.summary(s.id)
    print(f"  · {s.id} mint={s.token_mint} modo={s.start_mode.value} "
          f"gasto_hoy=${s.daily_buy_usd:.2f}/{s.config.daily_cap_usd:.2f} "
          f"emergencias={len(orders)} trades={summary}")

# Servicios externos (solo si se pide, hacen red)
if "--network" in sys.argv:
    mint = os.getenv("DIAG_MINT") or (sessions[0].token_mint if sessions else None)
    if mint:
        price = PriceService().get_price(mint)
        ok(price is not None, f"Precio {mint}: {price}")
    rpc = SolanaRpcService()
    owner = os.getenv("DIAG_OWNER")
    if owner:
        try:
            balances = rpc.get_token_balances(owner); ok(True, f"RPC {rpc.active_rpc.split('?')[0]}: {len(balances)} mints")
        except RpcError as e:
            ok(False, f"RPC fallo: {e}")

ok(bool(os.getenv("SWAP_SERVICE_URL")), "SWAP_SERVICE_URL configurada")
ok(bool(os.getenv("SIGNER_SERVICE_URL")), "SIGNER_SERVICE_URL configurada")

print(f"Actividad reciente (top 5): {activity.list_recent(limit=5)}")
print("== FIN ==")
