import os

# antes de importar el proyecto: sin ficheros de log en los tests
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("DRY_RUN", "false")

from typing import Optional

import pytest

from enums.session_enums import StartMode
from models.position import Position
from models.runner_config import RunnerConfig
from models.token_balance import TokenBalance
from repositories.position_store import PositionStore
from services.signer_service import SignerError
from services.solana_rpc_service import RpcError
from services.swap_service import SwapResult

MINT = "BumpMint1111111111111111111111111111111111"
OWNER_A = "OwnerA11111111111111111111111111111111111"
OWNER_B = "OwnerB11111111111111111111111111111111111"
T0 = 1_700_000_000


class FakeClock:
    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSigner:
    def __init__(self, pubkey: str) -> None:
        self.pubkey = pubkey

    def sign(self, payload: bytes) -> str:
        return f"signed-by-{self.pubkey}"


class FakeSignerProvider:
    """signer_ref 'ref-<pubkey>' -> firmante de <pubkey>."""

    def __init__(self, missing: Optional[set] = None) -> None:
        self.missing = missing or set()

    def signer_for(self, signer_ref: str) -> FakeSigner:
        if signer_ref in self.missing:
            raise SignerError(f"signer_ref desconocido: {signer_ref}")
        return FakeSigner(signer_ref.removeprefix("ref-"))


class FakeSwap:
    def __init__(self, out_amount_raw: Optional[int] = 20_000_000, out_amount_ui: Optional[float] = 20.0) -> None:
        self.out_amount_raw = out_amount_raw
        self.out_amount_ui = out_amount_ui
        self.buy_error: Optional[str] = None
        self.sell_error: Optional[str] = None
        self.buys: list[dict] = []
        self.sells: list[dict] = []

    def buy(self, mint, usd_amount, slippage_bps, confirm_policy, fee_override_micro_lamports, signer):
        self.buys.append({"mint": mint, "usd": usd_amount, "slippage": slippage_bps, "owner": signer.pubkey})
        if self.buy_error:
            return SwapResult(error=self.buy_error)
        return SwapResult(signatures=[f"buy-{len(self.buys)}"], status="confirmed",
                          out_amount_raw=self.out_amount_raw, out_amount_ui=self.out_amount_ui)

    def sell(self, mint, amount_raw, slippage_bps, confirm_policy, fee_override_micro_lamports, signer):
        self.sells.append({"mint": mint, "amount_raw": amount_raw, "slippage": slippage_bps, "owner": signer.pubkey})
        if self.sell_error:
            return SwapResult(error=self.sell_error)
        return SwapResult(signatures=[f"sell-{len(self.sells)}"], status="confirmed")


class FakeBalances:
    """owner -> {mint: TokenBalance}; owners en 'failing' lanzan RpcError."""

    def __init__(self, balances: Optional[dict] = None, failing: Optional[set] = None) -> None:
        self.balances = balances or {}
        self.failing = failing or set()
        self.calls: list[str] = []

    def get_token_balances(self, owner: str) -> dict:
        self.calls.append(owner)
        if owner in self.failing:
            raise RpcError(f"timeout para {owner}")
        return dict(self.balances.get(owner, {}))

    def get_token_balance(self, owner: str, mint: str) -> TokenBalance:
        return self.get_token_balances(owner).get(mint) or TokenBalance(mint=mint)


class FakePrices:
    def __init__(self, prices: Optional[dict] = None) -> None:
        self.prices = prices or {}
        self.calls: list[str] = []

    def get_price(self, mint: str) -> Optional[float]:
        self.calls.append(mint)
        value = self.prices.get(mint)
        if isinstance(value, Exception):
            raise value
        return value


def balance(amount_raw: int, ui: float, mint: str = MINT, decimals: int = 6) -> TokenBalance:
    return TokenBalance(mint=mint, amount_raw=amount_raw, ui_amount=ui, decimals=decimals)


@pytest.fixture
def store(tmp_path) -> PositionStore:
    return PositionStore(db_path=str(tmp_path / "trading.db"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_session(store):
    def _make(mint: str = MINT, wallets=None, start_mode: StartMode = StartMode.BUYING,
              now: int = T0, **cfg):
        config = RunnerConfig(**cfg)
        pool = wallets if wallets is not None else [(OWNER_A, f"ref-{OWNER_A}")]
        return store.create_session("user-1", mint, config, start_mode, wallets=pool, now=now)
    return _make


@pytest.fixture
def make_position(store):
    counter = {"n": 0}

    def _make(session, entry: float = 100.0, owner: str = OWNER_A, qty_raw: int = 1_000_000,
              qty_ui: float = 1.0, ts: int = T0, high: Optional[float] = None, lot_id: str = "main"):
        counter["n"] += 1
        position = Position(
            id=f"pos-{counter['n']}",
            session_id=session.id,
            lot_id=lot_id,
            token_mint=session.token_mint,
            entry_price=entry,
            high_price=high if high is not None else entry,
            quantity_raw=qty_raw,
            quantity_ui=qty_ui,
            entry_timestamp=ts,
            owner_pubkey=owner,
            signer_ref=f"ref-{owner}",
        )
        return store.insert_position(position)
    return _make
