from __future__ import annotations

from dataclasses import dataclass
import os


DEFAULT_POSITION_MANAGER = "0x91fd594c46d8b01e62dbdebed2401dde01817834"
DEFAULT_ADAPTER = "0x7495a583ba85875d59407781b4958ed6e0e1228f"
MIN_TICK = -887272
MAX_TICK = 887272


@dataclass(frozen=True)
class LiquidityConfig:
    rpc_url: str
    private_key: str
    chain_id: int
    position_manager: str
    pool_factory: str
    adapter: str
    company_token: str
    currency_token: str
    database_path: str
    artifact_dir: str
    api_timeout_seconds: float

    deadline_seconds: int
    gas_limit_multiplier: float
    min_gas_limit: int
    price_tolerance: float
    model_tolerance: float
    min_tick: int
    max_tick: int
    pool_lookup_attempts: int
    pool_lookup_delay_seconds: float
    balance_workers: int

    log_level: str

    @property
    def signing_enabled(self) -> bool:
        return bool(self.private_key.strip())


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_config() -> LiquidityConfig:
    return LiquidityConfig(
        rpc_url=os.getenv("RPC_URL", "https://rpc.gnosischain.com"),
        private_key=os.getenv("PRIVATE_KEY", ""),
        chain_id=_env_int("CHAIN_ID", 100),
        position_manager=os.getenv("POSITION_MANAGER", DEFAULT_POSITION_MANAGER).strip().lower(),
        pool_factory=os.getenv("POOL_FACTORY", "").strip().lower(),
        adapter=os.getenv("ADAPTER_ADDRESS", DEFAULT_ADAPTER).strip().lower(),
        company_token=os.getenv("COMPANY_TOKEN", "").strip().lower(),
        currency_token=os.getenv("CURRENCY_TOKEN", "").strip().lower(),
        database_path=os.getenv("LIQ_DB_PATH", "data/liquidity.db"),
        artifact_dir=os.getenv("ARTIFACT_DIR", "."),
        api_timeout_seconds=_env_float("RPC_TIMEOUT_SECONDS", 30.0),
        deadline_seconds=max(60, _env_int("DEADLINE_SECONDS", 1200)),
        gas_limit_multiplier=1.20,
        min_gas_limit=21000,
        price_tolerance=0.01,
        model_tolerance=0.001,
        min_tick=MIN_TICK,
        max_tick=MAX_TICK,
        pool_lookup_attempts=5,
        pool_lookup_delay_seconds=2.0,
        balance_workers=4,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
