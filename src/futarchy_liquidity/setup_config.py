from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import Any

from futarchy_liquidity.errors import ConfigError, InvalidAddress
from futarchy_liquidity.models import MarketParameters, is_address, parse_bool, parse_float
from futarchy_liquidity.ordering import normalize_address
from futarchy_liquidity.pricing import validate_market


LOGGER = logging.getLogger("futarchy_liquidity")

POOL_COUNT = 6
DEFAULT_LIQUIDITY = 0.000001

# canonical key -> accepted spellings
KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "PROPOSAL_ADDRESS": ("PROPOSAL_ADDRESS", "proposalAddress"),
    "MARKET_NAME": ("MARKET_NAME", "marketName"),
    "SPOT_PRICE": ("SPOT_PRICE", "spotPrice"),
    "EVENT_PROBABILITY": ("EVENT_PROBABILITY", "eventProbability", "initialEventProbability"),
    "IMPACT": ("IMPACT", "impact", "expectedImpactPercentage"),
    "LIQUIDITY_AMOUNTS": ("LIQUIDITY_AMOUNTS", "liquidityAmounts"),
    "LIQUIDITY_DEFAULT": ("LIQUIDITY_DEFAULT", "liquidityDefault"),
    "ADAPTER_ADDRESS": ("ADAPTER_ADDRESS", "adapterAddress", "adapter"),
    "FORCE_ADD_LIQUIDITY": ("FORCE_ADD_LIQUIDITY", "forceAddLiquidity"),
    "SKIP_EXISTING_WHEN_AUTO": ("SKIP_EXISTING_WHEN_AUTO", "skipExistingWhenAuto", "skipExistingWhenAUTO"),
    "COMPANY_TOKEN": ("COMPANY_TOKEN", "companyTokenAddress", "companyToken"),
    "CURRENCY_TOKEN": ("CURRENCY_TOKEN", "currencyTokenAddress", "currencyToken"),
}


@dataclass(frozen=True)
class PoolSetupConfig:
    proposal_address: str
    market_name: str
    spot_price: float
    event_probability: float
    impact_pct: float
    liquidity_amounts: tuple[float, ...]
    adapter_address: str
    force_add_liquidity: tuple[int, ...] = ()
    skip_existing_when_auto: bool = True
    company_token: str = ""
    currency_token: str = ""

    @property
    def market_parameters(self) -> MarketParameters:
        return MarketParameters(
            spot_price=self.spot_price,
            event_probability=self.event_probability,
            impact=self.impact_pct / 100.0,
        )

    def liquidity_for(self, pool_index: int) -> float:
        return self.liquidity_amounts[pool_index - 1]

    def forced(self, pool_index: int) -> bool:
        return pool_index in self.force_add_liquidity


@dataclass(frozen=True)
class RemovalItem:
    name: str
    address: str
    kind: str = ""
    enabled: bool = True
    collect: bool = False

    @property
    def collect_only(self) -> bool:
        return self.collect and not self.enabled

    @property
    def active(self) -> bool:
        return self.enabled or self.collect

    @property
    def valid_address(self) -> bool:
        return is_address(self.address)


@dataclass(frozen=True)
class RemovalPlan:
    items: tuple[RemovalItem, ...]
    percentage: Any = 100
    confirm_before_each: bool = False
    stop_on_error: bool = False
    source: str = "poolsToRemove"
    meta: dict[str, Any] = field(default_factory=dict)


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def parse_key_values(text: str) -> dict[str, Any]:
    raw: dict[str, Any] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        if key:
            raw[key] = _strip_quotes(value)
    return raw


def read_config_file(path: str | Path) -> dict[str, Any]:
    file_path = Path(path)
    if not file_path.exists():
        raise ConfigError(f"config file not found: {file_path}")
    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() == ".json" or text.lstrip().startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"invalid JSON in {file_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{file_path} must contain a JSON object")
        return data
    return parse_key_values(text)


def _lookup(raw: dict[str, Any], key: str) -> Any:
    for alias in KEY_ALIASES[key]:
        value = raw.get(alias)
        if value is not None and value != "":
            return value
    return None


def _number(raw: dict[str, Any], key: str, default: float) -> float:
    value = _lookup(raw, key)
    if value is None:
        return default
    parsed = parse_float(value, float("nan"))
    if parsed != parsed:
        raise ConfigError(f"{key} must be a number, got {value!r}")
    return parsed


def _int_list(value: Any, key: str) -> list[int]:
    if value is None:
        return []
    if isinstance(value, bool):
        raise ConfigError(f"{key} must list pool numbers, got {value!r}")
    if isinstance(value, (int, float)):
        items: list[Any] = [value]
    elif isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                items = list(json.loads(text))
            except json.JSONDecodeError:
                items = text.strip("[]").split(",")
        else:
            items = text.split(",")
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise ConfigError(f"{key} must list pool numbers, got {value!r}")
    out: list[int] = []
    for item in items:
        text = str(item).strip()
        if not text:
            continue
        try:
            out.append(int(float(text)))
        except ValueError as exc:
            raise ConfigError(f"{key} contains a non-numeric entry {item!r}") from exc
    return out


def _liquidity_amounts(raw: dict[str, Any]) -> tuple[float, ...]:
    value = _lookup(raw, "LIQUIDITY_AMOUNTS")
    if value is None:
        default_value = _lookup(raw, "LIQUIDITY_DEFAULT")
        amount = parse_float(default_value, DEFAULT_LIQUIDITY) if default_value is not None else DEFAULT_LIQUIDITY
        return tuple([amount] * POOL_COUNT)
    if isinstance(value, str):
        text = value.strip()
        try:
            value = json.loads(text) if text.startswith("[") else text.split(",")
        except json.JSONDecodeError as exc:
            raise ConfigError(f"LIQUIDITY_AMOUNTS is not a list: {value!r}") from exc
    if not isinstance(value, (list, tuple)):
        value = [value]
    if value and isinstance(value[-1], str) and not value[-1].strip():
        # trailing comma
        value = list(value[:-1])
    amounts: list[float] = []
    for index, item in enumerate(value, start=1):
        amount = parse_float(item, float("nan"))
        if amount != amount or isinstance(item, bool):
            raise ConfigError(f"LIQUIDITY_AMOUNTS entry {index} is not a number: {item!r}")
        amounts.append(amount)
    if len(amounts) < POOL_COUNT:
        amounts.extend([DEFAULT_LIQUIDITY] * (POOL_COUNT - len(amounts)))
    return tuple(amounts[:POOL_COUNT])


def _token_address(raw: dict[str, Any], key: str, default: str) -> str:
    value = _lookup(raw, key)
    if isinstance(value, dict):
        value = value.get("address")
    if value is None or value == "":
        return default
    return normalize_address(value, key)


def build_setup_config(
    raw: dict[str, Any],
    default_adapter: str = "",
    default_company: str = "",
    default_currency: str = "",
) -> PoolSetupConfig:
    proposal = _lookup(raw, "PROPOSAL_ADDRESS")
    if proposal is None:
        raise ConfigError("PROPOSAL_ADDRESS is required")
    adapter = _lookup(raw, "ADAPTER_ADDRESS") or default_adapter
    if not adapter:
        raise ConfigError("ADAPTER_ADDRESS is required")

    force = _int_list(_lookup(raw, "FORCE_ADD_LIQUIDITY"), "FORCE_ADD_LIQUIDITY")
    bad = [index for index in force if not 1 <= index <= POOL_COUNT]
    if bad:
        raise ConfigError(f"FORCE_ADD_LIQUIDITY pool numbers must be 1..{POOL_COUNT}, got {bad}")

    amounts = _liquidity_amounts(raw)
    negative = [amount for amount in amounts if amount < 0]
    if negative:
        raise ConfigError(f"liquidity amounts must be >= 0, got {negative}")

    try:
        config = PoolSetupConfig(
            proposal_address=normalize_address(proposal, "PROPOSAL_ADDRESS"),
            market_name=str(_lookup(raw, "MARKET_NAME") or ""),
            spot_price=_number(raw, "SPOT_PRICE", 100.0),
            event_probability=_number(raw, "EVENT_PROBABILITY", 0.5),
            impact_pct=_number(raw, "IMPACT", 10.0),
            liquidity_amounts=amounts,
            adapter_address=normalize_address(adapter, "ADAPTER_ADDRESS"),
            force_add_liquidity=tuple(sorted(set(force))),
            skip_existing_when_auto=parse_bool(_lookup(raw, "SKIP_EXISTING_WHEN_AUTO"), True),
            company_token=_token_address(raw, "COMPANY_TOKEN", default_company),
            currency_token=_token_address(raw, "CURRENCY_TOKEN", default_currency),
        )
    except InvalidAddress as exc:
        raise ConfigError(str(exc)) from exc
    validate_market(config.market_parameters)
    return config


def load_setup_config(
    path: str | Path,
    default_adapter: str = "",
    default_company: str = "",
    default_currency: str = "",
) -> PoolSetupConfig:
    config = build_setup_config(read_config_file(path), default_adapter, default_company, default_currency)
    LOGGER.info(
        "setup_config path=%s proposal=%s spot=%s probability=%s impact_pct=%s force=%s",
        path,
        config.proposal_address,
        config.spot_price,
        config.event_probability,
        config.impact_pct,
        ",".join(str(index) for index in config.force_add_liquidity) or "-",
    )
    return config


def build_removal_plan(raw: dict[str, Any]) -> RemovalPlan:
    created = raw.get("createdPools")
    if isinstance(created, list):
        items = tuple(
            RemovalItem(
                name=str(pool.get("name") or pool.get("logicalPair") or f"pool-{index + 1}"),
                address=str(pool.get("address") or pool.get("poolAddress") or ""),
                kind=str(pool.get("type") or ""),
            )
            for index, pool in enumerate(created)
            if isinstance(pool, dict)
        )
        return RemovalPlan(
            items=items,
            source="createdPools",
            meta={"proposalAddress": raw.get("proposalAddress"), "marketName": raw.get("marketName")},
        )

    pools = raw.get("poolsToRemove")
    if not isinstance(pools, list):
        raise ConfigError("removal config needs a createdPools or poolsToRemove list")
    items = tuple(
        RemovalItem(
            name=str(pool.get("name") or f"pool-{index + 1}"),
            address=str(pool.get("address") or pool.get("poolAddress") or ""),
            kind=str(pool.get("type") or ""),
            enabled=parse_bool(pool.get("enabled"), True),
            collect=parse_bool(pool.get("collect"), False),
        )
        for index, pool in enumerate(pools)
        if isinstance(pool, dict)
    )
    settings = raw.get("removeSettings") or {}
    if not isinstance(settings, dict):
        raise ConfigError("removeSettings must be an object")
    return RemovalPlan(
        items=items,
        percentage=settings.get("percentage", 100),
        confirm_before_each=parse_bool(settings.get("confirmBeforeEach"), False),
        stop_on_error=parse_bool(settings.get("stopOnError"), False),
    )


def load_removal_plan(path: str | Path) -> RemovalPlan:
    return build_removal_plan(read_config_file(path))
