from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
HEX_DIGITS = set("0123456789abcdef")


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def utc_stamp() -> str:
    return utc_now().strftime("%Y%m%dT%H%M%SZ")


def parse_float(raw: Any, default: float = 0.0) -> float:
    if raw is None:
        return default
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str) and raw.strip() == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def parse_bool(raw: Any, default: bool = False) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        return raw != 0
    value = str(raw).strip().lower()
    if value == "":
        return default
    return value in {"1", "true", "yes", "y", "on"}


def is_address(raw: Any) -> bool:
    if not isinstance(raw, str):
        return False
    value = raw.strip().lower()
    if not value.startswith("0x") or len(value) != 42:
        return False
    return all(ch in HEX_DIGITS for ch in value[2:])


class BalanceState(str, Enum):
    UNKNOWN = "unknown"
    FRESH = "fresh"
    CACHED = "cached"


class PriceOrientation(str, Enum):
    AMM = "amm"
    LOGICAL = "logical"


class PoolKind(str, Enum):
    PRICE_CORRELATED = "price_correlated"
    EXPECTED_VALUE = "expected_value"
    PREDICTION_MARKET = "prediction_market"


class TokenRole(str, Enum):
    COMPANY = "company"
    CURRENCY = "currency"
    YES_COMPANY = "yes_company"
    NO_COMPANY = "no_company"
    YES_CURRENCY = "yes_currency"
    NO_CURRENCY = "no_currency"

    @property
    def conditional(self) -> bool:
        return self not in (TokenRole.COMPANY, TokenRole.CURRENCY)

    @property
    def underlying(self) -> "TokenRole":
        if self in (TokenRole.YES_COMPANY, TokenRole.NO_COMPANY):
            return TokenRole.COMPANY
        if self in (TokenRole.YES_CURRENCY, TokenRole.NO_CURRENCY):
            return TokenRole.CURRENCY
        return self


class LifecycleState(str, Enum):
    ABSENT = "absent"
    CREATING = "creating"
    INITIALIZED = "initialized"
    LIQUID = "liquid"
    DECREASING = "decreasing"
    COLLECTING = "collecting"
    BURNED = "burned"


class SetupMode(str, Enum):
    AUTOMATIC = "automatic"
    SEMI_AUTOMATIC = "semi-automatic"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class Token:
    address: str
    symbol: str
    decimals: int
    balance: int | None = None
    balance_state: BalanceState = BalanceState.UNKNOWN

    @property
    def unit(self) -> int:
        return 10**self.decimals

    def to_display(self, amount: int) -> float:
        return amount / self.unit


@dataclass(frozen=True)
class AmmPair:
    token0: str
    token1: str
    inverted: bool

    @property
    def logical(self) -> tuple[str, str]:
        if self.inverted:
            return self.token1, self.token0
        return self.token0, self.token1

    def amm_amounts(self, amount_a: int, amount_b: int) -> tuple[int, int]:
        if self.inverted:
            return amount_b, amount_a
        return amount_a, amount_b

    def logical_amounts(self, amount0: int, amount1: int) -> tuple[int, int]:
        if self.inverted:
            return amount1, amount0
        return amount0, amount1

    def to_logical(self, price: "PricePoint") -> "PricePoint":
        if price.orientation == PriceOrientation.LOGICAL:
            return price
        value = (1.0 / price.value) if self.inverted else price.value
        return PricePoint(value=value, orientation=PriceOrientation.LOGICAL)

    def to_amm(self, price: "PricePoint") -> "PricePoint":
        if price.orientation == PriceOrientation.AMM:
            return price
        value = (1.0 / price.value) if self.inverted else price.value
        return PricePoint(value=value, orientation=PriceOrientation.AMM)


@dataclass(frozen=True)
class PricePoint:
    value: float
    orientation: PriceOrientation = PriceOrientation.LOGICAL


@dataclass(frozen=True)
class MarketParameters:
    spot_price: float
    event_probability: float
    impact: float


@dataclass(frozen=True)
class ProposalTokens:
    proposal: str
    market_name: str
    company: str
    currency: str
    yes_company: str
    no_company: str
    yes_currency: str
    no_currency: str

    def address_for(self, role: TokenRole) -> str:
        return {
            TokenRole.COMPANY: self.company,
            TokenRole.CURRENCY: self.currency,
            TokenRole.YES_COMPANY: self.yes_company,
            TokenRole.NO_COMPANY: self.no_company,
            TokenRole.YES_CURRENCY: self.yes_currency,
            TokenRole.NO_CURRENCY: self.no_currency,
        }[role]

    def to_dict(self) -> dict[str, Any]:
        return {
            "proposal": self.proposal,
            "marketName": self.market_name,
            "company": self.company,
            "currency": self.currency,
            "yesCompany": self.yes_company,
            "noCompany": self.no_company,
            "yesCurrency": self.yes_currency,
            "noCurrency": self.no_currency,
        }


@dataclass(frozen=True)
class PoolSpec:
    index: int
    name: str
    kind: PoolKind
    token_a: str
    token_b: str
    role_a: TokenRole
    role_b: TokenRole
    target: PricePoint


@dataclass(frozen=True)
class Position:
    token_id: int
    token0: str
    token1: str
    tick_lower: int
    tick_upper: int
    liquidity: int
    tokens_owed0: int = 0
    tokens_owed1: int = 0

    @property
    def has_value(self) -> bool:
        return self.liquidity > 0 or self.tokens_owed0 > 0 or self.tokens_owed1 > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokenId": self.token_id,
            "token0": self.token0,
            "token1": self.token1,
            "tickLower": self.tick_lower,
            "tickUpper": self.tick_upper,
            "liquidity": str(self.liquidity),
            "tokensOwed0": str(self.tokens_owed0),
            "tokensOwed1": str(self.tokens_owed1),
        }


@dataclass(frozen=True)
class SplitOperation:
    conditional_token: str
    underlying_token: str
    amount_needed: int
    amount_have: int
    amount_split: int = 0

    @property
    def amount_to_split(self) -> int:
        return max(0, self.amount_needed - self.amount_have)


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    status: int
    block_number: int | None = None
    gas_used: int | None = None


@dataclass(frozen=True)
class TxEvent:
    label: str
    tx_hash: str
    status: int
    block_number: int | None = None
    gas_used: int | None = None
    detail: dict[str, Any] = field(default_factory=dict)
    ts: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "txHash": self.tx_hash,
            "status": self.status,
            "blockNumber": self.block_number,
            "gasUsed": self.gas_used,
            "detail": self.detail,
            "ts": self.ts.isoformat(),
        }


@dataclass
class Outcome:
    status: OutcomeStatus
    detail: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    error: dict[str, Any] | None = None
    events: list[TxEvent] = field(default_factory=list)

    @classmethod
    def ok(cls, detail: str = "", **data: Any) -> "Outcome":
        return cls(status=OutcomeStatus.SUCCESS, detail=detail, data=data)

    @classmethod
    def skip(cls, detail: str, **data: Any) -> "Outcome":
        return cls(status=OutcomeStatus.SKIPPED, detail=detail, data=data)

    @classmethod
    def fail(cls, detail: str, error: dict[str, Any] | None = None, **data: Any) -> "Outcome":
        return cls(status=OutcomeStatus.FAILED, detail=detail, data=data, error=error)

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def skipped(self) -> bool:
        return self.status == OutcomeStatus.SKIPPED

    @property
    def failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status.value,
            "detail": self.detail,
            "data": self.data,
            "events": [event.to_dict() for event in self.events],
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class BatchResult:
    item_id: str
    status: OutcomeStatus
    detail: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_outcome(item_id: str, outcome: Outcome) -> "BatchResult":
        data = dict(outcome.data)
        if outcome.error is not None:
            data["error"] = outcome.error
        if outcome.events:
            data["transactions"] = [event.tx_hash for event in outcome.events]
        return BatchResult(item_id=item_id, status=outcome.status, detail=outcome.detail, data=data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "item": self.item_id,
            "status": self.status.value,
            "detail": self.detail,
            **self.data,
        }


@dataclass
class BatchSummary:
    results: list[BatchResult] = field(default_factory=list)

    def add(self, result: BatchResult) -> None:
        self.results.append(result)

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for result in self.results if result.status == status)

    @property
    def successful(self) -> int:
        return self._count(OutcomeStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "results": [result.to_dict() for result in self.results],
        }
