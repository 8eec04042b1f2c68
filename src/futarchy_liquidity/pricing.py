from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
import math

from futarchy_liquidity.config import MAX_TICK, MIN_TICK
from futarchy_liquidity.errors import MarketParameterError, PriceModelError
from futarchy_liquidity.models import (
    MarketParameters,
    PoolKind,
    PoolSpec,
    PriceOrientation,
    PricePoint,
    ProposalTokens,
    TokenRole,
)


Q96 = 2**96
DEFAULT_TICK_SPACING = 60

# (index, name, kind, role_a, role_b)
POOL_LAYOUT = (
    (1, "YES_COMPANY/YES_CURRENCY", PoolKind.PRICE_CORRELATED, TokenRole.YES_COMPANY, TokenRole.YES_CURRENCY),
    (2, "NO_COMPANY/NO_CURRENCY", PoolKind.PRICE_CORRELATED, TokenRole.NO_COMPANY, TokenRole.NO_CURRENCY),
    (3, "YES_COMPANY/CURRENCY", PoolKind.EXPECTED_VALUE, TokenRole.YES_COMPANY, TokenRole.CURRENCY),
    (4, "NO_COMPANY/CURRENCY", PoolKind.EXPECTED_VALUE, TokenRole.NO_COMPANY, TokenRole.CURRENCY),
    (5, "YES_CURRENCY/CURRENCY", PoolKind.PREDICTION_MARKET, TokenRole.YES_CURRENCY, TokenRole.CURRENCY),
    (6, "NO_CURRENCY/CURRENCY", PoolKind.PREDICTION_MARKET, TokenRole.NO_CURRENCY, TokenRole.CURRENCY),
)


def validate_market(params: MarketParameters) -> MarketParameters:
    if not math.isfinite(params.spot_price) or params.spot_price <= 0:
        raise MarketParameterError(f"spot_price must be > 0, got {params.spot_price}")
    if not 0.0 <= params.event_probability <= 1.0:
        raise MarketParameterError(
            f"event_probability must be within [0, 1], got {params.event_probability}"
        )
    if not math.isfinite(params.impact) or params.impact < 0:
        raise MarketParameterError(f"impact must be >= 0, got {params.impact}")
    if params.impact * params.event_probability >= 1.0:
        raise MarketParameterError(
            f"impact*probability must be < 1 for a positive NO price, got "
            f"{params.impact} * {params.event_probability}"
        )
    return params


def to_base_units(amount: float | Decimal, decimals: int) -> int:
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    scaled = (value * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def sqrt_price_x96(amount0: int, amount1: int) -> int:
    """floor(sqrt(amount1 / amount0) * 2**96) from AMM-ordered base-unit amounts."""
    if amount0 <= 0 or amount1 <= 0:
        raise MarketParameterError(
            f"cannot encode a pool price from amounts amount0={amount0} amount1={amount1}"
        )
    return math.isqrt((amount1 << 192) // amount0)


def price_from_sqrt_x96(sqrt_value: int, decimals0: int = 18, decimals1: int = 18) -> PricePoint:
    raw = (sqrt_value * sqrt_value) / (1 << 192)
    return PricePoint(value=raw * (10 ** (decimals0 - decimals1)), orientation=PriceOrientation.AMM)


def full_range_ticks(
    tick_spacing: int | None,
    min_tick: int = MIN_TICK,
    max_tick: int = MAX_TICK,
) -> tuple[int, int]:
    spacing = int(tick_spacing or 0)
    if spacing <= 0:
        spacing = DEFAULT_TICK_SPACING
    lower = -((-min_tick) // spacing) * spacing
    upper = (max_tick // spacing) * spacing
    return lower, upper


def price_deviation(actual: float, expected: float) -> float:
    if expected == 0:
        return math.inf if actual != 0 else 0.0
    return abs(actual - expected) / abs(expected)


@dataclass(frozen=True)
class DepositAmounts:
    amount_a: int
    amount_b: int
    price: float
    bumped: bool = False


class PriceEngine:
    def __init__(self, params: MarketParameters, tolerance: float = 0.001) -> None:
        self.params = validate_market(params)
        self.tolerance = tolerance

    def conditional_prices(self) -> tuple[float, float]:
        spot = self.params.spot_price
        p = self.params.event_probability
        impact = self.params.impact
        yes_price = spot * (1.0 + impact * (1.0 - p))
        no_price = spot * (1.0 - impact * p)
        expected = p * yes_price + (1.0 - p) * no_price
        deviation = price_deviation(expected, spot)
        if deviation > self.tolerance:
            raise PriceModelError(spot, expected, deviation)
        return yes_price, no_price

    def pool_prices(self) -> dict[int, float]:
        yes_price, no_price = self.conditional_prices()
        spot = self.params.spot_price
        p = self.params.event_probability
        return {
            1: yes_price,
            2: no_price,
            3: spot * p,
            4: spot * (1.0 - p),
            5: p,
            6: 1.0 - p,
        }

    def pool_specs(self, tokens: ProposalTokens) -> list[PoolSpec]:
        prices = self.pool_prices()
        specs: list[PoolSpec] = []
        for index, name, kind, role_a, role_b in POOL_LAYOUT:
            price = prices[index]
            if price <= 0:
                raise MarketParameterError(
                    f"pool {index} ({name}) would be initialized at non-positive price {price}; "
                    f"probability={self.params.event_probability} impact={self.params.impact}"
                )
            specs.append(
                PoolSpec(
                    index=index,
                    name=name,
                    kind=kind,
                    token_a=tokens.address_for(role_a),
                    token_b=tokens.address_for(role_b),
                    role_a=role_a,
                    role_b=role_b,
                    target=PricePoint(value=price, orientation=PriceOrientation.LOGICAL),
                )
            )
        return specs

    @staticmethod
    def deposit_amounts(
        price: PricePoint,
        decimals_a: int,
        decimals_b: int,
        amount_a: float | None = None,
        amount_b: float | None = None,
    ) -> DepositAmounts:
        """Base-unit deposit for a logical price (tokenB per tokenA).

        Exactly one side may be omitted; it is derived from the price. A
        requested positive amount that floors to zero base units is bumped to
        one unit and the other side follows from it.
        """
        if price.orientation != PriceOrientation.LOGICAL:
            raise MarketParameterError("deposit amounts need a logical price")
        if price.value <= 0 or not math.isfinite(price.value):
            raise MarketParameterError(f"deposit price must be > 0, got {price.value}")
        if amount_a is None and amount_b is None:
            raise MarketParameterError("at least one deposit amount is required")
        rate = Decimal(str(price.value))
        bumped = False
        if amount_b is not None:
            base_b = to_base_units(amount_b, decimals_b)
            if base_b <= 0 < amount_b:
                base_b = 1
                bumped = True
            if amount_a is not None:
                base_a = to_base_units(amount_a, decimals_a)
            else:
                display_b = Decimal(base_b) / (Decimal(10) ** decimals_b)
                base_a = to_base_units(display_b / rate, decimals_a)
            if base_a <= 0 < base_b:
                base_a = 1
                bumped = True
            return DepositAmounts(amount_a=base_a, amount_b=base_b, price=price.value, bumped=bumped)
        base_a = to_base_units(amount_a, decimals_a)
        if base_a <= 0 < amount_a:
            base_a = 1
            bumped = True
        display_a = Decimal(base_a) / (Decimal(10) ** decimals_a)
        base_b = to_base_units(display_a * rate, decimals_b)
        if base_b <= 0 < base_a:
            base_b = 1
            bumped = True
        return DepositAmounts(amount_a=base_a, amount_b=base_b, price=price.value, bumped=bumped)
