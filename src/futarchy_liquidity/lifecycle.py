from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from futarchy_liquidity.balances import BalanceVerifier
from futarchy_liquidity.errors import (
    InvalidPercentage,
    LifecycleError,
    MarketParameterError,
    OwnershipMismatch,
    PriceInconsistency,
    exception_payload,
)
from futarchy_liquidity.models import (
    AmmPair,
    LifecycleState,
    Outcome,
    PoolSpec,
    Position,
    PriceOrientation,
    PricePoint,
    ProposalTokens,
    TokenRole,
)
from futarchy_liquidity.ordering import normalize_address
from futarchy_liquidity.pricing import (
    PriceEngine,
    full_range_ticks,
    price_deviation,
    price_from_sqrt_x96,
    sqrt_price_x96,
)
from futarchy_liquidity.session import Session
from futarchy_liquidity.split_merge import SplitMergeAccountant


LOGGER = logging.getLogger("futarchy_liquidity")

ALLOWED_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.ABSENT: frozenset({LifecycleState.CREATING}),
    LifecycleState.CREATING: frozenset({LifecycleState.INITIALIZED}),
    LifecycleState.INITIALIZED: frozenset({LifecycleState.LIQUID}),
    LifecycleState.LIQUID: frozenset(
        {LifecycleState.LIQUID, LifecycleState.DECREASING, LifecycleState.COLLECTING}
    ),
    LifecycleState.DECREASING: frozenset({LifecycleState.COLLECTING}),
    LifecycleState.COLLECTING: frozenset({LifecycleState.LIQUID, LifecycleState.BURNED}),
    LifecycleState.BURNED: frozenset(),
}

STABLE_STATES = frozenset(
    {LifecycleState.ABSENT, LifecycleState.INITIALIZED, LifecycleState.LIQUID, LifecycleState.BURNED}
)


def validate_percentage(raw: Any) -> int:
    if isinstance(raw, bool):
        raise InvalidPercentage(raw)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidPercentage(raw) from exc
    if not value.is_integer() or value < 1 or value > 100:
        raise InvalidPercentage(raw)
    return int(value)


class LifecycleTracker:
    def __init__(self) -> None:
        self.states: dict[str, LifecycleState] = {}
        self.history: dict[str, list[LifecycleState]] = {}

    def observe(self, key: str, state: LifecycleState) -> LifecycleState:
        """Record a state read from chain; it replaces a tracked state it contradicts."""
        current = self.states.get(key)
        if current == state or (current == LifecycleState.LIQUID and state == LifecycleState.INITIALIZED):
            return current
        self.states[key] = state
        self.history.setdefault(key, []).append(state)
        return state

    def rollback(self, key: str) -> LifecycleState | None:
        """Return a key stuck mid-operation to its last stable state."""
        current = self.states.get(key)
        if current is None or current in STABLE_STATES:
            return current
        history = self.history[key]
        stable = next((state for state in reversed(history) if state in STABLE_STATES), history[0])
        self.states[key] = stable
        history.append(stable)
        LOGGER.debug("lifecycle_rollback key=%s from=%s to=%s", key, current.value, stable.value)
        return stable

    def advance(self, key: str, state: LifecycleState) -> None:
        current = self.states.get(key)
        if current is None:
            raise LifecycleError(f"{key} has no lifecycle state")
        if state not in ALLOWED_TRANSITIONS[current]:
            raise LifecycleError(f"{key} cannot move from {current.value} to {state.value}")
        self.states[key] = state
        self.history[key].append(state)
        LOGGER.debug("lifecycle key=%s from=%s to=%s", key, current.value, state.value)

    def trail(self, key: str) -> list[str]:
        return [state.value for state in self.history.get(key, [])]


@dataclass(frozen=True)
class PoolDiscovery:
    token_a: str
    token_b: str
    pair: AmmPair
    pool: str | None
    current_price: PricePoint | None

    @property
    def exists(self) -> bool:
        return self.pool is not None

    @property
    def initialized(self) -> bool:
        return self.current_price is not None

    @property
    def key(self) -> str:
        return f"pool:{self.pair.token0}/{self.pair.token1}"


class LiquidityLifecycleManager:
    def __init__(
        self,
        session: Session,
        balances: BalanceVerifier,
        accountant: SplitMergeAccountant | None = None,
        tokens: ProposalTokens | None = None,
        tracker: LifecycleTracker | None = None,
    ) -> None:
        self.session = session
        self.balances = balances
        self.accountant = accountant
        self.tokens = tokens
        self.tracker = tracker or LifecycleTracker()
        self._pool_cache: dict[tuple[str, str], str] = {}

    @property
    def position_manager(self) -> str:
        return self.session.config.position_manager

    # discovery

    def _pool_for(self, token0: str, token1: str) -> str | None:
        # only hits are cached; a missing pool may be created by anyone
        key = (token0, token1)
        cached = self._pool_cache.get(key)
        if cached is not None:
            return cached
        pool = self.session.chain.pool_by_pair(token0, token1)
        if pool is not None:
            self._pool_cache[key] = pool
        return pool

    def read_price(self, pool: str, pair: AmmPair) -> PricePoint | None:
        sqrt_value = int(self.session.chain.pool_sqrt_price_x96(pool))
        if sqrt_value <= 0:
            return None
        token0 = self.session.token(pair.token0)
        token1 = self.session.token(pair.token1)
        return pair.to_logical(price_from_sqrt_x96(sqrt_value, token0.decimals, token1.decimals))

    def discover(self, token_a: str, token_b: str) -> PoolDiscovery:
        pair = self.session.pair(token_a, token_b)
        pool = self._pool_for(pair.token0, pair.token1)
        current = self.read_price(pool, pair) if pool is not None else None
        logical_a, logical_b = pair.logical
        return PoolDiscovery(token_a=logical_a, token_b=logical_b, pair=pair, pool=pool, current_price=current)

    def _role_of(self, address: str) -> TokenRole | None:
        if self.tokens is None:
            return None
        for role in TokenRole:
            if self.tokens.address_for(role) == address:
                return role
        return None

    # deposits

    def _cover(self, address: str, need: int) -> None:
        role = self._role_of(address)
        if role is not None and role.conditional and self.accountant is not None and self.tokens is not None:
            self.accountant.split_for_shortfall(address, self.tokens.address_for(role.underlying), need)
            return
        self.balances.require(address, need)

    def deposit(
        self,
        discovery: PoolDiscovery,
        price: PricePoint,
        amount_a: float | None = None,
        amount_b: float | None = None,
        label: str = "",
    ) -> Outcome:
        if not discovery.initialized:
            # the pool may have been created since discovery
            try:
                discovery = self.discover(discovery.token_a, discovery.token_b)
            except Exception as exc:
                LOGGER.error("deposit_lookup_failed pool=%s error=%s", label or discovery.key, exc)
                return Outcome.fail(f"pool lookup failed: {exc}", exception_payload(exc), pool=discovery.pool)
        pair = discovery.pair
        name = label or discovery.key
        mark = len(self.session.events)
        key = discovery.key
        self.tracker.observe(key, LifecycleState.INITIALIZED if discovery.initialized else LifecycleState.ABSENT)
        created = False
        pool = discovery.pool
        sqrt_value: int | None = None
        try:
            if discovery.initialized:
                price = discovery.current_price
                price_source = "existing"
            else:
                price_source = "computed"
            token_a = self.session.token(discovery.token_a)
            token_b = self.session.token(discovery.token_b)
            amounts = PriceEngine.deposit_amounts(
                price, token_a.decimals, token_b.decimals, amount_a=amount_a, amount_b=amount_b
            )
            if amounts.bumped:
                LOGGER.warning(
                    "deposit_min_unit_bump pool=%s amount_a=%s amount_b=%s", name, amounts.amount_a, amounts.amount_b
                )
            amount0, amount1 = pair.amm_amounts(amounts.amount_a, amounts.amount_b)
            LOGGER.info(
                "deposit_plan pool=%s price=%s source=%s %s=%s %s=%s inverted=%s",
                name,
                price.value,
                price_source,
                token_a.symbol,
                amounts.amount_a,
                token_b.symbol,
                amounts.amount_b,
                pair.inverted,
            )
            self._cover(discovery.token_a, amounts.amount_a)
            self._cover(discovery.token_b, amounts.amount_b)
            # a split can leave dust short; fail before anything irreversible
            self.balances.require(pair.token0, amount0)
            self.balances.require(pair.token1, amount1)

            if not discovery.initialized:
                self.tracker.advance(key, LifecycleState.CREATING)
                sqrt_value = sqrt_price_x96(amount0, amount1)
                _, pool = self.session.transact(
                    f"create_pool:{name}",
                    self.session.chain.create_and_initialize_pool,
                    pair.token0,
                    pair.token1,
                    sqrt_value,
                    token0=pair.token0,
                    token1=pair.token1,
                    sqrtPriceX96=sqrt_value,
                )
                pool = normalize_address(pool, "pool")
                self._pool_cache[(pair.token0, pair.token1)] = pool
                created = True
                self.tracker.advance(key, LifecycleState.INITIALIZED)
                LOGGER.info("pool_created pool=%s address=%s sqrt_price_x96=%s", name, pool, sqrt_value)

            tick_lower, tick_upper = full_range_ticks(
                self.session.chain.pool_tick_spacing(pool),
                self.session.config.min_tick,
                self.session.config.max_tick,
            )
            self.balances.ensure_allowance(pair.token0, self.position_manager, amount0)
            self.balances.ensure_allowance(pair.token1, self.position_manager, amount1)
            _, token_id = self.session.transact(
                f"mint:{name}",
                self.session.chain.mint,
                pair.token0,
                pair.token1,
                tick_lower,
                tick_upper,
                amount0,
                amount1,
                self.session.account,
                self.session.deadline(),
                pool=pool,
                amount0=amount0,
                amount1=amount1,
            )
            self.tracker.advance(key, LifecycleState.LIQUID)
        except Exception as exc:
            LOGGER.error("deposit_failed pool=%s address=%s error=%s", name, pool, exc)
            self.tracker.rollback(key)
            outcome = Outcome.fail(
                f"deposit failed: {exc}",
                exception_payload(exc),
                pool=pool,
                created=created,
                states=self.tracker.trail(key),
            )
            outcome.events = self.session.events_since(mark)
            return outcome

        data: dict[str, Any] = {
            "pool": pool,
            "created": created,
            "tokenId": token_id,
            "price": price.value,
            "priceSource": price_source,
            "amountA": str(amounts.amount_a),
            "amountB": str(amounts.amount_b),
            "amount0": str(amount0),
            "amount1": str(amount1),
            "tickLower": tick_lower,
            "tickUpper": tick_upper,
            "states": self.tracker.trail(key),
        }
        if sqrt_value is not None:
            data["sqrtPriceX96"] = str(sqrt_value)
        warning = self.verify_price(pool, pair, price, name)
        if warning is not None:
            data["priceWarning"] = warning.payload()
        LOGGER.info("deposit_done pool=%s address=%s token_id=%s", name, pool, token_id)
        outcome = Outcome.ok("liquidity added", **data)
        outcome.events = self.session.events_since(mark)
        return outcome

    def verify_price(self, pool: str, pair: AmmPair, expected: PricePoint, name: str) -> PriceInconsistency | None:
        actual = self.read_price(pool, pair)
        if actual is None:
            return None
        deviation = price_deviation(actual.value, expected.value)
        if deviation <= self.session.config.price_tolerance:
            return None
        warning = PriceInconsistency(name, expected.value, actual.value, deviation)
        LOGGER.warning(
            "price_inconsistency pool=%s address=%s expected=%s actual=%s deviation=%.4f",
            name,
            pool,
            expected.value,
            actual.value,
            deviation,
        )
        return warning

    def provision(self, spec: PoolSpec, discovery: PoolDiscovery, liquidity: float) -> Outcome:
        outcome = self.deposit(discovery, spec.target, amount_b=liquidity, label=spec.name)
        outcome.data.setdefault("poolIndex", spec.index)
        return outcome

    def add_liquidity(
        self,
        token_a: str,
        token_b: str,
        amount_a: float | None = None,
        amount_b: float | None = None,
    ) -> Outcome:
        try:
            discovery = self.discover(token_a, token_b)
        except Exception as exc:
            LOGGER.error("add_liquidity_failed token_a=%s token_b=%s error=%s", token_a, token_b, exc)
            return Outcome.fail(f"pool lookup failed: {exc}", exception_payload(exc))
        if discovery.initialized:
            price = discovery.current_price
        elif amount_a and amount_b:
            price = PricePoint(value=float(amount_b) / float(amount_a), orientation=PriceOrientation.LOGICAL)
        else:
            error = MarketParameterError("a new pool needs both amounts to derive its initial price")
            return Outcome.fail(str(error), error.payload())
        return self.deposit(discovery, price, amount_a=amount_a, amount_b=amount_b)

    # positions

    def owned_positions(self) -> list[Position]:
        chain = self.session.chain
        return [chain.position(token_id) for token_id in chain.position_ids(self.session.account)]

    def pool_positions(self, pool: str) -> list[Position]:
        target = normalize_address(pool, "pool")
        selected: list[Position] = []
        for position in self.owned_positions():
            if not position.has_value:
                continue
            if self._pool_for(position.token0, position.token1) == target:
                selected.append(position)
        return selected

    def _check_owner(self, token_id: int) -> None:
        owner = str(self.session.chain.owner_of(token_id)).lower()
        if owner != self.session.account:
            raise OwnershipMismatch(token_id, owner, self.session.account)

    def remove_position(self, token_id: int, percentage: Any = 100) -> Outcome:
        try:
            pct = validate_percentage(percentage)
        except InvalidPercentage as exc:
            LOGGER.error("remove_rejected token_id=%s error=%s", token_id, exc)
            return Outcome.fail(str(exc), exc.payload(), tokenId=token_id)

        key = f"position:{token_id}"
        mark = len(self.session.events)
        chain = self.session.chain
        liquidity_before = 0
        to_remove = 0
        burned = False
        try:
            try:
                self._check_owner(token_id)
            except OwnershipMismatch as exc:
                LOGGER.warning("remove_skipped token_id=%s reason=%s", token_id, exc)
                outcome = Outcome.skip(str(exc), tokenId=token_id)
                outcome.error = exc.payload()
                return outcome
            position = chain.position(token_id)
            if not position.has_value:
                return Outcome.skip("position has no liquidity", tokenId=token_id)
            self.tracker.observe(key, LifecycleState.LIQUID)
            liquidity_before = position.liquidity
            if position.liquidity > 0:
                to_remove = max(1, position.liquidity * pct // 100)
                self.tracker.advance(key, LifecycleState.DECREASING)
                self.session.transact(
                    f"decrease:{token_id}",
                    chain.decrease_liquidity,
                    token_id,
                    to_remove,
                    self.session.deadline(),
                    tokenId=token_id,
                    liquidity=to_remove,
                )
            self.tracker.advance(key, LifecycleState.COLLECTING)
            self.session.transact(
                f"collect:{token_id}",
                chain.collect,
                token_id,
                self.session.account,
                tokenId=token_id,
            )
            if pct == 100:
                remaining = chain.position(token_id).liquidity
                if remaining == 0:
                    self.session.transact(f"burn:{token_id}", chain.burn, token_id, tokenId=token_id)
                    self.tracker.advance(key, LifecycleState.BURNED)
                    burned = True
                else:
                    LOGGER.warning("burn_skipped token_id=%s remaining_liquidity=%s", token_id, remaining)
                    self.tracker.advance(key, LifecycleState.LIQUID)
            else:
                self.tracker.advance(key, LifecycleState.LIQUID)
        except Exception as exc:
            LOGGER.error(
                "remove_failed token_id=%s percentage=%s liquidity=%s error=%s",
                token_id,
                pct,
                liquidity_before,
                exc,
            )
            self.tracker.rollback(key)
            outcome = Outcome.fail(
                f"remove failed: {exc}",
                exception_payload(exc),
                tokenId=token_id,
                states=self.tracker.trail(key),
            )
            outcome.events = self.session.events_since(mark)
            return outcome

        LOGGER.info(
            "remove_done token_id=%s percentage=%s removed=%s burned=%s", token_id, pct, to_remove, burned
        )
        outcome = Outcome.ok(
            "position burned" if burned else "liquidity removed",
            tokenId=token_id,
            percentage=pct,
            liquidityBefore=str(liquidity_before),
            liquidityRemoved=str(to_remove),
            burned=burned,
            states=self.tracker.trail(key),
        )
        outcome.events = self.session.events_since(mark)
        return outcome

    def remove_all_from_pool(self, pool: str, percentage: Any = 100) -> Outcome:
        try:
            pct = validate_percentage(percentage)
            positions = self.pool_positions(pool)
        except Exception as exc:
            LOGGER.error("remove_pool_failed pool=%s error=%s", pool, exc)
            return Outcome.fail(str(exc), exception_payload(exc), pool=pool)
        return self._per_position(pool, positions, lambda position: self.remove_position(position.token_id, pct))

    def collect_from_pool(self, pool: str) -> Outcome:
        try:
            positions = self.pool_positions(pool)
        except Exception as exc:
            LOGGER.error("collect_pool_failed pool=%s error=%s", pool, exc)
            return Outcome.fail(str(exc), exception_payload(exc), pool=pool)
        return self._per_position(pool, positions, lambda position: self.collect_position(position.token_id))

    def collect_position(self, token_id: int) -> Outcome:
        key = f"position:{token_id}"
        mark = len(self.session.events)
        try:
            self._check_owner(token_id)
            self.tracker.observe(key, LifecycleState.LIQUID)
            self.tracker.advance(key, LifecycleState.COLLECTING)
            self.session.transact(
                f"collect:{token_id}",
                self.session.chain.collect,
                token_id,
                self.session.account,
                tokenId=token_id,
            )
            self.tracker.advance(key, LifecycleState.LIQUID)
        except OwnershipMismatch as exc:
            LOGGER.warning("collect_skipped token_id=%s reason=%s", token_id, exc)
            outcome = Outcome.skip(str(exc), tokenId=token_id)
            outcome.error = exc.payload()
            return outcome
        except Exception as exc:
            LOGGER.error("collect_failed token_id=%s error=%s", token_id, exc)
            self.tracker.rollback(key)
            outcome = Outcome.fail(f"collect failed: {exc}", exception_payload(exc), tokenId=token_id)
            outcome.events = self.session.events_since(mark)
            return outcome
        outcome = Outcome.ok("fees collected", tokenId=token_id)
        outcome.events = self.session.events_since(mark)
        return outcome

    def _per_position(self, pool: str, positions: list[Position], action) -> Outcome:
        if not positions:
            LOGGER.info("pool_no_positions pool=%s", pool)
            return Outcome.skip("no positions in pool", pool=pool, total=0)
        results = []
        events = []
        for position in positions:
            outcome = action(position)
            events.extend(outcome.events)
            results.append({"tokenId": position.token_id, **outcome.to_dict()})
        successful = sum(1 for item in results if item["status"] == "success")
        failed = sum(1 for item in results if item["status"] == "failed")
        skipped = sum(1 for item in results if item["status"] == "skipped")
        data = {
            "pool": pool,
            "total": len(results),
            "successful": successful,
            "failed": failed,
            "skipped": skipped,
            "positions": results,
        }
        if successful > 0:
            outcome = Outcome.ok(f"{successful}/{len(results)} positions processed", **data)
        else:
            outcome = Outcome.fail(f"0/{len(results)} positions processed", **data)
        outcome.events = events
        return outcome
