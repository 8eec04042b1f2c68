from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any, Callable

from futarchy_liquidity.balances import BalanceVerifier
from futarchy_liquidity.errors import InvalidPercentage, exception_payload
from futarchy_liquidity.lifecycle import LiquidityLifecycleManager, PoolDiscovery, validate_percentage
from futarchy_liquidity.models import (
    BatchResult,
    BatchSummary,
    Outcome,
    OutcomeStatus,
    PoolKind,
    PoolSpec,
    ProposalTokens,
    SetupMode,
    TokenRole,
    utc_stamp,
)
from futarchy_liquidity.pricing import PriceEngine
from futarchy_liquidity.session import Session
from futarchy_liquidity.setup_config import PoolSetupConfig, RemovalPlan
from futarchy_liquidity.split_merge import SplitMergeAccountant
from futarchy_liquidity.storage import Storage, write_artifact


LOGGER = logging.getLogger("futarchy_liquidity")

SETUP_ARTIFACT_PREFIX = "futarchy-pool-setup"
REMOVAL_ARTIFACT_PREFIX = "batch-removal-results"

Confirm = Callable[[str], bool]


def inverted_slot(spec: PoolSpec, inverted: bool) -> int:
    """Slot flag consumed by downstream tooling.

    Conditional/conditional pools flag the case where the company-side token
    landed in AMM slot 1. Pools against the base currency flag the opposite
    case, where the logical order already matches the AMM order.
    """
    if spec.kind == PoolKind.PRICE_CORRELATED:
        return int(inverted)
    return int(not inverted)


@dataclass
class RunReport:
    summary: BatchSummary
    payload: dict[str, Any]
    artifact: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        out = dict(self.summary.to_dict())
        out["artifact"] = str(self.artifact) if self.artifact is not None else None
        return out


class BatchOrchestrator:
    def __init__(
        self,
        session: Session,
        storage: Storage | None = None,
        confirm: Confirm | None = None,
        artifact_dir: str | Path | None = None,
    ) -> None:
        self.session = session
        self.storage = storage
        self.confirm = confirm
        self.artifact_dir = Path(artifact_dir if artifact_dir is not None else session.config.artifact_dir)
        self.balances = BalanceVerifier(session)

    def _ask(self, question: str) -> bool:
        if self.confirm is None:
            return True
        return bool(self.confirm(question))

    def _persist(self, run_id: str, operation: str, result: BatchResult, outcome: Outcome) -> None:
        if self.storage is None:
            return
        self.storage.record_events(run_id, outcome.events)
        self.storage.record_result(run_id, operation, result)

    def manager_for(self, tokens: ProposalTokens, adapter: str) -> LiquidityLifecycleManager:
        accountant = SplitMergeAccountant(self.session, self.balances, adapter, tokens.proposal)
        return LiquidityLifecycleManager(self.session, self.balances, accountant, tokens)

    def resolve_tokens(self, setup: PoolSetupConfig) -> ProposalTokens:
        tokens = self.session.chain.proposal_tokens(setup.proposal_address)
        for label, configured, actual in (
            ("company", setup.company_token, tokens.company),
            ("currency", setup.currency_token, tokens.currency),
        ):
            if configured and configured != actual:
                LOGGER.warning(
                    "base_token_mismatch role=%s configured=%s proposal=%s using=proposal",
                    label,
                    configured,
                    actual,
                )
        return tokens

    # setup

    def _token_entry(self, role: TokenRole, address: str) -> dict[str, Any]:
        token = self.session.token(address)
        return {"role": role.value, "address": token.address, "symbol": token.symbol, "decimals": token.decimals}

    def _pool_record(
        self,
        spec: PoolSpec,
        discovery: PoolDiscovery | None,
        result: BatchResult,
    ) -> dict[str, Any]:
        record: dict[str, Any] = {
            "poolIndex": spec.index,
            "type": spec.kind.value,
            "name": spec.name,
            "status": result.status.value,
            "detail": result.detail,
            "targetPrice": spec.target.value,
        }
        if discovery is None:
            return record
        pair = discovery.pair
        roles = {spec.token_a: spec.role_a, spec.token_b: spec.role_b}
        record["address"] = result.data.get("pool") or discovery.pool
        record["tokenA"] = self._token_entry(spec.role_a, spec.token_a)
        record["tokenB"] = self._token_entry(spec.role_b, spec.token_b)
        record["ammToken0"] = self._token_entry(roles[pair.token0], pair.token0)
        record["ammToken1"] = self._token_entry(roles[pair.token1], pair.token1)
        record["inverted"] = pair.inverted
        record["invertedSlot"] = inverted_slot(spec, pair.inverted)
        if discovery.current_price is not None:
            record["existingPrice"] = discovery.current_price.value
        for key in ("price", "priceSource", "amountA", "amountB", "amount0", "amount1", "tokenId", "created"):
            if key in result.data:
                record[key] = result.data[key]
        return record

    def _setup_one(
        self,
        manager: LiquidityLifecycleManager,
        spec: PoolSpec,
        setup: PoolSetupConfig,
        mode: SetupMode,
    ) -> tuple[Outcome, PoolDiscovery | None]:
        try:
            discovery = manager.discover(spec.token_a, spec.token_b)
        except Exception as exc:
            LOGGER.error("pool_discovery_failed pool=%s error=%s", spec.name, exc)
            return Outcome.fail(f"pool lookup failed: {exc}", exception_payload(exc), poolIndex=spec.index), None

        if discovery.initialized:
            current = discovery.current_price.value
            if mode == SetupMode.AUTOMATIC:
                if setup.skip_existing_when_auto and not setup.forced(spec.index):
                    LOGGER.info("pool_exists_skip pool=%s address=%s price=%s", spec.name, discovery.pool, current)
                    return Outcome.skip("pool exists", pool=discovery.pool, poolIndex=spec.index), discovery
            elif not self._ask(f"Pool {spec.index} {spec.name} exists at price {current}. Add liquidity?"):
                return Outcome.skip("declined", pool=discovery.pool, poolIndex=spec.index), discovery
        elif mode == SetupMode.SEMI_AUTOMATIC and not self._ask(
            f"Create pool {spec.index} {spec.name} at price {spec.target.value}?"
        ):
            return Outcome.skip("declined", poolIndex=spec.index), discovery

        return manager.provision(spec, discovery, setup.liquidity_for(spec.index)), discovery

    def setup_pools(self, setup: PoolSetupConfig, mode: SetupMode = SetupMode.AUTOMATIC) -> RunReport:
        run_id = f"setup-{utc_stamp()}"
        engine = PriceEngine(setup.market_parameters, tolerance=self.session.config.model_tolerance)
        yes_price, no_price = engine.conditional_prices()
        tokens = self.resolve_tokens(setup)
        specs = engine.pool_specs(tokens)
        manager = self.manager_for(tokens, setup.adapter_address)
        LOGGER.info(
            "setup_start proposal=%s mode=%s spot=%s yes=%s no=%s",
            tokens.proposal,
            mode.value,
            setup.spot_price,
            yes_price,
            no_price,
        )

        summary = BatchSummary()
        records: list[dict[str, Any]] = []
        for spec in specs:
            outcome, discovery = self._setup_one(manager, spec, setup, mode)
            result = BatchResult.from_outcome(f"pool-{spec.index}", outcome)
            summary.add(result)
            self._persist(run_id, "setup", result, outcome)
            records.append(self._pool_record(spec, discovery, result))
            LOGGER.info("setup_pool pool=%s status=%s detail=%s", spec.name, result.status.value, result.detail)

        payload = {
            "proposalAddress": tokens.proposal,
            "marketName": setup.market_name or tokens.market_name,
            "adapter": setup.adapter_address,
            "positionManager": self.session.config.position_manager,
            "mode": mode.value,
            "settings": {
                "spotPrice": setup.spot_price,
                "initialEventProbability": setup.event_probability,
                "expectedImpactPercentage": setup.impact_pct,
                "yesPrice": yes_price,
                "noPrice": no_price,
            },
            "baseTokens": {
                "company": self._token_entry(TokenRole.COMPANY, tokens.company),
                "currency": self._token_entry(TokenRole.CURRENCY, tokens.currency),
            },
            "conditionalTokensResolved": tokens.to_dict(),
            "createdPools": records,
            "summary": {"successful": summary.successful, "failed": summary.failed, "skipped": summary.skipped},
        }
        report = RunReport(summary=summary, payload=payload)
        report.artifact = write_artifact(self.artifact_dir, SETUP_ARTIFACT_PREFIX, payload)
        LOGGER.info(
            "setup_done successful=%s failed=%s skipped=%s artifact=%s",
            summary.successful,
            summary.failed,
            summary.skipped,
            report.artifact,
        )
        return report

    # removal

    def remove_from_plan(self, plan: RemovalPlan, manager: LiquidityLifecycleManager | None = None) -> RunReport:
        run_id = f"remove-{utc_stamp()}"
        manager = manager or LiquidityLifecycleManager(self.session, self.balances)
        summary = BatchSummary()
        try:
            percentage = validate_percentage(plan.percentage)
        except InvalidPercentage as exc:
            LOGGER.error("remove_plan_rejected error=%s", exc)
            for item in plan.items:
                summary.add(BatchResult(item.name, OutcomeStatus.FAILED, str(exc), exc.payload()))
            return RunReport(summary=summary, payload=summary.to_dict())

        for item in plan.items:
            if not item.active:
                outcome = Outcome.skip("disabled", pool=item.address)
            elif not item.valid_address:
                LOGGER.warning("remove_invalid_address pool=%s address=%r", item.name, item.address)
                outcome = Outcome.skip("invalid pool address", pool=item.address)
            elif plan.confirm_before_each and not self._ask(
                f"{'Collect fees from' if item.collect_only else 'Remove liquidity from'} {item.name} ({item.address})?"
            ):
                outcome = Outcome.skip("declined", pool=item.address)
            elif item.collect_only:
                outcome = manager.collect_from_pool(item.address)
            else:
                outcome = manager.remove_all_from_pool(item.address, percentage)

            result = BatchResult.from_outcome(item.name, outcome)
            summary.add(result)
            self._persist(run_id, "remove", result, outcome)
            LOGGER.info("remove_pool pool=%s status=%s detail=%s", item.name, result.status.value, result.detail)
            if outcome.failed and plan.stop_on_error:
                LOGGER.error("remove_plan_stopped pool=%s", item.name)
                break

        payload = {
            "source": plan.source,
            "settings": {
                "percentage": percentage,
                "confirmBeforeEach": plan.confirm_before_each,
                "stopOnError": plan.stop_on_error,
            },
            **plan.meta,
            "successful": summary.successful,
            "failed": summary.failed,
            "skipped": summary.skipped,
            "poolResults": [result.to_dict() for result in summary.results],
        }
        report = RunReport(summary=summary, payload=payload)
        report.artifact = write_artifact(self.artifact_dir, REMOVAL_ARTIFACT_PREFIX, payload)
        LOGGER.info(
            "remove_plan_done successful=%s failed=%s skipped=%s artifact=%s",
            summary.successful,
            summary.failed,
            summary.skipped,
            report.artifact,
        )
        return report

    # merge

    def merge_proposal(self, proposal: str, adapter: str) -> RunReport:
        run_id = f"merge-{utc_stamp()}"
        tokens = self.session.chain.proposal_tokens(proposal)
        accountant = SplitMergeAccountant(self.session, self.balances, adapter, tokens.proposal)
        summary = BatchSummary()
        for side, outcome in accountant.merge_proposal(tokens).items():
            result = BatchResult.from_outcome(side, outcome)
            summary.add(result)
            self._persist(run_id, "merge", result, outcome)
        return RunReport(summary=summary, payload={"proposalAddress": tokens.proposal, **summary.to_dict()})
