from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from futarchy_liquidity.models import SetupMode
from futarchy_liquidity.orchestrator import BatchOrchestrator
from futarchy_liquidity.session import Session
from futarchy_liquidity.setup_config import PoolSetupConfig, RemovalItem, RemovalPlan
from futarchy_liquidity.storage import Storage
from tests.helpers import (
    ADAPTER,
    COMPANY,
    CURRENCY,
    NO_COMPANY,
    NO_CURRENCY,
    PROPOSAL,
    YES_COMPANY,
    YES_CURRENCY,
    build_proposal_chain,
    pool_sqrt_for_logical_price,
    test_config,
)


def _setup_config(**kwargs) -> PoolSetupConfig:
    values = dict(
        proposal_address=PROPOSAL,
        market_name="",
        spot_price=100.0,
        event_probability=0.5,
        impact_pct=10.0,
        liquidity_amounts=(0.000001,) * 6,
        adapter_address=ADAPTER,
    )
    values.update(kwargs)
    return PoolSetupConfig(**values)


class OrchestratorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.storage = Storage(":memory:")
        self.addCleanup(self.storage.close)

    def _orchestrator(self, chain, confirm=None) -> BatchOrchestrator:
        session = Session(chain, test_config())
        return BatchOrchestrator(session, storage=self.storage, confirm=confirm, artifact_dir=self.tmp.name)


class SetupPoolsTests(OrchestratorTestCase):
    def test_automatic_setup_creates_all_six_pools(self) -> None:
        chain, _ = build_proposal_chain(company_balance=10**21, currency_balance=10**21)
        report = self._orchestrator(chain).setup_pools(_setup_config(), SetupMode.AUTOMATIC)

        self.assertEqual(report.summary.successful, 6)
        self.assertEqual(report.summary.failed, 0)
        self.assertEqual(len(chain.pools), 6)
        self.assertTrue(report.artifact.name.startswith("futarchy-pool-setup-"))

        payload = json.loads(report.artifact.read_text(encoding="utf-8"))
        self.assertEqual(payload["proposalAddress"], PROPOSAL)
        self.assertEqual(payload["marketName"], "Will GNO adopt the proposal?")
        self.assertEqual(payload["settings"]["expectedImpactPercentage"], 10.0)
        self.assertAlmostEqual(payload["settings"]["yesPrice"], 105.0, places=9)
        records = {record["poolIndex"]: record for record in payload["createdPools"]}
        self.assertEqual(sorted(records), [1, 2, 3, 4, 5, 6])
        self.assertEqual(records[1]["ammToken0"]["role"], "yes_currency")
        self.assertEqual(records[1]["ammToken1"]["role"], "yes_company")
        self.assertEqual(records[1]["invertedSlot"], 1)
        self.assertEqual(records[2]["invertedSlot"], 0)
        self.assertEqual(records[3]["invertedSlot"], 0)
        self.assertEqual(records[5]["invertedSlot"], 1)
        self.assertEqual(records[6]["invertedSlot"], 0)
        self.assertEqual(records[3]["type"], "expected_value")
        self.assertTrue(all(record["address"] for record in records.values()))

        stored = self.storage.report(1)
        self.assertEqual(stored["per_operation"]["setup"]["success"], 6)
        self.assertGreater(stored["transactions"], 6)

    def test_existing_pool_is_skipped_unless_forced(self) -> None:
        chain, _ = build_proposal_chain(company_balance=10**21, currency_balance=10**21)
        chain.add_pool(NO_COMPANY, NO_CURRENCY, pool_sqrt_for_logical_price(95.0, NO_COMPANY, NO_CURRENCY))
        report = self._orchestrator(chain).setup_pools(_setup_config(), SetupMode.AUTOMATIC)
        self.assertEqual(report.summary.successful, 5)
        self.assertEqual(report.summary.skipped, 1)
        skipped = [result for result in report.summary.results if result.status.value == "skipped"]
        self.assertEqual(skipped[0].item_id, "pool-2")
        self.assertEqual(skipped[0].detail, "pool exists")

    def test_forced_pool_adopts_existing_price(self) -> None:
        chain, _ = build_proposal_chain(company_balance=10**21, currency_balance=10**21)
        chain.add_pool(NO_COMPANY, NO_CURRENCY, pool_sqrt_for_logical_price(90.0, NO_COMPANY, NO_CURRENCY))
        report = self._orchestrator(chain).setup_pools(
            _setup_config(force_add_liquidity=(2,)), SetupMode.AUTOMATIC
        )
        self.assertEqual(report.summary.successful, 6)
        records = {record["poolIndex"]: record for record in report.payload["createdPools"]}
        self.assertEqual(records[2]["priceSource"], "existing")
        self.assertAlmostEqual(records[2]["price"], 90.0, places=6)
        self.assertAlmostEqual(records[1]["price"], 105.0, places=9)

    def test_semi_automatic_respects_declined_prompt(self) -> None:
        chain, _ = build_proposal_chain(company_balance=10**21, currency_balance=10**21)
        questions: list[str] = []

        def confirm(question: str) -> bool:
            questions.append(question)
            return not question.startswith("Create pool 1 ")

        report = self._orchestrator(chain, confirm).setup_pools(_setup_config(), SetupMode.SEMI_AUTOMATIC)
        self.assertEqual(len(questions), 6)
        self.assertEqual(report.summary.skipped, 1)
        self.assertEqual(report.summary.successful, 5)

    def test_one_failing_pool_does_not_stop_setup(self) -> None:
        chain, _ = build_proposal_chain(company_balance=10**21, currency_balance=0)
        report = self._orchestrator(chain).setup_pools(_setup_config(), SetupMode.AUTOMATIC)
        # every pool needs currency-side tokens, so each one fails on its own
        self.assertEqual(report.summary.failed, 6)
        self.assertEqual(len(report.summary.results), 6)
        self.assertTrue(report.artifact.exists())


class RemovalPlanTests(OrchestratorTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.chain, _ = build_proposal_chain()
        self.pool_a = self.chain.add_pool(YES_CURRENCY, YES_COMPANY, 2**96)
        self.pool_b = self.chain.add_pool(CURRENCY, COMPANY, 2**96)
        self.pool_c = self.chain.add_pool(NO_COMPANY, NO_CURRENCY, 2**96)
        self.position_a = self.chain.add_position(YES_CURRENCY, YES_COMPANY, 1000)
        self.position_b = self.chain.add_position(COMPANY, CURRENCY, 1000)
        self.position_c = self.chain.add_position(NO_COMPANY, NO_CURRENCY, 1000, owed0=5, owed1=6)

    def test_plan_handles_remove_collect_invalid_and_disabled(self) -> None:
        plan = RemovalPlan(
            items=(
                RemovalItem("pool-a", self.pool_a),
                RemovalItem("bad", "0x123"),
                RemovalItem("off", self.pool_b, enabled=False),
                RemovalItem("fees", self.pool_c, enabled=False, collect=True),
            )
        )
        report = self._orchestrator(self.chain).remove_from_plan(plan)

        self.assertEqual(report.summary.successful, 2)
        self.assertEqual(report.summary.skipped, 2)
        self.assertEqual(report.summary.failed, 0)
        self.assertEqual(self.chain.tx_methods(), ["decrease_liquidity", "collect", "burn", "collect"])
        self.assertIn(self.position_b, self.chain.positions)
        self.assertEqual(self.chain.positions[self.position_c].liquidity, 1000)

        payload = json.loads(report.artifact.read_text(encoding="utf-8"))
        self.assertTrue(report.artifact.name.startswith("batch-removal-results-"))
        self.assertEqual(payload["successful"], 2)
        self.assertEqual(len(payload["poolResults"]), 4)
        self.assertEqual(payload["poolResults"][1]["detail"], "invalid pool address")

    def test_stop_on_error_halts_remaining_pools(self) -> None:
        self.chain.fail_ids.add(self.position_a)
        plan = RemovalPlan(
            items=(RemovalItem("pool-a", self.pool_a), RemovalItem("pool-c", self.pool_c)),
            stop_on_error=True,
        )
        report = self._orchestrator(self.chain).remove_from_plan(plan)
        self.assertEqual(len(report.summary.results), 1)
        self.assertEqual(report.summary.failed, 1)
        self.assertEqual(self.chain.positions[self.position_c].liquidity, 1000)

    def test_confirm_before_each_can_skip(self) -> None:
        plan = RemovalPlan(items=(RemovalItem("pool-a", self.pool_a),), confirm_before_each=True)
        report = self._orchestrator(self.chain, confirm=lambda question: False).remove_from_plan(plan)
        self.assertEqual(report.summary.skipped, 1)
        self.assertEqual(self.chain.tx_methods(), [])

    def test_invalid_percentage_rejects_plan_before_transactions(self) -> None:
        plan = RemovalPlan(items=(RemovalItem("pool-a", self.pool_a),), percentage=0)
        report = self._orchestrator(self.chain).remove_from_plan(plan)
        self.assertEqual(report.summary.failed, 1)
        self.assertIsNone(report.artifact)
        self.assertEqual(self.chain.tx_methods(), [])

    def test_partial_percentage_applies_to_each_position(self) -> None:
        plan = RemovalPlan(items=(RemovalItem("pool-a", self.pool_a),), percentage=25)
        self._orchestrator(self.chain).remove_from_plan(plan)
        self.assertEqual(self.chain.positions[self.position_a].liquidity, 750)


class MergeTests(OrchestratorTestCase):
    def test_merge_proposal_runs_both_collaterals(self) -> None:
        chain, _ = build_proposal_chain()
        chain.set_balance(YES_COMPANY, 120)
        chain.set_balance(NO_COMPANY, 80)
        chain.set_balance(YES_CURRENCY, 30)
        chain.set_balance(NO_CURRENCY, 45)
        report = self._orchestrator(chain).merge_proposal(PROPOSAL, ADAPTER)
        self.assertEqual(report.summary.successful, 2)
        merges = [call for call in chain.calls if call[0] == "merge_positions"]
        self.assertEqual([(call[3], call[4]) for call in merges], [(COMPANY, 80), (CURRENCY, 30)])


if __name__ == "__main__":
    unittest.main()
