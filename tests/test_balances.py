from __future__ import annotations

import unittest
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from futarchy_liquidity.balances import BalanceVerifier, shortfall
from futarchy_liquidity.errors import InsufficientBalance
from futarchy_liquidity.models import BalanceState
from futarchy_liquidity.session import Session
from tests.helpers import ADAPTER, COMPANY, CURRENCY, YES_COMPANY, build_proposal_chain, test_config


class BalanceVerifierTests(unittest.TestCase):
    def setUp(self) -> None:
        self.chain, self.tokens = build_proposal_chain(company_balance=500, currency_balance=80)
        self.session = Session(self.chain, test_config())
        self.balances = BalanceVerifier(self.session)

    def test_have_records_fresh_balance(self) -> None:
        self.assertEqual(self.balances.have(COMPANY), 500)
        token = self.session.tokens[COMPANY]
        self.assertEqual(token.balance, 500)
        self.assertEqual(token.balance_state, BalanceState.FRESH)
        self.assertEqual(token.symbol, "GNO")

    def test_transaction_invalidates_cached_balances(self) -> None:
        self.balances.have(COMPANY)
        self.session.transact("approve:GNO", self.chain.approve, COMPANY, ADAPTER, 10)
        self.assertEqual(self.session.tokens[COMPANY].balance_state, BalanceState.CACHED)
        self.assertEqual(len(self.session.events), 1)
        self.assertEqual(self.session.events[0].label, "approve:GNO")

    def test_require_reads_fresh_and_reports_shortfall(self) -> None:
        self.balances.have(CURRENCY)
        self.chain.set_balance(CURRENCY, 20)
        with self.assertRaises(InsufficientBalance) as ctx:
            self.balances.require(CURRENCY, 50)
        self.assertEqual(ctx.exception.have, 20)
        self.assertEqual(ctx.exception.need, 50)
        self.assertEqual(ctx.exception.shortfall, 30)
        self.assertEqual(ctx.exception.payload()["symbol"], "sDAI")

    def test_refresh_reads_every_token(self) -> None:
        fresh = self.balances.refresh([COMPANY, CURRENCY, YES_COMPANY, COMPANY])
        self.assertEqual(fresh, {COMPANY: 500, CURRENCY: 80, YES_COMPANY: 0})
        reads = [call for call in self.chain.calls if call[0] == "balance_of"]
        self.assertEqual(len(reads), 3)

    def test_shortfall_is_never_negative(self) -> None:
        self.assertEqual(shortfall(10, 30), 0)
        self.assertEqual(shortfall(30, 10), 20)

    def test_ensure_allowance_skips_when_sufficient(self) -> None:
        self.chain.allowances[(COMPANY, self.chain.account, ADAPTER)] = 100
        self.assertFalse(self.balances.ensure_allowance(COMPANY, ADAPTER, 100))
        self.assertEqual(self.chain.tx_methods(), [])

    def test_ensure_allowance_resets_non_zero_allowance(self) -> None:
        self.chain.allowances[(COMPANY, self.chain.account, ADAPTER)] = 5
        self.assertTrue(self.balances.ensure_allowance(COMPANY, ADAPTER, 100))
        approvals = [call for call in self.chain.calls if call[0] == "approve"]
        self.assertEqual([call[3] for call in approvals], [0, 100])
        self.assertEqual(self.chain.allowances[(COMPANY, self.chain.account, ADAPTER)], 100)


if __name__ == "__main__":
    unittest.main()
