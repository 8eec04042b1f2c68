from __future__ import annotations

import logging

from futarchy_liquidity.balances import BalanceVerifier
from futarchy_liquidity.errors import InsufficientUnderlying, exception_payload
from futarchy_liquidity.models import Outcome, ProposalTokens, SplitOperation
from futarchy_liquidity.ordering import normalize_address
from futarchy_liquidity.session import Session


LOGGER = logging.getLogger("futarchy_liquidity")


def scale_units(amount: int, from_decimals: int, to_decimals: int) -> int:
    """Convert a base-unit amount between decimals, rounding up so the result covers ``amount``."""
    if amount <= 0:
        return 0
    if to_decimals >= from_decimals:
        return amount * 10 ** (to_decimals - from_decimals)
    divisor = 10 ** (from_decimals - to_decimals)
    return max(1, -(-amount // divisor))


class SplitMergeAccountant:
    def __init__(self, session: Session, balances: BalanceVerifier, adapter: str, proposal: str) -> None:
        self.session = session
        self.balances = balances
        self.adapter = normalize_address(adapter, "adapter")
        self.proposal = normalize_address(proposal, "proposal")

    def split_for_shortfall(self, conditional: str, underlying: str, amount_needed: int) -> SplitOperation:
        cond = self.session.token(conditional)
        base = self.session.token(underlying)
        fresh = self.balances.refresh([cond.address, base.address])
        have = fresh[cond.address]
        operation = SplitOperation(
            conditional_token=cond.address,
            underlying_token=base.address,
            amount_needed=int(amount_needed),
            amount_have=have,
        )
        if operation.amount_to_split <= 0:
            LOGGER.info("split_not_needed token=%s have=%s need=%s", cond.symbol, have, amount_needed)
            return operation

        to_split = scale_units(operation.amount_to_split, cond.decimals, base.decimals)
        underlying_have = fresh[base.address]
        if underlying_have < to_split:
            LOGGER.error(
                "split_underlying_short conditional=%s underlying=%s have=%s need=%s",
                cond.symbol,
                base.symbol,
                underlying_have,
                to_split,
            )
            raise InsufficientUnderlying(base.address, base.symbol, underlying_have, to_split, cond.address)

        self.balances.ensure_allowance(base.address, self.adapter, to_split)
        LOGGER.info(
            "split_start conditional=%s underlying=%s amount=%s proposal=%s",
            cond.symbol,
            base.symbol,
            to_split,
            self.proposal,
        )
        self.session.transact(
            f"split:{base.symbol}",
            self.session.chain.split_position,
            self.adapter,
            self.proposal,
            base.address,
            to_split,
            collateral=base.address,
            amount=to_split,
        )
        after = self.balances.have(cond.address)
        if after < amount_needed:
            LOGGER.warning(
                "split_residual_shortfall token=%s have=%s need=%s shortfall=%s",
                cond.symbol,
                after,
                amount_needed,
                amount_needed - after,
            )
        return SplitOperation(
            conditional_token=cond.address,
            underlying_token=base.address,
            amount_needed=int(amount_needed),
            amount_have=have,
            amount_split=to_split,
        )

    def merge_matched_pairs(self, collateral: str, yes_token: str, no_token: str) -> Outcome:
        mark = len(self.session.events)
        try:
            base = self.session.token(collateral)
            fresh = self.balances.refresh([yes_token, no_token])
            yes_have = fresh[yes_token.strip().lower()]
            no_have = fresh[no_token.strip().lower()]
            mergeable = min(yes_have, no_have)
            if mergeable <= 0:
                LOGGER.info("merge_nothing collateral=%s yes=%s no=%s", base.symbol, yes_have, no_have)
                return Outcome.ok("nothing to merge", collateral=base.address, merged="0")
            self.balances.ensure_allowance(yes_token, self.adapter, mergeable)
            self.balances.ensure_allowance(no_token, self.adapter, mergeable)
            self.session.transact(
                f"merge:{base.symbol}",
                self.session.chain.merge_positions,
                self.adapter,
                self.proposal,
                base.address,
                mergeable,
                collateral=base.address,
                amount=mergeable,
            )
        except Exception as exc:
            LOGGER.error("merge_failed collateral=%s error=%s", collateral, exc)
            outcome = Outcome.fail(f"merge failed: {exc}", exception_payload(exc), collateral=collateral)
            outcome.events = self.session.events_since(mark)
            return outcome
        LOGGER.info("merge_done collateral=%s amount=%s", base.symbol, mergeable)
        outcome = Outcome.ok(
            "merged",
            collateral=base.address,
            merged=str(mergeable),
            yesBefore=str(yes_have),
            noBefore=str(no_have),
        )
        outcome.events = self.session.events_since(mark)
        return outcome

    def merge_proposal(self, tokens: ProposalTokens) -> dict[str, Outcome]:
        return {
            "company": self.merge_matched_pairs(tokens.company, tokens.yes_company, tokens.no_company),
            "currency": self.merge_matched_pairs(tokens.currency, tokens.yes_currency, tokens.no_currency),
        }
