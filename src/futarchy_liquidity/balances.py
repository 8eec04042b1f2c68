from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
from typing import Iterable

from futarchy_liquidity.errors import InsufficientBalance
from futarchy_liquidity.session import Session


LOGGER = logging.getLogger("futarchy_liquidity")


def shortfall(need: int, have: int) -> int:
    return max(0, int(need) - int(have))


class BalanceVerifier:
    def __init__(self, session: Session) -> None:
        self.session = session

    def have(self, token: str) -> int:
        meta = self.session.token(token)
        amount = int(self.session.chain.balance_of(meta.address, self.session.account))
        self.session.record_balance(meta.address, amount)
        return amount

    def refresh(self, tokens: Iterable[str]) -> dict[str, int]:
        """Fresh balances for several tokens; the reads are independent and run concurrently."""
        unique = list(dict.fromkeys(token.strip().lower() for token in tokens))
        if not unique:
            return {}
        for token in unique:
            self.session.token(token)
        workers = max(1, min(self.session.config.balance_workers, len(unique)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            amounts = list(pool.map(self.have, unique))
        return dict(zip(unique, amounts))

    def require(self, token: str, need: int) -> int:
        have = self.have(token)
        if have < need:
            meta = self.session.token(token)
            LOGGER.error(
                "balance_short token=%s symbol=%s have=%s need=%s shortfall=%s",
                meta.address,
                meta.symbol,
                have,
                need,
                shortfall(need, have),
            )
            raise InsufficientBalance(meta.address, meta.symbol, have, int(need))
        return have

    def ensure_allowance(self, token: str, spender: str, amount: int) -> bool:
        """Approve ``spender`` for ``amount`` when the current allowance is lower.

        A non-zero allowance is reset to zero first. Returns True when an
        approval was sent.
        """
        meta = self.session.token(token)
        current = int(self.session.chain.allowance(meta.address, self.session.account, spender))
        if current >= amount:
            return False
        if current > 0:
            LOGGER.info("allowance_reset token=%s spender=%s current=%s", meta.symbol, spender, current)
            self.session.transact(
                f"approve_reset:{meta.symbol}",
                self.session.chain.approve,
                meta.address,
                spender,
                0,
                token=meta.address,
                spender=spender,
            )
        self.session.transact(
            f"approve:{meta.symbol}",
            self.session.chain.approve,
            meta.address,
            spender,
            int(amount),
            token=meta.address,
            spender=spender,
            amount=int(amount),
        )
        LOGGER.info("allowance_set token=%s spender=%s amount=%s", meta.symbol, spender, amount)
        return True
