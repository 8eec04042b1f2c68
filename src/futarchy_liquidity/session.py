from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from futarchy_liquidity.config import LiquidityConfig
from futarchy_liquidity.models import AmmPair, BalanceState, Token, TxEvent, TxReceipt
from futarchy_liquidity.ordering import TokenOrderNormalizer, normalize_address


LOGGER = logging.getLogger("futarchy_liquidity")


class Session:
    """Explicit context for one run: chain access, token metadata, balance
    cache, pair ordering and the transactions sent so far."""

    def __init__(self, chain: Any, config: LiquidityConfig, account: str | None = None) -> None:
        self.chain = chain
        self.config = config
        self.account = normalize_address(account or chain.account, "account")
        self.normalizer = TokenOrderNormalizer()
        self.tokens: dict[str, Token] = {}
        self.events: list[TxEvent] = []
        self._lock = threading.Lock()

    def token(self, address: str) -> Token:
        key = normalize_address(address, "token")
        with self._lock:
            cached = self.tokens.get(key)
        if cached is not None:
            return cached
        try:
            symbol = str(self.chain.token_symbol(key))
        except Exception as exc:
            LOGGER.warning("token_symbol_unavailable token=%s error=%s", key, exc)
            symbol = key[:10]
        decimals = int(self.chain.token_decimals(key))
        token = Token(address=key, symbol=symbol, decimals=decimals)
        with self._lock:
            return self.tokens.setdefault(key, token)

    def pair(self, token_a: str, token_b: str) -> AmmPair:
        return self.normalizer.normalize(token_a, token_b)

    def record_balance(self, address: str, amount: int) -> Token:
        token = self.token(address)
        with self._lock:
            token.balance = int(amount)
            token.balance_state = BalanceState.FRESH
        return token

    def invalidate_balances(self) -> None:
        with self._lock:
            for token in self.tokens.values():
                if token.balance_state == BalanceState.FRESH:
                    token.balance_state = BalanceState.CACHED

    def deadline(self) -> int:
        return int(time.time()) + int(self.config.deadline_seconds)

    def transact(self, label: str, call: Callable[..., Any], *args: Any, **detail: Any) -> Any:
        """Run one mutating chain call and record its confirmed receipt.

        Cached balances are invalidated before the call so no sufficiency check
        can rely on a pre-transaction read.
        """
        self.invalidate_balances()
        result = call(*args)
        receipt = result[0] if isinstance(result, tuple) else result
        if isinstance(receipt, TxReceipt):
            event = TxEvent(
                label=label,
                tx_hash=receipt.tx_hash,
                status=receipt.status,
                block_number=receipt.block_number,
                gas_used=receipt.gas_used,
                detail={key: (str(value) if isinstance(value, int) else value) for key, value in detail.items()},
            )
            self.events.append(event)
        return result

    def events_since(self, mark: int) -> list[TxEvent]:
        return list(self.events[mark:])
