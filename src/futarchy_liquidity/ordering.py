from __future__ import annotations

from typing import Any

from futarchy_liquidity.errors import InvalidAddress
from futarchy_liquidity.models import AmmPair, is_address


def normalize_address(raw: Any, field: str = "address") -> str:
    if not is_address(raw):
        raise InvalidAddress(raw, field)
    return str(raw).strip().lower()


class TokenOrderNormalizer:
    """Maps a caller's (tokenA, tokenB) to the AMM's ascending-address order.

    Every consumer of a pair (pool initialization, deposit amounts and price
    read-back) must go through the same AmmPair, so results are cached per
    logical pair.
    """

    def __init__(self) -> None:
        self._pairs: dict[tuple[str, str], AmmPair] = {}

    def normalize(self, token_a: str, token_b: str) -> AmmPair:
        a = normalize_address(token_a, "token_a")
        b = normalize_address(token_b, "token_b")
        if a == b:
            raise InvalidAddress(token_b, "token_b (same as token_a)")
        key = (a, b)
        cached = self._pairs.get(key)
        if cached is not None:
            return cached
        if a < b:
            pair = AmmPair(token0=a, token1=b, inverted=False)
        else:
            pair = AmmPair(token0=b, token1=a, inverted=True)
        self._pairs[key] = pair
        return pair

    def __len__(self) -> int:
        return len(self._pairs)
