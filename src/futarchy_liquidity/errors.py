from __future__ import annotations

from typing import Any


class LiquidityError(Exception):
    """Base error for pool setup and liquidity operations."""

    code = "liquidity_error"

    def payload(self) -> dict[str, Any]:
        return {"type": self.code, "error": str(self)}


class ConfigError(LiquidityError):
    code = "config_error"


class InvalidAddress(LiquidityError):
    code = "invalid_address"

    def __init__(self, address: Any, field: str = "address") -> None:
        super().__init__(f"invalid {field}: {address!r}")
        self.address = address
        self.field = field

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "field": self.field, "address": str(self.address)}


class InvalidPercentage(LiquidityError):
    code = "invalid_percentage"

    def __init__(self, percentage: Any) -> None:
        super().__init__(f"percentage must be between 1 and 100, got {percentage!r}")
        self.percentage = percentage


class MarketParameterError(LiquidityError):
    code = "market_parameter_error"


class PriceModelError(LiquidityError):
    code = "price_model_error"

    def __init__(self, expected: float, actual: float, deviation: float) -> None:
        super().__init__(
            f"conditional prices do not reproduce spot: expected={expected} actual={actual} deviation={deviation:.6f}"
        )
        self.expected = expected
        self.actual = actual
        self.deviation = deviation


class PriceInconsistency(LiquidityError):
    """Raised only to carry details into a warning; callers log and continue."""

    code = "price_inconsistency"

    def __init__(self, pool: str, expected: float, actual: float, deviation: float) -> None:
        super().__init__(
            f"pool {pool} price {actual} deviates from expected {expected} by {deviation * 100:.2f}%"
        )
        self.pool = pool
        self.expected = expected
        self.actual = actual
        self.deviation = deviation

    def payload(self) -> dict[str, Any]:
        return {
            **super().payload(),
            "pool": self.pool,
            "expected": self.expected,
            "actual": self.actual,
            "deviation": self.deviation,
        }


class InsufficientBalance(LiquidityError):
    code = "insufficient_balance"

    def __init__(self, token: str, symbol: str, have: int, need: int) -> None:
        self.token = token
        self.symbol = symbol
        self.have = have
        self.need = need
        self.shortfall = max(0, need - have)
        super().__init__(
            f"insufficient {symbol} ({token}): have={have} need={need} shortfall={self.shortfall}"
        )

    def payload(self) -> dict[str, Any]:
        return {
            **super().payload(),
            "token": self.token,
            "symbol": self.symbol,
            "have": str(self.have),
            "need": str(self.need),
            "shortfall": str(self.shortfall),
        }


class InsufficientUnderlying(InsufficientBalance):
    code = "insufficient_underlying"

    def __init__(self, token: str, symbol: str, have: int, need: int, conditional: str) -> None:
        super().__init__(token, symbol, have, need)
        self.conditional = conditional

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "conditional": self.conditional}


class TransactionRevert(LiquidityError):
    code = "transaction_revert"

    def __init__(self, label: str, reason: str, tx_hash: str | None = None) -> None:
        message = f"{label} failed: {reason}"
        if tx_hash:
            message = f"{message} tx={tx_hash}"
        super().__init__(message)
        self.label = label
        self.reason = reason
        self.tx_hash = tx_hash

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "label": self.label, "txHash": self.tx_hash}


class OwnershipMismatch(LiquidityError):
    code = "ownership_mismatch"

    def __init__(self, token_id: int, owner: str, account: str) -> None:
        super().__init__(f"position {token_id} is owned by {owner}, not {account}")
        self.token_id = token_id
        self.owner = owner
        self.account = account

    def payload(self) -> dict[str, Any]:
        return {**super().payload(), "tokenId": self.token_id, "owner": self.owner}


class LifecycleError(LiquidityError):
    code = "lifecycle_error"


def exception_payload(exc: BaseException) -> dict[str, Any]:
    if isinstance(exc, LiquidityError):
        return exc.payload()
    return {"type": exc.__class__.__name__, "error": str(exc)}
