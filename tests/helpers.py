from __future__ import annotations

from dataclasses import replace
import math
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from futarchy_liquidity.config import load_config  # noqa: E402
from futarchy_liquidity.errors import TransactionRevert  # noqa: E402
from futarchy_liquidity.models import Position, ProposalTokens, TxReceipt  # noqa: E402
from futarchy_liquidity.pricing import sqrt_price_x96  # noqa: E402


ACCOUNT = "0x" + "a" * 40
OTHER = "0x" + "b" * 40
PROPOSAL = "0x" + "5" * 40
ADAPTER = "0x" + "7" * 40
POSITION_MANAGER = "0x" + "9" * 40

COMPANY = "0x" + "3" * 40
CURRENCY = "0x" + "4" * 40
YES_COMPANY = "0x" + "e" * 40
NO_COMPANY = "0x" + "1" * 40
YES_CURRENCY = "0x" + "2" * 40
NO_CURRENCY = "0x" + "d" * 40

MUTATING = {
    "approve",
    "create_and_initialize_pool",
    "mint",
    "decrease_liquidity",
    "collect",
    "burn",
    "split_position",
    "merge_positions",
}


def test_config(**kwargs):
    cfg = load_config()
    base = replace(
        cfg,
        private_key="",
        position_manager=POSITION_MANAGER,
        adapter=ADAPTER,
        database_path=":memory:",
        pool_lookup_delay_seconds=0.0,
    )
    return replace(base, **kwargs)


class FakeChain:
    """In-memory stand-in for ChainClient with ERC-20, pool, position and adapter state."""

    def __init__(self, account: str = ACCOUNT) -> None:
        self.account = account
        self.tokens: dict[str, tuple[str, int]] = {}
        self.balances: dict[tuple[str, str], int] = {}
        self.allowances: dict[tuple[str, str, str], int] = {}
        self.pools: dict[tuple[str, str], str] = {}
        self.pool_state: dict[str, dict[str, int]] = {}
        self.positions: dict[int, Position] = {}
        self.reserves: dict[int, tuple[int, int]] = {}
        self.owners: dict[int, str] = {}
        self.splits: dict[str, tuple[str, str]] = {}
        self.proposals: dict[str, ProposalTokens] = {}
        self.calls: list[tuple] = []
        self.fail_on: set[str] = set()
        self.fail_ids: set[int] = set()
        self.split_shortfall = 0
        self.sqrt_after_mint: int | None = None
        self._tx_counter = 0
        self._next_token_id = 1000
        self._next_pool = 1

    # setup helpers

    def add_token(self, address: str, symbol: str, decimals: int = 18, balance: int = 0) -> str:
        self.tokens[address] = (symbol, decimals)
        if balance:
            self.balances[(address, self.account)] = balance
        return address

    def set_balance(self, token: str, amount: int, owner: str | None = None) -> None:
        self.balances[(token, owner or self.account)] = amount

    def add_pool(self, token_a: str, token_b: str, sqrt_value: int, tick_spacing: int = 60) -> str:
        address = "0x" + f"{self._next_pool:040x}"
        self._next_pool += 1
        self.pools[tuple(sorted((token_a, token_b)))] = address
        self.pool_state[address] = {"sqrt": sqrt_value, "spacing": tick_spacing}
        return address

    def add_position(
        self,
        token0: str,
        token1: str,
        liquidity: int,
        owner: str | None = None,
        owed0: int = 0,
        owed1: int = 0,
        reserves: tuple[int, int] | None = None,
    ) -> int:
        token_id = self._next_token_id
        self._next_token_id += 1
        self.positions[token_id] = Position(
            token_id=token_id,
            token0=token0,
            token1=token1,
            tick_lower=-887220,
            tick_upper=887220,
            liquidity=liquidity,
            tokens_owed0=owed0,
            tokens_owed1=owed1,
        )
        self.reserves[token_id] = reserves or (liquidity, liquidity)
        self.owners[token_id] = owner or self.account
        return token_id

    def tx_methods(self) -> list[str]:
        return [call[0] for call in self.calls if call[0] in MUTATING]

    # internals

    def _receipt(self, method: str, *args) -> TxReceipt:
        self.calls.append((method, *args))
        if method in self.fail_on or (args and args[0] in self.fail_ids):
            raise TransactionRevert(method, "forced failure", f"0x{self._tx_counter:064x}")
        self._tx_counter += 1
        return TxReceipt(tx_hash=f"0x{self._tx_counter:064x}", status=1, block_number=self._tx_counter, gas_used=50_000)

    def _debit(self, token: str, owner: str, amount: int, spender: str | None = None) -> None:
        have = self.balances.get((token, owner), 0)
        if have < amount:
            raise TransactionRevert("transfer", f"balance {have} < {amount} for {token}")
        if spender is not None:
            allowed = self.allowances.get((token, owner, spender), 0)
            if allowed < amount:
                raise TransactionRevert("transferFrom", f"allowance {allowed} < {amount} for {token}")
            self.allowances[(token, owner, spender)] = allowed - amount
        self.balances[(token, owner)] = have - amount

    def _credit(self, token: str, owner: str, amount: int) -> None:
        self.balances[(token, owner)] = self.balances.get((token, owner), 0) + amount

    # erc20

    def token_symbol(self, token: str) -> str:
        self.calls.append(("token_symbol", token))
        return self.tokens[token][0]

    def token_decimals(self, token: str) -> int:
        return self.tokens[token][1]

    def balance_of(self, token: str, owner: str) -> int:
        self.calls.append(("balance_of", token, owner))
        return self.balances.get((token, owner), 0)

    def allowance(self, token: str, owner: str, spender: str) -> int:
        return self.allowances.get((token, owner, spender), 0)

    def approve(self, token: str, spender: str, amount: int) -> TxReceipt:
        receipt = self._receipt("approve", token, spender, amount)
        self.allowances[(token, self.account, spender)] = amount
        return receipt

    # pools

    def pool_by_pair(self, token0: str, token1: str) -> str | None:
        self.calls.append(("pool_by_pair", token0, token1))
        return self.pools.get(tuple(sorted((token0, token1))))

    def pool_sqrt_price_x96(self, pool: str) -> int:
        return self.pool_state[pool]["sqrt"]

    def pool_tick_spacing(self, pool: str) -> int:
        return self.pool_state[pool]["spacing"]

    def create_and_initialize_pool(self, token0: str, token1: str, sqrt_value: int) -> tuple[TxReceipt, str]:
        receipt = self._receipt("create_and_initialize_pool", token0, token1, sqrt_value)
        key = tuple(sorted((token0, token1)))
        pool = self.pools.get(key)
        if pool is None:
            pool = self.add_pool(token0, token1, sqrt_value)
        elif self.pool_state[pool]["sqrt"] == 0:
            self.pool_state[pool]["sqrt"] = sqrt_value
        return receipt, pool

    # positions

    def mint(self, token0, token1, tick_lower, tick_upper, amount0, amount1, recipient, deadline):
        receipt = self._receipt("mint", token0, token1, tick_lower, tick_upper, amount0, amount1, recipient, deadline)
        self._debit(token0, self.account, amount0, POSITION_MANAGER)
        self._debit(token1, self.account, amount1, POSITION_MANAGER)
        liquidity = max(1, math.isqrt(amount0 * amount1))
        token_id = self.add_position(token0, token1, liquidity, owner=recipient, reserves=(amount0, amount1))
        self.positions[token_id] = replace(self.positions[token_id], tick_lower=tick_lower, tick_upper=tick_upper)
        if self.sqrt_after_mint is not None:
            # a swap lands right after the mint
            pool = self.pools[tuple(sorted((token0, token1)))]
            self.pool_state[pool]["sqrt"] = self.sqrt_after_mint
        return receipt, token_id

    def position(self, token_id: int) -> Position:
        return self.positions[token_id]

    def position_ids(self, owner: str) -> list[int]:
        return [token_id for token_id, holder in self.owners.items() if holder == owner and token_id in self.positions]

    def owner_of(self, token_id: int) -> str:
        return self.owners[token_id]

    def decrease_liquidity(self, token_id: int, liquidity: int, deadline: int) -> TxReceipt:
        receipt = self._receipt("decrease_liquidity", token_id, liquidity, deadline)
        position = self.positions[token_id]
        if liquidity > position.liquidity:
            raise TransactionRevert("decrease_liquidity", "not enough liquidity", receipt.tx_hash)
        reserve0, reserve1 = self.reserves[token_id]
        out0 = reserve0 * liquidity // position.liquidity
        out1 = reserve1 * liquidity // position.liquidity
        self.reserves[token_id] = (reserve0 - out0, reserve1 - out1)
        self.positions[token_id] = replace(
            position,
            liquidity=position.liquidity - liquidity,
            tokens_owed0=position.tokens_owed0 + out0,
            tokens_owed1=position.tokens_owed1 + out1,
        )
        return receipt

    def collect(self, token_id: int, recipient: str) -> TxReceipt:
        receipt = self._receipt("collect", token_id, recipient)
        position = self.positions[token_id]
        self._credit(position.token0, recipient, position.tokens_owed0)
        self._credit(position.token1, recipient, position.tokens_owed1)
        self.positions[token_id] = replace(position, tokens_owed0=0, tokens_owed1=0)
        return receipt

    def burn(self, token_id: int) -> TxReceipt:
        receipt = self._receipt("burn", token_id)
        position = self.positions[token_id]
        if position.liquidity or position.tokens_owed0 or position.tokens_owed1:
            raise TransactionRevert("burn", "not cleared", receipt.tx_hash)
        del self.positions[token_id]
        return receipt

    # futarchy

    def split_position(self, adapter: str, proposal: str, collateral: str, amount: int) -> TxReceipt:
        receipt = self._receipt("split_position", adapter, proposal, collateral, amount)
        self._debit(collateral, self.account, amount, adapter)
        for outcome in self.splits[collateral]:
            scaled = amount * 10 ** self.tokens[outcome][1] // 10 ** self.tokens[collateral][1]
            self._credit(outcome, self.account, max(0, scaled - self.split_shortfall))
        return receipt

    def merge_positions(self, adapter: str, proposal: str, collateral: str, amount: int) -> TxReceipt:
        receipt = self._receipt("merge_positions", adapter, proposal, collateral, amount)
        for outcome in self.splits[collateral]:
            self._debit(outcome, self.account, amount, adapter)
        self._credit(collateral, self.account, amount)
        return receipt

    def proposal_tokens(self, proposal: str) -> ProposalTokens:
        return self.proposals[proposal]


def build_proposal_chain(
    company_balance: int = 0,
    currency_balance: int = 0,
    conditional_balance: int = 0,
) -> tuple[FakeChain, ProposalTokens]:
    chain = FakeChain()
    chain.add_token(COMPANY, "GNO", balance=company_balance)
    chain.add_token(CURRENCY, "sDAI", balance=currency_balance)
    for address, symbol in (
        (YES_COMPANY, "YES_GNO"),
        (NO_COMPANY, "NO_GNO"),
        (YES_CURRENCY, "YES_sDAI"),
        (NO_CURRENCY, "NO_sDAI"),
    ):
        chain.add_token(address, symbol, balance=conditional_balance)
    chain.splits[COMPANY] = (YES_COMPANY, NO_COMPANY)
    chain.splits[CURRENCY] = (YES_CURRENCY, NO_CURRENCY)
    tokens = ProposalTokens(
        proposal=PROPOSAL,
        market_name="Will GNO adopt the proposal?",
        company=COMPANY,
        currency=CURRENCY,
        yes_company=YES_COMPANY,
        no_company=NO_COMPANY,
        yes_currency=YES_CURRENCY,
        no_currency=NO_CURRENCY,
    )
    chain.proposals[PROPOSAL] = tokens
    return chain, tokens


def pool_sqrt_for_logical_price(price: float, token_a: str, token_b: str) -> int:
    """sqrtPriceX96 of a pool whose logical price (tokenB per tokenA) is ``price``, equal decimals."""
    scale = 10**18
    amount_a = scale
    amount_b = int(price * scale)
    if token_a < token_b:
        return sqrt_price_x96(amount_a, amount_b)
    return sqrt_price_x96(amount_b, amount_a)
