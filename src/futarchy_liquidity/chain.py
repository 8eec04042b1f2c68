from __future__ import annotations

import logging
import time
from typing import Any

from futarchy_liquidity.abis import (
    ERC20_ABI,
    FACTORY_ABI,
    FUTARCHY_ADAPTER_ABI,
    POOL_ABI,
    POSITION_MANAGER_ABI,
    PROPOSAL_ABI,
)
from futarchy_liquidity.config import LiquidityConfig
from futarchy_liquidity.errors import ConfigError, TransactionRevert
from futarchy_liquidity.models import ZERO_ADDRESS, Position, ProposalTokens, TxReceipt
from futarchy_liquidity.ordering import normalize_address


LOGGER = logging.getLogger("futarchy_liquidity")

MAX_UINT128 = 2**128 - 1


class ChainClient:
    """web3 access to the position manager, pools, ERC-20s, adapter and proposal.

    Every mutating call signs, sends and waits for the receipt before it
    returns; a receipt with status 0 raises TransactionRevert.
    """

    def __init__(self, config: LiquidityConfig) -> None:
        self.config = config
        self._w3 = None
        self._account: str | None = None
        self._factory: str | None = config.pool_factory or None

    # connection

    def _web3(self):
        if self._w3 is not None:
            return self._w3
        try:
            from web3 import Web3
            from web3.middleware import ExtraDataToPOAMiddleware
        except Exception as exc:
            raise RuntimeError("web3 is required for chain access. Install with `pip install web3`.") from exc

        provider = Web3.HTTPProvider(
            self.config.rpc_url,
            request_kwargs={"timeout": max(5.0, self.config.api_timeout_seconds)},
        )
        w3 = Web3(provider)
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self._w3 = w3
        return w3

    @staticmethod
    def _checksum(address: str) -> str:
        from web3 import Web3

        return Web3.to_checksum_address(address)

    def _contract(self, address: str, abi: list[dict[str, Any]]):
        return self._web3().eth.contract(address=self._checksum(address), abi=abi)

    @property
    def account(self) -> str:
        if self._account is None:
            if not self.config.signing_enabled:
                raise ConfigError("PRIVATE_KEY missing")
            from eth_account import Account

            self._account = Account.from_key(self.config.private_key).address.lower()
        return self._account

    # transactions

    @staticmethod
    def _receipt_field(receipt: Any, key: str) -> Any:
        if isinstance(receipt, dict):
            return receipt.get(key)
        return getattr(receipt, key, None)

    def _send_function_tx(self, fn, label: str) -> tuple[TxReceipt, Any]:
        from eth_account import Account
        from web3 import Web3

        w3 = self._web3()
        signer = self._checksum(self.account)
        try:
            nonce = int(w3.eth.get_transaction_count(signer, "pending"))
            gas_price = max(1, int(w3.eth.gas_price))
            tx = fn.build_transaction(
                {
                    "from": signer,
                    "nonce": nonce,
                    "chainId": int(self.config.chain_id),
                    "gasPrice": gas_price,
                }
            )
            gas_limit = int(tx.get("gas", 0) or 0)
            if gas_limit <= 0:
                gas_limit = int(w3.eth.estimate_gas(tx))
            tx["gas"] = max(self.config.min_gas_limit, int(gas_limit * self.config.gas_limit_multiplier))
            signed = Account.sign_transaction(tx, self.config.private_key)
            tx_hash = Web3.to_hex(w3.eth.send_raw_transaction(signed.raw_transaction))
        except Exception as exc:
            raise TransactionRevert(label, f"{exc.__class__.__name__}: {exc}") from exc

        LOGGER.info("tx_sent label=%s hash=%s nonce=%s", label, tx_hash, nonce)
        try:
            raw_receipt = w3.eth.wait_for_transaction_receipt(tx_hash)
        except Exception as exc:
            raise TransactionRevert(label, f"receipt unavailable: {exc}", tx_hash) from exc

        receipt = TxReceipt(
            tx_hash=tx_hash,
            status=int(self._receipt_field(raw_receipt, "status") or 0),
            block_number=self._receipt_field(raw_receipt, "blockNumber"),
            gas_used=self._receipt_field(raw_receipt, "gasUsed"),
        )
        if receipt.status != 1:
            raise TransactionRevert(label, "transaction reverted", tx_hash)
        LOGGER.info(
            "tx_confirmed label=%s hash=%s block=%s gas_used=%s",
            label,
            tx_hash,
            receipt.block_number,
            receipt.gas_used,
        )
        return receipt, raw_receipt

    # erc20

    def token_symbol(self, token: str) -> str:
        return str(self._contract(token, ERC20_ABI).functions.symbol().call())

    def token_decimals(self, token: str) -> int:
        return int(self._contract(token, ERC20_ABI).functions.decimals().call())

    def balance_of(self, token: str, owner: str) -> int:
        return int(self._contract(token, ERC20_ABI).functions.balanceOf(self._checksum(owner)).call())

    def allowance(self, token: str, owner: str, spender: str) -> int:
        contract = self._contract(token, ERC20_ABI)
        return int(contract.functions.allowance(self._checksum(owner), self._checksum(spender)).call())

    def approve(self, token: str, spender: str, amount: int) -> TxReceipt:
        fn = self._contract(token, ERC20_ABI).functions.approve(self._checksum(spender), int(amount))
        receipt, _ = self._send_function_tx(fn, f"approve:{token}")
        return receipt

    # pools

    def _factory_address(self) -> str:
        if self._factory is None:
            manager = self._contract(self.config.position_manager, POSITION_MANAGER_ABI)
            self._factory = str(manager.functions.factory().call()).lower()
        return self._factory

    def pool_by_pair(self, token0: str, token1: str) -> str | None:
        factory = self._contract(self._factory_address(), FACTORY_ABI)
        pool = str(factory.functions.poolByPair(self._checksum(token0), self._checksum(token1)).call()).lower()
        if pool == ZERO_ADDRESS:
            return None
        return pool

    def pool_sqrt_price_x96(self, pool: str) -> int:
        state = self._contract(pool, POOL_ABI).functions.globalState().call()
        return int(state[0])

    def pool_tick_spacing(self, pool: str) -> int:
        return int(self._contract(pool, POOL_ABI).functions.tickSpacing().call())

    def create_and_initialize_pool(self, token0: str, token1: str, sqrt_price_x96: int) -> tuple[TxReceipt, str]:
        manager = self._contract(self.config.position_manager, POSITION_MANAGER_ABI)
        fn = manager.functions.createAndInitializePoolIfNecessary(
            self._checksum(token0), self._checksum(token1), int(sqrt_price_x96)
        )
        receipt, _ = self._send_function_tx(fn, "create_pool")
        for attempt in range(self.config.pool_lookup_attempts):
            pool = self.pool_by_pair(token0, token1)
            if pool is not None:
                return receipt, pool
            LOGGER.info("pool_lookup_retry attempt=%s token0=%s token1=%s", attempt + 1, token0, token1)
            time.sleep(self.config.pool_lookup_delay_seconds)
        raise TransactionRevert("create_pool", f"pool for {token0}/{token1} not found after creation", receipt.tx_hash)

    # positions

    def mint(
        self,
        token0: str,
        token1: str,
        tick_lower: int,
        tick_upper: int,
        amount0: int,
        amount1: int,
        recipient: str,
        deadline: int,
    ) -> tuple[TxReceipt, int | None]:
        from web3.logs import DISCARD

        manager = self._contract(self.config.position_manager, POSITION_MANAGER_ABI)
        params = (
            self._checksum(token0),
            self._checksum(token1),
            int(tick_lower),
            int(tick_upper),
            int(amount0),
            int(amount1),
            0,
            0,
            self._checksum(recipient),
            int(deadline),
        )
        receipt, raw_receipt = self._send_function_tx(manager.functions.mint(params), "mint")
        token_id: int | None = None
        for event in manager.events.Transfer().process_receipt(raw_receipt, errors=DISCARD):
            args = event["args"]
            if str(args["from"]).lower() == ZERO_ADDRESS and str(args["to"]).lower() == recipient.lower():
                token_id = int(args["tokenId"])
        return receipt, token_id

    def position(self, token_id: int) -> Position:
        manager = self._contract(self.config.position_manager, POSITION_MANAGER_ABI)
        raw = manager.functions.positions(int(token_id)).call()
        return Position(
            token_id=int(token_id),
            token0=str(raw[2]).lower(),
            token1=str(raw[3]).lower(),
            tick_lower=int(raw[4]),
            tick_upper=int(raw[5]),
            liquidity=int(raw[6]),
            tokens_owed0=int(raw[9]),
            tokens_owed1=int(raw[10]),
        )

    def position_ids(self, owner: str) -> list[int]:
        manager = self._contract(self.config.position_manager, POSITION_MANAGER_ABI)
        checksum = self._checksum(owner)
        count = int(manager.functions.balanceOf(checksum).call())
        return [int(manager.functions.tokenOfOwnerByIndex(checksum, index).call()) for index in range(count)]

    def owner_of(self, token_id: int) -> str:
        manager = self._contract(self.config.position_manager, POSITION_MANAGER_ABI)
        return str(manager.functions.ownerOf(int(token_id)).call()).lower()

    def decrease_liquidity(self, token_id: int, liquidity: int, deadline: int) -> TxReceipt:
        manager = self._contract(self.config.position_manager, POSITION_MANAGER_ABI)
        fn = manager.functions.decreaseLiquidity((int(token_id), int(liquidity), 0, 0, int(deadline)))
        receipt, _ = self._send_function_tx(fn, f"decrease:{token_id}")
        return receipt

    def collect(self, token_id: int, recipient: str) -> TxReceipt:
        manager = self._contract(self.config.position_manager, POSITION_MANAGER_ABI)
        fn = manager.functions.collect((int(token_id), self._checksum(recipient), MAX_UINT128, MAX_UINT128))
        receipt, _ = self._send_function_tx(fn, f"collect:{token_id}")
        return receipt

    def burn(self, token_id: int) -> TxReceipt:
        manager = self._contract(self.config.position_manager, POSITION_MANAGER_ABI)
        receipt, _ = self._send_function_tx(manager.functions.burn(int(token_id)), f"burn:{token_id}")
        return receipt

    # futarchy

    def split_position(self, adapter: str, proposal: str, collateral: str, amount: int) -> TxReceipt:
        contract = self._contract(adapter, FUTARCHY_ADAPTER_ABI)
        fn = contract.functions.splitPosition(self._checksum(proposal), self._checksum(collateral), int(amount))
        receipt, _ = self._send_function_tx(fn, f"split:{collateral}")
        return receipt

    def merge_positions(self, adapter: str, proposal: str, collateral: str, amount: int) -> TxReceipt:
        contract = self._contract(adapter, FUTARCHY_ADAPTER_ABI)
        fn = contract.functions.mergePositions(self._checksum(proposal), self._checksum(collateral), int(amount))
        receipt, _ = self._send_function_tx(fn, f"merge:{collateral}")
        return receipt

    def proposal_tokens(self, proposal: str) -> ProposalTokens:
        address = normalize_address(proposal, "proposal")
        contract = self._contract(address, PROPOSAL_ABI)
        outcomes = [str(contract.functions.wrappedOutcome(index).call()[0]).lower() for index in range(4)]
        try:
            market_name = str(contract.functions.marketName().call())
        except Exception as exc:
            LOGGER.warning("proposal_market_name_unavailable proposal=%s error=%s", address, exc)
            market_name = ""
        return ProposalTokens(
            proposal=address,
            market_name=market_name,
            company=str(contract.functions.collateralToken1().call()).lower(),
            currency=str(contract.functions.collateralToken2().call()).lower(),
            yes_company=outcomes[0],
            no_company=outcomes[1],
            yes_currency=outcomes[2],
            no_currency=outcomes[3],
        )
