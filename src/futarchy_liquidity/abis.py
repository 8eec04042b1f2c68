from __future__ import annotations

from typing import Any


def _param(name: str, type_: str, components: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    out: dict[str, Any] = {"internalType": type_, "name": name, "type": type_}
    if components is not None:
        out["components"] = components
    return out


def _function(
    name: str,
    inputs: list[dict[str, Any]],
    outputs: list[dict[str, Any]],
    mutability: str = "view",
) -> dict[str, Any]:
    return {
        "inputs": inputs,
        "name": name,
        "outputs": outputs,
        "stateMutability": mutability,
        "type": "function",
    }


ERC20_ABI: list[dict[str, Any]] = [
    _function("symbol", [], [_param("", "string")]),
    _function("decimals", [], [_param("", "uint8")]),
    _function("balanceOf", [_param("account", "address")], [_param("", "uint256")]),
    _function(
        "allowance",
        [_param("owner", "address"), _param("spender", "address")],
        [_param("", "uint256")],
    ),
    _function(
        "approve",
        [_param("spender", "address"), _param("amount", "uint256")],
        [_param("", "bool")],
        "nonpayable",
    ),
]

MINT_PARAMS = [
    _param("token0", "address"),
    _param("token1", "address"),
    _param("tickLower", "int24"),
    _param("tickUpper", "int24"),
    _param("amount0Desired", "uint256"),
    _param("amount1Desired", "uint256"),
    _param("amount0Min", "uint256"),
    _param("amount1Min", "uint256"),
    _param("recipient", "address"),
    _param("deadline", "uint256"),
]

DECREASE_PARAMS = [
    _param("tokenId", "uint256"),
    _param("liquidity", "uint128"),
    _param("amount0Min", "uint256"),
    _param("amount1Min", "uint256"),
    _param("deadline", "uint256"),
]

COLLECT_PARAMS = [
    _param("tokenId", "uint256"),
    _param("recipient", "address"),
    _param("amount0Max", "uint128"),
    _param("amount1Max", "uint128"),
]

POSITION_MANAGER_ABI: list[dict[str, Any]] = [
    _function("factory", [], [_param("", "address")]),
    _function(
        "createAndInitializePoolIfNecessary",
        [_param("token0", "address"), _param("token1", "address"), _param("sqrtPriceX96", "uint160")],
        [_param("pool", "address")],
        "payable",
    ),
    _function(
        "mint",
        [_param("params", "tuple", MINT_PARAMS)],
        [
            _param("tokenId", "uint256"),
            _param("liquidity", "uint128"),
            _param("amount0", "uint256"),
            _param("amount1", "uint256"),
        ],
        "payable",
    ),
    _function(
        "decreaseLiquidity",
        [_param("params", "tuple", DECREASE_PARAMS)],
        [_param("amount0", "uint256"), _param("amount1", "uint256")],
        "payable",
    ),
    _function(
        "collect",
        [_param("params", "tuple", COLLECT_PARAMS)],
        [_param("amount0", "uint256"), _param("amount1", "uint256")],
        "payable",
    ),
    _function("burn", [_param("tokenId", "uint256")], [], "payable"),
    _function(
        "positions",
        [_param("tokenId", "uint256")],
        [
            _param("nonce", "uint88"),
            _param("operator", "address"),
            _param("token0", "address"),
            _param("token1", "address"),
            _param("tickLower", "int24"),
            _param("tickUpper", "int24"),
            _param("liquidity", "uint128"),
            _param("feeGrowthInside0LastX128", "uint256"),
            _param("feeGrowthInside1LastX128", "uint256"),
            _param("tokensOwed0", "uint128"),
            _param("tokensOwed1", "uint128"),
        ],
    ),
    _function("balanceOf", [_param("owner", "address")], [_param("", "uint256")]),
    _function(
        "tokenOfOwnerByIndex",
        [_param("owner", "address"), _param("index", "uint256")],
        [_param("", "uint256")],
    ),
    _function("ownerOf", [_param("tokenId", "uint256")], [_param("", "address")]),
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "from", "type": "address"},
            {"indexed": True, "internalType": "address", "name": "to", "type": "address"},
            {"indexed": True, "internalType": "uint256", "name": "tokenId", "type": "uint256"},
        ],
        "name": "Transfer",
        "type": "event",
    },
]

FACTORY_ABI: list[dict[str, Any]] = [
    _function(
        "poolByPair",
        [_param("tokenA", "address"), _param("tokenB", "address")],
        [_param("pool", "address")],
    ),
]

POOL_ABI: list[dict[str, Any]] = [
    _function(
        "globalState",
        [],
        [
            _param("price", "uint160"),
            _param("tick", "int24"),
            _param("fee", "uint16"),
            _param("timepointIndex", "uint16"),
            _param("communityFeeToken0", "uint8"),
            _param("communityFeeToken1", "uint8"),
            _param("unlocked", "bool"),
        ],
    ),
    _function("tickSpacing", [], [_param("", "int24")]),
]

FUTARCHY_ADAPTER_ABI: list[dict[str, Any]] = [
    _function(
        "splitPosition",
        [_param("proposal", "address"), _param("collateralToken", "address"), _param("amount", "uint256")],
        [],
        "nonpayable",
    ),
    _function(
        "mergePositions",
        [_param("proposal", "address"), _param("collateralToken", "address"), _param("amount", "uint256")],
        [],
        "nonpayable",
    ),
]

PROPOSAL_ABI: list[dict[str, Any]] = [
    _function("collateralToken1", [], [_param("", "address")]),
    _function("collateralToken2", [], [_param("", "address")]),
    _function("marketName", [], [_param("", "string")]),
    _function(
        "wrappedOutcome",
        [_param("index", "uint256")],
        [_param("wrapped1155", "address"), _param("data", "bytes")],
    ),
]
