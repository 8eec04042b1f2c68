from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Iterable

from futarchy_liquidity.balances import BalanceVerifier
from futarchy_liquidity.chain import ChainClient
from futarchy_liquidity.config import LiquidityConfig, load_config
from futarchy_liquidity.errors import LiquidityError
from futarchy_liquidity.lifecycle import LiquidityLifecycleManager
from futarchy_liquidity.models import BatchResult, MarketParameters, Outcome, SetupMode, utc_stamp
from futarchy_liquidity.orchestrator import BatchOrchestrator
from futarchy_liquidity.pricing import POOL_LAYOUT, PriceEngine
from futarchy_liquidity.session import Session
from futarchy_liquidity.setup_config import load_removal_plan, load_setup_config
from futarchy_liquidity.storage import Storage


LOGGER = logging.getLogger("futarchy_liquidity")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for noisy in ("urllib3", "web3", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.ERROR)


def _prompt(question: str) -> bool:
    answer = input(f"{question} [y/N] ").strip().lower()
    return answer in {"y", "yes"}


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _open(config: LiquidityConfig) -> tuple[Session, Storage]:
    chain = ChainClient(config)
    return Session(chain, config), Storage(config.database_path)


def _finish_single(storage: Storage, operation: str, item: str, outcome: Outcome) -> int:
    result = BatchResult.from_outcome(item, outcome)
    run_id = f"{operation}-{utc_stamp()}"
    storage.record_events(run_id, outcome.events)
    storage.record_result(run_id, operation, result)
    _print(outcome.to_dict())
    return 2 if outcome.failed else 0


def _setup_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    try:
        setup = load_setup_config(args.config, config.adapter, config.company_token, config.currency_token)
    except LiquidityError as exc:
        LOGGER.error("setup config rejected: %s", exc)
        return 2
    mode = SetupMode(args.mode)
    session, storage = _open(config)
    try:
        orchestrator = BatchOrchestrator(
            session,
            storage=storage,
            confirm=_prompt if mode == SetupMode.SEMI_AUTOMATIC else None,
            artifact_dir=args.output or config.artifact_dir,
        )
        report = orchestrator.setup_pools(setup, mode)
        _print(report.to_dict())
        return 2 if report.summary.failed else 0
    except Exception as exc:
        LOGGER.error("setup failed: %s", exc)
        return 2
    finally:
        storage.close()


def _prices_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    try:
        if args.config:
            params = load_setup_config(args.config, config.adapter).market_parameters
        else:
            params = MarketParameters(args.spot, args.probability, args.impact / 100.0)
        engine = PriceEngine(params, tolerance=config.model_tolerance)
        yes_price, no_price = engine.conditional_prices()
        prices = engine.pool_prices()
    except LiquidityError as exc:
        LOGGER.error("price model rejected: %s", exc)
        return 2
    _print(
        {
            "spotPrice": params.spot_price,
            "eventProbability": params.event_probability,
            "impact": params.impact,
            "yesPrice": yes_price,
            "noPrice": no_price,
            "pools": [
                {"poolIndex": index, "name": name, "type": kind.value, "price": prices[index]}
                for index, name, kind, _, _ in POOL_LAYOUT
            ],
        }
    )
    return 0


def _add_liquidity_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    if args.amount_a is None and args.amount_b is None:
        LOGGER.error("--amount-a or --amount-b is required")
        return 2
    session, storage = _open(config)
    try:
        manager = LiquidityLifecycleManager(session, BalanceVerifier(session))
        outcome = manager.add_liquidity(args.token_a, args.token_b, args.amount_a, args.amount_b)
        return _finish_single(storage, "add-liquidity", f"{args.token_a}/{args.token_b}", outcome)
    except Exception as exc:
        LOGGER.error("add-liquidity failed: %s", exc)
        return 2
    finally:
        storage.close()


def _remove_position_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    session, storage = _open(config)
    try:
        manager = LiquidityLifecycleManager(session, BalanceVerifier(session))
        outcome = manager.remove_position(args.token_id, args.percent)
        return _finish_single(storage, "remove-position", str(args.token_id), outcome)
    except Exception as exc:
        LOGGER.error("remove-position failed: %s", exc)
        return 2
    finally:
        storage.close()


def _remove_pool_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    session, storage = _open(config)
    try:
        manager = LiquidityLifecycleManager(session, BalanceVerifier(session))
        outcome = manager.remove_all_from_pool(args.pool, args.percent)
        return _finish_single(storage, "remove-pool", args.pool, outcome)
    except Exception as exc:
        LOGGER.error("remove-pool failed: %s", exc)
        return 2
    finally:
        storage.close()


def _collect_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    session, storage = _open(config)
    try:
        manager = LiquidityLifecycleManager(session, BalanceVerifier(session))
        outcome = manager.collect_from_pool(args.pool)
        return _finish_single(storage, "collect", args.pool, outcome)
    except Exception as exc:
        LOGGER.error("collect failed: %s", exc)
        return 2
    finally:
        storage.close()


def _remove_batch_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    try:
        plan = load_removal_plan(args.config)
    except LiquidityError as exc:
        LOGGER.error("removal config rejected: %s", exc)
        return 2
    session, storage = _open(config)
    try:
        orchestrator = BatchOrchestrator(
            session,
            storage=storage,
            confirm=_prompt if plan.confirm_before_each else None,
            artifact_dir=args.output or config.artifact_dir,
        )
        report = orchestrator.remove_from_plan(plan)
        _print(report.to_dict())
        return 2 if report.summary.failed else 0
    except Exception as exc:
        LOGGER.error("remove-batch failed: %s", exc)
        return 2
    finally:
        storage.close()


def _merge_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    session, storage = _open(config)
    try:
        orchestrator = BatchOrchestrator(session, storage=storage)
        report = orchestrator.merge_proposal(args.proposal, args.adapter or config.adapter)
        _print(report.payload)
        return 2 if report.summary.failed else 0
    except Exception as exc:
        LOGGER.error("merge failed: %s", exc)
        return 2
    finally:
        storage.close()


def _positions_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    session = Session(ChainClient(config), config)
    manager = LiquidityLifecycleManager(session, BalanceVerifier(session))
    try:
        positions = manager.pool_positions(args.pool) if args.pool else manager.owned_positions()
    except Exception as exc:
        LOGGER.error("positions failed: %s", exc)
        return 2
    _print({"account": session.account, "positions": [position.to_dict() for position in positions]})
    return 0


def _report_command(args: argparse.Namespace) -> int:
    config = load_config()
    _setup_logging(config.log_level)
    storage = Storage(config.database_path)
    try:
        _print(storage.report(args.window))
    finally:
        storage.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="futarchy_liquidity", description="Futarchy pool setup and liquidity management"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    setup = sub.add_parser("setup", help="Create and fund the six futarchy pools of a proposal")
    setup.add_argument("config", help="Setup config (JSON or KEY=VALUE)")
    setup.add_argument(
        "--mode",
        choices=[mode.value for mode in SetupMode],
        default=SetupMode.AUTOMATIC.value,
        help="automatic skips existing pools unless forced; semi-automatic asks for each pool",
    )
    setup.add_argument("--output", default=None, help="Directory for the setup artifact")
    setup.set_defaults(func=_setup_command)

    prices = sub.add_parser("prices", help="Print the six pool prices without sending transactions")
    prices.add_argument("--config", default=None, help="Read market parameters from a setup config")
    prices.add_argument("--spot", type=float, default=100.0)
    prices.add_argument("--probability", type=float, default=0.5)
    prices.add_argument("--impact", type=float, default=10.0, help="Impact in percent")
    prices.set_defaults(func=_prices_command)

    add = sub.add_parser("add-liquidity", help="Deposit full-range liquidity into one pool")
    add.add_argument("token_a")
    add.add_argument("token_b")
    add.add_argument("--amount-a", type=float, default=None)
    add.add_argument("--amount-b", type=float, default=None)
    add.set_defaults(func=_add_liquidity_command)

    remove_position = sub.add_parser("remove-position", help="Remove liquidity from one position")
    remove_position.add_argument("token_id", type=int)
    remove_position.add_argument("--percent", type=int, default=100)
    remove_position.set_defaults(func=_remove_position_command)

    remove_pool = sub.add_parser("remove-pool", help="Remove liquidity from every owned position in a pool")
    remove_pool.add_argument("pool")
    remove_pool.add_argument("--percent", type=int, default=100)
    remove_pool.set_defaults(func=_remove_pool_command)

    collect = sub.add_parser("collect", help="Collect fees from every owned position in a pool")
    collect.add_argument("pool")
    collect.set_defaults(func=_collect_command)

    batch = sub.add_parser("remove-batch", help="Remove liquidity from pools listed in a config or setup artifact")
    batch.add_argument("config")
    batch.add_argument("--output", default=None, help="Directory for the removal artifact")
    batch.set_defaults(func=_remove_batch_command)

    merge = sub.add_parser("merge", help="Merge matched YES/NO pairs back into collateral")
    merge.add_argument("proposal")
    merge.add_argument("--adapter", default=None)
    merge.set_defaults(func=_merge_command)

    positions = sub.add_parser("positions", help="List owned positions")
    positions.add_argument("--pool", default=None)
    positions.set_defaults(func=_positions_command)

    report = sub.add_parser("report", help="Print transaction/result summary from SQLite")
    report.add_argument("--window", type=int, default=24, help="Window in hours")
    report.set_defaults(func=_report_command)
    return parser


def cli(argv: Iterable[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return int(args.func(args))


def main() -> None:
    raise SystemExit(cli())


if __name__ == "__main__":
    main()
