#!/usr/bin/env python3

from __future__ import annotations

import argparse
import json
import logging
import math
import sys
from pathlib import Path

import structlog

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from flashlever.config import ExecutorConfig, load_config
from flashlever.core.descriptor import FULL_AMOUNT, SubAction, SwapDescriptor, SwapMode
from flashlever.integration import actions as act
from flashlever.integration.executor import Executor

NOW = 1_700_000_000
FEE_TIER = 3000


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(format="%(message)s", level=logging.DEBUG if verbose else logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _setup(ex: Executor, *, collateral: int) -> None:
    ex.ledger.list_market("WETH", 2, 8_000)
    ex.ledger.list_market("USDC", 1, 8_000)
    for asset in ("WETH", "USDC"):
        ex.mint("lp", asset, 10**12)
        ex.ledger.supply("lp", "lp", "lp", asset, 10**9)
    ex.constant_product.create_pool("lp", "USDC", 2_000_000, "WETH", 1_000_000)
    ex.concentrated.create_pool(
        "lp", "USDC", "WETH", FEE_TIER, sqrt_price_x96=math.isqrt((1 << 192) // 2), liquidity=10**6
    )
    ex.mint("alice", "WETH", collateral)


def _position(ex: Executor) -> str:
    return (
        f"supply WETH={ex.ledger.get_supply_balance('alice', 'WETH')} "
        f"debt USDC={ex.ledger.get_borrow_balance('alice', 'USDC')} "
        f"wallet USDC={ex.bank.get('alice', 'USDC')}"
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Open (and optionally close) a leveraged WETH long in memory")
    parser.add_argument("--config", type=Path, default=None, help="YAML executor config")
    parser.add_argument("--venue", choices=["cp", "cl"], default="cp", help="constant-product or concentrated pools")
    parser.add_argument("--collateral", type=int, default=1_000, help="WETH the user supplies up front")
    parser.add_argument("--amount", type=int, default=1_000, help="extra WETH exposure to buy with borrowed USDC")
    parser.add_argument("--slippage-bps", type=int, default=100, help="tolerance over the spot cost")
    parser.add_argument("--close", action="store_true", help="close the whole position afterwards")
    parser.add_argument("--print-batch", action="store_true", help="print the encoded open batch as JSON")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    configure_logging(args.verbose)

    cfg = load_config(args.config) if args.config else ExecutorConfig.from_env()
    ex = Executor(cfg, clock=lambda: NOW)
    _setup(ex, collateral=args.collateral)

    # Spot price is 2 USDC per WETH on both venues.
    limit = args.amount * 2 * (10_000 + args.slippage_bps) // 10_000 + 1
    fee_tiers = (FEE_TIER,) if args.venue == "cl" else ()
    build = act.leverage_concentrated if args.venue == "cl" else act.leverage_constant_product
    open_long = SwapDescriptor(
        mode=SwapMode.EXACT_OUTPUT,
        sub_action=SubAction.OPEN_LONG,
        path=("USDC", "WETH"),
        amount_specified=args.amount,
        amount_limit=limit,
        deadline=NOW + 60,
        fee_tiers=fee_tiers,
    )
    batch = [act.supply("WETH", args.collateral), build(open_long)]
    if args.print_batch:
        print(json.dumps(act.batch_to_list(batch), indent=2))

    res = ex.execute("alice", batch)
    if not res.ok:
        print(f"[leverage-demo] FAIL (open): {res.error}")
        return 1
    settled = res.results[1]
    print(f"[leverage-demo] opened: paid {settled.amount_in} USDC for {settled.amount_out} WETH (limit {limit})")
    print(f"[leverage-demo] position: {_position(ex)}")

    if args.close:
        close_long = SwapDescriptor(
            mode=SwapMode.EXACT_INPUT,
            sub_action=SubAction.CLOSE_LONG,
            path=("WETH", "USDC"),
            amount_specified=FULL_AMOUNT,
            amount_limit=settled.amount_in,
            deadline=NOW + 60,
            fee_tiers=fee_tiers,
        )
        res = ex.execute("alice", [build(close_long)])
        if not res.ok:
            print(f"[leverage-demo] FAIL (close): {res.error}")
            return 1
        closed = res.results[0]
        print(f"[leverage-demo] closed: sold {closed.amount_in} WETH for {closed.amount_out} USDC")
        print(f"[leverage-demo] position: {_position(ex)}")

    print("[leverage-demo] OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
