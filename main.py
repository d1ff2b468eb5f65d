#!/usr/bin/env python3
"""
Pool Revenue Calculator - Main Entry Point
Average TVL and realized / unrealized DAO revenue of a lending pool,
rebuilt from Deposit, Withdraw and Transfer logs

Version: 1.2.0
"""

import argparse
import sys
import time

from rich.console import Console
from rich.panel import Panel

from balance_ledger import parse_coefficient
from blockchain import BlockchainManager
from config import load_config, validate_config
from constants import VERSION
from display import ReportDisplay
from errors import RevenueCalculatorError, ValidationError
from revenue_calculator import RevenueCalculator
from utils import validate_input_parameters, format_error_message, parse_address_list

console = Console()


def build_parser():
    parser = argparse.ArgumentParser(
        prog="pool-revenue",
        description="Calculate time-weighted TVL and DAO revenue for a pool from on-chain events",
    )
    parser.add_argument("rpc_url", help="Ethereum RPC endpoint URL (archive node recommended)")
    parser.add_argument("pool_address", help="Pool contract address (0x...)")
    parser.add_argument("from_date", help="Start date, YYYY-MM-DD")
    parser.add_argument("to_date", help="End date, YYYY-MM-DD")
    parser.add_argument("interest_fee_bps", type=int, help="Interest fee in basis points (0-10000)")
    parser.add_argument("--dao-share-bps", type=int, required=True,
                        help="DAO share of the interest fee in basis points (0-10000)")
    parser.add_argument("--deploy-date", help="Pool deployment date, YYYY-MM-DD (skips the lookback search)")
    parser.add_argument("--treasury", help="Treasury address override")
    parser.add_argument("--revenue-share", action="store_true",
                        help="Also compute the revenue share of --addresses")
    parser.add_argument("--addresses", help="Comma separated addresses for --revenue-share")
    parser.add_argument("--rev-coeff", help="Revenue share coefficient between 0 and 1")
    parser.add_argument("--debug-share-price", action="store_true", help="Print the anchored share price trace")
    parser.add_argument("--config", help="Path to a JSON configuration file")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--debug", action="store_true", help="Verbose RPC and fetch output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser

def validate_args(args):
    """All input checks that need no network access"""
    errors = validate_input_parameters(
        args.pool_address, args.from_date, args.to_date, args.interest_fee_bps,
        dao_share_bps=args.dao_share_bps, deploy_date=args.deploy_date, treasury=args.treasury
    )
    if args.revenue_share:
        if not args.addresses:
            errors.append("--revenue-share requires --addresses")
        else:
            try:
                parse_address_list(args.addresses)
            except ValidationError as e:
                errors.extend(e.errors)
        if args.rev_coeff is None:
            errors.append("--revenue-share requires --rev-coeff")
        else:
            try:
                parse_coefficient(args.rev_coeff)
            except (ValueError, ZeroDivisionError):
                errors.append(f"--rev-coeff must be a number between 0 and 1, got {args.rev_coeff}")
    elif args.addresses or args.rev_coeff is not None:
        errors.append("--addresses and --rev-coeff are only used together with --revenue-share")
    return errors

def main(argv=None):
    """Parse arguments, run the calculation and print the report"""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ValidationError as e:
        console.print(f"[red]❌ {e}[/red]")
        return 1

    config_errors = validate_config(config)
    errors = validate_args(args)
    if config_errors or errors:
        console.print("[red]❌ Input validation failed:[/red]")
        for error in config_errors + errors:
            console.print(f"[red]   - {error}[/red]")
        return 1

    debug_mode = args.debug or config["display_settings"].get("debug_mode", False)
    display = ReportDisplay(config)
    if not args.json:
        console.print(display.create_header_panel())

    try:
        start_time = time.time()
        chain = BlockchainManager(args.rpc_url, config=config, debug_mode=debug_mode)
        calculator = RevenueCalculator(chain, config=config, debug_mode=debug_mode, quiet=args.json)
        report = calculator.calculate(
            args.pool_address,
            args.from_date,
            args.to_date,
            args.interest_fee_bps,
            dao_share_bps=args.dao_share_bps,
            deploy_date=args.deploy_date,
            treasury=args.treasury,
            revenue_share_addresses=args.addresses if args.revenue_share else None,
            revenue_share_coeff=args.rev_coeff if args.revenue_share else None,
            debug_share_price=args.debug_share_price,
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]👋 Calculation stopped by user[/yellow]")
        return 1
    except RevenueCalculatorError as e:
        console.print(Panel(format_error_message(e), title="❌ Calculation failed", border_style="red"))
        return 1
    except Exception as e:
        console.print(f"\n[red]❌ Unexpected error: {format_error_message(e)}[/red]")
        if debug_mode:
            import traceback
            traceback.print_exc()
        return 1

    if args.json:
        display.print_json(report)
    else:
        console.print(f"[dim]Processing time: {time.time() - start_time:.2f} seconds[/dim]\n")
        display.print_report(report)
    return 0

if __name__ == "__main__":
    """Entry point with proper exit code"""
    sys.exit(main())
