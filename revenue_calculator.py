#!/usr/bin/env python3
"""
Revenue Calculator Module for Pool Revenue Calculator
Runs the whole pipeline for one request:

  dates -> blocks -> logs (lookback search) -> snapshots -> anchor window
        -> interval accounting -> realized / unrealized split
        -> optional revenue share for an address set -> RevenueReport

Version: 1.2.0
"""

import time
from collections import Counter
from decimal import Decimal
from concurrent.futures import ThreadPoolExecutor

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeElapsedColumn

from accounting import (
    compute_interval_totals, average_tvl, apply_fees, coverage_ratio,
    require_treasury, count_treasury_mints, realized_revenue, unrealized_revenue
)
from anchoring import resolve_block_window, resolve_deploy_block, search_history, select_anchor_window
from balance_ledger import (
    balance_checkpoints, checkpoint_balances, weighted_balance_sum,
    addresses_weighted_tvl, parse_coefficient, revenue_share
)
from constants import DEFAULT_CONFIG
from errors import ValidationError
from log_fetcher import LogFetcher
from models import RevenueReport, RevenueShareResult
from utils import validate_input_parameters, parse_address_list

console = Console()


class RevenueCalculator:
    """Computes average TVL and DAO revenue for one pool over a date window"""

    def __init__(self, chain, config=None, debug_mode=False, quiet=False, sleep=time.sleep):
        self.chain = chain
        self.config = config or DEFAULT_CONFIG
        self.debug_mode = debug_mode
        self.quiet = quiet
        self.show_progress = self.config["display_settings"].get("show_progress", True) and not quiet
        self._sleep = sleep
        self._progress = None
        self._progress_task = None

    # ------------------------------------------------------------------
    # Output helpers
    # ------------------------------------------------------------------

    def _status(self, message, style="cyan"):
        if not self.quiet:
            console.print(f"[{style}]{message}[/{style}]")

    def _debug(self, message):
        if self.debug_mode and not self.quiet:
            console.print(f"[dim]{message}[/dim]")

    def _on_fetch_progress(self, info):
        if self._progress is not None and self._progress_task is not None:
            self._progress.update(
                self._progress_task,
                completed=info["blocks_done"],
                total=info["total_blocks"],
                description=f"[cyan]Fetching logs ({info['events_found']} events, {info['mode']})",
            )
        self._debug(
            f"   {info['progress'] * 100:.1f}% of blocks, {info['events_found']} events, "
            f"batch {info['batch_size']} ({info['mode']})"
        )

    def _fetch_logs(self, fetcher, pool_address, start_block, end_block):
        if not self.show_progress:
            return fetcher.fetch_logs(pool_address, start_block, end_block, include_transfers=True)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=console,
            transient=True
        ) as progress:
            self._progress = progress
            self._progress_task = progress.add_task("[cyan]Fetching logs...", total=end_block - start_block + 1)
            try:
                return fetcher.fetch_logs(pool_address, start_block, end_block, include_transfers=True)
            finally:
                self._progress = None
                self._progress_task = None

    def _block_timestamps(self, blocks):
        """Timestamps for a set of blocks, looked up concurrently"""
        blocks = sorted(set(blocks))
        max_workers = max(1, min(self.config["log_fetching"]["concurrency"], len(blocks)))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            timestamps = list(executor.map(self.chain.get_block_timestamp, blocks))
        return dict(zip(blocks, timestamps))

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def calculate(self, pool_address, from_date, to_date, interest_fee_bps, dao_share_bps=None,
                  deploy_date=None, treasury=None, revenue_share_addresses=None,
                  revenue_share_coeff=None, debug_share_price=False):
        """Run the full calculation and return a RevenueReport"""
        errors = validate_input_parameters(
            pool_address, from_date, to_date, interest_fee_bps,
            dao_share_bps=dao_share_bps, deploy_date=deploy_date, treasury=treasury
        )
        share_addresses, share_coefficient = self._validate_revenue_share(
            revenue_share_addresses, revenue_share_coeff, errors
        )
        if errors:
            raise ValidationError(errors)

        pool_address = pool_address.lower()
        revenue_config = self.config["revenue"]
        self._status(f"🚀 Starting calculation for pool {pool_address} from {from_date} to {to_date}", "bold green")

        # Pool parameters first: an unresolved treasury is fatal, no point fetching logs
        if dao_share_bps is None:
            dao_share_bps = self.chain.get_dao_split(pool_address)
        treasury = require_treasury(treasury or self.chain.get_treasury(pool_address))
        self._debug(f"   DAO split: {dao_share_bps} bps, treasury: {treasury}")

        # Dates -> blocks
        self._status("📅 Converting dates to blocks...")
        from_block, to_block = resolve_block_window(self.chain, from_date, to_date)
        from_timestamp = self.chain.get_block_timestamp(from_block)
        to_timestamp = self.chain.get_block_timestamp(to_block)
        self._status(f"✅ Date range converted to blocks: {from_block} to {to_block}", "green")

        deploy_block = None
        if deploy_date:
            deploy_block = resolve_deploy_block(self.chain, deploy_date, from_block)
            self._status(f"🏗️  Using deploy block {deploy_block} ({deploy_date})")

        # Logs -> snapshots
        fetcher = LogFetcher(self.chain, self.config, progress_callback=self._on_fetch_progress,
                             debug_mode=self.debug_mode, sleep=self._sleep)
        history = search_history(
            lambda start, end: self._fetch_logs(fetcher, pool_address, start, end),
            from_block, to_block, deploy_block=deploy_block, config=self.config,
            on_status=self._status
        )
        for warning in history.warnings:
            self._status(f"⚠️  {warning}", "yellow")

        event_counts = dict(Counter(log.kind for log in history.logs))
        self._status(f"✅ Replayed {len(history.replay.snapshots)} pool snapshots from {len(history.logs)} logs", "green")

        # Anchor and timestamps
        window = select_anchor_window(history.replay.snapshots, from_block, to_block)
        timestamps = self._block_timestamps(snapshot.block_number for snapshot in window.snapshots)
        self._debug(f"   Anchored blocks {window.start.block_number}-{window.end.block_number} "
                    f"({len(window.snapshots)} snapshots)")

        # Interval accounting
        self._status("💰 Calculating revenue and TVL...")
        totals = compute_interval_totals(window.snapshots, timestamps)
        avg_tvl = average_tvl(totals)
        revenue_with_fee, dao_revenue = apply_fees(totals.total_revenue, interest_fee_bps, dao_share_bps)

        minted = count_treasury_mints(history.logs, treasury, window.start.block_number, window.end.block_number)
        realized = realized_revenue(minted, window.end.share_price, dao_share_bps, revenue_config["realized_mode"])
        unrealized = unrealized_revenue(dao_revenue, realized)

        # Optional revenue share
        share_result = None
        if share_addresses:
            share_result = self._revenue_share(
                history.logs, share_addresses, share_coefficient, from_block, to_block,
                totals, avg_tvl, dao_revenue
            )

        # Token metadata
        underlying = self.chain.get_underlying_token(pool_address)
        decimals = self.chain.get_token_decimals(underlying)
        name = self.chain.get_token_name(underlying)

        self._status("🎉 Calculation completed successfully!", "bold green")

        return RevenueReport(
            pool=pool_address,
            from_date=from_date,
            to_date=to_date,
            underlying_token=underlying,
            underlying_name=name,
            token_decimals=decimals,
            interest_fee_bps=interest_fee_bps,
            dao_share_bps=dao_share_bps,
            treasury=treasury,
            avg_tvl_raw=avg_tvl,
            total_revenue_raw=totals.total_revenue,
            revenue_with_interest_fee_raw=revenue_with_fee,
            dao_revenue_raw=dao_revenue,
            realized_revenue_raw=realized,
            unrealized_revenue_raw=unrealized,
            realized_shares_minted=minted,
            realized_mode=revenue_config["realized_mode"],
            coverage_ratio=coverage_ratio(totals.total_time_sum, from_timestamp, to_timestamp),
            from_block=from_block,
            to_block=to_block,
            from_timestamp=from_timestamp,
            to_timestamp=to_timestamp,
            anchor_start_block=window.start.block_number,
            anchor_end_block=window.end.block_number,
            anchor_start_timestamp=timestamps[window.start.block_number],
            anchor_end_timestamp=timestamps[window.end.block_number],
            deploy_block=history.deploy_block,
            lookback_days=history.lookback_days,
            event_counts=event_counts,
            anchored_snapshots=len(window.snapshots),
            negative_price_intervals=totals.negative_intervals,
            negative_revenue_raw=totals.negative_revenue,
            skipped_intervals=totals.skipped_intervals,
            used_lookback_fallback=not history.found_prior_funding,
            warnings=history.warnings,
            revenue_share=share_result,
            share_price_trace=window.snapshots if debug_share_price else (),
        )

    def _validate_revenue_share(self, addresses, coefficient, errors):
        if not addresses and coefficient is None:
            return [], None
        if not addresses:
            errors.append("revenue share requires at least one address")
            return [], None
        if coefficient is None:
            errors.append("revenue share requires a coefficient (--rev-coeff)")
            return [], None

        try:
            if isinstance(addresses, str):
                addresses = parse_address_list(addresses)
            else:
                addresses = parse_address_list(",".join(addresses))
        except ValidationError as e:
            errors.extend(e.errors)
            return [], None

        try:
            coefficient = parse_coefficient(coefficient)
        except (ValueError, ZeroDivisionError) as e:
            errors.append(str(e) if "coefficient" in str(e) else f"Invalid revenue share coefficient: {coefficient}")
            return [], None
        return addresses, coefficient

    def _revenue_share(self, logs, addresses, coefficient, from_block, to_block, totals, avg_tvl, dao_revenue):
        self._status(f"💰 Calculating revenue share for {len(addresses)} address(es)...")
        transfers = [log for log in logs if log.is_transfer]

        checkpoints = balance_checkpoints(transfers, addresses, from_block, to_block)
        timestamps = self._block_timestamps(checkpoints)
        balances = checkpoint_balances(transfers, addresses, checkpoints)

        weighted_sum = weighted_balance_sum(balances, checkpoints, timestamps)
        addresses_tvl = addresses_weighted_tvl(weighted_sum, totals.total_time_sum)
        mode = self.config["revenue"]["revenue_share_mode"]
        share = revenue_share(
            mode, coefficient,
            addresses_tvl=addresses_tvl, pool_avg_tvl=avg_tvl,
            pool_revenue=totals.total_revenue, dao_revenue=dao_revenue
        )
        self._debug(f"   {len(checkpoints)} balance checkpoints, weighted TVL {addresses_tvl}, share {share}")

        return RevenueShareResult(
            addresses=tuple(addresses),
            coefficient=str(Decimal(coefficient.numerator) / Decimal(coefficient.denominator)),
            mode=mode,
            weighted_balance_sum=weighted_sum,
            addresses_weighted_tvl=addresses_tvl,
            revenue_share=share,
            checkpoints=len(checkpoints),
        )
