#!/usr/bin/env python3
"""
Display Management Module for Pool Revenue Calculator
Renders a RevenueReport with Rich tables and panels

Version: 1.2.0
"""

import json

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.text import Text
from rich.align import Align
from rich import box

from constants import VERSION, SCALE
from utils import format_token_amount, format_bps, format_timestamp

console = Console()


class ReportDisplay:
    """Pretty-prints calculation results"""

    def __init__(self, config, output_console=None):
        self.config = config
        self.console = output_console or console
        self.places = config.get("display_settings", {}).get("decimals_shown", 6)

    def create_header_panel(self):
        """Create a stylized header panel"""
        header_text = Text()
        header_text.append("POOL REVENUE CALCULATOR\n", style="bold cyan")
        header_text.append(f"TVL & DAO revenue from on-chain events v{VERSION}", style="bright_white")

        return Panel(
            Align.center(header_text),
            box=box.DOUBLE_EDGE,
            style="blue",
            padding=(1, 2)
        )

    def _amount(self, report, raw):
        return format_token_amount(raw, report.token_decimals, report.underlying_name, self.places)

    def create_results_table(self, report):
        table = Table(
            title="Results",
            box=box.ROUNDED,
            show_header=False,
            title_style="bold cyan",
            border_style="blue"
        )
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right", style="white")

        table.add_row("Pool", report.pool)
        table.add_row("Date range", f"{report.from_date} → {report.to_date}")
        table.add_row("Underlying", f"{report.underlying_name} ({report.underlying_token})")
        table.add_row("Average TVL", self._amount(report, report.avg_tvl_raw))
        table.add_row("Interest fee", format_bps(report.interest_fee_bps))
        table.add_row("DAO share", format_bps(report.dao_share_bps))
        table.add_row("DAO revenue", f"[bold green]{self._amount(report, report.dao_revenue_raw)}[/bold green]")
        table.add_row("  realized", self._amount(report, report.realized_revenue_raw))
        table.add_row("  unrealized", self._amount(report, report.unrealized_revenue_raw))
        table.add_row("Treasury", report.treasury)
        return table

    def create_diagnostics_table(self, report):
        table = Table(title="Diagnostics", box=box.SIMPLE, show_header=False, title_style="bold cyan")
        table.add_column("Item", style="dim")
        table.add_column("Value", justify="right")

        counts = ", ".join(f"{kind}: {count}" for kind, count in sorted(report.event_counts.items()))
        coverage_pct = report.coverage_ratio * 100
        coverage_style = "green" if report.coverage_ratio >= 1 else "yellow"

        table.add_row("Events", f"{report.total_events} ({counts})")
        table.add_row("Requested blocks", f"{report.from_block} → {report.to_block}")
        table.add_row("Anchored blocks", f"{report.anchor_start_block} → {report.anchor_end_block}")
        table.add_row("Anchored time", f"{format_timestamp(report.anchor_start_timestamp)} → "
                                       f"{format_timestamp(report.anchor_end_timestamp)}")
        table.add_row("Anchored snapshots", str(report.anchored_snapshots))
        table.add_row("Coverage", f"[{coverage_style}]{coverage_pct:.2f}%[/{coverage_style}]")
        table.add_row("Deploy block", str(report.deploy_block))
        if report.lookback_days is not None:
            table.add_row("Lookback", f"{report.lookback_days} days")
        table.add_row("Negative price intervals", str(report.negative_price_intervals))
        if report.negative_revenue_raw:
            table.add_row("Negative revenue", self._amount(report, report.negative_revenue_raw))
        if report.skipped_intervals:
            table.add_row("Skipped intervals", str(report.skipped_intervals))
        table.add_row("Realized mode", report.realized_mode)
        table.add_row("Treasury shares minted", str(report.realized_shares_minted))
        table.add_row("Total revenue (raw)", str(report.total_revenue_raw))
        table.add_row("Average TVL (raw)", str(report.avg_tvl_raw))
        table.add_row("DAO revenue (raw)", str(report.dao_revenue_raw))
        return table

    def create_revenue_share_table(self, report):
        share = report.revenue_share
        table = Table(title="Revenue Share", box=box.ROUNDED, show_header=False,
                      title_style="bold magenta", border_style="magenta")
        table.add_column("Metric", style="magenta")
        table.add_column("Value", justify="right")
        table.add_row("Addresses", str(len(share.addresses)))
        table.add_row("Formula", share.mode)
        table.add_row("Coefficient", share.coefficient)
        table.add_row("Balance checkpoints", str(share.checkpoints))
        table.add_row("Addresses weighted TVL", self._amount(report, share.addresses_weighted_tvl))
        table.add_row("Revenue share", f"[bold]{self._amount(report, share.revenue_share)}[/bold]")
        return table

    def create_share_price_table(self, report):
        table = Table(title="Share Price Trace", box=box.SIMPLE_HEAD, header_style="bold")
        table.add_column("Block", justify="right")
        table.add_column("Event")
        table.add_column("Total supply", justify="right")
        table.add_column("Share price", justify="right")
        table.add_column("Expected liquidity", justify="right")

        previous = None
        for snapshot in report.share_price_trace:
            price = f"{snapshot.share_price / SCALE:.12f}"
            if previous is not None and snapshot.share_price < previous:
                price = f"[red]{price}[/red]"
            table.add_row(str(snapshot.block_number), snapshot.kind, str(snapshot.total_supply), price,
                          str(snapshot.expected_liquidity))
            previous = snapshot.share_price
        return table

    def print_report(self, report):
        self.console.print(self.create_results_table(report))
        self.console.print(self.create_diagnostics_table(report))
        if report.revenue_share is not None:
            self.console.print(self.create_revenue_share_table(report))
        if report.share_price_trace:
            self.console.print(self.create_share_price_table(report))
        for warning in report.warnings:
            self.console.print(f"[yellow]⚠️  {warning}[/yellow]")

    def print_json(self, report):
        self.console.print_json(json.dumps(report.to_dict()))
