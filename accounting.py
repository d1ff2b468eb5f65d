#!/usr/bin/env python3
"""
Interval Accounting Module for Pool Revenue Calculator
Integrates snapshot-to-snapshot deltas into revenue and time-weighted TVL,
then splits DAO revenue into realized (minted to treasury) and unrealized

All amounts are integers in underlying token units; share prices carry the
SCALE factor. Divisions truncate toward zero so a price decline is the exact
negative of the equivalent rise.

Version: 1.2.0
"""

from decimal import Decimal

from constants import SCALE, ZERO_ADDRESS, EVENT_DEPOSIT, REALIZED_MODE_DAO_SPLIT, REALIZED_MODES
from errors import InsufficientDataError
from models import IntervalTotals
from utils import mul_div, apply_bps


def interval_revenue(current, next_snapshot):
    """Revenue earned by current.total_supply while the price moved to next's"""
    share_price_diff = next_snapshot.share_price - current.share_price
    return mul_div(current.total_supply, share_price_diff, SCALE)

def compute_interval_totals(snapshots, timestamps):
    """Walk adjacent snapshot pairs.

    ``timestamps`` maps block number -> unix seconds. Intervals whose time
    delta is not positive are skipped entirely.
    """
    total_revenue = 0
    weighted_tvl_sum = 0
    total_time_sum = 0
    negative_intervals = 0
    negative_revenue = 0
    skipped = 0

    for current, next_snapshot in zip(snapshots, snapshots[1:]):
        time_delta = timestamps[next_snapshot.block_number] - timestamps[current.block_number]
        if time_delta <= 0:
            skipped += 1
            continue

        revenue = interval_revenue(current, next_snapshot)
        if next_snapshot.share_price < current.share_price:
            negative_intervals += 1
            negative_revenue += -revenue

        total_revenue += revenue
        weighted_tvl_sum += current.expected_liquidity * time_delta
        total_time_sum += time_delta

    return IntervalTotals(
        total_revenue=total_revenue,
        weighted_tvl_sum=weighted_tvl_sum,
        total_time_sum=total_time_sum,
        negative_intervals=negative_intervals,
        negative_revenue=negative_revenue,
        skipped_intervals=skipped,
    )

def average_tvl(totals):
    if totals.total_time_sum <= 0:
        return 0
    return totals.weighted_tvl_sum // totals.total_time_sum

def apply_fees(total_revenue, interest_fee_bps, dao_share_bps):
    """(revenue_with_interest_fee, revenue_for_dao)"""
    revenue_with_interest_fee = apply_bps(total_revenue, interest_fee_bps)
    revenue_for_dao = apply_bps(revenue_with_interest_fee, dao_share_bps)
    return revenue_with_interest_fee, revenue_for_dao

def coverage_ratio(total_time_sum, from_timestamp, to_timestamp):
    """Share of the requested period spanned by usable intervals, in [0, 1]"""
    period = to_timestamp - from_timestamp
    if period <= 0:
        return Decimal(1) if total_time_sum > 0 else Decimal(0)
    ratio = Decimal(total_time_sum) / Decimal(period)
    return max(Decimal(0), min(ratio, Decimal(1)))


def require_treasury(treasury):
    if not treasury:
        raise InsufficientDataError(
            "Treasury address could not be resolved from the pool; pass --treasury to compute realized revenue"
        )
    return treasury.lower()

def treasury_deposit_transactions(logs, treasury):
    """Transaction hashes that contain a Deposit made by (or for) the treasury"""
    treasury = treasury.lower()
    return {
        log.transaction_hash for log in logs
        if log.kind == EVENT_DEPOSIT and treasury in (log.owner, log.sender)
    }

def count_treasury_mints(logs, treasury, from_block, to_block):
    """LP shares minted to the treasury in [from_block, to_block].

    A mint sharing its transaction with a treasury Deposit is the treasury's
    own principal and is not counted.
    """
    treasury = require_treasury(treasury)
    excluded = treasury_deposit_transactions(logs, treasury)
    minted = 0
    for log in logs:
        if not log.is_transfer:
            continue
        if log.block_number < from_block or log.block_number > to_block:
            continue
        if log.from_address != ZERO_ADDRESS or log.to_address != treasury:
            continue
        if log.transaction_hash and log.transaction_hash in excluded:
            continue
        minted += log.value
    return minted

def realized_revenue(minted_shares, final_share_price, dao_share_bps, mode):
    """Value of the treasury's minted shares at the final anchor's share price"""
    if mode not in REALIZED_MODES:
        raise ValueError(f"Unknown realized revenue mode: {mode}")
    shares = minted_shares
    if mode == REALIZED_MODE_DAO_SPLIT:
        shares = apply_bps(minted_shares, dao_share_bps)
    return mul_div(shares, final_share_price, SCALE)

def unrealized_revenue(dao_revenue, realized):
    return max(dao_revenue - realized, 0)
