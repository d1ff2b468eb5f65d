#!/usr/bin/env python3
"""
Window Anchoring Module for Pool Revenue Calculator
Maps the requested dates onto blocks, finds how far back logs must be read,
and picks the snapshots that stand in for the window boundaries

Version: 1.2.0
"""

from constants import DEFAULT_CONFIG
from errors import InsufficientDataError
from models import AnchorWindow, HistorySearchResult
from replay import replay_logs, has_funding_before

SECONDS_PER_DAY = 24 * 60 * 60


def resolve_block_window(chain, from_date, to_date):
    """(from_block, to_block) for 00:01 UTC of from_date and 23:59 UTC of to_date"""
    from_block = chain.date_to_start_block(from_date)
    to_block = chain.date_to_end_block(to_date)
    if to_block < from_block:
        to_block = from_block
    return from_block, to_block

def resolve_deploy_block(chain, deploy_date, from_block):
    """Start block of the deployment day, never after from_block"""
    return min(chain.date_to_start_block(deploy_date), from_block)

def lookback_blocks(days, average_block_time_seconds):
    return int(days * SECONDS_PER_DAY // max(average_block_time_seconds, 1))


def search_history(fetch_logs, from_block, to_block, deploy_block=None, config=None, on_status=None):
    """Fetch and replay enough history to know the pool state at from_block.

    With an explicit deploy_block a single fetch is made. Otherwise the
    lookback starts at `lookback_days` and doubles (up to
    lookback_days * max_lookback_multiplier, or genesis) until some snapshot
    before from_block shows non-zero supply.

    ``fetch_logs(start_block, end_block)`` must return decoded, sorted logs.
    """
    history = (config or DEFAULT_CONFIG)["history"]
    warnings = []

    if deploy_block is not None:
        logs = fetch_logs(deploy_block, to_block)
        _require_events(logs, deploy_block)
        replay = replay_logs(logs)
        found = has_funding_before(replay.snapshots, from_block)
        return HistorySearchResult(
            logs=tuple(logs),
            replay=replay,
            deploy_block=deploy_block,
            lookback_days=None,
            found_prior_funding=found,
            warnings=tuple(warnings),
        )

    days = int(history["lookback_days"])
    max_days = days * int(history["max_lookback_multiplier"])
    block_time = history["average_block_time_seconds"]

    while True:
        start_block = max(from_block - lookback_blocks(days, block_time), 0)
        if on_status:
            on_status(f"🔍 Fetching logs from block {start_block} ({days} day lookback) to {to_block}...")

        logs = fetch_logs(start_block, to_block)
        replay = replay_logs(logs)
        found = has_funding_before(replay.snapshots, from_block)

        if found:
            break
        if start_block == 0 or days >= max_days:
            warnings.append(
                f"No funded pool state found before block {from_block} within a {days} day lookback; "
                f"the start of the window is anchored on the nearest later event"
            )
            break

        days = min(days * 2, max_days)
        if on_status:
            on_status(f"↩️  No funding event before the window yet, widening lookback to {days} days")

    _require_events(logs, start_block)
    return HistorySearchResult(
        logs=tuple(logs),
        replay=replay,
        deploy_block=start_block,
        lookback_days=days,
        found_prior_funding=found,
        warnings=tuple(warnings),
    )

def _require_events(logs, start_block):
    if not any(log.is_pool_event for log in logs):
        raise InsufficientDataError(
            f"No Deposit/Withdraw events since block {start_block}: no events to build state. "
            f"Check the pool address or pass an earlier --deploy-date."
        )


def _nearest_index(snapshots, block_number, prefer_last):
    best_index = None
    best_distance = None
    for index, snapshot in enumerate(snapshots):
        distance = abs(snapshot.block_number - block_number)
        if best_distance is None or distance < best_distance or (prefer_last and distance == best_distance):
            best_index = index
            best_distance = distance
    return best_index

def select_anchor_window(snapshots, from_block, to_block):
    """Contiguous snapshot slice whose ends are nearest to from_block and to_block.

    Ties go to the earliest snapshot for the start and to the latest one for
    the end, so a block with several events contributes its final state.
    """
    if len(snapshots) < 2:
        raise InsufficientDataError(
            f"Need at least 2 pool snapshots to anchor blocks {from_block}-{to_block}, found {len(snapshots)}"
        )

    start_index = _nearest_index(snapshots, from_block, prefer_last=False)
    end_index = _nearest_index(snapshots, to_block, prefer_last=True)
    if start_index > end_index:
        start_index, end_index = end_index, start_index

    window = tuple(snapshots[start_index:end_index + 1])
    if len(window) < 2:
        raise InsufficientDataError(
            f"Only {len(window)} pool snapshot anchors blocks {from_block}-{to_block}; "
            f"the window may lie entirely before the pool's first deposit or contain no activity"
        )
    return AnchorWindow(snapshots=window, start_index=start_index, end_index=end_index)
