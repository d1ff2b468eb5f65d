#!/usr/bin/env python3
"""
State Replay Module for Pool Revenue Calculator
Folds Deposit/Withdraw logs into an ordered sequence of pool snapshots

Supply and share price are rebuilt from the event payloads alone, no
historical contract reads are needed:
  price_from_event = assets * SCALE / shares
  deposit  -> supply += shares
  withdraw -> supply -= shares (never below zero)

Version: 1.2.0
"""

from constants import SCALE, EVENT_DEPOSIT, EVENT_WITHDRAW
from models import PoolState, PoolSnapshot, ReplayResult, sort_logs


def price_from_event(event, current_price):
    """Share price implied by one event, or the carried price for zero-share events"""
    if event.shares > 0:
        return event.assets * SCALE // event.shares
    return current_price

def apply_event(state, event):
    """Pure reducer: pool state after one Deposit/Withdraw"""
    if event.kind == EVENT_DEPOSIT:
        total_supply = state.total_supply + event.shares
    elif event.kind == EVENT_WITHDRAW:
        total_supply = max(state.total_supply - event.shares, 0)
    else:
        return state

    share_price = state.share_price
    derived = price_from_event(event, state.share_price)
    if event.shares > 0 and derived > 0:
        share_price = derived

    return PoolState(total_supply=total_supply, share_price=share_price)

def snapshot_from_state(state, event):
    return PoolSnapshot(
        block_number=event.block_number,
        log_index=event.log_index,
        total_supply=state.total_supply,
        share_price=state.share_price,
        expected_liquidity=state.expected_liquidity,
        kind=event.kind,
    )

def replay_logs(logs, initial_state=None):
    """Replay logs (any order, any batching) into snapshots.

    Transfer logs are skipped here; they feed the balance ledger instead.
    """
    state = initial_state or PoolState()
    snapshots = []

    for event in sort_logs(logs):
        if not event.is_pool_event:
            continue
        state = apply_event(state, event)
        snapshots.append(snapshot_from_state(state, event))

    return ReplayResult(snapshots=tuple(snapshots), final_state=state)

def has_funding_before(snapshots, block_number):
    """True if some snapshot strictly before block_number shows non-zero supply"""
    for snapshot in snapshots:
        if snapshot.block_number >= block_number:
            break
        if snapshot.total_supply > 0:
            return True
    return False
