#!/usr/bin/env python3
"""
Data Model Module for Pool Revenue Calculator
Immutable records passed between fetching, replay, anchoring and accounting

Version: 1.2.0
"""

from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from constants import EVENT_DEPOSIT, EVENT_WITHDRAW, EVENT_TRANSFER, SCALE
from utils import to_human_amount


@dataclass(frozen=True)
class LogEvent:
    """One decoded pool log. Ordering key is (block_number, log_index)."""
    kind: str
    block_number: int
    log_index: int
    transaction_hash: str = ""
    # Deposit / Withdraw
    sender: Optional[str] = None
    owner: Optional[str] = None
    assets: int = 0
    shares: int = 0
    # Transfer
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    value: int = 0

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)

    @property
    def is_pool_event(self) -> bool:
        return self.kind in (EVENT_DEPOSIT, EVENT_WITHDRAW)

    @property
    def is_transfer(self) -> bool:
        return self.kind == EVENT_TRANSFER


@dataclass(frozen=True)
class PoolState:
    """Running fold state of the replay reducer"""
    total_supply: int = 0
    share_price: int = 0

    @property
    def expected_liquidity(self) -> int:
        return self.share_price * self.total_supply // SCALE


@dataclass(frozen=True)
class PoolSnapshot:
    """Pool state right after one Deposit/Withdraw"""
    block_number: int
    log_index: int
    total_supply: int
    share_price: int
    expected_liquidity: int
    kind: str


@dataclass(frozen=True)
class ReplayResult:
    snapshots: Tuple[PoolSnapshot, ...]
    final_state: PoolState


@dataclass(frozen=True)
class AnchorWindow:
    """Contiguous snapshot slice standing in for [from_block, to_block]"""
    snapshots: Tuple[PoolSnapshot, ...]
    start_index: int
    end_index: int

    @property
    def start(self) -> PoolSnapshot:
        return self.snapshots[0]

    @property
    def end(self) -> PoolSnapshot:
        return self.snapshots[-1]


@dataclass(frozen=True)
class HistorySearchResult:
    """Outcome of the deploy-block / lookback search"""
    logs: Tuple[LogEvent, ...]
    replay: ReplayResult
    deploy_block: int
    lookback_days: Optional[int]
    found_prior_funding: bool
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class IntervalTotals:
    total_revenue: int
    weighted_tvl_sum: int
    total_time_sum: int
    negative_intervals: int = 0
    negative_revenue: int = 0
    skipped_intervals: int = 0


@dataclass(frozen=True)
class RevenueShareResult:
    addresses: Tuple[str, ...]
    coefficient: str
    mode: str
    weighted_balance_sum: int
    addresses_weighted_tvl: int
    revenue_share: int
    checkpoints: int


@dataclass(frozen=True)
class RevenueReport:
    """Read-only result of one calculation"""
    pool: str
    from_date: str
    to_date: str
    underlying_token: str
    underlying_name: str
    token_decimals: int
    interest_fee_bps: int
    dao_share_bps: int
    treasury: str
    # raw integer figures (underlying token units)
    avg_tvl_raw: int
    total_revenue_raw: int
    revenue_with_interest_fee_raw: int
    dao_revenue_raw: int
    realized_revenue_raw: int
    unrealized_revenue_raw: int
    realized_shares_minted: int
    realized_mode: str
    # coverage and ranges
    coverage_ratio: Decimal
    from_block: int
    to_block: int
    from_timestamp: int
    to_timestamp: int
    anchor_start_block: int
    anchor_end_block: int
    anchor_start_timestamp: int
    anchor_end_timestamp: int
    deploy_block: int
    lookback_days: Optional[int]
    # diagnostics
    event_counts: Dict[str, int]
    anchored_snapshots: int
    negative_price_intervals: int
    negative_revenue_raw: int
    skipped_intervals: int
    used_lookback_fallback: bool
    warnings: Tuple[str, ...] = ()
    revenue_share: Optional[RevenueShareResult] = None
    share_price_trace: Tuple[PoolSnapshot, ...] = field(default=(), repr=False)

    def _human(self, raw):
        return to_human_amount(raw, self.token_decimals)

    @property
    def avg_tvl(self) -> Decimal:
        return self._human(self.avg_tvl_raw)

    @property
    def dao_revenue(self) -> Decimal:
        return self._human(self.dao_revenue_raw)

    @property
    def realized_revenue(self) -> Decimal:
        return self._human(self.realized_revenue_raw)

    @property
    def unrealized_revenue(self) -> Decimal:
        return self._human(self.unrealized_revenue_raw)

    @property
    def total_events(self) -> int:
        return sum(self.event_counts.values())

    def to_dict(self) -> Dict:
        data = asdict(self)
        data.pop("share_price_trace", None)
        data["coverage_ratio"] = str(self.coverage_ratio)
        data["avg_tvl"] = str(self.avg_tvl)
        data["dao_revenue"] = str(self.dao_revenue)
        data["realized_revenue"] = str(self.realized_revenue)
        data["unrealized_revenue"] = str(self.unrealized_revenue)
        if self.revenue_share is not None:
            data["revenue_share"]["revenue_share_human"] = str(self._human(self.revenue_share.revenue_share))
            data["revenue_share"]["addresses_weighted_tvl_human"] = str(
                self._human(self.revenue_share.addresses_weighted_tvl))
        return data


def sort_logs(logs: List[LogEvent]) -> List[LogEvent]:
    """Stable sort by (block_number, log_index)"""
    return sorted(logs, key=lambda log: log.sort_key)
