#!/usr/bin/env python3
"""
Address Balance Ledger Module for Pool Revenue Calculator
Replays LP token transfers into balances of a tracked address set and turns
them into a time-weighted figure for revenue sharing

Version: 1.2.0
"""

from fractions import Fraction

from constants import ZERO_ADDRESS, REVENUE_SHARE_TVL_RATIO, REVENUE_SHARE_FLAT, REVENUE_SHARE_MODES
from models import sort_logs
from utils import div_trunc


class AddressBalanceLedger:
    """Balances for tracked addresses only, fed transfers in block order"""

    def __init__(self, addresses, transfers=()):
        self.addresses = frozenset(address.lower() for address in addresses)
        self.balances = {address: 0 for address in self.addresses}
        self._transfers = [log for log in sort_logs(list(transfers)) if log.is_transfer]
        self._cursor = 0
        self.last_block = None

    def apply(self, transfer):
        if self.last_block is not None and transfer.block_number < self.last_block:
            raise ValueError(
                f"Transfer at block {transfer.block_number} applied after block {self.last_block}"
            )
        self.last_block = transfer.block_number

        sender = transfer.from_address
        if sender in self.balances and sender != ZERO_ADDRESS:
            self.balances[sender] = max(self.balances[sender] - transfer.value, 0)
        if transfer.to_address in self.balances:
            self.balances[transfer.to_address] += transfer.value

    def advance_to(self, block_number):
        """Apply every queued transfer up to and including block_number"""
        while self._cursor < len(self._transfers) and self._transfers[self._cursor].block_number <= block_number:
            self.apply(self._transfers[self._cursor])
            self._cursor += 1
        return self.total()

    def total(self):
        return sum(self.balances.values())


def balance_checkpoints(transfers, addresses, from_block, to_block):
    """from_block, every in-range block with a transfer touching a tracked address, to_block"""
    tracked = {address.lower() for address in addresses}
    blocks = {from_block, to_block}
    for log in transfers:
        if not log.is_transfer or log.block_number < from_block or log.block_number > to_block:
            continue
        if log.from_address in tracked or log.to_address in tracked:
            blocks.add(log.block_number)
    return sorted(blocks)

def checkpoint_balances(transfers, addresses, checkpoints):
    """Summed tracked balance at each checkpoint block (inclusive)"""
    ledger = AddressBalanceLedger(addresses, transfers)
    return [ledger.advance_to(block) for block in checkpoints]

def weighted_balance_sum(balances, checkpoints, timestamps):
    """sum(balance_i * (t_{i+1} - t_i)) over consecutive checkpoints"""
    total = 0
    for i in range(len(checkpoints) - 1):
        time_delta = timestamps[checkpoints[i + 1]] - timestamps[checkpoints[i]]
        if time_delta > 0:
            total += balances[i] * time_delta
    return total

def addresses_weighted_tvl(weighted_sum, total_time_sum):
    if total_time_sum <= 0:
        return 0
    return weighted_sum // total_time_sum

def parse_coefficient(value):
    """Exact fraction in [0, 1] from a string/number such as '0.25'"""
    coefficient = Fraction(str(value))
    if coefficient < 0 or coefficient > 1:
        raise ValueError(f"Revenue share coefficient must be between 0 and 1, got {value}")
    return coefficient

def revenue_share(mode, coefficient, addresses_tvl=0, pool_avg_tvl=0, pool_revenue=0, dao_revenue=0):
    """Revenue attributed to the tracked addresses.

    tvl_ratio: addresses_tvl / pool_avg_tvl * pool_revenue * coefficient
    flat:      coefficient * dao_revenue
    """
    coefficient = parse_coefficient(coefficient)
    if mode == REVENUE_SHARE_FLAT:
        return div_trunc(dao_revenue * coefficient.numerator, coefficient.denominator)
    if mode == REVENUE_SHARE_TVL_RATIO:
        if pool_avg_tvl <= 0 or addresses_tvl <= 0 or pool_revenue <= 0:
            return 0
        numerator = addresses_tvl * pool_revenue * coefficient.numerator
        return div_trunc(numerator, pool_avg_tvl * coefficient.denominator)
    raise ValueError(f"Unknown revenue share mode: {mode}; expected one of {', '.join(REVENUE_SHARE_MODES)}")
