"""Builders and an in-memory chain used by the test-suite"""

import copy
import threading

from constants import (
    DEFAULT_CONFIG, TOPIC_TO_KIND, EVENT_DEPOSIT, EVENT_WITHDRAW, EVENT_TRANSFER, ZERO_ADDRESS
)
from models import LogEvent
from utils import day_bounds

GENESIS_TS = 1_609_459_200  # 2021-01-01 00:00 UTC
BLOCK_TIME = 12

POOL = "0x" + "11" * 20
TREASURY = "0x" + "22" * 20
ALICE = "0x" + "aa" * 20
BOB = "0x" + "bb" * 20
UNDERLYING = "0x" + "33" * 20


def deposit(block, assets, shares, owner=ALICE, log_index=0, tx=None):
    return LogEvent(kind=EVENT_DEPOSIT, block_number=block, log_index=log_index,
                    transaction_hash=tx or f"0xd{block:x}{log_index:x}", sender=owner, owner=owner,
                    assets=assets, shares=shares)

def withdraw(block, assets, shares, owner=ALICE, log_index=0, tx=None):
    return LogEvent(kind=EVENT_WITHDRAW, block_number=block, log_index=log_index,
                    transaction_hash=tx or f"0xe{block:x}{log_index:x}", sender=owner, owner=owner,
                    assets=assets, shares=shares)

def transfer(block, from_address, to_address, value, log_index=0, tx=None):
    return LogEvent(kind=EVENT_TRANSFER, block_number=block, log_index=log_index,
                    transaction_hash=tx or f"0xf{block:x}{log_index:x}",
                    from_address=from_address, to_address=to_address, value=value)

def mint(block, to_address, value, log_index=0, tx=None):
    return transfer(block, ZERO_ADDRESS, to_address, value, log_index=log_index, tx=tx)

def make_config(**overrides):
    """Default config with fast fetch settings; overrides are section__key=value pairs"""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["log_fetching"]["batch_delay_seconds"] = 0
    config["retry"]["initial_delay_ms"] = 0
    config["display_settings"]["show_progress"] = False
    for dotted, value in overrides.items():
        section, key = dotted.split("__")
        config[section][key] = value
    return config


class FakeChain:
    """Chain-access double: fixed block time, scripted logs and failures"""

    def __init__(self, logs=(), latest_block=10_000_000, max_range=None, fail_first=0,
                 failure=None, treasury=TREASURY, dao_split=2000, decimals=6, name="USD Coin"):
        self.logs = list(logs)
        self.latest_block = latest_block
        self.max_range = max_range
        self.fail_first = fail_first
        self.failure = failure
        self.treasury = treasury
        self.dao_split = dao_split
        self.decimals = decimals
        self.name = name
        self.get_logs_calls = []
        self.timestamp_calls = 0
        self._lock = threading.Lock()

    # logs
    def get_logs(self, address, topics, from_block, to_block):
        with self._lock:
            self.get_logs_calls.append((from_block, to_block))
            call_number = len(self.get_logs_calls)
        if self.failure is not None and call_number <= self.fail_first:
            raise self.failure
        if self.max_range is not None and to_block - from_block + 1 > self.max_range:
            raise ValueError({"code": -32600, "message": f"block range is too wide (max {self.max_range})"})
        kinds = {TOPIC_TO_KIND[topic] for topic in topics}
        return [log for log in self.logs
                if from_block <= log.block_number <= to_block and log.kind in kinds]

    # blocks
    def get_latest_block(self):
        return self.latest_block

    def get_block_timestamp(self, block_number):
        with self._lock:
            self.timestamp_calls += 1
        return GENESIS_TS + BLOCK_TIME * int(block_number)

    def _block_at(self, timestamp):
        return max(0, min((timestamp - GENESIS_TS) // BLOCK_TIME, self.latest_block))

    def date_to_start_block(self, date_string):
        return self._block_at(day_bounds(date_string)[0])

    def date_to_end_block(self, date_string):
        return self._block_at(day_bounds(date_string)[1])

    # contract reads
    def get_underlying_token(self, pool_address):
        return UNDERLYING

    def get_dao_split(self, pool_address):
        return self.dao_split

    def get_treasury(self, pool_address):
        return self.treasury

    def get_token_decimals(self, token_address):
        return self.decimals

    def get_token_name(self, token_address):
        return self.name


def scenario_logs():
    """Three deposits, a treasury mint and a withdrawal; the price moves 1.0 -> 1.1 -> 1.2"""
    return [
        deposit(100, 1_000_000, 1_000_000),
        deposit(7_200, 1_000_000, 1_000_000),
        deposit(14_400, 1_100_000, 1_000_000),
        mint(15_000, TREASURY, 10_000),
        withdraw(21_590, 1_200_000, 1_000_000),
    ]
