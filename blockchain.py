#!/usr/bin/env python3
"""
Blockchain Interaction Module for Pool Revenue Calculator
Handles the Web3 connection, raw log retrieval and decoding, block timestamps,
date -> block conversion and pool/token contract reads

Version: 1.2.0
"""

import threading
import time
from collections import deque

from hexbytes import HexBytes
from web3 import Web3

from constants import (
    POOL_ABI, TOKEN_ABI, TOPIC_TO_KIND, ZERO_ADDRESS, DEFAULT_CONFIG,
    DEFAULT_DAO_SPLIT_BPS, EVENT_DEPOSIT, EVENT_WITHDRAW, EVENT_TRANSFER
)
from errors import RevenueCalculatorError, TransientRpcError, HistoricalDataUnavailableError
from models import LogEvent
from utils import with_retry, classify_rpc_error, day_bounds

# Provider failures are never mistaken for a missing or reverting contract function
PROVIDER_ERRORS = (TransientRpcError, HistoricalDataUnavailableError)


def _topic_to_address(topic):
    return "0x" + Web3.to_hex(HexBytes(topic))[-40:].lower()

def _data_words(data):
    raw = bytes(HexBytes(data))
    return [int.from_bytes(raw[i:i + 32], "big") for i in range(0, len(raw) - len(raw) % 32, 32)]

def decode_log(log):
    """Decode one raw eth_getLogs entry into a LogEvent (None for unknown topics)"""
    topics = log.get("topics") or []
    if not topics:
        return None
    kind = TOPIC_TO_KIND.get(Web3.to_hex(HexBytes(topics[0])).lower())
    if kind is None:
        return None

    words = _data_words(log.get("data") or b"")
    tx_hash = log.get("transactionHash")
    common = {
        "kind": kind,
        "block_number": int(log["blockNumber"]),
        "log_index": int(log["logIndex"]),
        "transaction_hash": Web3.to_hex(HexBytes(tx_hash)).lower() if tx_hash is not None else "",
    }

    if kind == EVENT_DEPOSIT:
        # Deposit(sender indexed, owner indexed, assets, shares)
        if len(topics) < 3 or len(words) < 2:
            return None
        return LogEvent(sender=_topic_to_address(topics[1]), owner=_topic_to_address(topics[2]),
                        assets=words[0], shares=words[1], **common)
    if kind == EVENT_WITHDRAW:
        # Withdraw(sender indexed, receiver indexed, owner indexed, assets, shares)
        if len(topics) < 4 or len(words) < 2:
            return None
        return LogEvent(sender=_topic_to_address(topics[1]), owner=_topic_to_address(topics[3]),
                        assets=words[0], shares=words[1], **common)
    if kind == EVENT_TRANSFER:
        # Transfer(from indexed, to indexed, value)
        if len(topics) < 3 or len(words) < 1:
            return None
        return LogEvent(from_address=_topic_to_address(topics[1]), to_address=_topic_to_address(topics[2]),
                        value=words[0], **common)
    return None


class BlockchainManager:
    """Manages all blockchain interactions"""

    def __init__(self, rpc_url, config=None, debug_mode=False, w3=None, clock=time.time):
        self.rpc_url = rpc_url
        self.debug_mode = debug_mode
        config = config or DEFAULT_CONFIG
        self.token_cache = {}

        # Connect to blockchain
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        if not self.w3.is_connected():
            raise RevenueCalculatorError(f"Failed to connect to RPC endpoint {rpc_url}")

        if self.debug_mode:
            print(f"Connected to {rpc_url}")

        # Block timestamp cache (history never changes, the TTL only bounds memory)
        self._clock = clock
        self._block_cache = {}
        self._last_cache_sweep = clock()
        self._block_cache_ttl_seconds = config["rpc"].get("block_cache_ttl", 300)
        self._cache_lock = threading.Lock()

        retry = config["retry"]
        self._retry_options = {
            "max_retries": retry["max_retries"],
            "initial_delay_ms": retry["initial_delay_ms"],
            "backoff_multiplier": retry["backoff_multiplier"],
        }

        # Global RPC rate limiter (requests/minute), 0 disables
        self._rpm_limit = config["rpc"].get("requests_per_minute", 0)
        self._rpc_call_times = deque()
        self._throttle_lock = threading.Lock()

    def _throttle_rpc(self):
        """Simple token-bucket-like limiter to keep under rpm limit."""
        if self._rpm_limit <= 0:
            return
        with self._throttle_lock:
            now = time.time()
            window = 60.0
            # drop old
            while self._rpc_call_times and (now - self._rpc_call_times[0]) > window:
                self._rpc_call_times.popleft()
            if len(self._rpc_call_times) >= self._rpm_limit:
                sleep_for = window - (now - self._rpc_call_times[0]) + 0.05
                if sleep_for > 0:
                    time.sleep(sleep_for)
            # record
            self._rpc_call_times.append(time.time())

    def _on_retry(self, error, attempt, delay):
        if self.debug_mode:
            print(f"⚠️  RPC error ({error}), retry {attempt} in {delay:.2f}s...")

    def _rl_call(self, fn, *args, **kwargs):
        """Throttled call with transient-error retry, errors mapped to typed failures"""
        def _call():
            self._throttle_rpc()
            return fn(*args, **kwargs)

        try:
            return with_retry(_call, on_retry=self._on_retry, **self._retry_options)
        except Exception as e:
            typed = classify_rpc_error(e)
            if typed is e:
                raise
            raise typed from e

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def get_logs(self, address, topics, from_block, to_block):
        """Single eth_getLogs call for any of ``topics`` (topic0), decoded and unsorted.

        No retry here: the log fetcher owns retry and range shrinking.
        """
        self._throttle_rpc()
        raw_logs = self.w3.eth.get_logs({
            "fromBlock": int(from_block),
            "toBlock": int(to_block),
            "address": Web3.to_checksum_address(address),
            "topics": [list(topics)],
        })
        events = []
        for raw in raw_logs or []:
            event = decode_log(raw)
            if event is not None:
                events.append(event)
        return events

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def get_latest_block(self):
        return int(self._rl_call(lambda: self.w3.eth.block_number))

    def get_block_timestamp(self, block_number):
        """Block timestamp in seconds (cached)"""
        block_number = int(block_number)
        now = self._clock()
        with self._cache_lock:
            cached = self._block_cache.get(block_number)
            if cached and self._block_cache_ttl_seconds > 0 and now - cached[1] < self._block_cache_ttl_seconds:
                return cached[0]
            if cached:
                del self._block_cache[block_number]

        block = self._rl_call(self.w3.eth.get_block, block_number)
        timestamp = int(block["timestamp"])

        if self._block_cache_ttl_seconds > 0:
            with self._cache_lock:
                self._block_cache[block_number] = (timestamp, now)
                if now - self._last_cache_sweep >= self._block_cache_ttl_seconds:
                    self._evict_expired(now)
        return timestamp

    def _evict_expired(self, now):
        """Drop every expired entry, at most once per TTL period (caller holds the lock)"""
        expired = [block for block, (_, stored) in self._block_cache.items()
                   if now - stored >= self._block_cache_ttl_seconds]
        for block in expired:
            del self._block_cache[block]
        self._last_cache_sweep = now

    def find_block_at_or_before(self, target_timestamp, latest_block=None):
        """Binary search for the last block whose timestamp is <= target"""
        low = 0
        high = self.get_latest_block() if latest_block is None else latest_block

        while low <= high:
            mid = (low + high) // 2
            block_timestamp = self.get_block_timestamp(mid)
            if block_timestamp == target_timestamp:
                return mid
            if block_timestamp < target_timestamp:
                low = mid + 1
            else:
                high = mid - 1

        return max(high, 0)

    def date_to_start_block(self, date_string):
        """Block at 00:01 UTC of the given day"""
        start, _ = day_bounds(date_string)
        return self.find_block_at_or_before(start)

    def date_to_end_block(self, date_string):
        """Block at 23:59 UTC of the given day"""
        _, end = day_bounds(date_string)
        return self.find_block_at_or_before(end)

    # ------------------------------------------------------------------
    # Contract reads
    # ------------------------------------------------------------------

    def _pool_contract(self, pool_address):
        return self.w3.eth.contract(address=Web3.to_checksum_address(pool_address), abi=POOL_ABI)

    def _token_contract(self, token_address):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=TOKEN_ABI)

    def get_underlying_token(self, pool_address):
        """underlyingToken(), falling back to ERC-4626 asset()"""
        pool = self._pool_contract(pool_address)
        try:
            return self._rl_call(pool.functions.underlyingToken().call).lower()
        except PROVIDER_ERRORS:
            raise
        except Exception as e:
            if self.debug_mode:
                print(f"⚠️  underlyingToken() failed ({e}), trying asset()")
            return self._rl_call(pool.functions.asset().call).lower()

    def get_dao_split(self, pool_address):
        """daoSplit() in basis points, default 20% when the pool does not expose it"""
        pool = self._pool_contract(pool_address)
        try:
            return int(self._rl_call(pool.functions.daoSplit().call))
        except PROVIDER_ERRORS:
            raise
        except Exception as e:
            print(f"⚠️  Could not fetch daoSplit from contract ({e}), using default {DEFAULT_DAO_SPLIT_BPS} bps")
            return DEFAULT_DAO_SPLIT_BPS

    def get_treasury(self, pool_address):
        """treasury() address, None when unreadable or unset"""
        pool = self._pool_contract(pool_address)
        try:
            treasury = self._rl_call(pool.functions.treasury().call)
        except PROVIDER_ERRORS:
            raise
        except Exception as e:
            if self.debug_mode:
                print(f"⚠️  Could not read treasury(): {e}")
            return None
        if not treasury or treasury.lower() == ZERO_ADDRESS:
            return None
        return treasury.lower()

    def get_token_decimals(self, token_address):
        token = self._token_contract(token_address)
        return int(self._rl_call(token.functions.decimals().call))

    def get_token_name(self, token_address):
        """Token name, falling back to symbol, then to the raw address"""
        token_address = token_address.lower()
        if token_address in self.token_cache:
            return self.token_cache[token_address]

        token = self._token_contract(token_address)
        try:
            name = self._rl_call(token.functions.name().call)
        except PROVIDER_ERRORS:
            raise
        except Exception:
            try:
                name = self._rl_call(token.functions.symbol().call)
            except PROVIDER_ERRORS:
                raise
            except Exception:
                name = token_address

        self.token_cache[token_address] = name or token_address
        return self.token_cache[token_address]
