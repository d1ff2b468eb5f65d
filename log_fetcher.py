#!/usr/bin/env python3
"""
Log Retrieval Module for Pool Revenue Calculator
Adaptive, optionally concurrent eth_getLogs over a large block range

The fetcher is a small state machine (batch_size, mode):
- windows of batch_size blocks are fetched in waves of `concurrency` threads
- a "block range too large" refusal halves batch_size (down to
  min_batch_size) and switches the mode to sequential for the rest of the run
- transient errors are retried with exponential backoff
- anything else aborts the fetch

Version: 1.2.0
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

from constants import DEFAULT_CONFIG, TOPIC_DEPOSIT, TOPIC_WITHDRAW, TOPIC_TRANSFER
from errors import BlockRangeLimitError
from models import sort_logs
from utils import with_retry, classify_rpc_error

MODE_CONCURRENT = "concurrent"
MODE_SEQUENTIAL = "sequential"


class FetchState:
    """Adaptive batch size and scheduling mode, shared by worker threads"""

    def __init__(self, batch_size, min_batch_size, mode=MODE_CONCURRENT):
        self.batch_size = max(int(batch_size), 1)
        self.min_batch_size = max(min(int(min_batch_size), self.batch_size), 1)
        self.mode = mode
        self.range_limit_hits = 0
        self._lock = threading.Lock()

    def shrink(self):
        """Halve the batch size. Returns False when already at the floor."""
        with self._lock:
            self.range_limit_hits += 1
            if self.batch_size <= self.min_batch_size:
                return False
            self.batch_size = max(self.batch_size // 2, self.min_batch_size)
            return True

    def on_range_limit(self, observed_batch_size):
        """Range refusal seen by a concurrent worker: shrink once per size and go sequential"""
        with self._lock:
            self.range_limit_hits += 1
            self.mode = MODE_SEQUENTIAL
            if self.batch_size >= observed_batch_size and self.batch_size > self.min_batch_size:
                self.batch_size = max(self.batch_size // 2, self.min_batch_size)


class LogFetcher:
    """Fetches Deposit/Withdraw (and optionally Transfer) logs for one pool"""

    def __init__(self, chain, config=None, progress_callback=None, debug_mode=False, sleep=time.sleep):
        config = config or DEFAULT_CONFIG
        fetch = config["log_fetching"]
        retry = config["retry"]

        self.chain = chain
        self.batch_size = fetch["batch_size"]
        self.min_batch_size = fetch["min_batch_size"]
        self.concurrency = max(int(fetch["concurrency"]), 1)
        self.batch_delay = fetch["batch_delay_seconds"]
        self.retry_options = {
            "max_retries": retry["max_retries"],
            "initial_delay_ms": retry["initial_delay_ms"],
            "backoff_multiplier": retry["backoff_multiplier"],
        }
        self.progress_callback = progress_callback
        self.debug_mode = debug_mode
        self._sleep = sleep

        self.state = None
        self._progress_lock = threading.Lock()
        self._blocks_done = 0
        self._total_blocks = 0
        self._events_found = 0
        self.request_count = 0

    # ------------------------------------------------------------------

    def fetch_logs(self, address, from_block, to_block, include_transfers=True):
        """All matching logs in [from_block, to_block], sorted by (block, logIndex)"""
        if to_block < from_block:
            return []

        topics = [TOPIC_DEPOSIT, TOPIC_WITHDRAW]
        if include_transfers:
            topics.append(TOPIC_TRANSFER)

        mode = MODE_CONCURRENT if self.concurrency > 1 else MODE_SEQUENTIAL
        self.state = FetchState(self.batch_size, self.min_batch_size, mode)
        self._blocks_done = 0
        self._total_blocks = to_block - from_block + 1
        self._events_found = 0

        logs = []
        cursor = from_block

        if self.state.mode == MODE_CONCURRENT:
            with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
                while cursor <= to_block and self.state.mode == MODE_CONCURRENT:
                    windows = self._next_windows(cursor, to_block, self.concurrency)
                    batch_size = self.state.batch_size
                    futures = [
                        (window, executor.submit(self._fetch_window, address, topics, window[0], window[1]))
                        for window in windows
                    ]

                    failed = []
                    for window, future in futures:
                        try:
                            logs.extend(future.result())
                        except BlockRangeLimitError:
                            self.state.on_range_limit(batch_size)
                            failed.append(window)

                    if failed and self.debug_mode:
                        print(f"⚠️  Block range refused, switching to sequential with {self.state.batch_size} block windows")
                    for window in failed:
                        logs.extend(self._fetch_sequential(address, topics, window[0], window[1]))

                    cursor = windows[-1][1] + 1
                    if cursor <= to_block:
                        self._sleep(self.batch_delay)

        if cursor <= to_block:
            logs.extend(self._fetch_sequential(address, topics, cursor, to_block))

        return sort_logs(logs)

    # ------------------------------------------------------------------

    def _next_windows(self, cursor, to_block, count):
        windows = []
        for _ in range(count):
            if cursor > to_block:
                break
            end = min(cursor + self.state.batch_size - 1, to_block)
            windows.append((cursor, end))
            cursor = end + 1
        return windows

    def _fetch_sequential(self, address, topics, from_block, to_block):
        logs = []
        cursor = from_block
        while cursor <= to_block:
            end = min(cursor + self.state.batch_size - 1, to_block)
            try:
                logs.extend(self._fetch_window(address, topics, cursor, end))
            except BlockRangeLimitError:
                if not self.state.shrink():
                    raise
                if self.debug_mode:
                    print(f"⚠️  Block range {cursor}-{end} refused, retrying with {self.state.batch_size} blocks")
                continue
            cursor = end + 1
            if cursor <= to_block:
                self._sleep(self.batch_delay)
        return logs

    def _fetch_window(self, address, topics, from_block, to_block):
        """One window with transient retry; range refusals surface as BlockRangeLimitError"""
        def _call():
            with self._progress_lock:
                self.request_count += 1
            return self.chain.get_logs(address, topics, from_block, to_block)

        try:
            events = with_retry(_call, on_retry=self._on_retry, sleep=self._sleep, **self.retry_options)
        except Exception as e:
            typed = classify_rpc_error(e, from_block, to_block)
            if typed is e:
                raise
            raise typed from e

        self._report_progress(to_block - from_block + 1, len(events))
        return events

    def _on_retry(self, error, attempt, delay):
        if self.debug_mode:
            print(f"⚠️  getLogs failed ({error}), retry {attempt} in {delay:.2f}s...")

    def _report_progress(self, blocks, events):
        with self._progress_lock:
            self._blocks_done += blocks
            self._events_found += events
            info = {
                "stage": "fetching_logs",
                "progress": min(self._blocks_done / self._total_blocks, 1.0) if self._total_blocks else 1.0,
                "blocks_done": self._blocks_done,
                "total_blocks": self._total_blocks,
                "events_found": self._events_found,
                "batch_size": self.state.batch_size,
                "mode": self.state.mode,
            }
        if self.progress_callback:
            self.progress_callback(info)
