#!/usr/bin/env python3
"""
Configuration Management Module for Pool Revenue Calculator
Loads the optional JSON configuration file and merges it over the defaults

Version: 1.2.0
"""

import copy
import json
import os

from constants import DEFAULT_CONFIG, CONFIG_FILE, REALIZED_MODES, REVENUE_SHARE_MODES
from errors import ValidationError


def load_config(path=None):
    """Load configuration from JSON, falling back to defaults.

    An explicit ``path`` must exist. Without one, ``CONFIG_FILE`` in the
    working directory is used when present.
    """
    config_path = path or CONFIG_FILE
    if not os.path.exists(config_path):
        if path:
            raise ValidationError(f"Configuration file not found: {path}")
        return copy.deepcopy(DEFAULT_CONFIG)

    try:
        with open(config_path, 'r') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Error reading config file {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ValidationError(f"Config file {config_path} must contain a JSON object")

    update_config_with_defaults(config)
    return config

def update_config_with_defaults(config):
    """Update configuration with any missing default values"""
    updated = False

    def update_nested_dict(target, source):
        nonlocal updated
        for key, value in source.items():
            if key not in target:
                target[key] = copy.deepcopy(value)
                updated = True
            elif isinstance(value, dict) and isinstance(target[key], dict):
                update_nested_dict(target[key], value)

    update_nested_dict(config, DEFAULT_CONFIG)
    return updated

def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)

def validate_config(config):
    """Return a list of problems (empty when the config is usable)"""
    errors = []

    fetch = config["log_fetching"]
    for key in ("batch_size", "min_batch_size", "concurrency"):
        if not isinstance(fetch.get(key), int) or fetch[key] < 1:
            errors.append(f"log_fetching.{key} must be a positive integer")
    if not errors and fetch["min_batch_size"] > fetch["batch_size"]:
        errors.append("log_fetching.min_batch_size cannot exceed batch_size")
    if not _is_number(fetch.get("batch_delay_seconds")) or fetch["batch_delay_seconds"] < 0:
        errors.append("log_fetching.batch_delay_seconds must be >= 0")

    retry = config["retry"]
    if not isinstance(retry.get("max_retries"), int) or retry["max_retries"] < 0:
        errors.append("retry.max_retries must be a non-negative integer")
    if not _is_number(retry.get("initial_delay_ms")) or retry["initial_delay_ms"] < 0:
        errors.append("retry.initial_delay_ms must be >= 0")
    if not _is_number(retry.get("backoff_multiplier")) or retry["backoff_multiplier"] < 1:
        errors.append("retry.backoff_multiplier must be >= 1")

    rpc = config["rpc"]
    if not isinstance(rpc.get("requests_per_minute"), int) or rpc["requests_per_minute"] < 0:
        errors.append("rpc.requests_per_minute must be a non-negative integer")
    if not _is_number(rpc.get("block_cache_ttl")) or rpc["block_cache_ttl"] < 0:
        errors.append("rpc.block_cache_ttl must be >= 0")

    history = config["history"]
    if not isinstance(history.get("lookback_days"), int) or history["lookback_days"] < 1:
        errors.append("history.lookback_days must be a positive integer")
    if not isinstance(history.get("max_lookback_multiplier"), int) or history["max_lookback_multiplier"] < 1:
        errors.append("history.max_lookback_multiplier must be a positive integer")
    if not _is_number(history.get("average_block_time_seconds")) or history["average_block_time_seconds"] <= 0:
        errors.append("history.average_block_time_seconds must be > 0")

    revenue = config["revenue"]
    if revenue.get("realized_mode") not in REALIZED_MODES:
        errors.append(f"revenue.realized_mode must be one of: {', '.join(REALIZED_MODES)}")
    if revenue.get("revenue_share_mode") not in REVENUE_SHARE_MODES:
        errors.append(f"revenue.revenue_share_mode must be one of: {', '.join(REVENUE_SHARE_MODES)}")

    return errors
