#!/usr/bin/env python3
"""
Utility Functions Module for Pool Revenue Calculator
Input validation, RPC error classification, retry helper, exact integer math
and amount formatting shared across modules

Version: 1.2.0
"""

import errno
import re
import socket
import time
from datetime import datetime, date, timezone
from decimal import Decimal

import requests

from constants import BPS_DENOMINATOR
from errors import (
    BlockRangeLimitError, HistoricalDataUnavailableError, InsufficientDataError,
    TransientRpcError, ValidationError
)

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# ============================================================================
# VALIDATION
# ============================================================================

def is_valid_address(address):
    """Basic 0x + 40 hex chars check (no checksum enforcement)"""
    return isinstance(address, str) and bool(ADDRESS_RE.match(address))

def is_valid_date_format(date_string):
    """True for real calendar dates written as YYYY-MM-DD"""
    if not isinstance(date_string, str) or not DATE_RE.match(date_string):
        return False
    try:
        datetime.strptime(date_string, "%Y-%m-%d")
    except ValueError:
        return False
    return True

def is_valid_bps(value):
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= BPS_DENOMINATOR

def parse_date(date_string):
    return datetime.strptime(date_string, "%Y-%m-%d").date()

def normalize_address(address):
    """Lower-case an address, raising ValidationError when malformed"""
    if not is_valid_address(address):
        raise ValidationError(f"Invalid address format: {address}")
    return address.lower()

def parse_address_list(raw):
    """Split a comma separated address list, dropping blanks and duplicates"""
    addresses = []
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        address = normalize_address(part)
        if address not in addresses:
            addresses.append(address)
    return addresses

def validate_input_parameters(pool_address, from_date, to_date, interest_fee_bps,
                              dao_share_bps=None, deploy_date=None, treasury=None):
    """Validate all request parameters, returns a list of error strings"""
    errors = []

    if not is_valid_address(pool_address):
        errors.append("Invalid pool address format")

    from_ok = is_valid_date_format(from_date)
    to_ok = is_valid_date_format(to_date)
    if not from_ok:
        errors.append("Invalid fromDate format. Expected YYYY-MM-DD")
    if not to_ok:
        errors.append("Invalid toDate format. Expected YYYY-MM-DD")
    if from_ok and to_ok and parse_date(from_date) > parse_date(to_date):
        errors.append("fromDate must be before or equal to toDate")

    if not is_valid_bps(interest_fee_bps):
        errors.append("interestFee must be a number between 0 and 10000 (basis points)")

    if dao_share_bps is not None and not is_valid_bps(dao_share_bps):
        errors.append("daoShare must be a number between 0 and 10000 (basis points)")

    if deploy_date is not None:
        if not is_valid_date_format(deploy_date):
            errors.append("Invalid deploy date format. Expected YYYY-MM-DD")
        elif from_ok and parse_date(deploy_date) > parse_date(from_date):
            errors.append("deploy date must be on or before fromDate")

    if treasury is not None and not is_valid_address(treasury):
        errors.append("Invalid treasury address format")

    return errors

# ============================================================================
# RPC ERROR CLASSIFICATION
# ============================================================================

RETRYABLE_ERRNOS = {
    errno.ETIMEDOUT,
    errno.ECONNRESET,
    errno.ECONNREFUSED,
    errno.EADDRINUSE,
}

RETRYABLE_MESSAGE_FRAGMENTS = (
    "429",
    "rate limit",
    "rate limited",
    "too many requests",
    "limit exceeded",
    "temporarily unavailable",
    "timeout",
    "timed out",
    "try again later",
    "gateway timeout",
    "bad gateway",
    "server error",
    "socket hang up",
    "connection reset",
)

BLOCK_RANGE_LIMIT_FRAGMENTS = (
    "block range",
    "too high",
    "too wide",
    "max range",
    "query returned more than",
    "exceeds the maximum",
    "is greater than the limit",
    "response size exceeded",
)

HISTORICAL_DATA_FRAGMENTS = (
    "returned no data",
    "header not found",
    "missing trie node",
    "unknown block",
    "no state available",
    "not an archive node",
    "only supports latest",
    "state is not available",
)

def _error_message(error):
    if error is None:
        return ""
    return str(error).lower()

def is_block_range_limit_error(error):
    message = _error_message(error)
    return any(fragment in message for fragment in BLOCK_RANGE_LIMIT_FRAGMENTS)

def is_historical_data_unavailable(error):
    message = _error_message(error)
    return any(fragment in message for fragment in HISTORICAL_DATA_FRAGMENTS)

def is_retriable_error(error):
    """Rate limits, timeouts and connection drops are worth another try"""
    if isinstance(error, (requests.exceptions.Timeout, requests.exceptions.ConnectionError,
                          TimeoutError, ConnectionError)):
        return True
    code = getattr(error, "errno", None)
    if code in RETRYABLE_ERRNOS or code == getattr(socket, "EAI_AGAIN", None):
        return True
    message = _error_message(error)
    return any(fragment in message for fragment in RETRYABLE_MESSAGE_FRAGMENTS)

def should_retry_transport(error):
    """Transient and not a range-limit refusal (that one is handled by shrinking)"""
    return is_retriable_error(error) and not is_block_range_limit_error(error)

def with_retry(fn, max_retries=3, initial_delay_ms=200, backoff_multiplier=2,
               should_retry=should_retry_transport, on_retry=None, sleep=time.sleep):
    """Call fn(), retrying with exponential backoff while should_retry(error) holds.

    The first attempt runs immediately; up to ``max_retries`` more follow,
    waiting ``initial_delay_ms`` then multiplying the delay each time.
    """
    attempt = 0
    delay = max(0, initial_delay_ms) / 1000.0

    while True:
        try:
            return fn()
        except Exception as e:
            if attempt >= max_retries or not should_retry(e):
                raise
            attempt += 1
            if on_retry:
                on_retry(e, attempt, delay)
            if delay > 0:
                sleep(delay)
            delay *= backoff_multiplier

def classify_rpc_error(error, from_block=None, to_block=None):
    """Map a raw transport error onto the calculator's error taxonomy.

    Returns a new exception to raise (chained by the caller), or the original
    error when it does not belong to any typed category.
    """
    if isinstance(error, (BlockRangeLimitError, HistoricalDataUnavailableError, TransientRpcError)):
        return error
    if is_block_range_limit_error(error):
        return BlockRangeLimitError(str(error), from_block=from_block, to_block=to_block)
    if is_historical_data_unavailable(error):
        return HistoricalDataUnavailableError(
            f"RPC node has no historical state ({error}). Use an archive node."
        )
    if is_retriable_error(error):
        return TransientRpcError(f"RPC still failing after retries: {error}")
    return error

def format_error_message(error):
    """Human readable message with a hint for the most common failures"""
    if isinstance(error, HistoricalDataUnavailableError):
        return f"{error} Switch to an archive RPC provider."
    if isinstance(error, BlockRangeLimitError):
        return f"RPC provider rejected even the smallest block range: {error}"
    if isinstance(error, TransientRpcError):
        return f"{error} The provider may be rate limiting; try again later."
    if isinstance(error, (InsufficientDataError, ValidationError)):
        return str(error)

    message = str(error)
    lowered = message.lower()
    if "execution reverted" in lowered:
        return "Contract call failed. The pool address might be invalid or the contract might not be deployed."
    if "network" in lowered or "connection" in lowered:
        return "Network error. Please check your internet connection and RPC endpoint."
    return message or "Unknown error occurred"

# ============================================================================
# EXACT INTEGER MATH
# ============================================================================

def div_trunc(numerator, denominator):
    """Integer division rounding toward zero (Python's // floors)"""
    if denominator == 0:
        raise ZeroDivisionError("division by zero")
    quotient = abs(numerator) // abs(denominator)
    if (numerator < 0) != (denominator < 0):
        return -quotient
    return quotient

def mul_div(a, b, denominator):
    return div_trunc(a * b, denominator)

def apply_bps(amount, bps):
    return mul_div(amount, bps, BPS_DENOMINATOR)

# ============================================================================
# FORMATTING
# ============================================================================

def to_human_amount(raw_amount, decimals):
    """Raw integer token amount -> Decimal in whole tokens"""
    return Decimal(int(raw_amount)) / (Decimal(10) ** int(decimals))

def format_token_amount(raw_amount, decimals, symbol="", places=6):
    amount = to_human_amount(raw_amount, decimals)
    quantum = Decimal(10) ** -places
    text = f"{amount.quantize(quantum):,}"
    return f"{text} {symbol}".strip()

def format_bps(bps):
    return f"{bps} bps ({Decimal(bps) / 100}%)"

def format_timestamp(timestamp):
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")

def day_bounds(day):
    """(00:01 UTC, 23:59 UTC) unix timestamps for a date or YYYY-MM-DD string"""
    if isinstance(day, str):
        day = parse_date(day)
    if not isinstance(day, date):
        raise ValidationError(f"Invalid date: {day}")
    midnight = datetime(day.year, day.month, day.day)
    epoch = datetime(1970, 1, 1)
    start = int((midnight - epoch).total_seconds()) + 60
    end = int((midnight - epoch).total_seconds()) + 23 * 3600 + 59 * 60
    return start, end
