#!/usr/bin/env python3
"""
Constants Module for Pool Revenue Calculator
Contains ABIs, event topics, fixed-point scale and default configuration

Version: 1.2.0
"""

from web3 import Web3

# Version and metadata
VERSION = "1.2.0"
CONFIG_FILE = "revenue_calculator_config.json"

# Fixed-point scale used for share prices (underlying units per LP share)
SCALE = 10 ** 18

# Basis points denominator
BPS_DENOMINATOR = 10_000

# Used when daoSplit() cannot be read from the pool
DEFAULT_DAO_SPLIT_BPS = 2000

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Event signatures (ERC-4626 vault layout)
DEPOSIT_EVENT_SIGNATURE = "Deposit(address,address,uint256,uint256)"
WITHDRAW_EVENT_SIGNATURE = "Withdraw(address,address,address,uint256,uint256)"
TRANSFER_EVENT_SIGNATURE = "Transfer(address,address,uint256)"

TOPIC_DEPOSIT = Web3.to_hex(Web3.keccak(text=DEPOSIT_EVENT_SIGNATURE))
TOPIC_WITHDRAW = Web3.to_hex(Web3.keccak(text=WITHDRAW_EVENT_SIGNATURE))
TOPIC_TRANSFER = Web3.to_hex(Web3.keccak(text=TRANSFER_EVENT_SIGNATURE))

EVENT_DEPOSIT = "Deposit"
EVENT_WITHDRAW = "Withdraw"
EVENT_TRANSFER = "Transfer"

TOPIC_TO_KIND = {
    TOPIC_DEPOSIT: EVENT_DEPOSIT,
    TOPIC_WITHDRAW: EVENT_WITHDRAW,
    TOPIC_TRANSFER: EVENT_TRANSFER,
}

# Realized revenue valuation modes
REALIZED_MODE_UNSCALED = "unscaled"    # minted shares already are the DAO's cut
REALIZED_MODE_DAO_SPLIT = "dao_split"  # apply daoSplit to minted shares first
REALIZED_MODES = (REALIZED_MODE_UNSCALED, REALIZED_MODE_DAO_SPLIT)

# Revenue share formulas
REVENUE_SHARE_TVL_RATIO = "tvl_ratio"  # (addr TW-TVL / pool TW-TVL) * pool revenue * coeff
REVENUE_SHARE_FLAT = "flat"            # coeff * DAO revenue
REVENUE_SHARE_MODES = (REVENUE_SHARE_TVL_RATIO, REVENUE_SHARE_FLAT)

# Default configuration
DEFAULT_CONFIG = {
    "version": VERSION,
    "log_fetching": {
        "batch_size": 100_000,        # blocks per eth_getLogs window
        "min_batch_size": 2_000,      # floor when the provider rejects a range
        "concurrency": 4,             # parallel windows per wave
        "batch_delay_seconds": 0.1,   # pause between windows/waves
    },
    "retry": {
        "max_retries": 3,             # 4 attempts in total
        "initial_delay_ms": 200,
        "backoff_multiplier": 2,
    },
    "rpc": {
        "requests_per_minute": 0,     # 0 = no client-side throttling
        "block_cache_ttl": 300,       # seconds, 0 disables the timestamp cache
    },
    "history": {
        "lookback_days": 365,
        "max_lookback_multiplier": 5,
        "average_block_time_seconds": 12,
    },
    "revenue": {
        "realized_mode": REALIZED_MODE_UNSCALED,
        "revenue_share_mode": REVENUE_SHARE_TVL_RATIO,
    },
    "display_settings": {
        "debug_mode": False,
        "show_progress": True,
        "decimals_shown": 6,
    },
}

# Minimal pool ABI (read functions only, events are decoded from raw logs)
POOL_ABI = [
    {
        "inputs": [],
        "name": "underlyingToken",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "asset",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "daoSplit",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "treasury",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    }
]

# ERC20 ABI
TOKEN_ABI = [
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "name",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    }
]
