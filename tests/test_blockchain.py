import pytest
from hexbytes import HexBytes
from web3 import Web3

from blockchain import BlockchainManager, decode_log
from constants import TOPIC_DEPOSIT, TOPIC_WITHDRAW, TOPIC_TRANSFER, ZERO_ADDRESS
from errors import RevenueCalculatorError, HistoricalDataUnavailableError, TransientRpcError

from helpers import GENESIS_TS, BLOCK_TIME, POOL, ALICE, BOB, TREASURY, UNDERLYING, make_config

REVERTED = ValueError("execution reverted")


def address_topic(address):
    return HexBytes("0x" + "00" * 12 + address[2:])

def words(*values):
    return HexBytes(b"".join(int(v).to_bytes(32, "big") for v in values))

def raw_log(topic0, topics, data, block=100, log_index=0, tx="0x" + "ab" * 32):
    return {
        "address": POOL,
        "topics": [HexBytes(topic0)] + [address_topic(t) for t in topics],
        "data": data,
        "blockNumber": block,
        "logIndex": log_index,
        "transactionHash": HexBytes(tx),
    }


class FakeCall:
    def __init__(self, result):
        self.result = result

    def call(self):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FakeFunctions:
    def __init__(self, values):
        self._values = values

    def __getattr__(self, name):
        return lambda: FakeCall(self._values.get(name, REVERTED))


class FakeContract:
    def __init__(self, values):
        self.functions = FakeFunctions(values)


class FakeEth:
    def __init__(self, latest_block, raw_logs, contracts, block_failures):
        self.block_number = latest_block
        self.raw_logs = raw_logs
        self.contracts = contracts
        self.block_failures = list(block_failures)
        self.get_block_calls = []
        self.get_logs_params = []

    def get_block(self, number):
        self.get_block_calls.append(number)
        if self.block_failures:
            raise self.block_failures.pop(0)
        return {"number": number, "timestamp": GENESIS_TS + BLOCK_TIME * number}

    def get_logs(self, params):
        self.get_logs_params.append(params)
        return self.raw_logs

    def contract(self, address, abi):
        return FakeContract(self.contracts.get(address.lower(), {}))


class FakeW3:
    def __init__(self, connected=True, latest_block=10_000, raw_logs=(), contracts=None, block_failures=()):
        self.connected = connected
        self.eth = FakeEth(latest_block, list(raw_logs), contracts or {}, block_failures)

    def is_connected(self):
        return self.connected


def manager(**kwargs):
    return BlockchainManager("http://localhost:8545", config=make_config(), w3=FakeW3(**kwargs))


def test_decode_deposit_withdraw_and_transfer():
    deposit_log = decode_log(raw_log(TOPIC_DEPOSIT, [ALICE, BOB], words(1000, 900), block=7, log_index=2))
    withdraw_log = decode_log(raw_log(TOPIC_WITHDRAW, [ALICE, BOB, TREASURY], words(50, 45)))
    transfer_log = decode_log(raw_log(TOPIC_TRANSFER, [ZERO_ADDRESS, TREASURY], words(12)))

    assert (deposit_log.kind, deposit_log.block_number, deposit_log.log_index) == ("Deposit", 7, 2)
    assert (deposit_log.sender, deposit_log.owner) == (ALICE, BOB)
    assert (deposit_log.assets, deposit_log.shares) == (1000, 900)
    assert deposit_log.transaction_hash == "0x" + "ab" * 32
    assert withdraw_log.owner == TREASURY
    assert (withdraw_log.assets, withdraw_log.shares) == (50, 45)
    assert (transfer_log.from_address, transfer_log.to_address, transfer_log.value) == (ZERO_ADDRESS, TREASURY, 12)


def test_decode_ignores_unknown_and_truncated_logs():
    unknown = Web3.to_hex(Web3.keccak(text="Approval(address,address,uint256)"))

    assert decode_log(raw_log(unknown, [ALICE, BOB], words(1))) is None
    assert decode_log(raw_log(TOPIC_DEPOSIT, [ALICE, BOB], words(1))) is None
    assert decode_log(raw_log(TOPIC_WITHDRAW, [ALICE, BOB], words(1, 2))) is None
    assert decode_log({"topics": [], "data": b""}) is None


def test_connection_failure_is_reported():
    with pytest.raises(RevenueCalculatorError, match="Failed to connect"):
        manager(connected=False)


def test_get_logs_requests_topic_alternatives_and_decodes():
    logs = [
        raw_log(TOPIC_DEPOSIT, [ALICE, ALICE], words(10, 10)),
        raw_log(Web3.to_hex(Web3.keccak(text="Paused()")), [], b""),
    ]
    chain = manager(raw_logs=logs)

    events = chain.get_logs(POOL, [TOPIC_DEPOSIT, TOPIC_WITHDRAW], 5, 10)

    params = chain.w3.eth.get_logs_params[0]
    assert params["fromBlock"] == 5 and params["toBlock"] == 10
    assert params["address"] == Web3.to_checksum_address(POOL)
    assert params["topics"] == [[TOPIC_DEPOSIT, TOPIC_WITHDRAW]]
    assert [event.kind for event in events] == ["Deposit"]


def test_block_timestamps_are_cached():
    chain = manager()

    assert chain.get_block_timestamp(10) == GENESIS_TS + 120
    assert chain.get_block_timestamp(10) == GENESIS_TS + 120
    assert chain.w3.eth.get_block_calls == [10]


def test_transient_block_errors_are_retried():
    chain = manager(block_failures=[ConnectionError("connection reset")])

    assert chain.get_block_timestamp(3) == GENESIS_TS + 36
    assert chain.w3.eth.get_block_calls == [3, 3]


def test_missing_state_maps_to_archive_error():
    chain = manager(block_failures=[ValueError("header not found")])

    with pytest.raises(HistoricalDataUnavailableError):
        chain.get_block_timestamp(3)


def test_date_to_block_binary_search():
    chain = manager(latest_block=20_000)

    assert chain.find_block_at_or_before(GENESIS_TS + 100) == 8
    assert chain.find_block_at_or_before(GENESIS_TS - 5) == 0
    assert chain.find_block_at_or_before(GENESIS_TS + 10 ** 9) == 20_000
    assert chain.date_to_start_block("2021-01-02") == (86_400 + 60) // BLOCK_TIME
    assert chain.date_to_end_block("2021-01-01") == (23 * 3600 + 59 * 60) // BLOCK_TIME


def test_pool_reads():
    contracts = {POOL: {"asset": Web3.to_checksum_address(UNDERLYING), "treasury": ZERO_ADDRESS}}
    chain = manager(contracts=contracts)

    assert chain.get_underlying_token(POOL) == UNDERLYING
    assert chain.get_dao_split(POOL) == 2000
    assert chain.get_treasury(POOL) is None


def test_pool_reads_from_contract():
    contracts = {POOL: {
        "underlyingToken": UNDERLYING,
        "daoSplit": 5000,
        "treasury": Web3.to_checksum_address(TREASURY),
    }}
    chain = manager(contracts=contracts)

    assert chain.get_underlying_token(POOL) == UNDERLYING
    assert chain.get_dao_split(POOL) == 5000
    assert chain.get_treasury(POOL) == TREASURY


def test_token_metadata_falls_back_and_caches():
    contracts = {UNDERLYING: {"decimals": 6, "symbol": "USDC"}}
    chain = manager(contracts=contracts)

    assert chain.get_token_decimals(UNDERLYING) == 6
    assert chain.get_token_name(UNDERLYING) == "USDC"
    contracts[UNDERLYING]["name"] = "USD Coin"
    assert chain.get_token_name(UNDERLYING) == "USDC"
    assert chain.get_token_name(ALICE) == ALICE


@pytest.mark.parametrize("failure, expected", [
    (TimeoutError("request timed out"), TransientRpcError),
    (ValueError("missing trie node"), HistoricalDataUnavailableError),
])
def test_provider_failures_on_pool_reads_propagate(failure, expected):
    contracts = {POOL: {"treasury": failure, "daoSplit": failure, "underlyingToken": failure}}
    chain = manager(contracts=contracts)

    with pytest.raises(expected):
        chain.get_treasury(POOL)
    with pytest.raises(expected):
        chain.get_dao_split(POOL)
    with pytest.raises(expected):
        chain.get_underlying_token(POOL)


def test_provider_failure_on_token_name_propagates():
    chain = manager(contracts={UNDERLYING: {"name": TimeoutError("request timed out")}})

    with pytest.raises(TransientRpcError):
        chain.get_token_name(UNDERLYING)
    assert UNDERLYING not in chain.token_cache


def test_expired_timestamps_are_evicted():
    now = [0]
    chain = BlockchainManager("http://localhost:8545", config=make_config(rpc__block_cache_ttl=300),
                              w3=FakeW3(), clock=lambda: now[0])

    chain.get_block_timestamp(1)
    now[0] = 100
    chain.get_block_timestamp(2)
    now[0] = 400
    chain.get_block_timestamp(2)

    assert chain.w3.eth.get_block_calls == [1, 2, 2]
    assert list(chain._block_cache) == [2]
