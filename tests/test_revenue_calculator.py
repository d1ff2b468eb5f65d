import json
from decimal import Decimal

import pytest

from constants import SCALE
from errors import InsufficientDataError, ValidationError
from revenue_calculator import RevenueCalculator

from helpers import (
    FakeChain, POOL, TREASURY, ALICE, BOB, UNDERLYING, deposit, mint, transfer, make_config, scenario_logs
)

FROM_DATE = "2021-01-02"
TO_DATE = "2021-01-03"
FROM_BLOCK = (86_400 + 60) // 12                    # 7205
TO_BLOCK = (2 * 86_400 + 23 * 3600 + 59 * 60) // 12  # 21595


def calculator(chain, **config):
    return RevenueCalculator(chain, config=make_config(**config), quiet=True, sleep=lambda s: None)


def test_end_to_end_report():
    chain = FakeChain(scenario_logs())

    report = calculator(chain).calculate(
        POOL, FROM_DATE, TO_DATE, 1000, dao_share_bps=5000, deploy_date="2021-01-01"
    )

    weighted = 2_000_000 * 86_400 + 3_300_000 * 86_280
    assert (report.from_block, report.to_block) == (FROM_BLOCK, TO_BLOCK)
    assert (report.anchor_start_block, report.anchor_end_block) == (7_200, 21_590)
    assert report.anchored_snapshots == 3
    assert report.total_revenue_raw == 500_000
    assert report.avg_tvl_raw == weighted // 172_680
    assert report.revenue_with_interest_fee_raw == 50_000
    assert report.dao_revenue_raw == 25_000
    assert report.realized_shares_minted == 10_000
    assert report.realized_revenue_raw == 12_000
    assert report.unrealized_revenue_raw == 13_000
    assert report.coverage_ratio == Decimal(1)
    assert report.deploy_block == 5
    assert report.lookback_days is None
    assert report.event_counts == {"Deposit": 3, "Transfer": 1, "Withdraw": 1}
    assert not report.used_lookback_fallback
    assert report.treasury == TREASURY
    assert report.underlying_token == UNDERLYING
    assert report.dao_revenue == Decimal("0.025")
    assert report.share_price_trace == ()


def test_report_serializes_to_json():
    report = calculator(FakeChain(scenario_logs())).calculate(
        POOL, FROM_DATE, TO_DATE, 1000, dao_share_bps=5000, debug_share_price=True
    )

    data = json.loads(json.dumps(report.to_dict()))

    assert data["dao_revenue"] == "0.025"
    assert data["realized_revenue_raw"] == 12_000
    assert "share_price_trace" not in data
    assert [s.share_price for s in report.share_price_trace] == [SCALE, SCALE * 11 // 10, SCALE * 12 // 10]


def test_lookback_search_without_deploy_date():
    chain = FakeChain(scenario_logs())

    report = calculator(chain).calculate(POOL, FROM_DATE, TO_DATE, 1000, dao_share_bps=5000)

    assert report.deploy_block == 0
    assert report.lookback_days == 365
    assert report.total_revenue_raw == 500_000


def test_dao_split_read_from_pool_when_not_given():
    chain = FakeChain(scenario_logs(), dao_split=2000)

    report = calculator(chain).calculate(POOL, FROM_DATE, TO_DATE, 1000, deploy_date="2021-01-01")

    assert report.dao_share_bps == 2000
    assert report.dao_revenue_raw == 10_000
    assert report.unrealized_revenue_raw == 0


def test_dao_split_realized_mode():
    chain = FakeChain(scenario_logs())

    report = calculator(chain, revenue__realized_mode="dao_split").calculate(
        POOL, FROM_DATE, TO_DATE, 1000, dao_share_bps=5000, deploy_date="2021-01-01"
    )

    assert report.realized_revenue_raw == 6_000
    assert report.realized_mode == "dao_split"


def test_invalid_input_fails_before_any_rpc():
    chain = FakeChain(scenario_logs())

    with pytest.raises(ValidationError) as excinfo:
        calculator(chain).calculate("0x1234", TO_DATE, FROM_DATE, 20_000, dao_share_bps=5000)

    assert len(excinfo.value.errors) == 3
    assert chain.get_logs_calls == []
    assert chain.timestamp_calls == 0


def test_unresolved_treasury_fails_before_fetching():
    chain = FakeChain(scenario_logs(), treasury=None)

    with pytest.raises(InsufficientDataError, match="Treasury"):
        calculator(chain).calculate(POOL, FROM_DATE, TO_DATE, 1000, dao_share_bps=5000)

    assert chain.get_logs_calls == []


def test_treasury_override_is_used():
    chain = FakeChain(scenario_logs(), treasury=None)

    report = calculator(chain).calculate(
        POOL, FROM_DATE, TO_DATE, 1000, dao_share_bps=5000, treasury=TREASURY.upper().replace("0X", "0x")
    )

    assert report.treasury == TREASURY
    assert report.realized_shares_minted == 10_000


def test_window_before_first_deposit_fails():
    chain = FakeChain([deposit(30_000, 100, 100), deposit(30_100, 100, 100)])

    with pytest.raises(InsufficientDataError):
        calculator(chain).calculate(POOL, FROM_DATE, TO_DATE, 1000, dao_share_bps=5000,
                                    deploy_date="2021-01-01")


def test_revenue_share_for_tracked_addresses():
    logs = scenario_logs() + [
        mint(7_200, ALICE, 1_000_000, log_index=1),
        transfer(14_400, ALICE, BOB, 500_000, log_index=1),
    ]
    chain = FakeChain(logs)

    report = calculator(chain).calculate(
        POOL, FROM_DATE, TO_DATE, 1000, dao_share_bps=5000, deploy_date="2021-01-01",
        revenue_share_addresses=ALICE, revenue_share_coeff="0.5"
    )

    share = report.revenue_share
    assert share.addresses == (ALICE,)
    assert share.coefficient == "0.5"
    assert share.mode == "tvl_ratio"
    assert share.checkpoints == 3
    assert share.weighted_balance_sum == 1_000_000 * 86_340 + 500_000 * 86_340
    assert share.addresses_weighted_tvl == 750_000
    assert share.revenue_share == 750_000 * 500_000 // (report.avg_tvl_raw * 2)


def test_flat_revenue_share():
    chain = FakeChain(scenario_logs())

    report = calculator(chain, revenue__revenue_share_mode="flat").calculate(
        POOL, FROM_DATE, TO_DATE, 1000, dao_share_bps=5000, deploy_date="2021-01-01",
        revenue_share_addresses=[BOB], revenue_share_coeff="0.2"
    )

    assert report.revenue_share.revenue_share == 5_000


@pytest.mark.parametrize("addresses, coeff", [
    (ALICE, None),
    (None, "0.5"),
    (ALICE, "2"),
    (ALICE, "abc"),
    ("0xnotanaddress", "0.5"),
])
def test_revenue_share_arguments_are_validated(addresses, coeff):
    chain = FakeChain(scenario_logs())

    with pytest.raises(ValidationError):
        calculator(chain).calculate(POOL, FROM_DATE, TO_DATE, 1000, dao_share_bps=5000,
                                    revenue_share_addresses=addresses, revenue_share_coeff=coeff)

    assert chain.get_logs_calls == []
