import pytest

from tokenecon.config import DAY, YEAR
from tokenecon.errors import InsufficientBalance


@pytest.fixture
def alice(fund, pools, staking, clock):
    """alice has a B/C pool seeded, a year of staking rewards pending, and swaps on every reward payout."""
    fund("alice", A=2_000_000, B=10_000, C=10_000)
    pools.create_pool("alice", "B", "C")
    pools.add_liquidity("alice", "B", "C", 5_000, 5_000)
    staking.stake("alice", 1_000_000)
    clock.advance(YEAR)
    return "alice"


def swap_on_reward(pools, loans=None):
    def hook(token, sender, amount):
        if token != "R":
            return
        pools.swap("alice", "B", "C", 100)
        if loans is not None:
            loans.request_loan("alice", 500, 7 * DAY, 100)
    return hook


def test_failed_outer_call_undoes_nested_swap(alice, ledger, pools, staking, log):
    ledger.on_receive(alice, swap_on_reward(pools))
    stake_before = staking.stake_info(alice)
    r_before = ledger.balance_of("R", alice)

    with pytest.raises(InsufficientBalance):
        staking.stake(alice, 10**9)

    pool = pools.get_pool("B", "C")
    assert (pool.reserve0, pool.reserve1) == (5_000, 5_000)
    assert ledger.balance_of("B", pools.address) == 5_000
    assert ledger.balance_of("C", pools.address) == 5_000
    assert ledger.balance_of("B", alice) == 5_000
    assert log.of_type("SWAP") == []
    assert log.of_type("STAKED")[-1].amount == 1_000_000
    assert ledger.balance_of("R", alice) == r_before == 0
    assert staking.stake_info(alice) == stake_before
    assert staking.total_staked == 1_000_000


def test_failed_outer_call_drops_nested_records(alice, ledger, pools, staking, loans, log):
    ledger.on_receive(alice, swap_on_reward(pools, loans))
    with pytest.raises(InsufficientBalance):
        staking.stake(alice, 10**9)
    assert loans.loan_count == 0
    assert loans.loans_of(alice) == []
    assert alice not in loans.loans_by_party
    assert log.of_type("LOAN_REQUESTED") == []


def test_nested_swap_lands_with_outer_call(alice, ledger, pools, staking, log):
    ledger.on_receive(alice, swap_on_reward(pools))
    expected_out = pools.get_amount_out(100, 5_000, 5_000)

    assert staking.stake(alice, 1) == 100_000

    pool = pools.get_pool("B", "C")
    assert (pool.reserve0, pool.reserve1) == (5_100, 5_000 - expected_out)
    assert ledger.balance_of("C", pools.address) == pool.reserve1
    assert ledger.balance_of("R", alice) == 100_000
    kinds = [e.event_type for e in log.events]
    # the nested swap commits first, the call that triggered it last
    assert kinds[-2:] == ["SWAP", "STAKED"]
