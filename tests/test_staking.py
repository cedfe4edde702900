import pytest

from tokenecon.config import DAY, YEAR
from tokenecon.errors import InsufficientBalance, InvalidAmount, RateTooHigh, Unauthorized

from conftest import OWNER


@pytest.fixture
def bob(fund):
    return fund("bob", A=10_000_000)


def test_linear_accrual(staking, clock, ledger, bob):
    staking.stake(bob, 1_000_000)
    assert ledger.balance_of("A", staking.address) == 1_000_000
    clock.advance(YEAR // 2)
    assert staking.pending_rewards(bob) == 50_000
    clock.advance(YEAR // 2)
    assert staking.pending_rewards(bob) == 100_000
    assert staking.claim_rewards(bob) == 100_000
    assert ledger.balance_of("R", bob) == 100_000
    assert staking.pending_rewards(bob) == 0


def test_pending_is_monotonic(staking, clock, bob):
    staking.stake(bob, 3_333_333)
    last = 0
    for _ in range(10):
        clock.advance(DAY)
        pending = staking.pending_rewards(bob)
        assert pending >= last
        last = pending


def test_stake_settles_before_changing_balance(staking, clock, ledger, bob):
    staking.stake(bob, 1_000_000)
    clock.advance(YEAR)
    assert staking.stake(bob, 1_000_000) == 100_000
    assert staking.stake_info(bob).last_update_time == clock.now
    clock.advance(YEAR)
    assert staking.pending_rewards(bob) == 200_000
    assert staking.unstake(bob, 2_000_000) == 200_000
    assert staking.staked(bob) == 0
    assert staking.total_staked == 0
    assert ledger.balance_of("A", bob) == 10_000_000
    assert ledger.balance_of("R", bob) == 300_000


def test_dust_claim_carries_remainder(staking, clock, bob):
    staking.stake(bob, 10)                      # accrues one unit a year
    clock.advance(YEAR // 2)
    assert staking.claim_rewards(bob) == 0
    info = staking.stake_info(bob)
    assert info.last_update_time == clock.now
    assert info.carry == YEAR // 2
    clock.advance(YEAR // 2)
    assert staking.pending_rewards(bob) == 1
    assert staking.claim_rewards(bob) == 1
    assert staking.stake_info(bob).carry == 0


def test_balance_change_keeps_remainder(staking, clock, ledger, bob):
    staking.stake(bob, 10)
    clock.advance(3 * YEAR // 4)
    assert staking.stake(bob, 10) == 0
    clock.advance(YEAR // 4)
    # 0.75 carried at the old stake plus 0.5 at the new one
    assert staking.pending_rewards(bob) == 1
    assert staking.unstake(bob, 20) == 1
    assert ledger.balance_of("R", bob) == 1


def test_rate_applies_to_stake_before_time(staking, clock, bob):
    staking.stake(bob, 19)
    clock.advance(2 * YEAR)
    # 19 * 1000 // 10000 == 1 per year
    assert staking.pending_rewards(bob) == 2
    assert staking.claim_rewards(bob) == 2


def test_unstake_limits(staking, bob):
    with pytest.raises(InsufficientBalance):
        staking.unstake(bob, 1)
    staking.stake(bob, 100)
    with pytest.raises(InsufficientBalance):
        staking.unstake(bob, 101)
    with pytest.raises(InvalidAmount):
        staking.stake(bob, 0)
    assert staking.staked(bob) == 100


def test_claim_without_stake_pays_nothing(staking, log):
    assert staking.claim_rewards("nobody") == 0
    [e] = log.of_type("REWARDS_CLAIMED")
    assert e.amount == 0


def test_rate_admin(staking, clock, bob, log):
    with pytest.raises(Unauthorized):
        staking.set_annual_rate(bob, 2_000)
    with pytest.raises(RateTooHigh):
        staking.set_annual_rate(OWNER, 5_001)
    assert staking.annual_rate_bps == 1_000
    staking.set_annual_rate(OWNER, 5_000)
    assert staking.annual_rate_bps == 5_000
    [e] = log.of_type("ANNUAL_RATE_UPDATED")
    assert (e.amount, e.meta["previous"]) == (5_000, 1_000)

    staking.stake(bob, 1_000_000)
    clock.advance(YEAR)
    assert staking.pending_rewards(bob) == 500_000


def test_failed_stake_leaves_no_trace(staking, log, fund):
    fund("carol", A=10)
    with pytest.raises(InsufficientBalance):
        staking.stake("carol", 11)
    assert staking.staked("carol") == 0
    assert "carol" not in staking.stakes
    assert log.of_type("STAKED") == []
