import pytest

from tokenecon.errors import InsufficientBalance, InvalidAmount, PoolExists, PoolNotFound, Unauthorized

from conftest import OWNER


@pytest.fixture
def farmers(fund):
    fund("alice", A=10_000, B=10_000)
    fund("bob", A=10_000, B=10_000)
    return "alice", "bob"


def test_single_pool_emission(farm, clock, ledger, farmers):
    alice, _ = farmers
    pid = farm.add_pool(OWNER, 100, "A")
    farm.deposit(alice, pid, 1_000)
    clock.advance(10)
    assert farm.pending_reward(pid, alice) == 1_000
    assert farm.harvest(alice, pid) == 1_000
    assert ledger.balance_of("R", alice) == 1_000
    assert farm.pending_reward(pid, alice) == 0


def test_rewards_split_by_stake_and_weight(farm, clock, farmers):
    alice, bob = farmers
    farm.add_pool(OWNER, 100, "A")
    farm.add_pool(OWNER, 100, "B")
    farm.deposit(alice, 0, 1_000)
    farm.deposit(bob, 0, 1_000)
    farm.deposit(bob, 1, 500)
    clock.advance(10)
    assert farm.pending_reward(0, alice) == 250
    assert farm.pending_reward(0, bob) == 250
    assert farm.pending_reward(1, bob) == 500


def test_add_pool_settles_existing_pools_first(farm, clock, farmers):
    alice, _ = farmers
    farm.add_pool(OWNER, 100, "A")
    farm.deposit(alice, 0, 1_000)
    clock.advance(10)
    farm.add_pool(OWNER, 100, "B")
    clock.advance(10)
    assert farm.pending_reward(0, alice) == 1_500


def test_set_pool_weight_and_emission(farm, clock, farmers, log):
    alice, _ = farmers
    farm.add_pool(OWNER, 100, "A")
    farm.add_pool(OWNER, 100, "B")
    farm.deposit(alice, 0, 1_000)
    with pytest.raises(Unauthorized):
        farm.set_pool_weight(alice, 1, 0)
    farm.set_pool_weight(OWNER, 1, 0)
    assert farm.total_allocation_weight == 100
    clock.advance(10)
    assert farm.pending_reward(0, alice) == 1_000
    farm.set_emission_rate(OWNER, 0)
    clock.advance(10)
    assert farm.pending_reward(0, alice) == 1_000
    assert len(log.of_type("FARM_WEIGHT_SET")) == 1
    assert len(log.of_type("EMISSION_RATE_SET")) == 1


def test_accumulator_monotonic_and_pending_non_negative(farm, clock, farmers):
    alice, bob = farmers
    farm.add_pool(OWNER, 3, "A")
    farm.deposit(alice, 0, 777)
    last_acc = 0
    for i in range(12):
        clock.advance(7)
        if i % 3 == 0:
            farm.deposit(bob, 0, 131)
        elif i % 3 == 1:
            farm.withdraw(alice, 0, 10)
        else:
            farm.update_pool(0)
        acc = farm.pool_info(0).acc_reward_per_share
        assert acc >= last_acc
        last_acc = acc
        assert farm.pending_reward(0, alice) >= 0
        assert farm.pending_reward(0, bob) >= 0


def test_withdraw_returns_stake_and_rewards(farm, clock, ledger, farmers):
    alice, _ = farmers
    farm.add_pool(OWNER, 1, "A")
    farm.deposit(alice, 0, 1_000)
    clock.advance(5)
    assert farm.withdraw(alice, 0, 400) == 500
    assert ledger.balance_of("A", alice) == 9_400
    assert farm.pool_info(0).total_staked == 600
    with pytest.raises(InsufficientBalance):
        farm.withdraw(alice, 0, 601)


def test_emergency_withdraw_forfeits_rewards(farm, clock, ledger, farmers, log):
    alice, _ = farmers
    farm.add_pool(OWNER, 1, "A")
    farm.deposit(alice, 0, 1_000)
    clock.advance(5)
    assert farm.emergency_withdraw(alice, 0) == 1_000
    assert ledger.balance_of("A", alice) == 10_000
    assert ledger.balance_of("R", alice) == 0
    assert farm.user_info(0, alice).amount == 0
    assert farm.pending_reward(0, alice) == 0
    with pytest.raises(InsufficientBalance):
        farm.emergency_withdraw(alice, 0)
    assert len(log.of_type("FARM_EMERGENCY_WITHDRAW")) == 1


def test_pool_admin_rules(farm, farmers):
    alice, _ = farmers
    with pytest.raises(Unauthorized):
        farm.add_pool(alice, 1, "A")
    farm.add_pool(OWNER, 1, "A")
    with pytest.raises(PoolExists):
        farm.add_pool(OWNER, 1, "A")
    with pytest.raises(InvalidAmount):
        farm.add_pool(OWNER, -1, "B")
    with pytest.raises(PoolNotFound):
        farm.deposit(alice, 5, 1)
    assert farm.pool_count == 1


def test_update_with_no_stakers_mints_nothing(farm, clock, ledger):
    farm.add_pool(OWNER, 1, "A")
    clock.advance(100)
    assert farm.mass_update_pools() == 0
    assert ledger.total_supply("R") == 0
    assert farm.pool_info(0).last_reward_time == clock.now
