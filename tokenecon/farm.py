"""
Multi-pool yield farm (per-share reward debt accounting).

A global emission rate is split across farm pools by allocation weight. Each
pool keeps `acc_reward_per_share`, the cumulative reward per staked unit
scaled by `acc_scale`; a user's unpaid reward is

    amount * acc_reward_per_share // acc_scale - reward_debt

and `reward_debt` is reset to the first term after every settlement. Rewards
are minted to the farm's own ledger address as pools update and paid out from
there on deposit/withdraw/harvest.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging

from .config import FarmConfig
from .core import Clock, EventLog, LedgerEngine, require_id, require_positive
from .errors import InsufficientBalance, InvalidAmount, PoolExists, PoolNotFound

logger = logging.getLogger(__name__)


@dataclass
class FarmPoolInfo:
    staked_token: str
    allocation_weight: int
    last_reward_time: int
    acc_reward_per_share: int = 0
    total_staked: int = 0


@dataclass
class UserFarmInfo:
    amount: int = 0
    reward_debt: int = 0


class YieldFarm(LedgerEngine):

    _state_fields = ("total_allocation_weight", "emission_per_second")

    def __init__(self, ledger, clock: Clock, owner: str, reward_token: str,
                 cfg: Optional[FarmConfig] = None, address: str = "yield_farm",
                 log: Optional[EventLog] = None) -> None:
        super().__init__(ledger, clock, owner, address, log)
        self.cfg = cfg or FarmConfig()
        self.reward_token = require_id(reward_token)
        self.emission_per_second = self.cfg.emission_per_second
        self.pools: List[FarmPoolInfo] = []
        self.users: Dict[Tuple[int, str], UserFarmInfo] = {}
        self.total_allocation_weight = 0

    # -----------------------------
    # Views
    # -----------------------------
    @property
    def pool_count(self) -> int:
        return len(self.pools)

    def pool_info(self, pid: int) -> FarmPoolInfo:
        return self._pool(pid)

    def user_info(self, pid: int, user: str) -> UserFarmInfo:
        self._pool(pid)
        info = self.users.get((pid, user))
        return UserFarmInfo(info.amount, info.reward_debt) if info else UserFarmInfo()

    def pending_reward(self, pid: int, user: str) -> int:
        pool = self._pool(pid)
        info = self.users.get((pid, user))
        if info is None or info.amount == 0:
            return 0
        acc = pool.acc_reward_per_share
        if self.now > pool.last_reward_time and pool.total_staked > 0:
            acc += self._pool_reward(pool) * self.cfg.acc_scale // pool.total_staked
        return info.amount * acc // self.cfg.acc_scale - info.reward_debt

    # -----------------------------
    # Admin
    # -----------------------------
    def add_pool(self, caller: str, weight: int, staked_token: str) -> int:
        with self._operation():
            self._require_owner(caller)
            require_id(staked_token)
            _require_weight(weight)
            if any(p.staked_token == staked_token for p in self.pools):
                raise PoolExists(f"farm pool for {staked_token} already exists", token=staked_token)
            # settle under the old weights before the denominator changes
            self._mass_update()
            self.pools.append(FarmPoolInfo(staked_token, weight, self.now))
            self._appended(self.pools)
            self.total_allocation_weight += weight
            pid = len(self.pools) - 1
            self._emit("FARM_POOL_ADDED", actor=caller, pool_id=str(pid), asset=staked_token, weight=weight)
        logger.info("[FARM] pool %d added token=%s weight=%d", pid, staked_token, weight)
        return pid

    def set_pool_weight(self, caller: str, pid: int, weight: int) -> None:
        with self._operation():
            self._require_owner(caller)
            pool = self._pool(pid)
            _require_weight(weight)
            self._mass_update()
            self.total_allocation_weight += weight - pool.allocation_weight
            self._touch(pool)
            previous, pool.allocation_weight = pool.allocation_weight, weight
            self._emit("FARM_WEIGHT_SET", actor=caller, pool_id=str(pid), weight=weight, previous=previous)
        logger.info("[FARM] pool %d weight %d -> %d", pid, previous, weight)

    def set_emission_rate(self, caller: str, per_second: int) -> None:
        with self._operation():
            self._require_owner(caller)
            if not isinstance(per_second, int) or per_second < 0:
                raise InvalidAmount(f"emission must be a non-negative int, got {per_second!r}")
            self._mass_update()
            previous, self.emission_per_second = self.emission_per_second, per_second
            self._emit("EMISSION_RATE_SET", actor=caller, amount=per_second, previous=previous)
        logger.info("[FARM] emission %d -> %d per second", previous, per_second)

    # -----------------------------
    # Accrual
    # -----------------------------
    def update_pool(self, pid: int) -> int:
        with self._operation():
            self._pool(pid)
            minted = self._update(pid)
            self._emit("FARM_POOL_UPDATED", pool_id=str(pid), amount=minted,
                       acc_reward_per_share=self.pools[pid].acc_reward_per_share)
        return minted

    def mass_update_pools(self) -> int:
        with self._operation():
            minted = self._mass_update()
            self._emit("FARM_POOL_UPDATED", amount=minted, pools=len(self.pools))
        return minted

    # -----------------------------
    # User operations
    # -----------------------------
    def deposit(self, caller: str, pid: int, amount: int) -> int:
        with self._operation():
            pool = self._pool(pid)
            require_positive(amount)
            self._update(pid)
            info = self.users.get((pid, caller))
            if info is None:
                info = self.users[(pid, caller)] = UserFarmInfo()
                self._added(self.users, (pid, caller))
            pending = self._unpaid(pool, self._touch(info))
            self._touch(pool)

            self.ledger.transfer_from(pool.staked_token, self.address, caller, self.address, amount)
            info.amount += amount
            pool.total_staked += amount
            info.reward_debt = info.amount * pool.acc_reward_per_share // self.cfg.acc_scale
            if pending > 0:
                self.ledger.transfer(self.reward_token, self.address, caller, pending)
            self._emit("FARM_DEPOSIT", actor=caller, pool_id=str(pid), asset=pool.staked_token,
                       amount=amount, rewards_paid=pending)
        logger.debug("[FARM] %s deposit pool=%d amount=%d paid=%d", caller, pid, amount, pending)
        return pending

    def withdraw(self, caller: str, pid: int, amount: int) -> int:
        with self._operation():
            pool = self._pool(pid)
            require_positive(amount)
            info = self.users.get((pid, caller))
            have = info.amount if info else 0
            if amount > have:
                raise InsufficientBalance(f"{caller} has {have} in farm pool {pid}, cannot withdraw {amount}",
                                          account=caller, balance=have, amount=amount)
            self._update(pid)
            pending = self._unpaid(pool, self._touch(info))
            self._touch(pool)

            info.amount -= amount
            pool.total_staked -= amount
            info.reward_debt = info.amount * pool.acc_reward_per_share // self.cfg.acc_scale
            if pending > 0:
                self.ledger.transfer(self.reward_token, self.address, caller, pending)
            self.ledger.transfer(pool.staked_token, self.address, caller, amount)
            self._emit("FARM_WITHDRAW", actor=caller, pool_id=str(pid), asset=pool.staked_token,
                       amount=amount, rewards_paid=pending)
        logger.debug("[FARM] %s withdraw pool=%d amount=%d paid=%d", caller, pid, amount, pending)
        return pending

    def harvest(self, caller: str, pid: int) -> int:
        with self._operation():
            pool = self._pool(pid)
            self._update(pid)
            info = self.users.get((pid, caller))
            pending = 0
            if info is not None:
                pending = self._unpaid(pool, self._touch(info))
                info.reward_debt = info.amount * pool.acc_reward_per_share // self.cfg.acc_scale
                if pending > 0:
                    self.ledger.transfer(self.reward_token, self.address, caller, pending)
            self._emit("FARM_HARVEST", actor=caller, pool_id=str(pid), asset=self.reward_token, amount=pending)
        logger.debug("[FARM] %s harvest pool=%d paid=%d", caller, pid, pending)
        return pending

    def emergency_withdraw(self, caller: str, pid: int) -> int:
        """Return the whole stake without settling; unpaid rewards are forfeited."""
        with self._operation():
            pool = self._pool(pid)
            info = self.users.get((pid, caller))
            amount = info.amount if info else 0
            if amount <= 0:
                raise InsufficientBalance(f"{caller} has nothing staked in farm pool {pid}", account=caller)
            self._touch(info)
            self._touch(pool)
            info.amount = 0
            info.reward_debt = 0
            pool.total_staked -= amount
            self.ledger.transfer(pool.staked_token, self.address, caller, amount)
            self._emit("FARM_EMERGENCY_WITHDRAW", actor=caller, pool_id=str(pid),
                       asset=pool.staked_token, amount=amount)
        logger.info("[FARM] %s emergency withdraw pool=%d amount=%d", caller, pid, amount)
        return amount

    # -----------------------------
    # Internals
    # -----------------------------
    def _pool(self, pid: int) -> FarmPoolInfo:
        if not isinstance(pid, int) or not 0 <= pid < len(self.pools):
            raise PoolNotFound(f"no farm pool {pid!r}", pool_id=pid)
        return self.pools[pid]

    def _pool_reward(self, pool: FarmPoolInfo) -> int:
        if self.total_allocation_weight == 0:
            return 0
        elapsed = self.now - pool.last_reward_time
        return elapsed * self.emission_per_second * pool.allocation_weight // self.total_allocation_weight

    def _update(self, pid: int) -> int:
        pool = self.pools[pid]
        if self.now <= pool.last_reward_time:
            return 0
        self._touch(pool)
        if pool.total_staked == 0:
            pool.last_reward_time = self.now
            return 0
        reward = self._pool_reward(pool)
        if reward > 0:
            self.ledger.mint(self.reward_token, self.address, self.address, reward)
            pool.acc_reward_per_share += reward * self.cfg.acc_scale // pool.total_staked
        pool.last_reward_time = self.now
        return reward

    def _mass_update(self) -> int:
        return sum(self._update(pid) for pid in range(len(self.pools)))

    def _unpaid(self, pool: FarmPoolInfo, info: UserFarmInfo) -> int:
        return info.amount * pool.acc_reward_per_share // self.cfg.acc_scale - info.reward_debt


def _require_weight(weight: int) -> None:
    if not isinstance(weight, int) or isinstance(weight, bool) or weight < 0:
        raise InvalidAmount(f"weight must be a non-negative int, got {weight!r}", weight=weight)
