from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Optional
import logging

from .config import BPS, StakingConfig
from .core import Clock, EventLog, LedgerEngine, require_id, require_positive
from .errors import InsufficientBalance, InvalidAmount, RateTooHigh

logger = logging.getLogger(__name__)


@dataclass
class StakeInfo:
    amount: int = 0
    last_update_time: int = 0
    carry: int = 0          # sub-unit remainder, scaled by seconds_per_year


class StakingEngine(LedgerEngine):
    """
    Single-asset stake with linear APY accrual. Rewards are minted in
    `reward_token`; the stake itself is held at the engine's ledger address.

    Any balance change settles first: what has accrued up to `now` is minted,
    then the clock for that staker restarts. The sub-unit remainder is kept
    per staker and counts toward the next settlement.
    """

    _state_fields = ("total_staked", "annual_rate_bps")

    def __init__(self, ledger, clock: Clock, owner: str, stake_token: str, reward_token: str,
                 cfg: Optional[StakingConfig] = None, address: str = "staking_engine",
                 log: Optional[EventLog] = None) -> None:
        super().__init__(ledger, clock, owner, address, log)
        self.cfg = cfg or StakingConfig()
        self.stake_token = require_id(stake_token)
        self.reward_token = require_id(reward_token)
        self.annual_rate_bps = self.cfg.annual_rate_bps
        self.stakes: Dict[str, StakeInfo] = {}
        self.total_staked = 0

    # -----------------------------
    # Views
    # -----------------------------
    def stake_info(self, user: str) -> StakeInfo:
        info = self.stakes.get(user)
        return StakeInfo(info.amount, info.last_update_time, info.carry) if info else StakeInfo()

    def staked(self, user: str) -> int:
        info = self.stakes.get(user)
        return info.amount if info else 0

    def pending_rewards(self, user: str) -> int:
        info = self.stakes.get(user)
        if info is None:
            return 0
        return self._accrued(info)

    # -----------------------------
    # Mutations
    # -----------------------------
    def stake(self, caller: str, amount: int) -> int:
        with self._operation():
            require_positive(amount)
            info = self.stakes.get(caller)
            if info is None:
                info = self.stakes[caller] = StakeInfo(0, self.now)
                self._added(self.stakes, caller)
            paid = self._settle(caller, self._touch(info))
            self.ledger.transfer_from(self.stake_token, self.address, caller, self.address, amount)
            info.amount += amount
            self.total_staked += amount
            self._emit("STAKED", actor=caller, asset=self.stake_token, amount=amount, rewards_paid=paid)
        logger.debug("[STAKE] %s staked %d (rewards paid %d)", caller, amount, paid)
        return paid

    def unstake(self, caller: str, amount: int) -> int:
        with self._operation():
            require_positive(amount)
            info = self.stakes.get(caller)
            have = info.amount if info else 0
            if info is None or amount > have:
                raise InsufficientBalance(f"{caller} has {have} staked, cannot unstake {amount}",
                                          account=caller, balance=have, amount=amount)
            paid = self._settle(caller, self._touch(info))
            info.amount -= amount
            self.total_staked -= amount
            self.ledger.transfer(self.stake_token, self.address, caller, amount)
            self._emit("UNSTAKED", actor=caller, asset=self.stake_token, amount=amount, rewards_paid=paid)
        logger.debug("[STAKE] %s unstaked %d (rewards paid %d)", caller, amount, paid)
        return paid

    def claim_rewards(self, caller: str) -> int:
        with self._operation():
            info = self.stakes.get(caller)
            paid = self._settle(caller, self._touch(info)) if info else 0
            self._emit("REWARDS_CLAIMED", actor=caller, asset=self.reward_token, amount=paid)
        logger.debug("[STAKE] %s claimed %d", caller, paid)
        return paid

    def set_annual_rate(self, caller: str, rate_bps: int) -> None:
        with self._operation():
            self._require_owner(caller)
            if not isinstance(rate_bps, int) or rate_bps < 0:
                raise InvalidAmount(f"rate must be a non-negative int, got {rate_bps!r}", rate_bps=rate_bps)
            if rate_bps > self.cfg.max_annual_rate_bps:
                raise RateTooHigh(f"{rate_bps} bps exceeds ceiling {self.cfg.max_annual_rate_bps}",
                                  rate_bps=rate_bps, ceiling=self.cfg.max_annual_rate_bps)
            previous, self.annual_rate_bps = self.annual_rate_bps, rate_bps
            self._emit("ANNUAL_RATE_UPDATED", actor=caller, amount=rate_bps, previous=previous)
        logger.info("[STAKE] annual rate %d -> %d bps", previous, rate_bps)

    # -----------------------------
    # Internals
    # -----------------------------
    def _accrued_scaled(self, info: StakeInfo) -> int:
        """Reward owed since the last settlement, in 1/seconds_per_year units."""
        elapsed = max(0, self.now - info.last_update_time)
        return info.amount * self.annual_rate_bps // BPS * elapsed + info.carry

    def _accrued(self, info: StakeInfo) -> int:
        return self._accrued_scaled(info) // self.cfg.seconds_per_year

    def _settle(self, user: str, info: StakeInfo) -> int:
        """Mint the whole units accrued to `now` and carry the remainder."""
        scaled = self._accrued_scaled(info)
        pending = scaled // self.cfg.seconds_per_year
        if pending > 0:
            self.ledger.mint(self.reward_token, self.address, user, pending)
        info.carry = scaled - pending * self.cfg.seconds_per_year
        info.last_update_time = self.now
        return pending
