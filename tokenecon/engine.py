from __future__ import annotations
from collections import Counter
from itertools import combinations
from typing import Dict, List, Optional
import logging
import math
import numpy as np
import random

from .config import BPS, DAY, ScenarioConfig
from .core import Event
from .errors import LedgerError
from .factory import Agent, AgentFactory, TREASURY, build_economy
from .loans import LoanStatus
from .metrics import MetricsStore

logger = logging.getLogger(__name__)

MARKET_MAKER = "market_maker"


class SimulationEngine:
    """
    Seeded tick loop over one Economy. Every tick advances the shared clock by
    `tick_seconds` and lets a random subset of agents act according to their
    role. Engine failures are expected (slippage, empty balances, expired
    requests); they are recorded as ACTION_FAILED events and the run goes on.
    """

    def __init__(self, cfg: ScenarioConfig, seed: int = 1) -> None:
        self.cfg = cfg
        self.rng = random.Random(seed)
        self.np_rng = np.random.default_rng(seed)

        self.tick: int = 0
        self.economy = build_economy(cfg)
        self.ledger = self.economy.ledger
        self.clock = self.economy.clock
        self.log = self.economy.log
        self.metrics = MetricsStore()
        self.factory = AgentFactory(self.economy, self.rng, self.np_rng)

        self.agents: Dict[str, Agent] = {}
        self.failures: Counter = Counter()
        self.actions: Counter = Counter()
        self._bootstrap()

    # -----------------------------
    # Bootstrap
    # -----------------------------
    def _bootstrap(self) -> None:
        econ = self.economy
        cfg = self.cfg
        seed = econ.units(cfg.seed_liquidity)
        pairs = list(combinations(cfg.token_symbols, 2))
        for token in cfg.token_symbols:
            econ.fund(MARKET_MAKER, token, seed * len(pairs))
        econ.approve_engines(MARKET_MAKER)
        for a, b in pairs:
            econ.pools.create_pool(TREASURY, a, b)
            econ.pools.add_liquidity(MARKET_MAKER, a, b, seed, seed)
        for symbol, weight in cfg.farm_pools:
            econ.farm.add_pool(TREASURY, weight, symbol)

        for agent in self.factory.create_population():
            self.agents[agent.agent_id] = agent
        self.snapshot_metrics()

    def add_agent(self, role: str, balances: Optional[Dict[str, int]] = None) -> Agent:
        agent = self.factory.create_agent(role, balances)
        self.agents[agent.agent_id] = agent
        return agent

    # -----------------------------
    # Tick loop
    # -----------------------------
    def step(self, n_ticks: int = 1) -> None:
        for _ in range(n_ticks):
            self.tick += 1
            self.clock.advance(self.cfg.tick_seconds)
            agents = list(self.agents.values())
            self.rng.shuffle(agents)
            for agent in agents:
                if self.rng.random() >= self.cfg.p_act:
                    continue
                self._act(agent)
            self.snapshot_metrics()

    def _act(self, agent: Agent) -> None:
        handler = {
            "trader": self._trade,
            "liquidity_provider": self._provide,
            "staker": self._stake,
            "farmer": self._farm,
            "borrower": self._borrow,
            "lender": self._lend,
        }[agent.role]
        action = "idle"
        try:
            action = handler(agent)
        except LedgerError as exc:
            self.failures[exc.reason] += 1
            self.log.add(Event(self.clock.now, "ACTION_FAILED", actor_id=agent.agent_id,
                               meta={"role": agent.role, "reason": exc.reason, "error": str(exc)}))
            logger.debug("[SIM] tick=%d %s failed: %s", self.tick, agent.agent_id, exc)
            return
        self.actions[action] += 1

    # -----------------------------
    # Role behaviours
    # -----------------------------
    def _sample_amount(self, balance: int) -> int:
        if balance <= 0:
            return 0
        frac = float(self.np_rng.lognormal(math.log(self.cfg.action_size_mean_frac), self.cfg.action_size_sigma))
        return max(1, min(balance, int(balance * min(1.0, frac))))

    def _with_slippage(self, amount: int) -> int:
        return amount * (BPS - self.cfg.slippage_bps) // BPS

    def _trade(self, agent: Agent) -> str:
        econ = self.economy
        token_in, token_out = self.rng.sample(self.cfg.token_symbols, 2)
        amount_in = self._sample_amount(self.ledger.balance_of(token_in, agent.agent_id))
        if amount_in <= 0:
            return "idle"
        plan = econ.router.find_route(token_in, token_out, amount_in)
        if not plan.ok:
            return "idle"
        min_out = self._with_slippage(plan.expected_amount_out)
        deadline = self.clock.now + self.cfg.tick_seconds
        if len(plan.path) == 2:
            econ.pools.swap(agent.agent_id, token_in, token_out, amount_in, min_out, deadline=deadline)
        else:
            econ.pools.swap_exact_in_path(agent.agent_id, plan.path, amount_in, min_out, deadline=deadline)
        return "swap"

    def _provide(self, agent: Agent) -> str:
        econ = self.economy
        a, b = self.rng.sample(self.cfg.token_symbols, 2)
        pool = econ.pools.get_pool(a, b)
        shares = self.ledger.balance_of(pool.lp_token, agent.agent_id)
        if shares > 0 and self.rng.random() < 0.3:
            burn = max(1, shares // 2)
            econ.pools.remove_liquidity(agent.agent_id, a, b, burn)
            return "remove_liquidity"
        desired_a = self._sample_amount(self.ledger.balance_of(a, agent.agent_id))
        desired_b = self._sample_amount(self.ledger.balance_of(b, agent.agent_id))
        if desired_a <= 0 or desired_b <= 0:
            return "idle"
        econ.pools.add_liquidity(agent.agent_id, a, b, desired_a, desired_b)
        return "add_liquidity"

    def _stake(self, agent: Agent) -> str:
        staking = self.economy.staking
        staked = staking.staked(agent.agent_id)
        r = self.rng.random()
        if staked > 0 and r < 0.2:
            staking.unstake(agent.agent_id, max(1, staked // 3))
            return "unstake"
        if staked > 0 and r < 0.5:
            staking.claim_rewards(agent.agent_id)
            return "claim"
        amount = self._sample_amount(self.ledger.balance_of(staking.stake_token, agent.agent_id))
        if amount <= 0:
            return "idle"
        staking.stake(agent.agent_id, amount)
        return "stake"

    def _farm(self, agent: Agent) -> str:
        farm = self.economy.farm
        if farm.pool_count == 0:
            return "idle"
        pid = self.rng.randrange(farm.pool_count)
        staked = farm.user_info(pid, agent.agent_id).amount
        r = self.rng.random()
        if staked > 0 and r < 0.2:
            farm.withdraw(agent.agent_id, pid, max(1, staked // 2))
            return "farm_withdraw"
        if staked > 0 and r < 0.5:
            farm.harvest(agent.agent_id, pid)
            return "harvest"
        token = farm.pool_info(pid).staked_token
        amount = self._sample_amount(self.ledger.balance_of(token, agent.agent_id))
        if amount <= 0:
            return "idle"
        farm.deposit(agent.agent_id, pid, amount)
        return "farm_deposit"

    def _borrow(self, agent: Agent) -> str:
        loans = self.economy.loans
        mine = [loans.get_loan(i) for i in loans.loans_of(agent.agent_id)]
        for loan in mine:
            if loan.status == LoanStatus.FUNDED and self.clock.now + self.cfg.tick_seconds >= loan.due_time:
                if self.rng.random() < self.cfg.p_repay:
                    loans.repay_loan(agent.agent_id, loan.loan_id)
                    return "repay"
                return "idle"
        window = loans.cfg.funding_window
        for loan in mine:
            if loan.status == LoanStatus.FUNDED:
                return "idle"
            if loan.status == LoanStatus.REQUESTED and self.clock.now <= loan.requested_at + window:
                return "idle"
        balance = self.ledger.balance_of(loans.token, agent.agent_id)
        amount = self._sample_amount(balance) or self.economy.units(100)
        duration = self.rng.choice(self.cfg.loan_duration_days) * DAY
        rate = self.rng.choice(self.cfg.loan_rate_bps)
        loans.request_loan(agent.agent_id, amount, duration, rate)
        return "request_loan"

    def _lend(self, agent: Agent) -> str:
        loans = self.economy.loans
        for loan_id in loans.loans_of(agent.agent_id):
            loan = loans.get_loan(loan_id)
            if loan.status == LoanStatus.FUNDED and loan.lender == agent.agent_id and self.clock.now > loan.due_time:
                loans.mark_default(agent.agent_id, loan_id)
                return "mark_default"
        window = loans.cfg.funding_window
        open_requests = [
            loan for loan in loans.loans_with_status(LoanStatus.REQUESTED)
            if loan.borrower != agent.agent_id and self.clock.now <= loan.requested_at + window
        ]
        if not open_requests:
            return "idle"
        loan = self.rng.choice(open_requests)
        loans.fund_loan(agent.agent_id, loan.loan_id)
        return "fund_loan"

    # -----------------------------
    # Metrics
    # -----------------------------
    def pool_rows(self) -> List[dict]:
        rows = []
        for pool in self.economy.pools.pools.values():
            rows.append({
                "tick": self.tick,
                "pool_id": pool.pool_id,
                "pair": f"{pool.token0}/{pool.token1}",
                "reserve0": pool.reserve0,
                "reserve1": pool.reserve1,
                "lp_supply": pool.lp_supply,
                "sqrt_k": math.isqrt(pool.k),
                "price": pool.reserve1 / pool.reserve0 if pool.reserve0 else 0.0,
            })
        return rows

    def farm_rows(self) -> List[dict]:
        farm = self.economy.farm
        return [
            {
                "tick": self.tick,
                "pid": pid,
                "staked_token": p.staked_token,
                "weight": p.allocation_weight,
                "total_staked": p.total_staked,
                "acc_reward_per_share": float(p.acc_reward_per_share),
            }
            for pid, p in enumerate(farm.pools)
        ]

    def loan_counts(self) -> Dict[str, int]:
        counts = Counter(loan.status.value for loan in self.economy.loans.loans)
        return {status.value: counts.get(status.value, 0) for status in LoanStatus}

    def snapshot_metrics(self) -> None:
        cfg = self.cfg
        metrics_stride = int(cfg.metrics_stride or 0)
        pool_stride = int(cfg.pool_metrics_stride or 0)
        do_network = metrics_stride > 0 and self.tick % metrics_stride == 0
        do_pool = pool_stride > 0 and self.tick % pool_stride == 0
        if do_pool:
            self.metrics.add_pool_rows(self.pool_rows())
            self.metrics.add_farm_rows(self.farm_rows())
        if not do_network:
            return
        econ = self.economy
        row = {
            "tick": self.tick,
            "time": self.clock.now,
            "pools": len(econ.pools.pools),
            "agents": len(self.agents),
            "total_staked": econ.staking.total_staked,
            "staking_rate_bps": econ.staking.annual_rate_bps,
            "reward_supply": self.ledger.total_supply(cfg.reward_symbol),
            "events": len(self.log),
            "actions_ok": sum(self.actions.values()) - self.actions.get("idle", 0),
            "actions_failed": sum(self.failures.values()),
        }
        for status, n in self.loan_counts().items():
            row[f"loans_{status}"] = n
        self.metrics.add_network(row)

    def summary(self) -> Dict[str, object]:
        return {
            "tick": self.tick,
            "actions": dict(self.actions),
            "failures": dict(self.failures),
            "loans": self.loan_counts(),
            "reserves": {r["pair"]: (r["reserve0"], r["reserve1"]) for r in self.pool_rows()},
        }
