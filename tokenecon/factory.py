from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional
import numpy as np
import random

from .config import ScenarioConfig
from .core import Clock, EventLog
from .farm import YieldFarm
from .ledger import MAX_ALLOWANCE, TokenLedger
from .loans import LoanEscrow
from .pools import PoolEngine
from .router import Router
from .staking import StakingEngine

AgentRole = Literal["trader", "liquidity_provider", "staker", "farmer", "borrower", "lender"]

TREASURY = "treasury"

@dataclass
class Agent:
    agent_id: str
    role: AgentRole

@dataclass
class Economy:
    """One ledger, clock and event log shared by every engine."""
    cfg: ScenarioConfig
    ledger: TokenLedger
    clock: Clock
    log: EventLog
    pools: PoolEngine
    router: Router
    staking: StakingEngine
    farm: YieldFarm
    loans: LoanEscrow

    @property
    def engine_addresses(self) -> List[str]:
        return [self.pools.address, self.staking.address, self.farm.address, self.loans.address]

    def units(self, whole: float) -> int:
        return int(round(whole * self.cfg.token_unit))

    def fund(self, account: str, token: str, amount: int) -> None:
        self.ledger.mint(token, TREASURY, account, amount)

    def approve_engines(self, account: str) -> None:
        for token in self.cfg.token_symbols:
            for spender in self.engine_addresses:
                self.ledger.approve(token, account, spender, MAX_ALLOWANCE)


def build_economy(cfg: ScenarioConfig) -> Economy:
    ledger = TokenLedger(debug=cfg.debug_ledger)
    clock = Clock(cfg.start_time)
    log = EventLog(maxlen=cfg.event_log_maxlen)

    for symbol in cfg.token_symbols:
        ledger.register_token(symbol, minters=[TREASURY])
    ledger.register_token(cfg.reward_symbol, minters=[TREASURY])

    pools = PoolEngine(ledger, clock, TREASURY, cfg.pool, log=log)
    staking = StakingEngine(ledger, clock, TREASURY, cfg.stake_symbol, cfg.reward_symbol, cfg.staking, log=log)
    farm = YieldFarm(ledger, clock, TREASURY, cfg.reward_symbol, cfg.farm, log=log)
    loans = LoanEscrow(ledger, clock, TREASURY, cfg.loan_symbol, cfg.loans, log=log)

    # reward engines mint RWD directly
    ledger.grant_minter(cfg.reward_symbol, TREASURY, staking.address)
    ledger.grant_minter(cfg.reward_symbol, TREASURY, farm.address)

    return Economy(cfg=cfg, ledger=ledger, clock=clock, log=log, pools=pools,
                   router=Router(pools), staking=staking, farm=farm, loans=loans)


class AgentFactory:
    def __init__(self, economy: Economy, rng: random.Random, np_rng: np.random.Generator) -> None:
        self.economy = economy
        self.cfg = economy.cfg
        self.rng = rng
        self.np_rng = np_rng
        self.agent_counter = 0

    def _new_agent_id(self, role: AgentRole) -> str:
        self.agent_counter += 1
        return f"{role}_{self.agent_counter:04d}"

    def sample_balance(self) -> int:
        cfg = self.cfg
        sigma = max(0.0, float(cfg.initial_balance_sigma))
        # lognormal with the configured mean
        whole = float(self.np_rng.lognormal(np.log(max(1e-9, cfg.initial_balance_mean)) - sigma**2 / 2, sigma))
        return self.economy.units(whole)

    def create_agent(self, role: AgentRole, balances: Optional[Dict[str, int]] = None) -> Agent:
        agent = Agent(agent_id=self._new_agent_id(role), role=role)
        if balances is None:
            balances = {symbol: self.sample_balance() for symbol in self.cfg.token_symbols}
        for token, amount in balances.items():
            if amount > 0:
                self.economy.fund(agent.agent_id, token, amount)
        self.economy.approve_engines(agent.agent_id)
        return agent

    def create_population(self) -> List[Agent]:
        cfg = self.cfg
        counts = [
            ("trader", cfg.initial_traders),
            ("liquidity_provider", cfg.initial_liquidity_providers),
            ("staker", cfg.initial_stakers),
            ("farmer", cfg.initial_farmers),
            ("borrower", cfg.initial_borrowers),
            ("lender", cfg.initial_lenders),
        ]
        return [self.create_agent(role) for role, n in counts for _ in range(max(0, int(n)))]
