from __future__ import annotations

import pytest

from tokenecon.config import FarmConfig
from tokenecon.core import Clock, EventLog
from tokenecon.farm import YieldFarm
from tokenecon.ledger import MAX_ALLOWANCE, TokenLedger
from tokenecon.loans import LoanEscrow
from tokenecon.pools import PoolEngine
from tokenecon.router import Router
from tokenecon.staking import StakingEngine

T0 = 1_000_000
OWNER = "owner"
MINTER = "minter"


@pytest.fixture
def clock() -> Clock:
    return Clock(T0)


@pytest.fixture
def log() -> EventLog:
    return EventLog()


@pytest.fixture
def ledger() -> TokenLedger:
    ledger = TokenLedger()
    for token in ("A", "B", "C", "R"):
        ledger.register_token(token, minters=[MINTER])
    return ledger


@pytest.fixture
def fund(ledger):
    """fund(account, **balances) mints and approves every engine address."""
    def _fund(account: str, **balances: int) -> str:
        for token, amount in balances.items():
            ledger.mint(token, MINTER, account, amount)
        for token in ("A", "B", "C"):
            for spender in ("pool_engine", "staking_engine", "yield_farm", "loan_escrow"):
                ledger.approve(token, account, spender, MAX_ALLOWANCE)
        return account
    return _fund


@pytest.fixture
def pools(ledger, clock, log) -> PoolEngine:
    return PoolEngine(ledger, clock, OWNER, log=log)


@pytest.fixture
def router(pools) -> Router:
    return Router(pools)


@pytest.fixture
def staking(ledger, clock, log) -> StakingEngine:
    engine = StakingEngine(ledger, clock, OWNER, "A", "R", log=log)
    ledger.grant_minter("R", MINTER, engine.address)
    return engine


@pytest.fixture
def farm(ledger, clock, log) -> YieldFarm:
    engine = YieldFarm(ledger, clock, OWNER, "R", FarmConfig(emission_per_second=100), log=log)
    ledger.grant_minter("R", MINTER, engine.address)
    return engine


@pytest.fixture
def loans(ledger, clock, log) -> LoanEscrow:
    return LoanEscrow(ledger, clock, OWNER, "A", log=log)
