from __future__ import annotations
from dataclasses import dataclass, field

from .errors import ConfigError

BPS = 10_000
DAY = 86_400
YEAR = 365 * DAY
RATE_CEILING_BPS = 5_000  # 50% APY hard ceiling for the staking rate


@dataclass
class PoolConfig:
    fee_bps: int = 30                 # 0.30% swap fee
    minimum_liquidity: int = 1_000    # shares locked forever on the first deposit

    def __post_init__(self) -> None:
        if not 0 <= self.fee_bps < BPS:
            raise ConfigError(f"fee_bps must be in [0, {BPS}), got {self.fee_bps}")
        if self.minimum_liquidity <= 0:
            raise ConfigError("minimum_liquidity must be positive")


@dataclass
class StakingConfig:
    annual_rate_bps: int = 1_000      # 10% APY
    max_annual_rate_bps: int = RATE_CEILING_BPS
    seconds_per_year: int = YEAR

    def __post_init__(self) -> None:
        if not 0 <= self.max_annual_rate_bps <= RATE_CEILING_BPS:
            raise ConfigError(f"max_annual_rate_bps must be in [0, {RATE_CEILING_BPS}]")
        if not 0 <= self.annual_rate_bps <= self.max_annual_rate_bps:
            raise ConfigError("annual_rate_bps exceeds max_annual_rate_bps")
        if self.seconds_per_year <= 0:
            raise ConfigError("seconds_per_year must be positive")


@dataclass
class FarmConfig:
    emission_per_second: int = 1_000_000  # 1 reward token per second at 6 decimals
    acc_scale: int = 10**12           # fixed-point multiplier for acc_reward_per_share

    def __post_init__(self) -> None:
        if self.emission_per_second < 0:
            raise ConfigError("emission_per_second must be non-negative")
        if self.acc_scale <= 0:
            raise ConfigError("acc_scale must be positive")


@dataclass
class LoanConfig:
    min_duration: int = DAY
    max_duration: int = YEAR
    max_rate_bps: int = 5_000
    funding_window: int = 30 * DAY    # a request can be funded for this long

    def __post_init__(self) -> None:
        if self.min_duration <= 0 or self.min_duration > self.max_duration:
            raise ConfigError("need 0 < min_duration <= max_duration")
        if not 0 <= self.max_rate_bps <= BPS:
            raise ConfigError(f"max_rate_bps must be in [0, {BPS}]")
        if self.funding_window <= 0:
            raise ConfigError("funding_window must be positive")


@dataclass
class ScenarioConfig:
    # Tokens
    token_symbols: list[str] = field(default_factory=lambda: ["USD", "ECO", "GOV"])
    reward_symbol: str = "RWD"
    loan_symbol: str = "USD"
    stake_symbol: str = "ECO"
    token_unit: int = 10**6           # base units per whole token

    # Agents
    initial_traders: int = 8
    initial_liquidity_providers: int = 3
    initial_stakers: int = 4
    initial_farmers: int = 4
    initial_borrowers: int = 4
    initial_lenders: int = 3
    initial_balance_mean: float = 50_000.0  # whole tokens, per token per agent
    initial_balance_sigma: float = 0.5

    # Time model: 1 tick = 1 day
    start_time: int = 1_700_000_000
    tick_seconds: int = DAY

    # Bootstrap liquidity (whole tokens per side, per pool)
    seed_liquidity: float = 100_000.0

    # Activity (per agent per tick)
    p_act: float = 0.6
    action_size_mean_frac: float = 0.02     # of the agent's balance
    action_size_sigma: float = 0.75
    slippage_bps: int = 100
    p_repay: float = 0.8
    loan_duration_days: list[int] = field(default_factory=lambda: [7, 14, 30])
    loan_rate_bps: list[int] = field(default_factory=lambda: [200, 500, 1_000])

    # Farm pools: (staked symbol, weight)
    farm_pools: list[tuple[str, int]] = field(default_factory=lambda: [("ECO", 100), ("GOV", 50)])

    # Metrics / logging
    metrics_stride: int = 1
    pool_metrics_stride: int = 1
    event_log_maxlen: int | None = 50_000
    debug_ledger: bool = False

    pool: PoolConfig = field(default_factory=PoolConfig)
    staking: StakingConfig = field(default_factory=StakingConfig)
    farm: FarmConfig = field(default_factory=FarmConfig)
    loans: LoanConfig = field(default_factory=LoanConfig)

    def __post_init__(self) -> None:
        if len(set(self.token_symbols)) < 2:
            raise ConfigError("need at least two distinct token symbols")
        if self.loan_symbol not in self.token_symbols:
            raise ConfigError(f"loan_symbol {self.loan_symbol!r} is not a listed token")
        if self.stake_symbol not in self.token_symbols:
            raise ConfigError(f"stake_symbol {self.stake_symbol!r} is not a listed token")
        if self.reward_symbol in self.token_symbols:
            raise ConfigError("reward_symbol must differ from the traded tokens")
        farm_symbols = [symbol for symbol, _ in self.farm_pools]
        if len(set(farm_symbols)) != len(farm_symbols):
            raise ConfigError("farm pools must stake distinct tokens")
        for symbol, weight in self.farm_pools:
            if symbol not in self.token_symbols:
                raise ConfigError(f"farm pool token {symbol!r} is not a listed token")
            if weight < 0:
                raise ConfigError("farm pool weight must be non-negative")
        if self.tick_seconds <= 0:
            raise ConfigError("tick_seconds must be positive")
        if self.token_unit <= 0:
            raise ConfigError("token_unit must be positive")
        if not 0.0 <= self.p_act <= 1.0 or not 0.0 <= self.p_repay <= 1.0:
            raise ConfigError("probabilities must be within [0, 1]")
        if not 0 <= self.slippage_bps < BPS:
            raise ConfigError("slippage_bps must be in [0, 10000)")
