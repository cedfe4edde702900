"""
Integer AMM math (constant product, basis-point fees)
-----------------------------------------------------
Pure functions only; every rounding step is a floor division, so results
always favour the pool:

  • get_amount_out   fee-adjusted output for an exact input
  • get_amount_in    input required for an exact output (rounded up)
  • quote            price-preserving counterpart amount (no fee)
  • optimal_amounts  ratio-preserving deposit for a non-empty pool
  • initial_shares   sqrt(a*b) LP mint for an empty pool
  • proportional_shares / pro_rata   subsequent mints and burns
"""
from __future__ import annotations

from typing import Tuple
import math

from .errors import InsufficientLiquidity, InvalidAmount, SlippageExceeded

BPS = 10_000


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int, fee_bps: int) -> int:
    """amount_out = amount_in*(10000-fee)*reserve_out / (reserve_in*10000 + amount_in*(10000-fee))"""
    if amount_in <= 0:
        raise InvalidAmount("amount_in must be positive", amount_in=amount_in)
    if reserve_in <= 0 or reserve_out <= 0:
        raise InsufficientLiquidity("empty reserves", reserve_in=reserve_in, reserve_out=reserve_out)
    amount_in_with_fee = amount_in * (BPS - fee_bps)
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * BPS + amount_in_with_fee
    return numerator // denominator


def get_amount_in(amount_out: int, reserve_in: int, reserve_out: int, fee_bps: int) -> int:
    if amount_out <= 0:
        raise InvalidAmount("amount_out must be positive", amount_out=amount_out)
    if reserve_in <= 0 or amount_out >= reserve_out:
        raise InsufficientLiquidity("output exceeds reserves", reserve_out=reserve_out, amount_out=amount_out)
    numerator = reserve_in * amount_out * BPS
    denominator = (reserve_out - amount_out) * (BPS - fee_bps)
    return numerator // denominator + 1


def quote(amount_a: int, reserve_a: int, reserve_b: int) -> int:
    if amount_a <= 0:
        raise InvalidAmount("amount must be positive", amount=amount_a)
    if reserve_a <= 0 or reserve_b <= 0:
        raise InsufficientLiquidity("empty reserves", reserve_a=reserve_a, reserve_b=reserve_b)
    return amount_a * reserve_b // reserve_a


def optimal_amounts(desired0: int, desired1: int, reserve0: int, reserve1: int,
                    min0: int, min1: int) -> Tuple[int, int]:
    """
    Scale desired0 against the current price; if the implied token1 amount
    fits under desired1 use it, otherwise scale desired1 the other way.
    """
    implied1 = quote(desired0, reserve0, reserve1)
    if implied1 <= desired1:
        if implied1 < min1:
            raise SlippageExceeded("token1 amount below minimum", amount=implied1, minimum=min1)
        return desired0, implied1
    implied0 = quote(desired1, reserve1, reserve0)
    # implied0 <= desired0 follows from implied1 > desired1
    if implied0 < min0:
        raise SlippageExceeded("token0 amount below minimum", amount=implied0, minimum=min0)
    return implied0, desired1


def initial_shares(amount0: int, amount1: int, minimum_liquidity: int) -> int:
    """Total shares for the first deposit, including the locked minimum."""
    shares = math.isqrt(amount0 * amount1)
    if shares <= minimum_liquidity:
        raise InsufficientLiquidity(
            "initial deposit too small", shares=shares, minimum_liquidity=minimum_liquidity,
        )
    return shares


def proportional_shares(amount0: int, amount1: int, reserve0: int, reserve1: int, total_supply: int) -> int:
    return min(amount0 * total_supply // reserve0, amount1 * total_supply // reserve1)


def pro_rata(shares: int, reserve: int, total_supply: int) -> int:
    return shares * reserve // total_supply


def k_value(reserve0: int, reserve1: int) -> int:
    return reserve0 * reserve1
