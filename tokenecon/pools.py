from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from hashlib import sha256
import logging

from .config import PoolConfig
from .core import Clock, EventLog, LedgerEngine, require_id, require_positive
from .errors import (Expired, InsufficientBalance, InsufficientLiquidity,
                     InvalidToken, PoolExists, PoolNotFound, SlippageExceeded)
from . import maths

logger = logging.getLogger(__name__)

LOCK_ADDRESS = "0x000000000000000000000000000000000000dEaD"


def sort_tokens(token_a: Optional[str], token_b: Optional[str]) -> Tuple[str, str]:
    require_id(token_a)
    require_id(token_b)
    if token_a == token_b:
        raise InvalidToken(f"identical tokens {token_a!r}", reason="identical_tokens", token=token_a)
    return (token_a, token_b) if token_a < token_b else (token_b, token_a)


def pair_id(token_a: str, token_b: str) -> str:
    token0, token1 = sort_tokens(token_a, token_b)
    return "0x" + sha256(f"{token0}|{token1}".encode()).hexdigest()[:40]


@dataclass
class Pool:
    pool_id: str
    token0: str
    token1: str
    lp_token: str
    reserve0: int = 0
    reserve1: int = 0
    lp_supply: int = 0

    def reserves_for(self, token_in: str) -> Tuple[int, int]:
        if token_in == self.token0:
            return self.reserve0, self.reserve1
        return self.reserve1, self.reserve0

    def apply_swap(self, token_in: str, amount_in: int, amount_out: int) -> None:
        if token_in == self.token0:
            self.reserve0 += amount_in
            self.reserve1 -= amount_out
        else:
            self.reserve1 += amount_in
            self.reserve0 -= amount_out

    @property
    def k(self) -> int:
        return maths.k_value(self.reserve0, self.reserve1)

    def to_dict(self) -> dict:
        return {
            "pool_id": self.pool_id,
            "token0": self.token0,
            "token1": self.token1,
            "reserve0": self.reserve0,
            "reserve1": self.reserve1,
            "lp_supply": self.lp_supply,
        }


class PoolEngine(LedgerEngine):
    """
    Constant-product pools keyed by the sorted token pair. The engine's
    ledger address holds every pool's reserves; LP shares are a separate
    ledger token per pool that only this engine can mint or burn.
    """

    def __init__(self, ledger, clock: Clock, owner: str, cfg: Optional[PoolConfig] = None,
                 address: str = "pool_engine", log: Optional[EventLog] = None) -> None:
        super().__init__(ledger, clock, owner, address, log)
        self.cfg = cfg or PoolConfig()
        self.pools: Dict[str, Pool] = {}

    # -----------------------------
    # Views
    # -----------------------------
    def pool_ids(self) -> List[str]:
        return list(self.pools)

    def get_pool(self, token_a: str, token_b: str) -> Pool:
        pid = pair_id(token_a, token_b)
        pool = self.pools.get(pid)
        if pool is None:
            raise PoolNotFound(f"no pool for {token_a}/{token_b}", token_a=token_a, token_b=token_b)
        return pool

    def has_pool(self, token_a: str, token_b: str) -> bool:
        return pair_id(token_a, token_b) in self.pools

    def get_reserves(self, token_a: str, token_b: str) -> Tuple[int, int]:
        """Reserves in the order the tokens were passed."""
        return self.get_pool(token_a, token_b).reserves_for(token_a)

    def lp_token(self, token_a: str, token_b: str) -> str:
        return self.get_pool(token_a, token_b).lp_token

    def get_amount_out(self, amount_in: int, reserve_in: int, reserve_out: int) -> int:
        return maths.get_amount_out(amount_in, reserve_in, reserve_out, self.cfg.fee_bps)

    def get_amount_in(self, amount_out: int, reserve_in: int, reserve_out: int) -> int:
        return maths.get_amount_in(amount_out, reserve_in, reserve_out, self.cfg.fee_bps)

    def quote(self, amount_a: int, reserve_a: int, reserve_b: int) -> int:
        return maths.quote(amount_a, reserve_a, reserve_b)

    # -----------------------------
    # Mutations
    # -----------------------------
    def create_pool(self, caller: str, token_a: str, token_b: str) -> str:
        with self._operation():
            token0, token1 = sort_tokens(token_a, token_b)
            for token in (token0, token1):
                if not self.ledger.has_token(token):
                    raise InvalidToken(f"unknown token {token!r}", token=token)
            pid = pair_id(token0, token1)
            if pid in self.pools:
                raise PoolExists(f"pool {token0}/{token1} already exists", pool_id=pid)
            lp = f"LP:{pid}"
            self.ledger.register_token(lp, minters=[self.address])
            self.pools[pid] = Pool(pool_id=pid, token0=token0, token1=token1, lp_token=lp)
            self._added(self.pools, pid)
            self._emit("POOL_CREATED", actor=caller, pool_id=pid, token0=token0, token1=token1)
        logger.debug("[POOL] created %s %s/%s", pid, token0, token1)
        return pid

    def add_liquidity(self, caller: str, token_a: str, token_b: str, desired_a: int, desired_b: int,
                      min_a: int = 0, min_b: int = 0, deadline: Optional[int] = None) -> Tuple[int, int, int]:
        with self._operation():
            self._check_deadline(deadline)
            pool = self.get_pool(token_a, token_b)
            require_positive(desired_a, "desired_a")
            require_positive(desired_b, "desired_b")
            flipped = token_a != pool.token0
            desired0, desired1 = (desired_b, desired_a) if flipped else (desired_a, desired_b)
            min0, min1 = (min_b, min_a) if flipped else (min_a, min_b)

            if pool.lp_supply == 0:
                used0, used1 = desired0, desired1
                if used0 < min0 or used1 < min1:
                    raise SlippageExceeded("desired amounts below minimum")
                total = maths.initial_shares(used0, used1, self.cfg.minimum_liquidity)
                locked = self.cfg.minimum_liquidity
                minted = total - locked
            else:
                used0, used1 = maths.optimal_amounts(desired0, desired1, pool.reserve0, pool.reserve1, min0, min1)
                minted = maths.proportional_shares(used0, used1, pool.reserve0, pool.reserve1, pool.lp_supply)
                locked = 0
                if minted <= 0:
                    raise InsufficientLiquidity("deposit mints no shares", pool_id=pool.pool_id)

            # funds in first; shares and reserves only after both pulls succeed
            self.ledger.transfer_from(pool.token0, self.address, caller, self.address, used0)
            self.ledger.transfer_from(pool.token1, self.address, caller, self.address, used1)

            self._touch(pool)
            pool.reserve0 += used0
            pool.reserve1 += used1
            pool.lp_supply += minted + locked
            if locked:
                self.ledger.mint(pool.lp_token, self.address, LOCK_ADDRESS, locked)
            self.ledger.mint(pool.lp_token, self.address, caller, minted)

            used_a, used_b = (used1, used0) if flipped else (used0, used1)
            self._emit("LIQUIDITY_ADDED", actor=caller, pool_id=pool.pool_id, amount=minted,
                       amount0=used0, amount1=used1, locked=locked)
        logger.debug("[POOL] add pool=%s by=%s used=(%d, %d) shares=%d", pool.pool_id, caller, used0, used1, minted)
        return used_a, used_b, minted

    def remove_liquidity(self, caller: str, token_a: str, token_b: str, shares: int,
                         min_a: int = 0, min_b: int = 0, deadline: Optional[int] = None,
                         to: Optional[str] = None) -> Tuple[int, int]:
        recipient = to or caller
        with self._operation():
            self._check_deadline(deadline)
            pool = self.get_pool(token_a, token_b)
            require_positive(shares, "shares")
            held = self.ledger.balance_of(pool.lp_token, caller)
            if held < shares:
                raise InsufficientBalance(f"{caller} holds {held} shares, needs {shares}",
                                          account=caller, balance=held, amount=shares)
            out0 = maths.pro_rata(shares, pool.reserve0, pool.lp_supply)
            out1 = maths.pro_rata(shares, pool.reserve1, pool.lp_supply)
            if out0 <= 0 or out1 <= 0:
                raise InsufficientLiquidity("burn returns nothing", pool_id=pool.pool_id, shares=shares)
            flipped = token_a != pool.token0
            out_a, out_b = (out1, out0) if flipped else (out0, out1)
            if out_a < min_a or out_b < min_b:
                raise SlippageExceeded("withdrawal below minimum", out_a=out_a, out_b=out_b)

            # burn and shrink reserves before any token leaves
            self.ledger.burn(pool.lp_token, self.address, caller, shares)
            self._touch(pool)
            pool.lp_supply -= shares
            pool.reserve0 -= out0
            pool.reserve1 -= out1

            self.ledger.transfer(pool.token0, self.address, recipient, out0)
            self.ledger.transfer(pool.token1, self.address, recipient, out1)
            self._emit("LIQUIDITY_REMOVED", actor=caller, pool_id=pool.pool_id, amount=shares,
                       amount0=out0, amount1=out1, to=recipient)
        logger.debug("[POOL] remove pool=%s by=%s shares=%d out=(%d, %d)", pool.pool_id, caller, shares, out0, out1)
        return out_a, out_b

    def swap(self, caller: str, token_in: str, token_out: str, amount_in: int, min_out: int = 0,
             deadline: Optional[int] = None, to: Optional[str] = None) -> int:
        recipient = to or caller
        with self._operation():
            self._check_deadline(deadline)
            require_positive(amount_in, "amount_in")
            pool = self.get_pool(token_in, token_out)
            amount_out = self._price_hop(pool, token_in, amount_in)
            if amount_out < min_out:
                raise SlippageExceeded(f"output {amount_out} below minimum {min_out}",
                                       amount_out=amount_out, min_out=min_out)

            self.ledger.transfer_from(token_in, self.address, caller, self.address, amount_in)
            self._touch(pool).apply_swap(token_in, amount_in, amount_out)
            self.ledger.transfer(token_out, self.address, recipient, amount_out)
            self._emit("SWAP", actor=caller, pool_id=pool.pool_id, asset=token_in, amount=amount_in,
                       asset_out=token_out, amount_out=amount_out, to=recipient)
        logger.debug("[POOL] swap pool=%s by=%s %d %s -> %d %s",
                     pool.pool_id, caller, amount_in, token_in, amount_out, token_out)
        return amount_out

    def swap_exact_in_path(self, caller: str, path: Sequence[str], amount_in: int, min_out: int = 0,
                           deadline: Optional[int] = None, to: Optional[str] = None) -> List[int]:
        """Multi-hop swap; intermediate amounts stay inside the engine."""
        recipient = to or caller
        with self._operation():
            self._check_deadline(deadline)
            require_positive(amount_in, "amount_in")
            if len(path) < 2:
                raise InvalidToken("path needs at least two tokens", path=list(path))
            pools = [self.get_pool(a, b) for a, b in zip(path, path[1:])]

            self.ledger.transfer_from(path[0], self.address, caller, self.address, amount_in)
            amounts = [amount_in]
            for pool, token_in in zip(pools, path):
                amount_out = self._price_hop(pool, token_in, amounts[-1])
                self._touch(pool).apply_swap(token_in, amounts[-1], amount_out)
                amounts.append(amount_out)
            if amounts[-1] < min_out:
                raise SlippageExceeded(f"output {amounts[-1]} below minimum {min_out}",
                                       amount_out=amounts[-1], min_out=min_out)
            self.ledger.transfer(path[-1], self.address, recipient, amounts[-1])
            self._emit("SWAP", actor=caller, pool_id=pools[0].pool_id, asset=path[0], amount=amount_in,
                       asset_out=path[-1], amount_out=amounts[-1], path=list(path), to=recipient)
        logger.debug("[POOL] path swap by=%s path=%s amounts=%s", caller, "->".join(path), amounts)
        return amounts

    # -----------------------------
    # Internals
    # -----------------------------
    def _price_hop(self, pool: Pool, token_in: str, amount_in: int) -> int:
        reserve_in, reserve_out = pool.reserves_for(token_in)
        if reserve_in <= 0 or reserve_out <= 0:
            raise InsufficientLiquidity("pool has no liquidity", pool_id=pool.pool_id)
        amount_out = self.get_amount_out(amount_in, reserve_in, reserve_out)
        if amount_out <= 0 or amount_out >= reserve_out:
            raise InsufficientLiquidity("swap output out of range", pool_id=pool.pool_id, amount_out=amount_out)
        return amount_out

    def _check_deadline(self, deadline: Optional[int]) -> None:
        if deadline is not None and self.now > deadline:
            raise Expired(f"deadline {deadline} passed (now {self.now})", deadline=deadline, now=self.now)

