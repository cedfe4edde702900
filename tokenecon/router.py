from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set
from collections import deque

from .errors import PoolNotFound
from .pools import PoolEngine


@dataclass
class RoutePlan:
    ok: bool
    reason: str
    path: List[str] = field(default_factory=list)
    amounts: List[int] = field(default_factory=list)

    @property
    def expected_amount_out(self) -> int:
        return self.amounts[-1] if self.amounts else 0


class Router:
    """
    BFS over tokens where each edge is a pool with both reserves non-zero.
    Returns the shortest path (fewest hops), quoted with the engine's fee.
    """
    def __init__(self, engine: PoolEngine, max_hops: int = 3) -> None:
        self.engine = engine
        self.max_hops = max_hops

    def adjacency(self) -> Dict[str, Set[str]]:
        adj: Dict[str, Set[str]] = {}
        for pool in self.engine.pools.values():
            if pool.reserve0 <= 0 or pool.reserve1 <= 0:
                continue
            adj.setdefault(pool.token0, set()).add(pool.token1)
            adj.setdefault(pool.token1, set()).add(pool.token0)
        return adj

    def find_route(self, token_in: str, token_out: str, amount_in: Optional[int] = None) -> RoutePlan:
        if token_in == token_out:
            return RoutePlan(ok=False, reason="identical_tokens")
        adj = self.adjacency()
        q = deque([(token_in, 0)])
        parent: Dict[str, str] = {}
        visited: Set[str] = {token_in}
        while q:
            token, depth = q.popleft()
            if depth >= self.max_hops:
                continue
            # sorted so equal-length routes resolve deterministically
            for nxt in sorted(adj.get(token, ())):
                if nxt in visited:
                    continue
                visited.add(nxt)
                parent[nxt] = token
                if nxt == token_out:
                    path = [nxt]
                    while path[-1] != token_in:
                        path.append(parent[path[-1]])
                    path.reverse()
                    if amount_in is None:
                        return RoutePlan(ok=True, reason="ok", path=path)
                    return RoutePlan(ok=True, reason="ok", path=path, amounts=self.amounts_out(path, amount_in))
                q.append((nxt, depth + 1))
        return RoutePlan(ok=False, reason="no_path_found")

    def amounts_out(self, path: List[str], amount_in: int) -> List[int]:
        amounts = [amount_in]
        for a, b in zip(path, path[1:]):
            if not self.engine.has_pool(a, b):
                raise PoolNotFound(f"no pool for {a}/{b}", token_a=a, token_b=b)
            reserve_in, reserve_out = self.engine.get_reserves(a, b)
            amounts.append(self.engine.get_amount_out(amounts[-1], reserve_in, reserve_out))
        return amounts
