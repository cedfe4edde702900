from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Tuple, Optional, List, Iterator
from collections import deque
from contextlib import contextmanager
from functools import partial
import logging

from .errors import InvalidAmount, InvalidToken, ReentrantCall, Unauthorized

logger = logging.getLogger(__name__)

def format_balances(balances: Dict[str, int]) -> str:
    if not balances:
        return "(empty)"
    items = sorted(balances.items(), key=lambda kv: kv[0])
    return ", ".join(f"{account}:{amount}" for account, amount in items)

def require_id(value: Optional[str], what: str = "token") -> str:
    if not isinstance(value, str) or not value:
        raise InvalidToken(f"null or malformed {what} id: {value!r}", token=value)
    return value

def require_positive(amount: int, what: str = "amount") -> int:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise InvalidAmount(f"{what} must be a positive int, got {amount!r}", amount=amount)
    return amount

# -----------------------------
# Events
# -----------------------------
@dataclass
class Event:
    timestamp: int
    event_type: str
    actor_id: Optional[str] = None
    pool_id: Optional[str] = None
    asset_id: Optional[str] = None
    amount: Optional[int] = None
    meta: dict = field(default_factory=dict)

class EventLog:
    def __init__(self, maxlen: Optional[int] = None) -> None:
        self.events = deque(maxlen=maxlen)

    def add(self, e: Event) -> None:
        self.events.append(e)

    def tail(self, n: int = 200) -> List[Event]:
        if n <= 0:
            return []
        if n >= len(self.events):
            return list(self.events)
        return list(self.events)[-n:]

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.event_type == event_type]

    def __len__(self) -> int:
        return len(self.events)


# -----------------------------
# Time
# -----------------------------
class Clock:
    """Shared integer-second clock. Never moves backwards."""

    def __init__(self, now: int = 0) -> None:
        self.now = int(now)

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        self.now += int(seconds)
        return self.now

    def set(self, timestamp: int) -> int:
        if timestamp < self.now:
            raise ValueError("clock cannot move backwards")
        self.now = int(timestamp)
        return self.now


# -----------------------------
# Engine scaffolding
# -----------------------------
class ReentrancyGuard:
    def __init__(self, scope: str) -> None:
        self.scope = scope
        self.entered = False

    @contextmanager
    def hold(self) -> Iterator[None]:
        if self.entered:
            raise ReentrantCall(f"{self.scope}: nested call while an operation is in progress", scope=self.scope)
        self.entered = True
        try:
            yield
        finally:
            self.entered = False


class LedgerEngine:
    """
    Base for the pool, staking, farm and loan engines.

    A public mutating call runs inside `_operation()`, which holds the engine's
    reentrancy guard and opens a ledger scope. Engine writes register undo
    entries in that scope: scalar attributes named in `_state_fields` are
    restored wholesale, records go through `_touch`, `_added` and `_appended`
    before they change. Events are buffered and reach the log only when the
    outermost ledger scope commits, so an operation nested in another engine's
    call (a receive hook, say) lands or rolls back together with its caller.
    """

    _state_fields: Tuple[str, ...] = ()

    def __init__(self, ledger, clock: Clock, owner: str, address: str,
                 log: Optional[EventLog] = None) -> None:
        self.ledger = ledger
        self.clock = clock
        self.owner = require_id(owner, "owner")
        self.address = require_id(address, "engine address")
        self.log = log if log is not None else EventLog()
        self._guard = ReentrancyGuard(address)
        self._buffer: Optional[List[Event]] = None

    @property
    def now(self) -> int:
        return self.clock.now

    @contextmanager
    def _operation(self) -> Iterator[None]:
        with self._guard.hold():
            buffer: List[Event] = []
            self._buffer = buffer
            try:
                with self.ledger.atomic():
                    scalars = {name: getattr(self, name) for name in ("owner",) + self._state_fields}
                    self.ledger.on_rollback(partial(self._reset, scalars))
                    yield
                    self.ledger.on_commit(partial(self._publish, buffer))
            finally:
                self._buffer = None

    def _reset(self, scalars: Dict[str, object]) -> None:
        for name, value in scalars.items():
            setattr(self, name, value)

    def _publish(self, events: List[Event]) -> None:
        for e in events:
            self.log.add(e)

    # undo entries for engine records; call before the record changes
    def _touch(self, record):
        self.ledger.on_rollback(partial(record.__dict__.update, dict(record.__dict__)))
        return record

    def _added(self, container: dict, key) -> None:
        self.ledger.on_rollback(partial(container.pop, key, None))

    def _appended(self, items: list) -> None:
        self.ledger.on_rollback(items.pop)

    def _emit(self, event_type: str, *, actor: Optional[str] = None, pool_id: Optional[str] = None,
              asset: Optional[str] = None, amount: Optional[int] = None, **meta) -> None:
        e = Event(self.now, event_type, actor_id=actor, pool_id=pool_id, asset_id=asset,
                  amount=amount, meta=meta)
        if self._buffer is None:
            # only reachable from inside _operation()
            raise RuntimeError(f"event {event_type} emitted outside an operation")
        self._buffer.append(e)

    def _require_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise Unauthorized(f"{self.address}: caller {caller!r} is not the owner", caller=caller)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        with self._operation():
            self._require_owner(caller)
            require_id(new_owner, "owner")
            previous, self.owner = self.owner, new_owner
            self._emit("OWNERSHIP_TRANSFERRED", actor=caller, previous=previous, new_owner=new_owner)
        logger.info("%s ownership %s -> %s", self.address, previous, new_owner)
