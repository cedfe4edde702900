"""
In-memory multi-token ledger.

This is the balance store every engine settles through: plain transfers,
allowance-based delegated transfers, and capability-gated mint/burn. It also
exposes the two hooks the engines rely on:

- `on_receive(account, hook)`: the hook runs synchronously right after
  `account` is credited, which is how a token callback re-enters an engine.
- `atomic()`: a journaled scope; every balance, supply and allowance write made
  inside it is undone if the scope exits with an exception.
"""
from __future__ import annotations
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union
from contextlib import contextmanager
import logging

from .core import format_balances, require_id
from .errors import (InsufficientAllowance, InsufficientBalance, InvalidAmount,
                     InvalidToken, Unauthorized)

logger = logging.getLogger(__name__)

MAX_ALLOWANCE = 2**256 - 1

ReceiveHook = Callable[[str, str, int], None]

# journal entries: (table, key, previous value or None when the key was absent),
# or a callable registered through on_rollback
_Undo = Union[Tuple[str, tuple, Optional[int]], Callable[[], object]]


class TokenLedger:
    def __init__(self, debug: bool = False) -> None:
        self.debug = debug
        self.balances: Dict[str, Dict[str, int]] = {}      # token -> account -> amount
        self.supply: Dict[str, int] = {}
        self.allowances: Dict[Tuple[str, str, str], int] = {}  # (token, owner, spender)
        self.minters: Dict[str, Set[str]] = {}
        self.hooks: Dict[str, ReceiveHook] = {}
        self._journals: List[List[_Undo]] = []
        self._commits: List[List[Callable[[], object]]] = []

    # -----------------------------
    # Registry
    # -----------------------------
    def register_token(self, token: str, minters: Iterable[str] = ()) -> None:
        require_id(token)
        if token in self.balances:
            raise InvalidToken(f"token {token!r} already registered", token=token)
        self.balances[token] = {}
        self.supply[token] = 0
        self.minters[token] = set(minters)
        self.on_rollback(lambda: self._unregister(token))

    def _unregister(self, token: str) -> None:
        self.balances.pop(token, None)
        self.supply.pop(token, None)
        self.minters.pop(token, None)

    def has_token(self, token: Optional[str]) -> bool:
        return isinstance(token, str) and token in self.balances

    def tokens(self) -> List[str]:
        return sorted(self.balances)

    def is_minter(self, token: str, account: str) -> bool:
        return account in self.minters.get(token, ())

    def grant_minter(self, token: str, caller: str, minter: str) -> None:
        self._require_token(token)
        if not self.is_minter(token, caller):
            raise Unauthorized(f"{caller!r} cannot grant mint rights on {token}", token=token, caller=caller)
        require_id(minter, "minter")
        granted = self.minters[token]
        if minter not in granted:
            granted.add(minter)
            self.on_rollback(lambda: granted.discard(minter))

    # -----------------------------
    # Views
    # -----------------------------
    def balance_of(self, token: str, account: str) -> int:
        self._require_token(token)
        return self.balances[token].get(account, 0)

    def total_supply(self, token: str) -> int:
        self._require_token(token)
        return self.supply[token]

    def allowance(self, token: str, owner: str, spender: str) -> int:
        self._require_token(token)
        return self.allowances.get((token, owner, spender), 0)

    def holders(self, token: str) -> Dict[str, int]:
        self._require_token(token)
        return {a: v for a, v in self.balances[token].items() if v > 0}

    # -----------------------------
    # Mutations
    # -----------------------------
    def transfer(self, token: str, sender: str, to: str, amount: int) -> bool:
        self._require_token(token)
        require_id(to, "recipient")
        self._require_amount(amount)
        have = self.balance_of(token, sender)
        if have < amount:
            raise InsufficientBalance(
                f"{sender} holds {have} {token}, needs {amount}",
                token=token, account=sender, balance=have, amount=amount,
            )
        self._set_balance(token, sender, have - amount, "transfer_out")
        self._set_balance(token, to, self.balance_of(token, to) + amount, "transfer_in")
        self._after_receive(token, sender, to, amount)
        return True

    def approve(self, token: str, owner: str, spender: str, amount: int) -> bool:
        self._require_token(token)
        require_id(spender, "spender")
        self._require_amount(amount)
        self._write("allow", (token, owner, spender), amount)
        return True

    def transfer_from(self, token: str, spender: str, owner: str, to: str, amount: int) -> bool:
        self._require_token(token)
        self._require_amount(amount)
        if spender != owner:
            current = self.allowance(token, owner, spender)
            if current < amount:
                raise InsufficientAllowance(
                    f"{spender} may move {current} {token} of {owner}, needs {amount}",
                    token=token, owner=owner, spender=spender, allowance=current, amount=amount,
                )
            if current != MAX_ALLOWANCE:
                self._write("allow", (token, owner, spender), current - amount)
        return self.transfer(token, owner, to, amount)

    def mint(self, token: str, caller: str, to: str, amount: int) -> bool:
        self._require_token(token)
        if not self.is_minter(token, caller):
            raise Unauthorized(f"{caller!r} cannot mint {token}", token=token, caller=caller)
        require_id(to, "recipient")
        self._require_amount(amount)
        if amount == 0:
            return True
        self._write("supply", (token,), self.supply[token] + amount)
        self._set_balance(token, to, self.balance_of(token, to) + amount, "mint")
        self._after_receive(token, caller, to, amount)
        return True

    def burn(self, token: str, caller: str, holder: str, amount: int) -> bool:
        self._require_token(token)
        if not self.is_minter(token, caller):
            raise Unauthorized(f"{caller!r} cannot burn {token}", token=token, caller=caller)
        self._require_amount(amount)
        have = self.balance_of(token, holder)
        if have < amount:
            raise InsufficientBalance(
                f"{holder} holds {have} {token}, cannot burn {amount}",
                token=token, account=holder, balance=have, amount=amount,
            )
        self._set_balance(token, holder, have - amount, "burn")
        self._write("supply", (token,), self.supply[token] - amount)
        return True

    def on_receive(self, account: str, hook: Optional[ReceiveHook]) -> None:
        if hook is None:
            self.hooks.pop(account, None)
        else:
            self.hooks[account] = hook

    # -----------------------------
    # Journal
    # -----------------------------
    @contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Scope whose writes are undone if the body raises. A committed inner
        scope hands its journal and commit callbacks to the enclosing one, so
        nothing is final until the outermost scope exits cleanly.
        """
        journal: List[_Undo] = []
        commits: List[Callable[[], object]] = []
        self._journals.append(journal)
        self._commits.append(commits)
        try:
            yield
        except Exception:
            self._journals.pop()
            self._commits.pop()
            self._undo(journal)
            raise
        self._journals.pop()
        self._commits.pop()
        if self._journals:
            self._journals[-1].extend(journal)
            self._commits[-1].extend(commits)
            return
        for fn in commits:
            fn()

    def on_rollback(self, fn: Callable[[], object]) -> None:
        """Run `fn` if the innermost open scope (or any scope it folds into) rolls back."""
        if self._journals:
            self._journals[-1].append(fn)

    def on_commit(self, fn: Callable[[], object]) -> None:
        """Run `fn` once the outermost open scope commits; immediately when none is open."""
        if self._commits:
            self._commits[-1].append(fn)
        else:
            fn()

    def _undo(self, journal: List[_Undo]) -> None:
        for entry in reversed(journal):
            if callable(entry):
                entry()
                continue
            table, key, previous = entry
            if table == "bal":
                token, account = key
                if previous is None:
                    self.balances[token].pop(account, None)
                else:
                    self.balances[token][account] = previous
            elif table == "allow":
                if previous is None:
                    self.allowances.pop(key, None)
                else:
                    self.allowances[key] = previous
            else:
                self.supply[key[0]] = previous
        if journal:
            logger.debug("ledger rollback: %d writes undone", len(journal))

    def _write(self, table: str, key: tuple, value: int) -> None:
        if table == "bal":
            token, account = key
            previous = self.balances[token].get(account)
            self.balances[token][account] = value
        elif table == "allow":
            previous = self.allowances.get(key)
            self.allowances[key] = value
        else:
            previous = self.supply[key[0]]
            self.supply[key[0]] = value
        if self._journals:
            self._journals[-1].append((table, key, previous))

    # -----------------------------
    # Internals
    # -----------------------------
    def _set_balance(self, token: str, account: str, value: int, action: str) -> None:
        debug = self.debug and logger.isEnabledFor(logging.DEBUG)
        if debug:
            before = dict(self.balances[token])
        self._write("bal", (token, account), value)
        if debug:
            logger.debug(
                "[BAL] token=%s action=%s account=%s before={ %s } after={ %s }",
                token, action, account, format_balances(before), format_balances(self.balances[token]),
            )

    def _after_receive(self, token: str, sender: str, to: str, amount: int) -> None:
        hook = self.hooks.get(to)
        if hook is not None:
            hook(token, sender, amount)

    def _require_token(self, token: Optional[str]) -> None:
        if not self.has_token(token):
            raise InvalidToken(f"unknown token {token!r}", token=token)

    @staticmethod
    def _require_amount(amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
            raise InvalidAmount(f"amount must be a non-negative int, got {amount!r}", amount=amount)
