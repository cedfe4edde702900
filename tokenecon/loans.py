from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional
import logging

from .config import BPS, LoanConfig
from .core import Clock, EventLog, LedgerEngine, require_id, require_positive
from .errors import (AlreadyDefaulted, AlreadyFunded, AlreadyRepaid, DurationOutOfRange,
                     Expired, InvalidAmount, LoanNotFound, NotDue, NotFunded,
                     RateTooHigh, Unauthorized)

logger = logging.getLogger(__name__)


class LoanStatus(str, Enum):
    REQUESTED = "requested"
    FUNDED = "funded"
    REPAID = "repaid"
    DEFAULTED = "defaulted"


@dataclass
class Loan:
    loan_id: int
    borrower: str
    principal: int
    interest_rate_bps: int
    duration: int
    requested_at: int
    lender: Optional[str] = None
    funded_at: Optional[int] = None
    due_time: Optional[int] = None
    funded: bool = False
    repaid: bool = False
    defaulted: bool = False

    @property
    def status(self) -> LoanStatus:
        if self.repaid:
            return LoanStatus.REPAID
        if self.defaulted:
            return LoanStatus.DEFAULTED
        if self.funded:
            return LoanStatus.FUNDED
        return LoanStatus.REQUESTED

    @property
    def interest(self) -> int:
        return self.principal * self.interest_rate_bps // BPS

    @property
    def amount_due(self) -> int:
        return self.principal + self.interest

    def to_dict(self) -> dict:
        return {
            "loan_id": self.loan_id,
            "borrower": self.borrower,
            "lender": self.lender,
            "principal": self.principal,
            "interest_rate_bps": self.interest_rate_bps,
            "due_time": self.due_time,
            "status": self.status.value,
        }


class LoanEscrow(LedgerEngine):
    """
    Peer-to-peer, collateral-free loans settled in a single token.

        requested --fund--> funded --repay--> repaid
                                   --default--> defaulted

    Funds never rest in the escrow: funding moves principal lender -> borrower
    and repayment moves principal + interest borrower -> lender, both through
    allowances granted to the escrow's address.
    """

    def __init__(self, ledger, clock: Clock, owner: str, token: str,
                 cfg: Optional[LoanConfig] = None, address: str = "loan_escrow",
                 log: Optional[EventLog] = None) -> None:
        super().__init__(ledger, clock, owner, address, log)
        self.cfg = cfg or LoanConfig()
        self.token = require_id(token)
        self.loans: List[Loan] = []
        self.loans_by_party: Dict[str, List[int]] = {}

    # -----------------------------
    # Views
    # -----------------------------
    @property
    def loan_count(self) -> int:
        return len(self.loans)

    def get_loan(self, loan_id: int) -> Loan:
        if not isinstance(loan_id, int) or not 0 <= loan_id < len(self.loans):
            raise LoanNotFound(f"no loan {loan_id!r}", loan_id=loan_id)
        return self.loans[loan_id]

    def amount_due(self, loan_id: int) -> int:
        return self.get_loan(loan_id).amount_due

    def loans_of(self, party: str) -> List[int]:
        return list(self.loans_by_party.get(party, ()))

    def loans_with_status(self, status: LoanStatus) -> List[Loan]:
        return [loan for loan in self.loans if loan.status == status]

    # -----------------------------
    # Transitions
    # -----------------------------
    def request_loan(self, caller: str, amount: int, duration: int, rate_bps: int) -> int:
        with self._operation():
            require_id(caller, "borrower")
            require_positive(amount)
            if not isinstance(duration, int) or not self.cfg.min_duration <= duration <= self.cfg.max_duration:
                raise DurationOutOfRange(
                    f"duration {duration!r} outside [{self.cfg.min_duration}, {self.cfg.max_duration}]",
                    duration=duration,
                )
            if not isinstance(rate_bps, int) or rate_bps < 0:
                raise InvalidAmount(f"rate must be a non-negative int, got {rate_bps!r}", rate_bps=rate_bps)
            if rate_bps > self.cfg.max_rate_bps:
                raise RateTooHigh(f"{rate_bps} bps exceeds {self.cfg.max_rate_bps}", rate_bps=rate_bps)
            loan = Loan(
                loan_id=len(self.loans), borrower=caller, principal=amount,
                interest_rate_bps=rate_bps, duration=duration, requested_at=self.now,
            )
            self.loans.append(loan)
            self._appended(self.loans)
            self._index(caller, loan.loan_id)
            self._emit("LOAN_REQUESTED", actor=caller, asset=self.token, amount=amount,
                       loan_id=loan.loan_id, duration=duration, rate_bps=rate_bps)
        logger.debug("[LOAN] #%d requested by %s amount=%d rate=%d", loan.loan_id, caller, amount, rate_bps)
        return loan.loan_id

    def fund_loan(self, caller: str, loan_id: int) -> None:
        with self._operation():
            loan = self.get_loan(loan_id)
            self._require_open(loan)
            if loan.funded:
                raise AlreadyFunded(f"loan {loan_id} already funded by {loan.lender}", loan_id=loan_id)
            if caller == loan.borrower:
                raise Unauthorized("borrower cannot fund their own loan", loan_id=loan_id, caller=caller)
            require_id(caller, "lender")
            if self.now > loan.requested_at + self.cfg.funding_window:
                raise Expired(f"loan {loan_id} funding window closed", loan_id=loan_id)

            self._touch(loan)
            loan.lender = caller
            loan.funded = True
            loan.funded_at = self.now
            loan.due_time = self.now + loan.duration
            self._index(caller, loan_id)
            self.ledger.transfer_from(self.token, self.address, caller, loan.borrower, loan.principal)
            self._emit("LOAN_FUNDED", actor=caller, asset=self.token, amount=loan.principal,
                       loan_id=loan_id, borrower=loan.borrower, lender=caller, due_time=loan.due_time)
        logger.debug("[LOAN] #%d funded by %s due=%d", loan_id, caller, loan.due_time)

    def repay_loan(self, caller: str, loan_id: int) -> int:
        with self._operation():
            loan = self.get_loan(loan_id)
            self._require_funded(loan)
            if caller != loan.borrower:
                raise Unauthorized("only the borrower can repay", loan_id=loan_id, caller=caller)
            due = loan.amount_due
            self._touch(loan).repaid = True
            self.ledger.transfer_from(self.token, self.address, caller, loan.lender, due)
            self._emit("LOAN_REPAID", actor=caller, asset=self.token, amount=due,
                       loan_id=loan_id, borrower=caller, lender=loan.lender)
        logger.debug("[LOAN] #%d repaid %d to %s", loan_id, due, loan.lender)
        return due

    def mark_default(self, caller: str, loan_id: int) -> None:
        with self._operation():
            loan = self.get_loan(loan_id)
            self._require_funded(loan)
            if caller != loan.lender:
                raise Unauthorized("only the lender can mark a default", loan_id=loan_id, caller=caller)
            if self.now <= loan.due_time:
                raise NotDue(f"loan {loan_id} is due at {loan.due_time}", loan_id=loan_id, due_time=loan.due_time)
            self._touch(loan).defaulted = True
            self._emit("LOAN_DEFAULTED", actor=caller, asset=self.token, amount=loan.amount_due,
                       loan_id=loan_id, borrower=loan.borrower, lender=caller)
        logger.info("[LOAN] #%d defaulted (lender %s)", loan_id, caller)

    # -----------------------------
    # Guards
    # -----------------------------
    def _require_open(self, loan: Loan) -> None:
        if loan.repaid:
            raise AlreadyRepaid(f"loan {loan.loan_id} already repaid", loan_id=loan.loan_id)
        if loan.defaulted:
            raise AlreadyDefaulted(f"loan {loan.loan_id} already defaulted", loan_id=loan.loan_id)

    def _require_funded(self, loan: Loan) -> None:
        self._require_open(loan)
        if not loan.funded:
            raise NotFunded(f"loan {loan.loan_id} has not been funded", loan_id=loan.loan_id)

    def _index(self, party: str, loan_id: int) -> None:
        ids = self.loans_by_party.get(party)
        if ids is None:
            ids = self.loans_by_party[party] = []
            self._added(self.loans_by_party, party)
        if loan_id not in ids:
            ids.append(loan_id)
            self._appended(ids)
