import pytest

from tokenecon.config import DAY, YEAR
from tokenecon.errors import (AlreadyDefaulted, AlreadyFunded, AlreadyRepaid, DurationOutOfRange,
                              Expired, InsufficientBalance, LoanNotFound, NotDue, NotFunded,
                              RateTooHigh, Unauthorized)
from tokenecon.loans import LoanStatus


@pytest.fixture
def parties(fund):
    fund("bob", A=100)       # borrower; needs interest on top of the principal
    fund("carol", A=5_000)   # lender
    return "bob", "carol"


def test_request_fund_repay(loans, clock, ledger, parties, log):
    bob, carol = parties
    loan_id = loans.request_loan(bob, 1_000, 30 * DAY, 500)
    assert loan_id == 0
    assert loans.get_loan(0).status == LoanStatus.REQUESTED

    loans.fund_loan(carol, loan_id)
    loan = loans.get_loan(loan_id)
    assert loan.status == LoanStatus.FUNDED
    assert loan.due_time == clock.now + 30 * DAY
    assert ledger.balance_of("A", bob) == 1_100
    assert ledger.balance_of("A", carol) == 4_000
    assert loans.amount_due(loan_id) == 1_050

    clock.advance(10 * DAY)
    assert loans.repay_loan(bob, loan_id) == 1_050
    assert ledger.balance_of("A", bob) == 50
    assert ledger.balance_of("A", carol) == 5_050
    assert ledger.balance_of("A", loans.address) == 0
    assert loan.status == LoanStatus.REPAID

    with pytest.raises(AlreadyRepaid):
        loans.repay_loan(bob, loan_id)
    with pytest.raises(AlreadyRepaid):
        loans.mark_default(carol, loan_id)
    with pytest.raises(AlreadyRepaid):
        loans.fund_loan(carol, loan_id)
    kinds = [e.event_type for e in log.events]
    assert kinds == ["LOAN_REQUESTED", "LOAN_FUNDED", "LOAN_REPAID"]


def test_default_after_due_time(loans, clock, parties):
    bob, carol = parties
    loan_id = loans.request_loan(bob, 1_000, 7 * DAY, 200)
    loans.fund_loan(carol, loan_id)
    due = loans.get_loan(loan_id).due_time
    clock.set(due)
    with pytest.raises(NotDue):
        loans.mark_default(carol, loan_id)
    clock.advance(1)
    with pytest.raises(Unauthorized):
        loans.mark_default(bob, loan_id)
    loans.mark_default(carol, loan_id)
    assert loans.get_loan(loan_id).status == LoanStatus.DEFAULTED
    with pytest.raises(AlreadyDefaulted):
        loans.repay_loan(bob, loan_id)
    with pytest.raises(AlreadyDefaulted):
        loans.mark_default(carol, loan_id)


def test_funding_rules(loans, clock, parties, fund):
    bob, carol = parties
    loan_id = loans.request_loan(bob, 1_000, 7 * DAY, 0)
    with pytest.raises(Unauthorized):
        loans.fund_loan(bob, loan_id)
    with pytest.raises(NotFunded):
        loans.repay_loan(bob, loan_id)
    with pytest.raises(NotFunded):
        loans.mark_default(carol, loan_id)
    loans.fund_loan(carol, loan_id)
    fund("dave", A=5_000)
    with pytest.raises(AlreadyFunded):
        loans.fund_loan("dave", loan_id)
    with pytest.raises(Unauthorized):
        loans.repay_loan("dave", loan_id)


def test_funding_window_expires(loans, clock, parties):
    bob, carol = parties
    loan_id = loans.request_loan(bob, 1_000, 7 * DAY, 100)
    clock.advance(loans.cfg.funding_window + 1)
    with pytest.raises(Expired):
        loans.fund_loan(carol, loan_id)
    assert loans.get_loan(loan_id).status == LoanStatus.REQUESTED


def test_lender_without_funds_rolls_back(loans, parties, fund):
    bob, _ = parties
    fund("erin", A=10)
    loan_id = loans.request_loan(bob, 1_000, 7 * DAY, 100)
    with pytest.raises(InsufficientBalance):
        loans.fund_loan("erin", loan_id)
    loan = loans.get_loan(loan_id)
    assert loan.status == LoanStatus.REQUESTED
    assert loan.lender is None and loan.due_time is None
    assert loans.loans_of("erin") == []


def test_request_validation(loans, parties):
    bob, _ = parties
    with pytest.raises(DurationOutOfRange):
        loans.request_loan(bob, 1_000, DAY - 1, 100)
    with pytest.raises(DurationOutOfRange):
        loans.request_loan(bob, 1_000, YEAR + 1, 100)
    with pytest.raises(RateTooHigh):
        loans.request_loan(bob, 1_000, DAY, 5_001)
    with pytest.raises(LoanNotFound):
        loans.get_loan(0)
    assert loans.loan_count == 0


def test_party_index(loans, parties):
    bob, carol = parties
    first = loans.request_loan(bob, 100, DAY, 0)
    second = loans.request_loan(bob, 200, DAY, 0)
    loans.fund_loan(carol, second)
    assert loans.loans_of(bob) == [first, second]
    assert loans.loans_of(carol) == [second]
    assert [l.loan_id for l in loans.loans_with_status(LoanStatus.REQUESTED)] == [first]


def test_failed_fund_restores_only_its_loan(loans, parties, fund):
    bob, carol = parties
    fund("erin", A=10)
    ids = [loans.request_loan(bob, 100 + i, DAY, 0) for i in range(20)]
    loans.fund_loan(carol, ids[3])
    held = loans.get_loan(ids[7])
    with pytest.raises(InsufficientBalance):
        loans.fund_loan("erin", ids[7])
    assert loans.get_loan(ids[7]) is held
    assert held.status == LoanStatus.REQUESTED and held.lender is None
    assert loans.get_loan(ids[3]).lender == carol
    assert loans.loan_count == 20
    assert loans.loans_of(carol) == [ids[3]]
    assert "erin" not in loans.loans_by_party
