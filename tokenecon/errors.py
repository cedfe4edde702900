from __future__ import annotations
from typing import Any, Dict, Optional


class LedgerError(Exception):
    """
    Root error for every engine and the token ledger.

    `reason` is a machine-stable snake_case tag (also used as the fail reason
    recorded by the simulator); `data` carries the offending ids/amounts.
    """
    reason: str = "ledger_error"

    def __init__(self, message: str = "", reason: Optional[str] = None, **data: Any) -> None:
        if reason is not None:
            self.reason = reason
        self.data: Dict[str, Any] = dict(data)
        super().__init__(message or self.reason)

    def to_dict(self) -> dict:
        return {"reason": self.reason, "message": str(self), "data": dict(self.data)}


class ConfigError(LedgerError, ValueError):
    reason = "bad_config"


# -----------------------------
# Parameter / identity errors
# -----------------------------
class InvalidAmount(LedgerError):
    reason = "invalid_amount"

class InvalidToken(LedgerError):
    reason = "invalid_token"

class Unauthorized(LedgerError):
    reason = "unauthorized"

class ReentrantCall(LedgerError):
    reason = "reentrant_call"

class Expired(LedgerError):
    reason = "expired"

class RateTooHigh(LedgerError):
    reason = "rate_too_high"

class DurationOutOfRange(LedgerError):
    reason = "duration_out_of_range"


# -----------------------------
# Pool errors
# -----------------------------
class PoolNotFound(LedgerError):
    reason = "pool_not_found"

class PoolExists(LedgerError):
    reason = "pool_exists"

class SlippageExceeded(LedgerError):
    reason = "slippage_exceeded"

class InsufficientLiquidity(LedgerError):
    reason = "insufficient_liquidity"


# -----------------------------
# Ledger call failures
# -----------------------------
class TransferFailed(LedgerError):
    reason = "transfer_failed"

class InsufficientBalance(TransferFailed):
    reason = "insufficient_balance"

class InsufficientAllowance(TransferFailed):
    reason = "insufficient_allowance"


# -----------------------------
# Loan state machine
# -----------------------------
class LoanNotFound(LedgerError):
    reason = "loan_not_found"

class AlreadyFunded(LedgerError):
    reason = "already_funded"

class AlreadyRepaid(LedgerError):
    reason = "already_repaid"

class AlreadyDefaulted(LedgerError):
    reason = "already_defaulted"

class NotFunded(LedgerError):
    reason = "not_funded"

class NotDue(LedgerError):
    reason = "not_due"
