# dive/errors.py
from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    INVALID_CONFIG = "invalid_config"
    NOT_FOUND = "not_found"

    HOUSE_LOCKED = "house_locked"
    BET_OUT_OF_RANGE = "bet_out_of_range"
    INSUFFICIENT_BETTOR_FUNDS = "insufficient_bettor_funds"
    INSUFFICIENT_VAULT_CAPACITY = "insufficient_vault_capacity"
    INSUFFICIENT_VAULT_BALANCE = "insufficient_vault_balance"
    SESSION_NOT_ACTIVE = "session_not_active"
    SESSION_STILL_ACTIVE = "session_still_active"
    SESSION_NOT_OWNED_BY_CALLER = "session_not_owned_by_caller"
    SESSION_NOT_EXPIRED = "session_not_expired"
    NO_PROFIT_TO_SETTLE = "no_profit_to_settle"
    MAX_DEPTH_REACHED = "max_depth_reached"
    NOT_VAULT_AUTHORITY = "not_vault_authority"
    NOT_CONFIG_ADMIN = "not_config_admin"
    INVALID_AMOUNT = "invalid_amount"

    INVARIANT_VIOLATION = "invariant_violation"


MESSAGES = {
    ErrorCode.INVALID_CONFIG: "Invalid game configuration",
    ErrorCode.NOT_FOUND: "Not found",
    ErrorCode.HOUSE_LOCKED: "House vault is locked",
    ErrorCode.BET_OUT_OF_RANGE: "Bet amount is outside the allowed range",
    ErrorCode.INSUFFICIENT_BETTOR_FUNDS: "Insufficient funds",
    ErrorCode.INSUFFICIENT_VAULT_CAPACITY: "House cannot cover the worst-case payout",
    ErrorCode.INSUFFICIENT_VAULT_BALANCE: "Insufficient unreserved vault balance",
    ErrorCode.SESSION_NOT_ACTIVE: "Session is not active",
    ErrorCode.SESSION_STILL_ACTIVE: "Seed is revealed once the session ends",
    ErrorCode.SESSION_NOT_OWNED_BY_CALLER: "Session belongs to another player",
    ErrorCode.SESSION_NOT_EXPIRED: "Session has not timed out",
    ErrorCode.NO_PROFIT_TO_SETTLE: "Cannot cash out without profit",
    ErrorCode.MAX_DEPTH_REACHED: "Maximum depth reached",
    ErrorCode.NOT_VAULT_AUTHORITY: "Caller is not the vault authority",
    ErrorCode.NOT_CONFIG_ADMIN: "Caller is not the config admin",
    ErrorCode.INVALID_AMOUNT: "Amount must be positive",
    ErrorCode.INVARIANT_VIOLATION: "Internal accounting fault",
}


class DiveError(Exception):
    code = ErrorCode.INVARIANT_VIOLATION

    def __init__(self, detail=None):
        self.detail = detail if detail is not None else MESSAGES[self.code]
        super().__init__(self.detail)


class ConfigurationError(DiveError):
    code = ErrorCode.INVALID_CONFIG

    def __init__(self, problems):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class PreconditionError(DiveError):
    def __init__(self, code: ErrorCode, detail=None):
        self.code = code
        super().__init__(detail)


class NotFound(DiveError):
    code = ErrorCode.NOT_FOUND


class InvariantViolation(DiveError):
    code = ErrorCode.INVARIANT_VIOLATION
