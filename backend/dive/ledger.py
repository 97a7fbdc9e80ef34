# dive/ledger.py
"""
House liquidity bookkeeping on a HouseVault record.

These functions only touch the in-memory instance; callers hold the row lock
and save. Each one checks before it mutates, so a raised InvariantViolation
leaves the vault exactly as it was.
"""
from __future__ import annotations

import logging

from .errors import InvariantViolation

logger = logging.getLogger(__name__)


def _fault(vault, message: str):
    logger.critical(
        "vault invariant violated: %s (vault=%s available=%s reserved=%s)",
        message, vault.pk, vault.available, vault.reserved,
    )
    return InvariantViolation(message)


def capacity(vault) -> int:
    return vault.available - vault.reserved


def check_invariants(vault) -> None:
    if vault.reserved < 0:
        raise _fault(vault, "reserved is negative")
    if vault.available < vault.reserved:
        raise _fault(vault, "reserved exceeds available")


def reserve(vault, amount: int) -> None:
    """
    Earmark `amount` for a session's worst-case payout. The caller has already
    checked capacity; this only asserts the result still holds.
    """
    if amount < 0:
        raise _fault(vault, f"negative reservation {amount}")
    if vault.available < vault.reserved + amount:
        raise _fault(vault, f"reserving {amount} would exceed available")
    vault.reserved += amount


def release(vault, amount: int) -> None:
    if amount < 0:
        raise _fault(vault, f"negative release {amount}")
    if amount > vault.reserved:
        raise _fault(vault, f"release of {amount} exceeds reserved")
    vault.reserved -= amount


def credit(vault, amount: int) -> None:
    if amount < 0:
        raise _fault(vault, f"negative credit {amount}")
    vault.available += amount


def debit(vault, amount: int) -> None:
    if amount < 0:
        raise _fault(vault, f"negative debit {amount}")
    if vault.available - amount < vault.reserved:
        raise _fault(vault, f"debit of {amount} would uncover reservations")
    vault.available -= amount


def close_reservation(vault, amount: int, delta: int = 0) -> None:
    """
    Release a closing session's reservation and move `delta` into (positive)
    or out of (negative) available liquidity as one step.
    """
    if amount < 0 or amount > vault.reserved:
        raise _fault(vault, f"release of {amount} exceeds reserved")
    if vault.available + delta < vault.reserved - amount:
        raise _fault(vault, f"closing with delta {delta} would uncover reservations")
    release(vault, amount)
    if delta >= 0:
        credit(vault, delta)
    else:
        debit(vault, -delta)


def toggle_lock(vault) -> bool:
    vault.locked = not vault.locked
    return vault.locked
