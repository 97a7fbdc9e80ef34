# dive/machine.py
"""
Session lifecycle: active -> lost | cashed_out | expired.

Every transition validates first and mutates after, working on the records
handed in (session, vault, config snapshot). Nothing here touches the
database, the clock or a wallet; dive.services does that around these calls.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from . import ledger
from .engine import CurveConfig, RoundOutcome, resolve_round, seed_commitment, worst_case_payout
from .errors import ErrorCode, InvariantViolation, PreconditionError
from .models import DiveSession, HouseVault

logger = logging.getLogger(__name__)


def _require_owner(session: DiveSession, caller) -> None:
    if caller is None or session.player_id != caller.pk:
        raise PreconditionError(ErrorCode.SESSION_NOT_OWNED_BY_CALLER)


def _require_active(session: DiveSession) -> None:
    if session.status != DiveSession.STATUS_ACTIVE:
        raise PreconditionError(ErrorCode.SESSION_NOT_ACTIVE)


def open_session(
    player,
    bet_amount: int,
    cfg: CurveConfig,
    vault: HouseVault,
    seed: bytes,
    bettor_balance: int,
    now: datetime,
) -> DiveSession:
    if vault.locked:
        raise PreconditionError(ErrorCode.HOUSE_LOCKED)

    if not (cfg.min_bet <= bet_amount <= cfg.max_bet):
        raise PreconditionError(
            ErrorCode.BET_OUT_OF_RANGE,
            f"Bet must be between {cfg.min_bet} and {cfg.max_bet}",
        )

    if bettor_balance < bet_amount:
        raise PreconditionError(ErrorCode.INSUFFICIENT_BETTOR_FUNDS)

    max_payout = worst_case_payout(bet_amount, cfg)
    if ledger.capacity(vault) < max_payout:
        raise PreconditionError(
            ErrorCode.INSUFFICIENT_VAULT_CAPACITY,
            f"Vault can cover {ledger.capacity(vault)}, session needs {max_payout}",
        )

    ledger.reserve(vault, max_payout)

    return DiveSession(
        player=player,
        vault=vault,
        status=DiveSession.STATUS_ACTIVE,
        bet_amount=bet_amount,
        current_value=bet_amount,
        max_payout=max_payout,
        depth=1,
        round_cursor=0,
        seed=seed.hex(),
        seed_hash=seed_commitment(seed),
        config_snapshot=cfg.to_snapshot(),
        last_active_at=now,
    )


def advance(session: DiveSession, vault: HouseVault, caller, now: datetime) -> RoundOutcome:
    """
    Resolve the round at the session's current depth. A locked vault does not
    stop an advance; only opens and settles are frozen.
    """
    _require_owner(session, caller)
    _require_active(session)

    cfg = session.curve()
    if session.depth >= cfg.max_depth:
        raise PreconditionError(ErrorCode.MAX_DEPTH_REACHED)

    outcome = resolve_round(session.seed_bytes, session.depth, session.bet_amount, cfg)

    if outcome.survived:
        if outcome.new_value > session.max_payout:
            logger.critical(
                "session %s value %s exceeds max payout %s",
                session.pk, outcome.new_value, session.max_payout,
            )
            raise InvariantViolation("current value would exceed max payout")
        if outcome.new_value < session.current_value:
            logger.critical(
                "session %s value would drop from %s to %s",
                session.pk, session.current_value, outcome.new_value,
            )
            raise InvariantViolation("current value would decrease")
        session.depth = outcome.new_depth
        session.current_value = outcome.new_value
    else:
        # Stake was escrowed at open; it now belongs to the house.
        ledger.close_reservation(vault, session.max_payout, delta=session.bet_amount)
        session.status = DiveSession.STATUS_LOST
        session.current_value = 0
        session.finished_at = now

    session.round_cursor += 1
    session.version += 1
    session.last_active_at = now
    return outcome


def settle(session: DiveSession, vault: HouseVault, caller, now: datetime) -> int:
    """Cash out. Returns the amount owed to the player."""
    _require_owner(session, caller)
    _require_active(session)

    if vault.locked:
        raise PreconditionError(ErrorCode.HOUSE_LOCKED)

    if session.current_value <= session.bet_amount:
        raise PreconditionError(ErrorCode.NO_PROFIT_TO_SETTLE)

    payout = session.current_value
    # The stake comes back out of escrow; the vault funds only the profit.
    ledger.close_reservation(vault, session.max_payout, delta=-(payout - session.bet_amount))

    session.status = DiveSession.STATUS_CASHED
    session.payout_amount = payout
    session.finished_at = now
    session.version += 1
    return payout


def is_stale(session: DiveSession, now: datetime, timeout: timedelta) -> bool:
    last = session.last_active_at or session.created_at
    return last is not None and now - last > timeout


def expire(session: DiveSession, vault: HouseVault, now: datetime, timeout: timedelta) -> None:
    """Forced close of an abandoned session; accounted like a loss."""
    _require_active(session)
    if not is_stale(session, now, timeout):
        raise PreconditionError(ErrorCode.SESSION_NOT_EXPIRED)

    ledger.close_reservation(vault, session.max_payout, delta=session.bet_amount)
    session.status = DiveSession.STATUS_EXPIRED
    session.finished_at = now
    session.version += 1
