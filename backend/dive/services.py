# dive/services.py
"""
Operations exposed to the API, admin tooling and the expiry sweeper.

Each operation is one database transaction. Rows are locked with
select_for_update() in a fixed order: session, then vault, then wallet.
The vault row lock is what serializes concurrent reserve/release.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from wallets import services as wallets

from . import ledger, machine
from .engine import RoundOutcome, replay, verify_commitment
from .errors import ConfigurationError, ErrorCode, NotFound, PreconditionError
from .models import AuditLog, DiveRound, DiveSession, GameConfig, HouseVault
from .seeds import draw_seed

logger = logging.getLogger(__name__)

CONFIG_FIELDS = (
    "base_survival_probability",
    "decay_constant",
    "min_survival_probability",
    "house_edge",
    "payout_multiplier_numerator",
    "payout_multiplier_denominator",
    "max_payout_multiplier",
    "max_depth",
    "min_bet",
    "max_bet",
)


def session_timeout() -> timedelta:
    return timedelta(seconds=getattr(settings, "DIVE_SESSION_TIMEOUT_SECONDS", 3600))


def _audit(action, *, actor=None, session=None, vault=None, **details):
    AuditLog.objects.create(
        actor=actor,
        action=action,
        session=session,
        vault=vault,
        details=details,
    )


# =====================================================
# READS
# =====================================================

def get_config() -> GameConfig:
    cfg = GameConfig.objects.filter(pk=1).first()
    if cfg is None:
        raise NotFound("Game config not initialized")
    return cfg


def get_vault(vault_id) -> HouseVault:
    try:
        return HouseVault.objects.get(pk=vault_id)
    except HouseVault.DoesNotExist:
        raise NotFound("Vault not found")


def get_session(session_id) -> DiveSession:
    try:
        return DiveSession.objects.get(pk=session_id)
    except DiveSession.DoesNotExist:
        raise NotFound("Session not found")


def _lock_session(session_id) -> DiveSession:
    try:
        return DiveSession.objects.select_for_update().get(pk=session_id)
    except DiveSession.DoesNotExist:
        raise NotFound("Session not found")


def _lock_vault(vault_id=None) -> HouseVault:
    qs = HouseVault.objects.select_for_update()
    vault = qs.filter(pk=vault_id).first() if vault_id is not None else qs.order_by("pk").first()
    if vault is None:
        raise NotFound("Vault not found")
    return vault


def _save_vault(vault: HouseVault) -> None:
    ledger.check_invariants(vault)
    vault.save(update_fields=["available", "reserved", "locked", "updated_at"])


# =====================================================
# CONFIG REGISTRY
# =====================================================

@transaction.atomic
def replace_config(admin, **params) -> GameConfig:
    """
    Replace the whole configuration. Open sessions keep the snapshot taken
    when they started.
    """
    if not admin.is_staff:
        raise PreconditionError(ErrorCode.NOT_CONFIG_ADMIN)
    missing = [f for f in CONFIG_FIELDS if f not in params]
    if missing:
        raise ConfigurationError([f"missing field {f}" for f in missing])

    current = GameConfig.objects.select_for_update().filter(pk=1).first()
    if current is not None and current.admin_id not in (None, admin.pk):
        raise PreconditionError(ErrorCode.NOT_CONFIG_ADMIN)

    cfg = current or GameConfig(pk=1)
    for field in CONFIG_FIELDS:
        setattr(cfg, field, params[field])
    cfg.admin = admin
    cfg.save()  # validates; ConfigurationError aborts before the write

    _audit(
        AuditLog.CONFIG_REPLACED,
        actor=admin,
        **{f: str(getattr(cfg, f)) for f in CONFIG_FIELDS},
    )
    logger.info("game config replaced by %s", admin.pk)
    return cfg


# =====================================================
# SESSIONS
# =====================================================

@transaction.atomic
def open_session(player, bet_amount: int, vault_id=None) -> DiveSession:
    cfg = get_config().to_curve()
    vault = _lock_vault(vault_id)
    wallet = wallets.get_wallet_for_update(player)
    now = timezone.now()

    session = machine.open_session(
        player=player,
        bet_amount=bet_amount,
        cfg=cfg,
        vault=vault,
        seed=draw_seed(),
        bettor_balance=wallet.balance,
        now=now,
    )
    session.save()
    _save_vault(vault)

    try:
        wallets.escrow_stake(
            wallet,
            bet_amount,
            reference=f"dive:{session.id}:bet",
            meta={"session": str(session.id)},
        )
    except wallets.InsufficientFunds:
        raise PreconditionError(ErrorCode.INSUFFICIENT_BETTOR_FUNDS)

    _audit(
        AuditLog.SESSION_STARTED,
        actor=player,
        session=session,
        vault=vault,
        bet_amount=bet_amount,
        max_payout=session.max_payout,
        seed_hash=session.seed_hash,
    )
    logger.info(
        "session %s opened: player=%s bet=%s max_payout=%s",
        session.id, player.pk, bet_amount, session.max_payout,
    )
    return session


@transaction.atomic
def advance_round(session_id, caller) -> Tuple[DiveSession, RoundOutcome]:
    session = _lock_session(session_id)
    vault = _lock_vault(session.vault_id)
    now = timezone.now()

    outcome = machine.advance(session, vault, caller, now)
    session.save()

    DiveRound.objects.create(
        session=session,
        depth=outcome.depth,
        roll=outcome.roll,
        threshold=outcome.threshold,
        survived=outcome.survived,
        value_after=session.current_value,
    )

    if outcome.survived:
        _audit(
            AuditLog.ROUND_PLAYED,
            actor=caller,
            session=session,
            depth=session.depth,
            current_value=session.current_value,
        )
    else:
        _save_vault(vault)
        wallet = wallets.get_wallet_for_update(session.player)
        wallets.forfeit_stake(wallet, session.bet_amount, reference=f"dive:{session.id}:lost")
        _audit(
            AuditLog.SESSION_LOST,
            actor=caller,
            session=session,
            vault=vault,
            bet_amount=session.bet_amount,
            final_depth=session.depth,
            released=session.max_payout,
        )
        logger.info("session %s lost at depth %s", session.id, session.depth)

    return session, outcome


@transaction.atomic
def settle(session_id, caller) -> Tuple[int, DiveSession]:
    session = _lock_session(session_id)
    vault = _lock_vault(session.vault_id)
    now = timezone.now()

    payout = machine.settle(session, vault, caller, now)
    session.save()
    _save_vault(vault)

    wallet = wallets.get_wallet_for_update(session.player)
    wallets.pay_out(
        wallet,
        stake=session.bet_amount,
        payout=payout,
        reference=f"dive:{session.id}:cashout",
    )

    _audit(
        AuditLog.SESSION_CASHED_OUT,
        actor=caller,
        session=session,
        vault=vault,
        payout_amount=payout,
        final_depth=session.depth,
        released=session.max_payout,
    )
    logger.info("session %s cashed out %s at depth %s", session.id, payout, session.depth)
    return payout, session


@transaction.atomic
def expire_session(session_id, now=None, timeout: Optional[timedelta] = None) -> DiveSession:
    session = _lock_session(session_id)
    vault = _lock_vault(session.vault_id)
    now = now or timezone.now()

    machine.expire(session, vault, now, timeout if timeout is not None else session_timeout())
    session.save()
    _save_vault(vault)

    wallet = wallets.get_wallet_for_update(session.player)
    wallets.forfeit_stake(wallet, session.bet_amount, reference=f"dive:{session.id}:expired")

    _audit(
        AuditLog.SESSION_EXPIRED,
        session=session,
        vault=vault,
        released=session.max_payout,
        last_active_at=str(session.last_active_at),
    )
    logger.info("session %s expired", session.id)
    return session


def stale_session_ids(now=None, timeout: Optional[timedelta] = None) -> List:
    now = now or timezone.now()
    cutoff = now - (timeout if timeout is not None else session_timeout())
    return list(
        DiveSession.objects.filter(
            status=DiveSession.STATUS_ACTIVE,
            last_active_at__lt=cutoff,
        ).values_list("id", flat=True)
    )


def expire_sessions(session_ids, now=None, timeout: Optional[timedelta] = None) -> List:
    expired = []
    for session_id in session_ids:
        try:
            expire_session(session_id, now=now, timeout=timeout)
        except (PreconditionError, NotFound) as e:
            # Advanced, settled or deleted since the scan
            logger.info("skip expiry of %s: %s", session_id, e.code.value)
            continue
        expired.append(session_id)
    return expired


def expire_stale_sessions(now=None, timeout: Optional[timedelta] = None) -> List:
    return expire_sessions(stale_session_ids(now, timeout), now=now, timeout=timeout)


def reveal_session(session_id, caller) -> dict:
    """Seed and replayed rounds of a finished session, for audit."""
    session = get_session(session_id)
    if session.player_id != caller.pk and not caller.is_staff:
        raise PreconditionError(ErrorCode.SESSION_NOT_OWNED_BY_CALLER)
    if session.is_active:
        raise PreconditionError(ErrorCode.SESSION_STILL_ACTIVE)

    seed = session.seed_bytes
    outcomes = replay(seed, session.bet_amount, session.round_cursor, session.curve())
    recorded = list(session.rounds.values_list("depth", "roll", "survived"))
    replayed = [(o.depth, o.roll, o.survived) for o in outcomes]
    return {
        "session": session,
        "seed": session.seed,
        "seed_hash": session.seed_hash,
        "commitment_ok": verify_commitment(seed, session.seed_hash),
        "replay_ok": recorded == replayed,
        "rounds": outcomes,
    }


# =====================================================
# VAULT
# =====================================================

def _require_authority(vault: HouseVault, authority) -> None:
    if authority is None or vault.authority_id != authority.pk:
        raise PreconditionError(ErrorCode.NOT_VAULT_AUTHORITY)


@transaction.atomic
def toggle_lock(vault_id, authority) -> HouseVault:
    vault = _lock_vault(vault_id)
    _require_authority(vault, authority)
    locked = ledger.toggle_lock(vault)
    _save_vault(vault)
    _audit(AuditLog.LOCK_TOGGLED, actor=authority, vault=vault, locked=locked)
    logger.warning("vault %s lock set to %s by %s", vault.pk, locked, authority.pk)
    return vault


@transaction.atomic
def deposit(vault_id, authority, amount: int) -> HouseVault:
    vault = _lock_vault(vault_id)
    _require_authority(vault, authority)
    if amount <= 0:
        raise PreconditionError(ErrorCode.INVALID_AMOUNT)
    ledger.credit(vault, amount)
    _save_vault(vault)
    _audit(AuditLog.HOUSE_DEPOSIT, actor=authority, vault=vault, amount=amount)
    return vault


@transaction.atomic
def withdraw(vault_id, authority, amount: int) -> HouseVault:
    """Only unreserved liquidity can leave the vault."""
    vault = _lock_vault(vault_id)
    _require_authority(vault, authority)
    if amount <= 0:
        raise PreconditionError(ErrorCode.INVALID_AMOUNT)
    if amount > ledger.capacity(vault):
        raise PreconditionError(
            ErrorCode.INSUFFICIENT_VAULT_BALANCE,
            f"Only {ledger.capacity(vault)} is unreserved",
        )
    ledger.debit(vault, amount)
    _save_vault(vault)
    _audit(AuditLog.HOUSE_WITHDRAWAL, actor=authority, vault=vault, amount=amount)
    return vault


def audit_vault(vault_id) -> dict:
    """Compare the vault's reserved total with its active sessions."""
    vault = get_vault(vault_id)
    active = DiveSession.objects.filter(vault=vault, status=DiveSession.STATUS_ACTIVE)
    expected = active.aggregate(total=Sum("max_payout"))["total"] or 0
    consistent = expected == vault.reserved
    if not consistent:
        logger.critical(
            "vault %s reserved %s but active sessions need %s",
            vault.pk, vault.reserved, expected,
        )
    return {
        "vault": vault,
        "reserved": vault.reserved,
        "active_sessions": active.count(),
        "active_max_payout": expected,
        "consistent": consistent,
    }
