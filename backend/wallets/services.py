"""
Player balance primitive used by game settlement.

Callers run these inside their own transaction.atomic() block and pass in
the wallet row they locked with get_wallet_for_update().
"""
from django.db import transaction

from .models import Wallet, WalletTransaction


class WalletError(Exception):
    pass


class InsufficientFunds(WalletError):
    pass


# ======================================================
# INTERNAL
# ======================================================
def get_wallet_for_update(user):
    wallet, _ = Wallet.objects.select_for_update().get_or_create(user=user)
    return wallet


def _record(wallet, amount, tx_type, reference, meta):
    return WalletTransaction.objects.create(
        user_id=wallet.user_id,
        amount=amount,
        tx_type=tx_type,
        reference=reference,
        meta=meta or {},
    )


# ======================================================
# DEPOSIT (TOP-UP)
# ======================================================
@transaction.atomic
def deposit(user, amount: int, reference: str, meta=None):
    if amount <= 0:
        raise WalletError("Invalid deposit amount")
    wallet = get_wallet_for_update(user)
    wallet.balance += amount
    wallet.save(update_fields=["balance", "updated_at"])
    return _record(wallet, amount, WalletTransaction.CREDIT, reference, meta)


# ======================================================
# ESCROW STAKE (balance -> locked_balance)
# ======================================================
def escrow_stake(wallet, amount: int, reference: str, meta=None):
    if amount <= 0:
        raise WalletError("Invalid stake amount")
    if wallet.balance < amount:
        raise InsufficientFunds("Insufficient funds")

    wallet.balance -= amount
    wallet.locked_balance += amount
    wallet.save(update_fields=["balance", "locked_balance", "updated_at"])
    return _record(wallet, amount, WalletTransaction.LOCK, reference, meta)


# ======================================================
# FORFEIT STAKE (loss / expiry: locked funds go to the house)
# ======================================================
def forfeit_stake(wallet, amount: int, reference: str, meta=None):
    if wallet.locked_balance < amount:
        raise WalletError("Locked balance below stake")

    wallet.locked_balance -= amount
    wallet.save(update_fields=["locked_balance", "updated_at"])
    return _record(wallet, amount, WalletTransaction.FORFEIT, reference, meta)


# ======================================================
# PAY OUT (cash-out: stake released, payout credited)
# ======================================================
def pay_out(wallet, stake: int, payout: int, reference: str, meta=None):
    if payout < stake:
        raise WalletError("Payout below stake")
    if wallet.locked_balance < stake:
        raise WalletError("Locked balance below stake")

    wallet.locked_balance -= stake
    wallet.balance += payout
    wallet.save(update_fields=["balance", "locked_balance", "updated_at"])
    return _record(wallet, payout, WalletTransaction.RELEASE, reference, meta)
