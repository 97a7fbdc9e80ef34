from django.conf import settings
from django.db import models


class Wallet(models.Model):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="wallet",
    )
    # Smallest currency unit
    balance = models.BigIntegerField(default=0)
    locked_balance = models.BigIntegerField(default=0)

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=models.Q(balance__gte=0), name="wallet_balance_non_negative"),
            models.CheckConstraint(condition=models.Q(locked_balance__gte=0), name="wallet_locked_non_negative"),
        ]

    def __str__(self):
        return f"Wallet({self.user_id})"


class WalletTransaction(models.Model):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"
    LOCK = "LOCK"
    RELEASE = "RELEASE"
    FORFEIT = "FORFEIT"
    TX_TYPE_CHOICES = [
        (DEBIT, "Debit"),
        (CREDIT, "Credit"),
        (LOCK, "Lock"),
        (RELEASE, "Release"),
        (FORFEIT, "Forfeit"),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="wallet_txs"
    )
    amount = models.BigIntegerField()
    tx_type = models.CharField(max_length=8, choices=TX_TYPE_CHOICES)
    reference = models.CharField(max_length=96, unique=True)
    meta = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["user", "created_at"]),
        ]

    def __str__(self):
        return f"{self.tx_type} {self.amount} for {self.user_id}"
