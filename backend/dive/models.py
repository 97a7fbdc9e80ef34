# dive/models.py
from __future__ import annotations

import uuid
from decimal import Decimal
from django.conf import settings
from django.db import models
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator

from .engine import CurveConfig, MAX_DEPTH_LIMIT, MIN_DEPTH, validate_config
from .errors import ConfigurationError

User = settings.AUTH_USER_MODEL


class GameConfig(models.Model):
    # Singleton row, replaced whole through services.replace_config
    admin = models.ForeignKey(
        User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )

    base_survival_probability = models.DecimalField(
        max_digits=8, decimal_places=6,
        validators=[MinValueValidator(Decimal("0.000001")), MaxValueValidator(Decimal("1.000000"))],
        default=Decimal("0.700000"),
    )
    decay_constant = models.DecimalField(
        max_digits=10, decimal_places=6,
        validators=[MinValueValidator(Decimal("0.000001"))],
        default=Decimal("0.080000"),
    )
    min_survival_probability = models.DecimalField(
        max_digits=8, decimal_places=6,
        validators=[MinValueValidator(Decimal("0.000001")), MaxValueValidator(Decimal("1.000000"))],
        default=Decimal("0.050000"),
    )
    house_edge = models.DecimalField(
        max_digits=8, decimal_places=6,
        validators=[MinValueValidator(Decimal("0.000000")), MaxValueValidator(Decimal("0.999999"))],
        default=Decimal("0.050000"),
    )

    payout_multiplier_numerator = models.PositiveIntegerField(default=1)
    payout_multiplier_denominator = models.PositiveIntegerField(default=1)
    max_payout_multiplier = models.PositiveIntegerField(default=100)
    max_depth = models.PositiveIntegerField(
        default=10, validators=[MinValueValidator(MIN_DEPTH), MaxValueValidator(MAX_DEPTH_LIMIT)]
    )

    min_bet = models.PositiveBigIntegerField(default=10)
    max_bet = models.PositiveBigIntegerField(default=500)

    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return (
            f"GameConfig(base={self.base_survival_probability}, "
            f"decay={self.decay_constant}, edge={self.house_edge}, depth={self.max_depth})"
        )

    def to_curve(self) -> CurveConfig:
        return CurveConfig(
            base_survival=Decimal(self.base_survival_probability),
            decay_constant=Decimal(self.decay_constant),
            min_survival=Decimal(self.min_survival_probability),
            house_edge=Decimal(self.house_edge),
            payout_multiplier_num=self.payout_multiplier_numerator,
            payout_multiplier_den=self.payout_multiplier_denominator,
            max_payout_multiplier=self.max_payout_multiplier,
            max_depth=self.max_depth,
            min_bet=self.min_bet,
            max_bet=self.max_bet,
        )

    def clean(self):
        try:
            validate_config(self.to_curve())
        except ConfigurationError as e:
            raise ValidationError(e.problems)

    def save(self, *args, **kwargs):
        self.pk = 1
        validate_config(self.to_curve())
        super().save(*args, **kwargs)


class HouseVault(models.Model):
    name = models.CharField(max_length=64, default="main")
    authority = models.ForeignKey(User, on_delete=models.PROTECT, related_name="house_vaults")

    available = models.BigIntegerField(default=0)
    reserved = models.BigIntegerField(default=0)
    locked = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=models.Q(reserved__gte=0),
                name="dive_vault_reserved_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(available__gte=models.F("reserved")),
                name="dive_vault_available_covers_reserved",
            ),
        ]

    def __str__(self) -> str:
        return f"Vault {self.name} (avail={self.available}, reserved={self.reserved})"


class DiveSession(models.Model):
    STATUS_ACTIVE = "active"
    STATUS_LOST = "lost"
    STATUS_CASHED = "cashed_out"
    STATUS_EXPIRED = "expired"

    STATUS_CHOICES = [
        (STATUS_ACTIVE, "Active"),
        (STATUS_LOST, "Lost"),
        (STATUS_CASHED, "Cashed Out"),
        (STATUS_EXPIRED, "Expired"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    player = models.ForeignKey(User, on_delete=models.CASCADE, related_name="dive_sessions")
    vault = models.ForeignKey(HouseVault, on_delete=models.PROTECT, related_name="sessions")

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_ACTIVE, db_index=True)
    bet_amount = models.PositiveBigIntegerField()
    current_value = models.PositiveBigIntegerField(default=0)
    max_payout = models.PositiveBigIntegerField(default=0)
    payout_amount = models.PositiveBigIntegerField(default=0)
    depth = models.PositiveIntegerField(default=1)
    round_cursor = models.PositiveIntegerField(default=0)
    version = models.PositiveIntegerField(default=0)

    # Commit-reveal: seed_hash is published at open, seed only once terminal
    seed = models.CharField(max_length=64)
    seed_hash = models.CharField(max_length=64, db_index=True)

    config_snapshot = models.JSONField(default=dict)

    created_at = models.DateTimeField(auto_now_add=True)
    last_active_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["player", "status"]),
            models.Index(fields=["status", "last_active_at"]),
        ]

    def __str__(self) -> str:
        return f"Dive {self.id} ({self.status}, depth={self.depth})"

    @property
    def is_active(self) -> bool:
        return self.status == self.STATUS_ACTIVE

    @property
    def seed_bytes(self) -> bytes:
        return bytes.fromhex(self.seed)

    def curve(self) -> CurveConfig:
        return CurveConfig.from_snapshot(self.config_snapshot)


class DiveRound(models.Model):
    id = models.BigAutoField(primary_key=True)
    session = models.ForeignKey(DiveSession, on_delete=models.CASCADE, related_name="rounds")
    depth = models.PositiveIntegerField()
    roll = models.PositiveIntegerField()
    threshold = models.PositiveIntegerField()
    survived = models.BooleanField()
    value_after = models.PositiveBigIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = [("session", "depth")]
        ordering = ["session", "depth"]


class AuditLog(models.Model):
    SESSION_STARTED = "SESSION_STARTED"
    ROUND_PLAYED = "ROUND_PLAYED"
    SESSION_LOST = "SESSION_LOST"
    SESSION_CASHED_OUT = "SESSION_CASHED_OUT"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    LOCK_TOGGLED = "LOCK_TOGGLED"
    CONFIG_REPLACED = "CONFIG_REPLACED"
    HOUSE_DEPOSIT = "HOUSE_DEPOSIT"
    HOUSE_WITHDRAWAL = "HOUSE_WITHDRAWAL"

    ACTION_TYPES = [
        (SESSION_STARTED, "Session started"),
        (ROUND_PLAYED, "Round played"),
        (SESSION_LOST, "Session lost"),
        (SESSION_CASHED_OUT, "Session cashed out"),
        (SESSION_EXPIRED, "Session expired"),
        (LOCK_TOGGLED, "House lock toggled"),
        (CONFIG_REPLACED, "Config replaced"),
        (HOUSE_DEPOSIT, "House deposit"),
        (HOUSE_WITHDRAWAL, "House withdrawal"),
    ]

    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=32, choices=ACTION_TYPES)
    session = models.ForeignKey(DiveSession, on_delete=models.SET_NULL, null=True, blank=True)
    vault = models.ForeignKey(HouseVault, on_delete=models.SET_NULL, null=True, blank=True)
    details = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [models.Index(fields=["action", "created_at"])]
