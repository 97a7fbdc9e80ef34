from __future__ import annotations
from decimal import Decimal
from rest_framework import serializers
from .engine import MAX_DEPTH_LIMIT, MIN_DEPTH
from .models import DiveSession, GameConfig, HouseVault


# =====================================================
# CONFIG
# =====================================================

class GameConfigOut(serializers.ModelSerializer):
    class Meta:
        model = GameConfig
        fields = [
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
            "admin",
            "updated_at",
        ]


class GameConfigIn(serializers.Serializer):
    # Range checks that need the whole parameter set live in validate_config.
    base_survival_probability = serializers.DecimalField(max_digits=8, decimal_places=6)
    decay_constant = serializers.DecimalField(max_digits=10, decimal_places=6)
    min_survival_probability = serializers.DecimalField(max_digits=8, decimal_places=6)
    house_edge = serializers.DecimalField(max_digits=8, decimal_places=6, min_value=Decimal("0"))
    payout_multiplier_numerator = serializers.IntegerField(min_value=1)
    payout_multiplier_denominator = serializers.IntegerField(min_value=1)
    max_payout_multiplier = serializers.IntegerField(min_value=1)
    max_depth = serializers.IntegerField(min_value=MIN_DEPTH, max_value=MAX_DEPTH_LIMIT)
    min_bet = serializers.IntegerField(min_value=1)
    max_bet = serializers.IntegerField(min_value=1)


class CurvePointOut(serializers.Serializer):
    depth = serializers.IntegerField()
    threshold = serializers.IntegerField()
    value = serializers.IntegerField()


class CurveQueryIn(serializers.Serializer):
    bet_amount = serializers.IntegerField(min_value=1)


# =====================================================
# VAULT
# =====================================================

class HouseVaultOut(serializers.ModelSerializer):
    capacity = serializers.SerializerMethodField()

    class Meta:
        model = HouseVault
        fields = ["id", "name", "authority", "available", "reserved", "capacity", "locked", "updated_at"]

    def get_capacity(self, obj):
        return obj.available - obj.reserved


class AmountIn(serializers.Serializer):
    amount = serializers.IntegerField(min_value=1)


class VaultAuditOut(serializers.Serializer):
    vault = HouseVaultOut()
    reserved = serializers.IntegerField()
    active_sessions = serializers.IntegerField()
    active_max_payout = serializers.IntegerField()
    consistent = serializers.BooleanField()


# =====================================================
# SESSIONS
# =====================================================

class OpenSessionIn(serializers.Serializer):
    bet_amount = serializers.IntegerField(min_value=1)
    vault_id = serializers.IntegerField(required=False)


class SessionOut(serializers.ModelSerializer):
    session_id = serializers.UUIDField(source="id", read_only=True)
    seed = serializers.SerializerMethodField()

    class Meta:
        model = DiveSession
        fields = [
            "session_id",
            "player",
            "vault",
            "status",
            "bet_amount",
            "current_value",
            "max_payout",
            "payout_amount",
            "depth",
            "round_cursor",
            "seed_hash",
            "seed",
            "created_at",
            "last_active_at",
            "finished_at",
        ]

    def get_seed(self, obj):
        # Hidden while the session can still be played
        return None if obj.is_active else obj.seed


class RoundOut(serializers.Serializer):
    depth = serializers.IntegerField()
    roll = serializers.IntegerField()
    threshold = serializers.IntegerField()
    survived = serializers.BooleanField()
    new_depth = serializers.IntegerField()
    new_value = serializers.IntegerField()


class AdvanceOut(serializers.Serializer):
    round = RoundOut()
    session = SessionOut()


class SettleOut(serializers.Serializer):
    payout_amount = serializers.IntegerField()
    session = SessionOut()


class RevealOut(serializers.Serializer):
    session = SessionOut()
    seed = serializers.CharField()
    seed_hash = serializers.CharField()
    commitment_ok = serializers.BooleanField()
    replay_ok = serializers.BooleanField()
    rounds = RoundOut(many=True)
