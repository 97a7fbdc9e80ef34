from django.contrib import admin
from .models import AuditLog, DiveRound, DiveSession, GameConfig, HouseVault


@admin.register(GameConfig)
class GameConfigAdmin(admin.ModelAdmin):
    list_display = ("id", "base_survival_probability", "decay_constant", "min_survival_probability", "house_edge", "max_depth", "min_bet", "max_bet", "updated_at")

    def has_add_permission(self, request):
        return not GameConfig.objects.exists()

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(HouseVault)
class HouseVaultAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "authority", "available", "reserved", "locked", "updated_at")
    # Balances move only through dive.services
    readonly_fields = ("available", "reserved", "locked", "created_at", "updated_at")


class DiveRoundInline(admin.TabularInline):
    model = DiveRound
    extra = 0
    can_delete = False
    readonly_fields = ("depth", "roll", "threshold", "survived", "value_after", "created_at")


@admin.register(DiveSession)
class DiveSessionAdmin(admin.ModelAdmin):
    list_display = ("id", "player", "status", "bet_amount", "depth", "current_value", "max_payout", "payout_amount", "created_at")
    list_filter = ("status",)
    search_fields = ("id", "player__username", "seed_hash")
    readonly_fields = [f.name for f in DiveSession._meta.fields]
    inlines = [DiveRoundInline]


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("action", "actor", "session", "vault", "created_at")
    list_filter = ("action",)
    readonly_fields = ("actor", "action", "session", "vault", "details", "created_at")
