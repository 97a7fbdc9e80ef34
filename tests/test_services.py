"""Transactional operations against the database."""

import random
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from django.db.models import Sum
from django.utils import timezone

from dive import services
from dive.errors import ConfigurationError, DiveError, ErrorCode, NotFound, PreconditionError
from dive.models import AuditLog, DiveRound, DiveSession, GameConfig, HouseVault
from wallets.models import Wallet

pytestmark = pytest.mark.django_db

HOUSE_LIQUIDITY = 1_000_000
PLAYER_FUNDS = 10_000


def reload(obj):
    obj.refresh_from_db()
    return obj


def wallet_of(user):
    return Wallet.objects.get(user=user)


# ============================================================
# Config registry
# ============================================================

class TestConfig:
    def test_get_config_missing(self):
        with pytest.raises(NotFound):
            services.get_config()

    def test_replace_requires_staff(self, player, golden_params):
        with pytest.raises(PreconditionError) as exc:
            services.replace_config(player, **golden_params)
        assert exc.value.code == ErrorCode.NOT_CONFIG_ADMIN

    def test_replace_rejects_other_admin(self, game_config, make_user, golden_params):
        intruder = make_user("mallory", is_staff=True)
        with pytest.raises(PreconditionError) as exc:
            services.replace_config(intruder, **golden_params)
        assert exc.value.code == ErrorCode.NOT_CONFIG_ADMIN

    def test_invalid_config_not_written(self, game_config, admin, golden_params):
        bad = dict(golden_params, base_survival_probability=Decimal("0.99"))
        with pytest.raises(ConfigurationError):
            services.replace_config(admin, **bad)
        assert reload(game_config).base_survival_probability == Decimal("0.70")

    def test_missing_fields(self, admin):
        with pytest.raises(ConfigurationError) as exc:
            services.replace_config(admin, max_depth=5)
        assert any("house_edge" in p for p in exc.value.problems)

    @pytest.mark.parametrize("override", [{"max_depth": 1}, {"max_payout_multiplier": 1}])
    def test_rejects_configs_that_never_pay(self, game_config, admin, golden_params, override):
        with pytest.raises(ConfigurationError):
            services.replace_config(admin, **dict(golden_params, **override))
        cfg = reload(game_config)
        assert (cfg.max_depth, cfg.max_payout_multiplier) == (10, 1000)

    def test_single_row_and_audit(self, game_config, admin, golden_params):
        services.replace_config(admin, **dict(golden_params, max_depth=8))
        assert GameConfig.objects.count() == 1
        assert services.get_config().max_depth == 8
        assert AuditLog.objects.filter(action=AuditLog.CONFIG_REPLACED).count() == 2

    def test_open_sessions_keep_their_curve(self, vault, player, admin, golden_params, next_seeds, seed_for):
        next_seeds.append(seed_for([True]))
        session = services.open_session(player, 100)

        services.replace_config(admin, **dict(golden_params, house_edge=Decimal("0.20")))
        session, outcome = services.advance_round(session.id, player)

        assert outcome.survived
        assert session.current_value == 135


# ============================================================
# Session lifecycle
# ============================================================

class TestOpenSession:
    def test_open_escrows_stake_and_reserves(self, vault, player):
        session = services.open_session(player, 100)

        assert session.max_payout == 27516
        assert reload(vault).reserved == 27516
        assert reload(vault).available == HOUSE_LIQUIDITY
        w = wallet_of(player)
        assert (w.balance, w.locked_balance) == (PLAYER_FUNDS - 100, 100)
        assert AuditLog.objects.filter(action=AuditLog.SESSION_STARTED, session=session).exists()

    def test_vault_scenario(self, admin, player, golden_params):
        # One fair coin-flip round: max payout is exactly twice the bet
        services.replace_config(admin, **dict(
            golden_params,
            base_survival_probability=Decimal("0.50"),
            house_edge=Decimal("0"),
            max_depth=2,
        ))
        vault = HouseVault.objects.create(authority=admin, available=1000)

        first = services.open_session(player, 250)
        assert first.max_payout == 500
        with pytest.raises(PreconditionError) as exc:
            services.open_session(player, 300)

        assert exc.value.code == ErrorCode.INSUFFICIENT_VAULT_CAPACITY
        assert (reload(vault).available, vault.reserved) == (1000, 500)
        assert wallet_of(player).locked_balance == 250

    def test_insufficient_bettor_funds(self, vault, make_user):
        broke = make_user("broke", funds=50)
        with pytest.raises(PreconditionError) as exc:
            services.open_session(broke, 100)
        assert exc.value.code == ErrorCode.INSUFFICIENT_BETTOR_FUNDS
        assert reload(vault).reserved == 0
        assert not DiveSession.objects.exists()

    def test_locked_house(self, vault, admin, player):
        services.toggle_lock(vault.id, admin)
        with pytest.raises(PreconditionError) as exc:
            services.open_session(player, 100)
        assert exc.value.code == ErrorCode.HOUSE_LOCKED

    def test_no_vault(self, game_config, player):
        with pytest.raises(NotFound):
            services.open_session(player, 100)


class TestAdvanceAndSettle:
    def test_survive_then_cash_out(self, vault, player, next_seeds, seed_for):
        next_seeds.append(seed_for([True]))
        session = services.open_session(player, 100)

        session, outcome = services.advance_round(session.id, player)
        assert (session.depth, session.current_value) == (2, 135)
        assert DiveRound.objects.filter(session=session, depth=1, survived=True).exists()

        payout, session = services.settle(session.id, player)
        assert payout == 135
        assert session.status == DiveSession.STATUS_CASHED

        v = reload(vault)
        assert (v.available, v.reserved) == (HOUSE_LIQUIDITY - 35, 0)
        w = wallet_of(player)
        assert (w.balance, w.locked_balance) == (PLAYER_FUNDS + 35, 0)

    def test_loss_forfeits_stake(self, vault, player, next_seeds, seed_for):
        next_seeds.append(seed_for([True, False]))
        session = services.open_session(player, 100)

        services.advance_round(session.id, player)
        session, outcome = services.advance_round(session.id, player)
        assert not outcome.survived
        assert session.status == DiveSession.STATUS_LOST
        assert session.current_value == 0

        v = reload(vault)
        assert (v.available, v.reserved) == (HOUSE_LIQUIDITY + 100, 0)
        w = wallet_of(player)
        assert (w.balance, w.locked_balance) == (PLAYER_FUNDS - 100, 0)

    def test_no_profit_to_settle(self, vault, player):
        session = services.open_session(player, 100)
        with pytest.raises(PreconditionError) as exc:
            services.settle(session.id, player)
        assert exc.value.code == ErrorCode.NO_PROFIT_TO_SETTLE
        assert reload(session).is_active

    def test_locked_allows_advance_but_not_settle(self, vault, admin, player, next_seeds, seed_for):
        next_seeds.append(seed_for([True, True]))
        session = services.open_session(player, 100)
        services.toggle_lock(vault.id, admin)

        session, outcome = services.advance_round(session.id, player)
        assert outcome.survived

        with pytest.raises(PreconditionError) as exc:
            services.settle(session.id, player)
        assert exc.value.code == ErrorCode.HOUSE_LOCKED
        assert reload(session).is_active
        assert reload(vault).reserved == session.max_payout

    def test_other_player_cannot_touch(self, vault, player, other_player):
        session = services.open_session(player, 100)
        for op in (services.advance_round, services.settle):
            with pytest.raises(PreconditionError) as exc:
                op(session.id, other_player)
            assert exc.value.code == ErrorCode.SESSION_NOT_OWNED_BY_CALLER

    def test_terminal_session_is_immutable(self, vault, player, next_seeds, seed_for):
        next_seeds.append(seed_for([False]))
        session = services.open_session(player, 100)
        services.advance_round(session.id, player)
        before = reload(session).version

        with pytest.raises(PreconditionError) as exc:
            services.advance_round(session.id, player)
        assert exc.value.code == ErrorCode.SESSION_NOT_ACTIVE
        assert reload(session).version == before

    def test_unknown_session(self, vault, player):
        with pytest.raises(NotFound):
            services.advance_round(uuid.uuid4(), player)


# ============================================================
# Expiry
# ============================================================

class TestExpiry:
    def test_expire_stale(self, vault, player):
        session = services.open_session(player, 100)
        later = timezone.now() + timedelta(hours=2)

        assert services.expire_stale_sessions(now=later) == [session.id]
        session = reload(session)
        assert session.status == DiveSession.STATUS_EXPIRED
        v = reload(vault)
        assert (v.available, v.reserved) == (HOUSE_LIQUIDITY + 100, 0)
        assert wallet_of(player).locked_balance == 0
        assert AuditLog.objects.filter(action=AuditLog.SESSION_EXPIRED).count() == 1

    def test_fresh_session_not_expired(self, vault, player):
        session = services.open_session(player, 100)
        assert services.expire_stale_sessions() == []
        with pytest.raises(PreconditionError) as exc:
            services.expire_session(session.id)
        assert exc.value.code == ErrorCode.SESSION_NOT_EXPIRED

    def test_custom_timeout(self, vault, player):
        session = services.open_session(player, 100)
        later = timezone.now() + timedelta(seconds=30)
        assert services.expire_stale_sessions(now=later, timeout=timedelta(seconds=10)) == [session.id]

    def test_missing_session_does_not_stop_sweep(self, vault, player):
        session = services.open_session(player, 100)
        later = timezone.now() + timedelta(hours=2)
        assert services.expire_sessions([uuid.uuid4(), session.id], now=later) == [session.id]
        assert reload(session).status == DiveSession.STATUS_EXPIRED

    def test_terminal_sessions_skipped(self, vault, player):
        session = services.open_session(player, 100)
        later = timezone.now() + timedelta(hours=2)
        services.expire_session(session.id, now=later)
        assert services.expire_sessions([session.id], now=later) == []


# ============================================================
# Reveal
# ============================================================

class TestReveal:
    def test_hidden_while_active(self, vault, player):
        session = services.open_session(player, 100)
        with pytest.raises(PreconditionError) as exc:
            services.reveal_session(session.id, player)
        assert exc.value.code == ErrorCode.SESSION_STILL_ACTIVE

    def test_reveal_after_loss(self, vault, player, next_seeds, seed_for):
        seed = seed_for([True, True, False])
        next_seeds.append(seed)
        session = services.open_session(player, 100)
        for _ in range(3):
            services.advance_round(session.id, player)

        result = services.reveal_session(session.id, player)
        assert result["seed"] == seed.hex()
        assert result["commitment_ok"]
        assert result["replay_ok"]
        assert [o.survived for o in result["rounds"]] == [True, True, False]

    def test_other_player_cannot_reveal(self, vault, player, other_player, next_seeds, seed_for):
        next_seeds.append(seed_for([False]))
        session = services.open_session(player, 100)
        services.advance_round(session.id, player)
        with pytest.raises(PreconditionError):
            services.reveal_session(session.id, other_player)


# ============================================================
# Vault operations
# ============================================================

class TestVault:
    def test_withdraw_only_unreserved(self, vault, admin, player):
        services.open_session(player, 100)
        capacity = HOUSE_LIQUIDITY - 27516

        with pytest.raises(PreconditionError) as exc:
            services.withdraw(vault.id, admin, capacity + 1)
        assert exc.value.code == ErrorCode.INSUFFICIENT_VAULT_BALANCE

        v = services.withdraw(vault.id, admin, capacity)
        assert (v.available, v.reserved) == (27516, 27516)

    def test_authority_only(self, vault, player):
        for op in (services.deposit, services.withdraw):
            with pytest.raises(PreconditionError) as exc:
                op(vault.id, player, 10)
            assert exc.value.code == ErrorCode.NOT_VAULT_AUTHORITY
        with pytest.raises(PreconditionError):
            services.toggle_lock(vault.id, player)

    def test_deposit(self, vault, admin):
        v = services.deposit(vault.id, admin, 500)
        assert v.available == HOUSE_LIQUIDITY + 500
        with pytest.raises(PreconditionError) as exc:
            services.deposit(vault.id, admin, 0)
        assert exc.value.code == ErrorCode.INVALID_AMOUNT

    def test_toggle_does_not_touch_reserved(self, vault, admin, player):
        services.open_session(player, 100)
        v = services.toggle_lock(vault.id, admin)
        assert v.locked
        assert v.reserved == 27516
        assert not services.toggle_lock(vault.id, admin).locked

    def test_audit(self, vault, player, other_player):
        services.open_session(player, 100)
        services.open_session(other_player, 200)
        report = services.audit_vault(vault.id)
        assert report["consistent"]
        assert report["active_sessions"] == 2

        HouseVault.objects.filter(pk=vault.pk).update(reserved=1)
        assert not services.audit_vault(vault.id)["consistent"]


# ============================================================
# Conservation under random operation sequences
# ============================================================

def total_money():
    wallets = Wallet.objects.aggregate(b=Sum("balance"), l=Sum("locked_balance"))
    house = HouseVault.objects.aggregate(a=Sum("available"))
    return (wallets["b"] or 0) + (wallets["l"] or 0) + (house["a"] or 0)


def assert_reservations_match(vault):
    v = reload(vault)
    active = DiveSession.objects.filter(vault=v, status=DiveSession.STATUS_ACTIVE)
    expected = active.aggregate(total=Sum("max_payout"))["total"] or 0
    assert v.reserved == expected
    assert v.available >= v.reserved >= 0


@pytest.mark.parametrize("rng_seed", [1, 2, 3])
def test_random_sequences_conserve_funds(rng_seed, vault, admin, make_user, monkeypatch):
    rng = random.Random(rng_seed)
    monkeypatch.setattr(services, "draw_seed", lambda: bytes(rng.getrandbits(8) for _ in range(32)))

    players = [make_user(f"p{i}", funds=5_000) for i in range(4)]
    start = total_money()
    later = timezone.now() + timedelta(hours=2)

    for _ in range(120):
        op = rng.choice(["open", "advance", "advance", "settle", "expire", "lock"])
        active = list(DiveSession.objects.filter(status=DiveSession.STATUS_ACTIVE))
        try:
            if op == "open" or not active:
                services.open_session(rng.choice(players), rng.randint(10, 1000))
            elif op == "advance":
                s = rng.choice(active)
                services.advance_round(s.id, s.player)
            elif op == "settle":
                s = rng.choice(active)
                services.settle(s.id, s.player)
            elif op == "expire":
                services.expire_session(rng.choice(active).id, now=later)
            else:
                services.toggle_lock(vault.id, admin)
        except PreconditionError:
            pass
        except DiveError as e:
            pytest.fail(f"{op} raised {e.code}: {e.detail}")

        assert_reservations_match(vault)
        assert total_money() == start
        for s in DiveSession.objects.filter(status=DiveSession.STATUS_ACTIVE):
            assert s.bet_amount <= s.current_value <= s.max_payout
