from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model

from dive import services
from dive.engine import CurveConfig, round_roll, survival_threshold
from dive.models import HouseVault
from wallets import services as wallets

GOLDEN_PARAMS = {
    "base_survival_probability": Decimal("0.70"),
    "decay_constant": Decimal("0.08"),
    "min_survival_probability": Decimal("0.05"),
    "house_edge": Decimal("0.05"),
    "payout_multiplier_numerator": 1,
    "payout_multiplier_denominator": 1,
    "max_payout_multiplier": 1000,
    "max_depth": 10,
    "min_bet": 10,
    "max_bet": 1000,
}

PLAYER_FUNDS = 10_000
HOUSE_LIQUIDITY = 1_000_000


@pytest.fixture
def golden_params():
    return dict(GOLDEN_PARAMS)


@pytest.fixture
def golden_cfg():
    return CurveConfig(
        base_survival=Decimal("0.70"),
        decay_constant=Decimal("0.08"),
        min_survival=Decimal("0.05"),
        house_edge=Decimal("0.05"),
        payout_multiplier_num=1,
        payout_multiplier_den=1,
        max_payout_multiplier=1000,
        max_depth=10,
        min_bet=10,
        max_bet=1000,
    )


@pytest.fixture
def make_user(db):
    User = get_user_model()

    def _make(username, funds=0, **extra):
        user = User.objects.create_user(username=username, password="pw", **extra)
        if funds:
            wallets.deposit(user, funds, reference=f"topup:{username}")
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("house", is_staff=True)


@pytest.fixture
def player(make_user):
    return make_user("alice", funds=PLAYER_FUNDS)


@pytest.fixture
def other_player(make_user):
    return make_user("bob", funds=PLAYER_FUNDS)


@pytest.fixture
def game_config(admin, golden_params):
    return services.replace_config(admin, **golden_params)


@pytest.fixture
def vault(admin, game_config):
    return HouseVault.objects.create(name="main", authority=admin, available=HOUSE_LIQUIDITY)


@pytest.fixture
def seed_for(golden_cfg):
    """
    Find a deterministic 32-byte seed whose rounds follow `pattern`,
    a list of survive (True) / fail (False) results from depth 1.
    """
    def _find(pattern, cfg=None):
        cfg = cfg or golden_cfg
        for i in range(1, 100_000):
            seed = i.to_bytes(32, "big")
            if all(
                (round_roll(seed, depth) < survival_threshold(depth, cfg)) == survive
                for depth, survive in enumerate(pattern, start=1)
            ):
                return seed
        raise AssertionError(f"no seed found for {pattern}")

    return _find


@pytest.fixture
def next_seeds(monkeypatch):
    """Queue seeds for the next sessions opened; falls back to fresh ones."""
    queue = []
    fallback = services.draw_seed

    def _draw():
        return queue.pop(0) if queue else fallback()

    monkeypatch.setattr(services, "draw_seed", _draw)
    return queue
