# dive/defaults.py
from decimal import Decimal

# Initial curve parameters for a fresh install.
DEFAULT_CONFIG = {
    "base_survival_probability": Decimal("0.700000"),
    "decay_constant": Decimal("0.080000"),
    "min_survival_probability": Decimal("0.050000"),
    "house_edge": Decimal("0.050000"),
    "payout_multiplier_numerator": 1,
    "payout_multiplier_denominator": 1,
    "max_payout_multiplier": 100,
    "max_depth": 10,
    "min_bet": 10,
    "max_bet": 500,
}
