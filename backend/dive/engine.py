# dive/engine.py
from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from decimal import Decimal, Context, ROUND_FLOOR, localcontext
from typing import List

from .errors import ConfigurationError

# Probabilities, rolls and the house edge all live on this integer scale.
PPM = 1_000_000
ROLL_SCALE = PPM

SEED_BYTES = 32
MIN_DEPTH = 2  # a session needs one round to show a profit
MAX_DEPTH_LIMIT = 200
MAX_AMOUNT = 2**63 - 1  # BigIntegerField

CURVE_CONTEXT = Context(prec=36)

D0 = Decimal("0")
D1 = Decimal("1")


def to_ppm(x: Decimal) -> int:
    return int((Decimal(x) * PPM).to_integral_value(rounding=ROUND_FLOOR))


@dataclass(frozen=True)
class CurveConfig:
    base_survival: Decimal
    decay_constant: Decimal
    min_survival: Decimal
    house_edge: Decimal
    payout_multiplier_num: int
    payout_multiplier_den: int
    max_payout_multiplier: int
    max_depth: int
    min_bet: int
    max_bet: int

    @property
    def base_ppm(self) -> int:
        return to_ppm(self.base_survival)

    @property
    def min_ppm(self) -> int:
        return to_ppm(self.min_survival)

    @property
    def edge_ppm(self) -> int:
        return to_ppm(self.house_edge)

    def to_snapshot(self) -> dict:
        return {
            "base_survival": str(self.base_survival),
            "decay_constant": str(self.decay_constant),
            "min_survival": str(self.min_survival),
            "house_edge": str(self.house_edge),
            "payout_multiplier_num": self.payout_multiplier_num,
            "payout_multiplier_den": self.payout_multiplier_den,
            "max_payout_multiplier": self.max_payout_multiplier,
            "max_depth": self.max_depth,
            "min_bet": self.min_bet,
            "max_bet": self.max_bet,
        }

    @classmethod
    def from_snapshot(cls, data: dict) -> "CurveConfig":
        return cls(
            base_survival=Decimal(data["base_survival"]),
            decay_constant=Decimal(data["decay_constant"]),
            min_survival=Decimal(data["min_survival"]),
            house_edge=Decimal(data["house_edge"]),
            payout_multiplier_num=int(data["payout_multiplier_num"]),
            payout_multiplier_den=int(data["payout_multiplier_den"]),
            max_payout_multiplier=int(data["max_payout_multiplier"]),
            max_depth=int(data["max_depth"]),
            min_bet=int(data["min_bet"]),
            max_bet=int(data["max_bet"]),
        )


@dataclass(frozen=True)
class RoundOutcome:
    depth: int
    roll: int
    threshold: int
    survived: bool
    new_depth: int
    new_value: int


@dataclass(frozen=True)
class CurvePoint:
    depth: int
    threshold: int
    value: int


# =====================================================
# CURVE
# =====================================================

def survival_threshold(depth: int, cfg: CurveConfig) -> int:
    """
    Survival probability at `depth`, in parts-per-million.

    max(min, base * exp(-decay * (depth - 1))), floored onto the ppm scale.
    Decimal.exp is correctly rounded, so every implementation computing at
    the same precision lands on the same integer.
    """
    if depth < 1:
        raise ValueError("depth starts at 1")
    with localcontext(CURVE_CONTEXT):
        exponent = -cfg.decay_constant * (depth - 1)
        raw = cfg.base_survival * exponent.exp()
        ppm = to_ppm(raw)
    return max(cfg.min_ppm, ppm)


def _step(value: int, threshold: int, cfg: CurveConfig) -> int:
    numerator = value * (PPM - cfg.edge_ppm) * cfg.payout_multiplier_num
    return numerator // (threshold * cfg.payout_multiplier_den)


def payout_cap(bet_amount: int, cfg: CurveConfig) -> int:
    return bet_amount * cfg.max_payout_multiplier


def payout_at_depth(bet_amount: int, depth: int, cfg: CurveConfig) -> int:
    """
    value(1) = bet; value(d) = floor(value(d-1) * (1 - edge) / p(d-1)),
    floored after every step and capped at bet * max_payout_multiplier.
    """
    if depth < 1:
        raise ValueError("depth starts at 1")
    if bet_amount <= 0:
        raise ValueError("bet must be positive")

    cap = payout_cap(bet_amount, cfg)
    value = bet_amount
    for d in range(1, depth):
        value = _step(value, survival_threshold(d, cfg), cfg)
        if value >= cap:
            return cap
    return min(value, cap)


def worst_case_payout(bet_amount: int, cfg: CurveConfig) -> int:
    return payout_at_depth(bet_amount, cfg.max_depth, cfg)


def payout_table(bet_amount: int, cfg: CurveConfig) -> List[CurvePoint]:
    """Threshold and value for every depth 1..max_depth, for display."""
    cap = payout_cap(bet_amount, cfg)
    points = []
    value = bet_amount
    for d in range(1, cfg.max_depth + 1):
        threshold = survival_threshold(d, cfg)
        points.append(CurvePoint(depth=d, threshold=threshold, value=min(value, cap)))
        value = _step(value, threshold, cfg)
    return points


def validate_config(cfg: CurveConfig) -> None:
    """
    Raise ConfigurationError unless the parameters are in range, every
    per-round multiplier is >= 1 and a min_bet stake can grow past itself.
    Runs at write time, never mid-session.
    """
    problems = []

    if not (D0 < cfg.base_survival <= D1):
        problems.append("base_survival_probability must be in (0, 1]")
    if cfg.decay_constant <= D0:
        problems.append("decay_constant must be > 0")
    if not (D0 <= cfg.min_survival <= cfg.base_survival):
        problems.append("min_survival_probability must be in [0, base]")
    if cfg.min_ppm <= 0:
        problems.append("min_survival_probability must be at least 1ppm")
    if not (D0 <= cfg.house_edge < D1):
        problems.append("house_edge must be in [0, 1)")
    if cfg.payout_multiplier_num <= 0 or cfg.payout_multiplier_den <= 0:
        problems.append("payout multiplier numerator/denominator must be positive")
    if cfg.max_payout_multiplier < 1:
        problems.append("max_payout_multiplier must be >= 1")
    if not (MIN_DEPTH <= cfg.max_depth <= MAX_DEPTH_LIMIT):
        problems.append(f"max_depth must be in [{MIN_DEPTH}, {MAX_DEPTH_LIMIT}]")
    if cfg.min_bet <= 0 or cfg.max_bet <= 0:
        problems.append("min_bet and max_bet must be positive")
    elif cfg.min_bet > cfg.max_bet:
        problems.append("min_bet must be <= max_bet")
    elif cfg.max_bet * max(cfg.max_payout_multiplier, 1) > MAX_AMOUNT:
        problems.append("max_bet * max_payout_multiplier overflows")

    if problems:
        raise ConfigurationError(problems)

    # A surviving round must never shrink the stake.
    keep = (PPM - cfg.edge_ppm) * cfg.payout_multiplier_num
    for d in range(1, cfg.max_depth):
        threshold = survival_threshold(d, cfg)
        if keep < threshold * cfg.payout_multiplier_den:
            problems.append(
                f"multiplier at depth {d} is below 1 "
                f"(threshold {threshold}ppm, edge {cfg.edge_ppm}ppm)"
            )
            break

    # Otherwise every session could only end in a loss or expiry.
    if not problems and payout_at_depth(cfg.min_bet, MIN_DEPTH, cfg) <= cfg.min_bet:
        problems.append(
            f"a survived round never pays above the stake at min_bet {cfg.min_bet} "
            f"(max_payout_multiplier {cfg.max_payout_multiplier})"
        )

    if problems:
        raise ConfigurationError(problems)


# =====================================================
# OUTCOME
# =====================================================

def seed_commitment(seed: bytes) -> str:
    return hashlib.sha256(seed).hexdigest()


def round_roll(seed: bytes, depth: int) -> int:
    """
    roll = u64_be(SHA256(seed || u32_be(depth))[:8]) mod 10^6
    """
    if len(seed) != SEED_BYTES:
        raise ValueError(f"seed must be {SEED_BYTES} bytes")
    digest = hashlib.sha256(seed + depth.to_bytes(4, "big")).digest()
    return int.from_bytes(digest[:8], "big") % ROLL_SCALE


def resolve_round(seed: bytes, depth: int, bet_amount: int, cfg: CurveConfig) -> RoundOutcome:
    roll = round_roll(seed, depth)
    threshold = survival_threshold(depth, cfg)
    if roll < threshold:
        return RoundOutcome(
            depth=depth,
            roll=roll,
            threshold=threshold,
            survived=True,
            new_depth=depth + 1,
            new_value=payout_at_depth(bet_amount, depth + 1, cfg),
        )
    return RoundOutcome(
        depth=depth,
        roll=roll,
        threshold=threshold,
        survived=False,
        new_depth=depth,
        new_value=0,
    )


def verify_commitment(seed: bytes, seed_hash: str) -> bool:
    return hmac.compare_digest(seed_commitment(seed), seed_hash)


def replay(seed: bytes, bet_amount: int, rounds: int, cfg: CurveConfig) -> List[RoundOutcome]:
    """Re-derive the first `rounds` outcomes of a session for audit."""
    outcomes = []
    depth = 1
    for _ in range(rounds):
        outcome = resolve_round(seed, depth, bet_amount, cfg)
        outcomes.append(outcome)
        if not outcome.survived:
            break
        depth = outcome.new_depth
    return outcomes
