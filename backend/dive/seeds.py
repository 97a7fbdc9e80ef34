# dive/seeds.py
from __future__ import annotations

import secrets

from django.conf import settings
from django.utils.module_loading import import_string

from .engine import SEED_BYTES


def system_seed() -> bytes:
    return secrets.token_bytes(SEED_BYTES)


def get_seed_provider():
    """
    Resolve the seed provider named by settings.DIVE_SEED_PROVIDER.
    A provider is a zero-argument callable returning SEED_BYTES random bytes.
    """
    path = getattr(settings, "DIVE_SEED_PROVIDER", "dive.seeds.system_seed")
    return import_string(path)


def draw_seed() -> bytes:
    seed = get_seed_provider()()
    if not isinstance(seed, (bytes, bytearray)) or len(seed) != SEED_BYTES:
        raise ValueError(f"seed provider must return {SEED_BYTES} bytes")
    return bytes(seed)
