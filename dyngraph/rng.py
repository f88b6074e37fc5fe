"""The process-wide random number generator."""

from __future__ import annotations

import secrets

import numpy as np

_engine: np.random.Generator | None = None


def initialize(random_seed: int = 0) -> np.random.Generator:
    """Seed the shared Mersenne Twister; a seed of 0 draws one from the OS."""
    global _engine
    if random_seed == 0:
        random_seed = secrets.randbits(32)
    _engine = np.random.Generator(np.random.MT19937(random_seed))
    return _engine


def get_rng() -> np.random.Generator:
    """The shared generator, seeded from the OS on first use."""
    if _engine is None:
        return initialize(0)
    return _engine