"""
Random number generation utilities.

Every generator that needs randomness derives its own NumPy ``Generator``
from the world seed, so a stage only ever depends on the seed and its
inputs. Python's global ``random`` module and NumPy's legacy global state
must not be used by the generators.
"""

import numpy as np

# Seeds are handled as unsigned 64 bit integers
SEED_MASK = 0xFFFFFFFFFFFFFFFF


def get_rng(seed: int) -> np.random.Generator:
    """
    Build a fresh random generator for a world seed.

    Args:
        seed: World seed (truncated to 64 bits)

    Returns:
        Independent NumPy Generator
    """
    return np.random.default_rng(int(seed) & SEED_MASK)


def noise_seed(seed: int) -> int:
    """Reduce a world seed to the 32 bit seed used by the noise sources."""
    return int(seed) & 0xFFFFFFFF
