"""Utility helpers."""

from .random import get_rng, noise_seed

__all__ = ["get_rng", "noise_seed"]
