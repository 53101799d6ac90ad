"""Border falloff toward the map minimum."""

import numpy as np

from ..steps import IslandConf
from .common import get_min_max


def _band_factors(length: int, coast_dist: float) -> np.ndarray:
    # the top/left and bottom/right bands may overlap on small ranges,
    # their factors then multiply
    factors = np.ones(length, dtype=np.float32)
    band = min(int(coast_dist), length)
    coefs = np.arange(band, dtype=np.float32) / np.float32(coast_dist)
    factors[:band] *= coefs
    factors[length - band:] *= coefs[::-1]
    return factors


def gen_island(hmap: np.ndarray, conf: IslandConf) -> None:
    """
    Fade heights toward the current minimum inside a border band.

    The band is ``coast_range`` % of each axis. The vertical pass (top and
    bottom rows) and the horizontal pass (left and right columns) are
    independent and their coefficients combine multiplicatively.
    """
    rows, cols = hmap.shape
    lo, _ = get_min_max(hmap)
    row_factors = _band_factors(rows, rows * conf.coast_range / 100.0)
    col_factors = _band_factors(cols, cols * conf.coast_range / 100.0)
    hmap[...] = (hmap - lo) * row_factors[:, None] + lo
    hmap[...] = (hmap - lo) * col_factors[None, :] + lo
