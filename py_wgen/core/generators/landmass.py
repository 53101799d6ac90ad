"""
Land/water redistribution.

The map is normalized to [0, 1], then a 256 bucket histogram gives the
height below which ``1 - land_proportion`` of the cells lie. That height
is moved to the configured water level: land is stretched into
[water_level, 1] and water squeezed into [0, water_level].
"""

from typing import Optional

import numpy as np

from ..steps import LandMassConf
from .common import CancelToken, ProgressSink, check_cancel, normalize, report

HISTOGRAM_BUCKETS = 256


def find_water_level(hmap: np.ndarray, land_proportion: float) -> float:
    """
    Height of the bucket boundary leaving ``land_proportion`` of a [0, 1] map above it.
    """
    buckets = np.minimum((hmap * 255.0).astype(np.int64), HISTOGRAM_BUCKETS - 1)
    height_count = np.bincount(buckets.ravel(), minlength=HISTOGRAM_BUCKETS)
    target_water_cells = hmap.size * (1.0 - land_proportion)
    water_level = 0
    water_cells = 0.0
    while water_level < HISTOGRAM_BUCKETS and water_cells < target_water_cells:
        water_cells += height_count[water_level]
        water_level += 1
    return water_level / 255.0


def gen_landmass(
    hmap: np.ndarray,
    conf: LandMassConf,
    progress: Optional[ProgressSink] = None,
    cancel: Optional[CancelToken] = None,
) -> None:
    """
    Redistribute heights so the requested land proportion sits above water.

    Args:
        hmap: Height map, modified in place
        conf: Land mass configuration
        progress: Optional progress sink
        cancel: Optional cancellation token
    """
    normalize(hmap, 0.0, 1.0)
    new_water_level = find_water_level(hmap, conf.land_proportion)
    report(progress, 0.33)
    check_cancel(cancel)

    land_coef = (1.0 - conf.water_level) / (1.0 - new_water_level) if new_water_level < 1.0 else 0.0
    water_coef = conf.water_level / new_water_level if new_water_level > 0.0 else 0.0
    land = hmap > new_water_level
    hmap[...] = np.where(
        land,
        conf.water_level + (hmap - new_water_level) * land_coef,
        hmap * water_coef - conf.shore_height,
    )
    report(progress, 0.66)
    check_cancel(cancel)

    # sharper mountains, flatter plains
    above = hmap >= conf.water_level
    if conf.water_level < 1.0:
        coef = (hmap[above] - conf.water_level) / (1.0 - conf.water_level)
        if conf.plain_factor is None:
            coef = coef * coef * coef
        else:
            coef = np.power(coef, conf.plain_factor)
        hmap[above] = conf.water_level + coef * (1.0 - conf.water_level)
    report(progress, 1.0)
