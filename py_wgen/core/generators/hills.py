"""Additive paraboloid hills."""

from typing import Optional

import numpy as np

from ...utils.random import get_rng
from ..steps import HillsConf
from .common import CancelToken, ProgressSink, check_cancel, report

# base_radius is expressed for a map of this width
REFERENCE_WIDTH = 200.0


def gen_hills(
    seed: int,
    hmap: np.ndarray,
    conf: HillsConf,
    progress: Optional[ProgressSink] = None,
    cancel: Optional[CancelToken] = None,
) -> None:
    """
    Stamp ``conf.count`` paraboloid hills on the map.

    Each hill adds ``(r^2 - d^2) * height / r^2`` to every cell closer than
    ``r`` to its center, so the result does not depend on the hill order.

    Args:
        seed: World seed
        hmap: Height map, modified in place
        conf: Hills configuration
        progress: Optional progress sink
        cancel: Optional cancellation token
    """
    rows, cols = hmap.shape
    rng = get_rng(seed)
    real_radius = conf.base_radius * cols / REFERENCE_WIDTH
    min_radius = real_radius * (1.0 - conf.radius_var)
    max_radius = real_radius * (1.0 + conf.radius_var)

    for i in range(conf.count):
        if conf.radius_var == 0.0:
            radius = min_radius
        else:
            radius = rng.uniform(min_radius, max_radius)
        xh = rng.uniform(0.0, cols)
        yh = rng.uniform(0.0, rows)
        radius2 = radius * radius
        coef = conf.height / radius2

        minx = int(max(xh - radius, 0.0))
        maxx = int(min(xh + radius, cols))
        miny = int(max(yh - radius, 0.0))
        maxy = int(min(yh + radius, rows))
        if minx < maxx and miny < maxy:
            dx2 = (np.arange(minx, maxx, dtype=np.float32) - xh) ** 2
            dy2 = (np.arange(miny, maxy, dtype=np.float32) - yh) ** 2
            z = radius2 - dy2[:, None] - dx2[None, :]
            hmap[miny:maxy, minx:maxx] += np.where(z > 0.0, z * coef, 0.0).astype(np.float32)

        if i % 64 == 0:
            check_cancel(cancel)
            report(progress, i / conf.count)
