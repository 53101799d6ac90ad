"""Local slope relaxation (mud slides)."""

from typing import Optional

import numpy as np

from ..steps import MudSlideConf
from .common import CancelToken, ProgressSink, check_cancel, report

DIAGONAL_WEIGHT = 0.4
ADJACENT_WEIGHT = 1.6

_NEIGHBOURS = [
    (-1, -1, True),
    (-1, 0, False),
    (-1, 1, True),
    (0, -1, False),
    (0, 1, False),
    (1, -1, True),
    (1, 0, False),
    (1, 1, True),
]


def mudslide_pass(hmap: np.ndarray, conf: MudSlideConf) -> np.ndarray:
    """
    Run one relaxation pass and return the new map.

    Cells between ``water_level - 0.01`` and ``max_erosion_alt`` move toward
    their lower neighbours. The move is damped by a cubic of the altitude
    above water so peaks are smoothed less than plains.
    """
    rows, cols = hmap.shape
    # out of map neighbours are never lower
    padded = np.pad(hmap, 1, mode="constant", constant_values=np.inf)
    sum_diagonal = np.zeros_like(hmap)
    sum_adjacent = np.zeros_like(hmap)
    nb_diagonal = np.ones_like(hmap)
    nb_adjacent = np.ones_like(hmap)
    for dy, dx, diagonal in _NEIGHBOURS:
        neighbour = padded[1 + dy:1 + dy + rows, 1 + dx:1 + dx + cols]
        lower = neighbour < hmap
        delta = np.where(lower, neighbour - hmap, 0.0)
        if diagonal:
            sum_diagonal += delta * DIAGONAL_WEIGHT
            nb_diagonal += lower
        else:
            sum_adjacent += delta * ADJACENT_WEIGHT
            nb_adjacent += lower

    dh = (sum_diagonal / nb_diagonal + sum_adjacent / nb_adjacent) * conf.strength
    sand_coef = 1.0 / (1.0 - conf.water_level) if conf.water_level < 1.0 else 0.0
    hcoef = (hmap - conf.water_level) * sand_coef
    dh *= 1.0 - hcoef * hcoef * hcoef
    active = (hmap >= conf.water_level - 0.01) & (hmap < conf.max_erosion_alt)
    return np.where(active, hmap + dh, hmap).astype(np.float32)


def gen_mudslide(
    hmap: np.ndarray,
    conf: MudSlideConf,
    progress: Optional[ProgressSink] = None,
    cancel: Optional[CancelToken] = None,
) -> None:
    iterations = int(conf.iterations)
    for i in range(iterations):
        check_cancel(cancel)
        hmap[...] = mudslide_pass(hmap, conf)
        report(progress, (i + 1) / iterations)
