"""
Diamond-square midpoint displacement.

The fractal is built on a square (2^k + 1) lattice covering the map, then
resampled onto the map with corner-aligned bilinear interpolation so the
four seeded corners land exactly on the map corners whatever its size.
"""

from typing import Optional

import numpy as np

from ...utils.random import get_rng
from ..steps import MidPointConf
from .common import CancelToken, ProgressSink, check_cancel, report


def lattice_side(rows: int, cols: int) -> int:
    """Smallest 2^k + 1 lattice side covering a rows x cols map."""
    span = 1
    while span < max(rows, cols) - 1:
        span *= 2
    return span + 1


def diamond_square(
    work: np.ndarray,
    rng: np.random.Generator,
    roughness: float,
    progress: Optional[ProgressSink] = None,
    cancel: Optional[CancelToken] = None,
) -> None:
    """
    Fill a (2^k + 1) square lattice whose four corners are already set.

    At each level the square centers get the average of their four corners
    plus a jitter in [-roughness, roughness], then the edge midpoints get the
    average of their 2 to 4 reachable neighbours plus jitter. The roughness
    halves at every level. Lattice points set at a previous level, corners
    included, are never written again.
    """
    span = work.shape[0] - 1
    levels = max(1, int(np.log2(span))) if span > 1 else 1
    step = span
    level = 0
    while step // 2 >= 1:
        check_cancel(cancel)
        half = step // 2

        # square step
        corners = work[0::step, 0::step]
        avg = (corners[:-1, :-1] + corners[:-1, 1:] + corners[1:, :-1] + corners[1:, 1:]) * 0.25
        work[half::step, half::step] = avg + rng.uniform(-roughness, roughness, avg.shape)
        centers = work[half::step, half::step]

        # diamond step, midpoints of horizontal edges
        total = corners[:, :-1] + corners[:, 1:]
        count = np.full(total.shape, 2.0)
        total[1:] += centers
        count[1:] += 1.0
        total[:-1] += centers
        count[:-1] += 1.0
        work[0::step, half::step] = total / count + rng.uniform(-roughness, roughness, total.shape)

        # diamond step, midpoints of vertical edges
        total = corners[:-1, :] + corners[1:, :]
        count = np.full(total.shape, 2.0)
        total[:, 1:] += centers
        count[:, 1:] += 1.0
        total[:, :-1] += centers
        count[:, :-1] += 1.0
        work[half::step, 0::step] = total / count + rng.uniform(-roughness, roughness, total.shape)

        step = half
        roughness *= 0.5
        level += 1
        report(progress, level / levels)


def _resample(work: np.ndarray, rows: int, cols: int) -> np.ndarray:
    span = work.shape[0] - 1
    ys = np.linspace(0.0, span, rows)
    xs = np.linspace(0.0, span, cols)
    y0 = np.floor(ys).astype(int)
    x0 = np.floor(xs).astype(int)
    y1 = np.minimum(y0 + 1, span)
    x1 = np.minimum(x0 + 1, span)
    fy = (ys - y0)[:, None]
    fx = (xs - x0)[None, :]
    top = work[y0][:, x0] * (1.0 - fx) + work[y0][:, x1] * fx
    bottom = work[y1][:, x0] * (1.0 - fx) + work[y1][:, x1] * fx
    return top * (1.0 - fy) + bottom * fy


def gen_mid_point(
    seed: int,
    hmap: np.ndarray,
    conf: MidPointConf,
    progress: Optional[ProgressSink] = None,
    cancel: Optional[CancelToken] = None,
) -> None:
    """
    Replace the map with a diamond-square fractal.

    Args:
        seed: World seed
        hmap: Height map, overwritten in place
        conf: Midpoint configuration
        progress: Optional progress sink
        cancel: Optional cancellation token
    """
    rows, cols = hmap.shape
    side = lattice_side(rows, cols)
    span = side - 1
    rng = get_rng(seed)
    work = np.zeros((side, side), dtype=np.float64)
    work[0, 0], work[0, span], work[span, 0], work[span, span] = rng.uniform(0.0, 1.0, 4)
    diamond_square(work, rng, conf.roughness, progress, cancel)
    if side == rows == cols:
        hmap[...] = work
    else:
        hmap[...] = _resample(work, rows, cols)
