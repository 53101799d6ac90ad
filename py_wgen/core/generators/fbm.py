"""
Fractional brownian motion noise.

Rows are split into contiguous chunks evaluated on a thread pool. Each
chunk builds its own identically seeded noise source and every cell only
depends on its own coordinates, so the partitioning changes wall-clock
time but never the result.
"""

import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional

import numpy as np
from opensimplex import OpenSimplex

from ...utils.random import noise_seed
from ..steps import FbmConf
from .common import CancelToken, ProgressSink, check_cancel, report


def fbm_rows(
    seed: int,
    size: tuple,
    row_start: int,
    row_end: int,
    conf: FbmConf,
    cancel: Optional[CancelToken] = None,
) -> np.ndarray:
    """
    Compute the fbm contribution for rows [row_start, row_end).

    Returns:
        Array of shape (row_end - row_start, width) to add to the map
    """
    width, height = size
    noise = OpenSimplex(seed=noise_seed(seed))
    xcoef = conf.mulx / 400.0
    ycoef = conf.muly / 400.0
    xs = (np.arange(width, dtype=np.float64) * 512.0 / width + conf.addx) * xcoef
    ys = (np.arange(row_start, row_end, dtype=np.float64) * 512.0 / height + conf.addy) * ycoef

    total = np.zeros((row_end - row_start, width), dtype=np.float64)
    amplitude = 1.0
    frequency = 1.0
    whole_octaves = int(conf.octaves)
    for _ in range(whole_octaves):
        check_cancel(cancel)
        total += amplitude * noise.noise2array(xs * frequency, ys * frequency)
        amplitude *= 0.5
        frequency *= 2.0
    remain = conf.octaves - whole_octaves
    if remain > 0.0:
        total += remain * amplitude * noise.noise2array(xs * frequency, ys * frequency)
    return (conf.delta + total * conf.scale).astype(np.float32)


def gen_fbm(
    seed: int,
    hmap: np.ndarray,
    conf: FbmConf,
    progress: Optional[ProgressSink] = None,
    cancel: Optional[CancelToken] = None,
    workers: Optional[int] = None,
) -> None:
    """
    Add fbm noise to the map.

    Args:
        seed: World seed
        hmap: Height map, modified in place
        conf: Fbm configuration
        progress: Optional progress sink
        cancel: Optional cancellation token
        workers: Number of row chunks evaluated in parallel (default: cpu count)
    """
    rows, cols = hmap.shape
    workers = max(1, min(workers or os.cpu_count() or 1, rows))
    rows_per_job = (rows + workers - 1) // workers
    chunks = [(start, min(start + rows_per_job, rows)) for start in range(0, rows, rows_per_job)]

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(fbm_rows, seed, (cols, rows), start, end, conf, cancel): (start, end)
            for start, end in chunks
        }
        for done, future in enumerate(as_completed(futures), start=1):
            start, end = futures[future]
            hmap[start:end] += future.result()
            report(progress, done / len(chunks))
