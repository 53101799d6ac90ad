"""
Particle based hydraulic erosion.

Each drop of water rolls down the local gradient, eroding soil while it
speeds up and depositing sediment when it slows down, climbs or carries
more than its capacity.
"""

import math
from typing import List, Optional, Tuple

import numpy as np

from ...utils.random import get_rng
from ..steps import WaterErosionConf
from .common import CancelToken, ProgressSink, check_cancel, report

MAX_PATH_LENGTH = 40
FLAT_EPSILON = float(np.finfo(np.float32).eps)


def erosion_disc(radius: int) -> List[Tuple[int, int, float]]:
    """
    Cell offsets and normalized weights of an erosion disc.

    Weights fall off linearly with the distance to the center
    (``radius - dist``) and are divided by their total.
    """
    cells = []
    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            dist = math.sqrt(dx * dx + dy * dy)
            if dist < radius:
                cells.append((dx, dy, radius - dist))
    total = sum(weight for _, _, weight in cells)
    return [(dx, dy, weight / total) for dx, dy, weight in cells]


def drop_batches(rows: int, conf: WaterErosionConf) -> int:
    """Number of drop batches, each batch simulating one drop per column."""
    return int(2 * rows * conf.drop_amount)


def _deposit(h: List[float], off: int, cols: int, u: float, v: float, amount: float) -> None:
    h[off] += amount * (1.0 - u) * (1.0 - v)
    h[off + 1] += amount * u * (1.0 - v)
    h[off + cols] += amount * (1.0 - u) * v
    h[off + cols + 1] += amount * u * v


def gen_water_erosion(
    seed: int,
    hmap: np.ndarray,
    conf: WaterErosionConf,
    progress: Optional[ProgressSink] = None,
    cancel: Optional[CancelToken] = None,
) -> None:
    """
    Erode the map with simulated rain drops.

    Args:
        seed: World seed
        hmap: Height map, modified in place
        conf: Erosion configuration
        progress: Optional progress sink
        cancel: Optional cancellation token
    """
    rows, cols = hmap.shape
    if rows < 2 or cols < 2:
        return
    rng = get_rng(seed)
    disc = erosion_disc(conf.radius)
    inertia = conf.inertia
    # plain python floats are much faster than numpy scalars in the drop loop
    h = hmap.ravel().tolist()
    batches = drop_batches(rows, conf)

    for batch in range(batches):
        check_cancel(cancel)
        starts = rng.uniform(0.0, [cols - 1, rows - 1], size=(cols, 2))
        for x, y in starts.tolist():
            dirx = diry = 0.0
            speed = 0.0
            water = 1.0
            sediment = 0.0
            for _ in range(MAX_PATH_LENGTH):
                ix = int(x)
                iy = int(y)
                u = x - ix
                v = y - iy
                off = ix + iy * cols
                h00 = h[off]
                h10 = h[off + 1]
                h01 = h[off + cols]
                h11 = h[off + cols + 1]
                old_h = (h00 * (1.0 - u) + h10 * u) * (1.0 - v) + (h01 * (1.0 - u) + h11 * u) * v

                # gradient bilinearly interpolated from the 4 corners
                gx = (h10 - h00) * (1.0 - v) + (h11 - h01) * v
                gy = (h01 - h00) * (1.0 - u) + (h11 - h10) * u
                dirx = dirx * inertia - gx * (1.0 - inertia)
                diry = diry * inertia - gy * (1.0 - inertia)
                length = math.sqrt(dirx * dirx + diry * diry)
                if length < FLAT_EPSILON:
                    angle = rng.uniform(0.0, 2.0 * math.pi)
                    dirx = math.cos(angle)
                    diry = math.sin(angle)
                else:
                    dirx /= length
                    diry /= length

                nx = x + dirx
                ny = y + diry
                if nx < 0.0 or ny < 0.0 or nx >= cols - 1 or ny >= rows - 1:
                    break
                nix = int(nx)
                niy = int(ny)
                nu = nx - nix
                nv = ny - niy
                noff = nix + niy * cols
                new_h = (h[noff] * (1.0 - nu) + h[noff + 1] * nu) * (1.0 - nv) + (
                    h[noff + cols] * (1.0 - nu) + h[noff + cols + 1] * nu
                ) * nv
                dh = new_h - old_h

                if dh > 0.0:
                    # uphill: fill the hole we are leaving
                    deposit = min(sediment, dh)
                    _deposit(h, off, cols, u, v, deposit)
                    sediment -= deposit
                    speed = 0.0
                    if sediment <= 0.0:
                        break
                else:
                    capacity = max(conf.min_slope, -dh) * water * conf.capacity * speed
                    if sediment > capacity:
                        deposit = (sediment - capacity) * conf.deposition
                        _deposit(h, off, cols, u, v, deposit)
                        sediment -= deposit
                    else:
                        amount = min(capacity - sediment, -dh) * conf.erosion_strength
                        for dx, dy, weight in disc:
                            cx = ix + dx
                            cy = iy + dy
                            if 0 <= cx < cols and 0 <= cy < rows:
                                coff = cx + cy * cols
                                h[coff] = max(h[coff] - amount * weight, 0.0)
                        sediment += amount

                speed = math.sqrt(speed * speed + abs(dh))
                water *= 1.0 - conf.evaporation
                x = nx
                y = ny
        report(progress, (batch + 1) / batches)

    hmap[...] = np.asarray(h, dtype=np.float32).reshape(rows, cols)
