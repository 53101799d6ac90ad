"""
Mask compositing.

A step mask is a small fixed resolution weight grid. It is bilinearly
upsampled to the world resolution and used to blend a step's output with
the map it was computed from.
"""

from typing import Optional

import numpy as np

from .steps import MASK_SIZE


def upsample_mask(mask: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Bilinearly sample a (R, R) mask at every world pixel.

    World pixel (x, y) maps to mask coordinate (x * R / width, y * R / height).
    Near the last mask column or row only the available samples are used:
    no horizontal blend on the last column, no vertical blend unless both
    the next column and the next row exist.
    """
    res = mask.shape[0]
    mxf = np.arange(width, dtype=np.float32) * res / width
    myf = np.arange(height, dtype=np.float32) * res / height
    mx = mxf.astype(np.int64)
    my = myf.astype(np.int64)
    xalpha = (mxf - mx)[None, :]
    yalpha = (myf - my)[:, None]
    mx1 = np.minimum(mx + 1, res - 1)
    my1 = np.minimum(my + 1, res - 1)
    has_x = (mx + 1 < res)[None, :]
    has_y = (my + 1 < res)[:, None]

    top_left = mask[my][:, mx]
    top = (1.0 - xalpha) * top_left + xalpha * mask[my][:, mx1]
    bottom = (1.0 - xalpha) * mask[my1][:, mx] + xalpha * mask[my1][:, mx1]
    blended = (1.0 - yalpha) * top + yalpha * bottom

    value = np.where(has_x, top, top_left)
    value = np.where(has_x & has_y, blended, value)
    return value.astype(np.float32)


def apply_mask(mask: Optional[np.ndarray], hmap: np.ndarray, prev: Optional[np.ndarray]) -> None:
    """
    Blend a freshly generated map with its baseline, in place.

    Args:
        mask: (MASK_SIZE, MASK_SIZE) weights, None meaning full pass-through
        hmap: Generator output, overwritten with the composite
        prev: Previous stage map, or None for the first stage. Without a
            previous stage the masked-out areas fall to the map's own minimum.
    """
    if mask is None:
        return
    if mask.shape != (MASK_SIZE, MASK_SIZE):
        raise ValueError(f"mask must be {MASK_SIZE}x{MASK_SIZE}, got {mask.shape}")
    rows, cols = hmap.shape
    weight = upsample_mask(mask, cols, rows)
    if prev is not None:
        hmap[...] = (1.0 - weight) * prev + weight * hmap
    else:
        lo = hmap.min()
        hmap[...] = (1.0 - weight) * lo + weight * (hmap - lo)
