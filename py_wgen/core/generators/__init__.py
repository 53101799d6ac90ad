"""
Terrain generation algorithms.

Each generator is a plain function transforming a (height, width) float32
height map in place.
"""

from .fbm import gen_fbm
from .hills import gen_hills
from .island import gen_island
from .landmass import gen_landmass
from .mid_point import gen_mid_point
from .mudslide import gen_mudslide
from .normalize import gen_normalize
from .water_erosion import gen_water_erosion

# imported after the submodules so that `normalize` is the helper, not the module
from .common import CancelToken, ProgressSink, get_min_max, new_map, normalize  # noqa: E402

__all__ = [
    "CancelToken",
    "ProgressSink",
    "get_min_max",
    "new_map",
    "normalize",
    "gen_fbm",
    "gen_hills",
    "gen_island",
    "gen_landmass",
    "gen_mid_point",
    "gen_mudslide",
    "gen_normalize",
    "gen_water_erosion",
]
