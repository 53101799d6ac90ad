"""
Staged terrain pipeline.

The WorldGenerator keeps one cached height map per step. Recomputing a
step only reads the previous step's cached map, so after an edit to step
k re-executing steps k..end gives the same result as a full regeneration.
"""

import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import structlog

from .errors import StepCancelled, StepIndexError
from .generators import (
    CancelToken,
    ProgressSink,
    gen_fbm,
    gen_hills,
    gen_island,
    gen_landmass,
    gen_mid_point,
    gen_mudslide,
    gen_normalize,
    gen_water_erosion,
    get_min_max,
    new_map,
)
from .mask import apply_mask
from .steps import (
    FbmConf,
    HillsConf,
    IslandConf,
    LandMassConf,
    MidPointConf,
    MudSlideConf,
    NormalizeConf,
    Step,
    WaterErosionConf,
)

logger = structlog.get_logger()

WorldSize = Tuple[int, int]


class ExportMap:
    """
    Snapshot of a height map handed out of the engine.

    The heights are always an owned copy, never a view on the stage cache.
    """

    def __init__(self, size: WorldSize, heights: np.ndarray):
        self.size = size
        self.heights = heights

    def get_size(self) -> WorldSize:
        return self.size

    def get_min_max(self) -> Tuple[float, float]:
        return get_min_max(self.heights)

    def height(self, x: int, y: int) -> float:
        """Height at (x, y), 0 outside of the map."""
        if 0 <= x < self.size[0] and 0 <= y < self.size[1]:
            return float(self.heights[y, x])
        return 0.0


@dataclass
class _Stage:
    heights: np.ndarray
    disabled: bool = False


def _run_generator(
    seed: int,
    hmap: np.ndarray,
    step: Step,
    progress: Optional[ProgressSink],
    cancel: Optional[CancelToken],
    fbm_workers: Optional[int],
) -> None:
    conf = step.conf
    if isinstance(conf, HillsConf):
        gen_hills(seed, hmap, conf, progress, cancel)
    elif isinstance(conf, FbmConf):
        gen_fbm(seed, hmap, conf, progress, cancel, workers=fbm_workers)
    elif isinstance(conf, MidPointConf):
        gen_mid_point(seed, hmap, conf, progress, cancel)
    elif isinstance(conf, NormalizeConf):
        gen_normalize(hmap, conf)
    elif isinstance(conf, LandMassConf):
        gen_landmass(hmap, conf, progress, cancel)
    elif isinstance(conf, MudSlideConf):
        gen_mudslide(hmap, conf, progress, cancel)
    elif isinstance(conf, WaterErosionConf):
        gen_water_erosion(seed, hmap, conf, progress, cancel)
    elif isinstance(conf, IslandConf):
        gen_island(hmap, conf)
    else:
        raise TypeError(f"Unknown step configuration: {type(conf).__name__}")


class WorldGenerator:
    """
    Ordered stack of cached per-step height maps.

    Stage i always holds ``composite(mask_i, generator_i(copy of stage i-1), stage i-1)``
    where stage -1 is a zero-filled map.
    """

    def __init__(self, seed: int, world_size: WorldSize, fbm_workers: Optional[int] = None):
        """
        Initialize an empty pipeline.

        Args:
            seed: World seed shared by every random generator
            world_size: (width, height) of every cached map
            fbm_workers: Thread count for the fbm generator (default: cpu count)
        """
        self.seed = seed
        self.world_size = world_size
        self.fbm_workers = fbm_workers
        self._stages: List[_Stage] = []

    @property
    def step_count(self) -> int:
        return len(self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._stages):
            raise StepIndexError(index, len(self._stages))

    def set_seed(self, seed: int) -> None:
        self.seed = seed

    def clear(self) -> None:
        self._stages = []

    def remove_step(self, index: int) -> None:
        """Drop a stage; later stages shift down and must be re-executed by the caller."""
        self._check_index(index)
        del self._stages[index]

    def disable_step(self, index: int) -> None:
        self._check_index(index)
        self._stages[index].disabled = True

    def enable_step(self, index: int) -> None:
        self._check_index(index)
        self._stages[index].disabled = False

    def is_step_disabled(self, index: int) -> bool:
        self._check_index(index)
        return self._stages[index].disabled

    def execute_step(
        self,
        index: int,
        step: Step,
        progress: Optional[ProgressSink] = None,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        """
        (Re)compute one stage from the previous one.

        Args:
            index: Stage index, at most the current step count (append)
            step: Step to apply
            progress: Optional progress sink
            cancel: Optional cancellation token

        Raises:
            StepIndexError: index is beyond the end of the pipeline
            StepCancelled: the token was cancelled; stages from index on are dropped
            Exception: a generator error is re-raised after the same truncation
        """
        count = len(self._stages)
        if not 0 <= index <= count:
            raise StepIndexError(index, count)
        start = time.perf_counter()

        prev = self._stages[index - 1].heights if index > 0 else None
        hmap = prev.copy() if prev is not None else new_map(self.world_size)
        if index == count:
            self._stages.append(_Stage(hmap, step.disabled))
        else:
            self._stages[index] = _Stage(hmap, step.disabled)

        try:
            if not step.disabled:
                _run_generator(self.seed, hmap, step, progress, cancel, self.fbm_workers)
        except StepCancelled:
            del self._stages[index:]
            logger.info("Step cancelled", step=step.label, index=index)
            raise
        except Exception as e:
            del self._stages[index:]
            logger.warning("Step failed", step=step.label, index=index, error=str(e))
            raise
        apply_mask(step.mask_array(), hmap, prev)

        logger.info(
            "Executed step",
            step=step.label,
            index=index,
            disabled=step.disabled,
            seconds=round(time.perf_counter() - start, 3),
        )

    def generate(self, steps: Sequence[Step], progress: Optional[ProgressSink] = None) -> None:
        """Recompute the whole pipeline from scratch."""
        self.clear()
        for index, step in enumerate(steps):
            self.execute_step(index, step, progress)

    def get_step_map(self, index: int) -> ExportMap:
        """Snapshot of a stage, or an all-zero map if the stage does not exist."""
        if 0 <= index < len(self._stages):
            heights = self._stages[index].heights.copy()
        else:
            heights = new_map(self.world_size)
        return ExportMap(self.world_size, heights)

    def get_export_map(self) -> ExportMap:
        """Snapshot of the last stage."""
        return self.get_step_map(len(self._stages) - 1)

    def combined_height(self, x: int, y: int) -> float:
        if not self._stages:
            return 0.0
        width, height = self.world_size
        if 0 <= x < width and 0 <= y < height:
            return float(self._stages[-1].heights[y, x])
        return 0.0

    def get_min_max(self) -> Tuple[float, float]:
        if not self._stages:
            return 0.0, 0.0
        return get_min_max(self._stages[-1].heights)

    def last_heights(self) -> Optional[np.ndarray]:
        """Read-only view of the last stage, for the owner's own tiling work."""
        if not self._stages:
            return None
        view = self._stages[-1].heights.view()
        view.flags.writeable = False
        return view
