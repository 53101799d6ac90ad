"""
Heightmap export.

An export runs the whole pipeline on its own WorldGenerator at the export
resolution, then cuts the result into tiles written as image files. It
never touches the live preview pipeline.
"""

import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Sequence

import numpy as np
import structlog
from PIL import Image
from pydantic import BaseModel, Field

from ..config import settings as app_settings
from .errors import ExportError, StepCancelled
from .generators import CancelToken
from .steps import Step
from .world_generator import WorldGenerator

logger = structlog.get_logger()

FLOAT_EPSILON = float(np.finfo(np.float32).eps)


class ExportFileType(str, Enum):
    """Pixel encodings supported by the exporter."""

    PNG = "png"  # 16 bits grayscale
    TIFF = "tiff"  # 32 bits float, single channel
    PFM = "pfm"  # 32 bits float, three channels


class ExportSettings(BaseModel):
    """Size, tiling and naming of an export."""

    export_width: int = Field(1024, ge=2, le=16384, description="Width of a tile in pixels")
    export_height: int = Field(1024, ge=2, le=16384, description="Height of a tile in pixels")
    tiles_h: int = Field(1, ge=1, le=64, description="Horizontal tile count")
    tiles_v: int = Field(1, ge=1, le=64, description="Vertical tile count")
    seamless: bool = Field(False, description="Repeat the border row/column of adjacent tiles")
    file_type: ExportFileType = ExportFileType.PNG
    export_dir: str = Field(
        default_factory=lambda: app_settings.export_dir, description="Tile directory (default: WGEN_EXPORT_DIR)"
    )
    file_pattern: str = "wgen"

    @property
    def world_size(self):
        return (self.export_width * self.tiles_h, self.export_height * self.tiles_v)

    def tile_path(self, tx: int, ty: int) -> Path:
        name = f"{self.file_pattern}_x{tx}_y{ty}.{self.file_type.value}"
        return Path(self.export_dir) / name


# (step_index, fraction) progress callback
ExportProgress = Callable[[int, float], None]
# called with the index of each finished step
StepDoneCallback = Callable[[int], None]


def tile_origin(settings: ExportSettings, tx: int, ty: int):
    """World pixel of the top-left corner of tile (tx, ty)."""
    if settings.seamless:
        return tx * (settings.export_width - 1), ty * (settings.export_height - 1)
    return tx * settings.export_width, ty * settings.export_height


def extract_tile(heights: np.ndarray, settings: ExportSettings, tx: int, ty: int) -> np.ndarray:
    """Tile (tx, ty) of a world map, as a (export_height, export_width) array."""
    x0, y0 = tile_origin(settings, tx, ty)
    return heights[y0:y0 + settings.export_height, x0:x0 + settings.export_width]


def _write_pfm(path: Path, data: np.ndarray) -> None:
    # portable float map: text header, then little endian rows from bottom to top
    rgb = np.repeat(data[:, :, None], 3, axis=2).astype("<f4")
    with open(path, "wb") as f:
        f.write(b"PF\n")
        f.write(f"{data.shape[1]} {data.shape[0]}\n".encode("ascii"))
        f.write(b"-1.0\n")
        f.write(np.flipud(rgb).tobytes())


def write_tile(path: Path, tile: np.ndarray, file_type: ExportFileType) -> None:
    """
    Write one tile whose heights are already remapped to [0, 1].

    Raises:
        ExportError: the file cannot be created or written
    """
    try:
        if file_type == ExportFileType.PNG:
            pixels = np.rint(np.clip(tile, 0.0, 1.0) * 65535.0).astype(np.uint16)
            Image.fromarray(pixels).save(path, format="PNG")
        elif file_type == ExportFileType.TIFF:
            Image.fromarray(tile.astype(np.float32)).save(path, format="TIFF")
        else:
            _write_pfm(path, tile)
    except (OSError, ValueError) as e:
        raise ExportError(f"Error while saving {path}: {e}") from e


def export_heightmap(
    seed: int,
    steps: Sequence[Step],
    settings: ExportSettings,
    progress: Optional[ExportProgress] = None,
    step_done: Optional[StepDoneCallback] = None,
    cancel: Optional[CancelToken] = None,
) -> None:
    """
    Generate the full pipeline at export resolution and write every tile.

    Args:
        seed: World seed
        steps: Ordered pipeline steps
        settings: Export size, tiling and file naming
        progress: Optional (step_index, fraction) callback
        step_done: Optional callback receiving each finished step index
        cancel: Optional cancellation token

    Raises:
        ExportError: a tile could not be written; the remaining tiles are
            skipped and the tiles already written are left in place
    """
    start = time.perf_counter()
    wgen = WorldGenerator(seed, settings.world_size)
    logger.info("Export started", size=settings.world_size, steps=len(steps), file_type=settings.file_type.value)
    for index, step in enumerate(steps):
        sink = (lambda fraction, index=index: progress(index, fraction)) if progress else None
        wgen.execute_step(index, step, sink, cancel)
        if step_done is not None:
            step_done(index)

    lo, hi = wgen.get_min_max()
    coef = 1.0 / (hi - lo) if hi - lo > FLOAT_EPSILON else 1.0
    heights = wgen.last_heights()
    if heights is None:
        heights = np.zeros((settings.world_size[1], settings.world_size[0]), dtype=np.float32)

    for ty in range(settings.tiles_v):
        for tx in range(settings.tiles_h):
            tile = (extract_tile(heights, settings, tx, ty) - lo) * coef
            path = settings.tile_path(tx, ty)
            write_tile(path, tile, settings.file_type)
            logger.info("Tile written", path=str(path))
    logger.info("Export completed", seconds=round(time.perf_counter() - start, 3))


# Exporter messages


@dataclass(frozen=True)
class ExportStepProgress:
    index: int
    fraction: float


@dataclass(frozen=True)
class ExportStepDone:
    index: int


@dataclass(frozen=True)
class ExportDone:
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ExportTask(threading.Thread):
    """
    Background export, reporting through a message queue.

    The task owns its own WorldGenerator; the steps and seed are snapshots
    taken when the task is created.
    """

    def __init__(
        self,
        seed: int,
        steps: Sequence[Step],
        settings: ExportSettings,
        messages: Optional["queue.Queue"] = None,
        min_progress_step: float = 0.01,
    ):
        super().__init__(name="wgen-exporter", daemon=True)
        self.seed = seed
        self.steps = list(steps)
        self.settings = settings
        self.messages: "queue.Queue" = messages if messages is not None else queue.Queue()
        self.min_progress_step = min_progress_step
        self.cancel_token = CancelToken()
        self.result: Optional[ExportDone] = None
        self._last_progress = {}

    def _progress(self, index: int, fraction: float) -> None:
        if fraction - self._last_progress.get(index, 0.0) >= self.min_progress_step:
            self._last_progress[index] = fraction
            self.messages.put(ExportStepProgress(index, fraction))

    def cancel(self) -> None:
        self.cancel_token.cancel()

    def run(self) -> None:
        try:
            export_heightmap(
                self.seed,
                self.steps,
                self.settings,
                progress=self._progress,
                step_done=lambda index: self.messages.put(ExportStepDone(index)),
                cancel=self.cancel_token,
            )
            self.result = ExportDone()
        except ExportError as e:
            logger.error("Export failed", error=str(e))
            self.result = ExportDone(str(e))
        except StepCancelled:
            logger.info("Export cancelled")
            self.result = ExportDone("Export cancelled")
        except Exception as e:
            logger.exception("Export crashed")
            self.result = ExportDone(str(e) or type(e).__name__)
        finally:
            if self.result is None:
                self.result = ExportDone("Export interrupted")
            self.messages.put(self.result)
