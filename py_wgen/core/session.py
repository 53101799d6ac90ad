"""
Consumer side of the generator worker.

A Session holds the authoritative step list of a project and keeps the
worker's stage cache in sync with it: every edit mutates the list first,
then sends the worker an Abort followed by the minimal command sequence
needed to regenerate the affected stages.
"""

import queue
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import structlog

from ..config import settings
from .errors import StepIndexError
from .exporter import ExportDone, ExportSettings, ExportStepDone, ExportStepProgress, ExportTask
from .project import Project, load_project, save_project
from .steps import Step
from .worker import (
    Clear,
    DeleteStep,
    DisableStep,
    Done,
    EnableStep,
    ExecuteStep,
    GeneratorWorker,
    GetStepMap,
    SetSeed,
    SetSize,
    StepAborted,
    StepDone,
    StepError,
    StepMap,
    StepProgress,
)
from .world_generator import ExportMap

logger = structlog.get_logger()


def _empty_map(size: int) -> ExportMap:
    return ExportMap((size, size), np.zeros((size, size), dtype=np.float32))


class Session:
    """
    Terrain project bound to a live preview pipeline.

    Args:
        seed: World seed (default: settings.default_seed)
        preview_size: Side of the square preview map (default: settings.preview_size)
        live_preview: Ask the worker for a snapshot after every step
        fbm_workers: Thread count for the fbm generator
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        preview_size: Optional[int] = None,
        live_preview: bool = False,
        fbm_workers: Optional[int] = None,
    ):
        self.seed = settings.default_seed if seed is None else seed
        self.preview_size = preview_size or settings.preview_size
        self.live_preview = live_preview
        self.min_progress_step = settings.min_progress_step
        self.steps: List[Step] = []

        self.progress = 1.0
        self.last_map = _empty_map(self.preview_size)
        self.preview: Optional[ExportMap] = None
        self.last_error: Optional[str] = None

        self.export_task: Optional[ExportTask] = None
        self.export_progress = 0.0
        self.export_messages: "queue.Queue" = queue.Queue()

        self._lock = threading.RLock()
        self._batch = 0
        self._idle = True
        # leading stages the worker confirmed as matching the step list
        self._valid = 0
        self._step_maps: Dict[int, ExportMap] = {}
        self.messages: "queue.Queue" = queue.Queue()
        self.worker = GeneratorWorker(
            self.seed,
            (self.preview_size, self.preview_size),
            self.messages,
            fbm_workers if fbm_workers is not None else settings.fbm_workers,
        )
        self.worker.start()

    # step list edits

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.steps):
            raise StepIndexError(index, len(self.steps))

    def add_step(self, step: Step, index: Optional[int] = None) -> int:
        """Insert a step (append by default) and return its index."""
        with self._lock:
            if index is None:
                index = len(self.steps)
            elif not 0 <= index <= len(self.steps):
                raise StepIndexError(index, len(self.steps))
            self.steps.insert(index, step)
            self.regen(index)
            return index

    def update_step(self, index: int, step: Step) -> None:
        with self._lock:
            self._check_index(index)
            self.steps[index] = step
            self.regen(index)

    def remove_step(self, index: int) -> Step:
        with self._lock:
            self._check_index(index)
            step = self.steps.pop(index)
            self.regen(index, must_delete=True)
            return step

    def move_step(self, src: int, dest: int) -> None:
        with self._lock:
            self._check_index(src)
            self._check_index(dest)
            if src == dest:
                return
            self.steps.insert(dest, self.steps.pop(src))
            self.regen(min(src, dest))

    def disable_step(self, index: int) -> None:
        self._set_disabled(index, True)

    def enable_step(self, index: int) -> None:
        self._set_disabled(index, False)

    def _set_disabled(self, index: int, disabled: bool) -> None:
        with self._lock:
            self._check_index(index)
            if self.steps[index].disabled == disabled:
                return
            self.steps[index] = self.steps[index].model_copy(update={"disabled": disabled})
            self.poll()
            if index < self._valid:
                self.worker.abort()
                self.worker.send(DisableStep(index) if disabled else EnableStep(index))
            self.regen(index)

    def set_seed(self, seed: int) -> None:
        with self._lock:
            self.seed = seed
            self.worker.abort()
            self.worker.send(SetSeed(seed))
            self._valid = 0
            self.regen(0)

    def resize(self, size: int) -> None:
        """Change the side of the preview map and regenerate everything."""
        with self._lock:
            if size == self.preview_size:
                return
            self.preview_size = size
            self.worker.abort()
            self.worker.send(SetSize((size, size)))
            self._valid = 0
            self.last_map = _empty_map(size)
            self.regen(0)

    def clear(self) -> None:
        """Drop every step."""
        with self._lock:
            self.steps = []
            self._batch += 1
            self.worker.abort(interrupt=True)
            self.worker.send(Clear())
            self._valid = 0
            self.last_map = _empty_map(self.preview_size)
            self.progress = 1.0
            self._idle = True

    def regen(self, from_index: int, must_delete: bool = False) -> None:
        """
        Bring the worker's stage cache back in sync with the step list.

        Args:
            from_index: First stage that changed
            must_delete: Stage ``from_index`` was removed from the list
        """
        with self._lock:
            self.poll()
            self._batch += 1
            self.worker.abort()
            if must_delete:
                if from_index < self._valid:
                    self.worker.send(DeleteStep(from_index))
                else:
                    # the removed stage may or may not be cached yet
                    self.worker.send(Clear())
                    self._valid = 0
            self._valid = min(self._valid, from_index)
            count = len(self.steps)
            if count == 0:
                self.last_map = _empty_map(self.preview_size)
                self.progress = 1.0
                self._idle = True
                return
            # removing the last step still needs a Done carrying the new final map
            start = max(0, min(self._valid, count - 1))
            self._idle = False
            self.progress = start / count
            for index in range(start, count):
                self.worker.send(
                    ExecuteStep(index, self.steps[index], self.live_preview, self.min_progress_step, self._batch)
                )
            logger.debug("Regeneration queued", start=start, count=count, batch=self._batch)

    # progress

    def enabled_steps(self) -> int:
        return sum(1 for step in self.steps if not step.disabled)

    @property
    def is_idle(self) -> bool:
        return self._idle

    def _handle_message(self, message) -> None:
        count = max(1, len(self.steps))
        if isinstance(message, StepMap):
            self._step_maps[message.index] = message.map
        elif isinstance(message, StepError):
            self.last_error = message.message
            logger.warning("Worker reported an error", index=message.index, error=message.message)
        elif getattr(message, "batch", None) != self._batch:
            # superseded regeneration
            return
        elif isinstance(message, StepProgress):
            self.progress = (message.index + message.fraction) / count
        elif isinstance(message, StepDone):
            self.progress = (message.index + 1) / count
            self._valid = max(self._valid, message.index + 1)
            if message.preview is not None:
                self.preview = message.preview
        elif isinstance(message, StepAborted):
            logger.info("Step aborted", index=message.index)
        elif isinstance(message, Done):
            self.last_map = message.map
            self.progress = 1.0
            self._idle = True

    def _handle_export_message(self, message) -> None:
        count = max(1, len(self.export_task.steps)) if self.export_task else 1
        if isinstance(message, ExportStepProgress):
            self.export_progress = (message.index + message.fraction) / count
        elif isinstance(message, ExportStepDone):
            self.export_progress = (message.index + 1) / count
        elif isinstance(message, ExportDone):
            self.export_progress = 1.0
            if not message.ok:
                self.last_error = message.error

    def poll(self) -> None:
        """Apply every message already sent by the worker and the exporter."""
        with self._lock:
            while True:
                try:
                    self._handle_message(self.messages.get_nowait())
                except queue.Empty:
                    break
            while True:
                try:
                    self._handle_export_message(self.export_messages.get_nowait())
                except queue.Empty:
                    break

    def _wait(self, predicate, timeout: Optional[float]) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not predicate():
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            try:
                message = self.messages.get(timeout=remaining)
            except queue.Empty:
                return False
            self._handle_message(message)
        return True

    def wait_idle(self, timeout: Optional[float] = 30.0) -> bool:
        """Block until the worker reports the current regeneration done. False on timeout."""
        with self._lock:
            ok = self._wait(lambda: self._idle, timeout)
            self.poll()
            return ok

    def step_map(self, index: int, timeout: Optional[float] = 30.0) -> ExportMap:
        """
        Snapshot of one stage of the live pipeline.

        Waits for the pending regeneration first, so the map reflects the
        current step list.
        """
        with self._lock:
            self._check_index(index)
            if not self.wait_idle(timeout):
                raise TimeoutError("Generator worker is still busy")
            self._step_maps.pop(index, None)
            self.worker.send(GetStepMap(index))
            if not self._wait(lambda: index in self._step_maps, timeout):
                raise TimeoutError("Generator worker did not answer")
            return self._step_maps.pop(index)

    # persistence and export

    def to_project(self) -> Project:
        return Project(seed=self.seed, steps=list(self.steps))

    def save(self, path: Union[str, Path]) -> None:
        save_project(self.to_project(), path)

    def load(self, path: Union[str, Path]) -> None:
        """Replace the project with a file's content. The session is unchanged on failure."""
        project = load_project(path)
        with self._lock:
            self.steps = list(project.steps)
            self.seed = project.seed
            self.worker.abort(interrupt=True)
            self.worker.send(Clear())
            self.worker.send(SetSeed(project.seed))
            self._valid = 0
            self.regen(0)

    def export(self, export_settings: ExportSettings) -> ExportTask:
        """Start a background export of the current steps and seed."""
        with self._lock:
            if self.export_task is not None and self.export_task.is_alive():
                self.export_task.cancel()
            self.export_progress = 0.0
            task = ExportTask(
                self.seed,
                self.steps,
                export_settings,
                self.export_messages,
                self.min_progress_step,
            )
            self.export_task = task
            task.start()
            return task

    def close(self, timeout: Optional[float] = 5.0) -> None:
        if self.export_task is not None and self.export_task.is_alive():
            self.export_task.cancel()
        self.worker.stop(timeout)

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
