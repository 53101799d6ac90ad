"""
Command driven generator thread.

The GeneratorWorker owns a WorldGenerator and is the only code touching
its stage cache. Consumers send commands through a queue and receive
progress, results and errors as messages on another queue. Every map sent
back is a snapshot copy.

Before each generation unit the worker drains every queued command, so an
Abort discards the units that have not started yet. A unit that is already
running completes normally unless it was interrupted through its
cancellation token (``abort(interrupt=True)``).
"""

import queue
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional, Tuple

import structlog

from .errors import StepCancelled, StepIndexError
from .generators import CancelToken
from .steps import Step
from .world_generator import ExportMap, WorldGenerator

logger = structlog.get_logger()


# Commands


@dataclass(frozen=True)
class ExecuteStep:
    index: int
    step: Step
    live_preview: bool = False
    min_progress_step: float = 0.01
    # consumer chosen id echoed in the messages of this unit
    batch: int = 0


@dataclass(frozen=True)
class DeleteStep:
    index: int


@dataclass(frozen=True)
class EnableStep:
    index: int


@dataclass(frozen=True)
class DisableStep:
    index: int


@dataclass(frozen=True)
class SetSeed:
    seed: int


@dataclass(frozen=True)
class SetSize:
    size: Tuple[int, int]


@dataclass(frozen=True)
class GetStepMap:
    index: int


@dataclass(frozen=True)
class Clear:
    pass


@dataclass(frozen=True)
class Abort:
    pass


@dataclass(frozen=True)
class Shutdown:
    pass


# Messages


@dataclass(frozen=True)
class StepProgress:
    index: int
    fraction: float
    batch: int = 0


@dataclass(frozen=True)
class StepDone:
    index: int
    preview: Optional[ExportMap] = None
    batch: int = 0


@dataclass(frozen=True)
class Done:
    map: ExportMap
    batch: int = 0


@dataclass(frozen=True)
class StepMap:
    index: int
    map: ExportMap


@dataclass(frozen=True)
class StepError:
    index: int
    message: str


@dataclass(frozen=True)
class StepAborted:
    index: int
    batch: int = 0


class WorkerState(Enum):
    IDLE = "idle"
    DRAINING = "draining"
    EXECUTING = "executing"


class ProgressReporter:
    """Progress sink forwarding a fraction only when it moved by at least ``min_step``."""

    def __init__(self, index: int, messages: "queue.Queue", min_step: float, batch: int = 0):
        self.index = index
        self.batch = batch
        self.messages = messages
        self.min_step = min_step
        self.last = 0.0

    def __call__(self, fraction: float) -> None:
        if fraction - self.last >= self.min_step:
            self.last = fraction
            self.messages.put(StepProgress(self.index, fraction, self.batch))


class GeneratorWorker(threading.Thread):
    """
    Thread serializing every pipeline mutation and step execution.

    Args:
        seed: World seed
        size: (width, height) of the live pipeline
        messages: Queue receiving the worker messages (created if omitted)
        fbm_workers: Thread count for the fbm generator
    """

    def __init__(
        self,
        seed: int,
        size: Tuple[int, int],
        messages: Optional["queue.Queue"] = None,
        fbm_workers: Optional[int] = None,
    ):
        super().__init__(name="wgen-generator", daemon=True)
        self.fbm_workers = fbm_workers
        self.wgen = WorldGenerator(seed, size, fbm_workers=fbm_workers)
        self.commands: "queue.Queue" = queue.Queue()
        self.messages: "queue.Queue" = messages if messages is not None else queue.Queue()
        self.state = WorkerState.IDLE
        self._pending: Deque[ExecuteStep] = deque()
        self._token_lock = threading.Lock()
        self._running_token: Optional[CancelToken] = None
        self._running = True

    # consumer side

    def send(self, command) -> None:
        self.commands.put(command)

    def abort(self, interrupt: bool = False) -> None:
        """
        Discard the pending units.

        With ``interrupt`` the unit currently running is also cancelled at
        its next cancellation check.
        """
        if interrupt:
            with self._token_lock:
                if self._running_token is not None:
                    self._running_token.cancel()
        self.send(Abort())

    def stop(self, timeout: Optional[float] = None) -> None:
        self.abort(interrupt=True)
        self.send(Shutdown())
        self.join(timeout)

    # worker side

    def run(self) -> None:
        logger.info("Generator worker started", size=self.wgen.world_size)
        executed = None
        while self._running:
            self.state = WorkerState.DRAINING
            self._drain()
            if not self._running:
                break
            if self._pending:
                self.state = WorkerState.EXECUTING
                command = self._pending.popleft()
                self._execute(command)
                executed = command.batch
                continue
            if executed is not None:
                self.messages.put(Done(self.wgen.get_export_map(), executed))
                executed = None
            self.state = WorkerState.IDLE
            self._handle(self.commands.get())
        logger.info("Generator worker stopped")

    def _drain(self) -> None:
        while self._running:
            try:
                command = self.commands.get_nowait()
            except queue.Empty:
                return
            self._handle(command)

    def _handle(self, command) -> None:
        try:
            if isinstance(command, ExecuteStep):
                self._pending.append(command)
            elif isinstance(command, Abort):
                if self._pending:
                    logger.info("Pending steps discarded", count=len(self._pending))
                self._pending.clear()
            elif isinstance(command, DeleteStep):
                self.wgen.remove_step(command.index)
            elif isinstance(command, EnableStep):
                self.wgen.enable_step(command.index)
            elif isinstance(command, DisableStep):
                self.wgen.disable_step(command.index)
            elif isinstance(command, SetSeed):
                self.wgen.set_seed(command.seed)
            elif isinstance(command, SetSize):
                if min(command.size) < 1:
                    raise ValueError(f"Invalid world size: {command.size}")
                self.wgen = WorldGenerator(self.wgen.seed, command.size, fbm_workers=self.fbm_workers)
            elif isinstance(command, GetStepMap):
                self.messages.put(StepMap(command.index, self.wgen.get_step_map(command.index)))
            elif isinstance(command, Clear):
                self.wgen.clear()
            elif isinstance(command, Shutdown):
                self._pending.clear()
                self._running = False
            else:
                raise TypeError(f"Unknown command: {type(command).__name__}")
        except StepIndexError as e:
            logger.warning("Invalid step index", command=type(command).__name__, error=str(e))
            self.messages.put(StepError(e.index, str(e)))
        except Exception as e:
            logger.exception("Command failed", command=type(command).__name__)
            self.messages.put(StepError(getattr(command, "index", -1), str(e)))

    def _execute(self, command: ExecuteStep) -> None:
        token = CancelToken()
        with self._token_lock:
            self._running_token = token
        reporter = ProgressReporter(command.index, self.messages, command.min_progress_step, command.batch)
        try:
            self.wgen.execute_step(command.index, command.step, reporter, token)
        except StepIndexError as e:
            logger.warning("Invalid step index", command="ExecuteStep", error=str(e))
            self.messages.put(StepError(command.index, str(e)))
            return
        except StepCancelled:
            self.messages.put(StepAborted(command.index, command.batch))
            return
        except Exception as e:
            logger.exception("Step execution failed", index=command.index)
            self.messages.put(StepError(command.index, str(e)))
            return
        finally:
            with self._token_lock:
                self._running_token = None
        preview = self.wgen.get_step_map(command.index) if command.live_preview else None
        self.messages.put(StepDone(command.index, preview, command.batch))
