"""FastAPI main application."""

import logging
import threading
import uuid
from datetime import datetime
from typing import Dict, List, Optional

import structlog
from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .. import __version__
from ..config import settings
from ..core.errors import ExportError, ProjectError, ProjectOpenError, StepIndexError, WgenError
from ..core.exporter import ExportSettings, ExportStepDone, ExportStepProgress, ExportTask
from ..core.session import Session
from ..core.steps import Step
from ..core.world_generator import ExportMap


def configure_logging() -> None:
    """Install the structlog pipeline on top of stdlib logging."""
    logging.basicConfig(format="%(message)s", level=settings.log_level.upper())
    if settings.log_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()

logger = structlog.get_logger()

# Initialize FastAPI app
app = FastAPI(
    title="World Generator API",
    description="Procedural terrain heightmap generation with cached, maskable steps",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Live session, created on first use
session: Optional[Session] = None
_session_lock = threading.Lock()


def get_session() -> Session:
    global session
    with _session_lock:
        if session is None:
            session = Session()
        return session


# Request/Response models
class StepRequest(BaseModel):
    """Request to insert a step."""

    step: Step
    index: Optional[int] = Field(None, ge=0, description="Insertion index, append when omitted")


class MoveRequest(BaseModel):
    dest: int = Field(..., ge=0, description="New index of the step")


class SeedRequest(BaseModel):
    seed: int = Field(..., ge=0, le=0xFFFFFFFFFFFFFFFF)


class SizeRequest(BaseModel):
    size: int = Field(..., ge=16, le=2048, description="Side of the preview map")


class PathRequest(BaseModel):
    path: str


class ProjectResponse(BaseModel):
    """Current project and pipeline state."""

    seed: int
    preview_size: int
    steps: List[Step]
    enabled_steps: int
    progress: float
    idle: bool
    last_error: Optional[str] = None


class HeightmapResponse(BaseModel):
    """Height map snapshot, rows from top to bottom."""

    width: int
    height: int
    min: float
    max: float
    heights: List[List[float]]


class ExportJobResponse(BaseModel):
    """Response with export job information."""

    job_id: str
    status: str
    progress_percent: int
    message: str
    files: List[str] = []
    error_message: Optional[str] = None


class ExportJob:
    """Book-keeping of one background export."""

    def __init__(self, job_id: str, task: ExportTask):
        self.job_id = job_id
        self.task = task
        self.status = "pending"
        self.progress = 0.0
        self.created_at = datetime.utcnow()
        self.completed_at: Optional[datetime] = None

    def update_progress(self) -> None:
        count = max(1, len(self.task.steps))
        while not self.task.messages.empty():
            message = self.task.messages.get_nowait()
            if isinstance(message, ExportStepProgress):
                self.progress = (message.index + message.fraction) / count
            elif isinstance(message, ExportStepDone):
                self.progress = (message.index + 1) / count

    def to_response(self) -> ExportJobResponse:
        self.update_progress()
        export_settings = self.task.settings
        files = []
        if self.status == "completed":
            files = [
                str(export_settings.tile_path(tx, ty))
                for ty in range(export_settings.tiles_v)
                for tx in range(export_settings.tiles_h)
            ]
            progress = 100
        else:
            progress = int(self.progress * 100)
        error = self.task.result.error if self.task.result is not None else None
        return ExportJobResponse(
            job_id=self.job_id,
            status=self.status,
            progress_percent=progress,
            message=f"Export {self.status}",
            files=files,
            error_message=error,
        )


export_jobs: Dict[str, ExportJob] = {}


def _http_error(e: WgenError) -> HTTPException:
    if isinstance(e, (StepIndexError, ProjectOpenError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (ProjectError, ExportError)):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=409, detail=str(e))


def _wait(wgen_session: Session) -> None:
    if not wgen_session.wait_idle(timeout=60.0):
        raise HTTPException(status_code=409, detail="Generation still running")


def _heightmap(hmap: ExportMap) -> HeightmapResponse:
    width, height = hmap.get_size()
    lo, hi = hmap.get_min_max()
    return HeightmapResponse(width=width, height=height, min=lo, max=hi, heights=hmap.heights.tolist())


def _project(wgen_session: Session) -> ProjectResponse:
    wgen_session.poll()
    return ProjectResponse(
        seed=wgen_session.seed,
        preview_size=wgen_session.preview_size,
        steps=list(wgen_session.steps),
        enabled_steps=wgen_session.enabled_steps(),
        progress=wgen_session.progress,
        idle=wgen_session.is_idle,
        last_error=wgen_session.last_error,
    )


# Event handlers
@app.on_event("shutdown")
def shutdown_event():
    """Stop the generator worker."""
    logger.info("Shutting down World Generator API")
    if session is not None:
        session.close()


# API endpoints
@app.get("/")
def root():
    """Root endpoint."""
    return {"message": "World Generator API", "version": __version__, "status": "running"}


@app.get("/project", response_model=ProjectResponse)
def get_project():
    """Current steps, seed and generation progress."""
    return _project(get_session())


@app.post("/steps", response_model=ProjectResponse)
def add_step(request: StepRequest):
    wgen_session = get_session()
    try:
        index = wgen_session.add_step(request.step, request.index)
    except StepIndexError as e:
        raise _http_error(e)
    logger.info("Step added", step=request.step.label, index=index)
    return _project(wgen_session)


@app.put("/steps/{index}", response_model=ProjectResponse)
def update_step(index: int, step: Step):
    wgen_session = get_session()
    try:
        wgen_session.update_step(index, step)
    except StepIndexError as e:
        raise _http_error(e)
    return _project(wgen_session)


@app.delete("/steps/{index}", response_model=ProjectResponse)
def delete_step(index: int):
    wgen_session = get_session()
    try:
        wgen_session.remove_step(index)
    except StepIndexError as e:
        raise _http_error(e)
    return _project(wgen_session)


@app.post("/steps/{index}/move", response_model=ProjectResponse)
def move_step(index: int, request: MoveRequest):
    wgen_session = get_session()
    try:
        wgen_session.move_step(index, request.dest)
    except StepIndexError as e:
        raise _http_error(e)
    return _project(wgen_session)


@app.post("/steps/{index}/enable", response_model=ProjectResponse)
def enable_step(index: int):
    wgen_session = get_session()
    try:
        wgen_session.enable_step(index)
    except StepIndexError as e:
        raise _http_error(e)
    return _project(wgen_session)


@app.post("/steps/{index}/disable", response_model=ProjectResponse)
def disable_step(index: int):
    wgen_session = get_session()
    try:
        wgen_session.disable_step(index)
    except StepIndexError as e:
        raise _http_error(e)
    return _project(wgen_session)


@app.put("/seed", response_model=ProjectResponse)
def set_seed(request: SeedRequest):
    wgen_session = get_session()
    wgen_session.set_seed(request.seed)
    return _project(wgen_session)


@app.put("/size", response_model=ProjectResponse)
def set_size(request: SizeRequest):
    wgen_session = get_session()
    wgen_session.resize(request.size)
    return _project(wgen_session)


@app.post("/clear", response_model=ProjectResponse)
def clear():
    wgen_session = get_session()
    wgen_session.clear()
    return _project(wgen_session)


@app.get("/heightmap", response_model=HeightmapResponse)
def get_heightmap():
    """Final height map, once the pending regeneration is done."""
    wgen_session = get_session()
    _wait(wgen_session)
    return _heightmap(wgen_session.last_map)


@app.get("/heightmap/steps/{index}", response_model=HeightmapResponse)
def get_step_heightmap(index: int):
    """Height map cached for one step."""
    wgen_session = get_session()
    try:
        hmap = wgen_session.step_map(index, timeout=60.0)
    except StepIndexError as e:
        raise _http_error(e)
    except TimeoutError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _heightmap(hmap)


@app.post("/project/save")
def save_project(request: PathRequest):
    wgen_session = get_session()
    try:
        wgen_session.save(request.path)
    except ProjectError as e:
        logger.error("Project save failed", path=request.path, error=str(e))
        raise _http_error(e)
    return {"path": request.path, "steps": len(wgen_session.steps)}


@app.post("/project/load", response_model=ProjectResponse)
def load_project(request: PathRequest):
    wgen_session = get_session()
    try:
        wgen_session.load(request.path)
    except ProjectError as e:
        logger.error("Project load failed", path=request.path, error=str(e))
        raise _http_error(e)
    return _project(wgen_session)


@app.post("/exports", response_model=ExportJobResponse)
def start_export(export_settings: ExportSettings, background_tasks: BackgroundTasks):
    """
    Start a heightmap export job.

    Returns immediately with job ID. Use /exports/{job_id} to check status.
    """
    wgen_session = get_session()
    logger.info("Export requested", request=export_settings.model_dump(mode="json"))
    job_id = str(uuid.uuid4())
    task = ExportTask(
        wgen_session.seed,
        wgen_session.steps,
        export_settings,
        min_progress_step=settings.min_progress_step,
    )
    export_jobs[job_id] = ExportJob(job_id, task)
    background_tasks.add_task(run_export, job_id)
    return ExportJobResponse(job_id=job_id, status="pending", progress_percent=0, message="Export job started")


@app.get("/exports/{job_id}", response_model=ExportJobResponse)
def get_export_status(job_id: str):
    """Get status of an export job."""
    job = export_jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_response()


# Background task functions
def run_export(job_id: str) -> None:
    """Run an export job to completion."""
    job = export_jobs[job_id]
    logger.info("Starting export", job_id=job_id)
    job.status = "running"
    job.task.start()
    job.task.join()
    job.completed_at = datetime.utcnow()
    if job.task.result is not None and job.task.result.ok:
        job.status = "completed"
        logger.info("Export completed", job_id=job_id)
    else:
        job.status = "failed"
        logger.error("Export failed", job_id=job_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
