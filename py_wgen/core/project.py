"""
Project persistence.

A project is the seed and ordered step list of a terrain, stored as JSON
text together with the version of the program that wrote it. Files from
another version are rejected.
"""

from pathlib import Path
from typing import List, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from .. import __version__
from .errors import ProjectOpenError, ProjectParseError, ProjectSaveError, ProjectVersionError
from .steps import Step

logger = structlog.get_logger()

DEFAULT_SEED = 0xDEADBEEF


class Project(BaseModel):
    """Serializable terrain project."""

    version: str = __version__
    seed: int = Field(DEFAULT_SEED, ge=0, le=0xFFFFFFFFFFFFFFFF)
    steps: List[Step] = Field(default_factory=list)


class _ProjectFile(Project):
    """Project as read from disk, where the version is mandatory."""

    version: str


def save_project(project: Project, path: Union[str, Path]) -> None:
    """
    Write a project file.

    Raises:
        ProjectSaveError: the file cannot be created or written
    """
    data = project.model_dump_json(indent=2)
    try:
        f = open(path, "w", encoding="utf-8")
    except OSError as e:
        raise ProjectSaveError(f"Unable to create the file: {e}") from e
    with f:
        try:
            f.write(data)
        except OSError as e:
            raise ProjectSaveError(f"Unable to write to the file: {e}") from e
    logger.info("Project saved", path=str(path), steps=len(project.steps))


def load_project(path: Union[str, Path]) -> Project:
    """
    Read a project file.

    Returns:
        The loaded project. The caller should only replace its current
        project once this returns.

    Raises:
        ProjectOpenError: the file cannot be opened or read
        ProjectParseError: the content is not a valid project
        ProjectVersionError: the file was written by another version
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            contents = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ProjectOpenError(f"Unable to open the file: {e}") from e
    try:
        project = Project(**dict(_ProjectFile.model_validate_json(contents)))
    except ValidationError as e:
        raise ProjectParseError(f"Cannot parse the file: {e}") from e
    if project.version != __version__:
        raise ProjectVersionError(f"Bad file version. Expected {__version__}, found {project.version}")
    logger.info("Project loaded", path=str(path), steps=len(project.steps))
    return project
