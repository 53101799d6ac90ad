"""Exceptions raised by the terrain generation core."""


class WgenError(Exception):
    """Base class for every error raised by py_wgen."""


class StepIndexError(WgenError, IndexError):
    """A step index does not address the current stage cache."""

    def __init__(self, index: int, step_count: int):
        self.index = index
        self.step_count = step_count
        super().__init__(f"Step index {index} out of range (pipeline has {step_count} steps)")


class StepCancelled(WgenError):
    """A running step was interrupted through its cancellation token."""


class ExportError(WgenError):
    """A heightmap export could not be written."""


class ProjectError(WgenError):
    """Base class for project save/load failures."""


class ProjectOpenError(ProjectError):
    """The project file cannot be opened or read."""


class ProjectParseError(ProjectError):
    """The project file content is not a valid project."""


class ProjectVersionError(ProjectError):
    """The project file was written by another version."""


class ProjectSaveError(ProjectError):
    """The project file cannot be created or written."""
