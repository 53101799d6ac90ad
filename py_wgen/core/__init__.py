"""
Core terrain generation functionality.
"""

from .errors import (
    ExportError,
    ProjectError,
    StepCancelled,
    StepIndexError,
    WgenError,
)
from .exporter import ExportFileType, ExportSettings, ExportTask, export_heightmap
from .project import Project, load_project, save_project
from .session import Session
from .steps import Step, StepConf
from .worker import GeneratorWorker
from .world_generator import ExportMap, WorldGenerator

__all__ = ['WgenError', 'StepIndexError', 'StepCancelled', 'ExportError', 'ProjectError',
           'ExportFileType', 'ExportSettings', 'ExportTask', 'export_heightmap',
           'Project', 'load_project', 'save_project', 'Session', 'Step', 'StepConf',
           'GeneratorWorker', 'ExportMap', 'WorldGenerator']
