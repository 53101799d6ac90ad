"""
Configuration for py_wgen.
"""

from .config import Settings, settings

__all__ = ["Settings", "settings"]
