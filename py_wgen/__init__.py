"""
py_wgen - procedural terrain heightmap generator.

Heightmaps are built by an ordered pipeline of configurable, maskable
generation steps with per-step caching.
"""

__version__ = "0.1.0"
