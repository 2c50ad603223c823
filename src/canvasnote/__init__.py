"""
canvasnote-core - search index and asset store for a visual thinking app.

Keeps a unified full-text index over cards, journal entries, boards and other
canvas entities in sync with their edits, and ingests user files into a
managed asset directory tree.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("canvasnote-core")
except PackageNotFoundError:
    __version__ = "0.3.0"
