"""
Gantry - Declarative infrastructure provisioning engine.

Builds a dependency graph from resource declarations, plans the changes
against versioned state, and applies them concurrently under a state lock.
"""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("gantry")
except PackageNotFoundError:
    # Package not installed
    __version__ = "0.1.0"

__author__ = "Gantry Contributors"
