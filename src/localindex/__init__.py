"""localindex - Local-first incremental indexing engine with job orchestration."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("localindex")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
