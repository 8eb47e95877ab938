"""Local business-state engine for maintenance service contracts."""

from importlib.metadata import version, PackageNotFoundError

__all__ = ["__version__"]

try:
    __version__ = version("maintenance-hub")
except PackageNotFoundError:  # pragma: no cover - local dev without packaging
    __version__ = "0.1.0"
