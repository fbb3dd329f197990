"""Named, isolated git clones that share one local mirror."""

from importlib import metadata

from .exceptions import SpacesError

try:  # pragma: no cover - only missing when run from a source checkout
    __version__ = metadata.version("git-spaces")
except metadata.PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

__all__ = ["SpacesError", "__version__"]
