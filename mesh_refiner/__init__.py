"""Package utilities for mesh-refiner.

The refinement core lives in the top-level packages `geometry/`, `runtime/`,
`core/` and `parameters/`. This package carries the distribution metadata.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mesh-refiner")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
