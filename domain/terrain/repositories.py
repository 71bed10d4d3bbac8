"""Domain Port(s) for Terrain I/O.

Defines interfaces (Protocols) that infrastructure adapters must implement.
No concrete I/O here.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from .value_objects import ElevationGrid, FetchGrid


class TerrainRepository(Protocol):
    """Port for reading elevation grids and persisting fetch grids.

    Implementations live in infrastructure (e.g., GeoTIFF adapter).
    """

    def load_dem(self, file_path: Path | str) -> ElevationGrid:
        """Load a DEM and return an ElevationGrid."""
        ...

    def save_fetch_grid(self, grid: FetchGrid, file_path: Path | str) -> None:
        """Persist a completed FetchGrid."""
        ...
