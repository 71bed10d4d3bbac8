"""Terrain Bounded Context - Error Hierarchy.

Custom exceptions for raster loading and persistence.
"""

from __future__ import annotations


class TerrainError(Exception):
    """Base error for terrain operations."""


class InvalidRasterError(TerrainError):
    """File is not a valid raster, wrong format, or corrupted."""


class InvalidGeotransformError(TerrainError):
    """Raster has invalid or missing geotransform."""


class AllNoDataError(TerrainError):
    """Raster contains 100% NoData pixels - unusable."""


class InvalidBoundsError(TerrainError):
    """Raster bounds are degenerate (zero or negative extent)."""


class InsufficientMemoryError(TerrainError):
    """Operation requires more memory than allowed or available."""


class RasterWriteError(TerrainError):
    """Output raster could not be persisted.

    Attributes:
        file_name: Name of the file that failed to write (no directory part)
    """

    def __init__(self, file_name: str, reason: str) -> None:
        self.file_name = file_name
        super().__init__(f"Failed to write {file_name}: {reason}")
