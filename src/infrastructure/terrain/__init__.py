"""Infrastructure adapters for the terrain bounded context.

Reads DEMs from GeoTIFF files and writes fetch grids back out.
"""

from .geotiff_adapter import GeoTiffTerrainAdapter

__all__ = ["GeoTiffTerrainAdapter"]
