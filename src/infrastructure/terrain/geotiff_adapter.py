"""GeoTIFF adapter for TerrainRepository.

Implements loading of DEM rasters and saving of fetch grids using rasterio.
No reprojection is performed: the grid is analysed in its native CRS, and
pyproj decides whether that CRS is geographic (degree units).

Load lifecycle (to avoid resource leaks):
1) Validate path (exists, extension, not a symlink, non-empty, size budget)
2) Open dataset with context managers (rasterio.Env, rasterio.open)
3) Validate band count and geotransform
4) Read band 1 as float64; map NaN cells onto the nodata sentinel
5) Reject 100% nodata; warn above 80%
6) Build GridBounds, resolution and CRS flags
7) Exit contexts to release GDAL handles
8) Return ElevationGrid
"""

from __future__ import annotations

import logging
import math
from pathlib import Path

import numpy as np
import rasterio
from affine import Affine
from pyproj import CRS as ProjCRS
from pyproj.exceptions import CRSError
from rasterio.transform import array_bounds, from_bounds

from domain.terrain.errors import (
    AllNoDataError,
    InsufficientMemoryError,
    InvalidBoundsError,
    InvalidGeotransformError,
    InvalidRasterError,
    RasterWriteError,
)
from domain.terrain.value_objects import (
    DEFAULT_NODATA,
    ElevationGrid,
    FetchGrid,
    GridBounds,
)

# Module-level logger (reused across all calls)
logger = logging.getLogger(__name__)

_ALLOWED_SUFFIXES = (".tif", ".tiff")
_HIGH_NODATA_PCT = 80.0
_FLOAT32_MAX = float(np.finfo(np.float32).max)


def _is_geographic(crs: object) -> bool:
    """Return True if crs uses angular (degree) units.

    A raster without a CRS is treated as planar.
    """
    if crs is None:
        return False
    try:
        return bool(ProjCRS.from_user_input(crs.to_wkt()).is_geographic)
    except (CRSError, AttributeError) as e:
        logger.debug("Could not interpret CRS, assuming planar: %s", e)
        return False


def _validate_transform(transform: object) -> Affine:
    if not isinstance(transform, Affine):
        raise InvalidGeotransformError("Missing affine transform")
    if any(math.isnan(v) or math.isinf(v) for v in transform[:6]):
        raise InvalidGeotransformError("Invalid (NaN/Inf) transform values")
    if transform.a == 0 or transform.e == 0:
        raise InvalidGeotransformError("Invalid transform scale (zero)")
    # Columns must run west to east and rows north to south
    if transform.b != 0 or transform.d != 0:
        raise InvalidGeotransformError("Rotated transforms are not supported")
    if transform.a < 0 or transform.e > 0:
        raise InvalidGeotransformError("Only north-up transforms are supported")
    return transform


class GeoTiffTerrainAdapter:
    """Infrastructure adapter for reading DEMs and writing fetch grids.

    Parameters
    ----------
    max_bytes: int | None
        Optional memory budget for the float64 grid (height*width*8).
        If exceeded by the estimated size, InsufficientMemoryError is raised
        before any pixel data is read.
    """

    def __init__(self, max_bytes: int | None = None) -> None:
        self.max_bytes = max_bytes

    # -----------------------------------------------------------------------
    # Read
    # -----------------------------------------------------------------------
    def load_dem(self, file_path: Path | str) -> ElevationGrid:
        """Load a single-band GeoTIFF DEM as an ElevationGrid.

        Raises:
            FileNotFoundError: If the file does not exist
            InvalidRasterError: Wrong extension, symlink, empty, multi-band or corrupted
            InvalidGeotransformError: NaN/Inf or zero-scale transform
            InvalidBoundsError: Degenerate bounds
            AllNoDataError: Every cell is nodata
            InsufficientMemoryError: Grid exceeds max_bytes or available memory
        """
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(str(path))

        if path.suffix.lower() not in _ALLOWED_SUFFIXES:
            raise InvalidRasterError(f"Unsupported file extension: {path.suffix}")

        try:
            if path.is_symlink():
                raise InvalidRasterError("Symlinks are not permitted")
            st = path.stat()
            if st.st_size == 0:
                raise InvalidRasterError("Empty file")
        except OSError as e:
            # Log only filename, errno and strerror to avoid leaking absolute paths
            logger.error(
                "Failed to stat %s (errno=%s, strerror=%s)",
                path.name,
                getattr(e, "errno", "unknown"),
                getattr(e, "strerror", "unknown"),
            )
            raise

        try:
            with rasterio.Env():
                with rasterio.open(path) as src:
                    if src.count == 0:
                        raise InvalidRasterError("Empty or bandless file")
                    if src.count != 1:
                        raise InvalidRasterError(f"Expected 1 band, got {src.count}")

                    transform = _validate_transform(src.transform)

                    if self.max_bytes is not None:
                        est_bytes = src.width * src.height * 8  # float64 = 8 bytes
                        if est_bytes > self.max_bytes:
                            raise InsufficientMemoryError(
                                f"Estimated grid size {est_bytes}B exceeds budget {self.max_bytes}B"
                            )

                    data = src.read(1, out_dtype="float64")
                    nodata = (
                        float(src.nodata) if src.nodata is not None else DEFAULT_NODATA
                    )
                    if not math.isnan(nodata):
                        # NaN cells carry no measurement; fold them into the sentinel
                        data = np.where(np.isnan(data), nodata, data)
                        nodata_mask = data == nodata
                    else:
                        nodata_mask = np.isnan(data)

                    if nodata_mask.all():
                        raise AllNoDataError(
                            "Raster contains 100% NoData pixels - unusable"
                        )

                    height, width = data.shape
                    west, south, east, north = array_bounds(height, width, transform)
                    try:
                        bounds = GridBounds(
                            north=max(north, south),
                            south=min(north, south),
                            east=max(east, west),
                            west=min(east, west),
                        )
                    except ValueError as e:
                        raise InvalidBoundsError(str(e)) from e

                    crs_str = src.crs.to_string() if src.crs is not None else None
                    grid = ElevationGrid(
                        data=data,
                        nodata=nodata,
                        bounds=bounds,
                        resolution=(abs(transform.a), abs(transform.e)),
                        is_geographic=_is_geographic(src.crs),
                        crs=crs_str,
                    )

                    nodata_pct = float(nodata_mask.mean() * 100.0)
                    if nodata_pct > _HIGH_NODATA_PCT:
                        logger.warning(
                            "DEM %s: %.1f%% NoData pixels detected",
                            path.name,
                            nodata_pct,
                        )
                    logger.debug(
                        "DEM %s: Loaded %dx%d grid (crs=%s, geographic=%s)",
                        path.name,
                        width,
                        height,
                        crs_str,
                        grid.is_geographic,
                    )
                    return grid

        except PermissionError as e:
            # Re-raise with filename only to avoid leaking full path in logs
            raise PermissionError(path.name) from e
        except rasterio.errors.RasterioError as e:
            raise InvalidRasterError(f"Corrupted or invalid raster: {e}") from e
        except MemoryError as e:
            raise InsufficientMemoryError("Insufficient memory to load raster") from e

    # -----------------------------------------------------------------------
    # Write
    # -----------------------------------------------------------------------
    def save_fetch_grid(self, grid: FetchGrid, file_path: Path | str) -> None:
        """Write grid as a single-band GeoTIFF with metadata tags.

        Georeferencing is rebuilt from the grid's bounds; CRS and nodata are
        carried over from the input.

        Raises:
            InvalidRasterError: If the extension is not .tif/.tiff
            RasterWriteError: If rasterio fails to create or write the file
        """
        path = Path(file_path)
        if path.suffix.lower() not in _ALLOWED_SUFFIXES:
            raise InvalidRasterError(f"Unsupported file extension: {path.suffix}")

        transform = from_bounds(
            grid.bounds.west,
            grid.bounds.south,
            grid.bounds.east,
            grid.bounds.north,
            grid.columns,
            grid.rows,
        )
        # float32 unless the nodata sentinel cannot be represented in it
        dtype = "float32"
        if math.isfinite(grid.nodata) and abs(grid.nodata) > _FLOAT32_MAX:
            dtype = "float64"
        profile = {
            "driver": "GTiff",
            "height": grid.rows,
            "width": grid.columns,
            "count": 1,
            "dtype": dtype,
            "transform": transform,
            "nodata": grid.nodata,
        }
        if grid.crs is not None:
            profile["crs"] = grid.crs

        try:
            with rasterio.Env():
                with rasterio.open(path, "w", **profile) as dst:
                    dst.write(grid.data.astype(dtype), 1)
                    dst.update_tags(**grid.metadata_tags())
        except PermissionError as e:
            raise PermissionError(path.name) from e
        except rasterio.errors.RasterioError as e:
            raise RasterWriteError(path.name, str(e)) from e

        logger.info("Output %s written (%dx%d)", path.name, grid.columns, grid.rows)
