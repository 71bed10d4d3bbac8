"""Root pytest configuration for all tests.

Provides an ElevationGrid factory so domain tests can build grids directly
from numpy arrays, and a GeoTIFF writer for tests that go through rasterio.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np
import pytest
import rasterio
from affine import Affine
from numpy.typing import NDArray
from rasterio.crs import CRS

from domain.terrain.value_objects import ElevationGrid, GridBounds

NODATA = -9999.0


def build_grid(
    data: Any,
    *,
    nodata: float = NODATA,
    resolution: tuple[float, float] = (1.0, 1.0),
    is_geographic: bool = False,
    bounds: GridBounds | None = None,
) -> ElevationGrid:
    """Create an ElevationGrid with bounds derived from shape and resolution."""
    array = np.asarray(data, dtype=np.float64)
    rows, columns = array.shape
    if bounds is None:
        bounds = GridBounds(
            north=rows * resolution[1],
            south=0.0,
            east=columns * resolution[0],
            west=0.0,
        )
    return ElevationGrid(
        data=array,
        nodata=nodata,
        bounds=bounds,
        resolution=resolution,
        is_geographic=is_geographic,
    )


def write_raster(
    path: Path,
    data: NDArray[Any],
    transform: Affine,
    crs: CRS | str | None = None,
    dtype: str | None = None,
    nodata: float | None = None,
    driver: str = "GTiff",
) -> Path:
    """Write a single-band (2D) or multi-band (3D) raster with rasterio.

    CRS and nodata are only set when given, so CRS-less and
    nodata-less files can be produced too.
    """
    if data.ndim == 2:
        count = 1
        height, width = data.shape
    elif data.ndim == 3:
        count, height, width = data.shape
    else:
        raise ValueError(f"Data must be 2D or 3D, got {data.ndim}D")

    kwargs: dict[str, Any] = {
        "driver": driver,
        "height": height,
        "width": width,
        "count": count,
        "dtype": dtype or str(data.dtype),
        "transform": transform,
    }
    if crs is not None:
        kwargs["crs"] = crs
    if nodata is not None:
        kwargs["nodata"] = nodata

    with rasterio.open(path, "w", **kwargs) as dst:
        if data.ndim == 2:
            dst.write(data, 1)
        else:
            for band_idx in range(count):
                dst.write(data[band_idx], band_idx + 1)
    return path


@pytest.fixture
def make_grid() -> Callable[..., ElevationGrid]:
    """Factory fixture: make_grid(data, nodata=..., resolution=..., ...)."""
    return build_grid


@pytest.fixture
def utm_dem(tmp_path: Path) -> Path:
    """6x5 planar DEM (30 m cells, EPSG:32633) with a ridge along column 3."""
    data = np.full((6, 5), 10.0, dtype=np.float32)
    data[:, 3] = 80.0
    data[0, 0] = NODATA
    transform = Affine(30.0, 0.0, 500000.0, 0.0, -30.0, 4650000.0)
    return write_raster(
        tmp_path / "dem_utm.tif", data, transform, crs="EPSG:32633", nodata=NODATA
    )
