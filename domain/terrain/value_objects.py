"""Terrain Bounded Context - Value Objects.

Data structures for elevation input and fetch output grids.
All validation occurs at construction time via Pydantic.

ElevationGrid is immutable: its array is an owned, read-only copy, so it can be
handed to any number of workers without synchronization. FetchGrid freezes its
metadata but its array is filled row by row by a single collector.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
DEFAULT_NODATA = -32768.0  # Used when the source raster declares no nodata value
FETCH_TOOL_NAME = "FetchAnalysis"


class GridBounds(BaseModel):
    """Spatial extent of a grid in its own CRS units (Value Object)."""

    north: float
    south: float
    east: float
    west: float

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_bounds(self) -> "GridBounds":
        if not all(
            math.isfinite(v) for v in (self.north, self.south, self.east, self.west)
        ):
            raise ValueError("Bounds must be finite")
        if not (self.south < self.north):
            raise ValueError(
                f"Invalid y ordering: south={self.south} >= north={self.north}"
            )
        if not (self.west < self.east):
            raise ValueError(
                f"Invalid x ordering: west={self.west} >= east={self.east}"
            )
        return self


def _is_nodata(value: float, nodata: float) -> bool:
    if math.isnan(nodata):
        return math.isnan(value)
    return value == nodata


class ElevationGrid(BaseModel):
    """Immutable elevation grid with raster metadata (Value Object).

    Invariants:
        - data is a non-empty 2D float64 array (rows x columns)
        - resolution components are positive
        - data is read-only after construction

    The nodata sentinel is stored per grid and may be NaN; always compare
    through is_nodata() rather than with ==.
    """

    data: NDArray[np.float64]  # 2D float64 array (rows x columns), read-only
    nodata: float  # Sentinel for cells with no valid measurement
    bounds: GridBounds  # Extent in CRS units
    resolution: tuple[float, float]  # (resolution_x, resolution_y), absolute
    is_geographic: bool = False  # True when CRS units are degrees
    crs: str | None = None  # Source CRS, carried through to the output

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @model_validator(mode="after")
    def validate_grid(self) -> "ElevationGrid":
        if not isinstance(self.data, np.ndarray):
            raise ValueError("Data must be a numpy array")
        if self.data.ndim != 2:
            raise ValueError(f"Data must be 2D, got {self.data.ndim}D")
        if self.data.shape[0] == 0 or self.data.shape[1] == 0:
            raise ValueError(f"Data cannot be empty: {self.data.shape}")
        if self.resolution[0] <= 0 or self.resolution[1] <= 0:
            raise ValueError(f"Resolution must be positive: {self.resolution}")

        # Always take an owned, contiguous float64 copy and freeze it so the
        # caller's array is never aliased or modified.
        immutable = np.array(self.data, dtype=np.float64, copy=True, order="C")
        immutable.flags.writeable = False
        object.__setattr__(self, "data", immutable)
        return self

    @property
    def rows(self) -> int:
        return int(self.data.shape[0])

    @property
    def columns(self) -> int:
        return int(self.data.shape[1])

    def is_nodata(self, value: float) -> bool:
        """Return True if value equals this grid's nodata sentinel (NaN-aware)."""
        return _is_nodata(value, self.nodata)

    def value(self, row: int, col: int) -> float:
        """Return the elevation at (row, col) as a Python float."""
        return float(self.data[row, col])

    def nodata_mask(self) -> NDArray[np.bool_]:
        """Return a boolean mask of nodata cells."""
        if math.isnan(self.nodata):
            return np.isnan(self.data)
        return self.data == self.nodata


class FetchGrid(BaseModel):
    """Fetch distance output grid (Value Object with a row-writable array).

    Created from an ElevationGrid template with every cell set to nodata.
    Rows are written via set_row(); metadata fields are informational and are
    persisted as raster tags.
    """

    data: NDArray[np.float64]
    nodata: float
    bounds: GridBounds
    resolution: tuple[float, float]
    is_geographic: bool = False
    crs: str | None = None
    azimuth: float
    height_increment: float = Field(ge=0)
    source_file: str | None = None
    elapsed_s: float = Field(default=0.0, ge=0)
    created_by: str = FETCH_TOOL_NAME

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @model_validator(mode="after")
    def validate_grid(self) -> "FetchGrid":
        if not isinstance(self.data, np.ndarray) or self.data.ndim != 2:
            raise ValueError("Data must be a 2D numpy array")
        if self.data.dtype != np.float64:
            raise ValueError(f"Data must be float64, got {self.data.dtype}")
        return self

    @classmethod
    def from_template(
        cls,
        template: ElevationGrid,
        *,
        azimuth: float,
        height_increment: float,
        source_file: str | None = None,
    ) -> "FetchGrid":
        """Initialize an output grid shaped like template, filled with nodata."""
        return cls(
            data=np.full(template.data.shape, template.nodata, dtype=np.float64),
            nodata=template.nodata,
            bounds=template.bounds,
            resolution=template.resolution,
            is_geographic=template.is_geographic,
            crs=template.crs,
            azimuth=azimuth,
            height_increment=height_increment,
            source_file=source_file,
        )

    @property
    def rows(self) -> int:
        return int(self.data.shape[0])

    @property
    def columns(self) -> int:
        return int(self.data.shape[1])

    def is_nodata(self, value: float) -> bool:
        return _is_nodata(value, self.nodata)

    def set_row(self, row: int, values: Sequence[float]) -> None:
        """Write a full row of values.

        Raises:
            ValueError: If row is out of range or values has the wrong length
        """
        if not 0 <= row < self.rows:
            raise ValueError(f"Row {row} out of range [0, {self.rows})")
        if len(values) != self.columns:
            raise ValueError(
                f"Row {row} has {len(values)} values, expected {self.columns}"
            )
        self.data[row, :] = values

    def metadata_tags(self) -> dict[str, str]:
        """Return run metadata as string tags for the output raster."""
        tags = {
            "CREATED_BY": f"Created by {self.created_by} tool",
            "AZIMUTH": f"{self.azimuth}",
            "HEIGHT_INCREMENT": f"{self.height_increment}",
            "ELAPSED_TIME": f"{self.elapsed_s:.3f}s (excluding I/O)",
        }
        if self.source_file is not None:
            tags["INPUT_FILE"] = self.source_file
        return tags
