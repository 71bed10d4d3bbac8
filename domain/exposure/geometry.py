"""Exposure Bounded Context - Ray Geometry Setup.

Derives everything the Ray-March Kernel needs from the azimuth and the grid
metadata. Runs once per analysis; the resulting RayGeometry is shared
read-only by every worker.

Coordinate conventions:
    The ray is a line in (column, -row) space: x grows east with the column
    index, y grows north as the row index decreases. Azimuth is measured in
    degrees clockwise from north.
"""

from __future__ import annotations

import logging
import math

from pydantic import BaseModel, ConfigDict, Field

from domain.exposure.errors import InvalidFetchParametersError
from domain.terrain.value_objects import ElevationGrid

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
DEFAULT_AZIMUTH = 0.0
DEFAULT_HEIGHT_INCREMENT = 0.05
METRES_PER_DEGREE = 113200.0  # Planar correction factor for geographic grids

# Replacements for azimuths that give a vertical or undefined ray slope
_AZIMUTH_OUT_OF_RANGE = 0.1
_AZIMUTH_NUDGES = {0.0: 0.1, 180.0: 179.9, 360.0: 359.9}


class RayGeometry(BaseModel):
    """Ray parameters shared by every source cell of one run (Value Object).

    Invariants:
        - azimuth is sanitized (never 0, 180, 360 or outside [0, 360])
        - cell_size > 0
        - x_step, y_step in {-1, 1}
    """

    azimuth: float
    line_slope: float
    cell_size: float = Field(gt=0)
    x_step: int
    y_step: int

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Azimuth
# ---------------------------------------------------------------------------
def sanitize_azimuth(azimuth: float) -> float:
    """Nudge degenerate azimuths to the nearest usable value.

    Values outside [0, 360] become 0.1; exactly 0, 180 and 360 become 0.1,
    179.9 and 359.9. Every other value is returned unchanged. This is
    observable behavior, not an error.

    Raises:
        InvalidFetchParametersError: If azimuth is NaN
    """
    if math.isnan(azimuth):
        raise InvalidFetchParametersError("Azimuth must be a number, got NaN")

    sanitized = azimuth
    if azimuth < 0.0 or azimuth > 360.0:
        sanitized = _AZIMUTH_OUT_OF_RANGE
    elif azimuth in _AZIMUTH_NUDGES:
        sanitized = _AZIMUTH_NUDGES[azimuth]

    if sanitized != azimuth:
        logger.debug("Azimuth %s adjusted to %s", azimuth, sanitized)
    return float(sanitized)


def line_slope(azimuth: float) -> float:
    """Slope of the ray in (column, -row) space for a sanitized azimuth."""
    if azimuth < 180.0:
        return math.tan(math.radians(90.0 - azimuth))
    return math.tan(math.radians(270.0 - azimuth))


def step_directions(azimuth: float) -> tuple[int, int]:
    """Return (x_step, y_step) for the quadrant the azimuth falls in.

    (0, 90] -> (1, 1); (90, 180] -> (1, -1); (180, 270] -> (-1, -1);
    (270, 360] -> (-1, 1).
    """
    if 0.0 < azimuth <= 90.0:
        return (1, 1)
    if azimuth <= 180.0:
        return (1, -1)
    if azimuth <= 270.0:
        return (-1, -1)
    return (-1, 1)


# ---------------------------------------------------------------------------
# Cell Size
# ---------------------------------------------------------------------------
def effective_cell_size(grid: ElevationGrid) -> float:
    """Average cell size, converted to metres for geographic grids.

    Geographic resolutions are in degrees; they are scaled by
    METRES_PER_DEGREE * cos(mid_latitude) when the mid-latitude is valid.
    """
    cell_size = (grid.resolution[0] + grid.resolution[1]) / 2.0
    if grid.is_geographic:
        # True midpoint of the extent, not half its height
        mid_lat = (grid.bounds.north + grid.bounds.south) / 2.0
        if -90.0 <= mid_lat <= 90.0:
            cell_size *= METRES_PER_DEGREE * math.cos(math.radians(mid_lat))
    return cell_size


def build_ray_geometry(grid: ElevationGrid, azimuth: float) -> RayGeometry:
    """Sanitize the azimuth and derive the ray geometry for grid."""
    azimuth = sanitize_azimuth(azimuth)
    x_step, y_step = step_directions(azimuth)
    geometry = RayGeometry(
        azimuth=azimuth,
        line_slope=line_slope(azimuth),
        cell_size=effective_cell_size(grid),
        x_step=x_step,
        y_step=y_step,
    )
    logger.debug(
        "Ray geometry: azimuth=%s slope=%.6f cell_size=%.6f steps=(%d, %d)",
        geometry.azimuth,
        geometry.line_slope,
        geometry.cell_size,
        geometry.x_step,
        geometry.y_step,
    )
    return geometry
