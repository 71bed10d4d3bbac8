"""Exposure Bounded Context - Ray-March Kernel.

Pure domain logic for the fetch distance of a single source cell.
NO I/O operations and no concurrency - the engine module distributes rows.

For each source cell two independent walks follow the ray outward:
- vertical-crossing walk: samples where the ray crosses column lines
- horizontal-crossing walk: samples where the ray crosses row lines

Each walk is a small state machine (WALKING -> STOPPED_BOUNDARY or
STOPPED_OBSTACLE). The walks are then combined into one signed distance:
positive when an obstacle was found, negative (magnitude = distance walked
before leaving the grid) when the ray reaches the edge unobstructed.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import NamedTuple

from domain.exposure.geometry import RayGeometry
from domain.terrain.value_objects import ElevationGrid


class WalkState(Enum):
    WALKING = "walking"
    STOPPED_BOUNDARY = "stopped_boundary"
    STOPPED_OBSTACLE = "stopped_obstacle"


class WalkResult(NamedTuple):
    """Terminal state of one grid-line walk.

    distance is the obstacle distance when found, otherwise the last distance
    sampled inside the grid (0.0 if the first step already left the grid).
    """

    state: WalkState
    distance: float

    @property
    def found(self) -> bool:
        return self.state is WalkState.STOPPED_OBSTACLE


# ---------------------------------------------------------------------------
# Linear Interpolation Between Bracketing Cells
# ---------------------------------------------------------------------------
def interpolate_between_rows(
    grid: ElevationGrid, y: float, col: int
) -> tuple[float, bool]:
    """Interpolate elevation at fractional row y in column col.

    Uses the two integer rows bracketing y. The upper index is clamped to
    the last row, so a sample on the last row degrades to nearest.

    Returns:
        Tuple of (elevation, is_nodata). If either bracketing cell is nodata,
        returns (NaN, True).
    """
    row0 = int(math.floor(y))
    row1 = min(row0 + 1, grid.rows - 1)
    z0 = float(grid.data[row0, col])
    z1 = float(grid.data[row1, col])
    if grid.is_nodata(z0) or grid.is_nodata(z1):
        return (float("nan"), True)
    return (z0 + (y - row0) * (z1 - z0), False)


def interpolate_between_columns(
    grid: ElevationGrid, row: int, x: float
) -> tuple[float, bool]:
    """Interpolate elevation at fractional column x in row row.

    Mirror of interpolate_between_rows along the other axis.
    """
    col0 = int(math.floor(x))
    col1 = min(col0 + 1, grid.columns - 1)
    z0 = float(grid.data[row, col0])
    z1 = float(grid.data[row, col1])
    if grid.is_nodata(z0) or grid.is_nodata(z1):
        return (float("nan"), True)
    return (z0 + (x - col0) * (z1 - z0), False)


def _is_obstacle(
    elevation: float,
    is_nodata: bool,
    source_elevation: float,
    dist: float,
    height_increment: float,
) -> bool:
    # Nodata samples never block the ray
    return not is_nodata and elevation >= source_elevation + dist * height_increment


# ---------------------------------------------------------------------------
# Grid-Line Walks
# ---------------------------------------------------------------------------
def walk_vertical_crossings(
    grid: ElevationGrid,
    geometry: RayGeometry,
    height_increment: float,
    row: int,
    col: int,
    current_val: float,
) -> WalkResult:
    """Walk the ray across successive column lines from (row, col).

    At column x the ray sits at fractional row y = row - slope * (x - col).
    """
    rows, columns = grid.rows, grid.columns
    cell_size = geometry.cell_size
    slope = geometry.line_slope

    state = WalkState.WALKING
    last_dist = 0.0
    x = col
    while state is WalkState.WALKING:
        x += geometry.x_step
        if x < 0 or x >= columns:
            state = WalkState.STOPPED_BOUNDARY
            continue

        y = row - slope * (x - col)
        if y < 0.0 or y >= rows:
            state = WalkState.STOPPED_BOUNDARY
            continue

        last_dist = math.hypot((x - col) * cell_size, (y - row) * cell_size)
        z, is_nodata = interpolate_between_rows(grid, y, x)
        if _is_obstacle(z, is_nodata, current_val, last_dist, height_increment):
            state = WalkState.STOPPED_OBSTACLE

    return WalkResult(state, last_dist)


def walk_horizontal_crossings(
    grid: ElevationGrid,
    geometry: RayGeometry,
    height_increment: float,
    row: int,
    col: int,
    current_val: float,
) -> WalkResult:
    """Walk the ray across successive row lines from (row, col).

    y_step is expressed in north-positive units, so the row index moves by
    -y_step. At row r the ray sits at fractional column
    x = col + (row - r) / slope. A zero slope (due east or west) never
    crosses a row line, so the walk ends at once.
    """
    slope = geometry.line_slope
    if slope == 0.0:
        return WalkResult(WalkState.STOPPED_BOUNDARY, 0.0)

    rows, columns = grid.rows, grid.columns
    cell_size = geometry.cell_size

    state = WalkState.WALKING
    last_dist = 0.0
    r = row
    while state is WalkState.WALKING:
        r -= geometry.y_step
        if r < 0 or r >= rows:
            state = WalkState.STOPPED_BOUNDARY
            continue

        x = col + (row - r) / slope
        if x < 0.0 or x >= columns:
            state = WalkState.STOPPED_BOUNDARY
            continue

        last_dist = math.hypot((x - col) * cell_size, (r - row) * cell_size)
        z, is_nodata = interpolate_between_columns(grid, r, x)
        if _is_obstacle(z, is_nodata, current_val, last_dist, height_increment):
            state = WalkState.STOPPED_OBSTACLE

    return WalkResult(state, last_dist)


# ---------------------------------------------------------------------------
# Combination
# ---------------------------------------------------------------------------
def combine_walks(vertical: WalkResult, horizontal: WalkResult) -> float:
    """Combine both walks into one signed fetch distance.

    Nearest obstacle wins; with no obstacle on either walk the result is
    -max(last distances), i.e. "unobstructed up to the grid edge".
    """
    if vertical.found and horizontal.found:
        return min(vertical.distance, horizontal.distance)
    if vertical.found:
        return vertical.distance
    if horizontal.found:
        return horizontal.distance
    return -max(vertical.distance, horizontal.distance)


# ---------------------------------------------------------------------------
# Main Services
# ---------------------------------------------------------------------------
def fetch_distance(
    grid: ElevationGrid,
    geometry: RayGeometry,
    height_increment: float,
    row: int,
    col: int,
) -> float:
    """Compute the signed fetch distance for one source cell.

    Args:
        grid: Elevation grid (read-only)
        geometry: Ray geometry built once for the run
        height_increment: Threshold rise per unit distance
        row: Source row
        col: Source column

    Returns:
        Distance to the nearest obstacle, or a negative sentinel when the ray
        leaves the grid unobstructed. Nodata source cells return grid.nodata.

    Example:
        >>> geometry = build_ray_geometry(grid, azimuth=270.0)
        >>> dist = fetch_distance(grid, geometry, 0.05, row=10, col=40)
        >>> print("sheltered" if dist > 0 else "open to grid edge")
    """
    current_val = grid.value(row, col)
    if grid.is_nodata(current_val):
        return grid.nodata

    vertical = walk_vertical_crossings(
        grid, geometry, height_increment, row, col, current_val
    )
    horizontal = walk_horizontal_crossings(
        grid, geometry, height_increment, row, col, current_val
    )
    return combine_walks(vertical, horizontal)


def compute_row(
    grid: ElevationGrid,
    geometry: RayGeometry,
    height_increment: float,
    row: int,
) -> list[float]:
    """Compute fetch distances for every column of row.

    Nodata source cells keep the grid's nodata value.
    """
    values = [grid.nodata] * grid.columns
    for col in range(grid.columns):
        current_val = grid.value(row, col)
        if grid.is_nodata(current_val):
            continue
        values[col] = fetch_distance(grid, geometry, height_increment, row, col)
    return values
