"""Fetch analysis use case.

Ties the Raster Store (TerrainRepository) and the exposure engine together:
load -> compute -> save. Input errors surface before any worker starts;
output errors surface after computation and the results are discarded.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from domain.exposure.engine import compute_fetch_grid
from domain.exposure.geometry import DEFAULT_AZIMUTH, DEFAULT_HEIGHT_INCREMENT
from domain.terrain.repositories import TerrainRepository
from domain.terrain.value_objects import FetchGrid
from infrastructure.terrain import GeoTiffTerrainAdapter

logger = logging.getLogger(__name__)

_OUTPUT_SUFFIXES = (".tif", ".tiff")


class FetchAnalysisParameters(BaseModel):
    """Validated parameters for one fetch analysis run.

    Bare file names (no directory part) are resolved against
    working_directory when one is given.
    """

    input_path: Path
    output_path: Path
    azimuth: float = DEFAULT_AZIMUTH
    height_increment: float = Field(
        default=DEFAULT_HEIGHT_INCREMENT, ge=0, allow_inf_nan=False
    )
    workers: int | None = Field(default=None, ge=1)
    working_directory: Path | None = None

    model_config = ConfigDict(frozen=True)

    @field_validator("azimuth")
    @classmethod
    def validate_azimuth(cls, value: float) -> float:
        # Out-of-range values, infinities included, are nudged by the engine
        if math.isnan(value):
            raise ValueError("Azimuth must be a number, got NaN")
        return value

    @field_validator("output_path")
    @classmethod
    def validate_output_suffix(cls, value: Path) -> Path:
        if value.suffix.lower() not in _OUTPUT_SUFFIXES:
            raise ValueError(f"Output must be a GeoTIFF (.tif/.tiff): {value.name}")
        return value

    def resolved_input(self) -> Path:
        return _resolve(self.input_path, self.working_directory)

    def resolved_output(self) -> Path:
        return _resolve(self.output_path, self.working_directory)


def _resolve(path: Path, working_directory: Path | None) -> Path:
    if working_directory is None or path.parent != Path("."):
        return path
    return working_directory / path


def run_fetch_analysis(
    params: FetchAnalysisParameters,
    repository: TerrainRepository | None = None,
) -> FetchGrid:
    """Run a complete fetch analysis and persist the output grid.

    Args:
        params: Validated run parameters
        repository: Raster store; defaults to the GeoTIFF adapter

    Returns:
        The FetchGrid that was written

    Raises:
        FileNotFoundError, TerrainError: Input could not be read, or output
            could not be written
        FetchError: Computation failed (invalid parameters, worker failure)
    """
    if repository is None:
        repository = GeoTiffTerrainAdapter()

    input_path = params.resolved_input()
    output_path = params.resolved_output()

    logger.info("Reading %s", input_path.name)
    grid = repository.load_dem(input_path)

    result = compute_fetch_grid(
        grid,
        params.azimuth,
        params.height_increment,
        workers=params.workers,
        source_file=input_path.name,
    )

    logger.info("Saving %s", output_path.name)
    repository.save_fetch_grid(result, output_path)
    logger.info("Elapsed time (excluding I/O): %.3fs", result.elapsed_s)
    return result
