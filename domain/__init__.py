"""Fetch Analysis Domain Layer.

This package contains the core business logic organized by bounded contexts:
- terrain: Elevation and fetch grids, raster errors, repository port
- exposure: Fetch (upwind obstacle distance) geometry, kernel and engine
"""

# Imports alphabetized per project style (isort)
from domain import exposure, terrain

__all__ = ["exposure", "terrain"]
