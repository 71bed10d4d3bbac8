"""Terrain Bounded Context.

Responsible for the raster data the exposure analysis runs on:
- Value Objects: GridBounds, ElevationGrid, FetchGrid
- Ports: TerrainRepository
"""
