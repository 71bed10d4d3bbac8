"""Exposure Bounded Context.

Fetch (upwind exposure distance) analysis over elevation grids:
- Geometry: azimuth sanitization, ray slope, step directions, cell size
- Services: Ray-March Kernel (grid-line crossing walks)
- Engine: row partitioning, worker pool, result collection
"""
