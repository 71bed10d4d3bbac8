"""Application Layer.

Orchestrates domain logic and infrastructure adapters: validates run
parameters, loads the DEM, computes fetch and persists the result.
"""

from .fetch_analysis import FetchAnalysisParameters, run_fetch_analysis

__all__ = ["FetchAnalysisParameters", "run_fetch_analysis"]
