"""Exposure Bounded Context - Error Hierarchy."""

from __future__ import annotations


class FetchError(Exception):
    """Base error for fetch analysis."""


class InvalidFetchParametersError(FetchError):
    """Azimuth or height increment cannot be used for a fetch run."""


class WorkerFailedError(FetchError):
    """A worker terminated before emitting all of its assigned rows.

    The run is aborted; no partial output is produced.

    Attributes:
        worker_id: Index of the failed partition
        rows_received: Rows collected before the failure was detected
        rows_expected: Total rows in the grid
    """

    def __init__(self, worker_id: int, rows_received: int, rows_expected: int) -> None:
        self.worker_id = worker_id
        self.rows_received = rows_received
        self.rows_expected = rows_expected
        super().__init__(
            f"Worker {worker_id} failed after {rows_received}/{rows_expected} rows "
            "were collected"
        )
