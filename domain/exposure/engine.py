"""Exposure Bounded Context - Work Partitioner, Worker Pool and Result Collector.

Fan-out / fan-in execution of the Ray-March Kernel over a whole grid:

1) Geometry is built once and handed (with the read-only grid) to every worker
2) Rows are split statically: worker t owns {r : r % workers == t}
3) Each worker emits one RowMessage per row onto a shared queue
4) A single collector in the calling process writes rows by index, in
   whatever order they arrive, until every row is accounted for

Workers are processes (ProcessPoolExecutor) because the kernel is pure
Python and CPU bound. A failed worker aborts the whole run; there is no
retry and no partial output.
"""

from __future__ import annotations

import logging
import math
import multiprocessing
import os
import queue as queue_module
import time
from collections.abc import Iterator, Sequence
from concurrent.futures import Future, ProcessPoolExecutor
from typing import Any, NamedTuple

from domain.exposure.errors import InvalidFetchParametersError, WorkerFailedError
from domain.exposure.geometry import (
    DEFAULT_AZIMUTH,
    DEFAULT_HEIGHT_INCREMENT,
    RayGeometry,
    build_ray_geometry,
)
from domain.exposure.services import compute_row
from domain.terrain.value_objects import ElevationGrid, FetchGrid

logger = logging.getLogger(__name__)

# Interval between worker health checks while waiting for rows (not a run timeout)
_QUEUE_POLL_S = 0.5

# Per-process state installed by the pool initializer
_worker_context: dict[str, Any] = {}


class RowMessage(NamedTuple):
    """One completed output row, handed from a worker to the collector."""

    row: int
    values: list[float]


# ---------------------------------------------------------------------------
# Partitioning
# ---------------------------------------------------------------------------
def default_worker_count() -> int:
    """Number of available hardware lanes (at least 1)."""
    return max(1, os.cpu_count() or 1)


def partition_rows(rows: int, workers: int) -> list[range]:
    """Split row indices across workers by row index modulo worker count.

    The returned ranges are disjoint and their union is range(rows).

    Raises:
        ValueError: If rows is negative or workers is less than 1
    """
    if rows < 0:
        raise ValueError(f"rows must be non-negative, got {rows}")
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")
    return [range(worker_id, rows, workers) for worker_id in range(workers)]


def iter_row_messages(
    grid: ElevationGrid,
    geometry: RayGeometry,
    height_increment: float,
    rows: range,
) -> Iterator[RowMessage]:
    """Run the kernel over rows, yielding one RowMessage per row."""
    for row in rows:
        yield RowMessage(row, compute_row(grid, geometry, height_increment, row))


# ---------------------------------------------------------------------------
# Worker Process Side
# ---------------------------------------------------------------------------
def _init_worker(
    grid: ElevationGrid,
    geometry: RayGeometry,
    height_increment: float,
    results: Any,
) -> None:
    # The collector drains every row before the pool shuts down, so a worker
    # never needs to wait for its queue buffer to flush on exit.
    results.cancel_join_thread()
    _worker_context.update(
        grid=grid,
        geometry=geometry,
        height_increment=height_increment,
        results=results,
    )


def _run_partition(worker_id: int, workers: int) -> int:
    grid: ElevationGrid = _worker_context["grid"]
    results = _worker_context["results"]
    rows = partition_rows(grid.rows, workers)[worker_id]
    for message in iter_row_messages(
        grid,
        _worker_context["geometry"],
        _worker_context["height_increment"],
        rows,
    ):
        results.put(message)
    return len(rows)


# ---------------------------------------------------------------------------
# Result Collector
# ---------------------------------------------------------------------------
class ResultCollector:
    """Single consumer that writes RowMessages into a FetchGrid by row index.

    Arrival order is irrelevant. Progress (percent of rows received) is
    monotonically non-decreasing and logged only when it changes.
    """

    def __init__(self, output: FetchGrid) -> None:
        self.output = output
        self.expected = output.rows
        self.received = 0
        self.progress = -1
        self._seen: set[int] = set()

    @property
    def complete(self) -> bool:
        return self.received >= self.expected

    def receive(self, message: RowMessage) -> None:
        """Write one row into the output grid.

        Raises:
            ValueError: If the row was already received, is out of range, or
                has the wrong number of values
        """
        if message.row in self._seen:
            raise ValueError(f"Row {message.row} received twice")
        self.output.set_row(message.row, message.values)
        self._seen.add(message.row)
        self.received += 1

        progress = int(100.0 * self.received / self.expected)
        if progress != self.progress:
            self.progress = progress
            logger.info("Progress: %d%%", progress)


def _raise_for_failed_workers(
    futures: Sequence[Future], collector: ResultCollector
) -> None:
    """Raise WorkerFailedError if any partition task has died."""
    for worker_id, future in enumerate(futures):
        if not future.done():
            continue
        if future.cancelled():
            raise WorkerFailedError(worker_id, collector.received, collector.expected)
        exc = future.exception()
        if exc is not None:
            logger.error("Worker %d failed: %s", worker_id, exc)
            raise WorkerFailedError(
                worker_id, collector.received, collector.expected
            ) from exc


def _drain(results: Any, futures: Sequence[Future], collector: ResultCollector) -> None:
    while not collector.complete:
        try:
            message = results.get(timeout=_QUEUE_POLL_S)
        except queue_module.Empty:
            _raise_for_failed_workers(futures, collector)
            continue
        collector.receive(message)


def _collect_from_pool(
    grid: ElevationGrid,
    geometry: RayGeometry,
    height_increment: float,
    workers: int,
    collector: ResultCollector,
) -> None:
    ctx = multiprocessing.get_context()
    results = ctx.Queue()
    try:
        with ProcessPoolExecutor(
            max_workers=workers,
            mp_context=ctx,
            initializer=_init_worker,
            initargs=(grid, geometry, height_increment, results),
        ) as executor:
            futures = [
                executor.submit(_run_partition, worker_id, workers)
                for worker_id in range(workers)
            ]
            try:
                _drain(results, futures, collector)
            except BaseException:
                executor.shutdown(wait=False, cancel_futures=True)
                raise
    finally:
        results.close()
        results.join_thread()


# ---------------------------------------------------------------------------
# Main Service: compute_fetch_grid
# ---------------------------------------------------------------------------
def compute_fetch_grid(
    grid: ElevationGrid,
    azimuth: float = DEFAULT_AZIMUTH,
    height_increment: float = DEFAULT_HEIGHT_INCREMENT,
    *,
    workers: int | None = None,
    source_file: str | None = None,
) -> FetchGrid:
    """Compute the fetch distance of every valid cell of grid.

    Args:
        grid: Elevation grid (read-only, shared by all workers)
        azimuth: Direction in degrees clockwise from north; degenerate values
            are nudged (see geometry.sanitize_azimuth)
        height_increment: Obstacle threshold rise per unit distance (>= 0)
        workers: Number of worker processes. None uses every hardware lane;
            1 computes in the calling process
        source_file: Input reference recorded in the output metadata

    Returns:
        FetchGrid with the sanitized azimuth and the compute time (I/O
        excluded) recorded in its metadata

    Raises:
        InvalidFetchParametersError: If height_increment or workers is invalid
        WorkerFailedError: If a worker dies before emitting all of its rows
    """
    if not math.isfinite(height_increment) or height_increment < 0:
        raise InvalidFetchParametersError(
            f"height_increment must be a finite value >= 0, got {height_increment}"
        )
    if workers is None:
        workers = default_worker_count()
    if workers < 1:
        raise InvalidFetchParametersError(f"workers must be >= 1, got {workers}")
    # More workers than rows would only leave processes idle
    workers = min(workers, grid.rows)

    start = time.perf_counter()
    geometry = build_ray_geometry(grid, azimuth)
    output = FetchGrid.from_template(
        grid,
        azimuth=geometry.azimuth,
        height_increment=height_increment,
        source_file=source_file,
    )
    collector = ResultCollector(output)

    logger.info(
        "Computing fetch for %dx%d grid (azimuth=%s, height_increment=%s, workers=%d)",
        grid.columns,
        grid.rows,
        geometry.azimuth,
        height_increment,
        workers,
    )
    if workers == 1:
        for message in iter_row_messages(
            grid, geometry, height_increment, range(grid.rows)
        ):
            collector.receive(message)
    else:
        _collect_from_pool(grid, geometry, height_increment, workers, collector)

    elapsed = time.perf_counter() - start
    logger.info("Fetch computed in %.3fs", elapsed)
    return output.model_copy(update={"elapsed_s": elapsed})
