"""Tests for the Work Partitioner, Result Collector and Worker Pool."""

from __future__ import annotations

import logging
import math
import multiprocessing
import queue
from concurrent.futures import Future

import numpy as np
import pytest

from domain.exposure import engine
from domain.exposure.engine import (
    ResultCollector,
    RowMessage,
    compute_fetch_grid,
    partition_rows,
)
from domain.exposure.errors import InvalidFetchParametersError, WorkerFailedError
from domain.exposure.geometry import build_ray_geometry
from domain.exposure.services import compute_row
from domain.terrain.value_objects import FetchGrid

NODATA = -9999.0


def _collector(make_grid, rows: int = 4, columns: int = 3) -> ResultCollector:
    grid = make_grid(np.zeros((rows, columns)))
    output = FetchGrid.from_template(grid, azimuth=45.0, height_increment=0.05)
    return ResultCollector(output)


def _random_grid(make_grid, seed: int = 7):
    rng = np.random.default_rng(seed)
    data = rng.uniform(0.0, 50.0, size=(12, 9))
    data[rng.random(data.shape) < 0.1] = NODATA
    return make_grid(data, resolution=(10.0, 10.0))


# ===========================================================================
# Partitioning
# ===========================================================================
@pytest.mark.parametrize(
    "rows, workers",
    [(10, 3), (0, 4), (3, 8), (1, 1), (7, 7), (100, 6)],
)
def test_partition_covers_every_row_once(rows, workers):
    parts = partition_rows(rows, workers)

    assert len(parts) == workers
    flat = [r for part in parts for r in part]
    assert sorted(flat) == list(range(rows))
    assert len(flat) == len(set(flat))


def test_partition_is_row_modulo_workers():
    parts = partition_rows(10, 3)
    assert list(parts[0]) == [0, 3, 6, 9]
    assert list(parts[1]) == [1, 4, 7]
    assert list(parts[2]) == [2, 5, 8]


@pytest.mark.parametrize("rows, workers", [(-1, 2), (5, 0), (5, -3)])
def test_partition_rejects_bad_arguments(rows, workers):
    with pytest.raises(ValueError):
        partition_rows(rows, workers)


# ===========================================================================
# Result Collector
# ===========================================================================
def test_collector_accepts_rows_out_of_order(make_grid):
    collector = _collector(make_grid)

    for row in (3, 0, 2, 1):
        assert not collector.complete
        collector.receive(RowMessage(row, [float(row)] * 3))

    assert collector.complete
    assert collector.received == 4
    assert collector.output.data[:, 0].tolist() == [0.0, 1.0, 2.0, 3.0]


def test_collector_logs_progress_changes(make_grid, caplog):
    caplog.set_level(logging.INFO, logger="domain.exposure.engine")
    collector = _collector(make_grid)

    for row in range(4):
        collector.receive(RowMessage(row, [0.0, 0.0, 0.0]))

    progress = [r.getMessage() for r in caplog.records if "Progress" in r.getMessage()]
    assert progress == [
        "Progress: 25%",
        "Progress: 50%",
        "Progress: 75%",
        "Progress: 100%",
    ]
    assert collector.progress == 100


def test_collector_logs_each_percentage_once(make_grid, caplog):
    caplog.set_level(logging.INFO, logger="domain.exposure.engine")
    collector = _collector(make_grid, rows=300, columns=1)

    for row in range(300):
        collector.receive(RowMessage(row, [1.0]))

    progress = [r.getMessage() for r in caplog.records if "Progress" in r.getMessage()]
    assert len(progress) == len(set(progress))
    assert progress[-1] == "Progress: 100%"


def test_collector_rejects_duplicate_row(make_grid):
    collector = _collector(make_grid)
    collector.receive(RowMessage(1, [0.0, 0.0, 0.0]))

    with pytest.raises(ValueError, match="twice"):
        collector.receive(RowMessage(1, [0.0, 0.0, 0.0]))
    assert collector.received == 1


def test_collector_rejects_wrong_row_length(make_grid):
    collector = _collector(make_grid)
    with pytest.raises(ValueError):
        collector.receive(RowMessage(0, [0.0]))
    assert collector.received == 0


# ===========================================================================
# Worker failure detection
# ===========================================================================
def test_running_workers_are_not_failures(make_grid):
    collector = _collector(make_grid)
    pending: Future = Future()
    finished: Future = Future()
    finished.set_result(2)

    engine._raise_for_failed_workers([pending, finished], collector)


def test_worker_exception_is_reported(make_grid):
    collector = _collector(make_grid)
    collector.receive(RowMessage(0, [0.0, 0.0, 0.0]))
    failed: Future = Future()
    failed.set_exception(RuntimeError("boom"))

    with pytest.raises(WorkerFailedError) as excinfo:
        engine._raise_for_failed_workers([Future(), failed], collector)

    err = excinfo.value
    assert err.worker_id == 1
    assert err.rows_received == 1
    assert err.rows_expected == 4
    assert isinstance(err.__cause__, RuntimeError)


def test_cancelled_worker_is_reported(make_grid):
    collector = _collector(make_grid)
    cancelled: Future = Future()
    assert cancelled.cancel()

    with pytest.raises(WorkerFailedError):
        engine._raise_for_failed_workers([cancelled], collector)


def test_drain_aborts_when_worker_dies(make_grid, monkeypatch):
    monkeypatch.setattr(engine, "_QUEUE_POLL_S", 0.01)
    collector = _collector(make_grid)
    results: queue.Queue = queue.Queue()
    results.put(RowMessage(2, [1.0, 1.0, 1.0]))
    results.put(RowMessage(0, [1.0, 1.0, 1.0]))
    failed: Future = Future()
    failed.set_exception(MemoryError())

    with pytest.raises(WorkerFailedError) as excinfo:
        engine._drain(results, [failed], collector)

    assert excinfo.value.rows_received == 2
    assert not collector.complete


@pytest.mark.slow
@pytest.mark.skipif(
    "fork" not in multiprocessing.get_all_start_methods(), reason="needs fork"
)
def test_pool_worker_exception_aborts_run(make_grid, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("boom")

    # Forked workers inherit the patched kernel
    fork_context = multiprocessing.get_context("fork")
    monkeypatch.setattr(engine, "compute_row", explode)
    monkeypatch.setattr(
        engine.multiprocessing, "get_context", lambda method=None: fork_context
    )
    grid = make_grid(np.zeros((6, 4)))

    with pytest.raises(WorkerFailedError) as excinfo:
        compute_fetch_grid(grid, 45.0, 0.05, workers=2)

    err = excinfo.value
    assert err.worker_id in (0, 1)
    assert err.rows_received == 0
    assert err.rows_expected == 6
    assert isinstance(err.__cause__, RuntimeError)
    assert "boom" in str(err.__cause__)


def test_drain_returns_once_all_rows_arrive(make_grid):
    collector = _collector(make_grid, rows=2)
    results: queue.Queue = queue.Queue()
    results.put(RowMessage(1, [0.0, 0.0, 0.0]))
    results.put(RowMessage(0, [0.0, 0.0, 0.0]))
    done: Future = Future()
    done.set_result(2)

    engine._drain(results, [done], collector)
    assert collector.complete


# ===========================================================================
# compute_fetch_grid
# ===========================================================================
def test_compute_in_process_matches_kernel(make_grid):
    grid = _random_grid(make_grid)
    result = compute_fetch_grid(grid, 135.0, 0.05, workers=1)

    geometry = build_ray_geometry(grid, 135.0)
    for row in range(grid.rows):
        assert result.data[row].tolist() == compute_row(grid, geometry, 0.05, row)


def test_compute_preserves_nodata_cells(make_grid):
    grid = _random_grid(make_grid)
    result = compute_fetch_grid(grid, 200.0, 0.05, workers=1)

    mask = grid.nodata_mask()
    assert np.all(result.data[mask] == NODATA)
    assert np.all(result.data[~mask] != NODATA)
    assert result.nodata == NODATA


@pytest.mark.slow
def test_worker_count_does_not_change_result(make_grid):
    grid = _random_grid(make_grid)

    single = compute_fetch_grid(grid, 300.0, 0.05, workers=1)
    pooled = compute_fetch_grid(grid, 300.0, 0.05, workers=2)

    np.testing.assert_array_equal(single.data, pooled.data)


@pytest.mark.slow
def test_more_workers_than_rows(make_grid):
    grid = make_grid(np.full((2, 4), 10.0))
    result = compute_fetch_grid(grid, 90.0, 0.05, workers=8)

    assert result.data[0].tolist() == pytest.approx([-3.0, -2.0, -1.0, 0.0])


def test_compute_records_metadata(make_grid):
    grid = make_grid(np.zeros((3, 3)))
    result = compute_fetch_grid(grid, 0.0, 0.1, workers=1, source_file="dem.tif")

    assert result.azimuth == 0.1
    assert result.height_increment == 0.1
    assert result.source_file == "dem.tif"
    assert result.elapsed_s >= 0.0
    assert result.metadata_tags()["INPUT_FILE"] == "dem.tif"


def test_compute_defaults(make_grid):
    grid = make_grid(np.zeros((2, 2)))
    result = compute_fetch_grid(grid, workers=1)

    assert result.azimuth == 0.1
    assert result.height_increment == 0.05


@pytest.mark.parametrize("height_increment", [-0.01, math.nan, math.inf])
def test_compute_rejects_bad_height_increment(make_grid, height_increment):
    grid = make_grid(np.zeros((2, 2)))
    with pytest.raises(InvalidFetchParametersError):
        compute_fetch_grid(grid, 45.0, height_increment, workers=1)


@pytest.mark.parametrize("workers", [0, -2])
def test_compute_rejects_bad_worker_count(make_grid, workers):
    grid = make_grid(np.zeros((2, 2)))
    with pytest.raises(InvalidFetchParametersError):
        compute_fetch_grid(grid, 45.0, 0.05, workers=workers)


def test_compute_rejects_nan_azimuth(make_grid):
    grid = make_grid(np.zeros((2, 2)))
    with pytest.raises(InvalidFetchParametersError):
        compute_fetch_grid(grid, math.nan, 0.05, workers=1)


def test_default_worker_count_is_positive():
    assert engine.default_worker_count() >= 1
