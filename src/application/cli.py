"""Command-line entry point for fetch analysis.

Usage:
    fetch-analysis -i dem.tif -o fetch.tif --azimuth=315.0 --hgt_inc=0.05 -v
    fetch-analysis --wd=/data/ --dem=dem.tif --output=fetch.tif

Exit codes:
    0 on success, 1 on any input, computation or output failure
"""

from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError

from application.fetch_analysis import FetchAnalysisParameters, run_fetch_analysis
from domain.exposure.errors import FetchError
from domain.exposure.geometry import DEFAULT_AZIMUTH, DEFAULT_HEIGHT_INCREMENT
from domain.terrain.errors import TerrainError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fetch-analysis",
        description="Performs an analysis of fetch or upwind distance to an obstacle.",
    )
    parser.add_argument(
        "-i",
        "--input",
        "--dem",
        dest="input",
        required=True,
        help="Input raster DEM file.",
    )
    parser.add_argument(
        "-o", "--output", dest="output", required=True, help="Output raster file."
    )
    parser.add_argument(
        "--azimuth",
        type=float,
        default=DEFAULT_AZIMUTH,
        help="Wind azimuth in degrees clockwise from north.",
    )
    parser.add_argument(
        "--hgt_inc",
        dest="height_increment",
        type=float,
        default=DEFAULT_HEIGHT_INCREMENT,
        help="Height increment value.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker processes (default: one per CPU).",
    )
    parser.add_argument(
        "--wd", dest="working_directory", default=None, help="Working directory."
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Report progress."
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, run the analysis and return a process exit code."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING, format=LOG_FORMAT
    )

    try:
        params = FetchAnalysisParameters(
            input_path=Path(args.input),
            output_path=Path(args.output),
            azimuth=args.azimuth,
            height_increment=args.height_increment,
            workers=args.workers,
            working_directory=(
                Path(args.working_directory) if args.working_directory else None
            ),
        )
    except ValidationError as e:
        logger.error("Invalid parameters: %s", e)
        return 1

    try:
        run_fetch_analysis(params)
    except FileNotFoundError as e:
        logger.error("Input file not found: %s", Path(str(e)).name)
        return 1
    except (TerrainError, FetchError, OSError) as e:
        logger.error("Fetch analysis failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
