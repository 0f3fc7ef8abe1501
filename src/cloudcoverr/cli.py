"""
Command-line interface for the cloudcoverr debiasing pipeline.

Usage:
    python -m cloudcoverr run <base> <date> <filt> <vers> <basecat> --covariance module:provider
    cloudcoverr detectors <catalog.fits>

The covariance provider is not part of this package; it is imported from a
``module:attribute`` reference. A class is instantiated without arguments.
"""

from __future__ import annotations

import argparse
import importlib
import logging
import time

from .cli_output import (
    print_error,
    print_header,
    print_info,
    print_metric,
    print_path,
    print_success,
    print_warning,
)
from .config import DebiasConfig
from .covariance import CovarianceProvider
from .io import DecapsPaths, catalog_detectors
from .pipeline import process_exposure
from .utils import format_duration, get_version, get_version_banner

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%H:%M:%S",
    )


def load_provider(reference: str) -> CovarianceProvider:
    """
    Import a covariance provider from ``module:attribute``.

    Raises
    ------
    ValueError
        If the reference is malformed or the object is not callable.
    """
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Expected 'module:attribute', got {reference!r}")
    obj = getattr(importlib.import_module(module_name), attr)
    if isinstance(obj, type):
        obj = obj()
    if not callable(obj):
        raise ValueError(f"{reference} is not callable")
    return obj


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="cloudcoverr",
        description="Debias crowded-field photometry for structured background residuals",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"cloudcoverr {get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Process the detectors of one exposure")
    run_parser.add_argument("base", help="Directory and file prefix of the exposure images")
    run_parser.add_argument("date", help="Exposure date (YYMMDD_HHMMSS)")
    run_parser.add_argument("filt", help="Optical filter")
    run_parser.add_argument("vers", help="Community pipeline version (e.g. v1)")
    run_parser.add_argument("basecat", help="Root directory of the crowdsource outputs")
    run_parser.add_argument(
        "--covariance",
        required=True,
        help="Covariance provider as module:attribute",
    )
    run_parser.add_argument(
        "--ccd",
        action="append",
        default=None,
        help="Only process this detector (repeatable)",
    )
    run_parser.add_argument(
        "--resume",
        action="store_true",
        help="Skip detectors already in the output catalog",
    )
    run_parser.add_argument(
        "--thr",
        type=float,
        default=20.0,
        help="Flux-normalized PSF masking threshold (default: 20)",
    )
    run_parser.add_argument(
        "--np-size",
        type=int,
        default=33,
        help="Local covariance patch size, odd (default: 33)",
    )
    run_parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Detector worker processes (default: 1)",
    )
    run_parser.add_argument(
        "--star-workers",
        type=int,
        default=1,
        help="Threads for the per-star loop (default: 1)",
    )
    run_parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    run_parser.add_argument("-q", "--quiet", action="store_true", help="No progress bars")

    det_parser = subparsers.add_parser("detectors", help="List detectors of a catalog file")
    det_parser.add_argument("catalog", help="crowdsource or output catalog file")

    return parser


def main() -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == "detectors":
        try:
            names = catalog_detectors(args.catalog)
        except OSError as e:
            print_error(f"Cannot read {args.catalog}: {e}")
            return 1
        for name in names:
            print(name)
        return 0

    setup_logging(args.verbose)
    logger.info(get_version_banner())

    config = DebiasConfig(thr=args.thr, np_size=args.np_size, workers=args.star_workers)
    paths = DecapsPaths.from_exposure(args.base, args.date, args.filt, args.vers, args.basecat)

    t0 = time.time()
    try:
        config.validate()
        provider = load_provider(args.covariance)
        result = process_exposure(
            paths,
            provider,
            date=args.date,
            filt=args.filt,
            ccds=args.ccd,
            resume=args.resume,
            config=config,
            workers=args.workers,
            show_progress=not args.quiet,
        )
    except Exception as e:
        print_error(f"Processing failed: {e}")
        logger.exception("Processing failed: %s", e)
        return 1

    print_header(f"Exposure {args.date} ({args.filt})")
    print_path("Output", result.output_path)
    print_metric("Processed", len(result.processed), "detectors")
    print_metric("Skipped", len(result.skipped), "detectors")
    print_metric("Star failures", sum(result.star_failures.values()))
    print_metric("Elapsed", format_duration(time.time() - t0))
    if result.degraded:
        print_warning(f"Infill degraded: {', '.join(result.degraded)}")
    if result.failed:
        for ccd, msg in result.failed.items():
            print_error(f"{ccd}: {msg}")
        return 1
    if not result.processed:
        print_info("Nothing to do")
    else:
        print_success("Done")
    return 0
