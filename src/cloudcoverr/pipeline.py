"""
Multi-detector driver for one DECaPS exposure.

Detectors are independent: each one is read, processed and returned by its
own task, and the parent process writes the results to the output catalog
as they arrive. A failure in one detector is logged and recorded without
stopping the others.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from concurrent.futures import ProcessPoolExecutor, as_completed
from functools import partial

from .config import DebiasConfig, ExposureResult
from .covariance import CovarianceProvider
from .io import (
    DecapsPaths,
    catalog_detectors,
    init_output,
    load_detector,
    read_primary_header,
    write_catalog,
)
from .processor import DetectorResult, process_ccd
from .progress import create_progress_bar
from .psf import PSFModel, load_crowdsource_psf
from .utils import __version__, get_platform_info, get_timestamp_iso

logger = logging.getLogger(__name__)

# Leave one CPU free for the writer
DEFAULT_WORKERS = max(1, os.cpu_count() - 1) if os.cpu_count() else 4

PSFLoader = Callable[[DecapsPaths, str, str], PSFModel]


def crowdsource_psf_loader(paths: DecapsPaths, ccd: str, filt: str) -> PSFModel:
    """Default PSF loader: the crowdsource model stored with the catalog."""
    return load_crowdsource_psf(paths.catalog, ccd, filt)


def process_detector(
    paths: DecapsPaths,
    ccd: str,
    date: str,
    filt: str,
    covariance: CovarianceProvider,
    config: DebiasConfig,
    psf_loader: PSFLoader = crowdsource_psf_loader,
) -> DetectorResult:
    """Load and process one detector (picklable entry point for worker processes)."""
    inputs = load_detector(paths, ccd, date)
    psf_model = psf_loader(paths, ccd, filt)
    return process_ccd(inputs, psf_model, covariance, config)


def select_detectors(
    available: Sequence[str],
    done: Sequence[str] = (),
    ccds: Sequence[str] | None = None,
) -> tuple[list[str], list[str]]:
    """
    Decide which detectors to run.

    Returns
    -------
    tuple[list[str], list[str]]
        ``(todo, skipped)``: detectors to process in catalog order, and
        detectors skipped because they are already done.
    """
    skipped = [c for c in available if c in done]
    todo = [c for c in available if c not in done]
    if skipped:
        logger.info("Skipping detectors already completed: %s", ", ".join(skipped))
    if ccds:
        todo = [c for c in todo if c in ccds]
        logger.info("Only running unfinished detectors in list: %s", ", ".join(todo))
    return todo, skipped


def process_exposure(
    paths: DecapsPaths,
    covariance: CovarianceProvider,
    date: str,
    filt: str,
    ccds: Sequence[str] | None = None,
    resume: bool = False,
    config: DebiasConfig | None = None,
    psf_loader: PSFLoader = crowdsource_psf_loader,
    workers: int | None = 1,
    show_progress: bool = True,
) -> ExposureResult:
    """
    Process every detector of an exposure and write the output catalog.

    Parameters
    ----------
    paths : DecapsPaths
        Exposure input and output paths.
    covariance : CovarianceProvider
        Local covariance provider. Must be picklable when ``workers > 1``.
    date : str
        Exposure date (``YYMMDD_HHMMSS``), also used to seed the sky noise.
    filt : str
        Optical filter.
    ccds : sequence of str, optional
        Restrict processing to these detectors.
    resume : bool, default False
        Keep an existing output file and skip detectors it already holds.
    config : DebiasConfig, optional
        Pipeline configuration.
    psf_loader : callable, optional
        ``loader(paths, ccd, filt) -> PSFModel``. Defaults to crowdsource.
    workers : int or None, default 1
        Detector-level worker processes. None uses CPU count - 1.
    show_progress : bool, default True
        Show a progress bar over detectors.

    Returns
    -------
    ExposureResult
        Processed, skipped, failed and degraded detectors.
    """
    if config is None:
        config = DebiasConfig()
    config.validate()
    if workers is None:
        workers = DEFAULT_WORKERS

    logger.info("Starting to process %s", paths.catalog)
    available = catalog_detectors(paths.catalog)
    header = read_primary_header(paths.catalog)
    timestamp = get_timestamp_iso()
    header["CERVERS"] = (__version__, "cloudcoverr version")
    header["CERDATE"] = (timestamp, "cloudcoverr run start (UTC)")
    header["CERPLAT"] = (get_platform_info(), "cloudcoverr platform")
    done = init_output(paths.output, header=header, resume=resume)
    todo, skipped = select_detectors(available, done, ccds)

    result = ExposureResult(output_path=str(paths.output), skipped=skipped, timestamp=timestamp)
    task = partial(
        process_detector,
        paths,
        date=date,
        filt=filt,
        covariance=covariance,
        config=config,
        psf_loader=psf_loader,
    )

    def collect(ccd: str, detector: DetectorResult) -> None:
        write_catalog(paths.output, detector.catalog, ccd)
        result.processed.append(ccd)
        result.star_failures[ccd] = len(detector.failures)
        if detector.degraded:
            result.degraded.append(ccd)

    pbar = create_progress_bar(
        total=len(todo), desc="Detectors", unit="ccd", disable=not show_progress
    )
    with pbar:
        if workers <= 1 or len(todo) < 2:
            for ccd in todo:
                try:
                    collect(ccd, task(ccd))
                except Exception as e:
                    logger.exception("Detector %s failed: %s", ccd, e)
                    result.failed[ccd] = str(e)
                pbar.update(1)
        else:
            with ProcessPoolExecutor(max_workers=workers) as executor:
                futures = {executor.submit(task, ccd): ccd for ccd in todo}
                for future in as_completed(futures):
                    ccd = futures[future]
                    try:
                        collect(ccd, future.result())
                    except Exception as e:
                        logger.exception("Detector %s failed: %s", ccd, e)
                        result.failed[ccd] = str(e)
                    pbar.update(1)

    if result.degraded:
        logger.warning(
            "Infill degraded on %d detectors: %s", len(result.degraded), ", ".join(result.degraded)
        )
    if result.failed:
        logger.warning("%d detectors failed: %s", len(result.failed), ", ".join(result.failed))
    logger.info(
        "Exposure done: %d processed, %d skipped, %d failed",
        len(result.processed), len(result.skipped), len(result.failed),
    )
    return result
