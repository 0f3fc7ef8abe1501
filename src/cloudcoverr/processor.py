"""
Per-detector debiasing pipeline.

Sequence for one detector:

1. Mask bad pixels (data-quality flags) and star cores (static PSF).
2. Infill the masked residual pixels and add synthetic sky noise.
3. Ask the covariance provider for the local covariance around each star
   far enough from the edges.
4. For each star: cut stamps, compose the pixel partition, and run the
   conditional estimator.
5. Append the statistics to the star catalog, in catalog row order.

The per-star loop has no dependency between stars; with ``workers > 1`` it
runs in a thread pool and results are reassembled in catalog order.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import numpy as np
from astropy.table import Table

from .config import FLAG_COLUMN, STAT_COLUMNS, DebiasConfig, StarFailure, StarFlag
from .covariance import CovarianceProvider, check_local_covariance
from .debias import StarStatistics, cond_cov_est_wdiag
from .errors import ConfigurationError, CovarianceError
from .infill import InfillResult, InfillScratch, prelim_infill
from .masking import gen_mask_static_psf, gen_pix_mask
from .noise import add_sky_noise
from .progress import create_progress_bar
from .psf import PSFModel
from .stamps import interior_stars, stamp_cutter

logger = logging.getLogger(__name__)

REQUIRED_CATALOG_COLUMNS = ("x", "y", "flux")


@dataclass
class DetectorInputs:
    """
    Everything the pipeline reads for one detector.

    Images share one shape. Catalog positions are 0-based array
    coordinates: ``x`` indexes axis 0 and ``y`` indexes axis 1.
    """

    name: str
    image: np.ndarray
    weight: np.ndarray
    dq: np.ndarray  # Data-quality flags, non-zero = bad pixel
    model: np.ndarray  # Photometric model, stars plus sky
    sky: np.ndarray  # Sky background model
    catalog: Table
    gain: float
    seed: int | None = None  # Noise seed, DebiasConfig.noise_seed when None

    def validate(self) -> None:
        """Raise ConfigurationError if the inputs are inconsistent."""
        shape = self.image.shape
        if len(shape) != 2:
            raise ConfigurationError(f"{self.name}: image must be 2D, got shape {shape}")
        for label in ("weight", "dq", "model", "sky"):
            other = getattr(self, label).shape
            if other != shape:
                raise ConfigurationError(
                    f"{self.name}: {label} shape {other} does not match image shape {shape}"
                )
        missing = [c for c in REQUIRED_CATALOG_COLUMNS if c not in self.catalog.colnames]
        if missing:
            raise ConfigurationError(f"{self.name}: catalog is missing columns {missing}")
        flux = np.asarray(self.catalog["flux"], dtype=np.float64)
        bad = ~np.isfinite(flux) | (flux <= 0)
        if np.any(bad):
            raise ConfigurationError(
                f"{self.name}: {int(bad.sum())} stars have zero, negative or non-finite flux"
            )
        if not np.isfinite(self.gain) or self.gain <= 0:
            raise ConfigurationError(f"{self.name}: gain must be positive, got {self.gain}")

    @property
    def shape(self) -> tuple[int, int]:
        return self.image.shape


@dataclass
class DetectorResult:
    """Output of ``process_ccd`` for one detector."""

    name: str
    catalog: Table
    infill: InfillResult
    n_interior: int
    failures: list[StarFailure] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True when the infill fell back to the median."""
        return self.infill.degraded

    @property
    def n_valid(self) -> int:
        flags = np.asarray(self.catalog[FLAG_COLUMN])
        return sum(StarFlag(int(f)).valid for f in flags)


def build_detector_mask(
    inputs: DetectorInputs,
    psf_model: PSFModel,
    config: DebiasConfig,
) -> np.ndarray:
    """Bad pixels plus star cores, using one PSF stamp at the detector center."""
    sx, sy = inputs.shape
    psf_static = np.asarray(psf_model(sx // 2, sy // 2, config.psf_static_size), dtype=np.float64)
    mask = np.asarray(inputs.dq) != 0
    gen_mask_static_psf(
        mask,
        psf_static,
        inputs.catalog["x"],
        inputs.catalog["y"],
        inputs.catalog["flux"],
        thr=config.thr,
    )
    return mask


def _debias_star(
    i: int,
    star_id: object,
    x: float,
    y: float,
    flux: float,
    resid: np.ndarray,
    inputs: DetectorInputs,
    mask: np.ndarray,
    psf_model: PSFModel,
    cov: np.ndarray,
    mean: np.ndarray,
    config: DebiasConfig,
) -> tuple[StarStatistics | None, StarFlag, str]:
    stamps = stamp_cutter(
        x, y, resid, inputs.weight, inputs.model, inputs.sky, mask, np_size=config.np_size
    )
    pix = gen_pix_mask(
        stamps.mask,
        psf_model,
        x,
        y,
        flux,
        np_size=config.np_size,
        thr=config.thr,
        flux_floor=config.flux_floor,
        boundary_margin=config.boundary_margin,
    )
    flag = StarFlag.BOUNDARY_CLEARED if pix.boundary_cleared else StarFlag.OK
    if pix.partition.n_psf == 0:
        return None, flag | StarFlag.EMPTY_PSF_MASK, "no pixels attributable to the star"

    try:
        stats = cond_cov_est_wdiag(
            cov[i],
            mean[i],
            pix.partition,
            stamps.data,
            stamps.weight,
            stamps.star,
            pix.psf,
        )
    except CovarianceError as e:
        e.star_id = star_id
        e.detector = inputs.name
        return None, flag | StarFlag.NOT_POSITIVE_DEFINITE, str(e)
    return stats, flag, ""


def process_ccd(
    inputs: DetectorInputs,
    psf_model: PSFModel,
    covariance: CovarianceProvider,
    config: DebiasConfig | None = None,
    show_progress: bool = False,
) -> DetectorResult:
    """
    Run the debiasing pipeline on one detector.

    Parameters
    ----------
    inputs : DetectorInputs
        Images, catalog and gain of the detector.
    psf_model : PSFModel
        Callable ``psf(x, y, size)``.
    covariance : CovarianceProvider
        Callable ``provider(image, x, y, np_size) -> (cov, mean)``.
    config : DebiasConfig, optional
        Pipeline configuration. Defaults are used if not given.
    show_progress : bool, default False
        Show a progress bar over stars.

    Returns
    -------
    DetectorResult
        The input catalog extended with ``STAT_COLUMNS`` and ``cer_flag``.
        Stars excluded near the edges or failing the estimator keep their
        row with NaN statistics and a non-zero flag.

    Raises
    ------
    ConfigurationError
        For invalid configuration or inputs, before any processing.
    """
    if config is None:
        config = DebiasConfig()
    config.validate()
    inputs.validate()

    name = inputs.name
    logger.info("Started %s", name)

    mask = build_detector_mask(inputs, psf_model, config)
    logger.debug("%s: %d masked pixels (%.2f%%)", name, mask.sum(), 100 * mask.mean())

    # Pixels masked here are zeroed in scratch.work, which is also the
    # residual the stamps are cut from
    resid = np.asarray(inputs.model, dtype=np.float64) - np.asarray(inputs.image, dtype=np.float64)
    scratch = InfillScratch.allocate(inputs.shape)
    infill = prelim_infill(
        resid,
        mask,
        scratch,
        width=config.infill_width,
        min_samples=config.infill_min_samples,
        growth=config.infill_growth,
        max_iters=config.infill_max_iters,
    )

    seed = config.noise_seed if inputs.seed is None else inputs.seed
    add_sky_noise(infill.image, mask, inputs.sky, inputs.gain, seed=seed)

    catalog = inputs.catalog
    x_all = np.asarray(catalog["x"], dtype=np.float64)
    y_all = np.asarray(catalog["y"], dtype=np.float64)
    flux_all = np.asarray(catalog["flux"], dtype=np.float64)
    n_stars = len(catalog)

    interior = interior_stars(x_all, y_all, inputs.shape, config.np_size)
    rows = np.flatnonzero(interior)
    logger.info("%s: %d of %d stars in the interior", name, rows.size, n_stars)

    stats = np.full((n_stars, len(STAT_COLUMNS)), np.nan)
    flags = np.full(n_stars, int(StarFlag.EDGE), dtype=np.int32)
    failures: list[StarFailure] = []
    ids = catalog[config.id_column] if config.id_column in catalog.colnames else np.arange(n_stars)

    if rows.size:
        cov, mean = covariance(infill.image, x_all[rows], y_all[rows], config.np_size)
        cov, mean = check_local_covariance(cov, mean, rows.size, config.np_size)

        def run(i: int):
            r = rows[i]
            return _debias_star(
                i, ids[r], x_all[r], y_all[r], flux_all[r],
                scratch.work, inputs, mask, psf_model, cov, mean, config,
            )

        pbar = create_progress_bar(
            total=rows.size, desc=f"Debiasing {name}", unit="star", disable=not show_progress
        )
        with pbar:
            if config.workers > 1:
                with ThreadPoolExecutor(max_workers=config.workers) as executor:
                    results = []
                    for res in executor.map(run, range(rows.size)):
                        results.append(res)
                        pbar.update(1)
            else:
                results = []
                for i in range(rows.size):
                    results.append(run(i))
                    pbar.update(1)

        for r, (star_stats, flag, detail) in zip(rows, results):
            flags[r] = int(flag)
            if star_stats is not None:
                stats[r] = star_stats.as_row()
                continue
            failures.append(StarFailure(row=int(r), star_id=ids[r], flag=flag, detail=detail))
            if flag & StarFlag.NOT_POSITIVE_DEFINITE:
                logger.warning("%s: star %s (row %d) skipped: %s", name, ids[r], r, detail)
            else:
                logger.debug("%s: star %s (row %d) skipped: %s", name, ids[r], r, detail)

    out = catalog.copy()
    for j, col in enumerate(STAT_COLUMNS):
        out[col] = stats[:, j]
    out[FLAG_COLUMN] = flags

    if failures:
        logger.warning("%s: %d stars without statistics", name, len(failures))
    if infill.degraded:
        logger.warning("%s: infill degraded (%d pixels from median)", name, infill.n_unresolved)
    logger.info("Finished %s", name)

    return DetectorResult(
        name=name,
        catalog=out,
        infill=infill,
        n_interior=int(rows.size),
        failures=failures,
    )
