"""
Configuration dataclasses for the cloudcoverr debiasing pipeline.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntFlag

from .errors import ConfigurationError

# Output columns appended to the star catalog, in StarStatistics.as_row() order
STAT_COLUMNS = ("dcflux", "dcflux_diag", "dfdb", "fdb", "fdb_res", "fdb_pred", "gchi2")
FLAG_COLUMN = "cer_flag"


class StarFlag(IntFlag):
    """Per-star status bits written to the ``cer_flag`` column."""

    OK = 0
    EDGE = 1  # Too close to the detector edge for a full stamp
    NOT_POSITIVE_DEFINITE = 2  # Conditional estimator failed (Cholesky)
    EMPTY_PSF_MASK = 4  # No pixels attributable to the star
    BOUNDARY_CLEARED = 8  # Stamp border un-masked by the mask budget policy

    @property
    def valid(self) -> bool:
        """True when the statistics of the row were computed."""
        return not (self & (StarFlag.EDGE | StarFlag.NOT_POSITIVE_DEFINITE | StarFlag.EMPTY_PSF_MASK))


@dataclass
class DebiasConfig:
    """
    Configuration for the per-detector debiasing pipeline.

    All parameters are explicitly documented and have sensible defaults
    for DECam exposures reduced with crowdsource.
    """

    # --- Masking ---
    thr: float = 20.0
    """Flux-normalized PSF threshold: pixels with psf > thr/flux are masked."""

    flux_floor: float = 1e4
    """Fluxes below this floor use the floor for the per-star PSF mask."""

    psf_static_size: int = 511
    """Size of the single PSF stamp used for the detector-wide star mask (odd)."""

    # --- Stamps ---
    np_size: int = 33
    """Side of the local covariance patch around each star (odd, >= 3)."""

    boundary_margin: int = 128
    """Masked-pixel budget is np_size**2 - boundary_margin before the border is cleared."""

    # --- Infill ---
    infill_width: int = 19
    """Initial boxcar width for the preliminary infill."""

    infill_min_samples: int = 10
    """A pixel is resolved once its boxcar holds more than this many unmasked samples."""

    infill_growth: float = 1.4
    """Geometric growth of the boxcar width between infill rounds."""

    infill_max_iters: int = 10
    """Maximum number of infill rounds before the median fallback."""

    # --- Noise ---
    noise_seed: int = 2021
    """Seed for the sky noise injection when no exposure seed is available."""

    # --- Parallelism ---
    workers: int = 1
    """Threads used for the per-star loop (1 = sequential)."""

    # --- Catalog ---
    id_column: str = "decapsid"
    """Catalog column holding the survey identifier of each star."""

    def validate(self) -> None:
        """Validate configuration parameters."""
        if self.np_size < 3 or self.np_size % 2 == 0:
            raise ConfigurationError(f"np_size must be odd and >= 3, got {self.np_size}")
        if self.psf_static_size < 3 or self.psf_static_size % 2 == 0:
            raise ConfigurationError(
                f"psf_static_size must be odd and >= 3, got {self.psf_static_size}"
            )
        if not math.isfinite(self.thr) or self.thr <= 0:
            raise ConfigurationError(f"thr must be positive, got {self.thr}")
        if not math.isfinite(self.flux_floor) or self.flux_floor <= 0:
            raise ConfigurationError(f"flux_floor must be positive, got {self.flux_floor}")
        if not 0 <= self.boundary_margin < self.np_size**2:
            raise ConfigurationError(
                f"boundary_margin must be in [0, np_size**2), got {self.boundary_margin}"
            )
        if self.infill_width < 1:
            raise ConfigurationError(f"infill_width must be >= 1, got {self.infill_width}")
        if self.infill_min_samples < 0:
            raise ConfigurationError(
                f"infill_min_samples must be >= 0, got {self.infill_min_samples}"
            )
        if self.infill_growth <= 1.0:
            raise ConfigurationError(f"infill_growth must be > 1, got {self.infill_growth}")
        if self.infill_max_iters < 1:
            raise ConfigurationError(
                f"infill_max_iters must be >= 1, got {self.infill_max_iters}"
            )
        if self.workers < 1:
            raise ConfigurationError(f"workers must be >= 1, got {self.workers}")

    @property
    def mask_budget(self) -> int:
        """Masked-pixel count above which the stamp border policy applies."""
        return self.np_size**2 - self.boundary_margin


@dataclass
class StarFailure:
    """Record of a star whose statistics could not be computed."""

    row: int
    star_id: object
    flag: StarFlag
    detail: str = ""


@dataclass
class ExposureResult:
    """
    Result of processing all detectors of one exposure.

    Contains the bookkeeping needed to resume or audit a run.
    """

    output_path: str
    """Path of the output catalog file."""

    processed: list[str] = field(default_factory=list)
    """Detectors processed and written in this run."""

    skipped: list[str] = field(default_factory=list)
    """Detectors already present in the output file (resume mode)."""

    failed: dict[str, str] = field(default_factory=dict)
    """Detectors that raised, mapped to the error message."""

    degraded: list[str] = field(default_factory=list)
    """Detectors whose infill fell back to the median (subset of processed)."""

    star_failures: dict[str, int] = field(default_factory=dict)
    """Number of per-star failures for each processed detector."""

    timestamp: str = ""
    """UTC start time of the run (ISO 8601)."""
