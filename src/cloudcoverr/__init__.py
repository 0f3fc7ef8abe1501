"""
cloudcoverr - Debiasing crowded-field photometry for structured backgrounds.

Estimates and removes the bias in stellar fluxes caused by spatially
correlated background residuals, and produces corrected flux uncertainties
for every star of a detector, by conditioning a local pixel covariance on
the unmasked pixels around each star.

Example
-------
>>> from cloudcoverr import DebiasConfig, DetectorInputs, GaussianPSF, process_ccd
>>> inputs = DetectorInputs(name="N14", image=im, weight=w, dq=dq, model=mod,
...                         sky=sky, catalog=cat, gain=4.0)
>>> result = process_ccd(inputs, GaussianPSF(1.5), my_covariance, DebiasConfig())
>>> result.catalog["dcflux"]
"""

from .config import (
    FLAG_COLUMN,
    STAT_COLUMNS,
    DebiasConfig,
    ExposureResult,
    StarFailure,
    StarFlag,
)
from .errors import ConfigurationError, CovarianceError
from .utils import __version__, __version_info__, exposure_seed, get_version_banner

# Capability interfaces
from .covariance import CovarianceProvider, check_local_covariance
from .psf import GaussianPSF, PSFModel, load_crowdsource_psf

# Pipeline stages
from .masking import PixelMask, PixelPartition, gen_mask_static_psf, gen_pix_mask
from .infill import InfillResult, InfillScratch, prelim_infill
from .noise import add_sky_noise
from .stamps import Stamps, interior_stars, stamp_cutter
from .debias import (
    ConditionalPrediction,
    StarStatistics,
    cond_cov_est_wdiag,
    conditional_prediction,
)

# Detector and exposure drivers
from .processor import DetectorInputs, DetectorResult, process_ccd
from .io import (
    DecapsPaths,
    get_catnames,
    load_detector,
    read_crowdsource,
    read_decam,
    write_catalog,
)
from .pipeline import process_exposure

__all__ = [
    # Version
    "__version__",
    "__version_info__",
    "get_version_banner",
    "exposure_seed",
    # Config
    "DebiasConfig",
    "ExposureResult",
    "StarFailure",
    "StarFlag",
    "STAT_COLUMNS",
    "FLAG_COLUMN",
    # Errors
    "ConfigurationError",
    "CovarianceError",
    # Interfaces
    "CovarianceProvider",
    "check_local_covariance",
    "PSFModel",
    "GaussianPSF",
    "load_crowdsource_psf",
    # Masking
    "gen_mask_static_psf",
    "gen_pix_mask",
    "PixelMask",
    "PixelPartition",
    # Infill and noise
    "prelim_infill",
    "InfillScratch",
    "InfillResult",
    "add_sky_noise",
    # Stamps
    "stamp_cutter",
    "interior_stars",
    "Stamps",
    # Debiasing
    "cond_cov_est_wdiag",
    "conditional_prediction",
    "ConditionalPrediction",
    "StarStatistics",
    # Drivers
    "DetectorInputs",
    "DetectorResult",
    "process_ccd",
    "process_exposure",
    # I/O
    "DecapsPaths",
    "read_decam",
    "read_crowdsource",
    "load_detector",
    "get_catnames",
    "write_catalog",
]
