"""
Point-spread-function capability interface.

The debiasing core only needs a callable returning a square PSF amplitude
stamp for a star position. ``GaussianPSF`` is a circular analytic model used
for synthetic data; ``load_crowdsource_psf`` adapts the position dependent
model fitted by crowdsource.
"""

from __future__ import annotations

import logging
import os
from functools import partial
from pathlib import Path
from typing import Protocol, runtime_checkable

import numpy as np
from astropy.io import fits

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Default DECam calibration directory used by crowdsource
DEFAULT_DECAM_DIR = "/n/home13/schlafly/decam"


@runtime_checkable
class PSFModel(Protocol):
    """Callable ``psf(x, y, size)`` returning a ``size x size`` amplitude stamp."""

    def __call__(self, x: float, y: float, size: int) -> np.ndarray:
        ...


def check_stamp_size(size: int) -> int:
    """Return ``size`` as int, raising ConfigurationError if it is not odd and positive."""
    size = int(size)
    if size < 1 or size % 2 == 0:
        raise ConfigurationError(f"PSF stamp size must be odd and positive, got {size}")
    return size


class GaussianPSF:
    """
    Circularly symmetric Gaussian PSF.

    The stamp is centered on the nearest pixel to ``(x, y)`` and the
    sub-pixel offset is carried by the profile, so that the stamp aligns
    with a stamp cut at the rounded star position.

    Parameters
    ----------
    sigma : float
        Gaussian width in pixels.
    normalize : {"analytic", "sum"}, default "analytic"
        "analytic" uses the continuous 1/(2 pi sigma^2) amplitude,
        "sum" rescales each stamp to unit sum.
    """

    def __init__(self, sigma: float, normalize: str = "analytic"):
        if sigma <= 0:
            raise ConfigurationError(f"sigma must be positive, got {sigma}")
        if normalize not in ("analytic", "sum"):
            raise ConfigurationError(f"Unknown normalization: {normalize}")
        self.sigma = float(sigma)
        self.normalize = normalize

    def __call__(self, x: float, y: float, size: int) -> np.ndarray:
        size = check_stamp_size(size)
        half = (size - 1) // 2
        dx = x - np.rint(x)
        dy = y - np.rint(y)
        offsets = np.arange(-half, half + 1, dtype=np.float64)
        gx = np.exp(-((offsets - dx) ** 2) / (2 * self.sigma**2))
        gy = np.exp(-((offsets - dy) ** 2) / (2 * self.sigma**2))
        stamp = np.outer(gx, gy)
        if self.normalize == "sum":
            return stamp / stamp.sum()
        return stamp / (2 * np.pi * self.sigma**2)

    def __repr__(self) -> str:
        return f"GaussianPSF(sigma={self.sigma}, normalize={self.normalize!r})"


class CrowdsourcePSF:
    """
    Adapter around a crowdsource PSF model.

    crowdsource stamps use the same 0-based (axis 0, axis 1) convention as
    the arrays read by astropy, so positions are passed through unchanged.
    """

    def __init__(self, model):
        self._model = model

    def __call__(self, x: float, y: float, size: int) -> np.ndarray:
        size = check_stamp_size(size)
        stamp = np.asarray(self._model(x, y, size), dtype=np.float64)
        if stamp.shape != (size, size):
            # array positions come back as a (1, size, size) stack
            stamp = stamp.reshape(size, size)
        return stamp


def load_crowdsource_psf(
    catalog_path: str | Path,
    ccd: str,
    filt: str,
    pixsz: int = 9,
) -> CrowdsourcePSF:
    """
    Load the position dependent PSF fitted by crowdsource for one detector.

    Parameters
    ----------
    catalog_path : str or Path
        crowdsource catalog file holding the ``{ccd}_PSF`` extension.
    ccd : str
        Detector name.
    filt : str
        Optical filter of the exposure.
    pixsz : int, default 9
        Pixel size of the linear static wing fit.

    Returns
    -------
    CrowdsourcePSF
        Callable ``psf(x, y, size)``.

    Notes
    -----
    Requires the optional ``crowdsourcephoto`` distribution
    (``pip install cloudcoverr[crowdsource]``).
    """
    try:
        import crowdsource.psf as psfmod
    except ImportError as e:
        raise ImportError(
            "crowdsource is required to load detector PSFs; "
            "install it with `pip install cloudcoverr[crowdsource]`"
        ) from e

    os.environ.setdefault("DECAM_DIR", DEFAULT_DECAM_DIR)

    with fits.open(catalog_path) as hdul:
        record = hdul[f"{ccd}_PSF"].data[0]
        model = psfmod.linear_static_wing_from_record(record, filter=filt)
    model.fitfun = partial(psfmod.fit_linear_static_wing, filter=filt, pixsz=pixsz)

    logger.debug("Loaded crowdsource PSF for %s (%s) from %s", ccd, filt, catalog_path)
    return CrowdsourcePSF(model)
