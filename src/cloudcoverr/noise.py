"""
Synthetic sky noise for infilled pixels.

Infilled pixels are smooth by construction. Before the covariance of the
residual image is estimated they receive a Poisson realization matching the
photon noise of the local sky background.
"""

from __future__ import annotations

import logging

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def add_sky_noise(
    image: np.ndarray,
    mask: np.ndarray,
    sky: np.ndarray,
    gain: float,
    seed: int = 2021,
) -> int:
    """
    Replace infilled pixels with a Poisson draw around the sky background.

    For each masked pixel, ``n ~ Poisson(gain * (sky - image))`` and the
    pixel becomes ``sky - n / gain``. Pixels outside ``mask`` are untouched.

    Parameters
    ----------
    image : np.ndarray
        Infilled image, modified in place.
    mask : np.ndarray
        Boolean image of pixels that were infilled.
    sky : np.ndarray
        Rough estimate of the sky background.
    gain : float
        Detector gain converting image units to photon counts.
    seed : int, default 2021
        Seed of the local random generator. The same seed always gives the
        same output.

    Returns
    -------
    int
        Number of pixels replaced.
    """
    if not (image.shape == mask.shape == sky.shape):
        raise ConfigurationError(
            f"Shapes differ: image {image.shape}, mask {mask.shape}, sky {sky.shape}"
        )
    if not np.isfinite(gain) or gain <= 0:
        raise ConfigurationError(f"gain must be positive, got {gain}")

    rng = np.random.default_rng(seed)
    mask = np.asarray(mask, dtype=bool)
    sky_m = np.asarray(sky, dtype=np.float64)[mask]

    lam = gain * (sky_m - image[mask])
    n_negative = int(np.count_nonzero(lam < 0))
    if n_negative:
        logger.warning("Clipped %d negative Poisson means to zero", n_negative)
        np.clip(lam, 0.0, None, out=lam)

    image[mask] = sky_m - rng.poisson(lam) / gain
    return int(sky_m.size)
