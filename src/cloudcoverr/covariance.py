"""
Local covariance capability interface.

The raw covariance model is not part of this package: a provider estimates,
for each star, the covariance and mean of the ``np_size x np_size`` patch
around it from the infilled residual image. Patches are flattened in C
(row-major) order, matching ``numpy.ravel``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np

from .errors import ConfigurationError


@runtime_checkable
class CovarianceProvider(Protocol):
    """
    Callable ``provider(image, x, y, np_size) -> (cov, mean)``.

    ``cov`` has shape ``(n_stars, np_size**2, np_size**2)`` and ``mean``
    has shape ``(n_stars, np_size**2)``, indexed like ``x`` and ``y``.
    """

    def __call__(
        self,
        image: np.ndarray,
        x: np.ndarray,
        y: np.ndarray,
        np_size: int,
    ) -> tuple[np.ndarray, np.ndarray]:
        ...


def check_local_covariance(
    cov: np.ndarray,
    mean: np.ndarray,
    n_stars: int,
    np_size: int,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Validate the output of a covariance provider.

    Returns
    -------
    tuple[np.ndarray, np.ndarray]
        ``(cov, mean)`` as float arrays (no copy when already float).
    """
    npix = np_size * np_size
    cov = np.asarray(cov, dtype=np.float64)
    mean = np.asarray(mean, dtype=np.float64)
    if cov.shape != (n_stars, npix, npix):
        raise ConfigurationError(
            f"Local covariance must have shape {(n_stars, npix, npix)}, got {cov.shape}"
        )
    if mean.shape != (n_stars, npix):
        raise ConfigurationError(
            f"Local mean must have shape {(n_stars, npix)}, got {mean.shape}"
        )
    return cov, mean
