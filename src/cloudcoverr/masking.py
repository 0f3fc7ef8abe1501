"""
Bad-pixel and star-core masks.

Two masks are built from the PSF at a flux-dependent threshold:

- A detector-wide mask (``gen_mask_static_psf``) using one PSF stamp for
  every star, which excludes mismodeled star cores from the residual image
  before infilling and covariance estimation.
- A per-star pixel partition (``gen_pix_mask``) over the local covariance
  patch, which separates the known pixels from the masked ones and marks the
  subset attributable to the star itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .errors import ConfigurationError
from .psf import PSFModel, check_stamp_size

logger = logging.getLogger(__name__)


def gen_mask_static_psf(
    mask: np.ndarray,
    psf_stamp: np.ndarray,
    x_stars: np.ndarray,
    y_stars: np.ndarray,
    flux_stars: np.ndarray,
    thr: float = 20.0,
) -> None:
    """
    Add star cores to a detector mask using a single PSF stamp.

    For each star, pixels of the PSF footprint where the stamp exceeds
    ``thr / |flux|`` are OR-ed into ``mask``. Footprints are clipped to the
    image independently along both axes, so stars near (or beyond) the edge
    are handled without out-of-range access.

    Parameters
    ----------
    mask : np.ndarray
        Boolean image, modified in place (bitwise or).
    psf_stamp : np.ndarray
        2D PSF stamp with odd dimensions, used for the whole detector.
    x_stars, y_stars : np.ndarray
        Star positions (axis 0, axis 1), rounded to the nearest pixel.
    flux_stars : np.ndarray
        Star fluxes. Must be non-zero.
    thr : float, default 20.0
        Flux-normalized masking threshold.
    """
    if mask.ndim != 2 or mask.dtype != bool:
        raise ConfigurationError(f"mask must be a 2D boolean array, got {mask.dtype} {mask.shape}")
    if psf_stamp.ndim != 2:
        raise ConfigurationError(f"psf_stamp must be 2D, got shape {psf_stamp.shape}")
    psx, psy = psf_stamp.shape
    check_stamp_size(psx)
    check_stamp_size(psy)

    flux_stars = np.asarray(flux_stars, dtype=np.float64)
    if np.any(flux_stars == 0) or not np.all(np.isfinite(flux_stars)):
        raise ConfigurationError("Star fluxes must be finite and non-zero for PSF masking")

    sx, sy = mask.shape
    hx = (psx - 1) // 2
    hy = (psy - 1) // 2

    cxs = np.rint(np.asarray(x_stars, dtype=np.float64)).astype(np.int64)
    cys = np.rint(np.asarray(y_stars, dtype=np.float64)).astype(np.int64)

    for cx, cy, flux in zip(cxs, cys, flux_stars):
        # Overlap of the stamp footprint with the image, in image coordinates
        x0, x1 = max(0, cx - hx), min(sx, cx + hx + 1)
        y0, y1 = max(0, cy - hy), min(sy, cy + hy + 1)
        if x0 >= x1 or y0 >= y1:
            continue
        above = psf_stamp[x0 - (cx - hx):x1 - (cx - hx), y0 - (cy - hy):y1 - (cy - hy)] > thr / abs(flux)
        mask[x0:x1, y0:y1] |= above


@dataclass(frozen=True)
class PixelPartition:
    """
    Partition of a flattened local patch into known and masked pixels.

    ``known`` and ``star_masked`` are complementary over the patch, and
    ``psf_masked`` is a subset of ``star_masked``. Vectors are flattened in
    C order and read-only.
    """

    star_masked: np.ndarray
    psf_masked: np.ndarray
    shape: tuple[int, int]

    def __post_init__(self):
        star = np.array(self.star_masked, dtype=bool).ravel()
        psf = np.array(self.psf_masked, dtype=bool).ravel()
        star.flags.writeable = False
        psf.flags.writeable = False
        object.__setattr__(self, "star_masked", star)
        object.__setattr__(self, "psf_masked", psf)
        object.__setattr__(self, "shape", tuple(self.shape))
        self.check()

    @classmethod
    def from_masks(cls, masked2d: np.ndarray, psf2d: np.ndarray) -> PixelPartition:
        """Build the partition from a local mask and a PSF mask of equal shape."""
        masked2d = np.asarray(masked2d, dtype=bool)
        psf2d = np.asarray(psf2d, dtype=bool)
        if masked2d.shape != psf2d.shape:
            raise ConfigurationError(
                f"Mask shapes differ: {masked2d.shape} vs {psf2d.shape}"
            )
        return cls(star_masked=masked2d | psf2d, psf_masked=psf2d, shape=masked2d.shape)

    def check(self) -> None:
        """Raise ConfigurationError if the partition invariants do not hold."""
        npix = self.shape[0] * self.shape[1]
        if self.star_masked.size != npix or self.psf_masked.size != npix:
            raise ConfigurationError(
                f"Partition vectors must have {npix} entries for shape {self.shape}"
            )
        if np.any(self.psf_masked & ~self.star_masked):
            raise ConfigurationError("psf_masked pixels must be a subset of star_masked")
        known = self.known
        if np.any(known & self.star_masked) or not np.all(known | self.star_masked):
            raise ConfigurationError("known and star_masked must partition the patch")

    @property
    def known(self) -> np.ndarray:
        """Unmasked pixels."""
        return ~self.star_masked

    @property
    def masked_index(self) -> np.ndarray:
        return np.flatnonzero(self.star_masked)

    @property
    def psf_within_masked(self) -> np.ndarray:
        """Boolean selector of the star's own pixels among the masked pixels."""
        return self.psf_masked[self.star_masked]

    @property
    def n_known(self) -> int:
        return int(np.count_nonzero(~self.star_masked))

    @property
    def n_masked(self) -> int:
        return int(np.count_nonzero(self.star_masked))

    @property
    def n_psf(self) -> int:
        return int(np.count_nonzero(self.psf_masked))


@dataclass
class PixelMask:
    """Per-star PSF stamp and pixel partition."""

    psf: np.ndarray
    partition: PixelPartition
    n_masked: int  # Masked pixel count before the border policy
    boundary_cleared: bool


def _clear_border(arr: np.ndarray) -> None:
    arr[0, :] = False
    arr[-1, :] = False
    arr[:, 0] = False
    arr[:, -1] = False


def gen_pix_mask(
    mask_stamp: np.ndarray,
    psf_model: PSFModel,
    x_star: float,
    y_star: float,
    flux_star: float,
    np_size: int = 33,
    thr: float = 20.0,
    flux_floor: float = 1e4,
    boundary_margin: int = 128,
) -> PixelMask:
    """
    Compose the per-star pixel partition of a local patch.

    The PSF is evaluated at the star position and thresholded at
    ``thr / max(flux, flux_floor)``; the result is OR-ed with the local
    detector mask to give the masked pixels.

    When more than ``np_size**2 - boundary_margin`` pixels are masked, the
    one-pixel border of the patch is cleared in both the detector mask and
    the PSF mask before their union is recomputed, so every border pixel
    ends up known.

    Parameters
    ----------
    mask_stamp : np.ndarray
        Local ``np_size x np_size`` patch of the detector mask. Not modified.
    psf_model : PSFModel
        Callable ``psf(x, y, size)``.
    x_star, y_star : float
        Star position.
    flux_star : float
        Star flux.
    np_size : int, default 33
        Patch size.
    thr : float, default 20.0
        Flux-normalized masking threshold.
    flux_floor : float, default 1e4
        Lower bound on the flux used in the threshold.
    boundary_margin : int, default 128
        Margin defining the masked-pixel budget.

    Returns
    -------
    PixelMask
        PSF stamp, partition, pre-policy masked count, and policy flag.
    """
    np_size = check_stamp_size(np_size)
    kmasked = np.array(mask_stamp, dtype=bool)
    if kmasked.shape != (np_size, np_size):
        raise ConfigurationError(
            f"mask_stamp must have shape {(np_size, np_size)}, got {kmasked.shape}"
        )

    psft = np.asarray(psf_model(x_star, y_star, np_size), dtype=np.float64)
    if psft.shape != (np_size, np_size):
        raise ConfigurationError(
            f"PSF model returned shape {psft.shape}, expected {(np_size, np_size)}"
        )

    kpsf = psft > thr / max(flux_star, flux_floor)
    n_masked = int(np.count_nonzero(kmasked | kpsf))

    cleared = n_masked > np_size**2 - boundary_margin
    if cleared:
        _clear_border(kmasked)
        _clear_border(kpsf)
        logger.debug(
            "Star at (%.1f, %.1f): %d masked pixels over budget, border cleared",
            x_star, y_star, n_masked,
        )

    return PixelMask(
        psf=psft,
        partition=PixelPartition.from_masks(kmasked, kpsf),
        n_masked=n_masked,
        boundary_cleared=cleared,
    )
