"""
Preliminary infill of masked residual pixels.

Masked pixels are replaced by a boxcar average of the unmasked pixels
around them. Holes larger than the boxcar are handled by growing the
smoothing scale geometrically; if the hole is still not resolved after a
fixed number of rounds, the remaining pixels take the image median.

This is a heuristic, not an optimal interpolator: it guarantees
termination on pathological masks (e.g. very large contiguous holes).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy import ndimage

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class InfillScratch:
    """
    Detector-scoped buffers for the preliminary infill.

    One instance belongs to one detector task and must not be shared by
    detectors processed concurrently.
    """

    work: np.ndarray  # Input copy with masked pixels zeroed
    unmasked: np.ndarray  # 1.0 where a pixel contributes to the boxcar
    smoothed: np.ndarray  # Boxcar sum of the image
    counts: np.ndarray  # Boxcar count of unmasked samples
    output: np.ndarray  # Infilled image
    pending: np.ndarray  # Pixels still waiting for an infill value
    good: np.ndarray  # Pixels with enough samples at the current width

    @classmethod
    def allocate(cls, shape: tuple[int, int]) -> InfillScratch:
        """Allocate buffers for images of the given shape."""
        return cls(
            work=np.zeros(shape, dtype=np.float64),
            unmasked=np.zeros(shape, dtype=np.float64),
            smoothed=np.zeros(shape, dtype=np.float64),
            counts=np.zeros(shape, dtype=np.float64),
            output=np.zeros(shape, dtype=np.float64),
            pending=np.zeros(shape, dtype=bool),
            good=np.zeros(shape, dtype=bool),
        )

    @property
    def shape(self) -> tuple[int, int]:
        return self.work.shape


@dataclass
class InfillResult:
    """Outcome of a preliminary infill."""

    image: np.ndarray
    n_iter: int
    final_width: int
    degraded: bool  # Median fallback was used
    n_unresolved: int  # Pixels filled by the median fallback
    fill_value: float | None = None


def boxcar_sum(image: np.ndarray, width: int, out: np.ndarray) -> np.ndarray:
    """
    Sum of ``image`` over a centered square window, with reflective edges.

    The window side is ``2 * ((width - 1) // 2) + 1``, i.e. ``width``
    itself for odd widths. Edges mirror about the edge pixel, which is
    the same as padding the image with ``numpy.pad(mode="reflect")``.
    """
    half = (width - 1) // 2
    size = 2 * half + 1
    ndimage.uniform_filter(image, size=size, output=out, mode="mirror")
    out *= size * size
    return out


def prelim_infill(
    image: np.ndarray,
    mask: np.ndarray,
    scratch: InfillScratch | None = None,
    width: int = 19,
    min_samples: int = 10,
    growth: float = 1.4,
    max_iters: int = 10,
) -> InfillResult:
    """
    Infill masked pixels of a residual image with growing boxcar averages.

    Parameters
    ----------
    image : np.ndarray
        Residual image requiring infill. Not modified.
    mask : np.ndarray
        Boolean image, True where a pixel requires infill.
    scratch : InfillScratch, optional
        Preallocated buffers. Allocated when not given.
    width : int, default 19
        Initial boxcar width.
    min_samples : int, default 10
        A pixel is resolved once its boxcar holds more than this many
        unmasked samples.
    growth : float, default 1.4
        Width multiplier between rounds (rounded to an integer).
    max_iters : int, default 10
        Maximum number of rounds.

    Returns
    -------
    InfillResult
        ``image`` is ``scratch.output``. ``scratch.work`` holds the input
        with masked pixels set to zero.

    Notes
    -----
    Each round pads image and mask reflectively, takes the boxcar sum of the
    image values and of the unmasked-sample count, and assigns
    ``sum / count`` to pending pixels with more than ``min_samples``
    samples. If pixels remain pending after ``max_iters`` rounds, they are
    set to the median of the unmasked input pixels and the result is flagged
    as degraded.
    """
    if image.shape != mask.shape:
        raise ConfigurationError(
            f"Mask shape {mask.shape} does not match image shape {image.shape}"
        )
    if image.ndim != 2:
        raise ConfigurationError(f"Expected a 2D image, got shape {image.shape}")
    if scratch is None:
        scratch = InfillScratch.allocate(image.shape)
    elif scratch.shape != image.shape:
        raise ConfigurationError(
            f"Scratch buffers have shape {scratch.shape}, image has {image.shape}"
        )

    mask = np.asarray(mask, dtype=bool)

    # Masked entries must be zero so they drop out of the boxcar sums
    np.copyto(scratch.work, image)
    scratch.work[mask] = 0.0
    np.copyto(scratch.unmasked, ~mask)
    np.copyto(scratch.pending, mask)
    np.copyto(scratch.output, scratch.work)

    wid = int(width)
    n_iter = 0
    while n_iter < max_iters and scratch.pending.any():
        boxcar_sum(scratch.work, wid, scratch.smoothed)
        boxcar_sum(scratch.unmasked, wid, scratch.counts)
        np.rint(scratch.counts, out=scratch.counts)

        np.greater(scratch.counts, min_samples, out=scratch.good)
        fill = scratch.pending & scratch.good
        scratch.output[fill] = scratch.smoothed[fill] / scratch.counts[fill]
        scratch.pending[scratch.good] = False

        n_iter += 1
        wid = int(round(wid * growth))

    logger.info("Infilling completed after %d rounds with final width %d", n_iter, wid)

    n_unresolved = int(np.count_nonzero(scratch.pending))
    fill_value = None
    if n_unresolved:
        valid = image[~mask]
        fill_value = float(np.median(valid if valid.size else image))
        scratch.output[scratch.pending] = fill_value
        logger.warning(
            "Infilling failed to converge: %d pixels set to median %.4g", n_unresolved, fill_value
        )

    return InfillResult(
        image=scratch.output,
        n_iter=n_iter,
        final_width=wid,
        degraded=n_unresolved > 0,
        n_unresolved=n_unresolved,
        fill_value=fill_value,
    )
