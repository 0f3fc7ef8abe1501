"""
Local stamps around stars.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np


class Stamps(NamedTuple):
    """Aligned ``np_size x np_size`` windows around one star (read-only)."""

    data: np.ndarray  # Residual image
    weight: np.ndarray  # Inverse-variance weights
    star: np.ndarray  # Model minus sky: counts from the star alone
    mask: np.ndarray  # Detector mask


def _readonly(view: np.ndarray) -> np.ndarray:
    view = view.view()
    view.flags.writeable = False
    return view


def interior_stars(
    x_stars: np.ndarray,
    y_stars: np.ndarray,
    shape: tuple[int, int],
    np_size: int = 33,
) -> np.ndarray:
    """
    Select stars at least ``np_size`` pixels away from every image edge.

    Returns
    -------
    np.ndarray
        Boolean selector over the stars.
    """
    sx, sy = shape
    x = np.asarray(x_stars, dtype=np.float64)
    y = np.asarray(y_stars, dtype=np.float64)
    return (x >= np_size) & (x <= sx - 1 - np_size) & (y >= np_size) & (y <= sy - 1 - np_size)


def stamp_cutter(
    cxx: float,
    cyy: float,
    resid: np.ndarray,
    weight: np.ndarray,
    model: np.ndarray,
    sky: np.ndarray,
    mask: np.ndarray,
    np_size: int = 33,
) -> Stamps:
    """
    Cut the local patches around a star.

    Parameters
    ----------
    cxx, cyy : float
        Star position, rounded to the nearest pixel for the stamp center.
    resid : np.ndarray
        Residual image.
    weight : np.ndarray
        Weight image.
    model : np.ndarray
        Model image (stars plus sky).
    sky : np.ndarray
        Sky background image.
    mask : np.ndarray
        Detector mask.
    np_size : int, default 33
        Stamp side, odd.

    Returns
    -------
    Stamps
        Read-only windows; ``star`` is computed on the window only.

    Raises
    ------
    IndexError
        If the window extends past the image bounds.
    """
    cx = int(np.rint(cxx))
    cy = int(np.rint(cyy))
    half = (np_size - 1) // 2
    sx, sy = resid.shape
    if cx - half < 0 or cy - half < 0 or cx + half >= sx or cy + half >= sy:
        raise IndexError(
            f"Stamp of size {np_size} at ({cx}, {cy}) extends past image of shape {resid.shape}"
        )

    window = (slice(cx - half, cx + half + 1), slice(cy - half, cy + half + 1))
    star = model[window] - sky[window]
    star.flags.writeable = False
    return Stamps(
        data=_readonly(resid[window]),
        weight=_readonly(weight[window]),
        star=star,
        mask=_readonly(mask[window]),
    )
