"""
Conditional-covariance debiasing of stellar fluxes.

Given a local covariance of the residual patch around a star, the masked
pixels are predicted from the known ones under a joint Gaussian model. The
conditional mean and covariance of the pixels attributable to the star then
give a correction to the flux and its uncertainty.

All inversions go through Cholesky factorizations: a covariance block that
is not positive definite raises ``CovarianceError``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
from scipy import linalg

from .errors import ConfigurationError, CovarianceError
from .masking import PixelPartition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StarStatistics:
    """
    Debiasing statistics for one star.

    Attributes
    ----------
    std_w : float
        PSF-weighted flux uncertainty from the conditional covariance.
    std_wdiag : float
        Same, using only the diagonal of the conditional covariance.
    var_wdb : float
        Inverse variance of the debiased flux, ``p' C^-1 p``.
    flux_db : float
        Total flux correction, ``resid_mean + pred_mean``.
    resid_mean : float
        Flux correction from the residual image in the star's pixels.
    pred_mean : float
        Flux correction from the conditional prediction in the star's pixels.
    chi20 : float
        Chi-square of the conditional prediction.
    """

    std_w: float
    std_wdiag: float
    var_wdb: float
    flux_db: float
    resid_mean: float
    pred_mean: float
    chi20: float

    @property
    def dfdb(self) -> float:
        """Uncertainty scale of the debiased flux, ``sqrt(var_wdb)``."""
        return math.sqrt(self.var_wdb)

    def as_row(self) -> tuple[float, ...]:
        """Values for the catalog columns ``STAT_COLUMNS``."""
        return (
            self.std_w,
            self.std_wdiag,
            self.dfdb,
            self.flux_db,
            self.resid_mean,
            self.pred_mean,
            self.chi20,
        )


@dataclass
class ConditionalPrediction:
    """Gaussian conditional of the masked pixels given the known pixels."""

    pred: np.ndarray  # Predicted values of the masked pixels
    pred_offset: np.ndarray  # pred minus the local mean
    predcovar: np.ndarray  # Conditional covariance of the masked pixels
    ipcov: np.ndarray  # Inverse of predcovar
    chi20: float


def _cholesky(matrix: np.ndarray, block: str):
    try:
        return linalg.cho_factor(matrix, lower=True, check_finite=True)
    except (np.linalg.LinAlgError, ValueError) as e:
        raise CovarianceError(
            f"Covariance block '{block}' is not positive definite: {e}", block=block
        ) from e


def _symmetrize(matrix: np.ndarray) -> np.ndarray:
    return 0.5 * (matrix + matrix.T)


def conditional_prediction(
    cov_r: np.ndarray,
    mean: np.ndarray,
    partition: PixelPartition,
    data: np.ndarray,
) -> ConditionalPrediction:
    """
    Predict the masked pixels of a patch from the known ones.

    Parameters
    ----------
    cov_r : np.ndarray
        Covariance of the flattened patch, shape ``(npix, npix)``.
    mean : np.ndarray
        Mean of the flattened patch.
    partition : PixelPartition
        Known / masked pixel partition.
    data : np.ndarray
        Patch values (flattened in C order if 2D).

    Returns
    -------
    ConditionalPrediction

    Notes
    -----
    With ``k`` the known and ``s`` the masked pixels::

        pred      = C_sk C_kk^-1 (d_k - mu_k) + mu_s
        predcovar = C_ss - C_sk C_kk^-1 C_ks
        chi20     = (pred - mu_s)' predcovar^-1 (pred - mu_s)
    """
    known = partition.known
    masked = partition.star_masked
    if partition.n_masked == 0:
        raise ConfigurationError("Partition has no masked pixels to predict")

    data = np.asarray(data, dtype=np.float64).ravel()
    mean = np.asarray(mean, dtype=np.float64).ravel()

    cov_kk = cov_r[np.ix_(known, known)]
    cov_sk = cov_r[np.ix_(masked, known)]
    cov_ss = cov_r[np.ix_(masked, masked)]

    if partition.n_known:
        chol_kk = _cholesky(cov_kk, "known")
        # C_kk^-1 C_ks, reused for the mean and the Schur complement
        kk_ks = linalg.cho_solve(chol_kk, cov_sk.T)
        pred_offset = kk_ks.T @ (data[known] - mean[known])
        predcovar = _symmetrize(cov_ss - cov_sk @ kk_ks)
    else:
        pred_offset = np.zeros(partition.n_masked)
        predcovar = _symmetrize(cov_ss)

    chol_pred = _cholesky(predcovar, "predicted")
    ipcov = _symmetrize(linalg.cho_solve(chol_pred, np.eye(predcovar.shape[0])))

    chi20 = float(pred_offset @ ipcov @ pred_offset)

    return ConditionalPrediction(
        pred=pred_offset + mean[masked],
        pred_offset=pred_offset,
        predcovar=predcovar,
        ipcov=ipcov,
        chi20=chi20,
    )


def cond_cov_est_wdiag(
    cov_loc: np.ndarray,
    mean: np.ndarray,
    partition: PixelPartition,
    data_in: np.ndarray,
    data_w: np.ndarray,
    stars_in: np.ndarray,
    psft: np.ndarray,
) -> StarStatistics:
    """
    Flux corrections and uncertainties for one star.

    Using a local covariance estimate ``cov_loc``, the masked pixels of the
    patch are predicted from the known pixels. The statistics are then
    restricted to the pixels masked because of the star itself (not a
    detector defect or a neighbour), weighted by the PSF.

    Parameters
    ----------
    cov_loc : np.ndarray
        Local covariance of the flattened patch.
    mean : np.ndarray
        Local mean of the flattened patch.
    partition : PixelPartition
        Known / masked / star pixels of the patch.
    data_in : np.ndarray
        Residual patch.
    data_w : np.ndarray
        Weight patch.
    stars_in : np.ndarray
        Counts above the background from the star alone (model - sky).
    psft : np.ndarray
        PSF stamp at the star position.

    Returns
    -------
    StarStatistics

    Raises
    ------
    CovarianceError
        If the known block or the conditional covariance is not positive
        definite.
    ConfigurationError
        If no pixel of the patch is attributable to the star.

    Notes
    -----
    The star's own Poisson noise is added to the diagonal of the covariance
    before conditioning. With ``p`` the PSF and ``w`` the weights over the
    star pixels, ``P`` the conditional covariance and ``Q`` the inverse
    conditional covariance restricted to them::

        std_w      = sqrt(|(p w)' P (p w)|) / sum(p^2 w)
        std_wdiag  = sqrt(|sum((p w)^2 diag(P))|) / sum(p^2 w)
        var_wdb    = p' Q p
        resid_mean = p' Q d / var_wdb
        pred_mean  = p' Q pred / var_wdb
    """
    npix = partition.star_masked.size
    if partition.n_psf == 0:
        raise ConfigurationError("No pixels of the patch are attributable to the star")

    cov_r = np.array(cov_loc, dtype=np.float64).reshape(npix, npix)
    cov_r = _symmetrize(cov_r)
    cov_r[np.diag_indices(npix)] += np.asarray(stars_in, dtype=np.float64).ravel()

    data = np.asarray(data_in, dtype=np.float64).ravel()
    cond = conditional_prediction(cov_r, mean, partition, data)

    star_pix = partition.psf_masked
    sub = partition.psf_within_masked

    p = np.asarray(psft, dtype=np.float64).ravel()[star_pix]
    pw = p * np.asarray(data_w, dtype=np.float64).ravel()[star_pix]
    p2w = p * pw

    pcov = cond.predcovar[np.ix_(sub, sub)]
    ipcov = cond.ipcov[np.ix_(sub, sub)]

    norm = p2w.sum()
    std_w = math.sqrt(abs(pw @ pcov @ pw)) / norm
    std_wdiag = math.sqrt(abs(np.sum(pw**2 * np.diag(pcov)))) / norm

    ip = ipcov @ p
    var_wdb = float(p @ ip)
    resid_mean = float(ip @ data[star_pix]) / var_wdb
    pred_mean = float(ip @ cond.pred[sub]) / var_wdb

    return StarStatistics(
        std_w=std_w,
        std_wdiag=std_wdiag,
        var_wdb=var_wdb,
        flux_db=resid_mean + pred_mean,
        resid_mean=resid_mean,
        pred_mean=pred_mean,
        chi20=cond.chi20,
    )
