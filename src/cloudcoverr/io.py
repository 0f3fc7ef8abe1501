"""
I/O for DECaPS exposures and crowdsource outputs.

Handles:
- DECam community pipeline images (image, weight, data quality)
- crowdsource catalogs, model and sky images
- Output catalogs with one ``{ccd}_CAT`` extension per detector

Arrays are returned as read by astropy, shape ``(NAXIS2, NAXIS1)``.
crowdsource positions use the same 0-based convention, so catalog ``x``
indexes axis 0 and ``y`` indexes axis 1 without any conversion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path

import numpy as np
from astropy.io import fits
from astropy.table import Table

from .processor import DetectorInputs
from .utils import exposure_seed

logger = logging.getLogger(__name__)

INJECTED_SUFFIX = "I"


def inject_rename(path: str | Path) -> Path:
    """
    Map a DECaPS image path to its injection-test counterpart.

    ``.../decaps/c4d_..._v1.fits.fz`` becomes ``.../decapsi/c4d_..._v1.I.fits.fz``.
    """
    path = Path(path)
    name = path.name
    if not name.endswith(".fits.fz"):
        raise ValueError(f"Expected a .fits.fz file, got {name}")
    parent = path.parent.parent / (path.parent.name + "i")
    return parent / (name[: -len("fits.fz")] + "I.fits.fz")


@dataclass(frozen=True)
class DecapsPaths:
    """Input and output files of one DECaPS exposure."""

    image: Path
    weight: Path
    dq: Path
    catalog: Path
    model: Path
    output: Path

    @classmethod
    def from_exposure(
        cls,
        base: str,
        date: str,
        filt: str,
        vers: str,
        basecat: str | Path,
    ) -> DecapsPaths:
        """
        Build the paths of an exposure.

        Parameters
        ----------
        base : str
            Directory and file name prefix of the exposure files
            (e.g. ``"/n/fink2/decaps/c4d_"``).
        date : str
            Exposure date, ``YYMMDD_HHMMSS``.
        filt : str
            Optical filter.
        vers : str
            Community pipeline processing version (e.g. ``"v1"``).
        basecat : str or Path
            Root directory of the crowdsource outputs, holding the
            ``cat/``, ``mod/`` and ``cer/`` subdirectories.
        """
        basecat = Path(basecat)
        stem = f"{date}_ooi_{filt}_{vers}"
        return cls(
            image=Path(f"{base}{date}_ooi_{filt}_{vers}.fits.fz"),
            weight=Path(f"{base}{date}_oow_{filt}_{vers}.fits.fz"),
            dq=Path(f"{base}{date}_ood_{filt}_{vers}.fits.fz"),
            catalog=basecat / "cat" / f"c4d_{stem}.cat.fits",
            model=basecat / "mod" / f"c4d_{stem}.mod.fits",
            output=basecat / "cer" / f"c4d_{stem}.cat.cer.fits",
        )

    def for_ccd(self, ccd: str) -> DecapsPaths:
        """Paths for one detector; injected detectors read the injection tree."""
        if not ccd.endswith(INJECTED_SUFFIX):
            return self
        return replace(
            self,
            image=inject_rename(self.image),
            weight=inject_rename(self.weight),
            dq=inject_rename(self.dq),
        )


def _read_ext(path: Path, extname: str, dtype=np.float64) -> np.ndarray:
    with fits.open(path) as hdul:
        return np.asarray(hdul[extname].data, dtype=dtype)


def read_decam(paths: DecapsPaths, ccd: str) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Read the image, weight and data-quality images of one detector.

    Parameters
    ----------
    paths : DecapsPaths
        Exposure paths.
    ccd : str
        Detector extension name (e.g. ``"N14"``).

    Returns
    -------
    tuple[np.ndarray, np.ndarray, np.ndarray]
        ``(image, weight, dq)``; ``dq`` keeps its integer flags.
    """
    paths = paths.for_ccd(ccd)
    image = _read_ext(paths.image, ccd)
    weight = _read_ext(paths.weight, ccd)
    dq = _read_ext(paths.dq, ccd, dtype=np.int64)
    logger.debug("Read %s from %s", ccd, paths.image)
    return image, weight, dq


def read_crowdsource(
    paths: DecapsPaths,
    ccd: str,
) -> tuple[Table, float, np.ndarray, np.ndarray]:
    """
    Read the crowdsource solution of one detector.

    Returns
    -------
    tuple[Table, float, np.ndarray, np.ndarray]
        ``(catalog, gain, model, sky)``. ``gain`` is the empirical gain
        ``GAINCRWD`` from the ``{ccd}_HDR`` extension.
    """
    with fits.open(paths.catalog) as hdul:
        catalog = Table.read(hdul[f"{ccd}_CAT"])
        gain = float(hdul[f"{ccd}_HDR"].header["GAINCRWD"])

    with fits.open(paths.model) as hdul:
        model = np.asarray(hdul[f"{ccd}_MOD"].data, dtype=np.float64)
        sky = np.asarray(hdul[f"{ccd}_SKY"].data, dtype=np.float64)

    logger.debug("Read crowdsource %s: %d stars, gain %.3f", ccd, len(catalog), gain)
    return catalog, gain, model, sky


def load_detector(paths: DecapsPaths, ccd: str, date: str | None = None) -> DetectorInputs:
    """
    Read everything ``process_ccd`` needs for one detector.

    The noise seed is derived from ``date`` when given.
    """
    image, weight, dq = read_decam(paths, ccd)
    catalog, gain, model, sky = read_crowdsource(paths, ccd)
    return DetectorInputs(
        name=ccd,
        image=image,
        weight=weight,
        dq=dq,
        model=model,
        sky=sky,
        catalog=catalog,
        gain=gain,
        seed=exposure_seed(date) if date else None,
    )


def get_catnames(hdul: fits.HDUList) -> list[str]:
    """Detector names of the ``{ccd}_CAT`` extensions, in file order."""
    names = []
    for hdu in hdul[1:]:
        extname = hdu.header.get("EXTNAME", "")
        if extname.endswith("_CAT"):
            names.append(extname[: -len("_CAT")])
    return names


def catalog_detectors(path: str | Path) -> list[str]:
    """Detector names present in a catalog file."""
    with fits.open(path) as hdul:
        return get_catnames(hdul)


def read_primary_header(path: str | Path) -> fits.Header:
    """Read the primary header of a FITS file without loading data."""
    with fits.open(path) as hdul:
        return hdul[0].header.copy()


def init_output(
    path: str | Path,
    header: fits.Header | None = None,
    resume: bool = False,
) -> list[str]:
    """
    Prepare the output catalog file.

    Parameters
    ----------
    path : str or Path
        Output file.
    header : fits.Header, optional
        Primary header to write (usually the catalog's).
    resume : bool, default False
        Keep an existing file and report the detectors it already holds.

    Returns
    -------
    list[str]
        Detectors already written (empty unless resuming).
    """
    path = Path(path)
    if resume and path.exists():
        done = catalog_detectors(path)
        logger.info("Resuming %s: %d detectors already written", path.name, len(done))
        return done

    path.parent.mkdir(parents=True, exist_ok=True)
    fits.PrimaryHDU(header=header).writeto(path, overwrite=True)
    logger.info("Created output catalog %s", path)
    return []


def write_catalog(path: str | Path, catalog: Table, ccd: str) -> None:
    """Append the catalog of one detector as extension ``{ccd}_CAT``."""
    hdu = fits.table_to_hdu(catalog)
    hdu.name = f"{ccd}_CAT"
    with fits.open(path, mode="append") as hdul:
        hdul.append(hdu)
    logger.info("Saved %s to %s", ccd, Path(path).name)
