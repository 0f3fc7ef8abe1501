"""
Pytest configuration and fixtures.
"""

import numpy as np
import pytest
from astropy.io import fits
from astropy.table import Table

from cloudcoverr.config import DebiasConfig
from cloudcoverr.io import DecapsPaths
from cloudcoverr.processor import DetectorInputs
from cloudcoverr.psf import GaussianPSF


class SquaredExponentialCovariance:
    """Stationary covariance provider used in place of a real estimator."""

    def __init__(self, sigma=5.0, length=1.5, nugget=0.5):
        self.sigma = sigma
        self.length = length
        self.nugget = nugget

    def kernel(self, np_size):
        idx = np.arange(np_size)
        ii, jj = np.meshgrid(idx, idx, indexing="ij")
        coords = np.stack([ii.ravel(), jj.ravel()], axis=1).astype(np.float64)
        d2 = ((coords[:, None, :] - coords[None, :, :]) ** 2).sum(axis=-1)
        smooth = np.exp(-d2 / (2 * self.length**2))
        return self.sigma**2 * ((1 - self.nugget) * smooth + self.nugget * np.eye(len(coords)))

    def __call__(self, image, x, y, np_size):
        n = len(x)
        k = self.kernel(np_size)
        return np.broadcast_to(k, (n,) + k.shape), np.zeros((n, np_size * np_size))


class BrokenStarCovariance(SquaredExponentialCovariance):
    """Returns a negative definite covariance for the stars in ``bad``."""

    def __init__(self, bad, **kwargs):
        super().__init__(**kwargs)
        self.bad = set(bad)

    def __call__(self, image, x, y, np_size):
        cov, mean = super().__call__(image, x, y, np_size)
        cov = np.array(cov)
        for i in self.bad:
            cov[i] = -np.eye(cov.shape[1])
        return cov, mean


@pytest.fixture
def gaussian_psf():
    """Circular Gaussian PSF, sigma = 1.5 pixels."""
    return GaussianPSF(1.5)


@pytest.fixture
def covariance_provider():
    """Correlated stationary covariance with sky-level variance."""
    return SquaredExponentialCovariance()


@pytest.fixture
def small_config():
    """Default configuration with a small static PSF stamp for speed."""
    return DebiasConfig(psf_static_size=63)


@pytest.fixture
def synthetic_detector():
    """Create a detector with Gaussian stars on a flat sky."""
    def _create(
        shape=(128, 128),
        stars=((64.3, 63.8, 1e5),),
        sky=100.0,
        gain=4.0,
        sigma=1.5,
        noise=True,
        seed=42,
        name="S6",
    ):
        rng = np.random.default_rng(seed)
        psf = GaussianPSF(sigma)

        model = np.full(shape, sky, dtype=np.float64)
        half = 15
        for x, y, flux in stars:
            cx, cy = int(np.rint(x)), int(np.rint(y))
            stamp = flux * psf(x, y, 2 * half + 1)
            x0, x1 = max(0, cx - half), min(shape[0], cx + half + 1)
            y0, y1 = max(0, cy - half), min(shape[1], cy + half + 1)
            model[x0:x1, y0:y1] += stamp[
                x0 - (cx - half):x1 - (cx - half), y0 - (cy - half):y1 - (cy - half)
            ]

        # Sky-limited Gaussian noise: variance sky / gain in image units
        sigma_sky = np.sqrt(sky / gain)
        image = model + (rng.normal(0.0, sigma_sky, shape) if noise else 0.0)

        catalog = Table(
            {
                "x": np.array([s[0] for s in stars], dtype=np.float64),
                "y": np.array([s[1] for s in stars], dtype=np.float64),
                "flux": np.array([s[2] for s in stars], dtype=np.float64),
                "decapsid": np.arange(1000, 1000 + len(stars), dtype=np.int64),
            }
        )
        return DetectorInputs(
            name=name,
            image=image,
            weight=np.full(shape, 1.0 / sigma_sky**2),
            dq=np.zeros(shape, dtype=np.int32),
            model=model,
            sky=np.full(shape, sky),
            catalog=catalog,
            gain=gain,
            seed=2021,
        )

    return _create


@pytest.fixture
def broken_covariance():
    """Factory for providers that fail on selected stars."""
    return BrokenStarCovariance


def write_exposure(paths, detectors, missing_model=()):
    """Write DECam and crowdsource files for a set of DetectorInputs."""
    for path in (paths.image, paths.catalog, paths.model):
        path.parent.mkdir(parents=True, exist_ok=True)

    primary = fits.PrimaryHDU()
    primary.header["EXPNUM"] = 612345
    image = [fits.PrimaryHDU()]
    weight = [fits.PrimaryHDU()]
    dq = [fits.PrimaryHDU()]
    catalog = [primary]
    model = [fits.PrimaryHDU()]
    for det in detectors:
        image.append(fits.ImageHDU(det.image, name=det.name))
        weight.append(fits.ImageHDU(det.weight, name=det.name))
        dq.append(fits.ImageHDU(det.dq, name=det.name))
        hdr = fits.ImageHDU(name=f"{det.name}_HDR")
        hdr.header["GAINCRWD"] = det.gain
        catalog.append(fits.table_to_hdu(det.catalog))
        catalog[-1].name = f"{det.name}_CAT"
        catalog.append(hdr)
        if det.name not in missing_model:
            model.append(fits.ImageHDU(det.model, name=f"{det.name}_MOD"))
            model.append(fits.ImageHDU(det.sky, name=f"{det.name}_SKY"))

    fits.HDUList(image).writeto(paths.image)
    fits.HDUList(weight).writeto(paths.weight)
    fits.HDUList(dq).writeto(paths.dq)
    fits.HDUList(catalog).writeto(paths.catalog)
    fits.HDUList(model).writeto(paths.model)


@pytest.fixture
def decaps_exposure(tmp_path, synthetic_detector):
    """On-disk exposure with detectors S6 and N4."""
    date, filt = "170420_040428", "g"
    (tmp_path / "decaps").mkdir()
    paths = DecapsPaths.from_exposure(
        str(tmp_path / "decaps" / "c4d_"), date, filt, "v1", tmp_path / "crowdsource"
    )
    detectors = [
        synthetic_detector(name="S6", seed=1),
        synthetic_detector(name="N4", seed=2, stars=((50.2, 70.9, 4e4),)),
    ]
    write_exposure(paths, detectors)
    return paths, date, filt, detectors


@pytest.fixture
def exposure_writer():
    """Expose write_exposure to tests building their own file sets."""
    return write_exposure
