"""
Tests for stamp cutting and edge selection.
"""

import numpy as np
import pytest

from cloudcoverr.stamps import interior_stars, stamp_cutter


@pytest.fixture
def images():
    """Distinct images so the stamps can be told apart."""
    shape = (100, 80)
    ii, jj = np.meshgrid(np.arange(shape[0]), np.arange(shape[1]), indexing="ij")
    resid = (ii * 1000 + jj).astype(np.float64)
    weight = np.full(shape, 0.25)
    sky = np.full(shape, 10.0)
    model = sky + resid / 1e3
    mask = (ii + jj) % 7 == 0
    return resid, weight, model, sky, mask


class TestStampCutter:
    """Tests for stamp_cutter."""

    def test_shapes_and_center(self, images):
        """Stamps are np_size square and centered on the rounded position."""
        stamps = stamp_cutter(50.4, 39.6, *images, np_size=33)

        for arr in stamps:
            assert arr.shape == (33, 33)
        assert stamps.data[16, 16] == 50 * 1000 + 40
        assert stamps.data[0, 0] == 34 * 1000 + 24

    def test_star_is_model_minus_sky(self, images):
        """The star stamp holds the model above the sky."""
        resid, weight, model, sky, mask = images
        stamps = stamp_cutter(50, 40, resid, weight, model, sky, mask, np_size=11)
        np.testing.assert_allclose(stamps.star, model[45:56, 35:46] - sky[45:56, 35:46])
        np.testing.assert_array_equal(stamps.mask, mask[45:56, 35:46])

    def test_read_only(self, images):
        """Stamps cannot be written through."""
        stamps = stamp_cutter(50, 40, *images, np_size=11)
        for arr in stamps:
            with pytest.raises(ValueError):
                arr[0, 0] = 0

    def test_source_images_untouched(self, images):
        """Views do not lock the source arrays."""
        resid = images[0]
        stamp_cutter(50, 40, *images, np_size=11)
        resid[0, 0] = -1.0
        assert resid.flags.writeable

    @pytest.mark.parametrize("x,y", [(5.0, 40.0), (50.0, 3.0), (95.0, 40.0), (50.0, 79.0)])
    def test_out_of_bounds(self, images, x, y):
        """Windows past the image edge raise IndexError."""
        with pytest.raises(IndexError):
            stamp_cutter(x, y, *images, np_size=33)


class TestInteriorStars:
    """Tests for interior_stars."""

    def test_selection(self):
        """Stars within np_size of any edge are excluded."""
        x = np.array([33.0, 32.9, 50.0, 66.0, 66.1, 50.0])
        y = np.array([40.0, 40.0, 33.0, 40.0, 40.0, 47.0])
        keep = interior_stars(x, y, (100, 81), np_size=33)

        np.testing.assert_array_equal(keep, [True, False, True, True, False, True])

    def test_interior_stars_fit_stamps(self, images):
        """Every selected star has a full stamp."""
        rng = np.random.default_rng(2)
        x = rng.uniform(-5, 105, 200)
        y = rng.uniform(-5, 85, 200)
        keep = interior_stars(x, y, (100, 80), np_size=33)

        assert keep.any()
        for cx, cy in zip(x[keep], y[keep]):
            stamp_cutter(cx, cy, *images, np_size=33)
