"""
Tests for the masking module.

Tests cover:
- Detector-wide static PSF mask
- Per-star pixel partition and the border policy
"""

import numpy as np
import pytest

from cloudcoverr.errors import ConfigurationError
from cloudcoverr.masking import PixelPartition, gen_mask_static_psf, gen_pix_mask
from cloudcoverr.psf import GaussianPSF


@pytest.fixture
def psf_stamp():
    return GaussianPSF(1.5)(0.0, 0.0, 31)


class TestStaticPSFMask:
    """Tests for gen_mask_static_psf."""

    def test_superset_of_input(self, psf_stamp):
        """Existing mask bits are never cleared."""
        rng = np.random.default_rng(0)
        mask = rng.random((80, 80)) < 0.05
        before = mask.copy()
        gen_mask_static_psf(mask, psf_stamp, [40.2], [39.7], [1e5])

        assert np.all(mask[before])
        assert mask.sum() > before.sum()

    def test_idempotent(self, psf_stamp):
        """Applying the same stars twice gives the same mask."""
        x, y, flux = [20.0, 50.4], [30.0, 60.6], [1e5, 3e4]
        mask = np.zeros((80, 80), dtype=bool)
        gen_mask_static_psf(mask, psf_stamp, x, y, flux)
        once = mask.copy()
        gen_mask_static_psf(mask, psf_stamp, x, y, flux)

        np.testing.assert_array_equal(mask, once)

    def test_threshold_matches_psf(self, psf_stamp):
        """Masked footprint is the PSF above thr/flux, centered on the star."""
        mask = np.zeros((80, 80), dtype=bool)
        gen_mask_static_psf(mask, psf_stamp, [40.0], [40.0], [1e5], thr=20)

        expected = psf_stamp > 20 / 1e5
        np.testing.assert_array_equal(mask[25:56, 25:56], expected)
        assert mask.sum() == expected.sum()

    def test_brighter_star_masks_more(self, psf_stamp):
        """The footprint grows with flux."""
        faint = np.zeros((80, 80), dtype=bool)
        bright = np.zeros((80, 80), dtype=bool)
        gen_mask_static_psf(faint, psf_stamp, [40], [40], [1e4])
        gen_mask_static_psf(bright, psf_stamp, [40], [40], [1e6])

        assert bright.sum() > faint.sum()
        assert np.all(bright[faint])

    def test_negative_flux_uses_absolute_value(self, psf_stamp):
        """Negative fluxes mask like their absolute value."""
        pos = np.zeros((80, 80), dtype=bool)
        neg = np.zeros((80, 80), dtype=bool)
        gen_mask_static_psf(pos, psf_stamp, [40], [40], [5e4])
        gen_mask_static_psf(neg, psf_stamp, [40], [40], [-5e4])

        np.testing.assert_array_equal(pos, neg)

    def test_edge_star_is_clipped(self, psf_stamp):
        """Stars near or beyond the edges do not raise."""
        mask = np.zeros((60, 50), dtype=bool)
        gen_mask_static_psf(mask, psf_stamp, [0.0, 59.4, -40.0], [2.0, 49.0, 10.0], [1e6] * 3)

        assert mask[0, 2]
        assert mask[59, 49]
        assert mask.sum() < mask.size

    def test_clipping_matches_interior_footprint(self, psf_stamp):
        """A star at the corner masks the matching quadrant of its footprint."""
        mask = np.zeros((60, 60), dtype=bool)
        gen_mask_static_psf(mask, psf_stamp, [0.0], [0.0], [1e5])

        expected = psf_stamp > 20 / 1e5
        np.testing.assert_array_equal(mask[:16, :16], expected[15:, 15:])

    def test_zero_flux_raises(self, psf_stamp):
        """Zero flux has no threshold."""
        mask = np.zeros((40, 40), dtype=bool)
        with pytest.raises(ConfigurationError, match="non-zero"):
            gen_mask_static_psf(mask, psf_stamp, [20], [20], [0.0])

    def test_even_stamp_raises(self):
        """PSF stamps must have odd sides."""
        mask = np.zeros((40, 40), dtype=bool)
        with pytest.raises(ConfigurationError, match="odd"):
            gen_mask_static_psf(mask, np.ones((10, 10)), [20], [20], [1e5])


class TestPixelPartition:
    """Tests for PixelPartition."""

    def test_known_complements_masked(self):
        """known and star_masked partition the patch."""
        masked = np.zeros((5, 5), dtype=bool)
        masked[1:3, 1:3] = True
        psf = np.zeros((5, 5), dtype=bool)
        psf[2, 2] = True
        part = PixelPartition.from_masks(masked, psf)

        assert part.n_known + part.n_masked == 25
        assert not np.any(part.known & part.star_masked)
        assert part.n_psf == 1
        assert part.psf_within_masked.sum() == 1
        np.testing.assert_array_equal(part.masked_index, np.flatnonzero((masked | psf).ravel()))

    def test_psf_outside_masked_rejected(self):
        """psf_masked must be a subset of star_masked."""
        star = np.zeros(9, dtype=bool)
        psf = np.zeros(9, dtype=bool)
        psf[4] = True
        with pytest.raises(ConfigurationError, match="subset"):
            PixelPartition(star_masked=star, psf_masked=psf, shape=(3, 3))

    def test_wrong_size_rejected(self):
        """Vectors must cover the whole patch."""
        with pytest.raises(ConfigurationError):
            PixelPartition(star_masked=np.zeros(8, bool), psf_masked=np.zeros(8, bool), shape=(3, 3))

    def test_vectors_are_read_only(self):
        """Partition vectors cannot be modified."""
        part = PixelPartition.from_masks(np.zeros((3, 3), bool), np.zeros((3, 3), bool))
        with pytest.raises(ValueError):
            part.star_masked[0] = True


class TestPixelMask:
    """Tests for gen_pix_mask."""

    def test_union_of_masks(self, gaussian_psf):
        """star_masked is the detector mask OR the PSF mask."""
        local = np.zeros((33, 33), dtype=bool)
        local[0, 0] = True
        pix = gen_pix_mask(local, gaussian_psf, 50.2, 40.1, 1e5)

        psf_mask = pix.psf > 20 / 1e5
        expected = (local | psf_mask).ravel()
        np.testing.assert_array_equal(pix.partition.star_masked, expected)
        np.testing.assert_array_equal(pix.partition.psf_masked, psf_mask.ravel())
        assert pix.n_masked == expected.sum()
        assert not pix.boundary_cleared

    def test_flux_floor(self, gaussian_psf):
        """Fluxes below the floor use the floor."""
        local = np.zeros((33, 33), dtype=bool)
        faint = gen_pix_mask(local, gaussian_psf, 50, 40, 10.0)
        floor = gen_pix_mask(local, gaussian_psf, 50, 40, 1e4)

        np.testing.assert_array_equal(faint.partition.psf_masked, floor.partition.psf_masked)

    def test_input_not_modified(self, gaussian_psf):
        """The detector mask stamp is copied before the border policy."""
        local = np.ones((33, 33), dtype=bool)
        gen_pix_mask(local, gaussian_psf, 50, 40, 1e5)
        assert local.all()

    def test_border_cleared_over_budget(self, gaussian_psf):
        """Over budget, both components lose their one-pixel border."""
        local = np.ones((33, 33), dtype=bool)
        local[10:20, 10:20] = False
        pix = gen_pix_mask(local, gaussian_psf, 50, 40, 1e9, boundary_margin=128)

        assert pix.boundary_cleared
        assert pix.n_masked > 33**2 - 128

        star = pix.partition.star_masked.reshape(33, 33)
        psf = pix.partition.psf_masked.reshape(33, 33)
        for border in (star, psf):
            assert not border[0, :].any()
            assert not border[-1, :].any()
            assert not border[:, 0].any()
            assert not border[:, -1].any()
        # Interior of the detector mask is kept
        assert star[1:-1, 1:-1][local[1:-1, 1:-1]].all()

    def test_border_kept_under_budget(self, gaussian_psf):
        """Below budget the border stays masked."""
        local = np.zeros((33, 33), dtype=bool)
        local[0, :] = True
        pix = gen_pix_mask(local, gaussian_psf, 50, 40, 1e5)

        assert not pix.boundary_cleared
        assert pix.partition.star_masked.reshape(33, 33)[0, :].all()

    def test_wrong_stamp_shape_raises(self, gaussian_psf):
        """Mask stamp must match np_size."""
        with pytest.raises(ConfigurationError):
            gen_pix_mask(np.zeros((31, 31), bool), gaussian_psf, 50, 40, 1e5, np_size=33)

    def test_even_np_size_raises(self, gaussian_psf):
        """np_size must be odd."""
        with pytest.raises(ConfigurationError):
            gen_pix_mask(np.zeros((32, 32), bool), gaussian_psf, 50, 40, 1e5, np_size=32)
