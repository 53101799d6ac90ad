"""
Tests for the terrain generation algorithms.
"""

import numpy as np
import pytest

from py_wgen.core.errors import StepCancelled
from py_wgen.core.generators import (
    CancelToken,
    gen_fbm,
    gen_hills,
    gen_island,
    gen_landmass,
    gen_mid_point,
    gen_mudslide,
    gen_normalize,
    gen_water_erosion,
    get_min_max,
    new_map,
    normalize,
)
from py_wgen.core.generators.mid_point import diamond_square, lattice_side
from py_wgen.core.generators.water_erosion import drop_batches, erosion_disc
from py_wgen.core.steps import (
    FbmConf,
    HillsConf,
    IslandConf,
    LandMassConf,
    MidPointConf,
    MudSlideConf,
    NormalizeConf,
    WaterErosionConf,
)
from py_wgen.utils import get_rng


class TestHills:
    """Test the paraboloid hills generator."""

    def test_single_hill_on_tiny_map(self):
        """A 4x4 map with one hill of radius 2 holds exactly one paraboloid."""
        seed = 12345
        # base_radius is relative to a 200 pixels wide map: 100 * 4 / 200 = 2
        conf = HillsConf(count=1, base_radius=100.0, radius_var=0.0, height=0.3)
        hmap = new_map((4, 4))
        gen_hills(seed, hmap, conf)

        rng = get_rng(seed)
        xh = rng.uniform(0.0, 4.0)
        yh = rng.uniform(0.0, 4.0)
        expected = np.zeros((4, 4), dtype=np.float32)
        for y in range(int(max(yh - 2.0, 0.0)), int(min(yh + 2.0, 4.0))):
            for x in range(int(max(xh - 2.0, 0.0)), int(min(xh + 2.0, 4.0))):
                z = 4.0 - (x - xh) ** 2 - (y - yh) ** 2
                if z > 0.0:
                    expected[y, x] = z * 0.3 / 4.0

        np.testing.assert_allclose(hmap, expected, atol=1e-6)
        assert np.count_nonzero(hmap) > 0
        assert hmap.max() <= 0.3 + 1e-6

    def test_single_hill_is_reproducible(self):
        conf = HillsConf(count=1, base_radius=100.0, radius_var=0.0)
        first = new_map((4, 4))
        second = new_map((4, 4))
        gen_hills(7, first, conf)
        gen_hills(7, second, conf)
        assert np.array_equal(first, second)

    def test_hills_are_additive(self):
        hmap = np.full((32, 32), 1.0, dtype=np.float32)
        gen_hills(3, hmap, HillsConf(count=20))
        assert hmap.min() >= 1.0
        assert hmap.max() > 1.0

    def test_progress_is_reported(self):
        fractions = []
        gen_hills(3, new_map((16, 16)), HillsConf(count=200), progress=fractions.append)
        assert fractions
        assert fractions == sorted(fractions)
        assert all(0.0 <= f <= 1.0 for f in fractions)

    def test_cancelled_token_stops_generation(self):
        token = CancelToken()
        token.cancel()
        with pytest.raises(StepCancelled):
            gen_hills(3, new_map((16, 16)), HillsConf(count=10), cancel=token)


class TestNormalize:
    """Test linear rescaling."""

    def test_known_range(self):
        hmap = np.array([[-2.0, 0.0], [1.5, 3.0]], dtype=np.float32)
        original = hmap.copy()
        gen_normalize(hmap, NormalizeConf(min=0.0, max=1.0))
        np.testing.assert_allclose(hmap, (original + 2.0) / 5.0, atol=1e-6)

    def test_min_max_after_normalize(self):
        hmap = get_rng(5).normal(size=(20, 30)).astype(np.float32)
        normalize(hmap, -1.0, 4.0)
        lo, hi = get_min_max(hmap)
        assert lo == pytest.approx(-1.0, abs=1e-5)
        assert hi == pytest.approx(4.0, abs=1e-5)

    def test_package_exports_helper_function(self):
        from py_wgen.core import generators
        from py_wgen.core.generators import common

        assert callable(generators.normalize)
        assert generators.normalize is common.normalize

    def test_constant_map_collapses_to_target_min(self):
        hmap = np.full((8, 8), 0.7, dtype=np.float32)
        gen_normalize(hmap, NormalizeConf(min=0.25, max=1.0))
        assert get_min_max(hmap) == pytest.approx((0.25, 0.25))


class TestFbm:
    """Test fractional brownian motion noise."""

    def test_chunking_does_not_change_result(self):
        conf = FbmConf(octaves=4.5)
        single = new_map((48, 40))
        parallel = new_map((48, 40))
        gen_fbm(99, single, conf, workers=1)
        gen_fbm(99, parallel, conf, workers=4)
        np.testing.assert_allclose(single, parallel, atol=1e-6)

    def test_same_seed_same_noise(self):
        first = new_map((32, 32))
        second = new_map((32, 32))
        gen_fbm(1, first, FbmConf(), workers=2)
        gen_fbm(1, second, FbmConf(), workers=3)
        np.testing.assert_allclose(first, second, atol=1e-6)
        assert first.std() > 0.0

    def test_delta_shifts_every_cell(self):
        base = new_map((16, 16))
        shifted = new_map((16, 16))
        gen_fbm(1, base, FbmConf(), workers=1)
        gen_fbm(1, shifted, FbmConf(delta=0.5), workers=1)
        np.testing.assert_allclose(shifted - base, 0.5, atol=1e-5)

    def test_progress_reaches_one(self):
        fractions = []
        gen_fbm(1, new_map((16, 16)), FbmConf(), progress=fractions.append, workers=4)
        assert fractions[-1] == pytest.approx(1.0)


class TestMidPoint:
    """Test diamond-square midpoint displacement."""

    @pytest.mark.parametrize("size", [33, 50])
    def test_corners_keep_their_seeded_values(self, size):
        seed = 2024
        hmap = new_map((size, size))
        gen_mid_point(seed, hmap, MidPointConf(roughness=0.7))

        corners = get_rng(seed).uniform(0.0, 1.0, 4).astype(np.float32)
        assert hmap[0, 0] == pytest.approx(corners[0], abs=1e-6)
        assert hmap[0, -1] == pytest.approx(corners[1], abs=1e-6)
        assert hmap[-1, 0] == pytest.approx(corners[2], abs=1e-6)
        assert hmap[-1, -1] == pytest.approx(corners[3], abs=1e-6)

    def test_diamond_square_never_writes_corners(self):
        work = np.zeros((17, 17))
        work[0, 0], work[0, 16], work[16, 0], work[16, 16] = 0.1, 0.2, 0.3, 0.4
        diamond_square(work, get_rng(1), 0.5)
        assert (work[0, 0], work[0, 16], work[16, 0], work[16, 16]) == (0.1, 0.2, 0.3, 0.4)
        assert np.count_nonzero(work) > 4

    def test_lattice_side(self):
        assert lattice_side(33, 33) == 33
        assert lattice_side(34, 20) == 65
        assert lattice_side(2, 2) == 2

    def test_overwrites_previous_content(self):
        first = np.full((20, 20), 100.0, dtype=np.float32)
        second = new_map((20, 20))
        gen_mid_point(5, first, MidPointConf())
        gen_mid_point(5, second, MidPointConf())
        assert np.array_equal(first, second)


class TestLandMass:
    """Test land/water redistribution."""

    def test_land_proportion(self):
        hmap = get_rng(11).random((64, 64)).astype(np.float32)
        conf = LandMassConf(land_proportion=0.6, water_level=0.12)
        gen_landmass(hmap, conf)
        water_fraction = np.count_nonzero(hmap < conf.water_level) / hmap.size
        assert water_fraction == pytest.approx(1.0 - conf.land_proportion, abs=0.01)

    def test_land_stays_in_range(self):
        hmap = get_rng(12).random((32, 32)).astype(np.float32)
        conf = LandMassConf(shore_height=0.0)
        gen_landmass(hmap, conf)
        assert hmap.min() >= 0.0
        assert hmap.max() <= 1.0 + 1e-6

    def test_cubic_curve_when_no_plain_factor(self):
        hmap = get_rng(13).random((32, 32)).astype(np.float32)
        gen_landmass(hmap, LandMassConf(plain_factor=None))
        assert hmap.max() == pytest.approx(1.0, abs=1e-5)

    def test_all_land_does_not_divide_by_zero(self):
        hmap = get_rng(14).random((16, 16)).astype(np.float32)
        gen_landmass(hmap, LandMassConf(land_proportion=1.0))
        assert np.all(np.isfinite(hmap))


class TestIsland:
    """Test the border falloff."""

    def test_borders_fall_to_minimum(self):
        hmap = get_rng(3).random((40, 40)).astype(np.float32) + 1.0
        lo, _ = get_min_max(hmap)
        gen_island(hmap, IslandConf(coast_range=20.0))
        np.testing.assert_allclose(hmap[0, :], lo, atol=1e-6)
        np.testing.assert_allclose(hmap[:, 0], lo, atol=1e-6)

    def test_center_is_untouched(self):
        hmap = get_rng(4).random((100, 100)).astype(np.float32)
        center = float(hmap[50, 50])
        gen_island(hmap, IslandConf(coast_range=10.0))
        assert hmap[50, 50] == pytest.approx(center)


class TestMudSlide:
    """Test slope relaxation."""

    def test_peak_is_lowered(self):
        hmap = np.full((5, 5), 0.2, dtype=np.float32)
        hmap[2, 2] = 0.5
        gen_mudslide(hmap, MudSlideConf(iterations=1.0))
        assert hmap[2, 2] < 0.5
        mask = np.ones((5, 5), dtype=bool)
        mask[2, 2] = False
        np.testing.assert_allclose(hmap[mask], 0.2)

    def test_cells_above_max_altitude_are_kept(self):
        hmap = np.full((5, 5), 0.2, dtype=np.float32)
        hmap[2, 2] = 0.95
        gen_mudslide(hmap, MudSlideConf(max_erosion_alt=0.9))
        assert hmap[2, 2] == pytest.approx(0.95)

    def test_flat_map_is_stable(self):
        hmap = np.full((8, 8), 0.4, dtype=np.float32)
        gen_mudslide(hmap, MudSlideConf())
        np.testing.assert_allclose(hmap, 0.4)


class TestWaterErosion:
    """Test hydraulic particle erosion."""

    @pytest.fixture
    def terrain(self):
        hmap = new_map((32, 32))
        gen_hills(8, hmap, HillsConf(count=40))
        normalize(hmap, 0.0, 1.0)
        return hmap

    def test_disc_weights_sum_to_one(self):
        for radius in (1, 2, 5):
            disc = erosion_disc(radius)
            assert sum(weight for _, _, weight in disc) == pytest.approx(1.0)
            assert all(dx * dx + dy * dy < radius * radius for dx, dy, _ in disc)

    def test_batch_count(self):
        assert drop_batches(100, WaterErosionConf(drop_amount=0.5)) == 100

    def test_erosion_is_deterministic(self, terrain):
        conf = WaterErosionConf(drop_amount=0.2)
        first = terrain.copy()
        second = terrain.copy()
        gen_water_erosion(21, first, conf)
        gen_water_erosion(21, second, conf)
        assert np.array_equal(first, second)
        assert not np.array_equal(first, terrain)

    def test_heights_are_floored_at_zero(self, terrain):
        gen_water_erosion(21, terrain, WaterErosionConf(drop_amount=0.3, erosion_strength=1.0))
        assert terrain.min() >= 0.0

    def test_cancel_between_batches(self, terrain):
        token = CancelToken()
        calls = []

        def progress(fraction):
            calls.append(fraction)
            token.cancel()

        with pytest.raises(StepCancelled):
            gen_water_erosion(21, terrain, WaterErosionConf(drop_amount=0.5), progress, token)
        assert len(calls) == 1
