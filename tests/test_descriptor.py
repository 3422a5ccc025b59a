import pytest
import numpy as np
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from acsift.models.components.descriptor import (CLASSIC_RINGS, DescriptorScheme, GradientPatch,
                                                 NormalizedPatch, cemd_distance, d2m_distance,
                                                 get_descriptor, l1_distance, l2_distance,
                                                 resolve_descriptors)
from acsift.models.components.descriptor_data import DescriptorArena
from acsift.models.components.modes import Mode


def _normalized_patch(size=11, seed=0):
    rng = np.random.RandomState(seed)
    patch = rng.uniform(0.2, 0.8, (size, size, 3)).astype(np.float32)
    half = size // 2
    rows, cols = np.mgrid[0:size, 0:size] - half
    mask = rows * rows + cols * cols <= half * half
    return NormalizedPatch(patch, np.ones(3, dtype=np.float32), mask)


def _mode(phase, norm):
    mode = Mode(0, 0)
    mode.phase = phase
    mode.norm = norm
    return mode


class TestDescriptorScheme:
    """Test cases for the descriptor layout"""

    @pytest.fixture
    def scheme(self):
        return DescriptorScheme(name="test", sectors=(1, 4, 4), rings=CLASSIC_RINGS, n_bin=12)

    def test_equal_area_rings(self):
        scheme = DescriptorScheme(name="default")
        assert scheme.n_sector == 9
        assert scheme.rings[0] == pytest.approx(1 / 3)
        assert scheme.rings[1] == pytest.approx(np.sqrt(5 / 9))
        assert scheme.rings[2] == 1.0

    def test_invalid_schemes(self):
        with pytest.raises(ValueError):
            DescriptorScheme()
        with pytest.raises(ValueError):
            DescriptorScheme(name="bad", distance="HAMMING")
        with pytest.raises(ValueError):
            DescriptorScheme(name="bad", distance="D2M")
        with pytest.raises(ValueError):
            DescriptorScheme(name="bad", rings=(0.5, 0.4, 1))
        with pytest.raises(ValueError):
            DescriptorScheme(name="bad", rings=(0.5, 1))
        with pytest.raises(ValueError):
            DescriptorScheme(name="bad", colorspace={"name": "CMYK"})

    def test_colorspace_channels(self):
        scheme = DescriptorScheme(name="b", colorspace={"name": "RGB", "channels": 2})
        assert scheme.colorspace == {"name": "RGB", "channel": 2}

        with pytest.raises(ValueError):
            DescriptorScheme(name="bad", colorspace={"name": "RGB", "channel": 3})
        with pytest.raises(ValueError):
            DescriptorScheme(name="bad", colorspace={"name": "RGB", "chanel": 1})
        with pytest.raises(ValueError):
            DescriptorScheme(name="bad", colorspace={"name": "RGB", "channel": 1, "channels": 2})
        with pytest.raises(ValueError):
            DescriptorScheme(name="bad", descriptor_type="WEIGHTED-HISTOGRAMS",
                             colorspace={"name": "HSL", "weight_channel": -1})

    def test_colorspace_channel_is_used(self):
        patch = _normalized_patch()
        blue = DescriptorScheme(name="b", colorspace={"name": "RGB", "channels": 2})
        red = DescriptorScheme(name="r", colorspace={"name": "RGB", "channel": 0})
        assert np.array_equal(blue.get_patch(patch).phase,
                              get_descriptor("B").get_patch(patch).phase)
        assert not np.array_equal(blue.get_patch(patch).phase, red.get_patch(patch).phase)

    def test_to_string_keeps_float32_precision(self):
        scheme = DescriptorScheme(name="peaks", sectors=[2], rings=[1], n_bin=4)
        data = scheme.get_data_structure()
        data.histograms[0, 0] = 0.123456789
        data.histograms[1, 3] = 1 / 3

        rows = [[np.float32(value) for value in line.split()]
                for line in data.to_string().splitlines()]
        assert np.array_equal(np.array(rows, dtype=np.float32), data.histograms)

    def test_scheme_is_immutable(self, scheme):
        with pytest.raises(AttributeError):
            scheme.n_bin = 8

    def test_histogram_number(self, scheme):
        assert scheme.get_histogram_number(0, 0, 0.0, 20) == 0
        assert scheme.get_histogram_number(10, 0, 0.0, 20) == 1
        assert scheme.get_histogram_number(0, 10, 0.0, 20) == 2
        assert scheme.get_histogram_number(0, -18, 0.0, 20) == 8
        # Sectors turn with the keypoint
        assert scheme.get_histogram_number(0, 10, 0.25, 20) == 1

        with pytest.raises(ValueError):
            scheme.get_histogram_number(30, 0, 0.0, 20)

    def test_constant_phase_fills_one_bin(self):
        scheme = DescriptorScheme(name="ring", sectors=[8], rings=[1], n_bin=8)
        patch = GradientPatch(np.full((9, 9), 0.125, dtype=np.float32),
                              np.ones((9, 9), dtype=np.float32))
        data = scheme.extract_weighted_histograms(0.0, patch).normalize_histograms()

        assert data.histograms.sum() == pytest.approx(1.0)
        assert data.histograms[:, 1].sum() == pytest.approx(1.0)
        assert np.all(np.delete(data.histograms, 1, axis=1) == 0)
        assert data.pps.sum() == np.count_nonzero(
            np.add.outer(np.arange(-4, 5) ** 2, np.arange(-4, 5) ** 2) <= 16)

        # Phases are measured relative to the orientation
        data = scheme.extract_weighted_histograms(0.125, patch)
        assert np.all(data.histograms[:, 1:] == 0)

    def test_absolute_orientation(self):
        scheme = DescriptorScheme(name="abs", sectors=[8], rings=[1], n_bin=8,
                                  relative_orientation=False)
        patch = GradientPatch(np.full((9, 9), 0.125, dtype=np.float32),
                              np.ones((9, 9), dtype=np.float32))
        first = scheme.extract_weighted_histograms(0.0, patch)
        second = scheme.extract_weighted_histograms(0.3, patch)
        assert np.array_equal(first.histograms, second.histograms)

    def test_arena_rows_are_independent(self, scheme):
        arena = DescriptorArena(scheme, 2)
        first = scheme.extract_from_patch(0.0, _normalized_patch(seed=1), arena[0])
        second = scheme.extract_from_patch(0.0, _normalized_patch(seed=2), arena[1])

        assert np.shares_memory(first.data, arena.data)
        assert np.array_equal(arena.data[0], first.histograms)
        assert np.array_equal(arena.data[1], second.histograms)
        assert not np.array_equal(arena.data[0], arena.data[1])

    def test_storage_shape_mismatch(self, scheme):
        with pytest.raises(ValueError):
            scheme.get_data_structure(np.zeros((3, 12), dtype=np.float32))

    def test_extract_from_patch(self, scheme):
        data = scheme.extract_from_patch(0.1, _normalized_patch())
        assert data.histograms.shape == (9, 12)
        assert data.histograms.sum() == pytest.approx(1.0, rel=1e-5)
        assert np.all(data.histograms >= 0)
        assert len(data.to_string().splitlines()) == 9

    def test_cemd_scheme_keeps_cumulated_histograms(self):
        scheme = DescriptorScheme(name="cemd", rings=CLASSIC_RINGS, distance="CEMD")
        data = scheme.extract_from_patch(0.0, _normalized_patch())
        assert np.allclose(data.cumulated_histograms[:, -1], data.histograms.sum(axis=1), atol=1e-6)

    def test_mode_scheme(self):
        scheme = DescriptorScheme(name="modes", rings=CLASSIC_RINGS, distance="D2M",
                                  extract_modes=True)
        data = scheme.extract_from_patch(0.0, _normalized_patch())
        assert len(data.modes) == 9
        for modes in data.modes:
            for mode in modes:
                assert mode.phase * 4 == pytest.approx(round(mode.phase * 4))
                assert mode.norm in (0.25, 0.5, 0.75, 1.0)

    def test_modes_to_histograms(self):
        scheme = DescriptorScheme(name="peaks", sectors=[2], rings=[1], n_bin=4)
        data = scheme.get_data_structure()
        data.histograms[:] = 1.0
        data.modes = [[_mode(0.25, 0.5)], []]
        data.modes_to_histograms()

        assert np.allclose(data.histograms[0], [0.0, 0.5, 0.0, 0.0])
        assert np.all(data.histograms[1] == 0)

    def test_compute_distances(self, scheme):
        request = scheme.extract_from_patch(0.0, _normalized_patch(seed=3))
        candidates = [scheme.extract_from_patch(0.0, _normalized_patch(seed=s)) for s in (4, 3, 5)]
        distances = scheme.compute_distances(request, candidates)

        assert distances.shape == (9, 3)
        assert distances.dtype == np.float32
        assert np.all(distances[:, 1] == 0)
        assert np.all(distances[:, 0] >= 0)
        assert scheme.compute_distances(request, []).shape == (9, 0)


class TestDescriptorPresets:
    """Test cases for the named descriptor presets"""

    def test_presets(self):
        sift = get_descriptor("SIFT")
        assert sift.rings == tuple(float(r) for r in CLASSIC_RINGS)
        assert sift.colorspace == {"name": "Ohta", "channel": 0}

        hue = get_descriptor("HUE-NORM")
        assert hue.descriptor_type == "WEIGHTED-HISTOGRAMS"
        assert hue.normalize and not hue.relative_orientation

    def test_unknown_preset(self):
        with pytest.raises(ValueError):
            get_descriptor("SURF")

    def test_resolve_descriptors(self):
        assert [s.name for s in resolve_descriptors(None)] == ["SIFT"]
        schemes = resolve_descriptors(["SIFT", {"name": "custom", "n_bin": 8}])
        assert [s.name for s in schemes] == ["SIFT", "custom"]
        assert schemes[1].n_bin == 8

        hue = resolve_descriptors([{"name": "hue", "type": "WEIGHTED-HISTOGRAMS",
                                    "colorspace": {"name": "HSL", "weight_channel": 1,
                                                   "phase_channel": 0}}])[0]
        assert hue.descriptor_type == "WEIGHTED-HISTOGRAMS"
        assert hue.colorspace["weight_channel"] == 1

        with pytest.raises(ValueError):
            resolve_descriptors([{"name": "hue", "type": "GRADIENT",
                                  "descriptor_type": "WEIGHTED-HISTOGRAMS"}])

        with pytest.raises(ValueError):
            resolve_descriptors(["SIFT", "SIFT"])


class TestHistogramDistances:
    """Test cases for the histogram distances"""

    def test_l1_l2(self):
        h1 = np.array([1.0, 0.0, 0.0, 0.0])
        h2 = np.array([0.0, 1.0, 0.0, 0.0])
        assert l1_distance(h1, h2) == pytest.approx(0.5)
        assert l2_distance(h1, h2) == pytest.approx(0.5)
        assert l1_distance(h1, h1) == 0

    def test_cemd(self):
        np.random.seed(42)
        c1 = np.cumsum(np.random.rand(12))
        c2 = np.cumsum(np.random.rand(12))
        assert cemd_distance(c1, c1) == pytest.approx(0.0)
        assert cemd_distance(c1, c2) == pytest.approx(cemd_distance(c2, c1))
        assert cemd_distance(c1, c2) > 0

    def test_cemd_circular_shift(self):
        # Moving a unit mass by one bin costs one bin in either direction
        h1 = np.zeros(8)
        h1[0] = 1
        forward = np.roll(h1, 1)
        backward = np.roll(h1, -1)
        assert cemd_distance(np.cumsum(h1), np.cumsum(forward)) == pytest.approx(1 / 8)
        assert cemd_distance(np.cumsum(h1), np.cumsum(backward)) == pytest.approx(1 / 8)

    def test_d2m(self):
        mode = _mode(0.25, 0.5)
        assert d2m_distance([mode], [_mode(0.25, 0.5)]) == pytest.approx(0.0)
        # Unmatched mass costs half a turn per unit
        assert d2m_distance([], [mode]) == pytest.approx(0.25)
        assert d2m_distance([mode], []) == pytest.approx(0.25)
        assert d2m_distance([], []) == 0

    def test_d2m_moves_mass(self):
        assert d2m_distance([_mode(0.0, 1.0)], [_mode(0.25, 1.0)]) == pytest.approx(0.25)
        assert d2m_distance([_mode(0.0, 1.0)], [_mode(0.9, 1.0)]) == pytest.approx(0.1)

        two = [_mode(0.0, 0.5), _mode(0.5, 0.5)]
        assert d2m_distance(two, [_mode(0.0, 0.5), _mode(0.5, 0.5)]) == pytest.approx(0.0)
