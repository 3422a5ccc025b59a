import pytest
import numpy as np
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from acsift.models.components.modes import Mode, extract_modes


class TestModes:
    """Test cases for maximal meaningful mode extraction"""

    def test_single_peak(self):
        histogram = np.zeros(36)
        histogram[9] = 100
        modes = extract_modes(histogram, circular=True)

        assert len(modes) == 1
        assert modes[0].bins == (9, 9)
        assert modes[0].phase == pytest.approx(0.25)
        assert modes[0].norm == pytest.approx(100)

    def test_flat_histogram_has_no_mode(self):
        assert extract_modes(np.full(36, 10.0), circular=True) == []

    def test_peak_over_background(self):
        histogram = np.ones(36)
        histogram[8:11] += [20, 60, 20]
        modes = extract_modes(histogram, circular=True)

        assert len(modes) >= 1
        first, last = modes[0].bins
        assert first <= 9 <= last
        assert modes[0].phase == pytest.approx(0.25)

    def test_gaussian_mass_model(self):
        histogram = np.zeros(36)
        histogram[18] = 80.0
        modes = extract_modes(histogram, True, 0, 80, 1.0, 1.0)

        assert len(modes) == 1
        assert modes[0].phase == pytest.approx(0.5)

    def test_modes_are_sorted_by_measure(self):
        histogram = np.ones(36)
        histogram[5] += 80
        histogram[25] += 30
        modes = extract_modes(histogram, circular=True)

        assert len(modes) >= 2
        measures = [mode.measure for mode in modes]
        assert measures == sorted(measures, reverse=True)

    def test_non_circular(self):
        histogram = np.zeros(10)
        histogram[2] = 50
        modes = extract_modes(histogram)

        assert len(modes) == 1
        assert modes[0].bins == (2, 2)
        assert modes[0].phase == pytest.approx(0.2)

    def test_empty_histogram(self):
        assert extract_modes(np.zeros(12), circular=True) == []
        assert extract_modes([5.0], circular=True) == []

    def test_wrapping_barycenter(self):
        histogram = np.zeros(36)
        histogram[[35, 0, 1]] = [1, 2, 1]
        mode = Mode(35, 1, 0.0, histogram)

        assert mode.norm == pytest.approx(4)
        assert mode.phase == pytest.approx(0.0)

    def test_copy(self):
        histogram = np.arange(8, dtype=float)
        mode = Mode(2, 4, 1.5, histogram)
        clone = mode.copy()
        clone.norm = 0

        assert clone.bins == mode.bins
        assert clone.phase == mode.phase
        assert mode.norm == pytest.approx(2 + 3 + 4)
