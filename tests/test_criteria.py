import pytest
import numpy as np
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from acsift.models.components.criteria import (NFA_THRESHOLD, a_contrario, distance_cdf,
                                               get_criterion, nearest_neighbor,
                                               nearest_neighbor_a_contrario,
                                               nearest_neighbor_ratio, sum_distances)


class TestCriteria:
    """Test cases for the matching decision rules"""

    @pytest.fixture
    def distances(self):
        np.random.seed(42)
        table = np.random.uniform(0.08, 0.14, (9, 10)).astype(np.float32)
        table[:, 2] = 0.0
        return {"SIFT": table}

    def test_sum_distances(self):
        distances = {"A": np.ones((9, 3)), "B": np.full((9, 3), 2.0)}
        assert np.allclose(sum_distances(distances), 27.0)

    def test_nearest_neighbor(self, distances):
        assert nearest_neighbor(distances) == [(2, 0.0)]

    def test_ratio_is_scale_invariant(self):
        np.random.seed(42)
        table = np.random.rand(9, 5)
        (index, ratio), = nearest_neighbor_ratio({"SIFT": table})
        (scaled_index, scaled_ratio), = nearest_neighbor_ratio({"SIFT": 3.0 * table})

        assert index == scaled_index == int(np.argmin(table.sum(axis=0)))
        assert ratio == pytest.approx(scaled_ratio)
        assert 0 <= ratio <= 1

    def test_ratio_edge_cases(self):
        assert nearest_neighbor_ratio({"SIFT": np.ones((9, 1))}) == [(0, 0.0)]
        assert nearest_neighbor_ratio({"SIFT": np.zeros((9, 4))}) == [(0, 1.0)]

    def test_distance_cdf(self, distances):
        cdf = distance_cdf(distances)
        assert len(cdf) == 9 * 99 + 1
        assert np.all(np.diff(cdf) >= -1e-12)
        assert cdf[-1] == pytest.approx(1.0)
        # Candidate 2 sits in the first bin of every sector
        assert cdf[0] == pytest.approx(0.1 ** 9)

    def test_cdf_clips_large_distances(self):
        cdf = distance_cdf({"SIFT": np.full((2, 4), 5.0)})
        assert cdf[-1] == pytest.approx(1.0)
        assert cdf[-2] == pytest.approx(0.0)

    def test_nearest_neighbor_a_contrario(self, distances):
        (index, nfa), = nearest_neighbor_a_contrario(distances)
        assert index == 2
        assert nfa == pytest.approx(10 * 0.1 ** 9)

    def test_a_contrario(self, distances):
        matches = a_contrario(distances)
        indices = [index for index, _ in matches]

        assert 2 in indices
        assert all(score < NFA_THRESHOLD for _, score in matches)
        assert dict(matches)[2] == pytest.approx(nearest_neighbor_a_contrario(distances)[0][1])

    def test_get_criterion(self):
        assert get_criterion("NN-DR") is nearest_neighbor_ratio
        with pytest.raises(ValueError):
            get_criterion("RANSAC")
