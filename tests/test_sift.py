import pytest
import numpy as np
import cv2
import sys
import os
import importlib.util

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from acsift.models.sift import Sift

CONFIG_PATH = os.path.join(os.path.dirname(__file__), '..', 'configs', 'acsift', 'default.py')


class TestSift:
    """Test cases for the matching pipeline"""

    @pytest.fixture
    def sample_image(self):
        """Create a sample image for testing"""
        np.random.seed(42)
        image = np.random.randint(0, 256, (64, 64, 3), dtype=np.uint8)
        cv2.circle(image, (32, 32), 10, (255, 128, 0), -1)
        cv2.circle(image, (14, 48), 6, (0, 0, 255), -1)
        return image

    def _described(self, images, **kwargs):
        kwargs.setdefault('verbose', False)
        sift = Sift(images, n_scale=5, factor_size=4, **kwargs)
        sift.compute_scale_space()
        sift.apply_scale_space_threshold()
        sift.compute_main_orientations()
        sift.compute_descriptors()
        return sift

    def test_initialization(self, sample_image):
        sift = Sift([sample_image, sample_image], verbose=False)
        assert len(sift.scale_spaces) == 2
        assert [scheme.name for scheme in sift.descriptors] == ["SIFT"]
        assert sift.criterion == "NN-DR"
        assert sift.threshold == 0.7

        with pytest.raises(ValueError):
            Sift([sample_image], criterion="BEST", verbose=False)

    def test_identical_images_match_themselves(self, sample_image):
        sift = self._described([sample_image, sample_image], criterion="NN-DT")
        matches = sift.compute_matches(0, 1)

        assert len(matches) == len(sift.scale_spaces[0].keypoints) > 0
        for match in matches:
            assert match.distance == pytest.approx(0.0, abs=1e-6)
            assert match.candidate_index == match.query_index
            assert (match.query_keypoint.x, match.query_keypoint.y) == \
                (match.candidate_keypoint.x, match.candidate_keypoint.y)

    def test_matching_leaves_keypoints_untouched(self, sample_image):
        sift = self._described([sample_image, sample_image], criterion="NN-DT")
        keypoints1 = sift.scale_spaces[0].keypoints
        keypoints2 = sift.scale_spaces[1].keypoints
        before = [{name: id(value) for name, value in vars(key).items()}
                  for key in keypoints1 + keypoints2]

        matches = sift.compute_matches(0, 1)
        after = [{name: id(value) for name, value in vars(key).items()}
                 for key in keypoints1 + keypoints2]
        assert after == before
        for match in matches:
            assert keypoints1[match.query_index] is match.query_keypoint
            assert keypoints2[match.candidate_index] is match.candidate_keypoint

    def test_keypoint_match_query_index(self, sample_image):
        sift = self._described([sample_image, sample_image], criterion="NN-DT")
        last = len(sift.scale_spaces[0].keypoints) - 1
        key = sift.scale_spaces[0].keypoints[last]
        candidates = sift.scale_spaces[1].keypoints

        matches = key.match(candidates, "NN-DT", index=last)
        assert [match.query_index for match in matches] == [last]
        assert matches[0].candidate_index == last
        assert key.match(candidates, "NN-DT")[0].query_index is None

    def test_matches_are_sorted(self, sample_image):
        noisy = np.clip(sample_image + np.random.normal(0, 8, sample_image.shape), 0, 255)
        sift = self._described([sample_image, noisy.astype(np.uint8)])
        matches = sift.compute_matches(0, 1)
        distances = [match.distance for match in matches]
        assert distances == sorted(distances)
        assert sift.matches[(0, 1)] is matches

    def test_ratio_threshold(self, sample_image):
        sift = self._described([sample_image, sample_image], criterion="NN-DR")
        sift.compute_matches(0, 1)
        selected = sift.threshold_matches(0, 1)

        # Every keypoint finds itself with a ratio of 0
        assert len(selected) == len(sift.scale_spaces[0].keypoints)
        assert all(match.distance < 0.7 for match in selected)
        assert sift.matches_list[(0, 1)] is selected

    def test_a_contrario_threshold_is_divided(self, sample_image):
        sift = self._described([sample_image, sample_image], criterion="AC", threshold=1.0)
        matches = sift.compute_matches(0, 1)
        selected = sift.threshold_matches(0, 1)

        n_pairs = len(sift.scale_spaces[0].keypoints) * len(sift.scale_spaces[1].keypoints)
        expected = [match for match in matches if match.distance < 1.0 / n_pairs]
        assert selected == expected
        assert len(selected) > 0

    def test_thresholding_requires_matches(self, sample_image):
        sift = Sift([sample_image, sample_image], verbose=False)
        with pytest.raises(RuntimeError):
            sift.threshold_matches(0, 1)
        with pytest.raises(RuntimeError):
            sift.matches_to_string(0, 1)

    def test_matching_requires_descriptors(self, sample_image):
        sift = Sift([sample_image, sample_image], n_scale=5, factor_size=4, verbose=False)
        sift.compute_scale_space()
        sift.apply_scale_space_threshold()
        with pytest.raises(RuntimeError):
            sift.compute_matches(0, 1)

    def test_match_pipeline(self, sample_image):
        sift = Sift([sample_image, sample_image], n_scale=5, factor_size=4,
                    descriptors=["SIFT", "HUE-NORM"], verbose=False)
        selected = sift.match(0, 1)
        assert len(selected) > 0

        lines = sift.matches_to_string(0, 1).splitlines()
        assert len(lines) == len(selected)
        fields = lines[0].split()
        assert len(fields) == 6
        assert fields[-1] == "0"

    def test_descriptor_subset(self, sample_image):
        sift = self._described([sample_image, sample_image], descriptors=["SIFT", "OHTA1"],
                               criterion="NN-DT")
        matches = sift.compute_matches(0, 1, names=["OHTA1"])
        assert len(matches) > 0
        with pytest.raises(ValueError):
            sift.compute_matches(0, 1, names=["HUE"])

    def test_verbose_output(self, sample_image, capsys):
        sift = Sift([sample_image], n_scale=5, factor_size=4)
        sift.compute_scale_space()
        sift.apply_scale_space_threshold()
        out = capsys.readouterr().out
        assert "Compute scale space" in out
        assert "keypoints after thresholds" in out

    def test_from_config(self, sample_image):
        config = {
            "scale_space": {"n_scale": 5},
            "detection": {"lap_thresh": 0.01, "factor_size": 4},
            "orientation": {"algorithm": "ac"},
            "descriptors": ["SIFT", "HUE"],
            "matching": {"criterion": "NN-AC", "threshold": 5.0},
        }
        sift = Sift.from_config([sample_image], config, verbose=False)
        scale_space = sift.scale_spaces[0]

        assert scale_space.n_scale == 5
        assert scale_space.lap_thresh == 0.01
        assert scale_space.factor_size == 4
        assert scale_space.algorithm == "ac"
        assert [scheme.name for scheme in sift.descriptors] == ["SIFT", "HUE"]
        assert sift.criterion == "NN-AC"
        assert sift.threshold == 5.0

    def test_default_config_file(self, sample_image):
        spec = importlib.util.spec_from_file_location("config", CONFIG_PATH)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)

        sift = Sift.from_config([sample_image], module.config, verbose=False)
        assert [scheme.name for scheme in sift.descriptors] == ["SIFT", "HUE-NORM"]
        assert sift.scale_spaces[0].n_scale == 13
