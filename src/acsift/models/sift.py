import time
import numpy as np
from typing import Dict, List, Optional, Sequence, Tuple

from .components.criteria import A_CONTRARIO_CRITERIA, get_criterion
from .components.descriptor import resolve_descriptors
from .components.match import Match
from .components.scale_space import ScaleSpace


class Sift:
    """
    SIFT-family matcher over a list of images

    Orchestrates the complete pipeline:
    1. Gaussian scale space construction
    2. Laplacian maxima detection with Laplacian and Harris thresholds
    3. Orientation assignment
    4. Multi-region histogram descriptors
    5. Matching with a decision criterion and thresholding
    """

    def __init__(self,
                 images: Sequence[np.ndarray],
                 n_scale: int = 13,
                 sigma_init: float = 0.63,
                 scale_ratio: float = 1.26,
                 lap_thresh: float = 4e-3,
                 harris_thresh: float = 1e4,
                 algorithm: str = "max",
                 factor_size: float = 12,
                 orientation_bins: int = 36,
                 descriptors: Optional[Sequence] = None,
                 criterion: str = "NN-DR",
                 threshold: float = 0.7,
                 verbose: bool = True):
        """
        Initialize the matcher

        Args:
            images: Images to process, gray or RGB
            n_scale: Number of scale-space levels
            sigma_init: Scale of the first level
            scale_ratio: Ratio between consecutive scales
            lap_thresh: Normalized Laplacian threshold
            harris_thresh: Harris threshold
            algorithm: Orientation algorithm, 'max' or 'ac'
            factor_size: Support half-size in units of sigma
            orientation_bins: Number of orientation histogram bins
            descriptors: DescriptorSchemes, preset names or keyword dicts
            criterion: One of 'NN-DT', 'NN-DR', 'NN-AC', 'AC'
            threshold: Match threshold
            verbose: Print stage timings
        """
        get_criterion(criterion)
        self.descriptors = resolve_descriptors(descriptors)
        self.criterion = criterion
        self.threshold = threshold
        self.verbose = verbose

        self.scale_spaces = [
            ScaleSpace(image, n_scale=n_scale, sigma_init=sigma_init, scale_ratio=scale_ratio,
                       lap_thresh=lap_thresh, harris_thresh=harris_thresh, algorithm=algorithm,
                       factor_size=factor_size, orientation_bins=orientation_bins)
            for image in images
        ]
        self.matches: Dict[Tuple[int, int], List[Match]] = {}
        self.matches_list: Dict[Tuple[int, int], List[Match]] = {}
        self._criteria: Dict[Tuple[int, int], str] = {}

    @classmethod
    def from_config(cls, images: Sequence[np.ndarray], config: Dict, **overrides) -> "Sift":
        """
        Build a matcher from a configuration dictionary

        The dictionary holds 'scale_space', 'detection', 'orientation',
        'descriptors' and 'matching' sections; every section is optional.
        """
        kwargs = {}
        for section in ("scale_space", "detection", "orientation", "matching"):
            kwargs.update(config.get(section, {}))
        if "descriptors" in config:
            kwargs["descriptors"] = config["descriptors"]
        kwargs.update(overrides)
        return cls(images, **kwargs)

    def _log(self, message: str):
        if self.verbose:
            print(message)

    def _timed(self, label: str, start: float):
        self._log(f"{label}: {1000 * (time.time() - start):.1f} ms")

    def compute_scale_space(self, n_scale: Optional[int] = None, sigma_init: Optional[float] = None,
                            scale_ratio: Optional[float] = None) -> "Sift":
        start = time.time()
        for scale_space in self.scale_spaces:
            scale_space.compute_scale_space(n_scale, sigma_init, scale_ratio)
            scale_space.precompute_max_laplacian()
            scale_space.precompute_harris()
        self._timed("Compute scale space", start)
        return self

    def apply_scale_space_threshold(self, lap_thresh: Optional[float] = None,
                                    harris_thresh: Optional[float] = None) -> "Sift":
        start = time.time()
        for i, scale_space in enumerate(self.scale_spaces):
            keypoints = scale_space.detect(lap_thresh, harris_thresh)
            self._log(f"Image {i}: {len(scale_space.max_laplacian)} maxima, "
                      f"{len(keypoints)} keypoints after thresholds")
        self._timed("Threshold scale space", start)
        return self

    def compute_main_orientations(self, algorithm: Optional[str] = None) -> "Sift":
        start = time.time()
        for i, scale_space in enumerate(self.scale_spaces):
            keypoints = scale_space.extract_main_orientations(algorithm)
            self._log(f"Image {i}: {len(keypoints)} oriented keypoints")
        self._timed("Compute main orientations", start)
        return self

    def compute_descriptors(self, descriptors: Optional[Sequence] = None) -> "Sift":
        if descriptors is not None:
            self.descriptors = resolve_descriptors(descriptors)
        start = time.time()
        for scale_space in self.scale_spaces:
            scale_space.extract_descriptors(self.descriptors)
        self._timed("Compute descriptors", start)
        return self

    def _described_keypoints(self, index: int):
        keypoints = self.scale_spaces[index].keypoints
        if keypoints is None or (len(keypoints) > 0 and not keypoints[0].descriptors_data):
            raise RuntimeError(f"Descriptors of image {index} have to be computed before matching")
        return keypoints

    def compute_matches(self, s1: int = 0, s2: int = 1, criterion: Optional[str] = None,
                        names: Optional[Sequence[str]] = None) -> List[Match]:
        """
        Match every keypoint of image s1 against the keypoints of image s2

        Args:
            s1: Index of the query image
            s2: Index of the candidate image
            criterion: Decision criterion, defaults to the matcher criterion
            names: Descriptor names to use, defaults to all

        Returns:
            Matches sorted by increasing distance
        """
        criterion = criterion or self.criterion
        get_criterion(criterion)
        keypoints1 = self._described_keypoints(s1)
        keypoints2 = self._described_keypoints(s2)

        start = time.time()
        matches = []
        for k, key in enumerate(keypoints1):
            matches.extend(key.match(keypoints2, criterion, names, index=k))

        matches.sort(key=lambda match: match.distance)
        self.matches[(s1, s2)] = matches
        self._criteria[(s1, s2)] = criterion
        self._timed(f"Compute matches ({criterion}, {len(matches)} matches)", start)
        return matches

    def threshold_matches(self, s1: int = 0, s2: int = 1, threshold: Optional[float] = None,
                          criterion: Optional[str] = None) -> List[Match]:
        """
        Keep the matches whose distance is below the threshold

        For a-contrario criteria the threshold is an expected number of
        false alarms over all keypoint pairs and is divided accordingly.
        """
        if (s1, s2) not in self.matches:
            raise RuntimeError(f"Matches between images {s1} and {s2} have to be computed first")
        threshold = self.threshold if threshold is None else threshold
        criterion = criterion or self._criteria[(s1, s2)]

        if criterion in A_CONTRARIO_CRITERIA:
            n_pairs = len(self.scale_spaces[s1].keypoints) * len(self.scale_spaces[s2].keypoints)
            threshold = threshold / n_pairs if n_pairs else threshold

        selected = [match for match in self.matches[(s1, s2)] if match.distance < threshold]
        self.matches_list[(s1, s2)] = selected
        self._log(f"Images {s1}-{s2}: {len(selected)} matches below threshold")
        return selected

    def match(self, s1: int = 0, s2: int = 1) -> List[Match]:
        """Run the whole pipeline and return the thresholded matches"""
        self.compute_scale_space()
        self.apply_scale_space_threshold()
        self.compute_main_orientations()
        self.compute_descriptors()
        self.compute_matches(s1, s2)
        return self.threshold_matches(s1, s2)

    def matches_to_string(self, s1: int = 0, s2: int = 1) -> str:
        if (s1, s2) not in self.matches_list:
            raise RuntimeError(f"Matches between images {s1} and {s2} have to be thresholded first")
        return "".join(match.to_string() + "\n" for match in self.matches_list[(s1, s2)])
