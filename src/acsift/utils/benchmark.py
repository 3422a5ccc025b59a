"""
Evaluation of matching quality when the transformation between the two
images is known.
"""

import time
import numpy as np
import cv2
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..models.components.criteria import get_criterion, nearest_neighbor_ratio
from ..models.components.keypoint import Keypoint
from ..models.components.match import Match
from ..models.sift import Sift

DEFAULT_CRITERIA = ("NN-DT", "NN-DR", "NN-AC")


def skew_homography(shape: Tuple[int, ...], skew: float) -> np.ndarray:
    """
    Homography stretching an image along its diagonal around its center

    Args:
        shape: Image shape (height, width, ...)
        skew: Stretch factor along the diagonal
    """
    height, width = shape[:2]
    angle = np.arctan2(height, width)
    c, s = np.cos(angle), np.sin(angle)

    translate = np.array([[1, 0, width / 2], [0, 1, height / 2], [0, 0, 1]], dtype=np.float64)
    rotate = np.array([[c, -s, 0], [s, c, 0], [0, 0, 1]], dtype=np.float64)
    stretch = np.diag([skew, 1.0, 1.0])
    return translate @ rotate @ stretch @ np.linalg.inv(rotate) @ np.linalg.inv(translate)


def warp_image(image: np.ndarray, homography: np.ndarray) -> np.ndarray:
    """Apply a homography to an image, keeping its size"""
    height, width = image.shape[:2]
    image = np.ascontiguousarray(image, dtype=np.float32)
    return cv2.warpPerspective(image, np.asarray(homography, dtype=np.float64), (width, height),
                               flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT)


def is_valid_match(query: Keypoint, candidate: Keypoint, homography: np.ndarray) -> bool:
    """A match is valid when the projected query falls within the candidate support"""
    projected = query.project(homography)
    distance = np.hypot(projected.x - candidate.x, projected.y - candidate.y)
    return bool(distance < min(projected.sigma, candidate.sigma) * query.factor_size)


def validate_matches(matches: Sequence[Match], homography: np.ndarray) -> Sequence[Match]:
    for match in matches:
        match.is_valid = is_valid_match(match.query_keypoint, match.candidate_keypoint, homography)
    return matches


def create_curves(matches: Sequence[Match]) -> Dict[str, np.ndarray]:
    """
    Indicator arrays of true and false matches, aligned with their distances

    Cumulating 'true' and 'false' over matches sorted by distance gives
    the number of correct and wrong matches kept at each threshold.
    """
    valid = np.array([match.is_valid for match in matches], dtype=bool)
    return {
        "true": valid.astype(np.int64),
        "false": (~valid).astype(np.int64),
        "threshold": np.array([match.distance for match in matches], dtype=np.float64),
    }


def compute_matches_benchmark(sift: Sift, s1: int = 0, s2: int = 1,
                              criteria: Sequence[str] = DEFAULT_CRITERIA,
                              combinations: Optional[Dict[str, Sequence[str]]] = None
                              ) -> Dict[str, List[Match]]:
    """
    Match image s1 against image s2 with several criteria at once

    Distances are computed once per query keypoint. Each combination is an
    NN-DR decision restricted to a subset of the descriptors.

    Returns:
        Dictionary criterion or combination name -> matches sorted by distance
    """
    combinations = combinations or {}
    deciders = {name: get_criterion(name) for name in criteria}
    keypoints1 = sift.scale_spaces[s1].keypoints
    keypoints2 = sift.scale_spaces[s2].keypoints
    if keypoints1 is None or keypoints2 is None:
        raise RuntimeError("Descriptors have to be computed before matching")

    start = time.time()
    results = {name: [] for name in list(deciders) + list(combinations)}
    if len(keypoints2) > 0:
        for k, key in enumerate(keypoints1):
            distances = key.compute_distances(keypoints2)
            for name, decide in deciders.items():
                results[name].extend(Match(k, key, index, keypoints2[index], score)
                                     for index, score in decide(distances))
            for name, names in combinations.items():
                subset = {n: distances[n] for n in names if n in distances}
                if not subset:
                    raise ValueError(f"Combination '{name}' uses no computed descriptor")
                results[name].extend(Match(k, key, index, keypoints2[index], score)
                                     for index, score in nearest_neighbor_ratio(subset))

    for matches in results.values():
        matches.sort(key=lambda match: match.distance)
    sift._log(f"Matching benchmark time: {1000 * (time.time() - start):.1f} ms")
    return results


def benchmark(images, homography: Optional[np.ndarray] = None,
              transform: Optional[Callable[[np.ndarray], np.ndarray]] = None,
              project: bool = False,
              criteria: Sequence[str] = DEFAULT_CRITERIA,
              combinations: Optional[Dict[str, Sequence[str]]] = None,
              **sift_kwargs) -> Tuple[Sift, Dict[str, List[Match]], Dict[str, Dict[str, np.ndarray]]]:
    """
    Evaluate matching between two images related by a known homography

    Args:
        images: One image (the second is obtained by warping it) or a pair
        homography: 3x3 matrix mapping the first image onto the second
        transform: Function applied to the warped image (noise, color change...)
        project: Project the keypoints of the first image instead of
            detecting keypoints in the second one
        criteria: Criteria to evaluate
        combinations: Descriptor subsets evaluated with NN-DR
        **sift_kwargs: Parameters forwarded to Sift

    Returns:
        The Sift object, the matches per criterion and the curves per criterion
        (empty when no homography is given)
    """
    if isinstance(images, (list, tuple)):
        image1, image2 = images
    elif homography is not None:
        image1 = images
        image2 = warp_image(images, homography)
        if transform is not None:
            image2 = transform(image2)
    else:
        raise ValueError("A homography is needed to benchmark a single image")

    sift = Sift([image1, image2], **sift_kwargs)
    sift.compute_scale_space()
    if project:
        if homography is None:
            raise ValueError("Projecting keypoints requires a homography")
        first, second = sift.scale_spaces
        first.detect()
        first.extract_main_orientations()
        second.keypoints = tuple(first.project_keypoints(homography))
    else:
        sift.apply_scale_space_threshold()
        sift.compute_main_orientations()
    sift.compute_descriptors()

    matches = compute_matches_benchmark(sift, 0, 1, criteria, combinations)
    curves = {}
    if homography is not None:
        for name, criterion_matches in matches.items():
            validate_matches(criterion_matches, homography)
            curves[name] = create_curves(criterion_matches)
    return sift, matches, curves
