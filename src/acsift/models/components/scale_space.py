import numpy as np
from scipy.ndimage import maximum_filter
from typing import Dict, List, Optional, Sequence, Tuple

from .descriptor import DescriptorScheme, GradientPatch, NormalizedPatch, resolve_descriptors
from .descriptor_data import DescriptorArena
from .image_ops import gaussian_blur, im2single, image_gradient, rgb2gray
from .keypoint import ORIENTATION_ALGORITHMS, Keypoint

# Harris cornerness constants, for images in [0, 1]
HARRIS_C1 = 255.0 ** 4
HARRIS_C2 = 0.2
HARRIS_K = 0.04
HARRIS_WINDOW = 1.4

# Keypoints whose scale is this close to a level reuse the level directly
SIGMA_TOLERANCE = 1e-2


def _round(value: float) -> int:
    return int(np.floor(value + 0.5))


class ScaleLevel:
    """One level of the pyramid"""

    def __init__(self, sigma: float, blur: np.ndarray, gray: np.ndarray,
                 gradient: Dict[str, np.ndarray]):
        self.sigma = sigma
        self.blur = blur
        self.gray = gray
        self.gradient = gradient


class ScaleSpace:
    """
    Gaussian scale space of one image with keypoint detection and description

    Each stage (thresholding, orientation, description) returns a new
    tuple of keypoints and stores it as the current `keypoints`.
    """

    def __init__(self, image: np.ndarray,
                 n_scale: int = 13,
                 sigma_init: float = 0.63,
                 scale_ratio: float = 1.26,
                 lap_thresh: float = 4e-3,
                 harris_thresh: float = 1e4,
                 algorithm: str = "max",
                 factor_size: float = 12,
                 orientation_bins: int = 36):
        """
        Initialize scale space parameters

        Args:
            image: Gray or RGB image, integer or float in [0, 1]
            n_scale: Number of levels
            sigma_init: Scale of the first level
            scale_ratio: Ratio between consecutive scales
            lap_thresh: Minimum normalized Laplacian of a keypoint
            harris_thresh: Harris threshold rejecting edge responses
            algorithm: Orientation algorithm, 'max' or 'ac'
            factor_size: Support half-size in units of sigma
            orientation_bins: Number of bins of the orientation histogram
        """
        self.image = im2single(image)
        self.height, self.width = self.image.shape[:2]
        self.n_scale = n_scale
        self.sigma_init = sigma_init
        self.scale_ratio = scale_ratio
        self.lap_thresh = lap_thresh
        self.harris_thresh = harris_thresh
        self.algorithm = self._check_algorithm(algorithm)
        self.factor_size = factor_size
        self.orientation_bins = orientation_bins

        self.scale: List[ScaleLevel] = []
        self.max_laplacian: Optional[Tuple[Keypoint, ...]] = None
        self.keypoints: Optional[Tuple[Keypoint, ...]] = None
        self.descriptors: List[DescriptorScheme] = []
        self.arenas: Dict[str, DescriptorArena] = {}

    @staticmethod
    def _check_algorithm(algorithm: str) -> str:
        algorithm = algorithm.lower()
        if algorithm not in ORIENTATION_ALGORITHMS:
            raise ValueError(f"Unknown orientation algorithm '{algorithm}', "
                             f"expected one of {ORIENTATION_ALGORITHMS}")
        return algorithm

    def compute_scale_space(self, n_scale: Optional[int] = None, sigma_init: Optional[float] = None,
                            scale_ratio: Optional[float] = None) -> "ScaleSpace":
        """Build every level: blurred image, gray image, gradient and normalized Laplacian"""
        if n_scale is not None:
            self.n_scale = n_scale
        if sigma_init is not None:
            self.sigma_init = sigma_init
        if scale_ratio is not None:
            self.scale_ratio = scale_ratio

        self.scale = []
        self.max_laplacian = None
        self.keypoints = None
        for i in range(self.n_scale):
            sigma = self.sigma_init * self.scale_ratio ** i
            blur = gaussian_blur(self.image, sigma)
            gray = rgb2gray(blur)
            gradient = image_gradient(gray)
            gradient["laplacian"] = np.abs(gradient["laplacian"]) * sigma * sigma
            self.scale.append(ScaleLevel(sigma, blur, gray, gradient))
        return self

    def _check_scale_space(self):
        if not self.scale:
            raise RuntimeError("Scale space has to be computed first")

    def precompute_max_laplacian(self) -> Tuple[Keypoint, ...]:
        """
        Find the strict local maxima of the normalized Laplacian over
        space and scale, on interior levels and pixels
        """
        self._check_scale_space()
        footprint = np.ones((3, 3, 3), dtype=bool)
        footprint[1, 1, 1] = False

        keypoints = []
        for k in range(1, len(self.scale) - 1):
            stack = np.stack([self.scale[i].gradient["laplacian"] for i in (k - 1, k, k + 1)])
            neighbours = maximum_filter(stack, footprint=footprint, mode="constant", cval=-np.inf)[1]
            center = stack[1]
            is_max = center > neighbours
            is_max[[0, -1], :] = False
            is_max[:, [0, -1]] = False

            sigma = self.scale[k].sigma
            # Column-major scan: x then y
            cols, rows = np.nonzero(is_max.T)
            for x, y in zip(cols, rows):
                keypoint = Keypoint(int(x), int(y), sigma, float(center[y, x]), self.factor_size)
                keypoint.n_scale = k
                keypoints.append(keypoint)

        self.max_laplacian = tuple(keypoints)
        self.keypoints = None
        return self.max_laplacian

    def precompute_harris(self) -> "ScaleSpace":
        """Smoothed structure tensor terms (xx, yy, xy) on interior levels"""
        self._check_scale_space()
        for level in self.scale[1:-1]:
            gradient = level.gradient
            window = HARRIS_WINDOW * level.sigma
            gradient["xx"] = gaussian_blur(gradient["x"] * gradient["x"], window)
            gradient["yy"] = gaussian_blur(gradient["y"] * gradient["y"], window)
            gradient["xy"] = gaussian_blur(gradient["x"] * gradient["y"], window)
        return self

    def laplacian_threshold(self, threshold: Optional[float] = None,
                            keypoints: Optional[Sequence[Keypoint]] = None) -> Tuple[Keypoint, ...]:
        """
        Keep keypoints whose normalized Laplacian exceeds the threshold

        Args:
            threshold: Laplacian threshold, defaults to lap_thresh
            keypoints: Input keypoints, defaults to the raw maxima
        """
        if threshold is not None:
            self.lap_thresh = threshold
        if keypoints is None:
            if self.max_laplacian is None:
                raise RuntimeError("Laplacian maxima have to be computed first")
            keypoints = self.max_laplacian

        self.keypoints = tuple(
            key for key in keypoints
            if self.scale[key.n_scale].gradient["laplacian"][key.y, key.x] > self.lap_thresh
        )
        return self.keypoints

    def harris_threshold(self, threshold: Optional[float] = None,
                         keypoints: Optional[Sequence[Keypoint]] = None) -> Tuple[Keypoint, ...]:
        """
        Reject keypoints lying on edges using the Harris cornerness

        Args:
            threshold: Harris threshold, defaults to harris_thresh
            keypoints: Input keypoints, defaults to the current keypoints
        """
        if threshold is not None:
            self.harris_thresh = threshold
        if keypoints is None:
            if self.keypoints is None:
                raise RuntimeError("Laplacian threshold has to be applied before the Harris threshold")
            keypoints = self.keypoints

        selected = []
        for key in keypoints:
            level = self.scale[key.n_scale]
            if "xx" not in level.gradient:
                raise RuntimeError("Harris terms have to be precomputed first")
            xx = float(level.gradient["xx"][key.y, key.x])
            yy = float(level.gradient["yy"][key.y, key.x])
            xy = float(level.gradient["xy"][key.y, key.x])
            trace = xx + yy
            cornerness = (HARRIS_C1 * (xx * yy - xy * xy - HARRIS_K * trace * trace)
                          - HARRIS_C2 * self.harris_thresh / level.sigma ** 4)
            if cornerness > 0:
                selected.append(key)

        self.keypoints = tuple(selected)
        return self.keypoints

    def detect(self, lap_thresh: Optional[float] = None,
               harris_thresh: Optional[float] = None) -> Tuple[Keypoint, ...]:
        """Laplacian threshold followed by Harris threshold"""
        self.laplacian_threshold(lap_thresh)
        return self.harris_threshold(harris_thresh)

    def _nearest_level(self, sigma: float) -> int:
        """Index of the closest level whose scale does not exceed sigma"""
        below = [i for i, level in enumerate(self.scale) if level.sigma <= sigma + 1e-12]
        if not below:
            return 0
        return max(below, key=lambda i: self.scale[i].sigma)

    def _patch_bounds(self, key: Keypoint) -> Optional[Tuple[slice, slice]]:
        half = _round(self.factor_size * key.sigma)
        x, y = _round(key.x), _round(key.y)
        if x - half < 0 or y - half < 0 or x + half > self.width - 1 or y + half > self.height - 1:
            return None
        return slice(y - half, y + half + 1), slice(x - half, x + half + 1)

    def _corrective_sigma(self, key: Keypoint, level: ScaleLevel) -> float:
        if key.sigma - level.sigma > SIGMA_TOLERANCE:
            return float(np.sqrt(key.sigma ** 2 - level.sigma ** 2))
        return 0.0

    def get_orientation_patch(self, key: Keypoint) -> Optional[GradientPatch]:
        """Gradient patch around the keypoint at its scale, None if out of the image"""
        bounds = self._patch_bounds(key)
        if bounds is None:
            return None
        rows, cols = bounds
        level = self.scale[self._nearest_level(key.sigma)]

        sigma = self._corrective_sigma(key, level)
        if sigma > 0:
            gradient = image_gradient(gaussian_blur(level.gray[rows, cols], sigma), laplacian=False)
            return GradientPatch(gradient["phase"], gradient["norm"])
        return GradientPatch(level.gradient["phase"][rows, cols], level.gradient["norm"][rows, cols])

    def get_image_patch(self, key: Keypoint) -> Optional[np.ndarray]:
        """RGB patch around the keypoint at its scale, None if out of the image"""
        bounds = self._patch_bounds(key)
        if bounds is None:
            return None
        rows, cols = bounds
        level = self.scale[self._nearest_level(key.sigma)]

        sigma = self._corrective_sigma(key, level)
        if sigma > 0:
            return gaussian_blur(level.blur[rows, cols], sigma)
        return level.blur[rows, cols].copy()

    @staticmethod
    def normalize_patch(patch: np.ndarray) -> NormalizedPatch:
        """
        Apply a Gaussian window to an RGB patch and measure its mean color

        Args:
            patch: (2s+1, 2s+1, 3) RGB patch

        Returns:
            NormalizedPatch with the windowed patch, the mean color scaled
            to unit quadratic mean, and the support disk mask
        """
        size = patch.shape[0]
        w_size = max(size // 2, 1)
        rows, cols = np.mgrid[0:size, 0:size]
        r2 = (cols - size // 2) ** 2 + (rows - size // 2) ** 2
        weight = np.exp(-2.0 * r2 / (w_size * w_size)).astype(np.float32)

        windowed = patch * weight[:, :, None]
        mean = windowed.reshape(-1, 3).sum(axis=0) / weight.sum()
        norm = np.sqrt((mean * mean).sum() / 3)
        mean = mean / norm if norm > 0 else np.ones(3)
        return NormalizedPatch(windowed.astype(np.float32), mean.astype(np.float32),
                               r2 <= w_size * w_size)

    def _require_keypoints(self, keypoints: Optional[Sequence[Keypoint]]) -> Sequence[Keypoint]:
        if keypoints is not None:
            return keypoints
        if self.keypoints is None:
            raise RuntimeError("Keypoints have to be detected first")
        return self.keypoints

    def extract_main_orientations(self, algorithm: Optional[str] = None,
                                  keypoints: Optional[Sequence[Keypoint]] = None) -> Tuple[Keypoint, ...]:
        """
        Assign orientations, duplicating keypoints with several dominant orientations

        Keypoints whose support leaves the image are dropped.
        """
        if algorithm is not None:
            self.algorithm = self._check_algorithm(algorithm)
        keypoints = self._require_keypoints(keypoints)

        oriented = []
        for key in keypoints:
            patch = self.get_orientation_patch(key)
            if patch is None:
                continue
            source = key.copy()
            for orientation in source.extract_main_orientation(patch, self.algorithm,
                                                               self.orientation_bins):
                new_key = source.copy()
                new_key.orientation = orientation
                oriented.append(new_key)

        self.keypoints = tuple(oriented)
        return self.keypoints

    def extract_descriptors(self, descriptors: Optional[Sequence] = None,
                            keypoints: Optional[Sequence[Keypoint]] = None) -> Tuple[Keypoint, ...]:
        """
        Compute descriptors for every keypoint whose support lies in the image

        Args:
            descriptors: DescriptorSchemes, preset names or keyword dicts
                (defaults to SIFT)
            keypoints: Input keypoints, defaults to the current keypoints

        Returns:
            Copies of the keypoints holding their DescriptorData
        """
        self.descriptors = resolve_descriptors(descriptors)
        keypoints = [key for key in self._require_keypoints(keypoints)
                     if self._patch_bounds(key) is not None]

        self.arenas = {scheme.name: DescriptorArena(scheme, len(keypoints))
                       for scheme in self.descriptors}
        described = []
        for k, key in enumerate(keypoints):
            npatch = self.normalize_patch(self.get_image_patch(key))
            new_key = key.copy()
            new_key.descriptors_data = {}
            new_key.extract_descriptors(npatch, self.descriptors,
                                        {name: arena[k] for name, arena in self.arenas.items()})
            described.append(new_key)

        self.keypoints = tuple(described)
        return self.keypoints

    def project_keypoints(self, homography: np.ndarray,
                          keypoints: Optional[Sequence[Keypoint]] = None) -> List[Keypoint]:
        """Project keypoints through a homography, keeping those whose support stays in the image"""
        projected = []
        for key in self._require_keypoints(keypoints):
            new_key = key.project(homography)
            if self._patch_bounds(new_key) is not None:
                projected.append(new_key)
        return projected

    def get_image(self, scale: int, kind: Optional[str] = None, normalize: bool = False) -> np.ndarray:
        """
        Image of one level for display

        Args:
            scale: Level index
            kind: None or 'blur' for the blurred RGB image, 'gray', or a gradient key
                ('x', 'y', 'norm', 'phase', 'laplacian', 'xx', 'yy', 'xy')
            normalize: Rescale values to [0, 1]
        """
        self._check_scale_space()
        level = self.scale[scale]
        if kind is None or kind == "blur":
            image = level.blur
        elif kind == "gray":
            image = level.gray
        elif kind in level.gradient:
            image = level.gradient[kind]
        else:
            raise ValueError(f"Unknown image kind '{kind}'")

        image = image.copy()
        if normalize:
            low, high = image.min(), image.max()
            image = (image - low) / (high - low) if high > low else np.zeros_like(image)
        return image

    def keypoints_to_string(self, keypoints: Optional[Sequence[Keypoint]] = None) -> str:
        return "".join(key.to_string() + "\n" for key in self._require_keypoints(keypoints))

    def descriptors_to_string(self, name: str, keypoints: Optional[Sequence[Keypoint]] = None) -> str:
        out = []
        for key in self._require_keypoints(keypoints):
            if name not in key.descriptors_data:
                raise ValueError(f"Descriptor '{name}' has not been computed")
            out.append(key.descriptors_data[name].to_string())
        return "".join(out)
