import numpy as np
from typing import Dict, List, Optional, Sequence

from .criteria import get_criterion
from .descriptor import NormalizedPatch, index_circular_phase
from .match import Match
from .modes import Mode, extract_modes

ORIENTATION_ALGORITHMS = ("max", "ac")


class OrientationHistogram:
    """Gradient-norm weighted histogram of the phases around a keypoint"""

    def __init__(self, values: np.ndarray, n_points: int, lam: Optional[float] = None,
                 modes: Optional[List[Mode]] = None):
        self.values = values
        self.n_points = n_points
        self.lam = lam
        self.modes = modes


class Keypoint:
    """
    Scale-space keypoint

    Args:
        x: Column of the keypoint
        y: Row of the keypoint
        sigma: Scale of the keypoint
        laplacian: Normalized Laplacian response at detection
        factor_size: Support half-size in units of sigma
    """

    def __init__(self, x, y, sigma: Optional[float] = None, laplacian: Optional[float] = None,
                 factor_size: float = 12):
        self.x = x
        self.y = y
        self.sigma = sigma
        self.laplacian = laplacian
        self.factor_size = factor_size
        self.n_scale: Optional[int] = None
        self.orientation: Optional[float] = None
        self.histogram: Optional[OrientationHistogram] = None
        self.descriptors_data: Dict = {}

    def __repr__(self):
        return (f"Keypoint(x={self.x}, y={self.y}, sigma={self.sigma}, "
                f"orientation={self.orientation})")

    def copy(self) -> "Keypoint":
        keypoint = Keypoint(self.x, self.y, self.sigma, self.laplacian, self.factor_size)
        keypoint.n_scale = self.n_scale
        keypoint.orientation = self.orientation
        keypoint.histogram = self.histogram
        keypoint.descriptors_data = dict(self.descriptors_data)
        return keypoint

    def to_string(self, x: bool = True, y: bool = True, scale: bool = True,
                  orientation: bool = True) -> str:
        fields = []
        if x:
            fields.append(str(self.x))
        if y:
            fields.append(str(self.y))
        if scale:
            fields.append(str(self.sigma))
        if orientation and self.orientation is not None:
            fields.append(str(self.orientation))
        return " ".join(fields)

    def extract_main_orientation(self, patch, algorithm: str = "max", n_bin: int = 36) -> List[float]:
        """
        Compute the dominant orientation(s) from a gradient patch

        Args:
            patch: GradientPatch centered on the keypoint
            algorithm: 'max' keeps the highest bin, 'ac' every meaningful mode
            n_bin: Number of orientation bins

        Returns:
            List of orientations in turns, possibly empty
        """
        if algorithm not in ORIENTATION_ALGORITHMS:
            raise ValueError(f"Unknown orientation algorithm '{algorithm}'")

        size = patch.phase.shape[0]
        w_size = size // 2
        rows, cols = np.mgrid[0:size, 0:size]
        inside = (cols - w_size) ** 2 + (rows - w_size) ** 2 <= w_size * w_size

        bins = index_circular_phase(patch.phase[inside], n_bin)
        values = np.bincount(bins, weights=patch.norm[inside], minlength=n_bin)
        n_points = int(inside.sum())
        self.histogram = OrientationHistogram(values, n_points)

        if algorithm == "max":
            return [float(np.argmax(values)) / n_bin]

        lam = values.sum() / n_points
        modes = extract_modes(values, True, 0, n_points, lam, lam * lam)
        self.histogram.lam = lam
        self.histogram.modes = modes
        return [mode.phase for mode in modes]

    def extract_descriptors(self, npatch: NormalizedPatch, descriptors: Sequence,
                            storage: Optional[Dict[str, np.ndarray]] = None) -> Dict:
        """Compute every descriptor scheme on the normalized patch of this keypoint"""
        storage = storage or {}
        orientation = self.orientation if self.orientation is not None else 0.0
        for scheme in descriptors:
            self.descriptors_data[scheme.name] = scheme.extract_from_patch(
                orientation, npatch, storage.get(scheme.name))
        return self.descriptors_data

    def compute_distances(self, keypoints: Sequence["Keypoint"],
                          names: Optional[Sequence[str]] = None) -> Dict[str, np.ndarray]:
        """
        Per-descriptor distance tables between this keypoint and candidates

        Returns:
            Dictionary name -> (n_sector, n_candidates) array
        """
        if not self.descriptors_data:
            raise RuntimeError("Descriptors have to be extracted before matching")
        names = list(names) if names else list(self.descriptors_data)

        distances = {}
        for name in names:
            if name not in self.descriptors_data:
                raise ValueError(f"Unknown descriptor '{name}'")
            request = self.descriptors_data[name]
            candidates = [keypoint.descriptors_data[name] for keypoint in keypoints]
            distances[name] = request.scheme.compute_distances(request, candidates)
        return distances

    def match(self, keypoints: Sequence["Keypoint"], criterion: str = "NN-DR",
              names: Optional[Sequence[str]] = None, index: Optional[int] = None) -> List[Match]:
        """
        Match this keypoint against candidate keypoints

        Args:
            keypoints: Candidate keypoints
            criterion: Decision criterion name
            names: Descriptor names to use, defaults to all
            index: Index of this keypoint in its own list, stored as the query index
        """
        decide = get_criterion(criterion)
        if len(keypoints) == 0:
            return []
        distances = self.compute_distances(keypoints, names)
        return [Match(index, self, candidate, keypoints[candidate], score)
                for candidate, score in decide(distances)]

    def project(self, homography: np.ndarray) -> "Keypoint":
        """
        Transfer the keypoint through a homography

        Position is mapped directly; orientation and scale are derived from
        the image of the point lying on the support boundary along the
        orientation.
        """
        H = np.asarray(homography, dtype=np.float64)

        def transform(px, py):
            u, v, w = H @ np.array([px, py, 1.0])
            return u / w, v / w

        angle = (self.orientation or 0.0) * 2 * np.pi
        radius = self.factor_size * self.sigma
        nx, ny = transform(self.x, self.y)
        ex, ey = transform(self.x + radius * np.cos(angle), self.y + radius * np.sin(angle))

        projected = self.copy()
        projected.x, projected.y = float(nx), float(ny)
        orientation = np.arctan2(ey - ny, ex - nx) / (2 * np.pi)
        projected.orientation = float(orientation + 1 if orientation < 0 else orientation)
        projected.sigma = float(np.hypot(ex - nx, ey - ny) / self.factor_size)
        return projected
