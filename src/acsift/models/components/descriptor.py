import numpy as np
from typing import Dict, List, NamedTuple, Optional, Sequence, Union

from .descriptor_data import DescriptorData
from .image_ops import COLORSPACES, convert_color, image_gradient

DISTANCES = ("L1", "L2", "CEMD", "D2M")
DESCRIPTOR_TYPES = ("GRADIENT", "WEIGHTED-HISTOGRAMS")
COLORSPACE_KEYS = {"name", "channel", "channels", "weight_channel", "phase_channel"}


class GradientPatch(NamedTuple):
    """Gradient phase (turns) weighted by the gradient norm"""
    phase: np.ndarray
    norm: np.ndarray

    @property
    def weight(self) -> np.ndarray:
        return self.norm


class WeightedChannelPatch(NamedTuple):
    """One image channel used as phase, another one as weight"""
    weight: np.ndarray
    phase: np.ndarray


class NormalizedPatch(NamedTuple):
    """RGB patch with a Gaussian window applied, its mean color and disk mask"""
    patch: np.ndarray
    mean: np.ndarray
    mask: np.ndarray


def index_circular_phase(phase, n_bin):
    """Round phases (turns) to the nearest of n_bin circular bins"""
    phase = np.where(phase < 0, phase + 1, phase)
    k = np.floor(phase * n_bin + 0.5).astype(np.int64)
    return np.where(k >= n_bin, k - n_bin, k)


def rings_from_sectors(sectors: Sequence[int]) -> List[float]:
    """Ring radii for which every sector covers the same area"""
    n_sector = sum(sectors)
    rings = [np.sqrt(sectors[0] / n_sector)]
    for count in sectors[1:]:
        rings.append(np.sqrt(count / n_sector + rings[-1] ** 2))
    rings[-1] = 1.0
    return [float(r) for r in rings]


def l1_distance(h1: np.ndarray, h2: np.ndarray) -> np.ndarray:
    return np.abs(h1 - h2).mean(axis=-1)


def l2_distance(h1: np.ndarray, h2: np.ndarray) -> np.ndarray:
    diff = h1 - h2
    return (diff * diff).mean(axis=-1)


def cemd_distance(c1: np.ndarray, c2: np.ndarray) -> np.ndarray:
    """
    Circular Earth Mover's Distance between histograms, from their cumulative sums

    Args:
        c1, c2: Cumulative histograms, broadcastable, bins on the last axis

    Returns:
        Distances with the bin axis removed
    """
    H = c2 - c1
    n_bin = H.shape[-1]
    cost = np.abs(H[..., :, None] - H[..., None, :]).sum(axis=-2)
    return cost.min(axis=-1) / n_bin


def _circular_distance(a: float, b: float) -> float:
    d = abs(a - b)
    return 1 - d if d > 0.5 else d


def d2m_distance(modes1, modes2) -> float:
    """
    Transport cost between the (at most) two main modes of two histograms

    Mass unbalance is charged half a turn per unit.
    """
    a1 = a2 = b1 = b2 = 0.0
    alpha1 = alpha2 = beta1 = beta2 = 0.0
    if len(modes1) > 0:
        a1, alpha1 = modes1[0].phase, modes1[0].norm
    if len(modes1) > 1:
        a2, alpha2 = modes1[1].phase, modes1[1].norm
    if len(modes2) > 0:
        b1, beta1 = modes2[0].phase, modes2[0].norm
    if len(modes2) > 1:
        b2, beta2 = modes2[1].phase, modes2[1].norm

    # The first descriptor carries the smaller mass
    if alpha1 + alpha2 > beta1 + beta2:
        return d2m_distance(modes2, modes1)

    da1b1, da1b2 = _circular_distance(a1, b1), _circular_distance(a1, b2)
    da2b1, da2b2 = _circular_distance(a2, b1), _circular_distance(a2, b2)
    dist1 = da1b1 - da1b2
    dist2 = da2b1 - da2b2
    gamma2 = alpha1 + alpha2 - beta2

    if max(dist1, dist2) <= 0:
        if beta1 >= alpha1 + alpha2:
            m1, m3 = alpha1, alpha2
        elif dist1 <= dist2:
            m1, m3 = (alpha1, beta1 - alpha1) if beta1 >= alpha1 else (beta1, 0.0)
        else:
            m1, m3 = (beta1 - alpha2, alpha2) if beta1 >= alpha2 else (0.0, beta1)
    elif min(dist1, dist2) >= 0:
        if gamma2 <= 0:
            m1, m3 = 0.0, 0.0
        elif dist1 <= dist2:
            m1, m3 = (alpha1, beta1 - alpha1) if gamma2 >= alpha1 else (beta1, 0.0)
        else:
            m1, m3 = (gamma2 - alpha2, alpha2) if gamma2 >= alpha2 else (0.0, alpha2)
    else:
        if dist1 <= dist2:
            if beta1 <= alpha1:
                m1, m3 = beta1, 0.0
            elif gamma2 <= alpha1:
                m1, m3 = alpha1, 0.0
            else:
                m1, m3 = alpha1, gamma2 - alpha1
        else:
            if beta1 <= alpha2:
                m1, m3 = 0.0, beta1
            elif gamma2 <= alpha2:
                m1, m3 = 0.0, alpha2
            else:
                m1, m3 = gamma2 - alpha2, alpha2

    distance = m1 * dist1 + m3 * dist2 + alpha1 * da1b2 + alpha2 * da2b2
    return distance + (beta1 + beta2 - alpha1 - alpha2) * 0.5


HISTOGRAM_DISTANCES = {
    "L1": l1_distance,
    "L2": l2_distance,
    "CEMD": cemd_distance,
}


class DescriptorScheme:
    """
    Layout of a multi-region histogram descriptor

    The support disk of a keypoint is cut into rings, each ring into
    angular sectors; one histogram of n_bin phase bins is built per sector.

    Args:
        name: Identifier of the descriptor (required)
        sectors: Number of sectors per ring, from the center outwards
        rings: Relative outer radius of each ring. When omitted, radii are
            chosen so that all sectors have the same area.
        n_bin: Number of bins per histogram
        relative_orientation: Whether sectors and phases are measured
            relative to the keypoint orientation
        extract_modes: Whether to extract histogram modes (needed by D2M)
        normalize: Whether to apply grey-world color normalization
        distance: One of 'L1', 'L2', 'CEMD', 'D2M'
        descriptor_type: 'GRADIENT' or 'WEIGHTED-HISTOGRAMS'
        colorspace: {'name', 'channel'} for gradient descriptors,
            {'name', 'weight_channel', 'phase_channel'} for weighted ones.
            'channels' is accepted for 'channel'; channels are 0, 1 or 2.
    """

    def __init__(self, name: str = None,
                 sectors: Sequence[int] = (1, 4, 4),
                 rings: Optional[Sequence[float]] = None,
                 n_bin: int = 12,
                 relative_orientation: bool = True,
                 extract_modes: bool = False,
                 normalize: bool = False,
                 distance: str = "L1",
                 descriptor_type: str = "GRADIENT",
                 colorspace: Optional[Dict] = None):
        if not name:
            raise ValueError("Descriptor must have a name")
        if distance not in DISTANCES:
            raise ValueError(f"Unknown distance '{distance}', expected one of {DISTANCES}")
        if descriptor_type not in DESCRIPTOR_TYPES:
            raise ValueError(f"Unknown descriptor type '{descriptor_type}'")
        if distance == "D2M" and not extract_modes:
            raise ValueError("D2M distance requires extract_modes=True")
        if n_bin < 1:
            raise ValueError("n_bin must be positive")

        sectors = tuple(int(s) for s in sectors)
        if not sectors or min(sectors) < 1:
            raise ValueError(f"Invalid sectors {sectors}")
        rings = tuple(float(r) for r in (rings_from_sectors(sectors) if rings is None else rings))
        if len(rings) != len(sectors):
            raise ValueError("rings and sectors must have the same length")
        if rings[-1] != 1 or rings[0] <= 0 or any(b <= a for a, b in zip(rings, rings[1:])):
            raise ValueError(f"Rings must increase strictly in (0, 1] and end at 1, got {rings}")

        colorspace = dict(colorspace or {"name": "Ohta", "channel": 0})
        if colorspace.get("name") not in COLORSPACES:
            raise ValueError(f"Unknown colorspace '{colorspace.get('name')}'")
        unknown = set(colorspace) - COLORSPACE_KEYS
        if unknown:
            raise ValueError(f"Unknown colorspace keys {sorted(unknown)}")
        if "channels" in colorspace:
            if "channel" in colorspace:
                raise ValueError("Give either 'channel' or 'channels', not both")
            colorspace["channel"] = colorspace.pop("channels")
        if descriptor_type == "GRADIENT":
            colorspace.setdefault("channel", 0)
        else:
            colorspace.setdefault("weight_channel", 1)
            colorspace.setdefault("phase_channel", 0)
        for key in ("channel", "weight_channel", "phase_channel"):
            if key in colorspace and colorspace[key] not in (0, 1, 2):
                raise ValueError(f"Colorspace {key} must be 0, 1 or 2, got {colorspace[key]!r}")

        values = {
            "name": name,
            "sectors": sectors,
            "rings": rings,
            "n_sector": sum(sectors),
            "n_bin": int(n_bin),
            "relative_orientation": relative_orientation,
            "extract_modes": extract_modes,
            "normalize": normalize,
            "distance": distance,
            "descriptor_type": descriptor_type,
            "colorspace": colorspace,
            "conversion": None if colorspace["name"] == "RGB" else "RGB to " + colorspace["name"],
            "_sector_offsets": np.concatenate([[0], np.cumsum(sectors)[:-1]]),
        }
        for key, value in values.items():
            object.__setattr__(self, key, value)

    def __setattr__(self, key, value):
        raise AttributeError(f"DescriptorScheme '{self.name}' is immutable")

    def __repr__(self):
        return (f"DescriptorScheme(name={self.name!r}, sectors={self.sectors}, "
                f"rings={tuple(round(r, 4) for r in self.rings)}, n_bin={self.n_bin}, "
                f"distance={self.distance!r})")

    def get_data_structure(self, storage: Optional[np.ndarray] = None) -> DescriptorData:
        return DescriptorData(self, storage)

    def histogram_numbers(self, x: np.ndarray, y: np.ndarray, orientation: float,
                          r_max: float) -> np.ndarray:
        """
        Vectorized sector lookup for points relative to the patch center

        Raises:
            ValueError: If a point lies outside the disk of radius r_max
        """
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        bounds = (np.asarray(self.rings) * r_max) ** 2
        ring = np.searchsorted(bounds, x * x + y * y, side="left")
        if np.any(ring >= len(self.rings)):
            raise ValueError("Point lies outside the descriptor support")

        phase = np.arctan2(y, x) / (2 * np.pi)
        phase = np.where(phase < 0, phase + 1, phase) - orientation
        n_sectors = np.asarray(self.sectors)[ring]
        return self._sector_offsets[ring] + index_circular_phase(phase, n_sectors)

    def get_histogram_number(self, x: float, y: float, orientation: float, r_max: float) -> int:
        """Index of the sector histogram the point (x, y) falls in"""
        return int(self.histogram_numbers(x, y, orientation, r_max))

    def extract_weighted_histograms(self, orientation: float, patch,
                                    data: Optional[np.ndarray] = None) -> DescriptorData:
        """
        Accumulate patch weights into per-sector phase histograms

        Args:
            orientation: Keypoint orientation in turns
            patch: GradientPatch or WeightedChannelPatch of odd square size
            data: Optional storage for the histograms

        Returns:
            DescriptorData holding the raw histograms, sums and point counts
        """
        descriptor = DescriptorData(self, data)
        weight, phase = patch.weight, patch.phase
        size = weight.shape[0]
        w_size = size // 2

        rows, cols = np.mgrid[0:size, 0:size]
        x = cols - w_size
        y = rows - w_size
        inside = x * x + y * y <= w_size * w_size

        o = orientation if self.relative_orientation else 0.0
        sectors = self.histogram_numbers(x[inside], y[inside], o, w_size)
        bins = index_circular_phase(phase[inside] - o, self.n_bin)
        values = weight[inside].astype(np.float32)

        np.add.at(descriptor.histograms, (sectors, bins), values)
        descriptor.pps += np.bincount(sectors, minlength=self.n_sector)
        descriptor.sum += np.bincount(sectors, weights=values, minlength=self.n_sector)
        return descriptor

    def normalize_color(self, npatch: NormalizedPatch) -> NormalizedPatch:
        """Divide the colors inside the disk by the mean color (grey-world)"""
        patch = npatch.patch.copy()
        patch[npatch.mask] *= 1.0 / npatch.mean
        return NormalizedPatch(patch, npatch.mean, npatch.mask)

    def get_patch(self, npatch: NormalizedPatch):
        if self.normalize:
            npatch = self.normalize_color(npatch)
        image = npatch.patch
        if self.conversion is not None:
            image = convert_color(image, self.conversion)

        if self.descriptor_type == "GRADIENT":
            gradient = image_gradient(image[:, :, self.colorspace["channel"]], laplacian=False)
            return GradientPatch(gradient["phase"], gradient["norm"])
        return WeightedChannelPatch(image[:, :, self.colorspace["weight_channel"]],
                                    image[:, :, self.colorspace["phase_channel"]])

    def extract_from_patch(self, orientation: float, npatch: NormalizedPatch,
                           data: Optional[np.ndarray] = None) -> DescriptorData:
        descriptor = self.extract_weighted_histograms(orientation, self.get_patch(npatch), data)
        if self.extract_modes:
            descriptor.extract_modes().normalize_modes().process_modes()
        descriptor.normalize_histograms()
        if self.distance == "CEMD":
            descriptor.cum_histograms()
        return descriptor

    def compute_distances(self, request: DescriptorData,
                          candidates: Sequence[DescriptorData]) -> np.ndarray:
        """
        Distances between a request and each candidate, sector by sector

        Returns:
            float32 array of shape (n_sector, n_candidates)
        """
        if len(candidates) == 0:
            return np.zeros((self.n_sector, 0), dtype=np.float32)

        if self.distance == "D2M":
            out = np.empty((self.n_sector, len(candidates)), dtype=np.float32)
            for j, candidate in enumerate(candidates):
                for k in range(self.n_sector):
                    out[k, j] = d2m_distance(request.modes[k], candidate.modes[k])
            return out

        field = "cumulated_histograms" if self.distance == "CEMD" else "histograms"
        stack = np.stack([getattr(candidate, field) for candidate in candidates])
        distances = HISTOGRAM_DISTANCES[self.distance](getattr(request, field)[None], stack)
        return distances.T.astype(np.float32)


CLASSIC_RINGS = (0.25, 0.75, 1)

DESCRIPTOR_DB = {
    "R": dict(rings=CLASSIC_RINGS, colorspace={"name": "RGB", "channel": 0}),
    "G": dict(rings=CLASSIC_RINGS, colorspace={"name": "RGB", "channel": 1}),
    "B": dict(rings=CLASSIC_RINGS, colorspace={"name": "RGB", "channel": 2}),
    "H": dict(rings=CLASSIC_RINGS, colorspace={"name": "HSL", "channel": 0}),
    "S": dict(rings=CLASSIC_RINGS, colorspace={"name": "HSL", "channel": 1}),
    "L": dict(rings=CLASSIC_RINGS, colorspace={"name": "HSL", "channel": 2}),
    "SIFT": dict(rings=CLASSIC_RINGS),
    "OHTA1": dict(rings=CLASSIC_RINGS, colorspace={"name": "Ohta", "channel": 1}),
    "OHTA2": dict(rings=CLASSIC_RINGS, colorspace={"name": "Ohta", "channel": 2}),
    "OPP1": dict(rings=CLASSIC_RINGS, colorspace={"name": "Opponent", "channel": 1}),
    "OPP2": dict(rings=CLASSIC_RINGS, colorspace={"name": "Opponent", "channel": 2}),
    "HUE-NORM": dict(rings=CLASSIC_RINGS, descriptor_type="WEIGHTED-HISTOGRAMS",
                     normalize=True, relative_orientation=False,
                     colorspace={"name": "HSL", "weight_channel": 1, "phase_channel": 0}),
    "HUE": dict(rings=CLASSIC_RINGS, descriptor_type="WEIGHTED-HISTOGRAMS",
                normalize=False, relative_orientation=False,
                colorspace={"name": "HSL", "weight_channel": 1, "phase_channel": 0}),
}


def get_descriptor(name: str) -> DescriptorScheme:
    """Build one of the named descriptor presets"""
    if name not in DESCRIPTOR_DB:
        raise ValueError(f"Unknown descriptor '{name}', available: {sorted(DESCRIPTOR_DB)}")
    return DescriptorScheme(name=name, **DESCRIPTOR_DB[name])


def resolve_descriptors(descriptors: Optional[Sequence[Union[str, Dict, DescriptorScheme]]]
                        ) -> List[DescriptorScheme]:
    """
    Turn preset names and keyword dicts into DescriptorScheme objects

    In keyword dicts, 'type' may be given in place of 'descriptor_type'.
    """
    if not descriptors:
        return [get_descriptor("SIFT")]

    schemes = []
    for descriptor in descriptors:
        if isinstance(descriptor, DescriptorScheme):
            schemes.append(descriptor)
        elif isinstance(descriptor, str):
            schemes.append(get_descriptor(descriptor))
        elif isinstance(descriptor, dict):
            params = dict(descriptor)
            if "type" in params:
                if "descriptor_type" in params:
                    raise ValueError("Give either 'type' or 'descriptor_type', not both")
                params["descriptor_type"] = params.pop("type")
            schemes.append(DescriptorScheme(**params))
        else:
            raise ValueError(f"Cannot build a descriptor from {descriptor!r}")

    names = [scheme.name for scheme in schemes]
    if len(set(names)) != len(names):
        raise ValueError(f"Descriptor names must be unique, got {names}")
    return schemes
