import numpy as np
from typing import List, Optional

from .modes import Mode, extract_modes


class DescriptorArena:
    """
    One contiguous buffer holding the histograms of many descriptors

    Args:
        scheme: DescriptorScheme the rows are laid out for
        n: Number of descriptors
    """

    def __init__(self, scheme, n: int):
        self.scheme = scheme
        self.data = np.zeros((n, scheme.n_sector, scheme.n_bin), dtype=np.float32)

    def __len__(self):
        return self.data.shape[0]

    def __getitem__(self, index: int) -> np.ndarray:
        return self.data[index]


class DescriptorData:
    """
    Histograms of one keypoint for one descriptor scheme

    Args:
        scheme: DescriptorScheme describing the layout
        storage: Optional (n_sector, n_bin) float32 buffer, e.g. an arena row.
            It is zeroed before use.
    """

    def __init__(self, scheme, storage: Optional[np.ndarray] = None):
        shape = (scheme.n_sector, scheme.n_bin)
        if storage is None:
            storage = np.zeros(shape, dtype=np.float32)
        elif storage.shape != shape:
            raise ValueError(f"Descriptor storage must have shape {shape}, got {storage.shape}")
        else:
            storage.fill(0)

        self.scheme = scheme
        self.n_bin = scheme.n_bin
        self.n_sector = scheme.n_sector
        self.data = storage
        # Row s is the histogram of sector s
        self.histograms = storage
        self.pps = np.zeros(self.n_sector, dtype=np.float32)
        self.sum = np.zeros(self.n_sector, dtype=np.float32)
        self.modes: Optional[List[List[Mode]]] = None
        self.cumulated_histograms: Optional[np.ndarray] = None

    def extract_modes(self) -> "DescriptorData":
        self.modes = []
        for histogram, total, count in zip(self.histograms, self.sum, self.pps):
            if count == 0:
                self.modes.append([])
                continue
            lam = float(total) / float(count)
            self.modes.append(extract_modes(histogram, True, 0, float(count), lam, lam * lam))
        return self

    def normalize_modes(self) -> "DescriptorData":
        """Express mode masses as a fraction of the total descriptor weight"""
        total = float(self.sum.sum())
        scale = 1.0 / total if total > 0 else 0.0
        for modes in self.modes:
            for mode in modes:
                mode.norm *= scale
        return self

    def process_modes(self) -> "DescriptorData":
        """Quantize mode phases on 4 values and mode masses on 4 levels"""
        levels, max_norm = 4, 0.2
        for modes in self.modes:
            for mode in modes:
                mode.phase = np.floor(mode.phase * levels) / levels
                norm = np.floor(mode.norm * levels / max_norm) + 1
                mode.norm = min(norm, levels) / levels
        return self

    def modes_to_histograms(self) -> "DescriptorData":
        """Replace each histogram by its modes, one peak per mode"""
        self.histograms.fill(0)
        for histogram, modes in zip(self.histograms, self.modes):
            for mode in modes:
                histogram[int(np.floor(mode.phase * self.n_bin + 0.5)) % self.n_bin] = mode.norm
        return self

    def normalize_histograms(self) -> "DescriptorData":
        """Divide each sector by its point count, then make the descriptor sum to 1"""
        filled = self.pps != 0
        self.histograms[filled] /= self.pps[filled, None]
        total = float(self.histograms.sum())
        self.histograms *= (1.0 / total) if total > 0 else 0.0
        return self

    def cum_histograms(self) -> "DescriptorData":
        self.cumulated_histograms = np.cumsum(self.histograms, axis=1, dtype=np.float32)
        return self

    def to_string(self) -> str:
        return "".join(" ".join(f"{float(value):.9g}" for value in histogram) + "\n"
                       for histogram in self.histograms)
