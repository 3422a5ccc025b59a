"""
Maximal meaningful modes of 1-D histograms.

An interval of bins is a meaningful mode when the mass it holds is
significantly larger than what a background distribution predicts
(a-contrario framework). The entropy of every interval is computed at
once as an (L, L) table indexed by [first bin, last bin]; on circular
histograms intervals with last < first wrap around.
"""

import numpy as np
from scipy.special import log_ndtr
from typing import List, Optional, Sequence

LN10 = np.log(10)
MIN_PROBA = 1e-10


class Mode:
    """
    Interval of histogram bins together with its meaningfulness

    Args:
        a: First bin of the interval
        b: Last bin of the interval (b < a wraps on circular histograms)
        measure: Entropy of the interval
        histogram: If given, the mass and barycenter of the interval are computed
    """

    def __init__(self, a: int, b: int, measure: float = 0.0,
                 histogram: Optional[np.ndarray] = None):
        self.bins = (int(a), int(b))
        self.measure = float(measure)
        self.norm = 0.0
        self.phase = 0.0
        if histogram is not None:
            self.bary_center(histogram)

    def bary_center(self, histogram: np.ndarray, norm_factor: Optional[float] = None) -> "Mode":
        size = len(histogram)
        first, last = self.bins
        norm_factor = norm_factor or size

        if last >= first:
            index = np.arange(first, last + 1)
            offset = index.astype(np.float64)
            start = 0
        else:
            index = np.concatenate([np.arange(first, size), np.arange(0, last + 1)])
            offset = np.arange(len(index), dtype=np.float64)
            start = first

        values = np.asarray(histogram, dtype=np.float64)[index]
        weight = values.sum()
        center = (values * offset).sum() / weight if weight > 0 else 0.0
        center += start
        if center >= size:
            center -= size

        self.norm = float(weight)
        self.phase = float(center / norm_factor)
        return self

    def copy(self) -> "Mode":
        mode = Mode(self.bins[0], self.bins[1], self.measure)
        mode.norm = self.norm
        mode.phase = self.phase
        return mode

    def __repr__(self):
        return f"Mode(bins={list(self.bins)}, phase={self.phase:.4f}, norm={self.norm:.4f})"


def _intervals(cumulated: np.ndarray, circular: bool, cst: float) -> np.ndarray:
    """Mass of every interval [i, j] from a cumulated vector"""
    previous = np.concatenate([[0.0], cumulated[:-1]])
    table = cumulated[None, :] - previous[:, None]
    lower = np.tril(np.ones(table.shape, dtype=bool), -1)
    if circular:
        table[lower] += cst
    else:
        table[lower] = 0.0
    return table


def _valid_mask(L: int, circular: bool) -> np.ndarray:
    if circular:
        return np.ones((L, L), dtype=bool)
    return np.triu(np.ones((L, L), dtype=bool))


def _gaussian_entropy(r: np.ndarray, p: np.ndarray, M: float, mu: float, sigma2: float) -> np.ndarray:
    """-log10 of the Gaussian tail probability of observing mass M*r, divided by M"""
    H = np.zeros_like(r)
    ok = p > MIN_PROBA
    pv = p[ok]
    mean = pv * M * mu
    var = mean * (mu * (1 - pv) + sigma2 / mu)
    z = (M * r[ok] - mean) / np.sqrt(2 * var)
    # log(erfc(z) / 2) == log_ndtr(-z * sqrt(2))
    H[ok] = -log_ndtr(-z * np.sqrt(2)) / (M * LN10)
    return H


def _unit_mass_entropy(r: np.ndarray, p: np.ndarray) -> np.ndarray:
    """Relative entropy of a Bernoulli proportion against its expectation"""
    H = np.zeros_like(r)
    full = (r >= 1) & (p > MIN_PROBA)
    H[full] = -np.log(p[full]) / LN10

    ok = (r > p) & (r < 1) & (p > MIN_PROBA)
    rv, pv = r[ok], p[ok]
    H[ok] = (rv * np.log(rv / pv) + (1 - rv) * np.log((1 - rv) / (1 - pv))) / LN10
    return H


def _threshold(L: int, M: float, eps: float, circular: bool) -> float:
    n_intervals = L * (L - 1) if circular else L * (L - 1) / 2
    return (np.log10(n_intervals) + eps) / M


def _interval_indices(L: int, length: int, circular: bool):
    first = np.arange(L if circular else L - length + 1)
    last = (first + length - 1) % L
    return first, last


def _contains_gap(Hgap: np.ndarray, thresh: float, circular: bool) -> np.ndarray:
    """For every interval, whether one of its sub-intervals is a meaningful gap"""
    L = Hgap.shape[0]
    flag = Hgap >= thresh
    for length in range(2, L + 1):
        i, j = _interval_indices(L, length, circular)
        flag[i, j] |= flag[(i + 1) % L, j] | flag[i, (j - 1) % L]
    return flag


def _max_inf(H: np.ndarray, circular: bool) -> np.ndarray:
    """Maximum entropy over the intervals contained in each interval"""
    L = H.shape[0]
    c = H.copy()
    for length in range(2, L + 1):
        i, j = _interval_indices(L, length, circular)
        c[i, j] = np.maximum(H[i, j], np.maximum(c[(i + 1) % L, j], c[i, (j - 1) % L]))
    return c


def _max_sup(H: np.ndarray, circular: bool) -> np.ndarray:
    """Maximum entropy over the intervals containing each interval"""
    L = H.shape[0]
    c = H.copy()
    for length in range(L - 1, 0, -1):
        i, j = _interval_indices(L, length, circular)
        left = c[(i - 1) % L, j]
        right = c[i, (j + 1) % L]
        if not circular:
            left = np.where(i > 0, left, 0.0)
            right = np.where(j < L - 1, right, 0.0)
        c[i, j] = np.maximum(H[i, j], np.maximum(left, right))
    return c


def extract_modes(histogram: Sequence[float], circular: bool = False, eps: float = 0.0,
                  n_points: Optional[float] = None, mu: Optional[float] = None,
                  sigma2: Optional[float] = None,
                  ground_pdf: Optional[Sequence[float]] = None) -> List[Mode]:
    """
    Extract the maximal meaningful modes of a histogram

    Args:
        histogram: Histogram values
        circular: Whether the last bin is adjacent to the first one
        eps: -log10 of the expected number of false alarms
        n_points: Number of points used to build the histogram (defaults to its mass)
        mu: Mean mass of a point
        sigma2: Variance of the mass of a point
        ground_pdf: Background distribution of the points (uniform by default)

    Returns:
        Modes sorted by decreasing meaningfulness
    """
    hist = np.asarray(histogram, dtype=np.float64).ravel()
    L = len(hist)
    if L < 2:
        return []

    ground = np.ones(L) if ground_pdf is None else np.asarray(ground_pdf, dtype=np.float64)
    ground = np.cumsum(ground)
    ground /= ground[-1]

    cumulated = np.cumsum(hist)
    mass = cumulated[-1]
    M = mass if n_points is None else float(n_points)
    if mass <= 0 or M <= 0:
        return []
    cumulated /= M

    valid = _valid_mask(L, circular)
    p = _intervals(ground, circular, 1.0)

    if mu and sigma2:
        cst = mass / M
        r = _intervals(cumulated, circular, cst)
        Hmod = _gaussian_entropy(r, p, M, mu, sigma2)
        Hgap = _gaussian_entropy(cst - r, 1 - p, M, mu, sigma2)
    else:
        r = _intervals(cumulated, circular, 1.0)
        Hmod = _unit_mass_entropy(r, p)
        Hgap = _unit_mass_entropy(1 - r, 1 - p)
    Hmod[~valid] = 0
    Hgap[~valid] = 0

    thresh = _threshold(L, M, eps, circular)
    Hmod = np.where(_contains_gap(Hgap, thresh, circular), 0.0, Hmod)
    Hsup = _max_sup(Hmod, circular)
    Hinf = _max_inf(Hmod, circular)

    selected = valid & (Hmod >= thresh) & (Hsup <= Hmod) & (Hinf <= Hmod)
    modes = [Mode(a, b, Hmod[a, b], hist) for a, b in zip(*np.nonzero(selected))]
    return sorted(modes, key=lambda mode: mode.measure, reverse=True)
