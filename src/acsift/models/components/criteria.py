"""
Decision rules turning distance tables into matches.

Every criterion takes a dictionary mapping descriptor names to
(n_sector, n_candidates) distance tables and returns a list of
(candidate index, score) pairs; lower scores are better.
"""

import numpy as np
from typing import Dict, List, Tuple

# Distance model used by the a-contrario criteria
BINS_PROBA = 100
DIST_MAX = 0.15
NFA_THRESHOLD = 10.0

Distances = Dict[str, np.ndarray]


def sum_distances(distances: Distances) -> np.ndarray:
    """Total distance of each candidate over all sectors and descriptors"""
    tables = list(distances.values())
    total = np.zeros(tables[0].shape[1], dtype=np.float64)
    for table in tables:
        total += table.sum(axis=0)
    return total


def _n_candidates(distances: Distances) -> int:
    return next(iter(distances.values())).shape[1]


def nearest_neighbor(distances: Distances) -> List[Tuple[int, float]]:
    """NN-DT: the candidate with the smallest summed distance"""
    total = sum_distances(distances)
    best = int(np.argmin(total))
    return [(best, float(total[best]))]


def nearest_neighbor_ratio(distances: Distances) -> List[Tuple[int, float]]:
    """NN-DR: ratio between the best and the second best summed distances"""
    total = sum_distances(distances)
    if len(total) == 1:
        return [(0, 0.0)]
    first, second = np.argsort(total, kind="stable")[:2]
    d1, d2 = total[first], total[second]
    if d2 == 0:
        return [(int(first), 1.0)]
    return [(int(first), float(d1 / d2))]


def distance_cdf(distances: Distances) -> np.ndarray:
    """
    Cumulative distribution of the summed distance under a sector independence model

    The distances to all candidates give, for each sector of each
    descriptor, an empirical distribution; the distribution of the sum is
    their convolution.
    """
    step = BINS_PROBA / DIST_MAX
    pdf = None
    for table in distances.values():
        n_candidates = table.shape[1]
        for row in table:
            index = np.floor(row * step + 0.5).astype(np.int64)
            index = np.clip(index, 0, BINS_PROBA - 1)
            histogram = np.bincount(index, minlength=BINS_PROBA) / n_candidates
            pdf = histogram if pdf is None else np.convolve(pdf, histogram)
    return np.cumsum(pdf)


def _false_alarms(cdf: np.ndarray, distance: float, n_candidates: int) -> float:
    index = int(np.floor(distance * BINS_PROBA / DIST_MAX + 0.5))
    return float(cdf[min(index, len(cdf) - 1)] * n_candidates)


def nearest_neighbor_a_contrario(distances: Distances) -> List[Tuple[int, float]]:
    """NN-AC: number of false alarms of the nearest neighbor"""
    total = sum_distances(distances)
    best = int(np.argmin(total))
    cdf = distance_cdf(distances)
    return [(best, _false_alarms(cdf, total[best], _n_candidates(distances)))]


def a_contrario(distances: Distances) -> List[Tuple[int, float]]:
    """AC: every candidate whose number of false alarms is below NFA_THRESHOLD"""
    total = sum_distances(distances)
    n_candidates = _n_candidates(distances)
    cdf = distance_cdf(distances)
    matches = []
    for index, distance in enumerate(total):
        score = _false_alarms(cdf, distance, n_candidates)
        if score < NFA_THRESHOLD:
            matches.append((index, score))
    return matches


CRITERIA = {
    "NN-DT": nearest_neighbor,
    "NN-DR": nearest_neighbor_ratio,
    "NN-AC": nearest_neighbor_a_contrario,
    "AC": a_contrario,
}

# Criteria whose score is a number of false alarms over all keypoint pairs
A_CONTRARIO_CRITERIA = ("NN-AC", "AC")


def get_criterion(name: str):
    if name not in CRITERIA:
        raise ValueError(f"Unknown criterion '{name}', expected one of {list(CRITERIA)}")
    return CRITERIA[name]
