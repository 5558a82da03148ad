"""Ward agglomerative clustering of projected coordinates."""

import logging

import numpy as np
from scipy.cluster.hierarchy import cut_tree, linkage

from corefacies.errors import InputError


def ward_linkage(coords) -> np.ndarray:
    """Ward linkage matrix on Euclidean distances between rows."""
    coords = np.asarray(coords, dtype=float)
    if coords.ndim != 2 or coords.shape[0] < 2:
        raise InputError(f"Need a 2-D array with at least 2 rows, got shape {coords.shape}")
    if not np.all(np.isfinite(coords)):
        raise InputError("Coordinates contain NaN or infinite values")
    return linkage(coords, method='ward', metric='euclidean')


def ward_clusters(coords, k: int) -> np.ndarray:
    """
    Cut a Ward dendrogram into exactly `k` flat clusters.

    Args:
        coords: Projected coordinates (n_samples, n_pcs)
        k: Number of clusters, 1 <= k <= n_samples

    Returns:
        labels: Integer labels in [1, k], one per row, deterministic for the input
    """
    coords = np.asarray(coords, dtype=float)
    n = coords.shape[0] if coords.ndim == 2 else 0
    if not 1 <= k <= max(n, 1) or n == 0:
        raise InputError(f"k must lie in [1, n={n}], got {k}")
    if n == 1:
        return np.ones(1, dtype=int)

    Z = ward_linkage(coords)
    # cut_tree always yields k groups, also when merge heights tie
    labels = cut_tree(Z, n_clusters=k).ravel().astype(int) + 1
    logging.info(f"Ward k={k}: cluster sizes {np.bincount(labels)[1:].tolist()}")
    return labels
