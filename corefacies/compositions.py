"""
Isometric log-ratio (pivot coordinate) transform for elemental concentrations.

Compositional data (parts of a whole, e.g. XRF element counts or oxide wt%) are
mapped to unconstrained real coordinates before robust PCA.
"""

import logging

import numpy as np
import pandas as pd

from corefacies.errors import InputError


def closure(X: np.ndarray, total: float = 1.0) -> np.ndarray:
    """Rescale every row to sum to `total`."""
    X = np.asarray(X, dtype=float)
    return total * X / X.sum(axis=1, keepdims=True)


def pivot_coordinates(X) -> np.ndarray:
    """
    Pivot (ILR) coordinates of a composition.

    For D parts the i-th coordinate (i = 1..D-1) is

        z_i = sqrt((D - i) / (D - i + 1)) * ln(x_i / gmean(x_{i+1}, ..., x_D))

    Args:
        X: Array-like of shape (n_samples, D) with strictly positive parts

    Returns:
        Z: Array of shape (n_samples, D - 1)
    """
    X = np.asarray(X, dtype=float)
    if X.ndim != 2 or X.shape[1] < 2:
        raise InputError(f"Composition needs shape (n, D) with D >= 2, got {X.shape}")
    if not np.all(np.isfinite(X)):
        raise InputError("Composition contains non-finite values")
    if np.any(X <= 0):
        n_bad = int(np.any(X <= 0, axis=1).sum())
        raise InputError(f"Composition has {n_bad} rows with zero or negative parts")

    logX = np.log(closure(X))
    n, D = logX.shape
    Z = np.empty((n, D - 1))
    for i in range(D - 1):
        rest = D - i - 1
        Z[:, i] = np.sqrt(rest / (rest + 1.0)) * (logX[:, i] - logX[:, i + 1:].mean(axis=1))
    return Z


def ilr_frame(df: pd.DataFrame, columns) -> pd.DataFrame:
    """ILR-transform `columns` of `df`, keeping the row index."""
    Z = pivot_coordinates(df[list(columns)].to_numpy())
    names = [f"ilr{i + 1}_{col}" for i, col in enumerate(columns[:-1])]
    logging.info(f"ILR transform: {len(columns)} parts -> {Z.shape[1]} coordinates")
    return pd.DataFrame(Z, index=df.index, columns=names)
