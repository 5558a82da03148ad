"""
Robust PCA of downcore measurements.

1. Minimum covariance determinant (MCD) estimate of center and covariance,
   keeping a fraction `alpha` of the rows (scikit-learn MinCovDet)
2. Eigendecomposition of the robust covariance, components sorted by robust
   variance (largest first)
3. Projection of the robust-center-centered rows onto the components

Row order of the input is preserved in the projected matrix.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from sklearn.covariance import MinCovDet

from corefacies.errors import InputError, RobustEstimationError


def _as_observation_matrix(X) -> np.ndarray:
    X = np.asarray(X, dtype=float)
    if X.ndim != 2:
        raise InputError(f"Observation matrix must be 2-D, got shape {X.shape}")
    if X.shape[0] == 0 or X.shape[1] == 0:
        raise InputError(f"Observation matrix is empty: shape {X.shape}")
    if not np.all(np.isfinite(X)):
        raise InputError("Observation matrix contains NaN or infinite values")
    return X


def robust_covariance(X, alpha: float = 0.98,
                      random_state: Optional[int] = 0,
                      reweighted: bool = True) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    MCD estimate of location and scatter.

    Args:
        X: Observation matrix (n_samples, n_features), n_samples > n_features
        alpha: Fraction of rows to retain, in (0, 1). 0.98 trims the 2% most
            outlying rows.
        random_state: Seed for the random starts of FastMCD. The same seed and
            data give the same estimate.
        reweighted: Return scikit-learn's reweighted estimate (one
            reweighting step after the consistency-corrected raw MCD, as
            robustbase does). False returns the raw estimate computed from the
            minimum-determinant subset of int(alpha * n) rows only.

    Returns:
        center: Robust center (n_features,)
        covariance: Robust covariance (n_features, n_features), symmetric
        support: Boolean mask of the rows used for the estimate
    """
    X = _as_observation_matrix(X)
    n, p = X.shape

    if not 0.0 < alpha < 1.0:
        raise InputError(f"alpha must lie in (0, 1), got {alpha}")
    if n <= p:
        raise InputError(f"Need more rows than columns for MCD, got n={n}, p={p}")
    # Same support size MinCovDet uses internally
    n_support = int(alpha * n)
    if n_support <= p:
        raise InputError(
            f"alpha={alpha} retains {n_support} of {n} rows, need more than p={p}"
        )

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        try:
            mcd = MinCovDet(support_fraction=alpha, random_state=random_state).fit(X)
        except (ValueError, np.linalg.LinAlgError) as e:
            raise RobustEstimationError(f"MCD failed: {e}") from e

    for w in caught:
        logging.warning(f"MCD: {w.message}")

    if reweighted:
        center, scatter, support = mcd.location_, mcd.covariance_, mcd.support_
    else:
        center, scatter, support = mcd.raw_location_, mcd.raw_covariance_, mcd.raw_support_
    covariance = 0.5 * (scatter + scatter.T)

    if not (np.all(np.isfinite(center)) and np.all(np.isfinite(covariance))):
        raise RobustEstimationError("MCD produced non-finite center or covariance")
    if np.linalg.matrix_rank(covariance) < p:
        raise RobustEstimationError(
            "MCD could not find a subset with non-singular covariance "
            f"(rank {np.linalg.matrix_rank(covariance)} < {p})"
        )

    logging.info(f"MCD: n={n}, p={p}, alpha={alpha}, support={int(support.sum())} rows"
                 f"{'' if reweighted else ' (raw)'}")
    return center, covariance, support


@dataclass
class RobustPCAResult:
    """Robust PCA basis and the projected observation matrix."""
    center: np.ndarray
    covariance: np.ndarray
    eigenvalues: np.ndarray
    eigenvectors: np.ndarray
    projected: np.ndarray
    alpha: float
    support: Optional[np.ndarray] = None

    @property
    def n_components(self) -> int:
        return self.eigenvectors.shape[1]

    @property
    def explained_variance_ratio(self) -> np.ndarray:
        total = self.eigenvalues.sum()
        if total <= 0:
            return np.zeros_like(self.eigenvalues)
        return self.eigenvalues / total

    def coordinates(self, n_pcs: int) -> np.ndarray:
        """Projected rows restricted to the first `n_pcs` components."""
        if not 1 <= n_pcs <= self.n_components:
            raise InputError(f"n_pcs must lie in [1, {self.n_components}], got {n_pcs}")
        return self.projected[:, :n_pcs]

    def reconstruct_centered(self, n_pcs: Optional[int] = None) -> np.ndarray:
        """Map projected rows back to centered input space."""
        n_pcs = self.n_components if n_pcs is None else n_pcs
        V = self.eigenvectors[:, :n_pcs]
        return self.coordinates(n_pcs) @ V.T


def robust_pca_transform(X, center, covariance) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Eigendecompose a robust covariance and project the centered data.

    Args:
        X: Observation matrix (n_samples, n_features)
        center: Robust center (n_features,)
        covariance: Robust covariance (n_features, n_features)

    Returns:
        eigenvalues: Robust variances, descending, non-negative
        eigenvectors: Orthonormal columns matching `eigenvalues`
        projected: (X - center) @ eigenvectors, same row order as X
    """
    X = _as_observation_matrix(X)
    center = np.asarray(center, dtype=float)
    covariance = np.asarray(covariance, dtype=float)
    p = X.shape[1]
    if center.shape != (p,) or covariance.shape != (p, p):
        raise InputError(
            f"center {center.shape} / covariance {covariance.shape} do not match p={p}"
        )

    try:
        values, vectors = np.linalg.eigh(covariance)
    except np.linalg.LinAlgError as e:
        raise RobustEstimationError(f"Eigendecomposition did not converge: {e}") from e
    if not (np.all(np.isfinite(values)) and np.all(np.isfinite(vectors))):
        raise RobustEstimationError("Eigendecomposition produced non-finite values")

    # eigh returns ascending order
    values = values[::-1]
    vectors = vectors[:, ::-1]

    tol = 1e-10 * max(abs(values[0]), 1.0)
    if values[-1] < -tol:
        raise RobustEstimationError(
            f"Covariance is not positive semi-definite (smallest eigenvalue {values[-1]:.3g})"
        )
    values = np.clip(values, 0.0, None)

    projected = (X - center) @ vectors
    return values, vectors, projected


def fit_robust_pca(X, alpha: float = 0.98, random_state: Optional[int] = 0,
                   reweighted: bool = True) -> RobustPCAResult:
    """Robust covariance followed by robust PCA in one call."""
    X = _as_observation_matrix(X)
    center, covariance, support = robust_covariance(X, alpha=alpha, random_state=random_state,
                                                  reweighted=reweighted)
    values, vectors, projected = robust_pca_transform(X, center, covariance)

    result = RobustPCAResult(
        center=center,
        covariance=covariance,
        eigenvalues=values,
        eigenvectors=vectors,
        projected=projected,
        alpha=alpha,
        support=support,
    )
    for i, (var, ratio) in enumerate(zip(values, result.explained_variance_ratio)):
        logging.info(f"  PC{i + 1}: robust variance={var:.4g} ({ratio:.2%})")
    return result
