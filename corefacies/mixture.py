"""
Repeated-subsample Gaussian mixture clustering.

Each iteration draws a random 75% subset of the rows, fits a full-covariance
Gaussian mixture on that subset, and uses the subset fit to initialise EM on
all rows. The full-data log-likelihood and labels of every successful fit are
folded into a RunAggregate, which keeps the likelihood history, the best and
worst fits and a tally of numerically failed fits.

Label integers (1..n_pdfs) are arbitrary per fit: component numbering is not
stable across iterations or runs.
"""

import logging
import math
import warnings
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.mixture import GaussianMixture

from corefacies.errors import AllFitsFailedError, InputError

DEFAULT_SUBSAMPLE_FRACTION = 0.75

# Non-convergence is read from converged_; one filter per process, shared by thread workers
warnings.filterwarnings('ignore', category=ConvergenceWarning)


@dataclass(frozen=True)
class ClusterFitResult:
    """One successful mixture fit: per-row labels in [1, n_pdfs] and total log-likelihood."""
    n_pdfs: int
    labels: np.ndarray
    log_likelihood: float


@dataclass(frozen=True)
class FitFailure:
    """One numerically failed fit. Counted, never recorded as a likelihood."""
    reason: str


FitOutcome = Union[ClusterFitResult, FitFailure]


@dataclass
class RunAggregate:
    """
    Accumulator for a run of mixture fits.

    Invariant: len(log_likelihoods) + n_errors == number of fits recorded.
    `best` / `worst` stay None while no fit has succeeded.
    """
    n_pdfs: int
    log_likelihoods: List[float] = field(default_factory=list)
    best: Optional[ClusterFitResult] = None
    worst: Optional[ClusterFitResult] = None
    n_errors: int = 0
    failure_reasons: Counter = field(default_factory=Counter)

    @property
    def n_iter(self) -> int:
        return len(self.log_likelihoods) + self.n_errors

    @property
    def has_fits(self) -> bool:
        return self.best is not None

    def record(self, outcome: FitOutcome):
        if isinstance(outcome, FitFailure):
            self.n_errors += 1
            self.failure_reasons[outcome.reason] += 1
            return
        self.log_likelihoods.append(outcome.log_likelihood)
        self._consider(outcome)

    def _consider(self, fit: ClusterFitResult):
        # Strict comparisons: the first fit reaching an extreme is kept
        if self.best is None or fit.log_likelihood > self.best.log_likelihood:
            self.best = fit
        if self.worst is None or fit.log_likelihood < self.worst.log_likelihood:
            self.worst = fit

    def require_best(self) -> ClusterFitResult:
        if self.best is None:
            raise AllFitsFailedError(
                f"All {self.n_iter} fits with n_pdfs={self.n_pdfs} failed: {dict(self.failure_reasons)}"
            )
        return self.best

    def require_worst(self) -> ClusterFitResult:
        if self.worst is None:
            raise AllFitsFailedError(
                f"All {self.n_iter} fits with n_pdfs={self.n_pdfs} failed: {dict(self.failure_reasons)}"
            )
        return self.worst

    @classmethod
    def merge(cls, parts: Iterable['RunAggregate']) -> 'RunAggregate':
        """
        Combine partial aggregates in the given order.

        Histories are concatenated, failures summed, and best/worst are taken
        from the per-part extremes scanning parts in order (first wins ties).
        """
        parts = list(parts)
        if not parts:
            raise InputError("Cannot merge an empty list of run aggregates")
        n_pdfs = {p.n_pdfs for p in parts}
        if len(n_pdfs) != 1:
            raise InputError(f"Cannot merge runs with different n_pdfs: {sorted(n_pdfs)}")

        merged = cls(n_pdfs=parts[0].n_pdfs)
        for part in parts:
            merged.log_likelihoods.extend(part.log_likelihoods)
            merged.n_errors += part.n_errors
            merged.failure_reasons.update(part.failure_reasons)
            if part.best is not None and (
                    merged.best is None or part.best.log_likelihood > merged.best.log_likelihood):
                merged.best = part.best
            if part.worst is not None and (
                    merged.worst is None or part.worst.log_likelihood < merged.worst.log_likelihood):
                merged.worst = part.worst
        return merged


def subsample_size(n_rows: int, fraction: float = DEFAULT_SUBSAMPLE_FRACTION) -> int:
    """Rows per subsample: floor(fraction * n_rows)."""
    if not 0.0 < fraction <= 1.0:
        raise InputError(f"Subsample fraction must lie in (0, 1], got {fraction}")
    return int(math.floor(fraction * n_rows))


def _failure_reason(exc: Exception) -> str:
    msg = str(exc).lower()
    if 'ill-defined empirical covariance' in msg or 'singular' in msg:
        return 'singular covariance'
    if isinstance(exc, np.linalg.LinAlgError):
        return 'linear algebra error'
    return f"{type(exc).__name__}: {exc}"


def fit_subsample(coords: np.ndarray, indices: np.ndarray, n_pdfs: int,
                  random_state: Optional[int] = None, max_iter: int = 100,
                  reg_covar: float = 0.0) -> FitOutcome:
    """
    Fit one full-covariance Gaussian mixture initialised from a row subset.

    Args:
        coords: Projected coordinates (n_samples, n_pcs)
        indices: Row indices of the subset used for initialisation
        n_pdfs: Number of mixture components
        random_state: Seed for the k-means start of the subset fit
        max_iter: EM iteration limit for each stage
        reg_covar: Ridge added to component covariances, 0 for unconstrained fits

    Returns:
        ClusterFitResult on success, FitFailure when the fit is numerically invalid
    """
    try:
        initial = GaussianMixture(
            n_components=n_pdfs,
            covariance_type='full',
            max_iter=max_iter,
            reg_covar=reg_covar,
            random_state=random_state,
        ).fit(coords[indices])

        gmm = GaussianMixture(
            n_components=n_pdfs,
            covariance_type='full',
            max_iter=max_iter,
            reg_covar=reg_covar,
            weights_init=initial.weights_,
            means_init=initial.means_,
            precisions_init=initial.precisions_,
            init_params='random',
            random_state=random_state,
        ).fit(coords)
    except (ValueError, np.linalg.LinAlgError) as e:
        return FitFailure(_failure_reason(e))

    if not gmm.converged_:
        return FitFailure('EM did not converge')

    log_likelihood = float(gmm.score(coords) * coords.shape[0])
    if not np.isfinite(log_likelihood):
        return FitFailure('non-finite log-likelihood')

    labels = gmm.predict(coords).astype(int) + 1
    return ClusterFitResult(n_pdfs=n_pdfs, labels=labels, log_likelihood=log_likelihood)


def run_subsample_clustering(coords, n_pdfs: int, n_iter: int,
                             sample_size: Optional[int] = None,
                             row_indices: Optional[np.ndarray] = None,
                             rng=None, max_iter: int = 100,
                             reg_covar: float = 0.0) -> RunAggregate:
    """
    Repeat subsample-initialised mixture fits and aggregate the outcomes.

    Args:
        coords: Projected coordinates (n_samples, n_pcs)
        n_pdfs: Number of mixture components
        n_iter: Number of fits to attempt
        sample_size: Rows per subsample, defaults to floor(0.75 * len(row_indices))
        row_indices: Index space to sample from, defaults to all rows
        rng: numpy Generator, SeedSequence or int seed for this stream
        max_iter: EM iteration limit
        reg_covar: Ridge added to component covariances, 0 for unconstrained fits

    Returns:
        RunAggregate with n_iter == len(log_likelihoods) + n_errors
    """
    coords = np.asarray(coords, dtype=float)
    if coords.ndim != 2 or coords.shape[0] == 0:
        raise InputError(f"Coordinates must be a non-empty 2-D array, got shape {coords.shape}")
    if not np.all(np.isfinite(coords)):
        raise InputError("Coordinates contain NaN or infinite values")
    if n_pdfs < 1:
        raise InputError(f"n_pdfs must be >= 1, got {n_pdfs}")
    if n_iter < 0:
        raise InputError(f"n_iter must be >= 0, got {n_iter}")

    n_rows = coords.shape[0]
    if row_indices is None:
        row_indices = np.arange(n_rows)
    row_indices = np.asarray(row_indices)
    if row_indices.size and (row_indices.min() < 0 or row_indices.max() >= n_rows):
        raise InputError("Row indices fall outside the coordinate matrix")
    if sample_size is None:
        sample_size = subsample_size(len(row_indices))
    if sample_size > len(row_indices):
        raise InputError(
            f"Subsample size {sample_size} exceeds the {len(row_indices)} available rows"
        )
    if sample_size < max(n_pdfs, 1):
        raise InputError(f"Subsample size {sample_size} is smaller than n_pdfs={n_pdfs}")

    rng = np.random.default_rng(rng)
    aggregate = RunAggregate(n_pdfs=n_pdfs)

    for _ in range(n_iter):
        indices = rng.choice(row_indices, size=sample_size, replace=False)
        seed = int(rng.integers(2**31 - 1))
        aggregate.record(fit_subsample(coords, indices, n_pdfs, random_state=seed,
                                       max_iter=max_iter, reg_covar=reg_covar))

    if aggregate.has_fits:
        logging.info(f"GMM k={n_pdfs}: {len(aggregate.log_likelihoods)}/{n_iter} fits, "
                     f"best logL={aggregate.best.log_likelihood:.3f}, "
                     f"worst logL={aggregate.worst.log_likelihood:.3f}, errors={aggregate.n_errors}")
    elif n_iter:
        logging.warning(f"GMM k={n_pdfs}: all {n_iter} fits failed {dict(aggregate.failure_reasons)}")
    return aggregate
