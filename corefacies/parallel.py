"""
Fan-out of repeated-subsample mixture clustering over a worker pool.

The iteration budget is split into one share per configured worker:
every worker gets n_iter // n_workers iterations and the first worker also
takes the n_iter % n_workers remainder. Each share runs with its own random
stream spawned from a single SeedSequence, so shares never replay each other's
subsamples and a run is reproducible from ParallelConfig.seed alone. Partial
aggregates are merged in share order.
"""

import logging
import os
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from typing import List, Optional

import numpy as np

from corefacies.config import ParallelConfig
from corefacies.errors import InputError
from corefacies.mixture import RunAggregate, run_subsample_clustering, subsample_size


def split_iterations(n_iter: int, n_workers: int) -> List[int]:
    """Per-worker iteration counts; the remainder goes to the first worker."""
    if n_iter < 0:
        raise InputError(f"n_iter must be >= 0, got {n_iter}")
    if n_workers < 1:
        raise InputError(f"n_workers must be >= 1, got {n_workers}")
    base, remainder = divmod(n_iter, n_workers)
    shares = [base] * n_workers
    shares[0] += remainder
    return shares


def spawn_streams(seed: Optional[int], n_workers: int) -> List[np.random.SeedSequence]:
    """Independent child seed sequences, one per worker."""
    return np.random.SeedSequence(seed).spawn(n_workers)


def pool_size(n_workers: int) -> int:
    """Number of pool slots: the configured workers, capped at the CPU count."""
    return max(1, min(n_workers, os.cpu_count() or 1))


def _executor(config: ParallelConfig) -> Executor:
    max_workers = pool_size(config.n_workers)
    if config.backend == 'thread':
        return ThreadPoolExecutor(max_workers=max_workers)
    return ProcessPoolExecutor(max_workers=max_workers)


def run_parallel_clustering(coords, n_pdfs: int, n_iter: int,
                            config: Optional[ParallelConfig] = None,
                            sample_size: Optional[int] = None,
                            max_iter: int = 100,
                            reg_covar: float = 0.0) -> RunAggregate:
    """
    Run repeated-subsample mixture clustering across a worker pool.

    Args:
        coords: Projected coordinates (n_samples, n_pcs), shared read-only
        n_pdfs: Number of mixture components
        n_iter: Total number of fits over all workers
        config: Worker count, root seed and pool backend
        sample_size: Rows per subsample, defaults to floor(0.75 * n_samples)
        max_iter: EM iteration limit
        reg_covar: Ridge added to component covariances, 0 for unconstrained fits

    Returns:
        Merged RunAggregate; its n_iter equals the requested n_iter
    """
    config = config or ParallelConfig()
    coords = np.asarray(coords, dtype=float)
    if coords.ndim != 2:
        raise InputError(f"Coordinates must be 2-D, got shape {coords.shape}")
    if sample_size is None:
        sample_size = subsample_size(coords.shape[0])
    if sample_size > coords.shape[0]:
        raise InputError(
            f"Subsample size {sample_size} exceeds the {coords.shape[0]} available rows"
        )

    shares = split_iterations(n_iter, config.n_workers)
    streams = spawn_streams(config.seed, config.n_workers)
    logging.info(f"GMM k={n_pdfs}: {n_iter} iterations over {config.n_workers} workers "
                 f"({config.backend} pool of {pool_size(config.n_workers)}), shares={shares}")

    # Leaving the with-block shuts the pool down, also when a worker raises
    with _executor(config) as executor:
        futures = [
            executor.submit(run_subsample_clustering, coords, n_pdfs, share,
                            sample_size, None, stream, max_iter, reg_covar)
            for share, stream in zip(shares, streams)
        ]
        parts = [future.result() for future in futures]

    for i, part in enumerate(parts):
        if part.n_iter and not part.has_fits:
            logging.warning(f"  worker {i}: all {part.n_iter} fits failed")

    merged = RunAggregate.merge(parts)
    logging.info(f"GMM k={n_pdfs}: merged {len(merged.log_likelihoods)} fits, "
                 f"{merged.n_errors} errors")
    return merged
