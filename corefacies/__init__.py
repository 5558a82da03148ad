"""Robust PCA, mixture-model and Ward clustering of downcore sediment measurements."""

from corefacies.config import ParallelConfig, PipelineConfig
from corefacies.errors import (
    AllFitsFailedError,
    CoreFaciesError,
    DegenerateContingencyError,
    InputError,
    RobustEstimationError,
)
from corefacies.hierarchical import ward_clusters
from corefacies.mixture import ClusterFitResult, FitFailure, RunAggregate, run_subsample_clustering
from corefacies.parallel import run_parallel_clustering
from corefacies.robust_pca import RobustPCAResult, fit_robust_pca, robust_covariance, robust_pca_transform
from corefacies.validation import ValidationStats, statistics_table, validate_clustering

__version__ = '0.1.0'
