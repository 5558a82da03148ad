"""
Loading of the downcore measurement table and persistence of run artifacts.

Artifacts:
- <run_id>_rpca_pc<nPC>.npz            robust center, covariance, eigenvectors,
                                       eigenvalues, projected coordinates
- <run_id>_gmm_pc<nPC>_k<nPDF>.npz     likelihood history, best/worst fit, failures
- <run_id>_results.csv                 depth + one label column per clustering
- <run_id>_statistics.csv              chi2 / dof / p-value / Cramer's V per clustering
"""

import json
import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from corefacies.errors import InputError
from corefacies.mixture import ClusterFitResult, RunAggregate
from corefacies.robust_pca import RobustPCAResult


@dataclass
class ObservationTable:
    """Numeric features, depth key and lithology for one core, in file row order."""
    features: pd.DataFrame
    depth: pd.Series
    lithology: pd.Series

    def __len__(self):
        return len(self.features)


def observations_from_frame(df: pd.DataFrame, feature_columns: List[str],
                            depth_column: str, lithology_column: Optional[str]) -> ObservationTable:
    """Select columns and drop rows with missing features, keeping row order."""
    required = list(feature_columns) + [depth_column]
    if lithology_column is not None:
        required.append(lithology_column)
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise InputError(f"Columns not found in input table: {missing}")
    if not feature_columns:
        raise InputError("No feature columns selected")

    features = df[list(feature_columns)].apply(pd.to_numeric, errors='coerce')
    valid = features.notna().all(axis=1) & df[depth_column].notna()
    before = len(df)
    df = df[valid].reset_index(drop=True)
    features = features[valid].reset_index(drop=True)
    logging.info(f"Observations: {len(df)} rows kept (dropped {before - len(df)} with missing values)")

    if lithology_column is not None:
        lithology = df[lithology_column]
        logging.info(f"Lithology: {lithology.nunique()} categories, {int(lithology.isna().sum())} rows undescribed")
    else:
        lithology = pd.Series([None] * len(df), dtype=object)
    return ObservationTable(features=features, depth=df[depth_column], lithology=lithology)


def load_observations(path, feature_columns: List[str], depth_column: str,
                      lithology_column: Optional[str] = None) -> ObservationTable:
    """Read a CSV measurement table."""
    path = Path(path)
    if not path.exists():
        raise InputError(f"Input table not found: {path}")
    logging.info(f"Loading {path}...")
    df = pd.read_csv(path, low_memory=False)
    logging.info(f"Input table: {len(df)} rows, {df.shape[1]} columns")
    return observations_from_frame(df, feature_columns, depth_column, lithology_column)


def rpca_path(output_dir, run_id: str, n_pcs: int) -> Path:
    return Path(output_dir) / f"{run_id}_rpca_pc{n_pcs}.npz"


def gmm_path(output_dir, run_id: str, n_pcs: int, n_pdfs: int) -> Path:
    return Path(output_dir) / f"{run_id}_gmm_pc{n_pcs}_k{n_pdfs}.npz"


def save_robust_pca(result: RobustPCAResult, output_dir, run_id: str, n_pcs: int) -> Path:
    path = rpca_path(output_dir, run_id, n_pcs)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez(
        path,
        center=result.center,
        covariance=result.covariance,
        eigenvectors=result.eigenvectors,
        eigenvalues=result.eigenvalues,
        projected=result.projected,
        alpha=result.alpha,
        n_pcs=n_pcs,
    )
    logging.info(f"Saved robust PCA artifact: {path}")
    return path


def load_robust_pca(path) -> Tuple[RobustPCAResult, int]:
    """Returns the stored result and its component-count tag."""
    with np.load(path, allow_pickle=False) as data:
        result = RobustPCAResult(
            center=data['center'],
            covariance=data['covariance'],
            eigenvalues=data['eigenvalues'],
            eigenvectors=data['eigenvectors'],
            projected=data['projected'],
            alpha=float(data['alpha']),
        )
        return result, int(data['n_pcs'])


def save_mixture_run(aggregate: RunAggregate, output_dir, run_id: str, n_pcs: int) -> Path:
    """Persist a run aggregate; an all-failed run is stored with has_best=False."""
    path = gmm_path(output_dir, run_id, n_pcs, aggregate.n_pdfs)
    path.parent.mkdir(parents=True, exist_ok=True)
    empty = np.array([], dtype=int)
    best, worst = aggregate.best, aggregate.worst
    np.savez(
        path,
        n_pdfs=aggregate.n_pdfs,
        n_pcs=n_pcs,
        log_likelihoods=np.asarray(aggregate.log_likelihoods, dtype=float),
        n_errors=aggregate.n_errors,
        failure_reasons=json.dumps(dict(aggregate.failure_reasons)),
        has_best=best is not None,
        best_labels=best.labels if best is not None else empty,
        best_log_likelihood=best.log_likelihood if best is not None else np.nan,
        worst_labels=worst.labels if worst is not None else empty,
        worst_log_likelihood=worst.log_likelihood if worst is not None else np.nan,
    )
    logging.info(f"Saved mixture artifact: {path}")
    return path


def load_mixture_run(path) -> RunAggregate:
    with np.load(path, allow_pickle=False) as data:
        n_pdfs = int(data['n_pdfs'])
        aggregate = RunAggregate(
            n_pdfs=n_pdfs,
            log_likelihoods=data['log_likelihoods'].tolist(),
            n_errors=int(data['n_errors']),
            failure_reasons=Counter(json.loads(str(data['failure_reasons']))),
        )
        if bool(data['has_best']):
            aggregate.best = ClusterFitResult(n_pdfs, data['best_labels'],
                                              float(data['best_log_likelihood']))
            aggregate.worst = ClusterFitResult(n_pdfs, data['worst_labels'],
                                               float(data['worst_log_likelihood']))
    return aggregate


def results_table(depth: pd.Series, mixture_labels: Mapping[str, np.ndarray],
                  hierarchical_labels: Mapping[str, np.ndarray]) -> pd.DataFrame:
    """One row per observation in original order: depth, then label columns."""
    depth = pd.Series(depth).reset_index(drop=True)
    table = pd.DataFrame({depth.name or 'depth': depth})
    for name, labels in list(mixture_labels.items()) + list(hierarchical_labels.items()):
        labels = np.asarray(labels)
        if len(labels) != len(table):
            raise InputError(f"{name}: {len(labels)} labels for {len(table)} observations")
        table[name] = labels
    return table


def write_table(table: pd.DataFrame, path, index: bool = False) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(path, index=index)
    logging.info(f"Saved table: {path}")
    return path
