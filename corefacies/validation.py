"""
Validation of cluster labels against described lithology.

For every clustering a lithology x cluster contingency table is built and
summarised by Pearson's chi-square (no continuity correction), its degrees of
freedom and p-value, and Cramer's V.

Failure policy: a table with an all-zero row or column (e.g. a lithology
category that never occurs among the labelled rows) makes the expected
frequencies zero and the statistic undefined, so it raises
DegenerateContingencyError. A table with a single lithology or a single
cluster is defined but carries no association: chi2 = 0, dof = 0, p = 1, V = 0.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Mapping

import numpy as np
import pandas as pd
from scipy.stats import chi2_contingency

from corefacies.errors import DegenerateContingencyError, InputError


@dataclass(frozen=True)
class ValidationStats:
    clustering: str
    chi2: float
    dof: int
    p_value: float
    cramers_v: float
    n: int


def contingency_table(ground_truth, labels) -> pd.DataFrame:
    """
    Cross-tabulate lithology (rows) against cluster labels (columns).

    Rows whose lithology or label is missing are left out. Categorical
    lithology keeps its unobserved categories as empty rows.
    """
    truth = pd.Series(ground_truth).reset_index(drop=True)
    clusters = pd.Series(labels).reset_index(drop=True)
    if len(truth) != len(clusters):
        raise InputError(
            f"Lithology has {len(truth)} rows but cluster labels have {len(clusters)}"
        )
    observed = truth.notna() & clusters.notna()
    if not observed.any():
        return pd.DataFrame()
    return pd.crosstab(truth[observed].rename('Lithology'),
                       clusters[observed].rename('Cluster'), dropna=False)


def contingency_statistics(table, clustering: str = '') -> ValidationStats:
    """Chi-square test and Cramer's V for a contingency table."""
    observed = np.asarray(table, dtype=float)
    if observed.ndim != 2 or observed.size == 0:
        raise DegenerateContingencyError(
            f"{clustering or 'table'}: empty contingency table (shape {observed.shape})"
        )
    if np.any(observed < 0):
        raise InputError(f"{clustering or 'table'}: negative counts in contingency table")

    empty_rows = np.flatnonzero(observed.sum(axis=1) == 0)
    empty_cols = np.flatnonzero(observed.sum(axis=0) == 0)
    if empty_rows.size or empty_cols.size:
        raise DegenerateContingencyError(
            f"{clustering or 'table'}: zero-count rows {empty_rows.tolist()} / "
            f"columns {empty_cols.tolist()}, chi-square is undefined"
        )

    n = int(observed.sum())
    r, c = observed.shape
    if min(r, c) == 1:
        logging.warning(f"{clustering or 'table'}: only {r} lithology x {c} cluster categories, "
                        f"no association measurable")
        return ValidationStats(clustering, 0.0, 0, 1.0, 0.0, n)

    chi2, p_value, dof, _ = chi2_contingency(observed, correction=False)
    cramers_v = float(np.sqrt(chi2 / (n * (min(r, c) - 1))))
    # Rounding can overshoot 1 on a perfectly associated table
    cramers_v = min(cramers_v, 1.0)
    return ValidationStats(clustering, float(chi2), int(dof), float(p_value), cramers_v, n)


def validate_clustering(ground_truth, labels, clustering: str = '') -> ValidationStats:
    stats = contingency_statistics(contingency_table(ground_truth, labels), clustering)
    logging.info(f"{clustering}: chi2={stats.chi2:.2f}, dof={stats.dof}, "
                 f"p={stats.p_value:.3g}, Cramer's V={stats.cramers_v:.3f}")
    return stats


def statistics_table(ground_truth, candidates: Mapping[str, object]) -> pd.DataFrame:
    """One row of validation statistics per named clustering, in the given order."""
    rows = [asdict(validate_clustering(ground_truth, labels, name))
            for name, labels in candidates.items()]
    columns = ['clustering', 'chi2', 'dof', 'p_value', 'cramers_v', 'n']
    return pd.DataFrame(rows, columns=columns).set_index('clustering')
