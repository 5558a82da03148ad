"""
Presentation of clustering results.

Cluster integers from the core are arbitrary; figures relabel them by
frequency rank (1 = most common cluster) so colours are comparable across
configurations.
"""

import logging
from pathlib import Path
from typing import Mapping

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from corefacies.mixture import RunAggregate

sns.set_style('whitegrid')


def rank_labels_by_frequency(labels) -> np.ndarray:
    """Relabel clusters 1..k by descending size; equal sizes keep the smaller label first."""
    labels = np.asarray(labels)
    values, counts = np.unique(labels, return_counts=True)
    # np.unique sorts values, so a stable sort on -counts keeps ties in label order
    order = np.argsort(-counts, kind='stable')
    mapping = {values[i]: rank + 1 for rank, i in enumerate(order)}
    return np.array([mapping[v] for v in labels], dtype=int)


def plot_downcore_clusters(depth, label_columns: Mapping[str, np.ndarray],
                           lithology: pd.Series, output_path: Path):
    """Cluster strips versus depth, one panel per clustering, lithology last."""
    depth = np.asarray(depth, dtype=float)
    n_panels = len(label_columns) + 1
    fig, axes = plt.subplots(1, n_panels, figsize=(1.6 * n_panels + 2, 10), sharey=True)
    axes = np.atleast_1d(axes)

    for ax, (name, labels) in zip(axes, label_columns.items()):
        ranked = rank_labels_by_frequency(labels)
        ax.scatter(np.zeros_like(depth), depth, c=ranked, cmap='tab10',
                   vmin=1, vmax=10, marker='s', s=40, linewidths=0)
        ax.set_title(name, fontsize=8, rotation=45, ha='left')
        ax.set_xticks([])

    lith = pd.Series(lithology).reset_index(drop=True)
    codes = lith.astype('category').cat.codes.to_numpy()
    observed = codes >= 0
    ax = axes[-1]
    ax.scatter(np.zeros(observed.sum()), depth[observed], c=codes[observed], cmap='tab20',
               marker='s', s=40, linewidths=0)
    ax.set_title('Lithology', fontsize=8, rotation=45, ha='left')
    ax.set_xticks([])

    axes[0].set_ylabel('Depth')
    axes[0].invert_yaxis()
    plt.tight_layout()
    plt.savefig(output_path, dpi=300, bbox_inches='tight')
    plt.close()

    logging.info(f"Saved downcore cluster plot: {output_path}")


def plot_contingency_heatmap(contingency: pd.DataFrame, title: str, output_path: Path):
    """Plot a lithology x cluster contingency table as row-normalised heatmap."""
    fig, ax = plt.subplots(figsize=(10, 8))

    # Percent of each lithology falling into each cluster
    contingency_pct = contingency.div(contingency.sum(axis=1), axis=0) * 100

    sns.heatmap(contingency_pct, annot=True, fmt='.0f', cmap='YlOrRd',
                cbar_kws={'label': 'Percentage of Lithology (%)'}, ax=ax)

    ax.set_xlabel('Cluster', fontweight='bold')
    ax.set_ylabel('Lithology (Principal)', fontweight='bold')
    ax.set_title(f'{title}\n(Row-normalized percentages)', fontweight='bold')

    plt.tight_layout()
    plt.savefig(output_path, dpi=300, bbox_inches='tight')
    plt.close()

    logging.info(f"Saved contingency heatmap: {output_path}")


def plot_likelihood_history(aggregate: RunAggregate, title: str, output_path: Path):
    """Histogram of fit log-likelihoods with the best and worst fit marked."""
    if not aggregate.has_fits:
        logging.warning(f"{title}: no successful fits, skipping likelihood plot")
        return

    fig, ax = plt.subplots(figsize=(8, 5))
    ax.hist(aggregate.log_likelihoods, bins=30, color='steelblue', alpha=0.7)
    ax.axvline(aggregate.best.log_likelihood, color='darkgreen', linestyle='--',
               label=f'Best ({aggregate.best.log_likelihood:.1f})')
    ax.axvline(aggregate.worst.log_likelihood, color='darkred', linestyle='--',
               label=f'Worst ({aggregate.worst.log_likelihood:.1f})')
    ax.set_xlabel('Log-likelihood')
    ax.set_ylabel('Fits')
    ax.set_title(f'{title}\n{len(aggregate.log_likelihoods)} fits, {aggregate.n_errors} failed')
    ax.legend()
    ax.grid(alpha=0.3)

    plt.tight_layout()
    plt.savefig(output_path, dpi=300, bbox_inches='tight')
    plt.close()

    logging.info(f"Saved likelihood history plot: {output_path}")
