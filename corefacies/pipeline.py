"""
Downcore facies clustering pipeline.

This script:
1. Loads the measurement table and ILR-transforms the elemental columns
2. Computes robust (MCD) PCA of the observation matrix
3. Runs repeated-subsample Gaussian mixture clustering on the first 2 / 3 PCs
   over a worker pool, keeping the best fit per configuration
4. Runs Ward hierarchical clustering on the same coordinates
5. Validates every clustering against the described lithology
   (chi-square, Cramer's V)
6. Writes artifacts, result tables and figures

Usage:
  corefacies --config run.json [--data FILE] [--n-iter N] [--n-workers W] [--seed S]
"""

import argparse
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Tuple

import pandas as pd

from corefacies import plotting, storage
from corefacies.compositions import ilr_frame
from corefacies.config import PipelineConfig
from corefacies.errors import InputError
from corefacies.hierarchical import ward_clusters
from corefacies.mixture import RunAggregate, subsample_size
from corefacies.parallel import run_parallel_clustering
from corefacies.robust_pca import RobustPCAResult, fit_robust_pca
from corefacies.validation import contingency_table, statistics_table


@dataclass
class PipelineResult:
    rpca: RobustPCAResult
    aggregates: Dict[Tuple[int, int], RunAggregate] = field(default_factory=dict)
    results: Optional[pd.DataFrame] = None
    statistics: Optional[pd.DataFrame] = None


def observation_matrix(table: storage.ObservationTable, config: PipelineConfig) -> pd.DataFrame:
    """ILR coordinates of the composition columns followed by the physical columns."""
    parts = []
    if config.composition_columns:
        parts.append(ilr_frame(table.features, config.composition_columns))
    if config.physical_columns:
        parts.append(table.features[list(config.physical_columns)])
    if not parts:
        raise InputError("No feature columns configured")
    return pd.concat(parts, axis=1)


def run_pipeline(config: PipelineConfig,
                 table: Optional[storage.ObservationTable] = None) -> PipelineResult:
    """Run the full pipeline; `table` overrides loading from config.data_path."""
    config.validate()
    output_dir = config.output_path
    output_dir.mkdir(parents=True, exist_ok=True)

    if table is None:
        if config.data_path is None:
            raise InputError("No input table: set data_path or pass an ObservationTable")
        table = storage.load_observations(config.data_path, config.feature_columns,
                                          config.depth_column, config.lithology_column)

    X = observation_matrix(table, config)
    n_rows, n_cols = X.shape
    logging.info(f"Observation matrix: {n_rows} rows x {n_cols} columns")

    # Robust PCA
    logging.info("=" * 80)
    logging.info(f"Robust PCA (alpha={config.alpha})")
    logging.info("=" * 80)
    rpca = fit_robust_pca(X.to_numpy(), alpha=config.alpha, random_state=config.mcd_random_state,
                          reweighted=config.mcd_reweighted)
    for n_pcs in config.pc_counts:
        if n_pcs > rpca.n_components:
            raise InputError(f"Requested {n_pcs} PCs but only {rpca.n_components} are available")
        storage.save_robust_pca(rpca, output_dir, config.run_id, n_pcs)

    result = PipelineResult(rpca=rpca)
    sample_size = subsample_size(n_rows, config.subsample_fraction)
    mixture_labels = {}
    ward_labels = {}

    # Mixture models
    for n_pcs in config.pc_counts:
        coords = rpca.coordinates(n_pcs)
        for n_pdfs in config.pdf_counts:
            logging.info("=" * 80)
            logging.info(f"Gaussian mixture: {n_pcs} PCs, {n_pdfs} components, {config.n_iter} iterations")
            logging.info("=" * 80)
            aggregate = run_parallel_clustering(
                coords, n_pdfs, config.n_iter, config.parallel,
                sample_size=sample_size, max_iter=config.max_iter, reg_covar=config.reg_covar,
            )
            result.aggregates[(n_pcs, n_pdfs)] = aggregate
            storage.save_mixture_run(aggregate, output_dir, config.run_id, n_pcs)

            name = f"gmm_pc{n_pcs}_k{n_pdfs}"
            if aggregate.has_fits:
                mixture_labels[name] = aggregate.best.labels
            else:
                logging.warning(f"{name}: every fit failed, no label column written")
            if config.make_plots:
                plotting.plot_likelihood_history(
                    aggregate, name, output_dir / f"{config.run_id}_{name}_loglik.png")

    # Ward clustering
    for n_pcs in config.pc_counts:
        coords = rpca.coordinates(n_pcs)
        for k in config.hierarchical_counts:
            ward_labels[f"ward_pc{n_pcs}_k{k}"] = ward_clusters(coords, k)

    results = storage.results_table(table.depth, mixture_labels, ward_labels)
    storage.write_table(results, output_dir / f"{config.run_id}_results.csv")
    result.results = results

    # Validation against lithology
    logging.info("=" * 80)
    logging.info(f"Validation against '{config.lithology_column}'")
    logging.info("=" * 80)
    candidates = {**mixture_labels, **ward_labels}
    statistics = statistics_table(table.lithology, candidates)
    storage.write_table(statistics, output_dir / f"{config.run_id}_statistics.csv", index=True)
    result.statistics = statistics
    logging.info("\n" + statistics.to_string())

    if config.make_plots:
        plotting.plot_downcore_clusters(table.depth, candidates, table.lithology,
                                        output_dir / f"{config.run_id}_downcore.png")
        for name, labels in candidates.items():
            contingency = contingency_table(table.lithology,
                                            plotting.rank_labels_by_frequency(labels))
            plotting.plot_contingency_heatmap(
                contingency, name, output_dir / f"{config.run_id}_{name}_contingency.png")

    return result


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Robust PCA + mixture/Ward clustering of downcore data.")
    parser.add_argument('--config', help="JSON file with PipelineConfig fields.")
    parser.add_argument('--data', help="CSV measurement table (overrides data_path).")
    parser.add_argument('--run-id', help="Run identifier used in artifact names.")
    parser.add_argument('--output-dir', help="Directory for artifacts, tables and logs.")
    parser.add_argument('--alpha', type=float, help="MCD retain fraction in (0, 1).")
    parser.add_argument('--n-iter', type=int, help="Mixture fits per configuration.")
    parser.add_argument('--n-workers', type=int, help="Worker shares / random streams.")
    parser.add_argument('--seed', type=int, help="Root seed for the worker streams.")
    parser.add_argument('--backend', choices=['process', 'thread'], help="Worker pool type.")
    parser.add_argument('--no-plots', action='store_true', help="Skip figures.")
    return parser.parse_args(argv)


def build_config(args) -> PipelineConfig:
    config = PipelineConfig.from_json(args.config) if args.config else PipelineConfig()
    overrides = {
        'data_path': args.data,
        'run_id': args.run_id,
        'output_dir': args.output_dir,
        'alpha': args.alpha,
        'n_iter': args.n_iter,
        'n_workers': args.n_workers,
        'seed': args.seed,
        'backend': args.backend,
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, value)
    if args.no_plots:
        config.make_plots = False
    return config


def main(argv=None):
    config = build_config(parse_args(argv))

    # Setup logging
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dir = Path(config.output_dir) / 'logs'
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f'{config.run_id}_{timestamp}.log'

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    logging.info("=" * 80)
    logging.info(f"Downcore facies clustering: run '{config.run_id}'")
    logging.info("=" * 80)

    config.validate()
    config.to_json(Path(config.output_dir) / f'{config.run_id}_config.json')
    run_pipeline(config)

    logging.info("\n" + "=" * 80)
    logging.info("Run completed successfully!")
    logging.info("=" * 80)
    logging.info(f"Output directory: {config.output_dir}")
    logging.info(f"Log file: {log_file}")


if __name__ == '__main__':
    main()
