"""
End-to-end tests of the facies clustering pipeline.
"""

import json

import numpy as np
import pandas as pd
import pytest

from corefacies.config import PipelineConfig
from corefacies.errors import InputError
from corefacies.mixture import run_subsample_clustering
from corefacies.pipeline import main, run_pipeline
from corefacies.robust_pca import fit_robust_pca
from corefacies.validation import validate_clustering


def _config(tmp_path, **overrides):
    values = dict(
        run_id='synthetic',
        output_dir=str(tmp_path / 'out'),
        physical_columns=['gra', 'ms', 'ngr'],
        alpha=0.98,
        pc_counts=[2],
        pdf_counts=[5],
        n_iter=20,
        hierarchical_counts=[5],
        n_workers=4,
        seed=42,
        backend='thread',
        make_plots=False,
    )
    values.update(overrides)
    return PipelineConfig(**values)


def test_mixture_scenario(blobs):
    """alpha=0.98, 2 PCs, 5 components, 20 iterations recovers the blobs."""
    X, truth = blobs
    coords = fit_robust_pca(X, alpha=0.98).coordinates(2)
    agg = run_subsample_clustering(coords, n_pdfs=5, n_iter=20, rng=0)

    assert agg.n_errors < 20
    assert validate_clustering(truth, agg.require_best().labels).cramers_v > 0.8


def test_pipeline_on_blobs(blob_table, tmp_path):
    config = _config(tmp_path)
    result = run_pipeline(config, table=blob_table)

    agg = result.aggregates[(2, 5)]
    assert agg.n_iter == 20
    assert agg.n_errors < 20

    stats = result.statistics
    assert list(stats.index) == ['gmm_pc2_k5', 'ward_pc2_k5']
    assert stats.loc['gmm_pc2_k5', 'cramers_v'] > 0.8
    assert stats.loc['ward_pc2_k5', 'cramers_v'] > 0.8

    results = result.results
    assert list(results.columns) == ['Depth CSF-A (m)', 'gmm_pc2_k5', 'ward_pc2_k5']
    pd.testing.assert_series_equal(results['Depth CSF-A (m)'], blob_table.depth)

    out = tmp_path / 'out'
    for name in ('synthetic_rpca_pc2.npz', 'synthetic_gmm_pc2_k5.npz',
                 'synthetic_results.csv', 'synthetic_statistics.csv'):
        assert (out / name).exists()


def test_pipeline_with_compositions(tmp_path):
    """Three element columns become two ILR coordinates ahead of the physical column."""
    rng = np.random.default_rng(3)
    group = np.repeat([0, 1], 30)
    ca = np.where(group == 0, 50.0, 5.0) * rng.lognormal(0, 0.05, 60)
    fe = np.where(group == 0, 5.0, 50.0) * rng.lognormal(0, 0.05, 60)
    ti = 10.0 * rng.lognormal(0, 0.05, 60)
    gra = np.where(group == 0, 1.5, 2.0) + rng.normal(0, 0.02, 60)
    df = pd.DataFrame({'depth': np.arange(60.0), 'Ca': ca, 'Fe': fe, 'Ti': ti, 'gra': gra,
                       'lith': np.where(group == 0, 'ooze', 'clay')})
    path = tmp_path / 'xrf.csv'
    df.to_csv(path, index=False)

    config = _config(tmp_path, data_path=str(path), depth_column='depth', lithology_column='lith',
                     composition_columns=['Ca', 'Fe', 'Ti'], physical_columns=['gra'],
                     pc_counts=[2, 3], pdf_counts=[2], hierarchical_counts=[2], n_iter=4)
    result = run_pipeline(config)

    assert result.rpca.n_components == 3
    assert result.statistics.loc['ward_pc2_k2', 'cramers_v'] == pytest.approx(1.0)
    assert set(result.statistics.index) == {'gmm_pc2_k2', 'gmm_pc3_k2', 'ward_pc2_k2', 'ward_pc3_k2'}


def test_all_failed_configuration_has_no_label_column(blob_table, tmp_path, monkeypatch):
    from corefacies import pipeline
    from corefacies.mixture import RunAggregate

    def failing_driver(coords, n_pdfs, n_iter, config, **kwargs):
        return RunAggregate(n_pdfs=n_pdfs, n_errors=n_iter)

    monkeypatch.setattr(pipeline, 'run_parallel_clustering', failing_driver)
    result = run_pipeline(_config(tmp_path), table=blob_table)

    assert result.aggregates[(2, 5)].best is None
    assert 'gmm_pc2_k5' not in result.results.columns
    assert list(result.statistics.index) == ['ward_pc2_k5']


@pytest.mark.parametrize("overrides", [
    {'alpha': 1.2},
    {'alpha': 0.0},
    {'subsample_fraction': 1.5},
    {'pc_counts': [4]},
])
def test_invalid_configuration(blob_table, tmp_path, overrides):
    with pytest.raises(InputError):
        run_pipeline(_config(tmp_path, **overrides), table=blob_table)


def test_config_json_round_trip(tmp_path):
    config = _config(tmp_path)
    config.to_json(tmp_path / 'run.json')
    assert PipelineConfig.from_json(tmp_path / 'run.json') == config


def test_config_rejects_unknown_keys(tmp_path):
    (tmp_path / 'bad.json').write_text(json.dumps({'n_iters': 10}))
    with pytest.raises(InputError):
        PipelineConfig.from_json(tmp_path / 'bad.json')


def test_config_defaults_are_unregularised():
    config = PipelineConfig()
    assert config.reg_covar == 0.0
    assert config.mcd_reweighted


def test_pipeline_raw_mcd(blob_table, tmp_path):
    X = blob_table.features.to_numpy()
    result = run_pipeline(_config(tmp_path, mcd_reweighted=False, n_iter=4), blob_table)
    raw = fit_robust_pca(X, alpha=0.98, reweighted=False)
    np.testing.assert_allclose(result.rpca.center, raw.center)
    np.testing.assert_array_equal(result.rpca.support, raw.support)


def test_cli(blob_csv, tmp_path):
    config = _config(tmp_path, n_iter=8, data_path=None)
    config.to_json(tmp_path / 'run.json')

    main(['--config', str(tmp_path / 'run.json'), '--data', str(blob_csv),
          '--run-id', 'cli', '--n-workers', '2'])

    out = tmp_path / 'out'
    stats = pd.read_csv(out / 'cli_statistics.csv', index_col=0)
    assert set(stats.index) == {'gmm_pc2_k5', 'ward_pc2_k5'}
    results = pd.read_csv(out / 'cli_results.csv')
    assert len(results) == 99
    assert (out / 'cli_config.json').exists()
