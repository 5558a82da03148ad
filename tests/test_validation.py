"""
Tests for contingency-table validation against lithology.
"""

import numpy as np
import pandas as pd
import pytest

from corefacies.errors import DegenerateContingencyError, InputError
from corefacies.validation import (
    contingency_statistics,
    contingency_table,
    statistics_table,
    validate_clustering,
)


def test_perfect_association():
    truth = np.array(['clay', 'ooze', 'sand'] * 20)
    labels = np.array([3, 1, 2] * 20)
    stats = validate_clustering(truth, labels, 'perfect')

    assert stats.cramers_v == pytest.approx(1.0)
    assert stats.dof == 4
    assert stats.chi2 == pytest.approx(120.0)
    assert stats.p_value < 1e-20
    assert stats.n == 60


def test_cramers_v_in_unit_interval():
    rng = np.random.default_rng(0)
    for _ in range(20):
        truth = rng.integers(0, 4, size=80)
        labels = rng.integers(1, 6, size=80)
        stats = validate_clustering(truth, labels)
        assert 0.0 <= stats.cramers_v <= 1.0
        assert 0.0 <= stats.p_value <= 1.0


def test_two_by_two_has_no_continuity_correction():
    stats = contingency_statistics(np.array([[10, 0], [0, 10]]))
    assert stats.cramers_v == pytest.approx(1.0)
    assert stats.chi2 == pytest.approx(20.0)


@pytest.mark.parametrize("table", [
    [[5, 3], [0, 0]],
    [[5, 0, 2], [4, 0, 1]],
])
def test_zero_count_row_or_column_fails(table):
    with pytest.raises(DegenerateContingencyError):
        contingency_statistics(np.array(table), 'degenerate')


def test_empty_table_fails():
    with pytest.raises(DegenerateContingencyError):
        validate_clustering([np.nan, None], [1, 2], 'empty')


def test_single_lithology_has_no_association():
    stats = validate_clustering(['clay'] * 10, [1, 2] * 5, 'one-lithology')
    assert stats.cramers_v == 0.0
    assert stats.dof == 0
    assert stats.p_value == 1.0


def test_missing_lithology_rows_are_dropped():
    truth = pd.Series(['clay', None, 'sand', 'clay', np.nan, 'sand'])
    labels = np.array([1, 2, 2, 1, 1, 2])
    table = contingency_table(truth, labels)
    assert int(table.to_numpy().sum()) == 4
    assert validate_clustering(truth, labels).cramers_v == pytest.approx(1.0)


def test_length_mismatch():
    with pytest.raises(InputError):
        validate_clustering(['clay', 'sand'], [1, 2, 3])


def test_statistics_table_rows(blobs):
    _, truth = blobs
    rng = np.random.default_rng(1)
    table = statistics_table(truth, {
        'exact': truth,
        'random': rng.integers(1, 6, size=len(truth)),
    })
    assert list(table.index) == ['exact', 'random']
    assert list(table.columns) == ['chi2', 'dof', 'p_value', 'cramers_v', 'n']
    assert table.loc['exact', 'cramers_v'] == pytest.approx(1.0)
    assert table.loc['random', 'cramers_v'] < table.loc['exact', 'cramers_v']
