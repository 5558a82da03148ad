"""
Tests for Ward hierarchical clustering.
"""

import numpy as np
import pytest

from corefacies.errors import InputError
from corefacies.hierarchical import ward_clusters, ward_linkage
from corefacies.robust_pca import fit_robust_pca
from corefacies.validation import validate_clustering


@pytest.fixture
def coords(blobs):
    X, _ = blobs
    return fit_robust_pca(X, alpha=0.98).coordinates(2)


def test_deterministic(coords):
    a = ward_clusters(coords, 4)
    b = ward_clusters(coords.copy(), 4)
    np.testing.assert_array_equal(a, b)


def test_exact_cardinality_with_duplicates():
    """Every k in [1, n] yields exactly k labels, even with tied merge heights."""
    X = np.array([[0, 0], [0, 0], [0, 0], [1, 1], [1, 1], [5, 5],
                  [5, 5], [5, 6], [9, 9], [9, 9], [9, 9], [20, 0]], dtype=float)
    for k in range(1, len(X) + 1):
        labels = ward_clusters(X, k)
        assert labels.shape == (len(X),)
        assert len(np.unique(labels)) == k
        assert labels.min() == 1 and labels.max() == k


def test_blobs_recovered(coords, blobs):
    _, truth = blobs
    labels = ward_clusters(coords, 5)
    stats = validate_clustering(truth, labels, 'ward_pc2_k5')
    assert stats.cramers_v > 0.8


@pytest.mark.parametrize("k", [0, 101, -1])
def test_k_out_of_range(coords, k):
    with pytest.raises(InputError):
        ward_clusters(coords, k)


def test_single_row():
    np.testing.assert_array_equal(ward_clusters(np.array([[1.0, 2.0]]), 1), [1])


def test_linkage_shape(coords):
    Z = ward_linkage(coords)
    assert Z.shape == (99, 4)
    # Ward merge heights never decrease
    assert np.all(np.diff(Z[:, 2]) >= -1e-12)
