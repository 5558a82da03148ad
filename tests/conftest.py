"""
Pytest configuration and shared fixtures.

The synthetic core: 100 samples, 3 measurements, drawn from 5 well-separated
Gaussian blobs whose centers lie in one plane, so the first two robust PCs
carry the cluster structure.
"""

import numpy as np
import pandas as pd
import pytest

from corefacies.storage import ObservationTable

BLOB_CENTERS = np.array([
    [0.0, 0.0, 0.0],
    [10.0, 0.0, 0.0],
    [0.0, 10.0, 0.0],
    [10.0, 10.0, 0.0],
    [5.0, 5.0, 0.0],
])


@pytest.fixture
def blobs():
    """(X, labels) for 100 rows from 5 blobs, rows shuffled."""
    rng = np.random.default_rng(7)
    labels = np.repeat(np.arange(1, 6), 20)
    X = BLOB_CENTERS[labels - 1] + rng.normal(scale=0.5, size=(100, 3))
    order = rng.permutation(100)
    return X[order], labels[order]


@pytest.fixture
def blob_table(blobs):
    """The blob data as an ObservationTable with depth and lithology names."""
    X, labels = blobs
    features = pd.DataFrame(X, columns=['gra', 'ms', 'ngr'])
    depth = pd.Series(np.round(np.arange(100) * 0.05, 2), name='Depth CSF-A (m)')
    names = np.array(['clay', 'ooze', 'sand', 'silt', 'diatomite'])
    lithology = pd.Series(names[labels - 1], name='Principal')
    return ObservationTable(features=features, depth=depth, lithology=lithology)


@pytest.fixture
def blob_csv(blob_table, tmp_path):
    """The blob table written as CSV, with one undescribed and one incomplete row."""
    df = blob_table.features.copy()
    df.insert(0, 'Depth CSF-A (m)', blob_table.depth)
    df['Principal'] = blob_table.lithology
    df.loc[3, 'Principal'] = np.nan
    df.loc[10, 'ms'] = np.nan
    path = tmp_path / 'core.csv'
    df.to_csv(path, index=False)
    return path
