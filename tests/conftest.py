"""
Pytest configuration and fixtures for pycellgraph tests
"""

import pytest
import numpy as np
import pandas as pd
import igraph as ig
from anndata import AnnData


def make_blobs_adata(n_per_blob=50, n_blobs=4, n_dims=10, spread=1.0, separation=10.0, seed=0):
    """Well separated Gaussian blobs, one centre per axis."""
    rng = np.random.default_rng(seed)
    centers = np.eye(n_blobs, n_dims) * separation
    coords = np.vstack([
        rng.normal(loc=c, scale=spread, size=(n_per_blob, n_dims)) for c in centers
    ])
    truth = np.repeat(np.arange(n_blobs), n_per_blob)

    obs = pd.DataFrame({
        'blob': pd.Categorical(truth.astype(str)),
    }, index=[f'cell_{i}' for i in range(coords.shape[0])])
    var = pd.DataFrame(index=[f'PC_{i}' for i in range(n_dims)])

    adata = AnnData(X=coords.copy(), obs=obs, var=var)
    adata.obsm['X_pca'] = coords
    return adata


@pytest.fixture
def blobs_adata():
    """200 cells forming 4 blobs in 10-D, embedding in obsm['X_pca']"""
    return make_blobs_adata()


@pytest.fixture
def small_adata():
    """20 cells in 3-D for boundary checks"""
    rng = np.random.default_rng(7)
    coords = rng.normal(size=(20, 3))
    obs = pd.DataFrame(index=[f'cell_{i}' for i in range(20)])
    adata = AnnData(X=coords.copy(), obs=obs)
    adata.obsm['X_pca'] = coords
    return adata


def make_two_cliques(n=50, isolated=0):
    """Two unit-weight n-cliques joined by a single bridge edge."""
    edges = []
    for offset in (0, n):
        for i in range(n):
            for j in range(i + 1, n):
                edges.append((offset + i, offset + j))
    edges.append((n - 1, n))
    g = ig.Graph(n=2 * n + isolated, edges=edges, directed=False)
    g.es['weight'] = [1.0] * len(edges)
    return g


@pytest.fixture
def two_cliques():
    return make_two_cliques()


@pytest.fixture
def two_cliques_isolated():
    """Two cliques plus one vertex without edges (index 100)"""
    return make_two_cliques(isolated=1)
