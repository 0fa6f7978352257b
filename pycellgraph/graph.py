##########################################################################
#
# Shared-nearest-neighbor graph construction
#
##########################################################################
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import igraph as ig
from scipy.sparse import coo_matrix, csr_matrix, triu
from tqdm import tqdm

from .exceptions import EmptyInputError, InvalidArgumentError

EDGE_COLUMNS = ["source", "target", "weight"]

# upper bound on stored entries materialized per batch in jaccard_coefficient
_BATCH_ENTRIES = 5_000_000


def neighbor_indicator(neighbors: np.ndarray, n_points: Optional[int] = None) -> csr_matrix:
    """Binary sparse matrix with ``M[i, j] = 1`` when ``j`` is a neighbor of ``i``."""
    neighbors = np.asarray(neighbors)
    n_rows, k = neighbors.shape
    if n_points is None:
        n_points = n_rows
    rows = np.repeat(np.arange(n_rows), k)
    data = np.ones(n_rows * k, dtype=np.float64)
    return csr_matrix((data, (rows, neighbors.ravel())), shape=(n_rows, n_points))


def jaccard_coefficient(
    neighbors: np.ndarray,
    weighted: bool = False,
    batch_size: Optional[int] = None,
    verbose: bool = False,
) -> pd.DataFrame:
    """Score every (point, neighbor) pair by the overlap of their neighbor sets.

    For a point ``i`` and each ``j`` in its neighbor row, the shared-neighbor
    count ``s = |N(i) & N(j)|`` is computed. With ``weighted=False`` the edge
    weight is ``s`` itself; with ``weighted=True`` it is the Jaccard index
    ``s / (2k - s)``. Pairs with no shared neighbors are kept with weight 0.

    Only the k neighbors of each point are compared, so the work is
    ``O(n_points * k^2)``. Rows are processed in batches to bound memory.

    Args:
        neighbors: Integer array ``(n_points, k)`` from :func:`find_neighbors`.
        weighted: Normalize counts to Jaccard coefficients.
        batch_size: Number of points per batch. Chosen from ``k`` if ``None``.
        verbose: Show a progress bar over batches.
    Returns:
        DataFrame with columns ``source``, ``target``, ``weight`` and
        ``n_points * k`` rows, ordered by source then neighbor rank.
    """
    neighbors = np.asarray(neighbors)
    if neighbors.ndim != 2:
        raise InvalidArgumentError(f"neighbors must be a 2-D index table, got shape {neighbors.shape}")
    n_points, k = neighbors.shape
    if n_points == 0:
        raise EmptyInputError("The neighbor table has no rows.")
    if k < 1:
        raise InvalidArgumentError("The neighbor table has no columns.")
    if not np.issubdtype(neighbors.dtype, np.integer):
        raise InvalidArgumentError(f"neighbors must hold integer indices, got dtype {neighbors.dtype}")

    if neighbors.min() < 0 or neighbors.max() >= n_points:
        raise InvalidArgumentError(f"Neighbor indices must lie in [0, {n_points})")
    indicator = neighbor_indicator(neighbors)

    if batch_size is None:
        batch_size = max(1, _BATCH_ENTRIES // (k * k))

    shared = np.empty(n_points * k, dtype=np.float64)
    starts = range(0, n_points, batch_size)
    for start in tqdm(starts, desc="Shared neighbors", disable=not verbose):
        stop = min(start + batch_size, n_points)
        src = np.repeat(np.arange(start, stop), k)
        dst = neighbors[start:stop].ravel()
        counts = indicator[src].multiply(indicator[dst]).sum(axis=1)
        shared[start * k:stop * k] = np.asarray(counts).ravel()

    if weighted:
        weights = shared / (2 * k - shared)
    else:
        weights = shared

    return pd.DataFrame({
        "source": np.repeat(np.arange(n_points), k),
        "target": neighbors.ravel().astype(np.int64),
        "weight": weights,
    }, columns=EDGE_COLUMNS)


def filter_positive_edges(edges: pd.DataFrame) -> pd.DataFrame:
    """Drop edges whose weight is not strictly positive."""
    return edges.loc[edges["weight"] > 0].reset_index(drop=True)


def build_similarity_edges(neighbors: np.ndarray, weighted: bool = False, **kwargs) -> pd.DataFrame:
    """Shared-neighbor edges with zero-weight pairs removed.

    Keyword arguments are forwarded to :func:`jaccard_coefficient`.
    """
    return filter_positive_edges(jaccard_coefficient(neighbors, weighted=weighted, **kwargs))


def build_graph(
    edges: pd.DataFrame,
    n_vertices: Optional[int] = None,
    names: Optional[Sequence[str]] = None,
) -> ig.Graph:
    """Build an undirected weighted graph from an edge list.

    Duplicate and reverse edges are kept as parallel edges; the community
    detection libraries sum them. Vertices ``0 .. n_vertices - 1`` always
    exist, so points without edges end up as isolated vertices.

    Args:
        edges: DataFrame with ``source``, ``target`` and ``weight`` columns.
        n_vertices: Number of vertices. Defaults to ``len(names)`` or the
            largest index referenced by ``edges`` plus one.
        names: Optional vertex names (e.g. cell barcodes).
    Returns:
        Undirected ``igraph.Graph`` with a ``weight`` edge attribute.
    """
    missing = [c for c in EDGE_COLUMNS if c not in edges.columns]
    if missing:
        raise InvalidArgumentError(f"Missing columns {missing} in edge list")
    if (edges["weight"] < 0).any():
        raise InvalidArgumentError("Edge weights must be non-negative.")

    src = edges["source"].to_numpy(dtype=np.int64)
    dst = edges["target"].to_numpy(dtype=np.int64)

    if n_vertices is None:
        if names is not None:
            n_vertices = len(names)
        elif len(edges) > 0:
            n_vertices = int(max(src.max(), dst.max())) + 1
        else:
            n_vertices = 0
    if n_vertices == 0:
        raise EmptyInputError("Cannot build a graph with zero vertices.")
    if len(edges) > 0 and (min(src.min(), dst.min()) < 0 or max(src.max(), dst.max()) >= n_vertices):
        raise InvalidArgumentError(f"Edge indices must lie in [0, {n_vertices})")

    g = ig.Graph(n=n_vertices, edges=list(zip(src.tolist(), dst.tolist())), directed=False)
    if len(edges) > 0:
        g.es["weight"] = edges["weight"].astype(float).tolist()
    if names is not None:
        if len(names) != n_vertices:
            raise InvalidArgumentError(f"Got {len(names)} names for {n_vertices} vertices")
        g.vs["name"] = [str(x) for x in names]
    return g


def graph_to_adjacency(g: ig.Graph) -> csr_matrix:
    """Symmetric sparse adjacency matrix; parallel edge weights are summed."""
    n = g.vcount()
    if g.ecount() == 0:
        return csr_matrix((n, n), dtype=np.float64)

    edge_list = np.asarray(g.get_edgelist(), dtype=np.int64)
    weights = np.asarray(g.es["weight"] if "weight" in g.es.attributes() else np.ones(g.ecount()), dtype=np.float64)
    src, dst = edge_list[:, 0], edge_list[:, 1]
    off_diag = src != dst
    rows = np.concatenate([src, dst[off_diag]])
    cols = np.concatenate([dst, src[off_diag]])
    data = np.concatenate([weights, weights[off_diag]])
    return coo_matrix((data, (rows, cols)), shape=(n, n)).tocsr()


def graph_from_adjacency(adjacency, names: Optional[Sequence[str]] = None) -> ig.Graph:
    """Inverse of :func:`graph_to_adjacency` (parallel edges come back merged)."""
    upper = triu(csr_matrix(adjacency), format="coo")
    edges = pd.DataFrame({"source": upper.row, "target": upper.col, "weight": upper.data}, columns=EDGE_COLUMNS)
    return build_graph(edges, n_vertices=adjacency.shape[0], names=names)
