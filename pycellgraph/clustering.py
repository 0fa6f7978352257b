##########################################################################
#
# Cell clustering on shared-nearest-neighbor graphs and gene clustering
#
##########################################################################
import time
import warnings
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

import numpy as np
import pandas as pd
import igraph as ig
import kmedoids
from anndata import AnnData

from .community import ClusterConfig, Partition, find_communities, get_strategy
from .exceptions import EmptyInputError, InvalidArgumentError, UnsupportedConfigurationError
from .graph import build_graph, build_similarity_edges, graph_from_adjacency, graph_to_adjacency
from .neighbors import find_neighbors, validate_k
from .utils import get_embedding

# above this many cells the legacy tree method is likely to run out of memory
LARGE_N_CELLS = 500000


@dataclass
class ClusterResult:
    """A stored clustering run: the graph it was computed on and its partition."""
    partition: Partition
    graph: Optional[ig.Graph] = None
    params: Dict[str, Any] = field(default_factory=dict)


def _connectivities_key(key: str) -> str:
    return f"{key}_connectivities"


def set_cluster_result(
    adata: AnnData,
    key: str,
    partition: Partition,
    graph: Optional[ig.Graph] = None,
    params: Optional[Dict[str, Any]] = None,
) -> None:
    """Store a clustering run under ``key``, replacing any previous run.

    The community result goes to ``adata.uns[key]`` and the graph, as a
    symmetric weighted adjacency matrix, to ``adata.obsp[f'{key}_connectivities']``.
    """
    record = partition.to_dict()
    record["params"] = dict(params or {})
    adata.uns[key] = record

    conn_key = _connectivities_key(key)
    if graph is not None:
        if graph.vcount() != adata.n_obs:
            raise InvalidArgumentError(f"Graph has {graph.vcount()} vertices but adata has {adata.n_obs} cells")
        adata.obsp[conn_key] = graph_to_adjacency(graph)
    elif conn_key in adata.obsp:
        del adata.obsp[conn_key]


def get_cluster_result(adata: AnnData, key: str) -> ClusterResult:
    """Load the clustering run stored under ``key`` by :func:`set_cluster_result`.

    The graph is rebuilt from the stored adjacency matrix, so reverse and
    duplicate edges of the assembled graph come back merged into one edge
    whose weight is their sum. Its ``ecount()`` is the number of distinct
    cell pairs, not the number of edges the detector was given.
    """
    if key not in adata.uns:
        raise KeyError(f"No clustering result '{key}' in adata.uns. Run cluster_cells first.")
    record = adata.uns[key]
    partition = Partition.from_dict(record)

    graph = None
    conn_key = _connectivities_key(key)
    if conn_key in adata.obsp:
        graph = graph_from_adjacency(adata.obsp[conn_key], names=adata.obs_names)
    return ClusterResult(partition=partition, graph=graph, params=dict(record.get("params", {})))


def apply_clusters(
    adata: AnnData,
    partition: Partition,
    graph: Optional[ig.Graph] = None,
    key_added: str = "Cluster",
    run_key: Optional[str] = None,
    params: Optional[Dict[str, Any]] = None,
) -> AnnData:
    """Write 1-based cluster labels into ``adata.obs[key_added]``.

    The partition (and graph, if given) are also stored with
    :func:`set_cluster_result` under ``run_key`` (default: the partition's
    method name). Both replace whatever a previous run left there.

    Returns:
        The same AnnData object.
    """
    membership = np.asarray(partition.membership)
    if membership.shape[0] != adata.n_obs:
        raise InvalidArgumentError(f"Partition covers {membership.shape[0]} points but adata has {adata.n_obs} cells")

    labels = partition.labels
    adata.obs[key_added] = pd.Categorical(labels, categories=np.unique(labels))
    set_cluster_result(adata, run_key or partition.method, partition, graph=graph, params=params)
    return adata


def cluster_cells(
    adata: AnnData,
    k: int = 50,
    louvain_iter: int = 1,
    weight: bool = False,
    method: str = "leiden",
    verbose: bool = False,
    resolution_parameter: float = 0.1,
    random_state: Optional[int] = None,
    n_jobs: int = 1,
    use_rep: str = "X_pca",
    num_dim: Optional[int] = 50,
    key_added: str = "Cluster",
    num_clusters: Optional[int] = None,
    tree_projection: Optional[Callable] = None,
    copy: bool = False,
) -> Optional[AnnData]:
    """Cluster cells into groups with Leiden or Louvain community detection.

    A k-nearest-neighbor graph is built on the embedding in
    ``adata.obsm[use_rep]``. Each cell is linked to its k neighbors, weighted by
    the number of neighbors they share (or the Jaccard index of their neighbor
    sets when ``weight=True``); pairs sharing no neighbors are dropped. The
    graph is then partitioned:

    - ``method='louvain'``: Louvain modularity optimization, repeated
      ``louvain_iter`` times, keeping the run with the highest modularity.
    - ``method='leiden'``: Leiden optimization of the Constant Potts Model with
      ``resolution_parameter``; larger values give more clusters.
    - ``method='ddrtree'``: legacy tree projection delegated to
      ``tree_projection(adata, num_clusters)``.

    Larger ``k`` gives fewer, coarser clusters.

    Args:
        adata: AnnData object with cells as observations.
        k: Number of nearest neighbors.
        louvain_iter: Louvain restarts, or Leiden iterations.
        weight: Use Jaccard coefficients instead of raw shared-neighbor counts.
        method: ``'leiden'``, ``'louvain'`` or ``'ddrtree'``.
        verbose: Print progress and timing for each step.
        resolution_parameter: Leiden CPM resolution.
        random_state: Seed for the community detection. ``None`` leaves the
            result up to the library's own randomness.
        n_jobs: Workers for the neighbor search and the Louvain restarts.
        use_rep: Key of ``adata.obsm`` holding the embedding (``'X'`` for the
            expression matrix). ``'X_pca'`` is computed if missing.
        num_dim: Number of principal components used with ``'X_pca'``.
        key_added: Column of ``adata.obs`` receiving the labels.
        num_clusters: Number of tree vertices, ``'ddrtree'`` only.
        tree_projection: Callable used by ``'ddrtree'``.
        copy: Work on and return a copy of ``adata``.
    Returns:
        The clustered copy when ``copy=True``, otherwise ``None``. Labels are
        stored in ``adata.obs[key_added]`` and the run in ``adata.uns[method]``
        and ``adata.obsp[f'{method}_connectivities']``.
    """
    vp = print if verbose else lambda *a, **k: None

    strategy = get_strategy(method)
    config = ClusterConfig(
        k=k,
        louvain_iter=louvain_iter,
        weight=weight,
        resolution_parameter=resolution_parameter,
        method=strategy.name,
        verbose=verbose,
        random_state=random_state,
        n_jobs=n_jobs,
        num_clusters=num_clusters,
        tree_projection=tree_projection,
    )

    if adata.n_obs == 0:
        raise EmptyInputError("No cells to cluster: adata has zero observations.")

    if adata.n_obs > LARGE_N_CELLS and not strategy.uses_graph:
        warnings.warn(
            f"Number of cells ({adata.n_obs}) is larger than {LARGE_N_CELLS}; clustering with "
            f"'{strategy.name}' may crash. Please try method='louvain' or method='leiden'."
        )

    if strategy.uses_graph:
        if num_clusters is not None:
            raise UnsupportedConfigurationError(
                f"num_clusters is not supported with method='{strategy.name}'; "
                "the number of clusters is controlled by k and resolution_parameter."
            )
        validate_k(k, adata.n_obs)

    if copy:
        adata = adata.copy()

    if not strategy.uses_graph:
        partition = strategy.find_partition(adata, config)
        apply_clusters(adata, partition, key_added=key_added, params=config.params())
        return adata if copy else None

    data = get_embedding(adata, use_rep=use_rep, num_dim=num_dim, verbose=verbose)

    vp(f"Run graph clustering starts:\n  -Input data of {data.shape[0]} rows and {data.shape[1]} columns\n  -k is set to {k}")

    vp("  Finding nearest neighbors...", end="")
    t1 = time.time()
    neighbors = find_neighbors(data, k, n_jobs=n_jobs)
    vp(f"DONE ~ {time.time() - t1:.2f} s")

    vp("  Compute jaccard coefficient between nearest-neighbor sets...", end="")
    t2 = time.time()
    edges = build_similarity_edges(neighbors, weighted=weight)
    vp(f"DONE ~ {time.time() - t2:.2f} s")

    vp("  Build undirected graph from the weighted links...", end="")
    t3 = time.time()
    graph = build_graph(edges, n_vertices=adata.n_obs, names=adata.obs_names)
    vp(f"DONE ~ {time.time() - t3:.2f} s")

    partition = find_communities(graph, config)
    apply_clusters(adata, partition, graph=graph, key_added=key_added, params=config.params())

    return adata if copy else None


def correlation_distance(expr: np.ndarray) -> np.ndarray:
    """Pairwise ``(1 - pearson) / 2`` distance between the rows of ``expr``."""
    dist = (1 - np.corrcoef(expr)) / 2
    np.fill_diagonal(dist, 0)
    return np.clip(dist, 0, 1)


def cluster_genes(
    expr_matrix: Union[pd.DataFrame, np.ndarray],
    k: int,
    metric: Callable[[np.ndarray], np.ndarray] = correlation_distance,
    max_iter: int = 100,
) -> Dict[str, Any]:
    """Cluster genes by the shape of their expression trend.

    Typically ``expr_matrix`` holds fitted expression curves along pseudotime
    (rows are genes, columns are pseudotime points or cells). Genes with
    missing values or constant expression are dropped before clustering.
    Genes are partitioned with PAM (k-medoids with BUILD initialization and
    SWAP refinement) on the distance matrix returned by ``metric``.

    Args:
        expr_matrix: Genes x cells matrix.
        k: Number of gene clusters.
        metric: Function mapping the matrix to a square distance matrix
            between its rows. Defaults to correlation distance.
        max_iter: Maximum number of SWAP passes.
    Returns:
        Dict with ``clustering`` (1-based label per gene), ``medoids`` (the
        medoid gene of each cluster), ``loss`` (total distance of the genes to
        their medoids) and ``exprs`` (the filtered matrix).
    """
    df = pd.DataFrame(expr_matrix).copy()
    df = df.loc[df.notna().all(axis=1)]
    df = df.loc[np.isfinite(df.to_numpy(dtype=float)).all(axis=1)]
    df = df.loc[df.std(axis=1) > 0]

    n_genes = df.shape[0]
    if n_genes == 0:
        raise EmptyInputError("No genes left to cluster after removing rows with missing or constant values.")
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k < 1:
        raise InvalidArgumentError("k must be a positive integer!")
    if k > n_genes:
        raise InvalidArgumentError(f"k ({k}) must not exceed the number of genes ({n_genes})")

    if n_genes == 1:
        labels = np.array([1])
        medoid_idx = np.array([0])
        loss = 0.0
    else:
        dist = np.ascontiguousarray(metric(df.to_numpy(dtype=float)), dtype=np.float64)
        result = kmedoids.pam(dist, int(k), max_iter=max_iter, init="build")
        labels = np.asarray(result.labels, dtype=np.int64) + 1
        medoid_idx = np.asarray(result.medoids, dtype=np.int64)
        loss = float(result.loss)

    clustering = pd.Series(labels, index=df.index, name="cluster")
    medoids = pd.Series(df.index[medoid_idx], index=np.arange(1, len(medoid_idx) + 1), name="medoid")
    return {"clustering": clustering, "medoids": medoids, "loss": loss, "exprs": df}
