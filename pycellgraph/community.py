##########################################################################
#
# Community detection strategies (Louvain, Leiden, legacy tree)
#
##########################################################################
import numbers
import random
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import igraph as ig
import leidenalg
from joblib import Parallel, delayed

from .exceptions import EmptyInputError, InvalidArgumentError, UnsupportedConfigurationError


@dataclass(frozen=True)
class ClusterConfig:
    """Options shared by every clustering strategy."""
    k: int = 50
    louvain_iter: int = 1
    weight: bool = False
    resolution_parameter: float = 0.1
    method: str = "leiden"
    verbose: bool = False
    random_state: Optional[int] = None
    n_jobs: int = 1
    num_clusters: Optional[int] = None
    tree_projection: Optional[Callable] = field(default=None, compare=False)

    def __post_init__(self):
        if isinstance(self.louvain_iter, bool) or not isinstance(self.louvain_iter, (int, np.integer)) or self.louvain_iter < 1:
            raise InvalidArgumentError(f"louvain_iter must be a positive integer, got {self.louvain_iter!r}")
        if isinstance(self.resolution_parameter, bool) or not isinstance(self.resolution_parameter, numbers.Real):
            raise InvalidArgumentError(f"resolution_parameter must be a non-negative number, got {self.resolution_parameter!r}")
        if not np.isfinite(self.resolution_parameter) or self.resolution_parameter < 0:
            raise InvalidArgumentError(f"resolution_parameter must be a non-negative number, got {self.resolution_parameter!r}")

    def params(self) -> Dict[str, Any]:
        """Plain-value summary stored next to a clustering result."""
        out = {
            "k": int(self.k),
            "louvain_iter": int(self.louvain_iter),
            "weight": bool(self.weight),
            "resolution_parameter": float(self.resolution_parameter),
            "method": self.method,
        }
        if self.random_state is not None:
            out["random_state"] = int(self.random_state)
        return out


@dataclass
class Partition:
    """Cluster membership of every graph vertex plus a quality score.

    ``membership`` holds 0-based community ids in vertex order. ``quality`` is
    the value of the optimized objective (modularity for Louvain, CPM quality
    for Leiden) and ``modularity`` is always the weighted Newman modularity of
    the membership so different methods can be compared.
    """
    membership: np.ndarray
    quality: float
    modularity: float
    method: str

    @property
    def n_clusters(self) -> int:
        return len(np.unique(self.membership))

    @property
    def labels(self) -> np.ndarray:
        """1-based cluster labels."""
        return np.asarray(self.membership) + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "membership": np.asarray(self.membership, dtype=np.int64),
            "quality": float(self.quality),
            "modularity": float(self.modularity),
            "method": self.method,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Partition":
        return cls(
            membership=np.asarray(d["membership"], dtype=np.int64),
            quality=float(d["quality"]),
            modularity=float(d["modularity"]),
            method=str(d["method"]),
        )


@contextmanager
def igraph_random_state(random_state: Optional[int]):
    """Temporarily seed the random number generator igraph draws from."""
    if random_state is None:
        yield
        return
    ig.set_random_number_generator(random.Random(random_state))
    try:
        yield
    finally:
        ig.set_random_number_generator(random)


def _edge_weights(graph: ig.Graph) -> Optional[str]:
    return "weight" if "weight" in graph.es.attributes() else None


def _prepare_graph(graph: ig.Graph) -> ig.Graph:
    """Copy of ``graph`` with parallel edges merged by summing their weights."""
    if graph.vcount() == 0:
        raise EmptyInputError("Cannot detect communities on a graph with zero vertices.")
    if "weight" not in graph.es.attributes():
        return graph.copy().simplify(multiple=True, loops=False)
    return graph.copy().simplify(multiple=True, loops=False, combine_edges={"weight": "sum"})


def _louvain_trial(graph: ig.Graph, seed: Optional[int]) -> Tuple[np.ndarray, float]:
    with igraph_random_state(seed):
        clustering = graph.community_multilevel(weights=_edge_weights(graph))
    return np.asarray(clustering.membership, dtype=np.int64), float(clustering.modularity)


def select_best_trial(trials: List[Tuple[np.ndarray, float]]) -> Tuple[int, np.ndarray, float]:
    """Pick the trial with the highest modularity, earliest trial on ties.

    Args:
        trials: ``(membership, modularity)`` pairs in submission order.
    Returns:
        ``(index, membership, modularity)`` of the winning trial.
    """
    if len(trials) == 0:
        raise EmptyInputError("No Louvain trials to choose from.")
    best = 0
    best_q = trials[0][1]
    for i, (_, q) in enumerate(trials[1:], start=1):
        if q > best_q:
            best = i
            best_q = q
    return best, trials[best][0], best_q


class ClusteringStrategy:
    """Base class: turn a graph and a :class:`ClusterConfig` into a :class:`Partition`."""
    name = None
    uses_graph = True

    def find_partition(self, graph, config: ClusterConfig) -> Partition:
        raise NotImplementedError


class LouvainClustering(ClusteringStrategy):
    """Greedy modularity maximization, best of ``louvain_iter`` restarts.

    With ``random_state = s`` trial ``i`` is seeded with ``s + i``. Trials are
    independent and can run on ``n_jobs`` workers; the winner is chosen after
    all trials finish, so the result does not depend on completion order.
    """
    name = "louvain"

    def trial_seeds(self, config: ClusterConfig) -> List[Optional[int]]:
        if config.random_state is None:
            return [None] * config.louvain_iter
        return [int(config.random_state) + i for i in range(config.louvain_iter)]

    def find_partition(self, graph: ig.Graph, config: ClusterConfig) -> Partition:
        graph = _prepare_graph(graph)
        vp = print if config.verbose else lambda *a, **k: None

        seeds = self.trial_seeds(config)
        if config.n_jobs == 1 or len(seeds) == 1:
            trials = []
            for i, seed in enumerate(seeds):
                vp(f"  Running louvain iteration {i + 1}...")
                trials.append(_louvain_trial(graph, seed))
        else:
            vp(f"  Running {len(seeds)} louvain iterations with {config.n_jobs} workers...")
            trials = Parallel(n_jobs=config.n_jobs)(delayed(_louvain_trial)(graph, seed) for seed in seeds)

        for i, (_, q) in enumerate(trials):
            vp(f"  -iteration {i + 1} modularity: {q:.4f}")

        best, membership, modularity = select_best_trial(trials)
        vp(f"  -best iteration: {best + 1}")
        return Partition(membership=membership, quality=modularity, modularity=modularity, method=self.name)


class LeidenClustering(ClusteringStrategy):
    """Leiden partitioning of the Constant Potts Model.

    Higher ``resolution_parameter`` values give more, smaller clusters.
    ``louvain_iter`` is passed on as the number of Leiden iterations.
    """
    name = "leiden"

    def find_partition(self, graph: ig.Graph, config: ClusterConfig) -> Partition:
        graph = _prepare_graph(graph)
        weights = _edge_weights(graph)
        partition = leidenalg.find_partition(
            graph,
            leidenalg.CPMVertexPartition,
            weights=weights,
            resolution_parameter=config.resolution_parameter,
            n_iterations=config.louvain_iter,
            seed=config.random_state,
        )
        membership = np.asarray(partition.membership, dtype=np.int64)
        return Partition(
            membership=membership,
            quality=float(partition.quality()),
            modularity=float(graph.modularity(membership.tolist(), weights=weights)),
            method=self.name,
        )


class TreeClustering(ClusteringStrategy):
    """Legacy clustering by projection onto a learned tree.

    The tree embedding is computed by an external collaborator:
    ``config.tree_projection(adata, num_clusters)`` must return one label per
    cell (for example the index of the closest tree vertex).
    """
    name = "ddrtree"
    uses_graph = False

    def find_partition(self, adata, config: ClusterConfig) -> Partition:
        if config.tree_projection is None:
            raise UnsupportedConfigurationError(
                "method='ddrtree' needs a tree_projection callable that assigns each cell to a tree vertex."
            )
        labels = np.asarray(config.tree_projection(adata, config.num_clusters))
        if labels.shape[0] != adata.n_obs:
            raise InvalidArgumentError(
                f"tree_projection returned {labels.shape[0]} labels for {adata.n_obs} cells"
            )
        codes, _ = pd.factorize(labels, sort=True)
        return Partition(membership=codes.astype(np.int64), quality=np.nan, modularity=np.nan, method=self.name)


STRATEGIES = {
    LeidenClustering.name: LeidenClustering,
    LouvainClustering.name: LouvainClustering,
    TreeClustering.name: TreeClustering,
}


def get_strategy(method: str) -> ClusteringStrategy:
    """Instantiate the strategy registered under ``method`` (case-insensitive)."""
    if not isinstance(method, str):
        raise InvalidArgumentError(f"Cluster method must be a string, got {method!r}. Choose from {list(STRATEGIES)}")
    key = method.lower()
    if key not in STRATEGIES:
        raise InvalidArgumentError(f"Cluster method {method} is not implemented. Choose from {list(STRATEGIES)}")
    return STRATEGIES[key]()


def find_communities(graph: ig.Graph, config: ClusterConfig) -> Partition:
    """Run the graph strategy named by ``config.method`` and report timing."""
    vp = print if config.verbose else lambda *a, **k: None
    strategy = get_strategy(config.method)
    if not strategy.uses_graph:
        raise UnsupportedConfigurationError(f"Method '{config.method}' does not operate on a neighbor graph.")

    vp(f"  Run {strategy.name} clustering on the graph...")
    t_start = time.time()
    partition = strategy.find_partition(graph, config)
    vp(f"  DONE ~ {time.time() - t_start:.2f} s")
    vp(f"  -Quality value: {partition.quality}")
    vp(f"  -Number of clusters: {partition.n_clusters}")
    return partition
