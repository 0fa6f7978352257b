"""
pycellgraph - Graph-based clustering of single-cell data

This package provides tools for:
- k-nearest-neighbor search on reduced-dimension embeddings
- Shared-neighbor (Jaccard) similarity graphs
- Louvain and Leiden community detection on those graphs
- Writing cluster assignments back onto AnnData objects
- Clustering genes by their expression trends
"""

__version__ = "0.1.0"

# Version checking for dependencies
import sys

if sys.version_info < (3, 9):
    raise ImportError("pycellgraph requires Python 3.9 or higher")

# Import main modules
from . import clustering, community, exceptions, graph, neighbors, utils

from .clustering import (
    ClusterResult,
    apply_clusters,
    cluster_cells,
    cluster_genes,
    get_cluster_result,
    set_cluster_result,
)
from .community import (
    ClusterConfig,
    LeidenClustering,
    LouvainClustering,
    Partition,
    TreeClustering,
    find_communities,
    get_strategy,
)
from .exceptions import (
    EmptyInputError,
    InvalidArgumentError,
    KTooLargeError,
    NonPositiveKError,
    UnsupportedConfigurationError,
)
from .graph import build_graph, build_similarity_edges, jaccard_coefficient
from .neighbors import find_neighbors

__all__ = [
    # Modules
    "clustering",
    "community",
    "exceptions",
    "graph",
    "neighbors",
    "utils",
    # Key functions
    "cluster_cells",
    "apply_clusters",
    "cluster_genes",
    "get_cluster_result",
    "set_cluster_result",
    "find_neighbors",
    "jaccard_coefficient",
    "build_similarity_edges",
    "build_graph",
    "find_communities",
    "get_strategy",
    # Classes
    "ClusterConfig",
    "ClusterResult",
    "Partition",
    "LouvainClustering",
    "LeidenClustering",
    "TreeClustering",
    # Errors
    "InvalidArgumentError",
    "NonPositiveKError",
    "KTooLargeError",
    "EmptyInputError",
    "UnsupportedConfigurationError",
]
