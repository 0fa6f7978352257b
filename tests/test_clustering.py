"""
Tests for pycellgraph.clustering module
"""

import itertools

import numpy as np
import pandas as pd
import pytest
from anndata import AnnData
from sklearn.metrics import adjusted_rand_score

import pycellgraph.clustering as clustering
from pycellgraph.community import Partition
from pycellgraph.graph import build_graph
from pycellgraph.exceptions import (
    EmptyInputError,
    InvalidArgumentError,
    KTooLargeError,
    NonPositiveKError,
    UnsupportedConfigurationError,
)


class TestClusterCellsLouvain:
    """End-to-end Louvain clustering on AnnData"""

    def test_recovers_blobs(self, blobs_adata):
        clustering.cluster_cells(blobs_adata, k=15, method="louvain", random_state=0)

        labels = blobs_adata.obs["Cluster"]
        assert isinstance(labels.dtype, pd.CategoricalDtype)
        assert labels.nunique() == 4
        assert adjusted_rand_score(blobs_adata.obs["blob"], labels) >= 0.9

    def test_every_cell_labeled_once(self, blobs_adata):
        clustering.cluster_cells(blobs_adata, k=15, method="louvain", louvain_iter=3, random_state=0)
        labels = blobs_adata.obs["Cluster"]
        assert len(labels) == blobs_adata.n_obs
        assert labels.notna().all()
        assert min(labels.astype(int)) == 1

    def test_stores_run(self, blobs_adata):
        clustering.cluster_cells(blobs_adata, k=15, method="louvain", random_state=0)

        assert "louvain" in blobs_adata.uns
        record = blobs_adata.uns["louvain"]
        assert record["method"] == "louvain"
        assert record["params"]["k"] == 15
        assert len(record["membership"]) == blobs_adata.n_obs
        assert blobs_adata.obsp["louvain_connectivities"].shape == (200, 200)

        result = clustering.get_cluster_result(blobs_adata, "louvain")
        assert result.graph.vcount() == 200
        assert result.graph.vs["name"][0] == "cell_0"
        assert result.partition.modularity == pytest.approx(record["modularity"])
        assert result.graph.modularity(result.partition.membership.tolist(), weights="weight") == pytest.approx(
            result.partition.modularity
        )

    def test_weighted(self, blobs_adata):
        clustering.cluster_cells(blobs_adata, k=15, method="louvain", weight=True, random_state=0)
        assert adjusted_rand_score(blobs_adata.obs["blob"], blobs_adata.obs["Cluster"]) >= 0.9
        assert blobs_adata.uns["louvain"]["params"]["weight"] is True

    def test_verbose(self, blobs_adata, capsys):
        clustering.cluster_cells(blobs_adata, k=15, method="louvain", random_state=0, verbose=True)
        out = capsys.readouterr().out
        assert "Finding nearest neighbors" in out
        assert "-k is set to 15" in out
        assert "Number of clusters: 4" in out


class TestClusterCellsLeiden:
    """End-to-end Leiden clustering on AnnData"""

    def test_default_method_is_leiden(self, blobs_adata):
        clustering.cluster_cells(blobs_adata, k=15, weight=True, random_state=0)

        assert "leiden" in blobs_adata.uns
        assert "leiden_connectivities" in blobs_adata.obsp
        assert blobs_adata.obs["Cluster"].notna().all()
        assert blobs_adata.uns["leiden"]["params"]["resolution_parameter"] == pytest.approx(0.1)

    def test_blobs_never_merged(self, blobs_adata):
        # the blobs share no graph edges, so no cluster can span two of them
        clustering.cluster_cells(blobs_adata, k=15, method="leiden", resolution_parameter=0.05, random_state=0)
        crosstab = pd.crosstab(blobs_adata.obs["Cluster"], blobs_adata.obs["blob"])
        assert ((crosstab > 0).sum(axis=1) == 1).all()


class TestClusterCellsArguments:
    """Argument validation happens before any work"""

    def test_k_too_small(self, small_adata):
        with pytest.raises(NonPositiveKError):
            clustering.cluster_cells(small_adata, k=0, method="louvain")
        assert "Cluster" not in small_adata.obs
        assert "louvain" not in small_adata.uns

    def test_k_too_large(self, small_adata):
        with pytest.raises(KTooLargeError):
            clustering.cluster_cells(small_adata, k=19, method="louvain")
        assert "Cluster" not in small_adata.obs

    def test_k_boundary(self, small_adata):
        clustering.cluster_cells(small_adata, k=18, method="louvain", random_state=0)
        assert small_adata.obs["Cluster"].notna().all()

    def test_unknown_method(self, small_adata):
        with pytest.raises(InvalidArgumentError, match="not implemented"):
            clustering.cluster_cells(small_adata, k=5, method="densityPeak")

    def test_num_clusters_with_graph_method(self, small_adata):
        with pytest.raises(UnsupportedConfigurationError):
            clustering.cluster_cells(small_adata, k=5, method="louvain", num_clusters=3)

    def test_missing_rep(self, small_adata):
        with pytest.raises(InvalidArgumentError):
            clustering.cluster_cells(small_adata, k=5, method="louvain", use_rep="X_umap")

    def test_empty(self):
        adata = AnnData(X=np.zeros((0, 3)))
        with pytest.raises(EmptyInputError):
            clustering.cluster_cells(adata, k=1, method="louvain")


class TestClusterCellsBehaviour:
    """Copying, replacement and representation handling"""

    def test_copy(self, blobs_adata):
        out = clustering.cluster_cells(blobs_adata, k=15, method="louvain", random_state=0, copy=True)
        assert out is not blobs_adata
        assert "Cluster" in out.obs
        assert "Cluster" not in blobs_adata.obs

    def test_inplace_returns_none(self, blobs_adata):
        assert clustering.cluster_cells(blobs_adata, k=15, method="louvain", random_state=0) is None

    def test_rerun_replaces(self, blobs_adata):
        clustering.cluster_cells(blobs_adata, k=15, method="louvain", random_state=0)
        clustering.cluster_cells(blobs_adata, k=5, method="louvain", random_state=0)
        assert blobs_adata.uns["louvain"]["params"]["k"] == 5

    def test_key_added(self, blobs_adata):
        clustering.cluster_cells(blobs_adata, k=15, method="louvain", random_state=0, key_added="louvain_k15")
        assert "louvain_k15" in blobs_adata.obs
        assert "Cluster" not in blobs_adata.obs

    def test_use_rep_x(self, blobs_adata):
        del blobs_adata.obsm["X_pca"]
        clustering.cluster_cells(blobs_adata, k=15, method="louvain", random_state=0, use_rep="X")
        assert blobs_adata.obs["Cluster"].nunique() == 4

    def test_pca_computed_when_missing(self, blobs_adata):
        del blobs_adata.obsm["X_pca"]
        clustering.cluster_cells(blobs_adata, k=15, method="louvain", random_state=0)
        assert "X_pca" in blobs_adata.obsm
        assert adjusted_rand_score(blobs_adata.obs["blob"], blobs_adata.obs["Cluster"]) >= 0.9


class TestTreeMethod:
    """Legacy tree method delegating to a projection callable"""

    def test_projection(self, small_adata):
        def projection(adata, num_clusters):
            return np.arange(adata.n_obs) % num_clusters

        clustering.cluster_cells(small_adata, method="ddrtree", num_clusters=3, tree_projection=projection)
        assert small_adata.obs["Cluster"].nunique() == 3
        assert "ddrtree" in small_adata.uns
        assert "ddrtree_connectivities" not in small_adata.obsp

    def test_missing_projection(self, small_adata):
        with pytest.raises(UnsupportedConfigurationError):
            clustering.cluster_cells(small_adata, method="ddrtree", num_clusters=3)

    def test_large_n_warning(self, small_adata, monkeypatch):
        monkeypatch.setattr(clustering, "LARGE_N_CELLS", 10)
        with pytest.warns(UserWarning, match="may crash"):
            clustering.cluster_cells(
                small_adata, method="ddrtree", num_clusters=2,
                tree_projection=lambda adata, n: np.arange(adata.n_obs) % n,
            )


class TestApplyClusters:
    """Test writing partitions back to AnnData"""

    def test_apply(self, small_adata):
        p = Partition(membership=np.arange(20) % 2, quality=0.1, modularity=0.1, method="leiden")
        out = clustering.apply_clusters(small_adata, p)

        assert out is small_adata
        assert list(small_adata.obs["Cluster"].cat.categories) == [1, 2]
        assert small_adata.uns["leiden"]["quality"] == pytest.approx(0.1)

    def test_length_mismatch(self, small_adata):
        p = Partition(membership=np.zeros(5, dtype=int), quality=0.0, modularity=0.0, method="leiden")
        with pytest.raises(InvalidArgumentError):
            clustering.apply_clusters(small_adata, p)

    def test_replaces_graph(self, blobs_adata):
        clustering.cluster_cells(blobs_adata, k=15, method="louvain", random_state=0)
        p = Partition(membership=np.zeros(200, dtype=int), quality=0.0, modularity=0.0, method="louvain")
        clustering.apply_clusters(blobs_adata, p)

        assert "louvain_connectivities" not in blobs_adata.obsp
        assert clustering.get_cluster_result(blobs_adata, "louvain").graph is None
        assert blobs_adata.obs["Cluster"].nunique() == 1

    def test_stored_graph_merges_parallel_edges(self, small_adata):
        edges = pd.DataFrame({"source": [0, 1, 2], "target": [1, 0, 3], "weight": [1.0, 2.0, 0.5]})
        g = build_graph(edges, n_vertices=20)
        p = Partition(membership=np.arange(20), quality=0.0, modularity=0.0, method="louvain")
        clustering.apply_clusters(small_adata, p, graph=g)

        stored = clustering.get_cluster_result(small_adata, "louvain").graph
        assert g.ecount() == 3
        assert stored.ecount() == 2
        assert stored.vcount() == 20
        assert stored.es[stored.get_eid(0, 1)]["weight"] == pytest.approx(3.0)
        assert stored.es[stored.get_eid(2, 3)]["weight"] == pytest.approx(0.5)

    def test_get_missing(self, small_adata):
        with pytest.raises(KeyError):
            clustering.get_cluster_result(small_adata, "louvain")


class TestClusterGenes:
    """Test clustering of gene trends"""

    @pytest.fixture
    def trends(self):
        rng = np.random.default_rng(0)
        t = np.linspace(0, 1, 40)
        up = [t + rng.normal(scale=0.05, size=t.size) for _ in range(10)]
        down = [1 - t + rng.normal(scale=0.05, size=t.size) for _ in range(10)]
        genes = [f"up_{i}" for i in range(10)] + [f"down_{i}" for i in range(10)]
        return pd.DataFrame(np.vstack(up + down), index=genes)

    def test_two_trends(self, trends):
        res = clustering.cluster_genes(trends, k=2)
        labels = res["clustering"]

        assert labels.nunique() == 2
        assert labels[[f"up_{i}" for i in range(10)]].nunique() == 1
        assert labels[[f"down_{i}" for i in range(10)]].nunique() == 1
        assert set(res["medoids"].index) == set(labels.unique())
        assert res["medoids"].map(labels).tolist() == list(res["medoids"].index)


    @staticmethod
    def _cost(dist, medoids):
        return dist[:, list(medoids)].min(axis=1).sum()

    def test_matches_exhaustive_search(self):
        rng = np.random.default_rng(3)
        t = np.linspace(0, 1, 8)
        shapes = [t, 1 - t, np.sin(np.pi * t)]
        expr = pd.DataFrame(
            [shape + rng.normal(scale=0.1, size=t.size) for shape in shapes for _ in range(3)],
            index=[f"g{i}" for i in range(9)],
        )
        res = clustering.cluster_genes(expr, k=3)

        dist = clustering.correlation_distance(res["exprs"].to_numpy())
        best = min(itertools.combinations(range(9), 3), key=lambda m: self._cost(dist, m))
        expected = np.argmin(dist[:, list(best)], axis=1)

        assert res["loss"] == pytest.approx(self._cost(dist, best))
        assert set(res["medoids"]) == {expr.index[i] for i in best}
        labels = res["clustering"].to_numpy()
        for c in np.unique(expected):
            assert len(set(labels[expected == c])) == 1
        assert len(np.unique(labels)) == 3

    def test_medoids_are_swap_optimal(self):
        expr = pd.DataFrame(np.random.default_rng(1).normal(size=(10, 8)))
        res = clustering.cluster_genes(expr, k=3)

        dist = clustering.correlation_distance(res["exprs"].to_numpy())
        medoids = [res["exprs"].index.get_loc(g) for g in res["medoids"]]
        loss = self._cost(dist, medoids)
        assert res["loss"] == pytest.approx(loss)
        # every gene sits with its closest medoid
        nearest = np.asarray(medoids)[np.argmin(dist[:, medoids], axis=1)]
        medoid_pos = {label: res["exprs"].index.get_loc(g) for label, g in res["medoids"].items()}
        assigned = np.array([medoid_pos[label] for label in res["clustering"]])
        np.testing.assert_array_equal(assigned, nearest)
        for i in range(len(medoids)):
            for j in range(10):
                if j in medoids:
                    continue
                swapped = medoids[:i] + [j] + medoids[i + 1:]
                assert self._cost(dist, swapped) >= loss - 1e-9
    def test_drops_missing_and_constant(self, trends):
        trends.loc["missing"] = np.nan
        trends.loc["missing", 0] = 1.0
        trends.loc["flat"] = 1.0
        res = clustering.cluster_genes(trends, k=2)

        assert "missing" not in res["exprs"].index
        assert "flat" not in res["exprs"].index
        assert len(res["clustering"]) == 20

    def test_bad_k(self, trends):
        with pytest.raises(InvalidArgumentError):
            clustering.cluster_genes(trends, k=0)
        with pytest.raises(InvalidArgumentError):
            clustering.cluster_genes(trends, k=21)

    def test_nothing_left(self):
        with pytest.raises(EmptyInputError):
            clustering.cluster_genes(pd.DataFrame(np.ones((3, 4))), k=1)

    def test_correlation_distance(self):
        expr = np.array([[1.0, 2.0, 3.0], [2.0, 4.0, 6.0], [3.0, 2.0, 1.0]])
        dist = clustering.correlation_distance(expr)
        assert dist[0, 1] == pytest.approx(0.0)
        assert dist[0, 2] == pytest.approx(1.0)
        np.testing.assert_allclose(np.diag(dist), 0)
