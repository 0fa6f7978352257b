##########################################################################
#
# Functions for pulling coordinate matrices out of anndata objects
#
##########################################################################

##IMPORTS
from typing import Optional, Union

# Data manipulation and computation
import numpy as np
import pandas as pd
from scipy.sparse import issparse

# Single-cell analysis
import scanpy as sc
from anndata import AnnData

from .exceptions import EmptyInputError, InvalidArgumentError


def as_coordinate_matrix(data: Union[np.ndarray, pd.DataFrame]) -> np.ndarray:
    """Coerce ``data`` into a dense 2-D float array of point coordinates.

    Args:
        data: ndarray, sparse matrix or DataFrame with one row per point.
    Returns:
        Dense ``float64`` array of shape ``(n_points, n_dims)``.
    """
    if isinstance(data, pd.DataFrame):
        data = data.to_numpy()
    if issparse(data):
        data = data.toarray()

    data = np.asarray(data)
    if data.ndim != 2:
        raise InvalidArgumentError("Wrong input data, should be a data frame or matrix!")
    if data.shape[0] == 0:
        raise EmptyInputError("No points to cluster: the input matrix has zero rows.")
    if not (np.issubdtype(data.dtype, np.number) or data.dtype == bool):
        raise InvalidArgumentError(f"Wrong input data, expected numeric values but got dtype {data.dtype}")

    data = data.astype(np.float64, copy=False)
    if not np.all(np.isfinite(data)):
        raise InvalidArgumentError("Input data contains NaN or infinite values.")
    return data


def get_embedding(
    adata: AnnData,
    use_rep: str = "X_pca",
    num_dim: Optional[int] = 50,
    verbose: bool = False,
) -> np.ndarray:
    """Return the reduced-dimension coordinates used for clustering.

    ``use_rep`` names a key of ``adata.obsm``; ``"X"`` uses the expression
    matrix itself. When ``use_rep`` is ``"X_pca"`` and the key is missing, PCA is
    computed with scanpy and stored in ``adata.obsm['X_pca']``.

    Args:
        adata: AnnData object with cells as observations.
        use_rep: obsm key holding the embedding.
        num_dim: Number of principal components to compute (and keep).
        verbose: Print progress messages.
    Returns:
        Dense array of shape ``(adata.n_obs, n_dims)``.
    """
    vp = print if verbose else lambda *a, **k: None

    if adata.n_obs == 0:
        raise EmptyInputError("No cells to cluster: adata has zero observations.")

    if use_rep == "X":
        return as_coordinate_matrix(adata.X)

    if use_rep not in adata.obsm:
        if use_rep != "X_pca":
            raise InvalidArgumentError(f"Could not find '{use_rep}' in adata.obsm. Available keys: {list(adata.obsm.keys())}")
        n_comps = min(num_dim or 50, min(adata.shape) - 1)
        if n_comps < 1:
            raise InvalidArgumentError(f"Cannot compute PCA on data of shape {adata.shape}")
        vp(f"'X_pca' not found, running PCA with {n_comps} components...")
        sc.pp.pca(adata, n_comps=n_comps)

    coords = as_coordinate_matrix(adata.obsm[use_rep])
    if use_rep == "X_pca" and num_dim is not None:
        coords = coords[:, :num_dim]
    return coords
