##########################################################################
#
# k-nearest-neighbor search over an embedding
#
##########################################################################
import numbers

import numpy as np
from sklearn.neighbors import NearestNeighbors

from .exceptions import KTooLargeError, NonPositiveKError
from .utils import as_coordinate_matrix


def validate_k(k: int, n_points: int) -> int:
    """Check that ``k`` is usable for a dataset of ``n_points`` points.

    Raises:
        NonPositiveKError: ``k`` is not an integer or is smaller than 1.
        KTooLargeError: ``k`` is larger than ``n_points - 2``.
    """
    if isinstance(k, bool) or not isinstance(k, numbers.Integral) or k < 1:
        raise NonPositiveKError("k must be a positive integer!")
    if k > n_points - 2:
        raise KTooLargeError(
            f"k must be smaller than the total number of points! (k={k}, n_points={n_points})"
        )
    return int(k)


def find_neighbors(coordinates, k: int, n_jobs: int = 1) -> np.ndarray:
    """Find the ``k`` nearest neighbors of every point.

    Distances are Euclidean. A point is never reported as its own neighbor;
    each row is ordered by increasing distance.

    Args:
        coordinates: Matrix of shape ``(n_points, n_dims)``.
        k: Number of neighbors per point, ``1 <= k <= n_points - 2``.
        n_jobs: Number of parallel jobs for the neighbor queries.
    Returns:
        Integer array of shape ``(n_points, k)`` with neighbor row indices.
    """
    coords = as_coordinate_matrix(coordinates)
    k = validate_k(k, coords.shape[0])

    nn = NearestNeighbors(n_neighbors=k, metric="euclidean", n_jobs=n_jobs)
    nn.fit(coords)
    # querying without X excludes each indexed point from its own neighbors
    neighbors = nn.kneighbors(n_neighbors=k, return_distance=False)
    return neighbors.astype(np.int64, copy=False)
