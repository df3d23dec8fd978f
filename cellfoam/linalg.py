"""
Linear algebra helpers for the simplex subspace of the foam.

Vectors are plain :py:class:`numpy.ndarray` objects; the helpers below provide the few matrix operations
the foam needs (determinants of small dense matrices and the partial volumes of a simplex), vectorized over
batches of sample points.
"""
from math import factorial

import numpy as np
from numpy.typing import NDArray


def determinant(matrices: NDArray[np.float64]) -> NDArray[np.float64] | float:
    """Determinant of one or a stack of small square matrices.

    Parameters
    ----------
    matrices: :py:class:`numpy.ndarray`
        Array of shape ``(..., n, n)``. ``n = 0`` is allowed; the determinant of an empty matrix is 1.

    Returns
    -------
    float or :py:class:`numpy.ndarray`
        The determinant(s), of shape ``(...)``.
    """
    matrices = np.asarray(matrices, dtype=np.float64)
    if matrices.shape[-1] == 0:
        return np.ones(matrices.shape[:-2]) if matrices.ndim > 2 else 1.0
    return np.linalg.det(matrices)


def simplex_volume(vertices: NDArray[np.float64]) -> float:
    """Cartesian volume of the ``n``-simplex spanned by ``n + 1`` vertices of shape ``(n + 1, n)``."""
    vertices = np.asarray(vertices, dtype=np.float64)
    n = vertices.shape[1]
    return abs(determinant(vertices[:-1] - vertices[-1])) / factorial(n)


def partial_volumes(vertices: NDArray[np.float64], points: NDArray[np.float64]) -> NDArray[np.float64]:
    """Volumes of the simplices obtained by replacing one vertex with a sample point.

    Parameters
    ----------
    vertices: :py:class:`numpy.ndarray`
        The simplex vertices, shape ``(n + 1, n)``.
    points: :py:class:`numpy.ndarray`
        Sample points, shape ``(m, n)``.

    Returns
    -------
    :py:class:`numpy.ndarray`
        Array of shape ``(m, n + 1)``; entry ``[s, j]`` is the volume of the simplex whose vertex ``j`` is
        replaced by point ``s``. For a point inside the simplex the row sums to the simplex volume.
    """
    vertices = np.asarray(vertices, dtype=np.float64)
    points = np.atleast_2d(points)
    n = vertices.shape[1]

    # relative positions of every vertex to every point: (m, n+1, n)
    relative = vertices[np.newaxis, :, :] - points[:, np.newaxis, :]
    volumes = np.empty((points.shape[0], n + 1))
    for j in range(n + 1):
        kept = [i for i in range(n + 1) if i != j]
        volumes[:, j] = np.abs(determinant(relative[:, kept, :]))

    return volumes / factorial(n)


def simplex_edges(n_dim: int) -> list[tuple[int, int]]:
    """Ordered list of the vertex pairs ``(j, i)``, ``j < i``, forming the edges of an ``n_dim``-simplex.

    The position of a pair in this list is its edge index relative to the first simplex edge.
    """
    return [(j, i) for j in range(n_dim + 1) for i in range(j + 1, n_dim + 1)]
