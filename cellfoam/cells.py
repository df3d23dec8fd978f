"""
Cell storage of the foam.

The cells of a foam form a strict binary tree which is stored in a flat, index-addressed arena
(:py:class:`CellArray`): every per-cell quantity is a preallocated :py:class:`numpy.ndarray` sized to the
cell budget, and cells refer to their parent and daughters by integer index (``NO_CELL`` when absent).
:py:class:`FoamCell` is a light view on a single entry of the arena, giving the familiar object interface
(``cell.parent``, ``cell.get_region()``, ...) without ever holding references between cells.

The points of the simplex subspace are kept in a shared :py:class:`VertexPool` and referenced by index.

Notes
-----
Each cell lives in the product of an ``n_dim``-simplex and a ``k_dim``-hyper-rectangle. Two memory saving
modes rebuild the geometry of a cell from its ancestors instead of storing it:

- **mega-cell mode**: the hyper-rectangle of a cell is rebuilt by applying the splits of its hypercube-type
  ancestors to the unit cube (:py:meth:`FoamCell.get_region`).
- **vertex-less mode**: only the root simplices keep their vertices; the simplex coordinates of a point are
  rebuilt from its barycentric parameters by undoing every simplex-type split up to the root
  (:py:meth:`FoamCell.map_simplex_point`).

Edge indices follow a fixed layout: ``0 .. k_dim - 1`` are the hypercube axes, ``k_dim ..`` are the simplex
edges in the order of :py:func:`~cellfoam.linalg.simplex_edges`.
"""
from math import factorial
from typing import Iterator

import numpy as np
from numpy.typing import ArrayLike, NDArray

from cellfoam.linalg import simplex_edges
from cellfoam.utilities.exceptions import FoamGeometryError, FoamIndexError

NO_CELL = -1
"""int: Sentinel index meaning "no cell" (absent parent or daughter)."""


class VertexPool:
    """Append-only pool of points of the simplex subspace.

    Parameters
    ----------
    capacity: int
        The maximum number of vertices.
    n_dim: int
        The dimension of the simplex subspace.
    """

    def __init__(self, capacity: int, n_dim: int):
        self.n_dim = n_dim
        self.capacity = capacity
        self.coordinates = np.zeros((capacity, n_dim))
        self.last = -1

    def __len__(self):
        return self.last + 1

    def __repr__(self):
        return f"<VertexPool {len(self)}/{self.capacity} ndim={self.n_dim}>"

    def __getitem__(self, index) -> NDArray[np.float64]:
        index = np.asarray(index)
        if np.any(index < 0) or np.any(index > self.last):
            raise FoamIndexError(f"Vertex index {index} out of range [0, {self.last}].")
        return self.coordinates[index]

    def add(self, point: ArrayLike) -> int:
        """Append a vertex and return its index."""
        if self.last + 1 >= self.capacity:
            raise FoamIndexError(f"Too short list of vertices (capacity {self.capacity}).")
        self.last += 1
        self.coordinates[self.last] = point
        return self.last


class CellArray:
    """Flat arena holding every cell of a foam.

    Parameters
    ----------
    capacity: int
        The cell budget; storage for this many cells is allocated up front.
    n_dim: int
        Dimension of the simplex subspace.
    k_dim: int
        Dimension of the hypercube subspace.
    vertices: :py:class:`VertexPool`, optional
        The shared vertex pool (required when ``n_dim > 0``).
    mega_cell: bool
        If ``True``, hyper-rectangles are not stored.
    store_vertices: bool
        If ``True``, every cell stores the indices of its simplex vertices; otherwise only the roots do.

    Attributes
    ----------
    status: :py:class:`numpy.ndarray`
        ``True`` for active cells (leaves).
    parent: :py:class:`numpy.ndarray`
        Parent index of every cell.
    daughters: :py:class:`numpy.ndarray`
        Daughter indices of every cell, shape ``(capacity, 2)``.
    best: :py:class:`numpy.ndarray`
        Best split edge of every cell (``-1`` if none).
    xdiv: :py:class:`numpy.ndarray`
        Split fraction of every cell.
    volume, integral, drive, primary: :py:class:`numpy.ndarray`
        Cartesian volume, true integral, driver integral and primary integral estimates.
    """

    def __init__(
        self,
        capacity: int,
        n_dim: int,
        k_dim: int,
        vertices: VertexPool | None = None,
        mega_cell: bool = True,
        store_vertices: bool = False,
    ):
        if n_dim > 0 and vertices is None:
            raise FoamGeometryError("A cell array with a simplex subspace needs a vertex pool.")

        self.capacity, self.n_dim, self.k_dim = capacity, n_dim, k_dim
        self.vertices = vertices
        self.mega_cell, self.store_vertices = mega_cell, store_vertices
        self.edges = simplex_edges(n_dim) if n_dim > 0 else []

        self.status = np.zeros(capacity, dtype=bool)
        self.parent = np.full(capacity, NO_CELL, dtype=np.int64)
        self.daughters = np.full((capacity, 2), NO_CELL, dtype=np.int64)
        self.best = np.full(capacity, -1, dtype=np.int64)
        self.xdiv = np.full(capacity, 0.5)
        self.volume = np.zeros(capacity)
        self.integral = np.zeros(capacity)
        self.drive = np.zeros(capacity)
        self.primary = np.zeros(capacity)

        self.vertex_indices = np.full((capacity, n_dim + 1), NO_CELL, dtype=np.int64) if n_dim > 0 else None

        if k_dim > 0 and not mega_cell:
            self.position = np.zeros((capacity, k_dim))
            self.size = np.zeros((capacity, k_dim))
        else:
            self.position = self.size = None

        self.last = -1

    def __len__(self):
        return self.last + 1

    def __repr__(self):
        return f"<CellArray {len(self)}/{self.capacity} n_dim={self.n_dim} k_dim={self.k_dim}>"

    def __getitem__(self, index: int) -> "FoamCell":
        if not 0 <= index <= self.last:
            raise FoamIndexError(f"Cell index {index} out of range [0, {self.last}].")
        return FoamCell(self, int(index))

    def __iter__(self) -> Iterator["FoamCell"]:
        for index in range(len(self)):
            yield FoamCell(self, index)

    @property
    def full(self) -> bool:
        return self.last + 1 >= self.capacity

    def fill(
        self,
        active: bool,
        parent: int = NO_CELL,
        vertices: ArrayLike | None = None,
        position: ArrayLike | None = None,
        size: ArrayLike | None = None,
    ) -> int:
        """Append a new cell to the arena.

        The new cell has no daughters, no best edge (``-1``) and a split fraction of one half. Its integral and
        driver integral are seeded with half of the parent's values (zero for a root).

        Parameters
        ----------
        active: bool
            The status of the new cell.
        parent: int
            Index of the parent cell, ``NO_CELL`` for a root.
        vertices: array-like of int, optional
            Indices of the ``n_dim + 1`` simplex vertices.
        position, size: array-like, optional
            The hyper-rectangle of the cell; ignored in mega-cell mode.

        Returns
        -------
        int
            The index of the new cell.

        Raises
        ------
        FoamIndexError
            If the arena is full.
        """
        if self.full:
            raise FoamIndexError(f"Too many cells (capacity {self.capacity}).")

        self.last += 1
        index = self.last

        self.status[index] = active
        self.parent[index] = parent
        self.daughters[index] = NO_CELL
        self.best[index] = -1
        self.xdiv[index] = 0.5
        self.primary[index] = 0.0

        if parent != NO_CELL:
            self.integral[index] = 0.5 * self.integral[parent]
            self.drive[index] = 0.5 * self.drive[parent]
        else:
            self.integral[index] = 0.0
            self.drive[index] = 0.0

        if vertices is not None and self.vertex_indices is not None:
            self.vertex_indices[index] = vertices
        if self.position is not None:
            if position is not None:
                self.position[index] = position
            if size is not None:
                self.size[index] = size

        return index

    def active_indices(self) -> NDArray[np.int64]:
        """Indices of every active cell, in increasing order."""
        return np.flatnonzero(self.status[: len(self)])

    def ancestors(self, index: int) -> Iterator[int]:
        """Every ancestor of a cell, from its parent up to the top of the tree (root container included)."""
        index = self.parent[index]
        while index != NO_CELL:
            yield int(index)
            index = self.parent[index]

    def lineage(self, index: int) -> Iterator[tuple[int, int]]:
        """Walk up the geometric lineage of a cell.

        Yields ``(slot, parent)`` for every step of the walk, where ``slot`` is ``0`` or ``1`` depending on which
        daughter of ``parent`` the previous cell is. The walk stops at a root, i.e. at a cell without a parent
        or whose parent is a root container (a cell without daughters).
        """
        child = index
        while True:
            parent = self.parent[child]
            if parent == NO_CELL or self.daughters[parent, 0] == NO_CELL:
                return

            if self.daughters[parent, 0] == child:
                slot = 0
            elif self.daughters[parent, 1] == child:
                slot = 1
            else:
                raise FoamGeometryError(f"Inconsistent lineage: cell {child} is not a daughter of cell {parent}.")

            yield slot, int(parent)
            child = parent


class FoamCell:
    """View on a single cell of a :py:class:`CellArray`.

    Views are cheap and hold no state of their own: two views on the same index are interchangeable.
    """

    __slots__ = ("_array", "index")

    def __init__(self, array: CellArray, index: int):
        self._array = array
        self.index = index

    def __repr__(self):
        return f"<FoamCell {self.index} {'active' if self.active else 'inactive'}>"

    def __eq__(self, other):
        return isinstance(other, FoamCell) and other._array is self._array and other.index == self.index

    def __hash__(self):
        return hash((id(self._array), self.index))

    # -- tree links -- #
    @property
    def active(self) -> bool:
        return bool(self._array.status[self.index])

    @active.setter
    def active(self, value: bool):
        self._array.status[self.index] = value

    @property
    def parent_index(self) -> int:
        return int(self._array.parent[self.index])

    @property
    def parent(self) -> "FoamCell | None":
        p = self._array.parent[self.index]
        return None if p == NO_CELL else FoamCell(self._array, int(p))

    @property
    def daughter_indices(self) -> tuple[int, int]:
        d0, d1 = self._array.daughters[self.index]
        return int(d0), int(d1)

    @property
    def daughter0(self) -> "FoamCell | None":
        d = self._array.daughters[self.index, 0]
        return None if d == NO_CELL else FoamCell(self._array, int(d))

    @property
    def daughter1(self) -> "FoamCell | None":
        d = self._array.daughters[self.index, 1]
        return None if d == NO_CELL else FoamCell(self._array, int(d))

    @property
    def daughters(self) -> tuple["FoamCell | None", "FoamCell | None"]:
        return self.daughter0, self.daughter1

    def set_daughters(self, d0: int, d1: int):
        self._array.daughters[self.index] = (d0, d1)

    # -- cached statistics -- #
    @property
    def best(self) -> int:
        return int(self._array.best[self.index])

    @best.setter
    def best(self, value: int):
        self._array.best[self.index] = value

    @property
    def xdiv(self) -> float:
        return float(self._array.xdiv[self.index])

    @xdiv.setter
    def xdiv(self, value: float):
        self._array.xdiv[self.index] = value

    @property
    def volume(self) -> float:
        return float(self._array.volume[self.index])

    @property
    def integral(self) -> float:
        return float(self._array.integral[self.index])

    @integral.setter
    def integral(self, value: float):
        self._array.integral[self.index] = value

    @property
    def drive(self) -> float:
        return float(self._array.drive[self.index])

    @drive.setter
    def drive(self, value: float):
        self._array.drive[self.index] = value

    @property
    def primary(self) -> float:
        return float(self._array.primary[self.index])

    @primary.setter
    def primary(self, value: float):
        self._array.primary[self.index] = value

    # -- geometry -- #
    def get_region(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """The hyper-rectangle of the cell.

        Returns
        -------
        position: :py:class:`numpy.ndarray`
            The lower corner, shape ``(k_dim,)``.
        size: :py:class:`numpy.ndarray`
            The edge lengths, shape ``(k_dim,)``.
        """
        array = self._array
        if array.k_dim == 0:
            return np.zeros(0), np.zeros(0)
        if array.position is not None:
            return array.position[self.index].copy(), array.size[self.index].copy()

        position, size = np.zeros(array.k_dim), np.ones(array.k_dim)
        for slot, parent in array.lineage(self.index):
            axis = array.best[parent]
            if 0 <= axis < array.k_dim:
                x = array.xdiv[parent]
                if slot == 0:
                    size[axis] *= x
                    position[axis] *= x
                else:
                    size[axis] *= 1.0 - x
                    position[axis] = position[axis] * (1.0 - x) + x
        return position, size

    def get_size(self) -> NDArray[np.float64]:
        """The edge lengths of the hyper-rectangle of the cell."""
        array = self._array
        if array.k_dim == 0:
            return np.zeros(0)
        if array.size is not None:
            return array.size[self.index].copy()

        size = np.ones(array.k_dim)
        for slot, parent in array.lineage(self.index):
            axis = array.best[parent]
            if 0 <= axis < array.k_dim:
                x = array.xdiv[parent]
                size[axis] *= x if slot == 0 else 1.0 - x
        return size

    def calc_volume(self) -> float:
        """Compute, cache and return the Cartesian volume of the cell.

        The simplex part is the product of the split ratios of every simplex-type ancestor split divided by
        ``n_dim!`` (each root simplex has volume ``1 / n_dim!``); the hypercube part is the product of the sizes.
        """
        array = self._array
        volume = 1.0
        if array.n_dim > 0:
            for slot, parent in array.lineage(self.index):
                if array.best[parent] >= array.k_dim:
                    x = array.xdiv[parent]
                    volume *= x if slot == 0 else 1.0 - x
            volume /= factorial(array.n_dim)
        if array.k_dim > 0:
            volume *= float(np.prod(self.get_size()))

        array.volume[self.index] = volume
        return volume

    @property
    def vertex_indices(self) -> NDArray[np.int64]:
        """Indices (in the vertex pool) of the simplex vertices stored on this cell."""
        if self._array.vertex_indices is None:
            return np.zeros(0, dtype=np.int64)
        return self._array.vertex_indices[self.index].copy()

    def vertex(self, i: int) -> NDArray[np.float64]:
        """Coordinates of simplex vertex ``i`` of the cell (``0 <= i <= n_dim``)."""
        array = self._array
        if not 0 <= i <= array.n_dim or array.n_dim == 0:
            raise FoamIndexError(f"Vertex {i} out of range for a simplex of dimension {array.n_dim}.")

        if array.store_vertices or self._is_root:
            return array.vertices[array.vertex_indices[self.index, i]].copy()

        return self.map_simplex_point(np.zeros(array.n_dim + 1), i)[0]

    def vertex_table(self) -> NDArray[np.float64]:
        """Coordinates of every simplex vertex of the cell, shape ``(n_dim + 1, n_dim)``."""
        array = self._array
        if array.store_vertices or self._is_root:
            return array.vertices[array.vertex_indices[self.index]].copy()
        return np.vstack([self.vertex(i) for i in range(array.n_dim + 1)])

    @property
    def _is_root(self) -> bool:
        return next(self._array.lineage(self.index), None) is None

    def map_simplex_point(self, lam: ArrayLike, kvert: int) -> NDArray[np.float64]:
        """Translate internal barycentric parameters into absolute simplex coordinates.

        Parameters
        ----------
        lam: array-like
            Barycentric parameters relative to the vertices of this cell, shape ``(n_dim + 1,)`` or
            ``(m, n_dim + 1)``. Entry ``kvert`` is ignored and replaced by one minus the sum of the others.
        kvert: int
            The vertex whose parameter is implicit.

        Returns
        -------
        :py:class:`numpy.ndarray`
            The absolute coordinates, shape ``(m, n_dim)``.

        Notes
        -----
        The parameters are carried up the lineage of the cell: at every simplex-type split the parameters of
        the daughter are re-expressed relative to the parent's vertices, until the root simplex (whose vertices
        are stored) is reached. The implicit vertex follows the vertex shared by daughter and parent.
        """
        array = self._array
        n = array.n_dim
        if n < 2:
            raise FoamGeometryError("Simplex coordinates can only be rebuilt for a simplex dimension of at least 2.")

        lam = np.array(lam, dtype=np.float64, ndmin=2)
        lam[:, kvert] = 0.0
        total = lam.sum(axis=1)

        root = self.index
        for slot, parent in array.lineage(self.index):
            root = parent
            edge = array.best[parent] - array.k_dim
            if edge < 0:
                continue

            i_div, j_div = array.edges[edge]
            x = array.xdiv[parent]
            previous = kvert
            kvert = j_div if slot == 0 else i_div
            if kvert != previous:
                lam[:, previous] = 1.0 - total
                total = 1.0 - lam[:, kvert]
                lam[:, kvert] = 0.0

            if slot == 0:
                total = total + (x - 1.0) * lam[:, i_div]
                lam[:, i_div] *= x
            else:
                total = total - x * lam[:, j_div]
                lam[:, j_div] *= 1.0 - x

        lam[:, kvert] = 1.0 - total
        return lam @ array.vertices[array.vertex_indices[root]]
