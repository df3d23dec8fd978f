"""
Foam engine: adaptive cell-subdivision Monte Carlo sampler.

A :py:class:`Foam` draws random points from an arbitrary non-negative density on the unit hypercube. During
the build-up, the domain is recursively split into cells: every new cell is explored with a short Monte Carlo
run, which estimates the integral of the density over the cell and finds the best edge along which to split
it. The cell with the largest *driver integral* is split next, until the cell budget is exhausted. Points are
then generated by picking a cell with probability proportional to its *primary integral*, drawing a uniform
point inside it and attaching the weight ``density * volume / primary``.

Two optimization strategies are available (:py:class:`~cellfoam._types.DriveStrategy`):

- **variance reduction**: cells are split so as to reduce the dispersion of the weights;
- **carving** (the default): cells are split so as to reduce the maximum weight, which makes the
  rejection to unit-weight events efficient.

The domain is the product of an ``n_dim``-dimensional simplex subspace and a ``k_dim``-dimensional hypercube
subspace; the hypercube coordinates come first in every point. The factory :py:func:`create_foam` builds the
pure hypercube foams used by the geometries of :py:mod:`cellfoam.geometries`.

Notes
-----
The algorithm is described in S. Jadach, *Foam: A general-purpose cellular Monte Carlo event generator*,
Comput. Phys. Commun. 152 (2003) 55.
"""
import logging
from itertools import islice, permutations
from math import factorial
from typing import ClassVar

import numpy as np
from numpy.typing import NDArray
from tqdm.auto import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from cellfoam._types import DriveStrategy, FoamOptions, FoamState, PeekStrategy, Point, PointBatch, RootMode
from cellfoam.cells import NO_CELL, CellArray, FoamCell, VertexPool
from cellfoam.density import FoamDensity, FunctionDensity
from cellfoam.histogram import EdgeHistogram
from cellfoam.linalg import partial_volumes
from cellfoam.partition import BinaryPartition
from cellfoam.utilities.config import fmparams
from cellfoam.utilities.exceptions import (
    FoamConfigurationError,
    FoamConsistencyError,
    FoamDensityError,
    FoamError,
    FoamGeometryError,
    FoamGrowthError,
    FoamIndexError,
    tqdmWarningRedirector,
)
from cellfoam.utilities.logging import FoamLogDescriptor, devlog, mylog
from cellfoam.utilities.types import PRNG, parse_prng


class Foam:
    """Adaptive cell-subdivision Monte Carlo sampler.

    Parameters
    ----------
    density: :py:class:`~cellfoam.density.FoamDensity` or callable
        The density to sample. A bare callable is wrapped in a :py:class:`~cellfoam.density.FunctionDensity`
        and called with one point at a time.
    k_dim: int
        Dimension of the hypercube subspace.
    n_dim: int
        Dimension of the simplex subspace.
    cell_budget: int
        The maximum number of cells (root container included).
    random: int, :py:class:`numpy.random.Generator`, :py:class:`numpy.random.RandomState`, optional
        The random source, or a seed for a new one.
    logger: :py:class:`logging.Logger`, optional
        The logger receiving the messages of the foam; defaults to the class logger.
    options: :py:class:`~cellfoam._types.FoamOptions`, optional
        The build-up and generation options; defaults to the ``foam`` section of the configuration.
    **kwargs:
        Individual option overrides (see :py:class:`~cellfoam._types.FoamOptions`).

    Examples
    --------
    >>> import numpy as np
    >>> foam = Foam(lambda x: np.exp(-np.sum((x - 0.5) ** 2) / 0.02), k_dim=2, cell_budget=200, random=42)
    >>> _ = foam.initialize()
    >>> point, weight = foam.generate()
    """

    logger: ClassVar[logging.Logger] = FoamLogDescriptor()

    _probe_batch: ClassVar[int] = 64
    # Size of the batches of MC probes following the first one during a cell exploration.
    _max_vertex_scan: ClassVar[int] = 100
    # Maximum number of corner evaluations of a vertex scan.

    def __init__(
        self,
        density: FoamDensity,
        k_dim: int,
        n_dim: int = 0,
        cell_budget: int = 1000,
        random: PRNG = None,
        logger: logging.Logger | None = None,
        options: FoamOptions | None = None,
        **kwargs,
    ):
        self.n_dim, self.k_dim = int(n_dim), int(k_dim)
        self.cell_budget = int(cell_budget)

        if not isinstance(density, FoamDensity):
            density = FunctionDensity(density, self.n_dim + self.k_dim)
        self.density: FoamDensity = density

        self.random = parse_prng(random)
        if logger is not None:
            self.logger = logger

        if options is None:
            options = FoamOptions.from_config(**kwargs)
        elif len(kwargs):
            options = options.replace(**kwargs)
        self.options: FoamOptions = options

        self.state: FoamState = FoamState.UNINITIALIZED
        self.vertices: VertexPool | None = None
        self.cells: CellArray | None = None

        self._call_count = 0
        self._effective_event_count = 0
        self._probe_min, self._probe_max = np.inf, -np.inf
        self._active = np.zeros(0, dtype=np.int64)
        self._cumulative = np.zeros(0)
        self._prime = 0.0
        self._weight_histogram = EdgeHistogram(0.0, 1.5 * self.options.max_weight_rejection, 100)
        self._reset_generation()

    def __repr__(self):
        return (
            f"<Foam n_dim={self.n_dim} k_dim={self.k_dim} cells={self.cell_count}/{self.cell_budget} "
            f"state={self.state.value}>"
        )

    # ------------------------------------------------------------------------------------------ #
    # Layout                                                                                      #
    # ------------------------------------------------------------------------------------------ #
    @property
    def total_dimension(self) -> int:
        """Dimension of the sampled points (``n_dim + k_dim``)."""
        return self.n_dim + self.k_dim

    @property
    def n_projections(self) -> int:
        """Number of candidate split edges of a cell."""
        return self.k_dim + self.n_dim * (self.n_dim + 1) // 2

    @property
    def root_count(self) -> int:
        """Number of cells making up the root decomposition (root container included)."""
        return self.options.root.root_cell_count(self.n_dim)

    @property
    def _has_container(self) -> bool:
        return self.n_dim > 0 and self.options.root is RootMode.HYPERCUBE

    # ------------------------------------------------------------------------------------------ #
    # Diagnostics                                                                                 #
    # ------------------------------------------------------------------------------------------ #
    @property
    def call_count(self) -> int:
        """Number of density evaluations so far (build-up and generation)."""
        return self._call_count

    @property
    def effective_event_count(self) -> int:
        """Total number of effective (unit-weight equivalent) events of the cell explorations."""
        return self._effective_event_count

    @property
    def primary_integral(self) -> float:
        """Sum of the primary integrals of the active cells; the normalization of the generation."""
        return self._prime

    @property
    def active_count(self) -> int:
        return int(self._active.size)

    @property
    def cell_count(self) -> int:
        return 0 if self.cells is None else len(self.cells)

    @property
    def exploration_weight_range(self) -> tuple[float, float]:
        """Smallest and largest weight met by the cell explorations of the build-up."""
        return float(self._probe_min), float(self._probe_max)

    @property
    def weight_range(self) -> tuple[float, float]:
        """Smallest and largest generated weight (before rejection); ``(inf, -inf)`` before any generation."""
        return float(self._wt_min), float(self._wt_max)

    @property
    def weight_histogram(self) -> EdgeHistogram:
        """Histogram of the generated weights (before rejection)."""
        return self._weight_histogram

    def integral_estimate(self) -> tuple[float, float]:
        """Monte Carlo estimate of the integral of the density and its error, from the generated events.

        Before any event has been generated the build-up estimate of the integral is returned, with an error
        equal to the estimate itself.
        """
        if self._n_generated == 0:
            integral = float(self.cells.integral[0]) if self.cells is not None else 0.0
            return integral, integral

        mean = self._sum_wt / self._n_generated
        variance = max(self._sum_wt2 / self._n_generated - mean * mean, 0.0)
        return self._prime * mean, self._prime * np.sqrt(variance / self._n_generated)

    def efficiency(self) -> float:
        """Ratio of the average to the maximum generated weight."""
        if self._n_generated == 0 or self._wt_max <= 0:
            return 0.0
        return (self._sum_wt / self._n_generated) / self._wt_max

    # ------------------------------------------------------------------------------------------ #
    # Build-up                                                                                    #
    # ------------------------------------------------------------------------------------------ #
    def _validate(self):
        opts = self.options
        if self.n_dim < 0 or self.k_dim < 0:
            raise FoamConfigurationError(f"Negative dimensions: n_dim={self.n_dim}, k_dim={self.k_dim}.")
        if self.total_dimension == 0:
            raise FoamConfigurationError("Zero dimension is not allowed.")
        if 0 < self.n_dim < 2 and not opts.store_vertices:
            raise FoamConfigurationError(
                "Simplex coordinates can only be rebuilt for n_dim >= 2; enable store_vertices for n_dim = 1."
            )
        for axis in opts.inhibit_division:
            if not 0 <= axis < self.k_dim:
                raise FoamConfigurationError(f"Cannot inhibit division along axis {axis} (k_dim={self.k_dim}).")
        if len(set(opts.inhibit_division)) == self.n_projections:
            raise FoamConfigurationError("Division is inhibited along every edge.")
        if self.cell_budget < self.root_count + 2:
            raise FoamConfigurationError(
                f"Cell budget {self.cell_budget} is too small: the root decomposition needs {self.root_count} "
                f"cells and one division needs 2 more."
            )

    def initialize(self) -> "Foam":
        """Build the foam: create and explore the root cells, grow the foam and prepare the generation.

        Returns
        -------
        :py:class:`Foam`
            The foam itself.

        Raises
        ------
        FoamConfigurationError
            If the options are invalid.
        FoamGrowthError
            If the density is degenerate (e.g. vanishes over a whole cell).
        """
        self._validate()
        opts = self.options

        self._mask = np.ones(self.n_projections, dtype=bool)
        self._mask[opts.inhibit_division] = False
        self._histograms = [EdgeHistogram(0.0, 1.0, opts.n_bins) for _ in range(self.n_projections)]
        self._weight_histogram = EdgeHistogram(0.0, 1.5 * opts.max_weight_rejection, 100)
        self._call_count = 0
        self._effective_event_count = 0
        self._probe_min, self._probe_max = np.inf, -np.inf

        if self.n_dim > 0:
            capacity = opts.root.initial_vertex_count(self.n_dim)
            if opts.store_vertices:
                capacity += self.cell_budget // 2 + 1
            self.vertices = VertexPool(capacity, self.n_dim)
            self._init_vertices()
        else:
            self.vertices = None

        self.cells = CellArray(
            self.cell_budget,
            self.n_dim,
            self.k_dim,
            vertices=self.vertices,
            mega_cell=opts.mega_cell,
            store_vertices=opts.store_vertices,
        )
        self._init_cells()
        self.state = FoamState.INITIALIZED

        self.grow()
        self.make_active_list()
        self._reset_generation()
        self.logger.info(
            "Foam grown: %d cells (%d active), %d density calls, %d effective events, primary integral %.6e.",
            self.cell_count,
            self.active_count,
            self.call_count,
            self.effective_event_count,
            self.primary_integral,
        )
        return self

    def _init_vertices(self):
        if self.options.root is RootMode.HYPERCUBE:
            # the corners of the unit hypercube, in the order of their binary serial number
            for digits in BinaryPartition(self.n_dim):
                self.vertices.add(digits)
        else:
            for i in range(self.n_dim + 1):
                self.vertices.add([1.0 if j < i else 0.0 for j in range(self.n_dim)])

    def _init_cells(self):
        n, k = self.n_dim, self.k_dim
        position, size = (np.zeros(k), np.ones(k)) if k > 0 else (None, None)

        if n == 0:
            self.cells.fill(True, position=position, size=size)
        elif self.options.root is RootMode.HYPERCUBE:
            self.cells.fill(False)
            # one simplex per permutation of the axes; vertex i of the basic simplex has its first i digits set
            for perm in permutations(range(n)):
                vertices = [BinaryPartition.serial(tuple(int(perm[j] < i) for j in range(n))) for i in range(n + 1)]
                self.cells.fill(True, parent=0, vertices=vertices, position=position, size=size)
        else:
            self.cells.fill(True, vertices=list(range(n + 1)), position=position, size=size)

        for index in range(1 if self._has_container else 0, len(self.cells)):
            self.explore(index)

    def _evaluate(self, points: PointBatch) -> NDArray[np.float64]:
        values = np.asarray(self.density.batch_density(points), dtype=np.float64)
        self._call_count += points.shape[0]

        if np.any(np.isnan(values)) or np.any(values < 0):
            bad = points[np.flatnonzero(np.isnan(values) | (values < 0))[0]]
            raise FoamDensityError(f"The density must be non-negative and finite; got an invalid value at {bad}.")
        return values

    def _make_lambda(self, m: int) -> NDArray[np.float64]:
        # uniform barycentric parameters inside the simplex, shape (m, n_dim)
        n = self.n_dim
        if n > 4:
            walk = np.cumsum(-np.log(1.0 - self.random.random((m, n + 1))), axis=1)
            ordered = walk[:, :n] / walk[:, n:]
        else:
            ordered = np.sort(self.random.random((m, n)), axis=1)
        return np.diff(ordered, axis=1, prepend=0.0)

    def _draw_points(
        self,
        cell: FoamCell,
        position: NDArray[np.float64],
        size: NDArray[np.float64],
        vertex_table: NDArray[np.float64] | None,
        m: int,
    ) -> tuple[PointBatch, NDArray[np.float64]]:
        """Draw ``m`` uniform points inside a cell.

        Returns the points and the hypercube coordinates of the points relative to the cell (``alpha``).
        If ``vertex_table`` is ``None``, the simplex coordinates are rebuilt from the lineage of the cell.
        """
        n, k = self.n_dim, self.k_dim
        points = np.empty((m, n + k))

        if n > 0:
            lam = self._make_lambda(m)
            if vertex_table is None:
                points[:, k:] = cell.map_simplex_point(np.hstack([lam, np.zeros((m, 1))]), n)
            else:
                points[:, k:] = vertex_table[n] + lam @ (vertex_table[:n] - vertex_table[n])

        alpha = self.random.random((m, k)) if k > 0 else np.zeros((m, 0))
        if k > 0:
            points[:, :k] = position + alpha * size
        return points, alpha

    def _cell_corners(self, position, size, vertex_table) -> PointBatch:
        simplex = vertex_table if self.n_dim > 0 else np.zeros((1, 0))
        corners = (
            np.concatenate([position + np.asarray(digits, dtype=np.float64) * size, vertex])
            for vertex in simplex
            for digits in BinaryPartition(self.k_dim)
        )
        return np.array(list(islice(corners, self._max_vertex_scan)))

    def explore(self, index: int):
        """Explore a newly created cell with a short Monte Carlo run.

        The integral, driver and primary integrals of the cell are estimated, its best split edge and split
        fraction are chosen, and the integral estimates of every ancestor are corrected. The cell must be linked
        to its parent already.

        Parameters
        ----------
        index: int
            The index of the cell.
        """
        opts = self.options
        n, k = self.n_dim, self.k_dim
        cell = self.cells[index]

        volume = cell.calc_volume()
        position, size = cell.get_region()
        vertex_table = cell.vertex_table() if n > 0 else None
        old_integral, old_drive = cell.integral, cell.drive

        for histogram in self._histograms:
            histogram.reset()
        sum_w, sum_w2, count = 0.0, 0.0, 0
        wt_min, wt_max = np.inf, -np.inf

        if opts.scan_vertices:
            corner_weights = self._evaluate(self._cell_corners(position, size, vertex_table)) * volume
            wt_min, wt_max = corner_weights.min(), corner_weights.max()

        # The probes are drawn in batches; probes past the point where the effective number of events reaches
        # the target are discarded.
        target = opts.n_bins * opts.events_per_bin
        batch = min(opts.n_samples, target) if target > 0 else opts.n_samples
        n_eff = 0.0
        while count < opts.n_samples:
            m = min(batch, opts.n_samples - count)
            points, alpha = self._draw_points(cell, position, size, vertex_table, m)
            weights = self._evaluate(points) * volume

            cum_w = sum_w + np.cumsum(weights)
            cum_w2 = sum_w2 + np.cumsum(weights * weights)
            with np.errstate(divide="ignore", invalid="ignore"):
                effective = np.where(cum_w2 > 0, cum_w * cum_w / cum_w2, 0.0)
            stop = np.flatnonzero(effective >= target) if target > 0 else np.zeros(0, dtype=np.int64)
            if stop.size:
                m = int(stop[0]) + 1
                points, alpha, weights = points[:m], alpha[:m], weights[:m]

            if n > 0:
                self._fill_simplex_projections(vertex_table, points[:, k:], weights, volume)
            for axis in range(k):
                self._histograms[axis].fill(alpha[:, axis], weights)

            sum_w, sum_w2, count = cum_w[m - 1], cum_w2[m - 1], count + m
            wt_min, wt_max = min(wt_min, weights.min()), max(wt_max, weights.max())
            n_eff = effective[m - 1]
            if stop.size:
                break
            batch = self._probe_batch

        integral = sum_w / (count + 1e-6)
        if opts.drive is DriveStrategy.VARIANCE:
            best, xdiv = self._variance_edge(sum_w2, count)
            primary = np.sqrt(sum_w2 / count)
            drive = primary - integral
        else:
            best, xdiv = self._carving_edge()
            primary = wt_max
            drive = wt_max - integral

        if best < 0:
            raise FoamGrowthError(
                f"No admissible split edge for cell {index} (integral={integral:.3e}, drive={drive:.3e}); "
                f"the density is degenerate over the cell."
            )

        cell.best, cell.xdiv = best, xdiv
        cell.integral, cell.drive, cell.primary = integral, drive, primary

        for ancestor in self.cells.ancestors(index):
            self.cells.integral[ancestor] += integral - old_integral
            self.cells.drive[ancestor] += drive - old_drive

        self._effective_event_count += int(n_eff)
        self._probe_min = min(self._probe_min, wt_min)
        self._probe_max = max(self._probe_max, wt_max)
        devlog.debug(
            "Explored cell %d: %d probes, weights in [%.4e, %.4e], integral=%.4e, drive=%.4e, best edge %d at %.3f.",
            index,
            count,
            wt_min,
            wt_max,
            integral,
            drive,
            best,
            xdiv,
        )

    def _fill_simplex_projections(self, vertex_table, points, weights, volume):
        parts = partial_volumes(vertex_table, points)

        if self.k_dim == 0:
            # only meaningful for a pure simplex
            total = parts.sum(axis=1)
            if np.any(np.abs(total - volume) > 1e-7 * (np.abs(total) + abs(volume))):
                raise FoamGeometryError(
                    f"Partial volumes do not add up to the cell volume {volume:.6e} (got {total.max():.6e})."
                )

        for edge, (j, i) in enumerate(self.cells.edges):
            denominator = parts[:, j] + parts[:, i]
            projection = np.divide(
                parts[:, j], denominator, out=np.full(denominator.shape, 0.5), where=denominator > 0
            )
            self._histograms[self.k_dim + edge].fill(projection, weights)

    def _variance_edge(self, sum_w2: float, count: int) -> tuple[int, float]:
        # Choose the edge and the bin range [x_lo, x_up) whose separation reduces the weight dispersion most.
        n_bins = self.options.n_bins
        lo, up = np.triu_indices(n_bins)
        x_lo, x_up = lo / n_bins, (up + 1) / n_bins
        width = x_up - x_lo

        best, xbest, max_gain = -1, 0.5, 0.0
        dispersion = np.sqrt(sum_w2) / np.sqrt(count)
        for edge in np.flatnonzero(self._mask):
            cumulative = np.concatenate([[0.0], np.cumsum(self._histograms[edge].squared_contents)])
            inside = cumulative[up + 1] - cumulative[lo]
            with np.errstate(divide="ignore", invalid="ignore"):
                ssw_in = np.sqrt(inside) / np.sqrt(count * width) * width
                ssw_out = np.sqrt(sum_w2 - inside) / np.sqrt(count * (1.0 - width)) * (1.0 - width)
            total = ssw_in + ssw_out
            total[np.isnan(total)] = np.inf

            p = int(np.argmin(total))
            if not np.isfinite(total[p]):
                continue
            gain = dispersion - total[p]
            if gain > max_gain:
                max_gain, best = gain, int(edge)
                xbest = x_lo[p] if lo[p] > 0 else x_up[p]

        return best, float(xbest)

    def _carving_edge(self) -> tuple[int, float]:
        # Choose the edge whose histogram is furthest from flat, and the split point at the border of the
        # deepest "valley" below the maximum bin.
        n_bins = self.options.n_bins
        best, xbest, carve_max = -1, 0.5, -np.inf
        for edge in np.flatnonzero(self._mask):
            bins = self._histograms[edge].contents
            bin_max = bins.max()
            if bin_max < 0:
                return -1, 0.5
            carve_total = np.sum(bin_max - bins)

            j_low, j_up, carve_one = 0, n_bins - 1, -np.inf
            for i in range(n_bins):
                level = bins[i]
                i_low = i
                while i_low > 0 and bins[i_low - 1] <= level:
                    i_low -= 1
                i_up = i
                while i_up < n_bins - 1 and bins[i_up + 1] <= level:
                    i_up += 1
                carve = (i_up - i_low + 1) * (bin_max - level)
                if carve > carve_one:
                    carve_one, j_low, j_up = carve, i_low, i_up

            if carve_total > carve_max:
                carve_max, best = carve_total, int(edge)
                xbest = j_low / n_bins if j_low > 0 else (j_up + 1) / n_bins

        return best, float(xbest)

    def grow(self):
        """Split cells until the cell budget is exhausted, then check the consistency of the tree."""
        self.state = FoamState.GROWING
        peek = self.peek_max if self.options.peek is PeekStrategy.MAX else self.peek_random
        n_divisions = max(0, (self.cell_budget - 1 - self.cells.last) // 2)
        self.logger.debug("Growing foam: %d divisions from %d root cells.", n_divisions, len(self.cells))

        with logging_redirect_tqdm(loggers=[self.logger]), tqdmWarningRedirector():
            with tqdm(
                total=n_divisions,
                desc=f"Growing foam ({self.cell_budget} cells)",
                unit="division",
                leave=False,
                disable=fmparams["system"]["preferences"]["disable_progress_bars"],
            ) as pbar:
                while self.cells.last + 2 < self.cell_budget:
                    self.divide(peek())
                    pbar.update(1)

        self.check_all()

    def peek_max(self) -> int:
        """Index of the active cell with the largest absolute driver integral."""
        active = self.cells.active_indices()
        if active.size == 0:
            raise FoamGrowthError("The foam has no active cell.")

        drive = np.abs(self.cells.drive[active])
        i = int(np.argmax(drive))
        if drive[i] == 0:
            raise FoamGrowthError("Every active cell has a vanishing driver integral; the density is degenerate.")
        return int(active[i])

    def peek_random(self) -> int:
        """Index of an active cell reached by a random walk down the tree, weighted by the driver integrals."""
        cells = self.cells
        index = 0

        if self._has_container:
            roots = np.arange(1, factorial(self.n_dim) + 1)
            total_drive, total_integral = cells.drive[roots].sum(), cells.integral[roots].sum()
            if abs(total_drive - cells.drive[0]) > 1e-5 * total_drive:
                raise FoamGeometryError("The driver integrals of the root simplices do not add up.")
            if abs(total_integral - cells.integral[0]) > 1e-5 * total_drive:
                raise FoamGeometryError("The integrals of the root simplices do not add up.")
            if not total_drive > 0:
                raise FoamGrowthError("The total driver integral vanishes; the density is degenerate.")

            cumulative = np.cumsum(cells.drive[roots]) / total_drive
            pick = min(int(np.searchsorted(cumulative, self.random.random(), side="right")), roots.size - 1)
            index = int(roots[pick])

        while not cells.status[index]:
            d0, d1 = cells.daughters[index]
            drive0, drive1 = cells.drive[d0], cells.drive[d1]
            if drive0 + drive1 == 0:
                raise FoamGrowthError(f"Both daughters of cell {index} have a vanishing driver integral.")
            index = int(d0) if self.random.random() < drive0 / (drive0 + drive1) else int(d1)
        return index

    def divide(self, index: int) -> tuple[int, int]:
        """Split a cell along its best edge into two new active cells and explore them.

        Parameters
        ----------
        index: int
            The index of the cell to split.

        Returns
        -------
        tuple of int
            The indices of the two daughters.
        """
        cells = self.cells
        if cells.last + 2 >= cells.capacity:
            raise FoamIndexError(f"Cell buffer limit reached ({cells.capacity} cells).")

        cell = cells[index]
        best, x = cell.best, cell.xdiv
        if not 0 <= best < self.n_projections:
            raise FoamGeometryError(f"Cell {index} has no valid split edge (best={best}).")
        cell.active = False

        vertices1 = vertices2 = None
        if self.n_dim > 0 and self.options.store_vertices:
            vertices1, vertices2 = cell.vertex_indices, cell.vertex_indices

        position1 = size1 = position2 = size2 = None
        if self.k_dim > 0 and not self.options.mega_cell:
            position, size = cell.get_region()
            position1, size1, position2, size2 = position.copy(), size.copy(), position.copy(), size.copy()

        if best >= self.k_dim:
            if self.options.store_vertices:
                old1, old2 = cells.edges[best - self.k_dim]
                new = self.vertices.add(
                    x * self.vertices[vertices1[old1]] + (1.0 - x) * self.vertices[vertices2[old2]]
                )
                vertices1[old1] = new
                vertices2[old2] = new
        elif position1 is not None:
            size1[best] = x * size[best]
            position2[best] = position1[best] + size1[best]
            size2[best] = (1.0 - x) * size[best]

        d0 = cells.fill(True, index, vertices1, position1, size1)
        d1 = cells.fill(True, index, vertices2, position2, size2)
        cell.set_daughters(d0, d1)
        devlog.debug("Divided cell %d along edge %d at %.4f into cells %d and %d.", index, best, x, d0, d1)

        self.explore(d0)
        self.explore(d1)
        return d0, d1

    def check_all(self):
        """Check the consistency of the cell tree.

        Raises
        ------
        FoamConsistencyError
            Collecting every violation of the tree rules (daughters, status, cross links, vertex references).
        FoamGrowthError
            If an active cell has a vanishing driver integral.
        """
        cells = self.cells
        errors = []
        for i in range(1 if self._has_container else 0, len(cells)):
            d0, d1 = cells.daughters[i]
            active = cells.status[i]
            if (d0 == NO_CELL) != (d1 == NO_CELL):
                errors.append(FoamGeometryError(f"Cell {i} has only one daughter."))
            elif d0 == NO_CELL and not active:
                errors.append(FoamGeometryError(f"Cell {i} has no daughter and is inactive."))
            elif d0 != NO_CELL and active:
                errors.append(FoamGeometryError(f"Cell {i} has two daughters and is active."))

            parent = cells.parent[i]
            if parent != NO_CELL and not (self._has_container and parent == 0):
                if i not in cells.daughters[parent]:
                    errors.append(FoamGeometryError(f"The parent of cell {i} does not point to it."))
            for slot, daughter in enumerate((d0, d1)):
                if daughter != NO_CELL and cells.parent[daughter] != i:
                    errors.append(FoamGeometryError(f"Daughter {slot} of cell {i} does not point to it."))

        if self.n_dim > 0:
            indices = cells.vertex_indices[: len(cells)]
            referenced = np.zeros(len(self.vertices), dtype=bool)
            referenced[indices[indices >= 0]] = True
            for v in np.flatnonzero(~referenced):
                errors.append(FoamGeometryError(f"Vertex {v} is not referenced by any cell."))

        if errors:
            raise FoamConsistencyError(f"The foam failed {len(errors)} consistency checks", errors)

        active = cells.active_indices()
        empty = active[cells.drive[active] == 0]
        if empty.size:
            raise FoamGrowthError(f"{empty.size} active cells are empty (vanishing driver integral), e.g. {empty[0]}.")

    def make_active_list(self):
        """Build the list of active cells and the cumulative distribution of their primary integrals."""
        cells = self.cells
        self._active = cells.active_indices()
        primary = cells.primary[self._active]
        self._prime = float(primary.sum())
        if not self._prime > 0:
            raise FoamGrowthError(f"The total primary integral is not positive ({self._prime}).")

        self._cumulative = np.cumsum(primary / self._prime)
        self.state = FoamState.GROWN

    # ------------------------------------------------------------------------------------------ #
    # Generation                                                                                  #
    # ------------------------------------------------------------------------------------------ #
    def _reset_generation(self):
        self._sum_wt = 0.0
        self._sum_wt2 = 0.0
        self._sum_over = 0.0
        self._n_generated = 0
        self._wt_min, self._wt_max = np.inf, -np.inf
        self._weight_histogram.reset()

    def select_cell(self, method: str = "interpolation") -> int:
        """Pick an active cell with probability proportional to its primary integral.

        Parameters
        ----------
        method: str
            ``"interpolation"`` (interpolation search, the default) or ``"binary"`` (binary search) through the
            cumulative distribution.

        Returns
        -------
        int
            The index of the selected cell.
        """
        if self._cumulative.size == 0:
            raise FoamError("The active list has not been built; initialize the foam first.")

        u = self.random.random()
        cumulative = self._cumulative
        lo, hi = 0, cumulative.size - 1

        if method == "binary":
            while lo + 1 < hi:
                hit = (lo + hi) // 2
                if cumulative[hit] > u:
                    hi = hit
                else:
                    lo = hit
        elif method == "interpolation":
            flo, fhi = cumulative[lo], cumulative[hi]
            while lo + 1 < hi:
                hit = lo + int((hi - lo) * (u - flo) / (fhi - flo) + 0.5) if fhi > flo else lo + 1
                hit = min(max(hit, lo + 1), hi - 1)
                if cumulative[hit] > u:
                    hi, fhi = hit, cumulative[hit]
                else:
                    lo, flo = hit, cumulative[hit]
        else:
            raise FoamConfigurationError(f"Unknown cell selection method {method!r}.")

        return int(self._active[lo] if cumulative[lo] > u else self._active[hi])

    def generate(self) -> tuple[Point, float]:
        """Generate a random point and its weight.

        Returns
        -------
        point: :py:class:`numpy.ndarray`
            The point, shape ``(total_dimension,)``.
        weight: float
            Its weight; ``1`` for accepted events in rejection mode, except for overweighted events.
        """
        if self.state not in (FoamState.GROWN, FoamState.GENERATING):
            raise FoamError(f"Cannot generate points from a foam in state {self.state.value}.")
        self.state = FoamState.GENERATING

        opts = self.options
        cells = self.cells
        while True:
            index = self.select_cell()
            primary = cells.primary[index]
            if primary <= 0:
                continue

            cell = cells[index]
            position, size = cell.get_region()
            vertex_table = cell.vertex_table() if self.n_dim > 0 and opts.store_vertices else None
            points, _ = self._draw_points(cell, position, size, vertex_table, 1)

            weight = float(self._evaluate(points)[0]) * cells.volume[index] / primary
            self._sum_wt += weight
            self._sum_wt2 += weight * weight
            self._n_generated += 1
            self._wt_min, self._wt_max = min(self._wt_min, weight), max(self._wt_max, weight)
            self._weight_histogram.fill(weight)

            if opts.rejection:
                if opts.max_weight_rejection * self.random.random() > weight:
                    continue
                if weight < opts.max_weight_rejection:
                    weight = 1.0
                else:
                    weight = weight / opts.max_weight_rejection
                    self._sum_over += weight - opts.max_weight_rejection

            return points[0], weight

    def generate_batch(self, n: int) -> tuple[PointBatch, NDArray[np.float64]]:
        """Generate ``n`` points and their weights, shapes ``(n, total_dimension)`` and ``(n,)``."""
        points, weights = np.empty((n, self.total_dimension)), np.empty(n)
        for i in range(n):
            points[i], weights[i] = self.generate()
        return points, weights


def create_foam(
    logger: logging.Logger | None,
    random: PRNG,
    density: FoamDensity,
    dimension: int,
    cell_budget: int,
    **options,
) -> Foam:
    """Grow a pure hypercube foam with the factory defaults.

    The first growth failure caused by a degenerate density is reported as a warning and the growth is retried
    once, continuing the same random stream; a second failure propagates. Configuration errors are never retried.

    Parameters
    ----------
    logger: :py:class:`logging.Logger`, optional
        The logger; defaults to :py:data:`~cellfoam.utilities.logging.mylog`.
    random: int, :py:class:`numpy.random.Generator`, :py:class:`numpy.random.RandomState`, optional
        The random source, or a seed for a new one.
    density: :py:class:`~cellfoam.density.FoamDensity` or callable
        The density on the unit cube of dimension ``dimension``.
    dimension: int
        Dimension of the sampled space.
    cell_budget: int
        The maximum number of cells.
    **options:
        Option overrides on top of the ``foam.factory`` configuration.

    Returns
    -------
    :py:class:`Foam`
        The grown foam.
    """
    logger = logger if logger is not None else mylog
    random = parse_prng(random)
    if not isinstance(density, FoamDensity):
        density = FunctionDensity(density, dimension)

    logger.info("Growing foam of up to %d cells...", cell_budget)
    for attempt in range(2):
        foam = Foam(
            density,
            k_dim=dimension,
            n_dim=0,
            cell_budget=cell_budget,
            random=random,
            logger=logger,
            options=FoamOptions.from_config("factory", **options),
        )
        try:
            foam.initialize()
            break
        except FoamGrowthError as error:
            if attempt > 0:
                raise
            logger.warning("The foam code reported the following error:")
            for line in str(error).splitlines():
                logger.warning(line)
            logger.warning("Retrying to grow foam with a different random sequence...")

    logger.info("Foam has been grown.")
    return foam
