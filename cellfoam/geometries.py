"""
Foam Geometries
===============

Geometries draw random positions from a physical density distribution through a foam. The foam lives on the
unit cube, so every geometry defines a transformation between physical coordinates and the unit cube and
presents the foam with the transformed density (physical density times the Jacobian of the transformation).

Geometries included:
    - :py:class:`FoamGeometry`: a general 3D density on the whole space, ``x = a / tan(pi xb)`` per axis.
    - :py:class:`FoamAxGeometry`: an axisymmetric density, ``R = -a ln(Rb)`` and ``z = c / tan(pi zb)``.
    - :py:class:`FoamBoxGeometry`: a 3D density restricted to a finite box, mapped linearly.

Scale lengths and extents are :py:class:`unyt.unyt_quantity` objects (bare numbers are read in ``units``), and
generated positions are :py:class:`unyt.unyt_array` objects.

Examples
--------
.. code-block:: python

    class PlummerGeometry(FoamGeometry):
        def physical_density(self, x, y, z):
            return (3 / (4 * np.pi)) * (1 + x**2 + y**2 + z**2) ** -2.5

    geometry = PlummerGeometry(n_cells=10000, xscale=1, yscale=1, zscale=1, random=42)
    positions = geometry.generate_positions(1000)
"""
import logging
from abc import ABC, abstractmethod
from typing import Callable, ClassVar

import numpy as np
from numpy.typing import NDArray
from unyt import unyt_array, unyt_quantity

from cellfoam._types import Point, PointBatch
from cellfoam.density import FoamDensity
from cellfoam.foam import Foam, create_foam
from cellfoam.utilities.exceptions import FoamConfigurationError, FoamGeometryError
from cellfoam.utilities.types import PRNG, MaybeUnitScalar, ensure_ytquantity, parse_prng


class GeometryBase(FoamDensity, ABC):
    """Common machinery of the foam geometries.

    Parameters
    ----------
    n_cells: int
        Number of foam cells.
    units: str
        The length unit of the geometry.
    random: int, :py:class:`numpy.random.Generator`, optional
        The random source shared by the foam and the geometry.
    logger: :py:class:`logging.Logger`, optional
        The logger passed to :py:func:`~cellfoam.foam.create_foam`.
    """

    dimension: ClassVar[int] = 3
    min_cells: ClassVar[int] = 1
    max_cells: ClassVar[int | None] = None

    def __init__(self, n_cells: int, units: str = "kpc", random: PRNG = None, logger: logging.Logger | None = None):
        if n_cells < self.min_cells:
            raise FoamConfigurationError(f"The number of foam cells should be at least {self.min_cells}.")
        if self.max_cells is not None and n_cells > self.max_cells:
            raise FoamConfigurationError(f"The number of foam cells should be at most {self.max_cells}.")

        self.n_cells = int(n_cells)
        self.units = units
        self.random = parse_prng(random)
        self.logger = logger
        self._foam: Foam | None = None

    def __repr__(self):
        return f"<{self.__class__.__name__} cells={self.n_cells} units={self.units}>"

    @property
    def foam(self) -> Foam:
        """The foam of the geometry, grown on first access."""
        if self._foam is None:
            self.setup()
        return self._foam

    def setup(self):
        """Grow the foam of the geometry."""
        self._foam = create_foam(self.logger, self.random, self, self.dimension, self.n_cells)

    def density(self, ndim: int, point: Point) -> float:
        if ndim != self.dimension:
            raise FoamGeometryError(f"Incorrect dimension (ndim = {ndim}, expected {self.dimension}).")
        return float(self.batch_density(np.asarray(point, dtype=np.float64)[np.newaxis, :])[0])

    @abstractmethod
    def batch_density(self, points: PointBatch) -> NDArray[np.float64]:
        pass

    @abstractmethod
    def to_physical(self, points: PointBatch) -> NDArray[np.float64]:
        """Physical cartesian positions (in ``units``) of points of the unit cube, shape ``(m, 3)``."""
        pass

    def generate_position(self) -> unyt_array:
        """Draw one random position from the geometry."""
        point, _ = self.foam.generate()
        return unyt_array(self.to_physical(point[np.newaxis, :])[0], self.units)

    def generate_positions(self, n: int) -> unyt_array:
        """Draw ``n`` random positions from the geometry, shape ``(n, 3)``."""
        points, _ = self.foam.generate_batch(n)
        return unyt_array(self.to_physical(points), self.units)

    @staticmethod
    def _interior(points: PointBatch) -> NDArray[np.bool_]:
        # the transformations are singular on the border of the unit cube, where the density vanishes
        return np.all((points > 0.0) & (points < 1.0), axis=1)


class FoamGeometry(GeometryBase):
    """A 3D geometry with an arbitrary density on the whole space.

    The transformation to the unit cube is ``x = a / tan(pi xb)``, ``y = b / tan(pi yb)``,
    ``z = c / tan(pi zb)``, with Jacobian ``a b c pi^3 / (sin^2(pi xb) sin^2(pi yb) sin^2(pi zb))``. Subclasses
    implement :py:meth:`physical_density`.

    Parameters
    ----------
    n_cells: int
        Number of foam cells.
    xscale, yscale, zscale: :py:class:`unyt.unyt_quantity` or float
        The scale parameters ``a``, ``b`` and ``c`` of the transformation.
    """

    def __init__(
        self,
        n_cells: int,
        xscale: MaybeUnitScalar,
        yscale: MaybeUnitScalar,
        zscale: MaybeUnitScalar,
        units: str = "kpc",
        random: PRNG = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(n_cells, units=units, random=random, logger=logger)
        self.xscale: unyt_quantity = ensure_ytquantity(xscale, units)
        self.yscale: unyt_quantity = ensure_ytquantity(yscale, units)
        self.zscale: unyt_quantity = ensure_ytquantity(zscale, units)

    @abstractmethod
    def physical_density(self, x: NDArray, y: NDArray, z: NDArray) -> NDArray[np.float64]:
        """The density at the cartesian positions ``(x, y, z)``, given in ``units``."""
        pass

    @property
    def _scales(self) -> NDArray[np.float64]:
        return np.array([self.xscale.d, self.yscale.d, self.zscale.d])

    def to_physical(self, points: PointBatch) -> NDArray[np.float64]:
        with np.errstate(divide="ignore"):
            return self._scales / np.tan(np.pi * points)

    def batch_density(self, points: PointBatch) -> NDArray[np.float64]:
        values = np.zeros(points.shape[0])
        inside = self._interior(points)
        p = points[inside]

        xyz = self.to_physical(p)
        jacobian = np.prod(self._scales) * np.pi**3 / np.prod(np.sin(np.pi * p) ** 2, axis=1)
        values[inside] = self.physical_density(xyz[:, 0], xyz[:, 1], xyz[:, 2]) * jacobian
        return values


class FoamAxGeometry(GeometryBase):
    """An axisymmetric geometry, sampled through a 2D foam in ``(Rb, zb)``.

    The transformation to the unit square is ``R = -a ln(Rb)``, ``z = c / tan(pi zb)``; the foam density is
    ``2 pi rho(R, z) R a c pi / (Rb sin^2(pi zb))``. Positions receive a uniform random azimuth. Subclasses
    implement :py:meth:`physical_density`.

    Parameters
    ----------
    n_cells: int
        Number of foam cells (at least 100).
    rscale, zscale: :py:class:`unyt.unyt_quantity` or float
        The scale parameters ``a`` and ``c`` of the transformation.
    """

    dimension = 2
    min_cells = 100

    def __init__(
        self,
        n_cells: int,
        rscale: MaybeUnitScalar,
        zscale: MaybeUnitScalar,
        units: str = "kpc",
        random: PRNG = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(n_cells, units=units, random=random, logger=logger)
        self.rscale: unyt_quantity = ensure_ytquantity(rscale, units)
        self.zscale: unyt_quantity = ensure_ytquantity(zscale, units)

    @abstractmethod
    def physical_density(self, R: NDArray, z: NDArray) -> NDArray[np.float64]:
        """The density at cylindrical radius ``R`` and height ``z``, given in ``units``."""
        pass

    def to_cylindrical(self, points: PointBatch) -> tuple[NDArray, NDArray]:
        """Cylindrical coordinates ``(R, z)`` of points of the unit square."""
        with np.errstate(divide="ignore"):
            R = -self.rscale.d * np.log(points[:, 0])
            z = self.zscale.d / np.tan(np.pi * points[:, 1])
        return R, z

    def to_physical(self, points: PointBatch) -> NDArray[np.float64]:
        R, z = self.to_cylindrical(points)
        phi = 2.0 * np.pi * self.random.random(R.shape)
        return np.stack([R * np.cos(phi), R * np.sin(phi), z], axis=-1)

    def batch_density(self, points: PointBatch) -> NDArray[np.float64]:
        values = np.zeros(points.shape[0])
        inside = self._interior(points)
        p = points[inside]

        R, z = self.to_cylindrical(p)
        jacobian = self.rscale.d * self.zscale.d * np.pi / (p[:, 0] * np.sin(np.pi * p[:, 1]) ** 2)
        values[inside] = 2.0 * np.pi * self.physical_density(R, z) * R * jacobian
        return values


class FoamBoxGeometry(GeometryBase):
    """A 3D density restricted to the box ``[xmin, xmax] x [ymin, ymax] x [zmin, zmax]``.

    The box is mapped linearly onto the unit cube, so that the foam density is the physical density times the
    volume of the box.

    Parameters
    ----------
    density: callable
        The physical density ``density(x, y, z)``, vectorized over arrays of coordinates in ``units``.
    n_cells: int
        Number of foam cells (between 1000 and 1000000).
    xmin, xmax, ymin, ymax, zmin, zmax: :py:class:`unyt.unyt_quantity` or float
        The extent of the box.
    """

    min_cells = 1000
    max_cells = 1000000

    def __init__(
        self,
        density: Callable[[NDArray, NDArray, NDArray], NDArray],
        n_cells: int,
        xmin: MaybeUnitScalar,
        xmax: MaybeUnitScalar,
        ymin: MaybeUnitScalar,
        ymax: MaybeUnitScalar,
        zmin: MaybeUnitScalar,
        zmax: MaybeUnitScalar,
        units: str = "kpc",
        random: PRNG = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(n_cells, units=units, random=random, logger=logger)
        self.physical_density = density

        lower = [ensure_ytquantity(v, units) for v in (xmin, ymin, zmin)]
        upper = [ensure_ytquantity(v, units) for v in (xmax, ymax, zmax)]
        self.lower = unyt_array([v.d for v in lower], units)
        self.upper = unyt_array([v.d for v in upper], units)

        if np.any(self.upper <= self.lower):
            raise FoamConfigurationError(f"Empty box: lower corner {self.lower}, upper corner {self.upper}.")

    @property
    def volume(self) -> unyt_quantity:
        extent = self.upper - self.lower
        return extent[0] * extent[1] * extent[2]

    def to_physical(self, points: PointBatch) -> NDArray[np.float64]:
        return self.lower.d + points * (self.upper.d - self.lower.d)

    def batch_density(self, points: PointBatch) -> NDArray[np.float64]:
        xyz = self.to_physical(points)
        return np.asarray(self.physical_density(xyz[:, 0], xyz[:, 1], xyz[:, 2]), dtype=np.float64) * float(
            self.volume.d
        )
