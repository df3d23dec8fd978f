"""
Density callbacks sampled by the foam.

A foam draws random points from an arbitrary, non-negative density defined on the unit hypercube. The
density is supplied through the :py:class:`FoamDensity` interface: a single pure function of a point,
which may be called many times, in any order, during both the growth of the foam and the generation of
points.

Bare callables are adapted with :py:class:`FunctionDensity`. A small set of analytic densities, based on
the test functions of the VEGAS paper [1]_, is kept in :py:data:`density_registry`; they are used
to validate the sampler.

.. [1] Lepage, G. P. 1978, J. Comput. Phys. 27, 192
"""
from abc import ABC, abstractmethod
import numpy as np
from numpy.typing import NDArray
from scipy.special import erf

from cellfoam._types import DensityFunction, Point, PointBatch
from cellfoam.utilities.types import Registry

density_registry: Registry = Registry()
""":py:class:`~cellfoam.utilities.types.Registry`: Analytic densities on the unit hypercube.

Every registered function takes an array of points of shape ``(m, ndim)`` followed by keyword parameters
and returns the ``(m,)`` densities. The registry metadata records the integral over the unit hypercube
(``integral``), as a function of the dimension and parameters where it depends on them.
"""


class FoamDensity(ABC):
    """Abstract density sampled by a :py:class:`~cellfoam.foam.Foam`.

    Subclasses implement :py:meth:`density`; they may override :py:meth:`batch_density` with a vectorized
    evaluation, which the foam uses while exploring cells.
    """

    @abstractmethod
    def density(self, ndim: int, point: Point) -> float:
        """The density at ``point``, an array of ``ndim`` coordinates in ``[0, 1]``.

        The returned value must be non-negative and finite; the function must not have side effects.
        """
        pass

    def batch_density(self, points: PointBatch) -> NDArray[np.float64]:
        """The density at every row of ``points`` (shape ``(m, ndim)``)."""
        ndim = points.shape[1]
        return np.fromiter((self.density(ndim, p) for p in points), dtype=np.float64, count=points.shape[0])

    def __call__(self, point: Point) -> float:
        point = np.asarray(point, dtype=np.float64)
        return self.density(point.size, point)


class FunctionDensity(FoamDensity):
    """Adapts a plain callable to the :py:class:`FoamDensity` interface.

    Parameters
    ----------
    function: callable
        The density. If ``vectorized`` is ``False`` it is called with one point (shape ``(ndim,)``) at a time
        and must return a float; otherwise it is called with a batch (shape ``(m, ndim)``) and must return an
        array of ``m`` values.
    ndim: int
        The dimension of the domain.
    vectorized: bool
        Whether ``function`` accepts batches of points.
    """

    def __init__(self, function: DensityFunction, ndim: int, vectorized: bool = False):
        self.function = function
        self.ndim = ndim
        self.vectorized = vectorized

    def __repr__(self):
        return f"<FunctionDensity {getattr(self.function, '__name__', self.function)} ndim={self.ndim}>"

    def density(self, ndim: int, point: Point) -> float:
        if self.vectorized:
            return float(np.asarray(self.function(point[np.newaxis, :])).reshape(-1)[0])
        return float(self.function(point))

    def batch_density(self, points: PointBatch) -> NDArray[np.float64]:
        if self.vectorized:
            return np.asarray(self.function(points), dtype=np.float64).reshape(points.shape[0])
        return super().batch_density(points)

    @classmethod
    def from_registry(cls, name: str, ndim: int, **parameters) -> "FunctionDensity":
        """Build a vectorized density from an entry of :py:data:`density_registry`."""
        if name not in density_registry:
            raise KeyError(f"{name} is not a registered density. Options are {list(density_registry.keys())}.")
        function = density_registry[name]

        def _density(x):
            return function(x, **parameters)

        _density.__name__ = name
        return cls(_density, ndim, vectorized=True)


def registered_integral(name: str, ndim: int, **parameters) -> float:
    """The exact integral over the unit hypercube of a registered density."""
    integral = density_registry.meta[name].integral
    if callable(integral):
        return integral(ndim, **parameters)
    return integral


@density_registry.autoregister(integral=1.0)
def uniform(x: PointBatch) -> NDArray[np.float64]:
    """Constant unit density."""
    return np.ones(x.shape[0])


@density_registry.autoregister(integral=0.0)
def zero(x: PointBatch) -> NDArray[np.float64]:
    """Identically vanishing density; a foam cannot be grown from it."""
    return np.zeros(x.shape[0])


def _gauss_integral(ndim, alpha=0.2, center=0.5):
    center = np.broadcast_to(np.asarray(center, dtype=np.float64), (ndim,))
    return float(np.prod(0.5 * (erf((1 - center) / alpha) + erf(center / alpha))))


@density_registry.autoregister(integral=_gauss_integral)
def gauss(x: PointBatch, alpha: float = 0.2, center: float | NDArray = 0.5) -> NDArray[np.float64]:
    """Normalized gaussian bump of width ``alpha`` (eq. 8 of the VEGAS paper), truncated to the unit cube."""
    ndim = x.shape[1]
    pre = 1.0 / (alpha * np.sqrt(np.pi)) ** ndim
    exponent = -1.0 * np.sum(((x - center) ** 2) / alpha**2, axis=-1)
    return pre * np.exp(exponent)


def _camel_integral(ndim, alpha=0.2):
    return 0.5 * (_gauss_integral(ndim, alpha, 1.0 / 3.0) + _gauss_integral(ndim, alpha, 2.0 / 3.0))


@density_registry.autoregister(integral=_camel_integral)
def camel(x: PointBatch, alpha: float = 0.2) -> NDArray[np.float64]:
    """Two gaussian bumps on the diagonal (eq. 9 of the VEGAS paper)."""
    return 0.5 * (gauss(x, alpha, 1.0 / 3.0) + gauss(x, alpha, 2.0 / 3.0))


def _peak_integral(ndim, alpha=0.07, center=0.3):
    return _gauss_integral(ndim, alpha, center)


@density_registry.autoregister(integral=_peak_integral)
def peak(x: PointBatch, alpha: float = 0.07, center: float | NDArray = 0.3) -> NDArray[np.float64]:
    """A sharp, off-center gaussian peak."""
    return gauss(x, alpha, center)
