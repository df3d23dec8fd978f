"""
Foam Types Module
=================

Enumerations, option containers and type aliases shared by the :py:mod:`cellfoam` modules.

The foam engine supports two strategies for choosing the split edge of a cell (:py:class:`DriveStrategy`),
two policies for choosing the next cell to split (:py:class:`PeekStrategy`) and two decompositions of
the simplex subspace at the root (:py:class:`RootMode`). Each is resolved once, when the options are
built, and never changes during the life of a foam.
"""
from enum import Enum
from math import factorial
from typing import Any, Callable

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cellfoam.utilities.config import YAMLConfiguration, fmparams
from cellfoam.utilities.exceptions import FoamConfigurationError
from cellfoam.utilities.types import ensure_list

Point = NDArray[np.float64]
"""Alias for a single point of the foam's unit domain, shape ``(ndim,)``."""

PointBatch = NDArray[np.float64]
"""Alias for a batch of points of the foam's unit domain, shape ``(m, ndim)``."""

DensityFunction = Callable[[NDArray[np.float64]], Any]
"""Alias for a bare callable density accepted by :py:class:`~cellfoam.density.FunctionDensity`."""


class DriveStrategy(Enum):
    """Optimization strategy used to pick the best split edge and to define the driver integral.

    Notes
    -----
    - ``VARIANCE``: minimize the weight dispersion; ``drive = sqrt(<w^2>) - <w>``, ``primary = sqrt(<w^2>)``.
    - ``CARVING``: reduce the maximum weight; ``drive = max(w) - <w>``, ``primary = max(w)``.
    """

    VARIANCE = "variance"
    CARVING = "carving"


class PeekStrategy(Enum):
    """Policy used during growth to choose the next cell to divide."""

    MAX = "max"  # active cell with the largest |drive|
    RANDOM = "random"  # random tree walk weighted by the drive of the daughters


class RootMode(Enum):
    """Decomposition of the simplex subspace at the root of the cell tree."""

    HYPERCUBE = "hypercube"  # unit hypercube split into ndim! simplices below an inactive container
    SIMPLEX = "simplex"  # a single root simplex

    def initial_vertex_count(self, n_dim: int) -> int:
        """Number of vertices created at initialization for a simplex subspace of dimension ``n_dim``."""
        if self is RootMode.HYPERCUBE:
            return 2**n_dim
        return n_dim + 1

    def root_cell_count(self, n_dim: int) -> int:
        """Number of cells (container included) making up the root decomposition."""
        if n_dim == 0 or self is RootMode.SIMPLEX:
            return 1
        return 1 + factorial(n_dim)


class FoamState(Enum):
    """Life cycle of a :py:class:`~cellfoam.foam.Foam`."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"  # roots created and explored
    GROWING = "growing"
    GROWN = "grown"  # active list built, ready to generate
    GENERATING = "generating"


def _default(key, **constraints):
    return Field(default_factory=lambda: fmparams["foam"][key], **constraints)


class FoamOptions(BaseModel):
    """Build-up and generation options of a :py:class:`~cellfoam.foam.Foam`.

    Unspecified options fall back to the ``foam`` section of the configuration file. Options are validated on
    creation and on assignment; invalid values raise :py:class:`~cellfoam.utilities.exceptions.FoamConfigurationError`
    when the options are created.

    Attributes
    ----------
    n_samples: int
        Maximum number of Monte Carlo probes per cell exploration.
    n_bins: int
        Number of bins of each edge histogram.
    events_per_bin: int
        Effective number of events per bin after which an exploration stops early.
    drive: :py:class:`DriveStrategy`
        Edge selection / driver integral strategy.
    peek: :py:class:`PeekStrategy`
        Choice of the next cell to divide.
    root: :py:class:`RootMode`
        Decomposition of the simplex subspace at the root.
    mega_cell: bool
        If ``True``, hyper-rectangles are not stored but rebuilt from the parent chain.
    store_vertices: bool
        If ``True``, a vertex is stored for every simplex split; otherwise simplex coordinates are
        rebuilt from the parent chain (requires a simplex dimension of at least 2).
    rejection: bool
        If ``True``, generation produces unit weight events through rejection.
    max_weight_rejection: float
        The rejection threshold on the normalized weight.
    scan_vertices: bool
        If ``True``, every exploration seeds the weight range with the density at the cell corners.
    inhibit_division: list of int
        Hypercube axes along which cells may never be divided.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True, validate_default=True)

    n_samples: int = _default("n_samples", ge=1)
    n_bins: int = _default("n_bins", ge=1)
    events_per_bin: int = _default("events_per_bin", ge=0)
    drive: DriveStrategy = _default("drive")
    peek: PeekStrategy = _default("peek")
    root: RootMode = _default("root")
    mega_cell: bool = _default("mega_cell")
    store_vertices: bool = _default("store_vertices")
    rejection: bool = _default("rejection")
    max_weight_rejection: float = _default("max_weight_rejection", gt=0)
    scan_vertices: bool = _default("scan_vertices")
    inhibit_division: list[int] = Field(default_factory=list)

    def __init__(self, **data):
        try:
            super().__init__(**data)
        except ValidationError as error:
            raise FoamConfigurationError(f"Invalid foam options:\n{error}") from error

    @field_validator("drive", "peek", "root", mode="before")
    @classmethod
    def lower_case_strategies(cls, value):
        return value.lower() if isinstance(value, str) else value

    @field_validator("inhibit_division", mode="before")
    @classmethod
    def listify_axes(cls, value):
        return ensure_list(value)

    def replace(self, **changes) -> "FoamOptions":
        """A copy of the options with some values changed (and validated)."""
        return self.__class__(**{**self.model_dump(), **changes})

    @classmethod
    def from_config(
        cls, section: str | None = None, configuration: YAMLConfiguration | None = None, **overrides
    ) -> "FoamOptions":
        """Build the options from the configuration file.

        Parameters
        ----------
        section: str, optional
            A sub-section of ``foam`` (e.g. ``"factory"``) whose values override the defaults.
        configuration: :py:class:`~cellfoam.utilities.config.YAMLConfiguration`, optional
            The configuration to read; defaults to :py:data:`~cellfoam.utilities.config.fmparams`.
        **overrides:
            Explicit option values; these take precedence over the configuration.
        """
        values = {}
        if configuration is not None:
            values.update(cls._fields_of(configuration["foam"]))
        else:
            configuration = fmparams
        if section is not None:
            values.update(cls._fields_of(configuration["foam"][section]))
        values.update(overrides)
        return cls(**values)

    @classmethod
    def _fields_of(cls, mapping) -> dict:
        return {k: v for k, v in mapping.items() if k in cls.model_fields}

    def save(self, section: str | None = None, configuration: YAMLConfiguration | None = None):
        """Write the options to the configuration file, making them the new defaults.

        Parameters
        ----------
        section: str, optional
            A sub-section of ``foam`` (e.g. ``"factory"``) to write to instead of the main defaults.
        configuration: :py:class:`~cellfoam.utilities.config.YAMLConfiguration`, optional
            The configuration to write; defaults to :py:data:`~cellfoam.utilities.config.fmparams`.
        """
        configuration = configuration if configuration is not None else fmparams
        prefix = ["foam"] if section is None else ["foam", section]
        configuration.update(prefix, self.model_dump(mode="json"))
