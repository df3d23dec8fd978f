"""Pytest configuration module for the `cellfoam` package.

Provides the shared fixtures of the test suite:

- ``rng``: a freshly seeded :py:class:`numpy.random.Generator` for every test.
- ``gauss_2d``: a vectorized 2D gaussian bump from the density registry.
- ``grown_foam``: a small 2D hypercube foam grown once per module.

Progress bars are disabled so that the growth output does not interfere with the pytest capture.
"""
import numpy as np
import pytest

from cellfoam.density import FunctionDensity
from cellfoam.foam import Foam
from cellfoam.utilities.config import fmparams

# Disable progress bars during tests to improve compatibility with CI runners.
fmparams.config.system.preferences.disable_progress_bars = True


@pytest.fixture()
def rng():
    """A seeded random generator."""
    return np.random.default_rng(20240611)


@pytest.fixture(scope="module")
def gauss_2d():
    """A 2D gaussian bump of width 0.2 centered in the unit square."""
    return FunctionDensity.from_registry("gauss", 2, alpha=0.2)


@pytest.fixture(scope="module")
def grown_foam(gauss_2d):
    """A 2D hypercube foam of 301 cells grown from ``gauss_2d``."""
    return Foam(gauss_2d, k_dim=2, cell_budget=301, random=1234).initialize()
