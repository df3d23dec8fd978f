"""
Tests for the foam geometries.
"""
import numpy as np
import pytest
from unyt import unyt_array, unyt_quantity

from cellfoam.geometries import FoamAxGeometry, FoamBoxGeometry, FoamGeometry
from cellfoam.utilities.exceptions import FoamConfigurationError, FoamGeometryError


class GaussianGeometry(FoamGeometry):
    """Isotropic unit gaussian."""

    def physical_density(self, x, y, z):
        return np.exp(-0.5 * (x**2 + y**2 + z**2)) / (2 * np.pi) ** 1.5


class ExponentialDisk(FoamAxGeometry):
    """Exponential disk with scale length 2 and scale height 0.5."""

    def physical_density(self, R, z):
        h, hz = 2.0, 0.5
        return np.exp(-R / h - np.abs(z) / hz) / (4 * np.pi * h**2 * hz)


@pytest.fixture(scope="module")
def gaussian():
    return GaussianGeometry(2000, xscale=1, yscale=1, zscale=unyt_quantity(1000, "pc"), random=21)


class TestFoamGeometry:
    def test_units(self, gaussian):
        assert gaussian.zscale.units == gaussian.xscale.units
        assert gaussian.zscale.d == pytest.approx(1.0)

    def test_positions(self, gaussian):
        positions = gaussian.generate_positions(5000)
        assert isinstance(positions, unyt_array)
        assert positions.shape == (5000, 3)
        assert str(positions.units) == "kpc"

        assert np.all(np.abs(positions.d.mean(axis=0)) < 0.1)
        assert np.all(np.abs(positions.d.std(axis=0) - 1.0) < 0.1)

        single = gaussian.generate_position()
        assert single.shape == (3,)

    def test_transformed_density(self, gaussian, rng):
        # the transformed density integrates to one over the unit cube
        points = rng.random((200000, 3))
        assert gaussian.batch_density(points).mean() == pytest.approx(1.0, rel=0.05)
        assert gaussian.batch_density(np.array([[0.0, 0.5, 0.5]]))[0] == 0.0

    def test_dimension_check(self, gaussian):
        with pytest.raises(FoamGeometryError):
            gaussian.density(2, np.array([0.5, 0.5]))
        assert gaussian.density(3, np.array([0.5, 0.5, 0.5])) > 0


class TestFoamAxGeometry:
    def test_positions(self):
        disk = ExponentialDisk(200, rscale=2, zscale=(500, "pc"), random=4)
        positions = disk.generate_positions(2000)
        assert positions.shape == (2000, 3)

        R = np.hypot(positions.d[:, 0], positions.d[:, 1])
        assert np.median(np.abs(positions.d[:, 2])) < np.median(R)
        # azimuthal symmetry
        assert abs(np.mean(positions.d[:, 0] > 0) - 0.5) < 0.05

    def test_minimum_cells(self):
        with pytest.raises(FoamConfigurationError):
            ExponentialDisk(50, rscale=1, zscale=1)


class TestFoamBoxGeometry:
    def test_positions_inside(self):
        box = FoamBoxGeometry(
            lambda x, y, z: np.ones_like(x), 1000, -1, 1, 0, 2, (-500, "pc"), (500, "pc"), random=9
        )
        assert box.volume.d == pytest.approx(4.0)

        positions = box.generate_positions(1000)
        assert np.all(positions.d >= box.lower.d) and np.all(positions.d <= box.upper.d)
        assert positions.units == box.lower.units

    @pytest.mark.parametrize("n_cells", [10, 2000000])
    def test_cell_range(self, n_cells):
        with pytest.raises(FoamConfigurationError):
            FoamBoxGeometry(lambda x, y, z: x, n_cells, 0, 1, 0, 1, 0, 1)

    def test_empty_box(self):
        with pytest.raises(FoamConfigurationError):
            FoamBoxGeometry(lambda x, y, z: x, 1000, 0, 1, 1, 1, 0, 1)
