"""
Tests for the foam engine: build-up invariants, cell selection and generation.
"""
import logging
import shutil
from math import factorial

import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy import stats

from cellfoam._types import DriveStrategy, FoamOptions, FoamState, PeekStrategy, RootMode
from cellfoam.cells import NO_CELL
from cellfoam.density import FunctionDensity, registered_integral
from cellfoam.foam import Foam
from cellfoam.linalg import simplex_volume
from cellfoam.utilities.config import YAMLConfiguration, config_directory, fmparams
from cellfoam.utilities.exceptions import (
    FoamConfigurationError,
    FoamConsistencyError,
    FoamError,
    FoamGeometryError,
    FoamGrowthError,
    FoamIndexError,
)

# Layouts exercised by the invariant tests: (k_dim, n_dim, option overrides).
_layouts = [
    (2, 0, {}),
    (3, 0, {"drive": "variance"}),
    (2, 0, {"peek": "random", "mega_cell": False}),
    (0, 2, {}),
    (1, 2, {"store_vertices": True}),
    (0, 3, {"root": "simplex", "store_vertices": True}),
    (1, 1, {"store_vertices": True, "peek": "random"}),
    (2, 0, {"scan_vertices": True, "inhibit_division": [1]}),
]


def _grow(k_dim, n_dim, budget=121, seed=42, **options):
    density = FunctionDensity.from_registry("gauss", k_dim + n_dim, alpha=0.3)
    return Foam(density, k_dim=k_dim, n_dim=n_dim, cell_budget=budget, random=seed, **options).initialize()


@pytest.fixture(scope="module", params=_layouts, ids=lambda p: f"k{p[0]}-n{p[1]}-{'-'.join(p[2]) or 'default'}")
def foam(request):
    k_dim, n_dim, options = request.param
    return _grow(k_dim, n_dim, **options)


class TestInvariants:
    def test_tree_shape(self, foam):
        cells = foam.cells
        first = 1 if foam._has_container else 0
        splits = int(np.count_nonzero(~cells.status[first : len(cells)]))

        assert len(cells) == foam.root_count + 2 * splits
        assert len(cells) > foam.cell_budget - 2

        for i in range(first, len(cells)):
            d0, d1 = cells.daughters[i]
            if cells.status[i]:
                assert d0 == NO_CELL and d1 == NO_CELL
            else:
                assert d0 != NO_CELL and d1 != NO_CELL
                assert cells.parent[d0] == i and cells.parent[d1] == i

    def test_volume_conservation(self, foam):
        active = foam.cells.active_indices()
        expected = 1.0 / factorial(foam.n_dim) if foam.options.root is RootMode.SIMPLEX else 1.0
        assert foam.cells.volume[active].sum() == pytest.approx(expected, rel=1e-6)

    def test_integral_refinement(self, foam):
        cells = foam.cells
        for i in range(len(cells)):
            d0, d1 = cells.daughters[i]
            if d0 == NO_CELL:
                continue
            assert cells.integral[i] == pytest.approx(cells.integral[d0] + cells.integral[d1], rel=1e-8, abs=1e-14)
            assert cells.drive[i] == pytest.approx(cells.drive[d0] + cells.drive[d1], rel=1e-8, abs=1e-14)

        if foam._has_container:
            roots = np.arange(1, factorial(foam.n_dim) + 1)
            assert cells.integral[0] == pytest.approx(cells.integral[roots].sum())

    def test_integral_estimate(self, foam):
        exact = registered_integral("gauss", foam.total_dimension, alpha=0.3)
        if foam.options.root is RootMode.SIMPLEX:
            # one ordered corner of the cube, symmetric under permutations of the axes
            exact /= factorial(foam.n_dim)
        estimate, _ = foam.integral_estimate()
        assert estimate == pytest.approx(exact, rel=0.05)

    def test_inhibited_axes(self, foam):
        cells = foam.cells
        inactive = np.flatnonzero(~cells.status[: len(cells)])
        for axis in foam.options.inhibit_division:
            assert not np.any(cells.best[inactive] == axis)

    def test_counters(self, foam):
        assert foam.state is FoamState.GROWN
        assert foam.call_count > 0
        assert foam.effective_event_count > 0
        assert foam.primary_integral > 0
        assert foam.active_count == np.count_nonzero(foam.cells.status)


class TestRoots:
    def test_hypercube_roots(self):
        foam = _grow(0, 3, budget=31)
        cells = foam.cells
        assert not cells.status[0]
        assert list(cells.parent[1:7]) == [0] * 6
        # 3! simplices covering the unit cube, each with volume 1/6
        for i in range(1, 7):
            assert simplex_volume(cells[i].vertex_table()) == pytest.approx(1.0 / 6.0)
        assert len(foam.vertices) == 8

    def test_simplex_root(self):
        foam = _grow(0, 2, budget=31, root="simplex")
        assert foam.root_count == 1
        assert_allclose(foam.vertices[[0, 1, 2]], [[0.0, 0.0], [1.0, 0.0], [1.0, 1.0]])

    def test_points_in_domain(self):
        foam = _grow(1, 2, budget=51)
        points, _ = foam.generate_batch(500)
        assert points.shape == (500, 3)
        assert np.all((points >= 0.0) & (points <= 1.0))


class TestRoundTrip:
    @pytest.mark.parametrize("peek", ["max", "random"])
    def test_mega_cell_regions(self, peek):
        lazy = _grow(3, 0, budget=201, seed=7, peek=peek, mega_cell=True)
        stored = _grow(3, 0, budget=201, seed=7, peek=peek, mega_cell=False)

        assert np.array_equal(lazy.cells.best, stored.cells.best)
        for i in range(len(lazy.cells)):
            position, size = lazy.cells[i].get_region()
            stored_position, stored_size = stored.cells[i].get_region()
            assert_allclose(position, stored_position, rtol=1e-10, atol=1e-14)
            assert_allclose(size, stored_size, rtol=1e-10, atol=1e-14)

    def test_stored_vertices(self):
        lazy = _grow(1, 2, budget=101, seed=11, store_vertices=False)
        stored = _grow(1, 2, budget=101, seed=11, store_vertices=True)

        assert np.array_equal(lazy.cells.best, stored.cells.best)
        for i in stored.cells.active_indices():
            assert_allclose(lazy.cells[i].vertex_table(), stored.cells[i].vertex_table(), atol=1e-12)
            assert lazy.cells.volume[i] == pytest.approx(stored.cells.volume[i])


class TestConfiguration:
    def test_small_budget(self):
        foam = Foam(lambda x: 1.0, k_dim=0, n_dim=3, cell_budget=7)
        with pytest.raises(FoamConfigurationError):
            foam.initialize()

    def test_zero_dimension(self):
        with pytest.raises(FoamConfigurationError):
            Foam(lambda x: 1.0, k_dim=0, n_dim=0).initialize()

    def test_lazy_one_dimensional_simplex(self):
        with pytest.raises(FoamConfigurationError):
            Foam(lambda x: 1.0, k_dim=1, n_dim=1, store_vertices=False).initialize()

    @pytest.mark.parametrize("inhibit", [[2], [0, 1]])
    def test_inhibit_division(self, inhibit):
        with pytest.raises(FoamConfigurationError):
            Foam(lambda x: 1.0, k_dim=2, inhibit_division=inhibit).initialize()

    def test_options(self):
        options = FoamOptions(drive="variance", peek="RANDOM", root="simplex")
        assert options.drive is DriveStrategy.VARIANCE
        assert options.peek is PeekStrategy.RANDOM
        assert options.root is RootMode.SIMPLEX

        with pytest.raises(FoamConfigurationError):
            FoamOptions(drive="fastest")
        with pytest.raises(FoamConfigurationError):
            FoamOptions(n_bins=0)
        with pytest.raises(FoamConfigurationError):
            FoamOptions.from_config(colour="blue")
        with pytest.raises(FoamConfigurationError):
            Foam(lambda x: 1.0, k_dim=2, options=options, colour="blue")

    def test_config_defaults_are_enums(self):
        options = FoamOptions.from_config()
        assert options.drive is DriveStrategy.CARVING
        assert options.peek is PeekStrategy.MAX
        assert options.root is RootMode.HYPERCUBE

        assert Foam(lambda x: 1.0, k_dim=2).root_count == 1
        assert Foam(lambda x: 1.0, k_dim=0, n_dim=3).root_count == 7

    def test_save(self, tmp_path):
        path = tmp_path / "config.yaml"
        shutil.copy(config_directory, path)
        configuration = YAMLConfiguration(path)

        FoamOptions(drive="variance", n_bins=12, inhibit_division=1).save(configuration=configuration)
        FoamOptions(n_samples=50).save("tuned", configuration=configuration)
        assert configuration["foam", "drive"] == "variance"

        options = FoamOptions.from_config(configuration=configuration)
        assert options.drive is DriveStrategy.VARIANCE
        assert options.n_bins == 12
        assert options.inhibit_division == [1]

        # a section holds a complete set of options
        tuned = FoamOptions.from_config("tuned", configuration=configuration)
        assert tuned.n_samples == 50
        assert tuned.drive is DriveStrategy.CARVING

        # the packaged defaults are untouched
        assert fmparams["foam", "drive"] == "carving"

    def test_factory_section(self):
        options = FoamOptions.from_config("factory", n_bins=4)
        assert options.rejection is True
        assert options.n_samples == 500
        assert options.n_bins == 4

    def test_zero_density(self):
        with pytest.raises(FoamGrowthError):
            Foam(lambda x: 0.0, k_dim=2, cell_budget=20, random=3).initialize()


class TestConsistency:
    @pytest.fixture()
    def fresh(self):
        return _grow(2, 0, budget=41)

    @staticmethod
    def _messages(foam):
        with pytest.raises(FoamConsistencyError) as excinfo:
            foam.check_all()
        return [str(e) for e in excinfo.value.exceptions]

    def test_sound_tree(self, fresh):
        fresh.check_all()

    def test_one_daughter(self, fresh):
        d1 = fresh.cells.daughters[0, 1]
        fresh.cells.daughters[0, 1] = NO_CELL

        messages = self._messages(fresh)
        assert "Cell 0 has only one daughter." in messages
        assert f"The parent of cell {d1} does not point to it." in messages

    def test_broken_parent_link(self, fresh):
        d0, d1 = fresh.cells.daughters[0]
        fresh.cells.parent[d1] = d0

        messages = self._messages(fresh)
        assert "Daughter 1 of cell 0 does not point to it." in messages
        assert f"The parent of cell {d1} does not point to it." in messages

    def test_active_inner_cell(self, fresh):
        fresh.cells.status[0] = True
        assert "Cell 0 has two daughters and is active." in self._messages(fresh)

    def test_partial_volume_guard(self):
        foam = _grow(0, 2, budget=41)
        table = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0]])
        weights = np.ones(1)

        foam._fill_simplex_projections(table, np.array([[0.8, 0.3]]), weights, 0.5)
        with pytest.raises(FoamGeometryError):
            foam._fill_simplex_projections(table, np.array([[0.8, 0.3]]), weights, 0.25)
        with pytest.raises(FoamGeometryError):
            # outside of the simplex
            foam._fill_simplex_projections(table, np.array([[0.2, 0.7]]), weights, 0.5)

    def test_divide_full_arena(self, fresh):
        index = int(fresh.cells.active_indices()[0])
        assert fresh.cells.last + 2 >= fresh.cells.capacity

        with pytest.raises(FoamIndexError):
            fresh.divide(index)
        assert fresh.cells[index].active


class TestGeneration:
    def test_generate_before_growth(self):
        foam = Foam(lambda x: 1.0, k_dim=2, cell_budget=20)
        with pytest.raises(FoamError):
            foam.generate()
        with pytest.raises(FoamError):
            foam.select_cell()

    def test_build_up_estimate(self, gauss_2d):
        foam = Foam(gauss_2d, k_dim=2, cell_budget=41, random=5).initialize()
        integral, error = foam.integral_estimate()
        assert integral == foam.cells.integral[0]
        assert error == integral
        assert foam.efficiency() == 0.0

    @pytest.mark.parametrize("method", ["interpolation", "binary"])
    def test_proportional_selection(self, grown_foam, method):
        n = 100000
        active = grown_foam.cells.active_indices()
        expected = grown_foam.cells.primary[active] / grown_foam.primary_integral

        picks = np.array([grown_foam.select_cell(method) for _ in range(n)])
        counts = np.array([np.count_nonzero(picks == i) for i in active])
        tolerance = 5 * np.sqrt(expected * (1 - expected) / n) + 1e-4
        assert np.all(np.abs(counts / n - expected) < tolerance)

    def test_unknown_selection(self, grown_foam):
        with pytest.raises(FoamConfigurationError):
            grown_foam.select_cell("psychic")

    def test_convergence(self, gauss_2d):
        foam = Foam(gauss_2d, k_dim=2, cell_budget=301, random=99).initialize()
        exact = registered_integral("gauss", 2, alpha=0.2)

        foam.generate_batch(5000)
        _, error_small = foam.integral_estimate()
        foam.generate_batch(15000)
        estimate, error_large = foam.integral_estimate()

        assert foam.state is FoamState.GENERATING
        assert abs(estimate - exact) < 5 * error_large
        assert 0.4 < error_large / error_small < 0.6
        assert 0.0 < foam.efficiency() <= 1.0
        assert foam.weight_histogram.entries == 20000

    def test_rejection(self, gauss_2d):
        foam = Foam(gauss_2d, k_dim=2, cell_budget=301, random=17, rejection=True).initialize()
        _, weights = foam.generate_batch(2000)
        assert np.all(weights >= 1.0)
        assert np.mean(weights == 1.0) > 0.9

    def test_weight_range(self, gauss_2d):
        foam = Foam(gauss_2d, k_dim=2, cell_budget=101, random=8).initialize()
        assert foam.weight_range == (np.inf, -np.inf)

        lo, hi = foam.exploration_weight_range
        assert 0.0 < lo <= hi

        _, weights = foam.generate_batch(500)
        assert foam.weight_range == (weights.min(), weights.max())

    def test_growth_summary(self, gauss_2d, caplog):
        logger = logging.getLogger("cellfoam-tests")
        with caplog.at_level(logging.INFO, logger=logger.name):
            foam = Foam(gauss_2d, k_dim=2, cell_budget=41, random=6, logger=logger).initialize()

        assert foam.logger is logger
        assert f"Foam grown: 41 cells (21 active), {foam.call_count} density calls" in caplog.text

    def test_uniform_distribution(self):
        foam = Foam(
            FunctionDensity.from_registry("uniform", 2), k_dim=2, cell_budget=1000, random=2024
        ).initialize()
        points, weights = foam.generate_batch(100000)

        assert_allclose(weights, 1.0, rtol=1e-9)
        for axis in range(2):
            assert stats.kstest(points[:, axis], "uniform").pvalue > 0.01


def test_adaptive_refinement():
    """Cells concentrate around a sharp peak: small cells are far more common near it."""
    center, alpha = 0.3, 0.07
    density = FunctionDensity.from_registry("peak", 3, alpha=alpha, center=center)
    foam = Foam(density, k_dim=3, cell_budget=10000, random=314).initialize()

    active = foam.cells.active_indices()
    volumes = foam.cells.volume[active]
    centers = np.array([p + 0.5 * s for p, s in (foam.cells[i].get_region() for i in active)])
    distance = np.linalg.norm(centers - center, axis=1)
    near, far = distance < alpha, distance > 2 * alpha
    small = volumes < np.median(volumes)

    assert np.count_nonzero(near) > 0 and np.count_nonzero(far) > 0
    assert small[near].mean() > 0.6
    assert small[near].mean() > 2 * small[far].mean()
