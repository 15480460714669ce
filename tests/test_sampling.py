"""
Tests for random and deterministic training set generation.
"""

import numpy as np
import pytest

from rbgreedy.errors import ConfigurationError, FormatError
from rbgreedy.parameters import ParameterSet, ParameterSpace
from rbgreedy.sampling import (
    generate_training_parameters_deterministic,
    initialize_training_parameters,
    make_random_source,
    uniform_grid,
)
from rbgreedy.training_set import TrainingSet


def _full_values(training_set, name):
    """All values of ``name`` (training set must be serial or single rank)."""
    return np.array(training_set.local_values(name))


# =============================================================================
# RANDOM
# =============================================================================

class TestRandomSampling:

    def test_linear_samples_within_bounds(self, comm):
        space = ParameterSpace(
            ParameterSet({"a": -2.0, "b": 3.0}),
            ParameterSet({"a": 5.0, "b": 4.0}),
        )
        ts = initialize_training_parameters(TrainingSet(comm), space, 500, seed=3)

        assert ts.n_samples() == 500
        a = _full_values(ts, "a")
        b = _full_values(ts, "b")
        assert np.all((a >= -2.0) & (a <= 5.0))
        assert np.all((b >= 3.0) & (b <= 4.0))

    def test_log_samples_within_bounds(self, comm, conductivity_space):
        ts = initialize_training_parameters(TrainingSet(comm), conductivity_space, 500, seed=11)
        values = _full_values(ts, "k_left")
        assert np.all((values >= 0.1) & (values <= 10.0))
        # Log-uniform: about half the samples below the geometric midpoint
        assert 0.35 < np.mean(values < 1.0) < 0.65

    def test_same_seed_same_samples(self, comm, unit_space):
        ts1 = initialize_training_parameters(TrainingSet(comm), unit_space, 20, seed=5)
        ts2 = initialize_training_parameters(TrainingSet(comm), unit_space, 20, seed=5)
        np.testing.assert_array_equal(_full_values(ts1, "x"), _full_values(ts2, "x"))

    def test_serial_replicas_agree_without_seed(self, ranks, unit_space):
        def fn(comm):
            ts = initialize_training_parameters(TrainingSet(comm), unit_space, 15, serial=True)
            return ts.first_local_index(), _full_values(ts, "x")

        results = ranks(3, fn)
        for first, values in results:
            assert first == 0
            np.testing.assert_array_equal(values, results[0][1])

    def test_parallel_seed_differs_per_rank(self, ranks):
        def fn(comm):
            return make_random_source(comm, 7, serial=False).random(4)

        results = ranks(2, fn)
        assert not np.array_equal(results[0], results[1])

    def test_parallel_samples_partitioned(self, ranks, unit_space):
        def fn(comm):
            ts = initialize_training_parameters(TrainingSet(comm), unit_space, 10, seed=1)
            return ts.n_samples(), ts.first_local_index(), ts.last_local_index()

        assert ranks(3, fn) == [(10, 0, 4), (10, 4, 7), (10, 7, 10)]

    def test_serial_and_parallel_report_same_size(self, ranks, unit_space):
        def fn(comm):
            serial = initialize_training_parameters(TrainingSet(comm), unit_space, 13, serial=True, seed=2)
            parallel = initialize_training_parameters(TrainingSet(comm), unit_space, 13, serial=False, seed=2)
            return serial.n_samples(), parallel.n_samples()

        for n_serial, n_parallel in ranks(4, fn):
            assert n_serial == n_parallel == 13

    def test_no_parameters_gives_empty_set(self, comm):
        space = ParameterSpace(ParameterSet(), ParameterSet())
        ts = initialize_training_parameters(TrainingSet(comm), space, 10, seed=1)
        assert ts.n_samples() == 0
        assert ts.names() == []


# =============================================================================
# DETERMINISTIC
# =============================================================================

class TestUniformGrid:

    def test_linear_grid(self):
        np.testing.assert_allclose(uniform_grid(1.0, 10.0, 5, False), [1.0, 3.25, 5.5, 7.75, 10.0])

    def test_log_grid_ends_exactly_at_max(self):
        grid = uniform_grid(0.01, 100.0, 7, True)
        assert grid[-1] == 100.0
        assert grid[0] == pytest.approx(0.01 + 1e-6)
        np.testing.assert_allclose(np.diff(np.log10(grid[:-1])), np.log10(grid[1]) - np.log10(grid[0]))

    def test_single_point(self):
        assert uniform_grid(2.0, 3.0, 1, False).tolist() == [2.0]
        assert uniform_grid(2.0, 3.0, 1, True).tolist() == [3.0]


class TestDeterministicSampling:

    def test_one_parameter_grid(self, comm):
        space = ParameterSpace(ParameterSet({"mu": 1.0}), ParameterSet({"mu": 10.0}))
        ts = initialize_training_parameters(TrainingSet(comm), space, 5, deterministic=True)
        values = _full_values(ts, "mu")
        np.testing.assert_allclose(values, [1.0, 3.25, 5.5, 7.75, 10.0])
        assert values[-1] == 10.0

    def test_one_parameter_grid_split_across_ranks(self, ranks):
        space = ParameterSpace(ParameterSet({"mu": 1.0}), ParameterSet({"mu": 10.0}))

        def fn(comm):
            ts = initialize_training_parameters(TrainingSet(comm), space, 5, deterministic=True)
            return list(_full_values(ts, "mu"))

        pieces = ranks(2, fn)
        assert pieces[0] == pytest.approx([1.0, 3.25, 5.5])
        assert pieces[1] == pytest.approx([7.75, 10.0])

    def test_two_parameters_requires_square(self, comm):
        space = ParameterSpace(ParameterSet({"a": 0.0, "b": 0.0}), ParameterSet({"a": 1.0, "b": 1.0}))
        with pytest.raises(FormatError):
            initialize_training_parameters(TrainingSet(comm), space, 10, deterministic=True)

    def test_two_parameter_tensor_grid(self, comm):
        space = ParameterSpace(ParameterSet({"a": 0.0, "b": 10.0}), ParameterSet({"a": 1.0, "b": 20.0}))
        ts = initialize_training_parameters(TrainingSet(comm), space, 9, deterministic=True)

        a = _full_values(ts, "a")
        b = _full_values(ts, "b")
        np.testing.assert_allclose(a, [0.0, 0.0, 0.0, 0.5, 0.5, 0.5, 1.0, 1.0, 1.0])
        np.testing.assert_allclose(b, [10.0, 15.0, 20.0] * 3)

    def test_two_parameter_grid_across_ranks(self, ranks):
        space = ParameterSpace(ParameterSet({"a": 0.0, "b": 10.0}), ParameterSet({"a": 1.0, "b": 20.0}))

        def fn(comm):
            ts = initialize_training_parameters(TrainingSet(comm), space, 9, deterministic=True)
            return [ts.params_at(i).to_vector().tolist()
                    for i in range(ts.first_local_index(), ts.last_local_index())]

        points = [p for chunk in ranks(4, fn) for p in chunk]
        expected = [[a, b] for a in (0.0, 0.5, 1.0) for b in (10.0, 15.0, 20.0)]
        assert points == pytest.approx(expected)

    def test_more_than_two_parameters_not_implemented(self, comm):
        names = {"a": 0.0, "b": 0.0, "c": 0.0}
        space = ParameterSpace(ParameterSet(names), ParameterSet({k: 1.0 for k in names}))
        with pytest.raises(NotImplementedError):
            initialize_training_parameters(TrainingSet(comm), space, 8, deterministic=True)

    def test_regenerating_replaces_values(self, comm, unit_space):
        ts = TrainingSet(comm)
        initialize_training_parameters(ts, unit_space, 4, deterministic=True)
        initialize_training_parameters(ts, unit_space, 3, deterministic=True)
        assert ts.names() == ["x"]
        np.testing.assert_allclose(_full_values(ts, "x"), [0.0, 0.5, 1.0])

    def test_mismatched_bounds(self, comm):
        with pytest.raises(ConfigurationError):
            generate_training_parameters_deterministic(
                TrainingSet(comm), ParameterSet({"a": 0.0}), ParameterSet({"b": 1.0}), 4, {},
            )


# =============================================================================
# DISCRETE SNAPPING
# =============================================================================

class TestDiscreteSnapping:

    def test_samples_snap_to_nearest_allowed_value(self, ranks):
        allowed = [1.0, 2.5, 4.0]
        space = ParameterSpace(
            ParameterSet({"n": 1.0, "x": 0.0}),
            ParameterSet({"n": 4.0, "x": 1.0}),
            discrete_values={"n": allowed},
        )

        def fn(comm):
            ts = initialize_training_parameters(TrainingSet(comm), space, 40, seed=9)
            return _full_values(ts, "n"), _full_values(ts, "x")

        for n_values, x_values in ranks(3, fn):
            assert set(n_values.tolist()) <= set(allowed)
            # Continuous parameters are left alone
            assert len(set(x_values.tolist())) == len(x_values)

    def test_deterministic_grid_snaps(self, comm):
        space = ParameterSpace(
            ParameterSet({"n": 0.0}),
            ParameterSet({"n": 10.0}),
            discrete_values={"n": [0.0, 4.0, 10.0]},
        )
        ts = initialize_training_parameters(TrainingSet(comm), space, 6, deterministic=True)
        # Grid 0, 2, 4, 6, 8, 10; 2 is equidistant and snaps to the first candidate
        np.testing.assert_array_equal(_full_values(ts, "n"), [0.0, 0.0, 4.0, 4.0, 10.0, 10.0])
