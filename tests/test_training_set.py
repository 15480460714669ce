"""
Tests for training set access, loading and gathering.
"""

import numpy as np
import pytest

from rbgreedy.errors import ConfigurationError, FormatError, RangeError
from rbgreedy.parameters import ParameterSet
from rbgreedy.sampling import initialize_training_parameters
from rbgreedy.training_set import PARALLEL, TrainingSet


class TestUninitialized:

    @pytest.mark.parametrize("accessor", [
        "n_samples", "n_local_samples", "first_local_index", "last_local_index",
    ])
    def test_accessors_fail(self, comm, accessor):
        with pytest.raises(ConfigurationError):
            getattr(TrainingSet(comm), accessor)()

    def test_params_at_fails(self, comm):
        with pytest.raises(ConfigurationError):
            TrainingSet(comm).params_at(0)

    def test_load_cannot_initialize(self, comm):
        with pytest.raises(ConfigurationError):
            TrainingSet(comm).load({"x": np.zeros(3)})


class TestParamsAt:

    def test_returns_all_parameters(self, comm, conductivity_space):
        ts = initialize_training_parameters(TrainingSet(comm), conductivity_space, 4, seed=1)
        params = ts.params_at(2)
        assert isinstance(params, ParameterSet)
        assert params.names() == ["k_left", "k_right"]
        assert params["k_left"] == ts.local_values("k_left")[2]

    def test_index_outside_local_range(self, ranks, unit_space):
        def fn(comm):
            ts = initialize_training_parameters(TrainingSet(comm), unit_space, 6, deterministic=True)
            owned = ts.params_at(ts.first_local_index())
            foreign = 5 if comm.Get_rank() == 0 else 0
            with pytest.raises(RangeError):
                ts.params_at(foreign)
            return owned["x"]

        assert ranks(2, fn) == pytest.approx([0.0, 0.6])

    def test_range_error_is_an_index_error(self, comm, unit_space):
        ts = initialize_training_parameters(TrainingSet(comm), unit_space, 3, deterministic=True)
        with pytest.raises(IndexError):
            ts.params_at(3)

    def test_local_values_are_read_only(self, comm, unit_space):
        ts = initialize_training_parameters(TrainingSet(comm), unit_space, 3, deterministic=True)
        with pytest.raises(ValueError):
            ts.local_values("x")[0] = 5.0


class TestLoad:

    def test_wrong_number_of_parameters(self, comm, conductivity_space):
        ts = initialize_training_parameters(TrainingSet(comm), conductivity_space, 4, seed=1)
        with pytest.raises(ConfigurationError):
            ts.load({"k_left": np.ones(3)})

    def test_wrong_parameter_names(self, comm, conductivity_space):
        ts = initialize_training_parameters(TrainingSet(comm), conductivity_space, 4, seed=1)
        with pytest.raises(ConfigurationError):
            ts.load({"k_left": np.ones(3), "other": np.ones(3)})

    def test_ragged_arrays(self, comm, conductivity_space):
        ts = initialize_training_parameters(TrainingSet(comm), conductivity_space, 4, seed=1)
        with pytest.raises(FormatError):
            ts.load({"k_left": np.ones(3), "k_right": np.ones(2)})

    def test_sizes_recomputed_from_local_chunks(self, ranks, unit_space):
        def fn(comm):
            ts = initialize_training_parameters(TrainingSet(comm), unit_space, 100, serial=True, seed=4)
            rank = comm.Get_rank()
            chunk = np.arange(rank + 1, dtype=float) + 10 * rank
            ts.load({"x": chunk})
            return (
                ts.n_samples(),
                ts.first_local_index(),
                ts.last_local_index(),
                ts.partition.mode,
                ts.params_at(ts.first_local_index())["x"],
            )

        results = ranks(3, fn)
        assert [r[0] for r in results] == [6, 6, 6]
        assert [(r[1], r[2]) for r in results] == [(0, 1), (1, 3), (3, 6)]
        assert all(r[3] == PARALLEL for r in results)
        assert [r[4] for r in results] == [0.0, 10.0, 20.0]


class TestGather:

    def test_gather_parallel_set(self, ranks, unit_space):
        def fn(comm):
            ts = initialize_training_parameters(TrainingSet(comm), unit_space, 7, deterministic=True)
            return ts.gather(root=0)

        results = ranks(3, fn)
        np.testing.assert_allclose(results[0]["x"], np.linspace(0.0, 1.0, 7))
        assert results[1] is None and results[2] is None

    def test_gather_serial_set(self, ranks, unit_space):
        def fn(comm):
            ts = initialize_training_parameters(
                TrainingSet(comm), unit_space, 5, deterministic=True, serial=True,
            )
            return ts.gather(root=1)

        results = ranks(2, fn)
        assert results[0] is None
        np.testing.assert_allclose(results[1]["x"], np.linspace(0.0, 1.0, 5))


def test_clear(comm, unit_space):
    ts = initialize_training_parameters(TrainingSet(comm), unit_space, 3, seed=1)
    ts.clear()
    assert not ts.initialized
    assert ts.names() == []
    with pytest.raises(ConfigurationError):
        ts.n_samples()
