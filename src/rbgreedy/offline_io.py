"""
Offline data persistence for greedy training.

Training state is split in two scopes so a run can be restarted:
- basis independent: parameter space and the full training set
- basis dependent: greedy parameters, error bound history, basis size

Rank 0 writes everything to ``<directory>/offline_data.h5``. Basis vectors
themselves belong to the model; if it provides ``write_offline_data`` /
``read_offline_data`` they are called with the same scope on every rank.

Author: Anthony Poole
"""

import os
import logging
import h5py
import numpy as np
from enum import Enum

from .errors import ConfigurationError
from .parameters import ParameterSet
from .training_set import SERIAL


logger = logging.getLogger(__name__)

OFFLINE_DATA_FILE = "offline_data.h5"


class OfflineDataScope(Enum):
    ALL = "all"
    BASIS_DEPENDENT = "basis_dependent"
    BASIS_INDEPENDENT = "basis_independent"

    def includes_basis_dependent(self) -> bool:
        return self in (OfflineDataScope.ALL, OfflineDataScope.BASIS_DEPENDENT)

    def includes_basis_independent(self) -> bool:
        return self in (OfflineDataScope.ALL, OfflineDataScope.BASIS_INDEPENDENT)


class OfflineDataIO:
    """
    Reads and writes the training engine's own offline data.

    Parameters
    ----------
    comm : MPI.Comm
        Communicator; both methods are collective.
    space : ParameterSpace
    training_set : TrainingSet
    state : GreedyState
    basis_io : object, optional
        External collaborator persisting basis data.
    """

    def __init__(self, comm, space, training_set, state, basis_io=None):
        self.comm = comm
        self.space = space
        self.training_set = training_set
        self.state = state
        self.basis_io = basis_io

    def write_offline_data(self, directory: str, scope: OfflineDataScope = OfflineDataScope.ALL):
        rank = self.comm.Get_rank()

        full_set = None
        if scope.includes_basis_independent():
            # Collective: every rank contributes its samples
            full_set = self.training_set.gather(root=0)

        if rank == 0:
            os.makedirs(directory, exist_ok=True)
            filepath = os.path.join(directory, OFFLINE_DATA_FILE)
            with h5py.File(filepath, "a") as f:
                if scope.includes_basis_independent():
                    self._write_parameter_space(f)
                    self._write_training_set(f, full_set)
                if scope.includes_basis_dependent():
                    self._write_greedy_state(f)
            logger.debug(f"Wrote {scope.value} offline data to {filepath}")

        if self.basis_io is not None:
            self.basis_io.write_offline_data(directory, scope)

        self.comm.Barrier()

    def read_offline_data(self, directory: str, scope: OfflineDataScope = OfflineDataScope.ALL):
        filepath = os.path.join(directory, OFFLINE_DATA_FILE)
        if not os.path.exists(filepath):
            raise ConfigurationError(f"Offline data file not found: {filepath}")

        with h5py.File(filepath, "r") as f:
            if scope.includes_basis_independent():
                self._read_training_set(f)
            if scope.includes_basis_dependent():
                self._read_greedy_state(f)

        if self.basis_io is not None:
            self.basis_io.read_offline_data(directory, scope)

    # -------------------------------------------------------------------------
    # Writers (rank 0)
    # -------------------------------------------------------------------------

    def _write_parameter_space(self, f):
        _replace_group(f, "parameter_space")
        grp = f.create_group("parameter_space")
        names = self.space.names()
        grp.attrs["names"] = names
        grp.create_dataset("mu_min", data=self.space.mu_min.to_vector())
        grp.create_dataset("mu_max", data=self.space.mu_max.to_vector())
        grp.create_dataset("log_scale", data=np.array([self.space.log_scale[n] for n in names]))
        discrete = grp.create_group("discrete_values")
        for name, values in self.space.discrete_values.items():
            discrete.create_dataset(name, data=np.asarray(values))

    def _write_training_set(self, f, full_set):
        _replace_group(f, "training_set")
        grp = f.create_group("training_set")
        grp.attrs["mode"] = self.training_set.partition.mode
        grp.attrs["n_samples"] = self.training_set.n_samples()
        for name, values in full_set.items():
            grp.create_dataset(name, data=values)

    def _write_greedy_state(self, f):
        _replace_group(f, "greedy")
        grp = f.create_group("greedy")
        names = self.space.names()
        grp.attrs["names"] = names
        grp.attrs["n_basis"] = self.state.n_basis
        grp.attrs["initial_error"] = (
            np.nan if self.state.initial_error is None else self.state.initial_error
        )
        params = np.zeros((len(self.state.greedy_params), len(names)))
        for i, p in enumerate(self.state.greedy_params):
            params[i, :] = p.to_vector()
        grp.create_dataset("greedy_params", data=params)
        grp.create_dataset("error_history", data=np.asarray(self.state.error_history, dtype=np.float64))

    # -------------------------------------------------------------------------
    # Readers (all ranks)
    # -------------------------------------------------------------------------

    def _read_training_set(self, f):
        if "training_set" not in f:
            raise ConfigurationError("Offline data contains no training set")
        grp = f["training_set"]
        names = sorted(grp.keys())
        if names != self.space.names():
            raise ConfigurationError(
                f"Stored training set parameters {names} do not match {self.space.names()}"
            )
        full_set = {name: grp[name][()] for name in names}
        serial = str(grp.attrs["mode"]) == SERIAL
        self.training_set.assign_global(full_set, serial)

    def _read_greedy_state(self, f):
        if "greedy" not in f:
            raise ConfigurationError("Offline data contains no greedy state")
        grp = f["greedy"]
        names = [str(n) for n in grp.attrs["names"]]
        if names != self.space.names():
            raise ConfigurationError(
                f"Stored greedy parameters {names} do not match {self.space.names()}"
            )

        initial_error = float(grp.attrs["initial_error"])
        self.state.n_basis = int(grp.attrs["n_basis"])
        self.state.initial_error = None if np.isnan(initial_error) else initial_error
        self.state.greedy_params = [
            ParameterSet.from_vector(names, row) for row in grp["greedy_params"][()]
        ]
        self.state.error_history = [float(e) for e in grp["error_history"][()]]


def _replace_group(f, name: str):
    if name in f:
        del f[name]
