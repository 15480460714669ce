"""
Distributed training set storage.

A TrainingSet maps each parameter name to the locally owned slice of a
distributed array of samples. All arrays share one Partition:

- "parallel": rank r owns the contiguous range [first, last) given by
  ``distribute_indices``; ranges are disjoint and cover [0, n_global)
- "serial": every rank holds a full replica (first=0, last=n_global)

Samples are only readable on the rank that owns them; there is no implicit
fetch from another rank.

Author: Anthony Poole
"""

import numpy as np
from dataclasses import dataclass
from typing import Dict, List, Optional

from .errors import ConfigurationError, FormatError, RangeError
from .mpi_utils import (
    allreduce_sum,
    distribute_indices,
    exclusive_scan_sum,
    gather_to_root,
)
from .parameters import ParameterSet


SERIAL = "serial"
PARALLEL = "parallel"


# =============================================================================
# PARTITION DESCRIPTOR
# =============================================================================

@dataclass(frozen=True)
class Partition:
    """Which part of a distributed array this rank owns."""
    mode: str           # "serial" or "parallel"
    n_global: int       # Total number of samples
    first: int          # First owned index
    last: int           # One past the last owned index

    @property
    def n_local(self) -> int:
        return self.last - self.first

    def owns(self, index: int) -> bool:
        return self.first <= index < self.last

    @classmethod
    def build(cls, n_global: int, rank: int, size: int, serial: bool) -> "Partition":
        """Partition for ``n_global`` samples on ``rank`` of ``size``."""
        if serial:
            return cls(SERIAL, n_global, 0, n_global)
        first, last, _ = distribute_indices(rank, n_global, size)
        return cls(PARALLEL, n_global, first, last)


# =============================================================================
# TRAINING SET
# =============================================================================

class TrainingSet:
    """
    Per-rank view of the distributed training set.

    Parameters
    ----------
    comm : MPI.Comm
        Communicator the set is distributed over.
    """

    def __init__(self, comm):
        self.comm = comm
        self._arrays: Dict[str, np.ndarray] = {}
        self._partition: Optional[Partition] = None
        self.initialized = False

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    def allocate(self, names: List[str], n_global: int, serial: bool):
        """
        Allocate zeroed local arrays for ``names`` with ``n_global`` samples.

        Any previous contents are discarded.
        """
        self._partition = Partition.build(
            n_global, self.comm.Get_rank(), self.comm.Get_size(), serial
        )
        self._arrays = {
            name: np.zeros(self._partition.n_local, dtype=np.float64)
            for name in sorted(names)
        }

    def set_local_values(self, name: str, values: np.ndarray):
        """Overwrite the owned samples of one parameter."""
        self._require_partition()
        if name not in self._arrays:
            raise ConfigurationError(f"Unknown training parameter '{name}'")
        values = np.asarray(values, dtype=np.float64)
        if values.shape != (self._partition.n_local,):
            raise FormatError(
                f"Expected {self._partition.n_local} local values for '{name}', got {values.shape}"
            )
        self._arrays[name][:] = values

    def mark_initialized(self):
        self._require_partition()
        self.initialized = True

    def load(self, new_training_set: Dict[str, np.ndarray]):
        """
        Replace the whole training set with locally supplied samples.

        Each rank passes its own chunk; the global size is the sum of the
        local sizes and each rank's chunk follows those of lower ranks.
        The key set must match the existing one.

        Parameters
        ----------
        new_training_set : dict
            name -> 1D array of this rank's samples.
        """
        if not self.initialized:
            raise ConfigurationError("load cannot be used to initialize the training set")

        if len(new_training_set) != len(self._arrays):
            raise ConfigurationError(
                f"Incorrect number of parameters in load: expected {len(self._arrays)}, "
                f"got {len(new_training_set)}"
            )
        if sorted(new_training_set) != self.names():
            raise ConfigurationError(
                f"Parameter names in load {sorted(new_training_set)} do not match {self.names()}"
            )

        local_sizes = {len(np.atleast_1d(v)) for v in new_training_set.values()}
        if len(local_sizes) > 1:
            raise FormatError(f"All parameters must have the same number of samples, got {local_sizes}")
        n_local = local_sizes.pop() if local_sizes else 0

        n_global = allreduce_sum(self.comm, n_local)
        first = exclusive_scan_sum(self.comm, n_local)

        self._partition = Partition(PARALLEL, n_global, first, first + n_local)
        self._arrays = {
            name: np.array(np.atleast_1d(new_training_set[name]), dtype=np.float64)
            for name in self.names()
        }

    def assign_global(self, full_set: Dict[str, np.ndarray], serial: bool):
        """
        Initialize from complete arrays held on every rank.

        Each rank keeps the slice its partition owns. Used when reading a
        stored training set back in.
        """
        lengths = {len(values) for values in full_set.values()}
        if len(lengths) > 1:
            raise FormatError(f"All parameters must have the same number of samples, got {lengths}")
        n_global = lengths.pop() if lengths else 0

        self.allocate(list(full_set), n_global, serial)
        for name, values in full_set.items():
            values = np.asarray(values, dtype=np.float64)
            self.set_local_values(name, values[self._partition.first:self._partition.last])
        self.mark_initialized()

    def clear(self):
        self._arrays = {}
        self._partition = None
        self.initialized = False

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    def names(self) -> List[str]:
        return sorted(self._arrays)

    def n_params(self) -> int:
        return len(self._arrays)

    @property
    def partition(self) -> Partition:
        self._require_initialized()
        return self._partition

    def partition_unchecked(self) -> Partition:
        """Partition of an allocated but not yet initialized set."""
        self._require_partition()
        return self._partition

    def n_samples(self) -> int:
        """Global number of training samples (0 for an empty set)."""
        self._require_initialized()
        if not self._arrays:
            return 0
        return self._partition.n_global

    def n_local_samples(self) -> int:
        self._require_initialized()
        return self._partition.n_local

    def first_local_index(self) -> int:
        self._require_initialized()
        return self._partition.first

    def last_local_index(self) -> int:
        self._require_initialized()
        return self._partition.last

    def local_values(self, name: str) -> np.ndarray:
        """Read-only view of this rank's samples of ``name``."""
        self._require_initialized()
        view = self._arrays[name].view()
        view.flags.writeable = False
        return view

    def params_at(self, index: int) -> ParameterSet:
        """
        Parameters of training sample ``index``.

        Raises
        ------
        RangeError
            If ``index`` is not owned by this rank.
        """
        self._require_initialized()
        if not self._partition.owns(index):
            raise RangeError(
                f"Training index {index} outside local range "
                f"[{self._partition.first}, {self._partition.last})"
            )
        local = index - self._partition.first
        return ParameterSet({name: arr[local] for name, arr in self._arrays.items()})

    def gather(self, root: int = 0) -> Optional[Dict[str, np.ndarray]]:
        """
        Collect the full training set on ``root``.

        Returns name -> array of length n_samples() on root, None elsewhere.
        In serial mode the local replica is already complete.
        """
        self._require_initialized()
        if self._partition.mode == SERIAL:
            if self.comm.Get_rank() == root:
                return {name: arr.copy() for name, arr in self._arrays.items()}
            return None

        gathered = {}
        for name in self.names():
            gathered[name] = gather_to_root(self.comm, self._arrays[name], root=root)
        if self.comm.Get_rank() == root:
            return gathered
        return None

    def _require_partition(self):
        if self._partition is None:
            raise ConfigurationError("Training set has not been allocated")

    def _require_initialized(self):
        if not self.initialized:
            raise ConfigurationError("Training parameters are not initialized")
