"""
Shared pytest fixtures for test suite.

Provides:
- An in-process communicator that runs each MPI rank in its own thread
- A helper to run a function on several simulated ranks
- A simple model whose error bound is the distance to the chosen snapshots
"""

import copy
import functools
import operator
import os
import sys
import threading
from typing import Callable, List

import numpy as np
import pytest
from mpi4py import MPI

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from rbgreedy.parameters import ParameterSet, ParameterSpace


# =============================================================================
# THREAD-BACKED COMMUNICATOR
# =============================================================================

class _ThreadGroup:
    """State shared by all ranks of one simulated communicator."""

    def __init__(self, size: int, timeout: float = 20.0):
        self.size = size
        self.barrier = threading.Barrier(size, timeout=timeout)
        self.slots = [None] * size


def _reduce(values, op):
    if op is MPI.SUM:
        return functools.reduce(operator.add, values)
    if op is MPI.MAX:
        return max(values)
    if op is MPI.MAXLOC:
        # Largest value, lowest rank on ties (what MPI implementations report)
        return max(values, key=lambda pair: (pair[0], -pair[1]))
    raise NotImplementedError(f"Unsupported reduction: {op}")


class ThreadComm:
    """
    Implements the subset of the mpi4py communicator API used by rbgreedy.

    Each collective deposits the local contribution, waits for every rank,
    reads all contributions and waits again before the slots are reused.
    """

    def __init__(self, group: _ThreadGroup, rank: int):
        self.group = group
        self.rank = rank

    def Get_rank(self) -> int:
        return self.rank

    def Get_size(self) -> int:
        return self.group.size

    def _exchange(self, obj) -> list:
        self.group.slots[self.rank] = obj
        self.group.barrier.wait()
        values = list(self.group.slots)
        self.group.barrier.wait()
        return values

    def allreduce(self, obj, op=MPI.SUM):
        return _reduce(self._exchange(obj), op)

    def exscan(self, obj, op=MPI.SUM):
        values = self._exchange(obj)
        if self.rank == 0:
            return None
        return _reduce(values[:self.rank], op)

    def bcast(self, obj, root=0):
        return copy.deepcopy(self._exchange(obj)[root])

    def gather(self, obj, root=0):
        values = self._exchange(obj)
        return values if self.rank == root else None

    def Barrier(self):
        self._exchange(None)

    def Abort(self, errorcode=1):
        raise RuntimeError(f"Abort({errorcode}) called")


def run_on_ranks(size: int, fn: Callable) -> List:
    """
    Call ``fn(comm)`` on ``size`` simulated ranks and return per-rank results.

    The first exception raised on any rank is re-raised.
    """
    group = _ThreadGroup(size)
    results = [None] * size
    errors = [None] * size

    def worker(rank):
        try:
            results[rank] = fn(ThreadComm(group, rank))
        except BaseException as e:
            errors[rank] = e
            # Release ranks waiting in a collective
            group.barrier.abort()

    threads = [threading.Thread(target=worker, args=(r,)) for r in range(size)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for e in errors:
        if e is not None and not isinstance(e, threading.BrokenBarrierError):
            raise e
    for e in errors:
        if e is not None:
            raise e
    return results


@pytest.fixture
def ranks():
    """Run a function on several simulated MPI ranks."""
    return run_on_ranks


@pytest.fixture
def comm():
    """Single rank communicator."""
    return ThreadComm(_ThreadGroup(1), 0)


# =============================================================================
# PARAMETER SPACES
# =============================================================================

@pytest.fixture
def unit_space():
    """One parameter x in [0, 1]."""
    return ParameterSpace(ParameterSet({"x": 0.0}), ParameterSet({"x": 1.0}))


@pytest.fixture
def conductivity_space():
    """Two log-scaled conductivities in [0.1, 10]."""
    return ParameterSpace(
        ParameterSet({"k_left": 0.1, "k_right": 0.1}),
        ParameterSet({"k_left": 10.0, "k_right": 10.0}),
        log_scale={"k_left": True, "k_right": True},
    )


# =============================================================================
# DISTANCE MODEL
# =============================================================================

class DistanceModel:
    """
    Model whose error bound is the distance to the nearest chosen snapshot.

    With an empty basis the bound is 1 + |params|, so the first pick is the
    point furthest from the origin.
    """

    def __init__(self):
        self.snapshots = []
        self.n_truth_solves = 0

    def truth_solve(self, params):
        self.n_truth_solves += 1
        return params.to_vector(), [float(np.sum(params.to_vector()))]

    def enrich_basis(self, snapshot):
        self.snapshots.append(np.asarray(snapshot))

    def error_bound(self, params, n_basis):
        x = params.to_vector()
        if not self.snapshots:
            return 1.0 + float(np.linalg.norm(x))
        return min(float(np.linalg.norm(x - s)) for s in self.snapshots)


class ConstantModel(DistanceModel):
    """Error bound that never improves, so the greedy repeats its choice."""

    def error_bound(self, params, n_basis):
        return float(params.to_vector()[0])


@pytest.fixture
def distance_model_cls():
    return DistanceModel


@pytest.fixture
def constant_model_cls():
    return ConstantModel
