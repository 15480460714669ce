"""
MPI communication utilities.

Provides the collective operations used by the training engine:
- Index distribution across ranks
- Sum / max reductions and exclusive prefix sums
- Global argmax (max-with-location followed by a broadcast of the winner)
- Broadcast of a ParameterSet from one rank to the whole group

Every function here is a collective call: all ranks of ``comm`` must call it,
in the same order, or the group deadlocks.

Author: Anthony Poole
"""

import numpy as np
from mpi4py import MPI
from typing import Tuple

from .errors import ConfigurationError
from .parameters import ParameterSet


def get_comm(comm=None):
    """Return ``comm``, or ``MPI.COMM_WORLD`` if none is given."""
    return MPI.COMM_WORLD if comm is None else comm


def distribute_indices(rank: int, n_total: int, size: int) -> tuple:
    """
    Distribute indices across MPI ranks.

    The first ``n_total % size`` ranks get one extra item, so local sizes
    differ by at most one and the ranges tile [0, n_total) in rank order.

    Args:
        rank: Current MPI rank
        n_total: Total number of items to distribute
        size: Number of MPI ranks

    Returns:
        Tuple of (start_idx, end_idx, n_local)
    """
    quotient = n_total // size
    remainder = n_total % size

    if rank < remainder:
        n_local = quotient + 1
        start = rank * n_local
    else:
        n_local = quotient
        start = rank * quotient + remainder

    return start, start + n_local, n_local


# =============================================================================
# PLAIN REDUCTIONS
# =============================================================================

def allreduce_sum(comm, value):
    """Sum of ``value`` over all ranks."""
    return comm.allreduce(value, op=MPI.SUM)


def allreduce_max(comm, value):
    """Maximum of ``value`` over all ranks."""
    return comm.allreduce(value, op=MPI.MAX)


def exclusive_scan_sum(comm, value: int) -> int:
    """Sum of ``value`` over all lower ranks (0 on rank 0)."""
    result = comm.exscan(value, op=MPI.SUM)
    if comm.Get_rank() == 0 or result is None:
        return 0
    return result


def broadcast(comm, data, root: int = 0):
    """Broadcast a picklable object from ``root`` to every rank."""
    return comm.bcast(data, root=root)


def gather_to_root(comm, local_data, root: int = 0):
    """
    Gather arrays from all ranks to root.

    Args:
        comm: MPI communicator
        local_data: Local numpy array
        root: Root rank to gather to

    Returns:
        Concatenated array on root, None on other ranks
    """
    rank = comm.Get_rank()
    gathered = comm.gather(local_data, root=root)

    if rank == root:
        return np.concatenate(gathered)
    return None


# =============================================================================
# SELECTION PROTOCOL
# =============================================================================

def global_max_error_pair(comm, index: int, value: float) -> Tuple[int, float]:
    """
    Find the largest ``value`` over all ranks and the ``index`` that produced it.

    Every rank contributes its local (index, value) pair. A max-with-location
    reduction yields the global maximum and the rank holding it; that rank
    then broadcasts its index. On return every rank holds the same pair.

    When several ranks hold the same maximal value the owner is whichever
    rank MPI.MAXLOC reports; no further tie-break is applied.

    Parameters
    ----------
    comm : MPI.Comm
        Communicator.
    index : int
        Local index of the local maximum (ignored if it loses).
    value : float
        Local maximum. Ranks without samples should pass ``-inf``.

    Returns
    -------
    tuple
        (global_index, global_value)
    """
    global_value, owner = comm.allreduce((float(value), comm.Get_rank()), op=MPI.MAXLOC)
    global_index = comm.bcast(index, root=owner)
    return global_index, global_value


def broadcast_parameters(comm, params: ParameterSet, root: int = 0) -> ParameterSet:
    """
    Make every rank's parameters equal to those of ``root``.

    The values are flattened in key order, broadcast, and written back into
    each rank's own key set. All ranks must hold the same parameter names.

    Returns
    -------
    ParameterSet
        A new ParameterSet equal, field by field, to the root's.
    """
    if root < 0 or root >= comm.Get_size():
        raise ConfigurationError(f"Invalid broadcast root {root} for {comm.Get_size()} ranks")

    vector = params.to_vector().tolist() if comm.Get_rank() == root else None
    vector = comm.bcast(vector, root=root)

    return ParameterSet.from_vector(params.names(), vector)
