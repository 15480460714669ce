"""
Training set generation.

This module handles:
- Seeding of the random source (serial vs parallel rules)
- Random (uniform or log-uniform) sampling of a parameter space
- Deterministic 1D grids and 2D tensor-product grids
- Snapping discrete parameters to their allowed values

All generators fill a TrainingSet in place and are collective over its
communicator.

Author: Anthony Poole
"""

import logging
import math
import time
import numpy as np
from typing import Dict, Optional

from .errors import ConfigurationError, FormatError
from .mpi_utils import broadcast
from .parameters import ParameterSet, ParameterSpace, get_closest_value
from .training_set import TrainingSet


logger = logging.getLogger(__name__)

# Keeps log10 of the grid end points away from exact zeros and rounding
LOG_GRID_EPSILON = 1.0e-6


# =============================================================================
# RANDOM SOURCE
# =============================================================================

def make_random_source(comm, seed: Optional[int], serial: bool) -> np.random.Generator:
    """
    Build the random generator used for sampling.

    Parameters
    ----------
    comm : MPI.Comm
        Communicator of the training set.
    seed : int or None
        User seed. If None, the wall-clock time is used.
    serial : bool
        If True every rank gets the same seed, so replicas are identical.
        Otherwise the seed is multiplied by (1 + rank) so ranks draw
        different samples.

    Returns
    -------
    np.random.Generator
    """
    rank = comm.Get_rank()

    if seed is None or seed < 0:
        if serial:
            # Rank 0's clock decides, so that all ranks agree
            seed = broadcast(comm, int(time.time()) if rank == 0 else None, root=0)
        else:
            seed = int(time.time())

    if not serial:
        seed = seed * (1 + rank)

    return np.random.default_rng(seed)


# =============================================================================
# RANDOM GENERATION
# =============================================================================

def generate_training_parameters_random(
    training_set: TrainingSet,
    mu_min: ParameterSet,
    mu_max: ParameterSet,
    n_samples: int,
    log_scale: Dict[str, bool],
    rng: np.random.Generator,
    serial: bool = False,
):
    """
    Fill ``training_set`` with independent random samples.

    Each parameter is drawn independently for each owned sample: linearly
    in [min, max), or log-uniformly when ``log_scale[name]`` is set.
    Parameters are drawn in key order, one block of owned samples at a time.
    """
    if mu_min.names() != mu_max.names():
        raise ConfigurationError("min and max parameters have different names")

    names = mu_min.names()
    if not names:
        training_set.allocate([], 0, serial)
        return

    training_set.allocate(names, n_samples, serial)
    n_local = training_set.partition_unchecked().n_local

    for name in names:
        p_min = mu_min[name]
        p_max = mu_max[name]
        u = rng.random(n_local)

        if log_scale.get(name, False):
            log_min = math.log10(p_min)
            log_range = math.log10(p_max / p_min)
            values = np.power(10.0, log_min + u * log_range)
        else:
            values = p_min + u * (p_max - p_min)

        training_set.set_local_values(name, values)


# =============================================================================
# DETERMINISTIC GENERATION
# =============================================================================

def uniform_grid(p_min: float, p_max: float, n_points: int, use_log: bool) -> np.ndarray:
    """
    Evenly spaced points from ``p_min`` to ``p_max``.

    With log scaling the points are evenly spaced in log10, starting at
    p_min + eps and stepping towards p_max - eps. The last point is always
    set to ``p_max`` exactly (a single log point is ``p_max``, a single
    linear point is ``p_min``).
    """
    index = np.arange(n_points, dtype=np.float64)
    n_intervals = max(1, n_points - 1)

    if use_log:
        log_min = math.log10(p_min + LOG_GRID_EPSILON)
        log_range = math.log10((p_max - LOG_GRID_EPSILON) / (p_min + LOG_GRID_EPSILON))
        step = log_range / n_intervals
        grid = np.power(10.0, log_min + index * step)
        if n_points > 0:
            grid[-1] = p_max
    else:
        step = (p_max - p_min) / n_intervals
        grid = p_min + index * step
        if n_points > 1:
            grid[-1] = p_max

    return grid


def generate_training_parameters_deterministic(
    training_set: TrainingSet,
    mu_min: ParameterSet,
    mu_max: ParameterSet,
    n_samples: int,
    log_scale: Dict[str, bool],
    serial: bool = False,
):
    """
    Fill ``training_set`` with a uniform grid.

    One parameter gives a grid of ``n_samples`` points. Two parameters give
    the tensor product of two grids of sqrt(n_samples) points each, with
    flat index ``i1 * n + i2`` holding (grid_0[i1], grid_1[i2]).

    Raises
    ------
    NotImplementedError
        For more than two parameters.
    FormatError
        If two parameters are used and ``n_samples`` is not a perfect square.
    """
    if mu_min.names() != mu_max.names():
        raise ConfigurationError("min and max parameters have different names")

    names = mu_min.names()
    n_params = len(names)

    if n_params == 0:
        training_set.allocate([], 0, serial)
        return

    if n_params > 2:
        raise NotImplementedError(
            "Deterministic training sample generation not implemented for more than two parameters"
        )

    if n_params == 2:
        n_per_param = math.isqrt(n_samples)
        if n_per_param * n_per_param != n_samples:
            raise FormatError(
                f"Number of training parameters = {n_samples}. Deterministic training set "
                "generation with two parameters requires the number of training parameters "
                "to be a perfect square."
            )

    training_set.allocate(names, n_samples, serial)
    partition = training_set.partition_unchecked()
    owned = np.arange(partition.first, partition.last)

    if n_params == 1:
        name = names[0]
        grid = uniform_grid(mu_min[name], mu_max[name], n_samples, log_scale.get(name, False))
        training_set.set_local_values(name, grid[owned])
        return

    grids = [
        uniform_grid(mu_min[name], mu_max[name], n_per_param, log_scale.get(name, False))
        for name in names
    ]
    index_0, index_1 = np.divmod(owned, n_per_param)
    training_set.set_local_values(names[0], grids[0][index_0])
    training_set.set_local_values(names[1], grids[1][index_1])


# =============================================================================
# DISCRETE PARAMETERS
# =============================================================================

def snap_discrete_parameters(training_set: TrainingSet, space: ParameterSpace):
    """Replace owned samples of discrete parameters with their nearest allowed value."""
    for name in training_set.names():
        if not space.is_discrete_parameter(name):
            continue
        allowed = space.discrete_values[name]
        values = training_set.local_values(name)
        snapped = np.array([get_closest_value(v, allowed) for v in values])
        training_set.set_local_values(name, snapped)


# =============================================================================
# ENTRY POINT
# =============================================================================

def initialize_training_parameters(
    training_set: TrainingSet,
    space: ParameterSpace,
    n_samples: int,
    deterministic: bool = False,
    serial: bool = False,
    seed: Optional[int] = None,
    quiet: bool = True,
) -> TrainingSet:
    """
    Generate the training set for ``space`` and snap discrete parameters.

    Parameters
    ----------
    training_set : TrainingSet
        Store to fill; previous contents are replaced.
    space : ParameterSpace
        Bounds, log scaling and discrete values.
    n_samples : int
        Requested global number of samples.
    deterministic : bool
        Grid instead of random sampling.
    serial : bool
        Replicate the whole set on every rank.
    seed : int, optional
        Random seed (random sampling only).
    quiet : bool
        Suppress the summary on rank 0.

    Returns
    -------
    TrainingSet
        The filled store.
    """
    if n_samples < 0:
        raise ConfigurationError(f"Number of training samples must be non-negative, got {n_samples}")

    if not quiet and training_set.comm.Get_rank() == 0:
        kind = "deterministic" if deterministic else "random"
        logger.info(f"Initializing training parameters with {kind} training set...")
        for name in space.names():
            logger.info(f"  Parameter {name}: log scaling = {space.log_scale[name]}")

    if deterministic:
        generate_training_parameters_deterministic(
            training_set, space.mu_min, space.mu_max, n_samples, space.log_scale, serial,
        )
    else:
        rng = make_random_source(training_set.comm, seed, serial)
        generate_training_parameters_random(
            training_set, space.mu_min, space.mu_max, n_samples, space.log_scale, rng, serial,
        )

    training_set.mark_initialized()

    if space.n_discrete_params() > 0:
        snap_discrete_parameters(training_set, space)

    return training_set
