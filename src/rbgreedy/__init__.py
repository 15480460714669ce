"""
Greedy Reduced Basis Training.

This package provides the offline stage of the reduced basis method:
distributed training set generation and the greedy loop that grows a
reduced basis from truth snapshots.

Modules
-------
parameters
    ParameterSet and ParameterSpace.
training_set
    Distributed training set storage with explicit partitioning.
sampling
    Random and deterministic training set generation.
mpi_utils
    Collective operations (reductions, global argmax, parameter broadcast).
greedy
    The greedy training loop.
offline_io
    HDF5 persistence of training state.
models
    Reference affine model (1D thermal block).
train
    Command line entry point.
utils
    Shared utilities for configuration, logging, and file management.

Usage
-----
    mpirun -np 4 python -m rbgreedy.train --config configs/thermal_block.yaml
"""

from .errors import (
    RBGreedyError,
    ConfigurationError,
    FormatError,
    RangeError,
)
from .parameters import ParameterSet, ParameterSpace
from .training_set import Partition, TrainingSet
from .sampling import initialize_training_parameters
from .greedy import GreedyState, GreedyTrainer
from .offline_io import OfflineDataScope
from .utils import (
    load_config,
    save_config,
    TrainerConfig,
    setup_logging,
)

__all__ = [
    'RBGreedyError',
    'ConfigurationError',
    'FormatError',
    'RangeError',
    'ParameterSet',
    'ParameterSpace',
    'Partition',
    'TrainingSet',
    'initialize_training_parameters',
    'GreedyState',
    'GreedyTrainer',
    'OfflineDataScope',
    'load_config',
    'save_config',
    'TrainerConfig',
    'setup_logging',
]
