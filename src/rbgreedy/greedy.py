"""
Greedy reduced basis training.

Each greedy iteration:
1. Evaluates the error bound at every locally owned training sample
2. Selects the worst approximated sample across all ranks (global argmax)
   and broadcasts its parameters
3. Checks the termination criteria
4. Performs a truth solve at the selected parameters and enriches the basis

The model is an injected collaborator and must provide:

    truth_solve(params) -> (solution, outputs)
    error_bound(params, n_basis) -> float
    enrich_basis(solution)

and may provide n_basis_functions() -> int. When it does, the basis
dimension advances by the number of vectors the model actually added;
otherwise by GreedyState.delta_n per truth solve.

Author: Anthony Poole
"""

import logging
import time
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .errors import ConfigurationError
from .mpi_utils import (
    allreduce_max,
    broadcast_parameters,
    get_comm,
    global_max_error_pair,
)
from .offline_io import OfflineDataIO, OfflineDataScope
from .parameters import ParameterSet, ParameterSpace
from .sampling import initialize_training_parameters
from .training_set import TrainingSet


logger = logging.getLogger(__name__)


class GreedyPhase(Enum):
    IDLE = "idle"
    SAMPLING = "sampling"
    EVALUATING = "evaluating"
    SELECTING = "selecting"
    CHECK_TERMINATION = "check_termination"
    TRUTH_SOLVING = "truth_solving"
    ENRICHING = "enriching"
    DONE = "done"


# =============================================================================
# GREEDY STATE
# =============================================================================

@dataclass
class GreedyState:
    """Thresholds and progress of the greedy algorithm."""
    # Termination thresholds
    abs_tolerance: float = 1.0e-12
    rel_tolerance: float = 1.0e-4
    n_max: int = 20
    delta_n: int = 1

    # Progress
    n_basis: int = 0
    greedy_params: List[ParameterSet] = field(default_factory=list)
    error_history: List[float] = field(default_factory=list)
    initial_error: Optional[float] = None

    def reset(self):
        self.n_basis = 0
        self.greedy_params = []
        self.error_history = []
        self.initial_error = None


# =============================================================================
# TRAINER
# =============================================================================

class GreedyTrainer:
    """
    Drives the greedy basis construction over a distributed training set.

    Parameters
    ----------
    training_set : TrainingSet
        Initialized training set (read only during training).
    space : ParameterSpace
        Parameter space the training set was drawn from.
    model : object
        Truth/reduced model collaborator (see module docstring). If it also
        provides ``write_offline_data`` / ``read_offline_data`` it is used to
        persist basis data.
    state : GreedyState, optional
        Thresholds and progress; a default state is created if omitted.
    comm : MPI.Comm, optional
        Communicator (defaults to the training set's).
    use_empty_rb_solve : bool
        Evaluate the error bound with an empty basis before the first truth
        solve. If False the first snapshot is taken at training sample 0.
    exit_on_repeated_params : bool
        Stop if the greedy selects a parameter it already used.
    write_data_during_training : bool
        Write all offline data after every basis enrichment.
    offline_dir : str
        Directory used when writing during training.
    quiet : bool
        Suppress per-iteration logging.
    """

    def __init__(
        self,
        training_set: TrainingSet,
        space: ParameterSpace,
        model,
        state: Optional[GreedyState] = None,
        comm=None,
        use_empty_rb_solve: bool = True,
        exit_on_repeated_params: bool = True,
        write_data_during_training: bool = False,
        offline_dir: str = "offline_data",
        quiet: bool = True,
    ):
        for method in ("truth_solve", "error_bound", "enrich_basis"):
            if not callable(getattr(model, method, None)):
                raise ConfigurationError(f"Model does not provide '{method}'")

        self.training_set = training_set
        self.space = space
        self.model = model
        self.state = state if state is not None else GreedyState()
        self.comm = get_comm(comm if comm is not None else training_set.comm)
        self.rank = self.comm.Get_rank()

        self.use_empty_rb_solve = use_empty_rb_solve
        self.exit_on_repeated_params = exit_on_repeated_params
        self.write_data_during_training = write_data_during_training
        self.offline_dir = offline_dir
        self.quiet = quiet

        basis_io = model if callable(getattr(model, "write_offline_data", None)) else None
        self.offline_io = OfflineDataIO(self.comm, space, training_set, self.state, basis_io)

        self.current_parameters: Optional[ParameterSet] = None
        self.training_error_bounds = np.zeros(0)
        self.truth_outputs = None
        self.phase = GreedyPhase.IDLE

    # -------------------------------------------------------------------------
    # Training set
    # -------------------------------------------------------------------------

    def initialize_training_set(self, n_samples: int, deterministic: bool = False,
                                serial: bool = False, seed: Optional[int] = None):
        """Generate the training set from the parameter space (collective)."""
        self.phase = GreedyPhase.SAMPLING
        initialize_training_parameters(
            self.training_set, self.space, n_samples,
            deterministic=deterministic, serial=serial, seed=seed, quiet=self.quiet,
        )
        self.phase = GreedyPhase.IDLE

    # -------------------------------------------------------------------------
    # Parameter selection
    # -------------------------------------------------------------------------

    def set_params_from_training_set(self, index: int):
        """Set the current parameters from a locally owned training sample."""
        self.current_parameters = self.training_set.params_at(index)

    def set_params_from_training_set_and_broadcast(self, index: int):
        """
        Set the current parameters on every rank from training sample ``index``.

        The rank owning ``index`` reads the sample and becomes the root of
        the broadcast; the root is agreed on with a max-reduction.
        """
        root_id = 0
        if self.training_set.partition.owns(index):
            self.set_params_from_training_set(index)
            root_id = self.rank
        elif self.current_parameters is None:
            # Placeholder with the right keys; overwritten by the broadcast
            self.current_parameters = self.space.mu_min.copy()

        root_id = allreduce_max(self.comm, root_id)
        self.current_parameters = broadcast_parameters(self.comm, self.current_parameters, root_id)

    def compute_max_error_bound(self) -> float:
        """
        Evaluate the error bound on the whole training set.

        Stores the local bounds in ``training_error_bounds``, sets the
        current parameters (on all ranks) to the sample with the largest
        bound, and returns that bound.
        """
        self.phase = GreedyPhase.EVALUATING
        first = self.training_set.first_local_index()
        n_local = self.training_set.n_local_samples()

        self.training_error_bounds = np.zeros(n_local)
        for i in range(n_local):
            params = self.training_set.params_at(first + i)
            self.training_error_bounds[i] = self.model.error_bound(params, self.state.n_basis)

        if n_local > 0:
            local_max = int(np.argmax(self.training_error_bounds))
            local_index, local_value = first + local_max, self.training_error_bounds[local_max]
        else:
            local_index, local_value = -1, -np.inf

        self.phase = GreedyPhase.SELECTING
        global_index, global_value = global_max_error_pair(self.comm, local_index, local_value)
        self.set_params_from_training_set_and_broadcast(global_index)

        return global_value

    # -------------------------------------------------------------------------
    # Termination
    # -------------------------------------------------------------------------

    def greedy_termination_test(self, error_bound: float) -> bool:
        """Return True if training should stop at this error bound."""
        self.phase = GreedyPhase.CHECK_TERMINATION
        state = self.state

        if error_bound < state.abs_tolerance:
            self._log(f"Absolute error bound {error_bound:.4e} below tolerance {state.abs_tolerance:.4e}")
            return True

        if state.initial_error is not None and state.initial_error > 0:
            rel_error = error_bound / state.initial_error
            if rel_error < state.rel_tolerance:
                self._log(f"Relative error bound {rel_error:.4e} below tolerance {state.rel_tolerance:.4e}")
                return True

        if state.n_basis >= state.n_max:
            self._log(f"Maximum number of basis functions reached: n_max = {state.n_max}")
            return True

        if self.exit_on_repeated_params and self.current_parameters in state.greedy_params:
            self._log(f"Greedy parameter repeated: {self.current_parameters}")
            return True

        return False

    # -------------------------------------------------------------------------
    # Training loop
    # -------------------------------------------------------------------------

    def train(self) -> float:
        """
        Run the greedy algorithm until a termination criterion holds.

        Returns
        -------
        float
            The last maximum error bound over the training set (NaN if no
            bound was evaluated).
        """
        if not self.training_set.initialized:
            raise ConfigurationError("Training parameters are not initialized")
        if self.training_set.names() != self.space.names():
            raise ConfigurationError(
                f"Training set parameters {self.training_set.names()} do not match "
                f"parameter space {self.space.names()}"
            )
        if self.training_set.n_samples() == 0:
            raise ConfigurationError("Training set is empty")
        if self.state.delta_n < 1:
            raise ConfigurationError(f"delta_n must be positive, got {self.state.delta_n}")

        start_time = time.time()
        error_bound = np.nan
        count = 0

        while True:
            self._log(f"---- Basis dimension: {self.state.n_basis} ----")

            # The first-sample start only applies to an empty basis, not to a restart
            if count > 0 or self.use_empty_rb_solve or self.state.n_basis > 0:
                self._log("Performing RB solves on training set")
                error_bound = self.compute_max_error_bound()
                self._log(f"Maximum error bound is {error_bound:.6e}")

                if self.state.initial_error is None:
                    self.state.initial_error = error_bound
                self.state.error_history.append(error_bound)

                if self.greedy_termination_test(error_bound):
                    break
            else:
                self.set_params_from_training_set_and_broadcast(0)

            self.enrich_at_current_parameters()

            if self.write_data_during_training:
                self.offline_io.write_offline_data(self.offline_dir, OfflineDataScope.ALL)

            count += 1

        self.phase = GreedyPhase.DONE
        elapsed = time.time() - start_time
        self._log(f"Greedy training finished: {self.state.n_basis} basis functions in {elapsed:.1f}s")
        return error_bound

    def enrich_at_current_parameters(self):
        """Truth solve at the current parameters and add the snapshot to the basis."""
        self._log(f"Performing truth solve at parameter: {self.current_parameters}")

        self.phase = GreedyPhase.TRUTH_SOLVING
        solution, self.truth_outputs = self.model.truth_solve(self.current_parameters)

        self.phase = GreedyPhase.ENRICHING
        n_before = self._model_basis_size()
        self.model.enrich_basis(solution)

        self.update_greedy_param_list()
        if n_before is None:
            self.state.n_basis += self.state.delta_n
        else:
            self.state.n_basis += self._model_basis_size() - n_before

    def _model_basis_size(self) -> Optional[int]:
        """Basis size reported by the model, or None if it does not report one."""
        n_basis_functions = getattr(self.model, "n_basis_functions", None)
        if not callable(n_basis_functions):
            return None
        return int(n_basis_functions())

    def update_greedy_param_list(self):
        self.state.greedy_params.append(self.current_parameters.copy())

    def greedy_parameter(self, i: int) -> ParameterSet:
        """Parameters chosen at the i-th greedy step."""
        if not 0 <= i < len(self.state.greedy_params):
            raise IndexError(
                f"Greedy parameter {i} requested but only {len(self.state.greedy_params)} chosen"
            )
        return self.state.greedy_params[i]

    # -------------------------------------------------------------------------
    # Offline data
    # -------------------------------------------------------------------------

    def write_offline_data(self, directory: str, scope: OfflineDataScope = OfflineDataScope.ALL):
        self.offline_io.write_offline_data(directory, scope)

    def read_offline_data(self, directory: str, scope: OfflineDataScope = OfflineDataScope.ALL):
        self.offline_io.read_offline_data(directory, scope)

    def _log(self, message: str):
        if not self.quiet and self.rank == 0:
            logger.info(message)
