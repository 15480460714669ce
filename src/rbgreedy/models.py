"""
Reference truth/reduced model for greedy training.

AffineLinearModel is a dense, affinely parametrized linear problem

    A(mu) u = f,    A(mu) = sum_q theta_q(mu) A_q,    s(mu) = l^T u

with a Galerkin reduced basis and a residual based error bound. It is small
enough to truth-solve redundantly on every rank, which keeps the snapshots
identical across the process group.

build_thermal_block builds the 1D thermal block problem: the unit interval
split into one subdomain per parameter, with the parameter as the
conductivity of its subdomain.

Author: Anthony Poole
"""

import os
import logging
import numpy as np
from typing import Callable, List, Optional

from .errors import ConfigurationError, RBGreedyError
from .offline_io import OfflineDataScope
from .parameters import ParameterSet, ParameterSpace


logger = logging.getLogger(__name__)


# =============================================================================
# AFFINE MODEL
# =============================================================================

class AffineLinearModel:
    """
    Affine linear model with an orthonormal reduced basis.

    Parameters
    ----------
    operators : list of np.ndarray
        Affine components A_q, each (n, n).
    thetas : list of callable
        theta_q(params) -> float, one per operator.
    rhs : np.ndarray
        Right-hand side f, shape (n,).
    output : np.ndarray, optional
        Output functional l, shape (n,).
    alpha_ref : float
        Coercivity constant of A at ``mu_ref``.
    mu_ref : ParameterSet
        Reference parameters for the min-theta coercivity lower bound.
    """

    def __init__(
        self,
        operators: List[np.ndarray],
        thetas: List[Callable[[ParameterSet], float]],
        rhs: np.ndarray,
        mu_ref: ParameterSet,
        output: Optional[np.ndarray] = None,
        alpha_ref: Optional[float] = None,
        comm=None,
    ):
        if len(operators) != len(thetas):
            raise ConfigurationError(
                f"{len(operators)} affine operators but {len(thetas)} theta functions"
            )

        self.operators = [np.asarray(A, dtype=np.float64) for A in operators]
        self.thetas = thetas
        self.rhs = np.asarray(rhs, dtype=np.float64)
        self.output = output
        self.mu_ref = mu_ref
        self.comm = comm
        self.n_dofs = self.rhs.shape[0]

        self.theta_ref = np.array([theta(mu_ref) for theta in thetas])
        if np.any(self.theta_ref <= 0):
            raise ConfigurationError("Theta functions must be positive at the reference parameters")

        if alpha_ref is None:
            alpha_ref = float(np.linalg.eigvalsh(self.assemble(mu_ref))[0])
        if alpha_ref <= 0:
            raise ConfigurationError(f"Operator is not coercive at the reference parameters: {alpha_ref}")
        self.alpha_ref = alpha_ref

        self.basis = np.zeros((self.n_dofs, 0))
        self._reduced_operators = [np.zeros((0, 0)) for _ in self.operators]
        self._reduced_rhs = np.zeros(0)

    # -------------------------------------------------------------------------
    # Truth level
    # -------------------------------------------------------------------------

    def eval_thetas(self, params: ParameterSet) -> np.ndarray:
        return np.array([theta(params) for theta in self.thetas])

    def assemble(self, params: ParameterSet) -> np.ndarray:
        thetas = self.eval_thetas(params)
        A = np.zeros((self.n_dofs, self.n_dofs))
        for theta_q, A_q in zip(thetas, self.operators):
            A += theta_q * A_q
        return A

    def truth_solve(self, params: ParameterSet):
        """Full order solve; returns (solution, [output])."""
        u = np.linalg.solve(self.assemble(params), self.rhs)
        outputs = [float(self.output @ u)] if self.output is not None else []
        return u, outputs

    # -------------------------------------------------------------------------
    # Reduced level
    # -------------------------------------------------------------------------

    def n_basis_functions(self) -> int:
        return self.basis.shape[1]

    def enrich_basis(self, snapshot: np.ndarray):
        """Orthonormalize ``snapshot`` against the basis and append it."""
        v = np.asarray(snapshot, dtype=np.float64).copy()
        # Two passes of Gram-Schmidt
        for _ in range(2):
            v -= self.basis @ (self.basis.T @ v)
        norm = np.linalg.norm(v)
        if norm < 1e-14 * max(1.0, np.linalg.norm(snapshot)):
            raise RBGreedyError("Snapshot is linearly dependent on the current basis")
        self.basis = np.column_stack([self.basis, v / norm])
        self._update_reduced_operators()

    def _update_reduced_operators(self):
        V = self.basis
        self._reduced_operators = [V.T @ A_q @ V for A_q in self.operators]
        self._reduced_rhs = V.T @ self.rhs

    def rb_solve(self, params: ParameterSet, n_basis: int) -> np.ndarray:
        """Reduced coefficients using the first ``n_basis`` basis functions."""
        n_basis = min(n_basis, self.n_basis_functions())
        if n_basis == 0:
            return np.zeros(0)
        thetas = self.eval_thetas(params)
        A_N = sum(t * A_q[:n_basis, :n_basis] for t, A_q in zip(thetas, self._reduced_operators))
        return np.linalg.solve(A_N, self._reduced_rhs[:n_basis])

    def residual_dual_norm(self, params: ParameterSet, n_basis: int) -> float:
        u_N = self.rb_solve(params, n_basis)
        u = self.basis[:, :len(u_N)] @ u_N
        return float(np.linalg.norm(self.rhs - self.assemble(params) @ u))

    def coercivity_lower_bound(self, params: ParameterSet) -> float:
        """min-theta lower bound: min_q theta_q(mu) / theta_q(mu_ref) * alpha(mu_ref)."""
        return float(np.min(self.eval_thetas(params) / self.theta_ref) * self.alpha_ref)

    def error_bound(self, params: ParameterSet, n_basis: int) -> float:
        return self.residual_dual_norm(params, n_basis) / self.coercivity_lower_bound(params)

    # -------------------------------------------------------------------------
    # Basis persistence
    # -------------------------------------------------------------------------

    def write_offline_data(self, directory: str, scope: OfflineDataScope):
        if not scope.includes_basis_dependent():
            return
        if self.comm is not None and self.comm.Get_rank() != 0:
            return
        os.makedirs(directory, exist_ok=True)
        np.savez(os.path.join(directory, "basis.npz"), basis=self.basis)

    def read_offline_data(self, directory: str, scope: OfflineDataScope):
        if not scope.includes_basis_dependent():
            return
        d = np.load(os.path.join(directory, "basis.npz"))
        self.basis = d["basis"]
        self._update_reduced_operators()


# =============================================================================
# THERMAL BLOCK FACTORY
# =============================================================================

def _stiffness_by_subdomain(n_dofs: int, n_subdomains: int) -> List[np.ndarray]:
    """Linear FE stiffness on [0, 1], homogeneous Dirichlet ends, split by subdomain."""
    n_elements = n_dofs + 1
    h = 1.0 / n_elements
    local = np.array([[1.0, -1.0], [-1.0, 1.0]]) / h
    operators = [np.zeros((n_dofs, n_dofs)) for _ in range(n_subdomains)]

    for e in range(n_elements):
        q = min(e * n_subdomains // n_elements, n_subdomains - 1)
        # Element e joins nodes e and e+1; interior dof k is node k+1
        dofs = [e - 1, e]
        for a in range(2):
            for b in range(2):
                if 0 <= dofs[a] < n_dofs and 0 <= dofs[b] < n_dofs:
                    operators[q][dofs[a], dofs[b]] += local[a, b]
    return operators


def build_thermal_block(space: ParameterSpace, comm=None, n_dofs: int = 200, **options) -> AffineLinearModel:
    """
    1D thermal block with one conductivity parameter per subdomain.

    The source is uniform and the output is the mean temperature.
    """
    names = space.names()
    if not names:
        raise ConfigurationError("Thermal block needs at least one parameter")
    for name in names:
        if space.mu_min[name] <= 0:
            raise ConfigurationError(f"Conductivity '{name}' must have a positive lower bound")

    if options:
        logger.warning(f"Ignoring unknown thermal block options: {sorted(options)}")

    h = 1.0 / (n_dofs + 1)
    operators = _stiffness_by_subdomain(n_dofs, len(names))
    thetas = [lambda params, name=name: params.get_value(name) for name in names]

    return AffineLinearModel(
        operators=operators,
        thetas=thetas,
        rhs=h * np.ones(n_dofs),
        mu_ref=space.mu_min,
        output=h * np.ones(n_dofs),
        comm=comm,
    )
