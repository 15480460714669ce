"""
Parameter handling for parametrized problems.

This module provides:
- ParameterSet: a point in parameter space (name -> scalar)
- ParameterSpace: bounds, log scaling and discrete values of each parameter

Iteration over a ParameterSet is always in lexicographic key order, so the
flattened value vector has the same layout on every MPI rank.

Author: Anthony Poole
"""

import numpy as np
from typing import Dict, Iterable, List, Optional

from .errors import ConfigurationError


# =============================================================================
# PARAMETER SET
# =============================================================================

class ParameterSet:
    """
    Ordered mapping from parameter name to a real value.

    Parameters
    ----------
    values : dict, optional
        Initial name -> value pairs.
    """

    def __init__(self, values: Optional[Dict[str, float]] = None):
        self._values = {}
        if values:
            for name, value in values.items():
                self.set_value(name, value)

    def set_value(self, name: str, value: float):
        self._values[name] = float(value)

    def get_value(self, name: str) -> float:
        if name not in self._values:
            raise KeyError(f"Unknown parameter: {name}")
        return self._values[name]

    def has_value(self, name: str) -> bool:
        return name in self._values

    def n_parameters(self) -> int:
        return len(self._values)

    def names(self) -> List[str]:
        return sorted(self._values)

    def items(self):
        return [(name, self._values[name]) for name in self.names()]

    def to_vector(self) -> np.ndarray:
        """Values in key order, as a float64 vector."""
        return np.array([self._values[name] for name in self.names()], dtype=np.float64)

    @classmethod
    def from_vector(cls, names: Iterable[str], vector) -> "ParameterSet":
        names = sorted(names)
        if len(names) != len(vector):
            raise ConfigurationError(
                f"Cannot build {len(names)} parameters from {len(vector)} values"
            )
        return cls(dict(zip(names, vector)))

    def copy(self) -> "ParameterSet":
        return ParameterSet(dict(self._values))

    def to_dict(self) -> Dict[str, float]:
        return dict(self.items())

    def __iter__(self):
        return iter(self.names())

    def __len__(self):
        return len(self._values)

    def __getitem__(self, name: str) -> float:
        return self.get_value(name)

    def __contains__(self, name) -> bool:
        return name in self._values

    def __eq__(self, other) -> bool:
        if not isinstance(other, ParameterSet):
            return NotImplemented
        return self.items() == other.items()

    def __repr__(self) -> str:
        body = ", ".join(f"{name}={value:.6g}" for name, value in self.items())
        return f"ParameterSet({body})"


def get_closest_value(value: float, allowed: List[float]) -> float:
    """Return the entry of ``allowed`` nearest to ``value`` (first one on ties)."""
    if len(allowed) == 0:
        raise ConfigurationError("Discrete parameter has no allowed values")
    allowed = np.asarray(allowed, dtype=np.float64)
    return float(allowed[np.argmin(np.abs(allowed - value))])


# =============================================================================
# PARAMETER SPACE
# =============================================================================

class ParameterSpace:
    """
    Bounds and scaling of the tunable parameters of a problem.

    The key set is fixed once the space is created. Discrete parameters are
    still given a [min, max] range (used for sampling) plus the list of
    values they are allowed to take.

    Parameters
    ----------
    mu_min, mu_max : ParameterSet
        Lower and upper bounds, with identical key sets.
    log_scale : dict, optional
        name -> True for parameters sampled log-uniformly.
    discrete_values : dict, optional
        name -> list of allowed values.
    """

    def __init__(
        self,
        mu_min: ParameterSet,
        mu_max: ParameterSet,
        log_scale: Optional[Dict[str, bool]] = None,
        discrete_values: Optional[Dict[str, List[float]]] = None,
    ):
        if mu_min.names() != mu_max.names():
            raise ConfigurationError(
                f"Parameter bounds disagree: min has {mu_min.names()}, max has {mu_max.names()}"
            )

        for name in mu_min:
            if mu_min[name] > mu_max[name]:
                raise ConfigurationError(
                    f"Parameter '{name}': min {mu_min[name]} exceeds max {mu_max[name]}"
                )

        self.mu_min = mu_min.copy()
        self.mu_max = mu_max.copy()
        self.log_scale = {name: False for name in mu_min}
        self.discrete_values = {}

        for name, flag in (log_scale or {}).items():
            if name not in mu_min:
                raise ConfigurationError(f"Log scaling given for unknown parameter '{name}'")
            if flag and mu_min[name] <= 0:
                raise ConfigurationError(
                    f"Parameter '{name}' uses log scaling but has non-positive min {mu_min[name]}"
                )
            self.log_scale[name] = bool(flag)

        for name, values in (discrete_values or {}).items():
            if name not in mu_min:
                raise ConfigurationError(f"Discrete values given for unknown parameter '{name}'")
            self.discrete_values[name] = sorted(float(v) for v in values)

    def n_params(self) -> int:
        return self.mu_min.n_parameters()

    def n_discrete_params(self) -> int:
        return len(self.discrete_values)

    def names(self) -> List[str]:
        return self.mu_min.names()

    def is_discrete_parameter(self, name: str) -> bool:
        return name in self.discrete_values

    def valid_params(self, params: ParameterSet) -> bool:
        """
        Check that ``params`` has the right keys and lies inside the space.

        Continuous values must be within [min, max]; discrete values must be
        one of the allowed values.
        """
        if params.names() != self.names():
            return False

        for name, value in params.items():
            if self.is_discrete_parameter(name):
                if value not in self.discrete_values[name]:
                    return False
            elif value < self.mu_min[name] or value > self.mu_max[name]:
                return False
        return True

    def __repr__(self) -> str:
        parts = []
        for name in self.names():
            scale = "log" if self.log_scale[name] else "linear"
            parts.append(f"{name}: [{self.mu_min[name]:.4g}, {self.mu_max[name]:.4g}] ({scale})")
        return "ParameterSpace(" + "; ".join(parts) + ")"
