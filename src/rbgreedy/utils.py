"""
Pipeline Utilities for greedy reduced basis training.

This module provides shared utilities for the training pipeline:
- Configuration loading and validation
- Run directory management
- Logging setup
- Step status tracking

Author: Anthony Poole
"""

import os
import yaml
import logging
import importlib
from datetime import datetime
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

from .errors import ConfigurationError
from .parameters import ParameterSet, ParameterSpace


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass
class ParameterConfig:
    """Range and sampling options of one parameter."""
    min: float
    max: float
    log_scale: bool = False
    discrete_values: Optional[List[float]] = None


@dataclass
class TrainerConfig:
    """
    Configuration container for greedy training.

    Attributes are organized by category matching the YAML structure.
    """
    # Run identification
    run_name: str = ""
    run_dir: str = ""

    # Paths
    output_base: str = "."

    # Parameters
    parameters: Dict[str, ParameterConfig] = field(default_factory=dict)

    # Training set
    n_samples: int = 100
    deterministic: bool = False
    serial: bool = False
    random_seed: Optional[int] = None

    # Greedy
    abs_tolerance: float = 1.0e-12
    rel_tolerance: float = 1.0e-4
    n_max: int = 20
    delta_n: int = 1
    use_empty_rb_solve: bool = True
    exit_on_repeated_params: bool = True
    write_data_during_training: bool = False

    # Model
    model_factory: str = "rbgreedy.models:build_thermal_block"
    model_options: Dict[str, Any] = field(default_factory=dict)

    # Execution
    log_level: str = "INFO"
    quiet: bool = False
    generate_plots: bool = True


def _parse_parameters(raw: dict) -> Dict[str, ParameterConfig]:
    """Build parameter configs from the YAML ``parameters`` section."""
    parameters = {}
    for name, spec in (raw or {}).items():
        if "min" not in spec or "max" not in spec:
            raise ConfigurationError(f"Parameter '{name}' needs both 'min' and 'max'")

        discrete = spec.get("discrete_values")
        parameters[name] = ParameterConfig(
            # Convert to float to handle string inputs from YAML (e.g. "1e-3")
            min=float(spec["min"]),
            max=float(spec["max"]),
            log_scale=bool(spec.get("log_scale", False)),
            discrete_values=[float(v) for v in discrete] if discrete is not None else None,
        )
    return parameters


def load_config(config_path: str) -> TrainerConfig:
    """
    Load configuration from YAML file.

    Parameters
    ----------
    config_path : str
        Path to YAML configuration file.

    Returns
    -------
    TrainerConfig
        Populated configuration object.
    """
    with open(config_path, 'r') as f:
        raw = yaml.safe_load(f) or {}

    cfg = TrainerConfig()

    # Run identification
    cfg.run_name = raw.get("run_name", "")

    # Paths
    paths = raw.get("paths", {})
    cfg.output_base = paths.get("output_base", ".")

    # Parameters
    cfg.parameters = _parse_parameters(raw.get("parameters", {}))

    # Training set
    training = raw.get("training_set", {})
    cfg.n_samples = int(training.get("n_samples", 100))
    cfg.deterministic = bool(training.get("deterministic", False))
    cfg.serial = bool(training.get("serial", False))
    seed = training.get("random_seed")
    cfg.random_seed = int(seed) if seed is not None else None

    # Greedy
    greedy = raw.get("greedy", {})
    cfg.abs_tolerance = float(greedy.get("abs_tolerance", 1.0e-12))
    cfg.rel_tolerance = float(greedy.get("rel_tolerance", 1.0e-4))
    cfg.n_max = int(greedy.get("n_max", 20))
    cfg.delta_n = int(greedy.get("delta_n", 1))
    cfg.use_empty_rb_solve = bool(greedy.get("use_empty_rb_solve", True))
    cfg.exit_on_repeated_params = bool(greedy.get("exit_on_repeated_params", True))
    cfg.write_data_during_training = bool(greedy.get("write_data_during_training", False))

    # Model
    model = raw.get("model", {})
    cfg.model_factory = model.get("factory", cfg.model_factory)
    cfg.model_options = dict(model.get("options", {}) or {})

    # Execution
    execution = raw.get("execution", {})
    cfg.log_level = execution.get("log_level", "INFO")
    cfg.quiet = bool(execution.get("quiet", False))
    cfg.generate_plots = bool(execution.get("generate_plots", True))

    validate_config(cfg)
    return cfg


def validate_config(cfg: TrainerConfig):
    """Raise ConfigurationError on values that cannot describe a run."""
    if cfg.n_samples < 0:
        raise ConfigurationError(f"n_samples must be non-negative, got {cfg.n_samples}")
    if cfg.n_max < 0:
        raise ConfigurationError(f"n_max must be non-negative, got {cfg.n_max}")
    if cfg.delta_n < 1:
        raise ConfigurationError(f"delta_n must be positive, got {cfg.delta_n}")
    if ":" not in cfg.model_factory:
        raise ConfigurationError(
            f"Model factory must look like 'package.module:callable', got '{cfg.model_factory}'"
        )
    if cfg.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigurationError(f"Unknown log level: {cfg.log_level}")
    # Bounds and log scaling are checked when the space is built
    build_parameter_space(cfg)


def save_config(cfg: TrainerConfig, output_path: str) -> str:
    """
    Save configuration to YAML file.

    Parameters
    ----------
    cfg : TrainerConfig
        Configuration object.
    output_path : str
        Directory to save configuration.

    Returns
    -------
    str
        Path to saved configuration file.
    """
    parameters = {}
    for name, p in cfg.parameters.items():
        entry = {"min": p.min, "max": p.max, "log_scale": p.log_scale}
        if p.discrete_values is not None:
            entry["discrete_values"] = list(p.discrete_values)
        parameters[name] = entry

    config_dict = {
        "run_name": cfg.run_name,
        "run_dir": cfg.run_dir,
        "paths": {
            "output_base": cfg.output_base,
        },
        "parameters": parameters,
        "training_set": {
            "n_samples": cfg.n_samples,
            "deterministic": cfg.deterministic,
            "serial": cfg.serial,
            "random_seed": cfg.random_seed,
        },
        "greedy": {
            "abs_tolerance": cfg.abs_tolerance,
            "rel_tolerance": cfg.rel_tolerance,
            "n_max": cfg.n_max,
            "delta_n": cfg.delta_n,
            "use_empty_rb_solve": cfg.use_empty_rb_solve,
            "exit_on_repeated_params": cfg.exit_on_repeated_params,
            "write_data_during_training": cfg.write_data_during_training,
        },
        "model": {
            "factory": cfg.model_factory,
            "options": dict(cfg.model_options),
        },
        "execution": {
            "log_level": cfg.log_level,
            "quiet": cfg.quiet,
            "generate_plots": cfg.generate_plots,
        },
    }

    filepath = os.path.join(output_path, "config.yaml")
    with open(filepath, 'w') as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)

    return filepath


def build_parameter_space(cfg: TrainerConfig) -> ParameterSpace:
    """Parameter space described by the ``parameters`` section."""
    mu_min = ParameterSet({name: p.min for name, p in cfg.parameters.items()})
    mu_max = ParameterSet({name: p.max for name, p in cfg.parameters.items()})
    log_scale = {name: p.log_scale for name, p in cfg.parameters.items()}
    discrete = {
        name: p.discrete_values
        for name, p in cfg.parameters.items()
        if p.discrete_values is not None
    }
    return ParameterSpace(mu_min, mu_max, log_scale, discrete)


def load_factory(spec: str):
    """Resolve a 'package.module:callable' string."""
    module_name, _, attr = spec.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import model module '{module_name}': {e}") from e

    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigurationError(f"'{attr}' in '{module_name}' is not callable")
    return factory


# =============================================================================
# RUN DIRECTORY MANAGEMENT
# =============================================================================

def create_run_directory(cfg: TrainerConfig) -> str:
    """
    Create a new run directory with timestamp.

    Parameters
    ----------
    cfg : TrainerConfig
        Configuration object.

    Returns
    -------
    str
        Path to the created run directory.
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    if cfg.run_name:
        dir_name = f"{timestamp}_{cfg.run_name}"
    else:
        dir_name = timestamp

    run_dir = os.path.join(cfg.output_base, dir_name)
    os.makedirs(run_dir, exist_ok=True)

    cfg.run_dir = run_dir

    return run_dir


def get_run_directory(cfg: TrainerConfig, run_dir: str = None) -> str:
    """
    Get or create run directory.

    If run_dir is provided, use it (for restarting a previous run).
    Otherwise, create a new timestamped directory.
    """
    if run_dir:
        os.makedirs(run_dir, exist_ok=True)
        cfg.run_dir = run_dir
        return run_dir
    else:
        return create_run_directory(cfg)


# =============================================================================
# LOGGING
# =============================================================================

def setup_logging(
    name: str,
    run_dir: str,
    log_level: str = "INFO",
    rank: int = 0
) -> logging.Logger:
    """
    Set up logging for a pipeline step.

    Handlers are attached to the ``rbgreedy`` package logger so that
    messages from library modules end up in the same place.

    Parameters
    ----------
    name : str
        Log file name (usually step name).
    run_dir : str
        Run directory for log file.
    log_level : str
        Logging level.
    rank : int
        MPI rank (for parallel execution).

    Returns
    -------
    logging.Logger
        Configured logger.
    """
    logger = logging.getLogger("rbgreedy")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []

    formatter = logging.Formatter(
        f'%(asctime)s [Rank {rank:04d}] [%(name)s] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler
    console = logging.StreamHandler()
    console.setLevel(getattr(logging, log_level.upper()))
    console.setFormatter(formatter)
    logger.addHandler(console)

    # File handler (only rank 0 in parallel)
    if rank == 0 and run_dir:
        log_file = os.path.join(run_dir, f"{name}.log")
        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


# =============================================================================
# STEP STATUS TRACKING
# =============================================================================

def save_step_status(run_dir: str, step: str, status: str, metadata: dict = None):
    """
    Save step completion status.

    Parameters
    ----------
    run_dir : str
        Run directory.
    step : str
        Step name (e.g., "greedy").
    status : str
        Status ("completed", "failed", "running").
    metadata : dict, optional
        Additional metadata to save.
    """
    status_file = os.path.join(run_dir, "pipeline_status.yaml")

    if os.path.exists(status_file):
        with open(status_file, 'r') as f:
            status_data = yaml.safe_load(f) or {}
    else:
        status_data = {}

    status_data[step] = {
        "status": status,
        "timestamp": datetime.now().isoformat(),
    }
    if metadata:
        status_data[step].update(metadata)

    with open(status_file, 'w') as f:
        yaml.dump(status_data, f, default_flow_style=False)


def load_step_status(run_dir: str) -> dict:
    """Load pipeline status."""
    status_file = os.path.join(run_dir, "pipeline_status.yaml")
    if os.path.exists(status_file):
        with open(status_file, 'r') as f:
            return yaml.safe_load(f) or {}
    return {}


def check_step_completed(run_dir: str, step: str) -> bool:
    """Check if a step has completed successfully."""
    status = load_step_status(run_dir)
    return status.get(step, {}).get("status") == "completed"


# =============================================================================
# DATA FILE PATHS
# =============================================================================

def get_output_paths(run_dir: str) -> dict:
    """Standard output locations for a run."""
    return {
        "offline_dir": os.path.join(run_dir, "offline_data"),
        "greedy_summary": os.path.join(run_dir, "greedy_summary.yaml"),
        "figures_dir": os.path.join(run_dir, "figures"),
    }


# =============================================================================
# CONSOLE OUTPUT HELPERS
# =============================================================================

def print_header(title: str, width: int = 70):
    """Print a formatted header."""
    print("\n" + "=" * width)
    print(f" {title}")
    print("=" * width)


def print_config_summary(cfg: TrainerConfig):
    """Print a summary of the configuration."""
    print_header("CONFIGURATION SUMMARY")
    print(f"  Run name: {cfg.run_name or '(auto)'}")
    print(f"  Output base: {cfg.output_base}")
    print(f"  Parameters: {len(cfg.parameters)}")
    for name, p in sorted(cfg.parameters.items()):
        scale = "log" if p.log_scale else "linear"
        discrete = f", {len(p.discrete_values)} discrete values" if p.discrete_values else ""
        print(f"    {name}: [{p.min:g}, {p.max:g}] ({scale}{discrete})")
    kind = "deterministic" if cfg.deterministic else "random"
    layout = "serial" if cfg.serial else "parallel"
    print(f"  Training set: {cfg.n_samples:,} {kind} samples ({layout})")
    print(f"  Tolerances: abs={cfg.abs_tolerance:g}, rel={cfg.rel_tolerance:g}")
    print(f"  Max basis size: {cfg.n_max} (delta_N={cfg.delta_n})")
    print(f"  Model: {cfg.model_factory}")
    print("=" * 70 + "\n")
