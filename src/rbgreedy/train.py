"""
Greedy reduced basis training run.

This script handles:
1. Loading the configuration and building the parameter space
2. Generating the distributed training set
3. Running the greedy algorithm with the configured model
4. Writing offline data, a summary and a convergence plot

Supports both serial and MPI-parallel execution.

Usage:
    # Single process
    python -m rbgreedy.train --config config.yaml

    # Parallel execution
    mpirun -np 8 python -m rbgreedy.train --config config.yaml

    # Restart from offline data of a previous run
    mpirun -np 8 python -m rbgreedy.train --config config.yaml --run-dir /path/to/run --restart

Author: Anthony Poole
"""

import argparse
import os
import time
import yaml
from mpi4py import MPI

from .errors import ConfigurationError
from .greedy import GreedyState, GreedyTrainer
from .offline_io import OfflineDataScope
from .plotting import plot_greedy_convergence
from .training_set import TrainingSet
from .utils import (
    TrainerConfig,
    build_parameter_space,
    check_step_completed,
    get_output_paths,
    get_run_directory,
    load_config,
    load_factory,
    load_step_status,
    print_config_summary,
    print_header,
    save_config,
    save_step_status,
    setup_logging,
)


STEP = "greedy"


def build_trainer(cfg: TrainerConfig, comm, run_dir: str) -> GreedyTrainer:
    """
    Build training set, model and trainer from ``cfg``.

    Collective: every rank must call it.
    """
    space = build_parameter_space(cfg)

    factory = load_factory(cfg.model_factory)
    model = factory(space, comm=comm, **cfg.model_options)

    state = GreedyState(
        abs_tolerance=cfg.abs_tolerance,
        rel_tolerance=cfg.rel_tolerance,
        n_max=cfg.n_max,
        delta_n=cfg.delta_n,
    )

    trainer = GreedyTrainer(
        TrainingSet(comm),
        space,
        model,
        state=state,
        comm=comm,
        use_empty_rb_solve=cfg.use_empty_rb_solve,
        exit_on_repeated_params=cfg.exit_on_repeated_params,
        write_data_during_training=cfg.write_data_during_training,
        offline_dir=get_output_paths(run_dir)["offline_dir"],
        quiet=cfg.quiet,
    )
    trainer.initialize_training_set(
        cfg.n_samples,
        deterministic=cfg.deterministic,
        serial=cfg.serial,
        seed=cfg.random_seed,
    )
    return trainer


def save_summary(trainer: GreedyTrainer, final_error: float, elapsed: float, path: str):
    """Write a YAML summary of the greedy run (rank 0 only)."""
    summary = {
        "n_basis": trainer.state.n_basis,
        "final_error_bound": float(final_error),
        "n_training_samples": trainer.training_set.n_samples(),
        "training_time_seconds": elapsed,
        "error_history": [float(e) for e in trainer.state.error_history],
        "greedy_parameters": [p.to_dict() for p in trainer.state.greedy_params],
    }
    with open(path, 'w') as f:
        yaml.dump(summary, f, default_flow_style=False, sort_keys=False)


def main(argv=None):
    """Main entry point for greedy training."""
    parser = argparse.ArgumentParser(
        description="Greedy reduced basis training"
    )
    parser.add_argument(
        "--config", type=str, required=True,
        help="Path to configuration YAML file"
    )
    parser.add_argument(
        "--run-dir", type=str, default=None,
        help="Existing run directory (a new one is created if omitted)"
    )
    parser.add_argument(
        "--restart", action="store_true",
        help="Continue from offline data in the run directory"
    )
    args = parser.parse_args(argv)

    comm = MPI.COMM_WORLD
    rank = comm.Get_rank()
    size = comm.Get_size()

    cfg = load_config(args.config)

    # Rank 0 decides the run directory so timestamps agree
    run_dir = None
    if rank == 0:
        run_dir = get_run_directory(cfg, args.run_dir)
        save_config(cfg, run_dir)
    run_dir = comm.bcast(run_dir, root=0)
    cfg.run_dir = run_dir

    previous = {}
    if args.restart:
        # Offline data is only complete once a previous greedy step finished
        if rank == 0:
            previous = load_step_status(run_dir).get(STEP, {})
        completed = comm.bcast(check_step_completed(run_dir, STEP) if rank == 0 else None, root=0)
        if not completed:
            raise ConfigurationError(
                f"Cannot restart: no completed {STEP} step recorded in {run_dir}"
            )

    logger = setup_logging(STEP, run_dir, cfg.log_level, rank)
    paths = get_output_paths(run_dir)

    if rank == 0:
        print_header("GREEDY REDUCED BASIS TRAINING")
        print(f"  Run directory: {run_dir}")
        print(f"  Parallel: {size > 1} ({size} processes)")
        print_config_summary(cfg)
        save_step_status(run_dir, STEP, "running")

    try:
        trainer = build_trainer(cfg, comm, run_dir)

        if args.restart:
            trainer.read_offline_data(paths["offline_dir"], OfflineDataScope.ALL)
            if rank == 0:
                logger.info(
                    f"Restarting from {trainer.state.n_basis} basis functions "
                    f"(previous run finished {previous.get('timestamp')} with "
                    f"{previous.get('n_basis')} basis functions)"
                )

        start_time = time.time()
        final_error = trainer.train()
        elapsed = time.time() - start_time

        trainer.write_offline_data(paths["offline_dir"], OfflineDataScope.ALL)

        if rank == 0:
            logger.info(f"Training completed in {elapsed:.1f}s ({elapsed/60:.1f} min)")
            save_summary(trainer, final_error, elapsed, paths["greedy_summary"])

            if cfg.generate_plots:
                plot_greedy_convergence(
                    trainer.state.error_history, cfg.abs_tolerance, paths["figures_dir"], logger,
                )

            print_header("GREEDY SUMMARY")
            print(f"  Basis functions: {trainer.state.n_basis}")
            print(f"  Final max error bound: {final_error:.6e}")
            print(f"\n  {'Step':>6} | {'Error bound':>12} | Parameters")
            print(f"  {'-'*50}")
            for i, params in enumerate(trainer.state.greedy_params):
                err = trainer.state.error_history[i] if i < len(trainer.state.error_history) else float('nan')
                print(f"  {i:>6} | {err:>12.4e} | {params}")

            save_step_status(run_dir, STEP, "completed", {
                "n_basis": trainer.state.n_basis,
                "final_error_bound": float(final_error),
                "training_time_seconds": elapsed,
            })
            print_header("TRAINING COMPLETE")

    except Exception as e:
        logger.error(f"Greedy training failed: {e}", exc_info=True)
        if rank == 0:
            save_step_status(run_dir, STEP, "failed", {"error": str(e)})
        if size > 1:
            # Other ranks may be blocked in a collective
            comm.Abort(1)
        raise


if __name__ == "__main__":
    main()
