"""
Plotting utilities for greedy training diagnostics.

Author: Anthony Poole
"""

import os
import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt


def plot_greedy_convergence(error_history, abs_tolerance, output_dir, logger=None,
                            filename="greedy_convergence.png"):
    """
    Plot the maximum training error bound against basis dimension.

    Returns the path of the saved figure, or None if there is nothing to plot.
    """
    errors = np.asarray(error_history, dtype=np.float64)
    errors = errors[np.isfinite(errors) & (errors > 0)]
    if errors.size == 0:
        if logger:
            logger.warning("No positive error bounds recorded, skipping convergence plot")
        return None

    os.makedirs(output_dir, exist_ok=True)

    fig, ax = plt.subplots(figsize=(7, 4))
    ax.semilogy(np.arange(errors.size), errors, 'bo-', linewidth=1.5, markersize=4)
    if abs_tolerance > 0:
        ax.axhline(abs_tolerance, color='r', linestyle='--', label=f'tol={abs_tolerance:.1e}')
        ax.legend()
    ax.set_xlabel('Greedy iteration')
    ax.set_ylabel('Max error bound')
    ax.set_title('Greedy Convergence')
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    plot_path = os.path.join(output_dir, filename)
    plt.savefig(plot_path, dpi=150, bbox_inches='tight')
    plt.close(fig)

    if logger:
        logger.info(f"Saved convergence plot to {plot_path}")
    return plot_path
