"""
Configuration & Global Constants
================================
This module serves as the central registry for physical constants and
engine-wide limits.

Why is this file needed?
------------------------
1. Single source: solver, formula engine and orchestrator read the same values.
2. Deployment: a few limits can be tuned with environment variables without
   touching code (e.g. on a shared machine, cap the parametric worker pool).

Exports:
    STEFAN_BOLTZMANN (float): Stefan-Boltzmann constant in W/(m²·K⁴).
    REFERENCE_TEMPERATURE (float): Temperature in K at which enthalpy is zero.
    FORMULA_MAX_DEPTH (int): Maximum expression tree depth.
    FORMULA_MAX_LENGTH (int): Maximum expression length in characters.
    DEFAULT_MAX_WORKERS (int): Default parametric worker pool size.
    PROGRESS_LOG_INTERVAL (int): Steps between progress log messages.
"""
import os
import logging

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    """
    Read a positive integer from the environment.

    Invalid values are reported and ignored.
    """
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not an integer.")
        return default
    if value < 1:
        logger.warning(f"Ignoring {name}={raw!r}: must be >= 1.")
        return default
    return value


# Physical constants
STEFAN_BOLTZMANN: float = 5.670374419e-8  # W/(m²·K⁴)
REFERENCE_TEMPERATURE: float = 298.15  # K

# Formula engine limits
FORMULA_MAX_DEPTH: int = _env_int("PLASMAFURNACE_FORMULA_MAX_DEPTH", 64)
FORMULA_MAX_LENGTH: int = 4096

# Orchestration
DEFAULT_MAX_WORKERS: int = _env_int("PLASMAFURNACE_MAX_WORKERS", os.cpu_count() or 1)

# Solver
PROGRESS_LOG_INTERVAL: int = 10
