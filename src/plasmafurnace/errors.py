"""
Error Taxonomy
==============
All exceptions raised by the simulation core.

Every class also derives from the closest built-in exception so that callers
who only know Python's standard hierarchy (``ValueError``, ``IndexError`` ...)
can still catch them.

Cancellation and time budgets are not errors: they end a run with a status and
the partial results collected so far.
"""
from __future__ import annotations

from enum import StrEnum


class PlasmaFurnaceError(Exception):
    """Root of all errors raised by the package."""


class ConfigError(PlasmaFurnaceError, ValueError):
    """Invalid simulation parameters or study configuration."""


class FormulaError(PlasmaFurnaceError):
    """Root of formula compilation/evaluation errors."""


class ParseError(FormulaError, ValueError):
    """
    Malformed or unsafe expression.

    Attributes:
        message: Human readable description.
        position: 0-based character offset into the original expression text.
    """

    def __init__(self, message: str, position: int = 0) -> None:
        super().__init__(f"{message} (at position {position})")
        self.message = message
        self.position = position


class EvalErrorKind(StrEnum):
    UNKNOWN_VARIABLE = "unknown_variable"
    DIVISION_BY_ZERO = "division_by_zero"
    DOMAIN_ERROR = "domain_error"
    DEPTH_EXCEEDED = "depth_exceeded"


class EvalError(FormulaError, ArithmeticError):
    """Evaluation of a compiled formula failed."""

    def __init__(self, kind: EvalErrorKind, message: str) -> None:
        super().__init__(f"[{kind.value}] {message}")
        self.kind = kind
        self.message = message


class UnknownFormulaError(FormulaError, KeyError):
    """Lookup of a formula id that is not in the library."""

    def __str__(self) -> str:
        # KeyError quotes its argument
        return str(self.args[0]) if self.args else ""


class IndexOutOfRange(PlasmaFurnaceError, IndexError):
    """Cell index outside the mesh."""


class SolverError(PlasmaFurnaceError, RuntimeError):
    """Root of errors raised while advancing a simulation."""


class SolverDivergence(SolverError):
    """The enthalpy field contains NaN or infinite values after a step."""

    def __init__(self, message: str, step: int, time: float) -> None:
        super().__init__(message)
        self.step = step
        self.time = time


class SessionClosedError(SolverError):
    """The session has finished and cannot be stepped any more."""
