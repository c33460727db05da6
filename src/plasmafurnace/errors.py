"""
Error Taxonomy
==============
Exceptions raised by the simulation engine.

Configuration problems are raised before any computation starts, numerical
problems abort a running simulation. A cancelled run is a normal terminal
state (see RunStatus.CANCELLED) and has no exception.
"""
from __future__ import annotations

from typing import Any, Optional


class SimulationError(Exception):
    """Base class for all errors raised by plasmafurnace."""


class ConfigurationError(SimulationError, ValueError):
    """Invalid geometry, mesh, material, torch or solver parameters."""

    def __init__(self, message: str, parameter: Optional[str] = None) -> None:
        super().__init__(message)
        self.parameter = parameter


class UnknownMaterial(ConfigurationError, KeyError):
    """Material name not registered in the MaterialLibrary."""

    def __init__(self, name: str, available: Optional[list[str]] = None) -> None:
        message = f"Unknown material '{name}'."
        if available:
            message += f" Available: {', '.join(available)}."
        super().__init__(message, parameter="material.name")
        self.name = name

    def __str__(self) -> str:
        # KeyError would repr() the message otherwise
        return self.args[0]


class InvalidFormula(ConfigurationError):
    """Formula with bad syntax, disallowed constructs or unknown identifiers."""

    def __init__(self, expression: str, reason: str) -> None:
        super().__init__(f"Invalid formula '{expression}': {reason}", parameter="formula")
        self.expression = expression
        self.reason = reason


class FormulaEvaluationError(SimulationError, ArithmeticError):
    """Formula produced a non-finite value."""

    def __init__(self, expression: str, variables: Optional[dict[str, Any]] = None) -> None:
        message = f"Formula '{expression}' produced a non-finite result"
        if variables:
            shown = ", ".join(f"{k}={v}" for k, v in variables.items())
            message += f" for {shown}"
        super().__init__(message + ".")
        self.expression = expression
        self.variables = variables or {}


class NumericalInstability(SimulationError, RuntimeError):
    """Non-finite or unphysical value, or a time step above the stability limit."""

    def __init__(self, step: int, time: float, reason: str = "non-finite temperature") -> None:
        super().__init__(f"Numerical instability at step {step} (t={time:.6g} s): {reason}")
        self.step = step
        self.time = time
        self.reason = reason


class ResourceExhaustion(SimulationError):
    """Requested run exceeds the configured node or memory ceiling."""

    def __init__(self, resource: str, requested: float, limit: float) -> None:
        super().__init__(
            f"Requested {resource} ({requested:,.0f}) exceeds the configured limit ({limit:,.0f})."
        )
        self.resource = resource
        self.requested = requested
        self.limit = limit


class UnknownRun(SimulationError, KeyError):
    """Run id not known to the RunManager."""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Unknown run id '{run_id}'.")
        self.run_id = run_id

    def __str__(self) -> str:
        return self.args[0]
