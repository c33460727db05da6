"""
Safe Formula Evaluator
======================
User-extensible expressions for temperature dependent material properties and
volumetric heat sources, e.g. ``"150 * (300 / T) ** 0.7"``.

Expressions are parsed once with :mod:`ast`, checked against a whitelist of
node types, names and functions, and compiled into a tree of NumPy closures.
Evaluation therefore works on scalars as well as whole temperature fields and
never goes through ``eval``.
"""
from __future__ import annotations

import ast
import logging
import math
import operator
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Union

import numpy as np

from plasmafurnace.config import (
    MAX_FORMULA_DEPTH,
    MAX_FORMULA_LENGTH,
    MAX_FORMULA_NODES,
    STEFAN_BOLTZMANN,
)
from plasmafurnace.errors import FormulaEvaluationError, InvalidFormula

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

Number = Union[float, "npt.NDArray[np.float64]"]
Compiled = Callable[[dict[str, Any]], Any]

TEMPERATURE_VARIABLES: tuple[str, ...] = ("T",)
SOURCE_VARIABLES: tuple[str, ...] = ("r", "z", "t", "T")

BUILTIN_CONSTANTS: dict[str, float] = {
    "PI": math.pi,
    "E": math.e,
    "SIGMA": STEFAN_BOLTZMANN,
}

# name -> (callable, minimum arity, maximum arity or None for variadic)
ALLOWED_FUNCTIONS: dict[str, tuple[Callable[..., Any], int, Optional[int]]] = {
    "sin": (np.sin, 1, 1),
    "cos": (np.cos, 1, 1),
    "tan": (np.tan, 1, 1),
    "asin": (np.arcsin, 1, 1),
    "acos": (np.arccos, 1, 1),
    "atan": (np.arctan, 1, 1),
    "atan2": (np.arctan2, 2, 2),
    "sinh": (np.sinh, 1, 1),
    "cosh": (np.cosh, 1, 1),
    "tanh": (np.tanh, 1, 1),
    "exp": (np.exp, 1, 1),
    "log": (np.log, 1, 1),
    "log10": (np.log10, 1, 1),
    "sqrt": (np.sqrt, 1, 1),
    "abs": (np.abs, 1, 1),
    "floor": (np.floor, 1, 1),
    "ceil": (np.ceil, 1, 1),
    "pow": (np.power, 2, 2),
    "min": (np.minimum, 2, None),
    "max": (np.maximum, 2, None),
}

_BINARY_OPERATORS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: np.add,
    ast.Sub: np.subtract,
    ast.Mult: np.multiply,
    ast.Div: np.true_divide,
    ast.Pow: np.power,
    ast.Mod: np.mod,
}

_UNARY_OPERATORS: dict[type, Callable[[Any], Any]] = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


class FormulaContext:
    """
    User-defined named constants available to formulas.

    Formulas copy the constants when they are compiled, so changing the
    context later never alters an already registered formula.
    """

    def __init__(self, constants: Optional[dict[str, float]] = None) -> None:
        self._constants: dict[str, float] = {}
        for name, value in (constants or {}).items():
            self.add_constant(name, value)

    def add_constant(self, name: str, value: float) -> None:
        if not name.isidentifier():
            raise InvalidFormula(name, "constant name must be a valid identifier")
        if name in BUILTIN_CONSTANTS or name in ALLOWED_FUNCTIONS or name in SOURCE_VARIABLES:
            raise InvalidFormula(name, "constant name collides with a reserved name")
        value = float(value)
        if not math.isfinite(value):
            raise InvalidFormula(name, f"constant value {value} is not finite")
        self._constants[name] = value
        logger.debug(f"Formula constant '{name}' set to {value}")

    def remove_constant(self, name: str) -> None:
        self._constants.pop(name, None)

    @property
    def constants(self) -> dict[str, float]:
        """All constants visible to formulas (built-in and user-defined)."""
        return {**BUILTIN_CONSTANTS, **self._constants}

    @property
    def custom_constants(self) -> dict[str, float]:
        return dict(self._constants)


class Formula:
    """
    A compiled, sandboxed arithmetic expression.

    Supported syntax: numeric literals, the allowed variables, built-in and
    context constants, ``+ - * / % **``, unary ``+``/``-`` and calls to the
    functions in :data:`ALLOWED_FUNCTIONS`. Everything else (attributes,
    subscripts, comparisons, lambdas, keyword arguments, ...) is rejected.

    Args:
        expression: The formula text.
        variables: Names that must be supplied at evaluation time.
        context: Optional user constants.

    Raises:
        InvalidFormula: On syntax errors, disallowed constructs, unknown
            identifiers or when the safety limits are exceeded.
    """

    def __init__(
        self,
        expression: str,
        variables: Iterable[str] = TEMPERATURE_VARIABLES,
        context: Optional[FormulaContext] = None,
    ) -> None:
        self.expression = expression.strip() if isinstance(expression, str) else expression
        self.variables: tuple[str, ...] = tuple(variables)
        self._constants = (context or FormulaContext()).constants
        self.used_variables: set[str] = set()

        tree = self._parse()
        self._compiled = self._compile(tree.body, depth=0)

    def _parse(self) -> ast.Expression:
        if not isinstance(self.expression, str) or not self.expression:
            raise InvalidFormula(str(self.expression), "empty expression")
        if len(self.expression) > MAX_FORMULA_LENGTH:
            raise InvalidFormula(
                self.expression[:40] + "...",
                f"expression longer than {MAX_FORMULA_LENGTH} characters",
            )
        try:
            tree = ast.parse(self.expression, mode="eval")
        except SyntaxError as e:
            raise InvalidFormula(self.expression, f"syntax error ({e.msg})") from e

        node_count = sum(1 for _ in ast.walk(tree))
        if node_count > MAX_FORMULA_NODES:
            raise InvalidFormula(
                self.expression, f"expression has {node_count} nodes (limit {MAX_FORMULA_NODES})"
            )
        return tree

    def _compile(self, node: ast.AST, depth: int) -> Compiled:
        if depth > MAX_FORMULA_DEPTH:
            raise InvalidFormula(self.expression, f"nesting deeper than {MAX_FORMULA_DEPTH}")

        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise InvalidFormula(self.expression, f"unsupported literal {node.value!r}")
            value = float(node.value)
            return lambda env: value

        if isinstance(node, ast.Name):
            name = node.id
            if name in self.variables:
                self.used_variables.add(name)
                return lambda env: env[name]
            if name in self._constants:
                value = self._constants[name]
                return lambda env: value
            if name in ALLOWED_FUNCTIONS:
                raise InvalidFormula(self.expression, f"function '{name}' used without a call")
            raise InvalidFormula(self.expression, f"unknown identifier '{name}'")

        if isinstance(node, ast.BinOp):
            op = _BINARY_OPERATORS.get(type(node.op))
            if op is None:
                hint = " (use ** for powers)" if isinstance(node.op, ast.BitXor) else ""
                raise InvalidFormula(
                    self.expression, f"operator '{type(node.op).__name__}' not allowed{hint}"
                )
            left = self._compile(node.left, depth + 1)
            right = self._compile(node.right, depth + 1)
            return lambda env: op(left(env), right(env))

        if isinstance(node, ast.UnaryOp):
            unary = _UNARY_OPERATORS.get(type(node.op))
            if unary is None:
                raise InvalidFormula(self.expression, f"operator '{type(node.op).__name__}' not allowed")
            operand = self._compile(node.operand, depth + 1)
            return lambda env: unary(operand(env))

        if isinstance(node, ast.Call):
            return self._compile_call(node, depth)

        raise InvalidFormula(self.expression, f"'{type(node).__name__}' is not allowed")

    def _compile_call(self, node: ast.Call, depth: int) -> Compiled:
        if not isinstance(node.func, ast.Name) or node.func.id not in ALLOWED_FUNCTIONS:
            name = node.func.id if isinstance(node.func, ast.Name) else type(node.func).__name__
            raise InvalidFormula(self.expression, f"function '{name}' is not allowed")
        if node.keywords:
            raise InvalidFormula(self.expression, "keyword arguments are not allowed")
        if any(isinstance(arg, ast.Starred) for arg in node.args):
            raise InvalidFormula(self.expression, "argument unpacking is not allowed")

        func, min_args, max_args = ALLOWED_FUNCTIONS[node.func.id]
        n_args = len(node.args)
        if n_args < min_args or (max_args is not None and n_args > max_args):
            expected = str(min_args) if min_args == max_args else f"at least {min_args}"
            raise InvalidFormula(
                self.expression, f"'{node.func.id}' expects {expected} argument(s), got {n_args}"
            )

        args = [self._compile(arg, depth + 1) for arg in node.args]
        if max_args is None:
            # Variadic min/max reduce pairwise
            def reduce(env: dict[str, Any]) -> Any:
                result = args[0](env)
                for arg in args[1:]:
                    result = func(result, arg(env))
                return result
            return reduce
        if n_args == 1:
            only = args[0]
            return lambda env: func(only(env))
        return lambda env: func(*(arg(env) for arg in args))

    def evaluate(self, **values: Number) -> Number:
        """
        Evaluate the formula.

        Args:
            **values: One value (scalar or array) per declared variable.

        Returns:
            A float for scalar input, otherwise an array broadcast over the inputs.

        Raises:
            FormulaEvaluationError: If any result is NaN or infinite.
        """
        missing = [name for name in self.used_variables if name not in values]
        if missing:
            raise TypeError(f"Formula '{self.expression}' missing value(s) for {', '.join(sorted(missing))}")

        env = {name: np.asarray(values[name], dtype=np.float64) for name in self.used_variables}
        with np.errstate(all="ignore"):
            result = np.asarray(self._compiled(env), dtype=np.float64)

        if not np.all(np.isfinite(result)):
            bad = {}
            if result.ndim == 0:
                bad = {name: float(v) for name, v in env.items() if v.ndim == 0}
            raise FormulaEvaluationError(self.expression, bad)

        if result.ndim == 0:
            return float(result)
        return result

    def __call__(self, **values: Number) -> Number:
        return self.evaluate(**values)

    def __repr__(self) -> str:
        return f"Formula({self.expression!r}, variables={self.variables})"


def validate_formula(expression: str, variables: Iterable[str] = TEMPERATURE_VARIABLES,
                     context: Optional[FormulaContext] = None) -> None:
    """Raise InvalidFormula if the expression would not compile."""
    Formula(expression, variables=variables, context=context)
