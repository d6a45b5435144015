"""
Formula Engine
==============
Compiles user-authored algebraic expressions once and evaluates them many
times inside the solver loop.

Grammar
-------
Numbers, identifiers, the operators ``+ - * / ^`` (``^`` is exponentiation,
right-associative, binding tighter than unary minus: ``-2^2 == -4``),
parentheses, calls of a fixed function library and the named constants
``pi``, ``e`` and ``sigma_sb`` (Stefan-Boltzmann).

The text is parsed with Python's ``ast`` module and then walked against a
whitelist; anything outside the grammar (attribute access, subscripts,
comparisons, lambdas, keyword arguments ...) is rejected. The result is an
immutable tree of tagged nodes; evaluation is a recursive walk over that tree
with no loops and no calls outside the function table, so its cost is bounded
by the tree size. Bindings may be floats or NumPy arrays; array bindings are
evaluated element-wise for all cells at once.
"""
from __future__ import annotations

import ast
import keyword
import logging
from dataclasses import dataclass, field
from functools import reduce
from typing import Callable, Mapping, Optional, Sequence, Union, TYPE_CHECKING

import numpy as np

from plasmafurnace.config import FORMULA_MAX_DEPTH, FORMULA_MAX_LENGTH, STEFAN_BOLTZMANN
from plasmafurnace.errors import EvalError, EvalErrorKind, ParseError

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.model.formulas import Formula

logger = logging.getLogger(__name__)

Value = Union[float, "npt.NDArray[np.float64]"]


# ==========================================
# COMPILED TREE
# ==========================================

@dataclass(frozen=True)
class Constant:
    value: float


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class UnaryOp:
    op: str  # "-"
    operand: Node


@dataclass(frozen=True)
class BinaryOp:
    op: str  # one of + - * / ^
    left: Node
    right: Node


@dataclass(frozen=True)
class Call:
    function: str
    args: tuple[Node, ...]


Node = Union[Constant, Variable, UnaryOp, BinaryOp, Call]


@dataclass(frozen=True)
class CompiledFormula:
    """
    Reusable evaluable form of an expression.

    Attributes:
        expression: Original source text.
        declared_variables: Names the caller promised to bind.
        root: Tree root; None when the expression is nested deeper than the
            engine allows (evaluation then fails with DEPTH_EXCEEDED).
        depth: Nesting depth of the expression; a run of ``+ -`` or ``* /``
            operators such as ``a + b - c + d`` counts as a single level.
        variables: Declared variables the expression actually references.
    """
    expression: str
    declared_variables: tuple[str, ...]
    root: Optional[Node]
    depth: int
    variables: frozenset[str] = frozenset()


@dataclass(frozen=True)
class BoundFormula:
    """A compiled library formula plus the default values of its parameters."""
    formula_id: str
    compiled: CompiledFormula
    defaults: Mapping[str, float] = field(default_factory=dict)

    def merge(self, bindings: Mapping[str, Value]) -> dict[str, Value]:
        """Parameter defaults overridden by the caller's bindings."""
        merged: dict[str, Value] = dict(self.defaults)
        merged.update(bindings)
        return merged


# ==========================================
# FUNCTION & CONSTANT TABLES
# ==========================================

CONSTANTS: dict[str, float] = {
    "pi": float(np.pi),
    "e": float(np.e),
    "sigma_sb": STEFAN_BOLTZMANN,
}


def _sqrt(x: Value) -> Value:
    if np.any(x < 0):
        raise EvalError(EvalErrorKind.DOMAIN_ERROR, "sqrt of a negative number")
    return np.sqrt(x)


def _log(x: Value) -> Value:
    if np.any(x <= 0):
        raise EvalError(EvalErrorKind.DOMAIN_ERROR, "log of a non-positive number")
    return np.log(x)


def _log10(x: Value) -> Value:
    if np.any(x <= 0):
        raise EvalError(EvalErrorKind.DOMAIN_ERROR, "log10 of a non-positive number")
    return np.log10(x)


def _asin(x: Value) -> Value:
    if np.any(np.abs(x) > 1):
        raise EvalError(EvalErrorKind.DOMAIN_ERROR, "asin argument outside [-1, 1]")
    return np.arcsin(x)


def _acos(x: Value) -> Value:
    if np.any(np.abs(x) > 1):
        raise EvalError(EvalErrorKind.DOMAIN_ERROR, "acos argument outside [-1, 1]")
    return np.arccos(x)


def _power(base: Value, exponent: Value) -> Value:
    if np.any((base == 0) & (exponent < 0)):
        raise EvalError(EvalErrorKind.DIVISION_BY_ZERO, "zero raised to a negative power")
    if np.any((base < 0) & (exponent != np.floor(exponent))):
        raise EvalError(EvalErrorKind.DOMAIN_ERROR, "negative base with a fractional exponent")
    return np.power(base, exponent)


def _divide(a: Value, b: Value) -> Value:
    if np.any(b == 0):
        raise EvalError(EvalErrorKind.DIVISION_BY_ZERO, "division by zero")
    return np.divide(a, b)


# name -> (min args, max args or None for variadic, implementation)
FUNCTIONS: dict[str, tuple[int, Optional[int], Callable[..., Value]]] = {
    "sin": (1, 1, np.sin),
    "cos": (1, 1, np.cos),
    "tan": (1, 1, np.tan),
    "asin": (1, 1, _asin),
    "acos": (1, 1, _acos),
    "atan": (1, 1, np.arctan),
    "sinh": (1, 1, np.sinh),
    "cosh": (1, 1, np.cosh),
    "tanh": (1, 1, np.tanh),
    "exp": (1, 1, np.exp),
    "log": (1, 1, _log),
    "log10": (1, 1, _log10),
    "sqrt": (1, 1, _sqrt),
    "abs": (1, 1, np.abs),
    "floor": (1, 1, np.floor),
    "ceil": (1, 1, np.ceil),
    "pow": (2, 2, _power),
    "min": (1, None, lambda *args: reduce(np.minimum, args)),
    "max": (1, None, lambda *args: reduce(np.maximum, args)),
}

_BINARY_OPS: dict[type, str] = {
    ast.Add: "+",
    ast.Sub: "-",
    ast.Mult: "*",
    ast.Div: "/",
    ast.Pow: "^",
}

_BINARY_IMPL: dict[str, Callable[[Value, Value], Value]] = {
    "+": np.add,
    "-": np.subtract,
    "*": np.multiply,
    "/": _divide,
    "^": _power,
}

# Left-associative operator families; a run of one family counts as one nesting level
_CHAIN_FAMILY: dict[str, str] = {"+": "additive", "-": "additive", "*": "multiplicative", "/": "multiplicative"}


def _chain_family(node: ast.AST) -> Optional[str]:
    if isinstance(node, ast.BinOp):
        return _CHAIN_FAMILY.get(_BINARY_OPS.get(type(node.op), ""))
    return None


class _DepthLimit(Exception):
    def __init__(self, depth: int) -> None:
        super().__init__(depth)
        self.depth = depth


# ==========================================
# ENGINE
# ==========================================

class FormulaEngine:
    """
    Stateless compiler/evaluator; one instance may be shared between threads.
    """

    def __init__(self, max_depth: int = FORMULA_MAX_DEPTH, max_length: int = FORMULA_MAX_LENGTH) -> None:
        self.max_depth = max_depth
        self.max_length = max_length

    # ---- Compilation ----

    def compile(self, expression: str, declared_variables: Sequence[str] = ()) -> CompiledFormula:
        """
        Compile an expression.

        Args:
            expression: Source text.
            declared_variables: Free variable names that may appear.

        Returns:
            The compiled formula.

        Raises:
            ParseError: Malformed expression, unknown identifier or
                unsupported syntax. ``position`` points into ``expression``.
        """
        declared = tuple(declared_variables)
        self._check_declared(declared)

        if not expression or not expression.strip():
            raise ParseError("empty expression", 0)
        if len(expression) > self.max_length:
            raise ParseError(f"expression longer than {self.max_length} characters", self.max_length)
        if "**" in expression:
            raise ParseError("use '^' for exponentiation", expression.index("**"))

        translated = expression.replace("^", "**")
        try:
            tree = ast.parse(translated.strip(), mode="eval")
        except SyntaxError as e:
            offset = self._syntax_offset(translated, translated.strip(), e)
            raise ParseError(e.msg or "invalid syntax", _original_position(expression, offset)) from None
        except RecursionError:
            return self._too_deep(expression, declared, self.max_depth + 1)

        # Offsets reported by ast are relative to the stripped text
        lead = len(translated) - len(translated.lstrip())
        referenced: set[str] = set()
        try:
            root = self._convert(tree.body, set(declared), referenced, 1, expression, lead)
            depth = self._depth(tree.body)
        except _DepthLimit as e:
            return self._too_deep(expression, declared, e.depth)
        except RecursionError:
            return self._too_deep(expression, declared, self.max_depth + 1)

        return CompiledFormula(
            expression=expression,
            declared_variables=declared,
            root=root,
            depth=depth,
            variables=frozenset(referenced),
        )

    def compile_formula(self, formula: Formula) -> BoundFormula:
        """Compile a library formula; its parameters become bindable names with defaults."""
        names = list(formula.variables) + [p.name for p in formula.parameters]
        compiled = self.compile(formula.expression, names)
        defaults = {p.name: float(p.default_value) for p in formula.parameters}
        return BoundFormula(formula_id=formula.id, compiled=compiled, defaults=defaults)

    def _too_deep(self, expression: str, declared: tuple[str, ...], depth: int) -> CompiledFormula:
        logger.debug(f"Expression nested deeper than {self.max_depth}: {expression[:40]!r}...")
        return CompiledFormula(expression=expression, declared_variables=declared, root=None, depth=depth)

    @staticmethod
    def _check_declared(declared: tuple[str, ...]) -> None:
        for name in declared:
            if not name.isidentifier() or keyword.iskeyword(name):
                raise ParseError(f"invalid variable name '{name}'", 0)
            if name in CONSTANTS or name in FUNCTIONS:
                raise ParseError(f"variable '{name}' shadows a built-in name", 0)

    @staticmethod
    def _syntax_offset(translated: str, stripped: str, error: SyntaxError) -> int:
        lead = len(translated) - len(translated.lstrip())
        lines = stripped.split("\n")
        lineno = max(1, min(error.lineno or 1, len(lines)))
        col = max(0, (error.offset or 1) - 1)
        return lead + sum(len(line) + 1 for line in lines[:lineno - 1]) + col

    def _depth(self, node: ast.AST) -> int:
        # Iterative so that the measure itself cannot overflow the stack
        best = 0
        stack = [(node, 1)]
        while stack:
            current, level = stack.pop()
            best = max(best, level)
            family = _chain_family(current)
            for child in ast.iter_child_nodes(current):
                if isinstance(child, (ast.expr_context, ast.operator, ast.unaryop)):
                    continue
                same_run = family is not None and child is current.left and _chain_family(child) == family
                stack.append((child, level if same_run else level + 1))
        return best

    def _convert(
        self,
        node: ast.AST,
        declared: set[str],
        referenced: set[str],
        level: int,
        expression: str,
        lead: int,
    ) -> Node:
        """Whitelist walk of the Python AST into the formula tree."""
        if level > self.max_depth:
            raise _DepthLimit(self._depth(node) + level - 1)

        def position(n: ast.AST) -> int:
            return _original_position(expression, lead + getattr(n, "col_offset", 0))

        def convert(child: ast.AST) -> Node:
            return self._convert(child, declared, referenced, level + 1, expression, lead)

        if isinstance(node, ast.Constant):
            value = node.value
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ParseError(f"unsupported literal {value!r}", position(node))
            try:
                number = float(value)
            except OverflowError:
                raise ParseError("number out of range", position(node)) from None
            if not np.isfinite(number):
                raise ParseError("number out of range", position(node))
            return Constant(number)

        if isinstance(node, ast.Name):
            name = node.id
            if name in declared:
                referenced.add(name)
                return Variable(name)
            if name in CONSTANTS:
                return Constant(CONSTANTS[name])
            if name in FUNCTIONS:
                raise ParseError(f"function '{name}' must be called", position(node))
            raise ParseError(f"unknown identifier '{name}'", position(node))

        if isinstance(node, ast.UnaryOp):
            operand = convert(node.operand)
            if isinstance(node.op, ast.UAdd):
                return operand
            if isinstance(node.op, ast.USub):
                if isinstance(operand, Constant):
                    return Constant(-operand.value)
                return UnaryOp("-", operand)
            raise ParseError(f"unsupported operator {type(node.op).__name__}", position(node))

        if isinstance(node, ast.BinOp):
            if type(node.op) not in _BINARY_OPS:
                raise ParseError(f"unsupported operator {type(node.op).__name__}", position(node))

            # 1) Left spine of a run of one operator family, outermost first
            family = _chain_family(node)
            run = [node]
            while family is not None and _chain_family(run[-1].left) == family:
                run.append(run[-1].left)

            # 2) Rebuild it innermost first without recursing along the spine
            result = convert(run[-1].left)
            for binop in reversed(run):
                result = _binary(_BINARY_OPS[type(binop.op)], result, convert(binop.right))
            return result

        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
                name = node.func.id if isinstance(node.func, ast.Name) else type(node.func).__name__
                raise ParseError(f"unknown function '{name}'", position(node))
            if node.keywords or any(isinstance(a, ast.Starred) for a in node.args):
                raise ParseError("keyword and star arguments are not supported", position(node))
            name = node.func.id
            min_args, max_args, impl = FUNCTIONS[name]
            if len(node.args) < min_args or (max_args is not None and len(node.args) > max_args):
                raise ParseError(f"wrong number of arguments for '{name}'", position(node))
            args = tuple(convert(a) for a in node.args)
            folded = _fold(lambda: impl(*(a.value for a in args)), *args)
            return folded if folded is not None else Call(name, args)

        raise ParseError(f"unsupported syntax: {type(node).__name__}", position(node))

    # ---- Evaluation ----

    def evaluate(self, compiled: CompiledFormula, bindings: Mapping[str, Value]) -> Value:
        """
        Evaluate a compiled formula.

        Args:
            compiled: Result of :meth:`compile`.
            bindings: Values of the free variables (floats or arrays).

        Returns:
            A float for scalar bindings, otherwise an array broadcast over the
            bindings.

        Raises:
            EvalError: Tagged with the failure kind.
        """
        if compiled.root is None or compiled.depth > self.max_depth:
            raise EvalError(
                EvalErrorKind.DEPTH_EXCEEDED,
                f"expression depth {compiled.depth} exceeds limit {self.max_depth}",
            )

        env: dict[str, Value] = {}
        for name in compiled.variables:
            if name not in bindings:
                raise EvalError(EvalErrorKind.UNKNOWN_VARIABLE, f"no value bound for '{name}'")
            env[name] = _as_number(name, bindings[name])

        with np.errstate(all="ignore"):
            result = _evaluate_node(compiled.root, env)

        if not np.all(np.isfinite(result)):
            raise EvalError(EvalErrorKind.DOMAIN_ERROR, "expression produced a non-finite value")
        if np.ndim(result) == 0:
            return float(result)
        return np.asarray(result, dtype=np.float64)

    def evaluate_formula(self, bound: BoundFormula, bindings: Mapping[str, Value]) -> Value:
        return self.evaluate(bound.compiled, bound.merge(bindings))


def _evaluate_node(node: Node, env: Mapping[str, Value]) -> Value:
    if isinstance(node, Constant):
        return node.value
    if isinstance(node, Variable):
        return env[node.name]
    if isinstance(node, BinaryOp):
        run = [node]
        family = _CHAIN_FAMILY.get(node.op)
        while (family is not None and isinstance(run[-1].left, BinaryOp)
               and _CHAIN_FAMILY.get(run[-1].left.op) == family):
            run.append(run[-1].left)
        value = _evaluate_node(run[-1].left, env)
        for binop in reversed(run):
            value = _BINARY_IMPL[binop.op](value, _evaluate_node(binop.right, env))
        return value
    if isinstance(node, UnaryOp):
        return np.negative(_evaluate_node(node.operand, env))
    if isinstance(node, Call):
        impl = FUNCTIONS[node.function][2]
        return impl(*(_evaluate_node(a, env) for a in node.args))
    raise TypeError(f"Unknown node {node!r}")


def _binary(op: str, left: Node, right: Node) -> Node:
    folded = _fold(lambda: _BINARY_IMPL[op](left.value, right.value), left, right)
    return folded if folded is not None else BinaryOp(op, left, right)


def _fold(compute: Callable[[], Value], *children: Node) -> Optional[Constant]:
    """Pre-compute a node whose children are all constants; None when not foldable."""
    if not all(isinstance(c, Constant) for c in children):
        return None
    try:
        with np.errstate(all="ignore"):
            value = float(compute())
    except EvalError:
        # Left for evaluation time, where the error is reported
        return None
    if not np.isfinite(value):
        return None
    return Constant(value)


def _as_number(name: str, value: object) -> Value:
    if isinstance(value, np.ndarray):
        return value.astype(np.float64, copy=False)
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise EvalError(EvalErrorKind.DOMAIN_ERROR, f"binding '{name}' is not numeric") from None


def _original_position(expression: str, offset: int) -> int:
    """Map an offset in the '^' -> '**' translated text back to the source text."""
    pos = 0
    for idx, ch in enumerate(expression):
        width = 2 if ch == "^" else 1
        if offset < pos + width:
            return idx
        pos += width
    return len(expression)
