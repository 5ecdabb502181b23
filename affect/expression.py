"""
affect/expression.py - Expression Trees and Evaluation

JSON-Logic style prerequisite trees parsed once into a closed node set:

    Node    = And(children) | Or(children) | Leaf(operator, left, right)
    Operand = Var(path) | Const(value) | Arith(op, args)

Evaluation visits every child (no short-circuit) so attribution covers the
whole tree. Missing paths resolve to None and every comparison against
None, or against a non-numeric value, fails closed.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .constants import ARITHMETIC_OPERATORS, COMPARISON_OPERATORS
from .statistics import get_nested_value
from .types_result import EvaluationResult, LeafAttribution
from .types_state import MalformedDefinitionError

logger = logging.getLogger(__name__)

REVERSED_OPERATORS = {">=": "<=", "<=": ">=", ">": "<", "<": ">", "==": "==", "!=": "!="}


# =============================================================================
# NODE TYPES
# =============================================================================

@dataclass(frozen=True)
class Var:
    path: str
    default: Any = None


@dataclass(frozen=True)
class Const:
    value: Any


@dataclass(frozen=True)
class Arith:
    op: str
    args: Tuple["Operand", ...]


Operand = Union[Var, Const, Arith]


@dataclass(frozen=True)
class Leaf:
    operator: str
    left: Operand
    right: Operand

    def threshold_info(self) -> Optional[Tuple[str, str, float]]:
        """(var_path, operator, threshold) with the variable on the left, if simple."""
        if isinstance(self.left, Var) and isinstance(self.right, Const) and _is_number(self.right.value):
            return self.left.path, self.operator, self.right.value
        if isinstance(self.right, Var) and isinstance(self.left, Const) and _is_number(self.left.value):
            return self.right.path, REVERSED_OPERATORS[self.operator], self.left.value
        return None


@dataclass(frozen=True)
class And:
    children: Tuple["Node", ...] = ()


@dataclass(frozen=True)
class Or:
    children: Tuple["Node", ...] = ()


Node = Union[And, Or, Leaf]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# =============================================================================
# PARSING
# =============================================================================

def _single_key(logic: Any, where: str) -> Tuple[str, Any]:
    if not isinstance(logic, Mapping) or len(logic) != 1:
        raise MalformedDefinitionError(f"{where}: expected a single-operator mapping, got {logic!r}")
    return next(iter(logic.items()))


def parse_operand(raw: Any) -> Operand:
    if isinstance(raw, Mapping):
        op, args = _single_key(raw, "operand")
        if op == "var":
            if isinstance(args, str):
                return Var(args)
            if isinstance(args, (list, tuple)) and args and isinstance(args[0], str):
                return Var(args[0], args[1] if len(args) > 1 else None)
            raise MalformedDefinitionError(f"Invalid var reference: {args!r}")
        if op in ARITHMETIC_OPERATORS:
            if not isinstance(args, (list, tuple)):
                args = [args]
            return Arith(op, tuple(parse_operand(a) for a in args))
        raise MalformedDefinitionError(f"Unknown operand operator '{op}'")
    if isinstance(raw, (list, tuple)):
        raise MalformedDefinitionError(f"Unexpected list operand: {raw!r}")
    return Const(raw)


def parse_logic(logic: Any) -> Node:
    """
    Parse a JSON-Logic mapping into a node tree.

    Raises:
        MalformedDefinitionError: On any operator outside the supported set
    """
    op, args = _single_key(logic, "logic")
    if op in ("and", "or"):
        if not isinstance(args, (list, tuple)):
            raise MalformedDefinitionError(f"'{op}' expects a list of conditions")
        children = tuple(parse_logic(child) for child in args)
        return And(children) if op == "and" else Or(children)
    if op in COMPARISON_OPERATORS:
        if not isinstance(args, (list, tuple)) or len(args) != 2:
            raise MalformedDefinitionError(f"'{op}' expects exactly two operands")
        return Leaf(op, parse_operand(args[0]), parse_operand(args[1]))
    raise MalformedDefinitionError(f"Unknown logic operator '{op}'")


def operand_to_logic(operand: Operand) -> Any:
    if isinstance(operand, Var):
        return {"var": operand.path if operand.default is None else [operand.path, operand.default]}
    if isinstance(operand, Arith):
        return {operand.op: [operand_to_logic(a) for a in operand.args]}
    return operand.value


def to_logic(node: Node) -> Dict[str, Any]:
    """Render a node tree back to its JSON-Logic mapping."""
    if isinstance(node, And):
        return {"and": [to_logic(c) for c in node.children]}
    if isinstance(node, Or):
        return {"or": [to_logic(c) for c in node.children]}
    return {node.operator: [operand_to_logic(node.left), operand_to_logic(node.right)]}


@dataclass(frozen=True)
class ExpressionDefinition:
    """Trigger expression: fires iff every prerequisite passes."""
    id: str
    prerequisites: Tuple[Node, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExpressionDefinition":
        if not isinstance(data, Mapping):
            raise MalformedDefinitionError("Expression definition must be a mapping")
        expression_id = data.get("id")
        if not isinstance(expression_id, str) or not expression_id:
            raise MalformedDefinitionError("Expression definition requires a non-empty 'id'")
        prerequisites = data.get("prerequisites") or []
        if not isinstance(prerequisites, (list, tuple)):
            raise MalformedDefinitionError(f"Expression '{expression_id}' prerequisites must be a list")
        nodes = []
        for index, prereq in enumerate(prerequisites):
            if not isinstance(prereq, Mapping) or "logic" not in prereq:
                raise MalformedDefinitionError(
                    f"Expression '{expression_id}' prerequisite {index} is missing 'logic'"
                )
            nodes.append(parse_logic(prereq["logic"]))
        extra = {k: v for k, v in data.items() if k not in ("id", "prerequisites")}
        return cls(id=expression_id, prerequisites=tuple(nodes), metadata=extra)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.metadata)
        data["id"] = self.id
        data["prerequisites"] = [{"logic": to_logic(node)} for node in self.prerequisites]
        return data


# =============================================================================
# EVALUATION
# =============================================================================

def resolve_operand(operand: Operand, context: Any) -> Any:
    """Value of an operand; None when a path is missing or arithmetic fails."""
    if isinstance(operand, Const):
        return operand.value
    if isinstance(operand, Var):
        value = get_nested_value(context, operand.path)
        return operand.default if value is None else value

    values = [resolve_operand(a, context) for a in operand.args]
    if not values or not all(_is_number(v) for v in values):
        return None
    try:
        if operand.op == "+":
            result = sum(values)
        elif operand.op == "-":
            result = -values[0] if len(values) == 1 else values[0] - sum(values[1:])
        elif operand.op == "*":
            result = math.prod(values)
        elif operand.op == "/":
            result = values[0] / values[1]
        elif operand.op == "min":
            result = min(values)
        else:
            result = max(values)
        return result if math.isfinite(result) else None
    except (ZeroDivisionError, IndexError, OverflowError):
        return None


def compare(operator: str, left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    if operator in ("==", "!="):
        if _is_number(left) and _is_number(right):
            equal = left == right
        elif type(left) is type(right):
            equal = left == right
        else:
            return False
        return equal if operator == "==" else not equal
    if not (_is_number(left) and _is_number(right)):
        return False
    if operator == ">=":
        return left >= right
    if operator == "<=":
        return left <= right
    if operator == ">":
        return left > right
    return left < right


def evaluate_leaf(leaf: Leaf, context: Any) -> Tuple[bool, Any, Any]:
    """(passed, left value, right value) for one comparison."""
    left = resolve_operand(leaf.left, context)
    right = resolve_operand(leaf.right, context)
    return compare(leaf.operator, left, right), left, right


def _evaluate(node: Node, context: Any, clause_id: str,
              attribution: List[LeafAttribution]) -> bool:
    if isinstance(node, Leaf):
        passed, left, right = evaluate_leaf(node, context)
        verdict = "passed" if passed else "failed"
        attribution.append(LeafAttribution(
            clause_id=clause_id,
            passed=passed,
            message=f"{describe(node)} [{left!r} vs {right!r}] {verdict}",
        ))
        return passed
    results = [_evaluate(child, context, f"{clause_id}.{i}", attribution)
               for i, child in enumerate(node.children)]
    if isinstance(node, And):
        return all(results)
    return any(results)


def evaluate(node: Node, context: Any, clause_id: str = "0") -> EvaluationResult:
    """
    Evaluate a tree with full per-leaf attribution.

    Args:
        node: Root node
        context: Context or plain mapping
        clause_id: Path id of the root (children extend it with '.i')

    Returns:
        EvaluationResult(passed, attribution)
    """
    attribution: List[LeafAttribution] = []
    passed = _evaluate(node, context, clause_id, attribution)
    return EvaluationResult(passed=passed, attribution=tuple(attribution))


def evaluate_prerequisites(prerequisites: Sequence[Node], context: Any) -> EvaluationResult:
    """AND over prerequisites; prerequisite i is rooted at clause id 'i'."""
    attribution: List[LeafAttribution] = []
    passed = True
    for index, node in enumerate(prerequisites):
        if not _evaluate(node, context, str(index), attribution):
            passed = False
    return EvaluationResult(passed=passed, attribution=tuple(attribution))


# =============================================================================
# TREE UTILITIES
# =============================================================================

def _operand_paths(operand: Operand, out: List[str]) -> None:
    if isinstance(operand, Var):
        if operand.path not in out:
            out.append(operand.path)
    elif isinstance(operand, Arith):
        for arg in operand.args:
            _operand_paths(arg, out)


def collect_var_paths(node: Node) -> List[str]:
    """Unique var paths in first-seen order."""
    paths: List[str] = []

    def walk(n: Node) -> None:
        if isinstance(n, Leaf):
            _operand_paths(n.left, paths)
            _operand_paths(n.right, paths)
        else:
            for child in n.children:
                walk(child)

    walk(node)
    return paths


def replace_threshold(node: Node, var_path: str, operator: str, threshold: float) -> Node:
    """New tree with every matching simple comparison moved to threshold."""
    if isinstance(node, And):
        return And(tuple(replace_threshold(c, var_path, operator, threshold) for c in node.children))
    if isinstance(node, Or):
        return Or(tuple(replace_threshold(c, var_path, operator, threshold) for c in node.children))
    info = node.threshold_info()
    if info is None or info[0] != var_path or info[1] != operator:
        return node
    if isinstance(node.left, Var):
        return Leaf(node.operator, node.left, Const(threshold))
    return Leaf(node.operator, Const(threshold), node.right)


def describe_operand(operand: Operand) -> str:
    if isinstance(operand, Var):
        return operand.path
    if isinstance(operand, Arith):
        inner = f" {operand.op} ".join(describe_operand(a) for a in operand.args)
        if operand.op in ("min", "max"):
            return f"{operand.op}({', '.join(describe_operand(a) for a in operand.args)})"
        return f"({inner})"
    if isinstance(operand.value, str):
        return f'"{operand.value}"'
    return str(operand.value)


def describe(node: Node) -> str:
    """Human-readable one-line rendering."""
    if isinstance(node, Leaf):
        return f"{describe_operand(node.left)} {node.operator} {describe_operand(node.right)}"
    label = "AND" if isinstance(node, And) else "OR"
    return f"{label} of {len(node.children)} conditions"
