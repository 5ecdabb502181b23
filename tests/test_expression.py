"""
Tests for affect.expression.

Tests cover:
- JSON-Logic parsing and malformed definitions
- Evaluation with full attribution and fail-closed comparisons
- Arithmetic operands
- Tree utilities (var paths, threshold replacement, rendering)
"""

import pytest

from affect.expression import (
    And,
    Arith,
    Const,
    ExpressionDefinition,
    Leaf,
    Or,
    Var,
    collect_var_paths,
    describe,
    evaluate,
    evaluate_prerequisites,
    parse_logic,
    replace_threshold,
    resolve_operand,
)
from affect.types_state import MalformedDefinitionError


CONTEXT = {
    "emotions": {"joy": 0.6, "fear": 0.1},
    "previousEmotions": {"joy": 0.2},
    "moodAxes": {"valence": 40},
    "sexualArousal": 0.3,
}


class TestParsing:
    """parse_logic and ExpressionDefinition.from_dict."""

    def test_leaf(self):
        """Simple comparison parses to a Leaf."""
        node = parse_logic({">=": [{"var": "emotions.joy"}, 0.5]})
        assert node == Leaf(">=", Var("emotions.joy"), Const(0.5))

    def test_nested(self):
        """and/or nest arbitrarily."""
        node = parse_logic({"and": [
            {">=": [{"var": "emotions.joy"}, 0.5]},
            {"or": [{"<": [{"var": "emotions.fear"}, 0.2]}, {"==": [{"var": "sexualArousal"}, 1]}]},
        ]})
        assert isinstance(node, And)
        assert isinstance(node.children[1], Or)

    def test_arithmetic_operand(self):
        """Arithmetic operands parse recursively."""
        node = parse_logic({">": [{"-": [{"var": "emotions.joy"}, {"var": "previousEmotions.joy"}]}, 0.3]})
        assert isinstance(node.left, Arith)
        assert node.left.op == "-"

    def test_unknown_operator(self):
        """Unsupported operators are rejected at parse time."""
        with pytest.raises(MalformedDefinitionError):
            parse_logic({"in": ["a", "abc"]})

    def test_wrong_arity(self):
        """Comparisons need exactly two operands."""
        with pytest.raises(MalformedDefinitionError):
            parse_logic({">=": [{"var": "emotions.joy"}]})

    def test_definition_requires_id(self):
        """Expression definitions need a non-empty id."""
        with pytest.raises(MalformedDefinitionError):
            ExpressionDefinition.from_dict({"prerequisites": []})

    def test_prerequisite_requires_logic(self):
        """Each prerequisite must carry 'logic'."""
        with pytest.raises(MalformedDefinitionError):
            ExpressionDefinition.from_dict({"id": "x", "prerequisites": [{"note": "no logic"}]})

    def test_definition_metadata_and_to_dict(self):
        """Extra keys are kept and rendered back."""
        data = {"id": "joy_spike", "category": "positive",
                "prerequisites": [{"logic": {">=": [{"var": "emotions.joy"}, 0.5]}}]}
        definition = ExpressionDefinition.from_dict(data)
        assert definition.metadata == {"category": "positive"}
        assert definition.to_dict() == data


class TestEvaluation:
    """evaluate / evaluate_prerequisites."""

    def test_pass_and_fail(self):
        """Comparisons evaluate against the context."""
        assert evaluate(parse_logic({">=": [{"var": "emotions.joy"}, 0.5]}), CONTEXT).passed
        assert not evaluate(parse_logic({">=": [{"var": "emotions.fear"}, 0.5]}), CONTEXT).passed

    def test_missing_path_fails_closed(self):
        """Comparisons against missing paths fail."""
        for op in (">=", "<=", "==", "!="):
            node = parse_logic({op: [{"var": "emotions.missing"}, 0.1]})
            assert not evaluate(node, CONTEXT).passed

    def test_var_default(self):
        """A var default stands in for a missing path."""
        node = parse_logic({">=": [{"var": ["emotions.missing", 1]}, 0.5]})
        assert evaluate(node, CONTEXT).passed

    def test_no_short_circuit_attribution(self):
        """Every leaf is attributed even after AND has failed."""
        node = parse_logic({"and": [
            {">=": [{"var": "emotions.fear"}, 0.5]},
            {">=": [{"var": "emotions.joy"}, 0.5]},
        ]})
        result = evaluate(node, CONTEXT)
        assert not result.passed
        assert [a.clause_id for a in result.attribution] == ["0.0", "0.1"]
        assert [a.passed for a in result.attribution] == [False, True]
        assert len(result.failed_leaves) == 1

    def test_or(self):
        """OR passes when any child passes."""
        node = parse_logic({"or": [
            {">=": [{"var": "emotions.fear"}, 0.5]},
            {">=": [{"var": "emotions.joy"}, 0.5]},
        ]})
        assert evaluate(node, CONTEXT).passed

    def test_empty_prerequisites_pass(self):
        """No prerequisites means the expression fires."""
        assert evaluate_prerequisites((), CONTEXT).passed

    def test_prerequisite_clause_ids(self):
        """Prerequisite i is rooted at clause id 'i'."""
        nodes = [parse_logic({">=": [{"var": "emotions.joy"}, 0.5]}),
                 parse_logic({">=": [{"var": "emotions.fear"}, 0.5]})]
        result = evaluate_prerequisites(nodes, CONTEXT)
        assert not result.passed
        assert [a.clause_id for a in result.failed_leaves] == ["1"]

    def test_arithmetic_delta(self):
        """Persistence-style delta arithmetic resolves."""
        operand = parse_logic({">": [{"-": [{"var": "emotions.joy"}, {"var": "previousEmotions.joy"}]}, 0]}).left
        assert resolve_operand(operand, CONTEXT) == pytest.approx(0.4)

    def test_division_by_zero(self):
        """Division by zero resolves to None and the comparison fails."""
        node = parse_logic({">": [{"/": [{"var": "emotions.joy"}, 0]}, 0]})
        assert not evaluate(node, CONTEXT).passed

    def test_integer_overflow_fails_closed(self):
        """Products too large for a float resolve to None instead of raising."""
        node = parse_logic({">=": [{"*": [10 ** 200, 10 ** 200]}, 1]})
        assert resolve_operand(node.left, CONTEXT) is None
        assert not evaluate(node, CONTEXT).passed

    def test_string_vs_number_fails(self):
        """Mixed-type ordering comparisons fail closed."""
        node = parse_logic({">=": ["abc", 1]})
        assert not evaluate(node, CONTEXT).passed


class TestUtilities:
    """Tree utilities."""

    def test_collect_var_paths(self):
        """Var paths are unique, first-seen order."""
        node = parse_logic({"and": [
            {">=": [{"var": "emotions.joy"}, 0.5]},
            {">": [{"-": [{"var": "emotions.joy"}, {"var": "previousEmotions.joy"}]}, 0.1]},
        ]})
        assert collect_var_paths(node) == ["emotions.joy", "previousEmotions.joy"]

    def test_threshold_info_reversed(self):
        """Constant-on-left comparisons report the flipped operator."""
        leaf = parse_logic({"<=": [0.5, {"var": "emotions.joy"}]})
        assert leaf.threshold_info() == ("emotions.joy", ">=", 0.5)

    def test_replace_threshold(self):
        """Matching comparisons move; others stay."""
        node = parse_logic({"and": [
            {">=": [{"var": "emotions.joy"}, 0.5]},
            {"<": [{"var": "emotions.fear"}, 0.2]},
        ]})
        moved = replace_threshold(node, "emotions.joy", ">=", 0.7)
        assert moved.children[0].right == Const(0.7)
        assert moved.children[1] == node.children[1]
        assert not evaluate(moved, CONTEXT).passed

    def test_describe(self):
        """Leaves render inline; composites summarize."""
        leaf = parse_logic({">=": [{"var": "emotions.joy"}, 0.5]})
        assert describe(leaf) == "emotions.joy >= 0.5"
        assert describe(And((leaf, leaf))) == "AND of 2 conditions"
