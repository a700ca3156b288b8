"""
Transition condition tests.

Conditions are tagged predicates evaluated against a plain dict; nothing
here touches the database.
"""

import pytest

from pharmaflow.services.workflow_conditions import (
    ConditionEvaluator,
    default_condition_evaluator,
    is_blank,
    resolve_field,
)


@pytest.fixture
def evaluator():
    return default_condition_evaluator()


CONTEXT = {
    "status": "ordered",
    "priority": "high",
    "total_amount_cents": 125000,
    "is_fully_received": False,
    "overall_result": "passed",
    "remarks": "   ",
    "supplier": {"name": "Acme Pharma", "ratings": [4, 5]},
}


class TestLeafPredicates:

    @pytest.mark.parametrize(
        "condition,expected",
        [
            ({"kind": "field_equals", "field": "status", "value": "ordered"}, True),
            ({"kind": "field_equals", "field": "status", "value": "draft"}, False),
            ({"kind": "field_not_equals", "field": "status", "value": "draft"}, True),
            ({"kind": "field_in", "field": "priority", "values": ["high", "urgent"]}, True),
            ({"kind": "field_in", "field": "priority", "values": ["low"]}, False),
            ({"kind": "field_gte", "field": "total_amount_cents", "value": 125000}, True),
            ({"kind": "field_gt", "field": "total_amount_cents", "value": 125000}, False),
            ({"kind": "field_lt", "field": "total_amount_cents", "value": 200000}, True),
            ({"kind": "field_lte", "field": "status", "value": 5}, False),
            ({"kind": "field_present", "field": "priority"}, True),
            ({"kind": "field_present", "field": "remarks"}, False),
            ({"kind": "field_equals", "field": "supplier.name", "value": "Acme Pharma"}, True),
            ({"kind": "field_equals", "field": "supplier.ratings.1", "value": 5}, True),
        ],
    )
    def test_field_predicates(self, evaluator, condition, expected):
        assert evaluator.evaluate(condition, CONTEXT) is expected

    def test_missing_field_never_matches(self, evaluator):
        assert evaluator.evaluate({"kind": "field_not_equals", "field": "ghost", "value": 1}, CONTEXT) is False
        assert evaluator.evaluate({"kind": "field_gte", "field": "ghost", "value": 1}, CONTEXT) is False

    def test_empty_condition_always_holds(self, evaluator):
        assert evaluator.evaluate(None, CONTEXT) is True
        assert evaluator.evaluate({}, CONTEXT) is True

    def test_malformed_condition_is_false(self, evaluator):
        assert evaluator.evaluate("status == 'ordered'", CONTEXT) is False
        assert evaluator.evaluate({"kind": "exec"}, CONTEXT) is False


class TestCompositesAndGuards:

    def test_all_any_not(self, evaluator):
        high = {"kind": "field_equals", "field": "priority", "value": "high"}
        draft = {"kind": "field_equals", "field": "status", "value": "draft"}

        assert evaluator.evaluate({"kind": "all", "conditions": [high, draft]}, CONTEXT) is False
        assert evaluator.evaluate({"kind": "any", "conditions": [high, draft]}, CONTEXT) is True
        assert evaluator.evaluate({"kind": "not", "condition": draft}, CONTEXT) is True

    def test_builtin_guards(self, evaluator):
        assert evaluator.evaluate({"kind": "guard", "name": "fully_received"}, CONTEXT) is False
        assert evaluator.evaluate({"kind": "guard", "name": "qc_passed"}, CONTEXT) is True
        assert evaluator.evaluate({"kind": "guard", "name": "has_remarks"}, CONTEXT) is False
        assert evaluator.guard_names == {"fully_received", "qc_passed", "has_remarks"}

    def test_unknown_guard_is_false(self):
        assert ConditionEvaluator().evaluate({"kind": "guard", "name": "fully_received"}, CONTEXT) is False

    def test_registered_guard(self, evaluator):
        evaluator.register_guard("big_order", lambda ctx: ctx["total_amount_cents"] > 100000)

        assert evaluator.evaluate({"kind": "guard", "name": "big_order"}, CONTEXT) is True
        assert evaluator.validate({"kind": "guard", "name": "big_order"}) == []


class TestValidate:

    def test_well_formed_tree(self, evaluator):
        condition = {
            "kind": "all",
            "conditions": [
                {"kind": "guard", "name": "fully_received"},
                {"kind": "not", "condition": {"kind": "field_in", "field": "priority", "values": ["low"]}},
            ],
        }
        assert evaluator.validate(condition) == []

    def test_nested_errors_carry_paths(self, evaluator):
        condition = {
            "kind": "any",
            "conditions": [
                {"kind": "field_equals", "field": "status"},
                {},
                {"kind": "field_gt", "field": " ", "value": True},
            ],
        }
        fields = [e["field"] for e in evaluator.validate(condition)]
        assert fields == [
            "conditions.conditions[0].value",
            "conditions.conditions[1]",
            "conditions.conditions[2].field",
            "conditions.conditions[2].value",
        ]


class TestHelpers:

    @pytest.mark.parametrize("value", [None, "", "  ", [], {}, set()])
    def test_blank_values(self, value):
        assert is_blank(value) is True

    @pytest.mark.parametrize("value", [0, False, "x", [0]])
    def test_non_blank_values(self, value):
        assert is_blank(value) is False

    def test_resolve_field_missing_path(self):
        assert is_blank(resolve_field(CONTEXT, "supplier.address.city"))
        assert is_blank(resolve_field(CONTEXT, "supplier.ratings.9"))
