# Overview: Tagged transition predicates and their evaluator.

"""
Transition conditions are stored as JSON but are never executed as code.
Each node is a tagged predicate:

    {"kind": "field_equals", "field": "overall_result", "value": "passed"}
    {"kind": "field_in", "field": "priority", "values": ["high", "urgent"]}
    {"kind": "field_present", "field": "remarks"}
    {"kind": "field_gte", "field": "total_amount_cents", "value": 100000}
    {"kind": "all", "conditions": [...]}
    {"kind": "any", "conditions": [...]}
    {"kind": "not", "condition": {...}}
    {"kind": "guard", "name": "fully_received"}

Fields are read from the evaluation context (entity snapshot overlaid with
the request payload). Dotted paths walk nested dicts.
"""

from __future__ import annotations

import logging
from numbers import Number
from typing import Any, Callable

logger = logging.getLogger(__name__)


COMPARISONS: dict[str, Callable[[Any, Any], bool]] = {
    "field_gt": lambda a, b: a > b,
    "field_gte": lambda a, b: a >= b,
    "field_lt": lambda a, b: a < b,
    "field_lte": lambda a, b: a <= b,
}

LEAF_KINDS = {"field_equals", "field_not_equals", "field_in", "field_present", "guard", *COMPARISONS}
COMPOSITE_KINDS = {"all", "any", "not"}

_MISSING = object()


def resolve_field(context: Any, path: str) -> Any:
    """Read a dotted path from nested dicts; returns _MISSING when absent."""
    current = context
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            idx = int(part)
            if idx >= len(current):
                return _MISSING
            current = current[idx]
        else:
            return _MISSING
    return current


def is_blank(value: Any) -> bool:
    """True for missing, None, empty/whitespace strings and empty collections."""
    if value is _MISSING or value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return not value
    return False


def _fully_received(context: Any) -> bool:
    return bool(resolve_field(context, "is_fully_received") is True)


def _qc_passed(context: Any) -> bool:
    return resolve_field(context, "overall_result") == "passed"


def _has_remarks(context: Any) -> bool:
    return not is_blank(resolve_field(context, "remarks"))


class ConditionEvaluator:
    """
    Evaluates tagged predicates against a context dict.

    Named guards are registered callables for checks that don't fit the
    field predicates. An unknown guard evaluates to False.
    """

    def __init__(self) -> None:
        self._guards: dict[str, Callable[[Any], bool]] = {}

    def register_guard(self, name: str, evaluator: Callable[[Any], bool]) -> None:
        self._guards[name] = evaluator

    @property
    def guard_names(self) -> set[str]:
        return set(self._guards)

    def validate(self, condition: Any, path: str = "conditions") -> list[dict]:
        """Return field-level violations for a condition tree ([] when well-formed)."""
        errors: list[dict] = []
        if condition is None or condition == {}:
            return errors
        if not isinstance(condition, dict):
            return [{"field": path, "message": "must be an object"}]

        kind = condition.get("kind")
        if kind not in LEAF_KINDS and kind not in COMPOSITE_KINDS:
            return [{"field": f"{path}.kind", "message": f"unknown condition kind: {kind!r}"}]

        if kind in ("all", "any"):
            children = condition.get("conditions")
            if not isinstance(children, list) or not children:
                errors.append({"field": f"{path}.conditions", "message": "must be a non-empty array"})
            else:
                for idx, child in enumerate(children):
                    if not child:
                        errors.append({"field": f"{path}.conditions[{idx}]", "message": "must not be empty"})
                        continue
                    errors.extend(self.validate(child, f"{path}.conditions[{idx}]"))
        elif kind == "not":
            child = condition.get("condition")
            if not child:
                errors.append({"field": f"{path}.condition", "message": "is required"})
            else:
                errors.extend(self.validate(child, f"{path}.condition"))
        elif kind == "guard":
            name = condition.get("name")
            if name not in self._guards:
                errors.append({"field": f"{path}.name", "message": f"unknown guard: {name!r}"})
        else:
            field = condition.get("field")
            if not isinstance(field, str) or not field.strip():
                errors.append({"field": f"{path}.field", "message": "is required"})
            if kind in ("field_equals", "field_not_equals") and "value" not in condition:
                errors.append({"field": f"{path}.value", "message": "is required"})
            if kind == "field_in" and not isinstance(condition.get("values"), list):
                errors.append({"field": f"{path}.values", "message": "must be an array"})
            if kind in COMPARISONS:
                value = condition.get("value")
                if isinstance(value, bool) or not isinstance(value, Number):
                    errors.append({"field": f"{path}.value", "message": "must be a number"})
        return errors

    def evaluate(self, condition: Any, context: dict) -> bool:
        """Evaluate a condition tree. Empty conditions always hold."""
        if condition is None or condition == {}:
            return True
        if not isinstance(condition, dict):
            logger.warning("Ignoring malformed workflow condition %r", condition)
            return False

        kind = condition.get("kind")
        if kind == "all":
            return all(self.evaluate(c, context) for c in condition.get("conditions") or [])
        if kind == "any":
            return any(self.evaluate(c, context) for c in condition.get("conditions") or [])
        if kind == "not":
            return not self.evaluate(condition.get("condition"), context)
        if kind == "guard":
            fn = self._guards.get(condition.get("name"))
            if fn is None:
                logger.warning("No evaluator registered for workflow guard %r", condition.get("name"))
                return False
            return bool(fn(context))

        value = resolve_field(context, condition.get("field") or "")
        if kind == "field_present":
            return not is_blank(value)
        if value is _MISSING:
            return False
        if kind == "field_equals":
            return value == condition.get("value")
        if kind == "field_not_equals":
            return value != condition.get("value")
        if kind == "field_in":
            return value in (condition.get("values") or [])
        if kind in COMPARISONS:
            if isinstance(value, bool) or not isinstance(value, Number):
                return False
            return COMPARISONS[kind](value, condition.get("value"))

        logger.warning("Unknown workflow condition kind %r", kind)
        return False


def default_condition_evaluator() -> ConditionEvaluator:
    """Return a ConditionEvaluator with built-in guards registered."""
    ev = ConditionEvaluator()
    ev.register_guard("fully_received", _fully_received)
    ev.register_guard("qc_passed", _qc_passed)
    ev.register_guard("has_remarks", _has_remarks)
    return ev
