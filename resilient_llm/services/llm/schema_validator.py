"""Schema Validator Module

Structural checks of a parsed LLM value against a list of field rules.

Validation never coerces: a numeric string for a number field is an
error, not a conversion, so formatting drift in model output stays
visible to callers.
"""

from typing import Any, List, Mapping

from resilient_llm.models.extraction import (
    ArrayRule,
    FieldRule,
    NumberRule,
    Schema,
    StringRule,
)


def describe_type(value: Any) -> str:
    """JSON-flavoured name of a value's type, used in error messages."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def matches_type(value: Any, type_name: str) -> bool:
    """Check a value against a rule type name without coercion."""
    return describe_type(value) == type_name


def validate(value: Any, rules: Schema) -> List[str]:
    """Validate a value against field rules.

    Args:
        value: Parsed value, expected to be a mapping
        rules: Field rules to apply in order

    Returns:
        List of violations; empty when the value is valid
    """
    if not isinstance(value, Mapping):
        return [f"Expected object at top level, got {describe_type(value)}"]

    errors: List[str] = []
    for rule in rules:
        errors.extend(_validate_field(value, rule))
    return errors


def _validate_field(value: Mapping[str, Any], rule: FieldRule) -> List[str]:
    field_value = value.get(rule.field)

    if field_value is None:
        if rule.required:
            return [f"Missing required field: {rule.field}"]
        return []

    if not matches_type(field_value, rule.type):
        return [
            f"Field '{rule.field}' must be {rule.type}, "
            f"got {describe_type(field_value)}"
        ]

    if isinstance(rule, StringRule):
        return _check_length(rule.field, len(field_value), rule.min_length, rule.max_length)
    if isinstance(rule, NumberRule):
        return _check_bounds(rule.field, field_value, rule.min, rule.max)
    if isinstance(rule, ArrayRule):
        errors = _check_length(
            rule.field, len(field_value), rule.min_length, rule.max_length
        )
        if rule.item_type is not None:
            for index, item in enumerate(field_value):
                if not matches_type(item, rule.item_type):
                    errors.append(
                        f"Field '{rule.field}[{index}]' must be {rule.item_type}, "
                        f"got {describe_type(item)}"
                    )
        return errors

    # boolean and object rules need only the type check
    return []


def _check_length(field: str, length: int, min_length, max_length) -> List[str]:
    errors = []
    if min_length is not None and length < min_length:
        errors.append(f"Field '{field}' must have length >= {min_length}")
    if max_length is not None and length > max_length:
        errors.append(f"Field '{field}' must have length <= {max_length}")
    return errors


def _check_bounds(field: str, number: float, minimum, maximum) -> List[str]:
    errors = []
    if minimum is not None and number < minimum:
        errors.append(f"Field '{field}' must be >= {minimum:g}")
    if maximum is not None and number > maximum:
        errors.append(f"Field '{field}' must be <= {maximum:g}")
    return errors
