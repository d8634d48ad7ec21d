"""Field-rule enforcement and setting value checks."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from sqlalchemy import inspect as sa_inspect

from cmsstore.errors import ValidationError
from cmsstore.models.rules import FieldRule, rules_for


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _lookup(instance: Any, path: str) -> tuple[bool, Any]:
    """Resolve an attribute or `column.key` path; (False, None) when the parent sub-record is absent."""
    if "." not in path:
        return True, getattr(instance, path, None)
    column, key = path.split(".", 1)
    parent = getattr(instance, column, None)
    if not isinstance(parent, dict):
        return False, None
    return True, parent.get(key)


def _label(path: str) -> str:
    return path.rsplit(".", 1)[-1]


def check_field(instance: Any, path: str, rule: FieldRule) -> str | None:
    present, value = _lookup(instance, path)
    if not present:
        return None

    required = rule.required
    if rule.required_when is not None:
        other, expected = rule.required_when
        required = required or _plain(getattr(instance, other, None)) == expected

    if value is None or value == "":
        if required:
            if rule.required_when is not None:
                other, expected = rule.required_when
                return f"{_label(path)} is required when {other} is {expected}"
            return f"{_label(path)} is required"
        return None

    value = _plain(value)
    if rule.instance_of is not None and not isinstance(value, rule.instance_of):
        kinds = ", ".join(kind.__name__ for kind in rule.instance_of)
        return f"{_label(path)} must be of type {kinds}"
    if rule.choices is not None and value not in rule.choices:
        return f"'{value}' is not a valid value for {_label(path)}"
    if isinstance(value, str):
        if rule.min_length is not None and len(value) < rule.min_length:
            return f"{_label(path)} must be at least {rule.min_length} characters"
        if rule.max_length is not None and len(value) > rule.max_length:
            return f"{_label(path)} cannot exceed {rule.max_length} characters"
        if rule.pattern is not None and not re.search(rule.pattern, value):
            return f"{_label(path)} has an invalid format"
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if rule.minimum is not None and value < rule.minimum:
            return f"{_label(path)} must be at least {rule.minimum}"
        if rule.maximum is not None and value > rule.maximum:
            return f"{_label(path)} cannot exceed {rule.maximum}"
    return None


def validate_document(instance: Any) -> None:
    """Raise ValidationError listing every field rule the instance violates."""
    rules = rules_for(type(instance))
    state = sa_inspect(instance, raiseerr=False)
    # Unloaded attributes of a stored row were not touched and need no re-check
    unloaded = state.unloaded if state is not None and state.persistent else frozenset()

    errors = {}
    for path, rule in rules.fields.items():
        if path.split(".", 1)[0] in unloaded:
            continue
        message = check_field(instance, path, rule)
        if message:
            errors[path] = message

    if errors:
        raise ValidationError("; ".join(errors.values()), details=errors)


def _same_value(left: Any, right: Any) -> bool:
    # Strict equality: True must not match 1
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    return left == right


def validate_setting_value(setting: Any, value: Any) -> bool:
    """Check a candidate value against a setting's validation block.

    Only string values are checked for length and pattern; numbers and other
    types pass unless an options list excludes them.
    """
    rules = setting.validation
    if not rules:
        return True

    if rules.get("required") and (value is None or value == ""):
        return False

    if _plain(setting.type) == "string" and isinstance(value, str):
        min_length = rules.get("min_length")
        if min_length and len(value) < min_length:
            return False
        max_length = rules.get("max_length")
        if max_length and len(value) > max_length:
            return False
        pattern = rules.get("pattern")
        if pattern and not re.search(pattern, value):
            return False

    options = rules.get("options")
    if options and not any(_same_value(value, option) for option in options):
        return False

    return True


__all__ = ["check_field", "validate_document", "validate_setting_value"]
