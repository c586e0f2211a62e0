"""
Document validation against field descriptors

Runs entirely in-process before any source is contacted. Every violation is
collected so the caller sees all problems in one ValidationError.
"""
import logging
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from frankenstein.errors import ValidationError
from frankenstein.models.definition import ModelDefinition
from frankenstein.models.field import FieldDescriptor, FieldType

logger = logging.getLogger(__name__)


# =============================================================================
# TYPE CHECKS
# =============================================================================

def _is_date(value: Any) -> bool:
    if isinstance(value, (date, datetime)):
        return True
    if isinstance(value, str):
        try:
            datetime.fromisoformat(value)
            return True
        except ValueError:
            return False
    return False


def _is_model(value: Any) -> bool:
    return isinstance(value, Mapping) or hasattr(value, 'to_document')


TYPE_CHECKS: Dict[FieldType, Callable[[Any], bool]] = {
    FieldType.NUMBER: lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    FieldType.INTEGER: lambda v: isinstance(v, int) and not isinstance(v, bool),
    FieldType.STRING: lambda v: isinstance(v, str),
    FieldType.DATE: _is_date,
    FieldType.BOOLEAN: lambda v: isinstance(v, bool),
    FieldType.ARRAY: lambda v: isinstance(v, (list, tuple)),
    FieldType.OBJECT: lambda v: isinstance(v, Mapping),
    FieldType.MODEL: _is_model,
}


# =============================================================================
# CONSTRAINTS
# =============================================================================

def _min_length(value, limit) -> Optional[str]:
    if hasattr(value, '__len__') and len(value) < limit:
        return f"length must be at least {limit}"
    return None


def _max_length(value, limit) -> Optional[str]:
    if hasattr(value, '__len__') and len(value) > limit:
        return f"length must be at most {limit}"
    return None


def _min(value, limit) -> Optional[str]:
    try:
        if value < limit:
            return f"must be >= {limit}"
    except TypeError:
        return f"cannot be compared with {limit!r}"
    return None


def _max(value, limit) -> Optional[str]:
    try:
        if value > limit:
            return f"must be <= {limit}"
    except TypeError:
        return f"cannot be compared with {limit!r}"
    return None


def _pattern(value, pattern) -> Optional[str]:
    if not isinstance(value, str) or not re.fullmatch(pattern, value):
        return f"must match {pattern}"
    return None


def _choices(value, choices) -> Optional[str]:
    if value not in choices:
        return f"must be one of {list(choices)}"
    return None


def _validator(value, check) -> Optional[str]:
    if not check(value):
        return "rejected by validator"
    return None


CONSTRAINT_CHECKS: Dict[str, Callable[[Any, Any], Optional[str]]] = {
    'min_length': _min_length,
    'max_length': _max_length,
    'min': _min,
    'max': _max,
    'pattern': _pattern,
    'choices': _choices,
    'validator': _validator,
}


def check_value(descriptor: FieldDescriptor, value: Any) -> List[str]:
    """
    Problems with one value (empty list when valid).

    None is accepted here; required-ness is checked by the document rules.
    """
    if value is None:
        return []
    if not TYPE_CHECKS[descriptor.type](value):
        return [f"expected {descriptor.type.value}, got {type(value).__name__}"]

    problems = []
    for name, args in descriptor.constraints.items():
        problem = CONSTRAINT_CHECKS[name](value, args)
        if problem:
            problems.append(problem)
    return problems


# =============================================================================
# DOCUMENT RULES
# =============================================================================

def validate_document(
    definition: ModelDefinition,
    values: Mapping[str, Any],
    partial: bool = False,
) -> None:
    """
    Validate flattened field values (field name -> value).

    Args:
        definition: Model definition
        values: Values keyed by field name
        partial: Update mode - only provided fields are checked, but a
            required field may not be cleared

    Raises:
        ValidationError: with every violation found
    """
    errors: Dict[str, List[str]] = {}

    for name in values:
        if name not in definition.fields:
            errors.setdefault(name, []).append("unknown field")

    for name, descriptor in definition.fields.items():
        present = name in values
        value = values.get(name)

        if descriptor.required and name != definition.identity_field:
            if (not partial and not present) or (present and value is None):
                errors.setdefault(name, []).append("is required")
                continue

        if present:
            problems = check_value(descriptor, value)
            if problems:
                errors.setdefault(name, []).extend(problems)

    if errors:
        logger.debug(f"[{definition.name}] validation failed: {errors}")
        raise ValidationError(errors)
