"""
Query helpers shared by the engine and the adapters

Query format (mapping):
    {"manufacturer": "Toyota"}                 equality
    {"model_number": {"$gte": 2, "$lt": 10}}   operators
    {"car_id": {"$in": [1, 2, 3]}}             membership

Operators: $eq $ne $gt $gte $lt $lte $in $nin $exists

Dotted names address nested values: "owner.email" -> doc["owner"]["email"].
"""
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from frankenstein.errors import UnsupportedQueryError

OPERATORS = ('$eq', '$ne', '$gt', '$gte', '$lt', '$lte', '$in', '$nin', '$exists')

MISSING = object()


# =============================================================================
# DOTTED PATHS
# =============================================================================

def get_path(document: Mapping, path: str, default: Any = None) -> Any:
    """Read a (possibly dotted) path from a nested mapping."""
    current = document
    for part in path.split('.'):
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current


def has_path(document: Mapping, path: str) -> bool:
    return get_path(document, path, MISSING) is not MISSING


def set_path(document: Dict, path: str, value: Any) -> None:
    """Write a (possibly dotted) path, creating intermediate dicts."""
    parts = path.split('.')
    current = document
    for part in parts[:-1]:
        nested = current.get(part)
        if not isinstance(nested, dict):
            nested = {}
            current[part] = nested
        current = nested
    current[parts[-1]] = value


# =============================================================================
# CONDITIONS
# =============================================================================

def is_operator_condition(condition: Any) -> bool:
    """True for {"$op": operand, ...} conditions."""
    return (
        isinstance(condition, Mapping)
        and len(condition) > 0
        and all(isinstance(k, str) and k.startswith('$') for k in condition)
    )


def iter_conditions(condition: Any) -> Iterable[Tuple[str, Any]]:
    """
    Yield (operator, operand) pairs for one field condition.

    A bare value is equality.

    Raises:
        UnsupportedQueryError: for unknown operators
    """
    if not is_operator_condition(condition):
        yield '$eq', condition
        return
    for op, operand in condition.items():
        if op not in OPERATORS:
            raise UnsupportedQueryError(f"Unknown query operator: {op}")
        yield op, operand


def equality_value(condition: Any) -> Any:
    """
    The pinned value of a condition, or MISSING when it is not a plain
    equality (operators other than $eq, or more than one operator).
    """
    if not is_operator_condition(condition):
        return condition
    if len(condition) == 1 and '$eq' in condition:
        return condition['$eq']
    return MISSING


def is_pinned(condition: Any) -> bool:
    value = equality_value(condition)
    return value is not MISSING and not isinstance(value, (list, tuple, set, dict))


def _compare(op: str, value: Any, operand: Any) -> bool:
    if op == '$eq':
        if isinstance(value, list) and not isinstance(operand, list):
            return operand in value
        return value == operand
    if op == '$ne':
        return value != operand
    if op == '$in':
        if isinstance(value, list):
            return any(v in operand for v in value)
        return value in operand
    if op == '$nin':
        if isinstance(value, list):
            return not any(v in operand for v in value)
        return value not in operand
    if value is None or operand is None:
        return False
    try:
        if op == '$gt':
            return value > operand
        if op == '$gte':
            return value >= operand
        if op == '$lt':
            return value < operand
        if op == '$lte':
            return value <= operand
    except TypeError:
        return False
    raise UnsupportedQueryError(f"Unknown query operator: {op}")


def matches(record: Mapping, query: Optional[Mapping]) -> bool:
    """Evaluate a query against one record (in-process stores)."""
    for path, condition in (query or {}).items():
        value = get_path(record, path, MISSING)
        for op, operand in iter_conditions(condition):
            if op == '$exists':
                if (value is not MISSING) != bool(operand):
                    return False
                continue
            if not _compare(op, None if value is MISSING else value, operand):
                return False
    return True


def merge_queries(*queries: Optional[Mapping]) -> Dict[str, Any]:
    """
    AND-combine queries. Conditions on the same field are merged into one
    operator mapping.
    """
    merged: Dict[str, Any] = {}
    for query in queries:
        for path, condition in (query or {}).items():
            if path not in merged:
                merged[path] = condition
                continue
            combined = dict(iter_conditions(merged[path]))
            for op, operand in iter_conditions(condition):
                if op in combined and combined[op] != operand:
                    # Two different equalities can never both hold
                    combined['$in'] = []
                combined[op] = operand
            merged[path] = combined
    return merged


# =============================================================================
# SORT / PAGINATION
# =============================================================================

def normalize_sort(sort: Any) -> List[Tuple[str, bool]]:
    """
    Normalize a sort option to [(field, descending), ...].

    Accepts {"field": 1 | -1}, [("field", 1 | -1 | "asc" | "desc")], or a
    single field name.
    """
    if not sort:
        return []
    if isinstance(sort, str):
        return [(sort.lstrip('-'), sort.startswith('-'))]
    items = sort.items() if isinstance(sort, Mapping) else sort
    normalized = []
    for item in items:
        if isinstance(item, str):
            normalized.append((item.lstrip('-'), item.startswith('-')))
            continue
        field, direction = item
        descending = direction in (-1, 'desc', 'DESC', 'descending')
        normalized.append((field, descending))
    return normalized


def sort_records(records: List[Dict], sort: Any) -> List[Dict]:
    """Stable multi-key sort. Missing/None values sort first."""
    ordered = list(records)
    for field, descending in reversed(normalize_sort(sort)):
        ordered.sort(
            key=lambda r: (get_path(r, field) is not None, get_path(r, field)),
            reverse=descending,
        )
    return ordered


def paginate(records: List[Any], offset: Optional[int] = None, limit: Optional[int] = None) -> List[Any]:
    start = offset or 0
    if limit is None:
        return records[start:]
    return records[start:start + limit]


def apply_options(records: List[Dict], options: Optional[Mapping]) -> List[Dict]:
    """Apply sort/offset/limit options in-process."""
    options = options or {}
    ordered = sort_records(records, options.get('sort'))
    return paginate(ordered, options.get('offset'), options.get('limit'))
