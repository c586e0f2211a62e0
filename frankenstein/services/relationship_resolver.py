"""
Relationship Resolver - pure mapping between parent values and source records

No I/O happens here. Given a source binding and parent values (flattened,
keyed by field name) the resolver computes:

- the foreign query to send to the bound source (equality / $in on join_key)
- how the foreign records fold back into the parent:
    ONE_TO_ONE   -> single record, re-keyed through the owned descriptors
    ONE_TO_MANY  -> ordered list of child records
    MANY_TO_MANY -> de-duplicated list, ordered by the parent's key list
- the raw shape of writes (field name -> source_field, join columns stamped)
"""
from typing import Any, Dict, List, Mapping, Optional, Sequence

from frankenstein.errors import ValidationError
from frankenstein.models.definition import ModelDefinition, Relationship, SourceBinding
from frankenstein.utils.query import (
    equality_value, get_path, has_path, is_operator_condition, set_path, sort_records,
    MISSING,
)


# =============================================================================
# READ SIDE: QUERIES
# =============================================================================

def _local_values(binding: SourceBinding, parent: Mapping, local: str) -> List[Any]:
    value = parent.get(local)
    if value is None:
        return []
    if binding.relationship == Relationship.MANY_TO_MANY:
        return list(value)
    return [value]


def _unique(values) -> List[Any]:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def join_values(binding: SourceBinding, parents: Sequence[Mapping], local: str) -> List[Any]:
    """Distinct values of one local join field across parents, order kept"""
    collected = []
    for parent in parents:
        collected.extend(_local_values(binding, parent, local))
    return _unique(collected)


def foreign_query(binding: SourceBinding, parents: Sequence[Mapping]) -> Optional[Dict[str, Any]]:
    """
    Query selecting the foreign records of all parents.

    Returns None when no parent carries a join value (nothing to fetch).
    """
    query = {}
    for local, foreign in binding.join_key.items():
        values = join_values(binding, parents, local)
        if not values:
            return None
        if len(values) == 1 and binding.relationship != Relationship.MANY_TO_MANY:
            query[foreign] = values[0]
        else:
            query[foreign] = {'$in': values}
    return query


def query_from_filter(binding: SourceBinding, query: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Foreign query derived from the caller's own query, when every local join
    field is pinned there by equality. Lets the dependent read run at the
    same time as the primary read.
    """
    if binding.relationship == Relationship.MANY_TO_MANY:
        local = next(iter(binding.join_key))
        keys = equality_value(query[local]) if local in query else MISSING
        if keys is MISSING or not isinstance(keys, (list, tuple)):
            return None
        return {binding.join_key[local]: {'$in': _unique(keys)}}

    derived = {}
    for local, foreign in binding.join_key.items():
        if local not in query:
            return None
        condition = query[local]
        if is_operator_condition(condition):
            if set(condition) - {'$eq', '$in'}:
                return None
            derived[foreign] = dict(condition)
            continue
        if isinstance(condition, (list, tuple, dict)):
            return None
        derived[foreign] = condition
    return derived


def matches(binding: SourceBinding, parent: Mapping, record: Mapping) -> bool:
    """Whether a foreign record belongs to a parent"""
    for local, foreign in binding.join_key.items():
        if not has_path(record, foreign):
            return False
        if get_path(record, foreign) not in _local_values(binding, parent, local):
            return False
    return True


# =============================================================================
# READ SIDE: FOLDING
# =============================================================================

def rekey(definition: ModelDefinition, source_name: str, record: Mapping) -> Dict[str, Any]:
    """
    Raw record -> {field name: value} for the fields the source owns.

    Fields absent from the record are left out (never defaulted).
    """
    values = {}
    for name in definition.fields_of(source_name):
        source_field = definition.fields[name].source_field
        if has_path(record, source_field):
            values[name] = get_path(record, source_field)
    return values


def _rekey_item(definition: ModelDefinition, binding: SourceBinding, field_name: str, record: Mapping) -> Dict[str, Any]:
    item_fields = definition.fields[field_name].item_fields
    if item_fields:
        item = {}
        for out_key, raw_key in item_fields.items():
            if has_path(record, raw_key):
                set_path(item, out_key, get_path(record, raw_key))
        return item
    join_columns = set(binding.join_key.values()) if binding.relationship == Relationship.ONE_TO_MANY else set()
    return {k: v for k, v in record.items() if k not in join_columns}


def fold(
    definition: ModelDefinition,
    binding: SourceBinding,
    parent: Mapping,
    records: Sequence[Mapping],
) -> Dict[str, Any]:
    """
    Contribution of one source to one parent, keyed by field name.

    Args:
        definition: Model definition
        binding: The source's binding
        parent: Parent values (at least the local join fields)
        records: Records returned by the source (may cover many parents)
    """
    owned = [r for r in records if matches(binding, parent, r)]

    if binding.relationship == Relationship.ONE_TO_ONE:
        if not owned:
            return {name: None for name in definition.fields_of(binding.source_name)}
        return rekey(definition, binding.source_name, owned[0])

    field_name = definition.collection_field(binding.source_name)

    if binding.relationship == Relationship.ONE_TO_MANY:
        if binding.order_by:
            owned = sort_records(owned, binding.order_by)
        return {field_name: [_rekey_item(definition, binding, field_name, r) for r in owned]}

    # MANY_TO_MANY: one entry per key, in the parent's key order
    local, foreign = next(iter(binding.join_key.items()))
    by_key = {}
    for record in owned:
        by_key.setdefault(get_path(record, foreign), record)
    items = [
        _rekey_item(definition, binding, field_name, by_key[key])
        for key in _unique(_local_values(binding, parent, local))
        if key in by_key
    ]
    return {field_name: items}


# =============================================================================
# WRITE SIDE
# =============================================================================

def to_raw(definition: ModelDefinition, source_name: str, values: Mapping[str, Any]) -> Dict[str, Any]:
    """{field name: value} -> raw record keyed by source_field"""
    raw: Dict[str, Any] = {}
    for name, value in values.items():
        set_path(raw, definition.fields[name].source_field, value)
    return raw


def to_raw_query(definition: ModelDefinition, query: Mapping[str, Any]) -> Dict[str, Any]:
    """Caller query keyed by field name -> query keyed by source_field"""
    return {definition.fields[name].source_field: condition for name, condition in query.items()}


def link_fields(binding: SourceBinding, parent: Mapping) -> Dict[str, Any]:
    """Foreign join columns stamped on a dependent record"""
    return {foreign: parent.get(local) for local, foreign in binding.join_key.items()}


def item_to_raw(definition: ModelDefinition, binding: SourceBinding, item: Any, parent: Mapping) -> Dict[str, Any]:
    """One collection item -> raw child record linked to the parent"""
    field_name = definition.collection_field(binding.source_name)
    if not isinstance(item, Mapping):
        raise ValidationError({field_name: [f"items must be objects, got {type(item).__name__}"]})

    item_fields = definition.fields[field_name].item_fields
    if item_fields:
        raw: Dict[str, Any] = {}
        for out_key, raw_key in item_fields.items():
            if has_path(item, out_key):
                set_path(raw, raw_key, get_path(item, out_key))
    else:
        raw = dict(item)
    raw.update(link_fields(binding, parent))
    return raw


def keys_from_items(definition: ModelDefinition, binding: SourceBinding, items: Sequence[Any]) -> List[Any]:
    """
    MANY_TO_MANY write: collection items -> key list for the parent's local
    field. Items are records carrying the foreign key, or bare keys.
    """
    field_name = definition.collection_field(binding.source_name)
    foreign = next(iter(binding.join_key.values()))

    item_fields = definition.fields[field_name].item_fields or {}
    out_key = next((o for o, r in item_fields.items() if r == foreign), foreign)

    keys = []
    for item in items:
        if isinstance(item, Mapping):
            if not has_path(item, out_key):
                raise ValidationError({field_name: [f"item without '{out_key}' key"]})
            keys.append(get_path(item, out_key))
        else:
            keys.append(item)
    return _unique(keys)
