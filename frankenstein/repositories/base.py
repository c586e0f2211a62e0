"""
Data source contract

Every store binding (and every Model, through ModelSource) exposes the same
four coroutines. The engine depends on nothing else for I/O.

Keys: update()/delete() accept either a scalar, matched against the
adapter's key_field, or a query mapping selecting the affected records.
"""
from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from frankenstein.utils.query import equality_value, MISSING


@runtime_checkable
class DataSource(Protocol):
    """Uniform read/create/update/delete contract over one store"""

    async def read(self, query: Mapping[str, Any], options: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Records matching query (options: limit, offset, sort)"""
        ...

    async def create(self, document: Mapping[str, Any]) -> Dict[str, Any]:
        """Store a record; returns it with any store-assigned key"""
        ...

    async def update(self, key: Any, partial: Mapping[str, Any]) -> int:
        """Apply partial to the selected records; returns how many changed"""
        ...

    async def delete(self, key: Any) -> int:
        """Remove the selected records; returns how many were removed"""
        ...


def key_query(key: Any, key_field: str) -> Dict[str, Any]:
    """Normalize an update/delete key to a query mapping"""
    if isinstance(key, Mapping):
        return dict(key)
    return {key_field: key}


def single_key(key: Any, key_field: str) -> Any:
    """
    The scalar key when `key` selects exactly one record by key_field,
    otherwise MISSING. Lets adapters use direct lookups.
    """
    if not isinstance(key, Mapping):
        return key
    if len(key) != 1 or key_field not in key:
        return MISSING
    value = equality_value(key[key_field])
    if isinstance(value, (list, tuple, set, dict)):
        return MISSING
    return value
