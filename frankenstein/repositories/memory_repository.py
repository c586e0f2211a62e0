"""
In-memory Repository - records held in a process-local dict

Storage: {key: record}; keys are auto-increment integers, or short prefixed
ids when id_prefix is given. Serves in-process objects and tests.
"""
import copy
import logging
from typing import Any, Dict, List, Mapping, Optional

from frankenstein.repositories.base import key_query
from frankenstein.utils.id_generator import generate_id
from frankenstein.utils.query import apply_options, matches

logger = logging.getLogger(__name__)


def _deep_merge(target: Dict, changes: Mapping) -> None:
    for key, value in changes.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class InMemorySource:
    """
    DataSource over a dict.

    Records are copied on the way in and out, so callers never share
    mutable state with the store.
    """

    def __init__(
        self,
        name: str = 'memory',
        key_field: str = 'id',
        records: Optional[List[Mapping[str, Any]]] = None,
        id_prefix: Optional[str] = None,
    ):
        self.name = name
        self.key_field = key_field
        self.id_prefix = id_prefix
        self.records: Dict[Any, Dict[str, Any]] = {}
        self._sequence = 0

        for record in records or []:
            self._insert(dict(record))

    def _next_key(self) -> Any:
        if self.id_prefix:
            return generate_id(self.id_prefix)
        self._sequence += 1
        while self._sequence in self.records:
            self._sequence += 1
        return self._sequence

    def _insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        if record.get(self.key_field) is None:
            record[self.key_field] = self._next_key()
        key = record[self.key_field]
        if key in self.records:
            raise KeyError(f"[{self.name}] duplicate key {key!r}")
        if isinstance(key, int):
            self._sequence = max(self._sequence, key)
        self.records[key] = record
        return record

    def _select(self, key: Any) -> List[Dict[str, Any]]:
        query = key_query(key, self.key_field)
        return [r for r in self.records.values() if matches(r, query)]

    async def read(self, query: Mapping[str, Any], options: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        selected = [r for r in self.records.values() if matches(r, query)]
        selected = apply_options(selected, options)
        logger.debug(f"[{self.name}] read {dict(query or {})} -> {len(selected)} records")
        return copy.deepcopy(selected)

    async def create(self, document: Mapping[str, Any]) -> Dict[str, Any]:
        record = self._insert(copy.deepcopy(dict(document)))
        logger.debug(f"[{self.name}] created {record[self.key_field]!r}")
        return copy.deepcopy(record)

    async def update(self, key: Any, partial: Mapping[str, Any]) -> int:
        selected = self._select(key)
        for record in selected:
            old_key = record[self.key_field]
            _deep_merge(record, partial)
            if record[self.key_field] != old_key:
                self.records[record[self.key_field]] = self.records.pop(old_key)
        return len(selected)

    async def delete(self, key: Any) -> int:
        selected = self._select(key)
        for record in selected:
            del self.records[record[self.key_field]]
        return len(selected)

    def __len__(self):
        return len(self.records)
