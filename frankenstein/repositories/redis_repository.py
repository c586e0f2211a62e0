"""
Redis Repository - records as JSON documents under a key prefix

Storage strategy:
- {prefix}:{key}  -> JSON document
- {prefix}:keys   -> SET of every stored key
- {prefix}:seq    -> INCR counter for generated keys

Queries that pin the key (equality or $in) fetch directly; anything else
loads the whole key set and filters in-process.
"""
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import redis.asyncio as redis

from frankenstein.repositories.base import key_query
from frankenstein.utils.query import apply_options, equality_value, iter_conditions, matches, MISSING

logger = logging.getLogger(__name__)


class RedisHashSource:
    """
    DataSource over JSON documents in Redis.

    Args:
        redis_client: redis.asyncio client (decode_responses=True)
        prefix: Key namespace for this source (e.g. 'car_photos')
        key_field: Document field holding the record key
    """

    def __init__(self, redis_client: redis.Redis, prefix: str, key_field: str = 'id'):
        self.redis = redis_client
        self.prefix = prefix
        self.key_field = key_field

    def _key(self, key: Any) -> str:
        return f"{self.prefix}:{key}"

    @property
    def _index(self) -> str:
        return f"{self.prefix}:keys"

    def _pinned_keys(self, query: Optional[Mapping[str, Any]]) -> Optional[List[Any]]:
        """Keys named by the query, or None when every record must be scanned"""
        if not query or self.key_field not in query:
            return None
        condition = query[self.key_field]
        value = equality_value(condition)
        if value is not MISSING and not isinstance(value, (list, tuple, set, dict)):
            return [value]
        conditions = list(iter_conditions(condition))
        if len(conditions) == 1 and conditions[0][0] == '$in':
            return list(conditions[0][1])
        return None

    async def _load(self, keys: List[Any]) -> List[Dict[str, Any]]:
        if not keys:
            return []
        raw = await self.redis.mget([self._key(k) for k in keys])
        return [json.loads(doc) for doc in raw if doc]

    async def _select(self, query: Optional[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        keys = self._pinned_keys(query)
        if keys is None:
            keys = sorted(await self.redis.smembers(self._index))
        return [doc for doc in await self._load(keys) if matches(doc, query)]

    async def _store(self, doc: Dict[str, Any]):
        key = doc[self.key_field]
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(self._key(key), json.dumps(doc, default=str))
            pipe.sadd(self._index, str(key))
            await pipe.execute()

    async def read(self, query: Mapping[str, Any], options: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        return apply_options(await self._select(query), options)

    async def create(self, document: Mapping[str, Any]) -> Dict[str, Any]:
        doc = dict(document)
        if doc.get(self.key_field) is None:
            doc[self.key_field] = await self.redis.incr(f"{self.prefix}:seq")
        await self._store(doc)
        logger.debug(f"[{self.prefix}] stored {doc[self.key_field]}")
        return doc

    async def update(self, key: Any, partial: Mapping[str, Any]) -> int:
        selected = await self._select(key_query(key, self.key_field))
        for doc in selected:
            old_key = doc[self.key_field]
            doc.update(partial)
            if doc[self.key_field] != old_key:
                await self._remove(old_key)
            await self._store(doc)
        return len(selected)

    async def _remove(self, key: Any):
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._key(key))
            pipe.srem(self._index, str(key))
            await pipe.execute()

    async def delete(self, key: Any) -> int:
        selected = await self._select(key_query(key, self.key_field))
        for doc in selected:
            await self._remove(doc[self.key_field])
        return len(selected)
