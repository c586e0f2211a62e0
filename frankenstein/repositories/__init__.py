"""
Repository Pattern - Data Source Adapters

Every adapter implements the DataSource contract (read/create/update/delete)
over one store, so the engine never sees storage-specific types:

- InMemorySource: process-local dict
- PostgresTableSource: one table (asyncpg)
- Neo4jNodeSource: nodes of one label (neo4j async driver)
- RedisHashSource: JSON documents under a key prefix (redis.asyncio)
- HttpApiSource: REST resource (httpx)
- ModelSource: another Model, for recursive composition

Connections are created by the caller (see frankenstein.config.database)
and passed in; adapters never open their own.
"""

from .base import DataSource
from .memory_repository import InMemorySource
from .postgres_repository import PostgresTableSource
from .neo4j_repository import Neo4jNodeSource
from .redis_repository import RedisHashSource
from .http_repository import HttpApiSource
from .model_repository import ModelSource

__all__ = [
    'DataSource',
    'InMemorySource',
    'PostgresTableSource',
    'Neo4jNodeSource',
    'RedisHashSource',
    'HttpApiSource',
    'ModelSource',
]
