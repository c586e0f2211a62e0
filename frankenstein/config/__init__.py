"""
Configuration module for adapter connections and logging.
"""
from .settings import Settings, get_settings
from .database import (
    PostgresConfig,
    Neo4jConfig,
    RedisConfig,
    HttpApiConfig,
    create_postgres_pool,
    create_neo4j_service,
    create_redis_client,
    create_http_client,
)
from .log import configure_logging

__all__ = [
    'Settings',
    'get_settings',
    'PostgresConfig',
    'Neo4jConfig',
    'RedisConfig',
    'HttpApiConfig',
    'create_postgres_pool',
    'create_neo4j_service',
    'create_redis_client',
    'create_http_client',
    'configure_logging',
]
