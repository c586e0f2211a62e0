"""
Adapter Connection Configuration
================================

Explicit connection configuration for the bundled adapters. Each config is
a plain dataclass with defaults; options are overlaid value by value with
with_options() and passed to the client factory. Nothing here is cached or
global: every adapter gets the config object it was built with.

Options a dataclass does not declare are kept in `extra` and handed to the
underlying driver untouched.
"""
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from frankenstein.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def _overlay(config, options: Dict[str, Any]):
    """Copy of config with options laid over its values"""
    known = {f.name for f in dataclasses.fields(config)} - {'extra'}
    values = {k: v for k, v in options.items() if k in known}
    extra = dict(config.extra)
    extra.update({k: v for k, v in options.items() if k not in known})
    return dataclasses.replace(config, extra=extra, **values)


@dataclass
class PostgresConfig:
    """PostgreSQL connection configuration."""
    host: str = 'localhost'
    port: int = 5432
    user: str = 'frankenstein'
    password: str = ''
    database: str = 'frankenstein'
    min_size: int = 2
    max_size: int = 10
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'PostgresConfig':
        """Create config from application settings (environment)."""
        settings = settings or get_settings()
        return cls(
            host=settings.postgres_host,
            port=settings.postgres_port,
            user=settings.postgres_user,
            password=settings.postgres_password,
            database=settings.postgres_db,
        )

    def with_options(self, **options) -> 'PostgresConfig':
        return _overlay(self, options)

    def to_asyncpg_kwargs(self) -> dict:
        """Convert to asyncpg.create_pool kwargs."""
        return {
            'host': self.host,
            'port': self.port,
            'user': self.user,
            'password': self.password,
            'database': self.database,
            'min_size': self.min_size,
            'max_size': self.max_size,
            **self.extra,
        }


@dataclass
class Neo4jConfig:
    """Neo4j connection configuration."""
    uri: str = 'bolt://localhost:7687'
    user: str = 'neo4j'
    password: str = ''
    database: str = 'neo4j'
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'Neo4jConfig':
        """Create config from application settings (environment)."""
        settings = settings or get_settings()
        return cls(
            uri=settings.neo4j_uri,
            user=settings.neo4j_user,
            password=settings.neo4j_password,
            database=settings.neo4j_database,
        )

    def with_options(self, **options) -> 'Neo4jConfig':
        return _overlay(self, options)


@dataclass
class RedisConfig:
    """Redis connection configuration."""
    url: str = 'redis://localhost:6379'
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'RedisConfig':
        """Create config from application settings (environment)."""
        settings = settings or get_settings()
        return cls(url=settings.redis_url)

    def with_options(self, **options) -> 'RedisConfig':
        return _overlay(self, options)


@dataclass
class HttpApiConfig:
    """Web API connection configuration."""
    base_url: str = 'http://localhost:8080'
    timeout: float = 30.0
    token: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'HttpApiConfig':
        """Create config from application settings (environment)."""
        settings = settings or get_settings()
        return cls(
            base_url=settings.api_base_url,
            timeout=settings.api_timeout,
            token=settings.api_token,
        )

    def with_options(self, **options) -> 'HttpApiConfig':
        return _overlay(self, options)

    def to_httpx_kwargs(self) -> dict:
        """Convert to httpx.AsyncClient kwargs."""
        headers = dict(self.headers)
        if self.token:
            headers.setdefault('Authorization', f'Bearer {self.token}')
        return {
            'base_url': self.base_url,
            'timeout': self.timeout,
            'headers': headers,
            **self.extra,
        }


# =============================================================================
# CLIENT FACTORIES
# =============================================================================

async def create_postgres_pool(config: PostgresConfig):
    """Create PostgreSQL connection pool."""
    import asyncpg
    pool = await asyncpg.create_pool(**config.to_asyncpg_kwargs())
    logger.info(f"Connected to PostgreSQL at {config.host}:{config.port}/{config.database}")
    return pool


async def create_neo4j_service(config: Neo4jConfig):
    """Create and connect Neo4j service."""
    from frankenstein.services.neo4j_service import Neo4jService
    service = Neo4jService(config)
    await service.connect()
    return service


def create_redis_client(config: RedisConfig):
    """Create Redis client (connects lazily on first command)."""
    import redis.asyncio as redis
    return redis.from_url(config.url, decode_responses=True, **config.extra)


def create_http_client(config: HttpApiConfig):
    """Create web API client."""
    import httpx
    return httpx.AsyncClient(**config.to_httpx_kwargs())
