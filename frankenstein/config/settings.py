from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Connection defaults for the bundled adapters, loaded from environment
    variables.

    Values come from the process environment or a local .env file.

    Variable names:
    - POSTGRES_HOST, POSTGRES_PORT, etc. (relational adapter)
    - NEO4J_URI, NEO4J_USER, NEO4J_PASSWORD (graph adapter)
    - REDIS_URL (key-value adapter)
    - API_BASE_URL, API_TIMEOUT, API_TOKEN (web API adapter)

    The core never reads settings itself; applications turn them into
    explicit config objects (config.database) for each adapter.
    """

    # Environment
    environment: str = "development"
    log_level: str = "INFO"

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "frankenstein"
    postgres_password: str = ""
    postgres_db: str = "frankenstein"
    database_url: Optional[str] = Field(default=None, validate_default=True)

    # Neo4j
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = ""
    neo4j_database: str = "neo4j"

    # Redis
    redis_url: str = "redis://localhost:6379"

    # Web API
    api_base_url: str = "http://localhost:8080"
    api_timeout: float = 30.0
    api_token: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra env vars

    @field_validator('log_level', mode='before')
    @classmethod
    def normalize_log_level(cls, v):
        return str(v or "INFO").upper()

    @field_validator('database_url', mode='before')
    @classmethod
    def construct_database_url(cls, v, info):
        """Construct database URL from components if not explicitly set"""
        if v:
            return v

        data = info.data
        host = data.get('postgres_host', 'localhost')
        port = data.get('postgres_port', 5432)
        user = data.get('postgres_user', 'frankenstein')
        password = data.get('postgres_password', '')
        db = data.get('postgres_db', 'frankenstein')

        return f"postgresql://{user}:{password}@{host}:{port}/{db}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
