"""
Neo4j Graph Service - driver lifecycle and query execution

Thin wrapper over the async driver shared by every Neo4jNodeSource bound to
the same database. Query building lives in the adapter.
"""
import logging
from typing import Any, Dict, List, Optional

from neo4j import AsyncGraphDatabase, AsyncDriver

from frankenstein.config.database import Neo4jConfig

logger = logging.getLogger(__name__)


class Neo4jService:
    """Service for Neo4j graph operations"""

    def __init__(self, config: Optional[Neo4jConfig] = None):
        """Initialize with explicit connection configuration"""
        self.config = config or Neo4jConfig()
        self.driver: Optional[AsyncDriver] = None

    async def connect(self):
        """Establish connection to Neo4j"""
        if not self.driver:
            self.driver = AsyncGraphDatabase.driver(
                self.config.uri,
                auth=(self.config.user, self.config.password),
                **self.config.extra
            )
            # Verify connectivity
            await self.driver.verify_connectivity()
            logger.info(f"✅ Connected to Neo4j at {self.config.uri}")

    async def close(self):
        """Close Neo4j connection"""
        if self.driver:
            await self.driver.close()
            self.driver = None
            logger.info("🔌 Closed Neo4j connection")

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _execute_write(self, query: str, parameters: Dict = None) -> Optional[Dict[str, Any]]:
        """Execute write query, return the single result row"""
        async with self.driver.session(database=self.config.database) as session:
            result = await session.run(query, parameters or {})
            record = await result.single()
            return record.data() if record else None

    async def _execute_read(self, query: str, parameters: Dict = None) -> List[Dict[str, Any]]:
        """Execute read query"""
        async with self.driver.session(database=self.config.database) as session:
            result = await session.run(query, parameters or {})
            return await result.data()
