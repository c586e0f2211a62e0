"""
Services - orchestration over data sources
"""

from .model_engine import ModelEngine
from .neo4j_service import Neo4jService
from .validation import validate_document

__all__ = [
    'ModelEngine',
    'Neo4jService',
    'validate_document',
]
