"""
Model Repository - a Model used as a data source of another Model

Records are the nested documents of the inner model; keys are its identity
values. This is what lets models compose recursively: the outer engine sees
one more DataSource and never knows the inner one fans out itself.
"""
import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from frankenstein.errors import NotFoundError
from frankenstein.repositories.base import single_key
from frankenstein.utils.query import MISSING

if TYPE_CHECKING:
    from frankenstein.services.model_engine import ModelEngine

logger = logging.getLogger(__name__)


class ModelSource:
    """DataSource over a ModelEngine"""

    def __init__(self, engine: 'ModelEngine'):
        self.engine = engine
        self.key_field = engine.definition.identity_field

    async def read(self, query: Mapping[str, Any], options: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        try:
            result = await self.engine.read(query, options)
        except NotFoundError:
            return []
        if isinstance(result, list):
            return [instance.to_document() for instance in result]
        return [result.to_document()]

    async def create(self, document: Mapping[str, Any]) -> Dict[str, Any]:
        instance = await self.engine.create(document)
        return instance.to_document()

    async def _keys(self, key: Any) -> List[Any]:
        scalar = single_key(key, self.key_field)
        if scalar is not MISSING:
            return [scalar]
        documents = await self.read(key, {'views': []})
        return [document[self.key_field] for document in documents]

    async def update(self, key: Any, partial: Mapping[str, Any]) -> int:
        keys = await self._keys(key)
        outcomes = await asyncio.gather(
            *(self.engine.update(k, partial) for k in keys), return_exceptions=True
        )
        return self._count(outcomes)

    async def delete(self, key: Any) -> int:
        keys = await self._keys(key)
        outcomes = await asyncio.gather(
            *(self.engine.destroy(k) for k in keys), return_exceptions=True
        )
        return self._count(outcomes)

    def _count(self, outcomes) -> int:
        count = 0
        for outcome in outcomes:
            if isinstance(outcome, NotFoundError):
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            count += 1
        return count
