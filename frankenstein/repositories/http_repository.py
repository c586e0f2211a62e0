"""
HTTP Repository - records as a REST resource

Endpoints:
- GET    /{resource}?field=value   list (repeated parameter for $in)
- GET    /{resource}/{key}         one record, 404 -> no record
- POST   /{resource}               create, returns the stored record
- PATCH  /{resource}/{key}         partial update
- DELETE /{resource}/{key}         delete

Only equality and $in conditions can be expressed as query parameters;
anything else raises UnsupportedQueryError before a request is sent.
Paging and sorting travel as limit/offset/sort parameters ('-field' for
descending).
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from frankenstein.errors import UnsupportedQueryError
from frankenstein.repositories.base import single_key
from frankenstein.utils.query import iter_conditions, normalize_sort, MISSING

logger = logging.getLogger(__name__)


def build_params(query: Optional[Mapping[str, Any]]) -> List[Tuple[str, Any]]:
    """Query mapping -> list of query parameters"""
    params = []
    for field, condition in (query or {}).items():
        for op, operand in iter_conditions(condition):
            if op == '$eq' and operand is not None and not isinstance(operand, (dict, list)):
                params.append((field, operand))
            elif op == '$in':
                params.extend((field, value) for value in operand)
            else:
                raise UnsupportedQueryError(
                    f"HTTP sources only support equality and $in filters, got {op} on '{field}'"
                )
    return params


def _records(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, Mapping):
        payload = payload.get('items', [])
    return [dict(item) for item in payload]


class HttpApiSource:
    """
    DataSource over a REST resource.

    Args:
        client: httpx.AsyncClient with base_url set
        resource: Resource path segment (e.g. 'photos')
        key_field: Record field used in /{resource}/{key}
    """

    def __init__(self, client: httpx.AsyncClient, resource: str, key_field: str = 'id'):
        self.client = client
        self.resource = resource.strip('/')
        self.key_field = key_field

    def _url(self, key: Any = None) -> str:
        if key is None:
            return f"/{self.resource}"
        return f"/{self.resource}/{key}"

    async def _get_one(self, key: Any) -> Optional[Dict[str, Any]]:
        response = await self.client.get(self._url(key))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return dict(response.json())

    async def _keys(self, key: Any) -> List[Any]:
        scalar = single_key(key, self.key_field)
        if scalar is not MISSING:
            return [scalar]
        return [record[self.key_field] for record in await self.read(key)]

    async def read(self, query: Mapping[str, Any], options: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        options = options or {}
        params = build_params(query)

        scalar = single_key(query, self.key_field) if query else MISSING
        if scalar is not MISSING and not options.get('offset'):
            record = await self._get_one(scalar)
            return [record] if record else []

        sort = [f"{'-' if desc else ''}{field}" for field, desc in normalize_sort(options.get('sort'))]
        if sort:
            params.append(('sort', ','.join(sort)))
        if options.get('limit') is not None:
            params.append(('limit', int(options['limit'])))
        if options.get('offset'):
            params.append(('offset', int(options['offset'])))

        response = await self.client.get(self._url(), params=params)
        response.raise_for_status()
        records = _records(response.json())
        logger.debug(f"[{self.resource}] GET {params} -> {len(records)} records")
        return records

    async def create(self, document: Mapping[str, Any]) -> Dict[str, Any]:
        body = {k: v for k, v in document.items() if not (k == self.key_field and v is None)}
        response = await self.client.post(self._url(), json=body)
        response.raise_for_status()
        return dict(response.json())

    async def update(self, key: Any, partial: Mapping[str, Any]) -> int:
        count = 0
        for record_key in await self._keys(key):
            response = await self.client.patch(self._url(record_key), json=dict(partial))
            if response.status_code == 404:
                continue
            response.raise_for_status()
            count += 1
        return count

    async def delete(self, key: Any) -> int:
        count = 0
        for record_key in await self._keys(key):
            response = await self.client.delete(self._url(record_key))
            if response.status_code == 404:
                continue
            response.raise_for_status()
            count += 1
        return count
