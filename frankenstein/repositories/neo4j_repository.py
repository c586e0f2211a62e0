"""
Neo4j Repository - records as nodes with one label

Storage strategy:
- One node per record: (:Label {key_field: ..., ...})
- Keys: taken from the record, or short prefixed ids (utils.id_generator)
- Delete is DETACH DELETE: relationships of a removed record go with it

Labels and property names are interpolated into Cypher, so both are
checked against IDENTIFIER before use; values always travel as parameters.
"""
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from frankenstein.errors import UnsupportedQueryError
from frankenstein.repositories.base import key_query
from frankenstein.services.neo4j_service import Neo4jService
from frankenstein.utils.id_generator import generate_id
from frankenstein.utils.query import iter_conditions, normalize_sort

logger = logging.getLogger(__name__)

IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

CYPHER_OPERATORS = {
    '$eq': '=',
    '$ne': '<>',
    '$gt': '>',
    '$gte': '>=',
    '$lt': '<',
    '$lte': '<=',
}


def _identifier(name: str) -> str:
    if not IDENTIFIER.match(name or ''):
        raise UnsupportedQueryError(f"Invalid Neo4j identifier: {name!r}")
    return name


def build_where(query: Optional[Mapping[str, Any]], var: str = 'n') -> Tuple[str, Dict[str, Any]]:
    """
    Query mapping -> (WHERE clause, parameters).

    Returns ('', {}) for an empty query.
    """
    clauses = []
    params: Dict[str, Any] = {}
    for prop, condition in (query or {}).items():
        prop = _identifier(prop)
        for op, operand in iter_conditions(condition):
            param = f"p{len(params)}"
            if op == '$exists':
                clauses.append(f"{var}.{prop} IS {'NOT ' if operand else ''}NULL")
                continue
            if op == '$eq' and operand is None:
                clauses.append(f"{var}.{prop} IS NULL")
                continue
            if op == '$in':
                clauses.append(f"{var}.{prop} IN ${param}")
            elif op == '$nin':
                clauses.append(f"NOT {var}.{prop} IN ${param}")
            else:
                clauses.append(f"{var}.{prop} {CYPHER_OPERATORS[op]} ${param}")
            params[param] = list(operand) if op in ('$in', '$nin') else operand
    if not clauses:
        return '', {}
    return 'WHERE ' + ' AND '.join(clauses), params


class Neo4jNodeSource:
    """
    DataSource over the nodes of one label.

    Args:
        neo4j_service: Connected Neo4jService
        label: Node label (e.g. 'Car')
        key_field: Property holding the record key
        id_prefix: Prefix for generated keys
    """

    def __init__(
        self,
        neo4j_service: Neo4jService,
        label: str,
        key_field: str = 'id',
        id_prefix: Optional[str] = None,
    ):
        self.neo4j = neo4j_service
        self.label = _identifier(label)
        self.key_field = _identifier(key_field)
        self.id_prefix = id_prefix or label[:2].lower()

    async def read(self, query: Mapping[str, Any], options: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        options = options or {}
        where, params = build_where(query)

        cypher = f"MATCH (n:{self.label}) {where} RETURN properties(n) AS record"
        order = [
            f"n.{_identifier(prop)}{' DESC' if desc else ''}"
            for prop, desc in normalize_sort(options.get('sort'))
        ]
        if order:
            cypher += " ORDER BY " + ", ".join(order)
        if options.get('offset'):
            cypher += " SKIP $offset"
            params['offset'] = int(options['offset'])
        if options.get('limit') is not None:
            cypher += " LIMIT $limit"
            params['limit'] = int(options['limit'])

        rows = await self.neo4j._execute_read(cypher, params)
        return [dict(row['record']) for row in rows]

    async def create(self, document: Mapping[str, Any]) -> Dict[str, Any]:
        props = dict(document)
        if props.get(self.key_field) is None:
            props[self.key_field] = generate_id(self.id_prefix)
        for prop in props:
            _identifier(prop)

        row = await self.neo4j._execute_write(
            f"CREATE (n:{self.label}) SET n = $props RETURN properties(n) AS record",
            {'props': props}
        )
        logger.debug(f"[{self.label}] created node {props[self.key_field]}")
        return dict(row['record']) if row else props

    async def update(self, key: Any, partial: Mapping[str, Any]) -> int:
        where, params = build_where(key_query(key, self.key_field))
        for prop in partial:
            _identifier(prop)
        params['props'] = dict(partial)

        row = await self.neo4j._execute_write(
            f"MATCH (n:{self.label}) {where} SET n += $props RETURN count(n) AS updated",
            params
        )
        return row["updated"] if row else 0

    async def delete(self, key: Any) -> int:
        where, params = build_where(key_query(key, self.key_field))
        row = await self.neo4j._execute_write(
            f"MATCH (n:{self.label}) {where} "
            f"WITH collect(n) AS nodes, count(n) AS deleted "
            f"FOREACH (x IN nodes | DETACH DELETE x) "
            f"RETURN deleted",
            params
        )
        return row["deleted"] if row else 0
