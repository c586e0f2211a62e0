"""
PostgreSQL Repository - records as rows of one table

Storage: one row per record, one column per stored field. The table is
expected to exist; this adapter never issues DDL.

Table and column names are interpolated into SQL and must be plain
identifiers; values always travel as $n parameters.
"""
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

import asyncpg

from frankenstein.errors import UnsupportedQueryError
from frankenstein.repositories.base import key_query
from frankenstein.utils.query import iter_conditions, normalize_sort

logger = logging.getLogger(__name__)

IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$')

SQL_OPERATORS = {
    '$eq': '=',
    '$ne': '<>',
    '$gt': '>',
    '$gte': '>=',
    '$lt': '<',
    '$lte': '<=',
}


def _identifier(name: str) -> str:
    if not IDENTIFIER.match(name or ''):
        raise UnsupportedQueryError(f"Invalid SQL identifier: {name!r}")
    return name


def _affected(status: str) -> int:
    """Row count from an asyncpg status string ('UPDATE 3' -> 3)"""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


def build_where(query: Optional[Mapping[str, Any]], params: Optional[List[Any]] = None) -> Tuple[str, List[Any]]:
    """
    Query mapping -> (WHERE clause, positional parameters).

    Parameters are appended to `params` so callers can number SET values
    before the condition values.
    """
    params = params if params is not None else []
    clauses = []
    for column, condition in (query or {}).items():
        column = _identifier(column)
        for op, operand in iter_conditions(condition):
            if op == '$exists':
                clauses.append(f"{column} IS {'NOT ' if operand else ''}NULL")
                continue
            if op == '$eq' and operand is None:
                clauses.append(f"{column} IS NULL")
                continue
            if op == '$ne' and operand is None:
                clauses.append(f"{column} IS NOT NULL")
                continue
            if op in ('$in', '$nin'):
                params.append(list(operand))
                fn = '= ANY' if op == '$in' else '<> ALL'
                clauses.append(f"{column} {fn}(${len(params)})")
                continue
            params.append(operand)
            clauses.append(f"{column} {SQL_OPERATORS[op]} ${len(params)}")
    if not clauses:
        return '', params
    return 'WHERE ' + ' AND '.join(clauses), params


class PostgresTableSource:
    """
    DataSource over one PostgreSQL table.

    Args:
        db_pool: asyncpg connection pool
        table: Table name (optionally schema-qualified)
        key_field: Primary key column
    """

    def __init__(self, db_pool: asyncpg.Pool, table: str, key_field: str = 'id'):
        self.db_pool = db_pool
        self.table = _identifier(table)
        self.key_field = _identifier(key_field)

    async def read(self, query: Mapping[str, Any], options: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        options = options or {}
        where, params = build_where(query)

        sql = f"SELECT * FROM {self.table} {where}"
        order = [
            f"{_identifier(column)} {'DESC' if desc else 'ASC'}"
            for column, desc in normalize_sort(options.get('sort'))
        ]
        if order:
            sql += " ORDER BY " + ", ".join(order)
        if options.get('limit') is not None:
            params.append(int(options['limit']))
            sql += f" LIMIT ${len(params)}"
        if options.get('offset'):
            params.append(int(options['offset']))
            sql += f" OFFSET ${len(params)}"

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(sql, *params)
        return [dict(row) for row in rows]

    async def create(self, document: Mapping[str, Any]) -> Dict[str, Any]:
        values = {k: v for k, v in document.items() if not (k == self.key_field and v is None)}
        columns = [_identifier(c) for c in values]

        if columns:
            placeholders = ', '.join(f"${i}" for i in range(1, len(columns) + 1))
            sql = (
                f"INSERT INTO {self.table} ({', '.join(columns)}) "
                f"VALUES ({placeholders}) RETURNING *"
            )
        else:
            sql = f"INSERT INTO {self.table} DEFAULT VALUES RETURNING *"

        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(sql, *values.values())
        logger.debug(f"[{self.table}] inserted row {row[self.key_field] if row else None}")
        return dict(row) if row else dict(values)

    async def update(self, key: Any, partial: Mapping[str, Any]) -> int:
        if not partial:
            return 0
        params = list(partial.values())
        assignments = ', '.join(
            f"{_identifier(column)} = ${i}" for i, column in enumerate(partial, start=1)
        )
        where, params = build_where(key_query(key, self.key_field), params)

        async with self.db_pool.acquire() as conn:
            status = await conn.execute(
                f"UPDATE {self.table} SET {assignments} {where}", *params
            )
        return _affected(status)

    async def delete(self, key: Any) -> int:
        where, params = build_where(key_query(key, self.key_field))

        async with self.db_pool.acquire() as conn:
            status = await conn.execute(f"DELETE FROM {self.table} {where}", *params)
        return _affected(status)
