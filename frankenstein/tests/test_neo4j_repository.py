"""
Tests for Neo4jNodeSource Cypher generation and Neo4jService lifecycle.
"""

import pytest
from unittest.mock import AsyncMock, patch

from frankenstein.config import Neo4jConfig
from frankenstein.errors import UnsupportedQueryError
from frankenstein.repositories.neo4j_repository import Neo4jNodeSource, build_where
from frankenstein.services.neo4j_service import Neo4jService


@pytest.fixture
def neo4j():
    mock_neo4j = AsyncMock()
    mock_neo4j._execute_read.return_value = []
    mock_neo4j._execute_write.return_value = None
    return mock_neo4j


@pytest.fixture
def nodes(neo4j):
    return Neo4jNodeSource(neo4j, 'Car')


def test_build_where():
    where, params = build_where({
        'make': 'Kia',
        'year': {'$gt': 2000},
        'id': {'$in': ['ca_1', 'ca_2']},
        'vin': {'$exists': False},
    })

    assert where == "WHERE n.make = $p0 AND n.year > $p1 AND n.id IN $p2 AND n.vin IS NULL"
    assert params == {'p0': 'Kia', 'p1': 2000, 'p2': ['ca_1', 'ca_2']}


@pytest.mark.asyncio
async def test_read(nodes, neo4j):
    neo4j._execute_read.return_value = [{'record': {'id': 'ca_1', 'make': 'Kia'}}]

    records = await nodes.read({'make': 'Kia'}, {'sort': '-year', 'limit': 5})

    assert records == [{'id': 'ca_1', 'make': 'Kia'}]
    neo4j._execute_read.assert_awaited_once_with(
        "MATCH (n:Car) WHERE n.make = $p0 RETURN properties(n) AS record "
        "ORDER BY n.year DESC LIMIT $limit",
        {'p0': 'Kia', 'limit': 5},
    )


@pytest.mark.asyncio
async def test_create_generates_key(nodes, neo4j):
    neo4j._execute_write.side_effect = lambda query, params: {'record': params['props']}

    record = await nodes.create({'make': 'Kia'})

    assert record['make'] == 'Kia'
    assert record['id'].startswith('ca_')
    query = neo4j._execute_write.await_args.args[0]
    assert query == "CREATE (n:Car) SET n = $props RETURN properties(n) AS record"


@pytest.mark.asyncio
async def test_update(nodes, neo4j):
    neo4j._execute_write.return_value = {'updated': 1}

    assert await nodes.update('ca_1', {'make': 'Fiat'}) == 1
    neo4j._execute_write.assert_awaited_once_with(
        "MATCH (n:Car) WHERE n.id = $p0 SET n += $props RETURN count(n) AS updated",
        {'p0': 'ca_1', 'props': {'make': 'Fiat'}},
    )


@pytest.mark.asyncio
async def test_delete_detaches(nodes, neo4j):
    neo4j._execute_write.return_value = {'deleted': 2}

    assert await nodes.delete({'make': 'Kia'}) == 2
    query = neo4j._execute_write.await_args.args[0]
    assert "DETACH DELETE" in query


def test_rejects_unsafe_label(neo4j):
    with pytest.raises(UnsupportedQueryError):
        Neo4jNodeSource(neo4j, 'Car) DETACH DELETE (m')


@pytest.mark.asyncio
async def test_service_connect_and_close():
    config = Neo4jConfig(uri='bolt://graph:7687', user='neo4j', password='secret')

    with patch('frankenstein.services.neo4j_service.AsyncGraphDatabase') as graph_db:
        driver = AsyncMock()
        graph_db.driver.return_value = driver

        async with Neo4jService(config) as service:
            assert service.driver is driver

        graph_db.driver.assert_called_once_with('bolt://graph:7687', auth=('neo4j', 'secret'))
        driver.verify_connectivity.assert_awaited_once()
        driver.close.assert_awaited_once()
        assert service.driver is None
