"""
Pytest configuration for frankenstein tests.

Fixtures build the "Car" model used throughout: CarsTable (primary,
ONE_TO_ONE) holds the car itself, CarPhotos (ONE_TO_MANY) holds its photos
joined on car_id. Both are in-memory sources that record every call.
"""

import asyncio

import pytest

from frankenstein.models import FieldDescriptor, FieldType, ModelDefinition, Relationship, SourceBinding
from frankenstein.repositories import InMemorySource
from frankenstein.services import ModelEngine

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


def pytest_configure(config):
    """Configure pytest with asyncio marker."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test."
    )


class RecordingSource(InMemorySource):
    """
    InMemorySource that appends ('start' | 'end' | 'fail', name, op) to a
    shared call log, and raises ConnectionError for operations in fail_on.
    """

    def __init__(self, name, log, delay=0.0, **kwargs):
        super().__init__(name=name, **kwargs)
        self.log = log
        self.delay = delay
        self.fail_on = set()

    def calls(self, op=None):
        return [entry for entry in self.log if entry[0] == 'start' and entry[1] == self.name
                and (op is None or entry[2] == op)]

    async def _run(self, op, method, *args):
        self.log.append(('start', self.name, op))
        if op in self.fail_on:
            await asyncio.sleep(self.delay)
            self.log.append(('fail', self.name, op))
            raise ConnectionError(f"{self.name} unavailable")
        # Store effects apply in call order; only settling is delayed
        result = await method(*args)
        await asyncio.sleep(self.delay)
        self.log.append(('end', self.name, op))
        return result

    async def read(self, query, options=None):
        return await self._run('read', super().read, query, options)

    async def create(self, document):
        return await self._run('create', super().create, document)

    async def update(self, key, partial):
        return await self._run('update', super().update, key, partial)

    async def delete(self, key):
        return await self._run('delete', super().delete, key)


@pytest.fixture
def call_log():
    return []


@pytest.fixture
def car_definition():
    return ModelDefinition(
        name='Car',
        fields=[
            FieldDescriptor('id', FieldType.INTEGER),
            FieldDescriptor('manufacturer', FieldType.STRING, required=True,
                            constraints={'max_length': 50}),
            FieldDescriptor('model_number', FieldType.INTEGER, constraints={'min': 0}),
            FieldDescriptor('photos', FieldType.ARRAY, views={'default', 'gallery'},
                            item_fields={'url': 'url', 'caption': 'caption'}),
        ],
        sources=[
            SourceBinding('CarsTable', is_primary=True,
                          owned_fields={'id', 'manufacturer', 'model_number'}),
            SourceBinding('CarPhotos', Relationship.ONE_TO_MANY,
                          owned_fields={'photos'}, join_key={'id': 'car_id'}),
        ],
    )


@pytest.fixture
def cars_table(call_log):
    # Tiny delay so concurrent calls interleave in the log
    return RecordingSource('CarsTable', call_log, delay=0.001)


@pytest.fixture
def car_photos(call_log):
    return RecordingSource('CarPhotos', call_log, delay=0.001)


@pytest.fixture
def cars(car_definition, cars_table, car_photos):
    return ModelEngine(car_definition, {'CarsTable': cars_table, 'CarPhotos': car_photos})
