"""
Frankenstein - one entity, many data sources

Define an entity whose fields live in several stores, then read and write it
through one interface:

    cars = ModelEngine(definition, {'CarsTable': cars_table, 'CarPhotos': photos})
    car = await cars.create({'manufacturer': 'Volvo', 'photos': [...]})
    car.manufacturer = 'Saab'
    await car.flush_changes()
"""

from .errors import (
    FrankensteinError,
    DefinitionError,
    ValidationError,
    NotFoundError,
    SourceFailureError,
    SourcePartialFailureError,
    InstanceDestroyedError,
    UnsupportedQueryError,
)
from .models import (
    FieldDescriptor,
    FieldType,
    ModelDefinition,
    Relationship,
    SourceBinding,
    EntityInstance,
    InstanceState,
)
from .repositories import DataSource, InMemorySource, ModelSource
from .services import ModelEngine

__all__ = [
    # Errors
    'FrankensteinError',
    'DefinitionError',
    'ValidationError',
    'NotFoundError',
    'SourceFailureError',
    'SourcePartialFailureError',
    'InstanceDestroyedError',
    'UnsupportedQueryError',

    # Definition
    'FieldDescriptor',
    'FieldType',
    'ModelDefinition',
    'Relationship',
    'SourceBinding',

    # Runtime
    'ModelEngine',
    'EntityInstance',
    'InstanceState',
    'DataSource',
    'InMemorySource',
    'ModelSource',
]
