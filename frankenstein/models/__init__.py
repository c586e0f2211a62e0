"""
Domain Models - storage-agnostic entity description

- FieldDescriptor: one logical field (type, views, constraints, aliasing)
- ModelDefinition: fields + source bindings, validated once at construction
- EntityInstance: one entity's values with dirty tracking
"""

from .field import FieldDescriptor, FieldType, DEFAULT_VIEW
from .definition import ModelDefinition, Relationship, SourceBinding
from .instance import EntityInstance, InstanceState

__all__ = [
    # Fields
    'FieldDescriptor',
    'FieldType',
    'DEFAULT_VIEW',

    # Definition
    'ModelDefinition',
    'Relationship',
    'SourceBinding',

    # Instances
    'EntityInstance',
    'InstanceState',
]
