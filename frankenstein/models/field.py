"""
Field descriptor - declarative metadata for one logical field
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from frankenstein.errors import DefinitionError

DEFAULT_VIEW = 'default'

# Constraint names understood by services.validation
CONSTRAINT_NAMES = frozenset({
    'min_length',
    'max_length',
    'min',
    'max',
    'pattern',
    'choices',
    'validator',
})


class FieldType(str, Enum):
    NUMBER = 'NUMBER'
    INTEGER = 'INTEGER'
    STRING = 'STRING'
    DATE = 'DATE'
    BOOLEAN = 'BOOLEAN'
    ARRAY = 'ARRAY'
    OBJECT = 'OBJECT'
    MODEL = 'MODEL'

    @classmethod
    def parse(cls, value: Any) -> 'FieldType':
        """Accept the enum itself or its name in any case"""
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise DefinitionError(f"Unknown field type: {value!r}") from None


@dataclass(frozen=True)
class FieldDescriptor:
    """
    One logical field of a model.

    `name` is the output name (dotted names nest in the output document),
    `source_field` is where the owning source keeps the value in its raw
    records (defaults to `name`). `item_fields` re-keys the child records of
    a collection field: output key -> raw key.

    Frozen: a field's type is fixed at definition time.
    """
    name: str
    type: FieldType = FieldType.STRING
    views: FrozenSet[str] = frozenset({DEFAULT_VIEW})
    required: bool = False
    constraints: Dict[str, Any] = field(default_factory=dict)
    source_field: Optional[str] = None
    item_fields: Optional[Dict[str, str]] = None

    def __post_init__(self):
        if not self.name or not isinstance(self.name, str):
            raise DefinitionError(f"Field name must be a non-empty string, got {self.name!r}")

        # Frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, 'type', FieldType.parse(self.type))
        if isinstance(self.views, str):
            object.__setattr__(self, 'views', frozenset({self.views}))
        else:
            object.__setattr__(self, 'views', frozenset(self.views))
        if self.source_field is None:
            object.__setattr__(self, 'source_field', self.name)

        unknown = set(self.constraints) - CONSTRAINT_NAMES
        if unknown:
            raise DefinitionError(
                f"Field '{self.name}': unknown constraints {sorted(unknown)}"
            )
        if 'validator' in self.constraints and not callable(self.constraints['validator']):
            raise DefinitionError(f"Field '{self.name}': validator must be callable")
        if self.item_fields is not None and self.type != FieldType.ARRAY:
            raise DefinitionError(f"Field '{self.name}': item_fields requires an ARRAY field")

    @property
    def is_collection(self) -> bool:
        return self.type == FieldType.ARRAY

    def visible_in(self, views) -> bool:
        """Check if field belongs to any of the requested views"""
        return bool(self.views & set(views))
