"""
Model definition - declarative schema of one logical entity

A model is a set of field descriptors plus named source bindings. Each binding
says which fields a data source owns and how its records join back to the
entity (relationship kind + join key). Exactly one binding is the primary
source: it owns identity assignment and anchors every join.

Definitions are validated at construction; an invalid definition never
reaches the engine.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Union

from frankenstein.errors import DefinitionError
from frankenstein.models.field import FieldDescriptor, FieldType

logger = logging.getLogger(__name__)


class Relationship(str, Enum):
    ONE_TO_ONE = 'ONE_TO_ONE'
    ONE_TO_MANY = 'ONE_TO_MANY'
    MANY_TO_MANY = 'MANY_TO_MANY'

    @classmethod
    def parse(cls, value) -> 'Relationship':
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise DefinitionError(f"Unknown relationship: {value!r}") from None


@dataclass
class SourceBinding:
    """
    Binding of one named data source into a model.

    join_key maps local field (owned by the primary) -> foreign field (column
    of this source's records).
    """
    source_name: str
    relationship: Relationship = Relationship.ONE_TO_ONE
    is_primary: bool = False
    owned_fields: FrozenSet[str] = frozenset()
    join_key: Dict[str, str] = field(default_factory=dict)

    # Collection ordering for ONE_TO_MANY (sort option format)
    order_by: Optional[object] = None

    def __post_init__(self):
        if not self.source_name:
            raise DefinitionError("Source binding needs a source_name")
        self.relationship = Relationship.parse(self.relationship)
        self.owned_fields = frozenset(self.owned_fields)
        self.join_key = dict(self.join_key)

    @property
    def is_collection(self) -> bool:
        return self.relationship in (Relationship.ONE_TO_MANY, Relationship.MANY_TO_MANY)


def _index(items, key_attr: str, kind: str) -> Dict:
    """Build name -> item from a list (rejecting duplicates) or a mapping"""
    if isinstance(items, Mapping):
        indexed = {}
        for key, item in items.items():
            if getattr(item, key_attr) != key:
                raise DefinitionError(
                    f"{kind} registered as '{key}' is named '{getattr(item, key_attr)}'"
                )
            indexed[key] = item
        return indexed

    indexed = {}
    for item in items:
        name = getattr(item, key_attr)
        if name in indexed:
            raise DefinitionError(f"Duplicate {kind.lower()} '{name}'")
        indexed[name] = item
    return indexed


class ModelDefinition:
    """
    Validated schema of a model.

    Args:
        name: Model name ("Car")
        fields: FieldDescriptors (list, or mapping name -> descriptor)
        sources: SourceBindings (list, or mapping source_name -> binding)
        identity_field: Field holding the identity key, owned by the primary

    Raises:
        DefinitionError: on any structural problem (fail fast)
    """

    def __init__(
        self,
        name: str,
        fields: Union[Iterable[FieldDescriptor], Mapping[str, FieldDescriptor]],
        sources: Union[Iterable[SourceBinding], Mapping[str, SourceBinding]],
        identity_field: str = 'id',
    ):
        if not name:
            raise DefinitionError("Model definition needs a name")

        self.name = name
        self.fields: Dict[str, FieldDescriptor] = _index(fields, 'name', 'Field')
        self.sources: Dict[str, SourceBinding] = _index(sources, 'source_name', 'Source')
        self.identity_field = identity_field
        self.warnings: List[str] = []

        self.primary = self._find_primary()
        self._ownership: Dict[str, str] = self._resolve_ownership()
        self._validate_identity()
        self._validate_bindings()

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def _find_primary(self) -> SourceBinding:
        if not self.sources:
            raise DefinitionError(f"Model '{self.name}' declares no sources")

        primaries = [b for b in self.sources.values() if b.is_primary]
        if len(primaries) != 1:
            raise DefinitionError(
                f"Model '{self.name}' needs exactly one primary source, "
                f"found {len(primaries)}"
            )

        primary = primaries[0]
        if primary.relationship != Relationship.ONE_TO_ONE:
            raise DefinitionError(
                f"Primary source '{primary.source_name}' must be ONE_TO_ONE"
            )
        return primary

    def _warn(self, message: str):
        self.warnings.append(message)
        logger.warning(f"[{self.name}] {message}")

    def _resolve_ownership(self) -> Dict[str, str]:
        """
        field -> owning source. Unclaimed fields go to the primary; a field
        claimed twice stays with the primary (or the first claimant) and is
        reported as a warning.
        """
        ownership: Dict[str, str] = {}
        for binding in self.sources.values():
            for field_name in sorted(binding.owned_fields):
                if field_name not in self.fields:
                    raise DefinitionError(
                        f"Source '{binding.source_name}' owns undeclared field '{field_name}'"
                    )
                current = ownership.get(field_name)
                if current is None:
                    ownership[field_name] = binding.source_name
                    continue
                winner = self.primary.source_name if self.primary.source_name in (
                    current, binding.source_name) else current
                self._warn(
                    f"Field '{field_name}' claimed by '{current}' and "
                    f"'{binding.source_name}'; '{winner}' keeps it"
                )
                ownership[field_name] = winner

        for field_name in self.fields:
            ownership.setdefault(field_name, self.primary.source_name)
        return ownership

    def _validate_identity(self):
        if self.identity_field not in self.fields:
            raise DefinitionError(
                f"Identity field '{self.identity_field}' is not declared on '{self.name}'"
            )
        if self._ownership[self.identity_field] != self.primary.source_name:
            raise DefinitionError(
                f"Identity field '{self.identity_field}' must be owned by the primary source"
            )

    def _validate_bindings(self):
        for binding in self.dependents:
            name = binding.source_name
            if not binding.join_key:
                raise DefinitionError(f"Dependent source '{name}' declares no join_key")

            for local, foreign in binding.join_key.items():
                if local not in self.fields:
                    raise DefinitionError(
                        f"Source '{name}' joins on undeclared field '{local}'"
                    )
                if self._ownership[local] != self.primary.source_name:
                    raise DefinitionError(
                        f"Source '{name}' joins on '{local}', which the primary does not own"
                    )
                if not foreign:
                    raise DefinitionError(f"Source '{name}' has an empty foreign join field")

            if not binding.is_collection:
                continue

            owned = self.fields_of(name)
            if len(owned) != 1 or self.fields[owned[0]].type != FieldType.ARRAY:
                raise DefinitionError(
                    f"Collection source '{name}' must own exactly one ARRAY field"
                )

            if binding.relationship == Relationship.MANY_TO_MANY:
                if len(binding.join_key) != 1:
                    raise DefinitionError(
                        f"MANY_TO_MANY source '{name}' needs exactly one join pair"
                    )
                local = next(iter(binding.join_key))
                if self.fields[local].type != FieldType.ARRAY:
                    raise DefinitionError(
                        f"MANY_TO_MANY source '{name}' must join on an ARRAY of keys, "
                        f"'{local}' is {self.fields[local].type.value}"
                    )

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    @property
    def dependents(self) -> List[SourceBinding]:
        return [b for b in self.sources.values() if not b.is_primary]

    def owner_of(self, field_name: str) -> str:
        """Name of the source owning a field"""
        return self._ownership[field_name]

    def write_owner_of(self, field_name: str) -> str:
        """
        Source a write of this field goes to. MANY_TO_MANY collections are
        written as the primary's key list, never to the shared source.
        """
        owner = self._ownership[field_name]
        if self.sources[owner].relationship == Relationship.MANY_TO_MANY:
            return self.primary.source_name
        return owner

    def fields_of(self, source_name: str) -> List[str]:
        """Fields owned by a source, in declaration order"""
        return [f for f in self.fields if self._ownership[f] == source_name]

    def collection_field(self, source_name: str) -> Optional[str]:
        """The single ARRAY field a collection source folds its records into"""
        if not self.sources[source_name].is_collection:
            return None
        owned = self.fields_of(source_name)
        return owned[0] if owned else None

    def fields_in_views(self, views: Optional[Iterable[str]]) -> List[str]:
        """Fields visible in any of the views; all fields when views is None"""
        if views is None:
            return list(self.fields)
        if isinstance(views, str):
            views = [views]
        views = set(views)
        return [
            name for name, descriptor in self.fields.items()
            if name == self.identity_field or descriptor.visible_in(views)
        ]

    def __repr__(self):
        return f"ModelDefinition({self.name!r}, fields={list(self.fields)}, sources={list(self.sources)})"
