"""
Entity instance - live merged document of one model record

Lifecycle:
    NEW ──create──> PERSISTED ──set──> DIRTY ──flush──> PERSISTED
                                          │
                          partial failure └──> stays DIRTY (failed sources' fields)
    any ──destroy──> DESTROYED (terminal)

Values are kept flat, keyed by field name; to_document() nests dotted names.
"""
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, Mapping, Optional, Set

from frankenstein.errors import (
    InstanceDestroyedError, SourcePartialFailureError, ValidationError,
)
from frankenstein.utils.query import set_path

if TYPE_CHECKING:
    from frankenstein.services.model_engine import ModelEngine


class InstanceState(str, Enum):
    NEW = 'NEW'
    PERSISTED = 'PERSISTED'
    DIRTY = 'DIRTY'
    DESTROYED = 'DESTROYED'


class EntityInstance:
    """
    One record of a model, merged from every source that serves it.

    Mutate through set() / item access / attribute access; each write marks
    the field dirty. flush_changes() writes the dirty fields back through the
    engine, destroy() removes the record from every owning source.
    """

    def __init__(
        self,
        engine: 'ModelEngine',
        values: Optional[Mapping[str, Any]] = None,
        identity_key: Any = None,
        source_refs: Optional[Dict[str, Any]] = None,
        failed_sources: Optional[Iterable[str]] = None,
        dirty: Optional[Iterable[str]] = None,
    ):
        object.__setattr__(self, '_engine', engine)
        object.__setattr__(self, '_destroyed', False)
        # Plain attributes are set directly so a field named like one of them
        # cannot intercept construction
        object.__setattr__(self, 'model_name', engine.definition.name)
        object.__setattr__(self, 'values', dict(values or {}))
        object.__setattr__(self, 'identity_key', identity_key)
        object.__setattr__(self, 'source_refs', dict(source_refs or {}))
        object.__setattr__(self, 'failed_sources', set(failed_sources or ()))
        object.__setattr__(self, 'dirty', set(dirty or ()))

        if identity_key is not None:
            self.values.setdefault(engine.definition.identity_field, identity_key)

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> InstanceState:
        if self._destroyed:
            return InstanceState.DESTROYED
        if self.identity_key is None:
            return InstanceState.NEW
        if self.dirty:
            return InstanceState.DIRTY
        return InstanceState.PERSISTED

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    def _ensure_alive(self):
        if self._destroyed:
            raise InstanceDestroyedError(
                f"{self.model_name} {self.identity_key!r} has been destroyed"
            )

    # =========================================================================
    # FIELD ACCESS
    # =========================================================================

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def set(self, name: str, value: Any) -> None:
        """
        Set a field value and mark it dirty.

        Raises:
            InstanceDestroyedError: after destroy()
            ValidationError: unknown field, or changing an assigned identity
        """
        self._ensure_alive()
        definition = self._engine.definition
        if name not in definition.fields:
            raise ValidationError({name: ["unknown field"]})
        if name == definition.identity_field and self.identity_key is not None:
            if value != self.identity_key:
                raise ValidationError({name: ["identity is immutable once assigned"]})
            return
        self.values[name] = value
        self.dirty.add(name)

    def update(self, changes: Mapping[str, Any]) -> None:
        for name, value in changes.items():
            self.set(name, value)

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self.set(name, value)

    def __contains__(self, name: str) -> bool:
        return name in self.values

    def __getattr__(self, name: str) -> Any:
        # Only reached when regular lookup fails
        if name.startswith('_'):
            raise AttributeError(name)
        if name in self._engine.definition.fields:
            return self.values.get(name)
        raise AttributeError(f"{self.model_name} has no field '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        if (
            name in self.__dict__
            or hasattr(type(self), name)
            or name not in self._engine.definition.fields
        ):
            object.__setattr__(self, name, value)
        else:
            self.set(name, value)

    def to_document(self) -> Dict[str, Any]:
        """Nested document, in field declaration order"""
        document: Dict[str, Any] = {}
        for name in self._engine.definition.fields:
            if name in self.values:
                set_path(document, name, self.values[name])
        return document

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def _adopt(self, other: 'EntityInstance'):
        self.identity_key = other.identity_key
        self.values.update(other.values)
        self.source_refs.update(other.source_refs)
        self.dirty = set(other.dirty)

    async def flush_changes(self) -> 'EntityInstance':
        """
        Write pending changes through the engine.

        NEW instances are created; dirty ones update only their dirty fields;
        clean ones issue no writes at all.

        Raises:
            SourcePartialFailureError: some sources failed; their fields stay
                dirty so a later flush retries them
        """
        self._ensure_alive()

        if self.identity_key is None:
            try:
                created = await self._engine.create(self.values)
            except SourcePartialFailureError as e:
                if isinstance(e.result, EntityInstance):
                    self._adopt(e.result)
                raise
            self._adopt(created)
            return self

        if not self.dirty:
            return self

        changes = {name: self.values.get(name) for name in self.dirty}
        try:
            await self._engine.update(self.identity_key, changes)
        except SourcePartialFailureError as e:
            definition = self._engine.definition
            self.dirty = {
                name for name in self.dirty
                if definition.write_owner_of(name) in e.failures
            }
            raise

        self.dirty.clear()
        return self

    async def destroy(self) -> None:
        """Delete from every owning source; terminal"""
        self._ensure_alive()
        if self.identity_key is not None:
            await self._engine.destroy(self.identity_key)
        object.__setattr__(self, '_destroyed', True)
        self.dirty.clear()

    async def reload(self) -> 'EntityInstance':
        """Re-read from the sources, discarding unflushed changes"""
        self._ensure_alive()
        if self.identity_key is None:
            return self
        fresh = await self._engine.get(self.identity_key)
        self.values = dict(fresh.values)
        self.source_refs = dict(fresh.source_refs)
        self.failed_sources = set(fresh.failed_sources)
        self.dirty.clear()
        return self

    def __repr__(self):
        return f"<{self.model_name} {self.identity_key!r} {self.state.value}>"
