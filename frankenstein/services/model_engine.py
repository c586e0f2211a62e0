"""
Model Engine - unified CRUD over a model whose fields live in many sources

Read:
    caller query ──split by owning source──┐
                                           ├─ phase 1 (concurrent): primary + dependents
                                           │   whose query is known up front
                                           ├─ phase 2 (concurrent): dependents joined on
                                           │   keys from the primary records
                                           └─ merge per parent (Relationship Resolver)
Create:  validate ─> primary (identity assigned) ─> dependents (concurrent)
Update:  validate ─> primary (if touched) ─> touched dependents (concurrent)
Destroy: dependents (concurrent, all settle) ─> primary

Every fan-out set runs to completion (asyncio.gather with
return_exceptions=True); failures are collected across the whole set and
surfaced together. Succeeded writes are never rolled back.

No state is shared between operations: each call builds its own in-flight
maps and discards them.
"""
import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Dict, Iterable, List, Mapping, Optional, Tuple

from frankenstein.errors import (
    DefinitionError, NotFoundError, SourceFailureError, SourcePartialFailureError,
    UnsupportedQueryError, ValidationError,
)
from frankenstein.models.definition import ModelDefinition, Relationship, SourceBinding
from frankenstein.models.instance import EntityInstance
from frankenstein.repositories.base import DataSource
from frankenstein.services import relationship_resolver as resolver
from frankenstein.services.validation import validate_document
from frankenstein.utils.query import (
    get_path, has_path, is_pinned, merge_queries, normalize_sort, paginate, sort_records,
)

logger = logging.getLogger(__name__)


def _is_absence(condition: Any) -> bool:
    """{"$exists": false} and nothing else"""
    return isinstance(condition, Mapping) and set(condition) == {'$exists'} and not condition['$exists']


class ModelEngine:
    """
    Orchestrates reads and writes of one model across its data sources.

    Args:
        definition: Validated model definition
        sources: source name -> DataSource, one per binding

    Raises:
        DefinitionError: a binding has no adapter, or an adapter does not
            satisfy the DataSource contract
    """

    def __init__(self, definition: ModelDefinition, sources: Mapping[str, DataSource]):
        missing = [name for name in definition.sources if name not in sources]
        if missing:
            raise DefinitionError(f"Model '{definition.name}': no adapter registered for {missing}")

        for name in definition.sources:
            if not isinstance(sources[name], DataSource):
                raise DefinitionError(
                    f"Model '{definition.name}': adapter for '{name}' does not implement "
                    f"read/create/update/delete"
                )

        self.definition = definition
        self.sources: Dict[str, DataSource] = {name: sources[name] for name in definition.sources}

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def primary_name(self) -> str:
        return self.definition.primary.source_name

    def __repr__(self):
        return f"<ModelEngine {self.name} sources={list(self.sources)}>"

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _fan_out(
        self,
        calls: Iterable[Tuple[str, Awaitable]],
    ) -> Tuple[Dict[str, Any], Dict[str, BaseException]]:
        """
        Run calls concurrently and wait for every one of them.

        Returns:
            (results by source name, failures by source name)
        """
        calls = list(calls)
        if not calls:
            return {}, {}

        names = [name for name, _ in calls]
        logger.debug(f"[{self.name}] fan-out: {names}")
        outcomes = await asyncio.gather(*(call for _, call in calls), return_exceptions=True)

        results: Dict[str, Any] = {}
        failures: Dict[str, BaseException] = {}
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"[{self.name}] source '{name}' failed: {outcome!r}")
                failures[name] = outcome
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[name] = outcome
        return results, failures

    async def _call_many(self, source_name: str, calls: List[Awaitable]) -> List[Any]:
        """Several calls to one source as one fan-out member"""
        outcomes = await asyncio.gather(*calls, return_exceptions=True)
        errors = [o for o in outcomes if isinstance(o, BaseException)]
        if errors:
            for extra in errors[1:]:
                logger.error(f"[{self.name}] source '{source_name}' also failed: {extra!r}")
            raise errors[0]
        return outcomes

    def _flatten(self, document: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Nested or flat document -> values keyed by field name.

        Keys matching no field (and no dotted field prefix) are kept so that
        validation reports them.
        """
        if isinstance(document, EntityInstance):
            document = document.values

        values: Dict[str, Any] = {}
        for name in self.definition.fields:
            if name in document:
                values[name] = document[name]
            elif '.' in name and has_path(document, name):
                values[name] = get_path(document, name)

        prefixes = {name.split('.')[0] for name in self.definition.fields}
        for key in document:
            if key not in values and key not in prefixes:
                values[key] = document[key]
        return values

    def _partition(self, values: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
        """Values grouped by the source a write goes to"""
        grouped: Dict[str, Dict[str, Any]] = defaultdict(dict)
        for name, value in values.items():
            grouped[self.definition.owner_of(name)][name] = value
        return grouped

    def _apply_key_lists(self, grouped: Dict[str, Dict[str, Any]]) -> None:
        """MANY_TO_MANY collections become key lists on the primary"""
        for binding in self.definition.dependents:
            if binding.relationship != Relationship.MANY_TO_MANY:
                continue
            items = grouped.pop(binding.source_name, None)
            if not items:
                continue
            field_name = self.definition.collection_field(binding.source_name)
            local = next(iter(binding.join_key))
            keys = resolver.keys_from_items(self.definition, binding, items[field_name] or [])
            grouped[self.primary_name][local] = keys

    def _identity_query(self, identity_key: Any) -> Dict[str, Any]:
        return resolver.to_raw_query(self.definition, {self.definition.identity_field: identity_key})

    def _raise_failures(self, failures: Dict[str, BaseException], attempted: int, result: Any = None):
        if not failures:
            return
        if len(failures) >= attempted:
            raise SourceFailureError(failures, result)
        raise SourcePartialFailureError(failures, result)

    async def _load_parent(self, identity_key: Any) -> Dict[str, Any]:
        """Primary values of one record (join values not derivable from the key)"""
        primary = self.sources[self.primary_name]
        try:
            records = await primary.read(self._identity_query(identity_key), {'limit': 1})
        except Exception as e:
            raise SourceFailureError({self.primary_name: e}) from e
        if not records:
            raise NotFoundError(self.name, identity_key)
        return resolver.rekey(self.definition, self.primary_name, records[0])

    def _needs_parent(self, bindings: Iterable[SourceBinding]) -> bool:
        identity = self.definition.identity_field
        return any(local != identity for b in bindings for local in b.join_key)

    # =========================================================================
    # READ
    # =========================================================================

    async def read(self, query: Optional[Mapping[str, Any]] = None, options: Optional[Mapping[str, Any]] = None):
        """
        Read merged instances.

        Args:
            query: field name -> value | {operator: operand}
            options: views, limit, offset, sort

        Returns:
            One EntityInstance when the query pins the identity field,
            otherwise a list of EntityInstance

        Raises:
            ValidationError: query names unknown fields (no I/O happened)
            NotFoundError: identity read found no primary record
            SourceFailureError: the primary source failed
            SourcePartialFailureError: dependents failed; .result holds the
                instance(s) without the failed sources' fields
        """
        definition = self.definition
        query = dict(query or {})
        options = dict(options or {})

        unknown = [name for name in query if name not in definition.fields]
        if unknown:
            raise ValidationError({name: ["unknown field in query"] for name in unknown})

        constraints = self._partition(query)
        excluding = self._absence_filters(constraints)
        wanted = definition.fields_in_views(options.get('views'))
        touched = {self.primary_name} | set(constraints) | {definition.owner_of(f) for f in wanted}
        filtering = {
            name for name in constraints
            if name != self.primary_name and name not in excluding
        }

        sort = normalize_sort(options.get('sort'))
        post_process = bool(filtering or excluding) or any(
            definition.owner_of(f) != self.primary_name for f, _ in sort if f in definition.fields
        )

        primary_options: Dict[str, Any] = {}
        if not post_process:
            for key in ('limit', 'offset'):
                if options.get(key) is not None:
                    primary_options[key] = options[key]
            if sort:
                primary_options['sort'] = [
                    (definition.fields[f].source_field if f in definition.fields else f, -1 if desc else 1)
                    for f, desc in sort
                ]

        # Collection conditions are checked here, before any source is read
        own_queries: Dict[str, Dict[str, Any]] = {}
        for binding in definition.dependents:
            name = binding.source_name
            if name not in filtering:
                continue
            if binding.is_collection:
                own_queries[name] = self._collection_query(binding, constraints[name])
            else:
                own_queries[name] = resolver.to_raw_query(definition, constraints[name])

        # Phase 1: everything that does not wait on primary keys
        phase1: List[Tuple[str, Awaitable]] = [(
            self.primary_name,
            self.sources[self.primary_name].read(
                resolver.to_raw_query(definition, constraints.get(self.primary_name, {})),
                primary_options,
            ),
        )]
        deferred: List[SourceBinding] = []
        for binding in definition.dependents:
            name = binding.source_name
            if name not in touched:
                continue
            derived = resolver.query_from_filter(binding, query)
            if name in filtering or derived is not None:
                own = own_queries.get(name, {})
                phase1.append((name, self.sources[name].read(merge_queries(derived, own))))
            else:
                deferred.append(binding)

        results, failures = await self._fan_out(phase1)

        if self.primary_name in failures:
            raise SourceFailureError(failures) from failures[self.primary_name]

        primary_records = results[self.primary_name]
        parents = [resolver.rekey(definition, self.primary_name, r) for r in primary_records]

        # Phase 2: dependents joined on keys the primary just returned
        phase2 = []
        for binding in deferred:
            foreign = resolver.foreign_query(binding, parents)
            if foreign is None:
                results[binding.source_name] = []
                continue
            phase2.append((binding.source_name, self.sources[binding.source_name].read(foreign)))
        more_results, more_failures = await self._fan_out(phase2)
        results.update(more_results)
        failures.update(more_failures)

        instances = self._merge(
            primary_records, parents, results, failures, touched, filtering, excluding, wanted,
        )

        if post_process:
            instances = self._order(instances, sort, options)

        result: Any = instances
        if definition.identity_field in query and is_pinned(query[definition.identity_field]):
            if not instances:
                raise NotFoundError(self.name, query[definition.identity_field])
            result = instances[0]

        if failures:
            logger.warning(f"[{self.name}] read partially failed: {sorted(failures)}")
            raise SourcePartialFailureError(failures, result)
        return result

    def _absence_filters(self, constraints: Mapping[str, Mapping[str, Any]]) -> Dict[str, List[str]]:
        """
        Dependent sources constrained only by {"$exists": false}.

        These filter as an anti-join: a parent is kept when none of its
        records carries the field, parents without any record included.
        """
        excluding = {}
        for name, own in constraints.items():
            if name == self.primary_name or not own:
                continue
            if all(_is_absence(condition) for condition in own.values()):
                excluding[name] = list(own)
        return excluding

    def _collection_query(self, binding: SourceBinding, constraints: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Query on a collection field -> query on child records.

        {"photos": {"url": "a.jpg"}} or {"photos": {"$exists": true}}; item
        keys are translated through item_fields.
        """
        field_name = self.definition.collection_field(binding.source_name)
        if field_name not in constraints:
            return {}
        condition = constraints[field_name]
        if not isinstance(condition, Mapping):
            raise UnsupportedQueryError(
                f"'{field_name}' is a collection; query it with an item condition, not {condition!r}"
            )
        operators = [k for k in condition if k.startswith('$')]
        if operators:
            if condition == {'$exists': True}:
                return {}
            raise UnsupportedQueryError(
                f"'{field_name}' supports only item conditions and $exists, got {operators}"
            )
        item_fields = self.definition.fields[field_name].item_fields or {}
        return {item_fields.get(k, k): v for k, v in condition.items()}

    def _carries(self, binding: SourceBinding, fields: List[str], record: Mapping) -> bool:
        """Whether a dependent record supplies any of the given fields"""
        if binding.is_collection:
            return True
        return any(has_path(record, self.definition.fields[f].source_field) for f in fields)

    def _merge(
        self, primary_records, parents, results, failures, touched, filtering, excluding, wanted,
    ) -> List[EntityInstance]:
        definition = self.definition
        identity = definition.identity_field
        dependents = [
            b for b in definition.dependents
            if b.source_name in touched and b.source_name not in failures
        ]

        instances = []
        for raw, parent in zip(primary_records, parents):
            values = dict(parent)
            refs: Dict[str, Any] = {self.primary_name: raw}
            keep = True

            for binding in dependents:
                name = binding.source_name
                records = results.get(name, [])
                matched = [r for r in records if resolver.matches(binding, parent, r)]
                if name in filtering and not matched:
                    keep = False
                    break
                if name in excluding and any(self._carries(binding, excluding[name], r) for r in matched):
                    keep = False
                    break
                refs[name] = matched
                # Ownership is exclusive, so dependents never overwrite primary fields
                values.update(resolver.fold(definition, binding, parent, records))

            if not keep:
                continue

            values = {k: v for k, v in values.items() if k in wanted or k == identity}
            instances.append(EntityInstance(
                self,
                values=values,
                identity_key=parent.get(identity),
                source_refs=refs,
                failed_sources=failures.keys(),
            ))
        return instances

    def _order(self, instances: List[EntityInstance], sort, options) -> List[EntityInstance]:
        documents = [{**inst.to_document(), '__position': i} for i, inst in enumerate(instances)]
        documents = sort_records(documents, [(f, -1 if desc else 1) for f, desc in sort])
        ordered = [instances[d['__position']] for d in documents]
        return paginate(ordered, options.get('offset'), options.get('limit'))

    async def get(self, identity_key: Any, options: Optional[Mapping[str, Any]] = None) -> EntityInstance:
        """Read one instance by identity"""
        return await self.read({self.definition.identity_field: identity_key}, options)

    # =========================================================================
    # CREATE
    # =========================================================================

    def new(self, document: Optional[Mapping[str, Any]] = None) -> EntityInstance:
        """Unsaved instance; flush_changes() creates it"""
        values = self._flatten(document or {})
        return EntityInstance(self, values=values, dirty=values.keys())

    async def create(self, document: Mapping[str, Any]) -> EntityInstance:
        """
        Validate and write a new record to every owning source.

        The primary is written first and assigns the identity; dependent
        writes then fan out concurrently, linked by join keys.

        Raises:
            ValidationError: before any source is contacted
            SourceFailureError: the primary write failed (nothing written)
            SourcePartialFailureError: dependents failed; .result is the
                instance, DIRTY with the failed sources' fields
        """
        definition = self.definition
        values = self._flatten(document)
        validate_document(definition, values)

        grouped = self._partition(values)
        self._apply_key_lists(grouped)

        # Shape every dependent write before the first I/O
        pending: Dict[str, List[Dict[str, Any]]] = {}
        for binding in definition.dependents:
            own = grouped.get(binding.source_name)
            if not own:
                continue
            if binding.relationship == Relationship.ONE_TO_ONE:
                pending[binding.source_name] = [resolver.to_raw(definition, binding.source_name, own)]
            elif binding.relationship == Relationship.ONE_TO_MANY:
                items = own[definition.collection_field(binding.source_name)] or []
                pending[binding.source_name] = [
                    resolver.item_to_raw(definition, binding, item, {}) for item in items
                ]

        primary_values = grouped.get(self.primary_name, {})
        primary = self.sources[self.primary_name]
        try:
            stored = await primary.create(resolver.to_raw(definition, self.primary_name, primary_values))
        except Exception as e:
            raise SourceFailureError({self.primary_name: e}) from e

        parent = dict(primary_values)
        parent.update(resolver.rekey(definition, self.primary_name, stored or {}))
        identity_key = parent.get(definition.identity_field)
        if identity_key is None:
            raise SourceFailureError({
                self.primary_name: ValueError("primary source assigned no identity"),
            })
        logger.debug(f"[{self.name}] primary '{self.primary_name}' created {identity_key!r}")

        calls = []
        for source_name, raws in pending.items():
            binding = definition.sources[source_name]
            link = resolver.link_fields(binding, parent)
            source = self.sources[source_name]
            linked = [dict(raw, **link) for raw in raws]
            calls.append((source_name, self._call_many(source_name, [source.create(r) for r in linked])))

        results, failures = await self._fan_out(calls)

        merged = dict(values)
        merged.update(parent)
        instance = EntityInstance(
            self,
            values=merged,
            identity_key=identity_key,
            source_refs={self.primary_name: stored, **results},
        )
        if failures:
            instance.dirty = {
                name for name in values
                if definition.write_owner_of(name) in failures
            }
            raise SourcePartialFailureError(failures, instance)

        logger.info(f"[{self.name}] created {identity_key!r}")
        return instance

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update(self, identity_key: Any, partial_document: Mapping[str, Any]) -> EntityInstance:
        """
        Write the provided fields; sources owning none of them are not
        contacted.

        ONE_TO_ONE dependents are upserted (created when missing), collection
        fields are replaced wholesale. Changing a local join field re-links
        the dependents joined on it.

        Returns:
            PERSISTED instance holding the identity and the written values

        Raises:
            ValidationError: before any source is contacted
            NotFoundError: the primary has no such record
            SourceFailureError / SourcePartialFailureError: source failures
        """
        definition = self.definition
        identity = definition.identity_field
        values = self._flatten(partial_document)

        if identity in values:
            if values[identity] != identity_key:
                raise ValidationError({identity: ["identity is immutable"]})
            values.pop(identity)
        validate_document(definition, values, partial=True)

        grouped = self._partition(values)
        self._apply_key_lists(grouped)
        primary_changes = grouped.get(self.primary_name, {})

        relinked = [
            b for b in definition.dependents
            if b.relationship != Relationship.MANY_TO_MANY
            and any(local in primary_changes for local in b.join_key)
        ]
        targets = [
            b for b in definition.dependents
            if b.relationship != Relationship.MANY_TO_MANY
            and (b.source_name in grouped or b in relinked)
        ]

        # Dependent writes may create records; without a primary write to
        # prove the entity exists, read it first
        creates = not primary_changes and any(grouped.get(b.source_name) for b in targets)
        if creates or self._needs_parent(targets):
            old_parent = await self._load_parent(identity_key)
        else:
            old_parent = {identity: identity_key}
        new_parent = dict(old_parent, **primary_changes)

        attempted = len(targets)
        if primary_changes:
            attempted += 1
            primary = self.sources[self.primary_name]
            try:
                count = await primary.update(
                    self._identity_query(identity_key),
                    resolver.to_raw(definition, self.primary_name, primary_changes),
                )
            except Exception as e:
                raise SourceFailureError({self.primary_name: e}) from e
            if not count:
                raise NotFoundError(self.name, identity_key)

        calls = []
        for binding in targets:
            own = grouped.get(binding.source_name, {})
            relink = binding in relinked
            if binding.relationship == Relationship.ONE_TO_ONE:
                call = self._upsert(binding, own, old_parent, new_parent, relink)
            else:
                call = self._replace(binding, own, old_parent, new_parent)
            calls.append((binding.source_name, call))

        _, failures = await self._fan_out(calls)

        written = dict(values)
        for binding in definition.dependents:
            if binding.relationship == Relationship.MANY_TO_MANY:
                local = next(iter(binding.join_key))
                if local in primary_changes:
                    written[local] = primary_changes[local]

        instance = EntityInstance(self, values=written, identity_key=identity_key)
        if failures:
            instance.dirty = {
                name for name in values
                if definition.write_owner_of(name) in failures
            }
        self._raise_failures(failures, attempted, instance)
        logger.info(f"[{self.name}] updated {identity_key!r}: {sorted(values)}")
        return instance

    async def _upsert(self, binding: SourceBinding, own, old_parent, new_parent, relink: bool) -> int:
        source = self.sources[binding.source_name]
        raw = resolver.to_raw(self.definition, binding.source_name, own)
        if relink:
            raw.update(resolver.link_fields(binding, new_parent))
        count = await source.update(resolver.link_fields(binding, old_parent), raw)
        if count or not own:
            return count
        await source.create(dict(raw, **resolver.link_fields(binding, new_parent)))
        return 1

    async def _replace(self, binding: SourceBinding, own, old_parent, new_parent) -> int:
        source = self.sources[binding.source_name]
        old_link = resolver.link_fields(binding, old_parent)
        new_link = resolver.link_fields(binding, new_parent)

        field_name = self.definition.collection_field(binding.source_name)
        if field_name not in own:
            # Only the join moved
            return await source.update(old_link, new_link)

        items = own[field_name] or []
        raws = [resolver.item_to_raw(self.definition, binding, item, new_parent) for item in items]
        await source.delete(old_link)
        await self._call_many(binding.source_name, [source.create(r) for r in raws])
        return len(raws)

    # =========================================================================
    # DESTROY
    # =========================================================================

    async def destroy(self, identity_key: Any) -> None:
        """
        Delete a record from every owning source.

        Dependents go first, concurrently; the primary is deleted only after
        all of them settled successfully, so a failed dependent never leaves
        orphans behind a missing primary. MANY_TO_MANY sources hold shared
        records and are not cascaded.

        Raises:
            NotFoundError: the primary has no such record
            SourcePartialFailureError: a dependent (or, after them, the
                primary) delete failed
        """
        definition = self.definition
        dependents = [b for b in definition.dependents if b.relationship != Relationship.MANY_TO_MANY]

        if self._needs_parent(dependents):
            parent = await self._load_parent(identity_key)
        else:
            parent = {definition.identity_field: identity_key}

        calls = [
            (b.source_name, self.sources[b.source_name].delete(resolver.link_fields(b, parent)))
            for b in dependents
        ]
        _, failures = await self._fan_out(calls)
        if failures:
            logger.warning(
                f"[{self.name}] destroy {identity_key!r}: dependents failed {sorted(failures)}, "
                f"primary kept"
            )
            raise SourcePartialFailureError(failures)

        try:
            count = await self.sources[self.primary_name].delete(self._identity_query(identity_key))
        except Exception as e:
            if calls:
                raise SourcePartialFailureError({self.primary_name: e}) from e
            raise SourceFailureError({self.primary_name: e}) from e
        if not count:
            raise NotFoundError(self.name, identity_key)
        logger.info(f"[{self.name}] destroyed {identity_key!r}")

    # =========================================================================
    # COMPOSITION
    # =========================================================================

    def as_source(self):
        """This model as a DataSource for another model"""
        from frankenstein.repositories.model_repository import ModelSource
        return ModelSource(self)
