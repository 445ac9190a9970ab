"""
Unit of Work: identity map, snapshots and flush ordering.

Every loaded or flushed entity gets a snapshot of its storage values
(after the column type converted them). On flush the current storage
values are computed again and compared with the snapshot; only properties
that differ end up in the UPDATE. New entities are inserted referenced
first, removed ones deleted referencing first, all inside one transaction.
A flush without changes does not touch the database at all.
"""

import enum
from dataclasses import dataclass, field
from logging import getLogger

from .entity import EntityState, EntityStatus, diff_snapshot
from .errors import MetadataError, ValidationError
from .metadata import EntityMetadata

logger = getLogger(__name__)


class ChangeSetType(enum.Enum):
    CREATE = 'create'
    UPDATE = 'update'
    DELETE = 'delete'


@dataclass
class ChangeSet:
    type: ChangeSetType
    state: EntityState
    # property name => current (python) value, relations keep the entity
    payload: dict = field(default_factory=dict)

    @property
    def entity(self):
        return self.state.entity

    @property
    def meta(self) -> EntityMetadata:
        return self.state.meta

    def __repr__(self):
        return f'ChangeSet({self.type.value} {self.meta.class_name} {list(self.payload)})'


class UnitOfWork:
    def __init__(self, em):
        self.em = em
        self._identity_map = {}
        self._states: dict[int, EntityState] = {}
        self._persist_stack: list[EntityState] = []
        self._remove_stack: list[EntityState] = []

    # state lookup

    def find_state(self, entity):
        return self._states.get(id(entity))

    def get_state(self, entity):
        state = self.find_state(entity)
        if state is None:
            meta = self.em.metadata.find(type(entity))
            if meta is None:
                raise MetadataError(f'{type(entity).__name__} is not a discovered entity')
            state = EntityState(entity=entity, meta=meta)
            self._states[id(entity)] = state
        return state

    def get_by_id(self, meta: EntityMetadata, pk):
        return self._identity_map.get((meta.class_name, pk))

    def is_initialized(self, entity):
        state = self.find_state(entity)
        return state is None or state.initialized

    def is_managed(self, entity):
        state = self.find_state(entity)
        return state is not None and state.status == EntityStatus.MANAGED

    def register_managed(self, entity, meta: EntityMetadata, initialized=True):
        state = self.find_state(entity)
        if state is None:
            state = EntityState(entity=entity, meta=meta)
            self._states[id(entity)] = state
        state.status = EntityStatus.MANAGED
        state.initialized = initialized
        state.snapshot = state.take_snapshot() if initialized else None
        self._identity_map[state.identity] = entity
        return state

    # scheduling

    def persist(self, entity):
        state = self.get_state(entity)
        if state.status == EntityStatus.REMOVED:
            state.status = EntityStatus.MANAGED
            self._remove_stack.remove(state)
        elif state.status == EntityStatus.TRANSIENT and state not in self._persist_stack:
            self._persist_stack.append(state)
        return state

    def remove(self, entity):
        state = self.find_state(entity)
        if state is None:
            return
        if state in self._persist_stack:
            self._persist_stack.remove(state)
            del self._states[id(entity)]
        elif state.status == EntityStatus.MANAGED:
            state.status = EntityStatus.REMOVED
            self._remove_stack.append(state)

    def clear(self):
        self._identity_map.clear()
        self._states.clear()
        self._persist_stack.clear()
        self._remove_stack.clear()

    # change sets

    def _cascade_persist(self):
        queue = list(self._persist_stack)
        queue += [
            state for state in self._states.values()
            if state.status == EntityStatus.MANAGED and state.initialized
        ]
        while queue:
            state = queue.pop()
            for relation in state.meta.relations:
                related = relation.__get__(state.entity)
                if related is None:
                    continue
                related_state = self.find_state(related)
                if related_state is None or (
                    related_state.status == EntityStatus.TRANSIENT and related_state not in self._persist_stack
                ):
                    queue.append(self.persist(related))

    def _create_payload(self, state):
        payload = {}
        for prop in state.meta.properties.values():
            value = prop.__get__(state.entity)
            if value is None:
                continue
            payload[prop.name] = value
        return payload

    def _dependency_order(self, change_sets):
        by_entity = {id(cs.entity): cs for cs in change_sets}
        ordered = []
        visiting = set()
        done = set()

        def visit(change_set):
            key = id(change_set.entity)
            if key in done:
                return
            if key in visiting:
                raise ValidationError(
                    f'circular reference between new {change_set.meta.class_name} entities'
                )
            visiting.add(key)
            for relation in change_set.meta.relations:
                related = relation.__get__(change_set.entity)
                if related is not None and id(related) in by_entity:
                    visit(by_entity[id(related)])
            visiting.discard(key)
            done.add(key)
            ordered.append(change_set)

        for change_set in change_sets:
            visit(change_set)
        return ordered

    def compute_change_sets(self):
        self._cascade_persist()

        creates = [
            ChangeSet(ChangeSetType.CREATE, state)
            for state in self._persist_stack
            if state.status == EntityStatus.TRANSIENT
        ]

        updates = []
        for state in self._states.values():
            if state.status != EntityStatus.MANAGED or not state.initialized or state.snapshot is None:
                continue
            changed = diff_snapshot(state.meta, state.entity, state.snapshot)
            if changed:
                payload = {name: state.meta.properties[name].__get__(state.entity) for name in changed}
                updates.append(ChangeSet(ChangeSetType.UPDATE, state, payload))

        deletes = [ChangeSet(ChangeSetType.DELETE, state) for state in self._remove_stack]

        return (
            self._dependency_order(creates)
            + updates
            + list(reversed(self._dependency_order(deletes)))
        )

    def _validate(self, change_sets):
        for change_set in change_sets:
            if change_set.type == ChangeSetType.DELETE:
                continue
            for prop in change_set.meta.properties.values():
                if prop.is_primary or prop.nullable:
                    continue
                if change_set.type == ChangeSetType.UPDATE and prop.name not in change_set.payload:
                    continue
                if prop.__get__(change_set.entity) is None:
                    raise ValidationError(
                        f'{change_set.meta.class_name}.{prop.name} is required, got None'
                    )

    # flush

    def commit(self):
        change_sets = self.compute_change_sets()
        if not change_sets:
            logger.debug('flush: no changes')
            return []

        self._validate(change_sets)

        generated = []
        try:
            if self.em.current_transaction is not None:
                self._execute(change_sets, self.em.current_transaction, generated)
            else:
                with self.em.api.transaction() as transaction:
                    self._execute(change_sets, transaction, generated)
        except BaseException:
            # nothing was committed, keys handed out by the server are void
            for state in generated:
                state.meta.primary_key.__set__(state.entity, None)
            raise

        self._after_commit(change_sets)
        logger.debug(f'flush: {len(change_sets)} change sets committed')
        return change_sets

    def _execute(self, change_sets, transaction, generated):
        for change_set in change_sets:
            meta = change_set.meta
            primary_key = meta.primary_key
            qb = self.em.create_query_builder(meta.class_name)

            if change_set.type == ChangeSetType.CREATE:
                # built now so foreign keys see keys generated earlier in this flush
                change_set.payload = self._create_payload(change_set.state)
                result = transaction.execute(*qb.insert(change_set.payload).compile())
                if change_set.state.primary_key is None:
                    if not getattr(primary_key, 'autoincrement', False) or result.insert_id is None:
                        raise ValidationError(f'{meta.class_name} was inserted without a primary key')
                    primary_key.__set__(change_set.entity, result.insert_id)
                    generated.append(change_set.state)
                continue

            where = {primary_key.name: change_set.state.primary_key}
            if change_set.type == ChangeSetType.UPDATE:
                qb.update(change_set.payload).where(where)
            else:
                qb.delete().where(where)
            transaction.execute(*qb.compile())

    def _after_commit(self, change_sets):
        for change_set in change_sets:
            state = change_set.state
            if change_set.type == ChangeSetType.DELETE:
                self._identity_map.pop(state.identity, None)
                self._states.pop(id(state.entity), None)
                continue
            self.register_managed(state.entity, state.meta, initialized=True)
        self._persist_stack.clear()
        self._remove_stack.clear()
