from logging import getLogger

from .errors import MapperError, NotFoundError
from .hydrator import Hydrator
from .metadata import EntityMetadata, MetadataStorage
from .mysql_api import MySQLApi
from .query_builder import LoadStrategy, QueryBuilder
from .unit_of_work import UnitOfWork

logger = getLogger(__name__)


class EntityManager:
    """
    Facade over the unit of work and the query builder.

    One manager is one identity map: loading the same row twice yields the
    same instance, and every instance it returns takes part in its next
    flush. Use fork() to get an isolated manager for another request or
    thread; forks share metadata and the connection pool, nothing else.
    """

    def __init__(self, api: MySQLApi, metadata: MetadataStorage, settings=None):
        self.api = api
        self.metadata = metadata
        self.settings = settings
        self.unit_of_work = UnitOfWork(self)
        self.hydrator = Hydrator(self)
        self.current_transaction = None

    def get_metadata(self, entity=None):
        if entity is None:
            return self.metadata
        return self.metadata.get(entity)

    def get_unit_of_work(self):
        return self.unit_of_work

    def create_query_builder(self, entity, alias=None) -> QueryBuilder:
        return QueryBuilder(self.metadata.get(entity).class_name, alias=alias, em=self)

    # persistence

    def persist(self, entities, flush=False):
        for entity in _as_list(entities):
            self.unit_of_work.persist(entity)
        if flush:
            self.flush()
        return self

    def remove(self, entities, flush=False):
        for entity in _as_list(entities):
            self.unit_of_work.remove(entity)
        if flush:
            self.flush()
        return self

    def flush(self):
        self.unit_of_work.commit()

    def persist_and_flush(self, entities):
        self.persist(entities, flush=True)

    def remove_and_flush(self, entities):
        self.remove(entities, flush=True)

    def transactional(self, callback):
        """
        Run ``callback(em)`` on a fork inside one transaction.

        The fork is flushed before commit, so everything the callback
        persisted or changed lands atomically. Returns the callback result.
        """
        fork = self.fork()
        with self.api.transaction() as transaction:
            fork.current_transaction = transaction
            try:
                result = callback(fork)
                fork.flush()
            finally:
                fork.current_transaction = None
        return result

    # loading

    def find(self, entity, where=None, populate=None, strategy=None, order_by=None,
             limit=None, offset=None, fields=None):
        meta = self.metadata.get(entity)
        qb = self.create_query_builder(meta.class_name)
        if fields:
            qb.select(fields)
        else:
            qb.select('*')
        strategy = _as_strategy(strategy)
        joined = self._joined_paths(populate, strategy)
        for path in joined:
            qb.left_join_and_select(f'{qb.alias}.{path}')
        qb.where(where)
        if order_by:
            qb.order_by(order_by)
        if limit is not None:
            qb.limit(limit, offset)
        elif offset is not None:
            qb.offset(offset)
        results = qb.get_result()
        remaining = self._remaining_populate(populate, joined)
        if results and remaining:
            self.populate(results, remaining, strategy=LoadStrategy.SELECT_IN)
        return results

    def find_one(self, entity, where, populate=None, strategy=None, fields=None):
        meta = self.metadata.get(entity)
        cached = self._find_in_identity_map(meta, where)
        if cached is not None and not populate:
            return cached

        strategy = _as_strategy(strategy)
        joined = self._joined_paths(populate, strategy)
        if joined:
            # a limit would cut joined rows, the primary key lookup is unique anyway
            results = self.find(meta, where, populate=populate, strategy=strategy, fields=fields)
        else:
            results = self.find(meta, where, populate=populate, strategy=strategy, fields=fields, limit=1)
        return results[0] if results else None

    def find_one_or_fail(self, entity, where, populate=None, strategy=None, fields=None):
        result = self.find_one(entity, where, populate=populate, strategy=strategy, fields=fields)
        if result is None:
            raise NotFoundError(self.metadata.get(entity).class_name, where)
        return result

    def count(self, entity, where=None):
        return self.create_query_builder(entity).where(where).get_count()

    def get_reference(self, entity, pk):
        """
        Entity with only its primary key set. Nothing is queried; the
        instance is initialized when a later query loads its row.
        """
        meta: EntityMetadata = self.metadata.get(entity)
        existing = self.unit_of_work.get_by_id(meta, pk)
        if existing is not None:
            return existing
        reference = meta.create_instance()
        meta.primary_key.__set__(reference, pk)
        self.unit_of_work.register_managed(reference, meta, initialized=False)
        return reference

    def is_initialized(self, entity):
        return self.unit_of_work.is_initialized(entity)

    def populate(self, entities, populate, strategy=None):
        entities = _as_list(entities)
        if not entities:
            return entities
        meta = self.metadata.get(type(entities[0]))
        for name, prop_strategy in _populate_items(populate, strategy):
            prop = meta.get_property(name)
            if not prop.is_relation:
                raise MapperError(f'{meta.class_name}.{name} is not a relation and cannot be populated')
            if prop_strategy == LoadStrategy.JOINED:
                pks = _unique(meta.get_primary_key(e) for e in entities)
                self.find(meta, {meta.primary_key.name: pks}, populate={name: LoadStrategy.JOINED})
                continue
            references = [prop.__get__(e) for e in entities]
            pks = _unique(
                prop.target_meta.get_primary_key(ref)
                for ref in references
                if ref is not None and not self.is_initialized(ref)
            )
            if pks:
                self.find(prop.target_meta, {prop.target_meta.primary_key.name: pks})
        return entities

    def _joined_paths(self, populate, strategy):
        return [name for name, s in _populate_items(populate, strategy) if s == LoadStrategy.JOINED]

    def _remaining_populate(self, populate, joined):
        return [name for name, _ in _populate_items(populate, None) if name not in joined]

    def _find_in_identity_map(self, meta: EntityMetadata, where):
        if isinstance(where, meta.cls):
            pk = meta.get_primary_key(where)
        elif isinstance(where, dict):
            if list(where) != [meta.primary_key.name]:
                return None
            pk = where[meta.primary_key.name]
        elif isinstance(where, str):
            # raw sql condition
            return None
        else:
            pk = where
        if pk is None or isinstance(pk, (dict, list, tuple, set, bool)):
            return None
        cached = self.unit_of_work.get_by_id(meta, pk)
        if cached is not None and self.is_initialized(cached):
            return cached
        return None

    # native statements, no hydration and no unit of work

    def native_delete(self, entity, where):
        qb = self.create_query_builder(entity).delete().where(where)
        return qb.execute('run').row_count

    def native_update(self, entity, where, data):
        qb = self.create_query_builder(entity).update(data).where(where)
        return qb.execute('run').row_count

    # lifecycle

    def clear(self):
        self.unit_of_work.clear()

    def fork(self):
        return EntityManager(self.api, self.metadata, self.settings)


def _as_list(entities):
    if isinstance(entities, (list, tuple, set)):
        return list(entities)
    return [entities]


def _as_strategy(strategy):
    if strategy is None or isinstance(strategy, LoadStrategy):
        return strategy
    return LoadStrategy(strategy)


def _populate_items(populate, strategy):
    """(relation name, strategy) pairs of a populate hint list or dict"""
    if not populate:
        return []
    default = _as_strategy(strategy) or LoadStrategy.SELECT_IN
    if isinstance(populate, dict):
        return [(name, _as_strategy(s) or default) for name, s in populate.items()]
    if isinstance(populate, str):
        populate = [populate]
    return [(name, default) for name in populate]


def _unique(values):
    result = []
    for value in values:
        if value not in result:
            result.append(value)
    return result
