from logging import getLogger

from .errors import MapperError
from .metadata import EntityMetadata

logger = getLogger(__name__)


class Hydrator:
    """
    Turns result rows into managed entities.

    Rows come from dictionary cursors. Columns of the root entity are keyed
    by column name, columns of joined entities by ``<alias>__<column>``.
    Entities already initialized in the identity map are returned as they
    are, so unflushed changes are never overwritten by a later query.
    """

    def __init__(self, em):
        self.em = em

    @property
    def unit_of_work(self):
        return self.em.unit_of_work

    def hydrate_rows(self, meta: EntityMetadata, rows, joins=()):
        results = []
        seen = set()
        for row in rows:
            entity = self.hydrate_row(meta, row, joins)
            if entity is None or id(entity) in seen:
                continue
            seen.add(id(entity))
            results.append(entity)
        return results

    def hydrate_row(self, meta: EntityMetadata, row, joins=()):
        # joined entities go first: when the owner resolves its foreign key
        # through the identity map it gets the already initialized instance
        for join in reversed(list(joins)):
            self.merge(join.meta, row, prefix=join.prefix)
        return self.merge(meta, row)

    def merge(self, meta: EntityMetadata, row, prefix=''):
        primary_key = meta.primary_key
        key = prefix + primary_key.column_name
        if key not in row:
            raise MapperError(f'primary key column {key} of {meta.class_name} missing from result')
        pk = primary_key.custom_type.convert_to_python_value(row[key])
        if pk is None:
            return None

        existing = self.unit_of_work.get_by_id(meta, pk)
        if existing is not None and self.unit_of_work.is_initialized(existing):
            return existing

        entity = existing if existing is not None else meta.create_instance()
        primary_key.__set__(entity, pk)
        for prop in meta.properties.values():
            if prop.is_primary:
                continue
            key = prefix + prop.column_name
            if key not in row:
                continue
            value = row[key]
            if prop.is_relation:
                if value is None:
                    prop.__set__(entity, None)
                else:
                    fk = prop.custom_type.convert_to_python_value(value)
                    prop.__set__(entity, self.em.get_reference(prop.target_meta, fk))
                continue
            prop.__set__(entity, prop.custom_type.convert_to_python_value(value))

        self.unit_of_work.register_managed(entity, meta, initialized=True)
        return entity
