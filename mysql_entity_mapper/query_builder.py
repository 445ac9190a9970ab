"""
SQL generation for entities.

Custom types take part in every statement the builder emits: columns whose
type has a read fragment are projected through it (aliased back to the
column name, or to ``<join alias>__<column>`` for joined entities), and
values written to columns whose type has a write fragment are wrapped by
it. Primary and foreign keys are always used bare.
"""

import enum
from dataclasses import dataclass
from logging import getLogger

from .errors import MetadataError
from .metadata import EntityMetadata, EntityProperty, MetadataStorage, ReferenceKind
from .types import JsonType
from .utils import PLACEHOLDER, format_query, quote_column, quote_identifier, validate_sql_fragment

logger = getLogger(__name__)


class QueryType(enum.Enum):
    SELECT = 'select'
    COUNT = 'count'
    INSERT = 'insert'
    UPDATE = 'update'
    DELETE = 'delete'


class LoadStrategy(enum.Enum):
    SELECT_IN = 'select-in'
    JOINED = 'joined'


OPERATORS = {
    '$eq': '=',
    '$ne': '!=',
    '$gt': '>',
    '$gte': '>=',
    '$lt': '<',
    '$lte': '<=',
}

JOINED_ALIAS_SEPARATOR = '__'


@dataclass
class JoinSpec:
    alias: str
    owner_alias: str
    prop: EntityProperty
    meta: EntityMetadata
    selected: bool = False

    @property
    def prefix(self):
        return self.alias + JOINED_ALIAS_SEPARATOR


class QueryBuilder:
    def __init__(self, entity_name, alias=None, em=None, metadata: MetadataStorage = None):
        if metadata is None:
            if em is None:
                raise ValueError('QueryBuilder needs an entity manager or a metadata storage')
            metadata = em.metadata
        self.em = em
        self.metadata = metadata
        self.meta = metadata.get(entity_name)
        self.alias = alias or 'e0'
        self._aliases = {self.alias: self.meta}
        self._alias_counter = 1
        self._type = QueryType.SELECT
        self._fields = None
        self._joins: list[JoinSpec] = []
        self._conditions = []
        self._order_by = []
        self._limit = None
        self._offset = None
        self._data = None

    # query types

    def select(self, fields='*'):
        self._type = QueryType.SELECT
        self._fields = list(fields) if isinstance(fields, (list, tuple)) else [fields]
        return self

    def count(self):
        self._type = QueryType.COUNT
        return self

    def insert(self, data):
        self._type = QueryType.INSERT
        self._data = dict(data)
        return self

    def update(self, data):
        self._type = QueryType.UPDATE
        self._data = dict(data)
        return self

    def delete(self):
        self._type = QueryType.DELETE
        return self

    @property
    def type(self):
        return self._type

    # joins

    def get_next_alias(self, entity_name):
        alias = f'{entity_name[0].lower()}{self._alias_counter}'
        self._alias_counter += 1
        return alias

    def left_join(self, path, alias=None, select=False):
        owner_alias, _, prop_name = path.rpartition('.')
        owner_alias = owner_alias or self.alias
        owner_meta = self._aliases.get(owner_alias)
        if owner_meta is None:
            raise MetadataError(f'unknown alias {owner_alias} in join path {path}')
        prop = owner_meta.get_property(prop_name)
        if not prop.is_relation:
            raise MetadataError(f'{owner_meta.class_name}.{prop_name} is not a relation')
        alias = alias or self.get_next_alias(prop.target_meta.class_name)
        if alias in self._aliases:
            raise ValueError(f'alias {alias} is already used')
        self._aliases[alias] = prop.target_meta
        self._joins.append(JoinSpec(
            alias=alias, owner_alias=owner_alias, prop=prop, meta=prop.target_meta, selected=select,
        ))
        return self

    def left_join_and_select(self, path, alias=None):
        return self.left_join(path, alias=alias, select=True)

    @property
    def joins(self):
        return list(self._joins)

    # filtering and paging

    def where(self, cond, params=None):
        if cond is None:
            return self
        if isinstance(cond, dict) and not cond:
            return self
        self._conditions.append((cond, list(params or [])))
        return self

    and_where = where

    def order_by(self, order):
        for key, direction in order.items():
            direction = str(direction).lower()
            if direction not in ('asc', 'desc'):
                raise ValueError(f'wrong order direction {direction} for {key}')
            self._order_by.append((key, direction))
        return self

    def limit(self, limit, offset=None):
        self._limit = limit
        if offset is not None:
            self._offset = offset
        return self

    def offset(self, offset):
        self._offset = offset
        return self

    # compilation

    def _uses_alias(self):
        return self._type in (QueryType.SELECT, QueryType.COUNT)

    def _column_ref(self, alias, prop):
        if self._uses_alias():
            return quote_column(alias, prop.column_name)
        return quote_identifier(prop.column_name)

    def _resolve_field(self, key):
        alias, _, name = key.rpartition('.')
        if alias and alias not in self._aliases:
            raise MetadataError(f'unknown alias {alias} in {key}')
        alias = alias or self.alias
        meta = self._aliases[alias]
        prop = meta.find_property(name)
        if prop is None:
            raise MetadataError(f'{meta.class_name} has no property {name}')
        return alias, prop

    def _to_database_value(self, prop, value):
        if prop.kind != ReferenceKind.SCALAR and value is not None:
            value_meta = self.metadata.find(type(value))
            if value_meta is not None:
                value = value_meta.get_primary_key(value)
        return prop.custom_type.convert_to_database_value(value)

    def _placeholder(self, prop):
        if prop is not None and prop.kind == ReferenceKind.SCALAR:
            return prop.custom_type.write_placeholder(PLACEHOLDER)
        return PLACEHOLDER

    def _render_property(self, alias, prop, prefix=''):
        column = quote_column(alias, prop.column_name)
        if prop.has_read_fragment:
            fragment = prop.custom_type.convert_to_python_value_sql(column)
            return f'{fragment} as {quote_identifier(prefix + prop.column_name)}'
        if prefix:
            return f'{column} as {quote_identifier(prefix + prop.column_name)}'
        return column

    def _render_entity_columns(self, alias, meta, prefix=''):
        return [self._render_property(alias, prop, prefix) for prop in meta.properties.values()]

    def _render_select_fields(self):
        has_joined_selects = any(join.selected for join in self._joins)
        join_by_alias = {join.alias: join for join in self._joins}
        # selected joins are projected once, however the field list names them
        rendered_joins = set()
        parts = []
        for field in self._fields or ['*']:
            if field == '*' or field.endswith('.*'):
                alias = self.alias if field == '*' else field[:-2]
                if alias not in self._aliases:
                    raise MetadataError(f'unknown alias {alias} in {field}')
                meta = self._aliases[alias]
                if alias in join_by_alias:
                    if alias not in rendered_joins:
                        parts += self._render_entity_columns(alias, meta, join_by_alias[alias].prefix)
                        rendered_joins.add(alias)
                elif has_joined_selects:
                    parts += self._render_entity_columns(alias, meta)
                else:
                    parts.append(f'{quote_identifier(alias)}.*')
                    parts += [
                        self._render_property(alias, prop)
                        for prop in meta.properties.values()
                        if prop.has_read_fragment
                    ]
                continue
            try:
                alias, prop = self._resolve_field(field)
            except MetadataError:
                parts.append(validate_sql_fragment(field))
                continue
            if alias in join_by_alias:
                join = join_by_alias[alias]
                if join.selected:
                    continue
                parts.append(self._render_property(alias, prop, join.prefix))
                continue
            parts.append(self._render_property(alias, prop))

        for join in self._joins:
            if join.selected and join.alias not in rendered_joins:
                parts += self._render_entity_columns(join.alias, join.meta, join.prefix)
        return ', '.join(parts)

    def _compile_operator(self, column, prop, op, value, params):
        if op in ('$in', '$nin'):
            values = list(value)
            if not values:
                return '1 = 0' if op == '$in' else '1 = 1'
            placeholders = ', '.join(self._placeholder(prop) for _ in values)
            params.extend(self._to_database_value(prop, v) for v in values)
            keyword = 'in' if op == '$in' else 'not in'
            return f'{column} {keyword} ({placeholders})'
        if op not in OPERATORS:
            raise ValueError(f'unsupported operator {op}')
        if value is None:
            if op == '$eq':
                return f'{column} is null'
            if op == '$ne':
                return f'{column} is not null'
            raise ValueError(f'operator {op} cannot compare with null')
        params.append(self._to_database_value(prop, value))
        return f'{column} {OPERATORS[op]} {self._placeholder(prop)}'

    def _compile_value(self, column, prop, value, params):
        if isinstance(value, dict) and value and all(str(k).startswith('$') for k in value):
            return ' and '.join(
                self._compile_operator(column, prop, op, operand, params)
                for op, operand in value.items()
            )
        if isinstance(prop.custom_type, JsonType) and isinstance(value, (list, tuple, dict)):
            # a json column compares the whole value as one document
            params.append(self._to_database_value(prop, value))
            return f'{column} = cast({PLACEHOLDER} as json)'
        if isinstance(value, (list, tuple, set)):
            return self._compile_operator(column, prop, '$in', value, params)
        return self._compile_operator(column, prop, '$eq', value, params)

    def _compile_dict(self, cond, params):
        parts = []
        for key, value in cond.items():
            if key in ('$and', '$or'):
                nested = [f'({self._compile_dict(c, params)})' for c in value]
                glue = ' and ' if key == '$and' else ' or '
                parts.append(f'({glue.join(nested)})')
            elif key == '$not':
                parts.append(f'not ({self._compile_dict(value, params)})')
            else:
                alias, prop = self._resolve_field(key)
                parts.append(self._compile_value(self._column_ref(alias, prop), prop, value, params))
        return ' and '.join(parts)

    def _compile_condition(self, cond, raw_params, params):
        if isinstance(cond, str):
            params.extend(raw_params)
            return validate_sql_fragment(cond)
        if isinstance(cond, dict):
            return self._compile_dict(cond, params)
        primary_key = self.meta.primary_key
        column = self._column_ref(self.alias, primary_key)
        if isinstance(cond, (list, tuple, set)):
            return self._compile_operator(column, primary_key, '$in', cond, params)
        return self._compile_operator(column, primary_key, '$eq', cond, params)

    def _compile_where(self, params):
        compiled = []
        for cond, raw_params in self._conditions:
            sql = self._compile_condition(cond, raw_params, params)
            if sql:
                compiled.append(sql)
        if not compiled:
            return ''
        if len(compiled) == 1:
            return f' where {compiled[0]}'
        return ' where ' + ' and '.join(f'({sql})' for sql in compiled)

    def _compile_from(self):
        sql = f' from {quote_identifier(self.meta.table_name)} as {quote_identifier(self.alias)}'
        for join in self._joins:
            owner_column = quote_column(join.owner_alias, join.prop.column_name)
            target_column = quote_column(join.alias, join.meta.primary_key.column_name)
            sql += (
                f' left join {quote_identifier(join.meta.table_name)} as {quote_identifier(join.alias)}'
                f' on {owner_column} = {target_column}'
            )
        return sql

    def _compile_tail(self, params):
        sql = ''
        if self._order_by:
            order = []
            for key, direction in self._order_by:
                alias, prop = self._resolve_field(key)
                order.append(f'{self._column_ref(alias, prop)} {direction}')
            sql += ' order by ' + ', '.join(order)
        if self._limit is not None:
            sql += f' limit {PLACEHOLDER}'
            params.append(self._limit)
        if self._offset is not None:
            sql += f' offset {PLACEHOLDER}'
            params.append(self._offset)
        return sql

    def _data_properties(self):
        if not self._data:
            raise ValueError(f'{self._type.value} query needs data')
        return [(self.meta.get_property(name), value) for name, value in self._data.items()]

    def compile(self):
        params = []
        table = quote_identifier(self.meta.table_name)

        if self._type == QueryType.SELECT:
            sql = f'select {self._render_select_fields()}{self._compile_from()}'
            sql += self._compile_where(params)
            sql += self._compile_tail(params)
            return sql, params

        if self._type == QueryType.COUNT:
            primary_key = quote_column(self.alias, self.meta.primary_key.column_name)
            expression = f'count(distinct {primary_key})' if self._joins else 'count(*)'
            sql = f'select {expression} as `count`{self._compile_from()}'
            sql += self._compile_where(params)
            return sql, params

        if self._type == QueryType.INSERT:
            columns = []
            values = []
            for name, value in (self._data or {}).items():
                prop = self.meta.get_property(name)
                columns.append(quote_identifier(prop.column_name))
                values.append(self._placeholder(prop))
                params.append(self._to_database_value(prop, value))
            return f'insert into {table} ({", ".join(columns)}) values ({", ".join(values)})', params

        if self._type == QueryType.UPDATE:
            assignments = []
            for prop, value in self._data_properties():
                column = quote_identifier(prop.column_name)
                if value is None:
                    assignments.append(f'{column} = NULL')
                    continue
                assignments.append(f'{column} = {self._placeholder(prop)}')
                params.append(self._to_database_value(prop, value))
            sql = f'update {table} set {", ".join(assignments)}'
            sql += self._compile_where(params)
            return sql, params

        if self._type == QueryType.DELETE:
            sql = f'delete from {table}'
            sql += self._compile_where(params)
            return sql, params

        raise ValueError(f'unknown query type {self._type}')

    def get_query(self):
        return self.compile()[0]

    def get_params(self):
        return self.compile()[1]

    def get_formatted_query(self):
        sql, params = self.compile()
        return format_query(sql, params)

    # execution

    def _require_em(self):
        if self.em is None:
            raise ValueError('query builder is not bound to an entity manager')
        return self.em

    def execute(self, method='all'):
        em = self._require_em()
        sql, params = self.compile()
        result = em.api.execute(sql, params, transaction=em.current_transaction)
        if method == 'all':
            return result.rows
        if method == 'get':
            return result.rows[0] if result.rows else None
        if method == 'run':
            return result
        raise ValueError(f'unknown execute method {method}')

    def get_result(self):
        if self._type != QueryType.SELECT:
            raise ValueError(f'get_result() needs a select query, not {self._type.value}')
        rows = self.execute('all')
        return self._require_em().hydrator.hydrate_rows(self.meta, rows, self._selected_joins())

    def get_single_result(self):
        results = self.get_result()
        return results[0] if results else None

    def get_count(self):
        self.count()
        row = self.execute('get')
        return int(row['count']) if row else 0

    def _selected_joins(self):
        return [join for join in self._joins if join.selected]

    def clone(self):
        qb = QueryBuilder(self.meta.class_name, alias=self.alias, em=self.em, metadata=self.metadata)
        qb._aliases = dict(self._aliases)
        qb._alias_counter = self._alias_counter
        qb._type = self._type
        qb._fields = list(self._fields) if self._fields is not None else None
        qb._joins = list(self._joins)
        qb._conditions = list(self._conditions)
        qb._order_by = list(self._order_by)
        qb._limit = self._limit
        qb._offset = self._offset
        qb._data = dict(self._data) if self._data is not None else None
        return qb

    def __str__(self):
        return self.get_formatted_query()
