"""
Entity metadata: declarative property descriptors and the registry the
entity manager resolves them through.

    @entity()
    class Location:
        id: int = PrimaryKey()
        point: Point = Property(PointType, nullable=True)

    @entity()
    class Address:
        id: int = PrimaryKey()
        location: Location = ManyToOne('Location')

Property descriptors only store values on the instance. Change detection
happens at flush time by comparing snapshots, never in ``__set__``.
"""

import copy
import enum
import importlib
import typing
from logging import getLogger
from types import UnionType

from .errors import MetadataError
from .table_structure import TableField, TableStructure
from .types import IntegerType, Type, TypeRegistry
from .utils import underscore

logger = getLogger(__name__)


class ReferenceKind(enum.Enum):
    PRIMARY = 'primary'
    SCALAR = 'scalar'
    MANY_TO_ONE = 'many_to_one'


class EntityProperty:
    kind = ReferenceKind.SCALAR

    def __init__(self, custom_type=None, nullable=False, column_name=None):
        self.type_spec = custom_type
        self.nullable = nullable
        self.explicit_column_name = column_name
        self.name = None
        self.owner = None
        self.custom_type: Type = None
        self.column_name = None

    def __set_name__(self, owner, name):
        self.owner = owner
        self.name = name

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return instance.__dict__.get(self.name)

    def __set__(self, instance, value):
        instance.__dict__[self.name] = value

    @property
    def type_tag(self):
        return self.custom_type.name if self.custom_type is not None else None

    @property
    def is_primary(self):
        return self.kind == ReferenceKind.PRIMARY

    @property
    def is_relation(self):
        return self.kind == ReferenceKind.MANY_TO_ONE

    @property
    def has_read_fragment(self):
        # keys are compared and joined on directly, never wrapped
        return self.kind == ReferenceKind.SCALAR and self.custom_type.has_read_fragment

    @property
    def has_write_fragment(self):
        return self.kind == ReferenceKind.SCALAR and self.custom_type.has_write_fragment

    def bind(self, type_registry, python_type=None):
        """Copy of this declaration resolved against one registry"""
        bound = copy.copy(self)
        bound.resolve(type_registry, python_type)
        return bound

    def resolve(self, type_registry, python_type=None):
        self.custom_type = type_registry.resolve(self.type_spec, python_type)
        self.column_name = self.explicit_column_name or underscore(self.name)

    def is_set(self, instance):
        return self.name in instance.__dict__

    def to_table_field(self):
        return TableField(
            name=self.column_name,
            field_type=self.custom_type.get_column_type(),
            parameters='null' if self.nullable else 'not null',
            additional_data=self.type_tag,
        )

    def __repr__(self):
        return f'{type(self).__name__}(name={self.name!r}, column={self.column_name!r}, type={self.custom_type!r})'


class Property(EntityProperty):
    pass


class PrimaryKey(EntityProperty):
    kind = ReferenceKind.PRIMARY

    def __init__(self, custom_type=None, autoincrement=True, column_name=None):
        super().__init__(custom_type=custom_type, nullable=False, column_name=column_name)
        self.autoincrement = autoincrement

    def resolve(self, type_registry, python_type=None):
        if self.type_spec is None and python_type is None:
            self.type_spec = IntegerType
        super().resolve(type_registry, python_type)

    def to_table_field(self):
        table_field = super().to_table_field()
        if self.autoincrement:
            table_field.parameters += ' auto_increment'
        return table_field


class ManyToOne(EntityProperty):
    kind = ReferenceKind.MANY_TO_ONE

    def __init__(self, target, nullable=False, column_name=None):
        super().__init__(custom_type=None, nullable=nullable, column_name=column_name)
        self.target = target
        self.target_meta: 'EntityMetadata' = None

    @property
    def target_name(self):
        if isinstance(self.target, str):
            return self.target
        return self.target.__name__

    def resolve(self, type_registry, python_type=None):
        self.column_name = self.explicit_column_name or underscore(self.name) + '_id'

    def resolve_target(self, storage: 'MetadataStorage'):
        self.target_meta = storage.find(self.target_name)
        if self.target_meta is None:
            raise MetadataError(
                f'{self.owner.__name__}.{self.name} references {self.target_name}, '
                f'which is not a discovered entity'
            )
        # the foreign key column stores whatever the target primary key stores
        self.custom_type = self.target_meta.primary_key.custom_type


class EntityMetadata:
    def __init__(self, cls, table_name=None):
        self.cls = cls
        self.class_name = cls.__name__
        self.table_name = table_name or underscore(cls.__name__)
        self.properties: dict[str, EntityProperty] = {}
        self.primary_key: EntityProperty = None

    def add_property(self, prop: EntityProperty):
        if prop.name in self.properties:
            raise MetadataError(f'duplicate property {self.class_name}.{prop.name}')
        for existing in self.properties.values():
            if existing.column_name == prop.column_name:
                raise MetadataError(
                    f'{self.class_name}.{prop.name} and {self.class_name}.{existing.name} '
                    f'both map to column {prop.column_name}'
                )
        if prop.is_primary:
            if self.primary_key is not None:
                raise MetadataError(f'composite primary keys are not supported ({self.class_name})')
            self.primary_key = prop
        self.properties[prop.name] = prop

    @property
    def relations(self):
        return [p for p in self.properties.values() if p.is_relation]

    @property
    def scalar_properties(self):
        return [p for p in self.properties.values() if p.kind == ReferenceKind.SCALAR]

    @property
    def columns(self):
        return [p.column_name for p in self.properties.values()]

    def get_property(self, name):
        prop = self.properties.get(name)
        if prop is None:
            raise MetadataError(f'{self.class_name} has no property {name}')
        return prop

    def get_property_by_column(self, column_name):
        for prop in self.properties.values():
            if prop.column_name == column_name:
                return prop
        return None

    def find_property(self, name_or_column):
        return self.properties.get(name_or_column) or self.get_property_by_column(name_or_column)

    def create_instance(self):
        # hydration and references bypass the user constructor
        return self.cls.__new__(self.cls)

    def get_primary_key(self, instance):
        return self.primary_key.__get__(instance)

    def to_table_structure(self) -> TableStructure:
        structure = TableStructure(table_name=self.table_name)
        for prop in self.properties.values():
            structure.add_field(prop.to_table_field())
        structure.primary_keys = [self.primary_key.column_name]
        structure.preprocess()
        return structure

    def __repr__(self):
        return f'EntityMetadata({self.class_name}, table={self.table_name!r})'


def _collect_properties(cls):
    seen = set()
    collected = []
    for klass in reversed(cls.__mro__):
        try:
            hints = typing.get_type_hints(klass)
        except (NameError, TypeError):
            hints = getattr(klass, '__annotations__', {})
        for name, value in vars(klass).items():
            if not isinstance(value, EntityProperty) or name in seen:
                continue
            seen.add(name)
            collected.append((value, hints.get(name)))
    return collected


def _hint_to_python_type(hint):
    if hint is None or isinstance(hint, str):
        return None
    origin = typing.get_origin(hint)
    if origin is typing.Union or origin is UnionType:
        args = [a for a in typing.get_args(hint) if a is not type(None)]
        return args[0] if len(args) == 1 else None
    if origin is not None:
        return origin
    return hint


class MetadataStorage:
    """Registry of discovered entities, keyed by class name"""

    _decorated = []

    def __init__(self, type_registry: TypeRegistry = None):
        self.type_registry = type_registry or TypeRegistry.default()
        self._metadata: dict[str, EntityMetadata] = {}

    @classmethod
    def register_decorated(cls, entity_cls, table_name=None):
        entity_cls.__entity_options__ = {'table_name': table_name}
        if entity_cls not in cls._decorated:
            cls._decorated.append(entity_cls)

    @classmethod
    def decorated_entities(cls, modules=None):
        if not modules:
            return list(cls._decorated)
        for module_name in modules:
            importlib.import_module(module_name)
        return [e for e in cls._decorated if e.__module__ in modules]

    def discover(self, entities):
        discovered = []
        for entity_cls in entities:
            if not isinstance(entity_cls, type):
                raise MetadataError(f'entity should be a class, got {entity_cls!r}')
            options = entity_cls.__dict__.get('__entity_options__', {})
            meta = EntityMetadata(entity_cls, table_name=options.get('table_name'))
            for prop, hint in _collect_properties(entity_cls):
                meta.add_property(prop.bind(self.type_registry, _hint_to_python_type(hint)))
            if meta.primary_key is None:
                raise MetadataError(f'entity {meta.class_name} has no primary key')
            if meta.class_name in self._metadata and self._metadata[meta.class_name].cls is not entity_cls:
                raise MetadataError(f'entity name {meta.class_name} is used by two classes')
            self._metadata[meta.class_name] = meta
            discovered.append(meta)

        for meta in discovered:
            for relation in meta.relations:
                relation.resolve_target(self)

        for meta in discovered:
            logger.debug(
                f'discovered entity {meta.class_name} -> `{meta.table_name}` '
                f'({", ".join(meta.columns)})'
            )
        return discovered

    def find(self, entity) -> EntityMetadata:
        if isinstance(entity, EntityMetadata):
            return entity
        if isinstance(entity, type):
            entity = entity.__name__
        elif not isinstance(entity, str):
            entity = type(entity).__name__
        return self._metadata.get(entity)

    def get(self, entity) -> EntityMetadata:
        meta = self.find(entity)
        if meta is None:
            raise MetadataError(f'metadata for entity {entity!r} not found')
        return meta

    def has(self, entity):
        return self.find(entity) is not None

    def all(self):
        return list(self._metadata.values())

    def __iter__(self):
        return iter(self._metadata.values())

    def __len__(self):
        return len(self._metadata)


def entity(cls=None, *, table_name=None):
    """Mark a class as an entity so Orm.init picks it up"""
    def wrap(entity_cls):
        MetadataStorage.register_decorated(entity_cls, table_name=table_name)
        return entity_cls

    if cls is None:
        return wrap
    return wrap(cls)
