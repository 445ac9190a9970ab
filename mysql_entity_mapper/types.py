"""
Column types: conversion between Python values and what MySQL stores.

A type is a stateless strategy. Besides value conversion it may wrap the
column (on read) or the parameter placeholder (on write) in SQL, which is
how spatial columns travel as WKT text instead of WKB blobs.

Every subclass registers itself under its ``name`` tag, so properties can
refer to types by tag and subclasses that only differ by tag stay
distinguishable in the metadata.
"""

import datetime
import json
from logging import getLogger

from .errors import MetadataError
from .utils import convert_bytes, import_string

logger = getLogger(__name__)


class TypeRegistry:
    """Tag => Type class lookup used when resolving property types"""

    _default = None

    PYTHON_TYPES = {
        int: 'integer',
        float: 'float',
        str: 'string',
        bool: 'boolean',
        datetime.datetime: 'datetime',
        dict: 'json',
        list: 'json',
    }

    def __init__(self, parent=None):
        self.parent = parent
        self._types = {}

    @classmethod
    def default(cls):
        if cls._default is None:
            cls._default = TypeRegistry()
        return cls._default

    def register(self, tag, type_class):
        if not (isinstance(type_class, type) and issubclass(type_class, Type)):
            raise MetadataError(f'type {tag} should be a Type subclass, got {type_class!r}')
        existing = self._types.get(tag)
        if existing is not None and existing is not type_class:
            logger.debug(f'type tag {tag} re-registered: {existing.__qualname__} -> {type_class.__qualname__}')
        self._types[tag] = type_class

    def load_mapping(self, types_mapping):
        for tag, class_path in types_mapping.items():
            try:
                type_class = import_string(class_path)
            except ImportError as e:
                raise MetadataError(f'cannot import type {tag} from {class_path}: {e}')
            self.register(tag, type_class)

    def get(self, tag):
        type_class = self._types.get(tag)
        if type_class is None and self.parent is not None:
            return self.parent.get(tag)
        return type_class

    def has(self, tag):
        return self.get(tag) is not None

    def find_by_python_type(self, python_type):
        """First registered type whose values are instances of python_type"""
        for type_class in self._types.values():
            if type_class.python_type is python_type:
                return type_class
        if self.parent is not None:
            return self.parent.find_by_python_type(python_type)
        return None

    def resolve(self, type_spec, python_type=None):
        """
        Turn whatever a property was declared with into a Type instance.

        Accepts a Type instance, a Type subclass, a registered tag, or
        nothing (then the python type hint decides). A hint no registered
        type stores is an error, only an untyped property falls back to the
        identity type.
        """
        if isinstance(type_spec, Type):
            return type_spec
        if isinstance(type_spec, type) and issubclass(type_spec, Type):
            return type_spec()
        if isinstance(type_spec, str):
            type_class = self.get(type_spec)
            if type_class is None:
                raise MetadataError(f'unknown type "{type_spec}"')
            return type_class()
        if isinstance(type_spec, type):
            return self._resolve_python_type(type_spec)
        if type_spec is None:
            if not isinstance(python_type, type) or python_type is object:
                return Type()
            return self._resolve_python_type(python_type)
        raise MetadataError(f'cannot resolve column type from {type_spec!r}')

    def _resolve_python_type(self, python_type):
        if python_type in self.PYTHON_TYPES:
            return self.get(self.PYTHON_TYPES[python_type])()
        type_class = self.find_by_python_type(python_type)
        if type_class is None:
            raise MetadataError(f'no column type registered for python type {python_type!r}')
        return type_class()


class Type:
    """Identity type: values pass through and no SQL fragments are used"""

    name = 'any'
    column_type = 'varchar(255)'
    python_type = object

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if 'name' not in cls.__dict__:
            cls.name = cls.__name__
        TypeRegistry.default().register(cls.name, cls)

    def convert_to_database_value(self, value):
        return value

    def convert_to_python_value(self, value):
        return value

    def convert_to_database_value_sql(self, placeholder):
        """Wrap a parameter placeholder for INSERT/UPDATE, None keeps it bare"""
        return None

    def convert_to_python_value_sql(self, column):
        """Wrap a column reference for SELECT, None keeps it bare"""
        return None

    def get_column_type(self):
        return self.column_type

    @property
    def has_write_fragment(self):
        return type(self).convert_to_database_value_sql is not Type.convert_to_database_value_sql

    @property
    def has_read_fragment(self):
        return type(self).convert_to_python_value_sql is not Type.convert_to_python_value_sql

    def write_placeholder(self, placeholder):
        if self.has_write_fragment:
            return self.convert_to_database_value_sql(placeholder)
        return placeholder

    def compare_values(self, a, b):
        return a == b

    def __eq__(self, other):
        return type(self) is type(other)

    def __hash__(self):
        return hash(type(self))

    def __repr__(self):
        return f'{type(self).__name__}()'


class IntegerType(Type):
    name = 'integer'
    column_type = 'int'
    python_type = int

    def convert_to_python_value(self, value):
        if value is None or isinstance(value, int):
            return value
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.debug(f'cannot convert {value!r} to int')
            return None


class FloatType(Type):
    name = 'float'
    column_type = 'double'
    python_type = float

    def convert_to_python_value(self, value):
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.debug(f'cannot convert {value!r} to float')
            return None


class StringType(Type):
    name = 'string'
    column_type = 'varchar(255)'
    python_type = str

    def convert_to_python_value(self, value):
        if isinstance(value, (bytes, bytearray)):
            return convert_bytes(value)
        return value


class BooleanType(Type):
    name = 'boolean'
    column_type = 'tinyint(1)'
    python_type = bool

    def convert_to_database_value(self, value):
        if value is None:
            return None
        return 1 if value else 0

    def convert_to_python_value(self, value):
        if value is None:
            return None
        return bool(value)


class DateTimeType(Type):
    name = 'datetime'
    column_type = 'datetime'
    python_type = datetime.datetime

    def convert_to_python_value(self, value):
        if value is None or isinstance(value, datetime.datetime):
            return value
        value = convert_bytes(value)
        try:
            return datetime.datetime.fromisoformat(value)
        except (TypeError, ValueError):
            logger.debug(f'cannot convert {value!r} to datetime')
            return None


class JsonType(Type):
    name = 'json'
    column_type = 'json'
    python_type = dict

    def convert_to_database_value(self, value):
        if value is None:
            return None
        return json.dumps(convert_bytes(value))

    def convert_to_python_value(self, value):
        if value is None:
            return None
        if isinstance(value, (dict, list)):
            return value
        try:
            return json.loads(convert_bytes(value))
        except (TypeError, ValueError):
            logger.debug(f'cannot decode json value {value!r}')
            return None

    def compare_values(self, a, b):
        # json text is compared structurally so key order does not mark a property dirty
        return self.convert_to_python_value(a) == self.convert_to_python_value(b)


TypeRegistry.default().register(Type.name, Type)
