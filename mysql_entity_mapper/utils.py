import datetime
import decimal
import importlib
import re
from logging import getLogger

import sqlparse

logger = getLogger(__name__)


PLACEHOLDER = '%s'

_PLACEHOLDER_RE = re.compile(r'%s|%%')
_CAMEL_BOUNDARY_RE = re.compile(r'(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])')


def underscore(name):
    """
    Convert a property or class name to the column/table naming convention.

        >>> underscore('extendedPoint')
        'extended_point'
        >>> underscore('Location')
        'location'
        >>> underscore('HTTPSession')
        'http_session'
    """
    return _CAMEL_BOUNDARY_RE.sub('_', name).lower()


def quote_identifier(name):
    if name == '*':
        return name
    return '`' + name.replace('`', '``') + '`'


def quote_column(alias, column):
    if alias:
        return f'{quote_identifier(alias)}.{quote_identifier(column)}'
    return quote_identifier(column)


def strip_sql_comments(sql_statement):
    return sqlparse.format(sql_statement, strip_comments=True).strip()


def validate_sql_fragment(fragment):
    """Strip comments from a raw SQL fragment and refuse stacked statements."""
    fragment = strip_sql_comments(fragment)
    if fragment.endswith(';'):
        fragment = fragment[:-1].strip()
    statements = [s for s in sqlparse.split(fragment) if s.strip()]
    if len(statements) > 1 or ';' in fragment:
        raise ValueError(f'multi-query fragment not supported: {fragment}')
    return fragment


def convert_bytes(obj):
    if isinstance(obj, dict):
        new_obj = {}
        for k, v in obj.items():
            new_key = k.decode('utf-8') if isinstance(k, (bytes, bytearray)) else k
            new_obj[new_key] = convert_bytes(v)
        return new_obj
    elif isinstance(obj, (tuple, list)):
        new_obj = [convert_bytes(item) for item in obj]
        if isinstance(obj, tuple):
            return tuple(new_obj)
        return new_obj
    elif isinstance(obj, (bytes, bytearray)):
        return bytes(obj).decode('utf-8')
    else:
        return obj


def escape_literal(value):
    """Render a parameter the way it would appear inlined into a query."""
    if value is None:
        return 'NULL'
    if isinstance(value, bool):
        return '1' if value else '0'
    if isinstance(value, (int, float, decimal.Decimal)):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return "X'" + bytes(value).hex() + "'"
    if isinstance(value, datetime.datetime):
        return "'" + value.isoformat(sep=' ') + "'"
    if isinstance(value, (datetime.date, datetime.time)):
        return "'" + value.isoformat() + "'"
    if isinstance(value, (list, tuple)):
        return ', '.join(escape_literal(v) for v in value)
    value = str(value).replace('\\', '\\\\').replace("'", "\\'")
    return f"'{value}'"


def format_query(query, params=None):
    """
    Inline parameters into a %s-style query for logging.

        >>> format_query('select * from `t` where `id` = %s', [1])
        'select * from `t` where `id` = 1'
    """
    if not params:
        return query.replace('%%', '%')

    params = list(params)
    position = 0

    def replace(match):
        nonlocal position
        if match.group(0) == '%%':
            return '%'
        if position >= len(params):
            raise ValueError(f'not enough parameters for query: {query}')
        value = params[position]
        position += 1
        return escape_literal(value)

    formatted = _PLACEHOLDER_RE.sub(replace, query)
    if position != len(params):
        logger.warning(f'query got {len(params)} parameters but used {position}: {query}')
    return formatted


def import_string(path):
    """Import ``package.module:attribute`` (or ``package.module.attribute``)."""
    if ':' in path:
        module_name, attr = path.split(':', 1)
    else:
        module_name, _, attr = path.rpartition('.')
    if not module_name or not attr:
        raise ImportError(f'wrong import path {path}')
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError:
        raise ImportError(f'module {module_name} has no attribute {attr}')
