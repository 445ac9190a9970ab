import decimal
from dataclasses import dataclass
from logging import getLogger

from pyparsing import CaselessKeyword, Combine, Optional, ParseException, Suppress, Word, nums, one_of

from .types import Type
from .utils import convert_bytes

logger = getLogger(__name__)


@dataclass
class Point:
    latitude: float
    longitude: float


def _build_point_grammar():
    number = Combine(Optional(one_of('+ -')) + Word(nums) + Optional('.' + Word(nums)))
    number.set_parse_action(lambda tokens: float(tokens[0]))
    return (
        CaselessKeyword('point')
        + Suppress('(')
        + number('latitude')
        + number('longitude')
        + Suppress(')')
    )


POINT_GRAMMAR = _build_point_grammar()


def format_coordinate(value):
    """Shortest text that parses back to the same float, never in exponent form"""
    if isinstance(value, int):
        return str(value)
    text = format(decimal.Decimal(repr(float(value))), 'f')
    if text.endswith('.0'):
        text = text[:-2]
    return text


def parse_point(value):
    """
    Parse WKT point text (as returned by ST_AsText) into a Point.

    Returns None unless the whole input is ``point(<number> <number>)``,
    the keyword being case insensitive.
    """
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        try:
            value = convert_bytes(value)
        except UnicodeDecodeError:
            logger.debug('point value is not valid utf-8, ignoring it')
            return None
    if not isinstance(value, str):
        return None
    try:
        result = POINT_GRAMMAR.parse_string(value.strip(), parse_all=True)
    except ParseException:
        logger.debug(f'value {value!r} is not a WKT point')
        return None
    return Point(result['latitude'], result['longitude'])


class PointType(Type):
    """
    Stores Point values in a MySQL POINT column.

    Values travel as WKT text: ST_PointFromText wraps the INSERT/UPDATE
    parameter and ST_AsText wraps the column in projections, so the driver
    never has to deal with the WKB payload.
    """

    name = 'point'
    column_type = 'point'
    python_type = Point

    def convert_to_database_value(self, value):
        if not value:
            return value
        return f'point({format_coordinate(value.latitude)} {format_coordinate(value.longitude)})'

    def convert_to_python_value(self, value):
        return parse_point(value)

    def convert_to_database_value_sql(self, placeholder):
        return f'ST_PointFromText({placeholder})'

    def convert_to_python_value_sql(self, column):
        return f'ST_AsText({column})'


class ExtendedPointType(PointType):
    """Same storage as PointType, registered under its own tag"""

    name = 'extended_point'
