"""Entities used across the test suite"""

from mysql_entity_mapper import ExtendedPointType, ManyToOne, Point, PointType, PrimaryKey, Property, entity


@entity()
class Location:
    id: int = PrimaryKey()
    point: Point = Property(PointType, nullable=True)
    extended_point: Point = Property(ExtendedPointType, nullable=True)

    def __init__(self, point=None, extended_point=None):
        self.point = point
        self.extended_point = extended_point


@entity()
class Address:
    id: int = PrimaryKey()
    location: Location = ManyToOne('Location')

    def __init__(self, location=None):
        self.location = location


ENTITIES = [Location, Address]
