from typing import Optional

import pytest

from mysql_entity_mapper.errors import MetadataError
from mysql_entity_mapper.geometry import ExtendedPointType, Point, PointType
from mysql_entity_mapper.metadata import ManyToOne, MetadataStorage, PrimaryKey, Property, ReferenceKind
from mysql_entity_mapper.types import FloatType, IntegerType, StringType, TypeRegistry
from tests.fixtures.entities import ENTITIES, Address, Location


@pytest.fixture
def metadata():
    storage = MetadataStorage()
    storage.discover(ENTITIES)
    return storage


@pytest.mark.unit
def test_custom_type_instances_are_preserved(metadata):
    meta = metadata.get('Location')
    assert meta.table_name == 'location'
    assert isinstance(meta.properties['extended_point'].custom_type, ExtendedPointType)
    assert type(meta.properties['point'].custom_type) is PointType
    assert meta.properties['point'].type_tag == 'point'
    assert meta.properties['extended_point'].type_tag == 'extended_point'
    assert meta.properties['extended_point'].column_name == 'extended_point'


@pytest.mark.unit
def test_lookup_by_name_class_and_instance(metadata):
    meta = metadata.get(Location)
    assert metadata.get('Location') is meta
    assert metadata.find(Location()) is meta
    assert metadata.find('Missing') is None
    with pytest.raises(MetadataError):
        metadata.get('Missing')


@pytest.mark.unit
def test_relation_metadata(metadata):
    meta = metadata.get(Address)
    relation = meta.properties['location']
    assert relation.kind == ReferenceKind.MANY_TO_ONE
    assert relation.column_name == 'location_id'
    assert relation.target_meta is metadata.get(Location)
    assert isinstance(relation.custom_type, IntegerType)
    assert not relation.has_read_fragment
    assert meta.columns == ['id', 'location_id']


@pytest.mark.unit
def test_table_structure(metadata):
    structure = metadata.get(Location).to_table_structure()
    assert structure.table_name == 'location'
    assert structure.column_names() == ['id', 'point', 'extended_point']
    assert structure.primary_keys == ['id']
    assert structure.primary_key_ids == [0]

    point = structure.get_field('point')
    assert (point.name, point.field_type, point.parameters) == ('point', 'point', 'null')
    assert point.nullable
    assert point.additional_data == 'point'

    primary_key = structure.get_field('id')
    assert primary_key.parameters == 'not null auto_increment'
    assert not primary_key.nullable


@pytest.mark.unit
def test_types_from_hints_tags_and_camel_case():
    class Station:
        id: int = PrimaryKey()
        displayName: str = Property()
        elevation: Optional[float] = Property(nullable=True)
        position: Point = Property('point')

    storage = MetadataStorage()
    storage.discover([Station])
    meta = storage.get('Station')

    assert isinstance(meta.properties['displayName'].custom_type, StringType)
    assert meta.properties['displayName'].column_name == 'display_name'
    assert isinstance(meta.properties['elevation'].custom_type, FloatType)
    assert isinstance(meta.properties['position'].custom_type, PointType)


@pytest.mark.unit
def test_missing_primary_key():
    class NoKey:
        point: Point = Property(PointType)

    with pytest.raises(MetadataError, match='no primary key'):
        MetadataStorage().discover([NoKey])


@pytest.mark.unit
def test_unknown_relation_target():
    class Orphan:
        id: int = PrimaryKey()
        parent: object = ManyToOne('Nowhere')

    with pytest.raises(MetadataError, match='Nowhere'):
        MetadataStorage().discover([Orphan])


@pytest.mark.unit
def test_unknown_type_tag():
    class Strange:
        id: int = PrimaryKey()
        shape: object = Property('polygon')

    with pytest.raises(MetadataError, match='polygon'):
        MetadataStorage().discover([Strange])


@pytest.mark.unit
def test_types_mapping_registers_tag():
    registry = TypeRegistry(parent=TypeRegistry.default())
    registry.load_mapping({'geo': 'mysql_entity_mapper.geometry:ExtendedPointType'})

    class Pin:
        id: int = PrimaryKey()
        where: Point = Property('geo')

    storage = MetadataStorage(registry)
    storage.discover([Pin])
    assert isinstance(storage.get('Pin').properties['where'].custom_type, ExtendedPointType)
    assert not TypeRegistry.default().has('geo')

    with pytest.raises(MetadataError):
        registry.load_mapping({'bad': 'mysql_entity_mapper.geometry:Nothing'})


@pytest.mark.unit
def test_property_values_stay_on_instance():
    location = Location(point=Point(1, 2))
    assert location.point == Point(1, 2)
    assert location.id is None
    assert Location.point.is_set(location)
    assert not Location.id.is_set(location)


@pytest.mark.unit
def test_storages_resolve_the_same_class_independently():
    extended = TypeRegistry(parent=TypeRegistry.default())
    extended.load_mapping({'geo': 'mysql_entity_mapper.geometry:ExtendedPointType'})
    plain = TypeRegistry(parent=TypeRegistry.default())
    plain.load_mapping({'geo': 'mysql_entity_mapper.geometry:PointType'})

    class Marker:
        id: int = PrimaryKey()
        spot: Point = Property('geo')

    first = MetadataStorage(extended)
    first.discover([Marker])
    second = MetadataStorage(plain)
    second.discover([Marker])

    assert type(first.get('Marker').properties['spot'].custom_type) is ExtendedPointType
    assert type(second.get('Marker').properties['spot'].custom_type) is PointType
    assert Marker.spot.custom_type is None


@pytest.mark.unit
def test_relation_targets_stay_with_their_storage():
    first = MetadataStorage()
    first.discover(ENTITIES)
    second = MetadataStorage()
    second.discover(ENTITIES)

    assert first.get(Address).properties['location'].target_meta is first.get(Location)
    assert second.get(Address).properties['location'].target_meta is second.get(Location)


@pytest.mark.unit
def test_registered_value_class_hint_picks_its_type():
    class Beacon:
        id: int = PrimaryKey()
        position: Point = Property()
        fallback: Optional[Point] = Property(nullable=True)
        anything: object = Property()

    storage = MetadataStorage()
    storage.discover([Beacon])
    meta = storage.get('Beacon')

    assert type(meta.properties['position'].custom_type) is PointType
    assert type(meta.properties['fallback'].custom_type) is PointType
    assert meta.properties['position'].has_read_fragment
    assert meta.properties['anything'].type_tag == 'any'


@pytest.mark.unit
def test_unregistered_hint_class_fails():
    class Polygon:
        pass

    class Area:
        id: int = PrimaryKey()
        outline: Polygon = Property()

    with pytest.raises(MetadataError, match='Polygon'):
        MetadataStorage().discover([Area])

    with pytest.raises(MetadataError, match='Polygon'):
        TypeRegistry.default().resolve(Polygon)
