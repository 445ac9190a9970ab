import pytest

from mysql_entity_mapper.entity import EntityStatus, diff_snapshot, take_snapshot
from mysql_entity_mapper.errors import MetadataError, ValidationError
from mysql_entity_mapper.geometry import Point
from mysql_entity_mapper.unit_of_work import ChangeSetType
from tests.fixtures.entities import Address, Location


@pytest.mark.unit
def test_snapshot_holds_storage_values(em):
    meta = em.get_metadata(Location)
    location = Location(point=Point(1.5, 2), extended_point=None)
    assert take_snapshot(meta, location) == {'point': 'point(1.5 2)', 'extended_point': None}


@pytest.mark.unit
def test_equal_value_is_not_a_change(em):
    meta = em.get_metadata(Location)
    location = Location(point=Point(1.5, 2.0))
    snapshot = take_snapshot(meta, location)

    # a new but equal object serializes the same
    location.point = Point(1.5, 2)
    assert diff_snapshot(meta, location, snapshot) == []

    location.extended_point = Point(0, 0)
    assert diff_snapshot(meta, location, snapshot) == ['extended_point']


@pytest.mark.unit
def test_new_related_entity_marks_relation_changed(em):
    meta = em.get_metadata(Address)
    location = Location()
    location.id = 4
    address = Address(location=location)
    snapshot = take_snapshot(meta, address)
    assert snapshot == {'location': 4}

    address.location = Location()
    assert diff_snapshot(meta, address, snapshot) == ['location']


@pytest.mark.unit
def test_change_sets_are_ordered(em, fake_pool):
    uow = em.get_unit_of_work()
    first = Address(location=Location(point=Point(1, 1)))
    second = Address(location=first.location)
    em.persist([second, first])

    change_sets = uow.compute_change_sets()
    assert [(cs.type, cs.meta.class_name) for cs in change_sets] == [
        (ChangeSetType.CREATE, 'Location'),
        (ChangeSetType.CREATE, 'Address'),
        (ChangeSetType.CREATE, 'Address'),
    ]
    assert change_sets[1].entity is second

    em.flush()
    assert first.location.id == 1
    assert (second.id, first.id) == (1, 2)
    assert uow.is_managed(first)
    assert uow.find_state(first).status == EntityStatus.MANAGED
    assert uow.compute_change_sets() == []


@pytest.mark.unit
def test_updates_only_touch_changed_columns(em, fake_pool, query_log):
    location = Location(point=Point(1, 1), extended_point=Point(2, 2))
    em.persist_and_flush(location)
    query_log.clear()

    location.extended_point = None
    em.flush()
    assert query_log.queries() == [
        'begin',
        "update `location` set `extended_point` = NULL where `id` = 1",
        'commit',
    ]

    # the snapshot was refreshed, flushing again is a no-op
    query_log.clear()
    em.flush()
    assert query_log.queries() == []


@pytest.mark.unit
def test_relation_change_updates_foreign_key(em, fake_pool, query_log):
    address = Address(location=Location(point=Point(1, 1)))
    em.persist_and_flush(address)
    query_log.clear()

    address.location = Location(point=Point(3, 3))
    em.flush()
    assert query_log.queries() == [
        'begin',
        "insert into `location` (`point`) values (ST_PointFromText('point(3 3)'))",
        "update `address` set `location_id` = 2 where `id` = 1",
        'commit',
    ]


@pytest.mark.unit
def test_required_relation_is_validated_before_sql(em, fake_pool, query_log):
    em.persist(Address())
    with pytest.raises(ValidationError, match='Address.location'):
        em.flush()
    assert query_log.queries() == []
    assert fake_pool.acquired == 0


@pytest.mark.unit
def test_removing_a_new_entity_cancels_the_insert(em, fake_pool):
    location = Location(point=Point(1, 1))
    em.persist(location)
    em.remove(location)
    em.flush()
    assert fake_pool.statements == []
    assert location.id is None


@pytest.mark.unit
def test_persist_after_remove_keeps_entity(em, fake_pool, query_log):
    location = Location(point=Point(1, 1))
    em.persist_and_flush(location)
    query_log.clear()

    em.remove(location)
    em.persist(location)
    em.flush()
    assert query_log.queries() == []


@pytest.mark.unit
def test_unknown_class_cannot_be_persisted(em):
    class NotAnEntity:
        pass

    with pytest.raises(MetadataError):
        em.persist(NotAnEntity())
