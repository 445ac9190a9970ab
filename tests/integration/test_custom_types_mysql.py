"""Custom point columns against a real MySQL server (docker on port 9306)"""

import dataclasses
from pathlib import Path

import pytest
from mysql.connector import errors

from mysql_entity_mapper import LoadStrategy, Orm
from mysql_entity_mapper.config import Settings
from mysql_entity_mapper.geometry import Point
from mysql_entity_mapper.mysql_api import MySQLApi
from tests.fixtures.entities import ENTITIES, Address, Location

CONFIG_FILE = Path(__file__).parent.parent / 'configs' / 'tests_config_mysql.yaml'


@pytest.fixture
def mysql_orm():
    settings = Settings()
    settings.load(str(CONFIG_FILE))
    database = settings.mysql.database

    admin_settings = dataclasses.replace(settings.mysql, database=None, pool_name='mapper_admin')
    admin = MySQLApi(database=None, mysql_settings=admin_settings)
    admin.execute(f'drop database if exists `{database}`')
    admin.execute(f'create database `{database}`')

    orm = Orm.init(settings, entities=ENTITIES)
    orm.api.execute(
        'create table `location` ('
        '`id` int not null auto_increment primary key, '
        '`point` point null, '
        '`extended_point` point null)'
    )
    orm.api.execute(
        'create table `address` ('
        '`id` int not null auto_increment primary key, '
        '`location_id` int not null, '
        'foreign key (`location_id`) references `location` (`id`))'
    )
    yield orm

    admin.execute(f'drop database if exists `{database}`')
    orm.close()


@pytest.mark.optional
@pytest.mark.integration
def test_point_columns_round_trip(mysql_orm, query_log):
    em = mysql_orm.em

    location = Location(point=Point(1.23, 4.56), extended_point=Point(5.23, 9.56))
    address = Address(location=location)
    em.persist_and_flush(address)
    assert location.id is not None
    assert address.id is not None

    em.clear()
    loaded = em.find_one_or_fail(Location, location.id)
    assert loaded.point == Point(1.23, 4.56)
    assert loaded.extended_point == Point(5.23, 9.56)

    query_log.clear()
    em.flush()
    assert query_log.queries() == []

    loaded.point = Point(2.34, 9.87)
    em.flush()
    assert query_log.queries() == [
        'begin',
        f"update `location` set `point` = ST_PointFromText('point(2.34 9.87)') where `id` = {loaded.id}",
        'commit',
    ]

    em.clear()
    address2 = em.find_one_or_fail(Address, address.id, populate=['location'], strategy=LoadStrategy.JOINED)
    assert em.is_initialized(address2.location)
    assert address2.location.point == Point(2.34, 9.87)
    assert address2.location.extended_point == Point(5.23, 9.56)


@pytest.mark.optional
@pytest.mark.integration
def test_failed_flush_leaves_nothing_behind(mysql_orm):
    em = mysql_orm.em
    existing = Location(point=Point(0, 0))
    em.persist_and_flush(existing)

    fresh = Location(point=Point(1, 1))
    duplicate = Location(point=Point(2, 2))
    duplicate.id = existing.id

    with pytest.raises(errors.IntegrityError):
        em.persist_and_flush([fresh, duplicate])

    assert fresh.id is None
    assert em.fork().count(Location) == 1
