"""Shared test fixtures for mysql-entity-mapper tests"""

import pytest

from mysql_entity_mapper import Orm
from mysql_entity_mapper.config import Settings
from tests.fixtures.entities import ENTITIES
from tests.utils.fake_mysql import FakeConnectionPool
from tests.utils.query_log import QueryLog


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "optional: mark test as optional (needs a MySQL server)")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "unit: mark test as unit test")


@pytest.fixture
def settings():
    settings = Settings()
    settings.debug = ["query"]
    settings.validate()
    return settings


@pytest.fixture
def fake_pool():
    return FakeConnectionPool()


@pytest.fixture
def orm(settings, fake_pool):
    orm = Orm.init(settings, entities=ENTITIES, connection_pool=fake_pool)
    yield orm
    orm.close()


@pytest.fixture
def em(orm):
    return orm.em


@pytest.fixture
def query_log(caplog):
    return QueryLog(caplog)
