from logging import getLogger

from .config import Settings
from .entity_manager import EntityManager
from .metadata import MetadataStorage
from .mysql_api import MySQLApi
from .types import TypeRegistry

logger = getLogger(__name__)


class Orm:
    """Settings, discovered metadata, the MySQL api and the root entity manager"""

    def __init__(self, settings: Settings, metadata: MetadataStorage, api: MySQLApi):
        self.settings = settings
        self.metadata = metadata
        self.api = api
        self.em = EntityManager(api, metadata, settings)

    @classmethod
    def init(cls, settings: Settings = None, entities=None, connection_pool=None):
        """
        Discover entities and connect.

        Entities come from the ``entities`` argument, else from the modules
        listed in settings, else from every class decorated with @entity.
        ``connection_pool`` replaces the pooled mysql.connector connections
        (any object with ``get_connection()``).
        """
        settings = settings or Settings()
        settings.validate()

        type_registry = TypeRegistry(parent=TypeRegistry.default())
        type_registry.load_mapping(settings.types_mapping)

        if entities is None:
            entities = MetadataStorage.decorated_entities(settings.entities)
        metadata = MetadataStorage(type_registry)
        discovered = metadata.discover(entities)

        if settings.is_debug_enabled('discovery'):
            for meta in discovered:
                types = ', '.join(f'{p.name}:{p.type_tag}' for p in meta.properties.values())
                logger.info(f'[discovery] {meta.class_name} -> {meta.table_name} ({types})')
        logger.info(f'discovered {len(discovered)} entities')

        api = MySQLApi(
            database=settings.mysql.database,
            mysql_settings=settings.mysql,
            connection_pool=connection_pool,
            log_queries=settings.is_debug_enabled('query'),
        )
        return cls(settings, metadata, api)

    def get_metadata(self, entity=None):
        return self.em.get_metadata(entity)

    def fork(self):
        return self.em.fork()

    def close(self):
        self.api.close()
        if self.api.pool_manager is not None:
            self.api.pool_manager.close_all_pools()
