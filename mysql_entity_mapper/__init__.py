import importlib.metadata

from .entity_manager import EntityManager
from .errors import MapperError, MetadataError, NotFoundError, ValidationError
from .geometry import ExtendedPointType, Point, PointType
from .main import main
from .metadata import ManyToOne, PrimaryKey, Property, entity
from .orm import Orm
from .query_builder import LoadStrategy, QueryBuilder
from .types import Type

try:
    __version__ = importlib.metadata.version("mysql-entity-mapper")
except importlib.metadata.PackageNotFoundError:
    __version__ = "unknown"  # fallback version
