class MapperError(Exception):
    """Base class for errors raised by the mapper itself"""
    pass


class MetadataError(MapperError):
    """Raised when entity definitions cannot be discovered"""
    pass


class ValidationError(MapperError):
    """Raised before flushing an entity that violates its metadata"""
    pass


class NotFoundError(MapperError):
    """Raised by find_one_or_fail when nothing matches"""

    def __init__(self, entity_name, where):
        self.entity_name = entity_name
        self.where = where
        super().__init__(f'{entity_name} not found ({where!r})')
