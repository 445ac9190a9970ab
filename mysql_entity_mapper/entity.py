import enum
from dataclasses import dataclass
from typing import Any

from .metadata import EntityMetadata


class EntityStatus(enum.Enum):
    TRANSIENT = 'transient'
    MANAGED = 'managed'
    REMOVED = 'removed'


@dataclass(eq=False)
class EntityState:
    """What one unit of work knows about one entity instance"""
    entity: Any
    meta: EntityMetadata
    status: EntityStatus = EntityStatus.TRANSIENT
    initialized: bool = True
    snapshot: dict = None

    @property
    def primary_key(self):
        return self.meta.get_primary_key(self.entity)

    @property
    def identity(self):
        return self.meta.class_name, self.primary_key

    def take_snapshot(self):
        self.snapshot = take_snapshot(self.meta, self.entity)
        return self.snapshot


def storage_value(prop, entity):
    """Value of a property as the database stores it (relations become keys)"""
    value = prop.__get__(entity)
    if prop.is_relation:
        if value is None:
            return None
        return prop.target_meta.get_primary_key(value)
    return prop.custom_type.convert_to_database_value(value)


def take_snapshot(meta: EntityMetadata, entity):
    return {
        prop.name: storage_value(prop, entity)
        for prop in meta.properties.values()
        if not prop.is_primary
    }


def diff_snapshot(meta: EntityMetadata, entity, snapshot):
    """Names of the properties whose storage value differs from the snapshot"""
    changed = []
    for prop in meta.properties.values():
        if prop.is_primary:
            continue
        current = storage_value(prop, entity)
        if prop.is_relation:
            related = prop.__get__(entity)
            # a new related entity has no key yet but still changes the column
            if related is not None and current is None:
                changed.append(prop.name)
                continue
        if prop.name not in snapshot:
            if current is not None:
                changed.append(prop.name)
            continue
        if not prop.custom_type.compare_values(snapshot[prop.name], current):
            changed.append(prop.name)
    return changed
