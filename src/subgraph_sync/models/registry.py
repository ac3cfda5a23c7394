"""
Model Registry - relation metadata for SQLAlchemy mapped classes.

Exposes, for each entity type, its field set and relation descriptors.
Entity types come either from a declarative base (application models) or
from reflecting an existing database with automap.
"""

from __future__ import annotations

import importlib
from typing import Any

from sqlalchemy import MetaData
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.automap import automap_base
from sqlalchemy.orm import Mapper, RelationshipDirection, RelationshipProperty

from subgraph_sync.graph import EntityDescription, RelationDescriptor, RelationKind
from subgraph_sync.errors import MetadataLookupError, UnsupportedAssociationError
from subgraph_sync.utils.logger import get_logger

logger = get_logger(__name__)

_KINDS = {
    RelationshipDirection.MANYTOONE: RelationKind.TO_ONE,
    RelationshipDirection.ONETOMANY: RelationKind.TO_MANY,
    RelationshipDirection.MANYTOMANY: RelationKind.MANY_TO_MANY,
}


class ModelRegistry:
    """
    Relation metadata provider backed by a SQLAlchemy registry.

    Example:
        registry = ModelRegistry.from_reference("myapp.models:Base")
        description = registry.describe("User")
        for relation in description.relations:
            print(relation.name, relation.kind)
    """

    def __init__(self, base: Any) -> None:
        """
        Initialize registry.

        Args:
            base: Declarative (or automap) base whose mappers are the entity types
        """
        self.base = base
        self._models: dict[str, type] = {
            mapper.class_.__name__: mapper.class_ for mapper in base.registry.mappers
        }
        self._descriptions: dict[str, EntityDescription] = {}

    @classmethod
    def from_reference(cls, reference: str) -> "ModelRegistry":
        """Load a declarative base given as ``package.module:attribute``."""
        module_name, _, attr = reference.partition(":")
        module = importlib.import_module(module_name)
        return cls(getattr(module, attr or "Base"))

    @classmethod
    async def reflect(cls, engine: AsyncEngine) -> "ModelRegistry":
        """Build entity types from the tables of a live database."""
        base = automap_base()
        async with engine.connect() as conn:
            await conn.run_sync(lambda sync_conn: base.prepare(autoload_with=sync_conn))
        registry = cls(base)
        logger.debug(f"Reflected {len(registry._models)} entity types")
        return registry

    @property
    def metadata(self) -> MetaData:
        return self.base.metadata

    def entity_names(self) -> list[str]:
        return sorted(self._models)

    def model(self, name: str) -> type:
        """Get the mapped class for an entity type."""
        try:
            return self._models[name]
        except KeyError:
            raise MetadataLookupError(name, list(self._models)) from None

    def mapper(self, name: str) -> Mapper[Any]:
        return sa_inspect(self.model(name))

    def relationship(self, name: str, relation: str) -> RelationshipProperty[Any]:
        """Get the SQLAlchemy relationship behind a relation descriptor."""
        relationships = self.mapper(name).relationships
        if relation not in relationships:
            raise UnsupportedAssociationError(name, relation, "no such relationship")
        return relationships[relation]

    def describe(self, name: str) -> EntityDescription:
        """Get fields and relation descriptors of an entity type."""
        if name in self._descriptions:
            return self._descriptions[name]

        mapper = self.mapper(name)
        relations = []
        for prop in mapper.relationships:
            try:
                relations.append(self._describe_relationship(mapper, prop))
            except UnsupportedAssociationError as e:
                logger.warning(str(e))

        description = EntityDescription(
            name=name,
            fields=tuple(attr.key for attr in mapper.column_attrs),
            primary_key=tuple(
                mapper.get_property_by_column(col).key for col in mapper.primary_key
            ),
            relations=tuple(relations),
        )
        self._descriptions[name] = description
        return description

    def _describe_relationship(
        self, mapper: Mapper[Any], prop: RelationshipProperty[Any]
    ) -> RelationDescriptor:
        owner = mapper.class_.__name__
        target = prop.mapper.class_.__name__
        kind = _KINDS.get(prop.direction)
        if kind is None:
            raise UnsupportedAssociationError(owner, prop.key, str(prop.direction))
        if len(prop.local_remote_pairs or []) > 1 and kind is not RelationKind.MANY_TO_MANY:
            raise UnsupportedAssociationError(owner, prop.key, "composite foreign key")

        if kind is RelationKind.TO_ONE:
            local, remote = prop.local_remote_pairs[0]
            if not _is_primary_key(prop.mapper, remote):
                raise UnsupportedAssociationError(
                    owner, prop.key, f"references non primary key column {remote.name}"
                )
            return RelationDescriptor(
                name=prop.key,
                kind=kind,
                target_type=target,
                foreign_key=mapper.get_property_by_column(local).key,
            )

        if kind is RelationKind.TO_MANY:
            local, remote = prop.local_remote_pairs[0]
            if not _is_primary_key(mapper, local):
                raise UnsupportedAssociationError(
                    owner, prop.key, f"referenced by non primary key column {local.name}"
                )
            return RelationDescriptor(
                name=prop.key,
                kind=kind,
                target_type=target,
                foreign_key=prop.mapper.get_property_by_column(remote).key,
            )

        if len(prop.synchronize_pairs) != 1 or len(prop.secondary_synchronize_pairs) != 1:
            raise UnsupportedAssociationError(owner, prop.key, "composite join key")
        _, owner_column = prop.synchronize_pairs[0]
        _, member_column = prop.secondary_synchronize_pairs[0]
        return RelationDescriptor(
            name=prop.key,
            kind=kind,
            target_type=target,
            foreign_key=owner_column.name,
            join_key=member_column.name,
            join_table=prop.secondary.name,
        )


def _is_primary_key(mapper: Mapper[Any], column: Any) -> bool:
    """True if ``column`` is the single-column primary key of ``mapper``."""
    return len(mapper.primary_key) == 1 and mapper.primary_key[0] is column
