"""
SQLAlchemy Store Connector.

Async access to a relational store through SQLAlchemy mapped classes:
- Point and foreign-key lookups
- Many-to-many reads through the join table
- Upsert building blocks (create / update)
- Join table membership writes
- Target schema creation

Works with any SQLAlchemy async driver (asyncpg for PostgreSQL, aiosqlite
for local files). Each operation runs in its own short session and returns
detached Records.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, nullcontext
from typing import Any, AsyncIterator

from sqlalchemy import MetaData, event, func, insert, select, text
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import with_parent

from subgraph_sync.config import StoreSettings
from subgraph_sync.errors import (
    FetchError,
    MetadataLookupError,
    StoreConnectionError,
    UnsupportedAssociationError,
    WriteError,
)
from subgraph_sync.graph import EntityDescription, Record, RelationDescriptor
from subgraph_sync.models.registry import ModelRegistry
from subgraph_sync.utils.logger import get_logger

logger = get_logger(__name__)


class SQLAlchemyStore:
    """
    Store adapter over a SQLAlchemy async engine.

    Example:
        registry = ModelRegistry.from_reference("myapp.models:Base")
        async with SQLAlchemyStore("sqlite+aiosqlite:///app.db", registry) as store:
            user = await store.find_by_identifier("User", 1)
            orders = await store.find_all_by_foreign_key("Order", "customer_id", 1)
    """

    # Tried in order when the requested ordering column does not exist
    ORDER_FALLBACKS = ("created_at", "createdAt")

    def __init__(
        self,
        url: URL | str,
        registry: ModelRegistry | None = None,
        name: str = "store",
        connect_args: dict[str, Any] | None = None,
        echo: bool = False,
    ) -> None:
        """
        Initialize store connector.

        Args:
            url: SQLAlchemy async database URL
            registry: Entity types (may be set later, e.g. after reflection)
            name: Label used in logs and errors ("source" / "target")
            connect_args: Extra DBAPI connect arguments (e.g. SSL)
            echo: Echo SQL statements
        """
        self.url = url
        self.registry = registry
        self.name = name
        self.connect_args = connect_args or {}
        self.echo = echo
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None
        self._lock = asyncio.Lock()
        self._serialize = False

    @classmethod
    def from_settings(
        cls,
        settings: StoreSettings,
        registry: ModelRegistry | None = None,
    ) -> "SQLAlchemyStore":
        """Create a store from environment-backed connection settings."""
        return cls(
            settings.database_url(),
            registry=registry,
            name=settings.label,
            connect_args=settings.connect_args(),
            echo=settings.echo_sql,
        )

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise StoreConnectionError(f"{self.name} store is not connected", store=self.name)
        return self._engine

    async def connect(self) -> None:
        """Create the engine and check the database answers."""
        if self._engine is not None:
            return

        engine: AsyncEngine | None = None
        try:
            engine = create_async_engine(
                self.url,
                echo=self.echo,
                connect_args=self.connect_args,
                pool_pre_ping=True,
            )
            if engine.dialect.name == "sqlite":
                event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            if engine is not None:
                await engine.dispose()
            raise StoreConnectionError(
                f"Cannot connect to {self.name} store: {e}", store=self.name
            ) from e

        self._engine = engine
        self._sessionmaker = async_sessionmaker(
            engine, autoflush=False, expire_on_commit=False
        )
        # SQLite allows a single writer; queue concurrent callers instead of
        # failing with "database is locked"
        self._serialize = engine.dialect.name == "sqlite"
        logger.debug(f"Connected to {self.name} store ({engine.dialect.name})")

    async def close(self) -> None:
        """Dispose of the engine and its pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None

    async def __aenter__(self) -> "SQLAlchemyStore":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Get a session with rollback on error."""
        if self._sessionmaker is None:
            raise StoreConnectionError(f"{self.name} store is not connected", store=self.name)

        async with self._lock if self._serialize else nullcontext():
            async with self._sessionmaker() as session:
                try:
                    yield session
                except Exception:
                    await session.rollback()
                    raise

    async def reflect(self) -> ModelRegistry:
        """Replace the registry with entity types reflected from this store."""
        self.registry = await ModelRegistry.reflect(self.engine)
        return self.registry

    def _registry(self) -> ModelRegistry:
        if self.registry is None:
            raise MetadataLookupError("<no entity types loaded>")
        return self.registry

    def describe(self, entity_type: str) -> EntityDescription:
        return self._registry().describe(entity_type)

    async def ensure_schema(self, metadata: MetaData | None = None) -> None:
        """Create missing tables. Existing tables are left untouched."""
        metadata = metadata if metadata is not None else self._registry().metadata
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except SQLAlchemyError as e:
            raise WriteError(f"Schema creation failed on {self.name} store: {e}") from e

    # =========================================================================
    # Reads
    # =========================================================================
    async def find_by_identifier(
        self, entity_type: str, identifier: Any
    ) -> Record | None:
        """Get a single record by primary key."""
        model = self._registry().model(entity_type)
        try:
            async with self.session() as session:
                instance = await session.get(model, identifier)
                return self._to_record(entity_type, instance) if instance else None
        except SQLAlchemyError as e:
            raise FetchError(
                f"Lookup of {entity_type}:{identifier} failed: {e}",
                entity_type=entity_type,
                identifier=identifier,
            ) from e

    async def find_all_by_foreign_key(
        self, entity_type: str, foreign_key: str, value: Any
    ) -> list[Record]:
        """Get all records whose ``foreign_key`` attribute equals ``value``."""
        model = self._registry().model(entity_type)
        column = getattr(model, foreign_key, None)
        if column is None:
            raise UnsupportedAssociationError(entity_type, foreign_key, "no such column")

        try:
            async with self.session() as session:
                result = await session.execute(select(model).where(column == value))
                return [self._to_record(entity_type, row) for row in result.scalars()]
        except SQLAlchemyError as e:
            raise FetchError(
                f"Lookup of {entity_type} by {foreign_key}={value} failed: {e}",
                entity_type=entity_type,
            ) from e

    async def find_related(
        self, owner: Record, relation: RelationDescriptor
    ) -> list[Record]:
        """Get the members of a many-to-many relation through its join table."""
        registry = self._registry()
        model = registry.model(owner.entity_type)
        target = registry.model(relation.target_type)
        registry.relationship(owner.entity_type, relation.name)

        try:
            async with self.session() as session:
                instance = await session.get(model, owner.identifier)
                if instance is None:
                    return []
                stmt = select(target).where(
                    with_parent(instance, getattr(model, relation.name))
                )
                result = await session.execute(stmt)
                return [
                    self._to_record(relation.target_type, row)
                    for row in result.scalars()
                ]
        except SQLAlchemyError as e:
            raise FetchError(
                f"Lookup of {owner}.{relation.name} failed: {e}",
                entity_type=owner.entity_type,
                identifier=owner.identifier,
            ) from e

    async def find_page(
        self, entity_type: str, limit: int, order_by: str | None = None
    ) -> list[Record]:
        """Get the ``limit`` newest records of an entity type."""
        model = self._registry().model(entity_type)
        columns = self._order_columns(entity_type, order_by)

        try:
            async with self.session() as session:
                stmt = (
                    select(model)
                    .order_by(*(column.desc() for column in columns))
                    .limit(limit)
                )
                result = await session.execute(stmt)
                return [self._to_record(entity_type, row) for row in result.scalars()]
        except SQLAlchemyError as e:
            raise FetchError(
                f"Selecting {entity_type} records failed: {e}",
                entity_type=entity_type,
            ) from e

    def _order_columns(self, entity_type: str, order_by: str | None) -> list[Any]:
        """Ordering column, falling back to timestamps then the primary key."""
        model = self._registry().model(entity_type)
        mapper = self._registry().mapper(entity_type)
        names = [order_by] if order_by else []
        names.extend(self.ORDER_FALLBACKS)
        for name in names:
            if name in mapper.column_attrs:
                return [getattr(model, name)]
        return list(mapper.primary_key)

    # =========================================================================
    # Writes
    # =========================================================================
    async def create(self, entity_type: str, fields: dict[str, Any]) -> Record:
        """Insert a new record."""
        model = self._registry().model(entity_type)
        values = self._column_values(entity_type, fields)

        try:
            async with self.session() as session:
                instance = model(**values)
                session.add(instance)
                await session.flush()
                await session.refresh(instance)
                await session.commit()
                return self._to_record(entity_type, instance)
        except SQLAlchemyError as e:
            raise WriteError(
                f"Creating {entity_type} failed: {e}",
                entity_type=entity_type,
                identifier=fields.get("id"),
            ) from e

    async def update(self, record: Record, fields: dict[str, Any]) -> Record:
        """Update an existing record. Primary key fields are never changed."""
        entity_type = record.entity_type
        model = self._registry().model(entity_type)
        primary_key = set(self.describe(entity_type).primary_key)
        values = {
            k: v
            for k, v in self._column_values(entity_type, fields).items()
            if k not in primary_key
        }

        try:
            async with self.session() as session:
                instance = await session.get(model, record.identifier)
                if instance is None:
                    raise WriteError(
                        f"{record} no longer exists in {self.name} store",
                        entity_type=entity_type,
                        identifier=record.identifier,
                    )
                for key, value in values.items():
                    setattr(instance, key, value)
                await session.commit()
                return self._to_record(entity_type, instance)
        except SQLAlchemyError as e:
            raise WriteError(
                f"Updating {record} failed: {e}",
                entity_type=entity_type,
                identifier=record.identifier,
            ) from e

    async def add_join_membership(
        self, owner: Record, relation: RelationDescriptor, member: Record
    ) -> bool:
        """
        Record that ``member`` belongs to ``owner``'s many-to-many relation.

        Returns:
            True if a join row was inserted, False if it already existed
        """
        registry = self._registry()
        prop = registry.relationship(owner.entity_type, relation.name)
        if prop.secondary is None:
            raise UnsupportedAssociationError(
                owner.entity_type, relation.name, "no join table"
            )

        owner_mapper = registry.mapper(owner.entity_type)
        member_mapper = registry.mapper(member.entity_type)
        pairs = [
            (join_col, owner.fields[owner_mapper.get_property_by_column(col).key])
            for col, join_col in prop.synchronize_pairs
        ] + [
            (join_col, member.fields[member_mapper.get_property_by_column(col).key])
            for col, join_col in prop.secondary_synchronize_pairs
        ]

        try:
            async with self.session() as session:
                existing = await session.scalar(
                    select(func.count())
                    .select_from(prop.secondary)
                    .where(*(col == value for col, value in pairs))
                )
                if existing:
                    return False
                await session.execute(
                    insert(prop.secondary).values({col.name: value for col, value in pairs})
                )
                await session.commit()
                return True
        except SQLAlchemyError as e:
            raise WriteError(
                f"Linking {owner}.{relation.name} -> {member} failed: {e}",
                entity_type=owner.entity_type,
                identifier=owner.identifier,
            ) from e

    # =========================================================================
    # Helpers
    # =========================================================================
    def _column_values(self, entity_type: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Keep only the mapped column attributes of ``fields``."""
        known = set(self.describe(entity_type).fields)
        return {k: v for k, v in fields.items() if k in known}

    def _to_record(self, entity_type: str, instance: Any) -> Record:
        mapper = sa_inspect(instance).mapper
        identity = mapper.primary_key_from_instance(instance)
        return Record(
            entity_type=entity_type,
            identifier=identity[0] if len(identity) == 1 else tuple(identity),
            fields={attr.key: getattr(instance, attr.key) for attr in mapper.column_attrs},
        )


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    """Enforce declared foreign keys on every new SQLite connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
