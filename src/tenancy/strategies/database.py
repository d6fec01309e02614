"""
Database isolation strategies.

- SeparateDatabaseStrategy: one database per tenant, engines derived from
  the landlord URL
- SingleDatabaseStrategy: every tenant on the landlord database, rows
  isolated by the tenant query filter (see tenancy.filtering)

The active engine is held in a ContextVar per strategy instance, so
apply() in one request never changes the engine another request sees.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import threading
from abc import abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from contextvars import ContextVar
from pathlib import Path
from typing import Any

from sqlalchemy import MetaData, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from tenancy.config import DatabaseConfig
from tenancy.exceptions import ConfigurationError, ProvisioningError
from tenancy.observability import (
    ATTR_DB_SYSTEM,
    ATTR_PROVISION_STEP,
    ATTR_TENANT_ID,
    SPAN_PROVISION,
    Tracer,
    create_tracer,
)
from tenancy.strategies.interface import DatabaseStrategy, MigrationOptions
from tenancy.tenants.model import Tenant

logger = logging.getLogger(__name__)

# Called with the tenant engine's connection inside a transaction
MigrationFunc = Callable[[AsyncConnection, Tenant], Awaitable[None] | None]
SeederFunc = Callable[[AsyncConnection, Tenant], Awaitable[None] | None]

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_$-]*$")

_URL_KEYS = ("drivername", "username", "password", "host", "port", "database")


class _SQLAlchemyDatabaseStrategy(DatabaseStrategy):
    """Landlord engine, binding ContextVar and migration registry shared by both strategies."""

    def __init__(
        self,
        config: DatabaseConfig | None = None,
        *,
        landlord_engine: AsyncEngine | None = None,
        metadata: MetaData | None = None,
        engine_options: Mapping[str, Any] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._config = config or DatabaseConfig()
        self._engine_options = dict(engine_options or {})
        if landlord_engine is not None:
            self._landlord_engine = landlord_engine
            self._landlord_url = landlord_engine.url
            self._owns_landlord = False
        else:
            self._landlord_url = make_url(self._config.landlord_url)
            self._landlord_engine = self._create_engine(self._landlord_url)
            self._owns_landlord = True
        self.metadata = metadata
        self._migrations: list[MigrationFunc] = []
        self._seeders: list[SeederFunc] = []
        self._binding: ContextVar[AsyncEngine | None] = ContextVar(
            f"tenancy_database_{id(self)}", default=None
        )
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def landlord_engine(self) -> AsyncEngine:
        return self._landlord_engine

    @property
    def dialect(self) -> str:
        """Backend name of the landlord URL (sqlite, postgresql, mysql, ...)."""
        return self._landlord_url.get_backend_name()

    def _create_engine(self, url: URL) -> AsyncEngine:
        options = dict(self._engine_options)
        if url.get_backend_name() != "sqlite" and self._config.pool_size is not None:
            options.setdefault("pool_size", self._config.pool_size)
            options.setdefault("pool_timeout", self._config.connection_timeout)
        return create_async_engine(url, **options)

    def add_migration(self, migration: MigrationFunc) -> MigrationFunc:
        """
        Register a migration callable, run in registration order after
        the metadata tables are created. Usable as a decorator.
        """
        self._migrations.append(migration)
        return migration

    def add_seeder(self, seeder: SeederFunc) -> SeederFunc:
        """Register a seeder callable. Usable as a decorator."""
        self._seeders.append(seeder)
        return seeder

    def current_engine(self) -> AsyncEngine:
        engine = self._binding.get()
        return engine if engine is not None else self._landlord_engine

    async def remove(self) -> None:
        self._binding.set(None)
        logger.debug("Database bound to landlord")

    async def _run_callables(
        self,
        conn: AsyncConnection,
        tenant: Tenant,
        funcs: list[Callable[[AsyncConnection, Tenant], Awaitable[None] | None]],
    ) -> None:
        for func in funcs:
            result = func(conn, tenant)
            if inspect.isawaitable(result):
                await result

    async def _migrate_on(
        self, engine: AsyncEngine, tenant: Tenant, options: MigrationOptions
    ) -> None:
        async with engine.begin() as conn:
            if self.metadata is not None:
                if options.fresh:
                    await conn.run_sync(self.metadata.drop_all)
                await conn.run_sync(self.metadata.create_all)
            await self._run_callables(conn, tenant, self._migrations)

    async def _seed_on(
        self, engine: AsyncEngine, tenant: Tenant, options: Mapping[str, Any]
    ) -> None:
        only = options.get("seeders")
        seeders = self._seeders
        if only:
            seeders = [s for s in seeders if getattr(s, "__name__", "") in set(only)]
        async with engine.begin() as conn:
            await self._run_callables(conn, tenant, seeders)

    async def _guarded(
        self,
        tenant: Tenant,
        operation: str,
        body: Callable[[], Awaitable[bool]],
        raise_errors: bool,
    ) -> bool:
        with self._tracer.span(
            SPAN_PROVISION,
            {
                ATTR_TENANT_ID: str(tenant.id),
                ATTR_PROVISION_STEP: operation,
                ATTR_DB_SYSTEM: self.dialect,
            },
        ):
            try:
                return await body()
            except Exception as e:
                logger.warning(
                    f"Database {operation} failed for tenant {tenant.id}: {e}",
                    extra={"tenant_id": tenant.id, "operation": operation, "error": str(e)},
                )
                if raise_errors:
                    raise ProvisioningError(tenant.id, operation, e) from e
                return False

    async def migrate(
        self,
        tenant: Tenant,
        options: MigrationOptions | None = None,
        *,
        raise_errors: bool = False,
    ) -> bool:
        opts = options or MigrationOptions()

        async def body() -> bool:
            engine = self.engine_for(tenant)
            await self._migrate_on(engine, tenant, opts)
            if opts.seed:
                await self._seed_on(engine, tenant, {})
            logger.info(
                f"Migrated database for tenant {tenant.id}",
                extra={"tenant_id": tenant.id, "fresh": opts.fresh},
            )
            return True

        return await self._guarded(tenant, "migrate", body, raise_errors)

    async def seed(
        self,
        tenant: Tenant,
        options: Mapping[str, Any] | None = None,
        *,
        raise_errors: bool = False,
    ) -> bool:
        async def body() -> bool:
            await self._seed_on(self.engine_for(tenant), tenant, options or {})
            return True

        return await self._guarded(tenant, "seed", body, raise_errors)

    @abstractmethod
    def engine_for(self, tenant: Tenant) -> AsyncEngine:
        """Engine serving the tenant's database."""

    async def dispose(self) -> None:
        if self._owns_landlord:
            await self._landlord_engine.dispose()


class SeparateDatabaseStrategy(_SQLAlchemyDatabaseStrategy):
    """
    One database per tenant.

    The tenant URL is the landlord URL with the database replaced by the
    tenant's database name (``prefix + id`` unless the tenant names one).
    For SQLite the database is a file beside the landlord file, or in
    ``DatabaseConfig.sqlite_directory``.

    Tenants may override connection parameters through their own
    ``config["database"]`` mapping, but only for keys listed in
    ``DatabaseConfig.allowed_override_keys``.

    Example:
        >>> strategy = SeparateDatabaseStrategy(
        ...     DatabaseConfig(landlord_url="postgresql+asyncpg://app@db/landlord")
        ... )
        >>> strategy.connection_config(acme)["database"]
        'tenant_acme'
        >>> await strategy.create(acme)
        True
        >>> await strategy.apply(acme)
        >>> strategy.current_engine().url.database
        'tenant_acme'
    """

    def __init__(self, config: DatabaseConfig | None = None, **kwargs: Any) -> None:
        super().__init__(config, **kwargs)
        self._engines: dict[str, AsyncEngine] = {}
        self._engines_lock = threading.Lock()

    def database_name(self, tenant: Tenant) -> str:
        name = tenant.database_name(self._config.tenant_database_prefix)
        if not _SAFE_NAME.match(name):
            raise ConfigurationError(f"Invalid database name for tenant {tenant.id}: {name!r}")
        return name

    def _sqlite_path(self, name: str) -> Path:
        if self._config.sqlite_directory:
            directory = Path(self._config.sqlite_directory)
        else:
            landlord_db = self._landlord_url.database
            if landlord_db and landlord_db != ":memory:":
                directory = Path(landlord_db).parent
            else:
                directory = Path(".")
        return directory / f"{name}.sqlite"

    def _overrides(self, tenant: Tenant) -> dict[str, Any]:
        requested = tenant.get_config("database", {})
        if not isinstance(requested, Mapping):
            return {}
        allowed = self._config.allowed_override_keys
        accepted = {k: v for k, v in requested.items() if k in allowed}
        rejected = sorted(set(requested) - set(accepted))
        if rejected:
            logger.warning(
                f"Ignoring database overrides not on the allow-list for tenant {tenant.id}: "
                f"{', '.join(rejected)}",
                extra={"tenant_id": tenant.id, "rejected": rejected},
            )
        return accepted

    def connection_config(self, tenant: Tenant) -> dict[str, Any]:
        url = self._landlord_url
        name = self.database_name(tenant)
        config: dict[str, Any] = {
            "drivername": url.drivername,
            "username": url.username,
            "password": url.password,
            "host": url.host,
            "port": url.port,
            "database": name,
            "query": dict(url.query),
        }
        if url.get_backend_name() == "sqlite":
            config["database"] = str(self._sqlite_path(name))
        config.update(self._overrides(tenant))
        return config

    def tenant_url(self, tenant: Tenant) -> URL:
        config = self.connection_config(tenant)
        return URL.create(
            **{key: config.get(key) for key in _URL_KEYS},
            query=config.get("query") or {},
        )

    def engine_for(self, tenant: Tenant) -> AsyncEngine:
        """Return the cached engine for the tenant's connection settings."""
        url = self.tenant_url(tenant)
        key = url.render_as_string(hide_password=False)
        with self._engines_lock:
            engine = self._engines.get(key)
            if engine is None:
                engine = self._create_engine(url)
                self._engines[key] = engine
        return engine

    async def apply(self, tenant: Tenant) -> None:
        engine = self.engine_for(tenant)
        self._binding.set(engine)
        logger.debug(
            f"Database bound to {engine.url.database} for tenant {tenant.id}",
            extra={"tenant_id": tenant.id},
        )

    async def _autocommit(self, statement: str, params: Mapping[str, Any] | None = None) -> Any:
        engine = self._landlord_engine.execution_options(isolation_level="AUTOCOMMIT")
        async with engine.connect() as conn:
            return await conn.execute(text(statement), dict(params or {}))

    def _quoted(self, name: str) -> str:
        return self._landlord_engine.dialect.identifier_preparer.quote_identifier(name)

    async def exists(self, tenant: Tenant, *, raise_errors: bool = False) -> bool:
        async def body() -> bool:
            name = self.database_name(tenant)
            backend = self.dialect
            if backend == "sqlite":
                return await asyncio.to_thread(self._sqlite_path(name).exists)
            if backend == "postgresql":
                async with self._landlord_engine.connect() as conn:
                    result = await conn.execute(
                        text("SELECT 1 FROM pg_database WHERE datname = :name"),
                        {"name": name},
                    )
                    return result.first() is not None
            if backend in ("mysql", "mariadb"):
                async with self._landlord_engine.connect() as conn:
                    result = await conn.execute(text("SHOW DATABASES LIKE :name"), {"name": name})
                    return result.first() is not None
            raise ConfigurationError(f"Unsupported database backend: {backend}")

        return await self._guarded(tenant, "exists", body, raise_errors)

    async def create(self, tenant: Tenant, *, raise_errors: bool = False) -> bool:
        async def body() -> bool:
            name = self.database_name(tenant)
            backend = self.dialect
            if backend == "sqlite":
                path = self._sqlite_path(name)
                await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
                # Connecting creates the file
                async with self.engine_for(tenant).connect() as conn:
                    await conn.execute(text("SELECT 1"))
            elif backend == "postgresql":
                async with self._landlord_engine.connect() as conn:
                    found = await conn.execute(
                        text("SELECT 1 FROM pg_database WHERE datname = :name"),
                        {"name": name},
                    )
                    missing = found.first() is None
                if missing:
                    await self._autocommit(f"CREATE DATABASE {self._quoted(name)}")
            elif backend in ("mysql", "mariadb"):
                await self._autocommit(
                    f"CREATE DATABASE IF NOT EXISTS {self._quoted(name)} "
                    "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
                )
            else:
                raise ConfigurationError(f"Unsupported database backend: {backend}")
            logger.info(
                f"Created database {name} for tenant {tenant.id}",
                extra={"tenant_id": tenant.id, "database": name},
            )
            return True

        return await self._guarded(tenant, "create", body, raise_errors)

    async def drop(self, tenant: Tenant, *, raise_errors: bool = False) -> bool:
        async def body() -> bool:
            name = self.database_name(tenant)
            await self._dispose_tenant_engine(tenant)
            backend = self.dialect
            if backend == "sqlite":
                await asyncio.to_thread(self._sqlite_path(name).unlink, missing_ok=True)
            elif backend in ("postgresql", "mysql", "mariadb"):
                await self._autocommit(f"DROP DATABASE IF EXISTS {self._quoted(name)}")
            else:
                raise ConfigurationError(f"Unsupported database backend: {backend}")
            logger.info(
                f"Dropped database {name} for tenant {tenant.id}",
                extra={"tenant_id": tenant.id, "database": name},
            )
            return True

        return await self._guarded(tenant, "drop", body, raise_errors)

    async def _dispose_tenant_engine(self, tenant: Tenant) -> None:
        key = self.tenant_url(tenant).render_as_string(hide_password=False)
        with self._engines_lock:
            engine = self._engines.pop(key, None)
        if engine is not None:
            await engine.dispose()

    async def dispose(self) -> None:
        with self._engines_lock:
            engines = list(self._engines.values())
            self._engines.clear()
        for engine in engines:
            await engine.dispose()
        await super().dispose()


class SingleDatabaseStrategy(_SQLAlchemyDatabaseStrategy):
    """
    All tenants share the landlord database.

    apply() and remove() both bind the landlord engine; row isolation is
    the job of the tenant query filter. Provisioning a tenant database is
    a no-op that reports success, and migrate() creates the shared tables.
    """

    def engine_for(self, tenant: Tenant) -> AsyncEngine:
        return self._landlord_engine

    def database_name(self, tenant: Tenant) -> str:
        return self._landlord_url.database or ""

    def connection_config(self, tenant: Tenant) -> dict[str, Any]:
        url = self._landlord_url
        return {
            "drivername": url.drivername,
            "username": url.username,
            "password": url.password,
            "host": url.host,
            "port": url.port,
            "database": url.database,
            "query": dict(url.query),
        }

    async def apply(self, tenant: Tenant) -> None:
        self._binding.set(self._landlord_engine)
        logger.debug("Database bound to shared database", extra={"tenant_id": tenant.id})

    async def exists(self, tenant: Tenant, *, raise_errors: bool = False) -> bool:
        return True

    async def create(self, tenant: Tenant, *, raise_errors: bool = False) -> bool:
        return True

    async def drop(self, tenant: Tenant, *, raise_errors: bool = False) -> bool:
        return True


__all__ = [
    "SeparateDatabaseStrategy",
    "SingleDatabaseStrategy",
    "MigrationFunc",
    "SeederFunc",
]
