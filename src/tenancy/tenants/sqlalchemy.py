"""
SQLAlchemy-backed tenant directory.

Stores tenants in a ``tenants`` table on the landlord database using
SQLAlchemy Core and an async engine (aiosqlite, asyncpg, ...). Domain and
subdomain carry unique constraints; per-tenant configuration is a JSON
column.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tenancy.exceptions import TenantAlreadyExistsError, TenantNotFoundError
from tenancy.tenants.model import Tenant
from tenancy.tenants.repository import UNIQUE_FIELDS, TenantRepository, apply_changes

logger = logging.getLogger(__name__)

landlord_metadata = MetaData()

tenants_table = Table(
    "tenants",
    landlord_metadata,
    Column("id", String(191), primary_key=True),
    Column("id_is_int", Boolean, nullable=False, default=False),
    Column("name", String(255), nullable=False, default=""),
    Column("domain", String(255), unique=True, nullable=True),
    Column("subdomain", String(191), unique=True, nullable=True),
    Column("database", String(191), nullable=True),
    Column("config", JSON, nullable=False, default=dict),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands timestamps back without tzinfo
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@asynccontextmanager
async def _landlord_connection(
    conn: AsyncEngine | AsyncConnection,
    write: bool = False,
) -> AsyncIterator[AsyncConnection]:
    # A caller-owned connection is used as-is so its transaction is joined
    if not isinstance(conn, AsyncEngine):
        yield conn
        return
    opener = conn.begin() if write else conn.connect()
    async with opener as connection:
        yield connection


def _row_to_tenant(row: Row[Any]) -> Tenant:
    data = row._mapping
    return Tenant(
        id=int(data["id"]) if data["id_is_int"] else data["id"],
        name=data["name"],
        domain=data["domain"],
        subdomain=data["subdomain"],
        database=data["database"],
        config=data["config"] or {},
        is_active=data["is_active"],
        created_at=_aware(data["created_at"]),
        updated_at=_aware(data["updated_at"]),
        deleted_at=_aware(data["deleted_at"]),
    )


def _tenant_to_values(tenant: Tenant) -> dict[str, Any]:
    return {
        "id": str(tenant.id),
        "id_is_int": isinstance(tenant.id, int),
        "name": tenant.name,
        "domain": tenant.domain,
        "subdomain": tenant.subdomain,
        "database": tenant.database,
        "config": tenant.config,
        "is_active": tenant.is_active,
        "created_at": tenant.created_at,
        "updated_at": tenant.updated_at,
        "deleted_at": tenant.deleted_at,
    }


class SQLAlchemyTenantRepository(TenantRepository):
    """
    Tenant directory on the landlord database.

    Args:
        conn: AsyncEngine or AsyncConnection for the landlord database

    Example:
        >>> engine = create_async_engine("sqlite+aiosqlite:///landlord.db")
        >>> repo = SQLAlchemyTenantRepository(engine)
        >>> await repo.create_schema()
        >>> await repo.create(Tenant(id="acme", domain="acme.test"))
    """

    def __init__(self, conn: AsyncEngine | AsyncConnection) -> None:
        self._conn = conn

    async def create_schema(self) -> None:
        """Create the tenants table if it does not exist."""
        async with _landlord_connection(self._conn, write=True) as conn:
            await conn.run_sync(landlord_metadata.create_all)

    async def get(self, tenant_id: str | int, include_deleted: bool = True) -> Tenant | None:
        query = select(tenants_table).where(tenants_table.c.id == str(tenant_id))
        if not include_deleted:
            query = query.where(tenants_table.c.deleted_at.is_(None))
        async with _landlord_connection(self._conn) as conn:
            row = (await conn.execute(query)).first()
        return _row_to_tenant(row) if row is not None else None

    async def _find_by(
        self, column_name: str, value: str, case_sensitive: bool, active_only: bool
    ) -> Tenant | None:
        column = tenants_table.c[column_name]
        if case_sensitive:
            query = select(tenants_table).where(column == value)
        else:
            query = select(tenants_table).where(func.lower(column) == value.lower())
        if active_only:
            query = query.where(
                tenants_table.c.is_active.is_(True),
                tenants_table.c.deleted_at.is_(None),
            )
        async with _landlord_connection(self._conn) as conn:
            row = (await conn.execute(query.limit(1))).first()
        return _row_to_tenant(row) if row is not None else None

    async def find_by_domain(
        self,
        domain: str,
        *,
        case_sensitive: bool = False,
        active_only: bool = True,
    ) -> Tenant | None:
        return await self._find_by("domain", domain, case_sensitive, active_only)

    async def find_by_subdomain(
        self,
        subdomain: str,
        *,
        case_sensitive: bool = False,
        active_only: bool = True,
    ) -> Tenant | None:
        return await self._find_by("subdomain", subdomain, case_sensitive, active_only)

    async def list_all(self, include_deleted: bool = False) -> list[Tenant]:
        query = select(tenants_table).order_by(tenants_table.c.created_at)
        if not include_deleted:
            query = query.where(tenants_table.c.deleted_at.is_(None))
        async with _landlord_connection(self._conn) as conn:
            rows = (await conn.execute(query)).fetchall()
        return [_row_to_tenant(row) for row in rows]

    async def _check_unique(
        self, conn: AsyncConnection, tenant: Tenant, ignore_id: str | None = None
    ) -> None:
        for field in UNIQUE_FIELDS:
            value = getattr(tenant, field)
            if not value:
                continue
            column = tenants_table.c[field]
            query = select(tenants_table.c.id).where(func.lower(column) == value.lower())
            if ignore_id is not None:
                query = query.where(tenants_table.c.id != ignore_id)
            if (await conn.execute(query.limit(1))).first() is not None:
                raise TenantAlreadyExistsError(field, value)

    async def create(self, tenant: Tenant) -> Tenant:
        try:
            async with _landlord_connection(self._conn, write=True) as conn:
                existing = await conn.execute(
                    select(tenants_table.c.id).where(tenants_table.c.id == str(tenant.id))
                )
                if existing.first() is not None:
                    raise TenantAlreadyExistsError("id", tenant.id)
                await self._check_unique(conn, tenant)
                await conn.execute(insert(tenants_table).values(**_tenant_to_values(tenant)))
        except IntegrityError as e:
            # Lost a race with a concurrent insert
            raise TenantAlreadyExistsError("id", tenant.id) from e
        logger.debug("Tenant record created", extra={"tenant_id": tenant.id})
        return tenant

    async def update(self, tenant_id: str | int, **changes: Any) -> Tenant:
        key = str(tenant_id)
        async with _landlord_connection(self._conn, write=True) as conn:
            row = (
                await conn.execute(select(tenants_table).where(tenants_table.c.id == key))
            ).first()
            if row is None:
                raise TenantNotFoundError(tenant_id)
            updated = apply_changes(_row_to_tenant(row), changes)
            await self._check_unique(conn, updated, ignore_id=key)
            values = _tenant_to_values(updated)
            values.pop("id")
            await conn.execute(
                update(tenants_table).where(tenants_table.c.id == key).values(**values)
            )
        return updated

    async def delete(self, tenant_id: str | int) -> bool:
        async with _landlord_connection(self._conn, write=True) as conn:
            result = await conn.execute(
                delete(tenants_table).where(tenants_table.c.id == str(tenant_id))
            )
        return bool(result.rowcount)


__all__ = [
    "SQLAlchemyTenantRepository",
    "tenants_table",
    "landlord_metadata",
]
