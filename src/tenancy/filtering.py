"""
Tenant-scoped query filtering for SQLAlchemy ORM models.

Models that mix in TenantScopedMixin carry a tenant column. Once
install_tenant_filter() has been called, every ORM SELECT, UPDATE and
DELETE issued through a Session is limited to the ambient tenant's rows.
Inserts that leave the tenant column unset, whether flushed objects or
``insert(Model)`` statements, are stamped with the ambient tenant.

Example:
    >>> class Invoice(TenantScopedMixin, Base):
    ...     __tablename__ = "invoices"
    ...     id: Mapped[int] = mapped_column(primary_key=True)
    ...
    >>> install_tenant_filter()
    >>> async with manager.tenant_scope(acme):
    ...     session.scalars(select(Invoice)).all()   # acme's invoices only
    ...
    >>> with without_tenant_scope():
    ...     session.scalars(select(Invoice)).all()   # every tenant's invoices
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, ClassVar

from sqlalchemy import String, event
from sqlalchemy.orm import (
    Mapped,
    ORMExecuteState,
    Session,
    declared_attr,
    mapped_column,
    with_loader_criteria,
)

from tenancy.config import MissingTenantPolicy
from tenancy.context import get_current_tenant
from tenancy.exceptions import TenantNotFoundError
from tenancy.tenants.model import Tenant

logger = logging.getLogger(__name__)

# Execution options understood by the filter
ALL_TENANTS = "all_tenants"
TENANT_ID = "tenant_id"

_bypass: ContextVar[bool] = ContextVar("tenancy_filter_bypass", default=False)
_override: ContextVar[str | None] = ContextVar("tenancy_filter_override", default=None)

_installed: dict[type[Session], tuple[Any, Any]] = {}


class TenantScopedMixin:
    """
    Adds a tenant column to a mapped class.

    The Python attribute is always ``tenant_id``; the database column name
    is taken from ``__tenant_column__``. Ids are stored as strings.
    """

    __tenant_column__: ClassVar[str] = "tenant_id"

    @declared_attr
    def tenant_id(cls) -> Mapped[str]:
        return mapped_column(
            cls.__tenant_column__,
            String(64),
            index=True,
            nullable=False,
            default=_insert_tenant_id,
        )


def _id_of(tenant: Tenant | str | int) -> str:
    return str(tenant.id) if isinstance(tenant, Tenant) else str(tenant)


def _scoped_tenant_id() -> str | None:
    override = _override.get()
    if override is not None:
        return override
    tenant = get_current_tenant()
    return str(tenant.id) if tenant is not None else None


def _insert_tenant_id(context: Any) -> str:
    # Column default: runs only for inserts that do not set the column
    tenant_id = _scoped_tenant_id()
    if tenant_id is None:
        table = context.current_column.table.name
        raise TenantNotFoundError(
            message=f"Cannot insert into {table} without a current tenant."
        )
    return tenant_id


@contextmanager
def without_tenant_scope() -> Iterator[None]:
    """Disable tenant filtering for queries issued inside the block."""
    token = _bypass.set(True)
    try:
        yield
    finally:
        _bypass.reset(token)


@contextmanager
def for_tenant(tenant: Tenant | str | int) -> Iterator[str]:
    """
    Filter by the given tenant inside the block, whatever the ambient tenant.

    Also used for inserts: new objects are stamped with this tenant.
    """
    tenant_id = _id_of(tenant)
    token = _override.set(tenant_id)
    try:
        yield tenant_id
    finally:
        _override.reset(token)


def belongs_to_current_tenant(obj: TenantScopedMixin) -> bool:
    """True if obj carries the ambient tenant's id."""
    tenant = get_current_tenant()
    if tenant is None:
        return False
    return str(obj.tenant_id) == str(tenant.id)


def _make_execute_listener(policy: MissingTenantPolicy) -> Any:
    def on_execute(state: ORMExecuteState) -> None:
        if not (state.is_select or state.is_update or state.is_delete):
            return
        if state.is_column_load or state.is_relationship_load:
            return
        options = state.execution_options
        if options.get(ALL_TENANTS) or _bypass.get():
            return

        explicit = options.get(TENANT_ID)
        tenant_id = str(explicit) if explicit is not None else _scoped_tenant_id()
        if tenant_id is None:
            if policy is MissingTenantPolicy.RAISE:
                raise TenantNotFoundError(
                    message="Tenant-scoped query issued without a current tenant."
                )
            logger.debug("Tenant-scoped query without a tenant; returning no rows")
            criteria = with_loader_criteria(
                TenantScopedMixin,
                lambda cls: cls.tenant_id.is_(None),
                include_aliases=True,
            )
        else:
            criteria = with_loader_criteria(
                TenantScopedMixin,
                lambda cls: cls.tenant_id == tenant_id,
                include_aliases=True,
            )
        state.statement = state.statement.options(criteria)

    return on_execute


def _on_before_flush(session: Session, flush_context: Any, instances: Any) -> None:
    for obj in session.new:
        if not isinstance(obj, TenantScopedMixin) or obj.tenant_id is not None:
            continue
        tenant_id = _scoped_tenant_id()
        if tenant_id is None:
            raise TenantNotFoundError(
                message=f"Cannot insert {type(obj).__name__} without a current tenant."
            )
        obj.tenant_id = tenant_id


def install_tenant_filter(
    session_class: type[Session] = Session,
    policy: MissingTenantPolicy = MissingTenantPolicy.EMPTY,
) -> None:
    """
    Register the tenant filter on a Session class.

    AsyncSession runs on a sync Session, so the default covers both.
    Installing again replaces the previous registration (and its policy).

    Args:
        session_class: Session class (or subclass) to listen on
        policy: What a scoped query does when no tenant is bound
    """
    uninstall_tenant_filter(session_class)
    on_execute = _make_execute_listener(policy)
    event.listen(session_class, "do_orm_execute", on_execute)
    event.listen(session_class, "before_flush", _on_before_flush)
    _installed[session_class] = (on_execute, _on_before_flush)
    logger.debug(
        f"Tenant filter installed on {session_class.__name__}",
        extra={"session_class": session_class.__name__, "policy": policy.value},
    )


def uninstall_tenant_filter(session_class: type[Session] = Session) -> bool:
    """Remove the tenant filter. Returns False if it was not installed."""
    listeners = _installed.pop(session_class, None)
    if listeners is None:
        return False
    on_execute, on_flush = listeners
    event.remove(session_class, "do_orm_execute", on_execute)
    event.remove(session_class, "before_flush", on_flush)
    return True


__all__ = [
    "TenantScopedMixin",
    "install_tenant_filter",
    "uninstall_tenant_filter",
    "without_tenant_scope",
    "for_tenant",
    "belongs_to_current_tenant",
    "ALL_TENANTS",
    "TENANT_ID",
]
