"""
Tenant context state for a unit of work.

This module holds the ambient tenant for the current execution context:
- tenant_state: ContextVar carrying a ContextState(current, previous)
- get_current_tenant(): Current tenant (None means landlord)
- get_required_tenant(): Current tenant, raises if none is bound
- get_previous_tenant(): Tenant that was current before the last switch
- is_tenant_context(): Whether a tenant is bound
- tenant_config(): Read a key from the current tenant's configuration
- bind_tenant() / reset_tenant(): Low-level bind with token-based restore
- clear_tenant_context(): Reset to landlord (tests and worker loops)

Because the state lives in a ContextVar, every asyncio task and thread has
its own copy. A task spawned inside a scope inherits a snapshot of the
state and cannot leak changes back to its parent.

Most code should not call bind_tenant() directly; TenancyManager binds the
tenant only after every isolation strategy has been applied.

Example:
    >>> from tenancy.context import get_current_tenant, bind_tenant, reset_tenant
    >>> token = bind_tenant(acme)
    >>> assert get_current_tenant() is acme
    >>> reset_tenant(token)
    >>> assert get_current_tenant() is None
"""

from __future__ import annotations

import logging
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from tenancy.exceptions import TenantNotFoundError

if TYPE_CHECKING:
    from tenancy.tenants.model import Tenant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContextState:
    """
    Immutable snapshot of the tenant context.

    Attributes:
        current: The bound tenant, or None for landlord
        previous: The tenant that was current before the last switch
    """

    current: Tenant | None = None
    previous: Tenant | None = None


LANDLORD = ContextState()

# Default is the landlord state: no tenant bound
tenant_state: ContextVar[ContextState] = ContextVar("tenant_state", default=LANDLORD)


def get_state() -> ContextState:
    """Return the full context snapshot for the current unit of work."""
    return tenant_state.get()


def get_current_tenant() -> Tenant | None:
    """
    Get the tenant bound to the current unit of work.

    Never raises. Returns None when running as landlord.
    """
    return tenant_state.get().current


def get_required_tenant() -> Tenant:
    """
    Get the current tenant, raising if none is bound.

    Returns:
        The current Tenant

    Raises:
        TenantNotFoundError: If running as landlord
    """
    tenant = tenant_state.get().current
    if tenant is None:
        raise TenantNotFoundError()
    return tenant


def get_previous_tenant() -> Tenant | None:
    """Get the tenant that was current before the most recent switch."""
    return tenant_state.get().previous


def is_tenant_context() -> bool:
    """Return True when a tenant is bound to the current unit of work."""
    return tenant_state.get().current is not None


def tenant_config(key: str | None = None, default: Any = None) -> Any:
    """
    Read a value from the current tenant's configuration.

    Args:
        key: Dotted path into the tenant config (None returns the whole mapping)
        default: Returned when no tenant is bound or the key is missing

    Example:
        >>> tenant_config("billing.plan", "free")
        'pro'
    """
    tenant = tenant_state.get().current
    if tenant is None:
        return default
    return tenant.get_config(key, default)


def bind_tenant(tenant: Tenant | None) -> Token[ContextState]:
    """
    Bind a tenant as current, recording the old current as previous.

    Args:
        tenant: Tenant to bind, or None for landlord

    Returns:
        Token that restores the prior state with reset_tenant()
    """
    state = tenant_state.get()
    logger.debug(
        "Tenant context bound: %s",
        tenant.id if tenant is not None else "landlord",
    )
    return tenant_state.set(ContextState(current=tenant, previous=state.current))


def reset_tenant(token: Token[ContextState]) -> None:
    """Restore the state that was in force before the matching bind_tenant()."""
    tenant_state.reset(token)
    logger.debug("Tenant context reset")


def restore_state(state: ContextState) -> None:
    """
    Put back a previously captured snapshot.

    Used when a token cannot be reset because it was created in a
    different context (for example across a task boundary).
    """
    tenant_state.set(state)


def clear_tenant_context() -> None:
    """
    Reset the current unit of work to landlord.

    Only affects the current execution context. Isolation strategies are
    not touched; use TenancyManager.clear_tenant() in application code.
    """
    logger.debug("Tenant context cleared")
    tenant_state.set(LANDLORD)


__all__ = [
    "ContextState",
    "LANDLORD",
    "tenant_state",
    "get_state",
    "get_current_tenant",
    "get_required_tenant",
    "get_previous_tenant",
    "is_tenant_context",
    "tenant_config",
    "bind_tenant",
    "reset_tenant",
    "restore_state",
    "clear_tenant_context",
]
