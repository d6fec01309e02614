"""Library exceptions for the tenancy package."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class TenancyError(Exception):
    """Base exception for tenancy library."""

    pass


class TenantNotFoundError(TenancyError):
    """
    Raised when a tenant is required but cannot be found.

    This occurs when:
    - A "requires tenant" guard runs with no tenant bound to the unit of work
    - execute_in_tenant() is given an id that does not resolve
    - A tenant-scoped insert runs without an ambient tenant

    Attributes:
        tenant_id: The id that failed to resolve, or None when no tenant is bound
    """

    def __init__(self, tenant_id: str | int | None = None, message: str | None = None) -> None:
        self.tenant_id = tenant_id
        if message is None:
            if tenant_id is None:
                message = "No tenant found for this request."
            else:
                message = f"Tenant not found: {tenant_id}"
        super().__init__(message)


class TenantAlreadyExistsError(TenancyError):
    """Raised when a tenant id, domain or subdomain is already claimed."""

    def __init__(self, field: str, value: Any) -> None:
        self.field = field
        self.value = value
        super().__init__(f"A tenant with {field} '{value}' already exists")


class ConfigurationError(TenancyError):
    """Raised when tenancy configuration is invalid."""

    pass


class StrategyError(TenancyError):
    """
    Raised when an isolation strategy fails to apply or remove.

    Attributes:
        strategy: Name of the strategy class
        operation: "apply" or "remove"
        tenant_id: Tenant involved, None for landlord
    """

    def __init__(
        self,
        strategy: str,
        operation: str,
        tenant_id: str | int | None,
        message: str,
    ) -> None:
        self.strategy = strategy
        self.operation = operation
        self.tenant_id = tenant_id
        target = f"tenant {tenant_id}" if tenant_id is not None else "landlord"
        super().__init__(f"{strategy}.{operation} failed for {target}: {message}")


class TenantSwitchError(TenancyError):
    """
    Raised when a context switch is aborted.

    The context has been rolled back to the state it was in before the
    switch started: no strategy is left bound to the target tenant.

    Attributes:
        target_tenant_id: The tenant being switched to (None for landlord)
        cause: The exception that aborted the switch
    """

    def __init__(self, target_tenant_id: str | int | None, cause: BaseException) -> None:
        self.target_tenant_id = target_tenant_id
        self.cause = cause
        target = f"tenant {target_tenant_id}" if target_tenant_id is not None else "landlord"
        super().__init__(f"Switch to {target} aborted and rolled back: {cause}")


class RestorationError(TenancyError):
    """
    Raised when restoring isolation state fails.

    Carries every failure that occurred while unwinding, plus the error
    (if any) that triggered the unwinding in the first place. The process
    may be in a mixed tenant state when this is raised.

    Attributes:
        errors: Failures raised by the restoration steps
        original_error: The error that caused the restoration, if any
    """

    def __init__(
        self,
        errors: Sequence[BaseException],
        original_error: BaseException | None = None,
    ) -> None:
        self.errors = list(errors)
        self.original_error = original_error
        details = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        message = f"Failed to restore tenant context ({details})"
        if original_error is not None:
            message += f" while handling {type(original_error).__name__}: {original_error}"
        super().__init__(message)


class ProvisioningError(TenancyError):
    """
    Raised when a provisioning operation fails in an administrative path.

    Automatic paths (tenant creation) record the cause's message in the
    provisioning report instead; callers passing raise_errors=True get
    this exception with the cause attached.

    Attributes:
        tenant_id: Tenant being provisioned
        operation: create, drop, exists, migrate, seed or directories
        cause: The underlying driver or filesystem error
    """

    def __init__(
        self,
        tenant_id: str | int,
        operation: str,
        cause: BaseException | None = None,
        message: str | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.operation = operation
        self.cause = cause
        detail = message or (str(cause) if cause is not None else "unknown error")
        super().__init__(f"Provisioning '{operation}' failed for tenant {tenant_id}: {detail}")


__all__ = [
    "TenancyError",
    "TenantNotFoundError",
    "TenantAlreadyExistsError",
    "ConfigurationError",
    "StrategyError",
    "TenantSwitchError",
    "RestorationError",
    "ProvisioningError",
]
