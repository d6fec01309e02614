"""
Tenant lifecycle orchestration.

TenantLifecycle sequences everything that happens when a tenant is
created, updated or deleted: the directory write, provisioning of the
tenant's database, cache and storage, and the lifecycle notifications.

Provisioning on creation is best-effort. A failed step is recorded in the
ProvisioningReport and the tenant record is kept, so an operator can
retry with ``tenancy migrate <tenant>``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from tenancy.bus import EventBus, InMemoryEventBus
from tenancy.config import TenancyConfig
from tenancy.events import TenancyEvent, TenantCreated, TenantDeleted, TenantUpdated
from tenancy.exceptions import ProvisioningError, TenantNotFoundError
from tenancy.observability import (
    ATTR_PROVISION_STEP,
    ATTR_TENANT_ID,
    SPAN_PROVISION,
    Tracer,
    create_tracer,
)
from tenancy.strategies.cache import SeparateCacheStrategy
from tenancy.strategies.interface import MigrationOptions
from tenancy.strategies.registry import IsolationStrategies
from tenancy.tenants.model import (
    ProvisioningReport,
    ProvisioningStep,
    Tenant,
    TenantCreationResult,
)
from tenancy.tenants.repository import TenantRepository, generate_tenant_id

logger = logging.getLogger(__name__)


class TenantLifecycle:
    """
    Orchestrates tenant creation, provisioning, update and deletion.

    Args:
        repository: Tenant directory
        strategies: Isolation strategies to provision and tear down
        config: Tenancy configuration (auto-create/migrate/seed switches)
        bus: Notification bus for TenantCreated/Updated/Deleted
        tracer: Optional tracer

    Example:
        >>> lifecycle = TenantLifecycle(repository, strategies, config)
        >>> result = await lifecycle.create({"name": "Acme", "domain": "acme.test"})
        >>> result.provisioning.succeeded
        True
    """

    def __init__(
        self,
        repository: TenantRepository,
        strategies: IsolationStrategies,
        config: TenancyConfig | None = None,
        bus: EventBus | None = None,
        *,
        tracer: Tracer | None = None,
    ) -> None:
        self._repository = repository
        self._strategies = strategies
        self._config = config or TenancyConfig()
        self._bus = bus or InMemoryEventBus(enable_tracing=self._config.enable_tracing)
        self._tracer = tracer or create_tracer(__name__, self._config.enable_tracing)

    async def _publish(self, event: TenancyEvent) -> None:
        await self._bus.publish([event])

    async def create(self, attributes: Mapping[str, Any] | Tenant) -> TenantCreationResult:
        """
        Create a tenant record, then provision it as configured.

        Args:
            attributes: A Tenant, or a mapping of Tenant fields (an id is
                generated when absent)

        Returns:
            The stored tenant and its provisioning report

        Raises:
            TenantAlreadyExistsError: If the id, domain or subdomain is taken
        """
        if isinstance(attributes, Tenant):
            tenant = attributes
        else:
            data = dict(attributes)
            data.setdefault("id", generate_tenant_id())
            tenant = Tenant.model_validate(data)

        created = await self._repository.create(tenant)
        db_config = self._config.database
        report = await self.provision(
            created,
            create_database=db_config.auto_create_database,
            migrate=db_config.auto_migrate,
            seed=db_config.auto_seed,
            directories=self._config.storage.auto_create_directories,
        )
        if report.succeeded:
            logger.info(
                f"Created tenant {created.id}",
                extra={"tenant_id": created.id},
            )
        else:
            logger.warning(
                f"Created tenant {created.id} with provisioning failures: "
                f"{', '.join(step.name for step in report.failed_steps)}",
                extra={"tenant_id": created.id},
            )
        await self._publish(TenantCreated(tenant=created, provisioning=report))
        return TenantCreationResult(tenant=created, provisioning=report)

    async def _step(
        self,
        tenant: Tenant,
        name: str,
        action: Callable[[], Awaitable[bool]],
        steps: list[ProvisioningStep],
        *,
        raise_errors: bool = False,
    ) -> bool:
        # Failures become a recorded step carrying the underlying error text
        with self._tracer.span(
            SPAN_PROVISION,
            {ATTR_TENANT_ID: str(tenant.id), ATTR_PROVISION_STEP: name},
        ):
            try:
                ok = await action()
                error = None if ok else f"{name} failed"
            except Exception as e:
                if raise_errors:
                    if isinstance(e, ProvisioningError):
                        raise
                    raise ProvisioningError(tenant.id, name, e) from e
                cause = e.cause if isinstance(e, ProvisioningError) and e.cause else e
                logger.warning(
                    f"Step {name} failed for tenant {tenant.id}: {cause}",
                    extra={"tenant_id": tenant.id, "step": name, "error": str(cause)},
                )
                ok, error = False, str(cause)
        steps.append(ProvisioningStep(name=name, success=ok, error=error))
        return ok

    async def provision(
        self,
        tenant: Tenant,
        *,
        create_database: bool = True,
        migrate: bool = False,
        seed: bool = False,
        fresh: bool = False,
        directories: bool = True,
        raise_errors: bool = False,
    ) -> ProvisioningReport:
        """
        Provision a tenant's resources.

        Steps run in order: create, migrate, seed, directories. Migrate and
        seed are skipped when the database could not be created. A failed
        step records the underlying error message.

        Args:
            tenant: Tenant to provision
            create_database: Create the tenant database
            migrate: Run migrations
            seed: Run seeders (after migrating)
            fresh: Drop tables before migrating
            directories: Create storage directories
            raise_errors: Raise ProvisioningError on the first failure
                instead of recording it

        Returns:
            ProvisioningReport listing every attempted step
        """
        database = self._strategies.database
        steps: list[ProvisioningStep] = []

        async def run(name: str, action: Callable[[], Awaitable[bool]]) -> bool:
            return await self._step(tenant, name, action, steps, raise_errors=raise_errors)

        database_ready = True
        if create_database:
            database_ready = await run(
                "create", lambda: database.create(tenant, raise_errors=True)
            )
        if migrate or seed:
            if database_ready:
                await run(
                    "migrate",
                    lambda: database.migrate(
                        tenant,
                        MigrationOptions(fresh=fresh, seed=seed),
                        raise_errors=True,
                    ),
                )
            else:
                steps.append(
                    ProvisioningStep(name="migrate", success=False, error="skipped: create failed")
                )
        if directories:
            await run(
                "directories",
                lambda: self._strategies.storage.create_tenant_directories(
                    tenant, raise_errors=True
                ),
            )

        report = ProvisioningReport(tenant_id=tenant.id, steps=tuple(steps))
        logger.debug(
            f"Provisioned tenant {tenant.id}: "
            + ", ".join(f"{s.name}={'ok' if s.success else 'failed'}" for s in steps),
            extra={"tenant_id": tenant.id, "succeeded": report.succeeded},
        )
        return report

    async def update(self, tenant_id: str | int, changes: Mapping[str, Any]) -> Tenant:
        """
        Apply field changes to a tenant and publish TenantUpdated.

        Raises:
            TenantNotFoundError: If the tenant does not exist
            TenantAlreadyExistsError: If a changed domain/subdomain is taken
        """
        tenant = await self._repository.update(tenant_id, **dict(changes))
        await self._publish(TenantUpdated(tenant=tenant))
        return tenant

    async def delete(self, tenant_id: str | int, *, force: bool = False) -> ProvisioningReport:
        """
        Delete a tenant.

        A soft delete keeps the record (excluded from listings and
        detection). A forced delete drops the database, clears the cache
        namespace, removes storage and then deletes the record. Teardown
        failures are recorded, not raised, and later steps still run.

        Raises:
            TenantNotFoundError: If the tenant does not exist
        """
        tenant = await self._repository.get(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)

        steps: list[ProvisioningStep] = []
        if not force:
            await self._repository.soft_delete(tenant_id)
            steps.append(ProvisioningStep(name="soft_delete", success=True))
        else:
            strategies = self._strategies

            async def clear_cache() -> bool:
                cleared = await strategies.cache.clear(tenant)
                if isinstance(strategies.cache, SeparateCacheStrategy):
                    await strategies.cache.forget(tenant)
                return cleared

            await self._step(
                tenant, "drop", lambda: strategies.database.drop(tenant, raise_errors=True), steps
            )
            await self._step(tenant, "cache", clear_cache, steps)
            await self._step(
                tenant,
                "storage",
                lambda: strategies.storage.remove_tenant_storage(tenant, raise_errors=True),
                steps,
            )
            await self._step(tenant, "record", lambda: self._repository.delete(tenant_id), steps)

        logger.info(
            f"Deleted tenant {tenant_id} ({'hard' if force else 'soft'})",
            extra={"tenant_id": tenant_id, "force": force},
        )
        await self._publish(TenantDeleted(tenant_id=tenant.id, force=force))
        return ProvisioningReport(tenant_id=tenant.id, steps=tuple(steps))


__all__ = ["TenantLifecycle"]
