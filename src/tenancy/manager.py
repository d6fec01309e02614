"""
Tenancy context manager.

TenancyManager owns the tenant of the current unit of work. It runs
detection, switches tenants transactionally across the database, cache
and storage strategies, and publishes activation notifications.

State machine per unit of work::

    Landlord --set_tenant(T)--> Tenant(T) --set_tenant(U)--> Tenant(U)
        ^                           |
        +-------clear_tenant()------+

A switch either completes on all three strategies or is rolled back to
the state it started from. Scoped execution (tenant_scope, landlord_scope,
execute_in_tenant, execute_in_landlord, request_scope) snapshots the
state locally on entry and restores exactly that snapshot on exit,
whatever way the scope is left.

Example:
    >>> manager = TenancyManager.from_config(config, repository)
    >>> async with manager.request_scope(RequestDescriptor(host="acme.test")):
    ...     engine = manager.engine        # acme's database
    ...     await manager.cache.set("k", 1)  # stored under tenant_acme:k
    ...
    ...     # run one job as another tenant; acme is restored afterwards
    ...     await manager.execute_in_tenant("globex", sync_invoices)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, TypeVar

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine

from tenancy.bus import EventBus, InMemoryEventBus
from tenancy.config import TenancyConfig
from tenancy.context import (
    ContextState,
    bind_tenant,
    get_current_tenant,
    get_previous_tenant,
    get_required_tenant,
    get_state,
    restore_state,
)
from tenancy.detection import DetectionCache, DetectorChain, build_detector_chain
from tenancy.events import TenancyEvent, TenantActivated, TenantDeactivated
from tenancy.exceptions import (
    RestorationError,
    StrategyError,
    TenantNotFoundError,
    TenantSwitchError,
)
from tenancy.observability import (
    ATTR_DETECTION_HOST,
    ATTR_PREVIOUS_TENANT_ID,
    ATTR_TENANT_ID,
    SPAN_CLEAR,
    SPAN_DETECT,
    SPAN_SWITCH,
    Tracer,
    create_tracer,
)
from tenancy.requests import RequestDescriptor
from tenancy.strategies import (
    CacheBackend,
    IsolationStrategies,
    IsolationStrategy,
    TenantCache,
    TenantStorage,
    build_strategies,
)
from tenancy.strategies.cache import StoreFactory
from tenancy.tenants.lifecycle import TenantLifecycle
from tenancy.tenants.model import ProvisioningReport, Tenant, TenantCreationResult
from tenancy.tenants.repository import TenantRepository

logger = logging.getLogger(__name__)

R = TypeVar("R")


def _tenant_label(tenant: Tenant | None) -> str:
    return str(tenant.id) if tenant is not None else "landlord"


class TenancyManager:
    """
    Coordinates detection, context switching and isolation strategies.

    Args:
        repository: Tenant directory
        strategies: Isolation strategies (built from config when omitted)
        config: Tenancy configuration
        detectors: Detector chain (built from config when omitted)
        detection_cache: Lookup cache; created from config when
            ``detection.cache_lookup`` is on and none is given
        bus: Notification bus (an InMemoryEventBus when omitted)
        publish_in_background: Publish activation notifications without
            waiting for handlers
        tracer: Optional tracer
    """

    def __init__(
        self,
        repository: TenantRepository,
        strategies: IsolationStrategies | None = None,
        *,
        config: TenancyConfig | None = None,
        detectors: DetectorChain | None = None,
        detection_cache: DetectionCache | None = None,
        bus: EventBus | None = None,
        publish_in_background: bool = False,
        tracer: Tracer | None = None,
    ) -> None:
        self._config = config or TenancyConfig()
        self._repository = repository
        self._strategies = strategies or build_strategies(self._config)
        self._detectors = detectors or build_detector_chain(self._config.detection, repository)
        detection = self._config.detection
        if detection_cache is None and detection.cache_lookup:
            detection_cache = DetectionCache(ttl=detection.cache_ttl, key_prefix=detection.cache_key)
        self._detection_cache = detection_cache
        self._bus = bus or InMemoryEventBus(enable_tracing=self._config.enable_tracing)
        self._publish_in_background = publish_in_background
        self._tracer = tracer or create_tracer(__name__, self._config.enable_tracing)
        self._lifecycle = TenantLifecycle(
            repository, self._strategies, self._config, self._bus, tracer=self._tracer
        )
        self._cache = TenantCache(self._strategies.cache, self._config.cache.default_ttl)
        self._storage = TenantStorage(self._strategies.storage)

    @classmethod
    def from_config(
        cls,
        config: TenancyConfig,
        repository: TenantRepository,
        *,
        landlord_engine: AsyncEngine | None = None,
        metadata: MetaData | None = None,
        cache_backend: CacheBackend | None = None,
        store_factory: StoreFactory | None = None,
        disks: Mapping[str, str | Path] | None = None,
        **kwargs: Any,
    ) -> TenancyManager:
        """Build strategies from config and return a manager using them."""
        strategies = build_strategies(
            config,
            landlord_engine=landlord_engine,
            metadata=metadata,
            cache_backend=cache_backend,
            store_factory=store_factory,
            disks=disks,
        )
        return cls(repository, strategies, config=config, **kwargs)

    # =========================================================================
    # Collaborators
    # =========================================================================

    @property
    def config(self) -> TenancyConfig:
        return self._config

    @property
    def repository(self) -> TenantRepository:
        return self._repository

    @property
    def strategies(self) -> IsolationStrategies:
        return self._strategies

    @property
    def detectors(self) -> DetectorChain:
        return self._detectors

    @property
    def detection_cache(self) -> DetectionCache | None:
        return self._detection_cache

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def lifecycle(self) -> TenantLifecycle:
        return self._lifecycle

    @property
    def cache(self) -> TenantCache:
        """Cache facade for the current unit of work."""
        return self._cache

    @property
    def storage(self) -> TenantStorage:
        """Storage facade for the current unit of work."""
        return self._storage

    @property
    def engine(self) -> AsyncEngine:
        """Database engine bound to the current unit of work."""
        return self._strategies.database.current_engine()

    # =========================================================================
    # Current state
    # =========================================================================

    def current(self) -> Tenant | None:
        """The current tenant, or None for landlord."""
        return get_current_tenant()

    def previous(self) -> Tenant | None:
        """The tenant current before the most recent switch."""
        return get_previous_tenant()

    def has_tenant(self) -> bool:
        return get_current_tenant() is not None

    def require_tenant(self) -> Tenant:
        """
        Return the current tenant.

        Raises:
            TenantNotFoundError: If running as landlord
        """
        return get_required_tenant()

    # =========================================================================
    # Switching
    # =========================================================================

    async def _publish(self, event: TenancyEvent) -> None:
        await self._bus.publish([event], background=self._publish_in_background)

    async def _undo(
        self, completed: list[IsolationStrategy], origin: Tenant | None
    ) -> list[BaseException]:
        errors: list[BaseException] = []
        for strategy in reversed(completed):
            try:
                if origin is None:
                    await strategy.remove()
                else:
                    await strategy.apply(origin)
            except Exception as e:
                logger.error(
                    f"Failed to roll back {strategy.name} to {_tenant_label(origin)}: {e}",
                    exc_info=True,
                    extra={"strategy": strategy.name, "tenant_id": _tenant_label(origin)},
                )
                errors.append(e)
        return errors

    async def _apply_strategies(self, target: Tenant | None) -> None:
        """
        Apply (or remove, for landlord) every strategy, rolling back on failure.

        Raises:
            TenantSwitchError: The switch failed and was rolled back
            RestorationError: The switch failed and the rollback failed too
        """
        origin = get_current_tenant()
        completed: list[IsolationStrategy] = []
        try:
            for strategy in self._strategies.ordered():
                try:
                    if target is None:
                        await strategy.remove()
                    else:
                        await strategy.apply(target)
                except Exception as e:
                    raise StrategyError(
                        strategy.name,
                        "remove" if target is None else "apply",
                        target.id if target is not None else None,
                        str(e),
                    ) from e
                completed.append(strategy)
        except asyncio.CancelledError as e:
            errors = await self._undo(completed, origin)
            if errors:
                raise RestorationError(errors, e) from e
            raise
        except Exception as e:
            logger.warning(
                f"Switch to {_tenant_label(target)} failed, rolling back: {e}",
                extra={"tenant_id": _tenant_label(target), "error": str(e)},
            )
            errors = await self._undo(completed, origin)
            if errors:
                raise RestorationError(errors, e) from e
            raise TenantSwitchError(target.id if target is not None else None, e) from e

    async def set_tenant(self, tenant: Tenant | None) -> None:
        """
        Make tenant the current tenant of this unit of work.

        Applies the database, cache and storage strategies in that order,
        then binds the tenant and publishes TenantActivated. Passing None
        is the same as clear_tenant().

        Raises:
            TenantSwitchError: A strategy failed; the previous state is intact
            RestorationError: A strategy failed and rolling back failed too
        """
        if tenant is None:
            await self.clear_tenant()
            return

        previous = get_current_tenant()
        with self._tracer.span(
            SPAN_SWITCH,
            {
                ATTR_TENANT_ID: str(tenant.id),
                ATTR_PREVIOUS_TENANT_ID: _tenant_label(previous),
            },
        ):
            await self._apply_strategies(tenant)
            bind_tenant(tenant)

        self._log_switch(f"Tenant {tenant.id} activated", tenant, previous)
        await self._publish(TenantActivated(tenant=tenant, previous_tenant=previous))

    async def clear_tenant(self) -> None:
        """
        Return this unit of work to landlord.

        Removes every strategy, unbinds the tenant and publishes
        TenantDeactivated.
        """
        previous = get_current_tenant()
        with self._tracer.span(SPAN_CLEAR, {ATTR_PREVIOUS_TENANT_ID: _tenant_label(previous)}):
            await self._apply_strategies(None)
            bind_tenant(None)

        self._log_switch("Tenant context cleared", None, previous)
        await self._publish(TenantDeactivated(previous_tenant=previous))

    def _log_switch(self, message: str, tenant: Tenant | None, previous: Tenant | None) -> None:
        extra = {"tenant_id": _tenant_label(tenant), "previous_tenant_id": _tenant_label(previous)}
        if self._config.debug.log_tenant_switches:
            logger.info(message, extra=extra)
        else:
            logger.debug(message, extra=extra)

    async def _restore(self, snapshot: ContextState, original_error: BaseException | None) -> None:
        try:
            await self.set_tenant(snapshot.current)
        except (TenantSwitchError, RestorationError) as e:
            errors = e.errors if isinstance(e, RestorationError) else [e]
            raise RestorationError(errors, original_error) from (original_error or e)
        restore_state(snapshot)

    @asynccontextmanager
    async def _scoped(self, target: Tenant | None) -> AsyncIterator[Tenant | None]:
        snapshot = get_state()
        await self.set_tenant(target)
        try:
            yield target
        except BaseException as e:
            await self._restore(snapshot, e)
            raise
        else:
            await self._restore(snapshot, None)

    @asynccontextmanager
    async def tenant_scope(self, tenant: Tenant) -> AsyncIterator[Tenant]:
        """
        Run a block as tenant, restoring the exact prior state afterwards.

        Example:
            >>> async with manager.tenant_scope(globex):
            ...     await manager.cache.set("report", data)
        """
        async with self._scoped(tenant):
            yield tenant

    @asynccontextmanager
    async def landlord_scope(self) -> AsyncIterator[None]:
        """Run a block as landlord, restoring the exact prior state afterwards."""
        async with self._scoped(None):
            yield None

    async def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        result = fn(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def execute_in_tenant(
        self,
        tenant: Tenant | str | int,
        fn: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Call fn as the given tenant and restore the prior state afterwards.

        Restoration runs on normal return, on exception and on
        cancellation. The result or error of fn propagates once the prior
        state is back.

        Args:
            tenant: Tenant or tenant id
            fn: Sync or async callable
            *args: Positional arguments for fn
            **kwargs: Keyword arguments for fn

        Raises:
            TenantNotFoundError: If an id does not resolve
            RestorationError: If the prior state could not be restored
        """
        if not isinstance(tenant, Tenant):
            resolved = await self.find_tenant(tenant)
            if resolved is None:
                raise TenantNotFoundError(tenant)
            tenant = resolved
        async with self.tenant_scope(tenant):
            return await self._call(fn, *args, **kwargs)

    async def execute_in_landlord(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Call fn as landlord and restore the prior state afterwards."""
        async with self.landlord_scope():
            return await self._call(fn, *args, **kwargs)

    # =========================================================================
    # Detection
    # =========================================================================

    async def detect_tenant(
        self,
        request: RequestDescriptor,
        *,
        use_cache: bool = True,
    ) -> Tenant | None:
        """Run the detector chain for a request without switching."""
        cache = self._detection_cache if use_cache else None
        with self._tracer.span(
            SPAN_DETECT,
            {ATTR_DETECTION_HOST: request.host},
        ):
            tenant = await self._detectors.resolve(request, cache)
        if self._config.debug.log_detection:
            logger.info(
                f"Detection for host {request.host!r} resolved {_tenant_label(tenant)}",
                extra={"host": request.host, "tenant_id": _tenant_label(tenant)},
            )
        return tenant

    async def initialize(self, request: RequestDescriptor) -> Tenant | None:
        """
        Detect the request's tenant and make it current.

        Falls back to ``detection.fallback_tenant`` when nothing is
        detected. Does nothing if the resolved tenant is already current.

        Returns:
            The tenant now current, or None if none was found
        """
        tenant = await self.detect_tenant(request)
        fallback = self._config.detection.fallback_tenant
        if tenant is None and fallback is not None:
            tenant = await self._repository.find_active(fallback)
            if tenant is None:
                logger.warning(
                    f"Fallback tenant {fallback} not found",
                    extra={"tenant_id": fallback},
                )
        if tenant is None:
            return None

        current = get_current_tenant()
        if current is not None and str(current.id) == str(tenant.id):
            return current
        await self.set_tenant(tenant)
        return tenant

    @asynccontextmanager
    async def request_scope(self, request: RequestDescriptor) -> AsyncIterator[Tenant | None]:
        """
        Handle one inbound request: initialize on entry, restore on exit.

        Yields:
            The detected tenant, or None (the block then runs as landlord)
        """
        snapshot = get_state()
        tenant = await self.initialize(request)
        try:
            yield tenant
        except BaseException as e:
            await self._restore(snapshot, e)
            raise
        else:
            await self._restore(snapshot, None)

    # =========================================================================
    # Directory
    # =========================================================================

    async def find_tenant(self, tenant_id: str | int) -> Tenant | None:
        """Fetch a non-deleted tenant by id."""
        return await self._repository.get(tenant_id, include_deleted=False)

    async def get_all_tenants(self, include_deleted: bool = False) -> list[Tenant]:
        return await self._repository.list_all(include_deleted=include_deleted)

    def _invalidate(self, tenant_id: str | int) -> None:
        if self._detection_cache is not None:
            self._detection_cache.invalidate_tenant(tenant_id)

    async def create_tenant(self, attributes: Mapping[str, Any] | Tenant) -> TenantCreationResult:
        """Create and provision a tenant. See TenantLifecycle.create()."""
        result = await self._lifecycle.create(attributes)
        self._invalidate(result.tenant.id)
        return result

    async def update_tenant(self, tenant_id: str | int, **changes: Any) -> Tenant:
        """
        Update a tenant record.

        If the tenant is current in this unit of work, the new snapshot is
        bound in its place.
        """
        tenant = await self._lifecycle.update(tenant_id, changes)
        self._invalidate(tenant.id)
        state = get_state()
        if state.current is not None and str(state.current.id) == str(tenant.id):
            restore_state(ContextState(current=tenant, previous=state.previous))
        return tenant

    async def delete_tenant(self, tenant_id: str | int, *, force: bool = False) -> ProvisioningReport:
        """
        Delete a tenant (soft unless force). If it is current in this unit
        of work, the context returns to landlord first.
        """
        current = get_current_tenant()
        if current is not None and str(current.id) == str(tenant_id):
            await self.clear_tenant()
        report = await self._lifecycle.delete(tenant_id, force=force)
        self._invalidate(tenant_id)
        return report

    async def clear_tenant_cache(self, tenant: Tenant) -> bool:
        """Flush only the tenant's cache namespace."""
        return await self._strategies.cache.clear(tenant)

    async def close(self) -> None:
        """Wait for pending notifications and dispose database engines."""
        if isinstance(self._bus, InMemoryEventBus):
            await self._bus.shutdown()
        await self._strategies.database.dispose()

    async def __aenter__(self) -> TenancyManager:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


__all__ = ["TenancyManager"]
