"""
Unit tests for tenant context state.

Tests cover:
- Landlord default and required-tenant guard
- bind/reset with tokens and previous-tenant tracking
- Snapshot restore
- Isolation between concurrent tasks
"""

from __future__ import annotations

import asyncio

import pytest

from tenancy.context import (
    LANDLORD,
    ContextState,
    bind_tenant,
    clear_tenant_context,
    get_current_tenant,
    get_previous_tenant,
    get_required_tenant,
    get_state,
    is_tenant_context,
    reset_tenant,
    restore_state,
    tenant_config,
)
from tenancy.exceptions import TenantNotFoundError
from tenancy.tenants.model import Tenant


class TestLandlordDefault:
    """Tests for the default landlord state."""

    def test_no_tenant_by_default(self) -> None:
        assert get_current_tenant() is None
        assert get_state() == LANDLORD
        assert not is_tenant_context()

    def test_required_tenant_raises_as_landlord(self) -> None:
        with pytest.raises(TenantNotFoundError) as exc_info:
            get_required_tenant()
        assert str(exc_info.value) == "No tenant found for this request."
        assert exc_info.value.tenant_id is None

    def test_tenant_config_returns_default_as_landlord(self) -> None:
        assert tenant_config("billing.plan", "free") == "free"


class TestBinding:
    """Tests for bind_tenant/reset_tenant."""

    def test_bind_sets_current_and_previous(self, acme: Tenant, globex: Tenant) -> None:
        bind_tenant(acme)
        bind_tenant(globex)
        assert get_current_tenant() is globex
        assert get_previous_tenant() is acme
        assert get_required_tenant() is globex

    def test_reset_restores_prior_state(self, acme: Tenant, globex: Tenant) -> None:
        bind_tenant(acme)
        token = bind_tenant(globex)
        reset_tenant(token)
        assert get_current_tenant() is acme

    def test_bind_none_is_landlord(self, acme: Tenant) -> None:
        bind_tenant(acme)
        bind_tenant(None)
        assert get_current_tenant() is None
        assert get_previous_tenant() is acme

    def test_restore_state_puts_back_snapshot(self, acme: Tenant, globex: Tenant) -> None:
        snapshot = ContextState(current=acme, previous=globex)
        restore_state(snapshot)
        assert get_state() is snapshot

    def test_clear_returns_to_landlord(self, acme: Tenant) -> None:
        bind_tenant(acme)
        clear_tenant_context()
        assert get_state() == LANDLORD

    def test_tenant_config_reads_current_tenant(self, acme: Tenant) -> None:
        bind_tenant(acme)
        assert tenant_config("billing.plan") == "pro"
        assert tenant_config() == {"billing": {"plan": "pro"}}


class TestTaskIsolation:
    """Tests for per-task context isolation."""

    @pytest.mark.asyncio
    async def test_child_task_changes_do_not_leak(self, acme: Tenant, globex: Tenant) -> None:
        """A task inherits a snapshot and cannot change its parent's tenant."""
        bind_tenant(acme)

        async def child() -> Tenant | None:
            inherited = get_current_tenant()
            bind_tenant(globex)
            return inherited

        inherited = await asyncio.create_task(child())
        assert inherited is acme
        assert get_current_tenant() is acme

    @pytest.mark.asyncio
    async def test_concurrent_tasks_keep_their_own_tenant(self) -> None:
        tenants = [Tenant(id=f"t{i}") for i in range(10)]

        async def worker(tenant: Tenant) -> bool:
            bind_tenant(tenant)
            for _ in range(5):
                await asyncio.sleep(0)
                if get_current_tenant() is not tenant:
                    return False
            return True

        results = await asyncio.gather(*(worker(t) for t in tenants))
        assert all(results)
        assert get_current_tenant() is None
