"""
Administrative command line.

The application provides a factory returning its TenancyManager::

    tenancy --app myproject.tenancy:build_manager list --all
    tenancy --app myproject.tenancy:build_manager migrate acme --seed
    tenancy --app myproject.tenancy:build_manager migrate --all --fresh
    tenancy --app myproject.tenancy:build_manager diagnose --check-config

The factory may be sync or async. ``--app`` defaults to the TENANCY_APP
environment variable. Every command exits 0 on success and 1 on failure.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import inspect
import logging
import os
import sys
from collections.abc import Callable, Sequence
from typing import Any, TextIO

from tenancy.exceptions import TenancyError
from tenancy.manager import TenancyManager
from tenancy.tenants.model import ProvisioningReport, Tenant
from tenancy.validation import (
    check_system_requirements,
    validate_configuration,
    validate_tenant_integrity,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


def load_factory(path: str) -> Callable[[], Any]:
    """
    Import ``module:callable``.

    Raises:
        TenancyError: If the path is malformed or does not resolve
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise TenancyError(f"--app must look like 'module:callable', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise TenancyError(f"Cannot import {module_name}: {e}") from e
    target: Any = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise TenancyError(f"{module_name} has no attribute {attr!r}") from e
    if not callable(target):
        raise TenancyError(f"{path} is not callable")
    return target


async def _build_manager(path: str) -> TenancyManager:
    manager = load_factory(path)()
    if inspect.isawaitable(manager):
        manager = await manager
    if not isinstance(manager, TenancyManager):
        raise TenancyError(f"{path} returned {type(manager).__name__}, not TenancyManager")
    return manager


def _describe(tenant: Tenant) -> str:
    status = "deleted" if tenant.is_deleted else ("active" if tenant.is_active else "inactive")
    host = tenant.domain or tenant.subdomain or "-"
    return f"{tenant.id}\t{tenant.name or '-'}\t{host}\t{status}"


def _print_report(report: ProvisioningReport, out: TextIO) -> None:
    for step in report.steps:
        mark = "ok" if step.success else "FAILED"
        line = f"  {step.name}: {mark}"
        if step.error:
            line += f" ({step.error})"
        print(line, file=out)


async def cmd_list(manager: TenancyManager, args: argparse.Namespace, out: TextIO) -> int:
    tenants = await manager.get_all_tenants(include_deleted=args.all)
    if not tenants:
        print("No tenants found.", file=out)
        return EXIT_OK
    print("ID\tNAME\tHOST\tSTATUS", file=out)
    for tenant in tenants:
        print(_describe(tenant), file=out)
    print(f"{len(tenants)} tenant(s)", file=out)
    return EXIT_OK


async def _migrate_one(
    manager: TenancyManager, tenant: Tenant, args: argparse.Namespace, out: TextIO
) -> bool:
    print(f"Migrating tenant: {tenant.id}", file=out)
    report = await manager.lifecycle.provision(
        tenant,
        create_database=True,
        migrate=True,
        seed=args.seed,
        fresh=args.fresh,
        directories=False,
    )
    _print_report(report, out)
    if report.succeeded:
        print(f"Migrated tenant: {tenant.id}", file=out)
    else:
        print(f"Failed to migrate tenant: {tenant.id}", file=out)
    return report.succeeded


async def cmd_migrate(manager: TenancyManager, args: argparse.Namespace, out: TextIO) -> int:
    if not args.tenant and not args.all:
        print("Please specify a tenant id or use --all.", file=out)
        return EXIT_FAILURE

    if args.all:
        tenants = await manager.get_all_tenants()
        print(f"Found {len(tenants)} tenant(s) to migrate.", file=out)
        results = [await _migrate_one(manager, tenant, args, out) for tenant in tenants]
        failed = results.count(False)
        if failed:
            print(f"{failed} tenant(s) failed to migrate.", file=out)
            return EXIT_FAILURE
        return EXIT_OK

    tenant = await manager.find_tenant(args.tenant)
    if tenant is None:
        print(f"Tenant not found: {args.tenant}", file=out)
        return EXIT_FAILURE
    return EXIT_OK if await _migrate_one(manager, tenant, args, out) else EXIT_FAILURE


async def cmd_diagnose(manager: TenancyManager, args: argparse.Namespace, out: TextIO) -> int:
    run_all = not (args.check_requirements or args.check_config or args.check_integrity)
    has_errors = False

    if args.check_requirements or run_all:
        print("Checking system requirements...", file=out)
        report = check_system_requirements()
        python = report["python_version"]
        mark = "ok" if python["status"] else "FAILED"
        print(f"  python {python['current']} (requires {python['required']}+): {mark}", file=out)
        has_errors = has_errors or not python["status"]
        for name, info in report["libraries"].items():
            mark = info["current"] if info["status"] else "missing"
            print(f"  {name}: {mark}", file=out)
            has_errors = has_errors or not info["status"]
        for name, info in report["extras"].items():
            mark = "installed" if info["status"] else "not installed"
            print(f"  {name} [{info['extra']}]: {mark}", file=out)

    findings: list[str] = []
    if args.check_config or run_all:
        print("Checking configuration...", file=out)
        findings.extend(
            validate_configuration(manager.config, database_strategy=manager.strategies.database)
        )
    if args.check_integrity or run_all:
        print("Checking tenant integrity...", file=out)
        findings.extend(
            await validate_tenant_integrity(
                manager.repository, manager.config, manager.strategies.database
            )
        )
    for finding in findings:
        print(f"  {finding}", file=out)
    has_errors = has_errors or bool(findings)

    if has_errors:
        print("Issues found. Review the output above.", file=out)
        return EXIT_FAILURE
    print("All checks passed.", file=out)
    return EXIT_OK


COMMANDS = {
    "list": cmd_list,
    "migrate": cmd_migrate,
    "diagnose": cmd_diagnose,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tenancy",
        description="Administer tenants of a tenancy-py application",
    )
    parser.add_argument(
        "--app",
        default=os.environ.get("TENANCY_APP"),
        help="Factory returning a TenancyManager, as module:callable (default: $TENANCY_APP)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    list_parser = sub.add_parser("list", help="List tenants")
    list_parser.add_argument("--all", action="store_true", help="Include soft-deleted tenants")

    migrate = sub.add_parser("migrate", help="Run migrations for tenant(s)")
    migrate.add_argument("tenant", nargs="?", help="Tenant id to migrate")
    migrate.add_argument("--all", action="store_true", help="Migrate all tenants")
    migrate.add_argument("--fresh", action="store_true", help="Drop all tables before migrating")
    migrate.add_argument("--seed", action="store_true", help="Seed after migrating")

    diagnose = sub.add_parser("diagnose", help="Check configuration and tenant health")
    diagnose.add_argument("--check-requirements", action="store_true", help="Check installed software")
    diagnose.add_argument("--check-config", action="store_true", help="Check configuration")
    diagnose.add_argument("--check-integrity", action="store_true", help="Check tenant records")
    return parser


async def run(args: argparse.Namespace, out: TextIO = sys.stdout) -> int:
    """Build the manager, run one command and close the manager."""
    manager = await _build_manager(args.app)
    try:
        return await COMMANDS[args.command](manager, args, out)
    finally:
        await manager.close()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    if not args.app:
        print("No application factory given; use --app or TENANCY_APP.", file=sys.stderr)
        return EXIT_FAILURE
    try:
        return asyncio.run(run(args))
    except TenancyError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


__all__ = ["main", "run", "build_parser", "load_factory", "COMMANDS"]


if __name__ == "__main__":
    sys.exit(main())
