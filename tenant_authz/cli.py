"""
tenant-authz command line.

    tenant-authz roles fix [USER_ID] [--role NAME]
    tenant-authz catalog sync
    tenant-authz db create
"""
import asyncio

import click

from tenant_authz.database import AsyncSessionLocal, engine
from tenant_authz.logging_config import configure_logging
from tenant_authz.models import Base
from tenant_authz.services.cache import build_cache
from tenant_authz.services.repair_service import RepairService
from tenant_authz.services.role_template_service import RoleTemplateService


def _run(coro):
    configure_logging()
    return asyncio.run(coro)


@click.group()
def cli() -> None:
    """Multi-tenant authorization administration."""


@cli.group()
def roles() -> None:
    """Role maintenance."""


@roles.command("fix")
@click.argument("user_id", type=int, required=False)
@click.option("--role", "role_name", default=None, help="Template to assign (defaults to DEFAULT_ROLE)")
def fix_roles(user_id: int | None, role_name: str | None) -> None:
    """Give users a baseline role in their default organisation."""
    outcomes = _run(_fix_roles(user_id, role_name))
    for outcome in outcomes:
        if outcome.skipped:
            click.secho(f"User {outcome.user_id}: skipped ({outcome.skipped})", fg="yellow")
        elif outcome.assigned:
            click.echo(f"User {outcome.user_id}: assigned role {outcome.role_id} in organisation {outcome.organisation_id}")
        else:
            click.echo(f"User {outcome.user_id}: already has role {outcome.role_id}")
    click.secho("Role assignments have been fixed!", fg="green")


async def _fix_roles(user_id: int | None, role_name: str | None):
    cache = build_cache()
    async with AsyncSessionLocal() as session:
        repair = RepairService(session, cache)
        if user_id is not None:
            return [await repair.ensure_baseline_role(user_id, role_name)]
        return await repair.repair_all(role_name)


@cli.group()
def catalog() -> None:
    """Permission catalog."""


@catalog.command("sync")
def sync_catalog() -> None:
    """Seed catalog permissions and refresh the system role templates."""
    created, counts = _run(seed_catalog())
    click.echo(f"Permissions created: {created}")
    click.echo(f"System templates created: {counts['created']}, updated: {counts['updated']}")


async def seed_catalog():
    cache = build_cache()
    async with AsyncSessionLocal() as session:
        templates = RoleTemplateService(session, cache)
        created = await templates.registry.sync_catalog()
        counts = await templates.sync_system_templates()
    return created, counts


@cli.group()
def db() -> None:
    """Database helpers."""


@db.command("create")
def create_tables() -> None:
    """Create every table (local runs; deployments use Alembic)."""
    _run(create_all_tables())
    click.secho("All tables created successfully!", fg="green")


async def create_all_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
