"""
Script to create all database tables.

This script creates all tables defined in the models, then seeds the
permission catalog and the system role templates.
Equivalent to `tenant-authz db create && tenant-authz catalog sync`.
"""
import asyncio

from tenant_authz.cli import create_all_tables, seed_catalog
from tenant_authz.logging_config import configure_logging


async def main():
    """Main entry point."""
    print("Creating database tables...")
    await create_all_tables()
    created, counts = await seed_catalog()
    print(f"Permissions created: {created}, system templates: {counts}")
    print("Done!")


if __name__ == "__main__":
    configure_logging()
    asyncio.run(main())
