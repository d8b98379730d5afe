"""
CLI tests. Each command runs its own event loop, so these tests are sync.
"""
import asyncio

import pytest
from click.testing import CliRunner
from sqlalchemy import func, select

from tenant_authz import catalog, cli
from tenant_authz.database import build_engine, build_sessionmaker
from tenant_authz.models import Organisation, RoleAssignment, RoleTemplate, User


@pytest.fixture
def cli_db(tmp_path, monkeypatch):
    """Point the CLI at a private SQLite file."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    session_factory = build_sessionmaker(engine)
    monkeypatch.setattr(cli, "engine", engine)
    monkeypatch.setattr(cli, "AsyncSessionLocal", session_factory)
    monkeypatch.setattr(cli, "configure_logging", lambda: None)
    return session_factory


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _scalar(session_factory, stmt):
    async def query():
        async with session_factory() as session:
            return (await session.execute(stmt)).scalar_one()
    return asyncio.run(query())


def _add_users(session_factory, count: int) -> list[int]:
    async def insert():
        async with session_factory() as session:
            org = Organisation(name="Acme Corp")
            session.add(org)
            await session.flush()
            users = [
                User(email=f"cli{n}@example.com", name=f"Cli {n}", organisation_id=org.id)
                for n in range(count)
            ]
            session.add_all(users)
            await session.commit()
            return [user.id for user in users]
    return asyncio.run(insert())


def test_db_create_and_catalog_sync(cli_db, runner):
    result = runner.invoke(cli.cli, ["db", "create"])
    assert result.exit_code == 0, result.output
    assert "All tables created successfully!" in result.output

    result = runner.invoke(cli.cli, ["catalog", "sync"])
    assert result.exit_code == 0, result.output
    assert f"Permissions created: {len(catalog.all_defined_permissions())}" in result.output

    templates = _scalar(cli_db, select(func.count()).select_from(RoleTemplate))
    assert templates == len(catalog.SYSTEM_ROLE_TEMPLATES)

    # Re-running only refreshes
    result = runner.invoke(cli.cli, ["catalog", "sync"])
    assert "Permissions created: 0" in result.output
    assert "System templates created: 0" in result.output


def test_roles_fix(cli_db, runner):
    runner.invoke(cli.cli, ["db", "create"])
    runner.invoke(cli.cli, ["catalog", "sync"])
    first, second = _add_users(cli_db, 2)

    result = runner.invoke(cli.cli, ["roles", "fix", str(first), "--role", "admin"])
    assert result.exit_code == 0, result.output
    assert f"User {first}: assigned role" in result.output

    result = runner.invoke(cli.cli, ["roles", "fix", "--role", "admin"])
    assert result.exit_code == 0, result.output
    assert f"User {first}: already has role" in result.output
    assert f"User {second}: assigned role" in result.output
    assert "Role assignments have been fixed!" in result.output

    assignments = _scalar(cli_db, select(func.count()).select_from(RoleAssignment))
    assert assignments == 2


def test_roles_fix_reports_skips(cli_db, runner):
    runner.invoke(cli.cli, ["db", "create"])

    result = runner.invoke(cli.cli, ["roles", "fix", "4242"])

    assert result.exit_code == 0, result.output
    assert "User 4242: skipped (user_not_found)" in result.output
