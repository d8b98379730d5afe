"""
Role instantiation tests: idempotence, custom roles, system overrides and revert.
"""
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from tenant_authz import catalog
from tenant_authz.exceptions import DuplicateTemplateError, ImmutableResourceError, InvalidStateError, NotFoundError
from tenant_authz.models import Role, RoleAssignment, RoleTemplate
from tenant_authz.services.authorization_service import AuthorizationService


async def _count_roles(db, template_id: int, org_id: int) -> int:
    result = await db.execute(
        select(func.count()).select_from(Role).where(
            Role.template_id == template_id,
            Role.organisation_id == org_id
        )
    )
    return result.scalar_one()


async def test_instantiation_is_idempotent(seeded, db, org):
    template = await seeded.templates.get_template("member")

    first = await seeded.roles.create_org_role_from_template(template, org)
    second = await seeded.roles.create_org_role_from_template(template, org.id)

    assert first.id == second.id
    assert first.name == "member"
    assert first.level == 40
    assert await _count_roles(db, template.id, org.id) == 1


async def test_lost_instantiation_race_returns_the_winner(seeded, db, session_factory, cache, org, monkeypatch):
    template = await seeded.templates.get_template("viewer")
    template_id, org_id = template.id, org.id
    await db.commit()

    async with session_factory() as session:
        winner = Role(organisation_id=org_id, template_id=template_id)
        session.add(winner)
        await session.commit()
        winner_id = winner.id

    real_find = seeded.roles.find_role
    calls = {"n": 0}

    async def stale_find(template_id, organisation_id):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return await real_find(template_id, organisation_id)

    monkeypatch.setattr(seeded.roles, "find_role", stale_find)

    role = await seeded.roles.create_org_role_from_template(template, org_id)

    assert role.id == winner_id
    assert await _count_roles(db, template_id, org_id) == 1


async def test_template_from_another_organisation_is_rejected(seeded, org, other_org):
    foreign = await seeded.templates.create_template("auditor", permissions=[], organisation_id=other_org.id)

    with pytest.raises(InvalidStateError):
        await seeded.roles.create_org_role_from_template(foreign, org.id)
    assert await seeded.roles.get_role(foreign, org.id) is None


async def test_get_role_by_name_id_and_instance(seeded, org, other_org):
    role = await seeded.roles.get_role("team_leader", org.id)

    assert role.name == "team_leader"
    assert (await seeded.roles.get_role(role.id, org.id)).id == role.id
    assert (await seeded.roles.get_role(role, org.id)).id == role.id
    # A role id from another organisation does not resolve
    assert await seeded.roles.get_role(role.id, other_org.id) is None


async def test_get_role_without_create_does_not_instantiate(seeded, db, org):
    assert await seeded.roles.get_role("viewer", org.id, create=False) is None
    template = await seeded.templates.get_template("viewer")
    assert await _count_roles(db, template.id, org.id) == 0


async def test_create_standard_roles(seeded, org):
    roles = await seeded.roles.create_standard_roles(org)

    assert {role.name for role in roles} == set(catalog.SYSTEM_ROLE_TEMPLATES)
    levels = [role.level for role in roles]
    assert levels == sorted(levels, reverse=True)

    summaries = await seeded.roles.organisation_role_summaries(org.id)
    assert [summary["id"] for summary in summaries] == [role.id for role in roles]


async def test_create_custom_role(seeded, org, make_user):
    user = await make_user(org)

    role = await seeded.roles.create_custom_role(
        org, "release_manager", ["project.update", "board.update", "spaceship.launch"], level=70
    )

    assert role.level == 70
    assert role.template.organisation_id == org.id
    assert role.template.is_system is False
    assert role.overrides_system is False
    assert role.template.permission_names == ["board.update", "project.update"]

    await seeded.assign_role(user, "release_manager", org.id)
    assert await seeded.authorize(user, "project.update", org.id) is True


async def test_create_custom_role_rejects_duplicates(seeded, org):
    await seeded.roles.create_custom_role(org, "release_manager", [])

    with pytest.raises(DuplicateTemplateError):
        await seeded.roles.create_custom_role(org, "release_manager", [])


async def test_system_roles_cannot_be_deleted(seeded, org):
    role = await seeded.roles.get_role("member", org.id)

    with pytest.raises(ImmutableResourceError):
        await seeded.roles.delete_role(role)


async def test_delete_custom_role_removes_template_and_assignments(seeded, db, org, make_user):
    user = await make_user(org)
    role = await seeded.roles.create_custom_role(org, "release_manager", ["project.update"])
    await seeded.assign_role(user, role, org.id)
    assert await seeded.has_role(user, "release_manager", org.id) is True

    assert await seeded.roles.delete_role(role) is True

    assert await seeded.has_role(user, "release_manager", org.id) is False
    assert await seeded.templates.get_template("release_manager", org.id) is None
    result = await db.execute(select(func.count()).select_from(RoleAssignment))
    assert result.scalar_one() == 0


async def test_system_override_moves_assignments_and_revert_restores_them(seeded, db, org, other_org, make_user):
    user = await make_user(org)
    outsider = await make_user(other_org)
    await seeded.assign_role(user, "member", org.id)
    await seeded.assign_role(outsider, "member", other_org.id)
    system_role = await seeded.roles.get_role("member", org.id)
    member = await seeded.templates.get_template("member")

    override = await seeded.roles.create_system_role_override(
        member, org, permissions=member.permission_names + ["task.delete"]
    )

    assert override.overrides_system is True
    assert override.system_role_id == system_role.id
    assert await seeded.has_role(user, override.id, org.id) is True
    assert await seeded.has_role(user, system_role.id, org.id) is False
    assert await seeded.has_role(user, "member", org.id) is True
    assert await seeded.authorize(user, "task.delete", org.id) is True
    assert await seeded.authorize(outsider, "task.delete", other_org.id) is False

    result = await seeded.roles.revert_role_to_system(override.id, org.id)

    assert result == {"migrated": 1, "template_deleted": True, "system_role_id": system_role.id}
    assert await seeded.has_role(user, system_role.id, org.id) is True
    assert await seeded.authorize(user, "task.delete", org.id) is False
    assert (await seeded.templates.get_template("member", org.id)).id == member.id


async def test_failed_revert_leaves_everything_in_place(seeded, session_factory, cache, org, make_user, monkeypatch):
    user = await make_user(org)
    await seeded.assign_role(user, "viewer", org.id)
    viewer = await seeded.templates.get_template("viewer")
    override = await seeded.roles.create_system_role_override(viewer, org, permissions=["board.view"])
    user_id, org_id, override_id, override_template_id = user.id, org.id, override.id, override.template_id

    real_move = seeded.roles._move_assignments

    async def failing_move(from_role_id, to_role_id, organisation_id):
        await real_move(from_role_id, to_role_id, organisation_id)
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr(seeded.roles, "_move_assignments", failing_move)

    with pytest.raises(InvalidStateError):
        await seeded.roles.revert_role_to_system(override_id, org_id)

    async with session_factory() as session:
        assert await session.get(RoleTemplate, override_template_id) is not None
        service = AuthorizationService(session, cache)
        assert await service.has_role(user_id, override_id, org_id) is True


async def test_revert_rejects_roles_that_do_not_override(seeded, org):
    role = await seeded.roles.get_role("member", org.id)

    with pytest.raises(InvalidStateError):
        await seeded.roles.revert_role_to_system(role.id, org.id)
    with pytest.raises(NotFoundError):
        await seeded.roles.revert_role_to_system(424242, org.id)


async def test_adding_permissions_to_a_system_role_creates_an_override(seeded, org, make_user):
    user = await make_user(org)
    await seeded.assign_role(user, "viewer", org.id)
    role = await seeded.roles.get_role("viewer", org.id)

    updated = await seeded.roles.add_permissions_to_role(role, ["board.update"])

    assert updated.id != role.id
    assert updated.overrides_system is True
    assert await seeded.authorize(user, "board.update", org.id) is True
    system_viewer = await seeded.templates.get_template("viewer")
    assert "board.update" not in system_viewer.permission_names


async def test_removing_every_permission_is_rejected(seeded, org):
    role = await seeded.roles.create_custom_role(org, "release_manager", ["project.update"])

    with pytest.raises(InvalidStateError):
        await seeded.roles.remove_permissions_from_role(role, ["project.update"])
