"""
Permission override tests: grant/deny exclusivity and cache coherence.
"""
from sqlalchemy import select

from tenant_authz.models import PermissionOverride


async def _rows(db, user_id: int, org_id: int) -> list[PermissionOverride]:
    result = await db.execute(
        select(PermissionOverride).where(
            PermissionOverride.user_id == user_id,
            PermissionOverride.organisation_id == org_id
        )
    )
    return list(result.scalars().all())


async def test_last_writer_wins_with_a_single_row(seeded, db, org, make_user):
    user = await make_user(org)
    overrides = seeded.overrides

    assert await overrides.grant(user, "board.delete", org.id) is True
    assert await overrides.deny(user, "board.delete", org.id) is True
    assert await overrides.grant(user, "board.delete", org.id) is True

    rows = await _rows(db, user.id, org.id)
    assert len(rows) == 1
    assert rows[0].grant is True
    assert await overrides.list_overrides(user, org.id) == {"board.delete": True}


async def test_unknown_permission_is_rejected(seeded, db, org, make_user):
    user = await make_user(org)

    assert await seeded.overrides.grant(user, "spaceship.launch", org.id) is False
    assert await seeded.overrides.deny(user, 987654, org.id) is False
    assert await _rows(db, user.id, org.id) == []


async def test_override_needs_an_active_organisation(seeded, org, make_user):
    user = await make_user(org)

    assert await seeded.overrides.grant(user, "board.view", 424242) is False


async def test_override_for_an_unknown_user_is_rejected(seeded, db, org):
    assert await seeded.overrides.grant(999999, "board.view", org.id) is False
    assert await _rows(db, 999999, org.id) == []


async def test_permission_can_be_referenced_by_id(seeded, org, make_user):
    user = await make_user(org)
    permission = await seeded.registry.get_by_name("board.delete")

    assert await seeded.overrides.deny(user, permission.id, org.id) is True
    assert await seeded.overrides.list_overrides(user, org.id) == {"board.delete": False}


async def test_clear_override(seeded, db, org, make_user):
    user = await make_user(org)
    await seeded.assign_role(user, "viewer", org.id)
    await seeded.deny_permission(user, "board.view", org.id)
    assert await seeded.authorize(user, "board.view", org.id) is False

    assert await seeded.overrides.clear_override(user, "board.view", org.id) is True
    assert await seeded.overrides.clear_override(user, "board.view", org.id) is False

    assert await seeded.authorize(user, "board.view", org.id) is True
    assert await _rows(db, user.id, org.id) == []


async def test_overrides_are_scoped_to_their_organisation(seeded, org, other_org, make_user):
    user = await make_user(org)
    await seeded.grant_permission(user, "board.delete", org.id)

    assert await seeded.authorize(user, "board.delete", org.id) is True
    assert await seeded.authorize(user, "board.delete", other_org.id) is False
    assert await seeded.overrides.list_overrides(user, other_org.id) == {}


async def test_list_overrides_is_cached_and_evicted(seeded, cache, org, make_user):
    user = await make_user(org)
    await seeded.overrides.grant(user, "board.delete", org.id)
    await seeded.overrides.deny(user, "task.view", org.id)

    assert await seeded.overrides.list_overrides(user, org.id) == {"board.delete": True, "task.view": False}
    assert f"overrides:{org.id}:{user.id}" in cache.keys()

    await seeded.overrides.clear_override(user, "task.view", org.id)

    assert f"overrides:{org.id}:{user.id}" not in cache.keys()
    assert await seeded.overrides.list_overrides(user, org.id) == {"board.delete": True}


async def test_lost_override_race_updates_the_winning_row(seeded, db, session_factory, org, make_user, monkeypatch):
    user = await make_user(org)
    permission = await seeded.registry.get_by_name("board.delete")
    user_id, org_id, permission_id = user.id, org.id, permission.id
    await db.commit()

    async with session_factory() as session:
        session.add(PermissionOverride(
            user_id=user_id, permission_id=permission_id, organisation_id=org_id, grant=True
        ))
        await session.commit()

    real_get = db.get
    misses = {"left": 1}

    async def stale_get(entity, ident, **kwargs):
        # First lookup misses the row committed by the other session
        if entity is PermissionOverride and misses["left"]:
            misses["left"] -= 1
            return None
        return await real_get(entity, ident, **kwargs)

    monkeypatch.setattr(db, "get", stale_get)

    assert await seeded.overrides.deny(user_id, "board.delete", org_id) is True

    rows = await _rows(db, user_id, org_id)
    assert len(rows) == 1
    assert rows[0].grant is False

    misses["left"] = 1
    await db.commit()
    db.expunge_all()
    assert await seeded.overrides.grant(user_id, "board.delete", org_id) is True

    rows = await _rows(db, user_id, org_id)
    assert len(rows) == 1
    assert rows[0].grant is True
