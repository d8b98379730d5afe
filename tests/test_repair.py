"""
Baseline role repair tests.
"""
from tenant_authz.services.organisation_service import OrganisationService
from tenant_authz.services.repair_service import RepairService


async def test_repair_assigns_the_default_role_once(seeded, db, cache, org, make_user):
    user = await make_user(org)
    repair = RepairService(db, cache, seeded.assignments)

    first = await repair.ensure_baseline_role(user.id)
    second = await repair.ensure_baseline_role(user)

    assert first.assigned is True
    assert first.organisation_id == org.id
    assert second.assigned is False
    assert second.role_id == first.role_id
    assert await seeded.has_role(user, "member", org.id) is True


async def test_repair_with_explicit_template(seeded, db, cache, org, make_user):
    user = await make_user(org)
    repair = RepairService(db, cache, seeded.assignments)

    outcome = await repair.ensure_baseline_role(user, "admin")

    assert outcome.assigned is True
    assert await seeded.authorize(user, "role.delete", org.id) is True


async def test_repair_skip_reasons(seeded, db, cache, org, other_org, make_user):
    homeless = await make_user()
    member = await make_user(org)
    orphan = await make_user(other_org)
    await OrganisationService(db).soft_delete(other_org)
    repair = RepairService(db, cache, seeded.assignments)

    assert (await repair.ensure_baseline_role(424242)).skipped == "user_not_found"
    assert (await repair.ensure_baseline_role(homeless)).skipped == "no_organisation"
    assert (await repair.ensure_baseline_role(orphan)).skipped == "organisation_not_found"
    assert (await repair.ensure_baseline_role(member, "astronaut")).skipped == "template_not_found"


async def test_repair_all(seeded, db, cache, org, other_org, make_user):
    first = await make_user(org)
    second = await make_user(other_org)
    await make_user()
    await seeded.assign_role(first, "member", org.id)
    repair = RepairService(db, cache, seeded.assignments)

    outcomes = await repair.repair_all()

    assert [outcome.user_id for outcome in outcomes] == [first.id, second.id]
    assert [outcome.assigned for outcome in outcomes] == [False, True]
    assert await seeded.has_role(second, "member", other_org.id) is True
