"""
Consistency repair.

Gives principals a baseline role in their default organisation when the
role or the assignment is missing. Safe to re-run: existing roles and
assignments are left alone. Used by `tenant-authz roles fix`.
"""
from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.config import settings
from tenant_authz.references import principal_id_of
from tenant_authz.services.cache import CachePort
from tenant_authz.services.organisation_service import OrganisationService
from tenant_authz.services.role_assignment_service import RoleAssignmentService
from tenant_authz.services.user_service import UserService

logger = structlog.get_logger()


@dataclass
class RepairOutcome:
    user_id: int
    organisation_id: int | None
    role_id: int | None = None
    assigned: bool = False
    skipped: str | None = None


class RepairService:
    """Admin-only repair entry points."""

    def __init__(self, db: AsyncSession, cache: CachePort, assignments: RoleAssignmentService | None = None):
        self.db = db
        self.cache = cache
        self.assignments = assignments or RoleAssignmentService(db, cache)
        self.organisations = OrganisationService(db)
        self.users = UserService(db)

    async def ensure_baseline_role(self, principal, template_name: str | None = None) -> RepairOutcome:
        """
        Make sure a principal holds a role in its default organisation.

        Args:
            principal: Principal (needs organisation_id) or user id
            template_name: Template to instantiate, defaults to DEFAULT_ROLE

        Returns:
            RepairOutcome describing what was done
        """
        template_name = template_name or settings.DEFAULT_ROLE
        if isinstance(principal, int):
            user = await self.users.get_by_id(principal)
            if user is None:
                return RepairOutcome(user_id=principal, organisation_id=None, skipped="user_not_found")
            principal = user

        user_id = principal_id_of(principal)
        if principal.organisation_id is None:
            logger.warning("repair_skipped", user_id=user_id, reason="no_organisation")
            return RepairOutcome(user_id=user_id, organisation_id=None, skipped="no_organisation")

        org = await self.organisations.get_active(principal.organisation_id)
        if org is None:
            logger.warning("repair_skipped", user_id=user_id, reason="organisation_not_found")
            return RepairOutcome(user_id=user_id, organisation_id=principal.organisation_id,
                                 skipped="organisation_not_found")

        role = await self.assignments.roles.get_role(template_name, org.id)
        if role is None:
            logger.warning("repair_skipped", user_id=user_id, org_id=org.id, reason="template_not_found",
                           template=template_name)
            return RepairOutcome(user_id=user_id, organisation_id=org.id, skipped="template_not_found")

        assigned = await self.assignments.assign(user_id, role, org.id)
        logger.info("repair_checked", user_id=user_id, org_id=org.id, role_id=role.id, assigned=assigned)
        return RepairOutcome(user_id=user_id, organisation_id=org.id, role_id=role.id, assigned=assigned)

    async def repair_all(self, template_name: str | None = None) -> list[RepairOutcome]:
        """Run ensure_baseline_role for every user that has a default organisation."""
        outcomes = []
        for user in await self.users.list_with_organisation():
            outcomes.append(await self.ensure_baseline_role(user, template_name))
        logger.info(
            "repair_completed",
            checked=len(outcomes),
            assigned=sum(1 for outcome in outcomes if outcome.assigned),
        )
        return outcomes
