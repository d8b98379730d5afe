"""
Role instantiation.

A Role is the (template, organisation) pair that principals get assigned to.
There is exactly one Role per pair: instantiation is idempotent and a lost
insert race returns the winner's row.
"""
import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from tenant_authz.exceptions import (
    DuplicateTemplateError,
    ImmutableResourceError,
    InvalidStateError,
    NotFoundError,
)
from tenant_authz.models.role import Role
from tenant_authz.models.role_assignment import RoleAssignment
from tenant_authz.models.role_template import SCOPE_ORGANISATION, RoleTemplate
from tenant_authz.references import ById, ByName, ByValue, as_reference, organisation_id_of
from tenant_authz.services.cache import CacheKeys, CachePort
from tenant_authz.services.invalidation import CacheInvalidator
from tenant_authz.services.role_template_service import RoleTemplateService

logger = structlog.get_logger()


def role_summary(role: Role) -> dict:
    """Plain-data view of a role, safe to cache."""
    return {
        "id": role.id,
        "template_id": role.template_id,
        "name": role.name,
        "level": role.level,
    }


class RoleService:
    """Service for instantiating and maintaining organisation roles."""

    def __init__(self, db: AsyncSession, cache: CachePort, templates: RoleTemplateService | None = None):
        self.db = db
        self.cache = cache
        self.templates = templates or RoleTemplateService(db, cache)
        self.invalidator = CacheInvalidator(db, cache)

    async def create_org_role_from_template(self, template: RoleTemplate, organisation) -> Role:
        """
        Get or create the role for a template inside an organisation.

        Args:
            template: A system template or a template of this organisation
            organisation: Organisation ID or instance

        Returns:
            The existing or newly created Role

        Raises:
            NotFoundError: If the organisation argument is not usable
            InvalidStateError: If the template belongs to another organisation
        """
        org_id = organisation_id_of(organisation)
        if org_id is None:
            raise NotFoundError("organisation", organisation)
        if template.organisation_id not in (None, org_id):
            raise InvalidStateError(f"Template {template.id} belongs to another organisation")

        existing = await self.find_role(template.id, org_id)
        if existing:
            return existing

        overrides_system, system_role_id = await self._system_link(template, org_id)
        role = Role(
            organisation_id=org_id,
            template_id=template.id,
            overrides_system=overrides_system,
            system_role_id=system_role_id,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(role)
        except IntegrityError:
            # Another request instantiated the same pair first
            logger.info("role_instantiation_raced", org_id=org_id, template_id=template.id)
            return await self.find_role(template.id, org_id)
        await self.db.commit()

        set_committed_value(role, "template", template)
        await self.invalidator.after_role_change(org_id)
        logger.info("role_created", org_id=org_id, role_id=role.id, template=template.name)
        return role

    async def find_role(self, template_id: int, organisation_id: int) -> Role | None:
        stmt = select(Role).where(
            Role.template_id == template_id,
            Role.organisation_id == organisation_id
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_role(self, role, organisation_id: int, *, create: bool = True) -> Role | None:
        """
        Resolve a role reference inside an organisation.

        Args:
            role: Role id, template name, Role, RoleTemplate or Reference
            organisation_id: Organisation the role must belong to
            create: Instantiate the role when a template name resolves but no role exists yet

        Returns:
            Role or None if the reference cannot be resolved in this organisation
        """
        ref = as_reference(role)

        if isinstance(ref, ById):
            return await self._role_in_organisation(ref.id, organisation_id)

        if isinstance(ref, ByValue):
            if isinstance(ref.entity, Role):
                return await self._role_in_organisation(ref.entity.id, organisation_id)
            if isinstance(ref.entity, RoleTemplate):
                return await self._role_for_template(ref.entity, organisation_id, create)
            return None

        if isinstance(ref, ByName):
            template = await self.templates.get_template(ref.name, organisation_id)
            if template is None:
                return None
            return await self._role_for_template(template, organisation_id, create)

        return None

    async def list_organisation_roles(self, organisation_id: int) -> list[Role]:
        """
        List the roles instantiated in an organisation.

        Returns:
            Roles ordered by level (highest first) then id
        """
        stmt = (
            select(Role)
            .join(RoleTemplate, RoleTemplate.id == Role.template_id)
            .where(Role.organisation_id == organisation_id)
            .order_by(RoleTemplate.level.desc(), Role.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def organisation_role_summaries(self, organisation_id: int) -> list[dict]:
        """Cached plain-data version of list_organisation_roles."""
        key = CacheKeys.organisation_roles(organisation_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        summaries = [role_summary(role) for role in await self.list_organisation_roles(organisation_id)]
        await self.cache.set(key, summaries)
        return summaries

    async def create_standard_roles(self, organisation) -> list[Role]:
        """
        Instantiate every system template for an organisation.

        Returns:
            Roles ordered by level (highest first)
        """
        stmt = (
            select(RoleTemplate)
            .where(RoleTemplate.organisation_id.is_(None), RoleTemplate.is_system.is_(True))
            .order_by(RoleTemplate.level.desc())
        )
        result = await self.db.execute(stmt)
        return [
            await self.create_org_role_from_template(template, organisation)
            for template in result.scalars().all()
        ]

    async def create_custom_role(
        self,
        organisation,
        name: str,
        permissions: list[str],
        *,
        level: int = 10,
        display_name: str | None = None,
        description: str | None = None
    ) -> Role:
        """
        Create an organisation template and its role in one transaction.

        Args:
            organisation: Organisation ID or instance
            name: Role (template) name, unique within the organisation
            permissions: Permission names (unknown names are skipped)
            level: Hierarchy level
            display_name: Label for admin UIs
            description: Free text

        Raises:
            DuplicateTemplateError: If the organisation already has a template with this name
        """
        org_id = organisation_id_of(organisation)
        if org_id is None:
            raise NotFoundError("organisation", organisation)
        if await self.templates.find_in_scope(name, org_id):
            raise DuplicateTemplateError(f"Template '{name}' already exists in this scope")

        template = RoleTemplate(
            name=name,
            display_name=display_name or name,
            description=description,
            level=level,
            is_system=False,
            scope=SCOPE_ORGANISATION,
            organisation_id=org_id,
        )
        template.permissions = await self.templates.registry.get_by_names(permissions)
        self.db.add(template)

        try:
            await self.db.flush()
            overrides_system, system_role_id = await self._system_link(template, org_id)
            role = Role(
                organisation_id=org_id,
                template_id=template.id,
                overrides_system=overrides_system,
                system_role_id=system_role_id,
            )
            self.db.add(role)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicateTemplateError(f"Template '{name}' already exists in this scope") from e

        set_committed_value(role, "template", template)
        await self.invalidator.after_template_change(template.id, name, org_id)
        await self.invalidator.after_role_change(org_id)
        logger.info("custom_role_created", org_id=org_id, role_id=role.id, template=name, level=level)
        return role

    async def create_system_role_override(
        self,
        system_template: RoleTemplate,
        organisation,
        *,
        display_name: str | None = None,
        description: str | None = None,
        permissions: list[str] | None = None
    ) -> Role:
        """
        Shadow a system template inside one organisation.

        Creates the organisation copy of the template and its role, then moves
        every assignment of the organisation's system-template role onto it.

        Args:
            system_template: Template to shadow
            organisation: Organisation ID or instance
            display_name: Defaults to the system template's
            description: Defaults to the system template's
            permissions: Defaults to the system template's bundle

        Returns:
            The override Role

        Raises:
            InvalidStateError: If the source is not a system template or the move fails
            DuplicateTemplateError: If the organisation already overrides this template
        """
        org_id = organisation_id_of(organisation)
        if org_id is None:
            raise NotFoundError("organisation", organisation)
        if not system_template.is_system:
            raise InvalidStateError("Cannot override a non-system template")
        if await self.templates.find_in_scope(system_template.name, org_id):
            raise DuplicateTemplateError(f"Template '{system_template.name}' is already overridden")

        system_role = await self.create_org_role_from_template(system_template, org_id)
        affected = await self.invalidator.principals_for_roles([system_role.id])
        names = system_template.permission_names if permissions is None else permissions

        override = RoleTemplate(
            name=system_template.name,
            display_name=display_name or system_template.display_name,
            description=description or system_template.description,
            level=system_template.level,
            is_system=False,
            scope=SCOPE_ORGANISATION,
            organisation_id=org_id,
        )
        override.permissions = await self.templates.registry.get_by_names(names)
        self.db.add(override)

        try:
            await self.db.flush()
            role = Role(
                organisation_id=org_id,
                template_id=override.id,
                overrides_system=True,
                system_role_id=system_role.id,
            )
            self.db.add(role)
            await self.db.flush()
            migrated = await self._move_assignments(system_role.id, role.id, org_id)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("system_role_override_failed", org_id=org_id, template=system_template.name, error=str(e))
            raise InvalidStateError(f"Failed to override '{system_template.name}'") from e

        set_committed_value(role, "template", override)
        await self.invalidator.after_template_change(override.id, override.name, org_id)
        await self.invalidator.after_role_change(org_id, affected)
        logger.info(
            "system_role_overridden",
            org_id=org_id,
            role_id=role.id,
            system_role_id=system_role.id,
            migrated=migrated,
        )
        return role

    async def revert_role_to_system(self, role_id: int, organisation_id: int) -> dict:
        """
        Undo a system override: move assignments back and drop the override.

        Runs in one transaction; on failure nothing is changed.

        Args:
            role_id: The override role
            organisation_id: Organisation the role belongs to

        Returns:
            {"migrated": int, "template_deleted": True, "system_role_id": int}

        Raises:
            NotFoundError: If the role does not exist in this organisation
            InvalidStateError: If the role is not an override or the move fails
        """
        role = await self._role_in_organisation(role_id, organisation_id)
        if role is None:
            raise NotFoundError("role", role_id)

        template = role.template
        if not role.overrides_system or template.is_system or template.organisation_id != organisation_id:
            raise InvalidStateError(f"Role {role_id} does not override a system role")

        system_role = await self._system_role_for(role, template)
        if system_role is None:
            raise InvalidStateError(f"System role for '{template.name}' not found")

        template_id, name = template.id, template.name
        affected = await self.invalidator.principals_for_roles([role.id])
        try:
            migrated = await self._move_assignments(role.id, system_role.id, organisation_id)
            await self.db.delete(role)
            await self.db.delete(template)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("role_revert_failed", org_id=organisation_id, role_id=role_id, error=str(e))
            raise InvalidStateError(f"Failed to revert role {role_id}") from e

        await self.invalidator.after_template_change(template_id, name, organisation_id, affected)
        await self.invalidator.after_role_change(organisation_id, affected)
        logger.info(
            "role_reverted_to_system",
            org_id=organisation_id,
            role_id=role_id,
            system_role_id=system_role.id,
            migrated=migrated,
        )
        return {"migrated": migrated, "template_deleted": True, "system_role_id": system_role.id}

    async def add_permissions_to_role(self, role: Role, names: list[str]) -> Role:
        """
        Add permissions to a role.

        A role backed by a system template is first moved onto an
        organisation override, so the system template stays untouched.
        """
        template = role.template
        if template.is_system:
            merged = list(dict.fromkeys(template.permission_names + list(names)))
            return await self.create_system_role_override(template, role.organisation_id, permissions=merged)
        self._ensure_owned(role, template)
        await self.templates.add_permissions(template, names)
        return role

    async def remove_permissions_from_role(self, role: Role, names: list[str]) -> Role:
        """
        Remove permissions from a role.

        Raises:
            InvalidStateError: If the role would be left without permissions
        """
        template = role.template
        removing = set(names)
        remaining = [name for name in template.permission_names if name not in removing]
        if not remaining:
            raise InvalidStateError("Cannot remove all permissions from a role")
        if template.is_system:
            return await self.create_system_role_override(template, role.organisation_id, permissions=remaining)
        self._ensure_owned(role, template)
        await self.templates.remove_permissions(template, names)
        return role

    async def delete_role(self, role: Role) -> bool:
        """
        Delete a role and its assignments.

        An organisation template owned by the role is deleted with it.

        Raises:
            ImmutableResourceError: If the role is instantiated from a system template
        """
        template = role.template
        if template.is_system:
            raise ImmutableResourceError("role", template.name)

        org_id, role_id = role.organisation_id, role.id
        owns_template = template.organisation_id == org_id
        affected = await self.invalidator.principals_for_roles([role_id])

        await self.db.delete(role)
        if owns_template:
            await self.db.delete(template)
        await self.db.commit()

        if owns_template:
            await self.invalidator.after_template_change(template.id, template.name, org_id, affected)
        await self.invalidator.after_role_change(org_id, affected)
        logger.info("role_deleted", org_id=org_id, role_id=role_id, template_deleted=owns_template)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _role_in_organisation(self, role_id: int, organisation_id: int) -> Role | None:
        role = await self.db.get(Role, role_id)
        if role is None or role.organisation_id != organisation_id:
            return None
        return role

    async def _role_for_template(self, template: RoleTemplate, organisation_id: int, create: bool) -> Role | None:
        if template.organisation_id not in (None, organisation_id):
            return None
        if create:
            return await self.create_org_role_from_template(template, organisation_id)
        return await self.find_role(template.id, organisation_id)

    async def _system_link(self, template: RoleTemplate, organisation_id: int) -> tuple[bool, int | None]:
        """(overrides_system, system_role_id) for a new role of `template`."""
        if template.is_system or template.organisation_id is None:
            return False, None
        system_template = await self.templates.find_in_scope(template.name, None)
        if system_template is None or not system_template.is_system:
            return False, None
        system_role = await self.find_role(system_template.id, organisation_id)
        return True, system_role.id if system_role else None

    async def _system_role_for(self, role: Role, template: RoleTemplate) -> Role | None:
        if role.system_role_id is not None:
            system_role = await self._role_in_organisation(role.system_role_id, role.organisation_id)
            if system_role is not None:
                return system_role
        system_template = await self.templates.find_in_scope(template.name, None)
        if system_template is None or not system_template.is_system:
            return None
        system_role = await self.find_role(system_template.id, role.organisation_id)
        if system_role is None:
            system_role = Role(organisation_id=role.organisation_id, template_id=system_template.id)
            self.db.add(system_role)
            await self.db.flush()
        return system_role

    async def _move_assignments(self, from_role_id: int, to_role_id: int, organisation_id: int) -> int:
        """Re-point every assignment of one role to another. Does not commit."""
        stmt = select(RoleAssignment.model_id, RoleAssignment.model_type).where(
            RoleAssignment.role_id == from_role_id,
            RoleAssignment.organisation_id == organisation_id
        )
        result = await self.db.execute(stmt)
        rows = result.all()

        for model_id, model_type in rows:
            key = (to_role_id, model_id, model_type, organisation_id)
            if await self.db.get(RoleAssignment, key) is None:
                self.db.add(RoleAssignment(
                    role_id=to_role_id,
                    model_id=model_id,
                    model_type=model_type,
                    organisation_id=organisation_id,
                ))

        await self.db.execute(
            delete(RoleAssignment).where(
                RoleAssignment.role_id == from_role_id,
                RoleAssignment.organisation_id == organisation_id
            )
        )
        return len(rows)

    @staticmethod
    def _ensure_owned(role: Role, template: RoleTemplate) -> None:
        if template.organisation_id != role.organisation_id:
            raise InvalidStateError("Cannot modify a template that does not belong to this organisation")
