"""
Organisation lookups.

Every authorization path resolves its organisation argument here. A missing
or soft-deleted organisation resolves to None and the caller fails closed.
"""
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.models.organisation import Organisation
from tenant_authz.references import organisation_id_of

logger = structlog.get_logger()


class OrganisationService:
    """Service for managing organisations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, org_id: int) -> Organisation | None:
        """
        Get organisation by ID, including soft-deleted ones.

        Args:
            org_id: Organisation ID

        Returns:
            Organisation or None if not found
        """
        stmt = select(Organisation).where(Organisation.id == org_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active(self, organisation) -> Organisation | None:
        """
        Resolve an organisation id or Organisation to a live row.

        Args:
            organisation: Organisation ID or instance

        Returns:
            Organisation, or None if it does not exist or is soft-deleted
        """
        org_id = organisation_id_of(organisation)
        if org_id is None:
            return None
        stmt = select(Organisation).where(
            Organisation.id == org_id,
            Organisation.deleted_at.is_(None)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, name: str, owner_id: int | None = None) -> Organisation:
        """
        Create a new organisation.

        Args:
            name: Organisation name
            owner_id: Optional owning user

        Returns:
            Newly created Organisation
        """
        org = Organisation(name=name, owner_id=owner_id)
        self.db.add(org)
        await self.db.commit()
        logger.info("organisation_created", org_id=org.id, owner_id=owner_id)
        return org

    async def set_owner(self, org: Organisation, owner_id: int | None) -> Organisation:
        org.owner_id = owner_id
        await self.db.commit()
        logger.info("organisation_owner_changed", org_id=org.id, owner_id=owner_id)
        return org

    async def soft_delete(self, org: Organisation) -> Organisation:
        """Mark an organisation deleted; every decision in it becomes a denial."""
        org.deleted_at = datetime.now(timezone.utc)
        await self.db.commit()
        logger.info("organisation_soft_deleted", org_id=org.id)
        return org
