"""
User lookups.

Users are principals: identity plus a default organisation. Roles and
overrides live in their own stores.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_authz.models.user import User


class UserService:
    """Service for managing users."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: int) -> User | None:
        return await self.db.get(User, user_id)

    async def get_by_email(self, email: str) -> User | None:
        """
        Get user by email address.

        Args:
            email: User email address

        Returns:
            User or None if not found
        """
        stmt = select(User).where(User.email == email)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_with_organisation(self) -> list[User]:
        """Users that have a default organisation, ordered by id."""
        stmt = select(User).where(User.organisation_id.is_not(None)).order_by(User.id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create(self, email: str, name: str, organisation_id: int | None = None) -> User:
        """
        Create a new user.

        Args:
            email: User email (unique)
            name: Display name
            organisation_id: Default organisation

        Returns:
            Newly created User
        """
        user = User(email=email, name=name, organisation_id=organisation_id)
        self.db.add(user)
        await self.db.commit()
        return user
