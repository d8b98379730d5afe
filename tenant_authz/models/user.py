"""
User model.

Represents a principal. A user has a default organisation but may hold roles
and permission overrides in several organisations.
"""
from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from tenant_authz.models.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """
    User model representing an authenticated principal.

    Carries identity only: authorization decisions live in AuthorizationService.
    """
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    organisation_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("organisations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Relationships
    organisation = relationship("Organisation", foreign_keys=[organisation_id])

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, org_id={self.organisation_id})>"
