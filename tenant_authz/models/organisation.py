"""
Organisation model.

Represents a tenant organisation in the multi-tenant system.
"""
from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from tenant_authz.models.base import Base, TimestampMixin


class Organisation(Base, TimestampMixin):
    """
    Organisation model representing a tenant in the system.

    Each organisation owns its roles, its organisation-scoped role templates
    and the permission overrides of its members.
    """
    __tablename__ = "organisations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL", use_alter=True, name="fk_organisations_owner_id"),
        nullable=True,
        index=True
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    owner = relationship("User", foreign_keys=[owner_id])
    roles = relationship(
        "Role",
        back_populates="organisation",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
    role_templates = relationship(
        "RoleTemplate",
        back_populates="organisation",
        cascade="all, delete-orphan",
        passive_deletes=True
    )
    permission_overrides = relationship(
        "PermissionOverride",
        back_populates="organisation",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def is_owner(self, user_id: int) -> bool:
        """Determine if a user is the recorded owner of the organisation."""
        return self.owner_id is not None and self.owner_id == user_id

    def __repr__(self):
        return f"<Organisation(id={self.id}, name={self.name}, owner_id={self.owner_id})>"
