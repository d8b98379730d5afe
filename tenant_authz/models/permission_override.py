"""
Permission override model.

Per-user, per-organisation explicit grant or deny of a single permission.
"""
from sqlalchemy import Boolean, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship
from tenant_authz.models.base import Base, TimestampMixin


class PermissionOverride(Base, TimestampMixin):
    """
    Explicit grant (grant=True) or deny (grant=False).

    One row per (user_id, permission_id, organisation_id): a grant and a deny
    for the same triple can never coexist.
    """
    __tablename__ = "user_permissions"

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )
    permission_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("permissions.id", ondelete="CASCADE"),
        primary_key=True
    )
    organisation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("organisations.id", ondelete="CASCADE"),
        primary_key=True,
        index=True
    )
    grant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Relationships
    permission = relationship("Permission", lazy="joined")
    organisation = relationship("Organisation", back_populates="permission_overrides")

    @property
    def is_deny(self) -> bool:
        return not self.grant

    def __repr__(self):
        kind = "grant" if self.grant else "deny"
        return (
            f"<PermissionOverride(user_id={self.user_id}, permission_id={self.permission_id}, "
            f"org_id={self.organisation_id}, {kind})>"
        )
