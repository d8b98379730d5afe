"""
Role model.

A Role is a template instantiated inside one organisation. It is the unit
that gets assigned to principals.
"""
from sqlalchemy import Boolean, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from tenant_authz.models.base import Base, TimestampMixin
from tenant_authz.models.role_template import RoleTemplate


class Role(Base, TimestampMixin):
    """
    Role model.

    Exactly one role exists per (template_id, organisation_id). Name, level and
    permissions are read through the template.
    """
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("template_id", "organisation_id", name="uq_roles_template_org"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organisation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    template_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("role_templates.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    overrides_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    system_role_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("roles.id", ondelete="SET NULL"),
        nullable=True
    )

    # Relationships
    organisation = relationship("Organisation", back_populates="roles")
    template: Mapped[RoleTemplate] = relationship(RoleTemplate, back_populates="roles", lazy="joined")
    system_role = relationship("Role", remote_side=[id])

    @property
    def name(self) -> str:
        return self.template.name

    @property
    def level(self) -> int:
        return self.template.level

    @property
    def is_system(self) -> bool:
        return self.template.is_system

    def has_permission(self, permission_name: str) -> bool:
        return permission_name in self.template.permission_names

    def __repr__(self):
        return f"<Role(id={self.id}, org_id={self.organisation_id}, template_id={self.template_id})>"
