"""
Role template model.

A template is a reusable bundle of permissions with a hierarchy level.
System templates (organisation_id is NULL, is_system=True) are shared by every
organisation; organisation templates belong to a single tenant and may shadow
a system template of the same name.
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Table, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from tenant_authz.models.base import Base, TimestampMixin
from tenant_authz.models.permission import Permission


SCOPE_SYSTEM = "system"
SCOPE_ORGANISATION = "organisation"


template_has_permissions = Table(
    "template_has_permissions",
    Base.metadata,
    Column("role_template_id", Integer, ForeignKey("role_templates.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
)


class RoleTemplate(Base, TimestampMixin):
    """
    Role template model.

    (name, organisation_id) is unique. SQL treats NULLs as distinct, so
    uniqueness of global template names is enforced by RoleTemplateService.
    """
    __tablename__ = "role_templates"
    __table_args__ = (
        UniqueConstraint("name", "organisation_id", name="uq_role_templates_name_org"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    scope: Mapped[str] = mapped_column(String(20), nullable=False, default=SCOPE_ORGANISATION)
    organisation_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("organisations.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    # Relationships
    organisation = relationship("Organisation", back_populates="role_templates")
    permissions: Mapped[list[Permission]] = relationship(
        Permission,
        secondary=template_has_permissions,
        order_by=Permission.name,
        lazy="selectin"
    )
    roles = relationship(
        "Role",
        back_populates="template",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    @property
    def is_global(self) -> bool:
        return self.organisation_id is None

    @property
    def permission_names(self) -> list[str]:
        return [permission.name for permission in self.permissions]

    def __repr__(self):
        return (
            f"<RoleTemplate(id={self.id}, name={self.name!r}, level={self.level}, "
            f"is_system={self.is_system}, org_id={self.organisation_id})>"
        )
